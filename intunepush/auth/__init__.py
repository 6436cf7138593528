"""Authentication helpers for Microsoft Graph."""

from .credential_manager import CredentialManager, StaticTokenProvider, TokenProvider

__all__ = ["CredentialManager", "StaticTokenProvider", "TokenProvider"]
