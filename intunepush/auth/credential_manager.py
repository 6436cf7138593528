"""
Graph access token handling for intunepush.

The token endpoint itself is an external collaborator; this module only
performs the client-credentials exchange and caches the result. Anything with
a ``get_token() -> str`` method can be handed to GraphClient instead.
"""

from __future__ import annotations

import getpass
import os
import threading
import time
from typing import Protocol

from dotenv import load_dotenv
import requests

from intunepush.exceptions import ConfigError, NetworkError

TOKEN_URL = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"


class TokenProvider(Protocol):
    """Anything that can hand out a bearer token for Graph."""

    def get_token(self) -> str: ...


class StaticTokenProvider:
    """Returns a fixed token. Handy for tests and pre-acquired tokens."""

    def __init__(self, token: str) -> None:
        self._token = token

    def get_token(self) -> str:
        return self._token


class CredentialManager:
    """
    Loads INTUNEPUSH_* environment variables (optionally from .env) and manages
    a cached Microsoft Graph access token that is refreshed automatically
    when it is about to expire.

    Safe to share between concurrent pipelines: token refresh is serialized
    with a lock.
    """

    def __init__(
        self,
        env_prefix: str = "INTUNEPUSH_",
        refresh_margin: int = 300,
        interactive: bool = False,
        session: requests.Session | None = None,
    ) -> None:
        """
        :param env_prefix: Prefix used for environment variables.
        :param refresh_margin: Seconds before real expiry when we proactively refresh.
        :param interactive: Prompt for the client secret if it is not set.
        :param session: Optional session used for the token request.
        """
        load_dotenv()
        self.env_prefix = env_prefix
        self.refresh_margin = refresh_margin
        self.interactive = interactive
        self._session = session
        self._lock = threading.Lock()
        self._token: str | None = None
        self._token_expires_at: float | None = None  # UNIX epoch

    # --------------------------------------------------------------------- #
    # Helper: read required env var
    # --------------------------------------------------------------------- #
    def _env(self, key: str) -> str:
        full_key = f"{self.env_prefix}{key}"
        value = os.getenv(full_key)
        if not value:
            raise ConfigError(f"Missing required environment variable: {full_key}")
        return value

    # --------------------------------------------------------------------- #
    # Public getters for ID / secret
    # --------------------------------------------------------------------- #
    def get_client_id(self) -> str:
        return self._env("CLIENT_ID")

    def get_tenant_id(self) -> str:
        return self._env("TENANT_ID")

    def get_client_secret(self) -> str:
        try:
            return self._env("CLIENT_SECRET")
        except ConfigError:
            if not self.interactive:
                raise
            return getpass.getpass("Enter your client secret: ")

    # --------------------------------------------------------------------- #
    # Token handling
    # --------------------------------------------------------------------- #
    def _token_expired(self) -> bool:
        if self._token is None or self._token_expires_at is None:
            return True
        return time.time() >= (self._token_expires_at - self.refresh_margin)

    def _fetch_token(self) -> None:
        """
        Performs the client-credentials flow and stores
        self._token and self._token_expires_at.
        """
        url = TOKEN_URL.format(tenant=self.get_tenant_id())
        data = {
            "client_id": self.get_client_id(),
            "client_secret": self.get_client_secret(),
            "grant_type": "client_credentials",
            "scope": GRAPH_SCOPE,
        }

        post = self._session.post if self._session is not None else requests.post
        try:
            response = post(url, data=data, timeout=60)
        except requests.RequestException as err:
            raise NetworkError(f"Failed to reach token endpoint: {err}") from err
        if not response.ok:
            raise NetworkError(
                f"Failed to get access token. Status: {response.status_code}, "
                f"Response: {response.text}"
            )

        token_data = response.json()
        token = token_data.get("access_token")
        if not token:
            raise NetworkError("Access token is missing in response")
        self._token = token
        # expires_in is seconds until expiry
        expires_in = int(token_data.get("expires_in", 0))
        self._token_expires_at = time.time() + expires_in

    def get_token(self) -> str:
        """
        Returns a valid access token, refreshing it when necessary.
        """
        with self._lock:
            if self._token_expired():
                self._fetch_token()
            # At this point self._token is guaranteed to be str and valid
            return self._token  # type: ignore[return-value]
