"""Microsoft Graph access for the Intune app registry.

Modules:

client : module
    GraphClient with per-request bearer authorization.
payloads : module
    AppDefinition/DetectionRule and the JSON bodies built from them.
registrar : module
    One function per registry call (create app, content version, file entry,
    commit, renew, patch).
"""

from .client import GraphClient, make_session
from .payloads import AppDefinition, DetectionRule

__all__ = ["AppDefinition", "DetectionRule", "GraphClient", "make_session"]
