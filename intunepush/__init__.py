"""
intunepush - Win32 app uploads to Microsoft Intune

A Python library and CLI that publishes packaged Windows applications
(.intunewin files) to Microsoft Intune through the Microsoft Graph API.

intunepush provides:
  - Manifest and payload extraction from .intunewin packages
  - Win32 LOB app creation from declarative YAML app definitions
  - Azure Storage negotiation with SAS URI renewal for long uploads
  - Chunked block blob uploads with bounded, jittered retries
  - Polling of Intune's asynchronous processing states
  - Updating the content of existing apps (icon preserved)
  - Cooperative cancellation from another thread

Quick Start
-----------
Check an app definition:

    $ intunepush validate apps/chrome.yaml

Upload a package as a new app:

    $ intunepush upload packages/Chrome.intunewin apps/chrome.yaml

For full CLI documentation:

    $ intunepush --help

Package Structure
-----------------
cli : module
    Command-line interface with argparse.
core : module
    Upload pipeline orchestration.
config : package
    YAML app definitions with layered defaults.
intunewin : package
    .intunewin archive reading.
graph : package
    Microsoft Graph client and app registry calls.
upload : package
    Storage negotiation, chunked blob upload and state polling.
auth : package
    Client-credentials token handling.

Public API
----------
The primary interface is the CLI, but key functions are exported for
programmatic use:

    from intunepush.core import upload_package, update_package
    from intunepush.config import load_effective_config, load_app_definition
    from intunepush.validation import validate_app_config

For more details, see the individual module docstrings.
"""

__version__ = "0.1.0"
__author__ = "Roger Cibrian"
__license__ = "Apache-2.0"
__description__ = "Upload Win32 (.intunewin) apps to Microsoft Intune"

# Re-export commonly used functions for convenience
from intunepush.config import load_app_definition, load_effective_config
from intunepush.core import inspect_package, update_package, upload_package
from intunepush.results import UploadResult
from intunepush.settings import UploadSettings
from intunepush.validation import validate_app_config

__all__ = [
    "__version__",
    "__author__",
    "__license__",
    "__description__",
    "upload_package",
    "update_package",
    "inspect_package",
    "validate_app_config",
    "load_effective_config",
    "load_app_definition",
    "UploadResult",
    "UploadSettings",
]
