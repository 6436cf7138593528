"""Content upload for Intune Win32 apps.

Modules:

negotiation : module
    Waiting for (and renewing) the Azure Storage SAS URI.
blob : module
    Chunked block blob upload with retries.
chunks : module
    Chunk planning, block ids and the block list body.
polling : module
    uploadState polling state machine.
processing : module
    Waiting for Intune to process a committed file.
retry : module
    Status/exception classification and backoff.
"""

from .blob import BlobUploader
from .negotiation import StorageSession, await_storage_uri, renew_storage_session
from .polling import PollDecision, PollPolicy, PollState, next_poll_decision
from .processing import await_stage

__all__ = [
    "BlobUploader",
    "PollDecision",
    "PollPolicy",
    "PollState",
    "StorageSession",
    "await_stage",
    "await_storage_uri",
    "next_poll_decision",
    "renew_storage_session",
]
