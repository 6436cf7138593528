# Copyright 2025 Roger Cibrian
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Storage session negotiation for Intune content uploads.

After a file entry is created Intune asynchronously provisions an Azure
Storage blob and publishes a time-boxed SAS URI for it on the entry. This
module waits for that URI, and requests a fresh one when an upload runs long
enough for the current one to expire.

Example:
    ```python
    session = await_storage_uri(client, app_id, cv_id, file_id, settings)
    ...
    session = renew_storage_session(client, app_id, cv_id, file_id, settings)
    ```
"""

from __future__ import annotations

from dataclasses import dataclass
import threading
import time
from urllib.parse import quote

from intunepush.cancellation import interruptible_sleep
from intunepush.exceptions import ProtocolError
from intunepush.graph import registrar
from intunepush.graph.client import GraphClient
from intunepush.settings import UploadSettings
from intunepush.upload.polling import (
    STAGE_STORAGE_URI_RENEWAL,
    STAGE_STORAGE_URI_REQUEST,
    PollPolicy,
    Sleeper,
    poll_upload_state,
)


@dataclass(frozen=True)
class StorageSession:
    """A writable blob endpoint handed out by Intune.

    Sessions are values: renewal returns a new StorageSession rather than
    changing this one.

    Attributes:
        sas_uri: Signed blob URL including its query string.
        issued_at: time.monotonic() value when the URI was obtained.
    """

    sas_uri: str
    issued_at: float

    def block_url(self, block_id: str) -> str:
        return f"{self.sas_uri}&comp=block&blockid={quote(block_id, safe='')}"

    def block_list_url(self) -> str:
        return f"{self.sas_uri}&comp=blocklist"


def _storage_uri(body: dict, stage: str) -> str:
    uri = body.get("azureStorageUri")
    if not uri:
        raise ProtocolError(f"Upload state is {stage}Success but azureStorageUri is missing")
    return str(uri)


def await_storage_uri(
    client: GraphClient,
    app_id: str,
    content_version_id: str,
    file_id: str,
    settings: UploadSettings,
    *,
    cancel: threading.Event | None = None,
    sleep: Sleeper = interruptible_sleep,
    clock=time.monotonic,
) -> StorageSession:
    """Wait for AzureStorageUriRequestSuccess and return the SAS URI.

    Polls every storage_pending_interval seconds while pending (or when the
    entry cannot be read because of a transport error) and every
    storage_unknown_interval seconds after unrecognized states, up to
    storage_max_attempts polls.

    Returns:
        A StorageSession for the file entry.

    Raises:
        StageFailedError: AzureStorageUriRequestFailed was reported.
        StageTimedOutError: AzureStorageUriRequestTimedOut was reported, or
            the request was still pending at the attempt ceiling.
        UnknownStateError: An unrecognized state persisted to the ceiling.
        ProtocolError: Success was reported without azureStorageUri.
        RegistryRequestError: Graph returned a non-success status.
    """
    client.logger.verbose("POLL", "Waiting for Azure Storage URI")
    body = poll_upload_state(
        lambda: registrar.get_file_entry(
            client, app_id, content_version_id, file_id, cancel=cancel
        ),
        STAGE_STORAGE_URI_REQUEST,
        PollPolicy(
            pending_interval=settings.storage_pending_interval,
            unknown_interval=settings.storage_unknown_interval,
            max_attempts=settings.storage_max_attempts,
        ),
        cancel=cancel,
        sleep=sleep,
        logger=client.logger,
    )
    return StorageSession(_storage_uri(body, STAGE_STORAGE_URI_REQUEST), clock())


def renew_storage_session(
    client: GraphClient,
    app_id: str,
    content_version_id: str,
    file_id: str,
    settings: UploadSettings,
    *,
    cancel: threading.Event | None = None,
    sleep: Sleeper = interruptible_sleep,
    clock=time.monotonic,
) -> StorageSession:
    """Request a fresh SAS URI and wait for AzureStorageUriRenewalSuccess.

    Returns:
        A new StorageSession superseding the previous one.
    """
    client.logger.verbose("BLOB", "Renewing SAS URI")
    registrar.request_upload_renewal(
        client, app_id, content_version_id, file_id, cancel=cancel
    )
    body = poll_upload_state(
        lambda: registrar.get_file_entry(
            client, app_id, content_version_id, file_id, cancel=cancel
        ),
        STAGE_STORAGE_URI_RENEWAL,
        PollPolicy(
            pending_interval=settings.renewal_poll_interval,
            unknown_interval=settings.renewal_poll_interval,
            max_attempts=settings.renewal_max_attempts,
        ),
        cancel=cancel,
        sleep=sleep,
        logger=client.logger,
    )
    client.logger.verbose("BLOB", "Successfully renewed SAS URI")
    return StorageSession(_storage_uri(body, STAGE_STORAGE_URI_RENEWAL), clock())
