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

"""Exception hierarchy for intunepush.

This module defines a custom exception hierarchy that allows library users
to distinguish between different types of errors. All exceptions inherit from
IntunePushError, allowing users to catch all intunepush errors with a single
except clause if needed.

Every exception class carries an ErrorKind. Retry loops and callers look at
the kind ("is another attempt still possible?") instead of inspecting the
concrete exception type:

- VALIDATION: bad input detected before any network I/O. Never retried.
- TRANSIENT: flaky network, 5xx, 408, 429. Retried with bounded backoff.
- PERMANENT: a clean rejection from the server (other 4xx, failed states).
- PROTOCOL: the server answered, but not in a way the client understands.
- TIMEOUT: a whole stage ran out of time. Remote objects may already exist.
- CANCELLED: the caller asked the pipeline to stop.

Example:
    Catching specific error types:
        ```python
        from intunepush.core import upload_package
        from intunepush.exceptions import PipelineError, RegistryRequestError

        try:
            result = upload_package(Path("MyApp.intunewin"), app, client=client)
        except PipelineError as e:
            print(f"Upload failed during {e.stage}: {e}")
            if isinstance(e.cause, RegistryRequestError):
                print(e.cause.body)
        ```

    Catching all intunepush errors:
        ```python
        from intunepush.exceptions import IntunePushError

        try:
            result = upload_package(Path("MyApp.intunewin"), app, client=client)
        except IntunePushError as e:
            print(f"intunepush error: {e}")
        ```
"""

from __future__ import annotations

from enum import Enum

__all__ = [
    "ErrorKind",
    "IntunePushError",
    "ConfigError",
    "PackagingError",
    "ManifestNotFoundError",
    "EncryptionInfoMissingError",
    "ContentFileNotFoundError",
    "InvalidManifestError",
    "NetworkError",
    "RegistryRequestError",
    "ChunkUploadError",
    "BlockCommitError",
    "ProtocolError",
    "UnknownStateError",
    "StageError",
    "StageFailedError",
    "StageTimedOutError",
    "UploadCancelledError",
    "PipelineError",
]


class ErrorKind(str, Enum):
    """Classification used to decide between "abort now" and "retry"."""

    VALIDATION = "validation"
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    PROTOCOL = "protocol"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"

    @property
    def retryable(self) -> bool:
        return self is ErrorKind.TRANSIENT


class IntunePushError(Exception):
    """Base exception for all intunepush errors.

    All intunepush-specific exceptions inherit from this class, allowing users
    to catch all intunepush errors with a single except clause if needed.
    """

    kind: ErrorKind = ErrorKind.PERMANENT


class ConfigError(IntunePushError):
    """Raised for configuration-related errors.

    This exception is raised when there are problems with:

    - YAML parse errors in app definition or defaults files
    - Missing required app fields (name, publisher, install command, ...)
    - Unknown upload settings or invalid setting values
    - Missing credentials (tenant, client id, client secret)

    Example:
        Catching configuration errors:
            ```python
            from intunepush.exceptions import ConfigError

            try:
                config = load_effective_config(Path("apps/chrome.yaml"))
            except ConfigError as e:
                print(f"Config error: {e}")
            ```
    """

    kind = ErrorKind.VALIDATION


class PackagingError(IntunePushError):
    """Raised for problems with the local .intunewin package.

    This exception is raised when there are problems with:

    - Opening the package (missing file, not a zip container)
    - Locating or parsing the embedded detection.xml manifest
    - Locating the encrypted content entry
    - Planning chunks for a payload that is too large to address
    """

    kind = ErrorKind.VALIDATION


class ManifestNotFoundError(PackagingError):
    """The archive has no detection.xml entry."""


class EncryptionInfoMissingError(PackagingError):
    """The manifest has no ApplicationInfo root or no EncryptionInfo child."""


class ContentFileNotFoundError(PackagingError):
    """No archive entry matched any of the content file heuristics."""


class InvalidManifestError(PackagingError):
    """The manifest could not be parsed or has an empty encryption key."""


class NetworkError(IntunePushError):
    """Raised for network-related errors.

    This exception is raised when there are problems with:

    - Connection failures and timeouts talking to Graph or Azure Storage
    - Token acquisition failures
    - Exhausted retry budgets for chunk uploads and block list commits
    """

    kind = ErrorKind.TRANSIENT


class RegistryRequestError(NetworkError):
    """A Graph call returned a non-success HTTP status.

    Attributes:
        status: HTTP status code returned by Graph.
        body: Response body text (may be empty).
    """

    kind = ErrorKind.PERMANENT

    def __init__(self, message: str, status: int, body: str = "") -> None:
        super().__init__(f"{message}. Status: {status}, Response: {body}")
        self.status = status
        self.body = body


class ChunkUploadError(NetworkError):
    """A block could not be uploaded within its retry budget.

    Attributes:
        chunk_index: Zero-based index of the failed chunk.
        status: Last HTTP status seen, or None if the last attempt raised.
    """

    def __init__(
        self,
        message: str,
        chunk_index: int,
        status: int | None,
        kind: ErrorKind = ErrorKind.TRANSIENT,
    ) -> None:
        super().__init__(message)
        self.chunk_index = chunk_index
        self.status = status
        self.kind = kind


class BlockCommitError(NetworkError):
    """The block list could not be committed within its retry budget."""


class ProtocolError(IntunePushError):
    """The server answered in a way that breaks the upload protocol.

    Used for success states that lack the expected payload field and for
    create calls whose response has no id. Kept apart from NetworkError so
    callers can tell "the server is misbehaving" from "the network is flaky".
    """

    kind = ErrorKind.PROTOCOL


class UnknownStateError(ProtocolError):
    """An unrecognized uploadState persisted past the polling budget.

    Attributes:
        stage: Stage being waited on (e.g., "CommitFile").
        state: Last uploadState string observed.
    """

    def __init__(self, message: str, stage: str, state: str | None) -> None:
        super().__init__(message)
        self.stage = stage
        self.state = state


class StageError(IntunePushError):
    """Base class for server-reported stage outcomes.

    Attributes:
        stage: Stage being waited on (e.g., "AzureStorageUriRequest").
        state: Last uploadState string observed, if any.
    """

    def __init__(self, message: str, stage: str, state: str | None = None) -> None:
        super().__init__(message)
        self.stage = stage
        self.state = state


class StageFailedError(StageError):
    """The server reported {stage}Failed."""


class StageTimedOutError(StageError):
    """The server reported {stage}TimedOut, or polling ran out of attempts.

    By the time this is raised the application and content version already
    exist in Intune and may need manual inspection in the admin center.
    """

    kind = ErrorKind.TIMEOUT


class UploadCancelledError(IntunePushError):
    """The caller signalled cancellation."""

    kind = ErrorKind.CANCELLED


class PipelineError(IntunePushError):
    """Wraps any failure raised inside the upload pipeline.

    Attributes:
        stage: Name of the pipeline stage that failed (e.g., "upload_chunks").
        cause: The original exception. Also available as __cause__.
        app_id: Intune app id if the app had already been created, else None.
    """

    def __init__(
        self, stage: str, cause: BaseException, app_id: str | None = None
    ) -> None:
        super().__init__(f"Upload failed at stage '{stage}': {cause}")
        self.stage = stage
        self.cause = cause
        self.app_id = app_id
        self.kind = getattr(cause, "kind", ErrorKind.PERMANENT)
