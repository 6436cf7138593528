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

"""Chunked Azure block blob upload with retries and SAS renewal.

The encrypted payload is sent as a sequence of Put Block requests against the
SAS URI handed out by Intune, followed by a single Put Block List that
assembles the blob in order.

Retry Behavior:

- Each chunk gets up to chunk_max_attempts attempts.
- 4xx responses other than 408 and 429 abort at once (the SAS URI is wrong
  or expired, retrying will not help).
- 5xx, 408, 429, connection errors and timeouts are retried after
  ``base**n * (1 + random())`` seconds.
- Every attempt is a fresh ``requests.put``. No pooled connection is reused
  after a failure.

SAS Renewal:

A SAS URI is only valid for a limited time. Before each chunk except the last,
if the current URI was issued more than renewal_threshold seconds ago the renew callback
is called and the returned session replaces the current one. When renewal
fails the upload either continues with the old URI (renewal_failure =
"continue") or stops (renewal_failure = "abort").

Example:
    ```python
    uploader = BlobUploader(settings, renew=lambda: renew_storage_session(...))
    session = uploader.upload(session, Path("/tmp/x/IntunePackage.intunewin"))
    ```
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
import random
import threading
import time

import requests

from intunepush.cancellation import check_cancelled, interruptible_sleep
from intunepush.exceptions import (
    BlockCommitError,
    ChunkUploadError,
    IntunePushError,
    UploadCancelledError,
)
from intunepush.logging import Logger, get_global_logger
from intunepush.settings import UploadSettings
from intunepush.upload.chunks import build_block_list_xml, plan_chunks, read_chunk
from intunepush.upload.negotiation import StorageSession
from intunepush.upload.polling import Sleeper
from intunepush.upload.retry import (
    classify_exception,
    classify_status,
    fixed_backoff,
    jittered_backoff,
)

BLOCK_BLOB_HEADERS = {"x-ms-blob-type": "BlockBlob"}

Renewer = Callable[[], StorageSession]
ChunkCallback = Callable[[int, int], None]


class BlobUploader:
    """Uploads one encrypted payload to an Azure block blob.

    Args:
        settings: Chunk sizes, retry budgets, timeouts and renewal policy.
        renew: Returns a fresh StorageSession. None disables renewal.
        cancel: Optional cancellation event, checked before every attempt.
        sleep: Sleep function (seconds, cancel). Injected in tests.
        clock: Monotonic clock used for the renewal stopwatch; must match the
            clock that stamped StorageSession.issued_at.
        rand: Source of jitter in [0, 1).
        logger: Logger for progress output. Defaults to the global logger.
        on_chunk: Called with (chunks_done, total_chunks) after each chunk.
    """

    def __init__(
        self,
        settings: UploadSettings,
        *,
        renew: Renewer | None = None,
        cancel: threading.Event | None = None,
        sleep: Sleeper = interruptible_sleep,
        clock: Callable[[], float] = time.monotonic,
        rand: Callable[[], float] = random.random,
        logger: Logger | None = None,
        on_chunk: ChunkCallback | None = None,
    ) -> None:
        self.settings = settings
        self._renew = renew
        self._cancel = cancel
        self._sleep = sleep
        self._clock = clock
        self._rand = rand
        self._logger = logger if logger is not None else get_global_logger()
        self._on_chunk = on_chunk
        self.block_ids: list[str] = []

    def upload(self, session: StorageSession, encrypted_file: Path) -> StorageSession:
        """Upload encrypted_file block by block and commit the block list.

        Args:
            session: Storage session from negotiation.
            encrypted_file: Path of the encrypted payload.

        Returns:
            The session in use at the end (a renewed one if renewal happened).

        Raises:
            ChunkUploadError: A chunk failed permanently or ran out of attempts.
            BlockCommitError: The block list could not be committed.
            PackagingError: The payload needs more than 10,000 blocks.
            UploadCancelledError: cancel was set.
        """
        total_size = encrypted_file.stat().st_size
        chunk_size = self.settings.chunk_size_for(total_size)
        chunks = plan_chunks(total_size, chunk_size)
        self.block_ids = [chunk.block_id for chunk in chunks]
        total = len(chunks)

        self._logger.verbose(
            "BLOB",
            f"Uploading {total_size:,} bytes in {total} chunk(s) of {chunk_size:,} bytes",
        )

        renew = self._renew
        started = session.issued_at
        with encrypted_file.open("rb") as f:
            for chunk in chunks:
                is_last = chunk.index == total - 1
                if (
                    not is_last
                    and renew is not None
                    and self._clock() - started > self.settings.renewal_threshold
                ):
                    renewed = self._try_renew(renew, session)
                    if renewed is session:
                        started = self._clock()
                    else:
                        session = renewed
                        started = session.issued_at

                data = read_chunk(f, chunk)
                self.upload_chunk(
                    session.block_url(chunk.block_id), data, chunk.index, total
                )
                self._logger.debug(
                    "BLOB", f"Uploaded chunk {chunk.index + 1}/{total} ({chunk.sequence_id})"
                )
                if self._on_chunk is not None:
                    self._on_chunk(chunk.index + 1, total)

        self.commit_block_list(session, self.block_ids)
        return session

    def _try_renew(self, renew: Renewer, session: StorageSession) -> StorageSession:
        try:
            return renew()
        except UploadCancelledError:
            raise
        except IntunePushError as err:
            if self.settings.renewal_failure == "abort":
                raise
            self._logger.warning(
                "BLOB", f"Failed to renew SAS URI, continuing with current URI: {err}"
            )
            return session

    def _read_timeout(self, attempt: int, is_last: bool) -> float:
        if is_last:
            return self.settings.final_chunk_timeout_minutes * 60
        return (self.settings.chunk_timeout_minutes + attempt + 1) * 60

    def upload_chunk(self, url: str, data: bytes, chunk_index: int, total: int) -> None:
        """PUT one block, retrying transient failures.

        Args:
            url: Block URL (SAS URI plus comp=block&blockid=...).
            data: Block contents.
            chunk_index: Zero-based chunk index, for messages.
            total: Total number of chunks.

        Raises:
            ChunkUploadError: On a permanent status or when attempts run out.
            UploadCancelledError: cancel was set.
        """
        max_attempts = self.settings.chunk_max_attempts
        is_last = chunk_index == total - 1
        status: int | None = None
        reason = ""

        for attempt in range(max_attempts):
            check_cancelled(self._cancel, f"uploading chunk {chunk_index}")
            timeout = (self.settings.connect_timeout, self._read_timeout(attempt, is_last))
            try:
                response = requests.put(
                    url, data=data, headers=BLOCK_BLOB_HEADERS, timeout=timeout
                )
            except requests.RequestException as err:
                status = None
                reason = str(err)
                kind = classify_exception(err)
            else:
                if response.ok:
                    return
                status = response.status_code
                reason = response.text
                kind = classify_status(status)

            if not kind.retryable:
                raise ChunkUploadError(
                    f"Failed to upload chunk {chunk_index}. Status: {status}, "
                    f"Response: {reason}",
                    chunk_index=chunk_index,
                    status=status,
                    kind=kind,
                )
            if attempt + 1 < max_attempts:
                delay = jittered_backoff(
                    attempt + 1, self.settings.chunk_backoff_base, self._rand
                )
                self._logger.verbose(
                    "BLOB",
                    f"Chunk {chunk_index} attempt {attempt + 1}/{max_attempts} failed "
                    f"({status or reason}); retrying in {delay:.1f}s",
                )
                self._sleep(delay, self._cancel)

        raise ChunkUploadError(
            f"Failed to upload chunk {chunk_index} after {max_attempts} attempts. "
            f"Last status: {status}, Response: {reason}",
            chunk_index=chunk_index,
            status=status,
        )

    def commit_block_list(self, session: StorageSession, block_ids: list[str]) -> None:
        """PUT the block list so Azure assembles the blob in order.

        Raises:
            BlockCommitError: On a permanent status or when attempts run out.
            UploadCancelledError: cancel was set.
        """
        body = build_block_list_xml(block_ids).encode("utf-8")
        url = session.block_list_url()
        max_attempts = self.settings.commit_max_attempts
        timeout = (self.settings.connect_timeout, self.settings.commit_timeout_minutes * 60)
        status: int | None = None
        reason = ""

        for attempt in range(max_attempts):
            check_cancelled(self._cancel, "committing block list")
            try:
                response = requests.put(url, data=body, timeout=timeout)
            except requests.RequestException as err:
                status = None
                reason = str(err)
                kind = classify_exception(err)
            else:
                if response.ok:
                    self._logger.verbose("BLOB", f"Committed {len(block_ids)} block(s)")
                    return
                status = response.status_code
                reason = response.text
                kind = classify_status(status)

            if not kind.retryable:
                break
            if attempt + 1 < max_attempts:
                delay = fixed_backoff(attempt + 1, self.settings.commit_backoff_factor)
                self._logger.verbose(
                    "BLOB",
                    f"Block list commit attempt {attempt + 1}/{max_attempts} failed "
                    f"({status or reason}); retrying in {delay:.1f}s",
                )
                self._sleep(delay, self._cancel)

        raise BlockCommitError(
            f"Failed to commit block list. Status: {status}, Response: {reason}"
        )
