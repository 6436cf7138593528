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

"""Upload timing and retry settings.

All the knobs that control polling, retries, chunking and SAS renewal live in
one frozen dataclass so they can be overridden from the ``upload:`` section
of an app definition file, or replaced wholesale in tests.

Example:
    Override from a config mapping:
        ```python
        from intunepush.settings import UploadSettings

        settings = UploadSettings.from_mapping(
            {"renewal_threshold": 300, "renewal_failure": "abort"}
        )
        ```
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Any, Literal

from intunepush.exceptions import ConfigError

MiB = 1024 * 1024
GiB = 1024 * MiB

RenewalFailurePolicy = Literal["continue", "abort"]


@dataclass(frozen=True)
class UploadSettings:
    """Timing, retry and chunking settings for one upload.

    Attributes:
        graph_base_url: Graph endpoint root (beta is required for win32LobApp).
        request_timeout: Timeout in seconds for Graph calls.
        storage_pending_interval: Seconds between polls while the storage
            URI request is pending.
        storage_unknown_interval: Seconds between polls after an
            unrecognized state during storage URI negotiation.
        storage_max_attempts: Poll ceiling for storage URI negotiation.
        stage_pending_interval: Seconds between polls while a processing
            stage (e.g., CommitFile) is pending.
        stage_unknown_interval: Seconds between polls after an unrecognized
            state while waiting on a processing stage.
        stage_max_attempts: Poll ceiling for processing stages.
        renewal_poll_interval: Seconds between polls after a SAS renewal
            request.
        renewal_max_attempts: Poll ceiling for SAS renewal.
        renewal_threshold: Seconds a SAS URI is used before it is renewed.
        renewal_failure: "continue" keeps uploading with the stale URI when
            renewal fails; "abort" raises.
        large_file_threshold: Files larger than this use the small chunk size.
        small_chunk_size: Chunk size for files over large_file_threshold.
        default_chunk_size: Chunk size for all other files.
        chunk_max_attempts: Attempts per chunk before giving up.
        chunk_backoff_base: Base of the exponential chunk backoff (seconds).
        chunk_timeout_minutes: Base read timeout per chunk attempt; the
            one-based attempt number is added to it (6, 7, ... minutes).
        final_chunk_timeout_minutes: Read timeout for the last chunk.
        commit_max_attempts: Attempts for the block list commit.
        commit_backoff_factor: Multiplier for the block list backoff.
        commit_timeout_minutes: Read timeout for the block list commit.
        connect_timeout: Connect timeout in seconds for storage requests.
        app_category: Display name of the Intune app category assigned to
            newly created apps. Empty skips the assignment.
    """

    graph_base_url: str = "https://graph.microsoft.com/beta"
    request_timeout: float = 60.0

    storage_pending_interval: float = 10.0
    storage_unknown_interval: float = 15.0
    storage_max_attempts: int = 120

    stage_pending_interval: float = 5.0
    stage_unknown_interval: float = 10.0
    stage_max_attempts: int = 120

    renewal_poll_interval: float = 10.0
    renewal_max_attempts: int = 30
    renewal_threshold: float = 420.0
    renewal_failure: RenewalFailurePolicy = "continue"

    large_file_threshold: int = 5 * GiB
    small_chunk_size: int = 4 * MiB
    default_chunk_size: int = 6 * MiB
    chunk_max_attempts: int = 5
    chunk_backoff_base: float = 2.0
    chunk_timeout_minutes: float = 5.0
    final_chunk_timeout_minutes: float = 15.0

    commit_max_attempts: int = 5
    commit_backoff_factor: float = 2.0
    commit_timeout_minutes: float = 10.0
    connect_timeout: float = 30.0

    app_category: str = "Test"

    def __post_init__(self) -> None:
        if self.renewal_failure not in ("continue", "abort"):
            raise ConfigError(
                f"renewal_failure must be 'continue' or 'abort', "
                f"got {self.renewal_failure!r}"
            )
        for name in (
            "storage_max_attempts",
            "stage_max_attempts",
            "renewal_max_attempts",
            "chunk_max_attempts",
            "commit_max_attempts",
        ):
            if getattr(self, name) < 1:
                raise ConfigError(f"{name} must be at least 1")
        if self.small_chunk_size <= 0 or self.default_chunk_size <= 0:
            raise ConfigError("chunk sizes must be positive")

    @classmethod
    def from_mapping(cls, data: dict[str, Any] | None) -> UploadSettings:
        """Build settings from a config mapping, keeping defaults for the rest.

        Args:
            data: Mapping of setting name to value (e.g., the ``upload:``
                section of an app definition). None yields the defaults.

        Returns:
            A new UploadSettings instance.

        Raises:
            ConfigError: If an unknown key is present or a value is invalid.
        """
        if not data:
            return cls()
        if not isinstance(data, dict):
            raise ConfigError("upload settings must be a mapping")

        known = {f.name: f for f in fields(cls)}
        unknown = sorted(set(data) - set(known))
        if unknown:
            raise ConfigError(f"Unknown upload setting(s): {', '.join(unknown)}")

        values: dict[str, Any] = {}
        for key, raw in data.items():
            default = getattr(cls, key)
            try:
                if isinstance(default, bool) or isinstance(default, str):
                    values[key] = raw
                elif isinstance(default, int):
                    values[key] = int(raw)
                else:
                    values[key] = float(raw)
            except (TypeError, ValueError) as err:
                raise ConfigError(f"Invalid value for {key}: {raw!r}") from err
        return cls(**values)

    def with_overrides(self, **changes: Any) -> UploadSettings:
        """Return a copy with some settings replaced."""
        return replace(self, **changes)

    def chunk_size_for(self, total_size: int) -> int:
        """Pick the chunk size for a payload of total_size bytes."""
        if total_size > self.large_file_threshold:
            return self.small_chunk_size
        return self.default_chunk_size
