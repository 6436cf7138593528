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

"""Polling state machine for Intune file upload states.

Intune reports asynchronous progress through the ``uploadState`` field of a
content file entry. Each stage has four recognized states, matched
case-insensitively:

- ``{stage}Pending``: keep polling at the pending interval
- ``{stage}Success``: done
- ``{stage}Failed``: abort, no retry
- ``{stage}TimedOut``: abort, no retry

Anything else is "unrecognized". Unrecognized states are polled at a slower
interval until the attempt ceiling and only then reported as
UnknownStateError.

The decision logic is a pure function (next_poll_decision) so it can be
tested without sleeping or touching the network. poll_upload_state drives it.

Design Decisions:
    - A missing uploadState field and a transient transport error both count
      as "pending": the entry exists, we just could not read its state.
    - A clean non-2xx response from Graph is not retried here.
    - Pending at the final attempt ends as TIMED_OUT (client side), which is
      reported with a hint that the app may already exist in Intune.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
import threading
from typing import Any

from intunepush.cancellation import check_cancelled, interruptible_sleep
from intunepush.exceptions import (
    NetworkError,
    StageFailedError,
    StageTimedOutError,
    UnknownStateError,
)
from intunepush.logging import Logger, get_global_logger

STAGE_STORAGE_URI_REQUEST = "AzureStorageUriRequest"
STAGE_STORAGE_URI_RENEWAL = "AzureStorageUriRenewal"
STAGE_COMMIT_FILE = "CommitFile"


class PollState(Enum):
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class PollPolicy:
    """Intervals and ceiling for one polling loop.

    Attributes:
        pending_interval: Seconds to wait after a pending (or unreadable) state.
        unknown_interval: Seconds to wait after an unrecognized state.
        max_attempts: Total number of polls before giving up.
    """

    pending_interval: float
    unknown_interval: float
    max_attempts: int


@dataclass(frozen=True)
class PollDecision:
    """What to do after one observation.

    Attributes:
        state: Next state of the machine.
        delay: Seconds to wait before the next poll (POLLING only).
        server_reported: For TIMED_OUT, whether the server said so or the
            client ran out of attempts.
    """

    state: PollState
    delay: float = 0.0
    server_reported: bool = False

    @property
    def terminal(self) -> bool:
        return self.state is not PollState.POLLING


def next_poll_decision(
    stage: str, observed: str | None, attempt: int, policy: PollPolicy
) -> PollDecision:
    """Decide the next step from the last observed upload state.

    Args:
        stage: Stage prefix (e.g., "CommitFile").
        observed: uploadState string, or None if it could not be read.
        attempt: Zero-based index of the poll that produced observed.
        policy: Intervals and attempt ceiling.

    Returns:
        PollDecision. POLLING decisions carry the delay before the next poll.
    """
    last_attempt = attempt >= policy.max_attempts - 1
    state = (observed or "").strip().lower()
    prefix = stage.lower()

    if observed is not None and state == f"{prefix}success":
        return PollDecision(PollState.SUCCEEDED)
    if state == f"{prefix}failed":
        return PollDecision(PollState.FAILED)
    if state == f"{prefix}timedout":
        return PollDecision(PollState.TIMED_OUT, server_reported=True)

    if observed is None or state == f"{prefix}pending":
        if last_attempt:
            return PollDecision(PollState.TIMED_OUT)
        return PollDecision(PollState.POLLING, delay=policy.pending_interval)

    if last_attempt:
        return PollDecision(PollState.UNKNOWN)
    return PollDecision(PollState.POLLING, delay=policy.unknown_interval)


Sleeper = Callable[[float, "threading.Event | None"], None]


def poll_upload_state(
    fetch: Callable[[], dict[str, Any]],
    stage: str,
    policy: PollPolicy,
    *,
    cancel: threading.Event | None = None,
    sleep: Sleeper = interruptible_sleep,
    logger: Logger | None = None,
) -> dict[str, Any]:
    """Poll until the stage succeeds, fails, or the budget is exhausted.

    Args:
        fetch: Returns the current file entry (one Graph GET).
        stage: Stage prefix (e.g., "AzureStorageUriRequest").
        policy: Intervals and attempt ceiling.
        cancel: Optional cancellation event, checked before every poll.
        sleep: Sleep function (seconds, cancel). Injected in tests.
        logger: Logger for progress output. Defaults to the global logger.

    Returns:
        The file entry body from the poll that observed {stage}Success.

    Raises:
        StageFailedError: The server reported {stage}Failed.
        StageTimedOutError: The server reported {stage}TimedOut, or the stage
            was still pending after max_attempts polls.
        UnknownStateError: An unrecognized state was still reported at the
            final attempt.
        RegistryRequestError: Graph answered with a non-success status.
        UploadCancelledError: cancel was set.
    """
    if logger is None:
        logger = get_global_logger()

    observed: str | None = None
    attempt = 0
    while True:
        check_cancelled(cancel, f"polling {stage}")
        body: dict[str, Any] = {}
        try:
            body = fetch()
            raw = body.get("uploadState")
            observed = str(raw) if raw is not None else None
        except NetworkError as err:
            if not err.kind.retryable:
                raise
            logger.verbose("POLL", f"Transient error reading {stage} state: {err}")
            observed = None

        decision = next_poll_decision(stage, observed, attempt, policy)
        logger.debug(
            "POLL",
            f"Attempt {attempt + 1}/{policy.max_attempts}: uploadState = "
            f"{observed!r} -> {decision.state.value}",
        )

        if decision.state is PollState.SUCCEEDED:
            logger.verbose("POLL", f"{stage} completed after {attempt + 1} poll(s)")
            return body
        if decision.state is PollState.FAILED:
            raise StageFailedError(
                f"{stage} failed. State: {observed}", stage=stage, state=observed
            )
        if decision.state is PollState.TIMED_OUT:
            if decision.server_reported:
                message = f"{stage} timed out on the server. State: {observed}"
            else:
                message = (
                    f"Timeout waiting for {stage} after {policy.max_attempts} attempts. "
                    "The application was created in Intune and may still be "
                    "processing; check the Intune admin center."
                )
            raise StageTimedOutError(message, stage=stage, state=observed)
        if decision.state is PollState.UNKNOWN:
            raise UnknownStateError(
                f"Unknown upload state after {policy.max_attempts} attempts: "
                f"'{observed}'. Check Intune admin center for app status.",
                stage=stage,
                state=observed,
            )

        sleep(decision.delay, cancel)
        attempt += 1
