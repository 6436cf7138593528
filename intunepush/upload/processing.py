"""Waiting for Intune to process a committed file."""

from __future__ import annotations

import threading
from typing import Any

from intunepush.cancellation import interruptible_sleep
from intunepush.graph import registrar
from intunepush.graph.client import GraphClient
from intunepush.settings import UploadSettings
from intunepush.upload.polling import PollPolicy, Sleeper, poll_upload_state


def stage_policy(settings: UploadSettings) -> PollPolicy:
    return PollPolicy(
        pending_interval=settings.stage_pending_interval,
        unknown_interval=settings.stage_unknown_interval,
        max_attempts=settings.stage_max_attempts,
    )


def await_stage(
    client: GraphClient,
    app_id: str,
    content_version_id: str,
    file_id: str,
    stage: str,
    settings: UploadSettings,
    *,
    cancel: threading.Event | None = None,
    sleep: Sleeper = interruptible_sleep,
) -> dict[str, Any]:
    """Block until the file entry reports {stage}Success.

    Polls every stage_pending_interval seconds while pending and every
    stage_unknown_interval seconds after unrecognized states, up to
    stage_max_attempts polls.

    Returns:
        The file entry body that reported success.

    Raises:
        StageFailedError, StageTimedOutError, UnknownStateError: see
            poll_upload_state.
    """
    client.logger.verbose("POLL", f"Waiting for file processing: {stage}")
    return poll_upload_state(
        lambda: registrar.get_file_entry(
            client, app_id, content_version_id, file_id, cancel=cancel
        ),
        stage,
        stage_policy(settings),
        cancel=cancel,
        sleep=sleep,
        logger=client.logger,
    )
