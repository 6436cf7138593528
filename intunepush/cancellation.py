"""Cooperative cancellation for upload pipelines.

A pipeline is cancelled by setting a ``threading.Event``. Long waits use
``Event.wait`` instead of ``time.sleep`` so that a cancellation request wakes
them up immediately.
"""

from __future__ import annotations

import threading
import time

from intunepush.exceptions import UploadCancelledError


def check_cancelled(cancel: threading.Event | None, before: str) -> None:
    """Raise UploadCancelledError if cancellation was requested.

    Args:
        cancel: Cancellation event, or None when the pipeline is not cancellable.
        before: Short description of the action about to run, for the message.
    """
    if cancel is not None and cancel.is_set():
        raise UploadCancelledError(f"Upload cancelled before {before}")


def interruptible_sleep(seconds: float, cancel: threading.Event | None = None) -> None:
    """Sleep for seconds, waking early and raising if cancel is set."""
    if seconds <= 0:
        check_cancelled(cancel, "continuing")
        return
    if cancel is None:
        time.sleep(seconds)
        return
    if cancel.wait(seconds):
        raise UploadCancelledError("Upload cancelled while waiting")
