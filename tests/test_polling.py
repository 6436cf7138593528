"""
Tests for intunepush.upload.polling and intunepush.upload.processing modules.

Tests the uploadState state machine including:
- Pure transition decisions for every state class
- Attempt ceilings for pending and unrecognized states
- Transient read errors treated as pending
- Cancellation between polls
"""

from __future__ import annotations

import threading

from conftest import GRAPH
import pytest
import requests
import requests_mock

from intunepush.exceptions import (
    NetworkError,
    RegistryRequestError,
    StageFailedError,
    StageTimedOutError,
    UnknownStateError,
    UploadCancelledError,
)
from intunepush.logging import SilentLogger
from intunepush.upload.polling import (
    STAGE_COMMIT_FILE,
    PollPolicy,
    PollState,
    next_poll_decision,
    poll_upload_state,
)
from intunepush.upload.processing import await_stage

pytestmark = pytest.mark.unit

POLICY = PollPolicy(pending_interval=5, unknown_interval=10, max_attempts=4)
FILE_URL = (
    f"{GRAPH}/deviceAppManagement/mobileApps/app-1/microsoft.graph.win32LobApp"
    "/contentVersions/1/files/file-1"
)


def _no_sleep(seconds, cancel=None):
    pass


class _Feed:
    """Returns a scripted sequence of file entry bodies."""

    def __init__(self, *states):
        self.states = list(states)
        self.calls = 0

    def __call__(self):
        state = self.states[min(self.calls, len(self.states) - 1)]
        self.calls += 1
        if isinstance(state, Exception):
            raise state
        return {} if state is None else {"uploadState": state}


class TestNextPollDecision:
    """Tests for the pure transition function."""

    def test_success(self):
        """Test {stage}Success is terminal success."""
        decision = next_poll_decision("CommitFile", "commitFileSuccess", 0, POLICY)

        assert decision.state is PollState.SUCCEEDED
        assert decision.terminal

    def test_matching_is_case_insensitive(self):
        """Test state strings match regardless of case."""
        decision = next_poll_decision("CommitFile", "COMMITFILEFAILED", 0, POLICY)

        assert decision.state is PollState.FAILED

    def test_server_timeout(self):
        """Test {stage}TimedOut is a server-reported timeout."""
        decision = next_poll_decision("CommitFile", "commitFileTimedOut", 0, POLICY)

        assert decision.state is PollState.TIMED_OUT
        assert decision.server_reported

    def test_pending_polls_at_pending_interval(self):
        """Test pending states wait the pending interval."""
        decision = next_poll_decision("CommitFile", "commitFilePending", 0, POLICY)

        assert decision.state is PollState.POLLING
        assert decision.delay == 5

    def test_missing_state_counts_as_pending(self):
        """Test an unreadable state behaves like pending."""
        decision = next_poll_decision("CommitFile", None, 1, POLICY)

        assert decision.state is PollState.POLLING
        assert decision.delay == 5

    def test_unknown_polls_at_unknown_interval(self):
        """Test unrecognized states wait the slower interval."""
        decision = next_poll_decision("CommitFile", "somethingNew", 0, POLICY)

        assert decision.state is PollState.POLLING
        assert decision.delay == 10

    def test_pending_at_ceiling_times_out(self):
        """Test pending on the last attempt ends as a client-side timeout."""
        decision = next_poll_decision("CommitFile", "commitFilePending", 3, POLICY)

        assert decision.state is PollState.TIMED_OUT
        assert not decision.server_reported

    def test_unknown_at_ceiling(self):
        """Test an unrecognized state on the last attempt is UNKNOWN."""
        decision = next_poll_decision("CommitFile", "somethingNew", 3, POLICY)

        assert decision.state is PollState.UNKNOWN

    def test_other_stage_states_are_unrecognized(self):
        """Test states of another stage are not mistaken for this stage."""
        decision = next_poll_decision(
            "CommitFile", "azureStorageUriRequestSuccess", 0, POLICY
        )

        assert decision.state is PollState.POLLING
        assert decision.delay == 10


class TestPollUploadState:
    """Tests for the polling driver."""

    def test_returns_body_on_success(self):
        """Test polling stops at the first success and returns that body."""
        feed = _Feed("commitFilePending", "commitFilePending", "commitFileSuccess")
        delays = []

        body = poll_upload_state(
            feed, STAGE_COMMIT_FILE, POLICY,
            sleep=lambda s, c: delays.append(s), logger=SilentLogger(),
        )

        assert body == {"uploadState": "commitFileSuccess"}
        assert feed.calls == 3
        assert delays == [5, 5]

    def test_failed_raises(self):
        """Test a failed state raises immediately."""
        feed = _Feed("commitFileFailed")

        with pytest.raises(StageFailedError) as exc_info:
            poll_upload_state(feed, STAGE_COMMIT_FILE, POLICY, sleep=_no_sleep)

        assert exc_info.value.stage == "CommitFile"
        assert exc_info.value.state == "commitFileFailed"
        assert feed.calls == 1

    def test_unknown_state_stops_at_ceiling(self):
        """Test a persistent unknown state polls exactly max_attempts times."""
        feed = _Feed("mysteryState")

        with pytest.raises(UnknownStateError) as exc_info:
            poll_upload_state(feed, STAGE_COMMIT_FILE, POLICY, sleep=_no_sleep)

        assert feed.calls == 4
        assert exc_info.value.state == "mysteryState"

    def test_pending_stops_at_ceiling(self):
        """Test a persistent pending state times out with a manual-check hint."""
        feed = _Feed("commitFilePending")

        with pytest.raises(StageTimedOutError, match="admin center"):
            poll_upload_state(feed, STAGE_COMMIT_FILE, POLICY, sleep=_no_sleep)

        assert feed.calls == 4

    def test_transient_read_errors_are_pending(self):
        """Test network errors while reading count as pending, not failure."""
        feed = _Feed(NetworkError("reset"), "commitFileSuccess")

        body = poll_upload_state(feed, STAGE_COMMIT_FILE, POLICY, sleep=_no_sleep)

        assert body["uploadState"] == "commitFileSuccess"
        assert feed.calls == 2

    def test_transient_errors_until_ceiling_time_out(self):
        """Test unreadable states up to the ceiling end in a timeout, not a crash."""
        feed = _Feed(NetworkError("reset"))
        sleeps = []

        with pytest.raises(StageTimedOutError):
            poll_upload_state(
                feed,
                STAGE_COMMIT_FILE,
                POLICY,
                sleep=lambda seconds, cancel=None: sleeps.append(seconds),
            )

        assert feed.calls == 4
        assert sleeps == [5, 5, 5]

    def test_single_attempt_policy_stops_after_one_poll(self):
        """Test a ceiling of one poll never sleeps."""
        feed = _Feed("commitFilePending")
        policy = PollPolicy(pending_interval=5, unknown_interval=10, max_attempts=1)
        sleeps = []

        with pytest.raises(StageTimedOutError):
            poll_upload_state(
                feed,
                STAGE_COMMIT_FILE,
                policy,
                sleep=lambda seconds, cancel=None: sleeps.append(seconds),
            )

        assert feed.calls == 1
        assert sleeps == []

    def test_registry_errors_propagate(self):
        """Test a clean non-2xx response is not retried."""
        feed = _Feed(RegistryRequestError("Failed to get file info", 404, ""))

        with pytest.raises(RegistryRequestError):
            poll_upload_state(feed, STAGE_COMMIT_FILE, POLICY, sleep=_no_sleep)

        assert feed.calls == 1

    def test_cancellation_before_poll(self):
        """Test a set cancel event stops polling before any request."""
        cancel = threading.Event()
        cancel.set()
        feed = _Feed("commitFilePending")

        with pytest.raises(UploadCancelledError):
            poll_upload_state(
                feed, STAGE_COMMIT_FILE, POLICY, cancel=cancel, sleep=_no_sleep
            )

        assert feed.calls == 0


class TestAwaitStage:
    """Tests for await_stage against a mocked Graph."""

    def test_commit_file_success_on_fourth_poll(self, graph_client, fast_settings):
        """Test waiting on CommitFile polls until success."""
        with requests_mock.Mocker() as m:
            m.get(
                FILE_URL,
                [
                    {"json": {"uploadState": "commitFilePending"}},
                    {"exc": requests.exceptions.ConnectTimeout},
                    {"json": {"uploadState": "commitFilePending"}},
                    {"json": {"uploadState": "commitFileSuccess"}},
                ],
            )
            body = await_stage(
                graph_client, "app-1", "1", "file-1", STAGE_COMMIT_FILE, fast_settings
            )

        assert body["uploadState"] == "commitFileSuccess"
        assert m.call_count == 4

    def test_stage_ceiling_from_settings(self, graph_client, fast_settings):
        """Test the stage ceiling comes from stage_max_attempts."""
        settings = fast_settings.with_overrides(stage_max_attempts=3)
        with requests_mock.Mocker() as m:
            m.get(FILE_URL, json={"uploadState": "weird"})
            with pytest.raises(UnknownStateError):
                await_stage(
                    graph_client, "app-1", "1", "file-1", STAGE_COMMIT_FILE, settings
                )

        assert m.call_count == 3
