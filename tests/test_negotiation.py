"""
Tests for intunepush.upload.negotiation module.

Tests storage session negotiation including:
- Waiting for the SAS URI
- Failure and unknown states
- SAS renewal
- Block URL construction
"""

from __future__ import annotations

from urllib.parse import parse_qs, urlsplit

from conftest import GRAPH, SAS_URI
import pytest
import requests_mock

from intunepush.exceptions import ProtocolError, StageFailedError, UnknownStateError
from intunepush.upload.negotiation import (
    StorageSession,
    await_storage_uri,
    renew_storage_session,
)

pytestmark = pytest.mark.unit

FILE_URL = (
    f"{GRAPH}/deviceAppManagement/mobileApps/app-1/microsoft.graph.win32LobApp"
    "/contentVersions/1/files/file-1"
)


class TestStorageSession:
    """Tests for StorageSession URL helpers."""

    def test_block_url_escapes_block_id(self):
        """Test base64 block ids are URL encoded and keep the SAS query."""
        session = StorageSession(SAS_URI, issued_at=0.0)

        url = session.block_url("MDAwMA==")

        query = parse_qs(urlsplit(url).query)
        assert url.startswith(SAS_URI + "&comp=block&blockid=")
        assert "MDAwMA%3D%3D" in url
        assert query["blockid"] == ["MDAwMA=="]
        assert query["sig"] == ["abc"]

    def test_block_list_url(self):
        """Test the block list URL appends comp=blocklist."""
        session = StorageSession(SAS_URI, issued_at=0.0)

        assert session.block_list_url() == SAS_URI + "&comp=blocklist"


class TestAwaitStorageUri:
    """Tests for await_storage_uri."""

    def test_success_on_second_poll(self, graph_client, fast_settings):
        """Test the SAS URI is returned once the request succeeds."""
        with requests_mock.Mocker() as m:
            m.get(
                FILE_URL,
                [
                    {"json": {"uploadState": "azureStorageUriRequestPending"}},
                    {
                        "json": {
                            "uploadState": "azureStorageUriRequestSuccess",
                            "azureStorageUri": SAS_URI,
                        }
                    },
                ],
            )
            session = await_storage_uri(
                graph_client, "app-1", "1", "file-1", fast_settings, clock=lambda: 42.0
            )

        assert session == StorageSession(SAS_URI, issued_at=42.0)
        assert m.call_count == 2

    def test_failed_state_aborts(self, graph_client, fast_settings):
        """Test AzureStorageUriRequestFailed aborts without retry."""
        with requests_mock.Mocker() as m:
            m.get(FILE_URL, json={"uploadState": "azureStorageUriRequestFailed"})
            with pytest.raises(StageFailedError) as exc_info:
                await_storage_uri(graph_client, "app-1", "1", "file-1", fast_settings)

        assert exc_info.value.stage == "AzureStorageUriRequest"
        assert m.call_count == 1

    def test_unknown_state_exhausts_attempts(self, graph_client, fast_settings):
        """Test an unknown state polls exactly storage_max_attempts times."""
        settings = fast_settings.with_overrides(storage_max_attempts=5)
        with requests_mock.Mocker() as m:
            m.get(FILE_URL, json={"uploadState": "brandNewState"})
            with pytest.raises(UnknownStateError):
                await_storage_uri(graph_client, "app-1", "1", "file-1", settings)

        assert m.call_count == 5

    def test_success_without_uri_is_protocol_error(self, graph_client, fast_settings):
        """Test a success state without azureStorageUri is rejected."""
        with requests_mock.Mocker() as m:
            m.get(FILE_URL, json={"uploadState": "azureStorageUriRequestSuccess"})
            with pytest.raises(ProtocolError, match="azureStorageUri"):
                await_storage_uri(graph_client, "app-1", "1", "file-1", fast_settings)


class TestRenewStorageSession:
    """Tests for renew_storage_session."""

    def test_renewal_returns_new_session(self, graph_client, fast_settings):
        """Test renewal posts renewUpload and waits for the renewal state."""
        new_uri = SAS_URI.replace("sig=abc", "sig=def")
        with requests_mock.Mocker() as m:
            renew = m.post(f"{FILE_URL}/renewUpload", status_code=204)
            m.get(
                FILE_URL,
                [
                    {"json": {"uploadState": "azureStorageUriRenewalPending"}},
                    {
                        "json": {
                            "uploadState": "azureStorageUriRenewalSuccess",
                            "azureStorageUri": new_uri,
                        }
                    },
                ],
            )
            session = renew_storage_session(
                graph_client, "app-1", "1", "file-1", fast_settings, clock=lambda: 7.0
            )

        assert renew.call_count == 1
        assert session.sas_uri == new_uri
        assert session.issued_at == 7.0

    def test_renewal_failure_raises(self, graph_client, fast_settings):
        """Test a failed renewal state raises StageFailedError."""
        with requests_mock.Mocker() as m:
            m.post(f"{FILE_URL}/renewUpload", status_code=204)
            m.get(FILE_URL, json={"uploadState": "azureStorageUriRenewalFailed"})
            with pytest.raises(StageFailedError) as exc_info:
                renew_storage_session(graph_client, "app-1", "1", "file-1", fast_settings)

        assert exc_info.value.stage == "AzureStorageUriRenewal"
