"""
Pytest configuration and shared fixtures for intunepush tests.

This module provides reusable fixtures and test utilities used across
the test suite.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any
import zipfile

import pytest
import requests
import yaml

from intunepush.auth import StaticTokenProvider
from intunepush.graph import AppDefinition, GraphClient
from intunepush.logging import SilentLogger, set_global_logger
from intunepush.settings import UploadSettings

GRAPH = "https://graph.microsoft.com/beta"
SAS_URI = "https://store.blob.core.windows.net/c/blob?sv=2024&sig=abc"


def detection_xml(
    *,
    file_name: str = "IntunePackage.intunewin",
    unencrypted_size: str = "1024",
    encryption_key: str = "a2V5",
    mac_key: str = "bWFj",
    iv: str = "aXY=",
    mac: str = "c2ln",
    digest: str = "ZGln",
    algorithm: str = "SHA256",
) -> str:
    """Build a detection.xml document like the Win32 content prep tool writes."""
    return f"""<?xml version="1.0" encoding="utf-8"?>
<ApplicationInfo xmlns:xsd="http://www.w3.org/2001/XMLSchema" ToolVersion="1.8.6.0">
  <Name>Invoke-AppDeployToolkit.exe</Name>
  <UnencryptedContentSize>{unencrypted_size}</UnencryptedContentSize>
  <FileName>{file_name}</FileName>
  <SetupFile>Invoke-AppDeployToolkit.exe</SetupFile>
  <EncryptionInfo>
    <EncryptionKey>{encryption_key}</EncryptionKey>
    <MacKey>{mac_key}</MacKey>
    <InitializationVector>{iv}</InitializationVector>
    <Mac>{mac}</Mac>
    <ProfileIdentifier>ProfileVersion1</ProfileIdentifier>
    <FileDigest>{digest}</FileDigest>
    <FileDigestAlgorithm>{algorithm}</FileDigestAlgorithm>
  </EncryptionInfo>
</ApplicationInfo>
"""


@pytest.fixture(autouse=True)
def silent_global_logger():
    """Keep library output out of test logs."""
    set_global_logger(SilentLogger())
    yield


@pytest.fixture
def tmp_test_dir(tmp_path: Path) -> Path:
    """
    Provide a temporary directory for test artifacts.

    Automatically cleaned up after test completion.
    """
    return tmp_path


@pytest.fixture
def make_intunewin(tmp_test_dir: Path):
    """
    Factory fixture for building fake .intunewin archives.

    Usage:
        path = make_intunewin(content=b"x" * 2048)
        path = make_intunewin(entries={"a.bin": b"..."}, manifest=None)
    """

    def _create(
        content: bytes = b"\x01" * 2048,
        *,
        name: str = "Package.intunewin",
        manifest: str | None = "",
        content_entry: str = "IntuneWinPackage/Contents/IntunePackage.intunewin",
        entries: dict[str, bytes] | None = None,
    ) -> Path:
        path = tmp_test_dir / name
        with zipfile.ZipFile(path, "w") as zf:
            if manifest is not None:
                zf.writestr(
                    "IntuneWinPackage/Metadata/Detection.xml",
                    manifest or detection_xml(unencrypted_size=str(len(content))),
                )
            if entries is None:
                zf.writestr(content_entry, content)
            else:
                for entry_name, data in entries.items():
                    zf.writestr(entry_name, data)
        return path

    return _create


@pytest.fixture
def fast_settings() -> UploadSettings:
    """Upload settings with every delay set to zero."""
    return UploadSettings(
        storage_pending_interval=0,
        storage_unknown_interval=0,
        stage_pending_interval=0,
        stage_unknown_interval=0,
        renewal_poll_interval=0,
        chunk_backoff_base=0,
        commit_backoff_factor=0,
    )


@pytest.fixture
def graph_client() -> GraphClient:
    """GraphClient with a static token and a plain requests session."""
    return GraphClient(
        StaticTokenProvider("test-token"),
        session=requests.Session(),
        logger=SilentLogger(),
    )


@pytest.fixture
def sample_app() -> AppDefinition:
    """Minimal app definition."""
    return AppDefinition(
        name="Chrome",
        publisher="Google",
        version="131.0.6778.86",
        install_command="Invoke-AppDeployToolkit.exe -DeploymentType Install",
        uninstall_command="Invoke-AppDeployToolkit.exe -DeploymentType Uninstall",
    )


@pytest.fixture
def sample_app_config() -> dict[str, Any]:
    """
    Provide sample app definition data.

    Returns a complete app definition structure for testing.
    """
    return {
        "app": {
            "name": "Chrome",
            "publisher": "Google",
            "version": "131.0.6778.86",
            "install_command": "Invoke-AppDeployToolkit.exe -DeploymentType Install",
            "uninstall_command": "Invoke-AppDeployToolkit.exe -DeploymentType Uninstall",
            "detection": [
                {
                    "type": "registry",
                    "path": "HKEY_LOCAL_MACHINE\\SOFTWARE\\Google\\Chrome",
                    "name": "Version",
                    "detection_type": "version",
                    "operator": "greater than or equal to",
                    "value": "131.0.6778.86",
                }
            ],
        },
        "upload": {"renewal_threshold": 300},
    }


@pytest.fixture
def create_yaml_file(tmp_test_dir: Path):
    """
    Factory fixture for creating temporary YAML files.

    Usage:
        yaml_path = create_yaml_file("test.yaml", {"key": "value"})
    """

    def _create(filename: str, data: dict[str, Any]) -> Path:
        path = tmp_test_dir / filename
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as f:
            yaml.dump(data, f)
        return path

    return _create
