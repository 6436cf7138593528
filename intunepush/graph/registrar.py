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

"""Intune app registry calls.

Every function here is one Graph round-trip. None of them are idempotent:
calling create_application twice creates two apps, and a new content version
is created for every upload attempt so partial uploads are never mixed.

Endpoints (relative to the Graph beta root):

- POST  deviceAppManagement/mobileApps
- POST  .../mobileApps/{app}/microsoft.graph.win32LobApp/contentVersions
- POST  .../contentVersions/{cv}/files
- GET   .../contentVersions/{cv}/files/{file}
- POST  .../files/{file}/commit
- POST  .../files/{file}/renewUpload
- GET   deviceAppManagement/mobileApps/{app}
- PATCH deviceAppManagement/mobileApps/{app}
- GET   deviceAppManagement/mobileAppCategories
- POST  .../mobileApps/{app}/categories/$ref
"""

from __future__ import annotations

import threading
from typing import Any

from intunepush.exceptions import ProtocolError
from intunepush.graph.client import GraphClient
from intunepush.graph.payloads import (
    AppDefinition,
    build_app_payload,
    build_commit_app_payload,
    build_file_entry_payload,
)
from intunepush.intunewin import PackageManifest

MOBILE_APPS = "deviceAppManagement/mobileApps"
APP_CATEGORIES = "deviceAppManagement/mobileAppCategories"


def app_path(app_id: str) -> str:
    return f"{MOBILE_APPS}/{app_id}"


def content_versions_path(app_id: str) -> str:
    return f"{app_path(app_id)}/microsoft.graph.win32LobApp/contentVersions"


def file_path(app_id: str, content_version_id: str, file_id: str | None = None) -> str:
    path = f"{content_versions_path(app_id)}/{content_version_id}/files"
    return f"{path}/{file_id}" if file_id else path


def _require_id(body: dict[str, Any], what: str) -> str:
    value = body.get("id")
    if not value:
        raise ProtocolError(f"{what} ID not returned by Graph")
    return str(value)


def create_application(
    client: GraphClient,
    app: AppDefinition,
    file_name: str,
    *,
    cancel: threading.Event | None = None,
) -> str:
    """Create the Win32 LOB app object.

    Args:
        client: Graph client.
        app: App definition.
        file_name: File name from the package manifest.
        cancel: Optional cancellation event.

    Returns:
        The new app id.

    Raises:
        RegistryRequestError: On a non-success response.
        ProtocolError: If the response has no id.
    """
    body = build_app_payload(app, file_name, client.logger)
    created = client.post(MOBILE_APPS, body, action="create Win32 app", cancel=cancel)
    app_id = _require_id(created, "App")
    client.logger.verbose("GRAPH", f"Created app: {app_id}")
    return app_id


def assign_category(
    client: GraphClient,
    app_id: str,
    category_name: str,
    *,
    cancel: threading.Event | None = None,
) -> bool:
    """Link app_id to the app category whose display name is category_name.

    Args:
        client: Graph client.
        app_id: App id.
        category_name: Display name of an existing category (e.g., "Test").
        cancel: Optional cancellation event.

    Returns:
        True if the category was assigned, False if no category has that name.

    Raises:
        RegistryRequestError: On a non-success response.
    """
    listing = client.get(APP_CATEGORIES, action="list app categories", cancel=cancel)
    category_id = None
    for category in listing.get("value") or []:
        if isinstance(category, dict) and category.get("displayName") == category_name:
            category_id = category.get("id")
            break
    if not category_id:
        client.logger.verbose("GRAPH", f"App category '{category_name}' not found")
        return False

    client.post(
        f"{app_path(app_id)}/categories/$ref",
        {"@odata.id": client.url(f"{APP_CATEGORIES}/{category_id}")},
        action="assign app category",
        cancel=cancel,
    )
    client.logger.verbose("GRAPH", f"Assigned category '{category_name}'")
    return True


def create_content_version(
    client: GraphClient, app_id: str, *, cancel: threading.Event | None = None
) -> str:
    """Create a new content version under app_id and return its id."""
    created = client.post(
        content_versions_path(app_id), {}, action="create content version", cancel=cancel
    )
    content_version_id = _require_id(created, "Content version")
    client.logger.verbose("GRAPH", f"Created content version: {content_version_id}")
    return content_version_id


def create_file_entry(
    client: GraphClient,
    app_id: str,
    content_version_id: str,
    manifest: PackageManifest,
    encrypted_size: int,
    *,
    cancel: threading.Event | None = None,
) -> str:
    """Create the content file entry describing the upload.

    Args:
        client: Graph client.
        app_id: App id.
        content_version_id: Content version id.
        manifest: Parsed package manifest (supplies name and unencrypted size).
        encrypted_size: Size of the encrypted payload, measured on disk.
        cancel: Optional cancellation event.

    Returns:
        The new file id.
    """
    body = build_file_entry_payload(manifest.file_name, manifest.unencrypted_size, encrypted_size)
    client.logger.debug(
        "GRAPH",
        f"File entry: size={manifest.unencrypted_size:,} sizeEncrypted={encrypted_size:,}",
    )
    created = client.post(
        file_path(app_id, content_version_id),
        body,
        action="create file entry",
        cancel=cancel,
    )
    file_id = _require_id(created, "File")
    client.logger.verbose("GRAPH", f"Created file entry: {file_id}")
    return file_id


def get_file_entry(
    client: GraphClient,
    app_id: str,
    content_version_id: str,
    file_id: str,
    *,
    cancel: threading.Event | None = None,
) -> dict[str, Any]:
    """Read the file entry (uploadState, azureStorageUri, ...)."""
    return client.get(
        file_path(app_id, content_version_id, file_id),
        action="get file info",
        cancel=cancel,
    )


def commit_file(
    client: GraphClient,
    app_id: str,
    content_version_id: str,
    file_id: str,
    manifest: PackageManifest,
    *,
    cancel: threading.Event | None = None,
) -> None:
    """Tell Intune the blob is complete and hand over the encryption info."""
    client.post(
        f"{file_path(app_id, content_version_id, file_id)}/commit",
        {"fileEncryptionInfo": manifest.to_encryption_info()},
        action="commit file",
        cancel=cancel,
    )
    client.logger.verbose("GRAPH", "File committed")


def request_upload_renewal(
    client: GraphClient,
    app_id: str,
    content_version_id: str,
    file_id: str,
    *,
    cancel: threading.Event | None = None,
) -> None:
    """Ask Intune for a fresh SAS URI for the file entry."""
    client.post(
        f"{file_path(app_id, content_version_id, file_id)}/renewUpload",
        {},
        action="renew SAS URI",
        cancel=cancel,
    )


def get_application(
    client: GraphClient, app_id: str, *, cancel: threading.Event | None = None
) -> dict[str, Any]:
    return client.get(app_path(app_id), action="fetch existing app", cancel=cancel)


def commit_application(
    client: GraphClient,
    app_id: str,
    content_version_id: str,
    *,
    preserve_icon: bool = False,
    cancel: threading.Event | None = None,
) -> None:
    """Point the app's committedContentVersion at content_version_id.

    Args:
        client: Graph client.
        app_id: App id.
        content_version_id: Content version that was just uploaded.
        preserve_icon: Re-send the existing largeIcon. Used when updating an
            existing app, where a PATCH without it has been seen to drop it.
        cancel: Optional cancellation event.
    """
    large_icon = None
    if preserve_icon:
        existing = get_application(client, app_id, cancel=cancel)
        icon = existing.get("largeIcon")
        if isinstance(icon, dict) and icon.get("value"):
            large_icon = {"type": icon.get("type", ""), "value": icon["value"]}
            client.logger.verbose("GRAPH", "Preserving existing icon")

    client.patch(
        app_path(app_id),
        build_commit_app_payload(content_version_id, large_icon),
        action="commit app",
        cancel=cancel,
    )
    client.logger.verbose("GRAPH", f"Committed content version {content_version_id}")
