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

"""Public API return types for intunepush.

All dataclasses are frozen (immutable) to prevent accidental mutation of
return values.

Example:
    Using result types:
        ```python
        from intunepush.core import upload_package
        from intunepush.results import UploadResult

        result: UploadResult = upload_package(package, app, client=client)
        print(result.app_id)  # Attribute access, not dict access
        ```

Note:
    Only public API return types belong in this module. Domain types
    (like PackageManifest or StorageSession) stay with their related logic.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class UploadResult:
    """Result from uploading a package to Intune.

    Attributes:
        app_id: Intune app id (new or existing).
        app_name: Display name of the app, empty when unknown (updates).
        content_version_id: Content version that was committed.
        file_id: Content file id.
        file_name: File name from the package manifest.
        encrypted_size: Bytes uploaded to Azure Storage.
        chunk_count: Number of blocks uploaded.
        status: Always "success" for completed uploads.
    """

    app_id: str
    app_name: str
    content_version_id: str
    file_id: str
    file_name: str
    encrypted_size: int
    chunk_count: int
    status: str


@dataclass(frozen=True)
class InspectResult:
    """Result from inspecting a local .intunewin package.

    Attributes:
        package_path: String path to the inspected package.
        file_name: File name from the manifest.
        unencrypted_size: Declared (or measured) unencrypted size.
        encrypted_size: Size of the encrypted payload.
        content_strategy: Heuristic that located the encrypted payload.
        chunk_count: Number of blocks an upload would use.
        digest_algorithm: Digest algorithm from the manifest.
    """

    package_path: str
    file_name: str
    unencrypted_size: int
    encrypted_size: int
    content_strategy: str
    chunk_count: int
    digest_algorithm: str


@dataclass(frozen=True)
class ValidationResult:
    """Result from validating an app definition file.

    Attributes:
        status: Validation status ("valid" or "invalid").
        errors: List of error messages (empty if valid).
        warnings: List of warning messages.
        config_path: String path to the validated file.
    """

    status: str
    errors: list[str]
    warnings: list[str]
    config_path: str
