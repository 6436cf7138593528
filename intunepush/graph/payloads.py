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

"""Graph request bodies for Win32 LOB apps.

This module turns an AppDefinition (the local description of an app: name,
publisher, commands, detection rules, icon) into the JSON bodies Graph
expects. It performs no I/O other than reading icon and detection script
files.

Detection Rule Types:

- file: win32LobAppFileSystemDetection (exists or version/date/size checks)
- registry: win32LobAppRegistryDetection (key/value exists or comparisons)
- msi: win32LobAppProductCodeDetection (product code, optional version)
- script: win32LobAppPowerShellScriptDetection (base64 script content)

When no rule is configured a file-exists rule for
``%ProgramFiles%\\<name>.exe`` is used so the app can still be created.

Example:
    Build a create-app body:
        ```python
        from intunepush.graph.payloads import AppDefinition, build_app_payload

        app = AppDefinition(
            name="Chrome",
            publisher="Google",
            version="131.0.6778.86",
            install_command="Invoke-AppDeployToolkit.exe -DeploymentType Install",
            uninstall_command="Invoke-AppDeployToolkit.exe -DeploymentType Uninstall",
        )
        body = build_app_payload(app, file_name="IntunePackage.intunewin")
        ```
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from intunepush.exceptions import ConfigError
from intunepush.logging import Logger, get_global_logger

WIN32_LOB_APP_TYPE = "#microsoft.graph.win32LobApp"
CONTENT_FILE_TYPE = "#microsoft.graph.mobileAppContentFile"

INSTALL_CONTEXTS = ("system", "user")
DETECTION_TYPES = ("file", "registry", "msi", "script")

# Human readable operators (as shown in the Intune portal) and API names
_OPERATORS = {
    "greater than or equal to": "greaterThanOrEqual",
    "equal to": "equal",
    "not equal to": "notEqual",
    "greater than": "greaterThan",
    "less than": "lessThan",
    "less than or equal to": "lessThanOrEqual",
}
_API_OPERATORS = set(_OPERATORS.values()) | {"notConfigured"}

_ICON_MIME_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".ico": "image/x-icon",
}

DEFAULT_RETURN_CODES: tuple[tuple[int, str], ...] = (
    (0, "success"),
    (1707, "success"),
    (3010, "softReboot"),
    (1641, "hardReboot"),
    (1618, "retry"),
)


@dataclass(frozen=True)
class DetectionRule:
    """One detection rule from an app definition.

    Attributes:
        type: One of "file", "registry", "msi", "script".
        path: Folder path (file), key path (registry) or product code (msi).
        name: File or folder name (file) or value name (registry).
        detection_type: Graph detectionType (e.g., "exists", "version").
        operator: Comparison operator, API or portal spelling.
        value: Value to compare against (version, string, integer).
        check_32bit_on_64bit: Look at the 32-bit view on 64-bit systems.
        script: Path to a PowerShell detection script (script rules).
        enforce_signature_check: Require a signed script (script rules).
    """

    type: str
    path: str = ""
    name: str = ""
    detection_type: str = "exists"
    operator: str = ""
    value: str = ""
    check_32bit_on_64bit: bool = False
    script: Path | None = None
    enforce_signature_check: bool = False


@dataclass(frozen=True)
class AppDefinition:
    """Local description of a Win32 LOB app.

    Attributes:
        name: Application name.
        publisher: Publisher/manufacturer.
        version: Display version.
        install_command: Install command line.
        uninstall_command: Uninstall command line.
        description: Description shown in the company portal.
        install_context: "system" or "user".
        setup_file: Setup file name inside the package.
        architectures: applicableArchitectures value (e.g., "x64").
        minimum_os: Minimum supported Windows 10 release key.
        information_url: Optional information URL.
        privacy_url: Optional privacy URL.
        icon: Optional icon file (png, jpg or ico).
        detection_rules: Detection rules; a default is used when empty.
        return_codes: Mapping of return code to type; defaults are used when empty.
    """

    name: str
    publisher: str
    version: str
    install_command: str
    uninstall_command: str
    description: str = ""
    install_context: str = "system"
    setup_file: str = "Invoke-AppDeployToolkit.exe"
    architectures: str = "x64"
    minimum_os: str = "v10_1809"
    information_url: str = ""
    privacy_url: str = ""
    icon: Path | None = None
    detection_rules: tuple[DetectionRule, ...] = ()
    return_codes: tuple[tuple[int, str], ...] = field(default=DEFAULT_RETURN_CODES)

    @property
    def display_name(self) -> str:
        return " ".join(p for p in (self.publisher, self.name, self.version) if p)


def normalize_operator(operator: str) -> str:
    """Map a portal or API operator spelling to the API name.

    Raises:
        ConfigError: If the operator is unknown.
    """
    if operator in _API_OPERATORS:
        return operator
    try:
        return _OPERATORS[operator.strip().lower()]
    except KeyError:
        raise ConfigError(f"Unknown detection operator: {operator!r}") from None


def _file_rule(rule: DetectionRule) -> dict[str, Any]:
    body: dict[str, Any] = {
        "@odata.type": "#microsoft.graph.win32LobAppFileSystemDetection",
        "path": rule.path.strip(),
        "fileOrFolderName": rule.name.strip(),
        "check32BitOn64System": rule.check_32bit_on_64bit,
        "detectionType": rule.detection_type or "exists",
    }
    if body["detectionType"] != "exists":
        body["operator"] = normalize_operator(rule.operator or "greaterThanOrEqual")
        body["detectionValue"] = rule.value
    return body


def _registry_rule(rule: DetectionRule) -> dict[str, Any]:
    body: dict[str, Any] = {
        "@odata.type": "#microsoft.graph.win32LobAppRegistryDetection",
        "keyPath": rule.path.strip(),
        "check32BitOn64System": rule.check_32bit_on_64bit,
        "detectionType": rule.detection_type or "exists",
    }
    if rule.name:
        body["valueName"] = rule.name.strip()
    if body["detectionType"] not in ("exists", "doesNotExist"):
        body["operator"] = normalize_operator(rule.operator or "equal")
        body["detectionValue"] = rule.value
    return body


def _msi_rule(rule: DetectionRule) -> dict[str, Any]:
    body: dict[str, Any] = {
        "@odata.type": "#microsoft.graph.win32LobAppProductCodeDetection",
        "productCode": rule.path.strip(),
        "productVersionOperator": "notConfigured",
    }
    if rule.value:
        body["productVersionOperator"] = normalize_operator(
            rule.operator or "greaterThanOrEqual"
        )
        body["productVersion"] = rule.value
    return body


def _script_rule(rule: DetectionRule) -> dict[str, Any]:
    if rule.script is None:
        raise ConfigError("script detection rule requires 'script'")
    try:
        content = rule.script.read_bytes()
    except OSError as err:
        raise ConfigError(f"Cannot read detection script {rule.script}: {err}") from err
    return {
        "@odata.type": "#microsoft.graph.win32LobAppPowerShellScriptDetection",
        "scriptContent": base64.b64encode(content).decode("ascii"),
        "enforceSignatureCheck": rule.enforce_signature_check,
        "runAs32Bit": rule.check_32bit_on_64bit,
    }


_RULE_BUILDERS = {
    "file": _file_rule,
    "registry": _registry_rule,
    "msi": _msi_rule,
    "script": _script_rule,
}


def build_detection_rules(app: AppDefinition) -> list[dict[str, Any]]:
    """Convert the app's detection rules, falling back to a default rule."""
    rules = []
    for rule in app.detection_rules:
        builder = _RULE_BUILDERS.get(rule.type)
        if builder is None:
            raise ConfigError(
                f"Unknown detection rule type {rule.type!r}. "
                f"Expected one of: {', '.join(DETECTION_TYPES)}"
            )
        rules.append(builder(rule))

    if not rules:
        rules.append(
            {
                "@odata.type": "#microsoft.graph.win32LobAppFileSystemDetection",
                "path": "%ProgramFiles%",
                "fileOrFolderName": f"{app.name}.exe",
                "check32BitOn64System": False,
                "detectionType": "exists",
            }
        )
    return rules


def encode_icon(icon_path: Path, logger: Logger | None = None) -> dict[str, str] | None:
    """Read an icon file as a Graph mimeContent object.

    Returns:
        {"@odata.type", "type", "value"} or None if the file cannot be read.
        A missing icon is not fatal for app creation, so the failure is
        logged as a warning.
    """
    if logger is None:
        logger = get_global_logger()
    try:
        data = icon_path.read_bytes()
    except OSError as err:
        logger.warning("GRAPH", f"Skipping icon {icon_path}: {err}")
        return None
    if len(data) > 500 * 1024:
        logger.verbose("GRAPH", f"Icon is large ({len(data):,} bytes); Intune may reject it")
    return {
        "@odata.type": "#microsoft.graph.mimeContent",
        "type": _ICON_MIME_TYPES.get(icon_path.suffix.lower(), "image/png"),
        "value": base64.b64encode(data).decode("ascii"),
    }


def build_app_payload(
    app: AppDefinition, file_name: str, logger: Logger | None = None
) -> dict[str, Any]:
    """Build the body for POST /deviceAppManagement/mobileApps.

    Args:
        app: App definition.
        file_name: File name from the package manifest.
        logger: Logger for icon warnings. Defaults to the global logger.

    Returns:
        JSON-serializable dict.

    Raises:
        ConfigError: If a detection rule is invalid.
    """
    body: dict[str, Any] = {
        "@odata.type": WIN32_LOB_APP_TYPE,
        "displayName": app.display_name,
        "description": app.description or app.display_name,
        "publisher": app.publisher,
        "displayVersion": app.version,
        "installCommandLine": app.install_command,
        "uninstallCommandLine": app.uninstall_command,
        "applicableArchitectures": app.architectures,
        "fileName": file_name,
        "setupFilePath": app.setup_file,
        "minimumSupportedWindowsRelease": app.minimum_os,
        "installExperience": {
            "runAsAccount": app.install_context,
            "deviceRestartBehavior": "allow",
        },
        "detectionRules": build_detection_rules(app),
        "returnCodes": [
            {"returnCode": code, "type": kind} for code, kind in app.return_codes
        ],
    }
    if app.information_url:
        body["informationUrl"] = app.information_url
    if app.privacy_url:
        body["privacyInformationUrl"] = app.privacy_url
    if app.icon is not None:
        icon = encode_icon(app.icon, logger)
        if icon is not None:
            body["largeIcon"] = icon
    return body


def build_file_entry_payload(
    file_name: str, unencrypted_size: int, encrypted_size: int
) -> dict[str, Any]:
    """Build the body for creating a content file entry."""
    return {
        "@odata.type": CONTENT_FILE_TYPE,
        "name": file_name,
        "size": unencrypted_size,
        "sizeEncrypted": encrypted_size,
        "manifest": None,
        "isDependency": False,
    }


def build_commit_app_payload(
    content_version_id: str, large_icon: dict[str, Any] | None = None
) -> dict[str, Any]:
    """Build the PATCH body that points the app at a content version."""
    body: dict[str, Any] = {
        "@odata.type": WIN32_LOB_APP_TYPE,
        "committedContentVersion": content_version_id,
    }
    if large_icon:
        body["largeIcon"] = large_icon
    return body
