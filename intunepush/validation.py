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

"""App definition validation module.

This module checks an app definition file without making network calls or
reading any package. This is useful for quick feedback while writing app
files and in CI/CD pipelines.

Validation Checks:

- YAML syntax is valid and the top level is a mapping
- Organization defaults (if found) merge cleanly
- Required app fields are present (name, publisher, version, commands)
- install_context is "system" or "user"
- Detection rules have a known type and the fields that type needs
- Detection scripts exist; the icon exists (warning only)
- Every key under ``upload:`` is a known setting with a valid value

Example:
    Validate an app file and handle results:
        ```python
        from pathlib import Path
        from intunepush.validation import validate_app_config

        result = validate_app_config(Path("apps/chrome.yaml"))
        if result.status == "valid":
            print("App definition is valid")
        else:
            for error in result.errors:
                print(f"Error: {error}")
        ```

"""

from __future__ import annotations

from pathlib import Path

from intunepush.config.loader import (
    load_app_definition,
    load_effective_config,
    load_upload_settings,
)
from intunepush.exceptions import ConfigError
from intunepush.logging import get_global_logger
from intunepush.results import ValidationResult

__all__ = ["validate_app_config"]


def validate_app_config(config_path: Path) -> ValidationResult:
    """Validate an app definition file without any network calls.

    This function checks:

    1. The file can be loaded and merged with organization defaults
    2. The ``app:`` section converts to an AppDefinition
    3. Detection scripts exist
    4. The ``upload:`` section converts to UploadSettings

    Does NOT:

    - Contact Graph or Azure Storage
    - Open the .intunewin package
    - Check that detection rules match the installed app

    Args:
        config_path: Path to the app definition YAML file.

    Returns:
        ValidationResult with status "valid" or "invalid", the error and
            warning messages, and the validated path.

    Example:
        Print the outcome:
            ```python
            result = validate_app_config(Path("apps/chrome.yaml"))
            print(result.status, result.errors)
            ```
    """
    logger = get_global_logger()
    errors: list[str] = []
    warnings: list[str] = []

    logger.verbose("VALIDATION", f"Validating app definition: {config_path}")

    try:
        config = load_effective_config(config_path)
    except ConfigError as err:
        errors.append(str(err))
        return ValidationResult(
            status="invalid",
            errors=errors,
            warnings=warnings,
            config_path=str(config_path),
        )

    try:
        app = load_app_definition(config)
    except ConfigError as err:
        errors.append(str(err))
    else:
        logger.verbose("VALIDATION", f"[OK] App: {app.display_name}")
        if not app.detection_rules:
            warnings.append(
                f"No detection rules; a default rule for %ProgramFiles%\\{app.name}.exe "
                "will be used"
            )
        for index, rule in enumerate(app.detection_rules):
            if rule.script is not None and not rule.script.is_file():
                errors.append(f"app.detection[{index}]: script not found: {rule.script}")
        if app.icon is not None and not app.icon.is_file():
            warnings.append(f"Icon not found, app will be created without it: {app.icon}")

    try:
        load_upload_settings(config)
    except ConfigError as err:
        errors.append(f"upload: {err}")

    status = "valid" if not errors else "invalid"
    if status == "valid":
        logger.verbose("VALIDATION", "[OK] App definition is valid")
    else:
        logger.verbose("VALIDATION", f"[ERROR] App definition has {len(errors)} error(s)")

    return ValidationResult(
        status=status,
        errors=errors,
        warnings=warnings,
        config_path=str(config_path),
    )
