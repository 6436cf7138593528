"""
Configuration loading and merging for intunepush.

An app definition file describes one Win32 app (names, commands, detection
rules, icon) plus optional upload tuning. Organization-wide values such as
the publisher, install context or upload settings can live in a shared
defaults file so each app file stays short.

Configuration Layers
--------------------
1. **Organization defaults** (defaults/org.yaml)
   - Found by walking upward from the app file
   - Optional; used as the base layer when present

2. **App definition** (apps/<app>.yaml)
   - Always required; defines the app itself
   - Overrides organization defaults

Merge Behavior
--------------
The loader performs deep merging with "last wins" semantics:
  - **Dicts**: Recursively merged (keys from overlay override base)
  - **Lists**: Completely replaced (NOT appended/extended)
  - **Scalars**: Overwritten (strings, numbers, booleans)

Path Resolution
---------------
Relative paths are resolved against the APP FILE location, making app
definitions relocatable. Currently resolved paths:
  - app.icon
  - app.detection[*].script

File Layout
-----------
    app:
      name: Chrome
      publisher: Google
      version: 131.0.6778.86
      install_command: Invoke-AppDeployToolkit.exe -DeploymentType Install
      uninstall_command: Invoke-AppDeployToolkit.exe -DeploymentType Uninstall
      icon: chrome.png
      detection:
        - type: registry
          path: HKEY_LOCAL_MACHINE\\SOFTWARE\\Google\\Chrome
          name: Version
          detection_type: version
          operator: greaterThanOrEqual
          value: 131.0.6778.86
      return_codes:
        - {code: 0, type: success}
    upload:
      renewal_threshold: 300

Functions
---------
load_effective_config : function
    Load and merge configuration for an app file (main public API).
load_app_definition : function
    Convert a merged config into an AppDefinition.
load_upload_settings : function
    Convert the ``upload:`` section into UploadSettings.

Error Handling
--------------
- ConfigError: Missing file, YAML parse errors, empty files, missing or
  invalid fields
- All errors are chained with "from err" for better debugging
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from intunepush.exceptions import ConfigError
from intunepush.graph.payloads import (
    DEFAULT_RETURN_CODES,
    DETECTION_TYPES,
    INSTALL_CONTEXTS,
    AppDefinition,
    DetectionRule,
)
from intunepush.logging import get_global_logger
from intunepush.settings import UploadSettings

REQUIRED_APP_FIELDS = (
    "name",
    "publisher",
    "version",
    "install_command",
    "uninstall_command",
)

RETURN_CODE_TYPES = ("success", "softReboot", "hardReboot", "retry", "failed")

# -------------------------------
# YAML helpers
# -------------------------------


def _load_yaml_file(p: Path) -> Any:
    """
    Load a YAML file and return the parsed Python object.

    Raises:
      ConfigError - when the file does not exist, is empty or is invalid YAML
    """
    if not p.exists():
        raise ConfigError(f"file not found: {p}")
    try:
        with p.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as err:
        raise ConfigError(f"Error parsing YAML: {p}: {err}") from err
    if data is None:
        raise ConfigError(f"YAML file is empty: {p}")
    return data


# -------------------------------
# Merge logic
# -------------------------------


def _deep_merge_dicts(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """
    Deep-merge two dicts with "overlay wins".

    Rules:
      - dict + dict -> deep merge
      - list + list -> overlay REPLACES base (not concatenated)
      - everything else -> overlay overwrites base

    This function does not mutate inputs; returns a new dict.
    """
    result: dict[str, Any] = dict(base)
    for k, v in overlay.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge_dicts(result[k], v)
        else:
            # Replace lists and scalars entirely
            result[k] = v
    return result


# -------------------------------
# Defaults discovery
# -------------------------------


def _find_defaults_root(start_dir: Path) -> Path | None:
    """
    Walk upward from 'start_dir' looking for a 'defaults/org.yaml'.
    Returns the 'defaults' directory or None if not found.
    """
    for parent in [start_dir] + list(start_dir.parents):
        candidate = parent / "defaults" / "org.yaml"
        if candidate.exists():
            return parent / "defaults"
    return None


# -------------------------------
# Path resolution
# -------------------------------


def _resolve(raw_path: Any, base_dir: Path) -> Any:
    if isinstance(raw_path, str) and raw_path:
        p = Path(raw_path)
        if not p.is_absolute():
            return str((base_dir / p).resolve())
    return raw_path


def _resolve_known_paths(cfg: dict[str, Any], app_dir: Path) -> None:
    """
    Resolve relative path fields inside the merged config.

    Currently handled:
      - cfg["app"]["icon"]
      - cfg["app"]["detection"][*]["script"]

    Modifies cfg in place.
    """
    app = cfg.get("app")
    if not isinstance(app, dict):
        return
    if "icon" in app:
        app["icon"] = _resolve(app["icon"], app_dir)
    rules = app.get("detection")
    if isinstance(rules, list):
        for rule in rules:
            if isinstance(rule, dict) and "script" in rule:
                rule["script"] = _resolve(rule["script"], app_dir)


# -------------------------------
# Public API
# -------------------------------


def load_effective_config(app_path: Path) -> dict[str, Any]:
    """
    Load and merge the effective configuration for an app definition file.

    Steps
      1) Read app YAML.
      2) Find defaults root by scanning upwards for 'defaults/org.yaml'.
      3) Load org defaults if present.
      4) Merge: org -> app (dicts deep-merge, lists replace).
      5) Resolve known relative paths (relative to the app directory).

    Returns
      A merged configuration dict.

    Raises
      ConfigError on a missing file, YAML parse errors or a non-mapping
      top level.
    """
    logger = get_global_logger()

    app_path = app_path.resolve()
    app_dir = app_path.parent
    logger.verbose("CONFIG", f"Loading app definition: {app_path}")

    app_obj = _load_yaml_file(app_path)
    if not isinstance(app_obj, dict):
        raise ConfigError(f"top-level YAML must be a mapping (dict): {app_path}")

    merged: dict[str, Any] = {}
    defaults_root = _find_defaults_root(app_dir)
    if defaults_root:
        org_defaults_path = defaults_root / "org.yaml"
        logger.verbose("CONFIG", f"Loading defaults: {org_defaults_path}")
        org_defaults = _load_yaml_file(org_defaults_path)
        if isinstance(org_defaults, dict):
            merged = _deep_merge_dicts(merged, org_defaults)
        else:
            logger.warning("CONFIG", f"Ignoring non-mapping defaults file: {org_defaults_path}")

    merged = _deep_merge_dicts(merged, app_obj)
    logger.debug("CONFIG", f"Final config has keys: {', '.join(merged)}")

    _resolve_known_paths(merged, app_dir)
    return merged


def _str_field(section: dict[str, Any], key: str, default: str = "") -> str:
    value = section.get(key, default)
    if value is None:
        return default
    return str(value).strip()


def _detection_rule(raw: Any, index: int) -> DetectionRule:
    if not isinstance(raw, dict):
        raise ConfigError(f"app.detection[{index}] must be a mapping")
    rule_type = _str_field(raw, "type").lower()
    if rule_type not in DETECTION_TYPES:
        raise ConfigError(
            f"app.detection[{index}].type must be one of "
            f"{', '.join(DETECTION_TYPES)}, got {rule_type!r}"
        )
    script = raw.get("script")
    if rule_type == "script" and not script:
        raise ConfigError(f"app.detection[{index}] is a script rule without 'script'")
    if rule_type != "script" and not _str_field(raw, "path"):
        raise ConfigError(f"app.detection[{index}] requires 'path'")
    return DetectionRule(
        type=rule_type,
        path=_str_field(raw, "path"),
        name=_str_field(raw, "name"),
        detection_type=_str_field(raw, "detection_type", "exists"),
        operator=_str_field(raw, "operator"),
        value=_str_field(raw, "value"),
        check_32bit_on_64bit=bool(raw.get("check_32bit_on_64bit", False)),
        script=Path(script) if script else None,
        enforce_signature_check=bool(raw.get("enforce_signature_check", False)),
    )


def _return_codes(raw: Any) -> tuple[tuple[int, str], ...]:
    if not raw:
        return DEFAULT_RETURN_CODES
    if not isinstance(raw, list):
        raise ConfigError("app.return_codes must be a list")
    codes = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict) or "code" not in item:
            raise ConfigError(f"app.return_codes[{index}] must have 'code' and 'type'")
        kind = _str_field(item, "type", "success")
        if kind not in RETURN_CODE_TYPES:
            raise ConfigError(
                f"app.return_codes[{index}].type must be one of "
                f"{', '.join(RETURN_CODE_TYPES)}, got {kind!r}"
            )
        try:
            codes.append((int(item["code"]), kind))
        except (TypeError, ValueError) as err:
            raise ConfigError(f"app.return_codes[{index}].code must be an integer") from err
    return tuple(codes)


def load_app_definition(config: dict[str, Any]) -> AppDefinition:
    """Convert a merged configuration into an AppDefinition.

    Args:
        config: Result of load_effective_config.

    Returns:
        AppDefinition built from the ``app:`` section.

    Raises:
        ConfigError: If the section is missing, a required field is empty,
            or a detection rule / return code is invalid.
    """
    app = config.get("app")
    if not isinstance(app, dict):
        raise ConfigError("Missing 'app' section")

    missing = [key for key in REQUIRED_APP_FIELDS if not _str_field(app, key)]
    if missing:
        raise ConfigError(f"Missing required app field(s): {', '.join(missing)}")

    install_context = _str_field(app, "install_context", "system").lower()
    if install_context not in INSTALL_CONTEXTS:
        raise ConfigError(
            f"app.install_context must be one of {', '.join(INSTALL_CONTEXTS)}, "
            f"got {install_context!r}"
        )

    raw_rules = app.get("detection") or []
    if not isinstance(raw_rules, list):
        raise ConfigError("app.detection must be a list")

    icon = app.get("icon")
    return AppDefinition(
        name=_str_field(app, "name"),
        publisher=_str_field(app, "publisher"),
        version=_str_field(app, "version"),
        install_command=_str_field(app, "install_command"),
        uninstall_command=_str_field(app, "uninstall_command"),
        description=_str_field(app, "description"),
        install_context=install_context,
        setup_file=_str_field(app, "setup_file", AppDefinition.setup_file),
        architectures=_str_field(app, "architectures", AppDefinition.architectures),
        minimum_os=_str_field(app, "minimum_os", AppDefinition.minimum_os),
        information_url=_str_field(app, "information_url"),
        privacy_url=_str_field(app, "privacy_url"),
        icon=Path(icon) if icon else None,
        detection_rules=tuple(
            _detection_rule(raw, index) for index, raw in enumerate(raw_rules)
        ),
        return_codes=_return_codes(app.get("return_codes")),
    )


def load_upload_settings(config: dict[str, Any]) -> UploadSettings:
    """Build UploadSettings from the ``upload:`` section (defaults if absent)."""
    return UploadSettings.from_mapping(config.get("upload"))
