"""
Tests for intunepush.config.loader module.

Tests configuration loading and merging including:
- YAML file loading
- Two-layer merging (org defaults -> app definition)
- Path resolution
- Conversion to AppDefinition and UploadSettings
- Error handling
"""

from __future__ import annotations

from pathlib import Path

import pytest

from intunepush.config.loader import (
    load_app_definition,
    load_effective_config,
    load_upload_settings,
)
from intunepush.exceptions import ConfigError
from intunepush.graph.payloads import DEFAULT_RETURN_CODES
from intunepush.settings import UploadSettings

pytestmark = pytest.mark.unit


class TestConfigLoading:
    """Tests for basic configuration loading."""

    def test_load_simple_app(self, create_yaml_file, sample_app_config):
        """Test loading an app definition without defaults."""
        app_path = create_yaml_file("chrome.yaml", sample_app_config)

        config = load_effective_config(app_path)

        assert config["app"]["name"] == "Chrome"
        assert config["upload"]["renewal_threshold"] == 300

    def test_load_app_with_org_defaults(self, tmp_test_dir):
        """Test org defaults are found by walking up from the app file."""
        defaults_dir = tmp_test_dir / "defaults"
        defaults_dir.mkdir()
        apps_dir = tmp_test_dir / "apps"
        apps_dir.mkdir()

        (defaults_dir / "org.yaml").write_text(
            "app:\n  publisher: Contoso\n  install_context: user\n"
        )
        app_path = apps_dir / "tool.yaml"
        app_path.write_text("app:\n  name: Tool\n")

        config = load_effective_config(app_path)

        assert config["app"]["name"] == "Tool"
        assert config["app"]["publisher"] == "Contoso"
        assert config["app"]["install_context"] == "user"

    def test_missing_app_file_raises(self, tmp_test_dir):
        """Test that a missing app file raises ConfigError."""
        with pytest.raises(ConfigError, match="file not found"):
            load_effective_config(tmp_test_dir / "nonexistent.yaml")


class TestConfigMerging:
    """Tests for configuration merging behavior."""

    def test_dict_deep_merge(self, tmp_test_dir):
        """Test that nested dicts are deep-merged."""
        defaults_dir = tmp_test_dir / "defaults"
        defaults_dir.mkdir()
        (defaults_dir / "org.yaml").write_text(
            """
upload:
  renewal_threshold: 300
  chunk_max_attempts: 7
"""
        )
        app_path = tmp_test_dir / "app.yaml"
        app_path.write_text(
            """
app:
  name: Test
upload:
  renewal_threshold: 120
"""
        )

        config = load_effective_config(app_path)

        assert config["upload"]["renewal_threshold"] == 120
        assert config["upload"]["chunk_max_attempts"] == 7

    def test_list_replacement(self, tmp_test_dir):
        """Test that lists are replaced, not merged."""
        defaults_dir = tmp_test_dir / "defaults"
        defaults_dir.mkdir()
        (defaults_dir / "org.yaml").write_text(
            """
app:
  return_codes:
    - {code: 0, type: success}
    - {code: 3010, type: softReboot}
"""
        )
        app_path = tmp_test_dir / "app.yaml"
        app_path.write_text(
            """
app:
  return_codes:
    - {code: 0, type: success}
"""
        )

        config = load_effective_config(app_path)

        assert config["app"]["return_codes"] == [{"code": 0, "type": "success"}]

    def test_scalar_overwrite(self, tmp_test_dir):
        """Test that scalars from the app file win."""
        defaults_dir = tmp_test_dir / "defaults"
        defaults_dir.mkdir()
        (defaults_dir / "org.yaml").write_text("app:\n  minimum_os: W10_1809\n")
        app_path = tmp_test_dir / "app.yaml"
        app_path.write_text("app:\n  minimum_os: W11_22H2\n")

        config = load_effective_config(app_path)

        assert config["app"]["minimum_os"] == "W11_22H2"


class TestPathResolution:
    """Tests for relative path resolution."""

    def test_icon_and_script_resolved_against_app_dir(self, tmp_test_dir):
        """Test relative icon and script paths are made absolute."""
        apps_dir = tmp_test_dir / "apps"
        apps_dir.mkdir()
        app_path = apps_dir / "app.yaml"
        app_path.write_text(
            """
app:
  icon: icons/app.png
  detection:
    - type: script
      script: detect.ps1
"""
        )

        config = load_effective_config(app_path)

        assert Path(config["app"]["icon"]) == (apps_dir / "icons" / "app.png").resolve()
        assert (
            Path(config["app"]["detection"][0]["script"])
            == (apps_dir / "detect.ps1").resolve()
        )

    def test_absolute_paths_unchanged(self, tmp_test_dir):
        """Test absolute paths are kept as written."""
        icon = (tmp_test_dir / "elsewhere" / "icon.png").resolve()
        app_path = tmp_test_dir / "app.yaml"
        app_path.write_text(f"app:\n  icon: '{icon}'\n")

        config = load_effective_config(app_path)

        assert config["app"]["icon"] == str(icon)


class TestErrorHandling:
    """Tests for error conditions."""

    def test_invalid_yaml_raises(self, tmp_test_dir):
        """Test that invalid YAML raises ConfigError."""
        app_path = tmp_test_dir / "bad.yaml"
        app_path.write_text("app: [unclosed\n")

        with pytest.raises(ConfigError, match="Error parsing YAML"):
            load_effective_config(app_path)

    def test_empty_yaml_raises(self, tmp_test_dir):
        """Test that an empty file raises ConfigError."""
        app_path = tmp_test_dir / "empty.yaml"
        app_path.write_text("")

        with pytest.raises(ConfigError, match="empty"):
            load_effective_config(app_path)

    def test_non_dict_yaml_raises(self, tmp_test_dir):
        """Test that a top-level list raises ConfigError."""
        app_path = tmp_test_dir / "list.yaml"
        app_path.write_text("- one\n- two\n")

        with pytest.raises(ConfigError, match="mapping"):
            load_effective_config(app_path)


class TestLoadAppDefinition:
    """Tests for load_app_definition."""

    def test_builds_definition(self, sample_app_config):
        """Test the app section converts with defaults for optional fields."""
        app = load_app_definition(sample_app_config)

        assert app.display_name == "Google Chrome 131.0.6778.86"
        assert app.install_context == "system"
        assert app.icon is None
        assert app.return_codes == DEFAULT_RETURN_CODES
        assert len(app.detection_rules) == 1
        assert app.detection_rules[0].type == "registry"
        assert app.detection_rules[0].detection_type == "version"

    def test_missing_app_section(self):
        """Test a config without app raises."""
        with pytest.raises(ConfigError, match="Missing 'app' section"):
            load_app_definition({"upload": {}})

    def test_missing_required_fields(self, sample_app_config):
        """Test every missing required field is named."""
        del sample_app_config["app"]["publisher"]
        sample_app_config["app"]["version"] = "  "

        with pytest.raises(ConfigError, match="publisher, version"):
            load_app_definition(sample_app_config)

    def test_invalid_install_context(self, sample_app_config):
        """Test install_context must be system or user."""
        sample_app_config["app"]["install_context"] = "device"

        with pytest.raises(ConfigError, match="install_context"):
            load_app_definition(sample_app_config)

    def test_unknown_detection_type(self, sample_app_config):
        """Test detection rule types are checked."""
        sample_app_config["app"]["detection"] = [{"type": "wmi", "path": "x"}]

        with pytest.raises(ConfigError, match=r"detection\[0\]\.type"):
            load_app_definition(sample_app_config)

    def test_script_rule_requires_script(self, sample_app_config):
        """Test a script rule without a script path is rejected."""
        sample_app_config["app"]["detection"] = [{"type": "script"}]

        with pytest.raises(ConfigError, match="without 'script'"):
            load_app_definition(sample_app_config)

    def test_return_codes(self, sample_app_config):
        """Test custom return codes replace the defaults."""
        sample_app_config["app"]["return_codes"] = [
            {"code": 0, "type": "success"},
            {"code": "3010", "type": "softReboot"},
        ]

        app = load_app_definition(sample_app_config)

        assert app.return_codes == ((0, "success"), (3010, "softReboot"))

    def test_invalid_return_code_type(self, sample_app_config):
        """Test return code types are checked."""
        sample_app_config["app"]["return_codes"] = [{"code": 1, "type": "maybe"}]

        with pytest.raises(ConfigError, match="return_codes"):
            load_app_definition(sample_app_config)


class TestLoadUploadSettings:
    """Tests for load_upload_settings."""

    def test_defaults_when_absent(self):
        """Test a config without upload yields default settings."""
        assert load_upload_settings({"app": {}}) == UploadSettings()

    def test_overrides_applied(self, sample_app_config):
        """Test upload keys override defaults."""
        settings = load_upload_settings(sample_app_config)

        assert settings.renewal_threshold == 300
        assert settings.chunk_max_attempts == 5

    def test_unknown_key_rejected(self):
        """Test typos in upload keys are reported."""
        with pytest.raises(ConfigError, match="chunk_max_attemps"):
            load_upload_settings({"upload": {"chunk_max_attemps": 3}})
