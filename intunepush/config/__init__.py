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

"""Configuration loading for intunepush.

App definitions are YAML files layered on top of optional organization
defaults (defaults/org.yaml, found by walking upward from the app file).
Dicts are merged recursively and lists/scalars are replaced (last wins).
Relative paths are resolved against the app file location.

Public API:

- load_effective_config: Load and merge configuration for an app file
- load_app_definition: Build an AppDefinition from the merged config
- load_upload_settings: Build UploadSettings from the ``upload:`` section

Example:
    Basic usage:

        from pathlib import Path
        from intunepush.config import load_app_definition, load_effective_config

        config = load_effective_config(Path("apps/chrome.yaml"))
        app = load_app_definition(config)
        print(app.display_name)  # "Google Chrome 131.0.6778.86"

"""

from .loader import load_app_definition, load_effective_config, load_upload_settings

__all__ = ["load_app_definition", "load_effective_config", "load_upload_settings"]
