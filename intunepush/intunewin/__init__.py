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

"""Reading .intunewin packages.

Public API:

- extract_package: Parse detection.xml and extract the encrypted payload
- cleanup_scratch_dir: Best-effort removal of the extraction directory
- PackageManifest: Encryption metadata from detection.xml
- ExtractedPackage: Manifest plus extracted file locations
"""

from .archive import (
    ExtractedPackage,
    PackageManifest,
    cleanup_scratch_dir,
    extract_package,
    find_content_entry,
)

__all__ = [
    "ExtractedPackage",
    "PackageManifest",
    "cleanup_scratch_dir",
    "extract_package",
    "find_content_entry",
]
