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

""".intunewin archive metadata extraction.

A .intunewin file produced by IntuneWinAppUtil.exe is a zip container with
two interesting entries:

- ``detection.xml``: an ``ApplicationInfo`` document describing the payload
  (file name, unencrypted size) with a nested ``EncryptionInfo`` element
  holding the base64 key material Intune needs to decrypt it.
- The encrypted payload itself, usually ``IntunePackage.intunewin`` under
  ``IntuneWinPackage/Contents/``, but naming has changed between tool
  versions, so several fallback heuristics are tried in order.

Content Heuristics (first match wins):

1. Well-known names (Contents.dat, IntunePackage.dat)
2. A nested .intunewin entry larger than 1000 bytes
3. Any .dat entry
4. The largest non-XML entry
5. The manifest FileName, its stem + ".dat", or its bare stem

Both entries are extracted into a fresh scratch directory which the caller
owns and must remove (see cleanup_scratch_dir).

Example:
    Extract metadata from a package:
        ```python
        from pathlib import Path
        from intunepush.intunewin import extract_package

        package = extract_package(Path("packages/chrome/Invoke-AppDeployToolkit.intunewin"))
        print(package.manifest.file_name, package.manifest.unencrypted_size)
        print(package.encrypted_file)
        ```
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
import shutil
import tempfile
import xml.etree.ElementTree as ET
import zipfile

from intunepush.exceptions import (
    ContentFileNotFoundError,
    EncryptionInfoMissingError,
    InvalidManifestError,
    ManifestNotFoundError,
    PackagingError,
)
from intunepush.logging import Logger, get_global_logger

MANIFEST_NAME = "detection.xml"
WELL_KNOWN_CONTENT_NAMES = ("Contents.dat", "IntunePackage.dat")
NESTED_PACKAGE_MIN_SIZE = 1000
DEFAULT_DIGEST_ALGORITHM = "SHA256"
DEFAULT_PROFILE_IDENTIFIER = "ProfileVersion1"


@dataclass(frozen=True)
class PackageManifest:
    """Encryption metadata parsed from detection.xml.

    Attributes:
        file_name: Logical file name Intune displays for the content.
        unencrypted_size: Size of the payload before encryption, in bytes.
        encryption_key: Base64 AES key. Never empty.
        mac_key: Base64 HMAC key.
        initialization_vector: Base64 AES IV.
        mac: Base64 HMAC of the encrypted payload.
        file_digest: Base64 digest of the unencrypted payload.
        file_digest_algorithm: Digest algorithm name (default "SHA256").
        profile_identifier: Encryption profile (default "ProfileVersion1").
    """

    file_name: str
    unencrypted_size: int
    encryption_key: str
    mac_key: str = ""
    initialization_vector: str = ""
    mac: str = ""
    file_digest: str = ""
    file_digest_algorithm: str = DEFAULT_DIGEST_ALGORITHM
    profile_identifier: str = DEFAULT_PROFILE_IDENTIFIER

    def to_encryption_info(self) -> dict[str, str]:
        """Return the fileEncryptionInfo body for the Graph commit call."""
        return {
            "encryptionKey": self.encryption_key,
            "macKey": self.mac_key,
            "initializationVector": self.initialization_vector,
            "mac": self.mac,
            "profileIdentifier": self.profile_identifier,
            "fileDigest": self.file_digest,
            "fileDigestAlgorithm": self.file_digest_algorithm,
        }

    def missing_fields(self) -> list[str]:
        """List encryption fields that are empty (the key is checked at parse)."""
        names = {
            "MacKey": self.mac_key,
            "InitializationVector": self.initialization_vector,
            "Mac": self.mac,
            "FileDigest": self.file_digest,
        }
        return [name for name, value in names.items() if not value]


@dataclass(frozen=True)
class ExtractedPackage:
    """Result of extracting a .intunewin archive.

    Attributes:
        manifest: Parsed encryption metadata.
        encrypted_file: Path of the extracted encrypted payload.
        scratch_dir: Directory holding the extracted files. Owned by the caller.
        content_strategy: Description of the heuristic that located the payload.
    """

    manifest: PackageManifest
    encrypted_file: Path
    scratch_dir: Path
    content_strategy: str

    @property
    def encrypted_size(self) -> int:
        """Measured size of the encrypted payload on disk."""
        return self.encrypted_file.stat().st_size


def _basename(info: zipfile.ZipInfo) -> str:
    return PurePosixPath(info.filename.replace("\\", "/")).name


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child(parent: ET.Element, name: str) -> ET.Element | None:
    wanted = name.lower()
    for element in parent:
        if _local_name(element.tag).lower() == wanted:
            return element
    return None


def _child_text(parent: ET.Element, name: str, logger: Logger) -> str:
    """Return the trimmed text of a direct child, or "" when missing/empty."""
    element = _child(parent, name)
    value = (element.text or "").strip() if element is not None else ""
    if not value:
        logger.debug("ARCHIVE", f"Element '{name}' is empty or missing")
    return value


def _file_entries(archive: zipfile.ZipFile) -> list[zipfile.ZipInfo]:
    return [info for info in archive.infolist() if not info.is_dir()]


def _describe_entries(entries: list[zipfile.ZipInfo]) -> str:
    return "\n  ".join(f"{info.filename} ({info.file_size:,} bytes)" for info in entries)


def _find_manifest(entries: list[zipfile.ZipInfo]) -> zipfile.ZipInfo:
    for info in entries:
        if _basename(info).lower() == MANIFEST_NAME:
            return info
    available = ", ".join(info.filename for info in entries) or "(none)"
    raise ManifestNotFoundError(
        f"{MANIFEST_NAME} not found in package. Available files: {available}"
    )


def _parse_manifest_root(data: bytes) -> tuple[ET.Element, ET.Element]:
    try:
        root = ET.fromstring(data)
    except ET.ParseError as err:
        raise InvalidManifestError(f"{MANIFEST_NAME} is not valid XML: {err}") from err

    if _local_name(root.tag).lower() != "applicationinfo":
        raise EncryptionInfoMissingError(
            f"Root element is not ApplicationInfo. Found: {_local_name(root.tag)}"
        )

    encryption = _child(root, "EncryptionInfo")
    if encryption is None:
        available = ", ".join(_local_name(e.tag) for e in root) or "(none)"
        raise EncryptionInfoMissingError(
            f"EncryptionInfo not found. Available elements: {available}"
        )
    return root, encryption


# Each heuristic returns (entry, description) or None.
Heuristic = Callable[
    [list[zipfile.ZipInfo], str], "tuple[zipfile.ZipInfo, str] | None"
]


def _by_well_known_name(
    entries: list[zipfile.ZipInfo], declared_name: str
) -> tuple[zipfile.ZipInfo, str] | None:
    for name in WELL_KNOWN_CONTENT_NAMES:
        for info in entries:
            if _basename(info).lower() == name.lower():
                return info, f"common content name: {name}"
    return None


def _by_nested_package(
    entries: list[zipfile.ZipInfo], declared_name: str
) -> tuple[zipfile.ZipInfo, str] | None:
    for info in entries:
        if (
            _basename(info).lower().endswith(".intunewin")
            and info.file_size > NESTED_PACKAGE_MIN_SIZE
        ):
            return info, f"nested .intunewin content file: {_basename(info)}"
    return None


def _by_dat_suffix(
    entries: list[zipfile.ZipInfo], declared_name: str
) -> tuple[zipfile.ZipInfo, str] | None:
    for info in entries:
        if _basename(info).lower().endswith(".dat"):
            return info, f".dat file: {_basename(info)}"
    return None


def _by_largest_non_xml(
    entries: list[zipfile.ZipInfo], declared_name: str
) -> tuple[zipfile.ZipInfo, str] | None:
    candidates = [i for i in entries if not _basename(i).lower().endswith(".xml")]
    if not candidates:
        return None
    largest = max(candidates, key=lambda i: i.file_size)
    return largest, f"largest non-XML file: {_basename(largest)}"


def _by_declared_name(
    entries: list[zipfile.ZipInfo], declared_name: str
) -> tuple[zipfile.ZipInfo, str] | None:
    if not declared_name:
        return None
    stem = PurePosixPath(declared_name).stem
    for possible in (declared_name, f"{stem}.dat", stem):
        for info in entries:
            if _basename(info).lower() == possible.lower():
                return info, f"FileName reference: {possible}"
    return None


CONTENT_HEURISTICS: tuple[Heuristic, ...] = (
    _by_well_known_name,
    _by_nested_package,
    _by_dat_suffix,
    _by_largest_non_xml,
    _by_declared_name,
)


def find_content_entry(
    entries: list[zipfile.ZipInfo], declared_name: str
) -> tuple[zipfile.ZipInfo, str]:
    """Locate the encrypted content entry using the ordered heuristics.

    Args:
        entries: File entries of the archive (directories excluded).
        declared_name: FileName value from the manifest, may be empty.

    Returns:
        A tuple (entry, description) for the first heuristic that matched.

    Raises:
        ContentFileNotFoundError: If no heuristic matched. The message lists
            every entry in the archive.
    """
    for heuristic in CONTENT_HEURISTICS:
        found = heuristic(entries, declared_name)
        if found is not None:
            return found
    raise ContentFileNotFoundError(
        "Could not find encrypted content file in archive.\n\n"
        f"Available files:\n  {_describe_entries(entries)}"
    )


def _parse_size(raw: str, fallback: int, logger: Logger) -> int:
    try:
        value = int(raw)
    except ValueError:
        value = -1
    if value < 0:
        logger.verbose(
            "ARCHIVE",
            f"Could not parse UnencryptedContentSize '{raw}', "
            f"using content file size {fallback:,}",
        )
        return fallback
    return value


def _extract_entry(
    archive: zipfile.ZipFile, info: zipfile.ZipInfo, target_dir: Path
) -> Path:
    # Flatten to the base name so entry paths can never escape target_dir
    target = target_dir / _basename(info)
    with archive.open(info) as src, target.open("wb") as dst:
        shutil.copyfileobj(src, dst, 1024 * 1024)
    return target


def cleanup_scratch_dir(scratch_dir: Path | None, logger: Logger | None = None) -> bool:
    """Remove a scratch directory, logging instead of raising on failure.

    Args:
        scratch_dir: Directory to remove. None or a missing directory is a no-op.
        logger: Logger for the outcome. Defaults to the global logger.

    Returns:
        True if the directory is gone afterwards, False if removal failed.
    """
    if logger is None:
        logger = get_global_logger()
    if scratch_dir is None or not scratch_dir.exists():
        return True
    try:
        shutil.rmtree(scratch_dir)
    except OSError as err:
        logger.warning("CLEANUP", f"Failed to remove temp files {scratch_dir}: {err}")
        return False
    logger.verbose("CLEANUP", f"Removed temp files: {scratch_dir}")
    return True


def extract_package(
    archive_path: Path,
    scratch_root: Path | None = None,
    logger: Logger | None = None,
) -> ExtractedPackage:
    """Extract encryption metadata and the encrypted payload from a package.

    Args:
        archive_path: Path to the .intunewin file.
        scratch_root: Parent directory for the scratch directory. Defaults to
            the system temp directory.
        logger: Logger for progress output. Defaults to the global logger.

    Returns:
        ExtractedPackage with the parsed manifest, the path of the extracted
            encrypted payload and the scratch directory holding it.

    Raises:
        PackagingError: If the package is missing or not a zip container.
        ManifestNotFoundError: If detection.xml is missing.
        EncryptionInfoMissingError: If ApplicationInfo/EncryptionInfo is missing.
        ContentFileNotFoundError: If no content entry could be located.
        InvalidManifestError: If the XML is malformed or the key is empty.

    Note:
        No network calls are made. The scratch directory is removed here if
        extraction fails; on success the caller owns it.
    """
    if logger is None:
        logger = get_global_logger()

    archive_path = Path(archive_path)
    if not archive_path.is_file():
        raise PackagingError(f"Package file not found: {archive_path}")

    if scratch_root is not None:
        scratch_root.mkdir(parents=True, exist_ok=True)
    scratch_dir = Path(tempfile.mkdtemp(prefix="intunepush-", dir=scratch_root))

    try:
        try:
            archive = zipfile.ZipFile(archive_path)
        except zipfile.BadZipFile as err:
            raise InvalidManifestError(
                f"Package is not a valid zip container: {archive_path}"
            ) from err

        with archive:
            entries = _file_entries(archive)
            for info in entries:
                logger.debug("ARCHIVE", f"  {info.filename} ({info.file_size:,} bytes)")

            manifest_entry = _find_manifest(entries)
            manifest_path = _extract_entry(archive, manifest_entry, scratch_dir)
            root, encryption = _parse_manifest_root(manifest_path.read_bytes())
            logger.verbose("ARCHIVE", "Found ApplicationInfo and EncryptionInfo")

            declared_name = _child_text(root, "FileName", logger)
            content_entry, strategy = find_content_entry(
                [e for e in entries if e is not manifest_entry], declared_name
            )
            logger.verbose("ARCHIVE", f"Found {strategy}")
            encrypted_file = _extract_entry(archive, content_entry, scratch_dir)

        measured_size = encrypted_file.stat().st_size
        logger.verbose(
            "ARCHIVE",
            f"Extracted content file: {encrypted_file.name} ({measured_size:,} bytes)",
        )

        encryption_key = _child_text(encryption, "EncryptionKey", logger)
        if not encryption_key:
            raise InvalidManifestError(
                f"EncryptionKey is empty in {MANIFEST_NAME}; package is not encrypted"
            )

        manifest = PackageManifest(
            file_name=declared_name or archive_path.name,
            unencrypted_size=_parse_size(
                _child_text(root, "UnencryptedContentSize", logger),
                measured_size,
                logger,
            ),
            encryption_key=encryption_key,
            mac_key=_child_text(encryption, "MacKey", logger),
            initialization_vector=_child_text(encryption, "InitializationVector", logger),
            mac=_child_text(encryption, "Mac", logger),
            file_digest=_child_text(encryption, "FileDigest", logger),
            file_digest_algorithm=_child_text(encryption, "FileDigestAlgorithm", logger)
            or DEFAULT_DIGEST_ALGORITHM,
            profile_identifier=_child_text(encryption, "ProfileIdentifier", logger)
            or DEFAULT_PROFILE_IDENTIFIER,
        )
    except BaseException:
        cleanup_scratch_dir(scratch_dir, logger)
        raise

    missing = manifest.missing_fields()
    if missing:
        logger.warning("ARCHIVE", f"Empty encryption fields: {', '.join(missing)}")

    return ExtractedPackage(
        manifest=manifest,
        encrypted_file=encrypted_file,
        scratch_dir=scratch_dir,
        content_strategy=strategy,
    )
