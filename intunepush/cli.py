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

"""Command-line interface for intunepush.

This module provides the main CLI entry point for the intunepush tool,
offering commands to inspect packages, validate app definitions and upload
Win32 apps to Intune.

Commands:

    inspect: Show manifest details of a .intunewin package (no network)
    validate: Validate an app definition file (no network)
    upload: Create a new Win32 app and upload a package
    update: Upload a package as new content for an existing app

Example:
    Inspect a package:
        ```bash
        $ intunepush inspect packages/Chrome.intunewin
        ```

    Upload a new app:
        ```bash
        $ intunepush upload packages/Chrome.intunewin apps/chrome.yaml
        ```

    Update an existing app:
        ```bash
        $ intunepush update 0f6e... packages/Chrome.intunewin --verbose
        ```

Exit Codes:

- 0: Success
- 1: Error (configuration, package, network or Intune processing failure)

Note:
    Credentials come from INTUNEPUSH_TENANT_ID, INTUNEPUSH_CLIENT_ID and
    INTUNEPUSH_CLIENT_SECRET (a .env file in the working directory is read).
    Verbose mode shows full tracebacks on errors for debugging.
    Debug mode implies verbose mode and shows HTTP and polling details.

"""

from __future__ import annotations

import argparse
from pathlib import Path
import sys
import traceback

from intunepush import __version__
from intunepush.auth import CredentialManager
from intunepush.config import (
    load_app_definition,
    load_effective_config,
    load_upload_settings,
)
from intunepush.core import inspect_package, update_package, upload_package
from intunepush.exceptions import IntunePushError, PipelineError
from intunepush.graph import GraphClient
from intunepush.logging import Logger, get_logger, set_global_logger
from intunepush.results import UploadResult
from intunepush.settings import UploadSettings
from intunepush.validation import validate_app_config


class _LoggerProgress:
    """Forwards pipeline progress to the verbose log."""

    def __init__(self, logger: Logger) -> None:
        self._logger = logger
        self._last = -1

    def update(self, percentage: int, message: str) -> None:
        if percentage != self._last:
            self._last = percentage
            self._logger.verbose("PROGRESS", f"{percentage:3d}% {message}")


def _report_error(err: BaseException, args: argparse.Namespace) -> None:
    print(f"Error: {err}")
    if isinstance(err, PipelineError) and err.app_id:
        print(f"App ID: {err.app_id} (created in Intune, check the admin center)")
    if args.verbose or args.debug:
        traceback.print_exc()


def _print_upload_result(result: UploadResult, title: str) -> None:
    print("=" * 70)
    print(title)
    print("=" * 70)
    if result.app_name:
        print(f"App Name:           {result.app_name}")
    print(f"App ID:             {result.app_id}")
    print(f"Content Version:    {result.content_version_id}")
    print(f"File ID:            {result.file_id}")
    print(f"File Name:          {result.file_name}")
    print(f"Encrypted Size:     {result.encrypted_size:,} bytes")
    print(f"Chunks:             {result.chunk_count}")
    print(f"Status:             {result.status}")
    print("=" * 70)


def _make_client(settings: UploadSettings, logger: Logger) -> GraphClient:
    return GraphClient(
        CredentialManager(),
        base_url=settings.graph_base_url,
        timeout=settings.request_timeout,
        logger=logger,
    )


def cmd_inspect(args: argparse.Namespace) -> int:
    """Handler for 'intunepush inspect' command.

    Extracts the package to a temporary directory, prints the manifest
    details and the chunk plan, and removes the temporary files again.

    Args:
        args: Parsed command-line arguments containing the package path.

    Returns:
        Exit code (0 for success, 1 for failure).
    """
    logger = get_logger(verbose=args.verbose, debug=args.debug)
    set_global_logger(logger)

    package_path = Path(args.package).resolve()
    print(f"Inspecting package: {package_path}")
    print()

    try:
        result = inspect_package(package_path)
    except IntunePushError as err:
        _report_error(err, args)
        return 1

    print("=" * 70)
    print("PACKAGE DETAILS")
    print("=" * 70)
    print(f"Package:            {result.package_path}")
    print(f"File Name:          {result.file_name}")
    print(f"Unencrypted Size:   {result.unencrypted_size:,} bytes")
    print(f"Encrypted Size:     {result.encrypted_size:,} bytes")
    print(f"Digest Algorithm:   {result.digest_algorithm}")
    print(f"Content Located By: {result.content_strategy}")
    print(f"Upload Chunks:      {result.chunk_count}")
    print("=" * 70)
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    """Handler for 'intunepush validate' command.

    Validates an app definition without reading a package or making network
    calls. This is useful for quick feedback and for CI/CD pre-checks.

    Args:
        args: Parsed command-line arguments containing the config path.

    Returns:
        Exit code (0 for a valid file, 1 for invalid).
    """
    logger = get_logger(verbose=args.verbose, debug=args.debug)
    set_global_logger(logger)

    config_path = Path(args.config).resolve()
    print(f"Validating app definition: {config_path}")
    print()

    result = validate_app_config(config_path)

    print("=" * 70)
    print("VALIDATION RESULTS")
    print("=" * 70)
    print(f"App Definition: {result.config_path}")
    print(f"Status:         {result.status.upper()}")
    print()

    if result.warnings:
        print(f"Warnings ({len(result.warnings)}):")
        for warning in result.warnings:
            print(f"  [WARNING] {warning}")
        print()

    if result.errors:
        print(f"Errors ({len(result.errors)}):")
        for error in result.errors:
            print(f"  [X] {error}")
        print()

    print("=" * 70)

    if result.status == "valid":
        print()
        print("[SUCCESS] App definition is valid!")
        return 0
    print()
    print(f"[FAILED] Validation failed with {len(result.errors)} error(s).")
    return 1


def cmd_upload(args: argparse.Namespace) -> int:
    """Handler for 'intunepush upload' command.

    Loads the app definition, creates the Win32 app in Intune and uploads the
    package as its first content version.

    Args:
        args: Parsed command-line arguments containing the package path,
            app definition path and flags.

    Returns:
        Exit code (0 for success, 1 for failure).

    Note:
        If the upload fails after the app was created, the app id is printed
        so the partially created app can be inspected or removed.
    """
    logger = get_logger(verbose=args.verbose, debug=args.debug)
    set_global_logger(logger)

    package_path = Path(args.package).resolve()
    config_path = Path(args.config).resolve()
    print(f"Uploading package: {package_path}")
    print(f"App definition:    {config_path}")
    print()

    try:
        config = load_effective_config(config_path)
        app = load_app_definition(config)
        settings = load_upload_settings(config)
        with _make_client(settings, logger) as client:
            result = upload_package(
                package_path,
                app,
                client=client,
                settings=settings,
                progress=_LoggerProgress(logger),
                logger=logger,
            )
    except IntunePushError as err:
        _report_error(err, args)
        return 1

    _print_upload_result(result, "UPLOAD RESULTS")
    print()
    print("[SUCCESS] App uploaded to Intune!")
    return 0


def cmd_update(args: argparse.Namespace) -> int:
    """Handler for 'intunepush update' command.

    Uploads a package as a new content version of an existing app. Upload
    settings are read from --config when given, otherwise defaults are used.

    Args:
        args: Parsed command-line arguments containing the app id, package
            path and flags.

    Returns:
        Exit code (0 for success, 1 for failure).
    """
    logger = get_logger(verbose=args.verbose, debug=args.debug)
    set_global_logger(logger)

    package_path = Path(args.package).resolve()
    print(f"Updating app:      {args.app_id}")
    print(f"Uploading package: {package_path}")
    print()

    try:
        settings = UploadSettings()
        if args.config:
            settings = load_upload_settings(load_effective_config(Path(args.config)))
        with _make_client(settings, logger) as client:
            result = update_package(
                args.app_id,
                package_path,
                client=client,
                settings=settings,
                progress=_LoggerProgress(logger),
                logger=logger,
            )
    except IntunePushError as err:
        _report_error(err, args)
        return 1

    _print_upload_result(result, "UPDATE RESULTS")
    print()
    print("[SUCCESS] App content updated in Intune!")
    return 0


def _add_output_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show progress and high-level status updates",
    )
    parser.add_argument(
        "-d",
        "--debug",
        action="store_true",
        help="Show detailed debugging output (implies --verbose)",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with all subcommands registered."""
    parser = argparse.ArgumentParser(
        prog="intunepush",
        description="intunepush - Upload Win32 (.intunewin) apps to Microsoft Intune",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"intunepush {__version__}",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        help="Available commands",
        required=True,
    )

    # 'inspect' command
    parser_inspect = subparsers.add_parser(
        "inspect",
        help="Show manifest details of a .intunewin package (no network)",
        description="Extract a .intunewin package locally and print its encryption manifest details.",
    )
    parser_inspect.add_argument(
        "package",
        help="Path to the .intunewin file",
    )
    _add_output_flags(parser_inspect)
    parser_inspect.set_defaults(func=cmd_inspect)

    # 'validate' command
    parser_validate = subparsers.add_parser(
        "validate",
        help="Validate an app definition file (no network)",
        description="Check an app definition YAML for syntax errors and missing fields without making network calls.",
    )
    parser_validate.add_argument(
        "config",
        help="Path to the app definition YAML file",
    )
    _add_output_flags(parser_validate)
    parser_validate.set_defaults(func=cmd_validate)

    # 'upload' command
    parser_upload = subparsers.add_parser(
        "upload",
        help="Create a Win32 app in Intune and upload a package",
        description="Create a new Win32 LOB app from an app definition and upload the package as its content.",
    )
    parser_upload.add_argument(
        "package",
        help="Path to the .intunewin file",
    )
    parser_upload.add_argument(
        "config",
        help="Path to the app definition YAML file",
    )
    _add_output_flags(parser_upload)
    parser_upload.set_defaults(func=cmd_upload)

    # 'update' command
    parser_update = subparsers.add_parser(
        "update",
        help="Upload a package as new content for an existing app",
        description="Create a new content version for an existing Win32 app and commit it.",
    )
    parser_update.add_argument(
        "app_id",
        help="Intune app ID of the existing app",
    )
    parser_update.add_argument(
        "package",
        help="Path to the .intunewin file",
    )
    parser_update.add_argument(
        "--config",
        default=None,
        help="App definition YAML to read upload settings from (default: built-in settings)",
    )
    _add_output_flags(parser_update)
    parser_update.set_defaults(func=cmd_update)

    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the intunepush CLI.

    This function is registered as the 'intunepush' console script in
    pyproject.toml.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    exit_code = args.func(args)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
