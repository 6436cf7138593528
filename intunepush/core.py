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

"""Core orchestration for intunepush.

This module runs the complete upload workflow for one .intunewin package:

1. Extract the manifest and the encrypted payload from the archive
2. Create the Win32 LOB app and assign its category (skipped when updating)
3. Create a new content version
4. Create the content file entry
5. Wait for Intune to provision an Azure Storage SAS URI
6. Upload the payload in blocks and commit the block list
7. Commit the file with its encryption info
8. Wait for Intune to finish processing the file
9. Point the app at the new content version

Design Principles:

- Stages run strictly in order; nothing is attempted after a failure
- Category assignment is best-effort; a failure is logged as a warning
- Every failure is re-raised as PipelineError naming the stage, chained from
  the original error
- Remote objects created before a failure are not rolled back; the app id
  (if any) is attached to the PipelineError so it can be cleaned up
- The local scratch directory is always removed, best effort

Example:
    Programmatic usage:
        ```python
        from pathlib import Path

        from intunepush.auth import CredentialManager
        from intunepush.config import load_app_definition, load_effective_config
        from intunepush.core import upload_package
        from intunepush.graph import GraphClient

        config = load_effective_config(Path("apps/chrome.yaml"))
        app = load_app_definition(config)

        with GraphClient(CredentialManager()) as client:
            result = upload_package(Path("Chrome.intunewin"), app, client=client)

        print(f"App ID: {result.app_id}")
        ```
"""

from __future__ import annotations

from pathlib import Path
import threading
from typing import Protocol

from intunepush.cancellation import check_cancelled, interruptible_sleep
from intunepush.exceptions import IntunePushError, PipelineError, UploadCancelledError
from intunepush.graph import registrar
from intunepush.graph.client import GraphClient
from intunepush.graph.payloads import AppDefinition
from intunepush.intunewin import ExtractedPackage, cleanup_scratch_dir, extract_package
from intunepush.logging import Logger, get_global_logger
from intunepush.results import InspectResult, UploadResult
from intunepush.settings import UploadSettings
from intunepush.upload.blob import BlobUploader
from intunepush.upload.chunks import plan_chunks
from intunepush.upload.negotiation import await_storage_uri, renew_storage_session
from intunepush.upload.polling import STAGE_COMMIT_FILE, Sleeper
from intunepush.upload.processing import await_stage

# Progress checkpoints (percent)
PROGRESS_EXTRACTED = 10
PROGRESS_APP_CREATED = 20
PROGRESS_CONTENT_VERSION = 30
PROGRESS_FILE_ENTRY = 40
PROGRESS_STORAGE_READY = 50
PROGRESS_UPLOAD_START = 55
PROGRESS_UPLOAD_END = 85
PROGRESS_FILE_COMMITTED = 88
PROGRESS_PROCESSED = 92
PROGRESS_APP_COMMITTED = 96
PROGRESS_DONE = 100


class ProgressSink(Protocol):
    """Receives coarse progress updates from the pipeline."""

    def update(self, percentage: int, message: str) -> None:
        """Report progress.

        Args:
            percentage: 0 to 100, never decreasing within one upload.
            message: Short human-readable description of the current step.
        """
        ...


class _NullProgress:
    def update(self, percentage: int, message: str) -> None:
        pass


def upload_package(
    package_path: Path,
    app: AppDefinition,
    *,
    client: GraphClient,
    settings: UploadSettings | None = None,
    progress: ProgressSink | None = None,
    logger: Logger | None = None,
    cancel: threading.Event | None = None,
    scratch_root: Path | None = None,
    sleep: Sleeper = interruptible_sleep,
) -> UploadResult:
    """Create a Win32 LOB app in Intune and upload a package as its content.

    Args:
        package_path: Path to the .intunewin file.
        app: App definition (names, commands, detection rules, icon).
        client: Authenticated Graph client. May be shared between threads.
        settings: Timing, retry and chunking settings. Defaults to
            UploadSettings().
        progress: Optional progress sink receiving percentages 0 to 100.
        logger: Logger for progress output. Defaults to the global logger.
        cancel: Optional event; setting it stops the pipeline at the next
            network call, poll or chunk attempt.
        scratch_root: Parent directory for extraction. Defaults to the system
            temp directory.
        sleep: Sleep function (seconds, cancel). Injected in tests.

    Returns:
        UploadResult with the new app id and content details.

    Raises:
        PipelineError: On any failure. ``stage`` names the step that failed,
            ``cause`` (and ``__cause__``) holds the original exception and
            ``app_id`` is set when the app had already been created.

    Example:
        Cancelling from another thread:
            ```python
            cancel = threading.Event()
            worker = threading.Thread(
                target=upload_package,
                args=(package, app),
                kwargs={"client": client, "cancel": cancel},
            )
            worker.start()
            cancel.set()
            ```
    """
    return _run_pipeline(
        package_path,
        app=app,
        existing_app_id=None,
        client=client,
        settings=settings,
        progress=progress,
        logger=logger,
        cancel=cancel,
        scratch_root=scratch_root,
        sleep=sleep,
    )


def update_package(
    existing_app_id: str,
    package_path: Path,
    *,
    client: GraphClient,
    settings: UploadSettings | None = None,
    progress: ProgressSink | None = None,
    logger: Logger | None = None,
    cancel: threading.Event | None = None,
    scratch_root: Path | None = None,
    sleep: Sleeper = interruptible_sleep,
) -> UploadResult:
    """Upload a package as new content for an app that already exists.

    Runs the same pipeline as upload_package without creating the app. The
    final commit re-sends the app's existing icon so it is not lost.

    Args:
        existing_app_id: Intune id of the app to update.
        package_path: Path to the .intunewin file.
        client: Authenticated Graph client.
        settings: Timing, retry and chunking settings.
        progress: Optional progress sink.
        logger: Logger for progress output.
        cancel: Optional cancellation event.
        scratch_root: Parent directory for extraction.
        sleep: Sleep function (seconds, cancel).

    Returns:
        UploadResult for existing_app_id.

    Raises:
        PipelineError: On any failure, with app_id set to existing_app_id.
    """
    return _run_pipeline(
        package_path,
        app=None,
        existing_app_id=existing_app_id,
        client=client,
        settings=settings,
        progress=progress,
        logger=logger,
        cancel=cancel,
        scratch_root=scratch_root,
        sleep=sleep,
    )


def _run_pipeline(
    package_path: Path,
    *,
    app: AppDefinition | None,
    existing_app_id: str | None,
    client: GraphClient,
    settings: UploadSettings | None,
    progress: ProgressSink | None,
    logger: Logger | None,
    cancel: threading.Event | None,
    scratch_root: Path | None,
    sleep: Sleeper,
) -> UploadResult:
    settings = settings if settings is not None else UploadSettings()
    progress = progress if progress is not None else _NullProgress()
    logger = logger if logger is not None else get_global_logger()

    updating = app is None
    total_steps = 8 if updating else 9
    step = 0

    def next_step(message: str) -> None:
        nonlocal step
        step += 1
        logger.step(step, total_steps, message)

    stage = "extract_package"
    app_id = existing_app_id or ""
    package: ExtractedPackage | None = None
    try:
        check_cancelled(cancel, "extracting package")
        next_step("Extracting package...")
        package = extract_package(package_path, scratch_root=scratch_root, logger=logger)
        manifest = package.manifest
        encrypted_size = package.encrypted_size
        progress.update(PROGRESS_EXTRACTED, "Package extracted")

        if app is not None:
            stage = "create_application"
            next_step("Creating Win32 app...")
            app_id = registrar.create_application(
                client, app, manifest.file_name, cancel=cancel
            )
            if settings.app_category:
                _assign_category(client, app_id, settings.app_category, logger, cancel)
            progress.update(PROGRESS_APP_CREATED, "App created")

        stage = "create_content_version"
        next_step("Creating content version...")
        cv_id = registrar.create_content_version(client, app_id, cancel=cancel)
        progress.update(PROGRESS_CONTENT_VERSION, "Content version created")

        stage = "create_file_entry"
        next_step("Creating file entry...")
        file_id = registrar.create_file_entry(
            client, app_id, cv_id, manifest, encrypted_size, cancel=cancel
        )
        progress.update(PROGRESS_FILE_ENTRY, "File entry created")

        stage = "negotiate_storage"
        next_step("Waiting for Azure Storage URI...")
        session = await_storage_uri(
            client, app_id, cv_id, file_id, settings, cancel=cancel, sleep=sleep
        )
        progress.update(PROGRESS_STORAGE_READY, "Storage ready")

        stage = "upload_chunks"
        next_step(f"Uploading {encrypted_size:,} bytes...")

        def on_chunk(done: int, total: int) -> None:
            span = PROGRESS_UPLOAD_END - PROGRESS_UPLOAD_START
            progress.update(
                PROGRESS_UPLOAD_START + span * done // total,
                f"Uploaded chunk {done}/{total}",
            )

        uploader = BlobUploader(
            settings,
            renew=lambda: renew_storage_session(
                client, app_id, cv_id, file_id, settings, cancel=cancel, sleep=sleep
            ),
            cancel=cancel,
            sleep=sleep,
            logger=logger,
            on_chunk=on_chunk,
        )
        progress.update(PROGRESS_UPLOAD_START, "Uploading")
        uploader.upload(session, package.encrypted_file)
        progress.update(PROGRESS_UPLOAD_END, "Upload complete")

        stage = "commit_file"
        next_step("Committing file...")
        registrar.commit_file(client, app_id, cv_id, file_id, manifest, cancel=cancel)
        progress.update(PROGRESS_FILE_COMMITTED, "File committed")

        stage = "await_processing"
        next_step("Waiting for Intune to process the file...")
        await_stage(
            client, app_id, cv_id, file_id, STAGE_COMMIT_FILE, settings,
            cancel=cancel, sleep=sleep,
        )
        progress.update(PROGRESS_PROCESSED, "File processed")

        stage = "commit_application"
        next_step("Committing app...")
        registrar.commit_application(
            client, app_id, cv_id, preserve_icon=updating, cancel=cancel
        )
        progress.update(PROGRESS_APP_COMMITTED, "App committed")
    except Exception as err:
        logger.verbose("UPLOAD", f"Failed at {stage}: {err}")
        raise PipelineError(stage, err, app_id or None) from err
    finally:
        if package is not None:
            cleanup_scratch_dir(package.scratch_dir, logger)

    progress.update(PROGRESS_DONE, "Done")
    logger.verbose("UPLOAD", f"Upload complete: app {app_id}")
    return UploadResult(
        app_id=app_id,
        app_name=app.display_name if app is not None else "",
        content_version_id=cv_id,
        file_id=file_id,
        file_name=manifest.file_name,
        encrypted_size=encrypted_size,
        chunk_count=len(uploader.block_ids),
        status="success",
    )


def _assign_category(
    client: GraphClient,
    app_id: str,
    category_name: str,
    logger: Logger,
    cancel: threading.Event | None,
) -> None:
    try:
        registrar.assign_category(client, app_id, category_name, cancel=cancel)
    except UploadCancelledError:
        raise
    except IntunePushError as err:
        logger.warning("GRAPH", f"Failed to assign category '{category_name}': {err}")


def inspect_package(
    package_path: Path,
    settings: UploadSettings | None = None,
    scratch_root: Path | None = None,
) -> InspectResult:
    """Read a package's manifest and payload size without any network calls.

    Args:
        package_path: Path to the .intunewin file.
        settings: Used to compute the chunk count an upload would use.
        scratch_root: Parent directory for extraction.

    Returns:
        InspectResult describing the package.

    Raises:
        PackagingError: If the package cannot be read.
    """
    settings = settings if settings is not None else UploadSettings()
    logger = get_global_logger()
    package = extract_package(package_path, scratch_root=scratch_root, logger=logger)
    try:
        encrypted_size = package.encrypted_size
        chunks = plan_chunks(encrypted_size, settings.chunk_size_for(encrypted_size))
        return InspectResult(
            package_path=str(package_path),
            file_name=package.manifest.file_name,
            unencrypted_size=package.manifest.unencrypted_size,
            encrypted_size=encrypted_size,
            content_strategy=package.content_strategy,
            chunk_count=len(chunks),
            digest_algorithm=package.manifest.file_digest_algorithm,
        )
    finally:
        cleanup_scratch_dir(package.scratch_dir, logger)
