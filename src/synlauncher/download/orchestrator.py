"""
Synchronization Orchestrator

This module implements the orchestration layer that drives the version
resolver, transfer engine, archive extractor and install state store for
single-addon operations, bulk addon reconciliation, client patching,
client acquisition and client launch.
"""

import asyncio
import functools
import inspect
import os
import subprocess
import sys
import tempfile
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from synlauncher.config import LauncherConfig
from synlauncher.constants import (
    ADDON_TEMP_ZIP_SUFFIX,
    CLIENT_EXECUTABLES,
    LAUNCH_EXECUTABLE,
    PHASE_CHECKING,
    PHASE_UPDATING,
)
from synlauncher.exceptions import (
    ConfigurationError,
    DownloadError,
    FileSystemError,
    NotInstalledError,
    SynLauncherError,
)
from synlauncher.log_utils import logger

from .async_client import AsyncGitHubClient
from .files import (
    ArchiveExtractor,
    MoveProgressCallback,
    _sanitize_path_component,
    addons_dir_for,
    is_valid_client_dir,
)
from .github_source import VersionResolver
from .interfaces import (
    LauncherState,
    OperationResult,
    PatchLinkResolver,
    Pathish,
    ProgressEvent,
    ProgressListener,
    SourceDescriptor,
    SyncReport,
    TransferProgressCallback,
)
from .state import InstallStateStore
from .swarm import (
    SwarmBackend,
    SwarmCompleteCallback,
    SwarmProgressCallback,
    SwarmTransfer,
)
from .version import (
    archive_url,
    branch_candidates,
    extract_patch_version,
    filename_from_url,
)

PATCH_INSTALLED_MESSAGE = "Patch installed! Ready to launch Synastria."


class SyncOrchestrator:
    """
    Coordinates the acquisition and synchronization pipeline.

    This class coordinates:
    - Addon install, update and uninstall with state persistence
    - Bulk reconciliation of installed addons against the catalog
    - Client patch download and extraction
    - Swarm download of the full client

    Every step of a single operation is awaited before the next one starts;
    archive work runs in the default executor.
    """

    def __init__(
        self,
        config: LauncherConfig,
        client: Optional[AsyncGitHubClient] = None,
        store: Optional[InstallStateStore] = None,
        extractor: Optional[ArchiveExtractor] = None,
        resolver: Optional[VersionResolver] = None,
        swarm_backend: Optional[SwarmBackend] = None,
        temp_dir: Optional[Pathish] = None,
    ):
        """
        Create an orchestrator bound to `config`.

        Parameters:
            config (LauncherConfig): Resolved launcher configuration.
            client (Optional[AsyncGitHubClient]): HTTP client; one is built from `config` and owned by the orchestrator when omitted.
            store (Optional[InstallStateStore]): State store; defaults to the settings file of `config`.
            extractor (Optional[ArchiveExtractor]): Archive extractor.
            resolver (Optional[VersionResolver]): Version resolver; defaults to one sharing `client`.
            swarm_backend (Optional[SwarmBackend]): Torrent backend for client downloads; libtorrent when omitted.
            temp_dir (Optional[Pathish]): Directory for downloaded addon archives; the system temp directory when omitted.
        """
        self.config = config
        self._owns_client = client is None
        self.client = client or AsyncGitHubClient.from_config(config)
        self.store = store or InstallStateStore(config.settings_file)
        self.extractor = extractor or ArchiveExtractor()
        self.resolver = resolver or VersionResolver(
            self.client, config.branch_overrides
        )
        self.swarm_backend = swarm_backend
        self.temp_dir = Path(temp_dir) if temp_dir else Path(tempfile.gettempdir())

    async def __aenter__(self) -> "SyncOrchestrator":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self.client.close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def _run_blocking(func: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))

    @staticmethod
    def _client_dir(state: LauncherState, client_dir: Optional[Pathish]) -> str:
        directory = client_dir or state.client.client_dir
        if not directory:
            raise ConfigurationError(
                "Client directory is not set",
                details="pass a client directory or run 'synlauncher client set-dir'",
            )
        return str(directory)

    def _addons_dir(self, state: LauncherState, client_dir: Optional[Pathish]) -> Path:
        return addons_dir_for(self._client_dir(state, client_dir))

    def _temp_zip_path(self, addon: SourceDescriptor) -> Path:
        folder = _sanitize_path_component(addon.folder)
        if folder is None:
            raise FileSystemError(f"Unsafe addon folder name: {addon.folder!r}")
        return self.temp_dir / f"{folder}{ADDON_TEMP_ZIP_SUFFIX}"

    @staticmethod
    def _failure(action: str, error: Exception) -> OperationResult:
        if isinstance(error, SynLauncherError):
            logger.error(f"Failed to {action}: {error}")
        else:
            logger.exception(f"Unexpected error while trying to {action}: {error}")
        return OperationResult.fail(str(error))

    @staticmethod
    def _emit(listener: Optional[ProgressListener], event: ProgressEvent) -> None:
        if listener is None:
            return
        try:
            listener(event)
        except Exception as e:  # noqa: BLE001 - listeners must not break reconciliation
            logger.debug(f"Progress listener error: {e}")

    async def _transfer_and_extract(
        self, addon: SourceDescriptor, addons_dir: Path
    ) -> List[str]:
        """
        Download the addon archive, trying each candidate branch, and install it.

        Raises:
            DownloadError: The error of the last branch attempted when all fail.
            ArchiveError: If the downloaded archive cannot be installed.
        """
        default_branch = await self.resolver.resolve_default_branch(addon.repo)
        zip_path = self._temp_zip_path(addon)
        last_error: Optional[DownloadError] = None
        for branch in branch_candidates(default_branch):
            url = archive_url(addon.repo, branch)
            logger.info(f"Downloading {addon.name} from {url}")
            try:
                await self.client.download(url, zip_path)
            except DownloadError as e:
                logger.debug(f"Branch '{branch}' of {addon.name} failed: {e}")
                last_error = e
                continue
            break
        else:
            assert last_error is not None
            raise last_error

        return await self._run_blocking(
            self.extractor.extract_addon, zip_path, addons_dir
        )

    # ------------------------------------------------------------------
    # Single-addon operations
    # ------------------------------------------------------------------

    async def install_addon(
        self, addon: SourceDescriptor, client_dir: Optional[Pathish] = None
    ) -> OperationResult:
        """
        Install the latest version of `addon` and record it.

        Returns:
            OperationResult: Success carries `hash` and `lastUpdated`.
        """
        return await self._install(addon, client_dir, require_installed=False)

    async def update_addon(
        self, addon: SourceDescriptor, client_dir: Optional[Pathish] = None
    ) -> OperationResult:
        """Reinstall an installed addon at its latest version."""
        return await self._install(addon, client_dir, require_installed=True)

    async def _install(
        self,
        addon: SourceDescriptor,
        client_dir: Optional[Pathish],
        require_installed: bool,
    ) -> OperationResult:
        action = f"{'update' if require_installed else 'install'} {addon.name}"
        try:
            state = self.store.load_or_default()
            if require_installed and not self.store.is_installed(state, addon.name):
                raise NotInstalledError(addon.name)
            addons_dir = self._addons_dir(state, client_dir)
            version_id = await self.resolver.resolve_addon_version(addon.repo)
            folders = await self._transfer_and_extract(addon, addons_dir)
            record = self.store.upsert(state, addon.name, version_id)
            self.store.save(state)
        except Exception as e:
            return self._failure(action, e)

        logger.info(f"Installed {addon.name} ({', '.join(folders)}) at {version_id}")
        return OperationResult.ok(
            hash=record.version_id, lastUpdated=record.installed_at
        )

    async def uninstall_addon(
        self, addon: SourceDescriptor, client_dir: Optional[Pathish] = None
    ) -> OperationResult:
        """Remove an installed addon's folders and its record."""
        try:
            state = self.store.load_or_default()
            if not self.store.is_installed(state, addon.name):
                raise NotInstalledError(addon.name)
            addons_dir = self._addons_dir(state, client_dir)
            removed = await self._run_blocking(
                self.extractor.uninstall_addon, addon.folder, addons_dir
            )
            self.store.remove(state, addon.name)
            self.store.save(state)
        except Exception as e:
            return self._failure(f"uninstall {addon.name}", e)

        logger.info(f"Uninstalled {addon.name}")
        return OperationResult.ok(removed=removed)

    async def get_addon_version(self, addon: SourceDescriptor) -> OperationResult:
        """Resolve the latest remote version of `addon` without installing it."""
        try:
            version_id = await self.resolver.resolve_addon_version(addon.repo)
        except Exception as e:
            return self._failure(f"resolve version of {addon.name}", e)
        return OperationResult.ok(hash=version_id)

    def get_addons_list(self, catalog: Sequence[SourceDescriptor]) -> OperationResult:
        """Merge the catalog with the installed records."""
        try:
            state = self.store.load_or_default()
        except SynLauncherError as e:
            return self._failure("load installed addons", e)

        addons: List[Dict[str, Any]] = []
        for addon in catalog:
            record = self.store.get(state, addon.name)
            entry = addon.to_dict()
            entry.update(
                {
                    "installed": record is not None,
                    "lastUpdated": record.installed_at if record else None,
                    "hash": record.version_id if record else None,
                }
            )
            if record is not None and record.pending:
                entry["pending"] = True
            addons.append(entry)
        return OperationResult.ok(addons=addons)

    # ------------------------------------------------------------------
    # Bulk reconciliation
    # ------------------------------------------------------------------

    async def auto_update_addons(
        self,
        catalog: Sequence[SourceDescriptor],
        client_dir: Optional[Pathish] = None,
        on_progress: Optional[ProgressListener] = None,
    ) -> SyncReport:
        """
        Bring every installed catalog addon up to its latest version.

        Addons without an installed record are never touched. Each addon is
        processed in catalog order and independently: a failure is recorded in
        the report and the pass continues with the next one.

        Returns:
            SyncReport: Which addons were checked, updated, already current or failed.

        Raises:
            ConfigFileError: If the settings file cannot be read.
            ConfigurationError: If no client directory is known.
            FileSystemError: If the final state cannot be saved.
        """
        start_time = time.time()
        state = self.store.load_or_default()
        addons_dir = self._addons_dir(state, client_dir)
        candidates = [
            addon for addon in catalog if self.store.is_installed(state, addon.name)
        ]
        total = len(candidates)
        report = SyncReport()
        logger.info(f"Checking {total} installed addon(s) for updates")

        for index, addon in enumerate(candidates, start=1):
            report.checked.append(addon.name)
            self._emit(
                on_progress, ProgressEvent(index, total, addon.name, PHASE_CHECKING)
            )
            record = self.store.get(state, addon.name)
            assert record is not None

            try:
                latest: Optional[str] = await self.resolver.resolve_addon_version(
                    addon.repo
                )
            except SynLauncherError as e:
                logger.warning(
                    f"Could not resolve latest version of {addon.name}, updating anyway: {e}"
                )
                latest = None

            if (
                latest is not None
                and latest == record.version_id
                and not record.pending
            ):
                logger.info(f"{addon.name} is up to date")
                report.up_to_date.append(addon.name)
                continue

            logger.info(
                f"Updating {addon.name}: {record.version_id or 'unknown'} -> {latest or 'unknown'}"
            )
            self._emit(
                on_progress, ProgressEvent(index, total, addon.name, PHASE_UPDATING)
            )
            try:
                await self._reinstall(state, addon, addons_dir, latest)
            except Exception as e:
                if isinstance(e, SynLauncherError):
                    logger.error(f"Failed to update {addon.name}: {e}")
                else:
                    logger.exception(f"Unexpected error updating {addon.name}: {e}")
                report.failed[addon.name] = str(e)
                continue
            report.updated.append(addon.name)

        self.store.save(state)
        pending = self.store.pending(state)
        if pending:
            logger.warning(
                f"Addon(s) removed but not reinstalled, retry the update: {', '.join(pending)}"
            )
        self._log_sync_summary(report, start_time)
        return report

    async def _reinstall(
        self,
        state: LauncherState,
        addon: SourceDescriptor,
        addons_dir: Path,
        version_id: Optional[str],
    ) -> None:
        # The record stays pending on disk until the reinstall succeeds
        self.store.mark_pending(state, addon.name)
        try:
            self.store.save(state)
        except SynLauncherError:
            record = self.store.get(state, addon.name)
            if record is not None:
                record.pending = False
            raise
        await self._run_blocking(
            self.extractor.uninstall_addon, addon.folder, addons_dir
        )
        await self._transfer_and_extract(addon, addons_dir)
        self.store.upsert(state, addon.name, version_id)

    def _log_sync_summary(self, report: SyncReport, start_time: float) -> None:
        elapsed_time = time.time() - start_time
        logger.info("Addon update completed")
        logger.info(f"Time taken: {elapsed_time:.2f} seconds")
        logger.info(
            f"Checked: {len(report.checked)}, updated: {len(report.updated)}, "
            f"up to date: {len(report.up_to_date)}, failed: {len(report.failed)}"
        )
        for name, message in report.failed.items():
            logger.info(f"  - {name}: {message}")

    # ------------------------------------------------------------------
    # Client
    # ------------------------------------------------------------------

    async def install_patch(
        self,
        patch_link_resolver: PatchLinkResolver,
        client_dir: Optional[Pathish] = None,
        progress_callback: Optional[TransferProgressCallback] = None,
        on_move_progress: Optional[MoveProgressCallback] = None,
    ) -> OperationResult:
        """
        Download the newest client patch into the client directory and apply it.

        The patch version parsed from the downloaded file name is saved only
        when the extraction leaves a client executable in place.

        Returns:
            OperationResult: Success carries `patchVersion` (None when the file name has no version).
        """
        try:
            state = self.store.load_or_default()
            target_dir = self._client_dir(state, client_dir)
            link = patch_link_resolver()
            if inspect.isawaitable(link):
                link = await link
        except Exception as e:
            return self._failure("resolve the patch download link", e)

        if not isinstance(link, str) or not link.startswith("http"):
            logger.error(f"Invalid patch URL: {link!r}")
            return OperationResult.fail("Failed to find a valid patch download link.")

        filename = _sanitize_path_component(filename_from_url(link))
        if filename is None:
            return OperationResult.fail(f"Patch link has no file name: {link}")
        zip_path = Path(target_dir) / filename

        try:
            await self.client.download(
                link, zip_path, progress_callback=progress_callback
            )
        except Exception as e:
            result = self._failure("download patch", e)
            return OperationResult.fail(f"Error downloading patch: {result.message}")

        try:
            verified = await self._run_blocking(
                self.extractor.extract_client, zip_path, target_dir, on_move_progress
            )
            if not verified:
                raise FileSystemError(
                    f"No {' or '.join(CLIENT_EXECUTABLES)} found after extraction",
                    path=target_dir,
                )
            patch_version = extract_patch_version(filename)
            if patch_version is not None:
                state.client.patch_version = patch_version
                self.store.save(state)
        except Exception as e:
            result = self._failure("apply patch", e)
            return OperationResult.fail(f"Patch extraction failed: {result.message}")

        logger.info(f"Applied patch {filename} to {target_dir}")
        return OperationResult.ok(PATCH_INSTALLED_MESSAGE, patchVersion=patch_version)

    def download_client(
        self,
        magnet: str,
        destination: Pathish,
        on_progress: Optional[SwarmProgressCallback] = None,
        on_complete: Optional[SwarmCompleteCallback] = None,
    ) -> SwarmTransfer:
        """
        Start a swarm download of the full client into `destination`.

        When the transfer completes and `destination` holds a client
        executable, it is recorded as the installed client directory.

        Returns:
            SwarmTransfer: The started transfer handle.
        """
        transfer = SwarmTransfer(
            magnet,
            destination,
            backend=self.swarm_backend,
            on_progress=on_progress,
        )
        transfer.on_complete(
            functools.partial(self._record_client_download, destination)
        )
        if on_complete is not None:
            transfer.on_complete(on_complete)
        return transfer.start()

    def _record_client_download(self, destination: Pathish) -> None:
        if not is_valid_client_dir(destination):
            logger.warning(
                f"Client download finished but no client executable was found in {destination}"
            )
            return
        result = self.set_client_directory(destination)
        if not result.success:
            logger.error(f"Could not record client directory: {result.message}")

    def set_client_directory(self, path: Pathish) -> OperationResult:
        """Record `path` as the installed client after checking it holds a client executable."""
        directory = str(Path(path).expanduser())
        if not is_valid_client_dir(directory):
            return OperationResult.fail(
                f"{directory} does not contain {' or '.join(CLIENT_EXECUTABLES)}"
            )
        try:
            state = self.store.load_or_default()
            state.client.installed = True
            state.client.client_dir = directory
            self.store.save(state)
        except SynLauncherError as e:
            return self._failure("save client directory", e)
        logger.info(f"Client directory set to {directory}")
        return OperationResult.ok(clientDir=directory)

    def launch_client(self, client_dir: Optional[Pathish] = None) -> OperationResult:
        """
        Start the patched client detached from this process.

        The executable runs from the client directory with its standard
        streams closed, so it outlives the launcher.

        Returns:
            OperationResult: Failure when no client directory is known, the
            executable is missing or the process cannot be started.
        """
        try:
            state = self.store.load_or_default()
            directory = self._client_dir(state, client_dir)
        except SynLauncherError as e:
            return self._failure("launch the client", e)

        exe_path = os.path.join(directory, LAUNCH_EXECUTABLE)
        if not os.path.isfile(exe_path):
            message = f"{LAUNCH_EXECUTABLE} not found in {directory}"
            return OperationResult.fail(message)

        popen_kwargs: Dict[str, Any] = {
            "cwd": directory,
            "stdin": subprocess.DEVNULL,
            "stdout": subprocess.DEVNULL,
            "stderr": subprocess.DEVNULL,
        }
        if sys.platform == "win32":
            popen_kwargs["creationflags"] = (
                subprocess.DETACHED_PROCESS | subprocess.CREATE_NEW_PROCESS_GROUP
            )
        else:
            popen_kwargs["start_new_session"] = True

        try:
            subprocess.Popen([exe_path], **popen_kwargs)
        except OSError as e:
            logger.error(f"Failed to launch {exe_path}: {e}")
            return OperationResult.fail(str(e))

        logger.info(f"Launched {exe_path}")
        return OperationResult.ok()
