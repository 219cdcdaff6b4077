"""
Swarm Transfer

Distributed (BitTorrent) download of the full game client, identified by a
magnet link. The transfer runs in the backend's own threads; this module
only polls it from a single asyncio task and exposes start, progress,
completion and cancellation.
"""

import asyncio
from pathlib import Path
from typing import Any, Callable, List, Optional, Protocol

from synlauncher.constants import SWARM_LISTEN_INTERFACES, SWARM_POLL_INTERVAL
from synlauncher.exceptions import DownloadError
from synlauncher.log_utils import logger

from .interfaces import Pathish

SwarmProgressCallback = Callable[[int], Any]
SwarmCompleteCallback = Callable[[], Any]


class SwarmBackend(Protocol):
    """The operations SwarmTransfer needs from a torrent engine."""

    def add(self, magnet: str, save_path: str) -> Any: ...

    def progress(self, handle: Any) -> float: ...

    def is_complete(self, handle: Any) -> bool: ...

    def remove(self, handle: Any) -> None: ...


class LibtorrentBackend:
    """SwarmBackend backed by a libtorrent session."""

    def __init__(self, listen_interfaces: str = SWARM_LISTEN_INTERFACES):
        try:
            import libtorrent  # type: ignore[import-not-found]
        except ImportError as e:
            raise DownloadError(
                "Swarm transfers need libtorrent",
                details="install it with: pip install 'synlauncher[swarm]'",
            ) from e
        self._lt = libtorrent
        self._session = libtorrent.session({"listen_interfaces": listen_interfaces})

    def add(self, magnet: str, save_path: str) -> Any:
        try:
            params = self._lt.parse_magnet_uri(magnet)
        except (RuntimeError, ValueError) as e:
            raise DownloadError(
                "Invalid magnet link", url=magnet, details=str(e)
            ) from e
        params.save_path = save_path
        return self._session.add_torrent(params)

    def progress(self, handle: Any) -> float:
        return float(handle.status().progress)

    def is_complete(self, handle: Any) -> bool:
        status = handle.status()
        return bool(status.is_seeding or status.is_finished)

    def remove(self, handle: Any) -> None:
        # Downloaded files stay on disk
        self._session.remove_torrent(handle)


class SwarmTransfer:
    """
    One magnet-identified client transfer.

    Progress listeners receive integer percentages whenever the measured
    progress advances, then 100 once the transfer completes; completion
    listeners are then called exactly once. cancel() is safe to call at any
    time and does nothing after completion.

    Usage:
        transfer = SwarmTransfer(magnet, "/games/client", on_progress=print)
        transfer.start()
        completed = await transfer.wait()
    """

    def __init__(
        self,
        magnet: str,
        destination: Pathish,
        backend: Optional[SwarmBackend] = None,
        on_progress: Optional[SwarmProgressCallback] = None,
        on_complete: Optional[SwarmCompleteCallback] = None,
        poll_interval: float = SWARM_POLL_INTERVAL,
    ):
        if not magnet or not magnet.startswith("magnet:"):
            raise DownloadError("Invalid magnet link", url=magnet)
        self.magnet = magnet
        self.destination = Path(destination)
        self.poll_interval = poll_interval
        self._backend = backend
        self._progress_listeners: List[SwarmProgressCallback] = []
        self._complete_listeners: List[SwarmCompleteCallback] = []
        if on_progress:
            self._progress_listeners.append(on_progress)
        if on_complete:
            self._complete_listeners.append(on_complete)
        self._handle: Any = None
        self._task: Optional["asyncio.Task[None]"] = None
        self._last_percent = -1
        self._done = False
        self._cancelled = False
        self._error: Optional[BaseException] = None

    @property
    def done(self) -> bool:
        return self._done

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    def on_progress(self, callback: SwarmProgressCallback) -> "SwarmTransfer":
        self._progress_listeners.append(callback)
        return self

    def on_complete(self, callback: SwarmCompleteCallback) -> "SwarmTransfer":
        self._complete_listeners.append(callback)
        return self

    def start(self) -> "SwarmTransfer":
        """
        Join the swarm and begin polling. Must be called from a running event loop.

        Raises:
            DownloadError: If the transfer was already started, the backend is unavailable or the magnet is rejected.
        """
        if self._task is not None or self._cancelled:
            raise DownloadError(
                "Swarm transfer already started or cancelled", url=self.magnet
            )
        try:
            self.destination.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DownloadError(
                "Could not create download directory",
                url=self.magnet,
                details=str(e),
            ) from e
        if self._backend is None:
            self._backend = LibtorrentBackend()
        self._handle = self._backend.add(self.magnet, str(self.destination))
        logger.info(f"Joined swarm for client download into {self.destination}")
        self._task = asyncio.get_running_loop().create_task(self._poll())
        return self

    async def _poll(self) -> None:
        backend = self._backend
        assert backend is not None
        try:
            while not backend.is_complete(self._handle):
                percent = max(0, min(99, int(backend.progress(self._handle) * 100)))
                if percent > self._last_percent:
                    self._last_percent = percent
                    self._emit_progress(percent)
                await asyncio.sleep(self.poll_interval)
        except Exception as e:
            self._error = e
            logger.error(f"Swarm transfer failed: {e}")
            self._release()
            return

        self._done = True
        self._emit_progress(100)
        self._release()
        logger.info(f"Client download complete: {self.destination}")
        for listener in self._complete_listeners:
            try:
                listener()
            except Exception as e:  # noqa: BLE001 - listeners must not break the transfer
                logger.debug(f"Swarm completion callback error: {e}")

    def _emit_progress(self, percent: int) -> None:
        for listener in self._progress_listeners:
            try:
                listener(percent)
            except Exception as e:  # noqa: BLE001 - listeners must not break the transfer
                logger.debug(f"Swarm progress callback error: {e}")

    def _release(self) -> None:
        if self._handle is None or self._backend is None:
            return
        handle, self._handle = self._handle, None
        try:
            self._backend.remove(handle)
        except Exception as e:  # noqa: BLE001 - backend teardown is best effort
            logger.warning(f"Could not release swarm transfer: {e}")

    def cancel(self) -> None:
        """Stop the transfer and release it from the backend. Partial files are kept."""
        if self._done or self._cancelled:
            return
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._release()
        logger.info("Client download cancelled")

    async def wait(self) -> bool:
        """
        Wait for the transfer to finish.

        Returns:
            bool: True if it completed, False if it was cancelled.

        Raises:
            DownloadError: If the transfer was never started or the backend failed.
        """
        if self._task is None:
            if self._cancelled:
                return False
            raise DownloadError("Swarm transfer not started", url=self.magnet)
        await asyncio.wait({self._task})
        if self._error is not None:
            raise DownloadError(
                "Swarm transfer failed", url=self.magnet, details=str(self._error)
            ) from self._error
        return self._done
