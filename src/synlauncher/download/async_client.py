"""
Async HTTP Client for synlauncher

This module provides the HTTP transfer engine built on aiohttp: GitHub API
JSON requests and streamed file downloads, both following redirects manually
under a fixed hop budget and classifying failures into the synlauncher
exception hierarchy.
"""

import asyncio
import os
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any, AsyncIterator, Optional, Tuple
from urllib.parse import urljoin

import aiofiles  # type: ignore[import-untyped]
import aiohttp
from aiohttp import ClientResponse, ClientSession, ClientTimeout, TCPConnector

from synlauncher.constants import (
    BYTES_PER_MEGABYTE,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_MAX_REDIRECTS,
    DIAGNOSTIC_BODY_LIMIT,
    FILE_SIZE_MB_LOGGING_THRESHOLD,
    HTTP_STATUS_ERROR_THRESHOLD,
    HTTP_STATUS_NOT_FOUND,
    HTTP_STATUS_REDIRECT_MAX,
    HTTP_STATUS_REDIRECT_MIN,
    RATE_LIMIT_STATUS_CODES,
)
from synlauncher.exceptions import (
    APIError,
    DownloadCancelledError,
    FileSystemError,
    HTTPError,
    NetworkError,
    RateLimitError,
    RedirectBudgetExceededError,
    ResourceNotFoundError,
)
from synlauncher.log_utils import logger
from synlauncher.utils import get_request_headers, utc_timestamp

from .interfaces import Pathish, TransferProgressCallback

if TYPE_CHECKING:
    from synlauncher.config import LauncherConfig


def _is_redirect(status: int) -> bool:
    return HTTP_STATUS_REDIRECT_MIN <= status <= HTTP_STATUS_REDIRECT_MAX


def _parse_int_header(response: ClientResponse, name: str) -> Optional[int]:
    raw_value = response.headers.get(name)
    if not raw_value:
        return None
    try:
        return int(raw_value)
    except (TypeError, ValueError):
        return None


class AsyncGitHubClient:
    """
    Asynchronous HTTP client for GitHub API calls and archive downloads.

    Redirects are never followed by aiohttp itself: each request is issued
    with `allow_redirects=False` and 3xx responses carrying a `Location`
    header are re-issued by the client until the redirect budget runs out.

    Example:
        async with AsyncGitHubClient(github_token=token) as client:
            commits = await client.get_json(
                "https://api.github.com/repos/owner/repo/commits"
            )
    """

    def __init__(
        self,
        github_token: Optional[str] = None,
        max_redirects: int = DEFAULT_MAX_REDIRECTS,
        error_log_path: Optional[Pathish] = None,
        connector_limit: int = 10,
    ) -> None:
        """
        Initialize the async client.

        Parameters:
            github_token (Optional[str]): Token sent to the GitHub API host only.
            max_redirects (int): Default redirect hop budget per request.
            error_log_path (Optional[Pathish]): File overwritten with the details of the last failed download; no diagnostic file is written when omitted.
            connector_limit (int): Maximum total connections in the pool.
        """
        self.github_token = github_token
        self.max_redirects = max(0, int(max_redirects))
        self.error_log_path = Path(error_log_path) if error_log_path else None
        self.connector_limit = max(1, int(connector_limit))
        # Large client archives must not be cut off by a total timeout
        self.timeout = ClientTimeout(total=None)
        self._session: Optional[ClientSession] = None
        self._closed: bool = False

    @classmethod
    def from_config(cls, config: "LauncherConfig") -> "AsyncGitHubClient":
        """Build a client using the token, redirect budget and diagnostic path of `config`."""
        return cls(
            github_token=config.github_token,
            max_redirects=config.max_redirects,
            error_log_path=config.download_error_log,
        )

    async def __aenter__(self) -> "AsyncGitHubClient":
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _ensure_session(self) -> ClientSession:
        """
        Ensure a session exists, creating one if needed.

        Returns:
            ClientSession: The active aiohttp session.
        """
        if self._session is None or self._session.closed:
            connector = TCPConnector(
                limit=self.connector_limit,
                enable_cleanup_closed=True,
            )
            self._session = ClientSession(connector=connector, timeout=self.timeout)
        return self._session

    async def close(self) -> None:
        """Close the client session and release resources."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
        self._closed = True

    @asynccontextmanager
    async def _open(
        self,
        url: str,
        max_redirects: int,
        write_diagnostic: bool = False,
    ) -> AsyncIterator[Tuple[ClientResponse, str]]:
        """
        Issue a GET request, following redirects within `max_redirects` hops.

        Yields:
            tuple: The successful response and the final URL it was served from.

        Raises:
            RedirectBudgetExceededError: If a redirect arrives with no budget left.
            RateLimitError: For 403 and 429 responses.
            HTTPError: For any other terminal non-success response.
        """
        session = await self._ensure_session()
        current_url = url
        remaining = max_redirects
        while True:
            headers = get_request_headers(current_url, self.github_token)
            async with session.get(
                current_url, headers=headers, allow_redirects=False
            ) as response:
                location = response.headers.get("Location")
                if _is_redirect(response.status) and location:
                    if remaining <= 0:
                        logger.error(
                            f"Redirect budget of {max_redirects} exhausted for {url}"
                        )
                        raise RedirectBudgetExceededError(url, max_redirects)
                    remaining -= 1
                    next_url = urljoin(current_url, location)
                    logger.debug(
                        f"Following redirect {response.status} from {current_url} to {next_url}"
                    )
                    current_url = next_url
                    continue

                if (
                    response.status >= HTTP_STATUS_ERROR_THRESHOLD
                    or _is_redirect(response.status)
                ):
                    await self._raise_for_response(
                        response, current_url, write_diagnostic
                    )

                yield response, current_url
                return

    async def _raise_for_response(
        self, response: ClientResponse, url: str, write_diagnostic: bool
    ) -> None:
        """Read the failed response's body, record it and raise the matching error."""
        status = response.status
        try:
            body = await response.text(errors="replace")
        except aiohttp.ClientError as e:
            body = f"<body unavailable: {e}>"

        logger.error(f"HTTP error {status} for {url}")
        logger.debug(f"Response body for {url}: {body[:DIAGNOSTIC_BODY_LIMIT]}")
        if write_diagnostic:
            await self._write_diagnostic(url, status, body)

        if status in RATE_LIMIT_STATUS_CODES:
            raise RateLimitError(
                status_code=status,
                url=url,
                body=body,
                reset_time=_parse_int_header(response, "X-RateLimit-Reset"),
            )
        raise HTTPError(
            f"HTTP error {status}",
            status_code=status,
            url=url,
            body=body,
        )

    async def _write_diagnostic(self, url: str, status: int, body: str) -> None:
        """Overwrite the diagnostic file with the details of a failed download."""
        if self.error_log_path is None:
            return
        entry = (
            f"Time: {utc_timestamp()}\n"
            f"URL: {url}\n"
            f"Status: {status}\n"
            f"Body:\n{body[:DIAGNOSTIC_BODY_LIMIT]}\n"
        )
        try:
            self.error_log_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(self.error_log_path, "w", encoding="utf-8") as f:
                await f.write(entry)
        except OSError as e:
            logger.warning(
                f"Could not write download diagnostics to {self.error_log_path}: {e}"
            )

    async def get_json(self, url: str, max_redirects: Optional[int] = None) -> Any:
        """
        Fetch and decode a JSON document.

        Parameters:
            url (str): Request URL.
            max_redirects (Optional[int]): Hop budget; the client default when omitted.

        Returns:
            Any: The decoded JSON payload.

        Raises:
            ResourceNotFoundError: On a 404 response.
            RateLimitError: On 403 or 429.
            HTTPError: On any other non-success response.
            RedirectBudgetExceededError: When the redirect chain is too long.
            NetworkError: On connection-level failures.
            APIError: When the body is not valid JSON.
        """
        budget = self.max_redirects if max_redirects is None else max_redirects
        try:
            async with self._open(url, budget) as (response, _final_url):
                remaining = _parse_int_header(response, "X-RateLimit-Remaining")
                if remaining is not None:
                    logger.debug(f"GitHub API rate limit remaining: {remaining}")
                return await response.json(content_type=None)
        except RateLimitError:
            raise
        except HTTPError as e:
            if e.status_code == HTTP_STATUS_NOT_FOUND:
                raise ResourceNotFoundError(
                    "Resource not found", endpoint=url, details=e.body
                ) from e
            raise
        except aiohttp.ClientError as e:
            logger.error(f"Network error fetching {url}: {e}")
            raise NetworkError(f"Network error: {e}", url=url) from e
        except ValueError as e:
            raise APIError("Invalid JSON response", endpoint=url, details=str(e)) from e

    async def download(
        self,
        url: str,
        destination: Pathish,
        max_redirects: Optional[int] = None,
        progress_callback: Optional[TransferProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> str:
        """
        Download a URL to `destination` with progress tracking and atomic replacement.

        The body is streamed to a temporary sibling of `destination` that is
        moved into place only after the transfer completes; the temporary file
        is removed on every failure path, including cancellation.

        Parameters:
            url (str): Source URL.
            destination (Pathish): Target file path; parent directories are created.
            max_redirects (Optional[int]): Hop budget; the client default when omitted.
            progress_callback (Optional[callable]): Called with (downloaded, total or None, filename). May be a coroutine function; exceptions it raises are logged and ignored.
            cancel_event (Optional[asyncio.Event]): When set, the transfer stops at the next chunk.
            chunk_size (int): Bytes read per chunk.

        Returns:
            str: The final URL after redirects.

        Raises:
            DownloadCancelledError: If `cancel_event` is set before completion.
            RedirectBudgetExceededError: When the redirect chain is too long.
            RateLimitError: On 403 or 429.
            HTTPError: On any other non-success response.
            NetworkError: On connection-level failures.
            FileSystemError: If the destination cannot be written.
        """
        budget = self.max_redirects if max_redirects is None else max_redirects
        target = Path(destination)
        temp_path = target.with_name(
            f"{target.name}.tmp.{os.getpid()}.{int(time.time() * 1000)}"
        )

        try:
            start_time = time.time()
            target.parent.mkdir(parents=True, exist_ok=True)
            async with self._open(url, budget, write_diagnostic=True) as (
                response,
                final_url,
            ):
                total_size = _parse_int_header(response, "Content-Length") or None
                downloaded = 0
                async with aiofiles.open(temp_path, "wb") as f:
                    async for chunk in response.content.iter_chunked(chunk_size):
                        if cancel_event is not None and cancel_event.is_set():
                            raise DownloadCancelledError("Download cancelled", url=url)
                        await f.write(chunk)
                        downloaded += len(chunk)
                        await self._report_progress(
                            progress_callback, downloaded, total_size, target.name
                        )
                if cancel_event is not None and cancel_event.is_set():
                    raise DownloadCancelledError("Download cancelled", url=url)

            # Atomic replace to handle existing targets across platforms
            temp_path.replace(target)
        except aiohttp.ClientError as e:
            self._remove_partial(temp_path)
            logger.error(f"Download failed for {url}: {e}")
            raise NetworkError(f"Network error: {e}", url=url) from e
        except OSError as e:
            self._remove_partial(temp_path)
            logger.error(f"Filesystem error saving {target}: {e}")
            raise FileSystemError(
                "Could not save download", path=str(target), details=str(e)
            ) from e
        except (Exception, asyncio.CancelledError):
            self._remove_partial(temp_path)
            raise

        elapsed = time.time() - start_time
        file_size_mb = downloaded / BYTES_PER_MEGABYTE
        logger.debug(f"Downloaded {final_url} in {elapsed:.2f}s ({file_size_mb:.2f} MB)")
        if file_size_mb >= FILE_SIZE_MB_LOGGING_THRESHOLD:
            logger.info(f"Downloaded: {target.name} ({file_size_mb:.1f} MB)")
        else:
            logger.info(f"Downloaded: {target.name} ({downloaded} bytes)")
        return final_url

    @staticmethod
    async def _report_progress(
        progress_callback: Optional[TransferProgressCallback],
        downloaded: int,
        total: Optional[int],
        filename: str,
    ) -> None:
        if not progress_callback:
            return
        try:
            result = progress_callback(downloaded, total, filename)
            if asyncio.iscoroutine(result):
                await result
        except Exception as cb_err:  # noqa: BLE001 - progress reporting must not abort a transfer
            logger.debug(f"Progress callback error: {cb_err}")

    @staticmethod
    def _remove_partial(temp_path: Path) -> None:
        if temp_path.exists():
            try:
                temp_path.unlink()
            except OSError:
                pass


@asynccontextmanager
async def create_async_client(
    config: "LauncherConfig",
) -> AsyncIterator[AsyncGitHubClient]:
    """
    Provide an AsyncGitHubClient configured from `config` and ensure it is closed after use.
    """
    client = AsyncGitHubClient.from_config(config)
    try:
        yield client
    finally:
        await client.close()
