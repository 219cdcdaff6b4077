# src/synlauncher/utils.py
import importlib.metadata
from datetime import datetime, timezone
from typing import Dict, Mapping, Optional
from urllib.parse import urlparse

from synlauncher.constants import (
    GITHUB_ACCEPT_HEADER,
    GITHUB_API_HOST,
    GITHUB_API_VERSION,
    GITHUB_TOKEN_ENV_VAR,
)
from synlauncher.log_utils import logger

# Cache for the User-Agent string to avoid repeated metadata lookups
_USER_AGENT_CACHE: Optional[str] = None

_token_warning_shown = False


def get_user_agent() -> str:
    """
    Get the User-Agent string used for HTTP requests.

    Returns:
        The string `synlauncher/{version}`, where `{version}` is the installed package version or `unknown` if the version cannot be determined.
    """
    global _USER_AGENT_CACHE

    if _USER_AGENT_CACHE is None:
        try:
            app_version = importlib.metadata.version("synlauncher")
        except importlib.metadata.PackageNotFoundError:
            app_version = "unknown"

        _USER_AGENT_CACHE = f"synlauncher/{app_version}"

    return _USER_AGENT_CACHE


def get_effective_github_token(
    environ: Mapping[str, str],
    *fallbacks: Optional[str],
    allow_env_token: bool = True,
) -> Optional[str]:
    """
    Determine the GitHub token to use, preferring the environment over stored settings.

    Parameters:
        environ: Environment mapping captured at startup.
        fallbacks: Stored tokens in priority order (settings document, options file).
        allow_env_token (bool): If False, the `GITHUB_TOKEN` environment variable is ignored.

    Returns:
        Optional[str]: The chosen token with surrounding whitespace removed, or `None` if no token is available.
    """
    candidates = []
    if allow_env_token:
        candidates.append(environ.get(GITHUB_TOKEN_ENV_VAR))
    candidates.extend(fallbacks)
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return None


def show_token_warning_if_needed(effective_token: Optional[str]) -> None:
    """Log a one-time hint when GitHub requests will be unauthenticated."""
    global _token_warning_shown
    if effective_token or _token_warning_shown:
        return
    logger.debug(
        "No GITHUB_TOKEN found - using unauthenticated API requests (60/hour limit). "
        "Set GITHUB_TOKEN or add githubToken to the settings file for higher limits."
    )
    _token_warning_shown = True


def is_github_api_url(url: str) -> bool:
    """Return True when `url` points at the GitHub REST API host."""
    return urlparse(url).hostname == GITHUB_API_HOST


def get_request_headers(url: str, github_token: Optional[str] = None) -> Dict[str, str]:
    """
    Build HTTP headers for a request to `url`.

    GitHub API requests get the JSON Accept and API version headers, plus an
    Authorization header when a token is configured. Requests to other hosts
    only carry the User-Agent so the token never leaves the API host.
    """
    headers = {"User-Agent": get_user_agent()}
    if is_github_api_url(url):
        headers["Accept"] = GITHUB_ACCEPT_HEADER
        headers["X-GitHub-Api-Version"] = GITHUB_API_VERSION
        if github_token:
            headers["Authorization"] = f"token {github_token}"
    return headers


def utc_timestamp() -> str:
    """Current UTC time in ISO 8601 with millisecond precision and a `Z` suffix."""
    return (
        datetime.now(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )
