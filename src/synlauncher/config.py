# src/synlauncher/config.py
"""
Launcher configuration.

A single LauncherConfig is built at process start by load_config() and passed
to every component that needs paths, credentials or limits. Components never
read the environment or the filesystem for configuration themselves.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import platformdirs
import yaml

from synlauncher.constants import (
    APP_DIR_NAME,
    CATALOG_URL_ENV_VAR,
    DEFAULT_BRANCH_OVERRIDES,
    DEFAULT_MAX_REDIRECTS,
    DOWNLOAD_ERROR_LOG_FILE,
    LOG_LEVEL_ENV_VAR,
    OPTIONS_FILE_NAME,
    SETTINGS_FILE_NAME,
    SETTINGS_KEY_GITHUB_TOKEN,
)
from synlauncher.exceptions import ConfigFileError, ConfigurationError
from synlauncher.log_utils import logger
from synlauncher.utils import get_effective_github_token, show_token_warning_if_needed


@dataclass
class LauncherConfig:
    """Resolved configuration shared by the pipeline components."""

    config_dir: Path
    """Directory holding the settings document, options file and diagnostics"""

    github_token: Optional[str] = None
    """Token sent to the GitHub API to raise rate limits"""

    catalog_url: Optional[str] = None
    """URL of the curated addon catalog (JSON list)"""

    max_redirects: int = DEFAULT_MAX_REDIRECTS
    """Redirect hops allowed per request"""

    branch_overrides: Dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_BRANCH_OVERRIDES)
    )
    """Repository URL substring -> branch used instead of the API default"""

    log_level: str = "INFO"

    @property
    def settings_file(self) -> Path:
        return self.config_dir / SETTINGS_FILE_NAME

    @property
    def options_file(self) -> Path:
        return self.config_dir / OPTIONS_FILE_NAME

    @property
    def download_error_log(self) -> Path:
        return self.config_dir / DOWNLOAD_ERROR_LOG_FILE

    @property
    def log_dir(self) -> Path:
        return self.config_dir / "logs"

    def ensure_config_dir(self) -> None:
        """Create the configuration directory if it does not exist."""
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigurationError(
                f"Could not create configuration directory {self.config_dir}",
                details=str(e),
            ) from e


def get_default_config_dir() -> Path:
    """Platform-specific configuration directory for the launcher."""
    return Path(platformdirs.user_config_dir(APP_DIR_NAME, appauthor=False))


def _read_options_file(path: Path) -> Dict[str, Any]:
    """
    Read the optional YAML options file.

    Returns:
        dict: Parsed options, or an empty dict when the file does not exist.

    Raises:
        ConfigFileError: If the file exists but is not valid YAML or not a mapping.
    """
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            options = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigFileError(
            f"Could not read options file {path}", details=str(e)
        ) from e
    if options is None:
        return {}
    if not isinstance(options, dict):
        raise ConfigFileError(
            f"Options file {path} must contain a mapping",
            details=f"got {type(options).__name__}",
        )
    return options


def _read_stored_token(settings_file: Path) -> Optional[str]:
    """
    Read the token saved in the settings document, if any.

    The settings document is owned by the install state store; an unreadable
    file here only means there is no stored token.
    """
    try:
        with open(settings_file, "r", encoding="utf-8") as f:
            settings = json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as e:
        logger.debug(f"Ignoring unreadable settings file {settings_file}: {e}")
        return None
    if isinstance(settings, dict):
        token = settings.get(SETTINGS_KEY_GITHUB_TOKEN)
        return token if isinstance(token, str) else None
    return None


def _parse_max_redirects(raw_value: Any) -> int:
    try:
        parsed_value = int(raw_value)
    except (TypeError, ValueError):
        logger.warning(
            "Invalid max_redirects value %r; using default %d",
            raw_value,
            DEFAULT_MAX_REDIRECTS,
        )
        return DEFAULT_MAX_REDIRECTS
    if parsed_value < 0:
        logger.warning("max_redirects must be >= 0; clamping %d to 0", parsed_value)
        return 0
    return parsed_value


def load_config(
    config_dir: Optional[os.PathLike] = None,
    environ: Optional[Mapping[str, str]] = None,
    catalog_url: Optional[str] = None,
) -> LauncherConfig:
    """
    Build the launcher configuration from defaults, the options file and the environment.

    Token precedence: `GITHUB_TOKEN` environment variable, then `githubToken` in
    the settings document, then `github_token` in the YAML options file.

    Parameters:
        config_dir: Directory override; the platformdirs location is used when omitted.
        environ: Environment mapping; `os.environ` is captured when omitted.
        catalog_url: Explicit catalog URL, taking precedence over environment and options.

    Returns:
        LauncherConfig: The resolved configuration.
    """
    env = dict(os.environ if environ is None else environ)
    directory = Path(config_dir) if config_dir else get_default_config_dir()
    options = _read_options_file(directory / OPTIONS_FILE_NAME)

    branch_overrides = dict(DEFAULT_BRANCH_OVERRIDES)
    extra_overrides = options.get("branch_overrides") or {}
    if isinstance(extra_overrides, dict):
        branch_overrides.update(
            {str(key): str(value) for key, value in extra_overrides.items()}
        )
    else:
        logger.warning("Ignoring branch_overrides option: expected a mapping")

    token = get_effective_github_token(
        env,
        _read_stored_token(directory / SETTINGS_FILE_NAME),
        options.get("github_token"),
    )
    show_token_warning_if_needed(token)

    return LauncherConfig(
        config_dir=directory,
        github_token=token,
        catalog_url=catalog_url
        or env.get(CATALOG_URL_ENV_VAR)
        or options.get("catalog_url"),
        max_redirects=_parse_max_redirects(
            options.get("max_redirects", DEFAULT_MAX_REDIRECTS)
        ),
        branch_overrides=branch_overrides,
        log_level=str(env.get(LOG_LEVEL_ENV_VAR) or options.get("log_level") or "INFO"),
    )
