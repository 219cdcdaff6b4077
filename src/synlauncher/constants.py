"""
Constants and configuration values for synlauncher.

This module contains all hardcoded values, URLs, file names and other constants
used throughout the acquisition and synchronization pipeline.
"""

# GitHub URLs
GITHUB_WEB_BASE = "https://github.com/"
GITHUB_API_BASE = "https://api.github.com/repos/"
GITHUB_API_HOST = "api.github.com"
GITHUB_ACCEPT_HEADER = "application/vnd.github+json"
GITHUB_API_VERSION = "2022-11-28"
ARCHIVE_URL_TEMPLATE = "{repo}/archive/refs/heads/{branch}.zip"

# Redirects and branches
DEFAULT_MAX_REDIRECTS = 3
DEFAULT_BRANCH = "main"
FALLBACK_BRANCHES = ("main", "master")

# Repositories whose default branch metadata cannot be trusted.
# Keys are matched as substrings of the repository URL.
DEFAULT_BRANCH_OVERRIDES = {
    "ArkInventory-modified-for-attunements-": "master",
    "AtlasLoot_Mythic": "master",
    "ElvUI_Attune": "master",
}

# Addons that install several sibling folders sharing a prefix.
# Maps the catalog folder name to the prefix removed on uninstall.
MULTI_FOLDER_ADDONS = {
    "ArkInventory": "ArkInventory",
    "AtlasLoot": "AtlasLoot",
    "AtlasLoot_Mythic": "AtlasLoot",
}

# HTTP status handling
HTTP_STATUS_REDIRECT_MIN = 300
HTTP_STATUS_REDIRECT_MAX = 399
HTTP_STATUS_ERROR_THRESHOLD = 400
HTTP_STATUS_NOT_FOUND = 404
RATE_LIMIT_STATUS_CODES = (403, 429)
DIAGNOSTIC_BODY_LIMIT = 64 * 1024

# Download settings
DEFAULT_CHUNK_SIZE = 8192
BYTES_PER_MEGABYTE = 1024 * 1024
FILE_SIZE_MB_LOGGING_THRESHOLD = 1.0

# Catalog requests (synchronous helper only)
CATALOG_REQUEST_TIMEOUT = 30
CATALOG_CONNECT_RETRIES = 3
CATALOG_BACKOFF_FACTOR = 1.0

# Swarm (torrent) transfer settings
SWARM_POLL_INTERVAL = 1.0
SWARM_LISTEN_INTERFACES = "0.0.0.0:6881"

# Game client layout
CLIENT_EXECUTABLES = ("wow.exe", "wowext.exe")
LAUNCH_EXECUTABLE = "wowext.exe"
ADDONS_DIR_PARTS = ("Interface", "AddOns")
ADDON_DESCRIPTOR_EXTENSION = ".toc"
ZIP_EXTENSION = ".zip"
ADDON_TEMP_ZIP_SUFFIX = "_latest.zip"

# Patch archive naming, e.g. WoWExt_v12.zip
PATCH_FILENAME_PATTERN = r"WoWExt_v(\d+)\.zip"

# Progress phases for bulk reconciliation
PHASE_CHECKING = "checking"
PHASE_UPDATING = "updating"

# Settings document keys
SETTINGS_KEY_INSTALLED = "installed"
SETTINGS_KEY_CLIENT_DIR = "clientDir"
SETTINGS_KEY_PATCH_VERSION = "patchVersion"
SETTINGS_KEY_ADDONS = "addons"
SETTINGS_KEY_GITHUB_TOKEN = "githubToken"
RECORD_KEY_NAME = "name"
RECORD_KEY_VERSION = "hash"
RECORD_KEY_INSTALLED_AT = "lastUpdated"
RECORD_KEY_PENDING = "pending"
SETTINGS_JSON_INDENT = 2

# File and directory names
APP_DIR_NAME = "SynastriaLauncher"
SETTINGS_FILE_NAME = "config.json"
OPTIONS_FILE_NAME = "synlauncher.yaml"
DOWNLOAD_ERROR_LOG_FILE = "addon_download_error.log"
LOG_FILE_NAME = "synlauncher.log"

# Logging configuration
LOGGER_NAME = "synlauncher"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
INFO_LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
DEBUG_LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s: %(message)s"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
LOG_FILE_BACKUP_COUNT = 5

# Environment variable names
LOG_LEVEL_ENV_VAR = "SYNLAUNCHER_LOG_LEVEL"
GITHUB_TOKEN_ENV_VAR = "GITHUB_TOKEN"
CATALOG_URL_ENV_VAR = "SYNLAUNCHER_CATALOG_URL"
