"""
synlauncher Download Subsystem

This package acquires the game client, client patches and addons and keeps
the installed addons in sync with the curated catalog.

Core Components:
- interfaces: Shared data structures
- version: Pure URL, branch and patch-version helpers
- async_client: HTTP transfer engine (aiohttp)
- github_source: Addon version and default branch resolution
- swarm: Magnet-link client transfer
- files: Archive extraction and addon folder removal
- state: Install state persistence
- catalog: Curated addon catalog
- orchestrator: Pipeline coordination
"""

from .async_client import AsyncGitHubClient, create_async_client
from .catalog import fetch_catalog, fetch_catalog_sync, parse_catalog
from .files import ArchiveExtractor, addons_dir_for, is_valid_client_dir
from .github_source import VersionResolver
from .interfaces import (
    ClientState,
    InstalledRecord,
    LauncherState,
    OperationResult,
    ProgressEvent,
    SourceDescriptor,
    SyncReport,
)
from .orchestrator import SyncOrchestrator
from .state import InstallStateStore
from .swarm import LibtorrentBackend, SwarmTransfer
from .version import branch_candidates, extract_patch_version

__all__ = [
    # Interfaces
    "SourceDescriptor",
    "InstalledRecord",
    "ClientState",
    "LauncherState",
    "ProgressEvent",
    "OperationResult",
    "SyncReport",
    # Transfer
    "AsyncGitHubClient",
    "create_async_client",
    "SwarmTransfer",
    "LibtorrentBackend",
    # Resolution
    "VersionResolver",
    "branch_candidates",
    "extract_patch_version",
    # Extraction and state
    "ArchiveExtractor",
    "addons_dir_for",
    "is_valid_client_dir",
    "InstallStateStore",
    # Catalog
    "fetch_catalog",
    "fetch_catalog_sync",
    "parse_catalog",
    # Orchestration
    "SyncOrchestrator",
]
