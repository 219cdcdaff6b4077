"""
Core Interfaces for the synlauncher Download Subsystem

This module defines the data structures shared by the version resolver, the
transfer engine, the archive extractor, the install state store and the
synchronization orchestrator.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from synlauncher.constants import (
    RECORD_KEY_INSTALLED_AT,
    RECORD_KEY_NAME,
    RECORD_KEY_PENDING,
    RECORD_KEY_VERSION,
    SETTINGS_KEY_ADDONS,
    SETTINGS_KEY_CLIENT_DIR,
    SETTINGS_KEY_GITHUB_TOKEN,
    SETTINGS_KEY_INSTALLED,
    SETTINGS_KEY_PATCH_VERSION,
)
from synlauncher.exceptions import CatalogError

Pathish = Union[str, Path]

# (downloaded_bytes, total_bytes_or_None, filename)
TransferProgressCallback = Callable[[int, Optional[int], str], Any]
PatchLinkResolver = Callable[[], Union[str, Awaitable[str]]]


@dataclass(frozen=True)
class SourceDescriptor:
    """An addon entry from the curated remote catalog."""

    name: str
    """Display name, also the key of the installed record"""

    repo: str
    """Repository URL, e.g. https://github.com/owner/repo"""

    folder: str
    """Installation folder name under Interface/AddOns"""

    description: str = ""
    author: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SourceDescriptor":
        """
        Build a descriptor from a catalog record.

        Raises:
            CatalogError: If the record is not a mapping or lacks `name` or `repo`.
        """
        if not isinstance(data, dict):
            raise CatalogError(
                "Malformed catalog entry",
                details=f"expected dict, got {type(data).__name__}",
            )
        name = data.get("name")
        repo = data.get("repo")
        if not isinstance(name, str) or not name.strip():
            raise CatalogError("Catalog entry is missing a name")
        if not isinstance(repo, str) or not repo.strip():
            raise CatalogError(f"Catalog entry '{name}' is missing a repository URL")
        folder = data.get("folder")
        if not isinstance(folder, str) or not folder.strip():
            folder = name
        return cls(
            name=name.strip(),
            repo=repo.strip(),
            folder=folder.strip(),
            description=str(data.get("description") or ""),
            author=str(data.get("author") or ""),
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "name": self.name,
            "description": self.description,
            "author": self.author,
            "repo": self.repo,
            "folder": self.folder,
        }


@dataclass
class InstalledRecord:
    """One installed addon as persisted in the settings document."""

    name: str
    version_id: Optional[str]
    """Commit identifier of the installed content; None when it could not be resolved"""

    installed_at: Optional[str] = None
    """ISO 8601 timestamp of the last successful install or update"""

    pending: bool = False
    """Set while a bulk update has removed the folder but not yet reinstalled it"""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["InstalledRecord"]:
        if not isinstance(data, dict):
            return None
        name = data.get(RECORD_KEY_NAME)
        if not isinstance(name, str) or not name:
            return None
        return cls(
            name=name,
            version_id=data.get(RECORD_KEY_VERSION),
            installed_at=data.get(RECORD_KEY_INSTALLED_AT),
            pending=bool(data.get(RECORD_KEY_PENDING, False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            RECORD_KEY_NAME: self.name,
            RECORD_KEY_VERSION: self.version_id,
            RECORD_KEY_INSTALLED_AT: self.installed_at,
        }
        if self.pending:
            data[RECORD_KEY_PENDING] = True
        return data


@dataclass
class ClientState:
    """The game client installation."""

    installed: bool = False
    client_dir: Optional[str] = None
    patch_version: Optional[int] = None
    """Last successfully applied patch; None means unknown or none applied"""


@dataclass
class LauncherState:
    """
    The whole settings document held in memory for one orchestration pass.

    Top-level keys the pipeline does not own are kept in `extra` and written
    back unchanged.
    """

    client: ClientState = field(default_factory=ClientState)
    addons: List[InstalledRecord] = field(default_factory=list)
    github_token: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LauncherState":
        known = {
            SETTINGS_KEY_INSTALLED,
            SETTINGS_KEY_CLIENT_DIR,
            SETTINGS_KEY_PATCH_VERSION,
            SETTINGS_KEY_ADDONS,
            SETTINGS_KEY_GITHUB_TOKEN,
        }
        patch_version = data.get(SETTINGS_KEY_PATCH_VERSION)
        if not isinstance(patch_version, int) or isinstance(patch_version, bool):
            patch_version = None
        raw_addons = data.get(SETTINGS_KEY_ADDONS)
        records: List[InstalledRecord] = []
        seen = set()
        for raw in raw_addons if isinstance(raw_addons, list) else []:
            record = InstalledRecord.from_dict(raw)
            # Names are unique; the first entry wins if a hand-edited file repeats one
            if record is None or record.name in seen:
                continue
            seen.add(record.name)
            records.append(record)
        client_dir = data.get(SETTINGS_KEY_CLIENT_DIR)
        token = data.get(SETTINGS_KEY_GITHUB_TOKEN)
        return cls(
            client=ClientState(
                installed=bool(data.get(SETTINGS_KEY_INSTALLED, False)),
                client_dir=client_dir if isinstance(client_dir, str) else None,
                patch_version=patch_version,
            ),
            addons=records,
            github_token=token if isinstance(token, str) else None,
            extra={k: v for k, v in data.items() if k not in known},
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = dict(self.extra)
        data[SETTINGS_KEY_INSTALLED] = self.client.installed
        if self.client.client_dir is not None:
            data[SETTINGS_KEY_CLIENT_DIR] = self.client.client_dir
        if self.client.patch_version is not None:
            data[SETTINGS_KEY_PATCH_VERSION] = self.client.patch_version
        if self.github_token:
            data[SETTINGS_KEY_GITHUB_TOKEN] = self.github_token
        data[SETTINGS_KEY_ADDONS] = [record.to_dict() for record in self.addons]
        return data


@dataclass(frozen=True)
class ProgressEvent:
    """A bulk reconciliation progress notification."""

    current: int
    total: int
    name: str
    action: str
    """One of PHASE_CHECKING or PHASE_UPDATING"""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current": self.current,
            "total": self.total,
            "name": self.name,
            "action": self.action,
        }


ProgressListener = Callable[[ProgressEvent], Any]


@dataclass
class OperationResult:
    """Outcome of a user-initiated pipeline operation."""

    success: bool
    message: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, message: Optional[str] = None, **payload: Any) -> "OperationResult":
        return cls(success=True, message=message, payload=payload)

    @classmethod
    def fail(cls, message: str) -> "OperationResult":
        return cls(success=False, message=message)

    def to_dict(self) -> Dict[str, Any]:
        """Render the `{success, ...payload | message}` envelope."""
        envelope: Dict[str, Any] = {"success": self.success}
        if self.success:
            envelope.update(self.payload)
            if self.message:
                envelope["message"] = self.message
        else:
            envelope["message"] = self.message or "Unknown error"
        return envelope


@dataclass
class SyncReport:
    """Result of a bulk reconciliation pass."""

    checked: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    up_to_date: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "checked": list(self.checked),
            "updated": list(self.updated),
            "upToDate": list(self.up_to_date),
            "failed": dict(self.failed),
        }
