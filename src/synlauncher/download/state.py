"""
Install State Store

Persists the launcher settings document (client location, applied patch
version, installed addon records) as a JSON file. Mutators work on an
in-memory LauncherState; nothing touches disk until save() is called.
"""

import json
from pathlib import Path
from typing import List, Optional

from synlauncher.exceptions import ConfigFileError, FileSystemError
from synlauncher.log_utils import logger
from synlauncher.utils import utc_timestamp

from .files import _atomic_write_json
from .interfaces import InstalledRecord, LauncherState, Pathish


class InstallStateStore:
    """Reads and writes the settings document at `settings_file`."""

    def __init__(self, settings_file: Pathish):
        self.settings_file = Path(settings_file)

    def exists(self) -> bool:
        return self.settings_file.is_file()

    def load(self) -> Optional[LauncherState]:
        """
        Read the settings document.

        Returns:
            Optional[LauncherState]: The parsed state, or None if the file does not exist.

        Raises:
            ConfigFileError: If the file cannot be read or is not a JSON object.
        """
        try:
            with open(self.settings_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            raise ConfigFileError(
                f"Could not read settings file {self.settings_file}", details=str(e)
            ) from e

        if not isinstance(data, dict):
            raise ConfigFileError(
                f"Settings file {self.settings_file} must contain a JSON object",
                details=f"got {type(data).__name__}",
            )
        return LauncherState.from_dict(data)

    def load_or_default(self) -> LauncherState:
        """Like load(), but returns an empty state when no file exists yet."""
        state = self.load()
        return state if state is not None else LauncherState()

    def save(self, state: LauncherState) -> None:
        """
        Write `state` atomically with 2-space indentation.

        Raises:
            FileSystemError: If the directory cannot be created or the write fails.
        """
        try:
            self.settings_file.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FileSystemError(
                "Could not create settings directory",
                path=str(self.settings_file.parent),
                details=str(e),
            ) from e
        if not _atomic_write_json(str(self.settings_file), state.to_dict()):
            raise FileSystemError(
                "Could not save settings file", path=str(self.settings_file)
            )
        logger.debug(f"Saved settings to {self.settings_file}")

    @staticmethod
    def get(state: LauncherState, name: str) -> Optional[InstalledRecord]:
        for record in state.addons:
            if record.name == name:
                return record
        return None

    @classmethod
    def is_installed(cls, state: LauncherState, name: str) -> bool:
        return cls.get(state, name) is not None

    @classmethod
    def upsert(
        cls,
        state: LauncherState,
        name: str,
        version_id: Optional[str],
        installed_at: Optional[str] = None,
    ) -> InstalledRecord:
        """
        Insert or replace the record for `name`.

        The record's pending flag is cleared and its timestamp set to
        `installed_at`, or to the current UTC time when omitted.
        """
        timestamp = installed_at or utc_timestamp()
        record = cls.get(state, name)
        if record is None:
            record = InstalledRecord(name=name, version_id=version_id)
            state.addons.append(record)
        record.version_id = version_id
        record.installed_at = timestamp
        record.pending = False
        return record

    @staticmethod
    def remove(state: LauncherState, name: str) -> bool:
        """Drop the record for `name`; returns whether one existed."""
        before = len(state.addons)
        state.addons = [record for record in state.addons if record.name != name]
        return len(state.addons) != before

    @classmethod
    def mark_pending(cls, state: LauncherState, name: str) -> bool:
        """Flag `name` as removed-but-not-reinstalled; returns whether a record was found."""
        record = cls.get(state, name)
        if record is None:
            return False
        record.pending = True
        return True

    @staticmethod
    def pending(state: LauncherState) -> List[str]:
        """Names of records left pending by an interrupted bulk update."""
        return [record.name for record in state.addons if record.pending]
