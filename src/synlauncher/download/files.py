"""
File Operations for the synlauncher Download Subsystem

This module provides the archive extractor (flat client unpack and selective
addon unpack), addon folder removal, and the atomic write helpers used by the
install state store.
"""

import json
import os
import posixpath
import shutil
import tempfile
import zipfile
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from synlauncher.constants import (
    ADDON_DESCRIPTOR_EXTENSION,
    ADDONS_DIR_PARTS,
    CLIENT_EXECUTABLES,
    MULTI_FOLDER_ADDONS,
    SETTINGS_JSON_INDENT,
    ZIP_EXTENSION,
)
from synlauncher.exceptions import (
    CorruptedArchiveError,
    FileSystemError,
    NoQualifyingContentError,
)
from synlauncher.log_utils import logger

from .interfaces import Pathish

MoveProgressCallback = Callable[[int], Any]


def _sanitize_path_component(component: Optional[str]) -> Optional[str]:
    """
    Validate and sanitize a single filesystem path component.

    Trims surrounding whitespace and returns the cleaned component if it is a safe, relative path segment. Returns None when the input is None or when the component is unsafe: empty after trimming, "." or "..", absolute, containing a null byte, or containing a path separator.

    Parameters:
        component (Optional[str]): The candidate path component to validate and sanitize.

    Returns:
        Optional[str]: The trimmed, safe component string, or `None` if the component is unsafe or `None`.
    """
    if component is None:
        return None

    sanitized = component.strip()
    if not sanitized or sanitized in {".", ".."}:
        return None

    if os.path.isabs(sanitized):
        return None

    if "\x00" in sanitized:
        return None

    for separator in (os.sep, os.altsep, "/", "\\"):
        if separator and separator in sanitized:
            return None

    return sanitized


def _normalize_member_name(member_name: str) -> str:
    """
    Convert an archive member name to forward slashes.

    Archives produced on Windows may use backslashes; both conventions are
    accepted. A trailing slash (directory entry) is preserved.
    """
    name = member_name.replace("\\", "/")
    is_dir = name.endswith("/")
    normalized = posixpath.normpath(name) if name.strip("/") else ""
    if normalized == ".":
        normalized = ""
    return normalized + "/" if is_dir and normalized else normalized


def _is_safe_archive_member(member_name: str) -> bool:
    """
    Determine whether a normalized archive member name is safe to extract.

    Returns:
        `True` if the member name contains no absolute paths, drive letters, parent-directory references, or null bytes, `False` otherwise.
    """
    if not member_name or member_name.startswith("/"):
        return False
    if "\x00" in member_name:
        return False
    first = member_name.split("/", 1)[0]
    # Reject Windows drive-letter paths such as C:/...
    if len(first) == 2 and first[1] == ":":
        return False
    return ".." not in member_name.rstrip("/").split("/")


def _is_within_base(real_base_dir: str, candidate: str) -> bool:
    """
    Determine whether the candidate path resides within the given base directory.

    Returns:
        True if the candidate path is inside `real_base_dir`, False otherwise.
    """
    try:
        return os.path.commonpath([real_base_dir, candidate]) == real_base_dir
    except ValueError:
        return False


def safe_extract_path(extract_dir: Pathish, file_path: str) -> str:
    """
    Resolve a safe absolute extraction path and prevent directory traversal.

    Parameters:
        extract_dir (Pathish): Base directory intended for extraction.
        file_path (str): Member path from the archive to be extracted.

    Returns:
        str: Absolute, normalized path inside extract_dir suitable for extraction.

    Raises:
        ValueError: If the resolved path is outside extract_dir.
    """
    real_extract_dir = os.path.realpath(extract_dir)
    normalized_path = os.path.realpath(os.path.join(real_extract_dir, file_path))

    if not _is_within_base(real_extract_dir, normalized_path):
        raise ValueError(
            f"Unsafe extraction path '{file_path}' is outside base '{extract_dir}'"
        )

    return normalized_path


def _safe_rmtree(path_to_remove: str, base_dir: str, item_name: str) -> bool:
    """
    Remove a file, directory, or symlink while refusing to touch anything outside `base_dir`.

    Symlinks are unlinked (never followed) once their own location is verified to be inside `base_dir`. Other paths are resolved and checked before being removed recursively.

    Parameters:
        path_to_remove (str): Filesystem path to remove.
        base_dir (str): Base directory that removals must be contained within.
        item_name (str): Human-readable name of the item for logging.

    Returns:
        bool: `True` if the item was removed, `False` if removal was refused or failed.
    """
    try:
        real_base_dir = os.path.realpath(base_dir)

        if os.path.islink(path_to_remove):
            real_link_dir = os.path.realpath(
                os.path.dirname(os.path.abspath(path_to_remove))
            )
            if not _is_within_base(real_base_dir, real_link_dir):
                logger.warning(
                    "Skipping removal of symlink %s because its location is outside the base directory",
                    path_to_remove,
                )
                return False
            logger.debug("Removing symlink: %s", item_name)
            os.unlink(path_to_remove)
            return True

        real_target = os.path.realpath(path_to_remove)
        if (
            not _is_within_base(real_base_dir, real_target)
            or real_target == real_base_dir
        ):
            logger.warning(
                "Skipping removal of %s because it resolves outside the base directory",
                path_to_remove,
            )
            return False

        if os.path.isdir(path_to_remove):
            shutil.rmtree(path_to_remove)
        else:
            os.remove(path_to_remove)
    except OSError as e:
        logger.error("Error removing %s: %s", path_to_remove, e)
        return False
    else:
        return True


def _merge_move(src: str, dst: str) -> None:
    """
    Move `src` onto `dst`, merging directories and replacing files.

    Raises:
        OSError: If a move or removal fails.
    """
    src_is_dir = os.path.isdir(src) and not os.path.islink(src)
    dst_is_dir = os.path.isdir(dst) and not os.path.islink(dst)
    if src_is_dir and dst_is_dir:
        for child in os.listdir(src):
            _merge_move(os.path.join(src, child), os.path.join(dst, child))
        os.rmdir(src)
        return
    if os.path.lexists(dst):
        if dst_is_dir:
            shutil.rmtree(dst)
        else:
            os.remove(dst)
    os.replace(src, dst)


def _atomic_write(
    file_path: str, writer_func: Callable[[Any], None], suffix: str = ".tmp"
) -> bool:
    """
    Write data to a file atomically by writing to a temporary file and replacing the target on success.

    Parameters:
        file_path (str): Destination file path to be written.
        writer_func (Callable[[Any], None]): Callable that receives an open text file-like object and writes the desired content to it.
        suffix (str): Suffix to use for the temporary file name (default ".tmp").

    Returns:
        bool: `True` if the temporary write and atomic replace succeeded, `False` on any error.
    """
    try:
        temp_fd, temp_path = tempfile.mkstemp(
            dir=os.path.dirname(file_path) or ".", prefix="tmp-", suffix=suffix
        )
    except OSError as e:
        logger.error(f"Could not create temporary file for {file_path}: {e}")
        return False

    try:
        with os.fdopen(temp_fd, "w", encoding="utf-8") as temp_f:
            writer_func(temp_f)
        os.replace(temp_path, file_path)
    except (UnicodeEncodeError, OSError, TypeError, ValueError) as e:
        logger.error(f"Could not write to {file_path}: {e}")
        return False
    finally:
        if os.path.exists(temp_path):
            try:
                os.remove(temp_path)
            except OSError:
                pass
    return True


def _atomic_write_json(file_path: str, data: Dict[str, Any]) -> bool:
    """
    Atomically write the given mapping to the target file as JSON with 2-space indentation.

    Returns:
        bool: `True` if the file was written and moved into place successfully, `False` on error.
    """
    return _atomic_write(
        file_path,
        lambda f: json.dump(data, f, indent=SETTINGS_JSON_INDENT),
        suffix=".json",
    )


def addons_dir_for(client_dir: Pathish) -> Path:
    """Directory that holds installed addons for a client installation."""
    return Path(client_dir).joinpath(*ADDONS_DIR_PARTS)


def is_valid_client_dir(directory: Pathish) -> bool:
    """Return True when `directory` contains one of the client executables."""
    if not directory:
        return False
    return any(
        os.path.isfile(os.path.join(directory, exe)) for exe in CLIENT_EXECUTABLES
    )


class ArchiveExtractor:
    """
    Extracts downloaded archives into an installation directory.

    Provides:
    - Flat client unpack with wrapper-folder normalization
    - Selective addon unpack keeping only descriptor-marked folders
    - Addon folder removal
    """

    def __init__(self, descriptor_extension: str = ADDON_DESCRIPTOR_EXTENSION):
        self.descriptor_extension = descriptor_extension.lower()

    # ------------------------------------------------------------------
    # Flat unpack (client artifact)
    # ------------------------------------------------------------------

    def extract_client(
        self,
        zip_path: Pathish,
        destination: Pathish,
        on_move_progress: Optional[MoveProgressCallback] = None,
    ) -> bool:
        """
        Extract a client archive wholesale into `destination`.

        When every entry of the archive sits under one top-level folder named
        after the archive itself (e.g. `Client.zip` -> `Client/`), the folder's
        contents are moved up into `destination` and the wrapper is removed.
        The archive is deleted only if a client executable is present afterwards.

        Parameters:
            zip_path (Pathish): Path to the downloaded archive.
            destination (Pathish): Installation directory.
            on_move_progress (Optional[callable]): Called with an integer percentage of relocated entries.

        Returns:
            bool: True if a client executable was found in `destination`.

        Raises:
            CorruptedArchiveError: If the archive cannot be read.
            FileSystemError: If writing or moving files fails.
        """
        zip_path = str(zip_path)
        destination = str(destination)
        try:
            os.makedirs(destination, exist_ok=True)
            top_levels = self._extract_all(zip_path, destination)
        except zipfile.BadZipFile as e:
            raise CorruptedArchiveError(
                "Client archive is corrupted", archive_path=zip_path, details=str(e)
            ) from e
        except OSError as e:
            raise FileSystemError(
                "Could not extract client archive", path=destination, details=str(e)
            ) from e

        wrapper_name = self._archive_base_name(zip_path)
        if len(top_levels) == 1:
            (top_level,) = top_levels
            wrapper = os.path.join(destination, top_level)
            if top_level.lower() == wrapper_name.lower() and os.path.isdir(wrapper):
                self._collapse_wrapper(wrapper, destination, on_move_progress)

        if not is_valid_client_dir(destination):
            logger.warning(
                "No client executable (%s) found in %s after extraction; keeping %s",
                " or ".join(CLIENT_EXECUTABLES),
                destination,
                zip_path,
            )
            return False

        try:
            os.remove(zip_path)
        except OSError as e:
            logger.warning(f"Could not remove client archive {zip_path}: {e}")
        return True

    def _extract_all(self, zip_path: str, destination: str) -> set:
        """Extract every safe member and return the set of top-level entry names."""
        top_levels = set()
        with zipfile.ZipFile(zip_path, "r") as zip_ref:
            for info in zip_ref.infolist():
                name = _normalize_member_name(info.filename)
                if not _is_safe_archive_member(name):
                    logger.warning(
                        "Skipping unsafe archive member %s (possible traversal)",
                        info.filename,
                    )
                    continue
                try:
                    target = safe_extract_path(destination, name.rstrip("/"))
                except ValueError as e:
                    logger.warning(f"Skipping unsafe extraction path: {e}")
                    continue

                top_levels.add(name.split("/", 1)[0])
                if name.endswith("/"):
                    os.makedirs(target, exist_ok=True)
                    continue
                os.makedirs(os.path.dirname(target), exist_ok=True)
                with zip_ref.open(info) as source, open(target, "wb") as out:
                    shutil.copyfileobj(source, out)
        return top_levels

    @staticmethod
    def _archive_base_name(zip_path: str) -> str:
        base = os.path.basename(zip_path)
        if base.lower().endswith(ZIP_EXTENSION):
            base = base[: -len(ZIP_EXTENSION)]
        return base

    def _collapse_wrapper(
        self,
        wrapper: str,
        destination: str,
        on_move_progress: Optional[MoveProgressCallback],
    ) -> None:
        """Move the wrapper folder's entries up one level and remove the wrapper."""
        # Rename first so an entry named like the wrapper cannot collide with it
        staging = os.path.join(
            destination, f".{os.path.basename(wrapper)}.unpack-{os.getpid()}"
        )
        try:
            os.replace(wrapper, staging)
            names = sorted(os.listdir(staging))
            total = len(names)
            for index, name in enumerate(names, start=1):
                _merge_move(
                    os.path.join(staging, name), os.path.join(destination, name)
                )
                if on_move_progress is not None:
                    self._notify(on_move_progress, round(index / total * 100))
            os.rmdir(staging)
        except OSError as e:
            raise FileSystemError(
                "Could not move extracted client files into place",
                path=destination,
                details=str(e),
            ) from e
        logger.debug(f"Moved {total} entries out of wrapper folder {wrapper}")

    @staticmethod
    def _notify(callback: MoveProgressCallback, percent: int) -> None:
        try:
            callback(percent)
        except Exception as e:  # noqa: BLE001 - progress reporting must not abort a move
            logger.debug(f"Move progress callback error: {e}")

    # ------------------------------------------------------------------
    # Selective unpack (addon artifact)
    # ------------------------------------------------------------------

    def find_addon_units(self, member_names: List[str]) -> List[str]:
        """
        Find every archive folder that directly contains a descriptor file.

        Parameters:
            member_names (List[str]): Normalized member names of the archive.

        Returns:
            List[str]: Folder paths inside the archive, in order of first appearance.
        """
        units: Dict[str, None] = {}
        for name in member_names:
            if not name or name.endswith("/") or not _is_safe_archive_member(name):
                continue
            if not name.lower().endswith(self.descriptor_extension):
                continue
            folder, _, _ = name.rpartition("/")
            if folder:
                units.setdefault(folder, None)
        return list(units)

    def extract_addon(self, zip_path: Pathish, addons_dir: Pathish) -> List[str]:
        """
        Install every addon folder found in an archive into `addons_dir`.

        Only folders that directly contain a descriptor file are installed; each
        is written to `addons_dir/<folder name>` with the enclosing archive path
        (repository/branch wrapper included) stripped. An existing folder with
        the same name is removed first. The archive is deleted on success.

        Returns:
            List[str]: Names of the installed addon folders.

        Raises:
            NoQualifyingContentError: If the archive holds no descriptor-marked folder with a usable name; nothing is installed.
            CorruptedArchiveError: If the archive cannot be read.
            FileSystemError: If removing or writing files fails.
        """
        zip_path = str(zip_path)
        addons_dir = str(addons_dir)
        installed: List[str] = []
        try:
            with zipfile.ZipFile(zip_path, "r") as zip_ref:
                members: List[Tuple[zipfile.ZipInfo, str]] = [
                    (info, _normalize_member_name(info.filename))
                    for info in zip_ref.infolist()
                ]
                units = self.find_addon_units([name for _, name in members])
                if not units:
                    raise NoQualifyingContentError(
                        "No folders containing "
                        f"{self.descriptor_extension} files found in archive. "
                        "Cannot extract addon.",
                        archive_path=zip_path,
                    )

                os.makedirs(addons_dir, exist_ok=True)
                for unit in units:
                    unit_name = _sanitize_path_component(posixpath.basename(unit))
                    if unit_name is None:
                        logger.warning(f"Skipping addon folder with unsafe name: {unit}")
                        continue
                    self._install_unit(zip_ref, members, unit, unit_name, addons_dir)
                    installed.append(unit_name)
                if not installed:
                    raise NoQualifyingContentError(
                        "No addon folder in the archive has a usable name",
                        archive_path=zip_path,
                    )
        except zipfile.BadZipFile as e:
            raise CorruptedArchiveError(
                "Addon archive is corrupted", archive_path=zip_path, details=str(e)
            ) from e
        except OSError as e:
            raise FileSystemError(
                "Could not extract addon archive", path=addons_dir, details=str(e)
            ) from e

        try:
            os.remove(zip_path)
        except OSError as e:
            logger.warning(f"Could not remove addon archive {zip_path}: {e}")
        return installed

    def _install_unit(
        self,
        zip_ref: zipfile.ZipFile,
        members: List[Tuple[zipfile.ZipInfo, str]],
        unit: str,
        unit_name: str,
        addons_dir: str,
    ) -> None:
        destination = os.path.join(addons_dir, unit_name)
        if os.path.lexists(destination) and not _safe_rmtree(
            destination, addons_dir, unit_name
        ):
            raise FileSystemError(
                f"Could not replace existing addon folder {unit_name}",
                path=destination,
            )

        prefix = unit + "/"
        written = 0
        for info, name in members:
            if name.endswith("/") or not name.startswith(prefix):
                continue
            relative = name[len(prefix) :]
            if not relative or not _is_safe_archive_member(relative):
                continue
            try:
                target = safe_extract_path(destination, relative)
            except ValueError as e:
                logger.warning(f"Skipping unsafe extraction path: {e}")
                continue
            os.makedirs(os.path.dirname(target), exist_ok=True)
            with zip_ref.open(info) as source, open(target, "wb") as out:
                shutil.copyfileobj(source, out)
            written += 1
            logger.debug(f"Extracted {info.filename} to {target}")
        logger.info(f"Installed addon folder {unit_name} ({written} files)")

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    def uninstall_addon(self, folder: str, addons_dir: Pathish) -> List[str]:
        """
        Remove an addon's folder from `addons_dir`.

        Addons listed in MULTI_FOLDER_ADDONS install several sibling folders;
        for those every folder starting with the configured prefix is removed.

        Returns:
            List[str]: Names of the removed folders (empty when nothing was installed).

        Raises:
            FileSystemError: If the folder name is unsafe or a removal fails.
        """
        addons_dir = str(addons_dir)
        safe_folder = _sanitize_path_component(folder)
        if safe_folder is None:
            raise FileSystemError(
                f"Unsafe addon folder name: {folder!r}", path=addons_dir
            )
        if not os.path.isdir(addons_dir):
            return []

        prefix = MULTI_FOLDER_ADDONS.get(safe_folder)
        if prefix:
            with os.scandir(addons_dir) as iterator:
                targets = sorted(
                    entry.name
                    for entry in iterator
                    if entry.is_dir(follow_symlinks=False)
                    and entry.name.startswith(prefix)
                )
            logger.debug(f"Removing folders matching {prefix}*: {targets}")
        else:
            targets = (
                [safe_folder]
                if os.path.lexists(os.path.join(addons_dir, safe_folder))
                else []
            )

        removed: List[str] = []
        failed: List[str] = []
        for name in targets:
            if _safe_rmtree(os.path.join(addons_dir, name), addons_dir, name):
                removed.append(name)
            else:
                failed.append(name)
        if failed:
            raise FileSystemError(
                f"Could not remove addon folder(s): {', '.join(failed)}",
                path=addons_dir,
            )
        return removed
