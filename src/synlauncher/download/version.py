"""
Version Management Utilities

Pure helpers for turning repository URLs into GitHub API and archive URLs,
ordering branch candidates, and reading the patch version embedded in a
client patch file name. Nothing in this module performs I/O.
"""

import os
import re
from typing import List, Optional
from urllib.parse import unquote, urlparse

from synlauncher.constants import (
    ARCHIVE_URL_TEMPLATE,
    FALLBACK_BRANCHES,
    GITHUB_API_BASE,
    GITHUB_WEB_BASE,
    PATCH_FILENAME_PATTERN,
)

PATCH_VERSION_RX = re.compile(PATCH_FILENAME_PATTERN, re.IGNORECASE)


def normalize_repo_url(repo_url: str) -> str:
    """
    Strip whitespace, trailing slashes and a trailing `.git` from a repository URL.

    Parameters:
        repo_url (str): Repository URL as it appears in the catalog.

    Returns:
        str: The cleaned repository URL.
    """
    cleaned = repo_url.strip().rstrip("/")
    if cleaned.endswith(".git"):
        cleaned = cleaned[: -len(".git")]
    return cleaned.rstrip("/")


def repo_api_url(repo_url: str) -> str:
    """
    Map `https://github.com/owner/repo` to `https://api.github.com/repos/owner/repo`.

    URLs outside github.com are returned normalized but otherwise untouched.
    """
    cleaned = normalize_repo_url(repo_url)
    if cleaned.startswith(GITHUB_WEB_BASE):
        return GITHUB_API_BASE + cleaned[len(GITHUB_WEB_BASE) :]
    return cleaned


def commits_api_url(repo_url: str) -> str:
    """GitHub API URL listing the repository's commits, newest first."""
    return repo_api_url(repo_url) + "/commits"


def archive_url(repo_url: str, branch: str) -> str:
    """Zip archive URL for the head of `branch`."""
    return ARCHIVE_URL_TEMPLATE.format(repo=normalize_repo_url(repo_url), branch=branch)


def branch_candidates(default_branch: Optional[str]) -> List[str]:
    """
    Order the branches tried when downloading an addon archive.

    The resolved default branch comes first, followed by `main` and `master`
    when they are not already present.

    Returns:
        List[str]: Unique branch names in attempt order.
    """
    candidates: List[str] = []
    if default_branch and default_branch.strip():
        candidates.append(default_branch.strip())
    for branch in FALLBACK_BRANCHES:
        if branch not in candidates:
            candidates.append(branch)
    return candidates


def extract_patch_version(filename: str) -> Optional[int]:
    """
    Read the numeric version from a client patch file name such as `WoWExt_v12.zip`.

    Matching is case-insensitive and performed on the base name, so full
    paths are accepted.

    Returns:
        Optional[int]: The parsed version, or None when the name does not match.
    """
    if not filename:
        return None
    match = PATCH_VERSION_RX.search(os.path.basename(filename))
    return int(match.group(1)) if match else None


def filename_from_url(url: str) -> str:
    """Last path segment of `url`, percent-decoded; empty when the path has none."""
    path = urlparse(url).path
    return unquote(path.rstrip("/").rsplit("/", 1)[-1]) if path else ""
