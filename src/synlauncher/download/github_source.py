"""
GitHub Version Source

This module resolves the remote version of an addon (the SHA of the newest
commit) and the branch whose archive should be downloaded.
"""

from typing import Any, Dict, Optional

from synlauncher.constants import DEFAULT_BRANCH, DEFAULT_BRANCH_OVERRIDES
from synlauncher.exceptions import ResourceNotFoundError, SynLauncherError
from synlauncher.log_utils import logger

from .async_client import AsyncGitHubClient
from .version import commits_api_url, normalize_repo_url, repo_api_url


class VersionResolver:
    """
    Queries the GitHub API for addon version identifiers and default branches.

    Usage:
        async with AsyncGitHubClient(github_token=token) as client:
            resolver = VersionResolver(client)
            sha = await resolver.resolve_addon_version(
                "https://github.com/owner/repo"
            )
    """

    def __init__(
        self,
        client: AsyncGitHubClient,
        branch_overrides: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize the resolver.

        Parameters:
            client (AsyncGitHubClient): Client used for API requests.
            branch_overrides (Optional[Dict[str, str]]): Repository URL substring to branch name. Matches win over the API-reported default branch.
        """
        self.client = client
        self.branch_overrides = dict(
            DEFAULT_BRANCH_OVERRIDES if branch_overrides is None else branch_overrides
        )

    async def resolve_addon_version(self, repo_url: str) -> str:
        """
        Return the SHA of the newest commit of `repo_url`.

        Raises:
            ResourceNotFoundError: If the repository is missing or has no commits.
            RateLimitError: If GitHub rejects the request with 403 or 429.
            NetworkError: On connection failures.
        """
        url = commits_api_url(repo_url)
        commits = await self.client.get_json(url)
        if not isinstance(commits, list) or not commits:
            raise ResourceNotFoundError(
                "No commits found for repository", endpoint=url
            )
        latest = commits[0]
        sha = latest.get("sha") if isinstance(latest, dict) else None
        if not isinstance(sha, str) or not sha:
            raise ResourceNotFoundError(
                "Latest commit has no identifier", endpoint=url
            )
        logger.debug(f"Latest commit for {normalize_repo_url(repo_url)}: {sha}")
        return sha

    def branch_override_for(self, repo_url: str) -> Optional[str]:
        for marker, branch in self.branch_overrides.items():
            if marker and marker in repo_url:
                return branch
        return None

    async def resolve_default_branch(self, repo_url: str) -> str:
        """
        Return the branch to download for `repo_url`.

        Curated overrides are consulted first. Otherwise the repository
        metadata is fetched and its `default_branch` used. Any failure falls
        back to `main`; this method never raises for API errors.
        """
        override = self.branch_override_for(repo_url)
        if override:
            logger.debug(f"Using branch override '{override}' for {repo_url}")
            return override

        url = repo_api_url(repo_url)
        try:
            metadata: Any = await self.client.get_json(url)
        except SynLauncherError as e:
            logger.debug(
                f"Could not fetch repository metadata for {repo_url}, assuming '{DEFAULT_BRANCH}': {e}"
            )
            return DEFAULT_BRANCH

        branch = metadata.get("default_branch") if isinstance(metadata, dict) else None
        if not isinstance(branch, str) or not branch.strip():
            logger.debug(
                f"Repository metadata for {repo_url} has no default_branch, assuming '{DEFAULT_BRANCH}'"
            )
            return DEFAULT_BRANCH
        return branch.strip()
