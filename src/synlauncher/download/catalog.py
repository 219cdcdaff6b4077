"""
Addon Catalog

Fetches the curated addon catalog, a JSON list of
`{name, description, author, repo, folder}` records, and parses it into
SourceDescriptor objects.
"""

from typing import Any, List, Optional

import requests  # type: ignore[import-untyped]
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from synlauncher.constants import (
    CATALOG_BACKOFF_FACTOR,
    CATALOG_CONNECT_RETRIES,
    CATALOG_REQUEST_TIMEOUT,
)
from synlauncher.exceptions import CatalogError, SynLauncherError
from synlauncher.log_utils import logger
from synlauncher.utils import get_request_headers

from .async_client import AsyncGitHubClient
from .interfaces import SourceDescriptor


def parse_catalog(payload: Any, source: str = "catalog") -> List[SourceDescriptor]:
    """
    Convert a decoded catalog payload into descriptors.

    Malformed entries are skipped with a warning; duplicate names keep the
    first entry.

    Raises:
        CatalogError: If the payload is not a list.
    """
    if not isinstance(payload, list):
        raise CatalogError(
            f"Unexpected payload from {source}",
            details=f"expected list, got {type(payload).__name__}",
        )

    descriptors: List[SourceDescriptor] = []
    seen = set()
    for entry in payload:
        try:
            descriptor = SourceDescriptor.from_dict(entry)
        except CatalogError as e:
            logger.warning(f"Skipping catalog entry from {source}: {e}")
            continue
        if descriptor.name in seen:
            logger.warning(f"Skipping duplicate catalog entry '{descriptor.name}'")
            continue
        seen.add(descriptor.name)
        descriptors.append(descriptor)
    logger.debug(f"Loaded {len(descriptors)} addons from {source}")
    return descriptors


async def fetch_catalog(
    client: AsyncGitHubClient, url: str
) -> List[SourceDescriptor]:
    """
    Fetch and parse the catalog with the async client.

    Raises:
        CatalogError: If the request fails or the payload is malformed.
    """
    try:
        payload = await client.get_json(url)
    except SynLauncherError as e:
        raise CatalogError(
            f"Could not fetch addon catalog from {url}", details=str(e)
        ) from e
    return parse_catalog(payload, url)


def fetch_catalog_sync(
    url: str, timeout: Optional[float] = CATALOG_REQUEST_TIMEOUT
) -> List[SourceDescriptor]:
    """
    Fetch and parse the catalog with requests, for callers without an event loop.

    Raises:
        CatalogError: If the request fails or the payload is malformed.
    """
    retry_strategy = Retry(
        total=CATALOG_CONNECT_RETRIES,
        backoff_factor=CATALOG_BACKOFF_FACTOR,
        status_forcelist=[408, 429, 500, 502, 503, 504],
        allowed_methods=frozenset({"GET"}),
        raise_on_status=False,
        respect_retry_after_header=True,
    )
    session = requests.Session()
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    try:
        response = session.get(url, headers=get_request_headers(url), timeout=timeout)
        response.raise_for_status()
        payload = response.json()
    except requests.RequestException as e:
        raise CatalogError(
            f"Could not fetch addon catalog from {url}", details=str(e)
        ) from e
    except ValueError as e:
        raise CatalogError(
            f"Addon catalog at {url} is not valid JSON", details=str(e)
        ) from e
    finally:
        session.close()
    return parse_catalog(payload, url)
