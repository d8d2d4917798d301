"""etcd discovery token retrieval."""

from __future__ import annotations

import httpx
from loguru import logger

from fleetstrap.constants import DISCOVERY_URL, HTTP_TIMEOUT_SECONDS
from fleetstrap.exceptions import DiscoveryError

log = logger.bind(component="discovery")


def new_discovery_url(
    size: int | None = None,
    *,
    client: httpx.Client | None = None,
    endpoint: str = DISCOVERY_URL,
) -> str:
    """Ask the public discovery service for a fresh cluster token URL.

    Args:
        size: Expected cluster size, passed through as ?size=N.
        client: httpx client to use; a short-lived one otherwise.
        endpoint: Discovery service endpoint.

    Returns:
        The discovery URL, e.g. "https://discovery.etcd.io/3e86b59982e49066c5d813af1c2e2579".
    """
    params = {"size": str(size)} if size else None
    try:
        if client is not None:
            response = client.get(endpoint, params=params)
        else:
            with httpx.Client(timeout=HTTP_TIMEOUT_SECONDS) as http:
                response = http.get(endpoint, params=params)
        response.raise_for_status()
    except httpx.HTTPError as e:
        raise DiscoveryError(f"Failed to obtain a discovery URL from {endpoint}: {e}") from e

    url = response.text.strip()
    if not url.startswith(("http://", "https://")):
        raise DiscoveryError(f"Discovery service returned an invalid URL: {url!r}")

    log.info("Obtained new discovery URL {url}", url=url)
    return url
