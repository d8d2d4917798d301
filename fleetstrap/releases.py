"""Release listing for the image agreement search.

A ReleaseSource yields release identifiers newest first. The orchestrator
walks them in that order and never compares them lexically.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from functools import cached_property
from typing import Protocol, runtime_checkable

import httpx
from loguru import logger

from fleetstrap.constants import GITHUB_API_URL, HTTP_TIMEOUT_SECONDS, RELEASES_PROJECT
from fleetstrap.exceptions import ReleaseSourceError
from fleetstrap.types import Release

log = logger.bind(component="releases")


@runtime_checkable
class ReleaseSource(Protocol):
    """Anything that can list releases, newest first."""

    def releases(self) -> Sequence[Release]: ...


def strip_version_marker(tag: str) -> Release:
    """"v367.1.0" -> "367.1.0"."""
    return tag.removeprefix("v")


class StaticReleases:
    """Fixed release list, e.g. pinned from configuration."""

    def __init__(self, releases: Iterable[str]) -> None:
        self._releases = tuple(strip_version_marker(r) for r in releases)

    def releases(self) -> Sequence[Release]:
        return self._releases


class GitHubReleases:
    """Releases of a GitHub project, as listed by the REST API.

    The listing is fetched once per instance and cached.

    Args:
        project: "owner/repo".
        client: httpx client to use; one is created per fetch otherwise.
        token: Optional GitHub token to lift the anonymous rate limit.
    """

    def __init__(
        self,
        project: str = RELEASES_PROJECT,
        *,
        client: httpx.Client | None = None,
        token: str | None = None,
        base_url: str = GITHUB_API_URL,
    ) -> None:
        self.project = project
        self._client = client
        self._token = token
        self._base_url = base_url.rstrip("/")

    def releases(self) -> Sequence[Release]:
        return self._releases

    @cached_property
    def _releases(self) -> tuple[Release, ...]:
        log.info("Asking GitHub for the latest releases of {project}", project=self.project)
        payload = self._fetch()
        tags = tuple(strip_version_marker(entry["tag_name"]) for entry in payload)
        log.debug("Found {n} releases: {tags}", n=len(tags), tags=", ".join(tags))
        return tags

    def _fetch(self) -> list[dict]:
        url = f"{self._base_url}/repos/{self.project}/releases"
        headers = {"Accept": "application/vnd.github+json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        try:
            if self._client is not None:
                response = self._client.get(url, headers=headers)
            else:
                with httpx.Client(timeout=HTTP_TIMEOUT_SECONDS) as client:
                    response = client.get(url, headers=headers)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ReleaseSourceError(f"Failed to list releases for {self.project}: {e}") from e

        if not isinstance(payload, list):
            raise ReleaseSourceError(f"Unexpected release listing for {self.project}: {payload!r}")
        return payload
