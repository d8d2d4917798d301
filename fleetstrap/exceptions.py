"""Exception hierarchy for fleetstrap.

Every error inherits from FleetstrapError and carries the region it
happened in, when there is one, so multi-region failures stay traceable.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence


class FleetstrapError(Exception):
    """Base exception for all fleetstrap errors."""

    def __init__(self, message: str, *, region: str | None = None) -> None:
        self.region = region
        super().__init__(f"[{region}] {message}" if region else message)


class ConfigurationError(FleetstrapError):
    """Raised when required inputs are missing or invalid."""


class ImageResolutionError(FleetstrapError):
    """Raised when no release has a boot image in every region."""

    def __init__(
        self,
        message: str,
        *,
        region: str | None = None,
        releases: Sequence[str] = (),
        missing: Mapping[str, Sequence[str]] | None = None,
    ) -> None:
        self.releases = tuple(releases)
        self.missing = {release: tuple(regions) for release, regions in (missing or {}).items()}
        super().__init__(message, region=region)


class ProvisioningError(FleetstrapError):
    """Raised when an EC2 call fails. Never retried, never rolled back."""

    def __init__(self, region: str, operation: str, reason: str) -> None:
        self.operation = operation
        self.reason = reason
        super().__init__(f"{operation} failed: {reason}", region=region)


class WriteOnceViolation(FleetstrapError):
    """Raised when a region's boot image is set twice with different values."""

    def __init__(self, region: str, current: str, attempted: str) -> None:
        self.current = current
        self.attempted = attempted
        super().__init__(
            f"boot image already set to {current}, refusing {attempted}",
            region=region,
        )


class ReleaseSourceError(FleetstrapError):
    """Raised when the release listing cannot be fetched."""


class DiscoveryError(FleetstrapError):
    """Raised when a new etcd discovery URL cannot be obtained."""
