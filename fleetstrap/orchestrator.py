"""Cross-region orchestration.

The Converger finds one CoreOS release available in every region, launches
the requested number of instances round-robin across regions and tears
them down again on request.

Example:
    from fleetstrap import Converger, GitHubReleases, LaunchSpec, Region

    converger = Converger(
        regions=[Region("us-east-1"), Region("eu-west-1")],
        releases=GitHubReleases(),
    )
    converger.resolve_cluster_image()
    converger.launch_all(LaunchSpec("my-key", user_data, "t1.micro", count=5))
    ...
    converger.terminate_all()
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterator, Sequence

from loguru import logger

from fleetstrap.exceptions import ConfigurationError, ImageResolutionError
from fleetstrap.providers.aws.region import Region
from fleetstrap.releases import ReleaseSource
from fleetstrap.types import BootImage, LaunchedInstance, LaunchSpec, Release, SessionState
from fleetstrap.utils.conc import for_each_concurrent, map_concurrent

log = logger.bind(component="converger")


def validate_launch_spec(spec: LaunchSpec) -> None:
    """Reject incomplete launch specs before any provider call."""
    if not spec.keypair_name:
        raise ConfigurationError("keypair name is required")
    if not spec.user_data:
        raise ConfigurationError("boot payload (user data) is required")
    if not spec.instance_type:
        raise ConfigurationError("instance type is required")
    if spec.count < 0:
        raise ConfigurationError(f"instance count must be >= 0, got {spec.count}")


class Converger:
    """Coordinates image agreement, launch and teardown across regions.

    Args:
        regions: Regions in launch order. Names must be unique.
        releases: Source of candidate releases, newest first.
        concurrency: Max regions worked on at once. None = all, 1 = sequential.
    """

    def __init__(
        self,
        regions: Sequence[Region],
        releases: ReleaseSource,
        *,
        concurrency: int | None = None,
    ) -> None:
        if not regions:
            raise ConfigurationError("at least one region is required")

        names = [region.name for region in regions]
        duplicates = sorted(name for name, n in Counter(names).items() if n > 1)
        if duplicates:
            raise ConfigurationError(f"duplicate regions: {', '.join(duplicates)}")

        self.regions = tuple(regions)
        self._releases = releases
        self._concurrency = concurrency
        self._state = SessionState.UNCONFIGURED
        self._release: Release | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def release(self) -> Release | None:
        """The committed release, once resolved."""
        return self._release

    @property
    def images(self) -> dict[str, BootImage]:
        return {r.name: r.image for r in self.regions if r.image is not None}

    # -------------------------------------------------------------------------
    # Image agreement
    # -------------------------------------------------------------------------

    def resolve_cluster_image(self) -> Release:
        """Commit the newest release that has an image in every region.

        Lookups for a release run concurrently across regions; no region
        is touched until all of them have answered with a match.

        Returns:
            The committed release.

        Raises:
            ImageResolutionError: If no release matches in all regions.
        """
        if self._release is not None:
            return self._release

        log.info("Looking up images for the latest release")
        attempted: list[Release] = []
        missing: dict[Release, list[str]] = {}

        for release in self._releases.releases():
            attempted.append(release)
            matches = map_concurrent(
                lambda region: region.find_image(release),
                self.regions,
                self._concurrency,
            )

            absent = [r.name for r, image in zip(self.regions, matches, strict=True) if image is None]
            if absent:
                log.debug(
                    "Release {release} missing in {regions}, trying older",
                    release=release,
                    regions=", ".join(absent),
                )
                missing[release] = absent
                continue

            log.bind(release=release).info("Found images in every region")
            for region, image in zip(self.regions, matches, strict=True):
                assert image is not None
                region.use_image(image)
                log.bind(region=region.name).info(
                    "{image_id} {name}", image_id=image.image_id, name=image.name
                )

            self._release = release
            self._state = SessionState.IMAGE_RESOLVED
            return release

        raise ImageResolutionError(
            "Couldn't find a suitable image for the releases found: "
            + (", ".join(attempted) or "none"),
            releases=attempted,
            missing=missing,
        )

    # -------------------------------------------------------------------------
    # Launch
    # -------------------------------------------------------------------------

    def plan(self, count: int) -> list[str]:
        """Region name for each launch index, round-robin in region order."""
        return [self.regions[i % len(self.regions)].name for i in range(count)]

    def launch_all(self, spec: LaunchSpec) -> list[LaunchedInstance]:
        """Launch spec.count instances round-robin across regions.

        Launches proceed in rounds of one pass over the region list. Within
        a round each region launches once, concurrently with the others, so
        a region's own launches stay serial and in pointer order. A failed
        launch stops after its round; instances already created are kept
        and remain tracked for terminate_all().

        Returns:
            The instances created by this call.
        """
        validate_launch_spec(spec)

        if self._state is SessionState.UNCONFIGURED:
            raise ImageResolutionError("cluster image not resolved, call resolve_cluster_image() first")
        if self._state is not SessionState.IMAGE_RESOLVED:
            raise ConfigurationError(f"cannot launch from state '{self._state}'")

        if spec.count == 0:
            log.info("Nothing to launch")
            self._state = SessionState.LAUNCHED
            return []

        schedule = [self.regions[i % len(self.regions)] for i in range(spec.count)]
        width = len(self.regions)

        log.info(
            "Launching {count} instance(s) across {n} region(s)",
            count=spec.count,
            n=min(width, spec.count),
        )

        self._state = SessionState.LAUNCHING
        try:
            for_each_concurrent(
                lambda region: region.resolve_security_group(),
                schedule[:width],
                self._concurrency,
            )
            for start in range(0, len(schedule), width):
                map_concurrent(
                    lambda region: region.launch_instance(spec),
                    schedule[start:start + width],
                    self._concurrency,
                )
        finally:
            self._state = SessionState.LAUNCHED

        return list(self.instances())

    def instances(self) -> Iterator[LaunchedInstance]:
        """Every tracked instance, region order then creation order."""
        for region in self.regions:
            yield from region.instances

    def summary(self) -> dict[str, int]:
        """Launched instance count per region."""
        return {region.name: len(region.instances) for region in self.regions}

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    def terminate_all(self) -> list[str]:
        """Terminate every tracked instance.

        Regions are swept concurrently, each in creation order. Returns
        once EC2 has accepted the requests.

        Returns:
            IDs of the terminated instances.
        """
        if self._state is not SessionState.LAUNCHED:
            log.info("Nothing to terminate (state: {state})", state=self._state)
            return []

        def sweep(region: Region) -> list[str]:
            terminated: list[str] = []
            for instance in region.instances:
                region.terminate_instance(instance.instance_id)
                terminated.append(instance.instance_id)
            return terminated

        per_region = map_concurrent(sweep, self.regions, self._concurrency)
        self._state = SessionState.TERMINATED

        terminated = [instance_id for ids in per_region for instance_id in ids]
        log.info("Terminated {n} instance(s)", n=len(terminated))
        return terminated
