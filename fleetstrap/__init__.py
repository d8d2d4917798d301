"""fleetstrap - bootstrap a multi-region CoreOS cluster on EC2.

Example:

    from fleetstrap import Converger, GitHubReleases, LaunchSpec, Region

    converger = Converger(
        regions=[Region("us-east-1"), Region("eu-west-1"), Region("ap-southeast-2")],
        releases=GitHubReleases("coreos/manifest"),
    )
    converger.resolve_cluster_image()
    converger.launch_all(LaunchSpec("coreos", user_data, "t1.micro", count=10))
    converger.terminate_all()
"""

from loguru import logger

from fleetstrap.exceptions import (
    ConfigurationError,
    DiscoveryError,
    FleetstrapError,
    ImageResolutionError,
    ProvisioningError,
    ReleaseSourceError,
    WriteOnceViolation,
)
from fleetstrap.orchestrator import Converger
from fleetstrap.providers.aws import ImageQuery, Region
from fleetstrap.releases import GitHubReleases, ReleaseSource, StaticReleases
from fleetstrap.types import (
    BootImage,
    LaunchedInstance,
    LaunchSpec,
    Release,
    SessionState,
)

__all__ = [
    # Orchestration
    "Converger",
    "Region",
    "ImageQuery",
    # Releases
    "ReleaseSource",
    "GitHubReleases",
    "StaticReleases",
    # Types
    "BootImage",
    "LaunchSpec",
    "LaunchedInstance",
    "Release",
    "SessionState",
    # Errors
    "FleetstrapError",
    "ConfigurationError",
    "ImageResolutionError",
    "ProvisioningError",
    "WriteOnceViolation",
    "ReleaseSourceError",
    "DiscoveryError",
]

__version__ = "0.1.0"

# silent until setup_logging() is called
logger.disable("fleetstrap")
