"""Value types shared by regions and the orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from fleetstrap.providers.aws.region import Region

type Release = str
"""Opaque release version, e.g. "367.1.0". Ordered by recency only."""


class SessionState(StrEnum):
    """Lifecycle of one orchestration session."""

    UNCONFIGURED = "unconfigured"
    IMAGE_RESOLVED = "image_resolved"
    LAUNCHING = "launching"
    LAUNCHED = "launched"
    TERMINATED = "terminated"


@dataclass(frozen=True, slots=True)
class BootImage:
    """A machine image in one region's catalog."""

    image_id: str
    name: str

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> BootImage:
        return cls(image_id=raw["ImageId"], name=raw.get("Name", ""))


@dataclass(frozen=True, slots=True)
class LaunchSpec:
    """What to launch and how many.

    Args:
        keypair_name: EC2 key pair, must exist under this name in every region.
        user_data: Boot-time payload handed to each instance (plain text,
            boto3 does the base64 encoding).
        instance_type: EC2 instance type.
        count: Total instances across all regions.
    """

    keypair_name: str
    user_data: str
    instance_type: str
    count: int


@dataclass(frozen=True, slots=True)
class LaunchedInstance:
    """An instance created during this session."""

    instance_id: str
    region: Region = field(compare=False, repr=False)

    @property
    def region_name(self) -> str:
        return self.region.name
