"""CoreOS image catalog queries.

EC2 ORs the values inside a single filter, so the name patterns sent to
describe_images only narrow the result set. The release match is then
enforced client side with the same glob patterns.
"""

from __future__ import annotations

from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import TYPE_CHECKING

from fleetstrap.constants import (
    COREOS_AWS_ID,
    IMAGE_NAME_PATTERN,
    RELEASE_NAME_PATTERN,
    VIRTUALIZATION_TYPE,
)
from fleetstrap.types import BootImage, Release

if TYPE_CHECKING:
    from mypy_boto3_ec2.type_defs import FilterTypeDef


@dataclass(frozen=True, slots=True)
class ImageQuery:
    """Where to look for a release's boot image.

    Args:
        owner_id: Publisher account that owns the images.
        name_pattern: Channel naming convention, e.g. "CoreOS-alpha-*".
        release_pattern: Pattern containing "{release}".
        virtualization_type: EC2 virtualization type.
    """

    owner_id: str = COREOS_AWS_ID
    name_pattern: str = IMAGE_NAME_PATTERN
    release_pattern: str = RELEASE_NAME_PATTERN
    virtualization_type: str = VIRTUALIZATION_TYPE

    def name_patterns(self, release: Release) -> tuple[str, str]:
        return self.name_pattern, self.release_pattern.format(release=release)

    def filters(self, release: Release) -> list[FilterTypeDef]:
        return [
            {"Name": "name", "Values": list(self.name_patterns(release))},
            {"Name": "owner-id", "Values": [self.owner_id]},
            {"Name": "virtualization-type", "Values": [self.virtualization_type]},
        ]

    def matches(self, name: str, release: Release) -> bool:
        return all(fnmatchcase(name, p) for p in self.name_patterns(release))


def select_image(images: list[BootImage]) -> BootImage | None:
    """Pick the image whose name sorts greatest.

    Lexical order only agrees with build recency while the publisher's
    naming convention keeps version components the same width.
    """
    if not images:
        return None
    return max(images, key=lambda image: image.name)
