from __future__ import annotations

import itertools
import threading
from collections.abc import Callable, Iterable
from fnmatch import fnmatchcase
from typing import Any

import pytest
from botocore.exceptions import ClientError

from fleetstrap.constants import COREOS_AWS_ID, VIRTUALIZATION_TYPE
from fleetstrap.providers.aws.region import Region
from fleetstrap.releases import StaticReleases


def client_error(code: str, operation: str, message: str = "boom") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


def coreos_image(
    release: str,
    build: str = "pv",
    *,
    image_id: str | None = None,
    owner: str = COREOS_AWS_ID,
    virtualization: str = VIRTUALIZATION_TYPE,
    channel: str = "alpha",
) -> dict[str, Any]:
    name = f"CoreOS-{channel}-{release}-{build}"
    return {
        "ImageId": image_id or f"ami-{release}-{build}",
        "Name": name,
        "OwnerId": owner,
        "VirtualizationType": virtualization,
    }


class FakeEC2:
    """In-memory stand-in for the handful of EC2 calls a Region makes.

    describe_images ORs values within a filter, like EC2 does.
    """

    def __init__(
        self,
        prefix: str = "x",
        *,
        images: Iterable[dict[str, Any]] = (),
        security_groups: dict[str, str] | None = None,
        fail: dict[str, Exception] | None = None,
    ) -> None:
        self.prefix = prefix
        self.images = list(images)
        self.security_groups = dict(security_groups or {})
        self.fail = dict(fail or {})
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.terminated: list[str] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def _record(self, operation: str, kwargs: dict[str, Any]) -> None:
        with self._lock:
            self.calls.append((operation, kwargs))
        if operation in self.fail:
            raise self.fail[operation]

    def calls_to(self, operation: str) -> list[dict[str, Any]]:
        return [kwargs for op, kwargs in self.calls if op == operation]

    def describe_security_groups(self, **kwargs: Any) -> dict[str, Any]:
        self._record("describe_security_groups", kwargs)
        names = {v for f in kwargs.get("Filters", []) if f["Name"] == "group-name" for v in f["Values"]}
        return {
            "SecurityGroups": [
                {"GroupName": name, "GroupId": group_id}
                for name, group_id in self.security_groups.items()
                if name in names
            ]
        }

    def create_security_group(self, **kwargs: Any) -> dict[str, Any]:
        self._record("create_security_group", kwargs)
        group_id = f"sg-{self.prefix}-{next(self._ids)}"
        self.security_groups[kwargs["GroupName"]] = group_id
        return {"GroupId": group_id}

    def authorize_security_group_ingress(self, **kwargs: Any) -> dict[str, Any]:
        self._record("authorize_security_group_ingress", kwargs)
        return {"Return": True}

    def describe_images(self, **kwargs: Any) -> dict[str, Any]:
        self._record("describe_images", kwargs)
        filters = {f["Name"]: f["Values"] for f in kwargs.get("Filters", [])}
        fields = {"name": "Name", "owner-id": "OwnerId", "virtualization-type": "VirtualizationType"}

        def keep(image: dict[str, Any]) -> bool:
            return all(
                any(fnmatchcase(image[fields[name]], value) for value in values)
                for name, values in filters.items()
            )

        return {"Images": [image for image in self.images if keep(image)]}

    def run_instances(self, **kwargs: Any) -> dict[str, Any]:
        self._record("run_instances", kwargs)
        return {"Instances": [{"InstanceId": f"i-{self.prefix}-{next(self._ids):03d}"}]}

    def terminate_instances(self, **kwargs: Any) -> dict[str, Any]:
        self._record("terminate_instances", kwargs)
        self.terminated.extend(kwargs["InstanceIds"])
        return {"TerminatingInstances": [{"InstanceId": i} for i in kwargs["InstanceIds"]]}


type RegionFactory = Callable[..., Region]


@pytest.fixture
def make_region() -> RegionFactory:
    """Build a Region backed by a FakeEC2.

    Usage: make_region("us-east-1", releases=["367.1.0"]) gives a region
    with one CoreOS alpha image per listed release.
    """

    def factory(
        name: str,
        *,
        releases: Iterable[str] = (),
        images: Iterable[dict[str, Any]] = (),
        security_groups: dict[str, str] | None = None,
        fail: dict[str, Exception] | None = None,
    ) -> Region:
        catalog = [coreos_image(r, image_id=f"ami-{name}-{r}") for r in releases]
        client = FakeEC2(
            name,
            images=[*catalog, *images],
            security_groups=security_groups,
            fail=fail,
        )
        return Region(name, client=client)

    return factory


@pytest.fixture
def releases() -> Callable[..., StaticReleases]:
    return lambda *tags: StaticReleases(tags)
