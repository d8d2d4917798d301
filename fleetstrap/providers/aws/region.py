"""Per-region EC2 handle.

A Region owns everything fleetstrap touches in one AWS region: the
cluster security group, the boot image chosen for the session and the
instances launched there. No state is shared across regions.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from functools import cached_property
from typing import TYPE_CHECKING, Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from fleetstrap.constants import SECURITY_GROUP_DESCRIPTION, SECURITY_GROUP_NAME
from fleetstrap.exceptions import ImageResolutionError, ProvisioningError, WriteOnceViolation
from fleetstrap.providers.aws.images import ImageQuery, select_image
from fleetstrap.providers.aws.security import cluster_ingress_rules
from fleetstrap.types import BootImage, LaunchedInstance, LaunchSpec, Release

if TYPE_CHECKING:
    from mypy_boto3_ec2 import EC2Client

_DUPLICATE_GROUP = "InvalidGroup.Duplicate"


def _error_code(error: Exception) -> str:
    if isinstance(error, ClientError):
        return error.response.get("Error", {}).get("Code", "Unknown")
    return type(error).__name__


class Region:
    """One AWS region's connection and the resources created in it.

    Args:
        name: AWS region name, e.g. "us-east-1".
        session: boto3 session to build the EC2 client from.
        client: Pre-built EC2 client. Takes precedence over session.
        query: Image catalog query; defaults to the CoreOS alpha channel.
    """

    def __init__(
        self,
        name: str,
        *,
        session: boto3.Session | None = None,
        client: Any = None,
        query: ImageQuery | None = None,
    ) -> None:
        self.name = name
        self.query = query or ImageQuery()
        self._session = session
        self._client = client
        self._lock = threading.Lock()
        self._security_group_id: str | None = None
        self._image: BootImage | None = None
        self._instances: list[LaunchedInstance] = []
        self._log = logger.bind(component="region", region=name)

    def __repr__(self) -> str:
        return f"Region({self.name!r})"

    @cached_property
    def ec2(self) -> EC2Client:
        """EC2 client, created lazily."""
        if self._client is not None:
            return self._client
        session = self._session or boto3.Session()
        return session.client("ec2", region_name=self.name)

    @property
    def image(self) -> BootImage | None:
        return self._image

    @property
    def has_image(self) -> bool:
        return self._image is not None

    @property
    def instances(self) -> tuple[LaunchedInstance, ...]:
        return tuple(self._instances)

    @contextmanager
    def _provider_call(self, operation: str) -> Iterator[None]:
        try:
            yield
        except (ClientError, BotoCoreError) as e:
            self._log.error("{operation} failed: {error}", operation=operation, error=e)
            raise ProvisioningError(self.name, operation, f"{_error_code(e)}: {e}") from e

    # -------------------------------------------------------------------------
    # Security group
    # -------------------------------------------------------------------------

    def resolve_security_group(self) -> str:
        """Get or create the cluster security group.

        The check-then-create sequence runs under this region's lock, so
        concurrent first calls in one process issue a single creation. A
        concurrent creator in another process shows up as
        InvalidGroup.Duplicate and is answered by reading the group back.

        Returns:
            Security group ID.
        """
        if self._security_group_id is not None:
            return self._security_group_id

        with self._lock:
            if self._security_group_id is not None:
                return self._security_group_id

            group_id = self._find_security_group()
            if group_id is None:
                group_id = self._create_security_group()
            self._security_group_id = group_id
            return group_id

    def _find_security_group(self) -> str | None:
        with self._provider_call("DescribeSecurityGroups"):
            response = self.ec2.describe_security_groups(
                Filters=[{"Name": "group-name", "Values": [SECURITY_GROUP_NAME]}]
            )

        groups = response.get("SecurityGroups", [])
        if not groups:
            return None

        existing = groups[0]
        self._log.info(
            "Using security group '{name}' ({group_id})",
            name=existing["GroupName"],
            group_id=existing["GroupId"],
        )
        return existing["GroupId"]

    def _create_security_group(self) -> str:
        self._log.info("Creating a new security group named '{name}'", name=SECURITY_GROUP_NAME)
        group_id: str | None = None
        with self._provider_call("CreateSecurityGroup"):
            try:
                group_id = self.ec2.create_security_group(
                    GroupName=SECURITY_GROUP_NAME,
                    Description=SECURITY_GROUP_DESCRIPTION,
                )["GroupId"]
            except ClientError as e:
                if _error_code(e) != _DUPLICATE_GROUP:
                    raise

        if group_id is None:
            self._log.warning("Security group created concurrently elsewhere, reusing it")
            existing = self._find_security_group()
            if existing is None:
                raise ProvisioningError(
                    self.name, "CreateSecurityGroup", f"{_DUPLICATE_GROUP} but group not found"
                )
            return existing

        self._log.info(
            "Adding ingress rules to new security group '{name}' ({group_id})",
            name=SECURITY_GROUP_NAME,
            group_id=group_id,
        )
        with self._provider_call("AuthorizeSecurityGroupIngress"):
            self.ec2.authorize_security_group_ingress(
                GroupId=group_id,
                IpPermissions=cluster_ingress_rules(),
            )
        return group_id

    # -------------------------------------------------------------------------
    # Boot image
    # -------------------------------------------------------------------------

    def find_image(self, release: Release) -> BootImage | None:
        """Find this region's image for a release.

        Returns:
            The matching image with the lexically greatest name, or None.
        """
        with self._provider_call("DescribeImages"):
            response = self.ec2.describe_images(Filters=self.query.filters(release))

        candidates = [
            BootImage.from_api(raw)
            for raw in response.get("Images", [])
            if self.query.matches(raw.get("Name", ""), release)
        ]
        image = select_image(candidates)
        self._log.debug(
            "Release {release}: {n} candidate image(s), selected {image}",
            release=release,
            n=len(candidates),
            image=image.image_id if image else None,
        )
        return image

    def use_image(self, image: BootImage) -> None:
        """Record the session's boot image. Write-once."""
        if self._image is not None:
            if self._image == image:
                return
            raise WriteOnceViolation(self.name, self._image.image_id, image.image_id)
        self._image = image

    # -------------------------------------------------------------------------
    # Instances
    # -------------------------------------------------------------------------

    def launch_instance(self, spec: LaunchSpec) -> tuple[str, ...]:
        """Launch exactly one instance with the resolved image and group.

        Returns once EC2 accepts the request; the instance may still be
        pending.

        Returns:
            IDs of the created instance(s).
        """
        if self._image is None:
            raise ImageResolutionError("boot image not resolved", region=self.name)

        security_group_id = self.resolve_security_group()

        self._log.info("Launching instance")
        with self._provider_call("RunInstances"):
            response = self.ec2.run_instances(
                ImageId=self._image.image_id,
                MinCount=1,
                MaxCount=1,
                KeyName=spec.keypair_name,
                SecurityGroupIds=[security_group_id],
                UserData=spec.user_data,
                InstanceType=spec.instance_type,  # type: ignore[arg-type]
            )

        instance_ids = tuple(raw["InstanceId"] for raw in response.get("Instances", []))
        for instance_id in instance_ids:
            self._instances.append(LaunchedInstance(instance_id=instance_id, region=self))
            self._log.info("Created new instance {instance_id}", instance_id=instance_id)
        return instance_ids

    def terminate_instance(self, instance_ids: str | Sequence[str]) -> None:
        """Request termination. Does not wait for the terminated state."""
        ids = [instance_ids] if isinstance(instance_ids, str) else list(instance_ids)
        if not ids:
            return

        self._log.info("Terminating {ids}", ids=", ".join(ids))
        with self._provider_call("TerminateInstances"):
            self.ec2.terminate_instances(InstanceIds=ids)
