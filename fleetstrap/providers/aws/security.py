"""Ingress rules for the cluster security group."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fleetstrap.constants import ETCD_CLIENT_PORT, ETCD_PEER_PORT, OPEN_CIDR, SSH_PORT

if TYPE_CHECKING:
    from mypy_boto3_ec2.type_defs import IpPermissionTypeDef

CLUSTER_PORTS: tuple[int, ...] = (ETCD_CLIENT_PORT, ETCD_PEER_PORT, SSH_PORT)


def tcp_ingress(port: int, cidr: str = OPEN_CIDR) -> IpPermissionTypeDef:
    return {
        "IpProtocol": "tcp",
        "FromPort": port,
        "ToPort": port,
        "IpRanges": [{"CidrIp": cidr}],
    }


def cluster_ingress_rules(ports: tuple[int, ...] = CLUSTER_PORTS) -> list[IpPermissionTypeDef]:
    """etcd client, etcd peer and SSH, each open to any source address."""
    return [tcp_ingress(port) for port in ports]
