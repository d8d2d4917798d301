"""Centralized constants for fleetstrap.

CoreOS publisher details, security group layout and defaults live here
so the region and orchestration code never carry magic strings.
"""

from __future__ import annotations

from typing import Final

# =============================================================================
# CoreOS Images
# =============================================================================

COREOS_AWS_ID: Final = "595879546273"
IMAGE_NAME_PATTERN: Final = "CoreOS-alpha-*"
RELEASE_NAME_PATTERN: Final = "*-{release}-*"
VIRTUALIZATION_TYPE: Final = "paravirtual"

RELEASES_PROJECT: Final = "coreos/manifest"
GITHUB_API_URL: Final = "https://api.github.com"


# =============================================================================
# Security Group
# =============================================================================

SECURITY_GROUP_NAME: Final = "CoreOS-multi-region-cluster-INSECURE"
SECURITY_GROUP_DESCRIPTION: Final = (
    "Automatically generated group for INSECURE CoreOS cluster access across multiple regions"
)
OPEN_CIDR: Final = "0.0.0.0/0"

ETCD_CLIENT_PORT: Final = 4001
ETCD_PEER_PORT: Final = 7001
SSH_PORT: Final = 22


# =============================================================================
# etcd Discovery
# =============================================================================

DISCOVERY_URL: Final = "https://discovery.etcd.io/new"
CLOUD_CONFIG_HEADER: Final = "#cloud-config\n"


# =============================================================================
# Defaults
# =============================================================================

DEFAULT_COUNT: Final = 3
DEFAULT_INSTANCE_TYPE: Final = "t1.micro"
HTTP_TIMEOUT_SECONDS: Final = 30.0
