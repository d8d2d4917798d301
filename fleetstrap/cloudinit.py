"""cloud-config user data for CoreOS instances.

Loads the user's cloud-config, injects the etcd settings the cluster
needs to self-assemble and renders the boot payload.
"""

from __future__ import annotations

import copy
from collections.abc import Callable
from pathlib import Path
from typing import Any

import yaml

from fleetstrap.constants import CLOUD_CONFIG_HEADER, ETCD_CLIENT_PORT, ETCD_PEER_PORT
from fleetstrap.exceptions import ConfigurationError

type CloudConfig = dict[str, Any]

ETCD_ADDR = f"$public_ipv4:{ETCD_CLIENT_PORT}"
ETCD_PEER_ADDR = f"$public_ipv4:{ETCD_PEER_PORT}"


def load_cloud_config(path: str | Path) -> CloudConfig:
    """Read and validate a cloud-config file.

    Raises:
        ConfigurationError: If the file is unreadable, lacks the
            "#cloud-config" first line or is not a YAML mapping.
    """
    path = Path(path)
    try:
        contents = path.read_text()
    except OSError as e:
        raise ConfigurationError(f"Can't read cloudinit file: {path}") from e

    if not contents.startswith(CLOUD_CONFIG_HEADER):
        raise ConfigurationError(
            f"{path}: must have the '#cloud-config' label as a comment on the first line"
        )

    try:
        data = yaml.safe_load(contents)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"{path}: invalid YAML: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path}: cloud-config must be a mapping")
    return data


def with_etcd_discovery(
    cloud_config: CloudConfig,
    discovery_url: str | Callable[[], str],
) -> CloudConfig:
    """Fill in coreos.etcd discovery and addresses without overriding.

    Args:
        cloud_config: Parsed cloud-config. Not mutated.
        discovery_url: URL, or a callable producing one. The callable only
            runs when the config has no discovery URL of its own.
    """
    result = copy.deepcopy(cloud_config)
    coreos = result["coreos"] = result.get("coreos") or {}
    etcd = coreos["etcd"] = coreos.get("etcd") or {}

    if not etcd.get("discovery"):
        etcd["discovery"] = discovery_url() if callable(discovery_url) else discovery_url
    etcd.setdefault("addr", ETCD_ADDR)
    etcd.setdefault("peer-addr", ETCD_PEER_ADDR)
    return result


def render_user_data(cloud_config: CloudConfig) -> str:
    """Serialize back to a "#cloud-config" document.

    Plain text: boto3 base64-encodes RunInstances UserData itself.
    """
    body = yaml.safe_dump(cloud_config, default_flow_style=False, sort_keys=False)
    return f"{CLOUD_CONFIG_HEADER}\n{body}"


def build_user_data(
    path: str | Path,
    discovery_url: str | Callable[[], str],
) -> str:
    """Load, complete and render a cloud-config file in one go."""
    return render_user_data(with_etcd_discovery(load_cloud_config(path), discovery_url))
