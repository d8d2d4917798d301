"""TOML-based cluster configuration.

Loads ~/.fleetstrap/defaults.toml (global) and fleetstrap.toml (project),
merges them, applies command-line overrides and validates the result.

Example fleetstrap.toml:

    [cluster]
    regions = ["us-east-1", "eu-west-1"]
    keypair_name = "coreos"
    cloudinit = "cloudinit.yml"
    count = 5
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any, Self

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from fleetstrap.constants import DEFAULT_COUNT, DEFAULT_INSTANCE_TYPE, RELEASES_PROJECT
from fleetstrap.exceptions import ConfigurationError
from fleetstrap.types import LaunchSpec

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".fleetstrap" / "defaults.toml"
PROJECT_CONFIG_NAME = "fleetstrap.toml"
CLUSTER_SECTION = "cluster"


class RegionsConfig(BaseModel):
    """Regions and release selection, enough to resolve a cluster image."""

    regions: list[str] = Field(description="AWS regions to launch in, in launch order")
    release_project: str = Field(default=RELEASES_PROJECT, description="GitHub owner/repo")
    releases: list[str] = Field(default_factory=list, description="Pinned releases, newest first")
    concurrency: int | None = Field(default=None, ge=1)
    profile: str | None = Field(default=None, description="AWS credentials profile")

    model_config = {"extra": "forbid"}

    @field_validator("regions", mode="before")
    @classmethod
    def split_regions(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [r.strip() for r in value.split(",") if r.strip()]
        return value

    @model_validator(mode="after")
    def validate_regions(self) -> Self:
        if not self.regions:
            raise ValueError("at least one region is required")
        if len(set(self.regions)) != len(self.regions):
            raise ValueError(f"regions must be unique: {', '.join(self.regions)}")
        return self


class FleetConfig(RegionsConfig):
    """Validated cluster configuration for a launch."""

    keypair_name: str = Field(min_length=1, description="Key pair present in every region")
    cloudinit: Path = Field(description="Path to the cloud-config file")
    count: int = Field(default=DEFAULT_COUNT, ge=0, description="Total instances")
    instance_type: str = Field(default=DEFAULT_INSTANCE_TYPE, min_length=1)
    discovery_url: str | None = Field(default=None, description="etcd discovery URL")

    def launch_spec(self, user_data: str) -> LaunchSpec:
        return LaunchSpec(
            keypair_name=self.keypair_name,
            user_data=user_data,
            instance_type=self.instance_type,
            count=self.count,
        )


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"{path}: {e}") from e


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_cfg = _read_toml((project_dir or Path.cwd()) / PROJECT_CONFIG_NAME)

    merged = _deep_merge(global_cfg, project_cfg)
    merged.setdefault(CLUSTER_SECTION, {})
    return merged


def _merged_cluster(
    overrides: RawConfig | None,
    project_dir: Path | None,
    global_path: Path | None,
) -> RawConfig:
    config = load_config(project_dir=project_dir, global_path=global_path)
    cluster = config[CLUSTER_SECTION]
    if not isinstance(cluster, dict):
        raise ConfigurationError(f"[{CLUSTER_SECTION}] must be a table")

    given = {k: v for k, v in (overrides or {}).items() if v is not None}
    raw = _deep_merge(cluster, given)

    # file-relative cloudinit paths resolve against the project directory
    if "cloudinit" in cluster and "cloudinit" not in given:
        raw["cloudinit"] = (project_dir or Path.cwd()) / cluster["cloudinit"]

    unknown = sorted(set(raw) - set(FleetConfig.model_fields))
    if unknown:
        raise ConfigurationError(f"unknown settings in [{CLUSTER_SECTION}]: {', '.join(unknown)}")
    return raw


def _validate[M: RegionsConfig](model: type[M], raw: RawConfig) -> M:
    fields = {k: v for k, v in raw.items() if k in model.model_fields}
    try:
        return model(**fields)
    except ValidationError as e:
        raise ConfigurationError(_describe(e)) from e


def resolve_config(
    overrides: RawConfig | None = None,
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> FleetConfig:
    """Merge file configuration with overrides and validate for a launch.

    Overrides whose value is None are ignored, so unset command-line
    options fall through to the files.

    Raises:
        ConfigurationError: If required settings are missing or invalid.
    """
    return _validate(FleetConfig, _merged_cluster(overrides, project_dir, global_path))


def resolve_regions_config(
    overrides: RawConfig | None = None,
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RegionsConfig:
    """Like resolve_config, but only requires what image lookup needs."""
    return _validate(RegionsConfig, _merged_cluster(overrides, project_dir, global_path))


def _describe(error: ValidationError) -> str:
    problems = [
        f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
        for err in error.errors()
    ]
    return "invalid configuration: " + "; ".join(problems)
