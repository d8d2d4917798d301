"""Command-line entry point.

    fleetstrap images --regions us-east-1,eu-west-1
    fleetstrap launch --regions us-east-1,eu-west-1 --keypair-name coreos \\
        --cloudinit cloudinit.yml --count 5
    fleetstrap terminate --region us-east-1 i-0abc i-0def

Settings not given on the command line come from fleetstrap.toml.
"""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence
from typing import Any

import boto3
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from fleetstrap import __version__
from fleetstrap.cloudinit import build_user_data
from fleetstrap.config import RegionsConfig, resolve_config, resolve_regions_config
from fleetstrap.constants import DEFAULT_COUNT, DEFAULT_INSTANCE_TYPE
from fleetstrap.discovery import new_discovery_url
from fleetstrap.exceptions import FleetstrapError
from fleetstrap.observability import LogConfig, setup_logging
from fleetstrap.orchestrator import Converger
from fleetstrap.providers.aws.region import Region
from fleetstrap.releases import GitHubReleases, ReleaseSource, StaticReleases

console = Console()
err_console = Console(stderr=True)


def build_regions(config: RegionsConfig) -> list[Region]:
    session = boto3.Session(profile_name=config.profile) if config.profile else None
    return [Region(name, session=session) for name in config.regions]


def build_release_source(config: RegionsConfig) -> ReleaseSource:
    if config.releases:
        return StaticReleases(config.releases)
    return GitHubReleases(config.release_project)


def _region_list(value: str) -> list[str]:
    regions = [r.strip() for r in value.split(",") if r.strip()]
    if not regions:
        raise argparse.ArgumentTypeError("expected a comma-delimited list of regions")
    return regions


def _add_region_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--regions", type=_region_list, default=None,
        help="[Required] Comma-delimited list of AWS regions to launch in",
    )
    parser.add_argument(
        "--release", dest="releases", action="append", default=None,
        help="Pin a release to try (repeatable, newest first); skips the GitHub lookup",
    )
    parser.add_argument("--release-project", default=None, help="GitHub project listing releases")
    parser.add_argument("--profile", default=None, help="AWS credentials profile")
    parser.add_argument(
        "--concurrency", type=int, default=None,
        help="Max regions worked on at once (1 = sequential)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fleetstrap",
        description="Bootstrap a multi-region CoreOS cluster on EC2",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Run verbosely")
    parser.add_argument("--log-file", default=None, help="Also write DEBUG logs to this file")

    commands = parser.add_subparsers(dest="command", required=True)

    images = commands.add_parser("images", help="Find the newest release available in every region")
    _add_region_options(images)

    launch = commands.add_parser("launch", help="Launch the cluster")
    _add_region_options(launch)
    launch.add_argument(
        "--cloudinit", default=None,
        help="[Required] Path to cloudinit.yml file to configure CoreOS boot",
    )
    launch.add_argument(
        "--keypair-name", default=None,
        help="[Required] Name of the keypair to install (must exist by this name across all regions)",
    )
    launch.add_argument(
        "--count", type=int, default=None,
        help=f"Total quantity of instances to create (defaults to {DEFAULT_COUNT})",
    )
    launch.add_argument(
        "--discovery", dest="discovery_url", default=None,
        help="Discovery URL if not in the cloudinit already (creates a new one by default)",
    )
    launch.add_argument(
        "--instance-type", default=None,
        help=f"Instance type (defaults to {DEFAULT_INSTANCE_TYPE})",
    )
    launch.add_argument(
        "--terminate", action="store_true",
        help="Terminate every launched instance before exiting",
    )

    terminate = commands.add_parser("terminate", help="Terminate instances in one region")
    terminate.add_argument("--region", required=True, help="AWS region of the instances")
    terminate.add_argument("--profile", default=None, help="AWS credentials profile")
    terminate.add_argument("instance_ids", nargs="+", metavar="INSTANCE_ID")

    return parser


def _region_overrides(args: argparse.Namespace) -> dict[str, Any]:
    return {
        "regions": args.regions,
        "releases": args.releases,
        "release_project": args.release_project,
        "profile": args.profile,
        "concurrency": args.concurrency,
    }


def _images_table(converger: Converger) -> Table:
    table = Table(title=f"Images for release {converger.release}")
    table.add_column("Region", style="cyan")
    table.add_column("Image ID")
    table.add_column("Name", style="dim")
    for region, image in converger.images.items():
        table.add_row(region, image.image_id, image.name)
    return table


def _instances_table(converger: Converger) -> Table:
    table = Table(title="Launched instances")
    table.add_column("Region", style="cyan")
    table.add_column("Instance ID")
    for instance in converger.instances():
        table.add_row(instance.region_name, instance.instance_id)
    return table


def cmd_images(args: argparse.Namespace) -> int:
    config = resolve_regions_config(_region_overrides(args))
    converger = Converger(
        build_regions(config),
        build_release_source(config),
        concurrency=config.concurrency,
    )
    converger.resolve_cluster_image()
    console.print(_images_table(converger))
    return 0


def cmd_launch(args: argparse.Namespace) -> int:
    config = resolve_config({
        **_region_overrides(args),
        "cloudinit": args.cloudinit,
        "keypair_name": args.keypair_name,
        "count": args.count,
        "discovery_url": args.discovery_url,
        "instance_type": args.instance_type,
    })

    user_data = build_user_data(config.cloudinit, config.discovery_url or new_discovery_url)
    spec = config.launch_spec(user_data)

    converger = Converger(
        build_regions(config),
        build_release_source(config),
        concurrency=config.concurrency,
    )
    converger.resolve_cluster_image()
    console.print(_images_table(converger))

    try:
        converger.launch_all(spec)
    finally:
        console.print(_instances_table(converger))

    if args.terminate:
        converger.terminate_all()
    return 0


def cmd_terminate(args: argparse.Namespace) -> int:
    session = boto3.Session(profile_name=args.profile) if args.profile else None
    Region(args.region, session=session).terminate_instance(args.instance_ids)
    return 0


COMMANDS = {
    "images": cmd_images,
    "launch": cmd_launch,
    "terminate": cmd_terminate,
}


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(LogConfig(level="DEBUG" if args.verbose else "INFO", file=args.log_file))

    try:
        return COMMANDS[args.command](args)
    except FleetstrapError as e:
        err_console.print(f"[bold red]error:[/bold red] {escape(str(e))}", highlight=False)
        return 1


if __name__ == "__main__":
    sys.exit(main())
