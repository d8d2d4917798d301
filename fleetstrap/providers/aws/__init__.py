"""AWS EC2 region handles."""

from fleetstrap.providers.aws.images import ImageQuery, select_image
from fleetstrap.providers.aws.region import Region
from fleetstrap.providers.aws.security import cluster_ingress_rules

__all__ = ["ImageQuery", "Region", "cluster_ingress_rules", "select_image"]
