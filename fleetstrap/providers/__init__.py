from fleetstrap.providers.aws import ImageQuery, Region

__all__ = ["ImageQuery", "Region"]
