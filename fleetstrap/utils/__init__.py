"""Utility modules for fleetstrap."""

from fleetstrap.utils.conc import for_each_concurrent, map_concurrent

__all__ = ["for_each_concurrent", "map_concurrent"]
