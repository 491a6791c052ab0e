"""Cluster drivers, one per supported orchestrator generation."""

from __future__ import annotations

from ..config import Config, DriverType
from ..interfaces import ClusterDriver
from .rancher import RancherDriver
from .rancher2 import Rancher2Driver, serving_environment

__all__ = ["RancherDriver", "Rancher2Driver", "create_driver", "serving_environment"]


def create_driver(config: Config) -> ClusterDriver:
    """Build the driver selected by ``config.driver``."""
    match config.driver:
        case DriverType.RANCHER:
            return RancherDriver(config)
        case DriverType.RANCHER2:
            return Rancher2Driver(config)
    raise ValueError(f"Unsupported driver: {config.driver}")
