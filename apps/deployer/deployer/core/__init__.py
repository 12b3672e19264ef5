"""Ambient configuration and logging for the deployer."""

from deployer.core.config import DeploymentConfig, Settings, get_settings
from deployer.core.logging import configure_structlog

__all__ = ["DeploymentConfig", "Settings", "get_settings", "configure_structlog"]
