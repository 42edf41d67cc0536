"""Configuration module for gatewrap."""

from gatewrap.config.loader import is_configured, read_gateway_token, repair_configs
from gatewrap.config.schema import Settings

__all__ = ["Settings", "is_configured", "read_gateway_token", "repair_configs"]
