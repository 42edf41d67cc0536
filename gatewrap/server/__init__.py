"""HTTP front door for the gateway: setup wizard and reverse proxy."""

from gatewrap.server.app import create_app
from gatewrap.server.proxy import GatewayProxy

__all__ = ["create_app", "GatewayProxy"]
