"""Gateway lifecycle: token, CLI client and process supervisor."""

from gatewrap.gateway.cli import GatewayCli
from gatewrap.gateway.supervisor import GatewayResult, GatewaySupervisor
from gatewrap.gateway.token import ResolvedToken, TokenStore, mask_token, resolve_token

__all__ = [
    "GatewayCli",
    "GatewayResult",
    "GatewaySupervisor",
    "ResolvedToken",
    "TokenStore",
    "mask_token",
    "resolve_token",
]
