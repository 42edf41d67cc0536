"""Gateway lifecycle errors."""

from __future__ import annotations


class GatewayError(RuntimeError):
    """Base class for failures surfaced by the gateway supervisor."""

    reason = "gateway error"

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.reason)
        self.detail = detail or self.reason


class NotConfiguredError(GatewayError):
    """No persisted gateway configuration exists yet."""

    reason = "not configured"


class TokenSyncError(GatewayError):
    """The persisted config does not carry the wrapper token."""

    reason = "token mismatch"


class SpawnError(GatewayError):
    """The gateway executable could not be launched or died while starting."""

    reason = "spawn failed"


class ReadinessTimeoutError(GatewayError):
    """The gateway did not answer HTTP within the readiness window."""

    reason = "Gateway did not become ready in time"


class ConfigDocumentError(GatewayError):
    """The persisted config document is missing, unreadable or malformed."""

    reason = "config unreadable"
