"""Gateway bearer token resolution and persistence."""

from __future__ import annotations

import os
import secrets
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from gatewrap.config.schema import Settings

TOKEN_BYTES = 32


def mask_token(value: str | None, keep: int = 8) -> str:
    """Render a token for logs: short prefix and length, never the full value."""
    if not value:
        return "<none>"
    return f"{value[:keep]}... (len {len(value)})"


@dataclass(frozen=True)
class ResolvedToken:
    """The wrapper's single token and where it came from."""

    value: str
    source: str  # "env" | "file" | "generated"
    persisted: bool


def _read_persisted(path: Path) -> str | None:
    try:
        existing = path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return None
    except OSError as e:
        logger.warning(f"Could not read persisted gateway token at {path}: {e}")
        return None
    return existing or None


def _persist(path: Path, value: str) -> bool:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(value)
        os.chmod(path, 0o600)
    except OSError as e:
        logger.warning(f"Could not persist gateway token to {path}: {e}")
        return False
    return True


def resolve_token(settings: Settings) -> ResolvedToken:
    """
    Resolve the gateway token.

    Priority: externally supplied value, then the persisted token file, then a
    freshly generated value. Filesystem errors only cost persistence; a usable
    token is always returned.
    """
    env_value = (settings.gateway_token or "").strip()
    if env_value:
        logger.info(f"Gateway token from OPENCLAW_GATEWAY_TOKEN: {mask_token(env_value)}")
        return ResolvedToken(value=env_value, source="env", persisted=False)

    path = settings.token_path
    existing = _read_persisted(path)
    if existing:
        logger.info(f"Gateway token from {path}: {mask_token(existing)}")
        return ResolvedToken(value=existing, source="file", persisted=True)

    generated = secrets.token_hex(TOKEN_BYTES)
    persisted = _persist(path, generated)
    if persisted:
        logger.info(f"Generated new gateway token {mask_token(generated)}, persisted to {path}")
    else:
        logger.warning(f"Generated gateway token {mask_token(generated)} will not survive a restart")
    return ResolvedToken(value=generated, source="generated", persisted=persisted)


class TokenStore:
    """Resolves the token once and hands out the same value for the process lifetime."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._resolved: ResolvedToken | None = None

    def resolve(self) -> ResolvedToken:
        if self._resolved is None:
            self._resolved = resolve_token(self.settings)
        return self._resolved

    def get(self) -> str:
        return self.resolve().value
