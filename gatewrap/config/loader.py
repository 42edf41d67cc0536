"""Read-only view and startup repair of the gateway's persisted config."""

import json
from pathlib import Path
from typing import Any

from loguru import logger

from gatewrap.config.schema import Settings
from gatewrap.errors import ConfigDocumentError

# Keys the gateway schema accepts on agents.list entries.
_AGENT_LIST_KEYS = {
    "id",
    "default",
    "name",
    "workspace",
    "agentDir",
    "model",
    "identity",
    "groupChat",
    "sandbox",
    "tools",
    "subagents",
    "heartbeat",
    "humanDelay",
    "allowAgents",
}

_EXTERNAL_SIGNAL_HOST = "signal-cli-native.railway.internal"


def is_configured(config_path: Path) -> bool:
    """Whether onboarding has produced a config file. Checked on every call."""
    try:
        return config_path.exists()
    except OSError:
        return False


def load_document(config_path: Path) -> dict[str, Any]:
    """Parse the config document, insisting on a JSON object at the top."""
    try:
        raw = config_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigDocumentError(f"cannot read {config_path}: {e}") from e
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigDocumentError(f"invalid JSON in {config_path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigDocumentError(f"{config_path} does not hold a JSON object")
    return data


def read_gateway_token(config_path: Path) -> str | None:
    """
    Return ``gateway.auth.token`` from the persisted config.

    Only this path is interpreted; the rest of the document is owned by the
    gateway and left alone. A missing field yields None, a broken document
    raises ConfigDocumentError.
    """
    data = load_document(config_path)
    gateway = data.get("gateway")
    if not isinstance(gateway, dict):
        return None
    auth = gateway.get("auth")
    if not isinstance(auth, dict):
        return None
    token = auth.get("token")
    return token if isinstance(token, str) else None


def minimal_config(token: str, port: int, workspace: str) -> dict[str, Any]:
    """Smallest document the gateway accepts for loopback token auth."""
    return {
        "gateway": {
            "port": port,
            "mode": "local",
            "bind": "loopback",
            "auth": {"mode": "token", "token": token},
            "controlUi": {"allowInsecureAuth": True},
        },
        "agents": {
            "defaults": {
                "workspace": workspace,
                "compaction": {"mode": "safeguard"},
                "maxConcurrent": 4,
                "subagents": {"maxConcurrent": 8},
            }
        },
    }


def _fix_legacy_document(data: dict[str, Any]) -> bool:
    """Strip keys that fail the gateway schema. Returns True when changed."""
    changed = False

    auth = data.get("auth")
    if isinstance(auth, dict) and auth.get("profiles"):
        logger.info("Config repair: removing auth.profiles")
        auth.pop("profiles", None)
        if not auth:
            data.pop("auth", None)
        changed = True

    agents = data.get("agents")
    entries = agents.get("list") if isinstance(agents, dict) else None
    if isinstance(entries, list):
        for idx, entry in enumerate(entries):
            if isinstance(entry, dict) and "provider" in entry:
                logger.info(f"Config repair: removing provider from agents.list[{idx}]")
                entry.pop("provider", None)
                changed = True
        invalid = any(
            isinstance(entry, dict) and any(key not in _AGENT_LIST_KEYS for key in entry)
            for entry in entries
        )
        if invalid:
            logger.info("Config repair: agents.list still has unknown keys, dropping it")
            agents.pop("list", None)
            changed = True

    channels = data.get("channels")
    signal = channels.get("signal") if isinstance(channels, dict) else None
    if isinstance(signal, dict):
        http_url = str(signal.get("httpUrl") or "")
        if _EXTERNAL_SIGNAL_HOST in http_url:
            logger.info("Config repair: migrating Signal channel to embedded signal-cli")
            signal.pop("httpUrl", None)
            signal["autoStart"] = True
            changed = True

    return changed


def repair_configs(settings: Settings, token: str) -> bool:
    """
    Repair config documents left broken by earlier gateway versions.

    The standard config is deleted when it is not valid JSON so onboarding
    can regenerate it. The legacy document gets schema fixes, or is replaced
    by a minimal document when it cannot be parsed at all.

    Returns:
        True when any file was rewritten or removed.
    """
    fixed = False

    legacy = settings.legacy_config_path
    if legacy.exists():
        try:
            data = load_document(legacy)
        except ConfigDocumentError as e:
            logger.error(f"Legacy config is corrupted: {e}")
            try:
                legacy.parent.mkdir(parents=True, exist_ok=True)
                doc = minimal_config(token, settings.gateway_port, str(settings.workspace_path))
                legacy.write_text(json.dumps(doc, indent=2), encoding="utf-8")
                logger.info(f"Replaced corrupted legacy config at {legacy}")
                fixed = True
            except OSError as write_err:
                logger.error(f"Failed to rewrite legacy config: {write_err}")
        else:
            if _fix_legacy_document(data):
                try:
                    legacy.write_text(json.dumps(data, indent=2), encoding="utf-8")
                    logger.info(f"Wrote repaired legacy config to {legacy}")
                    fixed = True
                except OSError as write_err:
                    logger.error(f"Failed to write repaired legacy config: {write_err}")

    standard = settings.config_path
    if standard.exists():
        try:
            json.loads(standard.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Config {standard} is corrupted ({e}), deleting so setup can regenerate it")
            try:
                standard.unlink(missing_ok=True)
                fixed = True
            except OSError as rm_err:
                logger.error(f"Failed to delete corrupted config: {rm_err}")

    logger.debug(f"Config check complete (fixed: {fixed})")
    return fixed
