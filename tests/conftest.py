from pathlib import Path

import pytest

from gatewrap.config.schema import Settings

_ENV_VARS = (
    "PORT",
    "OPENCLAW_STATE_DIR",
    "OPENCLAW_WORKSPACE_DIR",
    "OPENCLAW_CONFIG_PATH",
    "OPENCLAW_LEGACY_CONFIG_DIR",
    "SETUP_PASSWORD",
    "OPENCLAW_GATEWAY_TOKEN",
    "INTERNAL_GATEWAY_HOST",
    "INTERNAL_GATEWAY_PORT",
    "OPENCLAW_ENTRY",
    "OPENCLAW_NODE",
    "GATEWAY_PROCESS_PATTERN",
    "GATEWAY_READY_TIMEOUT_S",
    "GATEWAY_READY_POLL_S",
    "GATEWAY_RESTART_GRACE_S",
    "OPENCLAW_TEMPLATE_DEBUG",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        state_dir=str(tmp_path / "state"),
        workspace_dir=str(tmp_path / "workspace"),
        legacy_config_dir=str(tmp_path / "legacy"),
        setup_password="s3cret",
        ready_timeout_s=0.5,
        ready_poll_s=0.02,
        restart_grace_s=0.01,
    )
