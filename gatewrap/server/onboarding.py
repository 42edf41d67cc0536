"""Onboarding: map the setup form onto the gateway CLI and apply wrapper settings."""

from __future__ import annotations

from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from gatewrap.config.loader import is_configured, read_gateway_token
from gatewrap.config.schema import Settings
from gatewrap.errors import ConfigDocumentError
from gatewrap.gateway.cli import GatewayCli
from gatewrap.gateway.supervisor import GatewaySupervisor
from gatewrap.gateway.token import mask_token

AUTH_GROUPS: list[dict[str, Any]] = [
    {
        "value": "openai",
        "label": "OpenAI",
        "hint": "Codex OAuth + API key",
        "options": [
            {"value": "codex-cli", "label": "OpenAI Codex OAuth (Codex CLI)"},
            {"value": "openai-codex", "label": "OpenAI Codex (ChatGPT OAuth)"},
            {"value": "openai-api-key", "label": "OpenAI API key"},
        ],
    },
    {
        "value": "anthropic",
        "label": "Anthropic",
        "hint": "Claude CLI + API key",
        "options": [
            {"value": "claude-cli", "label": "Anthropic token (Claude CLI)"},
            {"value": "token", "label": "Anthropic token (paste setup-token)"},
            {"value": "apiKey", "label": "Anthropic API key"},
        ],
    },
    {
        "value": "google",
        "label": "Google",
        "hint": "Gemini API key + OAuth",
        "options": [
            {"value": "gemini-api-key", "label": "Google Gemini API key"},
            {"value": "google-antigravity", "label": "Google Antigravity OAuth"},
            {"value": "google-gemini-cli", "label": "Google Gemini CLI OAuth"},
        ],
    },
    {
        "value": "openrouter",
        "label": "OpenRouter",
        "hint": "API key",
        "options": [{"value": "openrouter-api-key", "label": "OpenRouter API key"}],
    },
    {
        "value": "ai-gateway",
        "label": "Vercel AI Gateway",
        "hint": "API key",
        "options": [{"value": "ai-gateway-api-key", "label": "Vercel AI Gateway API key"}],
    },
    {
        "value": "moonshot",
        "label": "Moonshot AI",
        "hint": "Kimi K2 + Kimi Code",
        "options": [
            {"value": "moonshot-api-key", "label": "Moonshot AI API key"},
            {"value": "kimi-code-api-key", "label": "Kimi Code API key"},
        ],
    },
    {
        "value": "zai",
        "label": "Z.AI (GLM 4.7)",
        "hint": "API key",
        "options": [{"value": "zai-api-key", "label": "Z.AI (GLM 4.7) API key"}],
    },
    {
        "value": "minimax",
        "label": "MiniMax",
        "hint": "M2.1 (recommended)",
        "options": [
            {"value": "minimax-api", "label": "MiniMax M2.1"},
            {"value": "minimax-api-lightning", "label": "MiniMax M2.1 Lightning"},
        ],
    },
    {
        "value": "qwen",
        "label": "Qwen",
        "hint": "OAuth",
        "options": [{"value": "qwen-portal", "label": "Qwen OAuth"}],
    },
    {
        "value": "copilot",
        "label": "Copilot",
        "hint": "GitHub + local proxy",
        "options": [
            {"value": "github-copilot", "label": "GitHub Copilot (GitHub device login)"},
            {"value": "copilot-proxy", "label": "Copilot Proxy (local)"},
        ],
    },
    {
        "value": "synthetic",
        "label": "Synthetic",
        "hint": "Anthropic-compatible (multi-model)",
        "options": [{"value": "synthetic-api-key", "label": "Synthetic API key"}],
    },
    {
        "value": "opencode-zen",
        "label": "OpenCode Zen",
        "hint": "API key",
        "options": [{"value": "opencode-zen", "label": "OpenCode Zen (multi-model proxy)"}],
    },
]

# Auth choice -> CLI flag carrying the pasted secret.
SECRET_FLAGS = {
    "openai-api-key": "--openai-api-key",
    "apiKey": "--anthropic-api-key",
    "openrouter-api-key": "--openrouter-api-key",
    "ai-gateway-api-key": "--ai-gateway-api-key",
    "moonshot-api-key": "--moonshot-api-key",
    "kimi-code-api-key": "--kimi-code-api-key",
    "gemini-api-key": "--gemini-api-key",
    "zai-api-key": "--zai-api-key",
    "minimax-api": "--minimax-api-key",
    "minimax-api-lightning": "--minimax-api-key",
    "synthetic-api-key": "--synthetic-api-key",
    "opencode-zen": "--opencode-zen-api-key",
}


class OnboardPayload(BaseModel):
    """Setup form submitted by the wizard."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    flow: str = "quickstart"
    auth_choice: str = Field(default="", alias="authChoice")
    auth_secret: str = Field(default="", alias="authSecret")
    telegram_token: str = Field(default="", alias="telegramToken")
    discord_token: str = Field(default="", alias="discordToken")
    slack_bot_token: str = Field(default="", alias="slackBotToken")
    slack_app_token: str = Field(default="", alias="slackAppToken")


def build_onboard_args(payload: OnboardPayload, settings: Settings, token: str) -> list[str]:
    """Arguments for ``onboard``; the gateway stays on loopback with our token."""
    args = [
        "--non-interactive",
        "--accept-risk",
        "--json",
        "--no-install-daemon",
        "--skip-health",
        "--workspace",
        str(settings.workspace_path),
        "--gateway-bind",
        "loopback",
        "--gateway-port",
        str(settings.gateway_port),
        "--gateway-auth",
        "token",
        "--gateway-token",
        token,
        "--flow",
        payload.flow.strip() or "quickstart",
    ]

    choice = payload.auth_choice.strip()
    if choice:
        args += ["--auth-choice", choice]
        secret = payload.auth_secret.strip()
        flag = SECRET_FLAGS.get(choice)
        if flag and secret:
            args += [flag, secret]
        if choice == "token" and secret:
            # Anthropic setup-token flow
            args += ["--token-provider", "anthropic", "--token", secret]
    return args


def mask_secrets(text: str, values: list[str]) -> str:
    """Mask every occurrence of the given secrets in text."""
    rendered = text
    for value in values:
        if value:
            rendered = rendered.replace(value, mask_token(value))
    return rendered


def channel_configs(payload: OnboardPayload) -> dict[str, dict[str, Any]]:
    """Channel blocks to write directly with ``config set --json``."""
    configs: dict[str, dict[str, Any]] = {}
    telegram = payload.telegram_token.strip()
    if telegram:
        configs["telegram"] = {
            "enabled": True,
            "dmPolicy": "pairing",
            "botToken": telegram,
            "groupPolicy": "allowlist",
            "streamMode": "partial",
        }
    discord = payload.discord_token.strip()
    if discord:
        configs["discord"] = {
            "enabled": True,
            "token": discord,
            "groupPolicy": "allowlist",
            "dm": {"policy": "pairing"},
        }
    slack_bot = payload.slack_bot_token.strip()
    slack_app = payload.slack_app_token.strip()
    if slack_bot or slack_app:
        slack: dict[str, Any] = {"enabled": True}
        if slack_bot:
            slack["botToken"] = slack_bot
        if slack_app:
            slack["appToken"] = slack_app
        configs["slack"] = slack
    return configs


async def apply_gateway_settings(cli: GatewayCli, settings: Settings, token: str) -> list[str]:
    """Re-assert the settings the wrapper depends on. Returns report lines."""
    notes: list[str] = []
    await cli.config_set("gateway.mode", "local")
    await cli.config_set("gateway.auth.mode", "token")
    result = await cli.config_set("gateway.auth.token", token)
    if not result.ok:
        logger.error(f"config set gateway.auth.token failed with code {result.exit_code}")
        notes.append(f"[WARNING] Failed to set gateway token in config (exit {result.exit_code})")

    try:
        persisted = read_gateway_token(settings.config_path)
    except ConfigDocumentError as e:
        notes.append(f"[ERROR] Could not verify token: {e.detail}")
    else:
        if persisted == token:
            notes.append("[onboard] Gateway token synced successfully")
        else:
            notes.append(
                "[ERROR] Token verification failed! "
                f"Wrapper: {mask_token(token)} Config: {mask_token(persisted)}"
            )

    await cli.config_set("gateway.bind", "loopback")
    await cli.config_set("gateway.port", settings.gateway_port)
    # Control UI access without device pairing
    await cli.config_set("gateway.controlUi.allowInsecureAuth", "true")
    return notes


async def run_onboarding(
    payload: OnboardPayload,
    *,
    settings: Settings,
    cli: GatewayCli,
    supervisor: GatewaySupervisor,
    token: str,
) -> tuple[bool, str]:
    """
    Run onboarding end to end.

    Returns:
        (ok, combined output for the wizard).
    """
    if is_configured(settings.config_path):
        await supervisor.ensure_running()
        return True, "Already configured.\nUse Reset setup if you want to rerun onboarding.\n"

    settings.state_path.mkdir(parents=True, exist_ok=True)
    settings.workspace_path.mkdir(parents=True, exist_ok=True)

    args = build_onboard_args(payload, settings, token)
    hidden = [token, payload.auth_secret.strip()]
    logger.info(f"Running onboard: {mask_secrets(' '.join(args), hidden)}")
    onboard = await cli.onboard(args)
    output = mask_secrets(onboard.output, hidden)
    ok = onboard.ok and is_configured(settings.config_path)
    if not ok:
        logger.error(f"Onboarding failed with exit code {onboard.exit_code}")
        return False, output

    extra: list[str] = await apply_gateway_settings(cli, settings, token)

    channels = channel_configs(payload)
    if channels:
        help_text = (await cli.channels_add_help()).output
        for name, cfg in channels.items():
            if name not in help_text:
                extra.append(f"[{name}] skipped (this build does not list {name} in `channels add --help`)")
                continue
            written = await cli.config_set(f"channels.{name}", cfg, as_json=True)
            check = await cli.config_get(f"channels.{name}")
            extra.append(f"[{name} config] exit={written.exit_code}")
            extra.append(f"[{name} verify] exit={check.exit_code}")

    result = await supervisor.restart()
    if result.ok:
        extra.append("[gateway] restarted")
    else:
        extra.append(f"[gateway] restart failed: {result.reason}")

    return True, output + "\n" + "\n".join(extra) + "\n"
