"""Thin client for the gateway's own command-line interface."""

from __future__ import annotations

import json
from typing import Any

from gatewrap.config.schema import Settings
from gatewrap.processes.runner import CommandResult, run_to_completion


class GatewayCli:
    """Invoke the OpenClaw CLI entry with the wrapper's state directories."""

    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def executable(self) -> str:
        return self.settings.openclaw_node

    def argv(self, args: list[str]) -> list[str]:
        """Arguments after the executable: the CLI entry script, then ``args``."""
        return [self.settings.openclaw_entry, *args]

    async def run(self, args: list[str]) -> CommandResult:
        return await run_to_completion(self.executable, self.argv(args), env=self.settings.child_env())

    async def config_set(self, key: str, value: Any, *, as_json: bool = False) -> CommandResult:
        if as_json:
            return await self.run(["config", "set", "--json", key, json.dumps(value)])
        return await self.run(["config", "set", key, str(value)])

    async def config_get(self, key: str) -> CommandResult:
        return await self.run(["config", "get", key])

    async def version(self) -> CommandResult:
        return await self.run(["--version"])

    async def channels_add_help(self) -> CommandResult:
        return await self.run(["channels", "add", "--help"])

    async def onboard(self, args: list[str]) -> CommandResult:
        return await self.run(["onboard", *args])

    async def pairing_approve(self, channel: str, code: str) -> CommandResult:
        return await self.run(["pairing", "approve", channel, code])

    def gateway_run_args(self, token: str) -> list[str]:
        """Arguments for the long-lived gateway, bound to loopback with token auth."""
        return self.argv(
            [
                "gateway",
                "run",
                "--bind",
                "loopback",
                "--port",
                str(self.settings.gateway_port),
                "--auth",
                "token",
                "--token",
                token,
            ]
        )
