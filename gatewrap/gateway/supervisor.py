"""Gateway supervisor - start, verify, health-check and restart the child gateway."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import httpx
from loguru import logger

from gatewrap.config.loader import is_configured, read_gateway_token
from gatewrap.config.schema import Settings
from gatewrap.errors import (
    ConfigDocumentError,
    GatewayError,
    NotConfiguredError,
    ReadinessTimeoutError,
    SpawnError,
    TokenSyncError,
)
from gatewrap.gateway.cli import GatewayCli
from gatewrap.gateway.token import mask_token
from gatewrap.processes.runner import SupervisedProcess, spawn_supervised, terminate_matching

# Candidate paths probed for readiness; any HTTP response counts.
READY_PATHS = ("/openclaw", "/", "/health")
PROBE_TIMEOUT_S = 2.0

SpawnFn = Callable[..., Awaitable[SupervisedProcess]]
KillMatchingFn = Callable[[str], Awaitable[int]]


@dataclass
class GatewayResult:
    """Outcome of ensure_running/restart."""

    ok: bool
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"ok": self.ok}
        if self.reason:
            data["reason"] = self.reason
        return data


class GatewaySupervisor:
    """
    Owns the single gateway child process.

    States: not_configured, idle, starting, running, restarting. Only one
    start sequence runs at a time; concurrent callers await the same task.
    A restart in progress makes ensure_running wait for it instead of
    starting a parallel gateway. The child handle is only published once it
    has answered a readiness probe, and it is cleared by the exit watcher.
    """

    def __init__(
        self,
        settings: Settings,
        token: str,
        cli: GatewayCli | None = None,
        *,
        spawn: SpawnFn = spawn_supervised,
        kill_matching: KillMatchingFn = terminate_matching,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.settings = settings
        self.token = token
        self.cli = cli or GatewayCli(settings)
        self._spawn = spawn
        self._kill_matching = kill_matching
        self._http_client = http_client
        self._process: SupervisedProcess | None = None
        self._pending: SupervisedProcess | None = None
        self._starting: asyncio.Task[None] | None = None
        self._restarting: asyncio.Task[GatewayResult] | None = None
        self.start_count = 0
        self.last_error: str | None = None
        self.last_exit_code: int | None = None

    # === State ===

    def is_configured(self) -> bool:
        return is_configured(self.settings.config_path)

    @property
    def process(self) -> SupervisedProcess | None:
        return self._process

    @property
    def state(self) -> str:
        if not self.is_configured():
            return "not_configured"
        if self._restarting is not None:
            return "restarting"
        if self._starting is not None:
            return "starting"
        if self._process is not None:
            return "running"
        return "idle"

    def status(self) -> dict[str, Any]:
        proc = self._process
        return {
            "state": self.state,
            "configured": self.is_configured(),
            "target": self.settings.gateway_target,
            "pid": proc.pid if proc else None,
            "started_at": proc.started_at if proc else None,
            "starts": self.start_count,
            "last_error": self.last_error,
            "last_exit_code": self.last_exit_code,
        }

    def mark_down(self, handle: SupervisedProcess, code: int | None = None) -> None:
        """Exit watcher hook: forget the child if it is still the tracked one."""
        self.last_exit_code = code
        if self._process is handle:
            logger.error(f"Gateway exited code={code} (pid {handle.pid})")
            self._process = None
        else:
            logger.info(f"Untracked gateway pid {handle.pid} exited code={code}")

    # === Public operations ===

    async def ensure_running(self) -> GatewayResult:
        """Make sure a ready gateway is running; start one if needed."""
        if not self.is_configured():
            return GatewayResult(ok=False, reason=NotConfiguredError.reason)
        restarting = self._restarting
        if restarting is not None:
            await asyncio.wait({restarting})
        return await self._ensure_started()

    async def restart(self) -> GatewayResult:
        """Terminate the gateway (and stray copies), wait for the port, start again."""
        task = self._restarting
        if task is None:
            task = asyncio.create_task(self._restart_sequence())
            self._restarting = task
            task.add_done_callback(self._clear_restarting)
        return await asyncio.shield(task)

    async def shutdown(self, timeout_s: float = 5.0) -> None:
        """Stop tracked children. Used when the wrapper itself exits."""
        # In-flight sequences would otherwise spawn a child nobody tracks.
        pending = [t for t in (self._restarting, self._starting) if t is not None and not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        for handle in (self._process, self._pending):
            if handle is not None and handle.running:
                logger.info(f"Stopping gateway pid {handle.pid}")
                handle.terminate()
                await handle.wait(timeout=timeout_s)
        self._process = None
        self._pending = None

    async def start_sequence(self) -> None:
        """
        Sync the token, spawn the gateway, and wait for it to answer HTTP.

        Raises:
            NotConfiguredError: no persisted config.
            TokenSyncError: the config does not carry our token after sync.
            SpawnError: the gateway could not be launched or died while starting.
            ReadinessTimeoutError: no HTTP answer before the deadline.
        """
        if not self.is_configured():
            raise NotConfiguredError()

        self.settings.state_path.mkdir(parents=True, exist_ok=True)
        self.settings.workspace_path.mkdir(parents=True, exist_ok=True)

        await self._sync_token()

        args = self.cli.gateway_run_args(self.token)
        logger.info(
            f"Starting gateway on {self.settings.gateway_target} "
            f"(state {self.settings.state_path}, workspace {self.settings.workspace_path})"
        )
        handle = await self._spawn(
            self.cli.executable,
            args,
            env=self.settings.child_env(),
            on_exit=self.mark_down,
        )
        self.start_count += 1
        self._pending = handle
        try:
            await self._wait_ready(handle)
        except (GatewayError, asyncio.CancelledError):
            if handle.running:
                logger.warning(f"Terminating gateway pid {handle.pid} that never became ready")
                handle.terminate()
            raise
        finally:
            if self._pending is handle:
                self._pending = None

        if not handle.running:
            raise SpawnError(f"gateway exited during startup (code {handle.returncode})")
        self._process = handle
        self.last_error = None
        logger.info(f"Gateway running (pid {handle.pid})")

    # === Internals ===

    async def _ensure_started(self) -> GatewayResult:
        if not self.is_configured():
            return GatewayResult(ok=False, reason=NotConfiguredError.reason)
        if self._process is not None:
            return GatewayResult(ok=True)

        task = self._starting
        if task is None:
            task = asyncio.create_task(self.start_sequence())
            self._starting = task
            task.add_done_callback(self._clear_starting)

        try:
            await asyncio.shield(task)
        except GatewayError as e:
            self.last_error = e.detail
            logger.error(f"Gateway start failed: {e.detail}")
            return GatewayResult(ok=False, reason=e.detail)
        except OSError as e:
            self.last_error = str(e)
            logger.error(f"Gateway start failed: {e}")
            return GatewayResult(ok=False, reason=str(e))
        return GatewayResult(ok=True)

    def _clear_starting(self, task: asyncio.Task[None]) -> None:
        if self._starting is task:
            self._starting = None
        if not task.cancelled():
            task.exception()

    def _clear_restarting(self, task: asyncio.Task[GatewayResult]) -> None:
        if self._restarting is task:
            self._restarting = None

    async def _restart_sequence(self) -> GatewayResult:
        logger.info("Restarting gateway...")

        # Let an in-flight start settle so its child is tracked before we kill it.
        starting = self._starting
        if starting is not None:
            await asyncio.wait({starting})

        proc = self._process
        self._process = None
        if proc is not None:
            logger.info(f"Terminating wrapper-managed gateway pid {proc.pid}")
            proc.terminate()

        pattern = self.settings.gateway_process_pattern
        try:
            await self._kill_matching(pattern)
        except Exception as e:
            logger.warning(f"Cleanup of stray '{pattern}' processes failed: {e}")

        await asyncio.sleep(self.settings.restart_grace_s)
        return await self._ensure_started()

    def _redact(self, text: str) -> str:
        return text.replace(self.token, mask_token(self.token)) if self.token else text

    async def _sync_token(self) -> None:
        logger.info(f"Syncing gateway token {mask_token(self.token)} into {self.settings.config_path}")
        result = await self.cli.config_set("gateway.auth.token", self.token)
        if not result.ok:
            # Verification below decides whether this is fatal.
            logger.error(
                f"Token sync exited with code {result.exit_code}: {self._redact(result.output.strip())[:500]}"
            )

        try:
            persisted = read_gateway_token(self.settings.config_path)
        except ConfigDocumentError as e:
            raise TokenSyncError(f"Token verification failed: {e.detail}") from e

        if persisted != self.token:
            detail = (
                f"Token mismatch: wrapper has {mask_token(self.token)} "
                f"but config has {mask_token(persisted)}"
            )
            logger.error(detail)
            raise TokenSyncError(detail)
        logger.info("Token verification passed")

    async def _wait_ready(self, handle: SupervisedProcess) -> None:
        timeout_s = self.settings.ready_timeout_s
        if self._http_client is not None:
            await self._poll_ready(self._http_client, handle, timeout_s)
            return
        async with httpx.AsyncClient(timeout=min(PROBE_TIMEOUT_S, timeout_s)) as client:
            await self._poll_ready(client, handle, timeout_s)

    async def _poll_ready(self, client: httpx.AsyncClient, handle: SupervisedProcess, timeout_s: float) -> None:
        target = self.settings.gateway_target
        deadline = time.monotonic() + timeout_s
        while True:
            for path in READY_PATHS:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise ReadinessTimeoutError(f"Gateway did not become ready in time ({timeout_s:g}s)")
                if not handle.running:
                    raise SpawnError(f"gateway exited during startup (code {handle.returncode})")
                probe_timeout = min(PROBE_TIMEOUT_S, remaining)
                try:
                    resp = await asyncio.wait_for(
                        client.get(f"{target}{path}", timeout=probe_timeout), timeout=probe_timeout
                    )
                except (httpx.HTTPError, asyncio.TimeoutError):
                    continue
                logger.info(f"Gateway ready at {path} (HTTP {resp.status_code})")
                return
            await asyncio.sleep(min(self.settings.ready_poll_s, max(0.0, deadline - time.monotonic())))
