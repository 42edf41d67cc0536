"""Run external commands: one-shot with captured output, or as a supervised child."""

from __future__ import annotations

import asyncio
import os
import signal
import time
from dataclasses import dataclass
from typing import Any, Callable

from loguru import logger

from gatewrap.errors import SpawnError

# Exit code reported when the executable could not be launched at all.
SPAWN_FAILED_EXIT_CODE = 127


@dataclass
class CommandResult:
    """Outcome of a command run to completion."""

    exit_code: int
    output: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def _merged_env(env: dict[str, str] | None) -> dict[str, str] | None:
    if not env:
        return None
    resolved = dict(os.environ)
    for key, value in env.items():
        resolved[str(key)] = str(value)
    return resolved


async def run_to_completion(
    command: str,
    args: list[str],
    env: dict[str, str] | None = None,
) -> CommandResult:
    """
    Run a command and collect stdout and stderr in arrival order.

    Never raises for launch failures: those resolve with
    SPAWN_FAILED_EXIT_CODE and the error text appended to the output.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            command,
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            env=_merged_env(env),
        )
    except OSError as e:
        return CommandResult(exit_code=SPAWN_FAILED_EXIT_CODE, output=f"\n[spawn error] {e}\n")

    if proc.stdout is None:
        code = await proc.wait()
        return CommandResult(exit_code=code if code is not None else 0, output="")

    chunks: list[str] = []
    while True:
        data = await proc.stdout.read(4096)
        if not data:
            break
        chunks.append(data.decode("utf-8", errors="replace"))
    code = await proc.wait()
    return CommandResult(exit_code=code if code is not None else 0, output="".join(chunks))


ExitCallback = Callable[["SupervisedProcess", int], Any]


class SupervisedProcess:
    """Handle to a long-lived child whose output goes straight to our stdio."""

    def __init__(self, proc: asyncio.subprocess.Process, argv: list[str]):
        self._proc = proc
        self.argv = argv
        self.pid = int(proc.pid or 0)
        self.started_at = time.time()
        self._watcher: asyncio.Task[None] | None = None

    @property
    def returncode(self) -> int | None:
        return self._proc.returncode

    @property
    def running(self) -> bool:
        return self._proc.returncode is None

    def terminate(self, sig: int = signal.SIGTERM) -> None:
        """Send a termination signal; failures are logged, not raised."""
        if not self.running:
            return
        try:
            self._proc.send_signal(sig)
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.warning(f"Failed to signal gateway pid {self.pid}: {e}")

    async def wait(self, timeout: float | None = None) -> int | None:
        try:
            return await asyncio.wait_for(self._proc.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    def _watch(self, on_exit: ExitCallback | None) -> None:
        async def _run() -> None:
            code = await self._proc.wait()
            if on_exit is not None:
                try:
                    on_exit(self, code)
                except Exception as e:
                    logger.error(f"Exit callback for pid {self.pid} failed: {e}")

        self._watcher = asyncio.create_task(_run())


async def spawn_supervised(
    command: str,
    args: list[str],
    env: dict[str, str] | None = None,
    on_exit: ExitCallback | None = None,
) -> SupervisedProcess:
    """
    Start a long-running child with inherited stdio.

    ``on_exit`` fires once, with the handle and return code, when the child
    terminates for any reason. Launch failures raise SpawnError.
    """
    try:
        proc = await asyncio.create_subprocess_exec(command, *args, env=_merged_env(env))
    except OSError as e:
        raise SpawnError(f"could not launch {command}: {e}") from e
    handle = SupervisedProcess(proc, [command, *args])
    handle._watch(on_exit)
    return handle


async def terminate_matching(pattern: str) -> int:
    """Best-effort ``pkill -f`` for processes started outside our tracking."""
    result = await run_to_completion("pkill", ["-f", pattern])
    if result.exit_code == SPAWN_FAILED_EXIT_CODE:
        logger.warning(f"pkill unavailable: {result.output.strip()}")
    else:
        # 1 means nothing matched
        logger.info(f"pkill -f {pattern}: exit code {result.exit_code}")
    return result.exit_code
