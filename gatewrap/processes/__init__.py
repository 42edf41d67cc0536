"""External process helpers."""

from gatewrap.processes.runner import (
    SPAWN_FAILED_EXIT_CODE,
    CommandResult,
    SupervisedProcess,
    run_to_completion,
    spawn_supervised,
    terminate_matching,
)

__all__ = [
    "SPAWN_FAILED_EXIT_CODE",
    "CommandResult",
    "SupervisedProcess",
    "run_to_completion",
    "spawn_supervised",
    "terminate_matching",
]
