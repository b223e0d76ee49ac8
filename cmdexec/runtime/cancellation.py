from __future__ import annotations

import enum

from cmdexec.storage.registry import (
    ExecutionNotFoundError,
    ExecutionRegistry,
    ExecutionState,
    LiveExecution,
)
from cmdexec.utils.logging import get_logger


logger = get_logger(__name__)


class KillOutcome(str, enum.Enum):
    KILLED = "killed"
    ALREADY_TERMINAL = "already_terminal"
    NOT_FOUND = "not_found"
    FAILED = "failed"


def kill_execution(registry: ExecutionRegistry, execution_id: str) -> KillOutcome:
    """Force a running execution into the killed state.

    The state check, the signal and the state write happen in one `with_live`
    call, so a concurrent natural exit, timeout or second kill sees either the
    state before or after, never in between. A running record whose process
    handle is not installed yet reports ALREADY_TERMINAL: there is nothing to
    signal and the caller is not asked to retry.

    If the child already exited but the runner has not committed its result
    yet, nothing is signalled and FAILED is returned; the record stays running
    until the runner records the real exit code and output.
    """

    failure: list[str] = []

    def _kill(record: LiveExecution) -> KillOutcome:
        if record.terminal or record.handle is None:
            return KillOutcome.ALREADY_TERMINAL
        try:
            record.handle.kill()
        except OSError as e:
            failure.append(str(e))
            return KillOutcome.FAILED
        record.finish(ExecutionState.KILLED, error="killed")
        return KillOutcome.KILLED

    try:
        outcome = registry.with_live(execution_id, _kill)
    except ExecutionNotFoundError:
        return KillOutcome.NOT_FOUND

    if outcome == KillOutcome.KILLED:
        logger.info("execution_killed", execution_id=execution_id)
    elif outcome == KillOutcome.FAILED:
        logger.warning("execution_kill_failed", execution_id=execution_id, error=failure[0] if failure else "")
    return outcome
