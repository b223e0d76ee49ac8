from __future__ import annotations

import argparse
import dataclasses
import json
import signal
import sys
import time
from pathlib import Path

from cmdexec.config.load_config import ConfigError, ExecutionConfig, load_app_config
from cmdexec.runtime.cancellation import KillOutcome
from cmdexec.runtime.service import ExecutionService, UnknownCommandError
from cmdexec.storage.registry import ExecutionNotFoundError, ExecutionSnapshot, ExecutionState
from cmdexec.utils.logging import configure_logging


EXIT_REJECTED = 2
EXIT_TIMED_OUT = 124
EXIT_KILLED = 137


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run one whitelisted command through the execution registry (in-process).",
    )
    parser.add_argument(
        "--config",
        default="",
        help="Config path (default: env CMDEXEC_CONFIG_PATH or config/default.toml).",
    )
    parser.add_argument("--timeout", type=int, default=0, help="Override execution.timeout_s (seconds).")
    parser.add_argument("--json", action="store_true", help="Print the final execution snapshot as JSON.")
    parser.add_argument("command", help="Command name (must be in programs.allowed).")
    parser.add_argument("args", nargs=argparse.REMAINDER, help="Arguments passed to the command.")
    return parser.parse_args(argv)


def _exit_code_for(snap: ExecutionSnapshot) -> int:
    if snap.state == ExecutionState.TIMED_OUT:
        return EXIT_TIMED_OUT
    if snap.state == ExecutionState.KILLED:
        return EXIT_KILLED
    code = snap.exit_code if snap.exit_code is not None else 1
    return code if 0 <= code <= 255 else 1


def _interrupt(
    service: ExecutionService,
    execution_id: str,
    *,
    retry_s: float = 1.0,
    poll_interval_s: float = 0.02,
) -> KillOutcome:
    """Kill on Ctrl-C, retrying while the child is not signalable yet.

    A kill before the process handle is installed, or after the child exited
    but before its result is recorded, is retried for up to `retry_s`. If it
    still has not landed the interrupt is reported on stderr.
    """
    deadline = time.monotonic() + retry_s
    while True:
        outcome = service.kill(execution_id)
        if outcome in (KillOutcome.KILLED, KillOutcome.NOT_FOUND):
            return outcome
        try:
            if service.status(execution_id).terminated:
                return outcome
        except ExecutionNotFoundError:
            return KillOutcome.NOT_FOUND
        if time.monotonic() >= deadline:
            print(f"interrupt ignored: {execution_id} could not be killed ({outcome.value})", file=sys.stderr)
            return outcome
        time.sleep(poll_interval_s)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)

    try:
        cfg = load_app_config(Path(args.config).expanduser().resolve() if args.config else None)
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 1
    if args.timeout < 0:
        raise SystemExit(f"--timeout must be > 0, got {args.timeout}")
    if args.timeout > 0:
        cfg = dataclasses.replace(cfg, execution=ExecutionConfig(timeout_s=int(args.timeout)))

    # Logs go to stderr so stdout carries only the command output.
    configure_logging(cfg.logging.level, cfg.logging.format, stream=sys.stderr)

    service = ExecutionService(cfg)
    cmd_args = list(args.args)
    if cmd_args[:1] == ["--"]:
        cmd_args = cmd_args[1:]
    try:
        execution_id = service.submit(args.command, cmd_args)
    except UnknownCommandError as e:
        print(str(e), file=sys.stderr)
        return EXIT_REJECTED

    def _on_sigint(_signum, _frame):  # noqa: ANN001, ANN202
        _interrupt(service, execution_id)

    prev = signal.signal(signal.SIGINT, _on_sigint)
    try:
        snap = service.wait(execution_id)
    finally:
        signal.signal(signal.SIGINT, prev)
        service.stop(kill_running=True)

    if args.json:
        print(json.dumps(snap.to_dict(), ensure_ascii=False, indent=2))
    else:
        sys.stdout.write(snap.output)
        if snap.state != ExecutionState.COMPLETED:
            print(f"[{snap.state.value}] {snap.error or ''}".rstrip(), file=sys.stderr)
    return _exit_code_for(snap)


if __name__ == "__main__":
    raise SystemExit(main())
