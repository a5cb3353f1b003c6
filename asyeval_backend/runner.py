from __future__ import annotations

import asyncio
import os
import signal
from dataclasses import dataclass
from pathlib import Path
from subprocess import PIPE, STDOUT
from typing import Protocol, Sequence

from .errors import ToolUnavailable


DRAIN_GRACE_SECONDS = 2.0


@dataclass(frozen=True)
class RunResult:
    returncode: int | None
    # Combined stdout + stderr, exactly as the tool wrote it.
    output: bytes
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return not self.timed_out and self.returncode == 0


class ProcessRunner(Protocol):
    async def run(self, argv: Sequence[str], cwd: Path, timeout: float) -> RunResult:
        ...


def _kill_group(proc: asyncio.subprocess.Process) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


class SubprocessRunner:
    """Run a tool in its own process group with a wall-clock deadline.

    On expiry the whole group is killed, so helpers spawned by the tool
    (latexmk -> pdflatex, asy -> gs) go down with it.
    """

    async def run(self, argv: Sequence[str], cwd: Path, timeout: float) -> RunResult:
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(cwd),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=PIPE,
                stderr=STDOUT,
                start_new_session=True,
            )
        except FileNotFoundError as exc:
            raise ToolUnavailable(f"{argv[0]} is not installed") from exc

        try:
            output, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            _kill_group(proc)
            # Drain the pipe so the exit is observed even after a flood of output.
            # A descendant that left the group can keep the pipe open; give up then.
            try:
                output, _ = await asyncio.wait_for(proc.communicate(), timeout=DRAIN_GRACE_SECONDS)
            except asyncio.TimeoutError:
                output = b""
            return RunResult(returncode=proc.returncode, output=output or b"", timed_out=True)
        except asyncio.CancelledError:
            _kill_group(proc)
            raise

        return RunResult(returncode=proc.returncode, output=output or b"")
