"""Compile one request: validate, prepare a workspace, run the tool chain,
classify the result.

The pipeline never writes HTTP responses itself. It returns exactly one
``CompileOutcome`` or raises an ``AsyEvalError`` subclass, and the route
turns either into a single response.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterable, Union

from . import toolchain
from .errors import AsyEvalError, InputTooLarge
from .runner import ProcessRunner
from .session import RequestContext
from .toolchain import ToolStep
from .workspace import Workspace, WorkspaceManager


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Success:
    workspace: Workspace
    output_path: Path
    media_type: str


@dataclass(frozen=True)
class CompilerFailure:
    output: bytes


@dataclass(frozen=True)
class Timeout:
    step: ToolStep


@dataclass(frozen=True)
class MissingOutput:
    pass


CompileOutcome = Union[Success, CompilerFailure, Timeout, MissingOutput]


class CompilationPipeline:
    def __init__(self, workspaces: WorkspaceManager, runner: ProcessRunner, step_timeout: float):
        self.workspaces = workspaces
        self.runner = runner
        self.step_timeout = step_timeout

    async def compile(
        self,
        ctx: RequestContext,
        input_format: str | None,
        output_format: str | None,
        body: AsyncIterable[bytes],
        size_hint: int | None = None,
    ) -> CompileOutcome:
        """Run the whole pipeline for one request.

        ``size_hint`` is the declared body length, if any; an oversized
        declaration is rejected before a workspace is created.

        On ``Success`` the caller owns the workspace and must release it
        once the artifact has been sent. For every other outcome, and on
        error, the workspace is released here.
        """
        steps = toolchain.select(input_format, output_format)
        if size_hint is not None and size_hint > self.workspaces.max_input_bytes:
            raise InputTooLarge(f"declared body of {size_hint} bytes")

        workspace = self.workspaces.prepare(ctx.identity)
        logger.debug("user dir", extra={**ctx.log_extra(), "path": str(workspace.root)})

        try:
            outcome = await self._compile_in(ctx, workspace, input_format, output_format, steps, body)
        except AsyEvalError:
            self.workspaces.release(workspace)
            raise
        if not isinstance(outcome, Success):
            self.workspaces.release(workspace)
        return outcome

    async def _compile_in(
        self,
        ctx: RequestContext,
        workspace: Workspace,
        input_format: str,
        output_format: str,
        steps: tuple[ToolStep, ...],
        body: AsyncIterable[bytes],
    ) -> CompileOutcome:
        input_name = workspace.input_name(input_format)
        size = await self.workspaces.write_input(workspace, input_name, body)
        logger.debug("wrote input file", extra={**ctx.log_extra(), "bytes": size})

        for index, step in enumerate(steps, start=1):
            logger.debug(
                "exec",
                extra={**ctx.log_extra(), "step": f"{index}/{len(steps)}", "argv": " ".join(step.argv)},
            )
            result = await self.runner.run(step.argv, workspace.root, self.step_timeout)
            if result.timed_out:
                logger.warning(
                    "exec timeout: process killed",
                    extra={**ctx.log_extra(), "tool": step.executable, "timeout": self.step_timeout},
                )
                return Timeout(step=step)
            if not result.ok:
                logger.warning(
                    "exec failed",
                    extra={**ctx.log_extra(), "tool": step.executable, "exit_code": result.returncode},
                )
                return CompilerFailure(output=result.output)

        output_path = workspace.path(workspace.input_name(output_format))
        if not output_path.is_file():
            logger.debug("cannot stat output file to serve it", extra={**ctx.log_extra(), "path": str(output_path)})
            return MissingOutput()

        return Success(
            workspace=workspace,
            output_path=output_path,
            media_type=toolchain.MEDIA_TYPES[output_format],
        )
