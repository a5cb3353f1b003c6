from __future__ import annotations

import asyncio
import logging
import random
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse, Response
from starlette.background import BackgroundTasks

from asyeval_backend.config import COMPILER_ERROR_MEDIA_TYPE, Settings
from asyeval_backend.errors import AsyEvalError
from asyeval_backend.log import configure_logging
from asyeval_backend.pipeline import (
    CompilationPipeline,
    CompilerFailure,
    MissingOutput,
    Success,
    Timeout,
)
from asyeval_backend.runner import ProcessRunner, SubprocessRunner
from asyeval_backend.security import TokenCodec
from asyeval_backend.session import RequestContext, SessionAuthenticator
from asyeval_backend.usage import UsageCounter, record_compilation
from asyeval_backend.workspace import WorkspaceManager, input_size_hint


logger = logging.getLogger("asyeval_backend.server")


@dataclass
class Services:
    settings: Settings
    sessions: SessionAuthenticator
    workspaces: WorkspaceManager
    pipeline: CompilationPipeline
    usage: UsageCounter


def build_services(settings: Settings, runner: Optional[ProcessRunner] = None) -> Services:
    workspaces = WorkspaceManager(settings.workspaces_root, max_input_bytes=settings.max_input_bytes)
    workspaces.ensure_root()

    usage = UsageCounter(settings.database_path)
    usage.healthcheck()

    return Services(
        settings=settings,
        sessions=SessionAuthenticator(TokenCodec(settings.secret_key)),
        workspaces=workspaces,
        pipeline=CompilationPipeline(
            workspaces,
            runner or SubprocessRunner(),
            step_timeout=settings.step_timeout_seconds,
        ),
        usage=usage,
    )


async def _cleanup_worker(services: Services) -> None:
    # Periodically delete request workspaces that outlived their TTL.
    interval = services.settings.cleanup_interval_seconds
    while True:
        await asyncio.sleep(interval)
        try:
            deleted = services.workspaces.cleanup_expired(services.settings.workspace_ttl_seconds)
        except OSError:
            logger.exception("workspace cleanup failed")
            continue
        if deleted:
            logger.info("expired workspaces removed", extra={"count": deleted})


def create_app(settings: Optional[Settings] = None, runner: Optional[ProcessRunner] = None) -> FastAPI:
    """Build the application.

    ``settings`` defaults to the environment; ``runner`` defaults to real
    subprocesses. Both are injectable so tests can use fakes.
    """
    settings = settings or Settings()
    configure_logging(settings.log_level)
    settings.warn_on_dev_defaults()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services = build_services(settings, runner)
        app.state.services = services
        logger.info("starting server", extra={"root": str(services.workspaces.root)})

        task = asyncio.create_task(_cleanup_worker(services))
        try:
            yield
        finally:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            services.usage.close()
            services.workspaces.destroy_root()

    app = FastAPI(title="asy-eval-server", version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def _log_requests(request: Request, call_next):
        request_id = random.getrandbits(63)
        request.state.request_id = request_id
        extra = {"rid": request_id}
        logger.info("start request", extra={**extra, "method": request.method, "path": request.url.path})

        started = time.monotonic()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("unhandled error", extra=extra)
            response = PlainTextResponse("internal server error", status_code=500)
        elapsed_ms = int((time.monotonic() - started) * 1000)

        response.headers["Request-ID"] = str(request_id)
        logger.info("done request", extra={**extra, "status": response.status_code, "elapsed_ms": elapsed_ms})
        return response

    _register_routes(app)
    return app


def get_services(request: Request) -> Services:
    return request.app.state.services


def request_context(request: Request, services: Services = Depends(get_services)) -> RequestContext:
    resolution = services.sessions.resolve(request.cookies)
    ctx = RequestContext(request_id=request.state.request_id, session=resolution)
    logger.debug(
        "user cookie",
        extra={**ctx.log_extra(), "new_identity": resolution.is_new},
    )
    return ctx


def _error_response(ctx: RequestContext, exc: AsyEvalError) -> Response:
    if exc.status_code >= 500:
        logger.error("compile request failed: %s", exc, extra=ctx.log_extra())
    else:
        logger.debug("rejected compile request: %s", exc, extra=ctx.log_extra())
    return PlainTextResponse(exc.detail(), status_code=exc.status_code)


def _register_routes(app: FastAPI) -> None:
    @app.get("/health")
    async def health() -> JSONResponse:
        return JSONResponse({"status": "ok"})

    @app.post("/eval")
    async def evaluate(
        request: Request,
        i: Optional[str] = Query(None, description="Input format: tex or asy"),
        o: Optional[str] = Query(None, description="Output format: svg, pdf or png"),
        ctx: RequestContext = Depends(request_context),
        services: Services = Depends(get_services),
    ) -> Response:
        try:
            outcome = await services.pipeline.compile(
                ctx,
                i,
                o,
                request.stream(),
                size_hint=input_size_hint(request.headers.get("content-length")),
            )
        except AsyEvalError as exc:
            return services.sessions.attach(_error_response(ctx, exc), ctx.session)

        if isinstance(outcome, Success):
            tasks = BackgroundTasks()
            tasks.add_task(services.workspaces.release, outcome.workspace)
            tasks.add_task(record_compilation, services.usage, ctx.identity, ctx.request_id)
            response: Response = FileResponse(
                outcome.output_path,
                media_type=outcome.media_type,
                headers={"Cache-Control": "no-store", "X-Content-Type-Options": "nosniff"},
                background=tasks,
            )
        elif isinstance(outcome, CompilerFailure):
            response = Response(content=outcome.output, media_type=COMPILER_ERROR_MEDIA_TYPE)
        elif isinstance(outcome, MissingOutput):
            response = Response(content=b"no output", media_type=COMPILER_ERROR_MEDIA_TYPE)
        elif isinstance(outcome, Timeout):
            response = PlainTextResponse("Command timed out!\n", status_code=408)
        else:
            raise AssertionError(f"unexpected outcome {outcome!r}")

        return services.sessions.attach(response, ctx.session)


app = create_app()


if __name__ == "__main__":
    # Convenience: python server.py
    import uvicorn

    settings = Settings()
    uvicorn.run("server:app", host=settings.host, port=settings.port, reload=False)
