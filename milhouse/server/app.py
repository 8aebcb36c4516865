from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from milhouse import __version__
from milhouse.config import Config
from milhouse.logging import configure_logging
from milhouse.server.routers.browse import router as browse_router
from milhouse.server.routers.runs import router as runs_router
from milhouse.server.routers.sessions import router as sessions_router
from milhouse.server.runtime import Runtime

STATIC_DIR = Path(__file__).parent / "static"


def describe_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "invalid request"
    first = errors[0]
    loc = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    return f"{loc}: {first['msg']}" if loc else first["msg"]


def create_app(config: Config | None = None) -> FastAPI:
    runtime = Runtime(config or Config())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown logic."""
        configure_logging(runtime.config.log_level)
        runtime.connect()
        yield
        await runtime.close()

    app = FastAPI(
        title="milhouse",
        description="Plan/build loop runner for the Codex CLI - local dashboard",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.runtime = runtime

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        # API clients get the same {"error": ...} shape as domain errors
        return JSONResponse(status_code=400, content={"error": describe_validation_error(exc)})

    app.include_router(runs_router)
    app.include_router(sessions_router)
    app.include_router(browse_router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/favicon.ico", include_in_schema=False)
    async def favicon():
        return Response(status_code=204)

    app.mount("/", StaticFiles(directory=STATIC_DIR, html=True), name="static")
    return app
