from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from milhouse.server.runtime import Runtime, get_runtime
from milhouse.server.stream import SSE_HEADERS, log_stream
from milhouse.supervisor import AlreadyRunningError, EngineLaunchError, SessionStoreError, WorkdirNotFoundError

router = APIRouter(prefix="/api", tags=["runs"])


class StartRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    goal: str | None = None
    max_iterations: int = Field(default=0, ge=0)
    workdir: str | None = None
    create_if_missing: bool = True

    @field_validator("max_iterations", mode="before")
    @classmethod
    def _blank_iterations(cls, v):
        # Empty or non-numeric form input means unbounded; negatives still fail validation
        if v is None or v == "":
            return 0
        if isinstance(v, str):
            try:
                return int(v.strip())
            except ValueError:
                return 0
        return v


def _error(message: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.post("/start")
async def start_run(req: StartRequest, runtime: Runtime = Depends(get_runtime)):
    if not req.goal or not req.goal.strip():
        return _error("goal is required")

    try:
        session = await runtime.supervisor.start(
            req.goal,
            max_iterations=req.max_iterations,
            workdir_input=req.workdir,
            create_if_missing=req.create_if_missing,
        )
    except (AlreadyRunningError, WorkdirNotFoundError, EngineLaunchError, SessionStoreError) as e:
        return _error(str(e))

    return {"ok": True, "session": session.to_dict()}


@router.post("/stop")
async def stop_run(runtime: Runtime = Depends(get_runtime)):
    runtime.supervisor.stop()
    return {"ok": True}


@router.get("/status")
async def get_status(runtime: Runtime = Depends(get_runtime)):
    return runtime.supervisor.status()


@router.get("/artifacts")
async def get_artifacts(runtime: Runtime = Depends(get_runtime)):
    return runtime.supervisor.status()["artifacts"]


@router.get("/events")
async def stream_events(runtime: Runtime = Depends(get_runtime)) -> StreamingResponse:
    return StreamingResponse(
        log_stream(runtime.broadcaster),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
