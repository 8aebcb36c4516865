from fastapi import APIRouter, Depends

from milhouse.server.runtime import Runtime, get_runtime

router = APIRouter(prefix="/api", tags=["sessions"])


@router.get("/sessions")
async def list_sessions(runtime: Runtime = Depends(get_runtime)):
    return {"sessions": [s.to_dict() for s in runtime.registry.list_all()]}
