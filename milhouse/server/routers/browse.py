from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from milhouse.server.browse import FolderPickerError, parse_default_path, pick_folder
from milhouse.server.runtime import Runtime, get_runtime

router = APIRouter(prefix="/api", tags=["browse"])


@router.post("/browse")
async def browse(request: Request, runtime: Runtime = Depends(get_runtime)):
    default_path = parse_default_path(await request.body())
    try:
        path = await pick_folder(default_path, on_stderr=runtime.broadcaster.publish)
    except FolderPickerError as e:
        if "cancel" in str(e).lower():
            return Response(status_code=204)
        return JSONResponse(status_code=400, content={"error": str(e)})

    if not path:
        return Response(status_code=204)
    return {"path": path}
