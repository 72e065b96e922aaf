from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import FileResponse

router = APIRouter(tags=["files"])


@router.get("/{filename}")
async def serve_output(filename: str, request: Request) -> FileResponse:
    """Serve a published output video from the output area."""
    path = request.app.state.store.published_file(filename)
    if path is None or path.suffix != ".mp4":
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(path, media_type="video/mp4", filename=filename)
