"""Client application shell (single-page app fallback)."""
from pathlib import Path

from fastapi import APIRouter, Request
from fastapi.responses import FileResponse, JSONResponse


router = APIRouter(tags=["shell"])

RESERVED_PREFIXES = ("/api/", "/health")


def _not_found(request: Request) -> JSONResponse:
    url = request.url.path
    if request.url.query:
        url = f"{url}?{request.url.query}"
    return JSONResponse(
        status_code=404,
        content={
            "error": "API endpoint not found",
            "message": f"Route {request.method} {url} not found",
        }
    )


def _resolve_asset(static_dir: Path, relative: str):
    """Built asset under static_dir, refusing paths that escape it."""
    if not relative:
        return None
    root = static_dir.resolve()
    candidate = (root / relative).resolve()
    if root not in candidate.parents:
        return None
    return candidate if candidate.is_file() else None


@router.get("/{full_path:path}", include_in_schema=False)
async def serve_shell(full_path: str, request: Request):
    """Serve built assets, or index.html for client-side routes."""
    if request.url.path.startswith(RESERVED_PREFIXES):
        return _not_found(request)

    static_dir = Path(request.app.state.static_dir)
    asset = _resolve_asset(static_dir, full_path)
    if asset is not None:
        return FileResponse(asset)

    index = static_dir / "index.html"
    if not index.is_file():
        return JSONResponse(
            status_code=404,
            content={
                "error": "Client application not found",
                "message": f"No index.html in {static_dir}",
            }
        )
    return FileResponse(index)
