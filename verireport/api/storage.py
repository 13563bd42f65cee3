"""
Local blob serving. Only active when FF_USE_S3=false; with S3 the URLs
handed out are presigned and never hit this route.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse

from ..core.dependencies import get_storage_dep
from ..core.errors import NotFoundError
from ..core.storage import LocalStorage, StorageBackend, guess_content_type

storage_router = APIRouter(prefix="/storage", tags=["storage"])


@storage_router.get("/{key:path}")
async def get_object(
    key: str,
    storage: StorageBackend = Depends(get_storage_dep),
):
    if not isinstance(storage, LocalStorage):
        raise NotFoundError("Local storage is not enabled", {"key": key})

    if not await storage.exists(key):
        raise NotFoundError(f"Object not found: {key}", {"key": key})
    path = storage.path_for(key)
    return FileResponse(path, media_type=guess_content_type(path.name))
