"""
Main API router. Mounts all sub-routers.
"""

from fastapi import APIRouter

router = APIRouter()


# ── Health (no auth) ─────────────────────────────────────────────────

@router.get("/health")
async def health():
    return {"status": "ok", "service": "verireport"}


# ── V1 routes ────────────────────────────────────────────────────────

from .conversations import conversations_router
from .files import files_router
from .reports import reports_router
from .storage import storage_router

router.include_router(conversations_router, prefix="/v1")
router.include_router(files_router, prefix="/v1")
router.include_router(reports_router, prefix="/v1")
# Blob downloads carry no user header; the key itself is unguessable
router.include_router(storage_router, prefix="/v1")
