"""
FastAPI dependencies. Injected into route handlers.
"""

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .auth import AuthenticatedUser, get_current_user
from .config import get_settings
from .database import get_db as _get_db, get_session_factory
from .flags import get_flags
from .storage import StorageBackend, get_storage as _get_storage
from ..services.llm import CompletionService, HttpCompletionService
from ..services.publisher import ReportPublisher
from ..services.reports import ReportGenerator
from ..services.verification import VerificationPipeline


async def get_db() -> AsyncSession:
    """Yields an async DB session per request."""
    async for session in _get_db():
        yield session


def get_session_factory_dep() -> async_sessionmaker[AsyncSession]:
    """Session factory for services that manage their own transactions."""
    return get_session_factory()


async def get_user(
    x_user_id: str = Header(default=""),
    x_user_email: str = Header(default=""),
) -> AuthenticatedUser:
    """
    Resolve the caller from gateway headers.
    Returns dev user if FF_REQUIRE_USER_HEADER=false.
    """
    try:
        return await get_current_user(x_user_id, x_user_email)
    except PermissionError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
        )


def get_storage_dep() -> StorageBackend:
    """Returns the active storage backend (S3 or local)."""
    return _get_storage()


def get_completion_dep() -> CompletionService:
    """Completion service for the configured LLM provider."""
    return HttpCompletionService.from_settings()


def get_verification_pipeline(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory_dep),
    storage: StorageBackend = Depends(get_storage_dep),
    completion: CompletionService = Depends(get_completion_dep),
) -> VerificationPipeline:
    settings = get_settings()
    flags = get_flags()
    return VerificationPipeline(
        session_factory=session_factory,
        storage=storage,
        completion=completion,
        ocr_model=settings.ocr_model,
        use_ocr=flags.use_ocr,
        chain_prior_records=flags.chain_prior_records,
    )


def get_report_generator(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory_dep),
    storage: StorageBackend = Depends(get_storage_dep),
    completion: CompletionService = Depends(get_completion_dep),
) -> ReportGenerator:
    settings = get_settings()
    return ReportGenerator(
        session_factory=session_factory,
        completion=completion,
        publisher=ReportPublisher(storage),
        summary_model=settings.summary_model,
        title=settings.report_title,
    )
