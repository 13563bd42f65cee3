"""
FastAPI application factory.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.config import get_settings
from .core.database import init_db, close_db
from .core.errors import PipelineError
from .models.verification import ImmutableRecordError
from .api.router import router

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="VeriReport",
        description="Verified file attestation and conversation reports",
        version="1.0.0",
        docs_url="/docs" if settings.env == "development" else None,
        redoc_url="/redoc" if settings.env == "development" else None,
    )

    # ── CORS ─────────────────────────────────────────────────────
    origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins if origins != ["*"] else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Errors ───────────────────────────────────────────────────
    @app.exception_handler(PipelineError)
    async def pipeline_error_handler(request: Request, e: PipelineError):
        if e.status_code >= 500:
            logger.error("%s on %s %s: %s", e.error_type, request.method, request.url.path, e.message)
        return JSONResponse(
            status_code=e.status_code,
            content={"success": False, "error": e.to_dict()},
        )

    @app.exception_handler(ImmutableRecordError)
    async def immutable_record_handler(request: Request, e: ImmutableRecordError):
        logger.error("Attempted mutation of a verification record: %s", e)
        return JSONResponse(
            status_code=409,
            content={
                "success": False,
                "error": {"type": "immutable_record", "message": str(e), "details": {}},
            },
        )

    # ── Startup ──────────────────────────────────────────────────
    @app.on_event("startup")
    async def on_startup():
        logging.basicConfig(
            level=getattr(logging, settings.log_level.upper(), logging.INFO),
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
        logger.info("Starting VeriReport (env=%s)", settings.env)

        # Create database tables
        await init_db()

        if settings.pdf_font_path:
            from .services.pdf_render import register_unicode_font
            register_unicode_font(settings.pdf_font_path, settings.pdf_bold_font_path or None)

        # Log feature flag state
        from .core.flags import get_flags
        flags = get_flags()
        logger.info(
            "Flags: user_header=%s s3=%s ocr=%s llm=%s chain_prior=%s",
            flags.require_user_header, flags.use_s3, flags.use_ocr,
            flags.llm_provider, flags.chain_prior_records,
        )

        logger.info("VeriReport is ready")

    # ── Shutdown ─────────────────────────────────────────────────
    @app.on_event("shutdown")
    async def on_shutdown():
        from .services.llm import close_client
        await close_client()
        await close_db()
        logger.info("VeriReport shut down")

    # ── Routes ───────────────────────────────────────────────────
    app.include_router(router)

    return app
