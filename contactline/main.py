"""
ContactLine - FastAPI Application Entry Point.

Phone access to backed-up contacts:
- Contact snapshot sync from the device
- PIN-gated voice menu driven by Twilio webhooks
- Voicemail recording and playback

Run with:
    uvicorn contactline.main:app --reload --port 3001
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from contactline.core.config import get_settings
from contactline.core.database import db_service
from contactline.core.exceptions import ContactLineError
from contactline.api.webhooks import router as voice_router
from contactline.api.contacts import router as contacts_router
from contactline.services.session_store import get_attempt_tracker, get_session_store


# ===========================================
# Logging Configuration
# ===========================================

def setup_logging():
    """Configure application logging."""
    settings = get_settings()

    # Create formatter
    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
    root_logger.addHandler(console_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("hpack").setLevel(logging.WARNING)
    logging.getLogger("twilio").setLevel(logging.WARNING)

    return logging.getLogger(__name__)


logger = setup_logging()


# ===========================================
# Application Lifespan
# ===========================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Application lifespan handler for startup/shutdown."""
    settings = get_settings()

    logger.info("=" * 50)
    logger.info("ContactLine Starting Up")
    logger.info("=" * 50)
    logger.info(f"Environment: {'Development' if settings.DEBUG else 'Production'}")
    logger.info(f"Max PIN attempts: {settings.MAX_PIN_ATTEMPTS}")
    logger.info(f"Session idle window: {settings.SESSION_IDLE_SECONDS}s")

    # Verify critical settings
    if not settings.SUPABASE_URL or not settings.SUPABASE_KEY:
        logger.warning("Supabase credentials not configured!")

    if not settings.twilio_configured:
        logger.warning("Twilio credentials not configured - recording playback disabled")

    if settings.USER_PIN == "123456":
        logger.warning("USER_PIN is the default - set a real PIN!")

    await get_session_store().start()
    await get_attempt_tracker().start()

    logger.info("Startup complete - ready to accept webhooks")

    yield

    # Shutdown
    logger.info("ContactLine shutting down...")
    await get_session_store().stop()
    await get_attempt_tracker().stop()


# ===========================================
# FastAPI Application
# ===========================================

def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="ContactLine",
        description="""
        Reach your backed-up contacts from any phone.

        ## Voice Webhooks (Twilio)

        - `POST /voice/answer` - Call answered
        - `POST /voice/menu`, `/voice/phone`, `/voice/pin` - Authentication
        - `POST /voice/search`, `/voice/select` - Contact lookup
        - `POST /voice/voicemail-done` - Voicemail recorded
        - `POST /voice/status` - Call status callback

        ## Contacts API (PIN required)

        - `POST /sync` - Save a snapshot (alias `/contacts/sync`)
        - `GET /latest` - Latest snapshot (alias `/contacts/latest`)
        - `GET /voicemails/{voicemail_id}` - Voicemail audio
        """,
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(voice_router)
    app.include_router(contacts_router)

    return app


# Create app instance
app = create_app()


# ===========================================
# Root Endpoints
# ===========================================

@app.get("/", tags=["root"])
async def root():
    """Root endpoint with API information."""
    return JSONResponse({
        "service": "ContactLine",
        "version": "1.0.0",
        "status": "running",
        "endpoints": {
            "voice": {
                "answer": "POST /voice/answer",
                "status": "POST /voice/status"
            },
            "contacts": {
                "sync": "POST /sync",
                "latest": "GET /latest",
                "voicemail": "GET /voicemails/{voicemail_id}"
            },
            "health": "GET /health"
        }
    })


@app.get("/health", tags=["root"])
async def health():
    """Health check for uptime monitors, with database reachability."""
    database_ok = await db_service.health_check()
    return {
        "ok": True,
        "service": "contactline",
        "database": "connected" if database_ok else "unreachable",
    }


# ===========================================
# Error Handlers
# ===========================================

@app.exception_handler(ContactLineError)
async def contactline_exception_handler(request: Request, exc: ContactLineError):
    """Render domain errors as the API's error envelope."""
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "error": exc.message}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler for unhandled errors."""
    logger.error(f"Unhandled error: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "ok": False,
            "error": str(exc) if get_settings().DEBUG else "An error occurred"
        }
    )


# ===========================================
# Main Entry Point
# ===========================================

if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "contactline.main:app",
        host="0.0.0.0",
        port=3001,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )
