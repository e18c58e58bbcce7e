"""
SoundSteps Lesson Delivery API

Delivers short lessons to learners over basic phones: an IVR voice call
answered with the keypad, or an SMS quiz. Uses Africa's Talking for the
voice/SMS/airtime gateway.

To run:
    uvicorn soundsteps.main:app --reload --port 8000

For production:
    uvicorn soundsteps.main:app --host 0.0.0.0 --port 8000
"""

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from soundsteps.config import Settings, get_settings
from soundsteps.data.content import LessonCatalog
from soundsteps.routers import sessions, sms, voice
from soundsteps.services.completion import CompletionPipeline
from soundsteps.services.locks import KeyedLocks
from soundsteps.services.provider import ProviderAdapter, build_provider
from soundsteps.services.scheduler import DeferredTasks
from soundsteps.services.session import SessionStore
from soundsteps.services.sms_flow import SmsFlowEngine
from soundsteps.voice.engine import VoiceFlowEngine

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[SessionStore] = None,
    provider: Optional[ProviderAdapter] = None,
    lessons: Optional[LessonCatalog] = None
) -> FastAPI:
    """
    Build the app and its collaborators once. The provider, store and
    engines live on `app.state`; nothing is module-global.
    """
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    app = FastAPI(
        title="SoundSteps API",
        description="Voice and SMS lesson delivery for basic phones",
        version="1.0.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    # CORS middleware (for development)
    if settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    store = store or SessionStore(settings=settings)
    provider = provider or build_provider(settings)
    lessons = lessons or LessonCatalog()
    locks = KeyedLocks()
    scheduler = DeferredTasks()

    app.state.settings = settings
    app.state.store = store
    app.state.provider = provider
    app.state.lessons = lessons
    app.state.scheduler = scheduler
    app.state.completion = CompletionPipeline(store, provider, settings)
    app.state.voice_engine = VoiceFlowEngine(store, lessons, settings, locks)
    app.state.sms_engine = SmsFlowEngine(store, lessons, provider, scheduler, settings, locks)

    # Include routers
    app.include_router(voice.router, tags=["Voice"])
    app.include_router(sms.router, tags=["SMS"])
    app.include_router(sessions.router, tags=["Sessions"])

    # =========================================================================
    # HEALTH & INFO ENDPOINTS
    # =========================================================================

    @app.get("/")
    async def root():
        """Root endpoint - service info."""
        return {
            "service": "SoundSteps API",
            "version": "1.0.0",
            "status": "running",
            "provider": provider.name,
            "endpoints": {
                "voice_callback": "/webhooks/voice",
                "voice_dtmf": "/webhooks/voice/dtmf",
                "sms_webhook": "/sms/webhook",
                "health": "/health",
                "docs": "/docs" if settings.debug else "disabled"
            }
        }

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy"}

    # =========================================================================
    # STARTUP & SHUTDOWN
    # =========================================================================

    @app.on_event("startup")
    async def startup():
        logger.info("SoundSteps API starting (provider=%s, debug=%s)", provider.name, settings.debug)
        logger.info("Redis: %s:%s", settings.redis_host, settings.redis_port)

    @app.on_event("shutdown")
    async def shutdown():
        pending = scheduler.pending()
        if pending:
            logger.info("Cancelling %d deferred send(s)", len(pending))
        await scheduler.shutdown()
        await store.close()

    return app


app = create_app()
