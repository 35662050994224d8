import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import aiforge.models  # noqa: F401
from aiforge.api.v1.router import api_v1_router
from aiforge.core.config import settings
from aiforge.core.database import Base, SessionLocal, engine
from aiforge.services.generation.assistant import ChatAssistant
from aiforge.services.generation.coach import CoachSessionManager
from aiforge.services.generation.content import ContentGenerator
from aiforge.services.generation.credentials import CredentialGate
from aiforge.services.generation.history import SqlHistoryStore
from aiforge.services.generation.jobs import LongRunningJobPoller
from aiforge.services.generation.models import ChatConfig, LiveConfig
from aiforge.services.generation.tools import build_default_dispatcher

logger = logging.getLogger(__name__)


def build_services(app: FastAPI, gate: CredentialGate) -> None:
    """Construct every generation component around one credential gate."""
    generator = ContentGenerator(
        gate,
        model_id=settings.GEMINI_CHAT_MODEL,
        min_transcript_chars=settings.COACH_MIN_TRANSCRIPT_CHARS,
    )
    chat_config = ChatConfig(
        model_id=settings.GEMINI_CHAT_MODEL,
        system_instruction=settings.GEMINI_CHAT_SYSTEM_INSTRUCTION,
        temperature=settings.GEMINI_CHAT_TEMPERATURE,
        max_output_tokens=settings.GEMINI_CHAT_MAX_OUTPUT_TOKENS,
    )

    app.state.credential_gate = gate
    app.state.session_factory = SessionLocal
    app.state.content_generator = generator
    app.state.chat_assistant = ChatAssistant(
        gate,
        SqlHistoryStore(SessionLocal),
        build_default_dispatcher(generator),
        config=chat_config,
    )
    app.state.coach_manager = CoachSessionManager(
        gate,
        generator,
        config_factory=lambda: LiveConfig(
            model_id=settings.GEMINI_LIVE_MODEL,
            frame_samples=settings.COACH_FRAME_SAMPLES,
            queue_size=settings.COACH_FRAME_QUEUE_SIZE,
        ),
    )
    app.state.video_poller = LongRunningJobPoller(
        gate,
        model_id=settings.GEMINI_VIDEO_MODEL,
        poll_interval=settings.VIDEO_POLL_INTERVAL_SECONDS,
        max_poll_failures=settings.VIDEO_MAX_POLL_FAILURES,
        download_timeout=settings.VIDEO_DOWNLOAD_TIMEOUT_SECONDS,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)

    gate = CredentialGate(default_api_key=settings.GEMINI_API_KEY, probe_model=settings.GEMINI_PROBE_MODEL)
    build_services(app, gate)

    if await gate.attempt_auto_initialize():
        logger.info("Gemini services ready (chat=%s, live=%s)", settings.GEMINI_CHAT_MODEL, settings.GEMINI_LIVE_MODEL)
    else:
        logger.warning("Gemini services not configured: %s", gate.error)

    yield

    # Shutdown: tear down all live coaching sessions
    logger.info("Shutting down generation services...")
    await app.state.coach_manager.teardown_all()
    app.state.chat_assistant.teardown()


app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_v1_router, prefix=settings.API_V1_PREFIX)


@app.get("/health")
def health_check():
    return {"status": "healthy"}
