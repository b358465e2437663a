"""
Main application entry point for CBT Companion.

All collaborators are constructed once in create_app() and passed down
explicitly; routes reach them through app.state.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .agents.cbt_agent import get_therapist_config
from .config.settings import Settings, get_settings
from .services.auth_state_machine import AuthStateMachine
from .services.conversation_controller import ConversationController
from .services.identity_client import FirebaseIdentityClient, IdentityClient
from .services.model_backend import ClaudeModelBackend, ModelBackend
from .services.session_gate import SessionGate

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler()]
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle"""
    logger.info("Starting CBT Companion...")

    auth: AuthStateMachine = app.state.auth
    await auth.start()
    logger.info(f"✅ Identity provider ready (state: {auth.state.kind.value})")

    logger.info("Application startup complete")

    yield

    logger.info("Shutting down...")
    await auth.close()
    await app.state.conversation.release()
    logger.info("Application shutdown complete")


def create_app(
    settings: Optional[Settings] = None,
    identity: Optional[IdentityClient] = None,
    backend: Optional[ModelBackend] = None
) -> FastAPI:
    """
    Build the FastAPI application and wire its collaborators

    Args:
        settings: Settings (loaded from the environment when None)
        identity: Identity client (Firebase when None)
        backend: Model backend (Claude when None)

    Returns:
        FastAPI app
    """
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)

    if identity is None:
        if not settings.FIREBASE_API_KEY:
            raise ValueError("FIREBASE_API_KEY must be configured")
        identity = FirebaseIdentityClient(
            api_key=settings.FIREBASE_API_KEY,
            base_url=settings.IDENTITY_BASE_URL,
            timeout=settings.IDENTITY_TIMEOUT,
            token_url=settings.SECURE_TOKEN_URL
        )

    if backend is None:
        backend = ClaudeModelBackend(
            api_key=settings.CLAUDE_API_KEY,
            auth_token=settings.ANTHROPIC_AUTH_TOKEN,
            base_url=settings.ANTHROPIC_BASE_URL,
            model=settings.MODEL_NAME
        )

    therapist = get_therapist_config()
    conversation = ConversationController(
        backend=backend,
        priming_text=therapist.priming_text,
        opening_reply=therapist.opening_reply
    )
    auth = AuthStateMachine(
        identity=identity,
        conversation=conversation,
        cooldown_seconds=settings.RESEND_COOLDOWN_SECONDS
    )

    app = FastAPI(
        title="CBT Companion",
        version=__version__,
        description="Personal CBT assistant behind email-verified sign-in",
        lifespan=lifespan
    )
    app.state.settings = settings
    app.state.identity = identity
    app.state.conversation = conversation
    app.state.auth = auth
    app.state.gate = SessionGate(auth=auth, conversation=conversation)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from .api.auth import router as auth_router
    from .api.chat import router as chat_router
    from .api.gate import router as gate_router

    app.include_router(gate_router)
    app.include_router(auth_router)
    app.include_router(chat_router)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Global exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": {"error": "internal_error", "detail": "Internal server error"}}
        )

    @app.get("/health")
    async def health_check():
        """Health check"""
        return {
            "status": "healthy",
            "version": __version__,
            "service": "CBT Companion"
        }

    return app


def run() -> None:
    import uvicorn
    from dotenv import load_dotenv

    # Export .env to the process environment so the Claude CLI subprocess sees it
    load_dotenv()
    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower()
    )


if __name__ == "__main__":
    run()
