from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.asyncio import Redis
from redis.exceptions import RedisError

from bergvlei.api.auth import router as auth_router
from bergvlei.api.health import router as health_router
from bergvlei.api.leaderboard import router as leaderboard_router
from bergvlei.api.riddles import router as riddles_router
from bergvlei.api.subscription import router as subscription_router
from bergvlei.config import settings
from bergvlei.database import create_engine, create_session_factory
from bergvlei.integrations.gemini_client import GeminiClient
from bergvlei.middleware.error_handler import setup_error_handlers
from bergvlei.middleware.rate_limit import RateLimitMiddleware
from bergvlei.middleware.security import SecurityHeadersMiddleware
from bergvlei.services.ai_service import AIService
from bergvlei.services.billing.subscription_service import build_provider

# Configure structlog
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        (
            structlog.dev.ConsoleRenderer()
            if settings.APP_ENV == "development"
            else structlog.processors.JSONRenderer()
        ),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(0),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    log.info("starting_up", env=settings.APP_ENV, billing_provider=settings.BILLING_PROVIDER)
    engine = create_engine(settings.DATABASE_URL)
    app.state.engine = engine
    app.state.session_factory = create_session_factory(engine)

    redis = Redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        await redis.ping()
        log.info("redis_connected", url=settings.REDIS_URL)
    except (RedisError, OSError) as e:
        log.warning("redis_connection_failed", error=str(e))
    app.state.redis = redis

    gemini = GeminiClient()
    if not gemini.is_configured:
        log.warning("gemini_not_configured")
    app.state.ai_service = AIService(gemini)
    app.state.billing_provider = build_provider(settings.BILLING_PROVIDER)

    yield

    # Shutdown
    log.info("shutting_down")
    await redis.aclose()
    await engine.dispose()


def create_app() -> FastAPI:
    app = FastAPI(title="Bergvlei Riddles API", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.APP_ENV == "development" else settings.allowed_origins,
        allow_credentials=settings.APP_ENV != "development",
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Rate limiting
    app.add_middleware(RateLimitMiddleware)

    # Security headers (outermost, so 429 responses carry them too)
    app.add_middleware(SecurityHeadersMiddleware)

    setup_error_handlers(app)

    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(riddles_router)
    app.include_router(leaderboard_router)
    app.include_router(subscription_router)

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    return app


app = create_app()
