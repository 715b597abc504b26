import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.httpsredirect import HTTPSRedirectMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware

from support_handoff.api.router import api_router
from support_handoff.core.app_logging import init_logging, install_access_logging
from support_handoff.core.config import get_settings
from support_handoff.core.db import (
    close_engine,
    get_session_factory,
    init_engine,
    initialize_database,
)
from support_handoff.domain.enums import OperatorPresence
from support_handoff.infra.automated_agent import build_automated_agent
from support_handoff.infra.db.repositories import OperatorRepository
from support_handoff.infra.realtime import InMemoryRealtimeHub
from support_handoff.services.presence_sweeper import PresenceSweeper

settings = get_settings()
settings.validate_security_settings()
init_logging(settings)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = init_engine()
    await initialize_database(engine)
    app.state.db_engine = engine
    app.state.realtime_hub = InMemoryRealtimeHub()
    app.state.automated_agent = build_automated_agent(settings)

    session_factory = get_session_factory()
    async with session_factory() as session:
        await OperatorRepository(session).set_all_presence(OperatorPresence.OFFLINE)
        await session.commit()

    sweeper = PresenceSweeper(
        session_factory=session_factory,
        realtime=app.state.realtime_hub,
        offline_after_seconds=settings.operator_offline_after_seconds,
        interval_seconds=settings.presence_sweep_interval_seconds,
    )
    sweeper.start()
    logger.info("Support handoff service started (env=%s)", settings.app_env)

    yield

    await sweeper.stop()
    await app.state.automated_agent.aclose()
    await close_engine(engine)


app = FastAPI(
    title="Support Handoff API",
    version="0.1.0",
    docs_url="/docs" if settings.app_env != "production" else None,
    redoc_url="/redoc" if settings.app_env != "production" else None,
    lifespan=lifespan,
)

if settings.trusted_hosts:
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=settings.trusted_hosts,
    )

if settings.force_https:
    app.add_middleware(HTTPSRedirectMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Widget-Key", "X-Request-Id"],
)

install_access_logging(app)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault(
        "Referrer-Policy",
        "strict-origin-when-cross-origin",
    )
    if settings.force_https:
        response.headers.setdefault(
            "Strict-Transport-Security",
            "max-age=31536000; includeSubDomains",
        )
    return response


app.include_router(api_router, prefix="/api")


@app.get("/", tags=["meta"])
async def root() -> dict[str, str]:
    return {"service": "support-handoff", "status": "ok"}
