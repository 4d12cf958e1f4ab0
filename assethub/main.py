import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.engine import make_url
import structlog

from .config import settings
from .db import Base, engine, SessionLocal
from .exception_handlers import setup_exception_handlers
from .logging import setup_logging, RequestIdMiddleware
from .models import models  # noqa: F401  registers tables on Base.metadata
from .auth.router import router as auth_router
from .routes.assets import router as assets_router
from .routes.allocations import router as allocations_router
from .routes.users import router as users_router
from .services.scheduler import ExpiryScheduler


API_PREFIX = "/api"


def _ensure_sqlite_dir(url: str) -> None:
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite" and parsed.database and parsed.database != ":memory:":
        folder = os.path.dirname(parsed.database)
        if folder:
            os.makedirs(folder, exist_ok=True)


def create_app() -> FastAPI:
    setup_logging()
    logger = structlog.get_logger("assethub")
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()] or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)

    setup_exception_handlers(app)

    # Routers
    app.include_router(auth_router, prefix=API_PREFIX)
    app.include_router(assets_router, prefix=API_PREFIX)
    app.include_router(allocations_router, prefix=API_PREFIX)
    app.include_router(users_router, prefix=API_PREFIX)

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.get("/health")
    def health():
        return {"success": True, "message": "Server is running", "environment": settings.environment}

    scheduler = ExpiryScheduler(
        SessionLocal,
        tz=settings.scheduler_timezone,
        poll_seconds=settings.scheduler_poll_seconds,
        warning_days=settings.expiry_warning_days,
    )
    app.state.scheduler = scheduler

    @app.on_event("startup")
    def on_startup():
        if settings.auto_create_db:
            _ensure_sqlite_dir(settings.database_url)
            Base.metadata.create_all(bind=engine)
        if settings.scheduler_enabled:
            scheduler.start()
        logger.info("app_started", environment=settings.environment, scheduler=settings.scheduler_enabled)

    @app.on_event("shutdown")
    def on_shutdown():
        scheduler.stop()

    return app


app = create_app()
