import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from campus_eats.application.marketplace import build_marketplace
from campus_eats.core.config import settings
from campus_eats.core.error_classifier import user_message
from campus_eats.domain.errors import ErrorKind, MarketplaceError, TRANSIENT_KINDS
from campus_eats.infrastructure.change_feed import build_change_feed
from campus_eats.infrastructure.database import SessionLocal, create_schema, engine
from campus_eats.interfaces import auth_api, notifications_api, orders_api, realtime_ws

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    ErrorKind.CONFLICT: 409,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_CREDENTIALS: 401,
    ErrorKind.INVALID_REQUEST: 400,
    ErrorKind.CONFIGURATION: 503,
    ErrorKind.UNKNOWN: 500,
}


def status_for(kind: ErrorKind) -> int:
    if kind in TRANSIENT_KINDS:
        return 503
    return STATUS_BY_KIND.get(kind, 500)


# ---------------------------------------------------------
# COMPOSITION ROOT
# ---------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    create_schema(engine)
    feed, feed_mode = await build_change_feed(settings.REDIS_URL)
    app.state.feed_mode = feed_mode
    app.state.marketplace = build_marketplace(SessionLocal, feed)
    logger.info(f"✅ {settings.PROJECT_NAME} ready (change feed: {feed_mode})")
    try:
        yield
    finally:
        await app.state.marketplace.close()
        logger.info("👋 Shutdown complete")


def create_app(lifespan_handler=lifespan) -> FastAPI:
    app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan_handler)

    @app.exception_handler(MarketplaceError)
    async def marketplace_error_handler(request: Request, exc: MarketplaceError):
        status = status_for(exc.kind)
        if status >= 500:
            logger.error(f"❌ {request.method} {request.url.path} failed: {exc.kind.value}: {exc.message}")
        return JSONResponse(
            status_code=status,
            content={"error": exc.kind.value, "message": user_message(exc)},
        )

    @app.get("/health")
    def health_check(request: Request):
        status = "active" if hasattr(request.app.state, "marketplace") else "degraded"
        return {
            "status": status,
            "system": settings.PROJECT_NAME,
            "change_feed": getattr(request.app.state, "feed_mode", None),
        }

    app.include_router(auth_api.router)
    app.include_router(orders_api.router)
    app.include_router(notifications_api.router)
    app.include_router(realtime_ws.router)
    return app


app = create_app()
