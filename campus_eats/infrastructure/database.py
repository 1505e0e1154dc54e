import logging
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.orm import declarative_base, sessionmaker

from campus_eats.core.config import settings
from campus_eats.domain.errors import ConfigurationError

logger = logging.getLogger(__name__)

Base = declarative_base()


def build_engine(database_url: str | None) -> Engine:
    if not database_url:
        raise ConfigurationError("DATABASE_URL is not configured")
    try:
        url = make_url(database_url)
    except ArgumentError as e:
        raise ConfigurationError(f"DATABASE_URL is invalid: {e}") from e

    kwargs = {"pool_pre_ping": True}
    if url.get_backend_name() == "sqlite":
        # Repository calls run in worker threads
        kwargs["connect_args"] = {"check_same_thread": False}
    return create_engine(url, **kwargs)


def build_session_factory(engine: Engine) -> sessionmaker:
    # Objects stay readable after the session closes
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def create_schema(engine: Engine) -> None:
    # Import for side effect: registers the tables on Base.metadata
    from campus_eats.domain import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logger.info("✅ Database schema ready.")


engine = build_engine(settings.DATABASE_URL)
SessionLocal = build_session_factory(engine)
