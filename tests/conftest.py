import pytest

from campus_eats.application.marketplace import Marketplace
from campus_eats.core.config import Settings
from campus_eats.core.retry import RetryPolicy
from campus_eats.infrastructure.change_feed import InMemoryChangeFeed
from campus_eats.infrastructure.database import build_engine, build_session_factory, create_schema
from campus_eats.infrastructure.identity_provider import InMemoryIdentityProvider
from campus_eats.infrastructure.repositories.notification_repository import SqlAlchemyNotificationRepository
from campus_eats.infrastructure.repositories.order_repository import SqlAlchemyOrderRepository
from campus_eats.infrastructure.repositories.vendor_repository import SqlAlchemyVendorRepository

from helpers import VENDOR_OWNER


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def session_factory(tmp_path):
    # File-backed so worker threads share one database
    engine = build_engine(f"sqlite:///{tmp_path / 'campus_eats.db'}")
    create_schema(engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def policy():
    return RetryPolicy(retries=3, base_delay_ms=0, max_delay_ms=0)


@pytest.fixture
def config():
    return Settings(_env_file=None)


@pytest.fixture
def orders(session_factory):
    return SqlAlchemyOrderRepository(session_factory)


@pytest.fixture
def vendors(session_factory):
    return SqlAlchemyVendorRepository(session_factory)


@pytest.fixture
def notifications(session_factory):
    return SqlAlchemyNotificationRepository(session_factory)


@pytest.fixture
def feed():
    return InMemoryChangeFeed()


@pytest.fixture
def identity():
    return InMemoryIdentityProvider()


@pytest.fixture
def marketplace(orders, vendors, notifications, feed, identity, config, policy):
    return Marketplace(orders, vendors, notifications, feed, identity, config=config, policy=policy)


@pytest.fixture
def vendor(vendors):
    return vendors.create(VENDOR_OWNER, "Taco Stand")
