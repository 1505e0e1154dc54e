import pytest

from campus_eats.application.session import SessionManager, validate_sign_up
from campus_eats.domain.errors import InvalidCredentials, InvalidRequest
from campus_eats.domain.order_status import Role

pytestmark = pytest.mark.anyio


@pytest.fixture
def manager(identity, policy):
    return SessionManager(identity, policy)


@pytest.mark.parametrize(
    "email, password, role, message",
    [
        ("not-an-email", "secret1", "buyer", "Invalid email format"),
        ("sam@campus.edu", "12345", "buyer", "at least 6"),
        ("sam@campus.edu", "secret1", "admin", "Invalid role"),
    ],
)
def test_sign_up_validation(email, password, role, message):
    with pytest.raises(InvalidRequest, match=message):
        validate_sign_up(email, password, role)


def test_email_is_normalised():
    assert validate_sign_up("  Sam@Campus.EDU ", "secret1", "runner") == "sam@campus.edu"


async def test_sign_up_establishes_context(manager):
    changes = []
    manager.on_change(changes.append)

    context = await manager.sign_up("Sam@campus.edu", "secret1", "Sam", "runner", campus_name="North")

    assert manager.current == context
    assert context.email == "sam@campus.edu"
    assert context.active_role == Role.RUNNER
    assert context.has_role(Role.RUNNER)
    assert not context.has_role(Role.BUYER)
    assert changes == [context]


async def test_sign_out_invalidates_context(manager):
    changes = []
    context = await manager.sign_up("sam@campus.edu", "secret1", "Sam", "buyer")
    manager.on_change(changes.append)

    await manager.sign_out()

    assert manager.current is None
    assert changes == [None]
    with pytest.raises(InvalidCredentials):
        await manager.resolve(context.access_token)


async def test_sign_in(manager):
    await manager.sign_up("sam@campus.edu", "secret1", "Sam", "vendor")
    await manager.sign_out()

    context = await manager.sign_in("SAM@campus.edu", "secret1")

    assert context.active_role == Role.VENDOR
    assert manager.current == context


async def test_wrong_password(manager):
    await manager.sign_up("sam@campus.edu", "secret1", "Sam", "buyer")

    with pytest.raises(InvalidCredentials):
        await manager.sign_in("sam@campus.edu", "wrong-one")


async def test_role_not_held_is_rejected(manager):
    await manager.sign_up("sam@campus.edu", "secret1", "Sam", "buyer")

    with pytest.raises(InvalidCredentials, match="not registered as a runner"):
        await manager.sign_in("sam@campus.edu", "secret1", role=Role.RUNNER)


async def test_duplicate_email(manager):
    await manager.sign_up("sam@campus.edu", "secret1", "Sam", "buyer")

    with pytest.raises(InvalidRequest):
        await manager.sign_up("sam@campus.edu", "secret2", "Other Sam", "runner")


async def test_resolve_does_not_touch_current(manager, identity, policy):
    context = await manager.sign_up("sam@campus.edu", "secret1", "Sam", "buyer")
    other = SessionManager(identity, policy)

    resolved = await other.resolve(context.access_token)

    assert resolved.user_id == context.user_id
    assert other.current is None


async def test_unsubscribe_stops_callbacks(manager):
    changes = []
    unsubscribe = manager.on_change(changes.append)
    unsubscribe()

    await manager.sign_up("sam@campus.edu", "secret1", "Sam", "buyer")

    assert changes == []


async def test_sign_out_at_provider_clears_current(manager, identity):
    changes = []
    context = await manager.sign_up("sam@campus.edu", "secret1", "Sam", "buyer")
    manager.on_change(changes.append)

    await identity.sign_out(context.access_token)

    assert manager.current is None
    assert changes == [None]


async def test_provider_sign_out_of_another_token_is_ignored(manager, identity, policy):
    mine = await manager.sign_up("sam@campus.edu", "secret1", "Sam", "buyer")
    other = SessionManager(identity, policy)
    theirs = await other.sign_up("alex@campus.edu", "secret1", "Alex", "runner")

    await identity.sign_out(theirs.access_token)

    assert manager.current == mine
    assert other.current is None


async def test_closed_manager_stops_following_provider(manager, identity):
    context = await manager.sign_up("sam@campus.edu", "secret1", "Sam", "buyer")
    manager.close()

    await identity.sign_out(context.access_token)

    assert manager.current == context
    assert identity._listeners == []
