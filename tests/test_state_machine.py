import pytest

from campus_eats.domain.errors import ClaimConflict, InvalidTransition, OrderNotFound
from campus_eats.domain.order_status import ALLOWED_TRANSITIONS, OrderStatus, Role, successors

from helpers import BUYER, RUNNER_A, RUNNER_B, VENDOR_OWNER, deliver_to_status, place_one

pytestmark = pytest.mark.anyio


def test_transition_table_has_exactly_five_edges():
    assert len(ALLOWED_TRANSITIONS) == 5
    assert successors(OrderStatus.PENDING) == {OrderStatus.ACCEPTED, OrderStatus.CANCELLED}
    assert successors(OrderStatus.DELIVERED) == frozenset()
    assert successors(OrderStatus.CANCELLED) == frozenset()


async def test_happy_path_only_walks_legal_edges(marketplace, vendor, orders):
    order = await place_one(marketplace, vendor)
    seen = []
    marketplace.state_machine.on_transition(lambda o, status: _record(seen, status))

    await deliver_to_status(marketplace, order, "delivered")

    assert seen == ["accepted", "preparing", "delivering", "delivered"]
    statuses = ["pending"] + seen
    for current, target in zip(statuses, statuses[1:]):
        assert (OrderStatus(current), OrderStatus(target)) in ALLOWED_TRANSITIONS

    stored = orders.get_by_id(order.id)
    assert stored.status == "delivered"
    assert stored.runner_id == RUNNER_A


async def _record(seen, status):
    seen.append(status)


async def test_claim_sets_runner_and_status(marketplace, vendor, orders):
    order = await place_one(marketplace, vendor)

    result = await marketplace.state_machine.claim(order.id, RUNNER_A)

    assert result.changed
    assert result.previous == OrderStatus.PENDING
    assert result.order.runner_id == RUNNER_A
    assert orders.get_by_id(order.id).status == "accepted"


async def test_second_claim_is_a_conflict(marketplace, vendor, orders):
    order = await place_one(marketplace, vendor)
    await marketplace.state_machine.claim(order.id, RUNNER_A)

    with pytest.raises(ClaimConflict):
        await marketplace.state_machine.claim(order.id, RUNNER_B)
    assert orders.get_by_id(order.id).runner_id == RUNNER_A


async def test_repeated_claim_by_winner_is_idempotent(marketplace, vendor):
    order = await place_one(marketplace, vendor)
    await marketplace.state_machine.claim(order.id, RUNNER_A)

    again = await marketplace.state_machine.claim(order.id, RUNNER_A)

    assert not again.changed
    assert again.order.runner_id == RUNNER_A


@pytest.mark.parametrize("status", ["preparing", "delivering", "delivered"])
async def test_winner_cannot_reclaim_after_order_moved_on(marketplace, vendor, orders, status):
    order = await place_one(marketplace, vendor)
    await deliver_to_status(marketplace, order, status)

    with pytest.raises(InvalidTransition):
        await marketplace.state_machine.claim(order.id, RUNNER_A)
    assert orders.get_by_id(order.id).status == status


async def test_claim_unknown_order(marketplace):
    with pytest.raises(OrderNotFound):
        await marketplace.state_machine.claim("missing", RUNNER_A)


async def test_cannot_claim_cancelled_order(marketplace, vendor):
    order = await place_one(marketplace, vendor)
    await marketplace.state_machine.cancel(order.id, BUYER)

    with pytest.raises(InvalidTransition):
        await marketplace.state_machine.claim(order.id, RUNNER_A)


async def test_vendor_cannot_skip_to_delivering(marketplace, vendor):
    order = await place_one(marketplace, vendor)
    await deliver_to_status(marketplace, order, "accepted")

    with pytest.raises(InvalidTransition):
        await marketplace.state_machine.advance(order.id, Role.VENDOR, "delivering", actor_id=VENDOR_OWNER)


async def test_wrong_role_is_rejected(marketplace, vendor, orders):
    order = await place_one(marketplace, vendor)
    await deliver_to_status(marketplace, order, "accepted")

    with pytest.raises(InvalidTransition):
        await marketplace.state_machine.advance(order.id, Role.RUNNER, "preparing", actor_id=RUNNER_A)
    assert orders.get_by_id(order.id).status == "accepted"


async def test_unassigned_runner_cannot_advance(marketplace, vendor):
    order = await place_one(marketplace, vendor)
    await deliver_to_status(marketplace, order, "preparing")

    with pytest.raises(InvalidTransition):
        await marketplace.state_machine.advance(order.id, Role.RUNNER, "delivering", actor_id=RUNNER_B)


async def test_other_vendor_cannot_advance(marketplace, vendor, vendors):
    vendors.create("other-owner", "Noodle Bar")
    order = await place_one(marketplace, vendor)
    await deliver_to_status(marketplace, order, "accepted")

    with pytest.raises(InvalidTransition):
        await marketplace.state_machine.advance(order.id, Role.VENDOR, "preparing", actor_id="other-owner")


async def test_unknown_target_status(marketplace, vendor):
    order = await place_one(marketplace, vendor)

    with pytest.raises(InvalidTransition):
        await marketplace.state_machine.advance(order.id, Role.VENDOR, "teleported")


async def test_repeated_advance_is_idempotent(marketplace, vendor, notifications):
    order = await place_one(marketplace, vendor)
    await deliver_to_status(marketplace, order, "delivered")

    again = await marketplace.state_machine.advance(order.id, Role.RUNNER, "delivered", actor_id=RUNNER_A)

    assert not again.changed
    assert again.order.status == "delivered"
    delivered_notes = [n for n in notifications.list_for_user(BUYER) if n.message.endswith("delivered")]
    assert len(delivered_notes) == 1


async def test_buyer_cancels_pending_order(marketplace, vendor, orders):
    order = await place_one(marketplace, vendor)

    result = await marketplace.state_machine.cancel(order.id, BUYER)

    assert result.changed
    assert orders.get_by_id(order.id).status == "cancelled"
    assert not (await marketplace.state_machine.cancel(order.id, BUYER)).changed


async def test_cancel_while_preparing_is_rejected(marketplace, vendor, orders):
    order = await place_one(marketplace, vendor)
    await deliver_to_status(marketplace, order, "preparing")

    with pytest.raises(InvalidTransition):
        await marketplace.state_machine.cancel(order.id, BUYER)
    assert orders.get_by_id(order.id).status == "preparing"


async def test_only_the_buyer_can_cancel(marketplace, vendor, orders):
    order = await place_one(marketplace, vendor)

    with pytest.raises(InvalidTransition):
        await marketplace.state_machine.cancel(order.id, "someone-else")
    assert orders.get_by_id(order.id).status == "pending"


async def test_cancel_via_advance_needs_buyer_role(marketplace, vendor):
    order = await place_one(marketplace, vendor)

    with pytest.raises(InvalidTransition):
        await marketplace.state_machine.advance(order.id, Role.VENDOR, "cancelled", actor_id=VENDOR_OWNER)
    result = await marketplace.state_machine.advance(order.id, Role.BUYER, "cancelled", actor_id=BUYER)
    assert result.order.status == "cancelled"


async def test_transition_publishes_change_event(marketplace, vendor, feed):
    order = await place_one(marketplace, vendor)
    subscription = await feed.subscribe("orders")

    await marketplace.state_machine.claim(order.id, RUNNER_A)

    event = await subscription.__anext__()
    assert event.op == "UPDATE"
    assert event.record["id"] == order.id
    assert event.record["status"] == "accepted"
    assert event.record["runner_id"] == RUNNER_A
    await subscription.close()
