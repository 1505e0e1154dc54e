from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from campus_eats.domain.errors import InvalidRequest
from campus_eats.domain.models import utcnow
from campus_eats.domain.order_status import Role
from campus_eats.domain.views import build_view
from campus_eats.interfaces.IOrderRepository import UpdateOutcome

from helpers import BUYER, RUNNER_A, RUNNER_B, VENDOR_OWNER, make_order


@pytest.fixture
def board(orders, vendor):
    """Five orders at different stages, oldest first."""
    start = utcnow() - timedelta(hours=1)
    rows = {
        "open": make_order(vendor_id=vendor.id, created_at=start),
        "mine": make_order(vendor_id=vendor.id, created_at=start + timedelta(minutes=1),
                           status="accepted", runner_id=RUNNER_A),
        "theirs": make_order(vendor_id=vendor.id, created_at=start + timedelta(minutes=2),
                             status="delivering", runner_id=RUNNER_B),
        "done": make_order(vendor_id=vendor.id, created_at=start + timedelta(minutes=3),
                           status="delivered", runner_id=RUNNER_A),
        "elsewhere": make_order(vendor_id="other-vendor", buyer_id="buyer-2",
                                created_at=start + timedelta(minutes=4)),
    }
    orders.insert_many(list(rows.values()))
    return {name: order.id for name, order in rows.items()}


def test_buyer_sees_own_orders_newest_first(orders, board):
    ids = [o.id for o in orders.list_for_buyer(BUYER)]
    assert ids == [board["done"], board["theirs"], board["mine"], board["open"]]


def test_vendor_query_resolves_vendor_record(orders, board):
    ids = {o.id for o in orders.list_for_vendor_user(VENDOR_OWNER)}
    assert board["elsewhere"] not in ids
    assert len(ids) == 4


def test_vendor_without_record_sees_nothing(orders, board):
    assert orders.list_for_vendor_user("not-a-vendor") == []


def test_runner_never_sees_other_runners_orders(orders, board):
    ids = {o.id for o in orders.list_for_runner(RUNNER_A)}

    assert board["theirs"] not in ids
    assert ids == {board["open"], board["mine"], board["done"], board["elsewhere"]}


def test_runner_view_partitions_one_snapshot(orders, board):
    view = build_view(Role.RUNNER, RUNNER_A, orders.list_for_role(Role.RUNNER, RUNNER_A))

    assert {o.id for o in view.available} == {board["open"], board["elsewhere"]}
    assert [o.id for o in view.mine] == [board["mine"]]
    assert view.completed_count == 1
    assert view.earnings == Decimal("2.99")


def test_runner_view_lists_only_open_and_unfinished_orders(orders, board):
    view = build_view(Role.RUNNER, RUNNER_A, orders.list_for_role(Role.RUNNER, RUNNER_A))

    listed = {o.id for o in view.orders}
    assert board["done"] not in listed
    assert listed == {o.id for o in view.available + view.mine}
    assert board["done"] not in view.to_dict()["orders"]
    assert [o.id for o in view.orders] == [board["elsewhere"], board["mine"], board["open"]]


def test_vendor_view_partitions(orders, board):
    view = build_view(Role.VENDOR, VENDOR_OWNER, orders.list_for_role(Role.VENDOR, VENDOR_OWNER))

    assert {o.id for o in view.active} == {board["open"], board["mine"], board["theirs"]}
    assert [o.id for o in view.completed] == [board["done"]]


def test_runner_view_drops_foreign_claims_even_if_query_leaks():
    now = utcnow()
    leaked = SimpleNamespace(id="x", status="accepted", runner_id=RUNNER_B, created_at=now, delivery_fee=0)
    stale = SimpleNamespace(id="y", status="preparing", runner_id=None, created_at=now, delivery_fee=0)
    open_order = SimpleNamespace(id="z", status="pending", runner_id=None, created_at=now, delivery_fee=0)

    view = build_view(Role.RUNNER, RUNNER_A, [leaked, stale, open_order])

    assert [o.id for o in view.orders] == ["z"]


def test_conditional_update_outcomes(orders, board):
    applied = orders.update_fields(board["open"], {"status": "accepted", "runner_id": RUNNER_B},
                                   match={"status": "pending", "runner_id": None})
    lost = orders.update_fields(board["open"], {"status": "accepted", "runner_id": RUNNER_A},
                                match={"status": "pending", "runner_id": None})
    missing = orders.update_fields("nope", {"status": "accepted"}, match={"status": "pending"})

    assert applied == UpdateOutcome.APPLIED
    assert lost == UpdateOutcome.PRECONDITION_FAILED
    assert missing == UpdateOutcome.NOT_FOUND
    assert orders.get_by_id(board["open"]).runner_id == RUNNER_B


def test_match_accepts_a_set_of_values(orders, board):
    outcome = orders.update_fields(board["theirs"], {"payment_status": "completed"},
                                   match={"status": ["delivering", "delivered"]})
    assert outcome == UpdateOutcome.APPLIED


def test_immutable_fields_cannot_be_updated(orders, board):
    with pytest.raises(InvalidRequest):
        orders.update_fields(board["open"], {"total": Decimal("0.01")})
    with pytest.raises(InvalidRequest):
        orders.update_fields(board["open"], {})
