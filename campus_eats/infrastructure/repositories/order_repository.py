import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, desc, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from campus_eats.core.error_classifier import normalize
from campus_eats.domain.errors import InvalidRequest
from campus_eats.domain.models import Order, Vendor
from campus_eats.domain.order_status import MUTABLE_FIELDS, OrderStatus
from campus_eats.infrastructure.database import SessionLocal
from campus_eats.interfaces.IOrderRepository import IOrderRepository, UpdateOutcome

logger = logging.getLogger(__name__)


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class SqlAlchemyOrderRepository(IOrderRepository):

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory

    def get_by_id(self, order_id: str) -> Optional[Order]:
        session = self.session_factory()
        try:
            return session.get(Order, order_id)
        except SQLAlchemyError as e:
            logger.error(f"❌ DB Read Error (order {order_id}): {e}")
            raise normalize(e) from e
        finally:
            session.close()

    def insert_many(self, orders: List[Order]) -> List[Order]:
        session = self.session_factory()
        ids = [o.id for o in orders]
        try:
            session.add_all(orders)
            session.commit()
            return orders
        except IntegrityError as e:
            session.rollback()
            # A retried insert whose first attempt actually landed
            existing = session.query(Order).filter(Order.id.in_(ids)).all()
            if len(existing) == len(ids):
                logger.info(f"⚠️ Orders {ids} already stored, treating insert as applied")
                by_id = {o.id: o for o in existing}
                return [by_id[i] for i in ids]
            logger.error(f"❌ DB Error inserting orders: {e}")
            raise normalize(e) from e
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"❌ DB Error inserting orders: {e}")
            raise normalize(e) from e
        finally:
            session.close()

    def update_fields(
        self,
        order_id: str,
        fields: Dict[str, Any],
        match: Optional[Dict[str, Any]] = None,
    ) -> UpdateOutcome:
        if not fields:
            raise InvalidRequest("Nothing to update")
        illegal = set(fields) - MUTABLE_FIELDS
        if illegal:
            raise InvalidRequest(f"Fields {sorted(illegal)} cannot be changed after an order is placed")

        values = {getattr(Order, name): _plain(value) for name, value in fields.items()}
        session = self.session_factory()
        try:
            query = session.query(Order).filter(Order.id == order_id)
            for column, expected in (match or {}).items():
                query = query.filter(self._predicate(column, expected))

            # Single conditional UPDATE: the predicate is re-checked by the store
            rows = query.update(values, synchronize_session=False)
            if rows == 1:
                session.commit()
                return UpdateOutcome.APPLIED

            exists = session.query(Order.id).filter(Order.id == order_id).first() is not None
            session.rollback()
            return UpdateOutcome.PRECONDITION_FAILED if exists else UpdateOutcome.NOT_FOUND
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"❌ DB Error updating order {order_id}: {e}")
            raise normalize(e) from e
        finally:
            session.close()

    def list_for_buyer(self, buyer_id: str) -> List[Order]:
        return self._list(Order.buyer_id == buyer_id)

    def list_for_vendor_user(self, user_id: str) -> List[Order]:
        session = self.session_factory()
        try:
            vendor = session.query(Vendor).filter(Vendor.user_id == user_id).first()
            if vendor is None:
                return []
            return (
                session.query(Order)
                .filter(Order.vendor_id == vendor.id)
                .order_by(desc(Order.created_at))
                .all()
            )
        except SQLAlchemyError as e:
            logger.error(f"❌ DB Read Error (vendor orders for {user_id}): {e}")
            raise normalize(e) from e
        finally:
            session.close()

    def list_for_runner(self, runner_id: str) -> List[Order]:
        """Open pending orders plus everything this runner has claimed, in one query."""
        return self._list(
            or_(
                and_(Order.status == OrderStatus.PENDING.value, Order.runner_id.is_(None)),
                Order.runner_id == runner_id,
            )
        )

    def _list(self, criterion) -> List[Order]:
        """
        Retrieves matching orders.
        Ordered by created_at DESC (Newest first).
        """
        session = self.session_factory()
        try:
            return session.query(Order).filter(criterion).order_by(desc(Order.created_at)).all()
        except SQLAlchemyError as e:
            logger.error(f"❌ DB Read Error: {e}")
            raise normalize(e) from e
        finally:
            session.close()

    @staticmethod
    def _predicate(column: str, expected: Any):
        attr = getattr(Order, column, None)
        if attr is None or column not in Order.__table__.columns:
            raise InvalidRequest(f"Unknown order field '{column}'")
        if expected is None:
            return attr.is_(None)
        if isinstance(expected, (list, tuple, set, frozenset)):
            return attr.in_([_plain(v) for v in expected])
        return attr == _plain(expected)
