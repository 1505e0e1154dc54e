from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional

from campus_eats.domain.models import Order
from campus_eats.domain.order_status import Role


class UpdateOutcome(str, Enum):
    APPLIED = "applied"
    PRECONDITION_FAILED = "precondition_failed"
    NOT_FOUND = "not_found"


class IOrderRepository(ABC):
    @abstractmethod
    def get_by_id(self, order_id: str) -> Optional[Order]:
        pass

    def insert(self, order: Order) -> Order:
        return self.insert_many([order])[0]

    @abstractmethod
    def insert_many(self, orders: List[Order]) -> List[Order]:
        """Insert all orders in one transaction. Re-inserting the same ids is a no-op."""
        pass

    @abstractmethod
    def update_fields(
        self,
        order_id: str,
        fields: Dict[str, Any],
        match: Optional[Dict[str, Any]] = None,
    ) -> UpdateOutcome:
        """Conditional narrow update: ``WHERE id = :id AND <match>``."""
        pass

    @abstractmethod
    def list_for_buyer(self, buyer_id: str) -> List[Order]:
        pass

    @abstractmethod
    def list_for_vendor_user(self, user_id: str) -> List[Order]:
        pass

    @abstractmethod
    def list_for_runner(self, runner_id: str) -> List[Order]:
        pass

    def list_for_role(self, role: Role, user_id: str) -> List[Order]:
        role = Role(role)
        if role == Role.BUYER:
            return self.list_for_buyer(user_id)
        if role == Role.VENDOR:
            return self.list_for_vendor_user(user_id)
        return self.list_for_runner(user_id)
