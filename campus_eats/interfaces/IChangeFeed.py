import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Optional

ORDERS_TABLE = "orders"
NOTIFICATIONS_TABLE = "notifications"


@dataclass(frozen=True)
class ChangeFilter:
    """Single server-side equality predicate, e.g. ``buyer_id = <id>``."""
    column: str
    value: Any

    def matches(self, record: Dict[str, Any]) -> bool:
        return record.get(self.column) == self.value


@dataclass
class ChangeEvent:
    table: str
    op: str  # INSERT | UPDATE
    record: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def for_order(cls, order, op: str = "UPDATE", changes: Optional[Dict[str, Any]] = None) -> "ChangeEvent":
        record = order.to_dict() if hasattr(order, "to_dict") else dict(order)
        record.update(changes or {})
        return cls(table=ORDERS_TABLE, op=op, record=record)

    def to_json(self) -> str:
        return json.dumps({"table": self.table, "op": self.op, "record": self.record}, default=str)

    @classmethod
    def from_json(cls, raw: str) -> "ChangeEvent":
        data = json.loads(raw)
        return cls(table=data["table"], op=data["op"], record=data.get("record") or {})


class Subscription(ABC):
    """Async iterator of change events. ``close`` ends iteration."""

    def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        return self

    @abstractmethod
    async def __anext__(self) -> ChangeEvent:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


class IChangeFeed(ABC):
    @abstractmethod
    async def publish(self, event: ChangeEvent) -> None:
        pass

    @abstractmethod
    async def subscribe(self, table: str, change_filter: Optional[ChangeFilter] = None) -> Subscription:
        pass

    async def close(self) -> None:
        pass
