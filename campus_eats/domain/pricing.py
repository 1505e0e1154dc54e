from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Round half-up to cents. Floats go through ``str`` so 2.99 stays 2.99."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class LineItem:
    menu_item_id: str
    name: str
    unit_price: Decimal
    quantity: int

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    def to_json(self) -> dict:
        return {
            "menu_item_id": self.menu_item_id,
            "name": self.name,
            "unit_price": str(self.unit_price),
            "quantity": self.quantity,
        }

    @classmethod
    def from_json(cls, data: dict) -> "LineItem":
        return cls(
            menu_item_id=data["menu_item_id"],
            name=data.get("name", ""),
            unit_price=to_money(data["unit_price"]),
            quantity=int(data["quantity"]),
        )


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    tax: Decimal
    delivery_fee: Decimal
    total: Decimal


def subtotal_of(items: Iterable[LineItem]) -> Decimal:
    return to_money(sum((item.line_total for item in items), Decimal("0")))


def compute_totals(items: List[LineItem], tax_rate, delivery_fee) -> OrderTotals:
    subtotal = subtotal_of(items)
    tax = to_money(subtotal * Decimal(str(tax_rate)))
    fee = to_money(delivery_fee)
    return OrderTotals(subtotal=subtotal, tax=tax, delivery_fee=fee, total=subtotal + tax + fee)
