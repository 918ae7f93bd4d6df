"""
Cart snapshot consumed by checkout.
"""
from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from ordering.domain.pricing import PriceType


@dataclass(frozen=True)
class CartLine:
    catalog_item_id: UUID
    quantity: int
    price_type: PriceType = PriceType.STANDARD
    id: UUID | None = None


@dataclass(frozen=True)
class CartSnapshot:
    """Lines of one customer's cart at a point in time."""
    customer_id: UUID
    lines: tuple[CartLine, ...]

    @property
    def is_empty(self) -> bool:
        return not self.lines
