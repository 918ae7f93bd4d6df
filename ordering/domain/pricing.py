"""
Unit price resolution from quantity-break tiers.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from uuid import UUID

from ordering.domain.errors import BelowMinimumQuantity, ValidationError


class PriceType(str, Enum):
    """Which list price applies when no tier matches."""
    STANDARD = "standard"
    WHOLESALE = "wholesale"


@dataclass(frozen=True)
class PriceTier:
    """Quantity-break price: applies from ``minimum_quantity`` units upward."""
    minimum_quantity: int
    price: Decimal


@dataclass(frozen=True)
class CatalogItem:
    """Pricing view of a catalog item, as returned by the catalog."""
    id: UUID
    name: str
    base_price: Decimal
    wholesale_price: Decimal | None = None
    minimum_order_quantity: int = 1
    price_tiers: tuple[PriceTier, ...] = field(default_factory=tuple)


def resolve_unit_price(
    item: CatalogItem,
    requested_qty: int,
    price_type: PriceType = PriceType.STANDARD,
) -> Decimal:
    """
    Resolve the unit price for ``requested_qty`` units of ``item``.

    Tiers are evaluated by minimum quantity descending and the first one not
    exceeding the requested quantity wins. Tiers sharing a minimum quantity
    are ordered by price descending, so the highest price wins the tie.
    Without a qualifying tier the base price applies, or the wholesale price
    for wholesale lines when the item has one.
    """
    if requested_qty <= 0:
        raise ValidationError("Quantity must be positive")
    if requested_qty < item.minimum_order_quantity:
        raise BelowMinimumQuantity(item.name, item.minimum_order_quantity, requested_qty)

    tiers = sorted(
        item.price_tiers,
        key=lambda tier: (tier.minimum_quantity, tier.price),
        reverse=True,
    )
    for tier in tiers:
        if tier.minimum_quantity <= requested_qty:
            return tier.price

    if price_type == PriceType.WHOLESALE and item.wholesale_price is not None:
        return item.wholesale_price
    return item.base_price
