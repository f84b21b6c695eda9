"""
FIFO Layer Calculator — value one size from its delivery history.

Given every purchase-order delivery for one (variant, size) and the quantity
currently on hand, work out how much was sold, consume that amount from the
oldest deliveries first, and keep what remains as cost layers.

Provides:
- Remaining FIFO layers with their original landed unit cost
- Valuation and weighted average cost
- Oldest/newest remaining layer date and quantity-weighted age
- Age classification (fresh / aging / old)
- Inconsistency detection when more stock is observed than was ever delivered
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from stockpilot.exceptions import ComputationError
from stockpilot.models.inventory import DeliveryLine, SizeKey

logger = logging.getLogger("stockpilot.analyzers.fifo")

CENT = Decimal("0.01")

# Age thresholds in days (~6 and ~18 months)
FRESH_DAYS = 183
AGING_DAYS = 547


def quantize(amount: Decimal) -> Decimal:
    """Round a SEK amount to öre."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


class AgeGroup(str, Enum):
    """Inventory age classification."""

    FRESH = "fresh"  # < 6 months
    AGING = "aging"  # 6-18 months
    OLD = "old"  # > 18 months


def classify_age(
    age_in_days: int,
    fresh_days: int = FRESH_DAYS,
    aging_days: int = AGING_DAYS,
) -> AgeGroup:
    """Bucket an age in days into an ``AgeGroup``."""
    if age_in_days < fresh_days:
        return AgeGroup.FRESH
    if age_in_days <= aging_days:
        return AgeGroup.AGING
    return AgeGroup.OLD


@dataclass(frozen=True)
class FifoLayer:
    """Unconsumed remainder of one delivery."""

    delivery_id: str
    layer_date: datetime
    unit_cost: Decimal
    delivered_quantity: int
    remaining_quantity: int
    age_in_days: int
    purchase_order_id: str | None = None
    supplier_name: str | None = None

    @property
    def layer_value(self) -> Decimal:
        return self.unit_cost * self.remaining_quantity


@dataclass
class SizeValuation:
    """FIFO valuation of a single size."""

    current_quantity: int
    total_delivered: int
    sold_quantity: int
    layers: list[FifoLayer] = field(default_factory=list)
    size_key: SizeKey | None = None
    unknown_cost_quantity: int = 0
    inconsistent: bool = False

    @property
    def layered_quantity(self) -> int:
        return sum(layer.remaining_quantity for layer in self.layers)

    @property
    def total_value(self) -> Decimal:
        return quantize(sum((layer.layer_value for layer in self.layers), Decimal("0")))

    @property
    def weighted_average_cost(self) -> Decimal:
        qty = self.layered_quantity
        if qty == 0:
            return Decimal("0.00")
        raw = sum((layer.layer_value for layer in self.layers), Decimal("0"))
        return quantize(raw / qty)

    @property
    def oldest_remaining_date(self) -> datetime | None:
        """Date of the earliest delivery that is not fully consumed."""
        return self.layers[0].layer_date if self.layers else None

    @property
    def newest_remaining_date(self) -> datetime | None:
        return self.layers[-1].layer_date if self.layers else None

    @property
    def average_age_in_days(self) -> int:
        qty = self.layered_quantity
        if qty == 0:
            return 0
        weighted = sum(layer.age_in_days * layer.remaining_quantity for layer in self.layers)
        return round(weighted / qty)

    @property
    def max_age_in_days(self) -> int:
        return self.layers[0].age_in_days if self.layers else 0


def _age_in_days(as_of: datetime, when: datetime) -> int:
    return max(0, (as_of - when).days)


def calculate_size_valuation(
    deliveries: Iterable[DeliveryLine],
    current_quantity: int,
    *,
    size_key: SizeKey | None = None,
    as_of: datetime | None = None,
) -> SizeValuation:
    """Reconstruct remaining FIFO layers for one size.

    Deliveries are re-sorted by ``(created_at, id)``; source order is never
    trusted. The result depends only on the arguments, so two calls with the
    same inputs and ``as_of`` produce equal valuations.

    Raises:
        ComputationError: A delivery has a non-positive quantity or negative
            cost, the observed quantity is negative, or the deliveries span
            more than one size.
    """
    as_of = as_of or datetime.now(timezone.utc)
    if as_of.tzinfo is None:
        as_of = as_of.replace(tzinfo=timezone.utc)

    ordered = sorted(deliveries, key=lambda d: d.fifo_order)

    if current_quantity < 0:
        raise ComputationError(
            f"Negative stock quantity {current_quantity} for size {size_key}",
            size_key=size_key,
        )
    for delivery in ordered:
        if delivery.quantity <= 0:
            raise ComputationError(
                f"Delivery {delivery.id} has non-positive quantity {delivery.quantity}",
                size_key=size_key or delivery.size_key,
            )
        if delivery.unit_cost < 0:
            raise ComputationError(
                f"Delivery {delivery.id} has negative unit cost {delivery.unit_cost}",
                size_key=size_key or delivery.size_key,
            )
        if size_key is not None and delivery.size_key != size_key:
            raise ComputationError(
                f"Delivery {delivery.id} belongs to size {delivery.size_key}, not {size_key}",
                size_key=size_key,
            )

    total_delivered = sum(d.quantity for d in ordered)
    sold = max(0, total_delivered - current_quantity)

    # Consume sold units from the oldest deliveries first
    remaining_to_consume = sold
    layers: list[FifoLayer] = []
    for delivery in ordered:
        consumed = min(remaining_to_consume, delivery.quantity)
        remaining_to_consume -= consumed
        remainder = delivery.quantity - consumed
        if remainder > 0:
            layers.append(FifoLayer(
                delivery_id=delivery.id,
                layer_date=delivery.created_at,
                unit_cost=delivery.unit_cost,
                delivered_quantity=delivery.quantity,
                remaining_quantity=remainder,
                age_in_days=_age_in_days(as_of, delivery.created_at),
                purchase_order_id=delivery.purchase_order_id,
                supplier_name=delivery.supplier_name,
            ))

    inconsistent = current_quantity > total_delivered
    if inconsistent:
        logger.warning(
            "Size %s: observed %d but only %d delivered",
            size_key, current_quantity, total_delivered,
        )

    return SizeValuation(
        current_quantity=current_quantity,
        total_delivered=total_delivered,
        sold_quantity=sold,
        layers=layers,
        size_key=size_key,
        unknown_cost_quantity=max(0, current_quantity - total_delivered),
        inconsistent=inconsistent,
    )


class FifoCalculator:
    """FIFO calculator bound to one valuation run.

    Usage::

        calculator = FifoCalculator(as_of=datetime(2025, 1, 1, tzinfo=timezone.utc))
        valuation = calculator.calculate(deliveries, current_quantity=5)
        print(valuation.total_value, valuation.oldest_remaining_date)

    Fixing ``as_of`` for the whole run keeps layer ages consistent across sizes.
    """

    def __init__(
        self,
        fresh_days: int = FRESH_DAYS,
        aging_days: int = AGING_DAYS,
        as_of: datetime | None = None,
    ) -> None:
        self.fresh_days = fresh_days
        self.aging_days = aging_days
        self.as_of = as_of or datetime.now(timezone.utc)

    def calculate(
        self,
        deliveries: Iterable[DeliveryLine],
        current_quantity: int,
        size_key: SizeKey | None = None,
    ) -> SizeValuation:
        return calculate_size_valuation(
            deliveries,
            current_quantity,
            size_key=size_key,
            as_of=self.as_of,
        )

    def classify_age(self, age_in_days: int) -> AgeGroup:
        return classify_age(age_in_days, self.fresh_days, self.aging_days)
