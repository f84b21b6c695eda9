"""
Inventory Valuation Aggregator — roll per-size FIFO valuations up to a company.

Runs the FIFO calculator for every size present in the stock snapshot and
rolls the results up to variant and product level. Each size is valued in
isolation: a failure while valuing one size is recorded on the result and
its siblings are still valued.

Provides:
- Size / variant / product valuation with weighted average cost and age
- Value and unit counts per age group (fresh / aging / old)
- Point-of-sale balances side by side (never changes the valuation)
- Inconsistency, unknown-cost and failure counters
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from stockpilot.analyzers.fifo import (
    AGING_DAYS,
    FRESH_DAYS,
    AgeGroup,
    FifoCalculator,
    FifoLayer,
    SizeValuation,
    classify_age,
    quantize,
)
from stockpilot.exceptions import ComputationError
from stockpilot.models.inventory import (
    DeliveryLine,
    SizeKey,
    StockObservation,
    StockSnapshot,
    natural_key,
)

logger = logging.getLogger("stockpilot.analyzers.valuation")


@dataclass(frozen=True)
class SizeError:
    """A size that could not be valued."""

    size_key: SizeKey
    product_number: str
    code: str
    message: str
    ean: str | None = None


@dataclass
class SizeResult:
    """Valuation of one size plus its snapshot context."""

    size_key: SizeKey
    size: str
    valuation: SizeValuation
    ean: str | None = None
    incoming_quantity: int = 0
    pos_quantity: int | None = None

    @property
    def size_number(self) -> str | None:
        return self.size_key.size_number

    @property
    def quantity(self) -> int:
        return self.valuation.current_quantity

    @property
    def valued_quantity(self) -> int:
        return self.valuation.layered_quantity

    @property
    def total_value(self) -> Decimal:
        return self.valuation.total_value

    @property
    def weighted_average_cost(self) -> Decimal:
        return self.valuation.weighted_average_cost

    @property
    def layers(self) -> list[FifoLayer]:
        return self.valuation.layers


class _Rollup(ABC):
    """Totals shared by variant and product level."""

    @property
    @abstractmethod
    def all_sizes(self) -> list[SizeResult]:
        ...

    @property
    def quantity(self) -> int:
        return sum(s.quantity for s in self.all_sizes)

    @property
    def valued_quantity(self) -> int:
        return sum(s.valued_quantity for s in self.all_sizes)

    @property
    def total_value(self) -> Decimal:
        return sum((s.total_value for s in self.all_sizes), Decimal("0.00"))

    @property
    def average_cost(self) -> Decimal:
        """Weighted average: total value / valued quantity."""
        qty = self.valued_quantity
        return quantize(self.total_value / qty) if qty else Decimal("0.00")

    @property
    def average_age_in_days(self) -> int:
        return _weighted_age(layer for s in self.all_sizes for layer in s.layers)

    @property
    def max_age_in_days(self) -> int:
        return max((s.valuation.max_age_in_days for s in self.all_sizes), default=0)

    @property
    def pos_quantity(self) -> int | None:
        known = [s.pos_quantity for s in self.all_sizes if s.pos_quantity is not None]
        return sum(known) if known else None

    @property
    def inconsistent_sizes(self) -> int:
        return sum(1 for s in self.all_sizes if s.valuation.inconsistent)


@dataclass
class VariantResult(_Rollup):
    variant_id: int
    variant_number: str
    variant_name: str
    sizes: list[SizeResult] = field(default_factory=list)

    @property
    def all_sizes(self) -> list[SizeResult]:
        return self.sizes


@dataclass
class ProductResult(_Rollup):
    product_number: str
    product_name: str
    variants: list[VariantResult] = field(default_factory=list)

    @property
    def all_sizes(self) -> list[SizeResult]:
        return [s for v in self.variants for s in v.sizes]


@dataclass
class ValuationSummary:
    """Company-level totals."""

    total_value: Decimal
    total_quantity: int
    valued_quantity: int
    average_cost: Decimal
    average_age_in_days: int
    value_by_age_group: dict[AgeGroup, Decimal]
    items_by_age_group: dict[AgeGroup, int]
    product_count: int
    variant_count: int
    size_count: int
    inconsistent_sizes: int
    unknown_cost_items: int
    failed_sizes: int
    pos_available: bool
    total_pos_quantity: int | None
    pos_only_items: int
    snapshot_date: date | None
    calculated_at: datetime


@dataclass
class ValuationResult:
    """Complete FIFO valuation of a company (or one product)."""

    products: list[ProductResult]
    summary: ValuationSummary
    errors: list[SizeError] = field(default_factory=list)
    fresh_days: int = FRESH_DAYS
    aging_days: int = AGING_DAYS

    @property
    def sizes(self) -> list[SizeResult]:
        return [s for p in self.products for s in p.all_sizes]

    def get_product(self, product_number: str) -> ProductResult | None:
        return next((p for p in self.products if p.product_number == product_number), None)

    def for_product(self, product_number: str) -> ValuationResult:
        """Narrow a company-wide result to one product."""
        products = [p for p in self.products if p.product_number == product_number]
        errors = [e for e in self.errors if e.product_number == product_number]
        summary = summarize(
            products,
            errors,
            pos_available=self.summary.pos_available,
            pos_only_items=0,
            snapshot_date=self.summary.snapshot_date,
            calculated_at=self.summary.calculated_at,
            fresh_days=self.fresh_days,
            aging_days=self.aging_days,
        )
        return replace(self, products=products, summary=summary, errors=errors)


def _weighted_age(layers: Iterable[FifoLayer]) -> int:
    qty = 0
    weighted = 0
    for layer in layers:
        qty += layer.remaining_quantity
        weighted += layer.age_in_days * layer.remaining_quantity
    return round(weighted / qty) if qty else 0


def summarize(
    products: Sequence[ProductResult],
    errors: Sequence[SizeError],
    *,
    pos_available: bool,
    pos_only_items: int,
    snapshot_date: date | None,
    calculated_at: datetime,
    fresh_days: int = FRESH_DAYS,
    aging_days: int = AGING_DAYS,
) -> ValuationSummary:
    """Build the company summary from valued products."""
    sizes = [s for p in products for s in p.all_sizes]
    layers = [layer for s in sizes for layer in s.layers]

    value_by_age = {group: Decimal("0.00") for group in AgeGroup}
    items_by_age = {group: 0 for group in AgeGroup}
    for layer in layers:
        group = classify_age(layer.age_in_days, fresh_days, aging_days)
        value_by_age[group] += layer.layer_value
        items_by_age[group] += layer.remaining_quantity
    value_by_age = {group: quantize(value) for group, value in value_by_age.items()}

    total_value = sum((s.total_value for s in sizes), Decimal("0.00"))
    valued_quantity = sum(s.valued_quantity for s in sizes)
    pos_quantities = [s.pos_quantity for s in sizes if s.pos_quantity is not None]

    return ValuationSummary(
        total_value=total_value,
        total_quantity=sum(s.quantity for s in sizes),
        valued_quantity=valued_quantity,
        average_cost=quantize(total_value / valued_quantity) if valued_quantity else Decimal("0.00"),
        average_age_in_days=_weighted_age(layers),
        value_by_age_group=value_by_age,
        items_by_age_group=items_by_age,
        product_count=len(products),
        variant_count=sum(len(p.variants) for p in products),
        size_count=len(sizes),
        inconsistent_sizes=sum(1 for s in sizes if s.valuation.inconsistent),
        unknown_cost_items=sum(s.valuation.unknown_cost_quantity for s in sizes),
        failed_sizes=len(errors),
        pos_available=pos_available,
        total_pos_quantity=sum(pos_quantities) if pos_available else None,
        pos_only_items=pos_only_items,
        snapshot_date=snapshot_date,
        calculated_at=calculated_at,
    )


class InventoryValuationAggregator:
    """Value a stock snapshot against the delivery ledger.

    Usage::

        aggregator = InventoryValuationAggregator()
        result = aggregator.aggregate(deliveries, snapshot, pos_balances)
        print(result.summary.total_value)
        for product in result.products:
            print(product.product_number, product.total_value, product.max_age_in_days)
    """

    def __init__(self, fresh_days: int = FRESH_DAYS, aging_days: int = AGING_DAYS) -> None:
        self.fresh_days = fresh_days
        self.aging_days = aging_days

    def aggregate(
        self,
        deliveries: Iterable[DeliveryLine],
        stock: StockSnapshot | Iterable[StockObservation],
        pos_balances: dict[str, int] | None = None,
        *,
        as_of: datetime | None = None,
        product_number: str | None = None,
    ) -> ValuationResult:
        """Value every size in ``stock``.

        ``pos_balances=None`` means no POS channel (or the fetch failed);
        an empty dict means the channel answered with no stock.
        """
        calculated_at = as_of or datetime.now(timezone.utc)
        calculator = FifoCalculator(self.fresh_days, self.aging_days, as_of=calculated_at)

        if isinstance(stock, StockSnapshot):
            snapshot_date = stock.as_of
            observations = list(stock.observations)
        else:
            observations = list(stock)
            snapshot_date = max((o.observed_at for o in observations), default=None)

        if product_number:
            observations = [o for o in observations if o.product_number == product_number]
            deliveries = [d for d in deliveries if d.product_number == product_number]

        deliveries_by_key = self._group_deliveries(deliveries)
        observation_by_key = self._latest_observations(observations)

        sizes_by_variant: dict[int, list[SizeResult]] = {}
        variant_obs: dict[int, StockObservation] = {}
        errors: list[SizeError] = []

        for key, obs in observation_by_key.items():
            try:
                valuation = calculator.calculate(
                    deliveries_by_key.get(key, []),
                    obs.physical_quantity,
                    size_key=key,
                )
            except ComputationError as e:
                logger.error("Failed to value %s size %s: %s", obs.product_number, key, e)
                errors.append(SizeError(key, obs.product_number, e.code, e.message, obs.ean))
                continue
            except Exception as e:
                logger.exception("Unexpected error valuing %s size %s", obs.product_number, key)
                errors.append(SizeError(key, obs.product_number, ComputationError.code, str(e), obs.ean))
                continue

            pos_quantity = None
            if pos_balances is not None and obs.ean:
                pos_quantity = pos_balances.get(obs.ean, 0)

            sizes_by_variant.setdefault(key.variant_id, []).append(SizeResult(
                size_key=key,
                size=obs.size_label,
                valuation=valuation,
                ean=obs.ean,
                incoming_quantity=obs.incoming_quantity,
                pos_quantity=pos_quantity,
            ))
            variant_obs.setdefault(key.variant_id, obs)

        products = self._build_products(sizes_by_variant, variant_obs)

        pos_only_items = 0
        if pos_balances is not None and not product_number:
            snapshot_eans = {o.ean for o in observations if o.ean}
            pos_only_items = sum(1 for ean in pos_balances if ean not in snapshot_eans)

        summary = summarize(
            products,
            errors,
            pos_available=pos_balances is not None,
            pos_only_items=pos_only_items,
            snapshot_date=snapshot_date,
            calculated_at=calculated_at,
            fresh_days=self.fresh_days,
            aging_days=self.aging_days,
        )

        if summary.inconsistent_sizes:
            logger.warning(
                "%d sizes hold more stock than was ever delivered (%d units without known cost)",
                summary.inconsistent_sizes,
                summary.unknown_cost_items,
            )
        logger.info(
            "Valued %d sizes across %d products: %s SEK (%d failed)",
            summary.size_count, summary.product_count, summary.total_value, summary.failed_sizes,
        )
        return ValuationResult(
            products=products,
            summary=summary,
            errors=errors,
            fresh_days=self.fresh_days,
            aging_days=self.aging_days,
        )

    @staticmethod
    def _group_deliveries(deliveries: Iterable[DeliveryLine]) -> dict[SizeKey, list[DeliveryLine]]:
        grouped: dict[SizeKey, list[DeliveryLine]] = {}
        for delivery in deliveries:
            grouped.setdefault(delivery.size_key, []).append(delivery)
        return grouped

    @staticmethod
    def _latest_observations(observations: Iterable[StockObservation]) -> dict[SizeKey, StockObservation]:
        """Latest observation per size; on equal dates the first one wins."""
        latest: dict[SizeKey, StockObservation] = {}
        for obs in observations:
            current = latest.get(obs.size_key)
            if current is None or obs.observed_at > current.observed_at:
                latest[obs.size_key] = obs
        return latest

    @staticmethod
    def _build_products(
        sizes_by_variant: dict[int, list[SizeResult]],
        variant_obs: dict[int, StockObservation],
    ) -> list[ProductResult]:
        products: dict[str, ProductResult] = {}
        for variant_id, sizes in sizes_by_variant.items():
            obs = variant_obs[variant_id]
            sizes.sort(key=lambda s: (natural_key(s.size), natural_key(s.size_number)))
            variant = VariantResult(
                variant_id=variant_id,
                variant_number=obs.variant_number,
                variant_name=obs.variant_name,
                sizes=sizes,
            )
            product = products.setdefault(
                obs.product_number,
                ProductResult(product_number=obs.product_number, product_name=obs.product_name),
            )
            product.variants.append(variant)

        for product in products.values():
            product.variants.sort(key=lambda v: (natural_key(v.variant_number), v.variant_id))
        return [products[number] for number in sorted(products)]


def aggregate_valuation(
    deliveries: Iterable[DeliveryLine],
    stock: StockSnapshot | Iterable[StockObservation],
    pos_balances: dict[str, int] | None = None,
    **kwargs: Any,
) -> ValuationResult:
    """Convenience function to value a snapshot."""
    return InventoryValuationAggregator().aggregate(deliveries, stock, pos_balances, **kwargs)
