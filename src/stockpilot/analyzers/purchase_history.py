"""
Purchase History — every delivery of a product, per variant and size.

Unlike the FIFO valuation this keeps fully consumed deliveries: it answers
"what did we buy, when, from whom and at what cost" next to what is on hand
today.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from stockpilot.exceptions import InputValidationError
from stockpilot.models.inventory import (
    DeliveryLine,
    SizeKey,
    StockObservation,
    StockSnapshot,
    natural_key,
)

logger = logging.getLogger("stockpilot.analyzers.purchase_history")


@dataclass(frozen=True)
class DeliveryRecord:
    date: datetime
    quantity: int
    unit_cost: Decimal
    supplier_name: str | None = None
    purchase_order_id: str | None = None
    delivery_id: str | None = None


@dataclass
class SizePurchaseHistory:
    size: str
    size_number: str | None
    current_stock: int = 0
    deliveries: list[DeliveryRecord] = field(default_factory=list)  # Newest first

    @property
    def total_quantity_purchased(self) -> int:
        return sum(d.quantity for d in self.deliveries)

    @property
    def first_purchase_date(self) -> datetime | None:
        return min((d.date for d in self.deliveries), default=None)


@dataclass
class VariantPurchaseHistory:
    variant_id: int
    variant_number: str
    variant_name: str
    sizes: list[SizePurchaseHistory] = field(default_factory=list)

    @property
    def current_stock(self) -> int:
        return sum(s.current_stock for s in self.sizes)

    @property
    def total_quantity_purchased(self) -> int:
        return sum(s.total_quantity_purchased for s in self.sizes)

    @property
    def first_purchase_date(self) -> datetime | None:
        return min((s.first_purchase_date for s in self.sizes if s.first_purchase_date), default=None)


@dataclass
class ProductPurchaseHistory:
    product_number: str
    product_name: str
    current_stock: int = 0
    variants: list[VariantPurchaseHistory] = field(default_factory=list)

    @property
    def total_quantity_purchased(self) -> int:
        return sum(v.total_quantity_purchased for v in self.variants)

    @property
    def first_purchase_date(self) -> datetime | None:
        return min((v.first_purchase_date for v in self.variants if v.first_purchase_date), default=None)


class PurchaseHistoryAggregator:
    """Group a product's deliveries by variant and size.

    Usage::

        history = PurchaseHistoryAggregator().build("P100", deliveries, snapshot)
        for variant in history.variants:
            for size in variant.sizes:
                print(size.size, size.total_quantity_purchased, size.current_stock)
    """

    def build(
        self,
        product_number: str,
        deliveries: Iterable[DeliveryLine],
        stock: StockSnapshot | Iterable[StockObservation],
    ) -> ProductPurchaseHistory:
        if not product_number or not product_number.strip():
            raise InputValidationError("productNumber parameter is required", field="product_number")

        observations = stock.observations if isinstance(stock, StockSnapshot) else list(stock)
        product_obs = [o for o in observations if o.product_number == product_number]
        product_deliveries = [d for d in deliveries if d.product_number == product_number]

        stock_by_key: dict[SizeKey, int] = {}
        label_by_key: dict[SizeKey, str] = {}
        for obs in product_obs:
            stock_by_key[obs.size_key] = stock_by_key.get(obs.size_key, 0) + obs.physical_quantity
            if obs.size:
                label_by_key[obs.size_key] = obs.size

        # Newest first; id breaks ties so the order is stable
        product_deliveries.sort(key=lambda d: d.fifo_order, reverse=True)

        variants: dict[int, VariantPurchaseHistory] = {}
        sizes: dict[SizeKey, SizePurchaseHistory] = {}
        product_name = ""
        for delivery in product_deliveries:
            product_name = product_name or delivery.product_name
            variant = variants.setdefault(delivery.variant_id, VariantPurchaseHistory(
                variant_id=delivery.variant_id,
                variant_number=delivery.variant_number,
                variant_name=delivery.variant_name,
            ))

            key = delivery.size_key
            size = sizes.get(key)
            if size is None:
                size = sizes[key] = SizePurchaseHistory(
                    size=label_by_key.get(key) or key.size_number or "",
                    size_number=key.size_number,
                    current_stock=stock_by_key.get(key, 0),
                )
                variant.sizes.append(size)

            size.deliveries.append(DeliveryRecord(
                date=delivery.created_at,
                quantity=delivery.quantity,
                unit_cost=delivery.unit_cost,
                supplier_name=delivery.supplier_name,
                purchase_order_id=delivery.purchase_order_id,
                delivery_id=delivery.id,
            ))

        for variant in variants.values():
            variant.sizes.sort(key=lambda s: (natural_key(s.size), natural_key(s.size_number)))

        if not product_name and product_obs:
            product_name = product_obs[0].product_name

        history = ProductPurchaseHistory(
            product_number=product_number,
            product_name=product_name,
            current_stock=sum(o.physical_quantity for o in product_obs),
            variants=sorted(
                variants.values(), key=lambda v: (natural_key(v.variant_number), v.variant_id)
            ),
        )
        logger.info(
            "Purchase history for %s: %d deliveries across %d variants",
            product_number, len(product_deliveries), len(history.variants),
        )
        return history
