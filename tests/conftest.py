"""Shared fixtures for StockPilot tests."""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from stockpilot.config import CompanyConfig, PosConfig
from stockpilot.models.inventory import DeliveryLine, StockObservation

AS_OF = datetime(2024, 6, 1, tzinfo=timezone.utc)


def make_delivery(
    id="d1",
    created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    quantity=10,
    unit_cost="50",
    product_number="P100",
    variant_id=1,
    size_number="42",
    ean="7350000000017",
    **extra,
) -> DeliveryLine:
    return DeliveryLine(
        id=id,
        created_at=created_at,
        product_number=product_number,
        product_name=extra.pop("product_name", "Trail Boot"),
        variant_id=variant_id,
        variant_number=extra.pop("variant_number", f"V{variant_id}"),
        variant_name=extra.pop("variant_name", f"Variant {variant_id}"),
        size_number=size_number,
        ean=ean,
        quantity=quantity,
        unit_cost=Decimal(unit_cost),
        **extra,
    )


def make_observation(
    physical_quantity=5,
    product_number="P100",
    variant_id=1,
    size_number="42",
    ean="7350000000017",
    observed_at=date(2024, 6, 1),
    **extra,
) -> StockObservation:
    return StockObservation(
        product_number=product_number,
        product_name=extra.pop("product_name", "Trail Boot"),
        variant_id=variant_id,
        variant_number=extra.pop("variant_number", f"V{variant_id}"),
        variant_name=extra.pop("variant_name", f"Variant {variant_id}"),
        size=extra.pop("size", size_number or ""),
        size_number=size_number,
        ean=ean,
        physical_quantity=physical_quantity,
        observed_at=observed_at,
        **extra,
    )


@pytest.fixture
def varg():
    """Company without a POS channel."""
    return CompanyConfig(
        id="varg",
        name="Varg",
        stock_index_prefix="varg_stock",
        delivery_index="varg_purchase_deliveries",
    )


@pytest.fixture
def sneaky():
    """Company with a Zettle POS channel."""
    return CompanyConfig(
        id="sneaky-steve",
        name="Sneaky Steve",
        stock_index_prefix="sneaky_stock",
        delivery_index="sneaky_purchase_deliveries",
        pos=PosConfig(type="zettle", env_prefix="SNEAKY_ZETTLE"),
    )
