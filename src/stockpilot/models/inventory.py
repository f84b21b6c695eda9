"""
Inventory data models — deliveries, stock observations, external rows.

These are the read-only inputs the valuation engine consumes. Connectors
produce them; analyzers never mutate them.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_NUMBER_RE = re.compile(r"(\d+(?:[.,]\d+)?)")


def normalize_size_number(value: Any) -> str | None:
    """Map null, empty and whitespace-only size numbers to ``None``."""
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() == "null":
        return None
    return text


def natural_key(label: str | None) -> tuple[Any, ...]:
    """Sort key that orders ``"9" < "10"`` and ``"EU 38" < "EU 40"``.

    Numeric chunks compare as numbers, everything else case-insensitively.
    """
    parts: list[Any] = []
    for chunk in _NUMBER_RE.split(label or ""):
        if not chunk:
            continue
        if _NUMBER_RE.fullmatch(chunk):
            parts.append((0, float(chunk.replace(",", ".")), ""))
        else:
            parts.append((1, 0.0, chunk.lower()))
    return tuple(parts)


@dataclass(frozen=True)
class SizeKey:
    """Join key between deliveries and stock observations."""

    variant_id: int
    size_number: str | None = None

    @classmethod
    def of(cls, variant_id: int, size_number: Any = None) -> SizeKey:
        return cls(int(variant_id), normalize_size_number(size_number))

    def __str__(self) -> str:
        return f"{self.variant_id}/{self.size_number or '-'}"


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class DeliveryLine(BaseModel):
    """One purchase-order delivery line. Immutable."""

    model_config = ConfigDict(frozen=True)

    id: str
    created_at: datetime
    product_number: str
    product_name: str = ""
    variant_id: int
    variant_number: str = ""
    variant_name: str = ""
    size_number: str | None = None
    ean: str | None = None
    quantity: int
    unit_cost: Decimal = Field(description="Landed unit cost in SEK")
    supplier_name: str | None = None
    purchase_order_id: str | None = None

    @field_validator("id", "purchase_order_id", mode="before")
    @classmethod
    def _coerce_str(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @field_validator("size_number", "ean", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> str | None:
        return normalize_size_number(value)

    @field_validator("created_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @property
    def size_key(self) -> SizeKey:
        return SizeKey.of(self.variant_id, self.size_number)

    @property
    def fifo_order(self) -> tuple[datetime, str]:
        """Total order used for FIFO consumption."""
        return (self.created_at, self.id)

    @property
    def total_cost(self) -> Decimal:
        return self.unit_cost * self.quantity


class StockObservation(BaseModel):
    """Physical quantity of one size on one date."""

    model_config = ConfigDict(frozen=True)

    product_number: str
    product_name: str = ""
    variant_id: int
    variant_number: str = ""
    variant_name: str = ""
    size: str = ""
    size_number: str | None = None
    ean: str | None = None
    physical_quantity: int = 0
    incoming_quantity: int = 0
    observed_at: date

    @field_validator("size_number", "ean", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> str | None:
        return normalize_size_number(value)

    @field_validator("size", "variant_number", "variant_name", "product_name", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("observed_at", mode="before")
    @classmethod
    def _date_only(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, str) and len(value) > 10:
            return value[:10]
        return value

    @property
    def size_key(self) -> SizeKey:
        return SizeKey.of(self.variant_id, self.size_number)

    @property
    def size_label(self) -> str:
        return self.size or self.size_number or ""


class StockSnapshot(BaseModel):
    """All observations for a company on its latest (or requested) date."""

    observations: list[StockObservation] = Field(default_factory=list)
    as_of: date | None = None
    source: str = "unknown"

    def for_product(self, product_number: str) -> list[StockObservation]:
        return [o for o in self.observations if o.product_number == product_number]


class ExternalStockRow(BaseModel):
    """One row of a ground-truth warehouse extract."""

    sku: str = ""
    product: str = ""
    variant: str = ""
    size: str = ""
    ean: str | None = None
    quantity: int = 0
    unit_cost: Decimal = Decimal("0")
    value: Decimal | None = Field(default=None, description="Total cost of goods (COG)")
    row_number: int | None = None

    @field_validator("ean", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> str | None:
        return normalize_size_number(value)

    @model_validator(mode="after")
    def _default_value(self) -> ExternalStockRow:
        if self.value is None:
            self.value = self.unit_cost * self.quantity
        return self

    @property
    def total_value(self) -> Decimal:
        return self.value if self.value is not None else self.unit_cost * self.quantity
