"""
Valuation Reconciliation — compare the FIFO valuation with a warehouse extract.

Joins the internally derived valuation against an independently produced
ground-truth stock export by EAN and classifies every difference so the
largest discrepancies can be audited first.
"""

from __future__ import annotations

import io
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

import pandas as pd

from stockpilot.analyzers.fifo import quantize
from stockpilot.analyzers.valuation import SizeError, ValuationResult
from stockpilot.models.inventory import ExternalStockRow

logger = logging.getLogger("stockpilot.analyzers.reconciliation")

ZERO = Decimal("0.00")

# Leading report columns mirror the extract so the report parses as one
REPORT_COLUMNS = [
    "EAN",
    "SKU",
    "Product",
    "Variant",
    "Size",
    "Quantity",
    "COG",
    "CostPrice",
    "Internal Quantity",
    "Internal Value",
    "Internal Avg Cost",
    "Qty Delta",
    "Value Delta",
    "Value Delta %",
    "Reason",
    "Partition",
]


class Partition(str, Enum):
    """Which side(s) of the join a row came from."""

    MATCHED = "matched"
    INTERNAL_ONLY = "internal_only"
    EXTERNAL_ONLY = "external_only"
    INTERNAL_FAILED = "internal_failed"


class DiscrepancyReason(str, Enum):
    """Heuristic cause of a difference."""

    NO_DISCREPANCY = "no_discrepancy"
    QUANTITY_MISMATCH = "quantity_mismatch"  # Units differ
    COST_MISMATCH = "cost_mismatch"  # Same units, different value
    INTERNAL_ONLY = "internal_only"
    EXTERNAL_ONLY = "external_only"
    INTERNAL_FAILED = "internal_failed"  # Size could not be valued


@dataclass
class ReconciliationRow:
    """One EAN compared across both systems."""

    ean: str
    sku: str
    product: str
    variant: str
    size: str
    partition: Partition
    classified_reason: DiscrepancyReason
    internal_qty: int = 0
    internal_value: Decimal = ZERO
    internal_avg_cost: Decimal = ZERO
    external_qty: int = 0
    external_value: Decimal = ZERO
    external_unit_cost: Decimal = ZERO
    qty_delta: int = 0
    value_delta: Decimal = ZERO
    value_delta_percent: Decimal = ZERO
    in_extract: bool = True

    @property
    def has_discrepancy(self) -> bool:
        return self.classified_reason != DiscrepancyReason.NO_DISCREPANCY


@dataclass
class ComparisonSummary:
    """Totals per partition plus matched deltas."""

    matched_count: int = 0
    internal_only_count: int = 0
    external_only_count: int = 0
    internal_failed_count: int = 0
    external_rows_without_ean: int = 0
    failed_sizes: int = 0

    total_internal_value: Decimal = ZERO  # Full valuation, not only matched
    total_internal_quantity: int = 0
    total_external_value: Decimal = ZERO

    matched_internal_value: Decimal = ZERO
    matched_external_value: Decimal = ZERO
    matched_value_delta: Decimal = ZERO
    matched_value_delta_percent: Decimal = ZERO

    internal_only_value: Decimal = ZERO
    external_only_value: Decimal = ZERO

    rows_with_qty_diff: int = 0
    rows_with_value_diff: int = 0  # Beyond the significance threshold


@dataclass
class ComparisonResult:
    """Reconciliation rows, largest absolute value delta first."""

    rows: list[ReconciliationRow] = field(default_factory=list)
    summary: ComparisonSummary = field(default_factory=ComparisonSummary)
    company: str | None = None
    comparison_date: date | None = None
    errors: list[SizeError] = field(default_factory=list)

    def _partition(self, partition: Partition) -> list[ReconciliationRow]:
        return [r for r in self.rows if r.partition == partition]

    @property
    def matched(self) -> list[ReconciliationRow]:
        return self._partition(Partition.MATCHED)

    @property
    def internal_only(self) -> list[ReconciliationRow]:
        return self._partition(Partition.INTERNAL_ONLY)

    @property
    def external_only(self) -> list[ReconciliationRow]:
        return self._partition(Partition.EXTERNAL_ONLY)

    @property
    def internal_failed(self) -> list[ReconciliationRow]:
        return self._partition(Partition.INTERNAL_FAILED)

    @property
    def discrepancies(self) -> list[ReconciliationRow]:
        return [r for r in self.rows if r.has_discrepancy]


@dataclass
class _Side:
    """Quantity and value of one EAN on one side of the join."""

    sku: str
    product: str
    variant: str
    size: str
    quantity: int = 0
    valued_quantity: int = 0
    value: Decimal = ZERO
    unit_cost: Decimal = ZERO


def _percent(delta: Decimal, base: Decimal) -> Decimal:
    if base == 0:
        return ZERO
    return quantize(delta / base * 100)


class ReconciliationComparator:
    """Compare a FIFO valuation with external stock rows.

    Usage::

        comparator = ReconciliationComparator()
        result = comparator.compare(valuation, parse_extract(csv_text))
        for row in result.rows[:10]:
            print(row.ean, row.value_delta, row.classified_reason.value)

    Matching is by EAN. Rows without an EAN cannot be matched and are only
    counted. Duplicate external EANs are summed. EANs whose size failed
    valuation are reported as ``internal_failed`` with unknown internal side.
    """

    def __init__(
        self,
        value_tolerance: float = 0.0,
        significant_diff_percent: float = 1.0,
    ) -> None:
        self.value_tolerance = Decimal(str(value_tolerance))
        self.significant_diff_percent = Decimal(str(significant_diff_percent))

    def compare(
        self,
        valuation: ValuationResult,
        external_rows: Iterable[ExternalStockRow],
        *,
        company: str | None = None,
        comparison_date: date | None = None,
    ) -> ComparisonResult:
        internal = self._internal_sides(valuation)
        external, without_ean = self._external_sides(external_rows)
        failed = {e.ean: e for e in valuation.errors if e.ean and e.ean not in internal}

        rows: list[ReconciliationRow] = []
        for ean in sorted(internal.keys() | external.keys() | failed.keys()):
            if ean in failed:
                rows.append(self._failed_row(failed[ean], external.get(ean)))
            else:
                rows.append(self._compare_ean(ean, internal.get(ean), external.get(ean)))
        rows.sort(key=lambda r: (-abs(r.value_delta), r.ean))

        summary = self._summarize(rows, valuation, without_ean)
        logger.info(
            "Compared %d EANs: %d matched, %d internal only, %d external only (delta %s SEK)",
            len(rows),
            summary.matched_count,
            summary.internal_only_count,
            summary.external_only_count,
            summary.matched_value_delta,
        )
        if without_ean:
            logger.warning("%d external rows have no EAN and were not compared", without_ean)
        if summary.failed_sizes:
            logger.warning(
                "%d sizes failed valuation (%d EANs not compared)",
                summary.failed_sizes,
                summary.internal_failed_count,
            )

        return ComparisonResult(
            rows=rows,
            summary=summary,
            company=company,
            comparison_date=comparison_date,
            errors=list(valuation.errors),
        )

    def _internal_sides(self, valuation: ValuationResult) -> dict[str, _Side]:
        sides: dict[str, _Side] = {}
        for product in valuation.products:
            for variant in product.variants:
                for size in variant.sizes:
                    if not size.ean:
                        continue
                    side = sides.setdefault(size.ean, _Side(
                        sku=product.product_number,
                        product=product.product_name,
                        variant=variant.variant_name,
                        size=size.size,
                    ))
                    side.quantity += size.quantity
                    side.valued_quantity += size.valued_quantity
                    side.value += size.total_value

        for side in sides.values():
            valued = side.valued_quantity
            side.unit_cost = quantize(side.value / valued) if valued else ZERO
        return sides

    def _external_sides(self, rows: Iterable[ExternalStockRow]) -> tuple[dict[str, _Side], int]:
        sides: dict[str, _Side] = {}
        without_ean = 0
        for row in rows:
            if not row.ean:
                without_ean += 1
                continue
            side = sides.get(row.ean)
            if side is None:
                side = sides[row.ean] = _Side(
                    sku=row.sku,
                    product=row.product,
                    variant=row.variant,
                    size=row.size,
                    unit_cost=row.unit_cost,
                )
            else:
                logger.debug("Duplicate EAN %s in extract (row %s), summing", row.ean, row.row_number)
            side.quantity += row.quantity
            side.value += row.total_value

        for side in sides.values():
            side.value = quantize(side.value)
            if side.quantity:
                side.unit_cost = quantize(side.value / side.quantity)
        return sides, without_ean

    def _compare_ean(self, ean: str, internal: _Side | None, external: _Side | None) -> ReconciliationRow:
        if internal is None and external is None:
            raise ValueError(f"EAN {ean} missing from both sides")
        labels = external or internal
        inside = internal or _Side(sku="", product="", variant="", size="")
        outside = external or _Side(sku="", product="", variant="", size="")

        qty_delta = inside.quantity - outside.quantity
        value_delta = quantize(inside.value - outside.value)

        if external is None:
            partition, reason = Partition.INTERNAL_ONLY, DiscrepancyReason.INTERNAL_ONLY
        elif internal is None:
            partition, reason = Partition.EXTERNAL_ONLY, DiscrepancyReason.EXTERNAL_ONLY
        elif qty_delta != 0:
            partition, reason = Partition.MATCHED, DiscrepancyReason.QUANTITY_MISMATCH
        elif abs(value_delta) > self.value_tolerance:
            partition, reason = Partition.MATCHED, DiscrepancyReason.COST_MISMATCH
        else:
            partition, reason = Partition.MATCHED, DiscrepancyReason.NO_DISCREPANCY

        return ReconciliationRow(
            ean=ean,
            sku=labels.sku or inside.sku,
            product=labels.product or inside.product,
            variant=labels.variant or inside.variant,
            size=labels.size or inside.size,
            partition=partition,
            classified_reason=reason,
            internal_qty=inside.quantity,
            internal_value=quantize(inside.value),
            internal_avg_cost=inside.unit_cost,
            external_qty=outside.quantity,
            external_value=outside.value,
            external_unit_cost=outside.unit_cost,
            qty_delta=qty_delta,
            value_delta=value_delta,
            value_delta_percent=_percent(value_delta, outside.value),
            in_extract=external is not None,
        )

    @staticmethod
    def _failed_row(error: SizeError, external: _Side | None) -> ReconciliationRow:
        outside = external or _Side(
            sku=error.product_number,
            product="",
            variant="",
            size=error.size_key.size_number or "",
        )
        return ReconciliationRow(
            ean=error.ean or "",
            sku=outside.sku or error.product_number,
            product=outside.product,
            variant=outside.variant,
            size=outside.size,
            partition=Partition.INTERNAL_FAILED,
            classified_reason=DiscrepancyReason.INTERNAL_FAILED,
            external_qty=outside.quantity,
            external_value=outside.value,
            external_unit_cost=outside.unit_cost,
            in_extract=external is not None,
        )

    def _summarize(
        self,
        rows: list[ReconciliationRow],
        valuation: ValuationResult,
        without_ean: int,
    ) -> ComparisonSummary:
        summary = ComparisonSummary(
            external_rows_without_ean=without_ean,
            failed_sizes=len(valuation.errors),
            total_internal_value=valuation.summary.total_value,
            total_internal_quantity=valuation.summary.total_quantity,
        )
        for row in rows:
            summary.total_external_value += row.external_value
            if row.partition == Partition.MATCHED:
                summary.matched_count += 1
                summary.matched_internal_value += row.internal_value
                summary.matched_external_value += row.external_value
                if row.qty_delta != 0:
                    summary.rows_with_qty_diff += 1
                if abs(row.value_delta_percent) > self.significant_diff_percent:
                    summary.rows_with_value_diff += 1
            elif row.partition == Partition.INTERNAL_ONLY:
                summary.internal_only_count += 1
                summary.internal_only_value += row.internal_value
            elif row.partition == Partition.INTERNAL_FAILED:
                summary.internal_failed_count += 1
            else:
                summary.external_only_count += 1
                summary.external_only_value += row.external_value

        summary.matched_value_delta = quantize(
            summary.matched_internal_value - summary.matched_external_value
        )
        summary.matched_value_delta_percent = _percent(
            summary.matched_value_delta, summary.matched_external_value
        )
        return summary


def generate_report(comparison: ComparisonResult) -> str:
    """Render a comparison as CSV text.

    The leading columns use the extract's names (EAN, SKU, Product, Variant,
    Size, Quantity, COG, CostPrice) and carry the external side, so the
    report can be fed back to the extract parser. Rows absent from the
    extract leave those cells blank, and rows whose size failed valuation
    leave the internal cells blank. Summary lines follow, each prefixed
    with ``#``.
    """
    records: list[dict[str, Any]] = []
    for row in comparison.rows:
        valued = row.partition != Partition.INTERNAL_FAILED
        records.append({
            "EAN": row.ean,
            "SKU": row.sku,
            "Product": row.product,
            "Variant": row.variant,
            "Size": row.size,
            "Quantity": row.external_qty if row.in_extract else "",
            "COG": row.external_value if row.in_extract else "",
            "CostPrice": row.external_unit_cost if row.in_extract else "",
            "Internal Quantity": row.internal_qty if valued else "",
            "Internal Value": row.internal_value if valued else "",
            "Internal Avg Cost": row.internal_avg_cost if valued else "",
            "Qty Delta": row.qty_delta,
            "Value Delta": row.value_delta,
            "Value Delta %": row.value_delta_percent,
            "Reason": row.classified_reason.value,
            "Partition": row.partition.value,
        })

    df = pd.DataFrame(records, columns=REPORT_COLUMNS)
    buffer = io.StringIO()
    df.to_csv(buffer, index=False, lineterminator="\n")

    s = comparison.summary
    summary_lines = [
        ("Company", comparison.company or ""),
        ("Date", comparison.comparison_date.isoformat() if comparison.comparison_date else ""),
        ("Total internal value (all products)", s.total_internal_value),
        ("Total internal quantity (all products)", s.total_internal_quantity),
        ("Matched EANs", s.matched_count),
        ("Matched internal value", s.matched_internal_value),
        ("Matched external value", s.matched_external_value),
        ("Matched value delta", s.matched_value_delta),
        ("Matched value delta %", s.matched_value_delta_percent),
        ("Internal only EANs", s.internal_only_count),
        ("Internal only value", s.internal_only_value),
        ("External only EANs", s.external_only_count),
        ("External only value", s.external_only_value),
        ("Failed EANs", s.internal_failed_count),
        ("Failed sizes", s.failed_sizes),
        ("External rows without EAN", s.external_rows_without_ean),
        ("Rows with quantity difference", s.rows_with_qty_diff),
        ("Rows with value difference", s.rows_with_value_diff),
    ]
    lines = [buffer.getvalue().rstrip("\n"), "#", "# SUMMARY"]
    lines.extend(f"# {label},{value}" for label, value in summary_lines)
    return "\n".join(lines) + "\n"


def compare_valuation(
    valuation: ValuationResult,
    external_rows: Iterable[ExternalStockRow],
    **kwargs: Any,
) -> ComparisonResult:
    """Convenience function to run a comparison with default tolerances."""
    return ReconciliationComparator().compare(valuation, external_rows, **kwargs)
