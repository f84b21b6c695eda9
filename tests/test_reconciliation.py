"""Tests for the valuation reconciliation comparator and report."""

from datetime import date
from decimal import Decimal

import pytest

from conftest import AS_OF, make_delivery, make_observation
from stockpilot.analyzers.reconciliation import (
    REPORT_COLUMNS,
    DiscrepancyReason,
    Partition,
    ReconciliationComparator,
    compare_valuation,
    generate_report,
)
from stockpilot.analyzers.valuation import InventoryValuationAggregator
from stockpilot.connectors.extract_parser import parse_extract
from stockpilot.models.inventory import ExternalStockRow

EAN_A = "7350000000017"
EAN_B = "7350000000024"
EAN_C = "7350000000031"
EAN_X = "7350000000099"


@pytest.fixture
def valuation():
    """Internal: A = 10 @ 100, B = 4 @ 25, C = 2 @ 10."""
    deliveries = [
        make_delivery(id="a", quantity=10, unit_cost="100", ean=EAN_A),
        make_delivery(id="b", quantity=4, unit_cost="25", size_number="43", ean=EAN_B),
        make_delivery(id="c", quantity=2, unit_cost="10", size_number="44", ean=EAN_C),
    ]
    observations = [
        make_observation(10, ean=EAN_A),
        make_observation(4, size_number="43", ean=EAN_B),
        make_observation(2, size_number="44", ean=EAN_C),
    ]
    return InventoryValuationAggregator().aggregate(deliveries, observations, as_of=AS_OF)


@pytest.fixture
def comparator():
    return ReconciliationComparator()


def external(ean, quantity, value, **extra):
    return ExternalStockRow(
        ean=ean,
        quantity=quantity,
        value=Decimal(value),
        unit_cost=Decimal(value) / quantity if quantity else Decimal("0"),
        **extra,
    )


class TestClassification:
    """Partition and reason per EAN."""

    def test_cost_mismatch(self, valuation, comparator):
        """Same units, 1000 internal against 900 external."""
        result = comparator.compare(valuation, [external(EAN_A, 10, "900")])
        row = next(r for r in result.rows if r.ean == EAN_A)

        assert row.partition == Partition.MATCHED
        assert row.qty_delta == 0
        assert row.value_delta == Decimal("100.00")
        assert row.value_delta_percent == Decimal("11.11")
        assert row.classified_reason == DiscrepancyReason.COST_MISMATCH
        assert row.internal_avg_cost == Decimal("100.00")
        assert row.external_unit_cost == Decimal("90.00")

    def test_quantity_mismatch(self, valuation, comparator):
        result = comparator.compare(valuation, [external(EAN_B, 3, "75")])
        row = next(r for r in result.rows if r.ean == EAN_B)

        assert row.qty_delta == 1
        assert row.value_delta == Decimal("25.00")
        assert row.classified_reason == DiscrepancyReason.QUANTITY_MISMATCH

    def test_no_discrepancy_after_rounding_to_ore(self, valuation, comparator):
        result = comparator.compare(valuation, [external(EAN_C, 2, "19.995")])
        row = next(r for r in result.rows if r.ean == EAN_C)

        assert row.classified_reason == DiscrepancyReason.NO_DISCREPANCY
        assert row.has_discrepancy is False

    def test_internal_and_external_only(self, valuation, comparator):
        result = comparator.compare(valuation, [external(EAN_X, 5, "50")])

        assert {r.ean for r in result.internal_only} == {EAN_A, EAN_B, EAN_C}
        assert [r.ean for r in result.external_only] == [EAN_X]
        x = result.external_only[0]
        assert x.classified_reason == DiscrepancyReason.EXTERNAL_ONLY
        assert x.qty_delta == -5
        assert x.value_delta == Decimal("-50.00")

    def test_custom_tolerance(self, valuation):
        comparator = ReconciliationComparator(value_tolerance=150)
        result = comparator.compare(valuation, [external(EAN_A, 10, "900")])
        row = next(r for r in result.rows if r.ean == EAN_A)
        assert row.classified_reason == DiscrepancyReason.NO_DISCREPANCY


class TestJoin:
    """Join mechanics: duplicates, missing EANs, ordering."""

    def test_duplicate_external_eans_are_summed(self, valuation, comparator):
        rows = [external(EAN_A, 6, "600", row_number=2), external(EAN_A, 4, "400", row_number=3)]
        result = comparator.compare(valuation, rows)
        row = next(r for r in result.rows if r.ean == EAN_A)

        assert row.external_qty == 10
        assert row.external_value == Decimal("1000.00")
        assert row.classified_reason == DiscrepancyReason.NO_DISCREPANCY

    def test_rows_without_ean_are_counted(self, valuation, comparator):
        result = comparator.compare(valuation, [external(None, 3, "30"), external("", 1, "5")])
        assert result.summary.external_rows_without_ean == 2
        assert result.summary.external_only_count == 0

    def test_sorted_by_absolute_value_delta(self, valuation, comparator):
        rows = [external(EAN_A, 10, "900"), external(EAN_B, 4, "300"), external(EAN_C, 2, "20")]
        result = comparator.compare(valuation, rows)

        assert [r.ean for r in result.rows] == [EAN_B, EAN_A, EAN_C]
        assert [r.value_delta for r in result.rows] == [Decimal("-200.00"), Decimal("100.00"), Decimal("0.00")]

    def test_idempotent(self, valuation, comparator):
        rows = [external(EAN_A, 10, "900"), external(EAN_X, 1, "10")]
        first = comparator.compare(valuation, rows, company="varg", comparison_date=date(2024, 6, 1))
        second = comparator.compare(valuation, rows, company="varg", comparison_date=date(2024, 6, 1))
        assert first == second


class TestSummary:
    def test_totals(self, valuation, comparator):
        rows = [external(EAN_A, 10, "900"), external(EAN_B, 3, "75"), external(EAN_X, 5, "50")]
        summary = comparator.compare(valuation, rows).summary

        assert summary.matched_count == 2
        assert summary.internal_only_count == 1
        assert summary.external_only_count == 1
        assert summary.total_internal_value == Decimal("1120.00")
        assert summary.total_internal_quantity == 16
        assert summary.total_external_value == Decimal("1025.00")
        assert summary.matched_internal_value == Decimal("1100.00")
        assert summary.matched_external_value == Decimal("975.00")
        assert summary.matched_value_delta == Decimal("125.00")
        assert summary.matched_value_delta_percent == Decimal("12.82")
        assert summary.internal_only_value == Decimal("20.00")
        assert summary.external_only_value == Decimal("50.00")
        assert summary.rows_with_qty_diff == 1
        assert summary.rows_with_value_diff == 2

    def test_convenience_function(self, valuation):
        result = compare_valuation(valuation, [external(EAN_A, 10, "1000")], company="varg")
        assert result.company == "varg"
        assert result.summary.matched_value_delta == Decimal("0.00")


class TestReport:
    """CSV report generation."""

    @pytest.fixture
    def comparison(self, valuation, comparator):
        rows = [
            external(EAN_A, 10, "900", sku="P100-42", product="Trail Boot", variant="Black", size="42"),
            external(EAN_X, 5, "50", sku="P900-S", product="Sock", variant="Grey", size="S"),
        ]
        return comparator.compare(valuation, rows, company="varg", comparison_date=date(2024, 6, 1))

    def test_header_and_summary(self, comparison):
        report = generate_report(comparison)
        lines = report.splitlines()

        assert lines[0] == ",".join(REPORT_COLUMNS)
        assert "# SUMMARY" in lines
        assert "# Company,varg" in lines
        assert "# Date,2024-06-01" in lines
        assert "# Matched value delta,100.00" in lines
        assert report.endswith("\n")

    def test_internal_only_rows_leave_external_cells_blank(self, comparison):
        lines = generate_report(comparison).splitlines()
        row = next(line for line in lines if line.startswith(EAN_B))
        cells = row.split(",")

        assert cells[5:8] == ["", "", ""]
        assert cells[-1] == "internal_only"

    def test_report_parses_as_extract(self, comparison):
        """Feeding the report back in yields the external side again."""
        rows = parse_extract(generate_report(comparison))

        assert {r.ean for r in rows} == {EAN_A, EAN_X}
        by_ean = {r.ean: r for r in rows}
        assert by_ean[EAN_A].quantity == 10
        assert by_ean[EAN_A].total_value == Decimal("900.00")
        assert by_ean[EAN_X].sku == "P900-S"

    def test_reparsed_report_compares_identically(self, valuation, comparator, comparison):
        again = comparator.compare(
            valuation,
            parse_extract(generate_report(comparison)),
            company="varg",
            comparison_date=date(2024, 6, 1),
        )
        assert [(r.ean, r.qty_delta, r.value_delta, r.classified_reason) for r in again.rows] == [
            (r.ean, r.qty_delta, r.value_delta, r.classified_reason) for r in comparison.rows
        ]


class TestFailedSizes:
    """Sizes that could not be valued are reported, not mistaken for external stock."""

    @pytest.fixture
    def partial_valuation(self):
        deliveries = [
            make_delivery(id="a", quantity=10, unit_cost="100", ean=EAN_A),
            make_delivery(id="bad", quantity=-3, unit_cost="50", size_number="43", ean=EAN_B),
        ]
        observations = [
            make_observation(10, ean=EAN_A),
            make_observation(5, size_number="43", ean=EAN_B),
        ]
        return InventoryValuationAggregator().aggregate(deliveries, observations, as_of=AS_OF)

    def test_failed_ean_is_its_own_partition(self, partial_valuation, comparator):
        result = comparator.compare(
            partial_valuation, [external(EAN_A, 10, "1000"), external(EAN_B, 5, "250")]
        )
        row = next(r for r in result.rows if r.ean == EAN_B)

        assert row.partition == Partition.INTERNAL_FAILED
        assert row.classified_reason == DiscrepancyReason.INTERNAL_FAILED
        assert row.has_discrepancy is True
        assert row.value_delta == Decimal("0.00")
        assert row.external_value == Decimal("250.00")
        assert result.external_only == []
        assert [r.ean for r in result.internal_failed] == [EAN_B]

    def test_errors_and_counts_carried(self, partial_valuation, comparator):
        result = comparator.compare(partial_valuation, [external(EAN_B, 5, "250")])

        assert [e.code for e in result.errors] == ["COMPUTATION_FAILED"]
        assert result.errors[0].ean == EAN_B
        assert result.summary.failed_sizes == 1
        assert result.summary.internal_failed_count == 1
        assert result.summary.external_only_count == 0
        assert result.summary.external_only_value == Decimal("0.00")

    def test_failed_ean_without_extract_row(self, partial_valuation, comparator):
        result = comparator.compare(partial_valuation, [])
        row = next(r for r in result.rows if r.ean == EAN_B)

        assert row.partition == Partition.INTERNAL_FAILED
        assert row.in_extract is False
        assert row.sku == "P100"
        assert row.size == "43"

    def test_report_lines(self, partial_valuation, comparator):
        comparison = comparator.compare(partial_valuation, [external(EAN_B, 5, "250")])
        report = generate_report(comparison)
        lines = report.splitlines()
        cells = next(line for line in lines if line.startswith(EAN_B)).split(",")

        assert "# Failed sizes,1" in lines
        assert "# Failed EANs,1" in lines
        assert cells[5:8] == ["5", "250.00", "50.00"]
        assert cells[8:11] == ["", "", ""]
        assert cells[-1] == "internal_failed"
        assert [r.ean for r in parse_extract(report)] == [EAN_B]


class TestDefaultTolerance:
    def test_one_ore_is_a_cost_mismatch(self, valuation, comparator):
        result = comparator.compare(valuation, [external(EAN_C, 2, "19.99")])
        row = next(r for r in result.rows if r.ean == EAN_C)

        assert row.value_delta == Decimal("0.01")
        assert row.classified_reason == DiscrepancyReason.COST_MISMATCH
