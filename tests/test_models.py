"""Tests for inventory models and typed errors."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError

from stockpilot.exceptions import InputValidationError, UpstreamFetchError
from stockpilot.models import DeliveryLine, ExternalStockRow, SizeKey, StockObservation
from stockpilot.models.inventory import natural_key


class TestSizeKey:
    @pytest.mark.parametrize("raw", [None, "", "   ", "null", "NULL"])
    def test_blank_sizes_normalize_to_none(self, raw):
        assert SizeKey.of(1, raw) == SizeKey(1, None)

    def test_size_is_stripped(self):
        assert SizeKey.of("7", " 42 ") == SizeKey(7, "42")

    def test_str(self):
        assert str(SizeKey(3, None)) == "3/-"
        assert str(SizeKey(3, "M")) == "3/M"


class TestNaturalKey:
    def test_numeric_order(self):
        assert sorted(["10", "9", "EU 40", "EU 38"], key=natural_key) == ["9", "10", "EU 38", "EU 40"]

    def test_none_sorts_first(self):
        assert natural_key(None) == ()


class TestDeliveryLine:
    def test_naive_timestamp_becomes_utc(self):
        line = DeliveryLine(
            id=101, created_at=datetime(2024, 1, 1, 12), product_number="P1",
            variant_id=1, quantity=2, unit_cost="9.50",
        )
        assert line.id == "101"
        assert line.created_at.tzinfo == timezone.utc
        assert line.total_cost == Decimal("19.00")

    def test_offset_timestamp_is_converted(self):
        tz = timezone(timedelta(hours=2))
        line = DeliveryLine(
            id="a", created_at=datetime(2024, 1, 1, 1, tzinfo=tz), product_number="P1",
            variant_id=1, quantity=1, unit_cost=1,
        )
        assert line.created_at == datetime(2023, 12, 31, 23, tzinfo=timezone.utc)

    def test_frozen(self):
        line = DeliveryLine(
            id="a", created_at=datetime(2024, 1, 1), product_number="P1",
            variant_id=1, quantity=1, unit_cost=1,
        )
        with pytest.raises(ValidationError):
            line.quantity = 5


class TestStockObservation:
    def test_timestamp_truncated_to_date(self):
        obs = StockObservation(product_number="P1", variant_id=1, observed_at="2024-06-01T23:59:00Z")
        assert obs.observed_at == date(2024, 6, 1)

    def test_size_label_falls_back_to_number(self):
        obs = StockObservation(product_number="P1", variant_id=1, size=None, size_number="42",
                               observed_at=date(2024, 6, 1))
        assert obs.size_label == "42"
        assert obs.size_key == SizeKey(1, "42")


class TestExternalStockRow:
    def test_value_defaults_to_quantity_times_cost(self):
        row = ExternalStockRow(ean="735", quantity=3, unit_cost=Decimal("12.50"))
        assert row.value == Decimal("37.50")

    def test_explicit_value_kept(self):
        row = ExternalStockRow(ean="735", quantity=3, unit_cost=Decimal("12.50"), value=Decimal("40"))
        assert row.total_value == Decimal("40")

    def test_blank_ean(self):
        assert ExternalStockRow(ean="  ").ean is None


class TestErrors:
    def test_input_error_dict(self):
        err = InputValidationError("Invalid quantity", field="Quantity", row=4)
        assert err.to_dict() == {
            "error": "INVALID_INPUT",
            "details": "Invalid quantity",
            "field": "Quantity",
            "row": 4,
        }

    def test_upstream_error_dict(self):
        err = UpstreamFetchError("elasticsearch", "503 - unavailable")
        assert str(err) == "elasticsearch: 503 - unavailable"
        assert err.to_dict()["source"] == "elasticsearch"
