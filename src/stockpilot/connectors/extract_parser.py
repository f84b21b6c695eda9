"""
Ground-truth extract parser — warehouse / retail-OS stock exports.

Accepts the CSV exported by the warehouse system (Brand, SKU, Collection,
Product, Variant, VariantSKU, COG, Size, SizeSKU, EAN, UPC, Quantity,
CostPrice) as well as the reconciliation report this package writes, which
uses the same leading columns. Columns are matched by alias, so order and
case do not matter. Lines starting with ``#`` are ignored.
"""

from __future__ import annotations

import io
import logging
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import pandas as pd

from stockpilot.exceptions import InputValidationError
from stockpilot.models.inventory import ExternalStockRow

logger = logging.getLogger("stockpilot.connectors.extract")

# Common column name mappings
_COLUMN_ALIASES: dict[str, list[str]] = {
    "ean": ["ean", "barcode", "gtin"],
    "sku": ["sku", "variantsku", "variant_sku", "sizesku"],
    "product": ["product", "product_name", "produkt", "name"],
    "variant": ["variant", "variant_name", "color"],
    "size": ["size", "storlek", "size_name"],
    "quantity": ["quantity", "qty", "antal", "stock"],
    "value": ["cog", "value", "total_cost", "stock_value"],
    "unit_cost": ["costprice", "cost_price", "unit_cost", "unitcost", "enhetskostnad"],
}


def _cell(row: pd.Series, column: str | None) -> str:
    if not column:
        return ""
    value = row.get(column)
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return ""
    return str(value).strip()


class ExtractParser:
    """Parse external stock extracts into ``ExternalStockRow`` objects.

    Usage::

        parser = ExtractParser()
        rows = parser.parse(csv_text)
        rows = parser.parse_file("centra_stock_2025-01-31.csv")
    """

    def __init__(self, delimiter: str = ",", encoding: str = "utf-8") -> None:
        self.delimiter = delimiter
        self.encoding = encoding

    def parse_file(self, path: str | Path) -> list[ExternalStockRow]:
        return self.parse(Path(path).read_text(encoding=self.encoding))

    def parse(self, text: str) -> list[ExternalStockRow]:
        """Parse CSV text.

        Raises:
            InputValidationError: The extract is empty, lacks a quantity or
                cost column, or a row holds a non-numeric or negative value.
                The message names the source line and column.
        """
        # Source line numbers of the header and data lines, comments dropped
        kept: list[tuple[int, str]] = [
            (number, line)
            for number, line in enumerate(text.splitlines(), start=1)
            if line.strip() and not line.lstrip().startswith("#")
        ]
        if not kept:
            raise InputValidationError("Extract is empty", field="extract")

        df = pd.read_csv(
            io.StringIO("\n".join(line for _, line in kept)),
            sep=self.delimiter,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=False,
        )
        df.columns = df.columns.str.strip().str.lower()

        col_map = self._detect_columns(df)
        if "quantity" not in col_map:
            raise InputValidationError("Extract has no quantity column", field="quantity")
        if "unit_cost" not in col_map and "value" not in col_map:
            raise InputValidationError("Extract has no cost column (CostPrice or COG)", field="unit_cost")

        stock_columns = [col_map.get(f) for f in ("quantity", "unit_cost", "value")]
        rows: list[ExternalStockRow] = []
        for position, (_, row) in enumerate(df.iterrows()):
            line_number = kept[position + 1][0]
            # Report rows absent from the extract carry no external stock
            if not any(_cell(row, column) for column in stock_columns):
                logger.debug("Row %d has no stock cells, skipping", line_number)
                continue
            rows.append(self._parse_row(row, col_map, line_number))

        logger.info("Parsed %d extract rows", len(rows))
        return rows

    def _detect_columns(self, df: pd.DataFrame) -> dict[str, str]:
        """Auto-detect column mappings from the DataFrame."""
        col_map: dict[str, str] = {}
        df_cols = set(df.columns)

        for field, aliases in _COLUMN_ALIASES.items():
            for alias in aliases:
                if alias in df_cols:
                    col_map[field] = alias
                    break

        return col_map

    def _parse_row(self, row: pd.Series, col_map: dict[str, str], line_number: int) -> ExternalStockRow:
        quantity = self._parse_quantity(_cell(row, col_map["quantity"]), line_number)
        unit_cost = self._parse_amount(_cell(row, col_map.get("unit_cost")), "unit_cost", line_number)
        raw_value = _cell(row, col_map.get("value"))
        value = self._parse_amount(raw_value, "value", line_number) if raw_value else None

        fields: dict[str, Any] = {
            "sku": _cell(row, col_map.get("sku")),
            "product": _cell(row, col_map.get("product")),
            "variant": _cell(row, col_map.get("variant")),
            "size": _cell(row, col_map.get("size")),
            "ean": _cell(row, col_map.get("ean")) or None,
            "quantity": quantity,
            "unit_cost": unit_cost,
            "value": value,
            "row_number": line_number,
        }
        return ExternalStockRow(**fields)

    @staticmethod
    def _parse_quantity(raw: str, line_number: int) -> int:
        if not raw:
            raise InputValidationError(
                f"Row {line_number}: quantity is empty", field="quantity", row=line_number
            )
        try:
            number = Decimal(raw.replace(" ", ""))
        except InvalidOperation:
            raise InputValidationError(
                f"Row {line_number}: quantity {raw!r} is not a number",
                field="quantity",
                row=line_number,
            ) from None
        if not number.is_finite() or number != number.to_integral_value() or number < 0:
            raise InputValidationError(
                f"Row {line_number}: quantity {raw!r} must be a non-negative whole number",
                field="quantity",
                row=line_number,
            )
        return int(number)

    @staticmethod
    def _parse_amount(raw: str, field: str, line_number: int) -> Decimal:
        # Spreadsheet exports write #DIV/0! as the unit cost of zero-quantity rows
        if not raw or "DIV" in raw.upper():
            return Decimal("0")
        try:
            amount = Decimal(raw.replace(" ", "").replace(",", "."))
        except InvalidOperation:
            raise InputValidationError(
                f"Row {line_number}: {field} {raw!r} is not a number",
                field=field,
                row=line_number,
            ) from None
        if not amount.is_finite():
            raise InputValidationError(
                f"Row {line_number}: {field} {raw!r} is not a number", field=field, row=line_number
            )
        if amount < 0:
            raise InputValidationError(
                f"Row {line_number}: {field} {raw!r} is negative", field=field, row=line_number
            )
        return amount


def parse_extract(text: str, delimiter: str = ",") -> list[ExternalStockRow]:
    """Convenience function to parse an extract."""
    return ExtractParser(delimiter=delimiter).parse(text)
