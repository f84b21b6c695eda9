"""
Markdown report exporter.

Renders valuations, reconciliations and purchase histories as Markdown,
suitable for GitHub, Notion, or any Markdown viewer.
"""

from __future__ import annotations

from decimal import Decimal

from stockpilot.analyzers.fifo import AgeGroup
from stockpilot.analyzers.purchase_history import ProductPurchaseHistory
from stockpilot.analyzers.reconciliation import ComparisonResult, DiscrepancyReason
from stockpilot.analyzers.valuation import ValuationResult


def _sek(amount: Decimal) -> str:
    return f"{amount:,.2f} SEK"


def render_valuation_markdown(result: ValuationResult, company_name: str = "", top: int = 20) -> str:
    """Render a ValuationResult as Markdown."""
    lines: list[str] = []
    summary = result.summary

    # Header
    title = f"# 📦 FIFO Inventory Valuation — {company_name}" if company_name else "# 📦 FIFO Inventory Valuation"
    lines.append(title)
    lines.append("")
    lines.append(f"*Calculated: {summary.calculated_at.strftime('%Y-%m-%d %H:%M UTC')}*")
    if summary.snapshot_date:
        lines.append(f"*Stock snapshot: {summary.snapshot_date}*")
    lines.append("")

    # Summary
    lines.append("## 📊 Summary")
    lines.append("")
    lines.append("| Metric | Value |")
    lines.append("|--------|-------|")
    lines.append(f"| **Total Value** | {_sek(summary.total_value)} |")
    lines.append(f"| **Units on Hand** | {summary.total_quantity:,} |")
    lines.append(f"| **Average Cost** | {_sek(summary.average_cost)} |")
    lines.append(f"| **Average Age** | {summary.average_age_in_days} days |")
    lines.append(f"| **Products / Variants / Sizes** | {summary.product_count} / {summary.variant_count} / {summary.size_count} |")
    if summary.pos_available:
        lines.append(f"| **Units in POS** | {summary.total_pos_quantity or 0:,} |")
    lines.append("")

    # Age profile
    lines.append("## ⏳ Age Profile")
    lines.append("")
    lines.append("| Age Group | Units | Value |")
    lines.append("|-----------|-------|-------|")
    labels = {
        AgeGroup.FRESH: "Fresh (< 6 months)",
        AgeGroup.AGING: "Aging (6-18 months)",
        AgeGroup.OLD: "Old (> 18 months)",
    }
    for group in AgeGroup:
        lines.append(
            f"| {labels[group]} | {summary.items_by_age_group[group]:,} | {_sek(summary.value_by_age_group[group])} |"
        )
    lines.append("")

    # Data quality
    if summary.inconsistent_sizes or summary.failed_sizes or summary.pos_only_items:
        lines.append("## ⚠️ Data Quality")
        lines.append("")
        if summary.inconsistent_sizes:
            lines.append(
                f"- {summary.inconsistent_sizes} sizes hold more stock than was ever delivered "
                f"({summary.unknown_cost_items} units without known cost)"
            )
        if summary.failed_sizes:
            lines.append(f"- {summary.failed_sizes} sizes could not be valued:")
            for error in result.errors:
                lines.append(f"  - `{error.product_number}` {error.size_key}: {error.message}")
        if summary.pos_only_items:
            lines.append(f"- {summary.pos_only_items} POS items have no warehouse stock row")
        lines.append("")

    # Largest products
    products = sorted(result.products, key=lambda p: (-p.total_value, p.product_number))[:top]
    if products:
        lines.append(f"## 🏷️ Top {len(products)} Products by Value")
        lines.append("")
        lines.append("| Product | Name | Units | Value | Avg Cost | Max Age |")
        lines.append("|---------|------|-------|-------|----------|---------|")
        for p in products:
            lines.append(
                f"| `{p.product_number}` | {p.product_name} | {p.quantity:,} | {_sek(p.total_value)} "
                f"| {_sek(p.average_cost)} | {p.max_age_in_days} d |"
            )
        lines.append("")

    lines.append("---")
    lines.append("*Generated by StockPilot*")
    return "\n".join(lines)


def render_comparison_markdown(comparison: ComparisonResult, top: int = 25) -> str:
    """Render a ComparisonResult as Markdown."""
    lines: list[str] = []
    s = comparison.summary

    lines.append(f"# 🔎 Valuation Reconciliation — {comparison.company or ''}".rstrip(" —"))
    lines.append("")
    if comparison.comparison_date:
        lines.append(f"*Date: {comparison.comparison_date}*")
        lines.append("")

    lines.append("## 📊 Summary")
    lines.append("")
    lines.append("| Metric | Value |")
    lines.append("|--------|-------|")
    lines.append(f"| **Internal Value (all products)** | {_sek(s.total_internal_value)} |")
    lines.append(f"| **Matched EANs** | {s.matched_count} |")
    lines.append(f"| **Matched Internal / External** | {_sek(s.matched_internal_value)} / {_sek(s.matched_external_value)} |")
    lines.append(f"| **Matched Difference** | {_sek(s.matched_value_delta)} ({s.matched_value_delta_percent}%) |")
    lines.append(f"| **Internal Only** | {s.internal_only_count} ({_sek(s.internal_only_value)}) |")
    lines.append(f"| **External Only** | {s.external_only_count} ({_sek(s.external_only_value)}) |")
    lines.append(f"| **External Rows Without EAN** | {s.external_rows_without_ean} |")
    if s.failed_sizes:
        lines.append(f"| **Failed Sizes** | {s.failed_sizes} ({s.internal_failed_count} EANs not compared) |")
    lines.append(f"| **Quantity Differences** | {s.rows_with_qty_diff} |")
    lines.append(f"| **Value Differences** | {s.rows_with_value_diff} |")
    lines.append("")

    discrepancies = comparison.discrepancies[:top]
    if discrepancies:
        reason_emoji = {
            DiscrepancyReason.QUANTITY_MISMATCH: "🔴",
            DiscrepancyReason.COST_MISMATCH: "🟠",
            DiscrepancyReason.INTERNAL_ONLY: "🟡",
            DiscrepancyReason.EXTERNAL_ONLY: "🟡",
            DiscrepancyReason.INTERNAL_FAILED: "⛔",
        }
        lines.append(f"## 🚩 Largest Discrepancies ({len(discrepancies)})")
        lines.append("")
        lines.append("| EAN | Product | Size | Qty Int / Ext | Value Delta | Reason |")
        lines.append("|-----|---------|------|---------------|-------------|--------|")
        for row in discrepancies:
            emoji = reason_emoji.get(row.classified_reason, "")
            lines.append(
                f"| `{row.ean}` | {row.product} {row.variant} | {row.size} | {row.internal_qty} / {row.external_qty} "
                f"| {_sek(row.value_delta)} | {emoji} {row.classified_reason.value} |"
            )
        lines.append("")

    lines.append("---")
    lines.append("*Generated by StockPilot*")
    return "\n".join(lines)


def render_purchase_history_markdown(history: ProductPurchaseHistory) -> str:
    """Render a ProductPurchaseHistory as Markdown."""
    lines: list[str] = []
    lines.append(f"# 🧾 Purchase History — {history.product_number} {history.product_name}".rstrip())
    lines.append("")
    first = history.first_purchase_date
    lines.append(
        f"*Purchased: {history.total_quantity_purchased:,} units"
        f"{f' since {first:%Y-%m-%d}' if first else ''} · On hand: {history.current_stock:,}*"
    )
    lines.append("")

    for variant in history.variants:
        lines.append(f"## {variant.variant_name or variant.variant_number or variant.variant_id}")
        lines.append("")
        lines.append("| Size | On Hand | Purchased | Date | Qty | Unit Cost | Supplier | PO |")
        lines.append("|------|---------|-----------|------|-----|-----------|----------|----|")
        for size in variant.sizes:
            for i, delivery in enumerate(size.deliveries):
                head = (
                    f"| {size.size} | {size.current_stock} | {size.total_quantity_purchased} "
                    if i == 0 else "| | | "
                )
                lines.append(
                    f"{head}| {delivery.date:%Y-%m-%d} | {delivery.quantity} | {_sek(delivery.unit_cost)} "
                    f"| {delivery.supplier_name or ''} | {delivery.purchase_order_id or ''} |"
                )
        lines.append("")

    return "\n".join(lines)
