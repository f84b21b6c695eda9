"""Exporters package — convert results to various output formats."""
from stockpilot.exporters.markdown import (
    render_comparison_markdown,
    render_purchase_history_markdown,
    render_valuation_markdown,
)

__all__ = [
    "render_comparison_markdown",
    "render_purchase_history_markdown",
    "render_valuation_markdown",
]
