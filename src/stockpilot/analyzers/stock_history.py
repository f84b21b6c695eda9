"""
Stock history — daily on-hand quantity series for charting.

Without a variant, one series per variant (all sizes summed per day).
With a variant, one series per size of that variant. Series that never
hold stock are dropped.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date

from stockpilot.exceptions import InputValidationError
from stockpilot.models.inventory import SizeKey, StockObservation, natural_key

VALID_WINDOWS = ("7", "30", "90", "all")


def parse_history_window(window: str | int | None) -> int | None:
    """Validate a history window: 7, 30, 90 days or ``"all"`` (returns ``None``)."""
    text = "30" if window is None else str(window).strip().lower()
    if text not in VALID_WINDOWS:
        raise InputValidationError(
            'Invalid days parameter. Must be 7, 30, 90, or "all"', field="window"
        )
    return None if text == "all" else int(text)


@dataclass(frozen=True)
class HistoryPoint:
    date: date
    quantity: int


@dataclass
class HistorySeries:
    name: str
    points: list[HistoryPoint] = field(default_factory=list)
    variant_id: int | None = None

    @property
    def has_stock(self) -> bool:
        return any(p.quantity > 0 for p in self.points)


@dataclass
class StockHistory:
    series: list[HistorySeries] = field(default_factory=list)
    variant_id: int | None = None


def _series_from(name: str, by_date: dict[date, int], variant_id: int | None = None) -> HistorySeries:
    return HistorySeries(
        name=name,
        points=[HistoryPoint(day, by_date[day]) for day in sorted(by_date)],
        variant_id=variant_id,
    )


def aggregate_stock_history(
    observations: Iterable[StockObservation],
    variant_id: int | None = None,
) -> StockHistory:
    """Build chart series from raw daily observations.

    A size observed twice on one day keeps the last observation.
    """
    # size -> day -> quantity
    per_day: dict[SizeKey, dict[date, int]] = {}
    names: dict[SizeKey, str] = {}
    for obs in observations:
        if variant_id is not None and obs.variant_id != variant_id:
            continue
        per_day.setdefault(obs.size_key, {})[obs.observed_at] = obs.physical_quantity
        names.setdefault(obs.size_key, obs.size_label if variant_id is not None else obs.variant_name)

    series: list[HistorySeries] = []
    if variant_id is not None:
        for key, by_date in per_day.items():
            series.append(_series_from(names[key] or str(key), by_date, key.variant_id))
    else:
        variants: dict[int, dict[date, int]] = {}
        variant_names: dict[int, str] = {}
        for key, by_date in per_day.items():
            totals = variants.setdefault(key.variant_id, {})
            for day, quantity in by_date.items():
                totals[day] = totals.get(day, 0) + quantity
            variant_names.setdefault(key.variant_id, names[key] or str(key.variant_id))
        for vid, by_date in variants.items():
            series.append(_series_from(variant_names[vid], by_date, vid))

    series = [s for s in series if s.has_stock]
    series.sort(key=lambda s: (natural_key(s.name), s.variant_id or 0))
    return StockHistory(series=series, variant_id=variant_id)
