"""
Liquidity Heatmap Aggregation

Bins a rolling window of order book snapshots into (time, price) cells so
resting liquidity can be rendered as a time-price heatmap.
"""

import logging
import math
import time
from dataclasses import dataclass, field, fields, replace
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from ..engines.calculations import is_finite
from ..engines.errors import InvalidConfig
from ..engines.indicator_config import DEFAULT_CONFIG
from .data_types import OrderBookSnapshot

logger = logging.getLogger(__name__)

_DEFAULTS = DEFAULT_CONFIG.heatmap


@dataclass(frozen=True)
class HeatmapBinConfig:
    """
    Bin sizes and look-back window.

    max_price_levels truncates each side by position in the snapshot's
    level order; it is not a top-N by size.
    """

    time_bin_seconds: float = _DEFAULTS.time_bin_seconds
    price_bin_size: float = _DEFAULTS.price_bin_size
    time_window_minutes: float = _DEFAULTS.time_window_minutes
    max_price_levels: Optional[int] = _DEFAULTS.max_price_levels

    def validate(self) -> None:
        for name in ("time_bin_seconds", "price_bin_size", "time_window_minutes"):
            value = getattr(self, name)
            if not is_finite(value) or value <= 0:
                raise InvalidConfig(name, value)
        if self.max_price_levels is not None:
            levels = self.max_price_levels
            if isinstance(levels, bool) or not isinstance(levels, int) or levels <= 0:
                raise InvalidConfig("max_price_levels", levels)


DEFAULT_BIN_CONFIG = HeatmapBinConfig()


@dataclass
class HeatmapCell:
    time: float  # bin start, epoch ms
    price: float  # bin start
    bid_size: float = 0.0
    ask_size: float = 0.0
    total_size: float = 0.0


@dataclass
class HeatmapAggregationResult:
    cells: List[HeatmapCell] = field(default_factory=list)
    time_extent: Optional[Tuple[float, float]] = None
    price_extent: Optional[Tuple[float, float]] = None
    max_bid_size: float = 0.0
    max_ask_size: float = 0.0

    @property
    def is_empty(self) -> bool:
        return not self.cells


def merge_heatmap_config(
    base: Optional[Mapping[str, object]] = None,
    overrides: Optional[Mapping[str, object]] = None,
) -> HeatmapBinConfig:
    """Defaults, then `base`, then `overrides`; unknown keys are rejected."""
    known = {f.name for f in fields(HeatmapBinConfig)}
    merged: Dict[str, object] = {}
    for layer in (base or {}, overrides or {}):
        unknown = set(layer) - known
        if unknown:
            raise InvalidConfig(", ".join(sorted(unknown)), dict(layer), reason="is not a heatmap setting")
        merged.update(layer)
    return replace(DEFAULT_BIN_CONFIG, **merged)


def _accumulate_side(
    cell_map: Dict[Tuple[float, float], HeatmapCell],
    time_bin: float,
    levels: Mapping[float, float],
    is_bid: bool,
    config: HeatmapBinConfig,
) -> None:
    for index, (price, size) in enumerate(levels.items()):
        if config.max_price_levels is not None and index >= config.max_price_levels:
            break
        if not is_finite(price) or not is_finite(size) or size <= 0:
            continue

        price_bin = math.floor(price / config.price_bin_size) * config.price_bin_size
        key = (time_bin, price_bin)
        cell = cell_map.get(key)
        if cell is None:
            cell = HeatmapCell(time=time_bin, price=price_bin)
            cell_map[key] = cell

        if is_bid:
            cell.bid_size += size
        else:
            cell.ask_size += size
        cell.total_size += size


def aggregate_order_book_heatmap(
    snapshots: Iterable[OrderBookSnapshot],
    config: Optional[HeatmapBinConfig] = None,
    now: Optional[float] = None,
) -> HeatmapAggregationResult:
    """
    Aggregate snapshots inside the look-back window into heatmap cells.

    Args:
        snapshots: Order book snapshots (any order)
        config: Bin configuration; validated before use
        now: Reference time in epoch ms (defaults to wall clock)

    Returns:
        Cells sorted by time then price, with derived extents and maxima
    """
    config = config or DEFAULT_BIN_CONFIG
    config.validate()
    if now is None:
        now = time.time() * 1000

    window_start = now - config.time_window_minutes * 60 * 1000
    time_bin_ms = config.time_bin_seconds * 1000

    cell_map: Dict[Tuple[float, float], HeatmapCell] = {}
    used = 0
    for snapshot in snapshots:
        if snapshot.timestamp < window_start:
            continue
        used += 1
        time_bin = math.floor(snapshot.timestamp / time_bin_ms) * time_bin_ms
        _accumulate_side(cell_map, time_bin, snapshot.bids, True, config)
        _accumulate_side(cell_map, time_bin, snapshot.asks, False, config)

    if not cell_map:
        return HeatmapAggregationResult()

    cells = sorted(cell_map.values(), key=lambda c: (c.time, c.price))
    prices = [c.price for c in cells]
    logger.debug(f"Heatmap: {used} snapshots -> {len(cells)} cells")

    return HeatmapAggregationResult(
        cells=cells,
        time_extent=(cells[0].time, cells[-1].time),
        price_extent=(min(prices), max(prices)),
        max_bid_size=max(c.bid_size for c in cells),
        max_ask_size=max(c.ask_size for c in cells),
    )
