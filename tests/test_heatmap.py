"""
Tests for order book heatmap aggregation.
"""

import pytest

from quant_analytics.continuous.data_types import OrderBookSnapshot
from quant_analytics.continuous.heatmap import (
    DEFAULT_BIN_CONFIG,
    HeatmapBinConfig,
    aggregate_order_book_heatmap,
    merge_heatmap_config,
)
from quant_analytics.engines.errors import InvalidConfig


NOW = 1_700_000_060_000  # multiple of the 10s time bin


def book(ts, bids=None, asks=None):
    return OrderBookSnapshot(timestamp=ts, bids=bids or {}, asks=asks or {}, symbol="BTCUSDT")


class TestBinning:
    """Tests for price and time binning."""

    def test_prices_share_a_bin(self):
        config = HeatmapBinConfig(price_bin_size=1.0)
        result = aggregate_order_book_heatmap(
            [book(NOW - 3000, bids={100.1: 1.0, 100.5: 2.0})], config, now=NOW
        )

        assert len(result.cells) == 1
        cell = result.cells[0]
        assert cell.price == 100.0
        assert cell.bid_size == pytest.approx(3.0)
        assert cell.ask_size == 0.0
        assert cell.total_size == pytest.approx(3.0)
        assert cell.time == NOW - 10_000

    def test_separate_snapshots_share_a_bin(self):
        config = HeatmapBinConfig(price_bin_size=1.0)
        result = aggregate_order_book_heatmap(
            [book(NOW - 4000, bids={100.1: 1.0}), book(NOW - 2000, bids={100.5: 2.0})], config, now=NOW
        )
        assert [(c.price, c.bid_size) for c in result.cells] == [(100.0, 3.0)]

    def test_bid_and_ask_in_same_cell(self):
        config = HeatmapBinConfig(price_bin_size=1.0)
        result = aggregate_order_book_heatmap(
            [book(NOW - 1000, bids={100.2: 1.5}, asks={100.8: 2.5})], config, now=NOW
        )
        cell = result.cells[0]
        assert cell.bid_size == 1.5
        assert cell.ask_size == 2.5
        assert cell.total_size == 4.0

    def test_snapshots_in_same_time_bin_accumulate(self):
        result = aggregate_order_book_heatmap(
            [
                book(NOW - 9000, bids={100.0: 1.0}),
                book(NOW - 2000, bids={100.0: 2.0}),
            ],
            now=NOW,
        )
        assert len(result.cells) == 1
        assert result.cells[0].bid_size == 3.0

    def test_cells_sorted_with_extents(self):
        result = aggregate_order_book_heatmap(
            [
                book(NOW - 1000, bids={99.0: 1.0}, asks={101.0: 4.0}),
                book(NOW - 15000, bids={100.0: 2.0}),
            ],
            now=NOW,
        )

        keys = [(c.time, c.price) for c in result.cells]
        assert keys == sorted(keys)
        assert result.time_extent == (NOW - 20_000, NOW - 10_000)
        assert result.price_extent == (99.0, 101.0)
        assert result.max_bid_size == 2.0
        assert result.max_ask_size == 4.0

    def test_window_excludes_old_snapshots(self):
        config = HeatmapBinConfig(time_window_minutes=1)
        result = aggregate_order_book_heatmap(
            [book(NOW - 61_000, bids={100.0: 5.0}), book(NOW - 60_000, bids={200.0: 1.0})],
            config,
            now=NOW,
        )
        assert [c.price for c in result.cells] == [200.0]

    def test_zero_and_invalid_sizes_skipped(self):
        result = aggregate_order_book_heatmap(
            [book(NOW - 1000, bids={100.0: 0.0, 99.0: -1.0, 98.0: float("nan")})],
            now=NOW,
        )
        assert result.is_empty
        assert result.time_extent is None
        assert result.price_extent is None

    def test_empty_input(self):
        result = aggregate_order_book_heatmap([], now=NOW)
        assert result.is_empty
        assert result.max_bid_size == 0.0


class TestLevelTruncation:
    def test_positional_not_by_size(self):
        config = HeatmapBinConfig(price_bin_size=1.0, max_price_levels=2)
        snapshot = book(NOW - 1000, bids={100.0: 1.0, 99.0: 1.0, 98.0: 50.0})
        result = aggregate_order_book_heatmap([snapshot], config, now=NOW)

        assert [c.price for c in result.cells] == [99.0, 100.0]
        assert result.max_bid_size == 1.0


class TestConfig:
    @pytest.mark.parametrize(
        "overrides",
        [
            {"price_bin_size": 0},
            {"price_bin_size": -0.5},
            {"time_bin_seconds": float("inf")},
            {"time_window_minutes": 0},
            {"max_price_levels": 0},
            {"max_price_levels": 2.5},
        ],
    )
    def test_invalid_values(self, overrides):
        config = merge_heatmap_config(overrides=overrides)
        with pytest.raises(InvalidConfig):
            aggregate_order_book_heatmap([], config, now=NOW)

    def test_merge_layers(self):
        config = merge_heatmap_config({"price_bin_size": 1.0, "time_bin_seconds": 5}, {"price_bin_size": 2.0})
        assert config.price_bin_size == 2.0
        assert config.time_bin_seconds == 5
        assert config.time_window_minutes == DEFAULT_BIN_CONFIG.time_window_minutes

    def test_merge_rejects_unknown_key(self):
        with pytest.raises(InvalidConfig) as exc_info:
            merge_heatmap_config(overrides={"bucket": 3})
        assert "not a heatmap setting" in str(exc_info.value)

    def test_defaults(self):
        assert merge_heatmap_config() == DEFAULT_BIN_CONFIG
        assert DEFAULT_BIN_CONFIG.price_bin_size == 0.5
        assert DEFAULT_BIN_CONFIG.max_price_levels is None
