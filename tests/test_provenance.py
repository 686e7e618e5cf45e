"""
Tests for feed provenance tracking.

Tests cover:
- Sequence numbering and latency stamping
- Gap and staleness detection with an injected clock
- Latency percentiles
- Quality score tiers
- Registry lifecycle
"""

import logging
import math

import pytest

from quant_analytics.engines.provenance import (
    ProvenanceEngine,
    ProvenanceRegistry,
    nearest_rank_percentile,
)
from quant_analytics.engines.signals import FeedStatus


class TestAugment:
    """Tests for ProvenanceEngine.augment."""

    def test_sequence_and_latency(self, clock):
        engine = ProvenanceEngine("BTCUSDT", clock=clock)
        first = engine.augment({"price": 1}, exchange_timestamp=clock.now - 20)
        clock.advance(50)
        second = engine.augment({"price": 2}, exchange_timestamp=clock.now - 30)

        assert first.data == {"price": 1}
        assert first.provenance.sequence_number == 1
        assert second.provenance.sequence_number == 2
        assert first.provenance.latency_ms == pytest.approx(20)
        assert second.provenance.latency_ms == pytest.approx(30)
        assert second.provenance.feed_status == FeedStatus.LIVE

    def test_gap_flag(self, clock):
        engine = ProvenanceEngine("BTCUSDT", clock=clock)
        first = engine.augment(None, clock.now)
        clock.advance(100)
        at_threshold = engine.augment(None, clock.now)
        clock.advance(101)
        past_threshold = engine.augment(None, clock.now)

        assert not first.provenance.is_suspected_gap
        assert not at_threshold.provenance.is_suspected_gap
        assert past_threshold.provenance.is_suspected_gap

    def test_tick_after_silence_is_stale(self, clock):
        engine = ProvenanceEngine("BTCUSDT", clock=clock)
        engine.augment(None, clock.now)
        clock.advance(6000)
        record = engine.augment(None, clock.now).provenance
        assert record.feed_status == FeedStatus.STALE

    def test_non_finite_timestamp(self, clock, caplog):
        engine = ProvenanceEngine("BTCUSDT", clock=clock)
        with caplog.at_level(logging.WARNING, logger="quant_analytics.engines.provenance"):
            tick = engine.augment(None, math.nan)

        assert tick.provenance.latency_ms == 0.0
        assert tick.provenance.sequence_number == 1
        assert "non-finite" in caplog.text

    def test_high_latency_stays_live(self, clock, caplog):
        engine = ProvenanceEngine("BTCUSDT", clock=clock)
        with caplog.at_level(logging.WARNING, logger="quant_analytics.engines.provenance"):
            tick = engine.augment(None, clock.now - 2500)

        assert tick.provenance.feed_status == FeedStatus.LIVE
        assert "high feed latency" in caplog.text

    def test_to_dict(self, clock):
        engine = ProvenanceEngine("BTCUSDT", clock=clock)
        data = engine.augment(None, clock.now - 5).provenance.to_dict()
        assert data["feedStatus"] == "LIVE"
        assert data["sequenceNumber"] == 1


class TestFeedStatus:
    def test_initially_disconnected(self, clock):
        engine = ProvenanceEngine("BTCUSDT", clock=clock)
        assert engine.get_feed_status() == FeedStatus.DISCONNECTED
        assert engine.get_quality_score() == 0
        assert not engine.is_healthy()

    def test_live_goes_stale_without_new_tick(self, clock):
        engine = ProvenanceEngine("BTCUSDT", stale_threshold_ms=5000, clock=clock)
        engine.augment(None, clock.now)
        clock.advance(5000)
        assert engine.get_feed_status() == FeedStatus.LIVE

        clock.advance(1)
        assert engine.get_feed_status() == FeedStatus.STALE
        assert engine.get_quality_score() == 25

    def test_replay_healthy_while_ticks_recent(self, clock):
        engine = ProvenanceEngine("BTCUSDT", stale_threshold_ms=5000, clock=clock)
        engine.augment(None, clock.now)
        engine.mark_replay()
        clock.advance(5000)
        assert engine.get_feed_status() == FeedStatus.REPLAY
        assert engine.get_quality_score() == 75
        assert engine.is_healthy()

    def test_silent_replay_goes_stale(self, clock):
        engine = ProvenanceEngine("BTCUSDT", stale_threshold_ms=5000, clock=clock)
        engine.augment(None, clock.now)
        engine.mark_replay()
        clock.advance(10_000)
        assert engine.get_feed_status() == FeedStatus.STALE
        assert engine.get_quality_score() == 25
        assert not engine.is_healthy()

    def test_disconnected_after_silence_reports_stale(self, clock):
        engine = ProvenanceEngine("BTCUSDT", stale_threshold_ms=5000, clock=clock)
        engine.augment(None, clock.now)
        engine.mark_disconnected()
        clock.advance(5001)
        assert engine.get_feed_status() == FeedStatus.STALE

    def test_mark_disconnected(self, clock):
        engine = ProvenanceEngine("BTCUSDT", clock=clock)
        engine.augment(None, clock.now)
        engine.mark_disconnected()
        assert engine.get_feed_status() == FeedStatus.DISCONNECTED

    def test_reset(self, clock):
        engine = ProvenanceEngine("BTCUSDT", clock=clock)
        engine.augment(None, clock.now - 10)
        engine.reset()

        state = engine.get_state()
        assert state.last_sequence_number == 0
        assert state.sample_count == 0
        assert state.feed_status == FeedStatus.DISCONNECTED
        assert engine.augment(None, clock.now).provenance.sequence_number == 1


class TestLatencyStatistics:
    def test_percentiles(self, clock):
        engine = ProvenanceEngine("BTCUSDT", clock=clock)
        for latency in range(100, 0, -1):
            engine.augment(None, clock.now - latency)

        dist = engine.get_latency_distribution()
        assert dist.p50 == pytest.approx(50)
        assert dist.p95 == pytest.approx(95)
        assert dist.p99 == pytest.approx(99)
        assert dist.samples == sorted(dist.samples)
        assert dist.last_updated == clock.now

    def test_empty_distribution(self, clock):
        dist = ProvenanceEngine("X", clock=clock).get_latency_distribution()
        assert (dist.p50, dist.p95, dist.p99) == (0.0, 0.0, 0.0)

    def test_nearest_rank(self):
        assert nearest_rank_percentile([5.0], 0.01) == 5.0
        assert nearest_rank_percentile([1.0, 2.0, 3.0, 4.0], 0.5) == 2.0

    def test_samples_bounded(self, clock):
        engine = ProvenanceEngine("BTCUSDT", max_samples=3, clock=clock)
        for latency in (10, 20, 30, 40):
            engine.augment(None, clock.now - latency)
        assert engine.get_state().sample_count == 3
        assert engine.get_latency_range() == pytest.approx((20, 40))
        assert engine.get_average_latency() == pytest.approx(30)

    def test_range_before_samples(self, clock):
        assert ProvenanceEngine("X", clock=clock).get_latency_range() == (0.0, 0.0)

    @pytest.mark.parametrize(
        "latency,score",
        [(10, 100), (60, 90), (150, 80), (300, 70), (700, 60), (1500, 50)],
    )
    def test_quality_tiers(self, clock, latency, score):
        engine = ProvenanceEngine("BTCUSDT", clock=clock)
        engine.augment(None, clock.now - latency)
        assert engine.get_quality_score() == score

    def test_detect_sequence_gap(self, clock):
        engine = ProvenanceEngine("BTCUSDT", clock=clock)
        engine.augment(None, clock.now)
        engine.augment(None, clock.now)
        assert not engine.detect_sequence_gap(2)
        assert engine.detect_sequence_gap(3)


class TestRegistry:
    def test_engines_created_lazily(self, clock):
        registry = ProvenanceRegistry(clock=clock)
        assert "BTCUSDT" not in registry

        engine = registry.get_engine("BTCUSDT")
        assert registry.get_engine("BTCUSDT") is engine
        assert "BTCUSDT" in registry
        assert len(registry) == 1

    def test_settings_passed_through(self, clock):
        registry = ProvenanceRegistry(stale_threshold_ms=100, clock=clock)
        engine = registry.get_engine("ETHUSDT")
        engine.augment(None, clock.now)
        clock.advance(101)
        assert engine.get_feed_status() == FeedStatus.STALE

    def test_health_summary_and_reset(self, clock):
        registry = ProvenanceRegistry(clock=clock)
        registry.get_engine("BTCUSDT").augment(None, clock.now - 10)
        registry.get_engine("ETHUSDT")

        summary = registry.health_summary()
        assert summary["BTCUSDT"].status == FeedStatus.LIVE
        assert summary["BTCUSDT"].quality == 100
        assert summary["ETHUSDT"].quality == 0

        registry.reset_all()
        assert registry.get_engine("BTCUSDT").get_feed_status() == FeedStatus.DISCONNECTED

    def test_remove_and_clear(self, clock):
        registry = ProvenanceRegistry(clock=clock)
        registry.get_engine("A")
        registry.get_engine("B")
        registry.remove_engine("A")
        assert registry.tracked_symbols() == ["B"]
        registry.remove_engine("missing")

        registry.clear()
        assert len(registry) == 0
