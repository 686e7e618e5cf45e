import pytest

import quant_analytics
from quant_analytics.engines.indicator_config import DEFAULT_CONFIG, AnalyticsConfig, get_config


class TestLazyExports:
    def test_every_export_resolves(self):
        for name in quant_analytics.__all__:
            assert getattr(quant_analytics, name) is not None

    def test_unknown_attribute(self):
        with pytest.raises(AttributeError):
            quant_analytics.DoesNotExist

    def test_dir_lists_exports(self):
        assert "OFICalculator" in dir(quant_analytics)


class TestConfig:
    def test_defaults(self):
        config = get_config()
        assert config is DEFAULT_CONFIG
        assert config.periods.rsi == 14
        assert config.periods.macd_slow == 26
        assert config.ofi.history_size == 1000
        assert config.provenance.stale_threshold_ms == 5000
        assert config.alerts.cooldown_ms == 60000

    def test_independent_instances(self):
        config = AnalyticsConfig()
        config.periods.rsi = 7
        assert DEFAULT_CONFIG.periods.rsi == 14
