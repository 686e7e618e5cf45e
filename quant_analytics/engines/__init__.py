"""Analytics engines: indicators, order flow, statistics, provenance and alerts."""
