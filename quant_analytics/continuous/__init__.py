"""
Streaming data layer.

Bounded buffers and aggregators that sit between the ingestion edge and the
engines:

    raw candles / order book snapshots
            |
    DataThinner, OrderBookHistory (throttling, FIFO retention)
            |
    heatmap binning, OFI, indicators
"""
