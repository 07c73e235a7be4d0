"""
Signal confluence pipeline.

Gates five indicator snapshots through Market Condition → Trend →
Entry Trigger → Risk Assessment, clusters the surfaced price levels into
confluence zones and synthesizes one StrategySignal per tick.
"""
