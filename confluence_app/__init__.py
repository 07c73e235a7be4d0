"""
Confluence App - Intraday 0DTE Signal Confluence Engine

Fuses gamma, liquidity, trend, pattern and volatility snapshots into one
trade decision per bar through four sequential gates, then manages the
resulting positions through a time- and price-driven exit policy under
session-wide risk limits.
"""

__version__ = "0.1.0"
__author__ = "Confluence Team"
