"""
Indicator adapter contract and suite.
"""

from .base import IndicatorAdapter, IndicatorSuite, run_adapter

__all__ = ["IndicatorAdapter", "IndicatorSuite", "run_adapter"]
