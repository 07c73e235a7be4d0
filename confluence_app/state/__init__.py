"""
Position lifecycle state machine.

Positions move OPEN → CLOSED(PROFIT_TARGET | STOP_LOSS | TRAILING_STOP |
TIME_EXIT | VOLATILITY_REGIME_CHANGE | EMERGENCY_STOP) and never back.
"""
