"""
Utility functions module.

Time Semantics:
- Bar timestamps are ALWAYS authoritative
- Time-of-day rules are evaluated in the exchange's local time zone
- Wall-clock time is never used for trading decisions
"""
