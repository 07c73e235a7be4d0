"""
Data models and contracts module.

Immutable indicator snapshots and bars consumed by the signal pipeline.
"""
