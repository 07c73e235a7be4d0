"""
Indicator adapter contract.

The indicator computations themselves (gamma exposure aggregation, volume
profile, anchored VWAP, fractal/retracement detection, ATR stop sizing)
live outside this package. Each is plugged in as a pure callable
``(bars, config) -> snapshot``; the suite runs all five against the same
bar history and packs the results into one IndicatorBundle.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from ..config.defaults import StrategyConfig
from ..errors import IndicatorComputationError
from ..models.snapshots import (
    Bar,
    IndicatorBundle,
    IndicatorSnapshot,
    SnapshotKind,
)

logger = structlog.get_logger(__name__)

IndicatorAdapter = Callable[[Sequence[Bar], StrategyConfig], IndicatorSnapshot]


@dataclass(frozen=True)
class IndicatorSuite:
    """The five adapters used by the tick driver."""
    gamma: IndicatorAdapter
    liquidity: IndicatorAdapter
    trend: IndicatorAdapter
    pattern: IndicatorAdapter
    volatility: IndicatorAdapter

    def adapters(self) -> dict[SnapshotKind, IndicatorAdapter]:
        return {
            SnapshotKind.GAMMA: self.gamma,
            SnapshotKind.LIQUIDITY: self.liquidity,
            SnapshotKind.TREND: self.trend,
            SnapshotKind.PATTERN: self.pattern,
            SnapshotKind.VOLATILITY: self.volatility,
        }

    def compute(self, bars: Sequence[Bar], config: StrategyConfig) -> IndicatorBundle:
        """
        Run every adapter over the bar history.

        An adapter that raises, returns the wrong snapshot kind, or stamps its
        snapshot with a different bar than the latest one is recorded as a
        failure instead of propagating. The failure is logged once here; the
        pipeline turns it into a rejection of the gate that consumes it.
        """
        if not bars:
            raise IndicatorComputationError("No bars supplied to indicator suite")

        bar_ts = bars[-1].timestamp
        snapshots: dict[SnapshotKind, IndicatorSnapshot] = {}
        failures: list[tuple[SnapshotKind, str]] = []

        for kind, adapter in self.adapters().items():
            try:
                snapshot = run_adapter(kind, adapter, bars, config)
            except IndicatorComputationError as e:
                logger.error(
                    "Indicator computation failed",
                    indicator=kind.value,
                    error=str(e),
                    bar_timestamp=bar_ts.isoformat(),
                )
                failures.append((kind, str(e)))
                continue
            snapshots[kind] = snapshot

        return IndicatorBundle(
            gamma=snapshots.get(SnapshotKind.GAMMA),  # type: ignore[arg-type]
            liquidity=snapshots.get(SnapshotKind.LIQUIDITY),  # type: ignore[arg-type]
            trend=snapshots.get(SnapshotKind.TREND),  # type: ignore[arg-type]
            pattern=snapshots.get(SnapshotKind.PATTERN),  # type: ignore[arg-type]
            volatility=snapshots.get(SnapshotKind.VOLATILITY),  # type: ignore[arg-type]
            failures=tuple(failures),
        )


def run_adapter(
    kind: SnapshotKind,
    adapter: IndicatorAdapter,
    bars: Sequence[Bar],
    config: StrategyConfig,
) -> IndicatorSnapshot:
    """Invoke one adapter and check its output belongs to the latest bar."""
    try:
        snapshot = adapter(bars, config)
    except IndicatorComputationError:
        raise
    except Exception as e:
        raise IndicatorComputationError(
            f"{kind.value} adapter raised {type(e).__name__}: {e}",
            indicator=kind.value,
        ) from e

    snapshot_kind: Optional[SnapshotKind] = getattr(snapshot, "kind", None)
    if snapshot_kind != kind:
        raise IndicatorComputationError(
            f"{kind.value} adapter returned a {snapshot_kind} snapshot",
            indicator=kind.value,
        )

    if snapshot.timestamp != bars[-1].timestamp:
        raise IndicatorComputationError(
            f"{kind.value} snapshot is not from the latest bar",
            indicator=kind.value,
            context={
                "snapshot_ts": snapshot.timestamp.isoformat(),
                "bar_ts": bars[-1].timestamp.isoformat(),
            },
        )

    return snapshot
