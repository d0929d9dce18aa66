"""
Tracking diagnostics.

One collector per process counts what the tracker and controller did and,
more importantly, what they skipped: every dropped scan batch, footstep or
service result carries a reason code from DROP_REASONS. Histograms keep a
bounded tail of recent samples (snap deviation, step length, solver
determinant).
"""

import logging
import threading
import time
from typing import Dict, List, Optional
from dataclasses import dataclass
from collections import defaultdict
import statistics

logger = logging.getLogger(__name__)


# Counters reported even when they never fired
STANDARD_COUNTERS = (
    'beacon_batches_in',
    'beacon_positions',
    'fix_requests',
    'fix_locked',
    'route_requests',
    'steps_detected',
    'dead_reckoning_steps',
    'positions_emitted',
    'route_deviations',
)


@dataclass
class CounterSnapshot:
    """Point-in-time copy of the collector."""

    timestamp: float
    counters: Dict[str, int]
    drop_reasons: Dict[str, int]
    histograms: Dict[str, List[float]]

    def total_dropped(self) -> int:
        return sum(self.drop_reasons.values())


def summarize_samples(samples: List[float]) -> Optional[Dict[str, float]]:
    """count/min/max/mean/median/p95/p99 of a sample list, None when empty."""
    if not samples:
        return None

    ordered = sorted(samples)
    count = len(ordered)

    def percentile(fraction: float) -> float:
        return ordered[min(count - 1, int(count * fraction))]

    return {
        'count': count,
        'min': ordered[0],
        'max': ordered[-1],
        'mean': statistics.mean(ordered),
        'median': statistics.median(ordered),
        'p95': percentile(0.95),
        'p99': percentile(0.99),
    }


class MetricsCollector:
    """
    Thread-safe counters, drop reasons and histograms.

    Usage:
        metrics = MetricsCollector()
        metrics.increment('steps_detected')
        metrics.increment_drop('no_route')
        metrics.record_histogram('step_px', 7.0)
        metrics.print_summary()
    """

    DROP_REASONS = {
        'weak_signal': 'No beacon above the RSSI threshold',
        'insufficient_beacons': 'Less than 3 usable known beacons',
        'degenerate_geometry': 'Collinear beacons, no unique solution',
        'non_finite_solution': 'Trilateration produced NaN/inf',
        'invalid_position': 'Non-finite position rejected',
        'no_anchor': 'No established position yet',
        'no_route': 'Route unavailable for dead reckoning',
        'invalid_step': 'Step length non-finite or non-positive',
        'invalid_sample': 'Non-finite sensor sample',
        'fix_failed': 'Fix service raised an error',
        'fix_invalid': 'Fix service returned an invalid fix',
        'route_failed': 'Route service raised an error',
        'route_too_short': 'Route service returned fewer than 2 usable points',
        'stale_session': 'Result arrived for a cleared session',
    }

    def __init__(self):
        self._lock = threading.Lock()
        self._started = time.time()
        self._counters: Dict[str, int] = defaultdict(int)
        self._drops: Dict[str, int] = defaultdict(int)
        self._histograms: Dict[str, List[float]] = defaultdict(list)
        for name in STANDARD_COUNTERS:
            self._counters[name] = 0
        for reason in self.DROP_REASONS:
            self._drops[reason] = 0

    def increment(self, counter_name: str, value: int = 1):
        with self._lock:
            self._counters[counter_name] += value

    def increment_drop(self, reason: str, value: int = 1):
        """
        Count a skipped event.

        Unknown reason codes are still counted, with a warning, so a typo
        never hides a drop.
        """
        if reason not in self.DROP_REASONS:
            logger.warning(f"Unknown drop reason '{reason}'")

        with self._lock:
            self._drops[reason] += value
            self._counters['events_dropped'] += value

    def get_counter(self, counter_name: str) -> int:
        with self._lock:
            return self._counters.get(counter_name, 0)

    def get_drop_count(self, reason: str) -> int:
        with self._lock:
            return self._drops.get(reason, 0)

    def record_histogram(self, histogram_name: str, value: float, max_samples: int = 10000):
        """Append a sample; past max_samples only the newest half is kept."""
        with self._lock:
            samples = self._histograms[histogram_name]
            samples.append(value)
            if len(samples) > max_samples:
                del samples[:len(samples) - max_samples // 2]

    def snapshot(self) -> CounterSnapshot:
        with self._lock:
            return CounterSnapshot(
                timestamp=time.time(),
                counters=dict(self._counters),
                drop_reasons=dict(self._drops),
                histograms={name: list(values) for name, values in self._histograms.items()},
            )

    def get_uptime(self) -> float:
        return time.time() - self._started

    def print_summary(self):
        """Print counters, non-zero drop reasons and histogram tails."""
        snapshot = self.snapshot()
        rule = "-" * 60

        print(f"\n{rule}\nTracking metrics after {self.get_uptime():.1f}s\n{rule}")

        for name, value in sorted(snapshot.counters.items()):
            print(f"  {name:28s} {value:8d}")

        total_dropped = snapshot.total_dropped()
        if total_dropped:
            print("\n  dropped:")
            for reason, count in sorted(snapshot.drop_reasons.items()):
                if count:
                    print(f"    {reason:26s} {count:8d} ({100.0 * count / total_dropped:5.1f}%)")

        for name, samples in sorted(snapshot.histograms.items()):
            stats = summarize_samples(samples)
            if stats:
                print(f"\n  {name}: n={stats['count']} mean={stats['mean']:.3f} "
                      f"p95={stats['p95']:.3f} max={stats['max']:.3f}")

        print(rule)
