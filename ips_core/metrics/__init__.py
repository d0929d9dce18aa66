"""
Metrics Module: Diagnostics, counters, histograms.

Every skipped beacon batch, rejected step or failed service call is counted
with a reason code so intermittent tracking problems can be diagnosed.

Usage:
    from ips_core.metrics import get_metrics
    
    metrics = get_metrics()
    metrics.increment('beacon_batches_in')
    metrics.increment_drop('insufficient_beacons')
    metrics.record_histogram('snap_deviation_m', 0.42)
"""

from .counters import MetricsCollector, summarize_samples

# Global singleton for easy access
_global_metrics = None


def get_metrics() -> MetricsCollector:
    """
    Get the global metrics collector singleton.
    
    Returns:
        MetricsCollector instance
    """
    global _global_metrics
    if _global_metrics is None:
        _global_metrics = MetricsCollector()
    return _global_metrics


def reset_metrics():
    """Reset global metrics (for testing)."""
    global _global_metrics
    _global_metrics = MetricsCollector()


__all__ = ['MetricsCollector', 'summarize_samples', 'get_metrics', 'reset_metrics']
