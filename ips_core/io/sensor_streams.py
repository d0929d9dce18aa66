"""
Sensor Event Streams.

Minimal in-process publish/subscribe stream for phone sensor samples. The
host application forwards platform accelerometer / magnetometer events into
a SensorStream with `emit`; the tracker subscribes while tracking.
"""

from typing import Any, Callable, List, Optional
import logging

logger = logging.getLogger(__name__)


SensorListener = Callable[[Any], None]


class SensorSubscription:
    """Handle returned by SensorStream.add_listener."""

    def __init__(self, stream: 'SensorStream', listener: SensorListener):
        self._stream = stream
        self._listener = listener
        self.active = True

    def remove(self):
        """Detach the listener. Safe to call more than once."""
        if not self.active:
            return
        self._stream._remove_listener(self._listener)
        self.active = False


class SensorStream:
    """
    Fan-out stream of sensor samples.

    Usage:
        accel = SensorStream("accelerometer")
        sub = accel.add_listener(on_sample)
        accel.emit(AccelerationSample(0.1, 0.2, 1.3))
        sub.remove()
    """

    def __init__(self, name: str, available: bool = True):
        """
        Initialize stream.

        Args:
            name: Stream name (for logging)
            available: Whether the underlying sensor exists on this device
        """
        self.name = name
        self._available = available
        self._listeners: List[SensorListener] = []
        self.update_interval_ms: Optional[int] = None

    def is_available(self) -> bool:
        return self._available

    def set_update_interval(self, interval_ms: int):
        """Request a sampling interval from the platform sensor."""
        self.update_interval_ms = interval_ms
        logger.debug(f"{self.name}: update interval set to {interval_ms} ms")

    def add_listener(self, listener: SensorListener) -> SensorSubscription:
        self._listeners.append(listener)
        return SensorSubscription(self, listener)

    def _remove_listener(self, listener: SensorListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def emit(self, sample: Any):
        """Deliver a sample to every current listener."""
        for listener in list(self._listeners):
            listener(sample)
