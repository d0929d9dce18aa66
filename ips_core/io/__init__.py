"""
I/O Module: sensor event streams fed by the host platform.
"""

from .sensor_streams import SensorStream, SensorSubscription

__all__ = ['SensorStream', 'SensorSubscription']
