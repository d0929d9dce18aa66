"""
Indoor Positioning System (IPS) Core Package.

Beacon fix acquisition + route-constrained pedestrian dead reckoning for
indoor wayfinding.

Package structure:
- io: Sensor event streams (accelerometer, magnetometer)
- proto: Message schemas (beacon observations, fixes, routes, locations)
- localization: Kalman smoothing, trilateration, route geometry, tracker
- domain: Session orchestration (fix acquisition -> PDR tracking)
- metrics: Diagnostics, counters, histograms
"""

__version__ = "0.1.0"
__author__ = "Indoor Navigation Team"
