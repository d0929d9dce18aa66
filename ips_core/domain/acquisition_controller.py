"""
Position Acquisition & Mode Controller.

Sequences one tracking session:

    IDLE --batch--> ACQUIRING_FIX --fix ok--> LOCKED --navigate--> TRACKING
      ^                  |
      +---- fix failed --+

Exactly one beacon fix is computed per session. Once locked, beacon scanning
stops and the position is driven by route-constrained dead reckoning in
IndoorTracker. There is no re-fix while tracking.

All handlers run on one asyncio event loop. The fix and route requests are
awaited; a session token captured before each await lets results that
arrive after `clear_session()` / `start_session()` be discarded.
"""

from typing import Awaitable, Callable, Iterable, List, Optional
from dataclasses import dataclass
from enum import IntEnum
import logging

from ips_core.proto.beacon import BeaconObservation, BeaconRecord
from ips_core.proto.position_fix import PositionFix, PositionSource, TrackPosition, UserLocation
from ips_core.proto.route import FloorMetadata, RouteRequest, RouteResponse
from ips_core.localization.indoor_tracker import IndoorTracker
from ips_core.metrics import get_metrics

logger = logging.getLogger(__name__)


ComputeFix = Callable[[List[dict]], Awaitable[PositionFix]]
ComputeRoute = Callable[[RouteRequest], Awaitable[RouteResponse]]
FloorProvider = Callable[[str, str], Optional[FloorMetadata]]

# Number of strongest beacons sent to the fix service
FIX_BEACON_COUNT = 3


class SessionState(IntEnum):
    """Controller session state."""

    IDLE = 0           # Waiting for a usable beacon batch
    ACQUIRING_FIX = 1  # Fix request in flight
    LOCKED = 2         # Anchor fixed, waiting for navigation
    TRACKING = 3       # Dead reckoning along a route


@dataclass
class AnchorFix:
    """Locked anchor for dead reckoning."""

    x: float
    y: float
    building_id: str
    floor_id: str


class AcquisitionController:
    """
    Mediates between beacon scanning, remote services and IndoorTracker.

    Usage:
        controller = AcquisitionController(
            tracker,
            compute_fix=api.compute_position,
            compute_route=api.compute_route,
            publish_user_location=store.set_user_location,
            publish_route=store.set_navigation_route,
            stop_scanning=scanner.stop,
            floor_provider=store.get_floor,
        )
        controller.start_session(rssi_threshold_dbm=-90, beacon_records=records)

        await controller.handle_observations(batch)   # per scan cycle
        route = await controller.navigate_to(420.0, 180.0)
    """

    def __init__(
        self,
        tracker: IndoorTracker,
        compute_fix: ComputeFix,
        compute_route: ComputeRoute,
        publish_user_location: Optional[Callable[[UserLocation], None]] = None,
        publish_route: Optional[Callable[[Optional[RouteResponse]], None]] = None,
        stop_scanning: Optional[Callable[[], None]] = None,
        floor_provider: Optional[FloorProvider] = None,
        on_deviation: Optional[Callable[[UserLocation], None]] = None,
    ):
        """
        Initialize controller.

        Args:
            tracker: Route tracker driven once PDR starts
            compute_fix: Remote fix service (awaitable)
            compute_route: Remote route service (awaitable)
            publish_user_location: Writes location into shared app state
            publish_route: Writes the active route (or None) into shared app state
            stop_scanning: Stops the BLE scan stream
            floor_provider: Looks up floor dimensions for the map scale
            on_deviation: Notified when the tracker reports leaving the route
        """
        self.tracker = tracker
        self.compute_fix = compute_fix
        self.compute_route = compute_route
        self.publish_user_location = publish_user_location
        self.publish_route = publish_route
        self.stop_scanning = stop_scanning
        self.floor_provider = floor_provider
        self.on_deviation = on_deviation
        self.metrics = get_metrics()

        self.state = SessionState.IDLE
        self.rssi_threshold_dbm = tracker.config.rssi_threshold_dbm
        self.anchor: Optional[AnchorFix] = None

        self.current_fix: Optional[PositionFix] = None
        self.position_error: Optional[str] = None
        self.scanned_beacons: List[BeaconObservation] = []
        self.navigation_route: Optional[RouteResponse] = None
        self._route_requests_in_flight = 0
        self.off_route = False

        self._session_id = 0

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_fix_locked(self) -> bool:
        return self.state in (SessionState.LOCKED, SessionState.TRACKING)

    @property
    def is_fix_in_progress(self) -> bool:
        return self.state == SessionState.ACQUIRING_FIX

    @property
    def is_positioning(self) -> bool:
        return self.is_fix_in_progress

    @property
    def is_pdr_active(self) -> bool:
        return self.state == SessionState.TRACKING

    @property
    def is_navigating(self) -> bool:
        return self._route_requests_in_flight > 0

    @property
    def session_id(self) -> int:
        return self._session_id

    def start_session(
        self,
        rssi_threshold_dbm: Optional[float] = None,
        beacon_records: Optional[Iterable[BeaconRecord]] = None,
    ):
        """
        Begin a new acquisition cycle.

        Args:
            rssi_threshold_dbm: Weakest usable RSSI (defaults to tracker config)
            beacon_records: Surveyed beacons for local trilateration
        """
        self._session_id += 1
        self.tracker.reset()

        self.state = SessionState.IDLE
        self.anchor = None
        self.current_fix = None
        self.position_error = None
        self.off_route = False

        if rssi_threshold_dbm is not None:
            self.rssi_threshold_dbm = rssi_threshold_dbm
            self.tracker.set_config(rssi_threshold_dbm=rssi_threshold_dbm)
        else:
            self.rssi_threshold_dbm = self.tracker.config.rssi_threshold_dbm

        if beacon_records is not None:
            self.tracker.set_beacons(beacon_records)

        logger.info(
            f"Session {self._session_id} started (rssi_threshold={self.rssi_threshold_dbm} dBm)"
        )

    def clear_session(self):
        """Stop tracking and discard the anchor and published route."""
        self._session_id += 1
        self.tracker.reset()

        self.state = SessionState.IDLE
        self.anchor = None
        self.navigation_route = None
        self.off_route = False
        self._publish_route(None)

        logger.info("Session cleared")

    def clear_navigation(self):
        """Drop the displayed route; tracking continues."""
        self.navigation_route = None
        self._publish_route(None)

    # ------------------------------------------------------------------
    # Fix acquisition
    # ------------------------------------------------------------------

    async def handle_observations(self, observations: Iterable[BeaconObservation]):
        """
        Handle one beacon scan batch.

        Requests a fix from the strongest beacons unless PDR is active, a fix
        is already locked, or a request is already in flight.
        """
        batch = list(observations)
        self.scanned_beacons = batch

        if self.is_pdr_active or self.is_fix_locked or self.is_fix_in_progress:
            return

        if not batch:
            return

        self.tracker.ingest_beacon_observations(batch)

        usable = [obs for obs in batch if obs.effective_rssi >= self.rssi_threshold_dbm]
        if not usable:
            self.metrics.increment_drop('weak_signal')
            self.position_error = (
                f"No beacon with sufficient RSSI (threshold {self.rssi_threshold_dbm} dBm)"
            )
            logger.debug(self.position_error)
            return

        top = sorted(usable, key=lambda obs: obs.effective_rssi, reverse=True)[:FIX_BEACON_COUNT]
        payload = [obs.to_fix_payload() for obs in top]

        session_id = self._session_id
        self.state = SessionState.ACQUIRING_FIX
        self.position_error = None
        self.metrics.increment('fix_requests')
        logger.debug(f"Requesting fix with beacons: {payload}")

        try:
            fix = await self.compute_fix(payload)
        except Exception as e:
            if session_id == self._session_id:
                self.metrics.increment_drop('fix_failed')
                self.position_error = str(e) or 'Unknown error'
                logger.error(f"Position error: {e}")
            return
        finally:
            if session_id == self._session_id and self.state == SessionState.ACQUIRING_FIX:
                self.state = SessionState.IDLE

        if session_id != self._session_id:
            self.metrics.increment_drop('stale_session')
            logger.debug("Discarding fix for a superseded session")
            return

        if not fix.is_usable:
            self.metrics.increment_drop('fix_invalid')
            self.position_error = fix.error_message or 'Position computation failed'
            logger.warning(f"Fix rejected: {self.position_error}")
            return

        self._lock_fix(fix)

    def _lock_fix(self, fix: PositionFix):
        self.current_fix = fix
        self.anchor = AnchorFix(fix.x, fix.y, fix.building_id, fix.floor_id)
        self.state = SessionState.LOCKED
        self.metrics.increment('fix_locked')

        logger.info(
            f"Fix locked at ({fix.x:.1f}, {fix.y:.1f}) on "
            f"{fix.floor_name or fix.floor_id} (building {fix.building_id})"
        )

        self._publish_location(UserLocation(
            building_id=fix.building_id,
            floor_id=fix.floor_id,
            x=fix.x,
            y=fix.y,
            source=PositionSource.BEACON,
        ))

        if self.stop_scanning is not None:
            try:
                self.stop_scanning()
            except Exception as e:
                logger.warning(f"Failed to stop beacon scanning: {e}")

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    async def navigate_to(self, dest_x: float, dest_y: float) -> Optional[RouteResponse]:
        """
        Request a route from the locked anchor and start dead reckoning.

        Returns:
            RouteResponse, or None if no anchor is locked, the route
            service failed or the route has fewer than 2 usable points
        """
        anchor = self.anchor
        if anchor is None or not self.is_fix_locked:
            logger.error("Cannot navigate: no anchor position")
            return None

        request = RouteRequest(
            building_id=anchor.building_id,
            floor_id=anchor.floor_id,
            start_x=anchor.x,
            start_y=anchor.y,
            dest_x=dest_x,
            dest_y=dest_y,
        )

        session_id = self._session_id
        self._route_requests_in_flight += 1
        self.metrics.increment('route_requests')

        try:
            route = await self.compute_route(request)
        except Exception as e:
            self.metrics.increment_drop('route_failed')
            logger.error(f"Navigation error: {e}")
            return None
        finally:
            self._route_requests_in_flight -= 1

        if session_id != self._session_id:
            self.metrics.increment_drop('stale_session')
            logger.debug("Discarding route for a superseded session")
            return None

        if sum(1 for point in route.route if point.is_finite) < 2:
            self.metrics.increment_drop('route_too_short')
            logger.error(f"Navigation error: route has {route.num_points} points, need at least 2")
            return None

        self.navigation_route = route
        self.off_route = False
        self._publish_route(route)

        if not self.is_pdr_active:
            self._start_pdr(anchor, route)

        logger.info(
            f"Navigation route: {route.num_points} points, "
            f"{route.total_distance:.1f} units"
        )
        return route

    def _start_pdr(self, anchor: AnchorFix, route: RouteResponse):
        floor = None
        if self.floor_provider is not None:
            floor = self.floor_provider(anchor.building_id, anchor.floor_id)
        if floor is None:
            floor = FloorMetadata(floor_id=anchor.floor_id)

        self.tracker.set_anchor_position(anchor.x, anchor.y)
        self.tracker.set_route(
            route.route,
            floor.map_width_px,
            floor.map_height_px,
            floor.real_width_m,
            floor.real_height_m,
        )
        self.tracker.set_position_callback(self._on_tracker_position)
        self.tracker.set_deviation_callback(self._on_tracker_deviation)
        self.tracker.start_sensors()

        self.state = SessionState.TRACKING
        logger.info(f"PDR started from ({anchor.x:.1f}, {anchor.y:.1f})")

    def _location_at(self, x: float, y: float, source: PositionSource) -> UserLocation:
        return UserLocation(
            building_id=self.anchor.building_id,
            floor_id=self.anchor.floor_id,
            x=x,
            y=y,
            source=source,
        )

    def _on_tracker_position(self, position: TrackPosition):
        if self.anchor is None:
            return
        self._publish_location(self._location_at(position.x, position.y, position.source))

    def _on_tracker_deviation(self):
        self.off_route = True
        if self.on_deviation is None or self.anchor is None:
            return
        x, y = self.tracker.last_position or (self.anchor.x, self.anchor.y)
        try:
            self.on_deviation(self._location_at(x, y, PositionSource.SENSOR))
        except Exception as e:
            logger.warning(f"Deviation handler failed: {e}")

    # ------------------------------------------------------------------
    # Publication (fire-and-forget)
    # ------------------------------------------------------------------

    def _publish_location(self, location: UserLocation):
        if self.publish_user_location is None:
            return
        try:
            self.publish_user_location(location)
        except Exception as e:
            logger.warning(f"Failed to set user location in store: {e}")

    def _publish_route(self, route: Optional[RouteResponse]):
        if self.publish_route is None:
            return
        try:
            self.publish_route(route)
        except Exception as e:
            logger.warning(f"Failed to set navigation route in store: {e}")
