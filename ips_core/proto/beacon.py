"""
Beacon Message Schemas.

Defines the per-scan beacon observation produced by the BLE scanner and the
surveyed beacon record (position + calibrated tx power) used for ranging.
"""

from dataclasses import dataclass
from typing import Optional
import math


# Calibrated RSSI at 1m for a typical iBeacon when the record carries none
DEFAULT_TX_POWER_DBM = -59.0


def beacon_key(uuid: str, major: int, minor: int) -> str:
    """
    Build the composite lookup key for a beacon.

    The uuid is upper-cased so lookups are case-insensitive.
    """
    return f"{uuid.upper()}-{major}-{minor}"


@dataclass
class BeaconObservation:
    """
    One beacon sighting from a single scan cycle.

    Attributes:
        uuid: iBeacon proximity UUID
        major: iBeacon major number
        minor: iBeacon minor number
        rssi: Instantaneous received signal strength (dBm)
        timestamp: Time of the sighting (seconds)
        avg_rssi: Trailing average RSSI from the scanner, if available
    """

    uuid: str
    major: int
    minor: int
    rssi: float
    timestamp: float = 0.0
    avg_rssi: Optional[float] = None

    def __post_init__(self):
        """Validate observation."""
        if not self.uuid:
            raise ValueError("Beacon uuid cannot be empty")

        if self.major < 0 or self.minor < 0:
            raise ValueError(f"Major/minor cannot be negative: {self.major}/{self.minor}")

        if not math.isfinite(self.rssi):
            raise ValueError(f"RSSI must be finite: {self.rssi}")

        if self.avg_rssi is not None and not math.isfinite(self.avg_rssi):
            raise ValueError(f"Average RSSI must be finite: {self.avg_rssi}")

    @property
    def key(self) -> str:
        """Composite lookup key."""
        return beacon_key(self.uuid, self.major, self.minor)

    @property
    def effective_rssi(self) -> float:
        """Trailing average RSSI when available, else instantaneous RSSI."""
        if self.avg_rssi is not None:
            return self.avg_rssi
        return self.rssi

    def to_fix_payload(self) -> dict:
        """Request payload entry for the remote fix service (integer RSSI)."""
        return {
            'uuid': self.uuid,
            'major': self.major,
            'minor': self.minor,
            'rssi': int(math.floor(self.effective_rssi + 0.5)),
        }


@dataclass(frozen=True)
class BeaconRecord:
    """
    Surveyed beacon installed on a floor.

    Attributes:
        uuid: iBeacon proximity UUID
        major: iBeacon major number
        minor: iBeacon minor number
        x: Beacon position on the floor map (map units)
        y: Beacon position on the floor map (map units)
        tx_power_at_1m: Calibrated RSSI at 1 meter (dBm)
    """

    uuid: str
    major: int
    minor: int
    x: float
    y: float
    tx_power_at_1m: float = DEFAULT_TX_POWER_DBM

    def __post_init__(self):
        """Validate record."""
        if not self.uuid:
            raise ValueError("Beacon uuid cannot be empty")

        if not (math.isfinite(self.x) and math.isfinite(self.y)):
            raise ValueError(f"Beacon position must be finite: ({self.x}, {self.y})")

    @property
    def key(self) -> str:
        """Composite lookup key."""
        return beacon_key(self.uuid, self.major, self.minor)

    @property
    def effective_tx_power(self) -> float:
        """Tx power, falling back to the iBeacon default when unset."""
        if not self.tx_power_at_1m or not math.isfinite(self.tx_power_at_1m):
            return DEFAULT_TX_POWER_DBM
        return self.tx_power_at_1m

    @classmethod
    def from_dict(cls, data: dict) -> 'BeaconRecord':
        """Build a record from the backend's beacon JSON."""
        return cls(
            uuid=data['uuid'],
            major=int(data['major']),
            minor=int(data['minor']),
            x=float(data['x']),
            y=float(data['y']),
            tx_power_at_1m=float(data.get('txPower') or DEFAULT_TX_POWER_DBM),
        )
