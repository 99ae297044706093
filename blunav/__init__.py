"""BLE indoor positioning package.

This package provides:
- ReadingCache: thread-safe, freshness-bounded store of per-beacon readings
- DistanceEstimator: trimmed-mean RSSI to distance conversion
- GeometrySolver / FusionEngine: least-squares trilateration and weighted fusion
- LocationOrchestrator: per-device positioning pipeline
- ConfigManager / BeaconStore: YAML configuration and CSV beacon database
- MQTTDataProcessor: MQTT ingestion and location push
"""

from .config_manager import ConfigManager, PositioningSettings
from .beacon_store import BeaconStore
from .distance import DistanceEstimator, distance_to_rssi, rssi_to_distance
from .errors import (
    DegenerateGeometry,
    EmptySampleSet,
    FailureKind,
    InsufficientBeacons,
    InsufficientValidGeometry,
    InvalidConfig,
    NumericalError,
    PositioningError,
    StaleData,
)
from .fusion import FusionEngine
from .geometry import GeometrySolver
from .locator import LocationOrchestrator
from .models import (
    BeaconConfig,
    CacheEntry,
    DeviceSnapshot,
    DistanceEstimate,
    FusionMode,
    LocationEstimate,
    Position,
    SignalReading,
)
from .mqtt_processor import MQTTDataProcessor
from .reading_cache import ReadingCache

__all__ = [
    "BeaconConfig",
    "BeaconStore",
    "CacheEntry",
    "ConfigManager",
    "DegenerateGeometry",
    "DeviceSnapshot",
    "DistanceEstimate",
    "DistanceEstimator",
    "EmptySampleSet",
    "FailureKind",
    "FusionEngine",
    "FusionMode",
    "GeometrySolver",
    "InsufficientBeacons",
    "InsufficientValidGeometry",
    "InvalidConfig",
    "LocationEstimate",
    "LocationOrchestrator",
    "MQTTDataProcessor",
    "NumericalError",
    "Position",
    "PositioningError",
    "PositioningSettings",
    "ReadingCache",
    "SignalReading",
    "StaleData",
    "distance_to_rssi",
    "rssi_to_distance",
]
