from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Position:
    x: float
    y: float
    z: float = 0.0

    def distance_to(self, other: "Position") -> float:
        return math.sqrt(
            (self.x - other.x) ** 2 + (self.y - other.y) ** 2 + (self.z - other.z) ** 2
        )

    def distance_2d_to(self, other: "Position") -> float:
        return math.hypot(self.x - other.x, self.y - other.y)

    def as_tuple(self) -> Tuple[float, float, float]:
        return (self.x, self.y, self.z)


@dataclass(frozen=True)
class BeaconConfig:
    """
    信标配置（坐标 + 校准参数）
    height_offset: 信标与终端移动平面之间的垂直距离
    """

    beacon_id: str
    x: float
    y: float
    z: float = 0.0
    p0: Optional[float] = None  # 1 单位距离处的参考功率 (dBm)
    n: Optional[float] = None  # 路径损耗指数
    height_offset: float = 0.0
    name: str = ""

    @property
    def position(self) -> Position:
        return Position(x=self.x, y=self.y, z=self.z)

    @property
    def plane_height(self) -> float:
        """终端所在平面的高度"""
        return self.z - self.height_offset


@dataclass(frozen=True)
class SignalReading:
    beacon_id: str
    rssi: float
    timestamp: float = 0.0


@dataclass(frozen=True)
class CacheEntry:
    """
    缓存条目：最近一次读数 + 写入时间
    samples 保存同一 key 最近的若干读数（最新在最后），整体不可变
    """

    reading: SignalReading
    inserted_at: float
    samples: Tuple[SignalReading, ...] = ()
    sample_times: Tuple[float, ...] = ()

    def is_expired(self, now: float, expiration_seconds: float) -> bool:
        return now - self.inserted_at > expiration_seconds

    def fresh_samples(self, now: float, expiration_seconds: float) -> List[SignalReading]:
        """写入时间仍在有效期内的读数"""
        if not self.samples:
            return [] if self.is_expired(now, expiration_seconds) else [self.reading]
        return [
            reading
            for reading, ts in zip(self.samples, self.sample_times)
            if now - ts <= expiration_seconds
        ]


@dataclass(frozen=True)
class DeviceSnapshot:
    """某一时刻单个设备的只读视图 beacon_id -> CacheEntry"""

    device_id: str
    taken_at: float
    entries: Mapping[str, CacheEntry] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "entries", MappingProxyType(dict(self.entries)))

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self.entries)

    def __contains__(self, beacon_id: object) -> bool:
        return beacon_id in self.entries

    def __getitem__(self, beacon_id: str) -> CacheEntry:
        return self.entries[beacon_id]

    def items(self):
        return self.entries.items()

    @property
    def is_empty(self) -> bool:
        return len(self) == 0


@dataclass(frozen=True)
class DistanceEstimate:
    beacon_id: str
    distance: float
    sample_count: int


class FusionMode(Enum):
    LEAST_SQUARES_ALL = "least_squares_all"
    WEIGHTED_TRILATERATION = "weighted_trilateration"
    WEIGHTED_CENTROID = "weighted_centroid"


@dataclass(frozen=True)
class LocationEstimate:
    """
    位置计算结果，只在完整计算成功后生成
    """

    device_id: str
    position: Position
    confidence: float
    timestamp: int
    method: FusionMode = FusionMode.WEIGHTED_TRILATERATION
    beacon_count: int = 0
    error: Optional[float] = None

    def __post_init__(self):
        object.__setattr__(self, "confidence", min(max(self.confidence, 0.0), 1.0))

    def to_dict(self) -> Dict[str, Any]:
        # 推送给客户端的格式
        return {
            "device_id": self.device_id,
            "timestamp": int(self.timestamp),
            "location": {"x": self.position.x, "y": self.position.y, "z": self.position.z},
            "confidence": self.confidence,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


@dataclass(frozen=True)
class BeaconObservation:
    beacon_id: str
    rssi: float
    name: Optional[str] = None


@dataclass(frozen=True)
class IngestionRecord:
    """
    终端上报的蓝牙扫描记录
    {"device_id": "...", "timestamp": 1700000000, "readings": [{"beacon_id": "...", "rssi": -60}]}
    """

    device_id: str
    timestamp: int
    observations: List[BeaconObservation]

    def __len__(self) -> int:
        return len(self.observations)

    def __iter__(self) -> Iterator[BeaconObservation]:
        return iter(self.observations)

    @property
    def is_empty(self) -> bool:
        return len(self) == 0

    def readings(self) -> Iterator[SignalReading]:
        for obs in self.observations:
            yield SignalReading(beacon_id=obs.beacon_id, rssi=obs.rssi, timestamp=self.timestamp)

    @classmethod
    def parse(cls, payload: str | bytes) -> Optional["IngestionRecord"]:
        if isinstance(payload, bytes):
            try:
                payload = payload.decode("utf-8")
            except UnicodeDecodeError as e:
                logger.warning("上报数据不是 UTF-8: %s", e)
                return None
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            logger.warning("上报数据不是合法 JSON: %s", e)
            return None
        if not isinstance(data, dict):
            return None
        device_id = data.get("device_id")
        if not device_id:
            return None
        try:
            timestamp = int(data.get("timestamp", 0))
        except (TypeError, ValueError):
            logger.warning("设备 %s 时间戳非法: %r", device_id, data.get("timestamp"))
            return None

        observations: List[BeaconObservation] = []
        for item in data.get("readings") or []:
            if not isinstance(item, dict):
                continue
            beacon_id = item.get("beacon_id")
            if not beacon_id:
                continue
            try:
                rssi = float(item["rssi"])
            except (KeyError, TypeError, ValueError):
                continue
            if not math.isfinite(rssi):
                continue
            observations.append(
                BeaconObservation(beacon_id=str(beacon_id), rssi=rssi, name=item.get("name"))
            )
        return cls(device_id=str(device_id), timestamp=timestamp, observations=observations)
