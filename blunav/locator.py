from __future__ import annotations

import logging
from typing import Dict, List, Optional, Protocol, Union

from .distance import DistanceEstimator
from .errors import EmptySampleSet, InsufficientBeacons, PositioningError, StaleData
from .fusion import MIN_BEACONS, BeaconRange, FusionEngine
from .models import BeaconConfig, CacheEntry, DistanceEstimate, FusionMode, LocationEstimate
from .reading_cache import ReadingCache

logger = logging.getLogger(__name__)


class BeaconLookup(Protocol):
    def get(self, beacon_id: str) -> Optional[BeaconConfig]: ...


class LocationOrchestrator:
    """
    单设备定位流程：缓存快照 -> 逐信标估距 -> 融合 -> LocationEstimate
    失败原样抛出，不重试、不回退到默认坐标
    """

    def __init__(
        self,
        cache: ReadingCache,
        beacons: BeaconLookup,
        estimator: Optional[DistanceEstimator] = None,
        engine: Optional[FusionEngine] = None,
        default_mode: FusionMode = FusionMode.WEIGHTED_TRILATERATION,
        max_reading_age: Optional[float] = None,
    ):
        self.cache = cache
        self.beacons = beacons
        self.estimator = estimator or DistanceEstimator()
        self.engine = engine or FusionEngine()
        self.default_mode = default_mode
        # 采集时间戳允许的最大年龄，None 表示只按缓存写入时间判断
        self.max_reading_age = max_reading_age

    def estimate_distance(self, beacon: BeaconConfig, entry: CacheEntry, now: float) -> DistanceEstimate:
        samples = entry.fresh_samples(now, self.cache.expiration_seconds)
        if self.max_reading_age is not None:
            samples = [s for s in samples if now - s.timestamp <= self.max_reading_age]
        if not samples:
            raise StaleData(f"信标 {beacon.beacon_id} 的读数已过期")
        return self.estimator.estimate(beacon, [s.rssi for s in samples])

    def collect_ranges(self, device_id: str, now: float) -> List[BeaconRange]:
        snapshot = self.cache.snapshot(device_id, now=now)
        ranges: List[BeaconRange] = []
        for beacon_id, entry in sorted(snapshot.items()):
            beacon = self.beacons.get(beacon_id)
            if beacon is None:
                logger.debug("设备 %s: 未知信标 %s，忽略", device_id, beacon_id)
                continue
            try:
                estimate = self.estimate_distance(beacon, entry, now)
            except (StaleData, EmptySampleSet) as e:
                logger.debug("设备 %s: 跳过信标 %s (%s)", device_id, beacon_id, e.kind.value)
                continue
            ranges.append((beacon, estimate.distance))
        return ranges

    def locate(
        self,
        device_id: str,
        mode: Optional[FusionMode] = None,
        now: Optional[float] = None,
    ) -> LocationEstimate:
        mode = mode or self.default_mode
        now = self.cache.now() if now is None else now

        ranges = self.collect_ranges(device_id, now)
        if len(ranges) < MIN_BEACONS:
            raise InsufficientBeacons(
                f"设备 {device_id} 可用信标 {len(ranges)} 个，至少需要 {MIN_BEACONS} 个"
            )

        result = self.engine.fuse(ranges, mode)
        estimate = LocationEstimate(
            device_id=device_id,
            position=result.position,
            confidence=result.confidence,
            timestamp=int(now),
            method=mode,
            beacon_count=len(ranges),
            error=result.error,
        )
        logger.debug(
            "设备 %s 定位成功: (%.3f, %.3f, %.3f) 置信度 %.2f, 方法 %s, 信标数 %d",
            device_id,
            estimate.position.x,
            estimate.position.y,
            estimate.position.z,
            estimate.confidence,
            mode.value,
            estimate.beacon_count,
        )
        return estimate

    def locate_all(
        self,
        mode: Optional[FusionMode] = None,
        now: Optional[float] = None,
    ) -> Dict[str, Union[LocationEstimate, PositioningError]]:
        now = self.cache.now() if now is None else now
        results: Dict[str, Union[LocationEstimate, PositioningError]] = {}
        for device_id in self.cache.devices(now=now):
            try:
                results[device_id] = self.locate(device_id, mode=mode, now=now)
            except PositioningError as e:
                results[device_id] = e
        return results
