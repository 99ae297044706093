from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, List, Optional

from .models import CacheEntry, DeviceSnapshot, SignalReading

logger = logging.getLogger(__name__)


class _Shard:
    __slots__ = ("lock", "devices")

    def __init__(self):
        self.lock = threading.Lock()
        # device_id -> {beacon_id -> CacheEntry}
        self.devices: Dict[str, Dict[str, CacheEntry]] = {}


class ReadingCache:
    """
    线程安全的信号读数缓存，key 为 (device, beacon)

    - 按设备分片，每个分片一把锁；条目不可变，读者只会看到完整的旧值或新值
    - 过期条目在读取时惰性删除，过期后绝不返回
    """

    def __init__(
        self,
        expiration_seconds: float,
        shards: int = 16,
        max_samples: int = 10,
        clock: Callable[[], float] = time.time,
    ):
        if expiration_seconds <= 0:
            raise ValueError("expiration_seconds must be positive")
        if shards < 1:
            raise ValueError("shards must be >= 1")
        if max_samples < 1:
            raise ValueError("max_samples must be >= 1")
        self.expiration_seconds = float(expiration_seconds)
        self.max_samples = max_samples
        self._clock = clock
        self._shards = [_Shard() for _ in range(shards)]

    def _shard(self, device_id: str) -> _Shard:
        return self._shards[hash(device_id) % len(self._shards)]

    def now(self) -> float:
        """缓存所用时钟的当前时间"""
        return self._clock()

    def _now(self, now: Optional[float]) -> float:
        return self._clock() if now is None else now

    # ---- Writes ----
    def upsert(
        self,
        device_id: str,
        beacon_id: str,
        reading: SignalReading,
        now: Optional[float] = None,
    ) -> CacheEntry:
        """写入最新读数（同 key 后写覆盖先写）"""
        ts = self._now(now)
        shard = self._shard(device_id)
        with shard.lock:
            beacons = shard.devices.setdefault(device_id, {})
            previous = beacons.get(beacon_id)
            if previous is None or previous.is_expired(ts, self.expiration_seconds):
                samples: tuple = (reading,)
                sample_times: tuple = (ts,)
            else:
                samples = (previous.samples + (reading,))[-self.max_samples:]
                sample_times = (previous.sample_times + (ts,))[-self.max_samples:]
            entry = CacheEntry(
                reading=reading, inserted_at=ts, samples=samples, sample_times=sample_times
            )
            beacons[beacon_id] = entry
        return entry

    # ---- Reads ----
    def get(self, device_id: str, beacon_id: str, now: Optional[float] = None) -> Optional[CacheEntry]:
        """返回当前条目；不存在或已过期返回 None"""
        ts = self._now(now)
        shard = self._shard(device_id)
        with shard.lock:
            beacons = shard.devices.get(device_id)
            if not beacons:
                return None
            entry = beacons.get(beacon_id)
            if entry is None:
                return None
            if entry.is_expired(ts, self.expiration_seconds):
                del beacons[beacon_id]
                if not beacons:
                    del shard.devices[device_id]
                return None
            return entry

    def snapshot(self, device_id: str, now: Optional[float] = None) -> DeviceSnapshot:
        """某一时刻单个设备所有未过期条目的只读视图"""
        ts = self._now(now)
        shard = self._shard(device_id)
        with shard.lock:
            beacons = shard.devices.get(device_id)
            if not beacons:
                return DeviceSnapshot(device_id=device_id, taken_at=ts)
            live = self._evict_expired(beacons, ts)
            if not beacons:
                del shard.devices[device_id]
        return DeviceSnapshot(device_id=device_id, taken_at=ts, entries=live)

    def devices(self, now: Optional[float] = None) -> List[str]:
        """当前至少有一个未过期条目的设备"""
        ts = self._now(now)
        result: List[str] = []
        for shard in self._shards:
            with shard.lock:
                for device_id in list(shard.devices):
                    beacons = shard.devices[device_id]
                    self._evict_expired(beacons, ts)
                    if beacons:
                        result.append(device_id)
                    else:
                        del shard.devices[device_id]
        return sorted(result)

    # ---- Maintenance ----
    def purge(self, now: Optional[float] = None) -> int:
        """删除所有过期条目，返回删除数量"""
        ts = self._now(now)
        removed = 0
        for shard in self._shards:
            with shard.lock:
                for device_id in list(shard.devices):
                    beacons = shard.devices[device_id]
                    before = len(beacons)
                    self._evict_expired(beacons, ts)
                    removed += before - len(beacons)
                    if not beacons:
                        del shard.devices[device_id]
        if removed:
            logger.debug("清理过期读数 %d 条", removed)
        return removed

    def clear(self) -> None:
        for shard in self._shards:
            with shard.lock:
                shard.devices.clear()

    def __len__(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += sum(len(b) for b in shard.devices.values())
        return total

    def _evict_expired(self, beacons: Dict[str, CacheEntry], now: float) -> Dict[str, CacheEntry]:
        # 调用方需持有分片锁
        live: Dict[str, CacheEntry] = {}
        for beacon_id in list(beacons):
            entry = beacons[beacon_id]
            if entry.is_expired(now, self.expiration_seconds):
                del beacons[beacon_id]
            else:
                live[beacon_id] = entry
        return live
