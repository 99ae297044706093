from __future__ import annotations

import logging
import math
from typing import Iterable, Optional

import numpy as np

from .errors import EmptySampleSet, InvalidConfig, NumericalError
from .models import BeaconConfig, DistanceEstimate

logger = logging.getLogger(__name__)


def _check_model(p0: Optional[float], n: Optional[float]) -> None:
    if p0 is None or not math.isfinite(p0):
        raise InvalidConfig(f"参考功率 p0 缺失或非法: {p0!r}")
    if n is None or not math.isfinite(n) or n <= 0:
        raise InvalidConfig(f"路径损耗指数 n 必须大于 0: {n!r}")


def rssi_to_distance(rssi: float, p0: float, n: float) -> float:
    """
    对数距离模型: d = 10 ^ ((p0 - rssi) / (10 * n))
    参考距离为 1 个单位
    """
    _check_model(p0, n)
    exponent = (p0 - rssi) / (10.0 * n)
    try:
        distance = math.pow(10.0, exponent)
    except OverflowError:
        raise NumericalError(f"RSSI {rssi!r} 超出模型范围 (p0={p0}, n={n})") from None
    return max(distance, 0.0)


def distance_to_rssi(distance: float, p0: float, n: float) -> float:
    """rssi_to_distance 的反函数"""
    _check_model(p0, n)
    if distance <= 0:
        return float("-inf")
    return p0 - 10.0 * n * math.log10(distance)


class DistanceEstimator:
    """
    RSSI -> 距离
    先排序并去掉两端异常值（截尾均值），再代入传播模型
    """

    def __init__(self, trim_fraction: float = 0.1, trim_count: Optional[int] = None):
        if not 0.0 <= trim_fraction < 0.5:
            raise InvalidConfig(f"trim_fraction 必须在 [0, 0.5) 内: {trim_fraction}")
        if trim_count is not None and trim_count < 0:
            raise InvalidConfig(f"trim_count 不能为负: {trim_count}")
        self.trim_fraction = trim_fraction
        self.trim_count = trim_count

    def _trim(self, samples: np.ndarray) -> np.ndarray:
        # 固定个数优先于比例
        if self.trim_count is not None:
            k = self.trim_count
        else:
            k = int(math.floor(len(samples) * self.trim_fraction))
        if k == 0:
            return samples
        return samples[k : len(samples) - k]

    def trimmed_mean(self, samples: Iterable[float]) -> tuple[float, int]:
        values = np.sort(np.asarray(list(samples), dtype=np.float64))
        if values.size == 0:
            raise EmptySampleSet("没有可用的 RSSI 样本")
        kept = self._trim(values)
        if kept.size == 0:
            raise EmptySampleSet(f"截尾后没有剩余样本 (原始 {values.size} 个)")
        return float(kept.mean()), int(kept.size)

    def estimate(self, beacon: BeaconConfig, samples: Iterable[float]) -> DistanceEstimate:
        _check_model(beacon.p0, beacon.n)
        rssi_avg, used = self.trimmed_mean(samples)
        distance = rssi_to_distance(rssi_avg, beacon.p0, beacon.n)  # type: ignore[arg-type]
        logger.debug(
            "信标 %s: rssi_avg=%.2f, 样本数=%d, 距离=%.3f", beacon.beacon_id, rssi_avg, used, distance
        )
        return DistanceEstimate(beacon_id=beacon.beacon_id, distance=distance, sample_count=used)
