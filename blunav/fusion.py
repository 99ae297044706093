from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from itertools import combinations, product
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from .errors import (
    DegenerateGeometry,
    InsufficientBeacons,
    InsufficientValidGeometry,
    NumericalError,
)
from .geometry import GeometrySolver, circle_intersections, range_residual
from .models import BeaconConfig, FusionMode, Position

logger = logging.getLogger(__name__)

# (信标配置, 估算距离)
BeaconRange = Tuple[BeaconConfig, float]
Weighting = Callable[[Sequence[float]], float]

MIN_BEACONS = 3
_MIN_MEAN_DISTANCE = 1e-6


@dataclass(frozen=True)
class Candidate:
    position: Position
    weight: float
    beacon_ids: Tuple[str, ...]


@dataclass(frozen=True)
class FusionResult:
    position: Position
    confidence: float
    error: float
    candidate_count: int
    combination_count: int
    mode: FusionMode


def inverse_mean_distance(exponent: float = 1.0) -> Weighting:
    """权重 = 1 / mean(distances) ^ exponent，距离越近权重越大"""

    def weight(distances: Sequence[float]) -> float:
        mean = max(sum(distances) / len(distances), _MIN_MEAN_DISTANCE)
        return 1.0 / mean**exponent

    return weight


def planar_distance(beacon: BeaconConfig, distance: float) -> float:
    """把斜距投影到终端平面"""
    h = beacon.height_offset
    if h == 0.0:
        return distance
    return math.sqrt(max(distance * distance - h * h, 0.0))


class FusionEngine:
    """
    多信标融合：
    - least_squares_all: 所有信标一次最小二乘
    - weighted_trilateration: 每个三信标组合分别求解后加权平均
    - weighted_centroid: 每个三信标组合取两两圆交点的最近点质心后加权平均
    """

    def __init__(
        self,
        solver: Optional[GeometrySolver] = None,
        weight_exponent: float = 1.0,
        weighting: Optional[Weighting] = None,
        solve_3d: bool = False,
    ):
        if weight_exponent < 0:
            raise ValueError("weight_exponent must be >= 0")
        self.solver = solver or GeometrySolver()
        self.weight_exponent = weight_exponent
        self.weighting = weighting or inverse_mean_distance(weight_exponent)
        self.solve_3d = solve_3d

    # ---- Public API ----
    def fuse(self, ranges: Sequence[BeaconRange], mode: FusionMode) -> FusionResult:
        ranges = list(ranges)
        if len(ranges) < MIN_BEACONS:
            raise InsufficientBeacons(f"至少需要 {MIN_BEACONS} 个信标，当前 {len(ranges)} 个")

        match mode:
            case FusionMode.LEAST_SQUARES_ALL:
                return self._least_squares_all(ranges)
            case FusionMode.WEIGHTED_TRILATERATION | FusionMode.WEIGHTED_CENTROID:
                candidates = self.candidates(ranges, mode)
                total = sum(self.weighting(self._planar(triple)[1]) for triple in combinations(ranges, 3))
                return self._combine(ranges, candidates, total, mode)
            case _:
                raise ValueError(f"未知融合方式: {mode!r}")

    def candidates(self, ranges: Sequence[BeaconRange], mode: FusionMode) -> List[Candidate]:
        """每个三信标组合的候选位置（退化组合已跳过）"""
        match mode:
            case FusionMode.WEIGHTED_TRILATERATION:
                build = self._trilateration_candidate
            case FusionMode.WEIGHTED_CENTROID:
                build = self._centroid_candidate
            case _:
                raise ValueError(f"{mode.value} 不产生三信标候选")

        result: List[Candidate] = []
        for triple in combinations(ranges, 3):
            candidate = build(triple)
            if candidate is not None:
                result.append(candidate)
        return result

    # ---- Strategies ----
    def _least_squares_all(self, ranges: List[BeaconRange]) -> FusionResult:
        if self.solve_3d and len(ranges) >= 4:
            solution = self.solver.solve(
                [(b.position.as_tuple(), d) for b, d in ranges], dims=3
            )
            position = solution.position
        else:
            centers, distances, plane_z = self._planar(ranges)
            solution = self.solver.solve(list(zip(centers, distances)), dims=2)
            position = Position(solution.position.x, solution.position.y, plane_z)
        return FusionResult(
            position=position,
            confidence=1.0,
            error=solution.residual,
            candidate_count=1,
            combination_count=1,
            mode=FusionMode.LEAST_SQUARES_ALL,
        )

    def _trilateration_candidate(self, triple: Sequence[BeaconRange]) -> Optional[Candidate]:
        centers, distances, plane_z = self._planar(triple)
        ids = tuple(b.beacon_id for b, _ in triple)
        try:
            solution = self.solver.solve(list(zip(centers, distances)), dims=2)
        except (DegenerateGeometry, NumericalError) as e:
            logger.debug("跳过信标组合 %s: %s", ids, e)
            return None
        return Candidate(
            position=Position(solution.position.x, solution.position.y, plane_z),
            weight=self.weighting(distances),
            beacon_ids=ids,
        )

    def _centroid_candidate(self, triple: Sequence[BeaconRange]) -> Optional[Candidate]:
        centers, distances, plane_z = self._planar(triple)
        ids = tuple(b.beacon_id for b, _ in triple)

        pairs = []
        for i, j in ((0, 1), (1, 2), (0, 2)):
            points = circle_intersections(centers[i], distances[i], centers[j], distances[j])
            if points:
                pairs.append((points, 3 - i - j))
        if not pairs:
            logger.debug("跳过信标组合 %s: 两两圆均无交点", ids)
            return None

        if len(pairs) == 1:
            # 只有一对圆相交：取离第三个圆最近的交点
            points, k = pairs[0]
            chosen = [
                min(
                    points,
                    key=lambda p: abs(math.hypot(p[0] - centers[k][0], p[1] - centers[k][1]) - distances[k]),
                )
            ]
        else:
            # 每对圆各取一个交点，使所选点两两距离之和最小；并列时取枚举顺序中的第一个
            best = None
            best_score = math.inf
            for combo in product(*(points for points, _ in pairs)):
                score = sum(math.hypot(p[0] - q[0], p[1] - q[1]) for p, q in combinations(combo, 2))
                if score < best_score:
                    best, best_score = combo, score
            chosen = list(best)  # type: ignore[arg-type]

        cx = sum(p[0] for p in chosen) / len(chosen)
        cy = sum(p[1] for p in chosen) / len(chosen)
        if not (math.isfinite(cx) and math.isfinite(cy)):
            return None
        return Candidate(
            position=Position(cx, cy, plane_z),
            weight=self.weighting(distances),
            beacon_ids=ids,
        )

    # ---- Helpers ----
    def _planar(
        self, ranges: Sequence[BeaconRange]
    ) -> Tuple[List[Tuple[float, float]], List[float], float]:
        centers = [(b.x, b.y) for b, _ in ranges]
        distances = [planar_distance(b, d) for b, d in ranges]
        plane_z = sum(b.plane_height for b, _ in ranges) / len(ranges)
        return centers, distances, plane_z

    def _combine(
        self,
        ranges: List[BeaconRange],
        candidates: List[Candidate],
        total_weight: float,
        mode: FusionMode,
    ) -> FusionResult:
        combination_count = math.comb(len(ranges), 3)
        if not candidates:
            raise InsufficientValidGeometry(
                f"{combination_count} 个信标组合均退化或无交点 ({mode.value})"
            )

        weights = np.array([c.weight for c in candidates], dtype=np.float64)
        coords = np.array([c.position.as_tuple() for c in candidates], dtype=np.float64)
        weight_sum = float(weights.sum())
        if not math.isfinite(weight_sum) or weight_sum <= 0:
            raise NumericalError(f"候选权重之和非法: {weight_sum}")
        fused = weights @ coords / weight_sum
        if not np.all(np.isfinite(fused)):
            raise NumericalError("融合结果包含 NaN/inf")

        position = Position(float(fused[0]), float(fused[1]), float(fused[2]))
        confidence = weight_sum / total_weight if total_weight > 0 else 0.0

        centers, distances, _ = self._planar(ranges)
        error = range_residual(
            np.array([position.x, position.y]),
            np.array(centers, dtype=np.float64),
            np.array(distances, dtype=np.float64),
        )
        return FusionResult(
            position=position,
            confidence=min(max(confidence, 0.0), 1.0),
            error=error,
            candidate_count=len(candidates),
            combination_count=combination_count,
            mode=mode,
        )
