from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np

from .errors import DegenerateGeometry, InsufficientBeacons, NumericalError
from .models import Position

logger = logging.getLogger(__name__)

# (坐标, 距离)，坐标为 (x, y) 或 (x, y, z)
Range = Tuple[Sequence[float], float]

DEFAULT_MAX_CONDITION_NUMBER = 1e4

# 判断两圆相切的容差（相对半径）
_TANGENT_EPS = 1e-9


@dataclass(frozen=True)
class Solution:
    position: Position
    condition_number: float
    residual: float


def range_residual(point: np.ndarray, centers: np.ndarray, distances: np.ndarray) -> float:
    """RMS(|p - c_i| - r_i)"""
    dims = point.shape[0]
    diff = np.linalg.norm(centers[:, :dims] - point, axis=1) - distances
    return float(np.sqrt(np.mean(diff**2)))


class GeometrySolver:
    """线性最小二乘三边定位（SVD），病态方程组直接拒绝"""

    def __init__(self, max_condition_number: float = DEFAULT_MAX_CONDITION_NUMBER):
        if max_condition_number <= 1:
            raise ValueError("max_condition_number must be > 1")
        self.max_condition_number = max_condition_number

    def linearize(self, centers: np.ndarray, distances: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        以最后一个信标为参考，用其余方程减去参考方程：
        2(c_n - c_i)·X = r_i^2 - r_n^2 - |c_i|^2 + |c_n|^2
        """
        ref = centers[-1]
        ref_d = distances[-1]
        others = centers[:-1]
        a = 2.0 * (ref - others)
        b = (
            distances[:-1] ** 2
            - ref_d**2
            - np.sum(others**2, axis=1)
            + np.sum(ref**2)
        )
        return a, b

    def solve(self, ranges: Sequence[Range], dims: int = 2) -> Solution:
        if dims not in (2, 3):
            raise ValueError("dims must be 2 or 3")
        if len(ranges) < dims + 1:
            raise InsufficientBeacons(f"{dims}D 定位至少需要 {dims + 1} 个信标，当前 {len(ranges)} 个")

        centers = np.array([list(c)[:dims] + [0.0] * (dims - len(c)) for c, _ in ranges], dtype=np.float64)
        distances = np.array([d for _, d in ranges], dtype=np.float64)
        if not (np.all(np.isfinite(centers)) and np.all(np.isfinite(distances))):
            raise NumericalError("信标坐标或距离包含非有限值")

        a, b = self.linearize(centers, distances)

        singular_values = np.linalg.svd(a, compute_uv=False)
        s_max = float(singular_values[0])
        s_min = float(singular_values[-1]) if singular_values.size >= dims else 0.0
        if s_max == 0.0 or s_min <= s_max * np.finfo(np.float64).eps:
            raise DegenerateGeometry("信标共线（或重合），方程组奇异")
        condition_number = s_max / s_min
        if condition_number > self.max_condition_number:
            raise DegenerateGeometry(
                f"方程组病态: 条件数 {condition_number:.3g} > {self.max_condition_number:.3g}"
            )

        x, *_ = np.linalg.lstsq(a, b, rcond=None)
        if not np.all(np.isfinite(x)):
            raise NumericalError("最小二乘结果包含 NaN/inf")

        residual = range_residual(x, centers, distances)
        if not math.isfinite(residual):
            raise NumericalError("残差非有限值")

        z = float(x[2]) if dims == 3 else 0.0
        return Solution(
            position=Position(x=float(x[0]), y=float(x[1]), z=z),
            condition_number=condition_number,
            residual=residual,
        )


def circle_intersections(
    c1: Sequence[float], r1: float, c2: Sequence[float], r2: float
) -> Tuple[Tuple[float, float], ...]:
    """
    两圆交点：0 个（相离/内含/同心）、1 个（相切）或 2 个，按 (x, y) 排序
    """
    x1, y1 = float(c1[0]), float(c1[1])
    x2, y2 = float(c2[0]), float(c2[1])
    dx, dy = x2 - x1, y2 - y1
    d = math.hypot(dx, dy)
    if d == 0.0:
        return ()
    tol = _TANGENT_EPS * max(r1 + r2, 1.0)
    if d > r1 + r2 + tol or d < abs(r1 - r2) - tol:
        return ()

    a = (r1 * r1 - r2 * r2 + d * d) / (2.0 * d)
    h_sq = r1 * r1 - a * a
    mx = x1 + a * dx / d
    my = y1 + a * dy / d
    if h_sq <= tol * tol:
        return ((mx, my),)
    h = math.sqrt(h_sq)
    ox, oy = -dy * h / d, dx * h / d
    p1 = (mx + ox, my + oy)
    p2 = (mx - ox, my - oy)
    return tuple(sorted((p1, p2)))
