from __future__ import annotations

import dataclasses
from typing import List, Optional

import numpy as np

from .models import LocationEstimate, Position


class PositionFilter:
    """单设备位置平滑：中值(medoid) -> EMA -> 匀速卡尔曼"""

    def __init__(
        self,
        history_size: int = 3,
        ema_alpha: float = 0.3,
        process_noise: float = 0.01,
        measurement_noise: float = 0.1,
    ):
        self.position_history: List[Position] = []
        self.max_history_size = history_size

        # EMA滤波参数
        self.ema_alpha = ema_alpha
        self.ema_last_position: Optional[Position] = None

        # 卡尔曼滤波参数，状态为 [x, y, z, vx, vy, vz]
        self.kf_state: Optional[np.ndarray] = None
        self.kf_covariance = np.eye(6) * 0.1
        self.kf_last_timestamp: Optional[float] = None
        self.process_noise = process_noise
        self.measurement_noise = measurement_noise

    def filter(self, estimate: LocationEstimate) -> LocationEstimate:
        position = self._filter_middle(estimate.position)
        position = self._filter_ema(position)
        position = self._filter_kf(position, float(estimate.timestamp))
        return dataclasses.replace(estimate, position=position)

    def _filter_middle(self, position: Position) -> Position:
        """
        三维中值（medoid）滤波：
        在 position_history 中选出到其它点距离平方和最小的点
        """
        self.position_history.append(position)
        if len(self.position_history) > self.max_history_size:
            self.position_history.pop(0)
        if len(self.position_history) < self.max_history_size:
            return position

        best_idx, best_score = 0, float("inf")
        for i, p in enumerate(self.position_history):
            score = sum(
                p.distance_to(q) ** 2 for j, q in enumerate(self.position_history) if i != j
            )
            if score < best_score:
                best_idx, best_score = i, score
        return self.position_history[best_idx]

    def _filter_ema(self, position: Position) -> Position:
        """指数移动平均滤波"""
        if self.ema_last_position is None:
            self.ema_last_position = position
            return position

        a = self.ema_alpha
        last = self.ema_last_position
        self.ema_last_position = Position(
            x=a * position.x + (1 - a) * last.x,
            y=a * position.y + (1 - a) * last.y,
            z=a * position.z + (1 - a) * last.z,
        )
        return self.ema_last_position

    def _filter_kf(self, position: Position, timestamp: float) -> Position:
        """卡尔曼滤波"""
        measurement = np.array(position.as_tuple())
        if self.kf_state is None:
            self.kf_state = np.concatenate([measurement, np.zeros(3)])
            self.kf_last_timestamp = timestamp
            return position

        dt = timestamp - (self.kf_last_timestamp or timestamp)
        if dt <= 0:
            dt = 1.0  # 时间戳相同或倒退时按 1 秒处理
        self.kf_last_timestamp = timestamp

        F = np.eye(6)
        F[0:3, 3:6] = np.eye(3) * dt
        Q = np.eye(6) * self.process_noise  # 过程噪声协方差矩阵
        H = np.hstack([np.eye(3), np.zeros((3, 3))])  # 只观测位置
        R = np.eye(3) * self.measurement_noise  # 测量噪声协方差矩阵

        # 预测步骤
        predicted_state = F @ self.kf_state
        predicted_covariance = F @ self.kf_covariance @ F.T + Q

        # 更新步骤
        innovation = measurement - H @ predicted_state
        innovation_covariance = H @ predicted_covariance @ H.T + R

        # 卡尔曼增益
        try:
            kalman_gain = predicted_covariance @ H.T @ np.linalg.inv(innovation_covariance)
        except np.linalg.LinAlgError:
            # 如果矩阵不可逆，使用伪逆
            kalman_gain = predicted_covariance @ H.T @ np.linalg.pinv(innovation_covariance)

        self.kf_state = predicted_state + kalman_gain @ innovation
        self.kf_covariance = (np.eye(6) - kalman_gain @ H) @ predicted_covariance

        return Position(
            x=float(self.kf_state[0]), y=float(self.kf_state[1]), z=float(self.kf_state[2])
        )
