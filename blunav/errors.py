from __future__ import annotations

from enum import Enum


class FailureKind(Enum):
    INSUFFICIENT_BEACONS = "insufficient_beacons"
    DEGENERATE_GEOMETRY = "degenerate_geometry"
    INSUFFICIENT_VALID_GEOMETRY = "insufficient_valid_geometry"
    STALE_DATA = "stale_data"
    INVALID_CONFIG = "invalid_config"
    EMPTY_SAMPLE_SET = "empty_sample_set"
    NUMERICAL_ERROR = "numerical_error"


class PositioningError(Exception):
    """定位失败的基类，kind 标识失败类型"""

    kind: FailureKind

    def __init__(self, message: str = ""):
        if type(self) is PositioningError:
            raise TypeError("PositioningError 不能直接实例化，请使用具体的失败子类")
        super().__init__(message or self.kind.value)
        self.message = message or self.kind.value

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "message": self.message}


class InsufficientBeacons(PositioningError):
    """可用（新鲜）信标少于 3 个"""

    kind = FailureKind.INSUFFICIENT_BEACONS


class DegenerateGeometry(PositioningError):
    """信标共线或方程组病态"""

    kind = FailureKind.DEGENERATE_GEOMETRY


class InsufficientValidGeometry(PositioningError):
    """所有信标组合均无法给出候选位置"""

    kind = FailureKind.INSUFFICIENT_VALID_GEOMETRY


class StaleData(PositioningError):
    kind = FailureKind.STALE_DATA


class InvalidConfig(PositioningError):
    """校准参数缺失或越界（n <= 0、缺少 p0 等）"""

    kind = FailureKind.INVALID_CONFIG


class EmptySampleSet(PositioningError):
    kind = FailureKind.EMPTY_SAMPLE_SET


class NumericalError(PositioningError):
    """求解结果包含 NaN/inf"""

    kind = FailureKind.NUMERICAL_ERROR
