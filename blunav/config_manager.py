from __future__ import annotations

import copy
import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import yaml

from .errors import InvalidConfig
from .models import FusionMode

logger = logging.getLogger(__name__)


def _env_or_default(env_key: str, default: Any, cast: Callable[[str], Any] = str) -> Any:
    v = os.environ.get(env_key)
    if v is not None:
        try:
            return cast(v)
        except (TypeError, ValueError):
            logger.warning("环境变量 %s=%r 无法转换，使用默认值 %r", env_key, v, default)
    return default


def _as_bool(v: str) -> bool:
    return v.lower() in ("1", "true", "yes", "on")


def _optional_int(v: str) -> Optional[int]:
    return None if v.strip().lower() in ("", "none", "null") else int(v)


DEFAULT_CONFIG_PATH = _env_or_default(
    "BLUNAV_CONFIG",
    os.path.join(".", "config", "config.yaml"),
)


@dataclass(frozen=True)
class PositioningSettings:
    """定位核心用到的全部参数（已校验）"""

    expiration_seconds: float
    cache_shards: int
    max_samples: int
    poll_interval: float
    fusion_mode: FusionMode
    weight_exponent: float
    trim_fraction: float
    trim_count: Optional[int]
    max_condition_number: float
    solve_3d: bool
    max_reading_age: Optional[float]
    default_p0: float
    default_n: float


class ConfigManager:
    """配置管理类，负责读写YAML配置文件"""

    def __init__(self, config_file: str | None = None):
        self.config_file = config_file or DEFAULT_CONFIG_PATH
        self.default_config = {
            "mqtt": {
                "ip": _env_or_default("BLUNAV_MQTT_IP", "localhost"),
                "port": _env_or_default("BLUNAV_MQTT_PORT", 1883, int),
                "client_id": _env_or_default("BLUNAV_MQTT_CLIENT_ID", ""),
                "ingest_topic": _env_or_default("BLUNAV_MQTT_INGEST_TOPIC", "blunav/readings/+"),
                "location_topic": _env_or_default(
                    "BLUNAV_MQTT_LOCATION_TOPIC", "blunav/location/{device_id}"
                ),
            },
            "cache": {
                "expiration_seconds": _env_or_default("BLUNAV_CACHE_EXPIRATION", 10.0, float),
                "shards": _env_or_default("BLUNAV_CACHE_SHARDS", 16, int),
                "max_samples": _env_or_default("BLUNAV_CACHE_MAX_SAMPLES", 10, int),
            },
            "rssi_model": {
                "p0": _env_or_default("BLUNAV_RSSI_P0", -59.0, float),
                "n": _env_or_default("BLUNAV_RSSI_N", 2.0, float),
            },
            "positioning": {
                "poll_interval": _env_or_default("BLUNAV_POLL_INTERVAL", 1.0, float),
                "fusion_mode": _env_or_default("BLUNAV_FUSION_MODE", "weighted_trilateration"),
                "weight_exponent": _env_or_default("BLUNAV_WEIGHT_EXPONENT", 1.0, float),
                "trim_fraction": _env_or_default("BLUNAV_TRIM_FRACTION", 0.1, float),
                "trim_count": _env_or_default("BLUNAV_TRIM_COUNT", None, _optional_int),
                "max_condition_number": _env_or_default("BLUNAV_MAX_CONDITION", 1e4, float),
                "solve_3d": _env_or_default("BLUNAV_SOLVE_3D", False, _as_bool),
                "max_reading_age": None,
            },
            "filters": {
                "beacon_name_pattern": _env_or_default("BLUNAV_BEACON_NAME_PATTERN", ""),
            },
            "smoothing": {
                "enabled": _env_or_default("BLUNAV_SMOOTHING", False, _as_bool),
                "history_size": 3,
                "ema_alpha": 0.3,
                "process_noise": 0.01,
                "measurement_noise": 0.1,
            },
            "paths": {
                "beacon_db": _env_or_default(
                    "BLUNAV_PATH_BEACON_DB", os.path.join(".", "beacon", "beacons.csv")
                ),
            },
        }
        self.load_config()

    def load_config(self) -> None:
        """加载配置文件，如果不存在则创建默认配置"""
        if not os.path.exists(self.config_file):
            self.config = copy.deepcopy(self.default_config)
            self.save_config()
            return
        try:
            with open(self.config_file, "r", encoding="utf-8") as f:
                self.config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            # 配置文件损坏时回退到默认配置，但不覆盖原文件
            logger.error("读取配置文件 %s 失败，使用默认配置: %s", self.config_file, e)
            self.config = copy.deepcopy(self.default_config)
            return
        self._merge_default_config()

    def _merge_default_config(self) -> None:
        def merge_dict(default, current):
            for key, value in default.items():
                if key not in current:
                    current[key] = copy.deepcopy(value)
                elif isinstance(value, dict) and isinstance(current[key], dict):
                    merge_dict(value, current[key])

        merge_dict(self.default_config, self.config)

    def save_config(self) -> None:
        try:
            os.makedirs(os.path.dirname(self.config_file) or ".", exist_ok=True)
            with open(self.config_file, "w", encoding="utf-8") as f:
                yaml.safe_dump(
                    self.config,
                    f,
                    default_flow_style=False,
                    allow_unicode=True,
                    indent=2,
                )
        except OSError as e:
            logger.warning("保存配置文件 %s 失败: %s", self.config_file, e)

    # ---------- Accessors ----------
    def get_mqtt_config(self) -> Dict[str, Any]:
        return self.config["mqtt"]

    def get_cache_config(self) -> Dict[str, Any]:
        return self.config["cache"]

    def get_rssi_model_config(self) -> Dict[str, Any]:
        return self.config["rssi_model"]

    def get_positioning_config(self) -> Dict[str, Any]:
        return self.config["positioning"]

    def get_filters_config(self) -> Dict[str, Any]:
        return self.config.get("filters", {})

    def get_smoothing_config(self) -> Dict[str, Any]:
        return self.config.get("smoothing", {})

    def get_paths(self) -> Dict[str, Any]:
        return self.config.get("paths", {})

    def get_beacon_db_path(self) -> str:
        return self.get_paths()["beacon_db"]

    def set_mqtt_config(self, ip, port, ingest_topic=None, location_topic=None):
        self.config["mqtt"]["ip"] = ip
        self.config["mqtt"]["port"] = port
        if ingest_topic is not None:
            self.config["mqtt"]["ingest_topic"] = ingest_topic
        if location_topic is not None:
            self.config["mqtt"]["location_topic"] = location_topic
        self.save_config()

    def set_rssi_model_config(self, p0: float, n: float):
        """离线标定得到的默认 p0 / n"""
        self.config["rssi_model"]["p0"] = p0
        self.config["rssi_model"]["n"] = n
        self.save_config()

    def set_fusion_mode(self, mode: FusionMode | str):
        self.config["positioning"]["fusion_mode"] = FusionMode(mode).value
        self.save_config()

    def get_positioning_settings(self) -> PositioningSettings:
        cache = self.get_cache_config()
        positioning = self.get_positioning_config()
        rssi = self.get_rssi_model_config()
        try:
            mode = FusionMode(positioning["fusion_mode"])
        except ValueError:
            raise InvalidConfig(f"未知融合方式: {positioning['fusion_mode']!r}") from None

        try:
            trim_count = positioning.get("trim_count")
            max_age = positioning.get("max_reading_age")
            settings = PositioningSettings(
                expiration_seconds=float(cache["expiration_seconds"]),
                cache_shards=int(cache["shards"]),
                max_samples=int(cache["max_samples"]),
                poll_interval=float(positioning["poll_interval"]),
                fusion_mode=mode,
                weight_exponent=float(positioning["weight_exponent"]),
                trim_fraction=float(positioning["trim_fraction"]),
                trim_count=None if trim_count is None else int(trim_count),
                max_condition_number=float(positioning["max_condition_number"]),
                solve_3d=bool(positioning["solve_3d"]),
                max_reading_age=None if max_age is None else float(max_age),
                default_p0=float(rssi["p0"]),
                default_n=float(rssi["n"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidConfig(f"配置项非法: {e}") from e

        if settings.expiration_seconds <= 0:
            raise InvalidConfig("cache.expiration_seconds 必须大于 0")
        if settings.cache_shards < 1:
            raise InvalidConfig("cache.shards 至少为 1")
        if settings.max_samples < 1:
            raise InvalidConfig("cache.max_samples 至少为 1")
        if not 0.0 <= settings.trim_fraction < 0.5:
            raise InvalidConfig("positioning.trim_fraction 必须在 [0, 0.5) 内")
        if settings.trim_count is not None and settings.trim_count < 0:
            raise InvalidConfig("positioning.trim_count 不能为负")
        if not settings.max_condition_number > 1:
            raise InvalidConfig("positioning.max_condition_number 必须大于 1")
        if settings.max_reading_age is not None and settings.max_reading_age <= 0:
            raise InvalidConfig("positioning.max_reading_age 必须大于 0")
        if settings.poll_interval <= 0:
            raise InvalidConfig("positioning.poll_interval 必须大于 0")
        if settings.weight_exponent < 0:
            raise InvalidConfig("positioning.weight_exponent 不能为负")
        if settings.default_n <= 0:
            raise InvalidConfig("rssi_model.n 必须大于 0")
        return settings
