from __future__ import annotations

import logging
import math
import os
import threading
from typing import Dict, Optional, cast

import pandas as pd

from .config_manager import ConfigManager
from .models import BeaconConfig

logger = logging.getLogger(__name__)

NUMERIC_COLUMNS = ["x", "y", "z", "p0", "n", "height_offset"]
COLUMNS = ["name"] + NUMERIC_COLUMNS


class BeaconStore:
    """管理信标配置的存储与访问（pandas + CSV），索引为 beacon_id"""

    def __init__(self, config_manager: Optional[ConfigManager] = None):
        self._df = pd.DataFrame(columns=COLUMNS)
        self._df.index.name = "beacon_id"
        self._config = config_manager or ConfigManager()
        self._lock = threading.Lock()
        # 按 id 缓存的不可变配置，CSV 变更时整体替换
        self._beacons: Dict[str, BeaconConfig] = {}

    # ---- Utils ----
    def _normalize_df(self, df: pd.DataFrame) -> pd.DataFrame:
        if "beacon_id" not in df.columns:
            raise KeyError("CSV 文件缺少 'beacon_id' 列")
        df = df.copy()
        if "name" not in df.columns:
            df["name"] = ""
        df["name"] = df["name"].fillna("").astype(str)
        for col in NUMERIC_COLUMNS:
            if col not in df.columns:
                df[col] = float("nan")
            df[col] = pd.to_numeric(df[col], errors="coerce")
        # 坐标与高度偏移缺失按 0 处理；p0/n 缺失留给默认值
        df[["x", "y", "z", "height_offset"]] = df[["x", "y", "z", "height_offset"]].fillna(0.0)
        df = df[["beacon_id"] + COLUMNS].copy()
        df["beacon_id"] = df["beacon_id"].astype(str)
        df = df.drop_duplicates(subset=["beacon_id"], keep="last").set_index("beacon_id")
        df = df.astype({col: "float64" for col in NUMERIC_COLUMNS}, copy=False)
        df.index.name = "beacon_id"
        return df.sort_index()

    def _row_to_config(self, beacon_id: str, row: pd.Series) -> BeaconConfig:
        rssi = self._config.get_rssi_model_config()
        p0 = float(row.at["p0"])
        n = float(row.at["n"])
        return BeaconConfig(
            beacon_id=beacon_id,
            name=str(row.at["name"]),
            x=float(row.at["x"]),
            y=float(row.at["y"]),
            z=float(row.at["z"]),
            p0=float(rssi["p0"]) if math.isnan(p0) else p0,
            n=float(rssi["n"]) if math.isnan(n) else n,
            height_offset=float(row.at["height_offset"]),
        )

    def _rebuild(self) -> None:
        beacons: Dict[str, BeaconConfig] = {}
        for beacon_id, row in self._df.iterrows():
            beacons[str(beacon_id)] = self._row_to_config(str(beacon_id), cast(pd.Series, row))
        self._beacons = beacons

    # ---- Load/Save ----
    def load(self, beacon_file_path: Optional[str] = None):
        csv_path = beacon_file_path or self._config.get_beacon_db_path()
        if not os.path.exists(csv_path):
            logger.warning("信标文件 %s 不存在，生成示例文件", csv_path)
            self._create_sample(csv_path)
            return
        df = pd.read_csv(csv_path, dtype={"beacon_id": str})
        with self._lock:
            self._df = self._normalize_df(df)
            self._rebuild()
        logger.info("已加载 %d 个信标: %s", len(self._beacons), csv_path)

    def _create_sample(self, beacon_file_path: Optional[str] = None):
        csv_path = beacon_file_path or self._config.get_beacon_db_path()
        os.makedirs(os.path.dirname(csv_path) or ".", exist_ok=True)
        df = pd.DataFrame([
            {"beacon_id": "EXAMPLE-B1", "name": "example", "x": 0.0, "y": 0.0, "z": 0.0},
            {"beacon_id": "EXAMPLE-B2", "name": "example", "x": 10.0, "y": 0.0, "z": 0.0},
            {"beacon_id": "EXAMPLE-B3", "name": "example", "x": 0.0, "y": 10.0, "z": 0.0},
        ])
        with self._lock:
            self._df = self._normalize_df(df)
            self._rebuild()
        self.save(csv_path)

    def save(self, beacon_file_path: Optional[str] = None):
        csv_path = beacon_file_path or self._config.get_beacon_db_path()
        os.makedirs(os.path.dirname(csv_path) or ".", exist_ok=True)
        with self._lock:
            self._df.to_csv(csv_path, index=True, index_label="beacon_id", encoding="utf-8")

    # ---- CRUD ----
    def add(self, beacon: BeaconConfig):
        """新增或覆盖"""
        with self._lock:
            self._df.loc[beacon.beacon_id] = [
                beacon.name,
                float(beacon.x),
                float(beacon.y),
                float(beacon.z),
                float("nan") if beacon.p0 is None else float(beacon.p0),
                float("nan") if beacon.n is None else float(beacon.n),
                float(beacon.height_offset),
            ]
            self._df = self._df.sort_index()
            self._rebuild()
        self.save()

    def delete(self, beacon_id: str) -> bool:
        with self._lock:
            if beacon_id not in self._df.index:
                return False
            self._df = self._df.drop(index=beacon_id)
            self._rebuild()
        self.save()
        return True

    # ---- Accessors ----
    def has(self, beacon_id: str) -> bool:
        return beacon_id in self._beacons

    def get(self, beacon_id: str) -> Optional[BeaconConfig]:
        return self._beacons.get(beacon_id)

    def all(self) -> Dict[str, BeaconConfig]:
        return dict(self._beacons)

    def __len__(self) -> int:
        return len(self._beacons)
