from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional

import paho.mqtt.client as mqtt
from paho.mqtt.client import MQTTMessage

from .beacon_store import BeaconStore
from .config_manager import ConfigManager, PositioningSettings
from .distance import DistanceEstimator
from .filters import PositionFilter
from .fusion import FusionEngine
from .geometry import GeometrySolver
from .locator import LocationOrchestrator
from .matchers import NameMatcher, build_matcher
from .models import IngestionRecord, LocationEstimate
from .reading_cache import ReadingCache
from .scheduler import PeriodicTask

logger = logging.getLogger(__name__)


def build_orchestrator(
    settings: PositioningSettings, cache: ReadingCache, beacon_store: BeaconStore
) -> LocationOrchestrator:
    engine = FusionEngine(
        solver=GeometrySolver(settings.max_condition_number),
        weight_exponent=settings.weight_exponent,
        solve_3d=settings.solve_3d,
    )
    estimator = DistanceEstimator(
        trim_fraction=settings.trim_fraction, trim_count=settings.trim_count
    )
    return LocationOrchestrator(
        cache,
        beacon_store,
        estimator=estimator,
        engine=engine,
        default_mode=settings.fusion_mode,
        max_reading_age=settings.max_reading_age,
    )


def _default_client_factory(client_id: str) -> mqtt.Client:
    return mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id)


class MQTTDataProcessor:
    """
    MQTT 接入层：
    - 订阅上报主题，把读数写入 ReadingCache
    - 周期任务对每个活跃设备定位，成功结果推送到 location_topic
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        cache: Optional[ReadingCache] = None,
        beacon_store: Optional[BeaconStore] = None,
        matcher: Optional[NameMatcher] = None,
        client_factory: Callable[[str], mqtt.Client] = _default_client_factory,
    ):
        self.config_manager = config_manager
        self.settings = config_manager.get_positioning_settings()

        self.cache = cache if cache is not None else ReadingCache(
            self.settings.expiration_seconds,
            shards=self.settings.cache_shards,
            max_samples=self.settings.max_samples,
        )
        if beacon_store is None:
            beacon_store = BeaconStore(self.config_manager)
            beacon_store.load()
        self.beacon_store = beacon_store
        self.orchestrator = build_orchestrator(self.settings, self.cache, self.beacon_store)

        pattern = self.config_manager.get_filters_config().get("beacon_name_pattern")
        self.matcher = matcher if matcher is not None else build_matcher(pattern)

        smoothing = self.config_manager.get_smoothing_config()
        self.smoothing_enabled = bool(smoothing.get("enabled", False))
        self._smoothing_params = {
            "history_size": int(smoothing.get("history_size", 3)),
            "ema_alpha": float(smoothing.get("ema_alpha", 0.3)),
            "process_noise": float(smoothing.get("process_noise", 0.01)),
            "measurement_noise": float(smoothing.get("measurement_noise", 0.1)),
        }
        # 为每个设备创建独立的滤波器
        self.position_filters: Dict[str, PositionFilter] = {}

        self._client_factory = client_factory
        self.client: Optional[mqtt.Client] = None
        self.poller = PeriodicTask(
            self.settings.poll_interval, self.publish_locations, name="blunav-poller"
        )

    # ---------- Ingestion ----------
    def ingest(self, record: IngestionRecord) -> int:
        """写入缓存，返回写入的读数条数"""
        accepted = 0
        for obs, reading in zip(record.observations, record.readings()):
            name = obs.name or obs.beacon_id
            if not self.matcher.matches(name):
                continue
            self.cache.upsert(record.device_id, obs.beacon_id, reading)
            accepted += 1
        if accepted == 0:
            logger.debug("设备 %s 的上报没有匹配的信标", record.device_id)
        return accepted

    # ---------- Smoothing ----------
    def _filter_for(self, device_id: str, timestamp: float) -> PositionFilter:
        """取设备的滤波器；间隔超过缓存窗口时重建，旧轨迹不参与平滑"""
        f = self.position_filters.get(device_id)
        if f is not None and f.kf_last_timestamp is not None:
            if timestamp - f.kf_last_timestamp > self.cache.expiration_seconds:
                logger.debug("设备 %s 离线后重新出现，重置滤波器", device_id)
                f = None
        if f is None:
            f = PositionFilter(**self._smoothing_params)
            self.position_filters[device_id] = f
        return f

    def _drop_inactive_filters(self, active: Dict[str, object]) -> None:
        # 缓存中已无有效读数的设备
        for device_id in [d for d in self.position_filters if d not in active]:
            del self.position_filters[device_id]

    # ---------- Core processing ----------
    def locate_devices(self, now: Optional[float] = None) -> List[LocationEstimate]:
        now = self.cache.now() if now is None else now
        estimates: List[LocationEstimate] = []
        results = self.orchestrator.locate_all(now=now)
        self._drop_inactive_filters(results)
        for device_id, result in results.items():
            if not isinstance(result, LocationEstimate):
                logger.warning("设备 %s 定位失败 [%s]: %s", device_id, result.kind.value, result.message)
                continue
            if self.smoothing_enabled:
                result = self._filter_for(device_id, result.timestamp).filter(result)
            logger.info(
                "位置计算成功: %s (%.3f, %.3f, %.3f), 置信度: %.2f, 方法: %s, 信标数: %s",
                device_id,
                result.position.x,
                result.position.y,
                result.position.z,
                result.confidence,
                result.method.value,
                result.beacon_count,
            )
            estimates.append(result)
        return estimates

    def publish_locations(self, now: Optional[float] = None) -> int:
        estimates = self.locate_devices(now)
        if self.client is None:
            return 0
        topic = self.config_manager.get_mqtt_config().get("location_topic", "blunav/location/{device_id}")
        for estimate in estimates:
            self.client.publish(topic.format(device_id=estimate.device_id), estimate.to_json())
        return len(estimates)

    # ---------- MQTT ----------
    def start_mqtt_client(self):
        mqtt_config = self.config_manager.get_mqtt_config()
        self.client = self._client_factory(str(mqtt_config.get("client_id") or ""))
        self.client.on_connect = self.on_connect
        self.client.on_message = self.on_message
        self.client.connect(mqtt_config["ip"], int(mqtt_config["port"]), 60)
        logger.info("连接到MQTT服务器 %s:%s", mqtt_config["ip"], mqtt_config["port"])
        self.poller.start()
        self.client.loop_forever()

    def stop_mqtt_client(self):
        self.poller.stop(timeout=self.settings.poll_interval * 2)
        if self.client is not None:
            self.client.disconnect()
            logger.info("MQTT连接已断开")

    # ---------- MQTT handlers ----------
    def on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code == 0:
            logger.info("成功连接到MQTT服务器")
            topic = self.config_manager.get_mqtt_config().get("ingest_topic", "blunav/readings/+")
            client.subscribe(topic)
            logger.info("已订阅主题: %s", topic)
        else:
            logger.error("连接失败，返回码: %s", reason_code)

    def on_message(self, client, userdata, msg: MQTTMessage):
        try:
            record = IngestionRecord.parse(msg.payload)
            if record is None or record.is_empty:
                logger.warning("消息解析无有效信标数据: %r", msg.payload[:200])
                return
            self.ingest(record)
        except Exception as e:
            # 回调在 paho 网络线程中执行，异常不能抛出
            logger.exception("处理消息时出错: %s", e)
