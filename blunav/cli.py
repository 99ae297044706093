from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading

from .beacon_store import BeaconStore
from .config_manager import ConfigManager
from .errors import InvalidConfig
from .mqtt_processor import MQTTDataProcessor

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def run_mqtt(args) -> int:
    config = ConfigManager(args.config)
    try:
        processor = MQTTDataProcessor(config)
    except InvalidConfig as e:
        logger.error("配置文件 %s 校验失败: %s", config.config_file, e.message)
        return 2

    worker = threading.Thread(target=processor.start_mqtt_client, name="blunav-mqtt", daemon=True)
    worker.start()

    def shutdown(signum, frame):
        logger.info("收到信号 %s，正在退出", signal.Signals(signum).name)
        processor.stop_mqtt_client()
        sys.exit(0)

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    worker.join()
    return 0


def list_beacons(args) -> int:
    """打印信标库（缺省 p0/n 已按 rssi_model 填充）"""
    store = BeaconStore(ConfigManager(args.config))
    store.load(args.file)
    for beacon_id, b in sorted(store.all().items()):
        print(
            f"{beacon_id}\t{b.name or '-'}\t({b.x:.2f}, {b.y:.2f}, {b.z:.2f})"
            f"\tp0={b.p0:.1f}\tn={b.n:.2f}\th={b.height_offset:.2f}"
        )
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(prog="blunav", description="BLE indoor positioning service")
    parser.add_argument("--config", default=None, help="配置文件路径，默认读取 ./config/config.yaml 或环境变量 BLUNAV_CONFIG")
    parser.add_argument("--log-level", default="INFO", help="日志级别 (DEBUG/INFO/WARNING/ERROR)")
    sub = parser.add_subparsers(dest="cmd")

    p_run = sub.add_parser("run", help="运行 MQTT 接入与定位推送")
    p_run.set_defaults(func=run_mqtt)

    p_beacons = sub.add_parser("beacons", help="列出信标库中的信标")
    p_beacons.add_argument("--file", default=None, help="信标 CSV 路径，默认取配置中的 paths.beacon_db")
    p_beacons.set_defaults(func=list_beacons)

    args = parser.parse_args(argv)
    setup_logging(args.log_level)
    # 无子命令时默认启动服务
    if not hasattr(args, "func"):
        return run_mqtt(args)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
