from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    可取消的周期任务：按 interval 反复执行 action，直到 stop() 或到达 deadline
    action 抛出的异常只记录日志，不会终止循环
    """

    def __init__(
        self,
        interval: float,
        action: Callable[[], None],
        name: str = "periodic-task",
        deadline: Optional[float] = None,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self.action = action
        self.name = name
        # time.monotonic() 时刻，None 表示不限时
        self.deadline = deadline
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.runs = 0

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()
        logger.info("周期任务 %s 已启动，间隔 %.2fs", self.name, self.interval)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        logger.info("周期任务 %s 已停止", self.name)

    def run_once(self) -> None:
        try:
            self.action()
        except Exception as e:
            logger.exception("周期任务 %s 执行出错: %s", self.name, e)
        finally:
            self.runs += 1

    def _expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def _loop(self) -> None:
        next_run = time.monotonic()
        while not self._stop.is_set() and not self._expired():
            self.run_once()
            next_run += self.interval
            wait = next_run - time.monotonic()
            if wait < 0:
                # 执行超时，跳过错过的周期
                next_run = time.monotonic()
                wait = 0
            if self.deadline is not None:
                wait = min(wait, max(self.deadline - time.monotonic(), 0))
            if self._stop.wait(wait):
                break
