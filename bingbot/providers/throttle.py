"""
进度节流模块。

片段到达时每次都会推送一份最新快照，但回调最多每 interval 秒触发一次：
- 前沿（leading）：距上次触发已超过 interval 时立即触发
- 后沿（trailing）：间隔内到达的快照只保留最新一份，到点后补发
- flush()：交换完成时立即补发尚未送出的最新快照，保证调用方看到最终状态
- cancel()：交换失败时丢弃未送出的快照，之后不再触发任何回调

回调既可以是普通函数也可以是协程函数；协程被包装成任务，drain() 等待它们全部结束，
这样最终结果一定在所有进度之后送达。
"""

import asyncio
import inspect
from typing import Any, Callable

from loguru import logger


class ProgressThrottle:
    """前沿 + 后沿节流器。"""

    def __init__(self, callback: Callable[[Any], Any], interval: float):
        self._callback = callback
        self._interval = interval
        self._last_fired: float | None = None
        self._latest: Any = None
        self._has_pending = False
        self._timer: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    def push(self, value: Any) -> None:
        """提交一份最新快照。"""
        if self._closed:
            return
        self._latest = value
        self._has_pending = True
        if self._timer is not None:
            return  # 后沿已排期，到点时会取最新值

        loop = asyncio.get_running_loop()
        if self._last_fired is None:
            wait = 0.0
        else:
            wait = self._interval - (loop.time() - self._last_fired)
        if wait <= 0:
            self._fire()
        else:
            self._timer = loop.call_later(wait, self._fire)

    def flush(self) -> None:
        """立即送出尚未送出的最新快照，然后关闭节流器。"""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if not self._closed and self._has_pending:
            self._fire()
        self._closed = True

    def cancel(self) -> None:
        """丢弃尚未送出的快照并关闭节流器。"""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._has_pending = False
        self._latest = None
        self._closed = True

    async def drain(self) -> None:
        """等待所有已触发的异步回调结束。"""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _fire(self) -> None:
        self._timer = None
        if self._closed or not self._has_pending:
            return
        value, self._latest, self._has_pending = self._latest, None, False
        self._last_fired = asyncio.get_running_loop().time()

        try:
            outcome = self._callback(value)
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}")
            return
        if inspect.isawaitable(outcome):
            task = asyncio.ensure_future(outcome)
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Progress callback failed: {task.exception()}")
