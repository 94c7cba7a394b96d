"""
单飞（single-flight）工具 - 把并发的同键调用合并成一次真实调用。

第一个调用者发起真实的协程，之后在它完成前到来的调用者都等待同一个 Future，
所有人一起拿到相同的结果或相同的异常。完成后键被清除，下一次调用重新发起。

【Java 开发者类比】
类似 Guava 的 LoadingCache 在并发 miss 时只加载一次，
或者 Go 语言 golang.org/x/sync/singleflight 的 Group.Do。
"""

import asyncio
from typing import Any, Awaitable, Callable, Hashable


class SingleFlight:
    """按键合并并发调用。"""

    def __init__(self):
        self._calls: dict[Hashable, asyncio.Future] = {}

    async def do(self, key: Hashable, fn: Callable[[], Awaitable[Any]]) -> Any:
        """
        执行 fn，或等待同键下已在进行的那一次执行。

        单个等待者被取消不会取消共享的调用（asyncio.shield）。

        参数:
            key: 合并键
            fn: 无参协程函数

        返回:
            fn 的返回值
        """
        future = self._calls.get(key)
        if future is None:
            future = asyncio.ensure_future(fn())
            self._calls[key] = future
            future.add_done_callback(lambda f: self._forget(key, f))
        return await asyncio.shield(future)

    def in_flight(self, key: Hashable) -> bool:
        """该键是否有调用正在进行。"""
        return key in self._calls

    def _forget(self, key: Hashable, future: asyncio.Future) -> None:
        if self._calls.get(key) is future:
            del self._calls[key]
        # 所有等待者都已离开时也要取走结果，避免 "exception was never retrieved"
        if not future.cancelled():
            future.exception()
