"""
渠道管理器模块 - 管理渠道生命周期并把出站消息路由到对应渠道。

ChannelManager 内部运行一个出站分发任务（_dispatch_outbound），
不断从消息总线消费 OutboundMessage，按 msg.channel 交给对应渠道的 send()。
出站消息按到达顺序逐条发送，同一次回答的进度与最终结果因此不会乱序。
"""

import asyncio
from typing import Any

from loguru import logger

from bingbot.bus.queue import MessageBus
from bingbot.channels.base import BaseChannel
from bingbot.config.schema import Config


class ChannelManager:
    """
    渠道管理器。

    属性:
        config: 全局配置
        bus: 消息总线
        channels: 已启用的渠道 {渠道名: 渠道实例}
    """

    def __init__(self, config: Config, bus: MessageBus):
        self.config = config
        self.bus = bus
        self.channels: dict[str, BaseChannel] = {}
        self._dispatch_task: asyncio.Task | None = None
        self._init_channels()

    def _init_channels(self) -> None:
        if self.config.channels.feishu.enabled:
            from bingbot.channels.feishu import FeishuChannel
            self.channels["feishu"] = FeishuChannel(self.config.channels.feishu, self.bus)
            logger.info("Feishu channel enabled")

    def register(self, channel: BaseChannel) -> None:
        """手动注册一个渠道实例（测试或嵌入式使用）。"""
        self.channels[channel.name] = channel

    async def _start_channel(self, name: str, channel: BaseChannel) -> None:
        try:
            await channel.start()
        except Exception as e:
            logger.error(f"Failed to start channel {name}: {e}")

    async def start_all(self) -> None:
        """启动出站分发器与所有渠道，阻塞直到渠道全部退出。"""
        if not self.channels:
            logger.warning("No channels enabled")
            return

        self._dispatch_task = asyncio.create_task(self._dispatch_outbound())

        tasks = []
        for name, channel in self.channels.items():
            logger.info(f"Starting {name} channel...")
            tasks.append(asyncio.create_task(self._start_channel(name, channel)))
        await asyncio.gather(*tasks, return_exceptions=True)

    async def stop_all(self) -> None:
        logger.info("Stopping all channels...")

        if self._dispatch_task:
            self._dispatch_task.cancel()
            try:
                await self._dispatch_task
            except asyncio.CancelledError:
                pass

        for name, channel in self.channels.items():
            try:
                await channel.stop()
                logger.info(f"Stopped {name} channel")
            except Exception as e:
                logger.error(f"Error stopping {name}: {e}")

    async def _dispatch_outbound(self) -> None:
        logger.info("Outbound dispatcher started")

        while True:
            try:
                msg = await asyncio.wait_for(self.bus.consume_outbound(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break

            channel = self.channels.get(msg.channel)
            if channel is None:
                logger.warning(f"Unknown channel: {msg.channel}")
                continue
            try:
                await channel.send(msg)
            except Exception as e:
                logger.error(f"Error sending to {msg.channel}: {e}")

    def get_channel(self, name: str) -> BaseChannel | None:
        return self.channels.get(name)

    def get_status(self) -> dict[str, Any]:
        """{渠道名: {"enabled": True, "running": bool}}"""
        return {
            name: {"enabled": True, "running": channel.is_running}
            for name, channel in self.channels.items()
        }

    @property
    def enabled_channels(self) -> list[str]:
        return list(self.channels.keys())
