"""
渠道基类模块 - 定义消息渠道的统一接口。

具体渠道（目前是飞书）继承 BaseChannel，实现 start/stop/send 三个抽象方法，
收到平台消息后调用 _handle_message() 完成白名单校验与入站转发。

【Java 开发者类比】
- BaseChannel 相当于 abstract class，_handle_message() 是模板方法
- is_allowed() 相当于一个简单的 AccessDecisionVoter
"""

from abc import ABC, abstractmethod
from typing import Any

from loguru import logger

from bingbot.bus.events import InboundMessage, OutboundMessage
from bingbot.bus.queue import MessageBus


class BaseChannel(ABC):
    """
    消息渠道抽象基类。

    属性:
        name: 渠道标识名，同时作为 session_key 的前缀
        config: 渠道配置对象
        bus: 消息总线
    """

    name: str = "base"

    def __init__(self, config: Any, bus: MessageBus):
        self.config = config
        self.bus = bus
        self._running = False

    @abstractmethod
    async def start(self) -> None:
        """连接平台并持续接收消息，直到 stop() 被调用。"""

    @abstractmethod
    async def stop(self) -> None:
        """断开平台连接并释放资源。"""

    @abstractmethod
    async def send(self, msg: OutboundMessage) -> None:
        """
        发送一条出站消息。

        同一 stream_id 的多条消息属于同一次回答，渠道可以选择原地更新而不是逐条发送。
        """

    def is_allowed(self, sender_id: str) -> bool:
        """
        白名单校验：allow_from 为空时允许所有人。

        参数:
            sender_id: 发送者标识

        返回:
            True 表示允许
        """
        allow_list = getattr(self.config, "allow_from", [])
        if not allow_list:
            return True
        return str(sender_id) in allow_list

    async def _handle_message(
        self,
        sender_id: str,
        chat_id: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """校验发送者后把消息标准化为 InboundMessage 并发布到总线。"""
        if not self.is_allowed(sender_id):
            logger.warning(
                f"Access denied for sender {sender_id} on channel {self.name}. "
                f"Add them to allowFrom list in config to grant access."
            )
            return

        await self.bus.publish_inbound(InboundMessage(
            channel=self.name,
            sender_id=str(sender_id),
            chat_id=str(chat_id),
            content=content,
            metadata=metadata or {},
        ))

    @property
    def is_running(self) -> bool:
        return self._running
