"""
异步消息队列模块 - 消息总线的核心实现。

采用生产者-消费者模式，基于 asyncio.Queue 实现异步消息传递：

入站流程（用户 → 分发器）：
  渠道适配器 → publish_inbound() → inbound 队列 → consume_inbound() → Dispatcher

出站流程（分发器 → 用户）：
  Dispatcher → publish_outbound() → outbound 队列 → consume_outbound() → ChannelManager
"""

import asyncio

from bingbot.bus.events import InboundMessage, OutboundMessage


class MessageBus:
    """
    异步消息总线 - 解耦聊天渠道与分发器的通信中枢。

    属性:
        inbound: 入站消息异步队列（渠道 → 分发器）
        outbound: 出站消息异步队列（分发器 → 渠道）
    """

    def __init__(self):
        self.inbound: asyncio.Queue[InboundMessage] = asyncio.Queue()
        self.outbound: asyncio.Queue[OutboundMessage] = asyncio.Queue()

    async def publish_inbound(self, msg: InboundMessage) -> None:
        """发布入站消息（渠道 → 分发器）。"""
        await self.inbound.put(msg)

    async def consume_inbound(self) -> InboundMessage:
        """消费下一条入站消息，队列为空时异步阻塞。"""
        return await self.inbound.get()

    async def publish_outbound(self, msg: OutboundMessage) -> None:
        """发布出站消息（分发器 → 渠道）。"""
        await self.outbound.put(msg)

    async def consume_outbound(self) -> OutboundMessage:
        """消费下一条出站消息，由 ChannelManager 的分发循环调用。"""
        return await self.outbound.get()

    @property
    def inbound_size(self) -> int:
        """待处理的入站消息数量。"""
        return self.inbound.qsize()

    @property
    def outbound_size(self) -> int:
        """待分发的出站消息数量。"""
        return self.outbound.qsize()
