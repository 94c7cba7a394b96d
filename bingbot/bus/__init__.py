"""
消息总线模块 - 实现渠道与分发器之间的解耦通信。

消息流向：
  用户消息 → 渠道(Channel) → InboundMessage → 消息总线 → Dispatcher → Bing 会话
  Bing 进度/答案 → OutboundMessage → 消息总线 → 渠道(Channel) → 用户

【Java 开发者类比】
- MessageBus 类似于两个 LinkedBlockingQueue 组成的简化版 JMS
- InboundMessage / OutboundMessage 类似于入站/出站 DTO
"""

from bingbot.bus.events import InboundMessage, OutboundMessage
from bingbot.bus.queue import MessageBus

__all__ = ["MessageBus", "InboundMessage", "OutboundMessage"]
