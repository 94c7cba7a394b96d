"""
消息事件类型定义模块 - 定义消息总线中传输的数据结构。

- InboundMessage：入站消息（从渠道到分发器）
- OutboundMessage：出站消息（从分发器到渠道）

【设计要点】
- session_key 由 channel 和 sender_id 组合而成：Bing 会话按"用户"划分，
  同一用户在单聊和群聊里共享同一个对话上下文
- 流式回复用 metadata 中的 stream_id 把多条出站消息串成一次回答，
  progress=True 表示中间进度，progress=False 表示最终结果
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class InboundMessage:
    """
    入站消息 - 从聊天渠道接收到的用户消息。

    属性:
        channel: 消息来源渠道标识（如 'feishu'、'cli'）
        sender_id: 发送者唯一标识（渠道内的用户 ID）
        chat_id: 聊天/频道唯一标识（回复时的目标）
        content: 消息文本内容
        timestamp: 消息时间戳，默认为当前时间
        metadata: 渠道特有的附加数据（如飞书的 message_id、chat_type）
    """

    channel: str
    sender_id: str
    chat_id: str
    content: str
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def session_key(self) -> str:
        """
        生成会话标识键，格式为 "channel:sender_id"，例如 "feishu:ou_xxx"。

        返回:
            格式化的会话标识字符串
        """
        return f"{self.channel}:{self.sender_id}"


@dataclass
class OutboundMessage:
    """
    出站消息 - 要发送到聊天渠道的回复。

    属性:
        channel: 目标渠道标识
        chat_id: 目标聊天标识
        content: 回复文本（Markdown）
        reply_to: 可选的引用消息 ID（飞书中以"回复"形式发送）
        metadata: 渠道特有的附加数据（stream_id、progress 等）
    """

    channel: str
    chat_id: str
    content: str
    reply_to: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def stream_id(self) -> str | None:
        """同一次回答的所有出站消息共享的流标识，普通消息为 None。"""
        return self.metadata.get("stream_id")

    @property
    def is_progress(self) -> bool:
        """是否为流式回答的中间进度（最终结果与普通消息均为 False）。"""
        return bool(self.metadata.get("progress"))
