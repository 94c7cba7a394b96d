"""
对话提供者模块（providers 包）。

本模块是 bingbot 与 Bing Chat 后端之间的桥梁层，也是整个项目最核心的部分。

模块组成：
- base.py       : ChatProvider 抽象基类与值对象（句柄、片段、发送参数、最终结果）
- bing_chat.py  : BingChatSession，基于 WebSocket 流式协议的会话客户端
- codec.py      : 以 0x1E 分隔的 JSON 帧编解码
- throttle.py   : 进度回调的前沿 + 后沿节流
- errors.py     : 类型明确的失败（BackendUnavailable、TransportError、ResponseTimeout 等）
"""

from bingbot.providers.base import (
    ChatMessage,
    ChatProvider,
    ConversationHandle,
    FinalResult,
    Location,
    SendOptions,
)
from bingbot.providers.bing_chat import BingChatSession, ExchangeState
from bingbot.providers.errors import (
    BackendUnavailable,
    BingChatError,
    ResponseTimeout,
    SessionBusy,
    SessionReset,
    TransportError,
)

__all__ = [
    "ChatProvider",
    "ChatMessage",
    "ConversationHandle",
    "FinalResult",
    "Location",
    "SendOptions",
    "BingChatSession",
    "ExchangeState",
    "BingChatError",
    "BackendUnavailable",
    "TransportError",
    "SessionReset",
    "ResponseTimeout",
    "SessionBusy",
]
