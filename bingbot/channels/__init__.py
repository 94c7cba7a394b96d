"""
消息渠道模块 - 把聊天平台接入消息总线。

消息流向：
  用户消息 → 渠道 → MessageBus → Dispatcher → Bing 会话 → MessageBus → 渠道 → 用户

目前只有飞书一个渠道；新增渠道时继承 BaseChannel 并在 ChannelManager._init_channels() 中注册。
"""

from bingbot.channels.base import BaseChannel
from bingbot.channels.manager import ChannelManager

__all__ = ["BaseChannel", "ChannelManager"]
