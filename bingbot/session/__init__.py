"""
会话管理模块 - 维护"用户 → 对话会话"的内存映射。

每个用户（session_key = "channel:sender_id"）对应一个 ChatProvider 实例，
实例内部持有 Bing 对话句柄和连接状态。会话只在内存中存在，进程重启后全部丢失；
除了显式重置（/reset）之外没有淘汰策略，句柄本身的 24 小时过期由会话自己处理。

【Java 开发者类比】
- SessionManager 类似于一个 ConcurrentHashMap<String, ChatSession>
- get_or_create 类似于 computeIfAbsent
"""

from bingbot.session.manager import SessionManager

__all__ = ["SessionManager"]
