"""
会话管理器实现模块。

get_or_create 在事件循环上是一段不含 await 的同步代码，天然原子：
同一用户的两条并发消息不可能各自创建出一个会话。
会话内部的句柄创建再由单飞机制保证只发一次请求。
"""

from typing import Any, Callable

from loguru import logger

from bingbot.providers.base import ChatProvider


class SessionManager:
    """
    会话管理器 - 用户会话的获取、重置与枚举。

    属性:
        factory: 创建新会话的无参工厂函数
        _sessions: 内存会话字典 {session_key: ChatProvider}
    """

    def __init__(self, factory: Callable[[], ChatProvider]):
        """
        参数:
            factory: 会话工厂（通常是 lambda: BingChatSession(config.bing)）
        """
        self.factory = factory
        self._sessions: dict[str, ChatProvider] = {}

    def get_or_create(self, key: str) -> ChatProvider:
        """获取已有会话，不存在时用工厂新建一个。"""
        session = self._sessions.get(key)
        if session is None:
            session = self.factory()
            self._sessions[key] = session
            logger.debug(f"Session created for {key}")
        return session

    async def reset(self, key: str) -> bool:
        """
        重置指定用户的会话：从映射中移除并关闭它。

        返回:
            True 表示确实存在并关闭了一个会话
        """
        session = self._sessions.pop(key, None)
        if session is None:
            return False
        await session.close()
        logger.info(f"Session reset for {key}")
        return True

    async def close_all(self) -> None:
        """关闭所有会话（进程退出时调用）。"""
        sessions, self._sessions = self._sessions, {}
        for key, session in sessions.items():
            try:
                await session.close()
            except Exception as e:
                logger.warning(f"Error closing session {key}: {e}")

    def list_sessions(self) -> list[dict[str, Any]]:
        """列出所有会话的简要状态。"""
        return [
            {
                "key": key,
                "busy": session.busy,
                "expired": getattr(session, "expired", None),
            }
            for key, session in self._sessions.items()
        ]

    def __len__(self) -> int:
        return len(self._sessions)
