"""
会话客户端异常模型。

一次对话交换中出现的所有失败都以这里定义的异常抛出，且每次交换只会被拒绝一次。
失败只影响当前这一次交换：会话随之回到"已过期"状态，下一次调用会透明地重新创建句柄。

异常层级：
  BingChatError
  ├── BackendUnavailable   创建对话的 HTTP 请求返回非 2xx（携带状态码与响应体）
  ├── TransportError       WebSocket / 网络层失败
  │   └── SessionReset     外部重置（/reset）打断了进行中的交换
  ├── ResponseTimeout      超过 response_timeout 秒没有收到任何帧
  ├── HandleExpired        对话句柄过期（内部信号，由 send_message 透明重建）
  └── SessionBusy          同一会话上已有一次交换在进行
"""


class BingChatError(Exception):
    """会话客户端异常基类，便于上层统一捕获并转换为用户提示。"""


class BackendUnavailable(BingChatError):
    """
    创建对话失败。

    属性:
        status_code: HTTP 状态码
        body: 响应体文本（用于排查 Cookie 失效、地区限制等问题）
    """

    def __init__(self, status_code: int, body: str, message: str | None = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message or f"unexpected HTTP error createConversation {status_code}: {body[:200]}")


class TransportError(BingChatError):
    """WebSocket 打开失败、出错或在交换完成前被关闭。"""


class SessionReset(TransportError):
    """会话被显式重置，进行中的交换被取消。"""


class ResponseTimeout(BingChatError):
    """后端在规定时间内没有推送任何帧，视为流已失效。"""


class HandleExpired(BingChatError):
    """对话句柄已过期，需要重新创建。"""


class SessionBusy(BingChatError):
    """同一会话上已有一次交换在进行，拒绝交错发送。"""
