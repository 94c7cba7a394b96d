"""
帧编解码模块。

Bing ChatHub 的传输负载是 UTF-8 文本，里面是一个或多个 JSON 帧，
每帧以 ASCII 记录分隔符 0x1E 结尾。

解码：按分隔符切分 → 丢弃空段 → 逐段 JSON 解析，解析失败的段原样作为字符串返回
（不会抛出异常，也不会被当作有类型的帧分发）。
编码：紧凑 JSON + 恰好一个分隔符。JSON 会把控制字符转义成 \\u001e，
所以分隔符永远不会出现在帧内容里。
"""

import json
from typing import Any

RECORD_SEPARATOR = "\x1e"

# 协议中用到的帧类型
INVOCATION = 4
UPDATE = 1
COMPLETION = 2
SESSION_CLOSED = 3
PING = 6

HANDSHAKE_FRAME = {"protocol": "json", "version": 1}
PING_FRAME = {"type": PING}


def decode_frames(payload: str | bytes) -> list[Any]:
    """
    把一次传输负载解码为帧列表。

    参数:
        payload: WebSocket 收到的文本或二进制数据

    返回:
        帧列表，合法 JSON 段为解析后的对象，其余为原始字符串
    """
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8", errors="replace")

    frames: list[Any] = []
    for segment in payload.split(RECORD_SEPARATOR):
        if not segment:
            continue
        try:
            frames.append(json.loads(segment))
        except json.JSONDecodeError:
            frames.append(segment)
    return frames


def encode_frame(frame: Any) -> str:
    """把一个帧编码为带结尾分隔符的文本。"""
    return json.dumps(frame, ensure_ascii=False, separators=(",", ":")) + RECORD_SEPARATOR
