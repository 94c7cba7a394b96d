"""Test doubles for the Bing ChatHub endpoints."""

import asyncio
from typing import Any

import httpx

from bingbot.providers.codec import HANDSHAKE_FRAME, INVOCATION, PING_FRAME, decode_frames, encode_frame

# Marks the point where the fake server closes the stream normally
END = object()

HANDLE_PAYLOAD = {
    "conversationId": "conv-1",
    "clientId": "client-1",
    "conversationSignature": "sig-1",
    "result": {"value": "Success", "message": None},
}


def bot(message_id: str | None, text: str, **extra: Any) -> dict:
    data = {"author": "bot", "text": text, **extra}
    if message_id is not None:
        data["messageId"] = message_id
    return data


def status(message_id: str, text: str, message_type: str = "InternalSearchQuery") -> dict:
    return bot(message_id, text, messageType=message_type)


def user(text: str) -> dict:
    return {"messageId": "u-1", "author": "user", "text": text}


def update(*messages: dict) -> dict:
    return {"type": 1, "target": "update", "arguments": [{"messages": list(messages)}]}


def completion(*messages: dict, **item: Any) -> dict:
    body = {
        "messages": list(messages),
        "conversationId": "conv-1",
        "conversationExpiryTime": "2023-03-01T00:00:00Z",
        "result": {"value": "Success"},
        **item,
    }
    return {"type": 2, "invocationId": "0", "item": body}


SESSION_CLOSED = {"type": 3, "invocationId": "0"}


class FakeSocket:
    """
    Scripted ChatHub connection.

    Acknowledges the handshake with `ack` (unless `acknowledge` is False) and,
    once the query frame arrives,
    streams `replies` (dicts are encoded as frames, strings are sent raw,
    END closes the stream).
    """

    def __init__(self, replies: list[Any] | None = None, ack: Any = None, acknowledge: bool = True):
        self.replies = list(replies or [])
        self.ack = {} if ack is None else ack
        self.acknowledge = acknowledge
        self.sent: list[Any] = []
        self.closed = False
        self.query_received = asyncio.Event()
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, data: str) -> None:
        for frame in decode_frames(data):
            self.sent.append(frame)
            if frame == HANDSHAKE_FRAME and self.acknowledge:
                self._push(self.ack)
            elif isinstance(frame, dict) and frame.get("type") == INVOCATION:
                self.query_received.set()
                for reply in self.replies:
                    self._push(reply)

    async def close(self) -> None:
        self.closed = True
        self._inbox.put_nowait(END)

    def _push(self, item: Any) -> None:
        if item is END or isinstance(item, str):
            self._inbox.put_nowait(item)
        else:
            self._inbox.put_nowait(encode_frame(item))

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        item = await self._inbox.get()
        if item is END:
            raise StopAsyncIteration
        return item

    @property
    def queries(self) -> list[dict]:
        return [f for f in self.sent if isinstance(f, dict) and f.get("type") == INVOCATION]

    @property
    def pings(self) -> int:
        return sum(1 for f in self.sent if f == PING_FRAME)


class FakeConnector:
    """Hands out prepared sockets (or raises prepared errors) in order."""

    def __init__(self, *sockets: Any):
        self.sockets = list(sockets)
        self.calls: list[tuple[str, dict]] = []

    async def __call__(self, url: str, headers: dict[str, str]) -> Any:
        self.calls.append((url, headers))
        item = self.sockets.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


class CreateEndpoint:
    """httpx.MockTransport handler standing in for the createConversation endpoint."""

    def __init__(self, status_code: int = 200, payload: Any = None, text: str | None = None, delay: float = 0.0):
        self.status_code = status_code
        self.payload = HANDLE_PAYLOAD if payload is None else payload
        self.text = text
        self.delay = delay
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.text is not None:
            return httpx.Response(self.status_code, text=self.text)
        return httpx.Response(self.status_code, json=self.payload)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))
