"""
Bing Chat 会话客户端 - bingbot 的核心协议引擎。

一个 BingChatSession 对应一个用户的一段逻辑对话，负责：
1. 通过 HTTP 创建对话句柄（单飞：并发调用只发一次请求）
2. 打开 WebSocket，完成协议握手，发送查询帧
3. 接收乱序推送的增量片段，按 messageId 去重合并，节流推送进度
4. 收到完成帧或会话关闭帧后给出最终结果；超时、断连时给出类型明确的失败

交换状态机：
  DISCONNECTED → CONNECTING → HANDSHAKE_PENDING → STREAMING → COMPLETED
                      └──────────────┴─────────────────┴──→ FAILED

两个计时器：
- 响应计时器（默认 8 秒）：每收到一帧重新计时，超时视为流已失效
- 对话计时器（默认 24 小时）：创建句柄和发送查询时重新计时，到期后句柄作废

任何失败路径都会关闭连接、清除两个计时器、清空句柄，并且只拒绝一次进行中的交换。

【Java 开发者类比】
- 待定结果 self._pending 相当于 CompletableFuture，只允许完成一次
- loop.call_later 返回的 TimerHandle 相当于 ScheduledFuture
"""

import asyncio
import secrets
import uuid
from contextlib import suppress
from dataclasses import replace
from enum import Enum
from typing import Any, Awaitable, Callable

import httpx
import websockets
from loguru import logger

from bingbot.config.schema import BingConfig
from bingbot.providers.base import (
    ChatMessage,
    ChatProvider,
    ConversationHandle,
    FinalResult,
    FragmentBuffer,
    Location,
    SendOptions,
)
from bingbot.providers.codec import (
    COMPLETION,
    HANDSHAKE_FRAME,
    INVOCATION,
    PING_FRAME,
    SESSION_CLOSED,
    UPDATE,
    decode_frames,
    encode_frame,
)
from bingbot.providers.errors import (
    BackendUnavailable,
    BingChatError,
    HandleExpired,
    ResponseTimeout,
    SessionBusy,
    SessionReset,
    TransportError,
)
from bingbot.providers.throttle import ProgressThrottle
from bingbot.utils.singleflight import SingleFlight

# 建立 WebSocket 连接的函数签名：(url, headers) -> 连接对象
Connector = Callable[[str, dict[str, str]], Awaitable[Any]]

OPTIONS_SETS = [
    "nlu_direct_response_filter",
    "deepleo",
    "enable_debug_commands",
    "disable_emoji_spoken_text",
    "responsible_ai_policy_235",
    "enablemm",
]

ALLOWED_MESSAGE_TYPES = [
    "Chat",
    "InternalSearchQuery",
    "InternalSearchResult",
    "InternalLoaderMessage",
    "RenderCardRequest",
    "AdsQuery",
    "SemanticSerp",
]

WS_HEADERS = {
    "accept-language": "en-US,en;q=0.9",
    "cache-control": "no-cache",
    "pragma": "no-cache",
}

# 模拟 Edge 浏览器的请求头，缺少这些头时创建对话接口会拒绝请求
CREATE_HEADERS = {
    "accept": "application/json",
    "accept-language": "en-US,en;q=0.9",
    "content-type": "application/json",
    "sec-ch-ua": '"Not_A Brand";v="99", "Microsoft Edge";v="109", "Chromium";v="109"',
    "sec-ch-ua-arch": '"x86"',
    "sec-ch-ua-bitness": '"64"',
    "sec-ch-ua-full-version": '"109.0.1518.78"',
    "sec-ch-ua-full-version-list": (
        '"Not_A Brand";v="99.0.0.0", "Microsoft Edge";v="109.0.1518.78", '
        '"Chromium";v="109.0.5414.120"'
    ),
    "sec-ch-ua-mobile": "?0",
    "sec-ch-ua-model": "",
    "sec-ch-ua-platform": '"macOS"',
    "sec-ch-ua-platform-version": '"12.6.0"',
    "sec-fetch-dest": "empty",
    "sec-fetch-mode": "cors",
    "sec-fetch-site": "same-origin",
    "x-edge-shopping-flag": "1",
    "x-ms-useragent": "azsdk-js-api-client-factory/1.0.0-beta.1 core-rest-pipeline/1.10.0 OS/MacIntel",
    "referer": "https://www.bing.com/search",
}


class ExchangeState(str, Enum):
    """单次交换的状态。"""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    HANDSHAKE_PENDING = "handshake_pending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


async def open_socket(url: str, headers: dict[str, str]) -> Any:
    """默认连接器：用 websockets 打开连接，关闭压缩并取消单帧大小限制。"""
    return await websockets.connect(
        url,
        additional_headers=headers,
        compression=None,
        max_size=None,
    )


def cookie_header(cookie: str) -> str:
    """裸 _U 值补全为 "_U=xxx"，已是完整 Cookie 串（含 ";"）时原样返回。"""
    return cookie if ";" in cookie else f"_U={cookie}"


class BingChatSession(ChatProvider):
    """
    Bing Chat 会话客户端。

    属性：
        config: Bing 后端配置
        state: 最近一次交换所处的状态
        is_start_of_session: 是否为当前句柄的第一次交换
    """

    def __init__(
        self,
        config: BingConfig,
        http_client: httpx.AsyncClient | None = None,
        connect: Connector | None = None,
    ):
        """
        参数：
            config: Bing 后端配置（Cookie、端点、超时等）
            http_client: 可选的共享 HTTP 客户端；为 None 时每次创建对话临时建一个
            connect: 可选的连接器，测试时用它替换真实 WebSocket
        """
        if not config.cookie:
            raise ValueError("Bing cookie is required")
        self.config = config
        self._http = http_client
        self._connect = connect or open_socket
        self._flight = SingleFlight()
        # 每次 close() 加一；创建句柄期间发生重置时据此丢弃新句柄
        self._generation = 0

        self._handle: ConversationHandle | None = None
        self.is_start_of_session = False
        self._invocation = 0
        self._conversation_timer: asyncio.TimerHandle | None = None

        self.state = ExchangeState.DISCONNECTED
        self._busy = False
        self._ws: Any = None
        self._reader: asyncio.Task | None = None
        self._pending: asyncio.Future | None = None
        self._response_timer: asyncio.TimerHandle | None = None
        self._throttle: ProgressThrottle | None = None
        self._fragments = FragmentBuffer()
        self._result: FinalResult | None = None
        self._frames_received = 0

    # ------------------------------------------------------------------
    # 对外属性
    # ------------------------------------------------------------------

    @property
    def expired(self) -> bool:
        """尚未创建句柄，或句柄已因超时/失败被清除。"""
        return self._handle is None

    @property
    def handle(self) -> ConversationHandle | None:
        return self._handle

    @property
    def busy(self) -> bool:
        return self._busy

    # ------------------------------------------------------------------
    # 句柄创建
    # ------------------------------------------------------------------

    async def create_conversation(self) -> ConversationHandle:
        """
        创建对话句柄。

        并发调用时只发出一次 HTTP 请求，所有调用者一起得到同一个句柄或同一个异常。
        成功后 is_start_of_session 置为 True，并重新开始 24 小时对话计时。

        异常：
            BackendUnavailable: HTTP 非 2xx，或响应中句柄字段不全
            TransportError: 请求未能到达后端
            SessionReset: 请求期间会话被 close()，新句柄不会生效
        """
        return await self._flight.do("conversation", self._request_conversation)

    async def _request_conversation(self) -> ConversationHandle:
        generation = self._generation
        headers = {
            **CREATE_HEADERS,
            "x-ms-client-request-id": str(uuid.uuid4()),
            "cookie": cookie_header(self.config.cookie),
        }
        logger.debug("Creating Bing conversation")

        try:
            if self._http is not None:
                response = await self._http.get(self.config.create_url, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.config.http_timeout) as client:
                    response = await client.get(self.config.create_url, headers=headers)
        except httpx.HTTPError as e:
            raise TransportError(f"createConversation request failed: {e}") from e

        if not response.is_success:
            raise BackendUnavailable(response.status_code, response.text)

        try:
            data = response.json()
        except ValueError as e:
            raise BackendUnavailable(
                response.status_code, response.text, "createConversation returned invalid JSON"
            ) from e

        handle = ConversationHandle.from_payload(data) if isinstance(data, dict) else None
        if handle is None:
            result = data.get("result") if isinstance(data, dict) else None
            detail = (result or {}).get("message") or "incomplete conversation handle"
            raise BackendUnavailable(response.status_code, response.text, f"createConversation failed: {detail}")

        if generation != self._generation:
            logger.info("Bing session reset while creating the conversation, discarding handle")
            raise SessionReset("session reset")

        self._handle = handle
        self.is_start_of_session = True
        self._invocation = 0
        self._arm_conversation_timer()
        logger.info(f"Bing conversation created: {handle.conversation_id[:24]}")
        return handle

    # ------------------------------------------------------------------
    # 交换
    # ------------------------------------------------------------------

    async def send_message(self, text: str, options: SendOptions | None = None) -> FinalResult:
        """
        发送一条消息并等待最终结果。

        句柄缺失或过期时先透明地重新创建；交换途中句柄过期（HandleExpired）
        会用新句柄重试一次，调用方看不到这个内部信号。

        异常：
            SessionBusy: 已有交换在进行
            SessionReset: 交换（含句柄创建阶段）被 close() 打断
            BackendUnavailable / TransportError / ResponseTimeout: 本次交换失败
        """
        if self._busy:
            raise SessionBusy("a reply is still streaming on this session")
        self._busy = True
        options = options or SendOptions()
        generation = self._generation

        try:
            last_error: BingChatError | None = None
            for _ in range(2):
                try:
                    handle = self._require_handle()
                except HandleExpired:
                    handle = await self.create_conversation()
                if generation != self._generation:
                    self._expire()
                    raise SessionReset("session reset")
                try:
                    return await self._exchange(handle, text, options)
                except HandleExpired as e:
                    logger.info("Bing conversation expired mid-exchange, recreating")
                    last_error = e
            raise TransportError("conversation expired twice during one exchange") from last_error
        finally:
            self._busy = False

    def _require_handle(self) -> ConversationHandle:
        if self._handle is None:
            raise HandleExpired("conversation handle is missing or expired")
        return self._handle

    async def _exchange(self, handle: ConversationHandle, text: str, options: SendOptions) -> FinalResult:
        loop = asyncio.get_running_loop()
        self._pending = loop.create_future()
        self._fragments = FragmentBuffer()
        self._frames_received = 0
        self._throttle = (
            ProgressThrottle(options.on_progress, self.config.progress_interval)
            if options.on_progress else None
        )
        self._result = FinalResult(
            conversation_id=handle.conversation_id,
            client_id=handle.client_id,
            conversation_signature=handle.conversation_signature,
            invocation_id=str(self._invocation),
        )

        self.state = ExchangeState.CONNECTING
        self._reader = asyncio.create_task(self._drive(handle, text, options))
        throttle = self._throttle
        try:
            return await self._pending
        finally:
            await self._close_transport()
            if throttle is not None:
                await throttle.drain()

    async def _drive(self, handle: ConversationHandle, text: str, options: SendOptions) -> None:
        """读循环：连接、握手、逐帧处理，直到交换被结算。"""
        try:
            ws = await self._connect(self.config.ws_url, dict(WS_HEADERS))
        except Exception as e:
            logger.warning(f"Bing WebSocket connect failed: {e}")
            self._fail(TransportError(f"WebSocket connect failed: {e}"))
            return

        self._ws = ws
        try:
            self.state = ExchangeState.HANDSHAKE_PENDING
            await self._send(HANDSHAKE_FRAME)
            self._arm_response_timer()

            async for payload in ws:
                for frame in decode_frames(payload):
                    await self._on_frame(frame, handle, text, options)
                    if self._pending.done():
                        return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Bing WebSocket error: {e}")
            self._fail(TransportError(f"WebSocket error: {e}"))
            return

        self._fail(TransportError("WebSocket closed before the reply completed"))

    async def _on_frame(self, frame: Any, handle: ConversationHandle, text: str, options: SendOptions) -> None:
        self._frames_received += 1
        self._arm_response_timer()
        if self._frames_received % self.config.keepalive_every == 0:
            await self._send(PING_FRAME)

        if not isinstance(frame, dict):
            return  # 无法解析的段，不分发

        if self.state is ExchangeState.HANDSHAKE_PENDING:
            if frame.get("error"):
                self._fail(TransportError(f"handshake rejected: {frame['error']}"))
            elif not frame:
                await self._send(self._build_query(handle, text, options))
                self.state = ExchangeState.STREAMING
                self.is_start_of_session = False
                self._invocation += 1
                self._arm_conversation_timer()
            return

        kind = frame.get("type")
        if kind == UPDATE:
            self._on_update(frame)
        elif kind == COMPLETION:
            self._on_completion(frame)
        elif kind == SESSION_CLOSED:
            self._resolve(self._assemble())
        else:
            logger.debug(f"Ignoring Bing frame type {kind!r}")

    def _on_update(self, frame: dict[str, Any]) -> None:
        merged = False
        for argument in frame.get("arguments") or []:
            if not isinstance(argument, dict):
                continue
            for raw in argument.get("messages") or []:
                if isinstance(raw, dict):
                    self._fragments.merge(ChatMessage.from_dict(raw))
                    merged = True
        if merged and self._throttle is not None:
            self._throttle.push(self._fragments.snapshot())

    def _on_completion(self, frame: dict[str, Any]) -> None:
        item = frame.get("item") or {}
        messages = [ChatMessage.from_dict(m) for m in item.get("messages") or [] if isinstance(m, dict)]
        answers = [m for m in messages if not m.is_status]
        if not answers:
            # 完成帧里没有可用答案时等待随后的会话关闭帧
            logger.debug(f"Completion without answer: {(item.get('result') or {}).get('value')}")
            return

        answer = answers[-1]
        self._resolve(replace(
            self._result,
            text=answer.text,
            author=answer.author,
            detail=answer,
            messages=messages,
            conversation_id=item.get("conversationId") or self._result.conversation_id,
            conversation_expiry_time=item.get("conversationExpiryTime"),
        ))

    def _assemble(self) -> FinalResult:
        """用已累积的片段拼出当前结果（会话关闭帧提前到达时使用）。"""
        messages = self._fragments.snapshot()
        answers = [m for m in messages if not m.is_status and m.author == "bot"]
        if not answers:
            return replace(self._result, messages=messages)
        answer = answers[-1]
        return replace(self._result, text=answer.text, author=answer.author, detail=answer, messages=messages)

    def _build_query(self, handle: ConversationHandle, text: str, options: SendOptions) -> dict[str, Any]:
        location = options.location
        if location is None and self.config.location is not None:
            location = Location(**self.config.location.model_dump())

        return {
            "arguments": [
                {
                    "source": "cib",
                    "optionsSets": OPTIONS_SETS,
                    "allowedMessageTypes": ALLOWED_MESSAGE_TYPES,
                    "sliceIds": [],
                    "traceId": secrets.token_hex(16),
                    "isStartOfSession": self.is_start_of_session,
                    "message": {
                        "locale": options.locale or self.config.locale,
                        "market": options.market or self.config.market,
                        "region": options.region or self.config.region,
                        "location": location.to_wire() if location else None,
                        "author": "user",
                        "inputMethod": "Keyboard",
                        "messageType": "Chat",
                        "text": text,
                    },
                    "conversationSignature": handle.conversation_signature,
                    "participant": {"id": handle.client_id},
                    "conversationId": handle.conversation_id,
                }
            ],
            "invocationId": str(self._invocation),
            "target": "chat",
            "type": INVOCATION,
        }

    async def _send(self, frame: Any) -> None:
        await self._ws.send(encode_frame(frame))

    # ------------------------------------------------------------------
    # 结算
    # ------------------------------------------------------------------

    def _resolve(self, result: FinalResult) -> None:
        assert self._pending is not None and not self._pending.done(), "exchange settled twice"
        self.state = ExchangeState.COMPLETED
        self._cancel_response_timer()
        if self._throttle is not None:
            self._throttle.flush()
        self._pending.set_result(result)
        logger.debug(f"Bing exchange completed ({len(result.messages)} messages)")

    def _fail(self, error: BingChatError) -> None:
        """拒绝进行中的交换并让会话过期。已结算时什么也不做。"""
        if self._pending is None or self._pending.done():
            return
        self.state = ExchangeState.FAILED
        if self._throttle is not None:
            self._throttle.cancel()
        self._cancel_response_timer()
        self._expire()
        self._pending.set_exception(error)

    # ------------------------------------------------------------------
    # 计时器
    # ------------------------------------------------------------------

    def _arm_response_timer(self) -> None:
        self._cancel_response_timer()
        loop = asyncio.get_running_loop()
        self._response_timer = loop.call_later(self.config.response_timeout, self._on_response_timeout)

    def _cancel_response_timer(self) -> None:
        if self._response_timer is not None:
            self._response_timer.cancel()
            self._response_timer = None

    def _on_response_timeout(self) -> None:
        self._response_timer = None
        logger.warning(f"No frame from Bing within {self.config.response_timeout}s")
        self._fail(ResponseTimeout(f"no response from Bing within {self.config.response_timeout}s"))

    def _arm_conversation_timer(self) -> None:
        if self._conversation_timer is not None:
            self._conversation_timer.cancel()
        loop = asyncio.get_running_loop()
        self._conversation_timer = loop.call_later(self.config.conversation_ttl, self._on_conversation_expired)

    def _on_conversation_expired(self) -> None:
        self._conversation_timer = None
        logger.info("Bing conversation handle expired")
        if self._pending is not None and not self._pending.done():
            self._fail(HandleExpired("conversation handle expired"))
        else:
            self._expire()

    def _expire(self) -> None:
        if self._conversation_timer is not None:
            self._conversation_timer.cancel()
            self._conversation_timer = None
        self._handle = None
        self.is_start_of_session = False

    # ------------------------------------------------------------------
    # 拆除
    # ------------------------------------------------------------------

    async def _close_transport(self) -> None:
        """关闭连接并停止读循环。可重复调用。"""
        self._cancel_response_timer()

        reader, self._reader = self._reader, None
        if reader is not None and reader is not asyncio.current_task():
            if not reader.done():
                reader.cancel()
            with suppress(asyncio.CancelledError):
                await reader

        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"Error closing Bing WebSocket: {e}")

    async def close(self) -> None:
        """
        重置会话：拒绝进行中的交换（SessionReset）、关闭连接、清空句柄。

        任意状态下都可以调用，重复调用是空操作。
        正在创建句柄时调用，等待中的 send_message 同样以 SessionReset 结束。
        """
        self._generation += 1
        self._fail(SessionReset("session reset"))
        self._expire()
        await self._close_transport()
