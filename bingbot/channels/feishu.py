"""
飞书/Lark 渠道实现 - 基于 lark-oapi SDK 的 WebSocket 长连接。

- 入站：长连接接收 im.message.receive_v1 事件，过滤后转发到消息总线
- 出站：以"回复"形式发送交互式卡片；同一次回答的后续进度与最终结果原地更新这张卡片

入站过滤顺序：
1. 按 message_id 去重（长连接重连后飞书会重推）
2. 丢弃机器人自己发出的消息
3. 丢弃早于 max_message_age 秒的旧消息
4. 群聊中没有 @机器人 的消息（require_mention_in_groups 为真时）

线程模型：
lark 的长连接客户端是同步阻塞的，运行在独立 daemon 线程中，
回调通过 asyncio.run_coroutine_threadsafe 切回主事件循环；
发送类 SDK 调用同样是同步的，用 run_in_executor 放到线程池执行。
"""

import asyncio
import json
import re
import threading
import time
from collections import OrderedDict
from typing import Any

import lark_oapi as lark
from lark_oapi.api.im.v1 import (
    CreateMessageReactionRequest,
    CreateMessageReactionRequestBody,
    CreateMessageRequest,
    CreateMessageRequestBody,
    Emoji,
    P2ImMessageReceiveV1,
    PatchMessageRequest,
    PatchMessageRequestBody,
    ReplyMessageRequest,
    ReplyMessageRequestBody,
)
from loguru import logger

from bingbot.bus.events import OutboundMessage
from bingbot.bus.queue import MessageBus
from bingbot.channels.base import BaseChannel
from bingbot.config.schema import FeishuConfig

UPDATING_TITLE = "Updating... ⚙️"

# 群聊中 @ 某人在文本里表现为 @_user_1 这样的占位符
_MENTION_RE = re.compile(r"@_user_\d+")

_MAX_TRACKED = 1000


class FeishuChannel(BaseChannel):
    """
    飞书渠道。

    前置要求：在飞书开放平台创建应用并启用机器人能力，订阅 im.message.receive_v1 事件，
    事件接收方式选择"长连接"。
    """

    name = "feishu"

    def __init__(self, config: FeishuConfig, bus: MessageBus):
        super().__init__(config, bus)
        self.config: FeishuConfig = config
        self._client: Any = None
        self._ws_client: Any = None
        self._ws_thread: threading.Thread | None = None
        self._processed_message_ids: OrderedDict[str, None] = OrderedDict()
        self._cards: OrderedDict[str, str] = OrderedDict()  # stream_id -> 卡片消息 ID
        self._loop: asyncio.AbstractEventLoop | None = None

    async def start(self) -> None:
        if not self.config.app_id or not self.config.app_secret:
            logger.error("Feishu app_id and app_secret not configured")
            return

        self._running = True
        self._loop = asyncio.get_running_loop()

        self._client = lark.Client.builder() \
            .app_id(self.config.app_id) \
            .app_secret(self.config.app_secret) \
            .log_level(lark.LogLevel.INFO) \
            .build()

        event_handler = lark.EventDispatcherHandler.builder(
            self.config.encrypt_key or "",
            self.config.verification_token or "",
        ).register_p2_im_message_receive_v1(
            self._on_message_sync
        ).build()

        self._ws_client = lark.ws.Client(
            self.config.app_id,
            self.config.app_secret,
            event_handler=event_handler,
            log_level=lark.LogLevel.INFO,
        )

        def run_ws():
            while self._running:
                try:
                    self._ws_client.start()
                except Exception as e:
                    logger.warning(f"Feishu WebSocket error: {e}")
                if self._running:
                    time.sleep(5)

        self._ws_thread = threading.Thread(target=run_ws, daemon=True)
        self._ws_thread.start()
        logger.info("Feishu bot started with WebSocket long connection")

        while self._running:
            await asyncio.sleep(1)

    async def stop(self) -> None:
        self._running = False
        if self._ws_client:
            try:
                self._ws_client.stop()
            except Exception as e:
                logger.warning(f"Error stopping WebSocket client: {e}")
        logger.info("Feishu bot stopped")

    # ------------------------------------------------------------------
    # 出站
    # ------------------------------------------------------------------

    _TABLE_RE = re.compile(
        r"((?:^[ \t]*\|.+\|[ \t]*\n)(?:^[ \t]*\|[-:\s|]+\|[ \t]*\n)(?:^[ \t]*\|.+\|[ \t]*\n?)+)",
        re.MULTILINE,
    )

    @staticmethod
    def _table_element(table_text: str) -> dict | None:
        """Markdown 表格 → 飞书原生 table 元素；不足三行时返回 None。"""
        lines = [line.strip() for line in table_text.strip().split("\n") if line.strip()]
        if len(lines) < 3:
            return None

        def cells(line: str) -> list[str]:
            return [c.strip() for c in line.strip("|").split("|")]

        headers = cells(lines[0])
        rows = [cells(line) for line in lines[2:]]
        return {
            "tag": "table",
            "page_size": len(rows) + 1,
            "columns": [
                {"tag": "column", "name": f"c{i}", "display_name": h, "width": "auto"}
                for i, h in enumerate(headers)
            ],
            "rows": [
                {f"c{i}": row[i] if i < len(row) else "" for i in range(len(headers))}
                for row in rows
            ],
        }

    def _card_elements(self, content: str) -> list[dict]:
        elements, last_end = [], 0
        for match in self._TABLE_RE.finditer(content):
            before = content[last_end:match.start()].strip()
            if before:
                elements.append({"tag": "markdown", "content": before})
            table = self._table_element(match.group(1))
            elements.append(table or {"tag": "markdown", "content": match.group(1)})
            last_end = match.end()
        remaining = content[last_end:].strip()
        if remaining:
            elements.append({"tag": "markdown", "content": remaining})
        return elements or [{"tag": "markdown", "content": content}]

    def build_card(self, content: str, updating: bool = False) -> dict:
        """
        构建交互式卡片。

        update_multi 让卡片可以被后续 patch 更新；回答进行中时带一个 "Updating..." 标题栏。
        """
        card: dict[str, Any] = {
            "config": {"wide_screen_mode": True, "update_multi": True},
            "elements": self._card_elements(content),
        }
        if updating:
            card["header"] = {
                "template": "blue",
                "title": {"tag": "plain_text", "content": UPDATING_TITLE},
            }
        return card

    async def send(self, msg: OutboundMessage) -> None:
        """
        发送或更新卡片。

        - 该 stream_id 已有卡片：原地 patch
        - 否则有 reply_to：以回复形式发送新卡片
        - 否则：直接发到 chat_id
        进度消息发出的卡片 ID 被记下，最终结果到达后遗忘。
        """
        if not self._client:
            logger.warning("Feishu client not initialized")
            return

        card = json.dumps(self.build_card(msg.content, updating=msg.is_progress), ensure_ascii=False)
        stream_id = msg.stream_id
        card_id = self._cards.get(stream_id) if stream_id else None
        loop = asyncio.get_running_loop()

        try:
            if card_id:
                await loop.run_in_executor(None, self._patch_card_sync, card_id, card)
            elif msg.reply_to:
                card_id = await loop.run_in_executor(None, self._reply_card_sync, msg.reply_to, card)
            else:
                card_id = await loop.run_in_executor(None, self._create_card_sync, msg.chat_id, card)
        except Exception as e:
            logger.error(f"Error sending Feishu message: {e}")
            return

        if not stream_id:
            return
        if msg.is_progress and card_id:
            self._cards[stream_id] = card_id
            while len(self._cards) > _MAX_TRACKED:
                self._cards.popitem(last=False)
        else:
            self._cards.pop(stream_id, None)

    def _reply_card_sync(self, message_id: str, card: str) -> str | None:
        request = ReplyMessageRequest.builder() \
            .message_id(message_id) \
            .request_body(
                ReplyMessageRequestBody.builder()
                .msg_type("interactive")
                .content(card)
                .build()
            ).build()
        response = self._client.im.v1.message.reply(request)
        if not response.success():
            logger.error(
                f"Failed to reply Feishu message: code={response.code}, "
                f"msg={response.msg}, log_id={response.get_log_id()}"
            )
            return None
        return response.data.message_id

    def _create_card_sync(self, chat_id: str, card: str) -> str | None:
        receive_id_type = "chat_id" if chat_id.startswith("oc_") else "open_id"
        request = CreateMessageRequest.builder() \
            .receive_id_type(receive_id_type) \
            .request_body(
                CreateMessageRequestBody.builder()
                .receive_id(chat_id)
                .msg_type("interactive")
                .content(card)
                .build()
            ).build()
        response = self._client.im.v1.message.create(request)
        if not response.success():
            logger.error(
                f"Failed to send Feishu message: code={response.code}, "
                f"msg={response.msg}, log_id={response.get_log_id()}"
            )
            return None
        return response.data.message_id

    def _patch_card_sync(self, message_id: str, card: str) -> bool:
        request = PatchMessageRequest.builder() \
            .message_id(message_id) \
            .request_body(PatchMessageRequestBody.builder().content(card).build()) \
            .build()
        response = self._client.im.v1.message.patch(request)
        if not response.success():
            logger.warning(f"Failed to update Feishu card {message_id}: code={response.code}, msg={response.msg}")
            return False
        return True

    def _add_reaction_sync(self, message_id: str, emoji_type: str) -> None:
        try:
            request = CreateMessageReactionRequest.builder() \
                .message_id(message_id) \
                .request_body(
                    CreateMessageReactionRequestBody.builder()
                    .reaction_type(Emoji.builder().emoji_type(emoji_type).build())
                    .build()
                ).build()
            response = self._client.im.v1.message_reaction.create(request)
            if not response.success():
                logger.warning(f"Failed to add reaction: code={response.code}, msg={response.msg}")
        except Exception as e:
            logger.warning(f"Error adding reaction: {e}")

    async def _add_reaction(self, message_id: str, emoji_type: str = "THUMBSUP") -> None:
        """给用户消息点一个"已收到"的表情。"""
        if not self._client:
            return
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._add_reaction_sync, message_id, emoji_type)

    # ------------------------------------------------------------------
    # 入站
    # ------------------------------------------------------------------

    def _on_message_sync(self, data: P2ImMessageReceiveV1) -> None:
        if self._loop and self._loop.is_running():
            asyncio.run_coroutine_threadsafe(self._on_message(data), self._loop)

    def _is_duplicate(self, message_id: str) -> bool:
        if message_id in self._processed_message_ids:
            return True
        self._processed_message_ids[message_id] = None
        while len(self._processed_message_ids) > _MAX_TRACKED:
            self._processed_message_ids.popitem(last=False)
        return False

    def _is_stale(self, create_time: Any) -> bool:
        if not create_time or self.config.max_message_age <= 0:
            return False
        try:
            age = time.time() - int(create_time) / 1000
        except (TypeError, ValueError):
            return False
        return age > self.config.max_message_age

    def _mentions_bot(self, mentions: list[Any] | None) -> bool:
        if not mentions:
            return False
        if not self.config.bot_name:
            return True
        return any(getattr(m, "name", None) == self.config.bot_name for m in mentions)

    async def _on_message(self, data: P2ImMessageReceiveV1) -> None:
        try:
            event = data.event
            message = event.message
            sender = event.sender

            message_id = message.message_id
            if self._is_duplicate(message_id):
                return
            if sender.sender_type == "bot":
                return
            if self._is_stale(message.create_time):
                logger.debug(f"Dropping stale Feishu message {message_id}")
                return

            chat_type = message.chat_type
            if (
                chat_type == "group"
                and self.config.require_mention_in_groups
                and not self._mentions_bot(message.mentions)
            ):
                return

            if message.message_type != "text":
                logger.debug(f"Ignoring Feishu {message.message_type} message {message_id}")
                return
            try:
                text = json.loads(message.content).get("text", "")
            except json.JSONDecodeError:
                text = message.content or ""
            content = _MENTION_RE.sub("", text).strip()
            if not content:
                return

            sender_id = sender.sender_id.open_id if sender.sender_id else "unknown"
            await self._add_reaction(message_id, "THUMBSUP")

            reply_to = message.chat_id if chat_type == "group" else sender_id
            await self._handle_message(
                sender_id=sender_id,
                chat_id=reply_to,
                content=content,
                metadata={"message_id": message_id, "chat_type": chat_type},
            )
        except Exception as e:
            logger.error(f"Error processing Feishu message: {e}")
