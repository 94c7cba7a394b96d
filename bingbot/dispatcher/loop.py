"""
分发器主循环模块 - 连接消息总线与 Bing 会话。

处理流水线：
  InboundMessage → 命令判断（/reset、/help）→ 按用户取会话 → send_message
      → 节流进度（OutboundMessage, progress=True）→ 最终结果（progress=False）

每条入站消息在独立任务中处理，一个用户等待 Bing 回答时不会阻塞其他用户；
同一用户在上一次回答结束前再发消息，会话会以 SessionBusy 拒绝，这里转成提示语。

【Java 开发者类比】
- Dispatcher 类似于带 @KafkaListener 的 Service，持有 SessionManager
- 每条消息一个 asyncio.Task 类似于把处理提交到线程池
"""

import asyncio
import uuid

from loguru import logger

from bingbot.bus.events import InboundMessage, OutboundMessage
from bingbot.bus.queue import MessageBus
from bingbot.config.schema import DispatcherConfig
from bingbot.dispatcher.render import render_fragments, render_result
from bingbot.providers.base import ChatMessage, FinalResult, ProgressCallback, SendOptions
from bingbot.providers.errors import BackendUnavailable, BingChatError, SessionBusy
from bingbot.session.manager import SessionManager
from bingbot.utils.helpers import truncate_string

HELP_TEXT = (
    "🔎 bingbot commands:\n"
    "{reset} - Start a new Bing conversation\n"
    "/help - Show available commands"
)


class Dispatcher:
    """
    分发器 - 把用户消息转交给各自的 Bing 会话，并回传进度与结果。

    核心属性：
    - bus: 消息总线
    - sessions: 用户会话映射
    - config: 分发器配置（重置命令、应用名）
    """

    def __init__(
        self,
        bus: MessageBus,
        sessions: SessionManager,
        config: DispatcherConfig | None = None,
    ):
        self.bus = bus
        self.sessions = sessions
        self.config = config or DispatcherConfig()
        self._running = False
        self._tasks: set[asyncio.Task] = set()

    async def run(self) -> None:
        """
        持续从总线消费入站消息，每条消息交给一个独立任务处理。

        通过 1 秒超时的轮询来检查 _running 标志，stop() 后最多 1 秒退出。
        """
        self._running = True
        logger.info("Dispatcher started")

        while self._running:
            try:
                msg = await asyncio.wait_for(self.bus.consume_inbound(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            task = asyncio.create_task(self.on_user_message(msg))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    def stop(self) -> None:
        self._running = False
        logger.info("Dispatcher stopping")

    async def wait_idle(self) -> None:
        """等待所有进行中的消息处理任务结束。"""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def on_user_message(self, msg: InboundMessage) -> None:
        """处理一条入站消息，任何异常都转成回复发回给用户。"""
        try:
            response = await self._process_message(msg)
        except Exception as e:
            logger.exception(f"Error processing message from {msg.session_key}: {e}")
            response = self._reply(
                msg, f"[ERROR] {self.config.app_name} is unavailable now. Please try again later."
            )
        if response:
            await self.bus.publish_outbound(response)

    async def _process_message(self, msg: InboundMessage) -> OutboundMessage | None:
        content = msg.content
        key = msg.session_key
        logger.info(f"[{self.config.app_name}] Receive from {key}: {truncate_string(content, 80)}")

        # --- 命令 ---
        if content == self.config.reset_command:
            await self.sessions.reset(key)
            return self._reply(msg, "[COMMAND] Session reset successfully.")
        if content.strip().lower() == "/help":
            return self._reply(msg, HELP_TEXT.format(reset=self.config.reset_command))

        # --- 对话 ---
        stream_id = uuid.uuid4().hex

        async def on_progress(fragments: list[ChatMessage]) -> None:
            text = render_fragments(fragments)
            if text:
                await self.bus.publish_outbound(self._reply(msg, text, stream_id=stream_id, progress=True))

        try:
            result = await self.process_direct(content, key, on_progress=on_progress)
        except SessionBusy:
            return self._reply(msg, "[BUSY] Still answering your previous message, please wait.")
        except BackendUnavailable as e:
            logger.warning(f"Bing unavailable for {key}: {e}")
            return self._reply(msg, f"[ERROR:{e.status_code}] {e}", stream_id=stream_id)
        except BingChatError as e:
            logger.warning(f"Bing exchange failed for {key}: {e}")
            return self._reply(msg, f"[ERROR] {e}", stream_id=stream_id)

        logger.info(f"[{self.config.app_name}] Reply to {key}: {truncate_string(result.text, 120)}")
        return self._reply(msg, render_result(result), stream_id=stream_id)

    async def process_direct(
        self,
        content: str,
        session_key: str = "cli:direct",
        on_progress: ProgressCallback | None = None,
    ) -> FinalResult:
        """
        直接把一条文本发给指定会话并返回最终结果（CLI 使用，也是 _process_message 的核心）。

        异常:
            BingChatError 的子类，原样抛出
        """
        session = self.sessions.get_or_create(session_key)
        return await session.send_message(content, SendOptions(on_progress=on_progress))

    @staticmethod
    def _reply(
        msg: InboundMessage,
        content: str,
        stream_id: str | None = None,
        progress: bool = False,
    ) -> OutboundMessage:
        metadata = dict(msg.metadata)
        if stream_id:
            metadata["stream_id"] = stream_id
            metadata["progress"] = progress
        return OutboundMessage(
            channel=msg.channel,
            chat_id=msg.chat_id,
            content=content,
            reply_to=msg.metadata.get("message_id"),
            metadata=metadata,
        )
