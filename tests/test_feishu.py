"""
Tests for the Feishu channel and ChannelManager.

Events are built from SimpleNamespace objects shaped like the lark-oapi
P2ImMessageReceiveV1 payload; outbound SDK calls are replaced per instance.
"""

import asyncio
import json
import time
from types import SimpleNamespace

import pytest

from bingbot.bus.events import OutboundMessage
from bingbot.bus.queue import MessageBus
from bingbot.channels.base import BaseChannel
from bingbot.channels.feishu import UPDATING_TITLE, FeishuChannel
from bingbot.channels.manager import ChannelManager
from bingbot.config.schema import Config, FeishuConfig


def make_event(
    message_id: str = "om_1",
    text: str = "hello",
    chat_type: str = "p2p",
    sender_type: str = "user",
    mentions=None,
    age: float = 0.0,
    message_type: str = "text",
):
    create_time = str(int((time.time() - age) * 1000))
    message = SimpleNamespace(
        message_id=message_id,
        chat_id="oc_group",
        chat_type=chat_type,
        message_type=message_type,
        content=json.dumps({"text": text}),
        create_time=create_time,
        mentions=mentions,
    )
    sender = SimpleNamespace(sender_type=sender_type, sender_id=SimpleNamespace(open_id="ou_user"))
    return SimpleNamespace(event=SimpleNamespace(message=message, sender=sender))


@pytest.fixture
def bus():
    return MessageBus()


@pytest.fixture
def channel(bus):
    return FeishuChannel(FeishuConfig(enabled=True, bot_name="BingBot"), bus)


# =============================================================================
# Inbound
# =============================================================================


@pytest.mark.asyncio
async def test_direct_message_is_published(channel, bus):
    await channel._on_message(make_event())

    msg = await bus.consume_inbound()
    assert msg.channel == "feishu"
    assert msg.sender_id == "ou_user"
    assert msg.chat_id == "ou_user"
    assert msg.content == "hello"
    assert msg.metadata["message_id"] == "om_1"
    assert msg.session_key == "feishu:ou_user"


@pytest.mark.asyncio
async def test_duplicate_delivery_is_dropped(channel, bus):
    await channel._on_message(make_event())
    await channel._on_message(make_event())

    assert bus.inbound_size == 1


@pytest.mark.asyncio
async def test_bot_and_stale_messages_are_dropped(channel, bus):
    await channel._on_message(make_event(message_id="om_bot", sender_type="bot"))
    await channel._on_message(make_event(message_id="om_old", age=120))
    await channel._on_message(make_event(message_id="om_img", message_type="image"))

    assert bus.inbound_size == 0


@pytest.mark.asyncio
async def test_group_message_requires_mention(channel, bus):
    await channel._on_message(make_event(message_id="om_2", chat_type="group", text="hi all"))
    assert bus.inbound_size == 0

    mention = SimpleNamespace(key="@_user_1", name="BingBot")
    await channel._on_message(
        make_event(message_id="om_3", chat_type="group", text="@_user_1 what is new", mentions=[mention])
    )

    msg = await bus.consume_inbound()
    assert msg.content == "what is new"
    assert msg.chat_id == "oc_group"


@pytest.mark.asyncio
async def test_mention_of_someone_else_is_ignored(channel, bus):
    other = SimpleNamespace(key="@_user_1", name="Alice")
    await channel._on_message(make_event(chat_type="group", text="@_user_1 hi", mentions=[other]))

    assert bus.inbound_size == 0


@pytest.mark.asyncio
async def test_allow_list_is_enforced(bus):
    channel = FeishuChannel(FeishuConfig(enabled=True, allow_from=["ou_someone_else"]), bus)

    await channel._on_message(make_event())

    assert bus.inbound_size == 0


# =============================================================================
# Outbound
# =============================================================================


class CardRecorder:
    def __init__(self, channel: FeishuChannel):
        self.calls: list[tuple[str, str, dict]] = []
        channel._client = object()
        channel._reply_card_sync = self.reply
        channel._patch_card_sync = self.patch
        channel._create_card_sync = self.create

    def reply(self, message_id, card):
        self.calls.append(("reply", message_id, json.loads(card)))
        return "om_card"

    def patch(self, message_id, card):
        self.calls.append(("patch", message_id, json.loads(card)))
        return True

    def create(self, chat_id, card):
        self.calls.append(("create", chat_id, json.loads(card)))
        return "om_new"


def outbound(content: str, stream_id: str | None = "s1", progress: bool = False, reply_to: str | None = "om_1"):
    metadata = {"message_id": "om_1"}
    if stream_id:
        metadata.update(stream_id=stream_id, progress=progress)
    return OutboundMessage(channel="feishu", chat_id="ou_user", content=content, reply_to=reply_to, metadata=metadata)


@pytest.mark.asyncio
async def test_stream_replies_once_then_patches(channel):
    recorder = CardRecorder(channel)

    await channel.send(outbound("🔍 Searching", progress=True))
    await channel.send(outbound("Partial", progress=True))
    await channel.send(outbound("Final answer"))

    kinds = [(kind, target) for kind, target, _ in recorder.calls]
    assert kinds == [("reply", "om_1"), ("patch", "om_card"), ("patch", "om_card")]
    assert recorder.calls[0][2]["header"]["title"]["content"] == UPDATING_TITLE
    assert "header" not in recorder.calls[2][2]
    assert recorder.calls[2][2]["elements"][0]["content"] == "Final answer"
    assert channel._cards == {}


@pytest.mark.asyncio
async def test_plain_message_without_reply_target_is_created(channel):
    recorder = CardRecorder(channel)

    await channel.send(outbound("[COMMAND] Session reset successfully.", stream_id=None, reply_to=None))

    assert recorder.calls[0][0] == "create"
    assert recorder.calls[0][1] == "ou_user"


def test_markdown_tables_become_table_elements(channel):
    card = channel.build_card("Intro\n\n| a | b |\n|---|---|\n| 1 | 2 |\n")

    tags = [element["tag"] for element in card["elements"]]
    assert tags == ["markdown", "table"]
    assert card["elements"][1]["rows"] == [{"c0": "1", "c1": "2"}]
    assert card["config"]["update_multi"] is True


# =============================================================================
# ChannelManager
# =============================================================================


class RecordingChannel(BaseChannel):
    name = "feishu"

    def __init__(self, bus):
        super().__init__(SimpleNamespace(allow_from=[]), bus)
        self.sent = []

    async def start(self):
        self._running = True

    async def stop(self):
        self._running = False

    async def send(self, msg):
        self.sent.append(msg.content)


@pytest.mark.asyncio
async def test_manager_routes_outbound_in_order(bus):
    manager = ChannelManager(Config(), bus)
    assert manager.enabled_channels == []

    recorder = RecordingChannel(bus)
    manager.register(recorder)
    manager._dispatch_task = asyncio.create_task(manager._dispatch_outbound())

    for text in ("one", "two", "three"):
        await bus.publish_outbound(OutboundMessage(channel="feishu", chat_id="c", content=text))
    for _ in range(100):
        if len(recorder.sent) == 3:
            break
        await asyncio.sleep(0.01)

    await manager.stop_all()
    assert recorder.sent == ["one", "two", "three"]
