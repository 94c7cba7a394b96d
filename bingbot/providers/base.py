"""
会话提供者基类定义模块。

本模块定义了与对话后端交互的核心抽象接口和值对象，类似于 Java 中的 Interface + DTO 模式：
- ConversationHandle : 后端对话句柄（三个标识符，要么全有要么全无）
- ChatMessage        : 一条消息片段（流式更新中的一个 fragment）
- FragmentBuffer     : 片段累积器（同 id 后写覆盖，不同 id 按首次出现顺序追加）
- Location / SendOptions : 单次发送的参数
- FinalResult        : 一次交换的最终结果
- ChatProvider       : 抽象基类，分发器只依赖它，不依赖具体的 Bing 实现

架构角色：
  用户消息 → Dispatcher → ChatProvider.send_message() → 后端 → FinalResult → Dispatcher
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

# 进度回调：接收当前全部片段的有序快照，可以是普通函数或协程函数
ProgressCallback = Callable[[list["ChatMessage"]], Awaitable[None] | None]


@dataclass(frozen=True)
class ConversationHandle:
    """
    后端对话句柄。

    通过一次"创建对话"请求获得，之后每次交换都必须携带。
    只有三个字段齐全时才是合法句柄。
    """
    conversation_id: str
    client_id: str
    conversation_signature: str

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "ConversationHandle | None":
        """从创建对话接口的 JSON 响应中提取句柄，字段不全时返回 None。"""
        conversation_id = data.get("conversationId")
        client_id = data.get("clientId")
        signature = data.get("conversationSignature")
        if not (conversation_id and client_id and signature):
            return None
        return cls(
            conversation_id=conversation_id,
            client_id=client_id,
            conversation_signature=signature,
        )


@dataclass
class ChatMessage:
    """
    一条消息片段。

    属性:
        message_id: 片段标识，同一 id 的后续片段会覆盖之前的片段
        author: "user" 或 "bot"
        text: 片段文本
        message_type: 状态类片段的类型（如 InternalSearchQuery），普通聊天文本为 None
        source_attributions: 引用来源列表（seeMoreUrl、providerDisplayName 等）
        suggested_responses: 推荐追问列表
        detail: 后端返回的原始字典
    """
    message_id: str | None
    author: str
    text: str = ""
    message_type: str | None = None
    source_attributions: list[dict[str, Any]] = field(default_factory=list)
    suggested_responses: list[dict[str, Any]] = field(default_factory=list)
    detail: dict[str, Any] = field(default_factory=dict)

    @property
    def is_status(self) -> bool:
        """是否为状态类片段（搜索中、生成中等提示），这类片段不作为答案。"""
        return bool(self.message_type)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChatMessage":
        return cls(
            message_id=data.get("messageId"),
            author=data.get("author") or "bot",
            text=data.get("text") or "",
            message_type=data.get("messageType") or None,
            source_attributions=list(data.get("sourceAttributions") or []),
            suggested_responses=list(data.get("suggestedResponses") or []),
            detail=data,
        )


class FragmentBuffer:
    """
    片段累积器。

    - 同一 message_id 的片段：后到的整体替换先到的（last write wins）
    - 不同 message_id 的片段：按首次出现的顺序排列
    - 没有 message_id 的片段：总是追加

    Python 3.7+ 的 dict 保持插入顺序，覆盖已有键不会改变其位置，
    正好就是这里需要的语义。
    """

    def __init__(self):
        self._fragments: dict[str, ChatMessage] = {}

    def merge(self, fragment: ChatMessage) -> None:
        key = fragment.message_id or f"_anonymous:{uuid.uuid4().hex}"
        self._fragments[key] = fragment

    def snapshot(self) -> list[ChatMessage]:
        """返回当前全部片段的有序副本（列表是新的，调用方可以自由持有）。"""
        return list(self._fragments.values())

    def __len__(self) -> int:
        return len(self._fragments)


@dataclass
class Location:
    """位置提示。radius 原样拼入协议字段，例如 "1000m"。"""
    lat: float
    lng: float
    radius: str = "1000m"

    def to_wire(self) -> str:
        """转换为协议要求的格式，如 'lat:47.639557;long:-122.128159;re=1000m;'。"""
        return f"lat:{self.lat};long:{self.lng};re={self.radius};"


@dataclass
class SendOptions:
    """
    单次发送参数。为 None 的字段回落到配置中的默认值。

    属性:
        locale / market / region: 本地化参数
        location: 可选的位置提示
        on_progress: 节流后的进度回调
    """
    locale: str | None = None
    market: str | None = None
    region: str | None = None
    location: Location | None = None
    on_progress: ProgressCallback | None = None


@dataclass
class FinalResult:
    """
    一次交换的最终结果。

    属性:
        text: 最终答案文本（最后一条非状态片段）
        author: 答案作者
        detail: 被选为答案的片段，没有答案时为 None
        messages: 全部片段的有序序列（各自的最后已知状态）
        conversation_id / client_id / conversation_signature: 用于继续对话的句柄字段
        conversation_expiry_time: 后端回显的对话过期时间
        invocation_id: 本次交换使用的调用序号
        id: 本地生成的结果标识
    """
    conversation_id: str
    client_id: str
    conversation_signature: str
    invocation_id: str
    text: str = ""
    author: str = "bot"
    detail: ChatMessage | None = None
    messages: list[ChatMessage] = field(default_factory=list)
    conversation_expiry_time: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


class ChatProvider(ABC):
    """
    对话提供者抽象基类（类似 Java 的 interface）。

    一个实例对应一个用户的一段逻辑对话，同一时刻最多只有一次交换在进行。
    当前唯一的实现是 BingChatSession（在 bing_chat.py 中）。
    """

    @abstractmethod
    async def send_message(self, text: str, options: SendOptions | None = None) -> FinalResult:
        """
        发送一条用户消息并等待最终结果。

        参数:
            text: 用户输入
            options: 本地化、位置与进度回调

        返回:
            FinalResult

        异常:
            SessionBusy: 已有交换在进行
            BingChatError 的其他子类: 本次交换失败（会话已复位，可直接重试）
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """拆除连接并让会话过期。可重复调用。"""
        pass

    @property
    @abstractmethod
    def busy(self) -> bool:
        """是否有交换正在进行。"""
        pass
