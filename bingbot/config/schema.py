"""
配置数据模型定义 (config/schema.py)
=================================
本模块使用 Pydantic 定义 bingbot 的完整配置结构。
所有配置项都有默认值，用户只需在 config.json 中覆盖需要修改的部分。

整体配置结构（树形）：
Config (根配置)
├── bing          - Bing Chat 后端配置（Cookie、端点地址、超时、节流等）
├── channels      - 消息渠道配置（目前只有飞书）
└── dispatcher    - 分发器配置（重置命令、应用名称）

对于 Java 开发者：
- Pydantic 的 BaseModel 类似于 Java 的 POJO/Record，但自带字段验证和默认值
- BaseSettings 类似于 Spring 的 @ConfigurationProperties，额外支持从环境变量读取配置
- Field(default_factory=...) 类似于 Java 中用工厂方法创建可变默认值，避免共享引用问题
"""

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# ==============================================================================
# Bing Chat 后端配置
# ==============================================================================


class LocationConfig(BaseModel):
    """用户位置提示（可选）。Bing 会据此调整本地化搜索结果。"""
    lat: float  # 纬度
    lng: float  # 经度
    radius: str = "1000m"  # 搜索半径，原样拼入 re= 字段


class BingConfig(BaseModel):
    """
    Bing Chat 会话客户端配置。

    所有时长字段单位都是秒，测试时可以把它们调小来模拟超时与过期。
    """
    cookie: str = ""  # bing.com 的 _U Cookie；含 ";" 时视为完整 Cookie 串原样发送
    create_url: str = "https://www.bing.com/turing/conversation/create"  # 创建对话句柄的 HTTP 接口
    ws_url: str = "wss://sydney.bing.com/sydney/ChatHub"  # 流式对话的 WebSocket 端点
    locale: str = "zh-CN"
    market: str = "en-US"
    region: str = "US"
    location: LocationConfig | None = None
    response_timeout: float = 8.0  # 两帧之间允许的最长静默时间
    conversation_ttl: float = 24 * 60 * 60  # 对话句柄的空闲有效期（24 小时）
    keepalive_every: int = 10  # 每收到 N 帧回发一次保活帧
    progress_interval: float = 0.5  # 进度回调的最小间隔
    http_timeout: float = 30.0  # 创建对话请求的 HTTP 超时


# ==============================================================================
# 渠道配置模型
# ==============================================================================


class FeishuConfig(BaseModel):
    """飞书/Lark 渠道配置。使用 WebSocket 长连接接收事件。"""
    enabled: bool = False
    app_id: str = ""  # 飞书开放平台的 App ID
    app_secret: str = ""  # 飞书开放平台的 App Secret
    encrypt_key: str = ""  # 事件订阅的加密密钥（可选）
    verification_token: str = ""  # 事件订阅的验证令牌（可选）
    allow_from: list[str] = Field(default_factory=list)  # 允许的用户 open_id 白名单
    bot_name: str = ""  # 机器人在飞书里的显示名，群聊中据此判断是否被 @
    require_mention_in_groups: bool = True  # 群聊中是否要求 @机器人才响应
    max_message_age: float = 60.0  # 超过该秒数的旧消息（如重连后补推）直接丢弃


class ChannelsConfig(BaseModel):
    """所有消息渠道的聚合配置。默认全部关闭。"""
    feishu: FeishuConfig = Field(default_factory=FeishuConfig)


class DispatcherConfig(BaseModel):
    """分发器配置。"""
    reset_command: str = "/reset"  # 与之完全相等的消息会重置当前用户的会话
    app_name: str = "bingbot"  # 日志与提示语中使用的应用名


# ==============================================================================
# 根配置类 - 整个 bingbot 的配置入口
# ==============================================================================


class Config(BaseSettings):
    """
    bingbot 根配置类。

    继承自 Pydantic 的 BaseSettings，除了支持从 JSON 文件加载外，
    还支持从环境变量读取配置：
    - 环境变量前缀: BINGBOT_
    - 嵌套分隔符: __ (双下划线)
    - 示例: BINGBOT_BING__COOKIE=xxx 可覆盖 bing.cookie
    """
    bing: BingConfig = Field(default_factory=BingConfig)  # Bing 后端配置
    channels: ChannelsConfig = Field(default_factory=ChannelsConfig)  # 消息渠道配置
    dispatcher: DispatcherConfig = Field(default_factory=DispatcherConfig)  # 分发器配置

    model_config = SettingsConfigDict(
        env_prefix="BINGBOT_",  # 环境变量前缀
        env_nested_delimiter="__"  # 嵌套配置的分隔符
    )
