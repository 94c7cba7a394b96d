"""
bingbot - 飞书 × Bing Chat 对话桥接机器人

模块概述：
    本文件是 bingbot 包的入口文件（__init__.py），定义了包的元信息。
    bingbot 把飞书（Lark）里的用户消息转发给 Bing Chat（Sydney）后端，
    并把流式返回的中间结果和最终答案回写到飞书卡片中。

    整个项目的核心功能包括：
    - 会话协议客户端：创建对话句柄、驱动 WebSocket 流式交换、超时与保活
    - 增量结果合并：按 messageId 去重、保持首次出现顺序、节流推送进度
    - 渠道接入：飞书 WebSocket 长连接收消息，交互式卡片回复与更新
    - 命令行：网关启动、终端直连对话、状态查看
"""

# 版本号，遵循语义化版本规范（主版本.次版本.修订号）
__version__ = "0.1.0"

# 项目 logo 表情符号，用于 CLI 输出等场景的品牌标识
__logo__ = "🔎"
