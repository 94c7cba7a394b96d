"""
分发器模块 - 消息总线与 Bing 会话之间的薄层。

- loop.py   : Dispatcher，消费入站消息、处理命令、转发进度与最终结果
- render.py : 把片段序列排成飞书 Markdown
"""

from bingbot.dispatcher.loop import Dispatcher
from bingbot.dispatcher.render import render_fragments, render_result

__all__ = ["Dispatcher", "render_fragments", "render_result"]
