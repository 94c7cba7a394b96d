"""
工具函数模块 - 提供 bingbot 项目全局通用的辅助函数。

本模块包含：
- ensure_dir：确保目录存在
- get_data_path：获取数据存储路径
- truncate_string：日志预览用的字符串截断
- SingleFlight：并发同键调用合并
"""

from bingbot.utils.helpers import ensure_dir, get_data_path, truncate_string
from bingbot.utils.singleflight import SingleFlight

__all__ = ["ensure_dir", "get_data_path", "truncate_string", "SingleFlight"]
