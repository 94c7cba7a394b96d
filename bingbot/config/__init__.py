"""
配置模块 (config)
================
本模块是 bingbot 的配置系统入口，负责：
1. 定义配置数据模型（schema.py） - 使用 Pydantic 定义所有配置项的结构和默认值
2. 加载/保存配置文件（loader.py） - 从 JSON 文件读取配置，支持 camelCase ↔ snake_case 自动转换

会话客户端只接收 BingConfig 这一小块配置，不读取任何进程级全局变量。
"""

from bingbot.config.loader import load_config, get_config_path
from bingbot.config.schema import BingConfig, Config

__all__ = ["Config", "BingConfig", "load_config", "get_config_path"]
