"""
配置管理模块

提供运行时与生成参数的配置加载。
"""

from .settings import GenerationConfig, RuntimeConfig, Settings, load_settings

__all__ = ["GenerationConfig", "RuntimeConfig", "Settings", "load_settings"]
