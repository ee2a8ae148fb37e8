"""
localfm - 本地基础模型客户端

在本地模型运行时之上提供：
- 一次性生成与带历史生成
- 流式生成（运行时推送回调 -> 异步迭代）
- JSON Schema / pydantic 约束的结构化输出
- 文本协议下的工具调用（TOOL_CALL / ARGUMENTS）
- OpenAI Chat Completions 形状的兼容接口
"""

from .client import (
    LocalModelClient,
    StructuredResult,
    ToolResponse,
    get_default_client,
    reset_default_client,
    set_default_client,
)
from .version import __version__

__all__ = [
    "LocalModelClient",
    "StructuredResult",
    "ToolResponse",
    "__version__",
    "get_default_client",
    "reset_default_client",
    "set_default_client",
]
