"""
工具模块

提供日志与异常等通用组件。
"""

from .exceptions import (
    ConfigurationError,
    EmptyConversation,
    EncodingFailure,
    GenerationFailure,
    InvalidInput,
    InvalidSchema,
    LocalFMException,
    Unavailable,
)
from .logger import get_logger, log_context, setup_logger

__all__ = [
    "ConfigurationError",
    "EmptyConversation",
    "EncodingFailure",
    "GenerationFailure",
    "InvalidInput",
    "InvalidSchema",
    "LocalFMException",
    "Unavailable",
    "get_logger",
    "log_context",
    "setup_logger",
]
