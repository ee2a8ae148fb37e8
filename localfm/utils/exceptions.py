"""
localfm 自定义异常类

按调用方的处理方式划分：
- Unavailable: 设备/功能/模型未就绪，需要用户介入，不可重试
- InvalidInput: 调用方传入了错误数据（schema、消息 JSON、空对话），不可重试
- GenerationFailure: 运行时在生成过程中报告的错误，可能可以重试
- EncodingFailure: 结果无法转换为调用方期望的形状
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class LocalFMException(Exception):
    """localfm 基础异常类"""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        """
        初始化异常

        Args:
            message: 错误消息
            error_code: 错误代码
            context: 错误上下文信息
        """
        self.message = message
        self.error_code = error_code or "UNKNOWN_ERROR"
        self.context = context or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        error_str = f"[{self.error_code}] {self.message}"
        if self.context:
            error_str += f" | Context: {self.context}"
        return error_str

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典格式"""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context,
            "retryable": self.retryable,
            "type": self.__class__.__name__,
        }


class ConfigurationError(LocalFMException):
    """配置错误"""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIG_ERROR", context)


class Unavailable(LocalFMException):
    """模型不可用（设备不支持 / 功能关闭 / 模型未就绪）

    `reason_text` 是运行时给出的可操作提示，必须原样展示给用户。
    """

    def __init__(
        self,
        reason_text: str,
        reason: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if reason:
            ctx["reason"] = reason
        self.reason = reason or "unknown"
        self.reason_text = reason_text
        super().__init__(reason_text, "UNAVAILABLE", ctx)

    def __str__(self) -> str:
        return self.reason_text


class InvalidInput(LocalFMException):
    """调用方输入错误"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        error_code: str = "INVALID_INPUT",
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message, error_code, ctx)


class InvalidSchema(InvalidInput):
    """JSON Schema 文档结构非法"""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, context=context, error_code="INVALID_SCHEMA")


class EmptyConversation(InvalidInput):
    """对话消息列表为空"""

    def __init__(self, message: str = "No messages provided"):
        super().__init__(message, field="messages", error_code="EMPTY_CONVERSATION")


class GenerationFailure(LocalFMException):
    """运行时报告的生成错误"""

    retryable = True

    def __init__(
        self,
        message: str,
        model_name: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if model_name:
            ctx["model_name"] = model_name
        super().__init__(message, "GENERATION_FAILURE", ctx)


class EncodingFailure(LocalFMException):
    """结果无法编码为调用方期望的形状"""

    def __init__(
        self,
        message: str,
        raw_text: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if raw_text is not None:
            ctx["raw_text"] = raw_text[:200]
        self.raw_text = raw_text
        super().__init__(message, "ENCODING_FAILURE", ctx)


__all__ = [
    "ConfigurationError",
    "EmptyConversation",
    "EncodingFailure",
    "GenerationFailure",
    "InvalidInput",
    "InvalidSchema",
    "LocalFMException",
    "Unavailable",
]
