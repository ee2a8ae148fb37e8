"""
localfm native 协议层与运行时边界。

本包承载本地模型运行时与调用方之间的公共协议，包括：
- ChatMessage / ToolCall（对齐 OpenAI Chat Completions messages 形状）
- StreamEvent 协议（TextDelta/ToolCall/Error/Done）
- ToolSpec/ToolRegistry 与文本协议下的工具调用提取
- JSON Schema -> 约束节点编译（CompiledSchema）
- StreamBridge（运行时推送回调 -> asyncio 拉取序列）
- ModelRuntime 接口与 OpenAI-compatible 本地运行时

说明：该包不依赖 client 层，运行时实现可替换。
"""

from .events import DoneEvent, ErrorEvent, StreamEvent, TextDeltaEvent, ToolCallEvent
from .messages import ChatMessage, ToolCall, messages_from_json, messages_to_json
from .openai_runtime import OpenAICompatibleRuntime
from .runtime import (
    Availability,
    AvailabilityReason,
    GenerationOptions,
    ModelRuntime,
    StructuredOutput,
)
from .schema import CompiledSchema, ConstraintNode, compile_schema
from .stream_bridge import ERROR_SENTINEL, StreamBridge, error_payload
from .tool_calls import ExtractionResult, build_tool_system_prompt, extract_tool_calls
from .tools import ToolRegistry, ToolSpec, pydantic_to_strict_json_schema
from .transcript import TranscriptEntry, convert_messages, render_transcript, split_conversation

__all__ = [
    "Availability",
    "AvailabilityReason",
    "ChatMessage",
    "CompiledSchema",
    "ConstraintNode",
    "DoneEvent",
    "ERROR_SENTINEL",
    "ErrorEvent",
    "ExtractionResult",
    "GenerationOptions",
    "ModelRuntime",
    "OpenAICompatibleRuntime",
    "StreamBridge",
    "StreamEvent",
    "StructuredOutput",
    "TextDeltaEvent",
    "ToolCall",
    "ToolCallEvent",
    "ToolRegistry",
    "ToolSpec",
    "TranscriptEntry",
    "build_tool_system_prompt",
    "compile_schema",
    "convert_messages",
    "error_payload",
    "extract_tool_calls",
    "messages_from_json",
    "messages_to_json",
    "pydantic_to_strict_json_schema",
    "render_transcript",
    "split_conversation",
]
