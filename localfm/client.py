"""
本地模型客户端：一次性生成、带历史生成、流式、结构化输出与文本协议工具调用。

说明：
- 运行时调用（可能阻塞）通过 `asyncio.to_thread` 执行，不阻塞事件循环。
- `settings.generation.check_availability` 为真时，每次调用前先检查可用性，
  不可用时抛出 `Unavailable`，其 `reason_text` 原样来自运行时。
- 默认客户端懒加载自 `load_settings()`，可通过 `set_default_client()` 覆盖。
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Mapping, Optional, Sequence

from pydantic import BaseModel, ValidationError

from localfm.config.settings import Settings, load_settings
from localfm.native.events import DoneEvent, StreamEvent, TextDeltaEvent, ToolCallEvent
from localfm.native.messages import ChatMessage, ToolCall, coerce_messages
from localfm.native.openai_runtime import OpenAICompatibleRuntime
from localfm.native.runtime import Availability, GenerationOptions, ModelRuntime
from localfm.native.schema import compile_schema
from localfm.native.stream_bridge import StreamBridge
from localfm.native.tool_calls import ToolChoice, build_tool_system_prompt, extract_tool_calls
from localfm.native.tools import ToolRegistry, ToolSpec, coerce_tools
from localfm.utils.exceptions import EmptyConversation, EncodingFailure, Unavailable
from localfm.utils.logger import get_logger, log_context

logger = get_logger(__name__)

MessagesInput = Sequence[ChatMessage | Mapping[str, Any]]
ToolsInput = Sequence[ToolSpec | Mapping[str, Any]] | ToolRegistry | None


@dataclass(frozen=True, slots=True)
class StructuredResult:
    """结构化生成结果：原始 JSON 文本、解码后的对象、（可选）校验后的 pydantic 实例。"""

    text: str
    object: Any
    parsed: Any = None


@dataclass(frozen=True, slots=True)
class ToolResponse:
    text: str | None
    tool_calls: list[ToolCall] = field(default_factory=list)

    @property
    def finish_reason(self) -> str:
        return "tool_calls" if self.tool_calls else "stop"


def _with_tool_prompt(
    messages: list[ChatMessage], tools: list[ToolSpec], tool_choice: ToolChoice
) -> list[ChatMessage]:
    if not tools:
        return messages
    prompt = build_tool_system_prompt(tools, tool_choice)
    return [ChatMessage(role="system", content=prompt), *messages]


class LocalModelClient:
    """本地模型客户端"""

    def __init__(self, runtime: ModelRuntime, *, settings: Optional[Settings] = None) -> None:
        self.runtime = runtime
        self.settings = settings or Settings()

    @property
    def model(self) -> str:
        return self.settings.model_name

    def _options(self, temperature: Optional[float], max_tokens: Optional[int]) -> GenerationOptions:
        defaults = self.settings.generation
        return GenerationOptions(
            temperature=temperature if temperature is not None else defaults.temperature,
            max_tokens=max_tokens if max_tokens is not None else defaults.max_tokens,
        )

    # ==================== 可用性 ====================

    async def check_availability(self) -> Availability:
        return await asyncio.to_thread(self.runtime.check_availability)

    async def ensure_available(self) -> None:
        """不可用时抛出 Unavailable（reason_text 原样透传）"""
        availability = await self.check_availability()
        if not availability.available:
            logger.warning(f"模型不可用: {availability.reason.value}")
            raise Unavailable(availability.reason_text, reason=availability.reason.value)

    async def _guard(self) -> None:
        if self.settings.generation.check_availability:
            await self.ensure_available()

    def supported_languages(self) -> list[str]:
        return self.runtime.supported_languages()

    # ==================== 文本生成 ====================

    async def generate(
        self,
        prompt: str,
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        options = self._options(temperature, max_tokens)
        await self._guard()
        return await asyncio.to_thread(self.runtime.generate, prompt, options)

    async def generate_with_history(
        self,
        messages: MessagesInput,
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        msgs = coerce_messages(messages)
        if not msgs:
            raise EmptyConversation()
        options = self._options(temperature, max_tokens)
        await self._guard()
        return await asyncio.to_thread(self.runtime.generate_with_history, msgs, options)

    # ==================== 流式生成 ====================

    async def stream(
        self,
        prompt: str,
        *,
        history: MessagesInput = (),
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> StreamBridge:
        """启动流式生成，返回事件的异步可迭代对象（StreamBridge）"""
        history_msgs = coerce_messages(history)
        options = self._options(temperature, max_tokens)
        await self._guard()

        bridge = StreamBridge()
        self.runtime.generate_stream(
            prompt,
            options,
            bridge,
            history=history_msgs,
            cancel_event=bridge.cancel_event,
        )
        return bridge

    async def stream_text(
        self,
        prompt: str,
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> AsyncIterator[str]:
        bridge = await self.stream(prompt, temperature=temperature, max_tokens=max_tokens)
        async for delta in bridge.aiter_text():
            yield delta

    async def stream_chat(
        self,
        messages: MessagesInput,
        *,
        tools: ToolsInput = None,
        tool_choice: ToolChoice = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        流式对话

        提供工具时，流结束后对累计文本执行工具调用提取，
        先产出 ToolCallEvent，再产出最终的 DoneEvent。
        """
        tool_list = coerce_tools(tools)
        msgs = coerce_messages(messages)
        if not msgs:
            raise EmptyConversation()
        msgs = _with_tool_prompt(msgs, tool_list, tool_choice)

        bridge = await self.stream(
            msgs[-1].content,
            history=msgs[:-1],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        try:
            async for event in bridge:
                if isinstance(event, DoneEvent):
                    break
                yield event

            calls: tuple[ToolCall, ...] = ()
            if tool_list:
                calls = extract_tool_calls(bridge.text, tool_list).tool_calls
                for call in calls:
                    yield ToolCallEvent(call)
            yield DoneEvent(finish_reason="tool_calls" if calls else "stop")
        finally:
            if not bridge.finished:
                bridge.cancel()

    # ==================== 结构化输出 ====================

    async def generate_structured(
        self,
        prompt: str,
        schema: Mapping[str, Any] | type[BaseModel],
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> StructuredResult:
        """
        按 JSON Schema（或 pydantic 模型）约束生成

        Raises:
            InvalidSchema: schema 结构非法
            EncodingFailure: 结果无法解析或未通过 pydantic 校验
        """
        compiled = compile_schema(schema)
        options = self._options(temperature, max_tokens)
        await self._guard()
        output = await asyncio.to_thread(self.runtime.generate_structured, prompt, compiled, options)

        parsed: Any = output.object
        if isinstance(schema, type) and issubclass(schema, BaseModel):
            try:
                parsed = schema.model_validate(output.object)
            except ValidationError as e:
                raise EncodingFailure(
                    f"结构化结果未通过 {schema.__name__} 校验: {e}", raw_text=output.text
                ) from e
        return StructuredResult(text=output.text, object=output.object, parsed=parsed)

    # ==================== 工具调用 ====================

    async def generate_with_tools(
        self,
        messages: MessagesInput,
        tools: ToolsInput,
        *,
        tool_choice: ToolChoice = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> ToolResponse:
        tool_list = coerce_tools(tools)
        msgs = coerce_messages(messages)
        if not msgs:
            raise EmptyConversation()
        text = await self.generate_with_history(
            _with_tool_prompt(msgs, tool_list, tool_choice),
            temperature=temperature,
            max_tokens=max_tokens,
        )
        result = extract_tool_calls(text, tool_list)
        return ToolResponse(text=result.text, tool_calls=list(result.tool_calls))

    # ==================== OpenAI 形状兼容 ====================

    async def create_chat_completion(
        self,
        messages: MessagesInput,
        *,
        stream: bool = False,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> dict[str, Any] | AsyncIterator[dict[str, Any]]:
        """
        OpenAI Chat Completions 形状的辅助接口

        Returns:
            stream=False 时返回 `chat.completion` 字典；
            stream=True 时返回 `chat.completion.chunk` 字典的异步迭代器。
        """
        completion_id = f"chatcmpl-{uuid.uuid4()}"
        created = int(time.time())
        if stream:
            msgs = coerce_messages(messages)
            if not msgs:
                raise EmptyConversation()
            bridge = await self.stream(
                msgs[-1].content,
                history=msgs[:-1],
                temperature=temperature,
                max_tokens=max_tokens,
            )
            return self._completion_chunks(bridge, completion_id, created)

        with log_context(completion_id=completion_id):
            content = await self.generate_with_history(
                messages, temperature=temperature, max_tokens=max_tokens
            )
            logger.debug(f"chat.completion 完成 ({len(content)} chars)")
        return {
            "id": completion_id,
            "object": "chat.completion",
            "created": created,
            "model": self.model,
            "choices": [
                {
                    "index": 0,
                    "message": {"role": "assistant", "content": content},
                    "finish_reason": "stop",
                }
            ],
        }

    async def _completion_chunks(
        self, bridge: StreamBridge, completion_id: str, created: int
    ) -> AsyncIterator[dict[str, Any]]:
        def chunk(delta: dict[str, Any], finish_reason: Optional[str]) -> dict[str, Any]:
            return {
                "id": completion_id,
                "object": "chat.completion.chunk",
                "created": created,
                "model": self.model,
                "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
            }

        first = True
        try:
            async for event in bridge:
                if isinstance(event, TextDeltaEvent):
                    delta: dict[str, Any] = {"content": event.delta}
                    if first:
                        delta = {"role": "assistant", **delta}
                        first = False
                    yield chunk(delta, None)
                elif isinstance(event, DoneEvent):
                    yield chunk({}, "stop")
        finally:
            if not bridge.finished:
                bridge.cancel()


# ==================== 默认客户端 ====================

_default_client: Optional[LocalModelClient] = None


def get_default_client() -> LocalModelClient:
    """获取默认客户端（首次调用时根据 load_settings() 构建）"""
    global _default_client

    if _default_client is None:
        settings = load_settings()
        _default_client = LocalModelClient(
            OpenAICompatibleRuntime.from_settings(settings), settings=settings
        )
        logger.info(f"默认客户端已创建: model={settings.model_name}")
    return _default_client


def set_default_client(client: LocalModelClient) -> None:
    global _default_client
    _default_client = client


def reset_default_client() -> None:
    """清空默认客户端（用于运行时变更配置后重新初始化）"""
    global _default_client
    _default_client = None


__all__ = [
    "LocalModelClient",
    "StructuredResult",
    "ToolResponse",
    "get_default_client",
    "reset_default_client",
    "set_default_client",
]
