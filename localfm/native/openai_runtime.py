from __future__ import annotations

import json
import re
import threading
from dataclasses import dataclass
from typing import Any, Sequence
from urllib.parse import urlparse

import openai
from openai import OpenAI

from localfm.config.settings import RuntimeConfig, Settings
from localfm.utils.exceptions import EncodingFailure, GenerationFailure
from localfm.utils.logger import get_logger

from .messages import ChatMessage
from .runtime import (
    DEFAULT_OPTIONS,
    Availability,
    AvailabilityReason,
    GenerationOptions,
    ModelRuntime,
    StructuredOutput,
)
from .schema import CompiledSchema
from .stream_bridge import PayloadHandler, error_payload
from .transcript import render_transcript, split_conversation

logger = get_logger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?[ \t]*\n?([\s\S]*?)\n?```$", re.IGNORECASE)
_SCHEMA_NAME_RE = re.compile(r"[^A-Za-z0-9_-]")


def _normalize_base_url(base_url: str) -> str:
    raw = str(base_url or "").strip()
    if not raw:
        return ""
    raw = raw.rstrip("/")
    parsed = urlparse(raw)
    if not parsed.scheme or not parsed.netloc:
        return raw
    if parsed.path in ("", "/"):
        return f"{raw}/v1"
    return raw


def parse_json_reply(text: str) -> Any:
    """Decode a JSON reply, unwrapping a ```json fenced block if the model added one."""
    raw = str(text or "").strip()
    fenced = _FENCE_RE.match(raw)
    if fenced:
        raw = fenced.group(1).strip()
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise EncodingFailure(f"model reply is not valid JSON: {exc}", raw_text=text) from exc


def _options_kwargs(options: GenerationOptions) -> dict[str, Any]:
    effective = options.normalized()
    kwargs: dict[str, Any] = {}
    if effective.temperature is not None:
        kwargs["temperature"] = effective.temperature
    if effective.max_tokens is not None:
        kwargs["max_tokens"] = effective.max_tokens
    return kwargs


def _history_messages(messages: Sequence[ChatMessage], *, flatten: bool = False) -> list[dict[str, str]]:
    entries, current = split_conversation(messages)
    if flatten and entries:
        return [{"role": "user", "content": render_transcript(entries, current)}]
    payload = [{"role": entry.role, "content": entry.text} for entry in entries]
    payload.append({"role": "user", "content": current})
    return payload


def _message_text(resp: Any) -> str:
    choice0 = (getattr(resp, "choices", None) or [None])[0]
    msg = getattr(choice0, "message", None) if choice0 is not None else None
    content = getattr(msg, "content", None)
    return "" if content is None else str(content)


@dataclass(slots=True)
class OpenAICompatibleRuntime(ModelRuntime):
    """
    Model runtime for locally hosted OpenAI-compatible servers.

    Notes:
    - Works with llama.cpp server, Ollama, LM Studio and vLLM through `base_url`.
    - Streaming runs on a daemon thread and reports cumulative text.
    - `flatten_history` sends history as one flat prompt for servers without
      a multi-turn chat template.
    """

    config: RuntimeConfig
    _client: Any

    def __init__(self, config: RuntimeConfig, *, client: Any | None = None) -> None:
        self.config = config
        kwargs: dict[str, Any] = {
            "base_url": _normalize_base_url(config.api) or None,
            "timeout": float(config.timeout_s),
            "max_retries": int(config.max_retries),
            # The SDK refuses to start without a key; local servers ignore it.
            "api_key": str(config.key or "").strip() or "not-needed",
        }
        self._client = client or OpenAI(**kwargs)

    @classmethod
    def from_settings(cls, settings: Settings, *, client: Any | None = None) -> "OpenAICompatibleRuntime":
        return cls(settings.runtime, client=client)

    @property
    def model(self) -> str:
        return self.config.model

    def close(self) -> None:
        try:
            self._client.close()
        except Exception as exc:
            logger.debug(f"closing OpenAI client failed: {exc}")

    # ------------------------------------------------------------------ availability

    def check_availability(self) -> Availability:
        base_url = _normalize_base_url(self.config.api)
        try:
            listing = self._client.models.list()
        except openai.APIConnectionError as exc:
            logger.debug(f"model server unreachable: {exc}")
            return Availability.unavailable(
                AvailabilityReason.FEATURE_DISABLED,
                f"Cannot reach the local model server at {base_url}. "
                "Start the server (llama.cpp, Ollama, LM Studio) or fix Runtime.api in config.yaml.",
            )
        except Exception as exc:
            logger.warning(f"availability check failed: {exc}")
            return Availability.unavailable(
                AvailabilityReason.UNKNOWN,
                f"The local model server at {base_url} returned an error: {exc}",
            )

        model_ids = [str(getattr(m, "id", "")) for m in (getattr(listing, "data", None) or [])]
        if model_ids and self.config.model not in model_ids:
            return Availability.unavailable(
                AvailabilityReason.MODEL_NOT_READY,
                f"Model '{self.config.model}' is not loaded on {base_url}. "
                f"Load or pull it first, or set Runtime.model to one of: {', '.join(model_ids)}.",
            )
        return Availability.ok()

    def supported_languages(self) -> list[str]:
        return list(self.config.supported_languages)

    # ------------------------------------------------------------------ generation

    def _complete(self, messages: list[dict[str, str]], options: GenerationOptions, **extra: Any) -> str:
        kwargs: dict[str, Any] = {"model": self.config.model, "messages": messages}
        kwargs.update(_options_kwargs(options))
        kwargs.update(extra)
        try:
            resp = self._client.chat.completions.create(**kwargs)
        except openai.OpenAIError as exc:
            raise GenerationFailure(str(exc), model_name=self.config.model) from exc
        text = _message_text(resp)
        logger.debug(f"completion received ({len(text)} chars)")
        return text

    def generate(self, prompt: str, options: GenerationOptions = DEFAULT_OPTIONS) -> str:
        return self._complete([{"role": "user", "content": prompt}], options)

    def generate_with_history(
        self, messages: Sequence[ChatMessage], options: GenerationOptions = DEFAULT_OPTIONS
    ) -> str:
        return self._complete(
            _history_messages(messages, flatten=self.config.flatten_history), options
        )

    def generate_stream(
        self,
        prompt: str,
        options: GenerationOptions,
        on_payload: PayloadHandler,
        *,
        history: Sequence[ChatMessage] = (),
        cancel_event: threading.Event | None = None,
    ) -> None:
        messages = _history_messages(
            [*history, ChatMessage(role="user", content=prompt)],
            flatten=self.config.flatten_history,
        )
        kwargs: dict[str, Any] = {"model": self.config.model, "messages": messages, "stream": True}
        kwargs.update(_options_kwargs(options))

        thread = threading.Thread(
            target=self._run_stream,
            args=(kwargs, on_payload, cancel_event),
            name="localfm-stream",
            daemon=True,
        )
        thread.start()

    def _run_stream(
        self,
        kwargs: dict[str, Any],
        on_payload: PayloadHandler,
        cancel_event: threading.Event | None,
    ) -> None:
        text = ""
        stream: Any = None
        try:
            stream = self._client.chat.completions.create(**kwargs)
            for chunk in stream:
                if cancel_event is not None and cancel_event.is_set():
                    logger.debug("stream cancelled, stopped reading from server")
                    break
                for choice in getattr(chunk, "choices", None) or []:
                    delta = getattr(choice, "delta", None)
                    content = getattr(delta, "content", None) if delta is not None else None
                    if content:
                        text += str(content)
                        on_payload(text)
        except Exception as exc:
            logger.warning(f"stream generation failed: {exc}")
            on_payload(error_payload(str(exc) or exc.__class__.__name__))
            return
        finally:
            close = getattr(stream, "close", None)
            if callable(close):
                close()
        logger.debug(f"stream finished ({len(text)} chars)")
        on_payload(None)

    def generate_structured(
        self,
        prompt: str,
        schema: CompiledSchema,
        options: GenerationOptions = DEFAULT_OPTIONS,
    ) -> StructuredOutput:
        response_format = {
            "type": "json_schema",
            "json_schema": {
                "name": _SCHEMA_NAME_RE.sub("_", schema.name) or "Root",
                "schema": schema.to_json_schema(),
                "strict": True,
            },
        }
        text = self._complete(
            [{"role": "user", "content": prompt}], options, response_format=response_format
        )
        return StructuredOutput(text=text, object=parse_json_reply(text))


__all__ = ["OpenAICompatibleRuntime", "parse_json_reply"]
