from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, Sequence

from localfm.utils.exceptions import InvalidInput

from .messages import ChatMessage
from .schema import CompiledSchema
from .stream_bridge import PayloadHandler


class AvailabilityReason(str, Enum):
    OK = "ok"
    DEVICE_NOT_ELIGIBLE = "device_not_eligible"
    FEATURE_DISABLED = "feature_disabled"
    MODEL_NOT_READY = "model_not_ready"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class Availability:
    """Result of an availability probe; `reason_text` is shown to users verbatim."""

    available: bool
    reason: AvailabilityReason = AvailabilityReason.OK
    reason_text: str = ""

    @classmethod
    def ok(cls) -> "Availability":
        return cls(available=True)

    @classmethod
    def unavailable(cls, reason: AvailabilityReason, reason_text: str) -> "Availability":
        return cls(available=False, reason=reason, reason_text=reason_text)


@dataclass(frozen=True, slots=True)
class GenerationOptions:
    """Sampling options; `None` leaves the choice to the runtime."""

    temperature: float | None = None
    max_tokens: int | None = None

    def __post_init__(self) -> None:
        if self.temperature is not None and not 0.0 <= float(self.temperature) <= 1.0:
            raise InvalidInput(
                f"temperature must be within [0, 1], got {self.temperature}",
                field="temperature",
            )

    def normalized(self) -> "GenerationOptions":
        """0 temperature and non-positive max_tokens mean "runtime default" / "no cap"."""
        temperature = self.temperature if self.temperature else None
        max_tokens = self.max_tokens if self.max_tokens and self.max_tokens > 0 else None
        return GenerationOptions(temperature=temperature, max_tokens=max_tokens)


DEFAULT_OPTIONS = GenerationOptions()


@dataclass(frozen=True, slots=True)
class StructuredOutput:
    """Structured generation result: the raw JSON text and its decoded object."""

    text: str
    object: Any


class ModelRuntime(Protocol):
    """Boundary to the on-device model.

    Non-streaming calls raise `GenerationFailure`. Streaming calls never raise
    once started: they push cumulative text, an error payload, and finally
    `None` to `on_payload`, possibly from another thread.
    """

    def check_availability(self) -> Availability:
        raise NotImplementedError

    def supported_languages(self) -> list[str]:
        raise NotImplementedError

    def generate(self, prompt: str, options: GenerationOptions = DEFAULT_OPTIONS) -> str:
        raise NotImplementedError

    def generate_with_history(
        self, messages: Sequence[ChatMessage], options: GenerationOptions = DEFAULT_OPTIONS
    ) -> str:
        raise NotImplementedError

    def generate_stream(
        self,
        prompt: str,
        options: GenerationOptions,
        on_payload: PayloadHandler,
        *,
        history: Sequence[ChatMessage] = (),
        cancel_event: threading.Event | None = None,
    ) -> None:
        raise NotImplementedError

    def generate_structured(
        self,
        prompt: str,
        schema: CompiledSchema,
        options: GenerationOptions = DEFAULT_OPTIONS,
    ) -> StructuredOutput:
        raise NotImplementedError


__all__ = [
    "Availability",
    "AvailabilityReason",
    "DEFAULT_OPTIONS",
    "GenerationOptions",
    "ModelRuntime",
    "StructuredOutput",
]
