from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from time import perf_counter
from typing import Any, Literal, Protocol

import structlog

TELEMETRY_LOGGER_NAME = "tubesummary.telemetry"

# Attribute keys containing any of these tokens never leave the process verbatim.
_SENSITIVE_ATTRIBUTE_TOKENS: frozenset[str] = frozenset(
    {
        "api_key",
        "authorization",
        "body",
        "caption_text",
        "client_ip",
        "description",
        "prompt",
        "reply",
        "secret",
        "token",
        "transcript",
    }
)
_MAX_STRING_LENGTH = 160

TelemetryValue = bool | int | float | str | None


class TelemetrySink(Protocol):
    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        ...


class NoOpTelemetrySink:
    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        _ = (event_name, attributes)


class StructuredLogTelemetrySink:
    def __init__(self) -> None:
        self._logger = structlog.get_logger(TELEMETRY_LOGGER_NAME)

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self._logger.info("telemetry", telemetry_event=event_name, **dict(attributes))


@dataclass(frozen=True)
class TelemetryClient:
    enabled: bool
    sink: TelemetrySink

    @classmethod
    def disabled(cls) -> TelemetryClient:
        return cls(enabled=False, sink=NoOpTelemetrySink())

    def emit(self, event_name: str, **attributes: Any) -> None:
        if not self.enabled:
            return
        self.sink.emit(event_name=event_name, attributes=sanitize_attributes(attributes))

    @contextmanager
    def timed(self, event_prefix: str, **attributes: Any) -> Iterator[dict[str, Any]]:
        """Emit `<prefix>.start`, then `<prefix>.finish` or `<prefix>.error`.

        Both closing events carry `duration_ms`. Keys written into the yielded
        dict are attached to the finish event only.
        """
        started_at = perf_counter()
        self.emit(f"{event_prefix}.start", **attributes)
        finish_attributes: dict[str, Any] = {}
        try:
            yield finish_attributes
        except Exception as exc:
            self.emit(
                f"{event_prefix}.error",
                **attributes,
                error_type=type(exc).__name__,
                error_kind=getattr(exc, "kind", None),
                duration_ms=_elapsed_ms(started_at),
            )
            raise
        self.emit(
            f"{event_prefix}.finish",
            **attributes,
            **finish_attributes,
            duration_ms=_elapsed_ms(started_at),
        )


def build_telemetry_client(*, enabled: bool, sink: Literal["none", "log"]) -> TelemetryClient:
    if enabled and sink == "log":
        return TelemetryClient(enabled=True, sink=StructuredLogTelemetrySink())
    if enabled and sink != "none":
        logging.getLogger(TELEMETRY_LOGGER_NAME).warning(
            "unsupported telemetry sink requested; disabling telemetry sink=%s",
            sink,
        )
    return TelemetryClient.disabled()


def sanitize_attributes(attributes: Mapping[str, Any]) -> dict[str, TelemetryValue]:
    sanitized: dict[str, TelemetryValue] = {}
    for raw_key, raw_value in attributes.items():
        key = str(raw_key).strip().lower()
        if not key:
            continue
        if any(token in key for token in _SENSITIVE_ATTRIBUTE_TOKENS):
            sanitized[key] = "[redacted]"
        else:
            sanitized[key] = _sanitize_value(raw_value)
    return sanitized


def _sanitize_value(value: Any) -> TelemetryValue:
    if value is None or isinstance(value, bool | int | float):
        return value
    if isinstance(value, str):
        compact = " ".join(value.split())
        if len(compact) > _MAX_STRING_LENGTH:
            return f"{compact[:_MAX_STRING_LENGTH]}..."
        return compact
    if isinstance(value, list | tuple | set | frozenset):
        # Collections are reported by size only.
        return len(value)
    return type(value).__name__


def _elapsed_ms(started_at: float) -> int:
    return int((perf_counter() - started_at) * 1000)
