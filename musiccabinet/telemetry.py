from __future__ import annotations

import logging
import re
import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Literal, Protocol

import structlog

TELEMETRY_LOGGER_NAME = "musiccabinet.telemetry"

# Attribute names that may carry Last.fm credentials.
_CREDENTIAL_KEY_FRAGMENTS: tuple[str, ...] = ("api_key", "api_sig", "secret", "session_key", "token")
_CREDENTIAL_QUERY_PATTERN = re.compile(r"\b(api_key|api_sig|sk)=[^&\s]+", re.IGNORECASE)
_MAX_VALUE_LENGTH = 160

TelemetryValue = bool | int | float | str | None


class TelemetrySink(Protocol):
    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        ...


class DiscardingSink:
    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        _ = (event_name, attributes)


class LogSink:
    """Writes events through the telemetry logger, which has its own log file."""

    def __init__(self) -> None:
        self._logger = structlog.get_logger(TELEMETRY_LOGGER_NAME)

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self._logger.info(event_name, **dict(attributes))


@dataclass(frozen=True)
class TelemetryClient:
    enabled: bool
    sink: TelemetrySink

    @classmethod
    def disabled(cls) -> TelemetryClient:
        return cls(enabled=False, sink=DiscardingSink())

    def emit(self, event_name: str, **attributes: Any) -> None:
        if not self.enabled:
            return
        self.sink.emit(event_name=event_name, attributes=scrub_attributes(attributes))

    @contextmanager
    def span(
        self,
        name: str,
        *,
        announce: bool = True,
        **attributes: Any,
    ) -> Iterator[dict[str, Any]]:
        """
        Time a unit of work and report it as `<name>.finish` or `<name>.error`.

        The yielded dict is merged into the closing event, so callers can
        attach outcomes discovered along the way. Exceptions propagate.
        """
        started_at = time.perf_counter()
        extra: dict[str, Any] = {}
        if announce:
            self.emit(f"{name}.start", **attributes)
        try:
            yield extra
        except Exception as exc:
            self.emit(
                f"{name}.error",
                **attributes,
                **extra,
                duration_ms=_elapsed_ms(started_at),
                error_type=type(exc).__name__,
            )
            raise
        self.emit(
            f"{name}.finish",
            **attributes,
            **extra,
            duration_ms=_elapsed_ms(started_at),
        )


def build_telemetry_client(*, enabled: bool, sink: Literal["none", "log"]) -> TelemetryClient:
    if enabled and sink == "log":
        return TelemetryClient(enabled=True, sink=LogSink())
    if enabled and sink != "none":
        logging.getLogger(TELEMETRY_LOGGER_NAME).warning(
            "unknown telemetry sink; telemetry disabled sink=%s",
            sink,
        )
    return TelemetryClient.disabled()


def scrub_attributes(attributes: Mapping[str, Any]) -> dict[str, TelemetryValue]:
    scrubbed: dict[str, TelemetryValue] = {}
    for raw_key, value in attributes.items():
        key = str(raw_key).strip().lower()
        if not key:
            continue
        if any(fragment in key for fragment in _CREDENTIAL_KEY_FRAGMENTS):
            scrubbed[key] = "[redacted]"
        else:
            scrubbed[key] = _scrub_value(value)
    return scrubbed


def _scrub_value(value: Any) -> TelemetryValue:
    if value is None or isinstance(value, bool | int | float):
        return value
    if not isinstance(value, str):
        return type(value).__name__
    # Request URLs end up in error messages.
    text = _CREDENTIAL_QUERY_PATTERN.sub(r"\1=[redacted]", " ".join(value.split()))
    if len(text) > _MAX_VALUE_LENGTH:
        return f"{text[:_MAX_VALUE_LENGTH]}..."
    return text


def _elapsed_ms(started_at: float) -> int:
    return int((time.perf_counter() - started_at) * 1000)
