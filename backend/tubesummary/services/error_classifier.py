from __future__ import annotations

import json
from typing import Any, cast

from backend.tubesummary.services.errors import (
    SOURCE_YOUTUBE,
    USER_MESSAGES,
    ErrorKind,
    UpstreamOutcome,
)

QUOTA_STATUS_CODES: frozenset[int] = frozenset({403, 429})
QUOTA_MESSAGE_KEYWORDS: tuple[str, ...] = ("quota", "limit")
QUOTA_REASON_CODES: frozenset[str] = frozenset(
    {
        "quotaExceeded",
        "dailyLimitExceeded",
        "quotaLimitExceeded",
    }
)


def is_success_status(status_code: int) -> bool:
    return 200 <= status_code < 300


def classify_upstream_error(
    status_code: int,
    message: str | None = None,
    *,
    body: str | None = None,
    source: str = SOURCE_YOUTUBE,
    fallback_message: str | None = None,
) -> UpstreamOutcome:
    """Turn an upstream status plus message or raw body into a typed outcome.

    ``message`` is an already-extracted error text. ``body`` is the raw
    response text and must be a JSON object; anything else is reported as a
    malformed response whatever the status was.
    """
    reasons: tuple[str, ...] = ()
    if body is not None:
        payload = parse_json_object(body)
        if payload is None:
            return UpstreamOutcome(
                kind=ErrorKind.MALFORMED_RESPONSE,
                message=USER_MESSAGES[ErrorKind.MALFORMED_RESPONSE],
                source=source,
                status_code=status_code,
            )
        body_message, reasons = _extract_error_details(payload)
        if message is None:
            message = body_message

    normalized_message = message.strip() if isinstance(message, str) else ""
    if status_code in QUOTA_STATUS_CODES and (
        _has_quota_keyword(normalized_message)
        or any(reason in QUOTA_REASON_CODES for reason in reasons)
    ):
        return UpstreamOutcome(
            kind=ErrorKind.QUOTA_EXCEEDED,
            message=normalized_message or USER_MESSAGES[ErrorKind.QUOTA_EXCEEDED],
            source=source,
            status_code=status_code,
        )

    return UpstreamOutcome(
        kind=ErrorKind.API_ERROR,
        message=normalized_message or fallback_message or USER_MESSAGES[ErrorKind.API_ERROR],
        source=source,
        status_code=status_code,
    )


def network_failure(exc: BaseException, *, source: str = SOURCE_YOUTUBE) -> UpstreamOutcome:
    return UpstreamOutcome(
        kind=ErrorKind.NETWORK_FAILURE,
        message=_summarize_exception_message(exc),
        source=source,
    )


def malformed_response(
    *,
    source: str = SOURCE_YOUTUBE,
    status_code: int | None = None,
    message: str | None = None,
) -> UpstreamOutcome:
    return UpstreamOutcome(
        kind=ErrorKind.MALFORMED_RESPONSE,
        message=message or USER_MESSAGES[ErrorKind.MALFORMED_RESPONSE],
        source=source,
        status_code=status_code,
    )


def parse_json_object(raw_body: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(raw_body)
    except (json.JSONDecodeError, TypeError):
        return None
    if not isinstance(parsed, dict):
        return None
    return _as_dict(parsed)


def _extract_error_details(payload: dict[str, Any]) -> tuple[str | None, tuple[str, ...]]:
    raw_error = payload.get("error")
    # Some upstreams return `{"error": "text"}` rather than the Google envelope.
    if isinstance(raw_error, str):
        return (raw_error.strip() or None), ()

    error = _as_dict(raw_error)
    raw_message = error.get("message")
    message = raw_message.strip() if isinstance(raw_message, str) and raw_message.strip() else None

    reasons: list[str] = []
    raw_errors = error.get("errors")
    if isinstance(raw_errors, list):
        for raw_item in cast(list[Any], raw_errors):
            reason = _as_dict(raw_item).get("reason")
            if isinstance(reason, str) and reason:
                reasons.append(reason)
    return message, tuple(reasons)


def _has_quota_keyword(message: str) -> bool:
    lowered = message.lower()
    return any(keyword in lowered for keyword in QUOTA_MESSAGE_KEYWORDS)


def _summarize_exception_message(exc: BaseException, *, max_length: int = 400) -> str:
    raw = str(exc).strip()
    if not raw:
        raw = repr(exc)
    if len(raw) <= max_length:
        return raw
    return f"{raw[: max_length - 3]}..."


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        raw_dict = cast(dict[object, object], value)
        converted: dict[str, Any] = {}
        for key, item in raw_dict.items():
            if isinstance(key, str):
                converted[key] = item
        return converted
    return {}
