from __future__ import annotations

import html
import logging
import math
import re
import xml.etree.ElementTree as ET
from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, cast

LOGGER = logging.getLogger("tubesummary.captions")

DEFAULT_PRIMARY_LANGUAGE = "ko"
DEFAULT_SECONDARY_LANGUAGE = "en"
TIME_RANGE_SEPARATOR = "-->"
MIN_BLOCK_LINES = 2
BLOCK_SEPARATOR_PATTERN = re.compile(r"\n\s*\n")


class CaptionFormat(StrEnum):
    XML_CUES = "xml"
    TIMED_BLOCKS = "srt"


@dataclass(frozen=True)
class CaptionTrack:
    id: str
    language_code: str
    language_name: str
    kind: str


@dataclass(frozen=True)
class CaptionSegment:
    text: str
    start_seconds: float
    duration_seconds: float


def select_caption_track(
    tracks: Sequence[CaptionTrack],
    *,
    primary_language: str = DEFAULT_PRIMARY_LANGUAGE,
    secondary_language: str | None = DEFAULT_SECONDARY_LANGUAGE,
) -> CaptionTrack | None:
    if not tracks:
        return None

    for preferred in (primary_language, secondary_language):
        if not preferred:
            continue
        for track in tracks:
            if track.language_code == preferred:
                return track
    return tracks[0]


def caption_format_for_content_type(
    content_type: str | None,
    default: CaptionFormat = CaptionFormat.TIMED_BLOCKS,
) -> CaptionFormat:
    if not content_type:
        return default
    normalized = content_type.split(";")[0].strip().lower()
    if normalized.endswith("xml"):
        return CaptionFormat.XML_CUES
    if normalized in {"application/x-subrip", "text/vtt", "text/plain"}:
        return CaptionFormat.TIMED_BLOCKS
    return default


def parse_timed_text(raw_payload: str, caption_format: CaptionFormat) -> list[CaptionSegment]:
    if caption_format is CaptionFormat.XML_CUES:
        return parse_xml_cues(raw_payload)
    return parse_timed_blocks(raw_payload)


def parse_xml_cues(raw_payload: str) -> list[CaptionSegment]:
    """Parse YouTube timed-text XML.

    Handles both the classic ``<text start="1.5" dur="2">`` cues (seconds) and
    srv3 ``<p t="1500" d="2000">`` cues (milliseconds). Malformed documents
    produce an empty list.
    """
    if not raw_payload.strip():
        return []
    try:
        root = ET.fromstring(raw_payload)
    except ET.ParseError:
        LOGGER.warning("captions xml parse_failed length=%s", len(raw_payload))
        return []

    segments: list[CaptionSegment] = []
    for element in root.iter():
        tag = _local_name(element.tag)
        if tag == "text":
            start = _coerce_time(element.get("start"), milliseconds=False)
            duration = _coerce_time(element.get("dur"), milliseconds=False)
        elif tag == "p":
            start = _coerce_time(element.get("t"), milliseconds=True)
            duration = _coerce_time(element.get("d"), milliseconds=True)
        else:
            continue

        text = html.unescape("".join(element.itertext()))
        segments.append(
            CaptionSegment(text=text, start_seconds=start, duration_seconds=duration)
        )
    return segments


def parse_timed_blocks(raw_payload: str) -> list[CaptionSegment]:
    normalized = raw_payload.replace("\r\n", "\n").replace("\r", "\n")
    segments: list[CaptionSegment] = []
    for block in BLOCK_SEPARATOR_PATTERN.split(normalized):
        if not block.strip():
            continue
        lines = block.strip("\n").split("\n")
        # SRT numbers each cue; the numeric index line precedes the time range.
        if (
            len(lines) > MIN_BLOCK_LINES
            and lines[0].strip().isdigit()
            and TIME_RANGE_SEPARATOR in lines[1]
        ):
            lines = lines[1:]
        if len(lines) < MIN_BLOCK_LINES:
            continue

        time_range = _parse_time_range(lines[0])
        if time_range is None:
            continue
        start_seconds, end_seconds = time_range
        segments.append(
            CaptionSegment(
                text="\n".join(lines[1:]),
                start_seconds=start_seconds,
                # End before start has no meaning downstream.
                duration_seconds=max(0.0, end_seconds - start_seconds),
            )
        )
    return segments


def combine_caption_text(segments: Sequence[CaptionSegment], separator: str = " ") -> str:
    texts = [segment.text.strip() for segment in segments]
    return separator.join(text for text in texts if text).strip()


def time_to_seconds(raw_value: str) -> float:
    parts = raw_value.strip().replace(",", ".").split(":")
    if not 1 <= len(parts) <= 3:
        raise ValueError(f"Unsupported timestamp: {raw_value!r}")

    total = 0.0
    for part in parts:
        component = float(part)
        if not math.isfinite(component) or component < 0:
            raise ValueError(f"Unsupported timestamp: {raw_value!r}")
        total = total * 60 + component
    return total


def tracks_from_listing(payload: dict[str, Any]) -> list[CaptionTrack]:
    tracks: list[CaptionTrack] = []
    raw_items = payload.get("items")
    if not isinstance(raw_items, list):
        return tracks

    for raw_item in cast(list[Any], raw_items):
        if not isinstance(raw_item, dict):
            continue
        item = cast(dict[str, Any], raw_item)
        raw_snippet = item.get("snippet")
        snippet = cast(dict[str, Any], raw_snippet) if isinstance(raw_snippet, dict) else {}
        track_id = item.get("id")
        language_code = snippet.get("language")
        if not isinstance(track_id, str) or not isinstance(language_code, str):
            continue
        language_name = snippet.get("name")
        kind = snippet.get("trackKind")
        tracks.append(
            CaptionTrack(
                id=track_id,
                language_code=language_code,
                language_name=language_name if isinstance(language_name, str) else "",
                kind=kind if isinstance(kind, str) else "",
            )
        )
    return tracks


def _parse_time_range(line: str) -> tuple[float, float] | None:
    if TIME_RANGE_SEPARATOR not in line:
        return None
    raw_start, raw_end = line.split(TIME_RANGE_SEPARATOR, 1)
    # WebVTT may append cue settings after the end timestamp.
    end_tokens = raw_end.split()
    if not end_tokens:
        return None
    try:
        return time_to_seconds(raw_start), time_to_seconds(end_tokens[0])
    except ValueError:
        LOGGER.debug("captions block invalid_time_range line=%s", line)
        return None


def _coerce_time(raw_value: str | None, *, milliseconds: bool) -> float:
    if raw_value is None:
        return 0.0
    try:
        numeric = float(raw_value.strip())
    except ValueError:
        return 0.0
    if not math.isfinite(numeric):
        return 0.0
    if milliseconds:
        numeric /= 1000.0
    return max(0.0, numeric)


def _local_name(tag: object) -> str:
    if not isinstance(tag, str):
        return ""
    return tag.rsplit("}", 1)[-1]
