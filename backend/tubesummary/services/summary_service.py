from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, cast

from backend.tubesummary.services.captions import (
    DEFAULT_PRIMARY_LANGUAGE,
    DEFAULT_SECONDARY_LANGUAGE,
    CaptionTrack,
    combine_caption_text,
    select_caption_track,
)
from backend.tubesummary.services.errors import (
    CAPTIONS_UNAVAILABLE_WARNING,
    DescriptionRequiredError,
    GenerationFailedError,
    ResponseParseFailedError,
    UpstreamServiceError,
    VideoNotFoundError,
)
from backend.tubesummary.services.generation_client import GenerationClient
from backend.tubesummary.services.rate_limiter import ANONYMOUS_CLIENT_ID
from backend.tubesummary.services.youtube_service import YouTubeService, YouTubeVideo
from backend.tubesummary.telemetry import TelemetryClient

LOGGER = logging.getLogger("tubesummary.summary")

SYSTEM_PROMPT = (
    "You are a video content analyst. Always respond with a single JSON object "
    "and never include any additional text."
)
NO_CAPTIONS_PLACEHOLDER = "(no captions available)"
DEFAULT_SUMMARY_LANGUAGE = "Korean"
DEFAULT_MAX_TRANSCRIPT_CHARS = 12_000


@dataclass(frozen=True)
class VideoContent:
    title: str
    description: str
    captions: str = ""


@dataclass(frozen=True)
class VideoSummary:
    summary: str
    key_points: tuple[str, ...] = ()
    topic_tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class VideoSummaryResult:
    video: YouTubeVideo
    summary: VideoSummary
    captions_used: bool
    caption_language: str | None = None
    caption_warning: str | None = None


@dataclass(frozen=True)
class _TranscriptResolution:
    transcript: str
    track: CaptionTrack | None
    warning: str | None


def build_summary_prompt(
    content: VideoContent,
    *,
    language: str = DEFAULT_SUMMARY_LANGUAGE,
    max_transcript_chars: int = DEFAULT_MAX_TRANSCRIPT_CHARS,
) -> str:
    transcript = content.captions.strip()
    if max_transcript_chars > 0 and len(transcript) > max_transcript_chars:
        transcript = transcript[:max_transcript_chars].rstrip()

    return "\n".join(
        [
            "Analyze the following video and respond with JSON only. "
            "Do not include any other text.",
            f"Write every value in {language}.",
            "",
            f"Video title: {content.title.strip()}",
            f"Video description: {content.description.strip()}",
            f"Video captions: {transcript or NO_CAPTIONS_PLACEHOLDER}",
            "",
            "Response JSON format:",
            "{",
            '  "summary": "A 2-3 sentence summary of the core content of the video",',
            '  "keyPoints": ["3-5 short main points of the video"],',
            '  "topicTags": ["3-5 related topic tags"]',
            "}",
        ]
    )


def extract_first_json_object(text: str) -> str | None:
    """Return the first balanced ``{...}`` span of ``text``, or ``None``.

    Braces inside JSON string literals do not count towards the balance.
    """
    start = text.find("{")
    if start < 0:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : index + 1]
    return None


def parse_summary_reply(reply: str) -> VideoSummary:
    span = extract_first_json_object(reply)
    if span is None:
        raise ResponseParseFailedError("No JSON object found in the generation reply")

    try:
        parsed = json.loads(span)
    except json.JSONDecodeError as exc:
        raise ResponseParseFailedError(f"Generation reply is not valid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ResponseParseFailedError("Generation reply JSON is not an object")

    payload = cast(dict[str, Any], parsed)
    raw_summary = payload.get("summary")
    if not isinstance(raw_summary, str) or not raw_summary.strip():
        raise ResponseParseFailedError("Generation reply has no summary text")

    return VideoSummary(
        summary=raw_summary.strip(),
        key_points=_string_items(payload.get("keyPoints")),
        topic_tags=_string_items(payload.get("topicTags")),
    )


class SummaryOrchestrator:
    def __init__(
        self,
        generation_client: GenerationClient,
        *,
        summary_language: str = DEFAULT_SUMMARY_LANGUAGE,
        max_transcript_chars: int = DEFAULT_MAX_TRANSCRIPT_CHARS,
    ) -> None:
        self._generation_client = generation_client
        self._summary_language = summary_language
        self._max_transcript_chars = max(0, max_transcript_chars)

    async def generate(self, content: VideoContent) -> VideoSummary:
        if not content.title.strip() or not content.description.strip():
            raise DescriptionRequiredError("Title and description are required")

        prompt = build_summary_prompt(
            content,
            language=self._summary_language,
            max_transcript_chars=self._max_transcript_chars,
        )
        try:
            reply = await self._generation_client.complete(
                system_prompt=SYSTEM_PROMPT,
                user_prompt=prompt,
            )
        except UpstreamServiceError as exc:
            raise GenerationFailedError(exc.outcome) from exc

        try:
            return parse_summary_reply(reply)
        except ResponseParseFailedError:
            LOGGER.warning("summary reply parse_failed reply_length=%s", len(reply))
            raise


class SummaryPipeline:
    """Resolves details and captions for a video, then asks for a summary.

    Every upstream call happens in sequence because caption availability
    decides what the generation prompt contains.
    """

    def __init__(
        self,
        *,
        youtube_service: YouTubeService,
        orchestrator: SummaryOrchestrator,
        primary_language: str = DEFAULT_PRIMARY_LANGUAGE,
        secondary_language: str | None = DEFAULT_SECONDARY_LANGUAGE,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._youtube_service = youtube_service
        self._orchestrator = orchestrator
        self._primary_language = primary_language
        self._secondary_language = secondary_language
        self._telemetry = telemetry or TelemetryClient.disabled()

    async def run(
        self,
        video_id: str,
        *,
        client_id: str = ANONYMOUS_CLIENT_ID,
    ) -> VideoSummaryResult:
        with self._telemetry.timed("summary.generate", video_id=video_id) as finish:
            result = await self._run(video_id, client_id=client_id)
            finish["captions_used"] = result.captions_used
            finish["key_points"] = len(result.summary.key_points)
        return result

    async def generate_summary(self, content: VideoContent) -> VideoSummary:
        return await self._orchestrator.generate(content)

    async def _run(self, video_id: str, *, client_id: str) -> VideoSummaryResult:
        video = await self._youtube_service.get_video_details(video_id, client_id=client_id)
        if video is None:
            raise VideoNotFoundError(f"Video not found: {video_id}")
        if not video.title.strip() or not video.description.strip():
            raise DescriptionRequiredError("Title and description are required")

        resolution = await self._resolve_transcript(video_id, client_id=client_id)
        summary = await self._orchestrator.generate(
            VideoContent(
                title=video.title,
                description=video.description,
                captions=resolution.transcript,
            )
        )
        LOGGER.info(
            "summary generated video_id=%s captions_used=%s key_points=%s topic_tags=%s",
            video_id,
            bool(resolution.transcript),
            len(summary.key_points),
            len(summary.topic_tags),
        )
        return VideoSummaryResult(
            video=video,
            summary=summary,
            captions_used=bool(resolution.transcript),
            caption_language=resolution.track.language_code if resolution.track else None,
            caption_warning=resolution.warning,
        )

    async def _resolve_transcript(self, video_id: str, *, client_id: str) -> _TranscriptResolution:
        try:
            tracks = await self._youtube_service.get_available_captions(
                video_id,
                client_id=client_id,
            )
        except UpstreamServiceError as exc:
            LOGGER.warning(
                "summary captions list_failed video_id=%s kind=%s; continuing without captions",
                video_id,
                exc.outcome.kind.value,
            )
            return _TranscriptResolution(
                transcript="", track=None, warning=CAPTIONS_UNAVAILABLE_WARNING
            )

        track = select_caption_track(
            tracks,
            primary_language=self._primary_language,
            secondary_language=self._secondary_language,
        )
        if track is None:
            return _TranscriptResolution(
                transcript="", track=None, warning=CAPTIONS_UNAVAILABLE_WARNING
            )

        try:
            content = await self._youtube_service.get_caption_content(
                track.id,
                client_id=client_id,
            )
        except UpstreamServiceError as exc:
            LOGGER.warning(
                "summary captions content_failed video_id=%s track_id=%s kind=%s",
                video_id,
                track.id,
                exc.outcome.kind.value,
            )
            return _TranscriptResolution(
                transcript="", track=None, warning=CAPTIONS_UNAVAILABLE_WARNING
            )

        transcript = combine_caption_text(content.segments)
        if not transcript:
            LOGGER.warning(
                "summary captions malformed_response video_id=%s track_id=%s format=%s",
                video_id,
                track.id,
                content.caption_format.value,
            )
            return _TranscriptResolution(
                transcript="", track=None, warning=CAPTIONS_UNAVAILABLE_WARNING
            )
        return _TranscriptResolution(transcript=transcript, track=track, warning=None)


def _string_items(value: Any) -> tuple[str, ...]:
    if not isinstance(value, list | tuple):
        return ()
    items: list[str] = []
    for raw_item in cast(list[Any], value):
        if isinstance(raw_item, str) and raw_item.strip():
            items.append(raw_item.strip())
    return tuple(items)
