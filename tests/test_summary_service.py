from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import pytest

from backend.tubesummary.services.captions import CaptionFormat
from backend.tubesummary.services.error_classifier import classify_upstream_error
from backend.tubesummary.services.errors import (
    CAPTIONS_UNAVAILABLE_WARNING,
    GENERATION_QUOTA_MESSAGE,
    SOURCE_GENERATION,
    DescriptionRequiredError,
    ErrorKind,
    GenerationFailedError,
    RateLimitExceededError,
    ResponseParseFailedError,
    UpstreamServiceError,
    VideoNotFoundError,
)
from backend.tubesummary.services.rate_limiter import FixedWindowRateLimiter
from backend.tubesummary.services.summary_service import (
    SYSTEM_PROMPT,
    SummaryOrchestrator,
    SummaryPipeline,
    VideoContent,
    build_summary_prompt,
    extract_first_json_object,
    parse_summary_reply,
)
from backend.tubesummary.services.youtube_service import YouTubeService

if TYPE_CHECKING:
    from conftest import FakeYouTubeApi

VALID_REPLY = json.dumps(
    {
        "summary": "A short soup tutorial.",
        "keyPoints": ["Chop leeks", "Simmer stock"],
        "topicTags": ["cooking", "soup"],
    }
)


@dataclass
class _FakeGenerationClient:
    replies: list[str] = field(default_factory=lambda: [VALID_REPLY])
    error: Exception | None = None
    prompts: list[tuple[str, str]] = field(default_factory=list)

    async def complete(self, *, system_prompt: str, user_prompt: str) -> str:
        self.prompts.append((system_prompt, user_prompt))
        if self.error is not None:
            raise self.error
        return self.replies.pop(0)


def _content(*, captions: str = "") -> VideoContent:
    return VideoContent(title="Leek Soup", description="Simple soup.", captions=captions)


def test_prompt_embeds_metadata_and_placeholder_for_missing_captions() -> None:
    prompt = build_summary_prompt(_content(), language="English")

    assert "Video title: Leek Soup" in prompt
    assert "Video description: Simple soup." in prompt
    assert "Video captions: (no captions available)" in prompt
    assert "Write every value in English." in prompt
    assert '"keyPoints"' in prompt
    assert build_summary_prompt(_content(), language="English") == prompt


def test_prompt_caps_transcript_length() -> None:
    prompt = build_summary_prompt(_content(captions="x" * 50), max_transcript_chars=10)

    assert f"Video captions: {'x' * 10}\n" in prompt
    assert "x" * 11 not in prompt


def test_extract_first_json_object_ignores_surrounding_prose() -> None:
    text = 'Sure! Here it is: {"summary": "a {b} c", "n": {"x": 1}} and {"second": 2}'
    assert extract_first_json_object(text) == '{"summary": "a {b} c", "n": {"x": 1}}'


def test_extract_first_json_object_handles_escaped_quotes() -> None:
    text = '{"summary": "say \\"}\\" now"} trailing'
    assert extract_first_json_object(text) == '{"summary": "say \\"}\\" now"}'


def test_extract_first_json_object_without_braces_or_unbalanced() -> None:
    assert extract_first_json_object("no json here") is None
    assert extract_first_json_object('{"summary": "open') is None


def test_parse_reply_coerces_missing_lists() -> None:
    summary = parse_summary_reply('{"summary": " Only text ", "keyPoints": "not-a-list"}')

    assert summary.summary == "Only text"
    assert summary.key_points == ()
    assert summary.topic_tags == ()


def test_parse_reply_drops_non_string_items() -> None:
    summary = parse_summary_reply(
        '{"summary": "ok", "keyPoints": ["a", 3, " ", "b"], "topicTags": [null, "tag"]}'
    )
    assert summary.key_points == ("a", "b")
    assert summary.topic_tags == ("tag",)


@pytest.mark.parametrize(
    "reply",
    [
        "I cannot help with that.",
        '{"summary": "unterminated',
        "{summary: 'not json'}",
        '{"keyPoints": ["no summary"]}',
        '{"summary": "   "}',
    ],
)
def test_parse_reply_failures_raise(reply: str) -> None:
    with pytest.raises(ResponseParseFailedError):
        parse_summary_reply(reply)


def test_orchestrator_requires_description_without_calling_upstream() -> None:
    client = _FakeGenerationClient()
    orchestrator = SummaryOrchestrator(client)

    with pytest.raises(DescriptionRequiredError) as exc_info:
        asyncio.run(orchestrator.generate(VideoContent(title="Title", description="  ")))

    assert exc_info.value.retryable is False
    assert client.prompts == []


def test_orchestrator_accepts_empty_transcript_and_prose_wrapped_reply() -> None:
    client = _FakeGenerationClient(replies=[f"Here you go:\n{VALID_REPLY}\nEnjoy!"])
    orchestrator = SummaryOrchestrator(client, summary_language="Korean")

    summary = asyncio.run(orchestrator.generate(_content()))

    assert summary.summary == "A short soup tutorial."
    assert summary.key_points == ("Chop leeks", "Simmer stock")
    assert summary.topic_tags == ("cooking", "soup")
    system_prompt, user_prompt = client.prompts[0]
    assert system_prompt == SYSTEM_PROMPT
    assert "Write every value in Korean." in user_prompt


def test_orchestrator_reply_without_object_is_parse_failure() -> None:
    orchestrator = SummaryOrchestrator(_FakeGenerationClient(replies=["Just prose."]))

    with pytest.raises(ResponseParseFailedError):
        asyncio.run(orchestrator.generate(_content()))


def test_orchestrator_wraps_upstream_quota_as_generation_failure() -> None:
    quota = classify_upstream_error(429, "You exceeded your current quota", source=SOURCE_GENERATION)
    orchestrator = SummaryOrchestrator(_FakeGenerationClient(error=UpstreamServiceError(quota)))

    with pytest.raises(GenerationFailedError) as exc_info:
        asyncio.run(orchestrator.generate(_content()))

    assert exc_info.value.reason.kind is ErrorKind.QUOTA_EXCEEDED
    assert exc_info.value.reason.source == SOURCE_GENERATION
    assert exc_info.value.user_message == GENERATION_QUOTA_MESSAGE
    assert exc_info.value.retryable is True


def _pipeline(
    generation_client: _FakeGenerationClient,
    *,
    requests_per_window: int = 10,
) -> SummaryPipeline:
    youtube_service = YouTubeService(
        api_key="test-key",
        rate_limiter=FixedWindowRateLimiter(window_seconds=60),
        requests_per_window=requests_per_window,
        caption_format=CaptionFormat.TIMED_BLOCKS,
    )
    return SummaryPipeline(
        youtube_service=youtube_service,
        orchestrator=SummaryOrchestrator(generation_client),
        primary_language="ko",
        secondary_language="en",
    )


def _seed_video(fake_youtube: FakeYouTubeApi, *, description: str = "Simple soup.") -> None:
    fake_youtube.respond_json(
        "/videos",
        json.dumps(
            {
                "items": [
                    {
                        "id": "vid-1",
                        "snippet": {"title": "Leek Soup", "description": description},
                    }
                ]
            }
        ),
    )


def _seed_tracks(fake_youtube: FakeYouTubeApi) -> None:
    fake_youtube.respond_json(
        "/captions",
        json.dumps(
            {
                "items": [
                    {"id": "cap-en", "snippet": {"language": "en"}},
                    {"id": "cap-ko", "snippet": {"language": "ko"}},
                ]
            }
        ),
    )


def test_pipeline_uses_preferred_caption_track(fake_youtube: FakeYouTubeApi) -> None:
    _seed_video(fake_youtube)
    _seed_tracks(fake_youtube)
    fake_youtube.respond_text(
        "/captions/cap-ko",
        "00:00:01,000 --> 00:00:03,000\n안녕하세요\n\n00:00:03,000 --> 00:00:05,000\n수프",
        content_type="text/plain",
    )
    client = _FakeGenerationClient()

    result = asyncio.run(_pipeline(client).run("vid-1", client_id="1.2.3.4"))

    assert fake_youtube.paths() == ["/videos", "/captions", "/captions/cap-ko"]
    assert result.captions_used is True
    assert result.caption_language == "ko"
    assert result.caption_warning is None
    assert result.video.title == "Leek Soup"
    assert "Video captions: 안녕하세요 수프" in client.prompts[0][1]


def test_pipeline_without_tracks_produces_captionless_summary(
    fake_youtube: FakeYouTubeApi,
) -> None:
    _seed_video(fake_youtube)
    fake_youtube.respond_json("/captions", '{"items": []}')
    client = _FakeGenerationClient()

    result = asyncio.run(_pipeline(client).run("vid-1"))

    assert result.captions_used is False
    assert result.caption_language is None
    assert result.caption_warning == CAPTIONS_UNAVAILABLE_WARNING
    assert "(no captions available)" in client.prompts[0][1]


def test_pipeline_caption_quota_error_degrades(fake_youtube: FakeYouTubeApi) -> None:
    _seed_video(fake_youtube)
    fake_youtube.respond_json(
        "/captions",
        '{"error": {"message": "quota exceeded", "errors": [{"reason": "quotaExceeded"}]}}',
        status_code=403,
    )

    result = asyncio.run(_pipeline(_FakeGenerationClient()).run("vid-1"))

    assert result.captions_used is False
    assert result.caption_warning == CAPTIONS_UNAVAILABLE_WARNING
    assert result.summary.summary == "A short soup tutorial."


def test_pipeline_unparseable_caption_content_degrades(fake_youtube: FakeYouTubeApi) -> None:
    _seed_video(fake_youtube)
    _seed_tracks(fake_youtube)
    fake_youtube.respond_text(
        "/captions/cap-ko",
        "<transcript><text>broken",
        content_type="text/xml",
    )

    result = asyncio.run(_pipeline(_FakeGenerationClient()).run("vid-1"))

    assert result.captions_used is False
    assert result.caption_warning == CAPTIONS_UNAVAILABLE_WARNING


def test_pipeline_missing_video_is_not_found(fake_youtube: FakeYouTubeApi) -> None:
    fake_youtube.respond_json("/videos", '{"items": []}')
    client = _FakeGenerationClient()

    with pytest.raises(VideoNotFoundError):
        asyncio.run(_pipeline(client).run("missing"))

    assert fake_youtube.paths() == ["/videos"]
    assert client.prompts == []


def test_pipeline_empty_description_stops_before_caption_fetch(
    fake_youtube: FakeYouTubeApi,
) -> None:
    _seed_video(fake_youtube, description="")
    _seed_tracks(fake_youtube)
    client = _FakeGenerationClient()

    with pytest.raises(DescriptionRequiredError):
        asyncio.run(_pipeline(client).run("vid-1"))

    assert client.prompts == []
    assert fake_youtube.paths() == ["/videos"]


def test_pipeline_rate_limit_is_fatal(fake_youtube: FakeYouTubeApi) -> None:
    _seed_video(fake_youtube)
    _seed_tracks(fake_youtube)
    client = _FakeGenerationClient()

    with pytest.raises(RateLimitExceededError):
        asyncio.run(_pipeline(client, requests_per_window=1).run("vid-1"))

    assert fake_youtube.paths() == ["/videos"]
    assert client.prompts == []


def test_pipeline_generation_failure_is_fatal(fake_youtube: FakeYouTubeApi) -> None:
    _seed_video(fake_youtube)
    fake_youtube.respond_json("/captions", '{"items": []}')
    failure = UpstreamServiceError(
        classify_upstream_error(500, "server exploded", source=SOURCE_GENERATION)
    )

    with pytest.raises(GenerationFailedError) as exc_info:
        asyncio.run(_pipeline(_FakeGenerationClient(error=failure)).run("vid-1"))

    assert exc_info.value.reason.kind is ErrorKind.API_ERROR
    assert "server exploded" not in exc_info.value.user_message
