from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING
from urllib.error import URLError

import pytest

from backend.tubesummary.services.captions import CaptionFormat
from backend.tubesummary.services.errors import (
    ErrorKind,
    RateLimitExceededError,
    UpstreamServiceError,
)
from backend.tubesummary.services.rate_limiter import FixedWindowRateLimiter
from backend.tubesummary.services.youtube_service import YouTubeService

if TYPE_CHECKING:
    from conftest import FakeYouTubeApi

SEARCH_BODY = json.dumps(
    {
        "nextPageToken": "CAoQAA",
        "items": [
            {
                "id": {"kind": "youtube#video", "videoId": "vid-1"},
                "snippet": {
                    "title": " Leek Soup ",
                    "description": "Simple soup.",
                    "thumbnails": {
                        "default": {"url": "https://i.ytimg.com/vi/vid-1/default.jpg"},
                        "medium": {"url": "https://i.ytimg.com/vi/vid-1/mqdefault.jpg"},
                    },
                },
            },
            {"id": {"kind": "youtube#channel", "channelId": "chan-1"}, "snippet": {}},
        ],
    }
)

QUOTA_BODY = json.dumps(
    {
        "error": {
            "code": 403,
            "message": "The request cannot be completed because you have exceeded your quota.",
            "errors": [{"reason": "quotaExceeded"}],
        }
    }
)


def _service(
    *,
    requests_per_window: int = 10,
    caption_format: CaptionFormat = CaptionFormat.TIMED_BLOCKS,
) -> YouTubeService:
    return YouTubeService(
        api_key="test-key",
        rate_limiter=FixedWindowRateLimiter(window_seconds=60),
        requests_per_window=requests_per_window,
        caption_format=caption_format,
    )


def test_search_maps_videos_and_page_token(fake_youtube: FakeYouTubeApi) -> None:
    fake_youtube.respond_json("/search", SEARCH_BODY)

    page = asyncio.run(_service().search("  leek soup ", "PAGE2", client_id="1.2.3.4"))

    assert page.next_page_token == "CAoQAA"
    assert [video.video_id for video in page.items] == ["vid-1"]
    video = page.items[0]
    assert video.title == "Leek Soup"
    assert video.thumbnail_url == "https://i.ytimg.com/vi/vid-1/mqdefault.jpg"

    call = fake_youtube.calls[0]
    assert call.params["q"] == "leek soup"
    assert call.params["pageToken"] == "PAGE2"
    assert call.params["key"] == "test-key"
    assert call.params["type"] == "video"
    assert call.accept == "application/json"


def test_blank_search_query_makes_no_request(fake_youtube: FakeYouTubeApi) -> None:
    page = asyncio.run(_service().search("   "))

    assert page.items == []
    assert fake_youtube.calls == []


def test_video_details_missing_returns_none(fake_youtube: FakeYouTubeApi) -> None:
    fake_youtube.respond_json("/videos", '{"items": []}')
    assert asyncio.run(_service().get_video_details("nope")) is None


def test_video_details_reads_snippet(fake_youtube: FakeYouTubeApi) -> None:
    fake_youtube.respond_json(
        "/videos",
        json.dumps(
            {"items": [{"id": "vid-1", "snippet": {"title": "Title", "description": "Desc"}}]}
        ),
    )

    video = asyncio.run(_service().get_video_details("vid-1"))

    assert video is not None
    assert (video.video_id, video.title, video.description) == ("vid-1", "Title", "Desc")
    assert video.thumbnail_url is None
    assert fake_youtube.calls[0].params["id"] == "vid-1"


def test_quota_error_is_classified(fake_youtube: FakeYouTubeApi) -> None:
    fake_youtube.respond_json("/captions", QUOTA_BODY, status_code=403)

    with pytest.raises(UpstreamServiceError) as exc_info:
        asyncio.run(_service().get_available_captions("vid-1"))

    assert exc_info.value.kind is ErrorKind.QUOTA_EXCEEDED
    assert exc_info.value.outcome.status_code == 403


def test_server_error_is_api_error_with_message(fake_youtube: FakeYouTubeApi) -> None:
    fake_youtube.respond_json("/search", '{"error": {"message": "boom"}}', status_code=500)

    with pytest.raises(UpstreamServiceError) as exc_info:
        asyncio.run(_service().search("soup"))

    assert exc_info.value.kind is ErrorKind.API_ERROR
    assert exc_info.value.user_message == "boom"


def test_success_with_non_json_body_is_malformed(fake_youtube: FakeYouTubeApi) -> None:
    fake_youtube.respond_text("/videos", "<html>oops</html>", content_type="text/html")

    with pytest.raises(UpstreamServiceError) as exc_info:
        asyncio.run(_service().get_video_details("vid-1"))

    assert exc_info.value.kind is ErrorKind.MALFORMED_RESPONSE


def test_rate_limit_rejects_before_any_request(fake_youtube: FakeYouTubeApi) -> None:
    fake_youtube.respond_json("/search", SEARCH_BODY)
    service = _service(requests_per_window=2)

    async def _exercise() -> None:
        await service.search("soup", client_id="1.2.3.4")
        await service.search("soup", client_id="1.2.3.4")
        with pytest.raises(RateLimitExceededError):
            await service.search("soup", client_id="1.2.3.4")
        # Another client has its own budget.
        await service.search("soup", client_id="5.6.7.8")

    asyncio.run(_exercise())

    assert len(fake_youtube.calls) == 3


def test_caption_listing_maps_tracks(fake_youtube: FakeYouTubeApi) -> None:
    fake_youtube.respond_json(
        "/captions",
        json.dumps(
            {
                "items": [
                    {"id": "cap-en", "snippet": {"language": "en", "name": "", "trackKind": "asr"}},
                    {"id": "cap-ko", "snippet": {"language": "ko", "name": "Korean"}},
                ]
            }
        ),
    )

    tracks = asyncio.run(_service().get_available_captions("vid-1"))

    assert [(track.id, track.language_code) for track in tracks] == [
        ("cap-en", "en"),
        ("cap-ko", "ko"),
    ]
    assert fake_youtube.calls[0].params["videoId"] == "vid-1"


def test_caption_content_requests_timed_blocks(fake_youtube: FakeYouTubeApi) -> None:
    fake_youtube.respond_text(
        "/captions/cap-ko",
        "1\n00:00:01,000 --> 00:00:03,000\nhello\n\n2\n00:00:03,000 --> 00:00:04,000\nworld\n",
        content_type="text/plain; charset=utf-8",
    )

    content = asyncio.run(_service().get_caption_content("cap-ko"))

    assert content.caption_format is CaptionFormat.TIMED_BLOCKS
    assert [segment.text for segment in content.segments] == ["hello", "world"]
    call = fake_youtube.calls[0]
    assert call.params["tfmt"] == "srt"
    assert call.accept == "text/plain"


def test_caption_content_follows_xml_content_type(fake_youtube: FakeYouTubeApi) -> None:
    fake_youtube.respond_text(
        "/captions/cap-ko",
        '<transcript><text start="1" dur="2">hello</text></transcript>',
        content_type="text/xml",
    )

    service = _service(caption_format=CaptionFormat.XML_CUES)
    content = asyncio.run(service.get_caption_content("cap-ko"))

    assert content.caption_format is CaptionFormat.XML_CUES
    assert content.segments[0].start_seconds == 1.0
    assert "tfmt" not in fake_youtube.calls[0].params


def test_caption_content_error_is_classified(fake_youtube: FakeYouTubeApi) -> None:
    fake_youtube.respond_json(
        "/captions/cap-ko",
        '{"error": {"message": "The permissions associated with the request are not sufficient"}}',
        status_code=403,
    )

    with pytest.raises(UpstreamServiceError) as exc_info:
        asyncio.run(_service().get_caption_content("cap-ko"))

    assert exc_info.value.kind is ErrorKind.API_ERROR


def test_transport_failure_is_network_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    def _fake_urlopen(*args: object, **kwargs: object) -> object:
        _ = (args, kwargs)
        raise URLError("connection refused")

    monkeypatch.setattr("backend.tubesummary.services.youtube_service.urlopen", _fake_urlopen)

    with pytest.raises(UpstreamServiceError) as exc_info:
        asyncio.run(_service().search("soup"))

    assert exc_info.value.kind is ErrorKind.NETWORK_FAILURE
    assert "connection refused" in exc_info.value.outcome.message
