from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, cast
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

from backend.tubesummary.services.captions import (
    CaptionFormat,
    CaptionSegment,
    CaptionTrack,
    caption_format_for_content_type,
    parse_timed_text,
    tracks_from_listing,
)
from backend.tubesummary.services.error_classifier import (
    classify_upstream_error,
    is_success_status,
    malformed_response,
    network_failure,
    parse_json_object,
)
from backend.tubesummary.services.errors import (
    RateLimitExceededError,
    UpstreamServiceError,
)
from backend.tubesummary.services.rate_limiter import (
    ANONYMOUS_CLIENT_ID,
    FixedWindowRateLimiter,
)
from backend.tubesummary.telemetry import TelemetryClient

LOGGER = logging.getLogger("tubesummary.youtube")

DEFAULT_YOUTUBE_API_BASE_URL = "https://www.googleapis.com/youtube/v3"
USER_AGENT = "tubesummary/0.1"

SEARCH_ERROR_MESSAGE = "An error occurred while searching."
VIDEO_DETAILS_ERROR_MESSAGE = "Failed to load the video details."
CAPTIONS_ERROR_MESSAGE = "Failed to load the caption list."
CAPTION_CONTENT_ERROR_MESSAGE = "Failed to load the caption content."


@dataclass(frozen=True)
class YouTubeVideo:
    video_id: str
    title: str
    description: str
    thumbnail_url: str | None = None


@dataclass(frozen=True)
class YouTubeSearchPage:
    items: list[YouTubeVideo]
    next_page_token: str | None = None


@dataclass(frozen=True)
class CaptionContent:
    track_id: str
    caption_format: CaptionFormat
    segments: list[CaptionSegment]


@dataclass(frozen=True)
class _UpstreamResponse:
    status_code: int
    body: str
    content_type: str | None


class YouTubeService:
    def __init__(
        self,
        *,
        api_key: str,
        rate_limiter: FixedWindowRateLimiter,
        base_url: str = DEFAULT_YOUTUBE_API_BASE_URL,
        http_timeout_seconds: float = 15.0,
        search_page_size: int = 10,
        requests_per_window: int = 10,
        caption_format: CaptionFormat = CaptionFormat.TIMED_BLOCKS,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._rate_limiter = rate_limiter
        self._base_url = base_url.strip().rstrip("/") or DEFAULT_YOUTUBE_API_BASE_URL
        self._http_timeout_seconds = max(1.0, http_timeout_seconds)
        self._search_page_size = max(1, min(50, search_page_size))
        self._requests_per_window = max(1, requests_per_window)
        self._caption_format = caption_format
        self._telemetry = telemetry or TelemetryClient.disabled()

    async def search(
        self,
        query: str,
        page_token: str | None = None,
        *,
        client_id: str = ANONYMOUS_CLIENT_ID,
    ) -> YouTubeSearchPage:
        normalized_query = query.strip()
        if not normalized_query:
            return YouTubeSearchPage(items=[])

        params = {
            "part": "snippet",
            "maxResults": str(self._search_page_size),
            "type": "video",
            "q": normalized_query,
        }
        if page_token:
            params["pageToken"] = page_token

        payload = await self._request_json(
            "/search",
            params,
            client_id=client_id,
            operation="search",
            fallback_message=SEARCH_ERROR_MESSAGE,
        )
        videos: list[YouTubeVideo] = []
        for item in _as_list(payload.get("items")):
            item_dict = _as_dict(item)
            video_id = _as_dict(item_dict.get("id")).get("videoId")
            if not isinstance(video_id, str) or not video_id:
                continue
            videos.append(_video_from_snippet(video_id, _as_dict(item_dict.get("snippet"))))

        raw_next_page_token = payload.get("nextPageToken")
        next_page_token = raw_next_page_token if isinstance(raw_next_page_token, str) else None
        LOGGER.info(
            "youtube search results=%s has_next_page=%s",
            len(videos),
            next_page_token is not None,
        )
        return YouTubeSearchPage(items=videos, next_page_token=next_page_token)

    async def get_video_details(
        self,
        video_id: str,
        *,
        client_id: str = ANONYMOUS_CLIENT_ID,
    ) -> YouTubeVideo | None:
        payload = await self._request_json(
            "/videos",
            {"part": "snippet", "id": video_id},
            client_id=client_id,
            operation="details",
            fallback_message=VIDEO_DETAILS_ERROR_MESSAGE,
        )
        items = _as_list(payload.get("items"))
        if not items:
            LOGGER.info("youtube details not_found video_id=%s", video_id)
            return None

        item = _as_dict(items[0])
        raw_id = item.get("id")
        resolved_id = raw_id if isinstance(raw_id, str) and raw_id else video_id
        return _video_from_snippet(resolved_id, _as_dict(item.get("snippet")))

    async def get_available_captions(
        self,
        video_id: str,
        *,
        client_id: str = ANONYMOUS_CLIENT_ID,
    ) -> list[CaptionTrack]:
        payload = await self._request_json(
            "/captions",
            {"part": "snippet", "videoId": video_id},
            client_id=client_id,
            operation="captions",
            fallback_message=CAPTIONS_ERROR_MESSAGE,
        )
        tracks = tracks_from_listing(payload)
        LOGGER.info(
            "youtube captions listed video_id=%s tracks=%s languages=%s",
            video_id,
            len(tracks),
            ",".join(track.language_code for track in tracks),
        )
        return tracks

    async def get_caption_content(
        self,
        track_id: str,
        *,
        client_id: str = ANONYMOUS_CLIENT_ID,
    ) -> CaptionContent:
        if self._caption_format is CaptionFormat.XML_CUES:
            params: dict[str, str] = {}
            accept = "text/xml"
        else:
            params = {"tfmt": CaptionFormat.TIMED_BLOCKS.value}
            accept = "text/plain"

        response = await self._request(
            f"/captions/{quote(track_id, safe='')}",
            params,
            client_id=client_id,
            operation="caption_content",
            accept=accept,
        )
        if not is_success_status(response.status_code):
            raise UpstreamServiceError(
                classify_upstream_error(
                    response.status_code,
                    body=response.body,
                    fallback_message=CAPTION_CONTENT_ERROR_MESSAGE,
                )
            )

        caption_format = caption_format_for_content_type(
            response.content_type,
            default=self._caption_format,
        )
        segments = parse_timed_text(response.body, caption_format)
        LOGGER.info(
            "youtube caption_content parsed track_id=%s format=%s segments=%s",
            track_id,
            caption_format.value,
            len(segments),
        )
        return CaptionContent(track_id=track_id, caption_format=caption_format, segments=segments)

    async def _request_json(
        self,
        path: str,
        params: dict[str, str],
        *,
        client_id: str,
        operation: str,
        fallback_message: str,
    ) -> dict[str, Any]:
        response = await self._request(
            path,
            params,
            client_id=client_id,
            operation=operation,
            accept="application/json",
        )
        if not is_success_status(response.status_code):
            raise UpstreamServiceError(
                classify_upstream_error(
                    response.status_code,
                    body=response.body,
                    fallback_message=fallback_message,
                )
            )

        payload = parse_json_object(response.body)
        if payload is None:
            LOGGER.warning(
                "youtube %s malformed_response status=%s length=%s",
                operation,
                response.status_code,
                len(response.body),
            )
            raise UpstreamServiceError(malformed_response(status_code=response.status_code))
        return payload

    async def _request(
        self,
        path: str,
        params: dict[str, str],
        *,
        client_id: str,
        operation: str,
        accept: str,
    ) -> _UpstreamResponse:
        try:
            self._rate_limiter.check(client_id, self._requests_per_window)
        except RateLimitExceededError:
            LOGGER.warning(
                "youtube request rate_limited operation=%s client_id=%s",
                operation,
                client_id,
            )
            self._telemetry.emit(
                "youtube.request.rejected",
                operation=operation,
                reason="rate_limited",
            )
            raise

        query = urlencode({"key": self._api_key, **params})
        url = f"{self._base_url}{path}?{query}"
        response = await asyncio.to_thread(
            _fetch_youtube_response,
            url,
            accept=accept,
            timeout_seconds=self._http_timeout_seconds,
        )
        LOGGER.debug(
            "youtube request finished operation=%s status=%s",
            operation,
            response.status_code,
        )
        return response


def _fetch_youtube_response(
    url: str,
    *,
    accept: str,
    timeout_seconds: float,
) -> _UpstreamResponse:
    request = Request(
        url,
        headers={"accept": accept, "user-agent": USER_AGENT},
        method="GET",
    )
    try:
        with urlopen(request, timeout=timeout_seconds) as response:
            status_code = int(response.getcode() or 0)
            raw_body = response.read().decode("utf-8", errors="replace")
            content_type = response.headers.get("content-type")
    except HTTPError as exc:
        status_code = int(exc.code)
        raw_body = exc.read().decode("utf-8", errors="replace")
        content_type = exc.headers.get("content-type") if exc.headers is not None else None
    except (URLError, TimeoutError, OSError) as exc:
        raise UpstreamServiceError(network_failure(exc)) from exc

    return _UpstreamResponse(status_code=status_code, body=raw_body, content_type=content_type)


def _video_from_snippet(video_id: str, snippet: dict[str, Any]) -> YouTubeVideo:
    raw_title = snippet.get("title")
    raw_description = snippet.get("description")
    thumbnails = _as_dict(snippet.get("thumbnails"))
    thumbnail_url: str | None = None
    for size in ("medium", "high", "default"):
        raw_url = _as_dict(thumbnails.get(size)).get("url")
        if isinstance(raw_url, str) and raw_url:
            thumbnail_url = raw_url
            break

    return YouTubeVideo(
        video_id=video_id,
        title=raw_title.strip() if isinstance(raw_title, str) else "",
        description=raw_description.strip() if isinstance(raw_description, str) else "",
        thumbnail_url=thumbnail_url,
    )


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        raw_dict = cast(dict[object, object], value)
        converted: dict[str, Any] = {}
        for key, item in raw_dict.items():
            if isinstance(key, str):
                converted[key] = item
        return converted
    return {}


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        raw_list = cast(list[Any], value)
        return list(raw_list)
    return []
