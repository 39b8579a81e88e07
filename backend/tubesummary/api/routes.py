from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request

from backend.tubesummary.dependencies import get_summary_pipeline, get_youtube_service
from backend.tubesummary.models.summary_contracts import (
    CaptionContentResponse,
    CaptionSegmentModel,
    CaptionTrackModel,
    CaptionTracksResponse,
    GenerateSummaryRequest,
    SummaryRequest,
    SummaryResponse,
    VideoModel,
    VideoSearchResponse,
    VideoSummaryModel,
)
from backend.tubesummary.services.captions import combine_caption_text
from backend.tubesummary.services.errors import VideoNotFoundError
from backend.tubesummary.services.rate_limiter import client_identifier_from_headers
from backend.tubesummary.services.summary_service import SummaryPipeline, VideoContent
from backend.tubesummary.services.youtube_service import YouTubeService

router = APIRouter(prefix="/api")


def _client_id(request: Request) -> str:
    return client_identifier_from_headers(request.headers)


@router.get(
    "/videos/search",
    response_model=VideoSearchResponse,
    tags=["videos"],
    operation_id="videos_search",
)
async def search_videos(
    request: Request,
    youtube_service: Annotated[YouTubeService, Depends(get_youtube_service)],
    q: Annotated[str, Query(min_length=1)],
    page_token: str | None = None,
) -> VideoSearchResponse:
    page = await youtube_service.search(q, page_token, client_id=_client_id(request))
    return VideoSearchResponse(
        items=[VideoModel.from_video(video) for video in page.items],
        next_page_token=page.next_page_token,
    )


@router.get(
    "/videos/{video_id}",
    response_model=VideoModel,
    tags=["videos"],
    operation_id="videos_get_details",
)
async def get_video_details(
    video_id: str,
    request: Request,
    youtube_service: Annotated[YouTubeService, Depends(get_youtube_service)],
) -> VideoModel:
    video = await youtube_service.get_video_details(video_id, client_id=_client_id(request))
    if video is None:
        raise VideoNotFoundError(f"Video not found: {video_id}")
    return VideoModel.from_video(video)


@router.get(
    "/videos/{video_id}/captions",
    response_model=CaptionTracksResponse,
    tags=["captions"],
    operation_id="captions_list",
)
async def list_captions(
    video_id: str,
    request: Request,
    youtube_service: Annotated[YouTubeService, Depends(get_youtube_service)],
) -> CaptionTracksResponse:
    tracks = await youtube_service.get_available_captions(
        video_id,
        client_id=_client_id(request),
    )
    return CaptionTracksResponse(tracks=[CaptionTrackModel.from_track(track) for track in tracks])


@router.get(
    "/captions/{track_id}",
    response_model=CaptionContentResponse,
    tags=["captions"],
    operation_id="captions_get_content",
)
async def get_caption_content(
    track_id: str,
    request: Request,
    youtube_service: Annotated[YouTubeService, Depends(get_youtube_service)],
) -> CaptionContentResponse:
    content = await youtube_service.get_caption_content(track_id, client_id=_client_id(request))
    return CaptionContentResponse(
        track_id=content.track_id,
        format=content.caption_format.value,
        captions=[CaptionSegmentModel.from_segment(segment) for segment in content.segments],
        transcript=combine_caption_text(content.segments),
    )


@router.post(
    "/summaries",
    response_model=SummaryResponse,
    tags=["summaries"],
    operation_id="summaries_create",
)
async def create_summary(
    body: SummaryRequest,
    request: Request,
    pipeline: Annotated[SummaryPipeline, Depends(get_summary_pipeline)],
) -> SummaryResponse:
    result = await pipeline.run(body.video_id.strip(), client_id=_client_id(request))
    return SummaryResponse.from_result(result)


@router.post(
    "/summaries/generate",
    response_model=VideoSummaryModel,
    tags=["summaries"],
    operation_id="summaries_generate",
)
async def generate_summary(
    body: GenerateSummaryRequest,
    pipeline: Annotated[SummaryPipeline, Depends(get_summary_pipeline)],
) -> VideoSummaryModel:
    summary = await pipeline.generate_summary(
        VideoContent(title=body.title, description=body.description, captions=body.captions)
    )
    return VideoSummaryModel.from_summary(summary)
