from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from backend.tubesummary.services.captions import CaptionSegment, CaptionTrack
from backend.tubesummary.services.summary_service import VideoSummary, VideoSummaryResult
from backend.tubesummary.services.youtube_service import YouTubeVideo


class VideoModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    video_id: str
    title: str
    description: str
    thumbnail_url: str | None = None

    @classmethod
    def from_video(cls, video: YouTubeVideo) -> VideoModel:
        return cls(
            video_id=video.video_id,
            title=video.title,
            description=video.description,
            thumbnail_url=video.thumbnail_url,
        )


class VideoSearchResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    items: list[VideoModel] = Field(default_factory=list)
    next_page_token: str | None = None


class CaptionTrackModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    track_id: str
    language_code: str
    language_name: str
    kind: str

    @classmethod
    def from_track(cls, track: CaptionTrack) -> CaptionTrackModel:
        return cls(
            track_id=track.id,
            language_code=track.language_code,
            language_name=track.language_name,
            kind=track.kind,
        )


class CaptionTracksResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    tracks: list[CaptionTrackModel] = Field(default_factory=list)


class CaptionSegmentModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text: str
    start: float = Field(ge=0.0)
    duration: float = Field(ge=0.0)

    @classmethod
    def from_segment(cls, segment: CaptionSegment) -> CaptionSegmentModel:
        return cls(
            text=segment.text,
            start=segment.start_seconds,
            duration=segment.duration_seconds,
        )


class CaptionContentResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    track_id: str
    format: str
    captions: list[CaptionSegmentModel] = Field(default_factory=list)
    transcript: str = ""


class SummaryRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    video_id: str = Field(min_length=1)


class GenerateSummaryRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str
    description: str
    captions: str = ""


class VideoSummaryModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    summary: str
    key_points: list[str] = Field(default_factory=list)
    topic_tags: list[str] = Field(default_factory=list)

    @classmethod
    def from_summary(cls, summary: VideoSummary) -> VideoSummaryModel:
        return cls(
            summary=summary.summary,
            key_points=list(summary.key_points),
            topic_tags=list(summary.topic_tags),
        )


class SummaryResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    video: VideoModel
    summary: VideoSummaryModel
    captions_used: bool
    caption_language: str | None = None
    caption_warning: str | None = None

    @classmethod
    def from_result(cls, result: VideoSummaryResult) -> SummaryResponse:
        return cls(
            video=VideoModel.from_video(result.video),
            summary=VideoSummaryModel.from_summary(result.summary),
            captions_used=result.captions_used,
            caption_language=result.caption_language,
            caption_warning=result.caption_warning,
        )


class ErrorResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    error: str
    code: str
    retryable: bool = False
