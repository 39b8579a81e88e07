from __future__ import annotations

from functools import lru_cache

from backend.tubesummary.config import AppSettings, load_settings
from backend.tubesummary.services.captions import CaptionFormat
from backend.tubesummary.services.generation_client import OpenAIGenerationClient
from backend.tubesummary.services.rate_limiter import ANONYMOUS_CLIENT_ID, FixedWindowRateLimiter
from backend.tubesummary.services.summary_service import (
    SummaryOrchestrator,
    SummaryPipeline,
    VideoSummaryResult,
)
from backend.tubesummary.services.summary_session import SummarySession
from backend.tubesummary.services.youtube_service import YouTubeService
from backend.tubesummary.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_rate_limiter() -> FixedWindowRateLimiter:
    settings = get_settings()
    return FixedWindowRateLimiter(
        window_seconds=settings.rate_limit_window_seconds,
        max_tracked_clients=settings.rate_limit_max_tracked_clients,
    )


@lru_cache(maxsize=1)
def get_youtube_service() -> YouTubeService:
    settings = get_settings()
    assert settings.youtube_api_key is not None
    return YouTubeService(
        api_key=settings.youtube_api_key,
        rate_limiter=get_rate_limiter(),
        base_url=settings.youtube_api_base_url,
        http_timeout_seconds=settings.youtube_http_timeout_seconds,
        search_page_size=settings.youtube_search_page_size,
        requests_per_window=settings.rate_limit_max_requests,
        caption_format=CaptionFormat(settings.caption_content_format),
        telemetry=get_telemetry(),
    )


@lru_cache(maxsize=1)
def get_summary_orchestrator() -> SummaryOrchestrator:
    settings = get_settings()
    assert settings.openai_api_key is not None
    return SummaryOrchestrator(
        OpenAIGenerationClient(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            temperature=settings.openai_temperature,
            base_url=settings.openai_base_url,
            timeout_seconds=settings.openai_timeout_seconds,
        ),
        summary_language=settings.summary_language,
        max_transcript_chars=settings.summary_max_transcript_chars,
    )


@lru_cache(maxsize=1)
def get_summary_pipeline() -> SummaryPipeline:
    settings = get_settings()
    return SummaryPipeline(
        youtube_service=get_youtube_service(),
        orchestrator=get_summary_orchestrator(),
        primary_language=settings.caption_primary_language,
        secondary_language=settings.caption_secondary_language,
        telemetry=get_telemetry(),
    )


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


def reset_cached_dependencies() -> None:
    get_summary_pipeline.cache_clear()
    get_summary_orchestrator.cache_clear()
    get_youtube_service.cache_clear()
    get_rate_limiter.cache_clear()
    get_telemetry.cache_clear()
    get_settings.cache_clear()


def build_summary_session(*, client_id: str = ANONYMOUS_CLIENT_ID) -> SummarySession:
    """Create a per-viewer summary session bound to the shared pipeline."""
    pipeline = get_summary_pipeline()

    async def _run_pipeline(video_id: str) -> VideoSummaryResult:
        return await pipeline.run(video_id, client_id=client_id)

    return SummarySession(
        _run_pipeline,
        close_reset_delay_seconds=get_settings().summary_close_reset_delay_seconds,
    )
