from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class ErrorKind(StrEnum):
    QUOTA_EXCEEDED = "quota_exceeded"
    RATE_LIMITED = "rate_limited"
    API_ERROR = "api_error"
    MALFORMED_RESPONSE = "malformed_response"
    NETWORK_FAILURE = "network_failure"
    DESCRIPTION_REQUIRED = "description_required"
    RESPONSE_PARSE_FAILED = "response_parse_failed"
    VIDEO_NOT_FOUND = "video_not_found"
    GENERATION_FAILED = "generation_failed"


# Text shown to the end user. Raw upstream payloads never reach the UI.
USER_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.QUOTA_EXCEEDED: "The YouTube API quota has been exceeded. Please try again later.",
    ErrorKind.RATE_LIMITED: "Too many requests. Please wait a moment and try again.",
    ErrorKind.API_ERROR: "The YouTube API returned an error.",
    ErrorKind.MALFORMED_RESPONSE: "The upstream service returned an unreadable response.",
    ErrorKind.NETWORK_FAILURE: "Could not reach the upstream service.",
    ErrorKind.DESCRIPTION_REQUIRED: "There is no content to summarize.",
    ErrorKind.RESPONSE_PARSE_FAILED: "An error occurred while generating the summary.",
    ErrorKind.VIDEO_NOT_FOUND: "Failed to load the video details.",
    ErrorKind.GENERATION_FAILED: "An error occurred while generating the summary.",
}

GENERATION_QUOTA_MESSAGE = "The summary service quota has been exceeded. Please try again later."
CAPTIONS_UNAVAILABLE_WARNING = (
    "No captions are available, so the summary is based on the title and description only."
)

SOURCE_YOUTUBE = "youtube"
SOURCE_GENERATION = "generation"


@dataclass(frozen=True)
class UpstreamOutcome:
    kind: ErrorKind
    message: str
    source: str = SOURCE_YOUTUBE
    status_code: int | None = None

    @property
    def user_message(self) -> str:
        if self.kind is ErrorKind.QUOTA_EXCEEDED and self.source == SOURCE_GENERATION:
            return GENERATION_QUOTA_MESSAGE
        if self.kind is ErrorKind.API_ERROR and self.source == SOURCE_YOUTUBE:
            return self.message or USER_MESSAGES[ErrorKind.API_ERROR]
        return USER_MESSAGES[self.kind]


class TubeSummaryError(Exception):
    kind: ErrorKind = ErrorKind.API_ERROR
    retryable: bool = True

    @property
    def user_message(self) -> str:
        return USER_MESSAGES[self.kind]


class RateLimitExceededError(TubeSummaryError):
    kind = ErrorKind.RATE_LIMITED


class UpstreamServiceError(TubeSummaryError):
    def __init__(self, outcome: UpstreamOutcome) -> None:
        super().__init__(f"{outcome.source} {outcome.kind.value}: {outcome.message}")
        self.outcome = outcome

    @property
    def kind(self) -> ErrorKind:  # type: ignore[override]
        return self.outcome.kind

    @property
    def user_message(self) -> str:
        return self.outcome.user_message


class VideoNotFoundError(TubeSummaryError):
    kind = ErrorKind.VIDEO_NOT_FOUND
    retryable = False


class DescriptionRequiredError(TubeSummaryError):
    kind = ErrorKind.DESCRIPTION_REQUIRED
    retryable = False


class GenerationFailedError(TubeSummaryError):
    kind = ErrorKind.GENERATION_FAILED

    def __init__(self, reason: UpstreamOutcome) -> None:
        super().__init__(f"Summary generation failed: {reason.kind.value}: {reason.message}")
        self.reason = reason

    @property
    def user_message(self) -> str:
        if self.reason.kind in {ErrorKind.QUOTA_EXCEEDED, ErrorKind.RATE_LIMITED}:
            return self.reason.user_message
        return USER_MESSAGES[ErrorKind.GENERATION_FAILED]


class ResponseParseFailedError(TubeSummaryError):
    kind = ErrorKind.RESPONSE_PARSE_FAILED


def user_message_for(exc: BaseException) -> str:
    if isinstance(exc, TubeSummaryError):
        return exc.user_message
    return USER_MESSAGES[ErrorKind.API_ERROR]
