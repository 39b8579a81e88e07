from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from structlog.contextvars import bind_contextvars, reset_contextvars

from backend.tubesummary.api.routes import router
from backend.tubesummary.dependencies import get_settings, get_telemetry
from backend.tubesummary.logging_config import configure_application_logging
from backend.tubesummary.models.summary_contracts import ErrorResponse
from backend.tubesummary.services.errors import ErrorKind, GenerationFailedError, TubeSummaryError

LOGGER = logging.getLogger("tubesummary.api")

HTTP_STATUS_BY_ERROR_KIND: dict[ErrorKind, int] = {
    ErrorKind.QUOTA_EXCEEDED: 429,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.API_ERROR: 502,
    ErrorKind.MALFORMED_RESPONSE: 502,
    ErrorKind.NETWORK_FAILURE: 502,
    ErrorKind.DESCRIPTION_REQUIRED: 400,
    ErrorKind.RESPONSE_PARSE_FAILED: 502,
    ErrorKind.VIDEO_NOT_FOUND: 404,
    ErrorKind.GENERATION_FAILED: 502,
}
QUOTA_KINDS: frozenset[ErrorKind] = frozenset({ErrorKind.QUOTA_EXCEEDED, ErrorKind.RATE_LIMITED})


def health_check() -> dict[str, str]:
    return {"status": "ok"}


@asynccontextmanager
async def app_lifespan(_: FastAPI) -> AsyncIterator[None]:
    configure_application_logging(get_settings())
    yield


def _status_code_for(exc: TubeSummaryError) -> int:
    if isinstance(exc, GenerationFailedError) and exc.reason.kind in QUOTA_KINDS:
        return 429
    return HTTP_STATUS_BY_ERROR_KIND.get(exc.kind, 502)


async def tube_summary_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, TubeSummaryError)
    status_code = _status_code_for(exc)
    LOGGER.warning(
        "request failed path=%s kind=%s status=%s error=%s",
        request.url.path,
        exc.kind.value,
        status_code,
        exc,
    )
    body = ErrorResponse(error=exc.user_message, code=exc.kind.value, retryable=exc.retryable)
    return JSONResponse(status_code=status_code, content=body.model_dump())


async def validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    _ = request
    message = "Invalid request."
    if isinstance(exc, RequestValidationError) and exc.errors():
        first_error = exc.errors()[0]
        location = ".".join(str(part) for part in first_error.get("loc", ()) if part != "body")
        message = f"Invalid request: {location or 'body'} {first_error.get('msg', '')}".strip()
    body = ErrorResponse(error=message, code="invalid_request", retryable=False)
    return JSONResponse(status_code=400, content=body.model_dump())


def create_app() -> FastAPI:
    app = FastAPI(title="Tube Summary API", version="0.1.0", lifespan=app_lifespan)

    async def request_context_middleware(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        telemetry = get_telemetry()
        incoming_request_id = request.headers.get("X-Request-ID")
        request_id = (
            incoming_request_id.strip()
            if isinstance(incoming_request_id, str) and incoming_request_id.strip()
            else str(uuid4())
        )
        context_tokens = bind_contextvars(
            http_request_id=request_id,
            http_method=request.method,
            http_path=request.url.path,
        )
        try:
            with telemetry.timed(
                "http.request",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
            ) as finish:
                response = await call_next(request)
                finish["status_code"] = response.status_code
        finally:
            reset_contextvars(**context_tokens)
        response.headers["X-Request-ID"] = request_id
        return response

    app.middleware("http")(request_context_middleware)
    app.add_exception_handler(TubeSummaryError, tube_summary_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.include_router(router)
    app.add_api_route(
        "/health",
        health_check,
        methods=["GET"],
        tags=["system"],
        operation_id="health_check",
    )
    return app


app = create_app()
