from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import parse_qs, urlsplit

import pytest
from fastapi.testclient import TestClient

from backend.tubesummary.dependencies import reset_cached_dependencies
from backend.tubesummary.main import create_app
from backend.tubesummary.services.youtube_service import (
    _UpstreamResponse,  # pyright: ignore[reportPrivateUsage]
)

FETCH_TARGET = "backend.tubesummary.services.youtube_service._fetch_youtube_response"


@dataclass
class RecordedFetch:
    path: str
    params: dict[str, str]
    accept: str


@dataclass
class FakeYouTubeApi:
    """Stands in for the blocking HTTP fetch; responses are keyed by URL path suffix."""

    responses: dict[str, _UpstreamResponse] = field(default_factory=dict)
    calls: list[RecordedFetch] = field(default_factory=list)

    def respond_json(self, path: str, body: str, *, status_code: int = 200) -> None:
        self.responses[path] = _UpstreamResponse(
            status_code=status_code,
            body=body,
            content_type="application/json; charset=UTF-8",
        )

    def respond_text(
        self,
        path: str,
        body: str,
        *,
        content_type: str | None,
        status_code: int = 200,
    ) -> None:
        self.responses[path] = _UpstreamResponse(
            status_code=status_code,
            body=body,
            content_type=content_type,
        )

    def fetch(self, url: str, *, accept: str, timeout_seconds: float) -> _UpstreamResponse:
        _ = timeout_seconds
        parts = urlsplit(url)
        params = {key: values[0] for key, values in parse_qs(parts.query).items()}
        path = parts.path.rsplit("/youtube/v3", 1)[-1]
        self.calls.append(RecordedFetch(path=path, params=params, accept=accept))
        response = self.responses.get(path)
        if response is None:
            return _UpstreamResponse(
                status_code=404,
                body='{"error": {"message": "Not Found"}}',
                content_type="application/json",
            )
        return response

    def paths(self) -> list[str]:
        return [call.path for call in self.calls]


@pytest.fixture
def fake_youtube(monkeypatch: pytest.MonkeyPatch) -> FakeYouTubeApi:
    fake = FakeYouTubeApi()
    monkeypatch.setattr(FETCH_TARGET, fake.fetch)
    return fake


@pytest.fixture
def configure_env(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> Callable[..., Path]:
    def _configure(**overrides: str) -> Path:
        data_dir = tmp_path / "runtime-data"
        data_dir.mkdir(parents=True, exist_ok=True)
        monkeypatch.setenv("TUBESUMMARY_DATA_DIR", str(data_dir))
        monkeypatch.setenv("TUBESUMMARY_YOUTUBE_API_KEY", "test-youtube-key")
        monkeypatch.setenv("TUBESUMMARY_OPENAI_API_KEY", "test-openai-key")
        monkeypatch.setenv("TUBESUMMARY_TELEMETRY_ENABLED", "0")
        for name, value in overrides.items():
            monkeypatch.setenv(f"TUBESUMMARY_{name.upper()}", value)
        reset_cached_dependencies()
        return data_dir

    return _configure


@pytest.fixture
def client(configure_env: Callable[..., Path]) -> Iterator[TestClient]:
    configure_env()
    app = create_app()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    reset_cached_dependencies()
