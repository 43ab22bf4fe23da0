"""
API tests: request validation, error mapping, rate limiting and security
headers. The analyzer is mocked; pipeline behaviour lives in test_analyzer.
"""

import pytest
from unittest.mock import patch, AsyncMock
from httpx import AsyncClient, ASGITransport

import main
from main import app, _rate_limit_store
from errors import EmptyInputError, InvalidInputError
from fallback import build_emergency_result


@pytest.fixture(autouse=True)
def clear_rate_limits():
    _rate_limit_store.clear()
    yield
    _rate_limit_store.clear()


@pytest.fixture
async def client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def mock_analyzer():
    analyzer = AsyncMock()
    analyzer.analyze.return_value = build_emergency_result()
    analyzer.analyze_video.return_value = build_emergency_result()
    with patch.object(main, "analyzer", analyzer):
        yield analyzer


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "version": main.API_VERSION}

    @pytest.mark.asyncio
    async def test_security_headers(self, client):
        response = await client.get("/health")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert "Referrer-Policy" in response.headers


class TestAnalyzeEndpoint:
    @pytest.mark.asyncio
    async def test_returns_analysis(self, client, mock_analyzer):
        response = await client.post("/analyze", json={"text": "Some harmless text about cooking."})
        assert response.status_code == 200
        body = response.json()
        assert body["risk_score"] == 50
        assert body["analysis_metadata"]["analysis_mode"] == "emergency"

        request = mock_analyzer.analyze.call_args.args[0]
        assert request.text == "Some harmless text about cooking."
        assert request.channel_context is None

    @pytest.mark.asyncio
    async def test_invalid_input_is_400(self, client, mock_analyzer):
        mock_analyzer.analyze.side_effect = InvalidInputError("Text too short for analysis (3 < 10 characters)")
        response = await client.post("/analyze", json={"text": "abc"})
        assert response.status_code == 400
        assert "too short" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_empty_input_is_400(self, client, mock_analyzer):
        mock_analyzer.analyze.side_effect = EmptyInputError("No text provided for analysis")
        response = await client.post("/analyze", json={"text": "   "})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_missing_text_is_422(self, client, mock_analyzer):
        response = await client.post("/analyze", json={})
        assert response.status_code == 422
        mock_analyzer.analyze.assert_not_called()

    @pytest.mark.asyncio
    async def test_bad_channel_id_is_422(self, client, mock_analyzer):
        response = await client.post("/analyze", json={"text": "Some text here", "channel_id": "<script>"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_channel_context_fetched(self, client, mock_analyzer):
        with patch.object(main, "get_channel_context", new=AsyncMock(return_value=None)) as fetch:
            response = await client.post("/analyze", json={"text": "Some text here", "channel_id": "UC_abc-123"})
        assert response.status_code == 200
        fetch.assert_awaited_once_with("UC_abc-123")


class TestAnalyzeVideoEndpoint:
    @pytest.mark.asyncio
    async def test_requires_video_id_or_url(self, client, mock_analyzer):
        response = await client.post("/analyze-video", json={"transcript": "hello there everyone"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_rejects_bad_video_id(self, client, mock_analyzer):
        response = await client.post("/analyze-video", json={"video_id": "'; DROP TABLE--"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_rejects_non_http_url(self, client, mock_analyzer):
        response = await client.post("/analyze-video", json={"media_url": "file:///etc/passwd"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_fetches_transcript_when_missing(self, client, mock_analyzer):
        with patch.object(main, "fetch_transcript", new=AsyncMock(return_value="fetched words")) as fetch:
            response = await client.post("/analyze-video", json={"video_id": "dQw4w9WgXcQ", "title": "Bread"})
        assert response.status_code == 200
        fetch.assert_awaited_once_with("dQw4w9WgXcQ")

        request = mock_analyzer.analyze_video.call_args.args[0]
        assert request.media_ref == "dQw4w9WgXcQ"
        assert request.transcript == "fetched words"
        assert request.metadata == {"title": "Bread"}

    @pytest.mark.asyncio
    async def test_media_url_with_transcript(self, client, mock_analyzer):
        with patch.object(main, "fetch_transcript", new=AsyncMock()) as fetch:
            response = await client.post("/analyze-video", json={
                "media_url": "https://cdn.example.com/clip.mp4",
                "transcript": "given transcript",
            })
        assert response.status_code == 200
        fetch.assert_not_awaited()
        request = mock_analyzer.analyze_video.call_args.args[0]
        assert request.media_ref == "https://cdn.example.com/clip.mp4"
        assert request.transcript == "given transcript"

    @pytest.mark.asyncio
    async def test_nothing_to_analyze_is_400(self, client, mock_analyzer):
        mock_analyzer.analyze_video.side_effect = InvalidInputError("No transcript, metadata or visual context")
        with patch.object(main, "fetch_transcript", new=AsyncMock(return_value="")):
            response = await client.post("/analyze-video", json={"video_id": "dQw4w9WgXcQ"})
        assert response.status_code == 400


class TestUsage:
    @pytest.mark.asyncio
    async def test_usage_shape(self, client):
        response = await client.get("/usage")
        assert response.status_code == 200
        body = response.json()
        assert {"used", "limit", "remaining", "in_flight"} <= set(body["budget"])
        assert {"providers", "calls", "errors", "failovers"} <= set(body["gateway"])


class TestRateLimiting:
    @pytest.mark.asyncio
    async def test_analyze_rate_limited(self, client, mock_analyzer):
        limit = main.RATE_LIMITS["/analyze"]
        for _ in range(limit):
            response = await client.post("/analyze", json={"text": "Some harmless text"})
            assert response.status_code == 200
        response = await client.post("/analyze", json={"text": "Some harmless text"})
        assert response.status_code == 429
        assert "Rate limit exceeded" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_limits_are_per_endpoint(self, client, mock_analyzer):
        for _ in range(main.RATE_LIMITS["/analyze-video"]):
            await client.post("/analyze-video", json={"video_id": "dQw4w9WgXcQ", "transcript": "words here"})
        blocked = await client.post("/analyze-video", json={"video_id": "dQw4w9WgXcQ", "transcript": "words here"})
        assert blocked.status_code == 429
        assert (await client.get("/health")).status_code == 200


class TestApiKey:
    @pytest.mark.asyncio
    async def test_key_required_when_configured(self, client, mock_analyzer):
        with patch.object(main, "_api_secret", "s3cret"):
            denied = await client.post("/analyze", json={"text": "Some harmless text"})
            allowed = await client.post(
                "/analyze", json={"text": "Some harmless text"}, headers={"X-API-Key": "s3cret"},
            )
            health = await client.get("/health")
        assert denied.status_code == 401
        assert allowed.status_code == 200
        assert health.status_code == 200
