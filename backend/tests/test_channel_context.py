from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

import channel_context
from channel_context import (
    YouTubeChannelFetcher,
    calculate_channel_ai_probability,
    channel_age_days,
    fetch_transcript,
)
from models import ChannelContext

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def mock_response(status_code=200, payload=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload or {}
    return response


CHANNEL_PAYLOAD = {
    "items": [{
        "snippet": {"title": "Bread Lab", "description": "Baking", "publishedAt": "2025-12-01T00:00:00Z"},
        "statistics": {"subscriberCount": "1200", "videoCount": "300", "viewCount": "50"},
    }]
}


class TestChannelHeuristics:
    def test_age_days(self):
        assert channel_age_days("2025-12-02T00:00:00Z", NOW) == 30
        assert channel_age_days(None, NOW) == 0
        assert channel_age_days("not a date", NOW) == 0
        # Future dates never go negative
        assert channel_age_days("2027-01-01T00:00:00Z", NOW) == 0

    def test_ordinary_channel_scores_zero(self):
        channel = ChannelContext(
            account_date="2020-01-01T00:00:00Z",
            subscriber_count=20000,
            video_count=200,
            view_count=2_000_000,
        )
        assert calculate_channel_ai_probability(channel, NOW) == 0

    def test_upload_flood_low_engagement(self):
        # 300 videos in 30 days, 50 views for 1200 subscribers
        channel = ChannelContext(
            account_date="2025-12-02T00:00:00Z",
            subscriber_count=1200,
            video_count=300,
            view_count=50,
        )
        # +10 engagement, +15 frequency, -10 for more than 100 videos
        assert calculate_channel_ai_probability(channel, NOW) == 15

    def test_deductions_floor_at_zero(self):
        channel = ChannelContext(
            account_date="2010-01-01T00:00:00Z",
            subscriber_count=100000,
            video_count=500,
            view_count=10,
        )
        assert calculate_channel_ai_probability(channel, NOW) == 0

    def test_subscribers_per_video(self):
        channel = ChannelContext(
            account_date="2025-06-01T00:00:00Z",
            subscriber_count=30000,
            video_count=2,
            view_count=100000,
        )
        assert calculate_channel_ai_probability(channel, NOW) == 5


class TestYouTubeChannelFetcher:
    @pytest.mark.asyncio
    async def test_no_api_key(self):
        client = MagicMock()
        client.get = AsyncMock()
        fetcher = YouTubeChannelFetcher(api_key=None, client=client)
        assert await fetcher.get_channel_context("UC123") is None
        client.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_channel_found(self):
        client = MagicMock()
        client.get = AsyncMock(return_value=mock_response(200, CHANNEL_PAYLOAD))
        fetcher = YouTubeChannelFetcher(api_key="key", client=client)

        channel = await fetcher.get_channel_context("UC123")

        assert channel.channel_id == "UC123"
        assert channel.title == "Bread Lab"
        assert channel.subscriber_count == 1200
        assert channel.video_count == 300
        assert channel.view_count == 50
        assert 0 <= channel.ai_probability <= 100
        params = client.get.call_args.kwargs["params"]
        assert params["id"] == "UC123"
        assert params["part"] == "snippet,statistics"

    @pytest.mark.asyncio
    async def test_channel_not_found(self):
        client = MagicMock()
        client.get = AsyncMock(return_value=mock_response(200, {"items": []}))
        fetcher = YouTubeChannelFetcher(api_key="key", client=client)
        assert await fetcher.get_channel_context("UCmissing") is None

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        client = MagicMock()
        client.get = AsyncMock(return_value=mock_response(403))
        fetcher = YouTubeChannelFetcher(api_key="key", client=client)
        assert await fetcher.get_channel_context("UC123") is None
        assert client.get.call_count == 1

    @pytest.mark.asyncio
    async def test_server_error_retried(self):
        client = MagicMock()
        client.get = AsyncMock(side_effect=[mock_response(503), mock_response(200, CHANNEL_PAYLOAD)])
        fetcher = YouTubeChannelFetcher(api_key="key", client=client)

        with patch("channel_context.asyncio.sleep", new=AsyncMock()) as sleep:
            channel = await fetcher.get_channel_context("UC123")

        assert channel is not None
        assert client.get.call_count == 2
        sleep.assert_awaited_once_with(1.0)

    @pytest.mark.asyncio
    async def test_network_errors_exhaust_retries(self):
        client = MagicMock()
        client.get = AsyncMock(side_effect=httpx.ConnectError("down"))
        fetcher = YouTubeChannelFetcher(api_key="key", client=client)

        with patch("channel_context.asyncio.sleep", new=AsyncMock()) as sleep:
            assert await fetcher.get_channel_context("UC123") is None

        assert client.get.call_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_context_manager_closes_client(self):
        client = MagicMock()
        client.aclose = AsyncMock()
        async with YouTubeChannelFetcher(api_key="key", client=client):
            pass
        client.aclose.assert_awaited_once()


class TestFetchTranscript:
    @pytest.mark.asyncio
    async def test_joins_segments(self):
        api = MagicMock()
        api.fetch.return_value = [SimpleNamespace(text="hello"), SimpleNamespace(text="world")]
        with patch.object(channel_context, "YouTubeTranscriptApi", return_value=api):
            assert await fetch_transcript("dQw4w9WgXcQ") == "hello world"
        api.fetch.assert_called_once_with("dQw4w9WgXcQ")

    @pytest.mark.asyncio
    async def test_unavailable_transcript(self):
        api = MagicMock()
        api.fetch.side_effect = RuntimeError("Transcripts are disabled")
        with patch.object(channel_context, "YouTubeTranscriptApi", return_value=api):
            assert await fetch_transcript("dQw4w9WgXcQ") == ""
