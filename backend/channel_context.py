"""
Channel Context Fetcher
Fetches channel statistics from the YouTube Data API and video transcripts,
and turns them into the ChannelContext used by content-origin detection.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

import httpx
from youtube_transcript_api import YouTubeTranscriptApi

from models import ChannelContext

logger = logging.getLogger(__name__)

CHANNELS_URL = "https://www.googleapis.com/youtube/v3/channels"

# --- Channel-level AI heuristics (conservative: only obvious patterns score) ---
SUB_TO_VIDEO_RATIO_THRESHOLD = 5000   # Extremely high subscribers per video
VIEW_TO_SUB_RATIO_THRESHOLD = 0.05    # Very low engagement
VIDEOS_PER_DAY_THRESHOLD = 5          # Extremely high upload frequency
SUB_TO_VIDEO_POINTS = 5
VIEW_TO_SUB_POINTS = 10
VIDEOS_PER_DAY_POINTS = 15

# Deductions for established channels
ESTABLISHED_CHANNEL_DAYS = 2 * 365
ESTABLISHED_CHANNEL_DEDUCTION = 10
LARGE_CHANNEL_SUBSCRIBERS = 50000
LARGE_CHANNEL_DEDUCTION = 15
HIGH_VIDEO_COUNT = 100
HIGH_VIDEO_COUNT_DEDUCTION = 10


def channel_age_days(account_date: Optional[str], now: Optional[datetime] = None) -> int:
    """Days since the channel was created; 0 when the date is unknown"""
    if not account_date:
        return 0
    try:
        created = datetime.fromisoformat(account_date.replace("Z", "+00:00"))
    except ValueError:
        return 0
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0, (now - created).days)


def calculate_channel_ai_probability(channel: ChannelContext, now: Optional[datetime] = None) -> int:
    """Channel-level AI likelihood (0-100) from public statistics only"""
    age = channel_age_days(channel.account_date, now)
    videos_per_day = channel.video_count / max(age, 1)
    sub_to_video = channel.subscriber_count / max(channel.video_count, 1)
    view_to_sub = channel.view_count / max(channel.subscriber_count, 1)

    score = 0
    if sub_to_video > SUB_TO_VIDEO_RATIO_THRESHOLD:
        score += SUB_TO_VIDEO_POINTS
    if view_to_sub < VIEW_TO_SUB_RATIO_THRESHOLD:
        score += VIEW_TO_SUB_POINTS
    if videos_per_day > VIDEOS_PER_DAY_THRESHOLD:
        score += VIDEOS_PER_DAY_POINTS

    if age > ESTABLISHED_CHANNEL_DAYS:
        score = max(0, score - ESTABLISHED_CHANNEL_DEDUCTION)
    if channel.subscriber_count > LARGE_CHANNEL_SUBSCRIBERS:
        score = max(0, score - LARGE_CHANNEL_DEDUCTION)
    if channel.video_count > HIGH_VIDEO_COUNT:
        score = max(0, score - HIGH_VIDEO_COUNT_DEDUCTION)

    return min(score, 100)


def _to_int(value) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


class YouTubeChannelFetcher:
    """
    Fetches channel snippet and statistics.
    Requires a YouTube Data API key; without one every lookup returns None.
    """

    def __init__(self, api_key: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key
        self.client = client or httpx.AsyncClient(timeout=30.0)

    async def __aenter__(self) -> "YouTubeChannelFetcher":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _make_request_with_retry(self, url: str, params: dict, retries: int = 3) -> Optional[httpx.Response]:
        """GET with retry on 5xx and network errors; 4xx is returned as-is"""
        delay = 1.0
        last_exception = None

        for attempt in range(retries):
            try:
                response = await self.client.get(url, params=params)
                if response.status_code < 500:
                    return response
                logger.warning(f"Server error {response.status_code}, retrying (attempt {attempt+1}/{retries})...")
            except (httpx.RequestError, httpx.TimeoutException) as e:
                last_exception = e
                logger.warning(f"Network error {e!r}, retrying (attempt {attempt+1}/{retries})...")

            if attempt < retries - 1:
                await asyncio.sleep(delay)
                delay *= 2.0

        if last_exception:
            raise last_exception
        return None

    async def get_channel_context(self, channel_id: str) -> Optional[ChannelContext]:
        """Channel statistics as a ChannelContext, or None when unavailable"""
        if not self.api_key:
            logger.info("YouTube API key not configured, skipping channel context")
            return None

        params = {
            "part": "snippet,statistics",
            "id": channel_id,
            "key": self.api_key,
        }
        try:
            response = await self._make_request_with_retry(CHANNELS_URL, params)
        except httpx.HTTPError as e:
            logger.error(f"Error fetching channel {channel_id}: {e}")
            return None

        if response is None or response.status_code != 200:
            logger.error(f"YouTube API error: {response.status_code if response is not None else 'no response'}")
            return None

        items = response.json().get("items") or []
        if not items:
            logger.info(f"Channel {channel_id} not found")
            return None

        snippet = items[0].get("snippet", {})
        stats = items[0].get("statistics", {})
        channel = ChannelContext(
            channel_id=channel_id,
            title=snippet.get("title", ""),
            description=snippet.get("description", ""),
            account_date=snippet.get("publishedAt"),
            subscriber_count=_to_int(stats.get("subscriberCount")),
            video_count=_to_int(stats.get("videoCount")),
            view_count=_to_int(stats.get("viewCount")),
        )
        probability = calculate_channel_ai_probability(channel)
        logger.info(f"Channel {channel_id}: {channel.subscriber_count} subscribers, AI probability {probability}")
        return channel.model_copy(update={"ai_probability": probability})

    async def close(self) -> None:
        await self.client.aclose()


async def fetch_transcript(video_id: str) -> str:
    """Transcript text for a video, or "" when none is available"""
    def _fetch():
        return YouTubeTranscriptApi().fetch(video_id)

    try:
        # youtube_transcript_api is blocking
        transcript = await asyncio.to_thread(_fetch)
    except Exception as e:
        logger.warning(f"Transcript extraction failed for {video_id}: {e}")
        return ""
    return " ".join(segment.text for segment in transcript)
