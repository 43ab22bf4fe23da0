"""
Content Risk Analyzer - Backend API
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

FastAPI server exposing content policy risk analysis.

Data provided by YouTube Data API
https://developers.google.com/youtube
"""

import os
import logging
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

import re
import time
import secrets
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional
import uvicorn

from analyzer import ContentRiskAnalyzer
from channel_context import YouTubeChannelFetcher, fetch_transcript
from config import AnalysisConfig
from errors import InvalidInputError
from model_gateway import build_gateway
from models import AnalysisRequest, AnalysisResult, VideoAnalysisRequest

API_VERSION = "1.0.0"

# Security: Video ID validation pattern (11 chars, alphanumeric + hyphen/underscore)
VIDEO_ID_PATTERN = re.compile(r'^[a-zA-Z0-9_-]{11}$')
CHANNEL_ID_PATTERN = re.compile(r'^[a-zA-Z0-9_-]{1,64}$')

app = FastAPI(
    title="Content Risk Analyzer API",
    description="Scores text and video content against platform policy categories",
    version=API_VERSION
)

# Security headers middleware
@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """Attach security headers (X-Content-Type-Options, X-Frame-Options, etc.)."""
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Permissions-Policy"] = "camera=(), microphone=(), geolocation=()"
    return response

# API Key Authentication middleware (optional: set API_SECRET_KEY in .env to enable)
_api_secret = os.environ.get("API_SECRET_KEY", "").strip()
# Endpoints that don't require authentication
_PUBLIC_ENDPOINTS = {"/health", "/docs", "/openapi.json", "/redoc"}

if _api_secret:
    logger.info("API authentication: ENABLED (API_SECRET_KEY set)")
else:
    logger.warning("API authentication: DISABLED. Set API_SECRET_KEY in .env to require auth.")

@app.middleware("http")
async def api_key_middleware(request: Request, call_next):
    """Require X-API-Key header on protected endpoints when API_SECRET_KEY is configured."""
    if not _api_secret:
        return await call_next(request)

    path = request.url.path.rstrip("/")
    if path in _PUBLIC_ENDPOINTS or request.method == "OPTIONS":
        return await call_next(request)

    provided_key = request.headers.get("X-API-Key", "")
    if not secrets.compare_digest(provided_key, _api_secret):
        return JSONResponse(status_code=401, content={"detail": "Invalid or missing API key"})

    return await call_next(request)

# Per-IP rate limiting middleware
_rate_limit_store: dict[str, list[float]] = {}
RATE_LIMIT_WINDOW = 60  # seconds
RATE_LIMITS = {
    "/analyze": 10,        # 10 requests per minute
    "/analyze-video": 5,   # Multimodal calls are the most expensive
    "/health": 60,
    "/usage": 30,
}
DEFAULT_RATE_LIMIT = 30  # For unlisted endpoints

@app.middleware("http")
async def rate_limit_middleware(request: Request, call_next):
    """Enforce per-IP, per-endpoint rate limits using a sliding window."""
    client_ip = request.client.host if request.client else "unknown"
    path = request.url.path.rstrip("/")
    limit = RATE_LIMITS.get(path, DEFAULT_RATE_LIMIT)
    key = f"{client_ip}:{path}"

    now = time.time()
    timestamps = _rate_limit_store.get(key, [])
    timestamps = [t for t in timestamps if now - t < RATE_LIMIT_WINDOW]

    if len(timestamps) >= limit:
        return JSONResponse(
            status_code=429,
            content={"detail": f"Rate limit exceeded. Max {limit} requests per minute for {path}."}
        )

    timestamps.append(now)
    _rate_limit_store[key] = timestamps

    # Periodic cleanup of stale entries
    if len(_rate_limit_store) > 200:
        cutoff = now - RATE_LIMIT_WINDOW
        stale_keys = [
            k for k, v in _rate_limit_store.items()
            if not v or v[-1] < cutoff
        ]
        for k in stale_keys:
            del _rate_limit_store[k]

    return await call_next(request)

# CORS: local development origins only unless ALLOWED_ORIGINS is set
_allowed_origins = [o.strip() for o in os.environ.get("ALLOWED_ORIGINS", "").split(",") if o.strip()]
if not _allowed_origins:
    _allowed_origins = ["http://localhost:8000", "http://127.0.0.1:8000"]
    logger.warning("CORS: No ALLOWED_ORIGINS set - allowing localhost only (dev mode).")

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "X-API-Key"],
)


@app.exception_handler(InvalidInputError)
async def invalid_input_handler(request: Request, exc: InvalidInputError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


# Initialize components
youtube_api_key = os.environ.get("YOUTUBE_API_KEY")
config = AnalysisConfig.from_env()
gateway = build_gateway(config)
analyzer = ContentRiskAnalyzer(gateway, config)

# Startup validation - log feature availability
_features = {
    "model_providers": gateway.describe(),
    "channel_context": bool(youtube_api_key),
    "video_analysis": bool(gateway.primary and gateway.primary.supports_multimodal),
}
logger.info("=== Feature Availability ===")
for feature, enabled in _features.items():
    if isinstance(enabled, str):
        logger.info(f"  {feature}: {enabled}")
    else:
        status = "ENABLED" if enabled else "DISABLED"
        logger.info(f"  {feature}: {status}")
if not youtube_api_key:
    logger.warning("YOUTUBE_API_KEY not set. Channel context disabled. Set env var to enable.")


async def get_channel_context(channel_id: Optional[str]):
    """Fetch channel statistics when an id and a YouTube key are available"""
    if not channel_id or not youtube_api_key:
        return None
    async with YouTubeChannelFetcher(api_key=youtube_api_key) as fetcher:
        return await fetcher.get_channel_context(channel_id)


# Request models
class AnalyzeTextRequest(BaseModel):
    text: str
    video_context: Optional[str] = Field(None, max_length=20000)
    channel_id: Optional[str] = None

    @field_validator('channel_id')
    @classmethod
    def validate_channel_id_format(cls, v):
        if v is not None and not CHANNEL_ID_PATTERN.match(v):
            raise ValueError('Invalid channel ID format')
        return v


class AnalyzeVideoRequest(BaseModel):
    video_id: Optional[str] = None
    media_url: Optional[str] = Field(None, max_length=2000)
    transcript: Optional[str] = None
    title: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = Field(None, max_length=5000)
    channel_id: Optional[str] = None

    @field_validator('video_id')
    @classmethod
    def validate_video_id_format(cls, v):
        if v is not None and not VIDEO_ID_PATTERN.match(v):
            raise ValueError('Invalid video ID format (must be 11 characters, alphanumeric with hyphens/underscores)')
        return v

    @field_validator('media_url')
    @classmethod
    def validate_media_url(cls, v):
        if v is not None and not v.startswith(("http://", "https://")):
            raise ValueError('media_url must be an http(s) URL')
        return v

    @field_validator('channel_id')
    @classmethod
    def validate_channel_id_format(cls, v):
        if v is not None and not CHANNEL_ID_PATTERN.match(v):
            raise ValueError('Invalid channel ID format')
        return v

    @model_validator(mode="after")
    def require_media(self):
        if not self.video_id and not self.media_url:
            raise ValueError('Either video_id or media_url is required')
        return self


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "version": API_VERSION
    }


@app.post("/analyze", response_model=AnalysisResult)
async def analyze_text(request: AnalyzeTextRequest):
    """
    Analyze text content for policy risk.

    Degraded analyses still return 200; check analysis_metadata.analysis_mode.
    """
    channel_context = await get_channel_context(request.channel_id)
    return await analyzer.analyze(AnalysisRequest(
        text=request.text,
        video_context=request.video_context,
        channel_context=channel_context,
    ))


@app.post("/analyze-video", response_model=AnalysisResult)
async def analyze_video(request: AnalyzeVideoRequest):
    """
    Multi-modal analysis of a video: visual summary first, then the transcript.
    The transcript is fetched when the caller does not send one.
    """
    transcript = request.transcript
    if not transcript and request.video_id:
        transcript = await fetch_transcript(request.video_id)

    metadata = {k: v for k, v in {"title": request.title, "description": request.description}.items() if v}
    channel_context = await get_channel_context(request.channel_id)
    return await analyzer.analyze_video(VideoAnalysisRequest(
        media_ref=request.media_url or request.video_id,
        transcript=transcript or None,
        metadata=metadata,
        channel_context=channel_context,
    ))


@app.get("/usage")
async def get_usage():
    """Token budget and provider call counters"""
    return {
        "budget": gateway.budget.usage(),
        "gateway": gateway.usage(),
    }


if __name__ == "__main__":
    logger.info("Content Risk Analyzer API")
    logger.info("Starting server at http://127.0.0.1:8000")
    logger.info("API docs: http://127.0.0.1:8000/docs")
    # SECURITY: bind to localhost only, never 0.0.0.0 without authentication
    uvicorn.run(app, host="127.0.0.1", port=8000)
