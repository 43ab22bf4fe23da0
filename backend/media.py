"""
Media - Frame extraction for multi-modal analysis
Downloads a video (or opens a local file) and samples evenly spaced JPEG
frames with ffmpeg. Frames are returned base64-encoded, ready for an
image_url content part.
"""

import os
import re
import base64
import asyncio
import logging
import tempfile
import subprocess
import shutil
from typing import Optional

from yt_dlp import YoutubeDL
from yt_dlp.utils import DownloadError

logger = logging.getLogger(__name__)

DEFAULT_NUM_FRAMES = 5
FFMPEG_TIMEOUT = 30
FALLBACK_TIMESTAMPS = [5, 15, 30, 45, 55]

VIDEO_ID_PATTERN = re.compile(r'^[a-zA-Z0-9_-]{11}$')


def resolve_media_url(media_ref: str) -> Optional[str]:
    """Map a bare YouTube ID or an http(s) URL to a downloadable URL; None for local paths"""
    if media_ref.startswith(("http://", "https://")):
        return media_ref
    if VIDEO_ID_PATTERN.match(media_ref) and not os.path.exists(media_ref):
        return f"https://www.youtube.com/watch?v={media_ref}"
    return None


def frame_timestamps(duration: Optional[float], num_frames: int) -> list[int]:
    if duration and duration > 0:
        interval = duration / (num_frames + 1)
        return [int(interval * i) for i in range(1, num_frames + 1)]
    return FALLBACK_TIMESTAMPS[:num_frames]


def _probe_duration(video_path: str) -> Optional[float]:
    cmd = [
        'ffprobe', '-v', 'error', '-show_entries', 'format=duration',
        '-of', 'default=noprint_wrappers=1:nokey=1', video_path,
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, timeout=FFMPEG_TIMEOUT, text=True)
        return float(result.stdout.strip())
    except (OSError, subprocess.SubprocessError, ValueError):
        return None


def _download(url: str, temp_dir: str) -> tuple[Optional[str], Optional[float]]:
    ydl_opts = {
        'format': 'worst[ext=mp4]/worst',  # Smallest video for speed
        'outtmpl': os.path.join(temp_dir, 'video.%(ext)s'),
        'quiet': True,
        'no_warnings': True,
    }
    with YoutubeDL(ydl_opts) as ydl:
        info = ydl.extract_info(url, download=True)
        duration = info.get('duration') if info else None

    for name in os.listdir(temp_dir):
        if name.startswith('video'):
            return os.path.join(temp_dir, name), duration
    return None, duration


def extract_frames(media_ref: str, num_frames: int = DEFAULT_NUM_FRAMES) -> list[dict]:
    """
    Sample frames from a local video file, a video URL or a YouTube ID.

    Blocking (yt-dlp + ffmpeg); call through load_frames() from async code.
    Returns [] when the media cannot be fetched or decoded.
    """
    temp_dir = tempfile.mkdtemp()
    frames = []

    try:
        url = resolve_media_url(media_ref)
        if url:
            video_path, duration = _download(url, temp_dir)
        else:
            video_path = media_ref if os.path.exists(media_ref) else None
            duration = _probe_duration(video_path) if video_path else None

        if not video_path:
            logger.warning(f"Could not find video for {media_ref}")
            return []

        for i, ts in enumerate(frame_timestamps(duration, num_frames)):
            frame_path = os.path.join(temp_dir, f'frame_{i}.jpg')
            cmd = [
                'ffmpeg', '-ss', str(ts), '-i', video_path,
                '-vframes', '1', '-q:v', '2',
                '-y', frame_path,
            ]
            subprocess.run(cmd, capture_output=True, timeout=FFMPEG_TIMEOUT)

            if os.path.exists(frame_path):
                with open(frame_path, 'rb') as f:
                    frames.append({
                        "timestamp": ts,
                        "data": base64.b64encode(f.read()).decode('utf-8'),
                        "index": i + 1,
                    })

        logger.info(f"Extracted {len(frames)} frame(s) from {media_ref}")
        return frames

    except (DownloadError, OSError, subprocess.SubprocessError) as e:
        logger.error(f"Frame extraction error for {media_ref}: {e}")
        return []
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)


async def load_frames(media_ref: str, num_frames: int = DEFAULT_NUM_FRAMES) -> list[dict]:
    return await asyncio.to_thread(extract_frames, media_ref, num_frames)
