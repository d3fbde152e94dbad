"""Catalog service for paging through a channel's uploads via the YouTube Data API."""

import asyncio
import re
from datetime import datetime
from typing import Any

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from src.utils.logging import get_logger

from .config import PipelineConfig
from .errors import NotFoundError, TransientError
from .schemas import CatalogPage, ChannelInfo, VideoInfo

logger = get_logger(__name__)

ISO_DURATION = re.compile(r"^PT(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?$")

CHANNEL_URL = re.compile(r"youtube\.com/channel/([\w-]+)")
HANDLE_URL = re.compile(r"youtube\.com/(?:c/|user/|@)([\w-]+)")
CHANNEL_ID = re.compile(r"^UC[\w-]{22}$")


def parse_channel_ref(value: str) -> tuple[str | None, str | None]:
    """Split user input into ``(channel_id, handle)``; exactly one is set.

    Accepts channel URLs, ``/c/``, ``/user/`` and ``/@`` URLs, ``@handle``,
    bare ``UC...`` channel ids and bare handles.
    """
    value = value.strip()
    if match := CHANNEL_URL.search(value):
        return match.group(1), None
    if match := HANDLE_URL.search(value):
        return None, match.group(1)
    if CHANNEL_ID.match(value):
        return value, None
    return None, value.removeprefix("@")


def parse_iso_duration(value: str) -> int:
    """Convert an ISO 8601 duration like ``PT1H2M3S`` into seconds.

    Unparseable values count as zero.
    """
    match = ISO_DURATION.match(value or "")
    if not match:
        return 0
    hours, minutes, seconds = (int(part) if part else 0 for part in match.groups())
    return hours * 3600 + minutes * 60 + seconds


def format_duration(seconds: int) -> str:
    """Format seconds as H:MM:SS or M:SS.

    Examples:
        >>> format_duration(125)
        "2:05"
        >>> format_duration(3725)
        "1:02:05"
    """
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    secs = seconds % 60

    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


class CatalogService:
    """Service for listing a channel's videos one page at a time.

    The continuation cursor is the YouTube ``pageToken`` of the channel's
    uploads playlist, which is stable across calls.
    """

    def __init__(self, config: PipelineConfig, youtube: Any | None = None):
        """Initialize catalog service.

        Args:
            config: Configuration object with the YouTube API key.
            youtube: Pre-built YouTube Data API resource (built from config
                when omitted).
        """
        self.config = config
        self.youtube = youtube or build(
            "youtube", "v3", developerKey=config.youtube_api_key, cache_discovery=False
        )
        logger.info(
            "catalog_service_initialized",
            api_key_present=bool(config.youtube_api_key),
            page_size=config.catalog_page_size,
        )

    async def _execute(self, request: Any, operation: str) -> dict[str, Any]:
        """Run a blocking API request off the event loop."""
        try:
            return await asyncio.to_thread(request.execute)
        except HttpError as e:
            status = getattr(e.resp, "status", None)
            if status == 404:
                raise NotFoundError(f"{operation}: resource not found") from e
            logger.warning(
                "catalog_request_failed",
                operation=operation,
                status=status,
            )
            raise TransientError(f"{operation} failed with status {status}") from e

    async def get_channel_info(self, channel_ref: str) -> ChannelInfo:
        """Look up a channel by id, handle or channel URL.

        Raises:
            NotFoundError: If no channel matches.
        """
        channel_id, handle = parse_channel_ref(channel_ref)
        params: dict[str, Any] = {"part": "snippet,statistics", "maxResults": 1}
        if channel_id:
            params["id"] = channel_id
        else:
            params["forHandle"] = f"@{handle}"

        response = await self._execute(self.youtube.channels().list(**params), "channels.list")
        items = response.get("items") or []
        if not items:
            raise NotFoundError(f"Channel not found: {channel_ref}")

        channel = items[0]
        snippet = channel.get("snippet", {})
        thumbnails = snippet.get("thumbnails", {})
        title = snippet.get("title", "")
        custom_url = snippet.get("customUrl")
        username = (
            custom_url.lstrip("@") if custom_url else re.sub(r"[^a-zA-Z0-9]", "", title).lower()
        )

        info = ChannelInfo(
            channel_id=channel["id"],
            title=title,
            username=username,
            description=snippet.get("description", ""),
            thumbnail_url=(
                thumbnails.get("high", {}).get("url")
                or thumbnails.get("medium", {}).get("url")
                or thumbnails.get("default", {}).get("url")
                or ""
            ),
            video_count=int(channel.get("statistics", {}).get("videoCount", 0)),
        )
        logger.info("channel_resolved", channel_ref=channel_ref, channel_id=info.channel_id)
        return info

    async def get_uploads_playlist_id(self, channel_id: str) -> str:
        """Resolve the uploads playlist for a channel.

        Raises:
            NotFoundError: If the channel does not exist.
        """
        response = await self._execute(
            self.youtube.channels().list(part="contentDetails", id=channel_id),
            "channels.list",
        )
        items = response.get("items") or []
        if not items:
            raise NotFoundError(f"Channel not found or has no uploads: {channel_id}")
        return items[0]["contentDetails"]["relatedPlaylists"]["uploads"]

    async def get_video_details(self, video_ids: list[str]) -> list[VideoInfo]:
        """Fetch snippet, duration and statistics for a batch of videos."""
        if not video_ids:
            return []

        response = await self._execute(
            self.youtube.videos().list(
                part="snippet,contentDetails,statistics",
                id=",".join(video_ids),
                maxResults=len(video_ids),
            ),
            "videos.list",
        )

        videos = []
        for item in response.get("items", []):
            snippet = item.get("snippet", {})
            thumbnails = snippet.get("thumbnails", {})
            published = snippet.get("publishedAt")
            videos.append(
                VideoInfo(
                    video_id=item["id"],
                    title=snippet.get("title", ""),
                    description=snippet.get("description", ""),
                    thumbnail_url=(
                        thumbnails.get("high", {}).get("url")
                        or thumbnails.get("default", {}).get("url")
                        or ""
                    ),
                    duration=format_duration(
                        parse_iso_duration(item.get("contentDetails", {}).get("duration", ""))
                    ),
                    published_at=(
                        datetime.fromisoformat(published.replace("Z", "+00:00"))
                        if published
                        else None
                    ),
                    view_count=int(item.get("statistics", {}).get("viewCount", 0)),
                )
            )
        return videos

    async def list_videos(self, channel_id: str, cursor: str | None = None) -> CatalogPage:
        """Fetch one page of a channel's uploads.

        Args:
            channel_id: YouTube channel id.
            cursor: Page token from the previous call, or None for the first page.

        Returns:
            CatalogPage with the page's videos, the next cursor and whether
            more pages exist.

        Raises:
            NotFoundError: If the channel does not exist.
            TransientError: If the API request fails.
        """
        logger.info("catalog_page_fetch_started", channel_id=channel_id, cursor=cursor)

        playlist_id = await self.get_uploads_playlist_id(channel_id)
        response = await self._execute(
            self.youtube.playlistItems().list(
                part="contentDetails",
                playlistId=playlist_id,
                maxResults=self.config.catalog_page_size,
                pageToken=cursor,
            ),
            "playlistItems.list",
        )

        video_ids = [
            item["contentDetails"]["videoId"]
            for item in response.get("items", [])
            if item.get("contentDetails", {}).get("videoId")
        ]
        videos = await self.get_video_details(video_ids)
        next_cursor = response.get("nextPageToken")

        logger.info(
            "catalog_page_fetched",
            channel_id=channel_id,
            videos=len(videos),
            has_more=next_cursor is not None,
        )
        return CatalogPage(items=videos, next_cursor=next_cursor, has_more=next_cursor is not None)
