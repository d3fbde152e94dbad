"""Storage service for personas, videos and caption chunks in Supabase."""

from datetime import UTC, datetime
from typing import Any

from postgrest.exceptions import APIError
from supabase import Client

from src.utils.logging import get_logger

from .errors import ConflictError, NotFoundError
from .job_store import UNIQUE_VIOLATION
from .schemas import (
    CaptionChunk,
    CaptionsStatus,
    ChannelInfo,
    DiscoveryStatus,
    Persona,
    Video,
    VideoInfo,
)

logger = get_logger(__name__)


class StorageService:
    """Service for relational reads and writes of pipeline state.

    This service handles persona cursor updates, idempotent video ingestion,
    caption-status transitions and caption chunk bookkeeping. Every write that
    the stages rely on for idempotency (unique video ids, conditional status
    transitions) is expressed here.
    """

    def __init__(self, client: Client):
        """Initialize storage service with an injected Supabase client.

        Args:
            client: Supabase client created once at startup.
        """
        self.client = client

    # ==========================================================================
    # Personas
    # ==========================================================================

    async def get_persona(self, persona_id: str) -> Persona:
        """Fetch a persona by id.

        Raises:
            NotFoundError: If the persona does not exist.
        """
        response = (
            self.client.table("personas").select("*").eq("id", persona_id).execute()
        )
        if not response.data:
            logger.warning("persona_not_found", persona_id=persona_id)
            raise NotFoundError(f"Persona not found: {persona_id}")
        return Persona.model_validate(response.data[0])

    async def create_persona(self, channel: ChannelInfo) -> Persona:
        """Register a persona for a channel with an empty catalog cursor.

        Raises:
            ConflictError: If a persona already exists for the channel or
                its username is taken.
        """
        existing = (
            self.client.table("personas")
            .select("id")
            .eq("channel_id", channel.channel_id)
            .execute()
        )
        if existing.data:
            raise ConflictError(f"Persona already exists for channel {channel.channel_id}")

        row = {
            "channel_id": channel.channel_id,
            "username": channel.username,
            "title": channel.title,
            "description": channel.description,
            "thumbnail_url": channel.thumbnail_url,
            "video_count": channel.video_count,
            "continuation_token": None,
            "discovery_status": str(DiscoveryStatus.PENDING),
        }
        try:
            response = self.client.table("personas").insert(row).execute()
        except APIError as e:
            if e.code == UNIQUE_VIOLATION:
                raise ConflictError(
                    f"Persona already exists for channel {channel.channel_id}"
                ) from e
            logger.exception(
                "persona_create_failed",
                channel_id=channel.channel_id,
                error_type=type(e).__name__,
            )
            raise

        persona = Persona.model_validate(response.data[0])
        logger.info(
            "persona_created",
            persona_id=persona.id,
            channel_id=persona.channel_id,
            namespace=persona.namespace,
        )
        return persona

    async def update_persona_discovery(
        self,
        persona_id: str,
        continuation_token: str | None,
        discovery_status: DiscoveryStatus,
        video_count: int,
    ) -> None:
        """Advance the persona's catalog cursor after a successful page."""
        now = datetime.now(UTC).isoformat()
        try:
            self.client.table("personas").update(
                {
                    "continuation_token": continuation_token,
                    "discovery_status": str(discovery_status),
                    "video_count": video_count,
                    "last_video_discovered": now,
                }
            ).eq("id", persona_id).execute()
            logger.info(
                "persona_discovery_updated",
                persona_id=persona_id,
                discovery_status=str(discovery_status),
                has_token=continuation_token is not None,
                video_count=video_count,
            )

        except Exception as e:
            logger.exception(
                "persona_update_failed",
                persona_id=persona_id,
                error_type=type(e).__name__,
            )
            raise

    # ==========================================================================
    # Videos
    # ==========================================================================

    async def insert_new_videos(
        self, persona_id: str, videos: list[VideoInfo]
    ) -> list[str]:
        """Insert videos that are not stored yet.

        Existing video ids are left untouched, which makes repeated discovery
        runs over the same page safe.

        Returns:
            Ids of the videos that were actually inserted.
        """
        if not videos:
            return []

        rows = [
            {
                "id": video.video_id,
                "persona_id": persona_id,
                "title": video.title,
                "description": video.description,
                "thumbnail_url": video.thumbnail_url,
                "duration": video.duration,
                "published_at": (
                    video.published_at.isoformat() if video.published_at else None
                ),
                "view_count": video.view_count,
                "captions_status": str(CaptionsStatus.PENDING),
            }
            for video in videos
        ]

        try:
            response = (
                self.client.table("videos")
                .upsert(rows, on_conflict="id", ignore_duplicates=True)
                .execute()
            )
        except Exception as e:
            logger.exception(
                "video_insert_failed",
                persona_id=persona_id,
                count=len(rows),
                error_type=type(e).__name__,
            )
            raise

        inserted = [row["id"] for row in response.data or []]
        logger.info(
            "videos_inserted",
            persona_id=persona_id,
            offered=len(rows),
            inserted=len(inserted),
        )
        return inserted

    async def get_video(self, video_id: str) -> Video:
        """Fetch a video by its external id.

        Raises:
            NotFoundError: If the video does not exist.
        """
        response = (
            self.client.table("videos")
            .select(
                "id, persona_id, title, captions_status, captions_error, "
                "external_run_id, processing_started_at"
            )
            .eq("id", video_id)
            .execute()
        )
        if not response.data:
            logger.warning("video_not_found", video_id=video_id)
            raise NotFoundError(f"Video not found: {video_id}")
        return Video.model_validate(response.data[0])

    async def count_videos(self, persona_id: str) -> int:
        response = (
            self.client.table("videos")
            .select("id", count="exact")
            .eq("persona_id", persona_id)
            .execute()
        )
        return response.count or 0

    async def get_video_titles(self, video_ids: list[str]) -> dict[str, str]:
        """Map video ids to titles; unknown ids are simply absent."""
        if not video_ids:
            return {}
        response = (
            self.client.table("videos")
            .select("id, title")
            .in_("id", video_ids)
            .execute()
        )
        return {row["id"]: row["title"] for row in response.data or [] if row.get("title")}

    async def start_video_run(self, video_id: str, run_id: str) -> None:
        """Persist a freshly started external run and enter ``processing``."""
        now = datetime.now(UTC).isoformat()
        self.client.table("videos").update(
            {
                "external_run_id": run_id,
                "processing_started_at": now,
                "captions_status": str(CaptionsStatus.PROCESSING),
                "captions_error": None,
            }
        ).eq("id", video_id).execute()
        logger.info("video_run_started", video_id=video_id, run_id=run_id)

    async def clear_video_run(self, video_id: str) -> None:
        """Forget the stored external run so the next attempt starts a new one."""
        self.client.table("videos").update(
            {"external_run_id": None, "processing_started_at": None}
        ).eq("id", video_id).execute()
        logger.info("video_run_cleared", video_id=video_id)

    async def update_video_status(
        self,
        video_id: str,
        status: CaptionsStatus,
        error_message: str | None = None,
        expected_status: CaptionsStatus | None = None,
    ) -> bool:
        """Transition a video's caption status.

        Args:
            video_id: External video id.
            status: New caption status.
            error_message: Failure reason, stored in ``captions_error``.
            expected_status: When given, only transition from this status.

        Returns:
            True if a row was updated.
        """
        data: dict[str, Any] = {
            "captions_status": str(status),
            "captions_error": error_message,
        }

        try:
            query = self.client.table("videos").update(data).eq("id", video_id)
            if expected_status is not None:
                query = query.eq("captions_status", str(expected_status))
            response = query.execute()

        except Exception as e:
            logger.exception(
                "video_status_update_failed",
                video_id=video_id,
                status=str(status),
                error_type=type(e).__name__,
            )
            raise

        updated = bool(response.data)
        logger.info(
            "video_status_updated",
            video_id=video_id,
            status=str(status),
            updated=updated,
            error_message=error_message,
        )
        return updated

    # ==========================================================================
    # Captions
    # ==========================================================================

    async def count_captions(self, video_id: str) -> int:
        response = (
            self.client.table("captions")
            .select("id", count="exact")
            .eq("video_id", video_id)
            .execute()
        )
        return response.count or 0

    async def replace_captions(self, video_id: str, chunks: list[CaptionChunk]) -> None:
        """Delete a video's stale chunks and insert the new set un-embedded."""
        try:
            self.client.table("captions").delete().eq("video_id", video_id).execute()

            rows = [
                {
                    "video_id": chunk.video_id,
                    "persona_id": chunk.persona_id,
                    "start_time": chunk.start_time,
                    "duration": chunk.duration,
                    "text": chunk.text,
                    "embedded": False,
                }
                for chunk in chunks
            ]
            if rows:
                self.client.table("captions").insert(rows).execute()

            logger.info("captions_replaced", video_id=video_id, count=len(rows))

        except Exception as e:
            logger.exception(
                "captions_replace_failed",
                video_id=video_id,
                count=len(chunks),
                error_type=type(e).__name__,
            )
            raise

    async def list_unembedded_captions(
        self, persona_id: str, video_id: str | None = None, limit: int = 100
    ) -> list[CaptionChunk]:
        """Select up to ``limit`` caption chunks still waiting for a vector."""
        query = (
            self.client.table("captions")
            .select("id, video_id, persona_id, start_time, duration, text, embedded")
            .eq("persona_id", persona_id)
            .eq("embedded", False)
        )
        if video_id:
            query = query.eq("video_id", video_id)

        response = query.limit(limit).execute()
        return [CaptionChunk.model_validate(row) for row in response.data or []]

    async def count_unembedded_captions(self, persona_id: str, video_id: str) -> int:
        response = (
            self.client.table("captions")
            .select("id", count="exact")
            .eq("persona_id", persona_id)
            .eq("video_id", video_id)
            .eq("embedded", False)
            .execute()
        )
        return response.count or 0

    async def mark_caption_embedded(self, caption_id: str) -> None:
        self.client.table("captions").update({"embedded": True}).eq(
            "id", caption_id
        ).execute()

    async def list_caption_ids(self, video_id: str) -> list[str]:
        """Ids of a video's stored caption chunks (also their vector ids)."""
        response = (
            self.client.table("captions").select("id").eq("video_id", video_id).execute()
        )
        return [str(row["id"]) for row in response.data or []]
