"""Chunking service for time-windowed caption segmentation."""

import re

from src.utils.logging import get_logger

from .config import PipelineConfig
from .schemas import CaptionChunk, CaptionSegment

logger = get_logger(__name__)

# Inline timing and styling tags left over from WebVTT captions
TIMING_TAG = re.compile(r"<[\d:.]+>")
STYLE_TAG = re.compile(r"</?c>")

# Trailing buffer after the last segment, in seconds
TAIL_BUFFER_SECONDS = 10

MAX_WINDOWS = 1000


def clean_caption_text(text: str) -> str:
    """Strip WebVTT inline tags and collapse whitespace."""
    text = STYLE_TAG.sub("", TIMING_TAG.sub("", text))
    return " ".join(text.split())


class ChunkingService:
    """Service for merging timed caption segments into overlapping windows.

    Each window covers ``chunk_duration_seconds`` of video and starts
    ``chunk_duration_seconds * (1 - overlap)`` after the previous one. Text
    from the overlap region is prepended to the next window so that an answer
    spanning a boundary is still retrievable from one chunk.
    """

    def __init__(self, config: PipelineConfig):
        self.config = config
        self.window = config.chunk_duration_seconds
        self.overlap = config.chunk_duration_seconds * (config.chunk_overlap_percent / 100)

    def chunk_segments(
        self, video_id: str, persona_id: str, segments: list[CaptionSegment]
    ) -> list[CaptionChunk]:
        """Chunk caption segments into time windows.

        Args:
            video_id: External video id the segments belong to.
            persona_id: Persona owning the video.
            segments: Timed caption segments in any order.

        Returns:
            List of CaptionChunk objects, un-embedded, ordered by start time.
        """
        timeline = sorted(
            (
                (segment.start, text)
                for segment in segments
                if (text := clean_caption_text(segment.text))
            ),
            key=lambda entry: entry[0],
        )
        if not timeline:
            logger.info("chunking_skipped_empty", video_id=video_id)
            return []

        last_start = timeline[-1][0]
        step = self.window - self.overlap
        chunks: list[CaptionChunk] = []
        window_start = 0.0
        index = 0

        while window_start < last_start + TAIL_BUFFER_SECONDS and index < MAX_WINDOWS:
            window_end = window_start + self.window
            entries = [text for start, text in timeline if window_start <= start < window_end]

            # Silent gaps produce empty windows, which are skipped
            text = " ".join(entries)
            if index > 0 and entries:
                overlap_entries = [
                    t for start, t in timeline if window_start - self.overlap <= start < window_start
                ]
                if overlap_entries:
                    text = " ".join(overlap_entries) + " " + text

            if text.strip():
                chunks.append(
                    CaptionChunk(
                        video_id=video_id,
                        persona_id=persona_id,
                        start_time=round(window_start),
                        duration=self.window,
                        text=text.strip(),
                    )
                )

            window_start += step
            index += 1

        logger.info(
            "chunking_completed",
            video_id=video_id,
            segments=len(timeline),
            chunks_created=len(chunks),
        )
        return chunks
