"""Unit tests for time-windowed caption chunking."""

import pytest

from src.pipeline.chunking_service import ChunkingService, clean_caption_text
from src.pipeline.schemas import CaptionSegment


def segments(*pairs: tuple[float, str]) -> list[CaptionSegment]:
    return [CaptionSegment(start=start, duration=2, text=text) for start, text in pairs]


@pytest.mark.unit
class TestCleanCaptionText:
    def test_strips_vtt_tags(self) -> None:
        assert clean_caption_text("<00:00:01.200><c>Hello</c> <c>world</c>") == "Hello world"

    def test_collapses_whitespace(self) -> None:
        assert clean_caption_text("  so   we\nbegin ") == "so we begin"


@pytest.mark.unit
class TestChunkingService:
    """Test suite for ChunkingService windowing."""

    @pytest.fixture
    def chunker(self, config) -> ChunkingService:
        return ChunkingService(config)

    def test_empty_input_returns_no_chunks(self, chunker: ChunkingService) -> None:
        assert chunker.chunk_segments("v1", "p1", []) == []
        assert chunker.chunk_segments("v1", "p1", segments((0, "<c></c>"))) == []

    def test_windows_step_by_duration_minus_overlap(self, chunker: ChunkingService) -> None:
        chunks = chunker.chunk_segments(
            "v1", "p1", segments((0, "a"), (10, "b"), (35, "c"), (50, "d"), (90, "e"))
        )

        assert [c.start_time for c in chunks] == [0, 34, 68]
        assert [c.text for c in chunks] == ["a b c", "c d", "e"]
        assert all(c.duration == 40 for c in chunks)
        assert all(c.video_id == "v1" and c.persona_id == "p1" for c in chunks)
        assert all(not c.embedded for c in chunks)

    def test_overlap_text_is_prepended(self, chunker: ChunkingService) -> None:
        chunks = chunker.chunk_segments("v1", "p1", segments((30, "before"), (36, "after")))

        assert chunks[1].start_time == 34
        assert chunks[1].text == "before after"

    def test_silent_gaps_are_skipped(self, chunker: ChunkingService) -> None:
        chunks = chunker.chunk_segments("v1", "p1", segments((0, "intro"), (200, "outro")))

        assert [(c.start_time, c.text) for c in chunks] == [(0, "intro"), (170, "outro")]

    def test_segments_are_ordered_by_start(self, chunker: ChunkingService) -> None:
        chunks = chunker.chunk_segments("v1", "p1", segments((20, "second"), (5, "first")))

        assert chunks[0].text == "first second"

    def test_window_count_is_capped(self, chunker: ChunkingService) -> None:
        chunks = chunker.chunk_segments("v1", "p1", segments((0, "start"), (100_000, "end")))

        assert [c.text for c in chunks] == ["start"]
