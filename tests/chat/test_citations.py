"""Unit tests for reference validation."""

import pytest

from src.chat.citations import validate_references
from src.chat.schemas import CitationClaim, RetrievedChunk


def chunk(video_id: str, start_time: float, title: str = "") -> RetrievedChunk:
    return RetrievedChunk(
        id=f"{video_id}-{start_time:g}",
        video_id=video_id,
        video_title=title or f"Title {video_id}",
        start_time=start_time,
        duration=40,
        text="excerpt",
        score=0.8,
    )


def claim(video_id: str, timestamp: float, confidence: float = 0.9) -> CitationClaim:
    return CitationClaim(video_id=video_id, timestamp=timestamp, confidence=confidence)


@pytest.mark.unit
class TestValidateReferences:
    @pytest.fixture
    def context(self) -> list[RetrievedChunk]:
        return [chunk("v1", 0), chunk("v1", 68), chunk("v2", 340)]

    def test_unknown_videos_are_dropped(self, context) -> None:
        references = validate_references([claim("ghost", 10), claim("v2", 340)], context)

        assert [r.video_id for r in references] == ["v2"]

    def test_closest_chunk_is_cited(self, context) -> None:
        references = validate_references([claim("v1", 60)], context)

        assert references[0].timestamp == 68
        assert references[0].title == "Title v1"

    def test_confidence_is_clamped(self, context) -> None:
        references = validate_references([claim("v1", 0, 1.7), claim("v2", 340, -0.2)], context)

        assert [r.confidence for r in references] == [1.0, 0.0]

    def test_same_chunk_is_cited_once(self, context) -> None:
        references = validate_references([claim("v1", 2), claim("v1", 5)], context)

        assert len(references) == 1

    def test_limit_is_applied(self) -> None:
        context = [chunk("v1", i * 34) for i in range(8)]
        claims = [claim("v1", i * 34) for i in range(8)]

        references = validate_references(claims, context, max_references=5)

        assert [r.timestamp for r in references] == [0, 34, 68, 102, 136]

    def test_empty_context_yields_nothing(self) -> None:
        assert validate_references([claim("v1", 0)], []) == []
