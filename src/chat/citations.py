"""Validation of model-proposed video references against retrieval context."""

from src.utils.logging import get_logger

from .schemas import CitationClaim, RetrievedChunk, VideoReference

logger = get_logger(__name__)


def validate_references(
    claims: list[CitationClaim],
    context: list[RetrievedChunk],
    max_references: int = 5,
) -> list[VideoReference]:
    """Turn model claims into references grounded in the retrieved chunks.

    Claims naming a video that is not in ``context`` are dropped and logged.
    When a video contributed several chunks, the chunk whose start time is
    closest to the claimed timestamp is cited. Confidence is clamped to
    [0, 1] and repeated citations of the same chunk are collapsed.

    Args:
        claims: References as returned by the selection call.
        context: Chunks the answer was generated from.
        max_references: Maximum references to return.

    Returns:
        Validated references in claim order.

    Examples:
        >>> validate_references([CitationClaim(video_id="ghost", timestamp=0, confidence=1)], [])
        []
    """
    by_video: dict[str, list[RetrievedChunk]] = {}
    for chunk in context:
        by_video.setdefault(chunk.video_id, []).append(chunk)

    references: list[VideoReference] = []
    seen: set[tuple[str, float]] = set()

    for claim in claims:
        candidates = by_video.get(claim.video_id)
        if not candidates:
            logger.warning(
                "citation_unknown_video_dropped",
                video_id=claim.video_id,
                known_videos=sorted(by_video),
            )
            continue

        chunk = min(candidates, key=lambda c: abs(c.start_time - claim.timestamp))
        key = (chunk.video_id, chunk.start_time)
        if key in seen:
            continue
        seen.add(key)

        references.append(
            VideoReference(
                video_id=chunk.video_id,
                title=chunk.video_title,
                timestamp=chunk.start_time,
                confidence=min(max(claim.confidence, 0.0), 1.0),
            )
        )
        if len(references) >= max_references:
            break

    return references
