"""
Utility functions for transcript text.

Helpers for timestamp formatting, word/page counting, and rendering
segments as a readable timestamped transcript.
"""

from typing import List

from ..models import Segment, pages_for_words


def format_timestamp(seconds: float) -> str:
    """
    Format seconds as MM:SS or HH:MM:SS.

    Args:
        seconds: Time in seconds

    Returns:
        Formatted time string
    """
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)

    if hours > 0:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def count_words(text: str) -> int:
    """Count whitespace-separated tokens."""
    return len(text.split())


def count_pages(word_count: int) -> int:
    """Pages for ``word_count`` words (250 words per page, 0 for empty)."""
    return pages_for_words(word_count)


def format_segments(segments: List[Segment]) -> str:
    """
    Render segments as ``[MM:SS] [Speaker]: text`` lines.

    Segments without a speaker omit the speaker tag.
    """
    lines = []
    for segment in segments:
        timestamp = format_timestamp(segment.start)
        if segment.speaker:
            lines.append(f"[{timestamp}] [{segment.speaker}]: {segment.text}")
        else:
            lines.append(f"[{timestamp}] {segment.text}")

    return "\n\n".join(lines)
