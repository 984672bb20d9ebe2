"""
Compaction of transcript segments into minute-sized blocks for display.
"""

import math
from typing import List

from ..models import Segment

BUCKET_SECONDS = 60


def compact_segments(segments: List[Segment], bucket_seconds: float = BUCKET_SECONDS) -> List[Segment]:
    """
    Merge consecutive segments that start within the same minute.

    Segments are grouped while ``floor(start / bucket_seconds)`` stays the
    same. A merged segment keeps the first start, the largest end and the
    texts joined by single spaces. If the grouped segments disagree on the
    speaker, the merged segment has no speaker.

    Args:
        segments: Segments in global time order
        bucket_seconds: Bucket width in seconds

    Returns:
        New list, never longer than ``segments``
    """
    compacted: List[Segment] = []
    current_bucket = None

    for segment in segments:
        bucket = math.floor(segment.start / bucket_seconds)
        text = segment.text.strip()

        if compacted and bucket == current_bucket:
            merged = compacted[-1]
            if text:
                merged.text = f"{merged.text} {text}" if merged.text else text
            merged.end = max(merged.end, segment.end)
            if merged.speaker != segment.speaker:
                merged.speaker = None
            continue

        compacted.append(Segment(start=segment.start, end=segment.end, text=text, speaker=segment.speaker))
        current_bucket = bucket

    return compacted
