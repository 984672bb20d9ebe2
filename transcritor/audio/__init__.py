"""
Audio pipeline for chunked interview transcription.

This package turns an uploaded recording into a speaker-labeled transcript:
ffmpeg normalization and chunking, per-chunk transcription with the OpenAI
speech-to-text API, speaker attribution with a chat model, and compaction of
segments into minute-sized blocks.

Main components:
- FFmpegToolkit: Duration probing, normalization and chunk splitting
- ChunkTranscriber: Speech-to-text for one chunk, re-based to the global timeline
- SpeakerAttributor: Best-effort interviewer/interviewee labeling
- compact_segments: Merge segments that fall in the same minute

Example usage:
    from transcritor.audio import FFmpegToolkit, ChunkTranscriber

    toolkit = FFmpegToolkit()
    normalized = toolkit.normalize(path, Quality.STANDARD)
    for chunk in toolkit.split_into_chunks(normalized, 600, Quality.STANDARD):
        result = ChunkTranscriber(api_key).transcribe_chunk(chunk.path, chunk.start_offset)
"""

from .compaction import compact_segments
from .media import (
    AudioChunk,
    FFmpegToolkit,
    normalize_audio,
    plan_chunk_offsets,
    probe_duration,
    split_into_chunks,
)
from .speakers import SpeakerAttributor, apply_speaker_labels, build_indexed_transcript, parse_speaker_mapping
from .transcription import ChunkTranscriber, ChunkTranscript, rebase_segments
from .utils import count_pages, count_words, format_segments, format_timestamp

__all__ = [
    "AudioChunk",
    "ChunkTranscriber",
    "ChunkTranscript",
    "FFmpegToolkit",
    "SpeakerAttributor",
    "apply_speaker_labels",
    "build_indexed_transcript",
    "compact_segments",
    "count_pages",
    "count_words",
    "format_segments",
    "format_timestamp",
    "normalize_audio",
    "parse_speaker_mapping",
    "plan_chunk_offsets",
    "probe_duration",
    "rebase_segments",
    "split_into_chunks",
]
