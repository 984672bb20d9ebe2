"""
Chunk transcription using the OpenAI speech-to-text API.

Each chunk is transcribed on its own with segment-level timestamps. The API
reports times relative to the chunk, so every segment is shifted by the
chunk's start offset before it leaves this module: callers only ever see the
global timeline of the original recording.

Failures are not retried here. They are wrapped in ChunkTranscriptionError
and propagate to the processor, which fails the whole job.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional

from ..config import ConfigManager
from ..errors import ChunkTranscriptionError
from ..models import Segment

logger = logging.getLogger(__name__)


@dataclass
class ChunkTranscript:
    """Text and globally-timed segments of one chunk."""

    text: str
    segments: List[Segment]


def rebase_segments(segments: List[Segment], offset: float) -> List[Segment]:
    """Shift chunk-relative segments onto the global timeline."""
    return [segment.shifted(offset) for segment in segments]


def _field(item: Any, name: str, default: Any = None) -> Any:
    """Read ``name`` from an SDK object or a plain dict."""
    if isinstance(item, dict):
        return item.get(name, default)
    return getattr(item, name, default)


def parse_segments(raw_segments: Optional[List[Any]]) -> List[Segment]:
    """
    Convert API segments to Segment objects (chunk-relative times).

    Args:
        raw_segments: ``segments`` from a verbose_json transcription response

    Returns:
        List of segments in API order
    """
    segments = []
    for raw in raw_segments or []:
        start = float(_field(raw, "start", 0.0))
        end = max(float(_field(raw, "end", start)), start)
        text = (_field(raw, "text", "") or "").strip()
        segments.append(Segment(start=start, end=end, text=text))
    return segments


class ChunkTranscriber:
    """
    Transcribe audio chunks with the OpenAI transcription endpoint.

    The OpenAI client is created on first use so that constructing a
    transcriber never touches the network.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "whisper-1",
        language: str = "pt",
        timeout: float = 300,
        base_url: Optional[str] = None,
    ):
        """
        Args:
            api_key: OpenAI API authentication key
            model: Transcription model (default: "whisper-1")
            language: ISO-639-1 spoken language hint
            timeout: Per-request timeout in seconds
            base_url: Optional custom API endpoint
        """
        self.api_key = api_key
        self.model = model
        self.language = language
        self.timeout = timeout
        self.base_url = base_url
        self.client = None

    @classmethod
    def from_config(cls) -> "ChunkTranscriber":
        return cls(
            api_key=ConfigManager.get("OPENAI_API_KEY"),
            model=ConfigManager.get("TRANSCRIPTION_MODEL"),
            language=ConfigManager.get("TRANSCRIPTION_LANGUAGE"),
            timeout=ConfigManager.get_float("TRANSCRIPTION_TIMEOUT"),
            base_url=ConfigManager.get("LLM_API_BASE_URL") or None,
        )

    def _load_client(self):
        if self.client is not None:
            return self.client

        from openai import OpenAI

        if self.base_url:
            self.client = OpenAI(api_key=self.api_key, base_url=self.base_url, timeout=self.timeout)
        else:
            self.client = OpenAI(api_key=self.api_key, timeout=self.timeout)
        logger.info(f"OpenAI transcription client loaded (model: {self.model})")
        return self.client

    def transcribe_chunk(self, chunk_path: Path, start_offset: float = 0.0, chunk_index: int = 0) -> ChunkTranscript:
        """
        Transcribe one chunk and place its segments on the global timeline.

        Args:
            chunk_path: Audio file of at most 25MB
            start_offset: Chunk start on the original timeline (seconds)
            chunk_index: Position of the chunk, used in error reports

        Returns:
            ChunkTranscript with stripped text and offset segments

        Raises:
            ChunkTranscriptionError: The API call failed or returned garbage
        """
        try:
            client = self._load_client()
            with open(chunk_path, "rb") as audio_file:
                response = client.audio.transcriptions.create(
                    file=audio_file,
                    model=self.model,
                    language=self.language,
                    response_format="verbose_json",
                    timestamp_granularities=["segment"],
                )
            text = (_field(response, "text", "") or "").strip()
            segments = parse_segments(_field(response, "segments"))
        except Exception as e:
            logger.error(f"Transcription failed for chunk {chunk_index} ({chunk_path}): {e}")
            raise ChunkTranscriptionError(chunk_index, str(e)) from e

        logger.info(f"Chunk {chunk_index} transcribed: {len(segments)} segments at offset {start_offset:.1f}s")
        return ChunkTranscript(text=text, segments=rebase_segments(segments, start_offset))
