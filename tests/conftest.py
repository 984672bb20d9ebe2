"""Pytest configuration and fixtures for transcritor tests."""

import logging
from pathlib import Path
from unittest.mock import Mock

import pytest

from transcritor.audio import AudioChunk, ChunkTranscript, plan_chunk_offsets
from transcritor.models import Segment
from transcritor.server.credit_ledger import CreditLedger
from transcritor.server.job_manager import JobManager
from transcritor.server.processor import TranscriptionProcessor

# Configure logging for tests
logging.basicConfig(level=logging.INFO)


class FakeToolkit:
    """Media toolkit that writes placeholder chunk files instead of calling ffmpeg."""

    def __init__(self, duration: float = 120.0):
        self.duration = duration
        self.normalize_calls = []
        self.split_calls = []

    def probe_duration(self, path):
        return self.duration

    def normalize(self, input_path, quality, output_dir=None):
        self.normalize_calls.append((Path(input_path), quality))
        output_path = Path(output_dir) / "upload.normalized.mp3"
        output_path.write_bytes(b"normalized")
        return output_path

    def split_into_chunks(self, normalized_path, max_chunk_duration, quality, duration=None, output_dir=None):
        self.split_calls.append((Path(normalized_path), max_chunk_duration, quality))
        offsets = plan_chunk_offsets(duration, max_chunk_duration)
        if len(offsets) == 1:
            return [AudioChunk(index=0, path=Path(normalized_path), start_offset=0.0)]

        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        chunks = []
        for index, offset in enumerate(offsets):
            chunk_path = output_dir / f"chunk_{index:03d}.mp3"
            chunk_path.write_bytes(b"chunk")
            chunks.append(AudioChunk(index=index, path=chunk_path, start_offset=offset))
        return chunks


def fake_chunk_transcript(chunk_path, start_offset=0.0, chunk_index=0):
    """Two segments per chunk, already on the global timeline."""
    first = f"chunk {chunk_index} first part"
    second = f"chunk {chunk_index} second part"
    return ChunkTranscript(
        text=f"{first} {second}",
        segments=[
            Segment(start=start_offset + 1.0, end=start_offset + 5.0, text=first),
            Segment(start=start_offset + 70.0, end=start_offset + 75.0, text=second),
        ],
    )


@pytest.fixture
def job_manager(tmp_path):
    """JobManager writing into a temporary directory."""
    return JobManager(str(tmp_path / "jobs"))


@pytest.fixture
def ledger(tmp_path):
    """CreditLedger backed by a temporary users file."""
    return CreditLedger(str(tmp_path / "jobs" / "users.json"))


@pytest.fixture
def toolkit():
    return FakeToolkit()


@pytest.fixture
def transcriber():
    """Mock transcriber returning deterministic chunk transcripts."""
    mock = Mock()
    mock.transcribe_chunk.side_effect = fake_chunk_transcript
    return mock


@pytest.fixture
def attributor():
    """Mock speaker attributor labeling everything as the interviewer."""
    mock = Mock()
    mock.attribute.side_effect = lambda segments: [
        Segment(start=s.start, end=s.end, text=s.text, speaker="Entrevistador") for s in segments
    ]
    return mock


@pytest.fixture
def processor(job_manager, ledger, toolkit, transcriber, attributor):
    return TranscriptionProcessor(
        job_manager,
        ledger,
        toolkit=toolkit,
        transcriber=transcriber,
        attributor=attributor,
        max_chunk_duration=600,
    )


@pytest.fixture
def make_upload(tmp_path):
    """Factory creating an upload file of a given size."""

    def _make_upload(name: str = "interview.mp3", size: int = 1024) -> str:
        path = tmp_path / "uploads" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"\0" * size)
        return str(path)

    return _make_upload
