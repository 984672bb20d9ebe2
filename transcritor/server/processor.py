"""
Transcription processing: the per-job state machine.

A job moves preparing -> processing -> completed | error. The processor
persists the job record after every transition so that clients polling the
API see chunk-by-chunk progress:

1. Preparing: probe the upload, plan the chunks and persist one pending
   ChunkProgress per chunk, then normalize and split the audio.
2. Processing: transcribe chunks strictly in order. A failed chunk is marked
   ``error`` and fails the whole job; later chunks stay ``pending``.
3. Finishing: join texts and segments in chunk order, label speakers
   (best-effort), compact segments, count words/pages, settle credits once
   and mark the job ``completed``.

Upload, normalized and chunk files are removed whatever the outcome.
"""

import logging
import os
import shutil
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from ..audio import (
    AudioChunk,
    ChunkTranscriber,
    FFmpegToolkit,
    SpeakerAttributor,
    compact_segments,
    count_pages,
    count_words,
    plan_chunk_offsets,
)
from ..config import ConfigManager
from ..errors import JobCancelledError, JobNotFoundError, MediaToolError, TranscritorError
from ..models import ChunkProgress, ChunkStatus, JobStatus, Quality, Segment, TranscriptionJob
from .credit_ledger import CreditLedger
from .job_manager import JobManager

logger = logging.getLogger(__name__)


def _error_message(error: Exception) -> str:
    if isinstance(error, TranscritorError):
        return error.message
    return str(error) or error.__class__.__name__


class TranscriptionProcessor:
    """Runs transcription jobs and owns their persisted progress."""

    def __init__(
        self,
        job_manager: JobManager,
        ledger: CreditLedger,
        toolkit: Optional[FFmpegToolkit] = None,
        transcriber: Optional[ChunkTranscriber] = None,
        attributor: Optional[SpeakerAttributor] = None,
        max_chunk_duration: Optional[float] = None,
    ):
        """
        Initialize the processor.

        Args:
            job_manager: JobManager instance for state management
            ledger: Credit ledger charged once per completed job
            toolkit: Media tools (default: configured ffmpeg)
            transcriber: Speech-to-text client (default: configured OpenAI)
            attributor: Speaker labeler (default: configured OpenAI)
            max_chunk_duration: Chunk length in seconds (default: MAX_CHUNK_DURATION)
        """
        self.job_manager = job_manager
        self.ledger = ledger
        self.toolkit = toolkit or FFmpegToolkit.from_config()
        self.transcriber = transcriber or ChunkTranscriber.from_config()
        self.attributor = attributor or SpeakerAttributor.from_config()
        self.max_chunk_duration = max_chunk_duration or ConfigManager.get_float("MAX_CHUNK_DURATION")

    def admit_upload(
        self,
        user_id: str,
        upload_path: str,
        original_filename: str,
        title: Optional[str] = None,
        requested_quality: Quality = Quality.STANDARD,
    ) -> TranscriptionJob:
        """
        Create a job for an uploaded file, or reject the upload.

        Free-trial jobs always run at standard quality; premium is reserved
        for credit-paying users.

        Raises:
            InputError: No entitlement, or the free-trial file is too large
        """
        file_size = os.path.getsize(upload_path)
        use_free_trial = self.ledger.resolve_entitlement(user_id, file_size)
        quality = Quality.STANDARD if use_free_trial else requested_quality

        job = self.job_manager.create_job(
            user_id=user_id,
            title=title or original_filename,
            original_filename=original_filename,
            file_size=file_size,
            quality=quality,
            use_free_trial=use_free_trial,
        )

        try:
            self.job_manager.save_upload(job.id, upload_path)
            self.ledger.place_hold(user_id, job.id, use_free_trial)
        except Exception:
            self.job_manager.delete_job(job.id)
            raise

        logger.info(
            f"Admitted job {job.id} for user {user_id} "
            f"({file_size} bytes, {quality.value}, {'free trial' if use_free_trial else 'credits'})"
        )
        return job

    def process_job(self, job_id: str, cancel_event: Optional[threading.Event] = None) -> TranscriptionJob:
        """
        Run a job to completion.

        Args:
            job_id: Job identifier
            cancel_event: Set to stop the job between steps

        Returns:
            The completed job

        Raises:
            Exception: Whatever failed the job, after it was marked ``error``
        """
        start_time = time.time()
        job = self.job_manager.require_job(job_id)
        upload_path = self.job_manager.get_upload_path(job_id)

        try:
            logger.info(f"Starting processing for job {job_id}")
            if upload_path is None:
                raise MediaToolError(f"Uploaded file not found for job {job_id}")

            chunks = self._prepare(job, upload_path, cancel_event)
            self._transcribe_chunks(job, chunks, cancel_event)
            self._finish(job)

            logger.info(f"Job {job_id} completed in {time.time() - start_time:.2f} seconds")
            return job

        except Exception as e:
            logger.error(f"Processing failed for job {job_id}: {e}")
            self._fail(job, e)
            raise

        finally:
            self._cleanup(job_id)

    def _check_cancelled(self, job: TranscriptionJob, cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise JobCancelledError(job.id)

    def _prepare(
        self, job: TranscriptionJob, upload_path: Path, cancel_event: Optional[threading.Event]
    ) -> List[AudioChunk]:
        """Plan chunks, persist pending progress, then normalize and split."""
        duration = self.toolkit.probe_duration(upload_path)
        if duration <= 0:
            logger.warning(f"Unknown duration for job {job.id}, processing as a single chunk")

        offsets = plan_chunk_offsets(duration, self.max_chunk_duration)
        job.duration = duration
        job.total_chunks = len(offsets)
        job.chunk_progress = [
            ChunkProgress(chunk_index=i, total_chunks=len(offsets), start_offset=offset)
            for i, offset in enumerate(offsets)
        ]
        self.job_manager.save_job(job)
        logger.info(f"Job {job.id}: {duration:.1f}s of audio planned as {job.total_chunks} chunk(s)")

        self._check_cancelled(job, cancel_event)
        job_dir = self.job_manager.get_job_dir(job.id)
        normalized_path = self.toolkit.normalize(upload_path, job.quality, output_dir=job_dir)

        self._check_cancelled(job, cancel_event)
        chunks = self.toolkit.split_into_chunks(
            normalized_path,
            self.max_chunk_duration,
            job.quality,
            duration=duration,
            output_dir=self.job_manager.get_chunks_dir(job.id),
        )

        if len(chunks) != job.total_chunks:
            raise RuntimeError(f"Job {job.id}: split produced {len(chunks)} chunks, planned {job.total_chunks}")

        job.transition(JobStatus.PROCESSING)
        self.job_manager.save_job(job)
        return chunks

    def _transcribe_chunks(
        self, job: TranscriptionJob, chunks: List[AudioChunk], cancel_event: Optional[threading.Event]
    ) -> None:
        """Transcribe chunks one at a time, persisting after each transition."""
        for chunk, progress in zip(chunks, job.chunk_progress):
            self._check_cancelled(job, cancel_event)

            progress.transition(ChunkStatus.PROCESSING)
            self.job_manager.save_job(job)

            try:
                result = self.transcriber.transcribe_chunk(chunk.path, chunk.start_offset, chunk.index)
            except Exception as e:
                progress.transition(ChunkStatus.ERROR)
                progress.error = _error_message(e)
                self.job_manager.save_job(job)
                raise

            progress.text = result.text
            progress.segments = result.segments
            progress.transition(ChunkStatus.COMPLETED)
            self.job_manager.save_job(job)
            logger.info(f"Job {job.id}: chunk {job.completed_chunks}/{job.total_chunks} completed")

    def _finish(self, job: TranscriptionJob) -> None:
        """Assemble the transcript, settle credits and mark the job completed."""
        texts = [progress.text.strip() for progress in job.chunk_progress if progress.text and progress.text.strip()]
        transcription_text = " ".join(texts)

        segments: List[Segment] = []
        for progress in job.chunk_progress:
            segments.extend(progress.segments or [])

        labeled = self.attributor.attribute(segments)
        compacted = compact_segments(labeled)

        word_count = count_words(transcription_text)
        page_count = count_pages(word_count)

        job.transcription_text = transcription_text
        job.segments = compacted
        job.word_count = word_count

        charged = self._settle(job, page_count)

        job.completed_at = datetime.now()
        job.transition(JobStatus.COMPLETED)
        try:
            self.job_manager.save_job(job)
        except Exception:
            # The completed record never reached disk: undo the charge and let _fail record the error
            job.status = JobStatus.PROCESSING
            job.completed_at = None
            self._refund(job, charged)
            raise

    def _settle(self, job: TranscriptionJob, page_count: int) -> Optional[int]:
        """Charge the user once for this job. Returns the credits charged, None if already settled."""
        if job.credits_settled:
            logger.warning(f"Job {job.id} already settled, skipping charge")
            return None

        charged = self.ledger.settle_job(job.user_id, job.id, page_count, job.use_free_trial)
        job.credits_settled = True
        return charged

    def _refund(self, job: TranscriptionJob, charged: Optional[int]) -> None:
        """Reverse a settlement made by this run."""
        if charged is None:
            return

        try:
            self.ledger.refund_job(job.user_id, job.id, charged, job.use_free_trial)
            job.credits_settled = False
        except (TranscritorError, OSError) as e:
            logger.error(f"Could not refund job {job.id}: {e}")

    def _fail(self, job: TranscriptionJob, error: Exception) -> None:
        """Mark a job ``error`` and release its credit hold. Chunk state is kept."""
        if not job.status.is_terminal:
            job.transition(JobStatus.ERROR)
        job.error = _error_message(error)
        job.transcription_text = None
        job.segments = None

        try:
            self.job_manager.save_job(job)
        except JobNotFoundError:
            logger.warning(f"Job {job.id} was deleted before its failure could be recorded")
        except OSError as e:
            logger.error(f"Could not record failure of job {job.id}: {e}")

        if not job.credits_settled:
            try:
                self.ledger.release_hold(job.user_id, job.id)
            except TranscritorError as e:
                logger.error(f"Could not release hold for job {job.id}: {e}")

    def _cleanup(self, job_id: str) -> None:
        """Delete the upload, the normalized file and all chunks of a job."""
        job_dir = self.job_manager.get_job_dir(job_id)
        if not job_dir.exists():
            return

        metadata_name = self.job_manager.FILES["metadata"]
        for entry in job_dir.iterdir():
            if entry.name == metadata_name or entry.name.startswith(".metadata-"):
                continue
            try:
                if entry.is_dir():
                    shutil.rmtree(entry)
                else:
                    entry.unlink()
            except OSError as e:
                logger.warning(f"Failed to delete {entry}: {e}")

        logger.debug(f"Cleaned up media files for job {job_id}")
