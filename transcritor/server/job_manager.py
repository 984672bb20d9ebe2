"""
Filesystem-based state management for transcription jobs.

Each job gets a dedicated directory holding:
- metadata.json: the TranscriptionJob record (status, chunk progress, transcript)
- upload.<ext>: the uploaded media until processing finishes
- intermediate files (normalized audio, chunks/) while the job runs

Every save replaces metadata.json in a single atomic rename, so a reader
polling a job never sees a half-written record.
"""

import json
import logging
import os
import shutil
import tempfile
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from ..audio.utils import count_words
from ..errors import JobNotFoundError
from ..models import JobStatus, Quality, Segment, TranscriptionJob

logger = logging.getLogger(__name__)


class JobManager:
    """Manages transcription jobs using one directory per job."""

    def __init__(self, jobs_dir: str = "server_jobs"):
        """
        Initialize the job manager.

        Args:
            jobs_dir: Directory to store all job directories
        """
        self.jobs_dir = Path(jobs_dir)
        self.jobs_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

        self.FILES = {
            "metadata": "metadata.json",
            "upload": "upload",
            "chunks": "chunks",
        }

    def create_job(
        self,
        user_id: str,
        title: str,
        original_filename: str,
        file_size: int,
        quality: Quality = Quality.STANDARD,
        use_free_trial: bool = False,
    ) -> TranscriptionJob:
        """
        Create a new job in the ``preparing`` state.

        Args:
            user_id: Owner of the job
            title: Display title
            original_filename: Name of the uploaded file
            file_size: Size of the uploaded file in bytes
            quality: Quality tier the job runs with
            use_free_trial: Whether the job is paid by the free trial

        Returns:
            The persisted job record
        """
        job = TranscriptionJob(
            id=str(uuid.uuid4()),
            user_id=user_id,
            title=title,
            original_filename=original_filename,
            file_size=file_size,
            quality=quality,
            use_free_trial=use_free_trial,
        )
        job.transition(JobStatus.PREPARING)

        self.get_job_dir(job.id).mkdir(parents=True, exist_ok=True)
        self.save_job(job)
        return job

    def get_job_dir(self, job_id: str) -> Path:
        """Get the directory path for a job."""
        return self.jobs_dir / job_id

    def get_chunks_dir(self, job_id: str) -> Path:
        """Directory for a job's chunk files."""
        return self.get_job_dir(job_id) / self.FILES["chunks"]

    def job_exists(self, job_id: str) -> bool:
        """Check if a job exists."""
        return (self.get_job_dir(job_id) / self.FILES["metadata"]).exists()

    def save_upload(self, job_id: str, source_path: str) -> Path:
        """
        Copy the uploaded media into the job directory.

        Args:
            job_id: Job identifier
            source_path: Path to the uploaded file

        Returns:
            Path of the stored upload
        """
        if not self.job_exists(job_id):
            raise JobNotFoundError(f"Job {job_id} does not exist")

        suffix = Path(source_path).suffix.lower()
        target_path = self.get_job_dir(job_id) / f"{self.FILES['upload']}{suffix}"
        shutil.copy2(source_path, target_path)
        return target_path

    def get_upload_path(self, job_id: str) -> Optional[Path]:
        """Get the path to the uploaded media for a job, if still present."""
        if not self.job_exists(job_id):
            return None

        # upload.<ext> only, not intermediates such as upload.normalized.mp3
        upload_name = self.FILES["upload"]
        matches = sorted(path for path in self.get_job_dir(job_id).glob(f"{upload_name}.*") if path.stem == upload_name)
        return matches[0] if matches else None

    def get_job(self, job_id: str) -> Optional[TranscriptionJob]:
        """Load a job record, or None if it does not exist."""
        metadata_path = self.get_job_dir(job_id) / self.FILES["metadata"]
        if not metadata_path.exists():
            return None

        try:
            with open(metadata_path, "r", encoding="utf-8") as f:
                return TranscriptionJob.from_dict(json.load(f))
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            logger.error(f"Corrupt metadata for job {job_id}: {e}")
            return None

    def require_job(self, job_id: str) -> TranscriptionJob:
        """Load a job record or raise JobNotFoundError."""
        job = self.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} does not exist")
        return job

    def save_job(self, job: TranscriptionJob) -> None:
        """
        Persist a job record with a single atomic write.

        Raises:
            JobNotFoundError: The job directory is gone (job deleted)
        """
        job_dir = self.get_job_dir(job.id)
        if not job_dir.exists():
            raise JobNotFoundError(f"Job {job.id} does not exist")

        job.updated_at = datetime.now()
        payload = json.dumps(job.to_dict(), ensure_ascii=False, indent=2)

        with self._lock:
            fd, tmp_path = tempfile.mkstemp(dir=job_dir, prefix=".metadata-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                os.replace(tmp_path, job_dir / self.FILES["metadata"])
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise

    def list_jobs(
        self, user_id: Optional[str] = None, status_filter: Optional[str] = None, limit: Optional[int] = 100
    ) -> List[TranscriptionJob]:
        """
        List jobs, newest first.

        Args:
            user_id: Only jobs owned by this user
            status_filter: Filter by status (pending, preparing, processing, completed, error)
            limit: Maximum number of jobs to return (None for all)
        """
        jobs = []

        for job_dir in self.jobs_dir.iterdir():
            if not job_dir.is_dir():
                continue

            job = self.get_job(job_dir.name)
            if job is None:
                continue
            if user_id is not None and job.user_id != user_id:
                continue
            if status_filter and job.status.value != status_filter:
                continue

            jobs.append(job)

        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs[:limit]

    def search_jobs(self, user_id: str, query: str, limit: int = 100) -> List[TranscriptionJob]:
        """Jobs of ``user_id`` whose title or transcript contains ``query`` (case-insensitive)."""
        needle = query.lower()
        matches = [
            job
            for job in self.list_jobs(user_id=user_id, limit=None)
            if needle in job.title.lower() or needle in (job.transcription_text or "").lower()
        ]
        return matches[:limit]

    def update_transcript(
        self,
        job_id: str,
        title: Optional[str] = None,
        transcription_text: Optional[str] = None,
        segments: Optional[List[Segment]] = None,
    ) -> TranscriptionJob:
        """
        Apply user edits to a job.

        The title can always be changed; text and segments only once the job
        is completed. Word count follows edited text; billing is not redone.

        Raises:
            JobNotFoundError: Unknown job
            ValueError: Transcript edits on a job that is not completed
        """
        job = self.require_job(job_id)

        if (transcription_text is not None or segments is not None) and job.status != JobStatus.COMPLETED:
            raise ValueError(f"Job {job_id} is not completed")

        if title is not None:
            job.title = title
        if transcription_text is not None:
            job.transcription_text = transcription_text
            job.word_count = count_words(transcription_text)
        if segments is not None:
            job.segments = segments

        self.save_job(job)
        return job

    def delete_job(self, job_id: str) -> bool:
        """
        Delete a job and all its files.

        Returns:
            True if job was deleted, False if job didn't exist
        """
        job_dir = self.get_job_dir(job_id)
        if not job_dir.exists():
            return False

        shutil.rmtree(job_dir)
        return True
