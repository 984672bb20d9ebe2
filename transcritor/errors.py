"""
Error taxonomy for the transcription pipeline.

Input errors are raised before any processing starts and map to a user
visible HTTP response. Media and transcription errors are fatal to the job
they occur in; the processor is the only place that turns them into an
``error`` job status.
"""

from typing import Optional


class TranscritorError(Exception):
    """Base class for all pipeline errors."""

    code = "ERR_INTERNAL"

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(f"[{self.code}] {message}")


class InputError(TranscritorError):
    """Rejected upload. Nothing has been processed."""

    code = "ERR_INPUT"
    http_status = 400


class UnsupportedFileError(InputError):
    code = "ERR_UNSUPPORTED_FILE"


class FreeTrialFileTooLargeError(InputError):
    code = "ERR_FREE_TRIAL_TOO_LARGE"


class InsufficientCreditsError(InputError):
    code = "ERR_INSUFFICIENT_CREDITS"
    http_status = 403


class UserNotFoundError(InputError):
    code = "ERR_USER_NOT_FOUND"
    http_status = 404


class JobNotFoundError(TranscritorError):
    code = "ERR_JOB_NOT_FOUND"


class MediaToolError(TranscritorError):
    """ffmpeg/ffprobe failed or is missing. Not retried."""

    code = "ERR_MEDIA_TOOL"


class ChunkTranscriptionError(TranscritorError):
    """The speech-to-text call for one chunk failed."""

    code = "ERR_CHUNK_TRANSCRIPTION"

    def __init__(self, chunk_index: int, message: str):
        self.chunk_index = chunk_index
        super().__init__(f"chunk {chunk_index}: {message}")


class JobCancelledError(TranscritorError):
    code = "ERR_CANCELLED"

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} was cancelled")
