"""
Client module for communicating with the transcription API server.

This module provides a simple interface to:
- Upload interview recordings for transcription
- Poll chunk-by-chunk progress of a job
- Retrieve, download and delete transcripts
- List and search past transcriptions
"""

import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import requests
from requests.exceptions import ConnectionError, RequestException

from ..config import ConfigManager

IN_PROGRESS_STATUSES = {"pending", "preparing", "processing"}


class APIClient:
    """Client for communicating with the transcription API server."""

    def __init__(self, base_url: Optional[str] = None, user_id: Optional[str] = None, timeout: int = 30):
        """
        Initialize the API client.

        Args:
            base_url: Base URL of the API server (default: API_BASE_URL)
            user_id: Identity sent in the X-User-Id header
            timeout: Default request timeout in seconds
        """
        self.base_url = (base_url or ConfigManager.get("API_BASE_URL")).rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()
        if user_id:
            self.session.headers["X-User-Id"] = user_id

    def health_check(self) -> Dict[str, Any]:
        """
        Check if the API server is healthy.

        Raises:
            ConnectionError: If unable to connect to the server
        """
        try:
            response = self.session.get(f"{self.base_url}/health", timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except RequestException as e:
            raise ConnectionError(f"Unable to connect to API server: {e}") from e

    def upload_audio_file(
        self, file_path: str, title: Optional[str] = None, quality: str = "standard", timeout: int = 300
    ) -> Dict[str, Any]:
        """
        Upload an audio or video file for transcription.

        Args:
            file_path: Path to the file to upload
            title: Display title (default: file name)
            quality: "standard" or "premium"
            timeout: Request timeout in seconds

        Returns:
            The created job record

        Raises:
            FileNotFoundError: If the file doesn't exist
            RequestException: If the upload fails
        """
        file_path = Path(file_path)
        if not file_path.exists():
            raise FileNotFoundError(f"Audio file not found: {file_path}")

        data = {"quality": quality}
        if title:
            data["title"] = title

        try:
            with open(file_path, "rb") as audio_file:
                files = {"file": (file_path.name, audio_file)}
                response = self.session.post(
                    f"{self.base_url}/transcriptions", files=files, data=data, timeout=timeout
                )
            response.raise_for_status()
            return response.json()
        except RequestException as e:
            raise RequestException(f"Upload failed: {e}") from e

    def get_job(self, job_id: str) -> Dict[str, Any]:
        """
        Get a transcription job with its status and chunk progress.

        Raises:
            RequestException: If the request fails
        """
        try:
            response = self.session.get(f"{self.base_url}/transcriptions/{job_id}", timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except RequestException as e:
            raise RequestException(f"Failed to get job: {e}") from e

    def list_jobs(
        self, status_filter: Optional[str] = None, query: Optional[str] = None, limit: int = 100
    ) -> Dict[str, Any]:
        """
        List or search the caller's transcriptions.

        Args:
            status_filter: Filter by status (preparing, processing, completed, error)
            query: Search text matched against titles and transcripts
            limit: Maximum number of jobs to return

        Raises:
            RequestException: If the request fails
        """
        params: Dict[str, Any] = {"limit": limit}
        if status_filter:
            params["status"] = status_filter
        if query:
            params["q"] = query

        try:
            response = self.session.get(f"{self.base_url}/transcriptions", params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except RequestException as e:
            raise RequestException(f"Failed to list jobs: {e}") from e

    def download_transcript(self, job_id: str, export_format: str = "txt") -> str:
        """
        Download a completed transcript as text.

        Args:
            job_id: Unique identifier for the job
            export_format: "txt" or "timestamped"

        Raises:
            RequestException: If the request fails
        """
        try:
            response = self.session.get(
                f"{self.base_url}/transcriptions/{job_id}/download",
                params={"format": export_format},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.text
        except RequestException as e:
            raise RequestException(f"Failed to download transcript: {e}") from e

    def delete_job(self, job_id: str) -> Dict[str, Any]:
        """
        Delete a job and its associated files.

        Raises:
            RequestException: If the deletion fails
        """
        try:
            response = self.session.delete(f"{self.base_url}/transcriptions/{job_id}", timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except RequestException as e:
            raise RequestException(f"Failed to delete job: {e}") from e

    def wait_for_completion(
        self,
        job_id: str,
        poll_interval: int = 5,
        timeout: int = 3600,
        on_progress: Optional[Callable[[Dict[str, Any]], None]] = None,
    ) -> Dict[str, Any]:
        """
        Poll a job until it is completed and return it.

        Args:
            job_id: Unique identifier for the job
            poll_interval: Time to wait between status checks (seconds)
            timeout: Maximum time to wait (seconds)
            on_progress: Called with the job record after every poll

        Raises:
            TimeoutError: If the job doesn't complete within the timeout
            RequestException: If the job fails or any API call fails
        """
        start_time = time.time()

        while time.time() - start_time < timeout:
            job = self.get_job(job_id)
            if on_progress:
                on_progress(job)

            status = job.get("status")
            if status == "completed":
                return job
            elif status not in IN_PROGRESS_STATUSES:
                message = job.get("message") or job.get("error") or "Unknown error"
                raise RequestException(f"Job failed: {message}")

            time.sleep(poll_interval)

        raise TimeoutError(f"Job {job_id} did not complete within {timeout} seconds")


# Convenience function for quick uploads
def upload_and_process(
    file_path: str,
    user_id: str,
    title: Optional[str] = None,
    quality: str = "standard",
    api_url: Optional[str] = None,
    wait_for_result: bool = True,
    poll_interval: int = 5,
    timeout: int = 3600,
) -> Dict[str, Any]:
    """
    Upload a file and optionally wait for its transcription.

    Returns:
        The completed job when waiting, otherwise the freshly created job
    """
    client = APIClient(api_url, user_id=user_id)

    job = client.upload_audio_file(file_path, title=title, quality=quality)

    if wait_for_result:
        return client.wait_for_completion(job["id"], poll_interval, timeout)
    return job
