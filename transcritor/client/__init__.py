"""
Client package for communicating with the transcription API server.
"""

from .api_client import APIClient, upload_and_process

__all__ = ["APIClient", "upload_and_process"]
