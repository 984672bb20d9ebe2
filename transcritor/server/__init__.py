"""
Transcription server package.

This package provides a Flask API server with Queue-based background
processing of chunked interview transcription and credit accounting.
"""

from .app import create_app
from .credit_ledger import CreditLedger
from .job_manager import JobManager
from .processing_queue import ProcessingQueue
from .processor import TranscriptionProcessor

__all__ = ["create_app", "CreditLedger", "JobManager", "ProcessingQueue", "TranscriptionProcessor"]
