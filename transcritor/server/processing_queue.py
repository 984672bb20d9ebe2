"""
Queue-based transcription processing using ThreadPoolExecutor.

Uploads return immediately; jobs are queued here and run in background
worker threads. Different jobs run concurrently, while each job processes
its own chunks sequentially inside a single worker.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from queue import Empty, Queue
from typing import Any, Dict, Optional

from .processor import TranscriptionProcessor

logger = logging.getLogger(__name__)


class ProcessingQueue:
    """Manages a queue of transcription jobs using ThreadPoolExecutor."""

    def __init__(self, processor: TranscriptionProcessor, max_workers: int = 2, queue_check_interval: float = 1.0):
        """
        Initialize the processing queue.

        Args:
            processor: TranscriptionProcessor that runs each job
            max_workers: Maximum number of concurrent jobs
            queue_check_interval: How often to check for new jobs (seconds)
        """
        self.processor = processor
        self.max_workers = max_workers
        self.queue_check_interval = queue_check_interval

        self.job_queue: Queue = Queue()
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="transcription")
        self.running_jobs: Dict[str, Future] = {}
        self.cancel_events: Dict[str, threading.Event] = {}
        self.is_running = False
        self.queue_thread: Optional[threading.Thread] = None

        self._lock = threading.Lock()

    def start(self):
        """Start the processing queue."""
        if self.is_running:
            logger.warning("Processing queue is already running")
            return

        self.is_running = True
        self.queue_thread = threading.Thread(target=self._queue_worker, daemon=True)
        self.queue_thread.start()
        logger.info(f"Processing queue started with {self.max_workers} workers")

    def stop(self):
        """Stop the processing queue, cancelling jobs that are still running."""
        if not self.is_running:
            return

        logger.info("Stopping processing queue...")
        self.is_running = False

        if self.queue_thread:
            self.queue_thread.join(timeout=5.0)

        with self._lock:
            for job_id, future in self.running_jobs.items():
                if not future.done():
                    logger.info(f"Cancelling job {job_id}")
                    self.cancel_events[job_id].set()
                    future.cancel()

        self.executor.shutdown(wait=True)
        logger.info("Processing queue stopped")

    def enqueue_job(self, job_id: str) -> bool:
        """
        Add a job to the processing queue.

        Returns:
            True if job was enqueued, False if the queue is stopped or the
            job is already queued or running
        """
        if not self.is_running:
            logger.error("Cannot enqueue job: processing queue is not running")
            return False

        with self._lock:
            if job_id in self.cancel_events:
                logger.warning(f"Job {job_id} is already queued or running")
                return False
            self.cancel_events[job_id] = threading.Event()

        self.job_queue.put(job_id)
        logger.info(f"Job {job_id} enqueued")
        return True

    def cancel_job(self, job_id: str) -> bool:
        """
        Ask a queued or running job to stop.

        The job stops at the next chunk boundary and is marked ``error``.

        Returns:
            True if the job was queued or running, False otherwise
        """
        with self._lock:
            event = self.cancel_events.get(job_id)
            if event is None:
                return False
            event.set()

        logger.info(f"Cancellation requested for job {job_id}")
        return True

    def get_queue_status(self) -> Dict[str, Any]:
        """Get status information about the processing queue."""
        with self._lock:
            running_jobs = list(self.running_jobs.keys())

        return {
            "is_running": self.is_running,
            "queue_size": self.job_queue.qsize(),
            "running_jobs": running_jobs,
            "max_workers": self.max_workers,
        }

    def _queue_worker(self):
        """Main queue worker thread that dispatches jobs to the executor."""
        logger.info("Queue worker thread started")

        while self.is_running:
            try:
                try:
                    job_id = self.job_queue.get(timeout=self.queue_check_interval)
                except Empty:
                    continue

                with self._lock:
                    cancel_event = self.cancel_events[job_id]
                    future = self.executor.submit(self.processor.process_job, job_id, cancel_event)
                    self.running_jobs[job_id] = future

                future.add_done_callback(lambda f, jid=job_id: self._job_completed(jid, f))

            except Exception as e:
                logger.error(f"Error in queue worker: {e}")
                time.sleep(1.0)

        logger.info("Queue worker thread stopped")

    def _job_completed(self, job_id: str, future: Future):
        """Callback called when a job completes."""
        with self._lock:
            self.running_jobs.pop(job_id, None)
            self.cancel_events.pop(job_id, None)

        if future.cancelled():
            logger.info(f"Job {job_id} was cancelled before it started")
        elif future.exception():
            # The processor has already recorded the failure on the job
            logger.error(f"Job {job_id} failed with error: {future.exception()}")
        else:
            logger.info(f"Job {job_id} completed successfully")
