"""Tests for the background processing queue."""

import threading
import time
from unittest.mock import Mock

import pytest

from transcritor.server.processing_queue import ProcessingQueue


def wait_until(predicate, timeout=5.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


@pytest.fixture
def processor():
    return Mock()


@pytest.fixture
def queue(processor):
    queue = ProcessingQueue(processor, max_workers=2, queue_check_interval=0.05)
    yield queue
    queue.stop()


class TestProcessingQueue:
    def test_enqueue_requires_running_queue(self, queue):
        assert queue.enqueue_job("job-1") is False

    def test_jobs_are_processed_with_a_cancel_event(self, queue, processor):
        queue.start()

        assert queue.enqueue_job("job-1") is True
        assert wait_until(lambda: processor.process_job.called)

        job_id, cancel_event = processor.process_job.call_args[0]
        assert job_id == "job-1"
        assert isinstance(cancel_event, threading.Event)
        assert wait_until(lambda: queue.get_queue_status()["running_jobs"] == [])

    def test_duplicate_enqueue_rejected(self, queue, processor):
        release = threading.Event()
        processor.process_job.side_effect = lambda job_id, cancel_event: release.wait(5)
        queue.start()

        assert queue.enqueue_job("job-1") is True
        assert queue.enqueue_job("job-1") is False
        release.set()

    def test_cancel_running_job(self, queue, processor):
        started = threading.Event()
        cancelled = threading.Event()

        def run(job_id, cancel_event):
            started.set()
            if cancel_event.wait(5):
                cancelled.set()

        processor.process_job.side_effect = run
        queue.start()
        queue.enqueue_job("job-1")
        assert started.wait(5)

        assert queue.cancel_job("job-1") is True
        assert cancelled.wait(5)
        assert wait_until(lambda: queue.cancel_job("job-1") is False)

    def test_failed_job_is_forgotten(self, queue, processor):
        processor.process_job.side_effect = RuntimeError("boom")
        queue.start()

        queue.enqueue_job("job-1")

        assert wait_until(lambda: processor.process_job.called)
        assert wait_until(lambda: queue.enqueue_job("job-1"))

    def test_status(self, queue):
        status = queue.get_queue_status()
        assert status == {"is_running": False, "queue_size": 0, "running_jobs": [], "max_workers": 2}
