"""
Tests for the job serializer.

Tests cover:
- Results and exceptions delivered to the submitter
- FIFO order and one-at-a-time execution
- Per-location sharing through for_location()
- Reentrant submission and shutdown errors
- Jobs whose context was cancelled while queued
- Idle workers releasing their thread
"""

import threading
import time

import pytest

from vcblobstore.context import OperationContext
from vcblobstore.errors import OperationCancelled
from vcblobstore.infra.job_queue import Job, JobSerializer


def wait_for(condition, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return condition()


def thread_running(name):
    return any(thread.name == name for thread in threading.enumerate())


class TestJob:
    """Tests for Job."""

    def test_run_stores_result(self):
        job = Job(fn=lambda: 42, label="answer")
        job.run()
        assert job.result == 42
        assert job.error is None
        assert job.done.is_set()

    def test_run_stores_error(self):
        def fail():
            raise ValueError("bad")

        job = Job(fn=fail, label="fail")
        job.run()
        assert isinstance(job.error, ValueError)
        assert job.done.is_set()

    def test_cancelled_job_does_not_run(self):
        calls = []
        ctx = OperationContext()
        ctx.cancel()

        job = Job(fn=lambda: calls.append(1), label="noop", ctx=ctx)
        job.run()

        assert calls == []
        assert isinstance(job.error, OperationCancelled)


class TestJobSerializer:
    """Tests for JobSerializer."""

    def test_submit_returns_result(self, serializer):
        assert serializer.submit(lambda: "done", label="simple") == "done"

    def test_submit_reraises(self, serializer):
        def fail():
            raise KeyError("missing")

        with pytest.raises(KeyError):
            serializer.submit(fail)

    def test_runs_on_worker_thread(self, serializer):
        thread_name = serializer.submit(lambda: threading.current_thread().name)
        assert thread_name == "test-jobs"

    def test_one_job_at_a_time(self, serializer):
        """Test that concurrently submitted jobs never overlap."""
        active = []
        overlaps = []
        lock = threading.Lock()

        def job():
            with lock:
                active.append(1)
                if len(active) > 1:
                    overlaps.append(len(active))
            time.sleep(0.01)
            with lock:
                active.pop()

        threads = [threading.Thread(target=serializer.submit, args=(job,)) for _ in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert overlaps == []

    def test_fifo_order(self, serializer):
        """Test that jobs run in the order they were admitted."""
        order = []
        gate = threading.Event()
        blocker = threading.Thread(target=serializer.submit, args=(lambda: gate.wait(5),))
        blocker.start()
        time.sleep(0.05)

        threads = []
        for i in range(5):
            thread = threading.Thread(target=serializer.submit, args=(lambda i=i: order.append(i),))
            thread.start()
            threads.append(thread)
            time.sleep(0.02)

        gate.set()
        blocker.join()
        for thread in threads:
            thread.join()

        assert order == [0, 1, 2, 3, 4]

    def test_submit_from_worker_raises(self, serializer):
        with pytest.raises(RuntimeError, match="inside a job"):
            serializer.submit(lambda: serializer.submit(lambda: None))

    def test_submit_after_shutdown(self):
        jobs = JobSerializer(name="short-lived")
        jobs.shutdown()
        assert jobs.closed
        with pytest.raises(RuntimeError, match="shut down"):
            jobs.submit(lambda: None)

    def test_shutdown_is_idempotent(self):
        jobs = JobSerializer(name="short-lived")
        jobs.shutdown()
        jobs.shutdown()

    def test_cancelled_context(self, serializer):
        ctx = OperationContext()
        ctx.cancel()
        with pytest.raises(OperationCancelled):
            serializer.submit(lambda: None, label="add blob file", ctx=ctx)

    def test_context_cancelled_while_queued(self, serializer):
        """Test that a job cancelled before it starts is skipped."""
        ran = []
        gate = threading.Event()
        ctx = OperationContext()
        blocker = threading.Thread(target=serializer.submit, args=(lambda: gate.wait(5),))
        blocker.start()
        time.sleep(0.05)

        errors = []

        def submit():
            try:
                serializer.submit(lambda: ran.append(1), ctx=ctx)
            except OperationCancelled as e:
                errors.append(e)

        waiter = threading.Thread(target=submit)
        waiter.start()
        time.sleep(0.05)
        ctx.cancel()
        gate.set()
        blocker.join()
        waiter.join()

        assert ran == []
        assert len(errors) == 1


class TestForLocation:
    """Tests for JobSerializer.for_location()."""

    def test_same_location_shares(self, tmp_path):
        first = JobSerializer.for_location(tmp_path / "repo")
        second = JobSerializer.for_location(tmp_path / "repo" / ".." / "repo")
        assert first is second

    def test_different_locations_do_not_share(self, tmp_path):
        first = JobSerializer.for_location(tmp_path / "one")
        second = JobSerializer.for_location(tmp_path / "two")
        assert first is not second

    def test_replaced_after_shutdown(self, tmp_path):
        first = JobSerializer.for_location(tmp_path / "repo")
        first.shutdown()
        second = JobSerializer.for_location(tmp_path / "repo")
        assert second is not first
        assert second.submit(lambda: 1) == 1


class TestIdleWorker:
    """Tests for the worker thread's lifetime."""

    def test_no_thread_before_first_submit(self):
        jobs = JobSerializer(name="lazy-jobs")
        assert not jobs.worker_alive
        assert not thread_running("lazy-jobs")
        jobs.shutdown()

    def test_worker_exits_when_idle_and_restarts(self):
        jobs = JobSerializer(name="idle-jobs", idle_timeout=0.05)
        assert jobs.submit(lambda: 1) == 1

        assert wait_for(lambda: not jobs.worker_alive and not thread_running("idle-jobs"))

        assert jobs.submit(lambda: 2) == 2
        jobs.shutdown()
        assert wait_for(lambda: not thread_running("idle-jobs"))

    def test_many_locations_release_their_threads(self, tmp_path):
        """Test that registered serializers give their threads back once idle."""
        before = threading.active_count()
        serializers = [
            JobSerializer.for_location(tmp_path / f"repo-{i}", idle_timeout=0.05)
            for i in range(20)
        ]
        for serializer in serializers:
            serializer.submit(lambda: None)

        assert wait_for(lambda: threading.active_count() <= before)

    def test_shutdown_without_worker(self):
        jobs = JobSerializer(name="never-used")
        jobs.shutdown()
        assert jobs.closed
