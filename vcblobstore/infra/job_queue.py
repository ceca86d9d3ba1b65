"""
Serialized job execution for the local backend.

A JobSerializer owns one worker thread that drains a FIFO queue, so at
most one mutating job runs at a time. Submitters block until their own
job has finished and get its result (or its exception) back.

One serializer exists per repository location: handles opened on the same
location share it, and unrelated repositories never wait on each other.
A serializer only holds a thread while it has recent work.
"""

import logging
import queue
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, ClassVar, Dict, Optional
from uuid import uuid4

from ..context import OperationContext

logger = logging.getLogger(__name__)

# Seconds a worker waits for work before its thread exits.
DEFAULT_IDLE_TIMEOUT = 30.0


@dataclass(eq=False)
class Job:
    """A deferred unit of work; completes exactly once."""
    fn: Callable[[], Any]
    label: str
    ctx: Optional[OperationContext] = None
    id: str = field(default_factory=lambda: uuid4().hex)
    result: Any = None
    error: Optional[BaseException] = None
    done: threading.Event = field(default_factory=threading.Event)

    def run(self) -> None:
        try:
            if self.ctx is not None:
                self.ctx.check(self.label)
            self.result = self.fn()
        except BaseException as e:
            self.error = e
        finally:
            self.done.set()


class JobSerializer:
    """
    Single-worker FIFO queue of mutation jobs.

    The worker thread is started by the first submit and exits after
    `idle_timeout` seconds without work; the next submit starts a new one.
    Registered serializers therefore hold no thread while their location
    is unused.

    Example:
        serializer = JobSerializer.for_location("/srv/blobs")
        serializer.submit(lambda: write_and_commit(), label="add blob file")
    """

    _registry: ClassVar[Dict[Path, "JobSerializer"]] = {}
    _registry_lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(self, name: str = "vcblobstore-jobs", idle_timeout: float = DEFAULT_IDLE_TIMEOUT):
        self.name = name
        self.idle_timeout = idle_timeout
        self._queue: "queue.Queue[Optional[Job]]" = queue.Queue()
        self._closed = False
        self._lock = threading.Lock()
        self._worker: Optional[threading.Thread] = None

    @classmethod
    def for_location(cls, location: Path, idle_timeout: float = DEFAULT_IDLE_TIMEOUT) -> "JobSerializer":
        """Get the serializer owned by a repository location, creating it on first use."""
        key = Path(location).expanduser().resolve()
        with cls._registry_lock:
            serializer = cls._registry.get(key)
            if serializer is None or serializer.closed:
                serializer = cls(name=f"vcblobstore-jobs:{key.name}", idle_timeout=idle_timeout)
                cls._registry[key] = serializer
            return serializer

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def worker_alive(self) -> bool:
        with self._lock:
            return self._worker is not None

    def _process(self) -> None:
        while True:
            try:
                job = self._queue.get(timeout=self.idle_timeout)
            except queue.Empty:
                # Submitters enqueue under the lock, so an empty queue seen
                # here stays empty until a new worker has been started.
                with self._lock:
                    if self._queue.empty():
                        self._worker = None
                        logger.debug(f"{self.name}: idle, worker stopped")
                        return
                continue
            if job is None:
                break
            logger.debug(f"Job {job.id[:8]} started: {job.label}")
            job.run()
            logger.debug(f"Job {job.id[:8]} finished: {job.label}")

    def _ensure_worker(self) -> None:
        """Start the worker if none is running; caller holds the lock."""
        if self._worker is None:
            self._worker = threading.Thread(target=self._process, name=self.name, daemon=True)
            self._worker.start()

    def submit(
        self,
        fn: Callable[[], Any],
        label: str = "job",
        ctx: Optional[OperationContext] = None,
    ) -> Any:
        """
        Enqueue fn and block until it has run.

        Args:
            fn: Work to run on the worker thread
            label: Human-readable operation label for logging
            ctx: Checked when the job reaches the head of the queue

        Returns:
            Whatever fn returned

        Raises:
            RuntimeError: If called from the worker itself or after shutdown
            Exception: Anything fn raised, re-raised in the caller's thread
        """
        if threading.current_thread() is self._worker:
            raise RuntimeError(f"{self.name}: cannot submit a job from inside a job")

        job = Job(fn=fn, label=label, ctx=ctx)
        with self._lock:
            if self._closed:
                raise RuntimeError(f"{self.name} is shut down")
            self._queue.put(job)
            self._ensure_worker()
        logger.debug(f"Job {job.id[:8]} enqueued: {label}")

        job.done.wait()
        if job.error is not None:
            raise job.error
        return job.result

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting jobs; queued jobs still run before the worker exits."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            worker = self._worker
            if worker is not None:
                self._queue.put(None)
        if wait and worker is not None:
            worker.join()
