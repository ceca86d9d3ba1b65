"""
Bounded pool of reusable HTTP clients.

The pool is filled once at construction and never shrinks: a client taken
with `acquire()` is always handed back by the context manager, whether
the request it served succeeded or not. Callers beyond capacity block.
"""

import logging
import queue
from contextlib import contextmanager
from typing import Callable, Generic, Iterator, Optional, TypeVar

import requests

from ..context import OperationContext

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_POOL_SIZE = 20
DEFAULT_REQUEST_TIMEOUT = 5.0

# How often a blocked acquire re-checks its context.
_ACQUIRE_POLL_SECONDS = 0.5


class PooledSession(requests.Session):
    """requests.Session that applies a fixed timeout to every request."""

    def __init__(self, timeout: float = DEFAULT_REQUEST_TIMEOUT):
        super().__init__()
        self.timeout = timeout

    def request(self, method, url, **kwargs):
        kwargs.setdefault("timeout", self.timeout)
        return super().request(method, url, **kwargs)


class ClientPool(Generic[T]):
    """
    Fixed-capacity blocking pool of clients of one type.

    Example:
        pool = ClientPool(lambda: PooledSession(timeout=5), size=20)
        with pool.acquire() as session:
            session.get(url)
    """

    def __init__(self, factory: Callable[[], T], size: int = DEFAULT_POOL_SIZE):
        if size < 1:
            raise ValueError(f"Pool size must be positive, got {size}")
        self.size = size
        self._clients: "queue.Queue[T]" = queue.Queue(maxsize=size)
        for _ in range(size):
            self._clients.put(factory())

    @property
    def available(self) -> int:
        """Clients currently idle in the pool."""
        return self._clients.qsize()

    def _take(self, ctx: Optional[OperationContext]) -> T:
        if ctx is None:
            return self._clients.get()
        while True:
            ctx.check("acquire client")
            wait = _ACQUIRE_POLL_SECONDS
            remaining = ctx.remaining()
            if remaining is not None:
                wait = min(wait, remaining)
            try:
                return self._clients.get(timeout=wait)
            except queue.Empty:
                continue

    @contextmanager
    def acquire(self, ctx: Optional[OperationContext] = None) -> Iterator[T]:
        """
        Borrow a client for the duration of the with-block.

        Raises:
            OperationCancelled: If ctx is cancelled or expires while waiting
        """
        client = self._take(ctx)
        try:
            yield client
        finally:
            self._clients.put(client)

    def close(self) -> None:
        """Close idle clients that support it."""
        while True:
            try:
                client = self._clients.get_nowait()
            except queue.Empty:
                break
            close = getattr(client, "close", None)
            if close is not None:
                close()


__all__ = [
    "ClientPool",
    "PooledSession",
    "DEFAULT_POOL_SIZE",
    "DEFAULT_REQUEST_TIMEOUT",
]
