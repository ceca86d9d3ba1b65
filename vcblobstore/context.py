"""
Operation context for vcblobstore.

Every contract operation accepts an optional OperationContext. Cancellation
is best-effort: it is checked where work is admitted (before a queued job
starts, before a pooled client is taken, before each request or retry),
and the remaining deadline caps request timeouts. A git subprocess or an
HTTP round trip already under way is not interrupted.
"""

import threading
import time
from typing import Optional

from .errors import OperationCancelled


class OperationContext:
    """
    Cancellation flag plus optional deadline.

    Example:
        ctx = OperationContext(timeout=30)
        store.add_blob(blob, ctx=ctx)
        # from another thread
        ctx.cancel()
    """

    def __init__(self, timeout: Optional[float] = None):
        """
        Args:
            timeout: Seconds from now until the deadline (None = no deadline)
        """
        self._cancelled = threading.Event()
        self.deadline: Optional[float] = (
            time.monotonic() + timeout if timeout is not None else None
        )

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None without a deadline."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def check(self, operation: str = "operation") -> None:
        """
        Raise if the context no longer admits work.

        Raises:
            OperationCancelled: If cancelled or past the deadline
        """
        if self.cancelled:
            raise OperationCancelled(f"{operation} cancelled")
        if self.expired:
            raise OperationCancelled(f"{operation} deadline exceeded")


def check_context(ctx: Optional[OperationContext], operation: str) -> None:
    """Check ctx when one was given."""
    if ctx is not None:
        ctx.check(operation)
