"""
Cooperative bounded polling.

Absence (NotFoundError) and store I/O errors (StoreError) inside a check are
tolerated and retried until the deadline; the last one becomes the cause of
DeadlineExceeded. Anything else propagates immediately.
"""
import threading
import time

from cluster_register.errors import Cancelled, DeadlineExceeded, NotFoundError, StoreError
from cluster_register.log import logger


def poll_until(check, interval: float, timeout: float, cancel: threading.Event | None = None, what: str = "condition"):
    """Call ``check`` now and every ``interval`` seconds until it returns a truthy value."""
    cancel = cancel or threading.Event()
    deadline = time.monotonic() + timeout
    last_error: Exception | None = None

    while True:
        if cancel.is_set():
            raise Cancelled(f"cancelled while waiting for {what}")
        try:
            result = check()
            if result:
                return result
        except (NotFoundError, StoreError) as e:
            last_error = e
            logger.info(f"⏳ {what}: {e} (will retry)")

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            message = f"timed out after {timeout:g}s waiting for {what}"
            if last_error is not None:
                message += f" (last error: {last_error})"
            raise DeadlineExceeded(message, last_error=last_error) from last_error
        if cancel.wait(min(interval, remaining)):
            raise Cancelled(f"cancelled while waiting for {what}")
