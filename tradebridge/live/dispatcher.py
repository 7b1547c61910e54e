"""Per-subscriber delivery of streamed prices.

Each subscription owns a bounded queue drained by its own worker thread, so a
slow or failing callback never delays the gateway's price-update path or other
subscribers. When a queue is full the oldest update is dropped: for prices
only the latest value matters.
"""
import queue
import threading
from typing import Any, Callable

from loguru import logger

_STOP = object()


class SubscriberChannel:
    """Bounded mailbox + worker thread for one subscriber callback."""

    def __init__(self, subscription_id: str, callback: Callable[[Any], None], maxsize: int = 100):
        self.subscription_id = subscription_id
        self.callback = callback
        self.delivered = 0
        self.dropped = 0
        self.failed = 0
        self._queue: "queue.Queue" = queue.Queue(maxsize=max(1, maxsize))
        self._closed = False
        self._worker = threading.Thread(
            target=self._run, name=f"sub-{subscription_id}", daemon=True
        )
        self._worker.start()

    def publish(self, message: Any) -> bool:
        """Enqueue without blocking. Returns False once the channel is closed."""
        if self._closed:
            return False
        while True:
            try:
                self._queue.put_nowait(message)
                return True
            except queue.Full:
                try:
                    self._queue.get_nowait()
                    self.dropped += 1
                except queue.Empty:
                    pass

    def close(self, timeout: float = 1.0):
        """Stop the worker after it drains what is already queued."""
        if self._closed:
            return
        self._closed = True
        while True:
            try:
                self._queue.put(_STOP, timeout=timeout)
                break
            except queue.Full:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    pass
        if threading.current_thread() is not self._worker:
            self._worker.join(timeout=timeout)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def _run(self):
        while True:
            message = self._queue.get()
            if message is _STOP:
                return
            try:
                self.callback(message)
                self.delivered += 1
            except Exception as e:
                self.failed += 1
                logger.error(f"[MARKET] Subscriber {self.subscription_id} callback failed: {e}")
