"""
Live feed plumbing: listener registry and cancellable subscription handles.
"""
import logging
from threading import Lock
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

Listener = Callable[[Any], None]
ErrorListener = Callable[[Exception], None]


class Subscription:
    """
    Handle for one registered feed listener.

    The owner must release it with cancel() or by leaving a `with` block.
    Cancelling more than once is a no-op.
    """

    def __init__(self, release: Callable[[], None]):
        self._release = release
        self._lock = Lock()
        self.closed = False

    def cancel(self):
        with self._lock:
            if self.closed:
                return
            self.closed = True
        self._release()

    def __enter__(self) -> 'Subscription':
        return self

    def __exit__(self, exc_type, exc, tb):
        self.cancel()
        return False


class FeedHub:
    """Fan-out of snapshots to registered listeners."""

    def __init__(self, name: str):
        self.name = name
        self._listeners: Dict[int, tuple] = {}
        self._next_id = 0
        self._lock = Lock()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def subscribe(self, listener: Listener, on_error: Optional[ErrorListener] = None) -> Subscription:
        """
        Register a listener.

        Args:
            listener: Called with the full current snapshot on every change
            on_error: Optional callback for feed errors

        Returns:
            Subscription handle that unregisters the listener when cancelled
        """
        with self._lock:
            listener_id = self._next_id
            self._next_id += 1
            self._listeners[listener_id] = (listener, on_error)
        logger.debug(f"Feed '{self.name}': listener {listener_id} registered")

        def release():
            with self._lock:
                self._listeners.pop(listener_id, None)
            logger.debug(f"Feed '{self.name}': listener {listener_id} released")

        return Subscription(release)

    def publish(self, snapshot: Any):
        """Deliver a snapshot to every listener. A failing listener does not stop the others."""
        with self._lock:
            listeners = list(self._listeners.values())
        for listener, _ in listeners:
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Feed '{self.name}': listener raised {e}", exc_info=True)

    def publish_error(self, error: Exception):
        """Report a feed error to every listener that registered an error callback."""
        with self._lock:
            listeners = list(self._listeners.values())
        for _, on_error in listeners:
            if on_error is None:
                continue
            try:
                on_error(error)
            except Exception as e:
                logger.error(f"Feed '{self.name}': error listener raised {e}", exc_info=True)
