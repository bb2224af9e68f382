"""
Server-Sent Events helpers shared by the live-feed endpoints.
"""
import asyncio
import json
from datetime import datetime
from threading import Lock
from typing import AsyncIterator, Callable, List, Optional

from fastapi.encoders import jsonable_encoder

KEEPALIVE_SECONDS = 30.0

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no"
}


def format_sse(event_type: str, data) -> str:
    """Encode one Server-Sent Events message."""
    return f"event: {event_type}\ndata: {json.dumps(jsonable_encoder(data))}\n\n"


class SSEBuffer:
    """
    Messages queued by feed listeners and drained by the streaming response.

    Listeners may run on any thread; push() only appends under a lock.
    """

    def __init__(self):
        self._messages: List[str] = []
        self._lock = Lock()

    def push(self, event_type: str, data):
        with self._lock:
            self._messages.append(format_sse(event_type, data))

    def take(self) -> List[str]:
        with self._lock:
            pending = list(self._messages)
            self._messages.clear()
        return pending

    async def drain(
        self,
        error: Callable[[], Optional[str]],
        poll_interval: float = 0.5
    ) -> AsyncIterator[str]:
        """
        Yield queued messages until the feed reports an error.

        Args:
            error: Returns the feed's current error message, or None
            poll_interval: Seconds to wait when nothing is queued
        """
        idle = 0.0
        while True:
            pending = self.take()

            for message in pending:
                yield message

            if pending:
                idle = 0.0
                continue

            message = error()
            if message:
                yield format_sse('error', {'message': message})
                return

            await asyncio.sleep(poll_interval)
            idle += poll_interval
            if idle >= KEEPALIVE_SECONDS:
                idle = 0.0
                yield format_sse('keepalive', {'timestamp': datetime.now().isoformat()})
