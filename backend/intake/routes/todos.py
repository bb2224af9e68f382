"""
Todo API Routes
===============

Endpoints:
- GET /api/todos - List todos (most recent first)
- POST /api/todos - Create a todo
- GET /api/todos/stream - Server-Sent Events with the full list on every change
"""

import logging
from typing import AsyncIterator, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from intake.deps import get_todo_store
from intake.errors import SubmitFailure
from intake.models import Todo, TodoCreateRequest
from intake.services.record_store import RecordStore
from intake.utils.sse import SSE_HEADERS, SSEBuffer, format_sse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/todos", tags=["Todos"])

LIST_ERROR = "Failed to load todos"
FEED_ERROR = "Failed to load real-time updates for todos"


async def todo_events(store: RecordStore, poll_interval: float = 0.5) -> AsyncIterator[str]:
    """
    Yield the full todo list on connect and after every change.

    The live-feed subscription is released when the generator is closed.
    """
    buffer = SSEBuffer()
    error: Optional[str] = None

    def on_error(exc: Exception):
        nonlocal error
        logger.error(f"Todo feed failed: {exc}")
        error = FEED_ERROR

    with store.observe(lambda todos: buffer.push('snapshot', todos), on_error):
        try:
            todos = await store.list()
        except Exception as e:
            logger.error(f"Failed to list todos: {e}")
            yield format_sse('error', {'message': LIST_ERROR})
            return
        buffer.push('snapshot', todos)

        try:
            async for message in buffer.drain(lambda: error, poll_interval):
                yield message
        finally:
            logger.info("Todo stream closed")


@router.get("", response_model=List[Todo])
async def list_todos(store: RecordStore = Depends(get_todo_store)):
    """List todos, most recent first."""
    return await store.list()


@router.post("", response_model=Todo, status_code=201)
async def create_todo(request: TodoCreateRequest, store: RecordStore = Depends(get_todo_store)):
    """Create a todo."""
    try:
        return await store.create(request.model_dump())
    except SubmitFailure as e:
        raise HTTPException(status_code=422, detail=e.message)


@router.get("/stream")
async def stream_todos(store: RecordStore = Depends(get_todo_store)):
    """Server-Sent Events endpoint for real-time todo updates."""
    return StreamingResponse(
        todo_events(store),
        media_type="text/event-stream",
        headers=SSE_HEADERS
    )
