"""
Patient Form API Routes
=======================

Read access to stored patient forms.

Endpoints:
- GET /api/patient-forms - List stored forms (most recent first)
- GET /api/patient-forms/stream - Server-Sent Events with the full list on every change
- GET /api/patient-forms/{record_id} - Detail view of one form
"""

import logging
from typing import AsyncIterator, List

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from intake.deps import get_record_store
from intake.models import PatientFormSummary, RecordDetail
from intake.services.record_browser import RecordBrowser
from intake.services.record_store import RecordStore
from intake.utils.sse import SSE_HEADERS, SSEBuffer, format_sse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/patient-forms", tags=["Patient Forms"])


async def patient_form_events(store: RecordStore, poll_interval: float = 0.5) -> AsyncIterator[str]:
    """
    Yield the full list of patient form summaries on connect and after every change.

    The live-feed subscription is released when the generator is closed.
    """
    buffer = SSEBuffer()
    browser = RecordBrowser(store)
    browser.on_change = lambda records: buffer.push('snapshot', browser.summaries())

    with browser:
        await browser.refresh()
        if browser.error_message:
            yield format_sse('error', {'message': browser.error_message})
            return
        buffer.push('snapshot', browser.summaries())

        try:
            async for message in buffer.drain(lambda: browser.error_message, poll_interval):
                yield message
        finally:
            logger.info("Patient form stream closed")


@router.get("", response_model=List[PatientFormSummary])
async def list_patient_forms(store: RecordStore = Depends(get_record_store)):
    """List stored patient forms."""
    browser = RecordBrowser(store)
    await browser.refresh()
    if browser.error_message:
        raise HTTPException(status_code=502, detail=browser.error_message)
    return browser.summaries()


@router.get("/stream")
async def stream_patient_forms(store: RecordStore = Depends(get_record_store)):
    """Server-Sent Events endpoint for real-time patient form updates."""
    return StreamingResponse(
        patient_form_events(store),
        media_type="text/event-stream",
        headers=SSE_HEADERS
    )


@router.get("/{record_id}", response_model=RecordDetail)
async def get_patient_form(record_id: str, store: RecordStore = Depends(get_record_store)):
    """Detail view of one stored patient form."""
    browser = RecordBrowser(store)
    await browser.refresh()
    if browser.error_message:
        raise HTTPException(status_code=502, detail=browser.error_message)

    detail = browser.select(record_id)
    if detail is None:
        raise HTTPException(status_code=404, detail="Patient form not found")
    return detail
