"""
Form Session API Routes
=======================

Endpoints for the upload -> edit -> submit lifecycle of one document.

Endpoints:
- POST /api/sessions - Open a new form session
- GET /api/sessions/{session_id} - Current session state
- POST /api/sessions/{session_id}/document - Upload a document for recognition
- PATCH /api/sessions/{session_id}/fields - Edit recognized fields
- POST /api/sessions/{session_id}/submit - Persist the form
- DELETE /api/sessions/{session_id} - Close a form session
"""

import logging
from pathlib import Path

from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile

from intake.config import Config
from intake.deps import (
    SessionRegistry,
    get_form_session,
    get_recognition_client,
    get_record_store,
    get_session_registry,
    get_todo_store,
)
from intake.errors import InvalidFieldValueError, SessionStateError, UnknownFieldError
from intake.models import FieldEditRequest, FormSessionState
from intake.services.form_session import FormSession
from intake.services.recognition_client import RecognitionClient, UploadedDocument
from intake.services.record_store import RecordStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sessions", tags=["Form Sessions"])


@router.post("", response_model=FormSessionState, status_code=201)
async def open_session(
    registry: SessionRegistry = Depends(get_session_registry),
    recognition_client: RecognitionClient = Depends(get_recognition_client),
    record_store: RecordStore = Depends(get_record_store),
    todo_store: RecordStore = Depends(get_todo_store),
) -> FormSessionState:
    """Open a new, idle form session."""
    session = registry.add(FormSession(recognition_client, record_store, todo_store=todo_store))
    logger.info(f"Opened form session {session.session_id}")
    return session.snapshot()


@router.get("/{session_id}", response_model=FormSessionState)
async def get_session(session: FormSession = Depends(get_form_session)) -> FormSessionState:
    """Current state of a form session."""
    return session.snapshot()


@router.post("/{session_id}/document", response_model=FormSessionState)
async def upload_document(
    file: UploadFile = File(..., description="Document to recognize (.pdf, .jpg, .jpeg, .png)"),
    session: FormSession = Depends(get_form_session),
) -> FormSessionState:
    """
    Upload a document and populate the session's form from the recognized fields.

    Recognition failures are reported in the session's error_message, not as
    HTTP errors.
    """
    filename = file.filename or ''
    extension = Path(filename).suffix.lower()
    if extension not in Config.ALLOWED_UPLOAD_EXTENSIONS:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type. Allowed: {', '.join(Config.ALLOWED_UPLOAD_EXTENSIONS)}"
        )

    content = await file.read()

    if len(content) == 0:
        raise HTTPException(status_code=400, detail="Empty file uploaded")

    if len(content) > Config.MAX_UPLOAD_BYTES:
        raise HTTPException(
            status_code=413,
            detail=f"File exceeds the {Config.MAX_UPLOAD_BYTES} byte upload limit"
        )

    document = UploadedDocument(
        filename=filename,
        content=content,
        content_type=file.content_type or 'application/octet-stream'
    )

    try:
        await session.select_file(document)
    except SessionStateError as e:
        raise HTTPException(status_code=409, detail=e.message)

    return session.snapshot()


@router.patch("/{session_id}/fields", response_model=FormSessionState)
async def edit_fields(
    request: FieldEditRequest,
    session: FormSession = Depends(get_form_session),
) -> FormSessionState:
    """Apply user edits to editable fields. A rejected request changes nothing."""
    try:
        session.edit_fields(request.fields)
    except (UnknownFieldError, InvalidFieldValueError) as e:
        raise HTTPException(status_code=422, detail=e.message)
    except SessionStateError as e:
        raise HTTPException(status_code=409, detail=e.message)

    return session.snapshot()


@router.post("/{session_id}/submit", response_model=FormSessionState)
async def submit_session(session: FormSession = Depends(get_form_session)) -> FormSessionState:
    """
    Persist the session's form.

    A rejected write leaves the session in submit_failed with its fields kept
    for a retry.
    """
    try:
        await session.submit()
    except SessionStateError as e:
        raise HTTPException(status_code=409, detail=e.message)

    return session.snapshot()


@router.delete("/{session_id}", status_code=204)
async def close_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Close a form session and discard any unsubmitted edits."""
    if not registry.remove(session_id):
        raise HTTPException(status_code=404, detail="Form session not found")
    logger.info(f"Closed form session {session_id}")
    return Response(status_code=204)
