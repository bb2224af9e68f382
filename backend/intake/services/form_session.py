"""
Form session: one upload-to-submit lifecycle for a single document.

States:
    IDLE -> LOADING -> READY | RECOGNITION_FAILED
    READY -> SUBMITTING -> SUBMITTED | SUBMIT_FAILED
    SUBMIT_FAILED -> READY (on edit) | SUBMITTING (on retry)

Selecting a new file while a recognition call is outstanding supersedes it:
the latest selection wins and a late result from an earlier call is dropped.
"""
import logging
import uuid
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from intake.errors import (
    IntakeError,
    InvalidFieldValueError,
    RecognitionFailure,
    SessionStateError,
    UnknownFieldError,
)
from intake.models import EditableFieldView, FormSessionState, StructuredPreviewView
from intake.services.field_reconciler import (
    EditableField,
    StructuredPreview,
    classify_value,
    derive_label,
    merge,
    preview_items,
    split,
)
from intake.services.recognition_client import RecognitionClient, UploadedDocument
from intake.services.record_store import RecordStore

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    RECOGNITION_FAILED = "recognition_failed"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"
    SUBMIT_FAILED = "submit_failed"


EDITABLE_STATES = (SessionState.READY, SessionState.SUBMIT_FAILED)


class FormSession:
    """Edit state for one in-flight document."""

    def __init__(
        self,
        recognition_client: RecognitionClient,
        record_store: RecordStore,
        todo_store: Optional[RecordStore] = None,
        session_id: Optional[str] = None
    ):
        """
        Initialize a form session.

        Args:
            recognition_client: Client used to recognize uploaded documents
            record_store: Store that persists submitted patient forms
            todo_store: Optional store that receives a reference todo per submitted form
            session_id: Optional identifier (generated when omitted)
        """
        self.session_id = session_id or str(uuid.uuid4())
        self.recognition_client = recognition_client
        self.record_store = record_store
        self.todo_store = todo_store

        self.state = SessionState.IDLE
        self.filename: Optional[str] = None
        self.error_message: Optional[str] = None
        self.fields: Dict[str, Any] = {}
        self.previews: List[StructuredPreview] = []
        self.raw_text: Optional[str] = None
        self.confidence: Optional[float] = None
        self.last_record: Optional[Any] = None
        self._generation = 0

    @property
    def is_loading(self) -> bool:
        return self.state is SessionState.LOADING

    @property
    def is_submitting(self) -> bool:
        return self.state is SessionState.SUBMITTING

    async def select_file(self, document: UploadedDocument) -> SessionState:
        """
        Recognize a newly selected document and populate the form from it.

        Args:
            document: The uploaded file

        Returns:
            State after this selection resolved (or the current state if it was superseded)
        """
        if self.state is SessionState.SUBMITTING:
            raise SessionStateError("Cannot select a new document while a submission is in progress")

        self._generation += 1
        generation = self._generation

        self._clear()
        self.filename = document.filename
        self.state = SessionState.LOADING
        logger.info(f"Session {self.session_id}: recognizing {document.filename}")

        try:
            result = await self.recognition_client.recognize(document)
        except RecognitionFailure as e:
            if generation != self._generation:
                logger.info(f"Session {self.session_id}: discarding stale failure for {document.filename}")
                return self.state
            logger.error(f"Session {self.session_id}: recognition failed: {e.message}")
            self.error_message = e.message
            self.state = SessionState.RECOGNITION_FAILED
            return self.state

        if generation != self._generation:
            logger.info(f"Session {self.session_id}: discarding stale result for {document.filename}")
            return self.state

        editable, previews = split(result.form_fields)
        self.fields = {f.name: f.value for f in editable}
        self.previews = previews
        self.raw_text = result.raw_text
        self.confidence = result.confidence
        self.state = SessionState.READY
        logger.info(
            f"Session {self.session_id}: ready with {len(self.fields)} editable fields "
            f"and {len(self.previews)} structured fields"
        )
        return self.state

    def edit_field(self, name: str, value: Any):
        """Set an editable field to the user's value."""
        self.edit_fields({name: value})

    def edit_fields(self, edits: Mapping[str, Any]):
        """
        Apply a batch of edits to editable fields.

        Every edit is checked before any is applied, so a rejected batch
        leaves the fields as they were. Editing after a failed submit clears
        the failure and returns the session to ready.

        Raises:
            SessionStateError: The session is not ready or submit_failed
            UnknownFieldError: A name is not an editable field
            InvalidFieldValueError: A value is a list or an object
        """
        if self.state not in EDITABLE_STATES:
            raise SessionStateError(f"Fields cannot be edited while the session is {self.state.value}")
        for name, value in edits.items():
            if name not in self.fields:
                raise UnknownFieldError(f"'{name}' is not an editable field")
            if classify_value(value).is_structured:
                raise InvalidFieldValueError(f"'{name}' takes a single value, not a list or object")

        self.fields.update(edits)
        if self.state is SessionState.SUBMIT_FAILED:
            self.state = SessionState.READY
            self.error_message = None

    def editable_fields(self) -> List[EditableField]:
        return [EditableField(name=name, value=value) for name, value in self.fields.items()]

    def build_record(self) -> Dict[str, Any]:
        """Merge edited fields and serialized structured fields with this session's provenance."""
        record = merge(self.fields, self.previews)
        record['rawOcrText'] = self.raw_text or ''
        record['confidence'] = self.confidence or 0
        return record

    async def submit(self):
        """
        Persist the current form.

        Returns:
            The stored record, or None if the submission failed (see error_message)
        """
        if self.state not in EDITABLE_STATES:
            raise SessionStateError(f"Cannot submit while the session is {self.state.value}")

        self.state = SessionState.SUBMITTING
        self.error_message = None
        record = self.build_record()
        logger.info(f"Session {self.session_id}: submitting form data")

        try:
            stored = await self.record_store.create(record)
        except IntakeError as e:
            return self._submit_failed(e.message)
        except Exception as e:
            logger.error(f"Session {self.session_id}: unexpected error submitting form", exc_info=True)
            return self._submit_failed(str(e))

        logger.info(f"Session {self.session_id}: patient form created {stored.id}")
        await self._create_reference_todo(record)

        self._clear()
        self.filename = None
        self.last_record = stored
        self.state = SessionState.SUBMITTED
        return stored

    def snapshot(self) -> FormSessionState:
        """Serializable view of the session."""
        return FormSessionState(
            session_id=self.session_id,
            state=self.state.value,
            filename=self.filename,
            is_loading=self.is_loading,
            is_submitting=self.is_submitting,
            error_message=self.error_message,
            fields=[
                EditableFieldView(name=name, label=derive_label(name), value=value)
                for name, value in self.fields.items()
            ],
            previews=[
                StructuredPreviewView(
                    name=p.name,
                    label=derive_label(p.name),
                    kind=p.kind.value,
                    items=preview_items(p.value),
                    value=p.value
                )
                for p in self.previews
            ],
            confidence=self.confidence,
            last_record_id=getattr(self.last_record, 'id', None),
        )

    def _submit_failed(self, message: str) -> None:
        logger.error(f"Session {self.session_id}: error submitting form: {message}")
        self.error_message = message or 'Failed to submit form'
        self.state = SessionState.SUBMIT_FAILED
        return None

    async def _create_reference_todo(self, record: Dict[str, Any]):
        if self.todo_store is None:
            return
        content = (
            f"Patient Form: {record.get('patientName') or 'Unknown'} - "
            f"ID: {record.get('patientId') or 'Unknown'}"
        )
        try:
            await self.todo_store.create({'content': content})
        except Exception as e:
            # The patient form is already stored.
            logger.warning(f"Session {self.session_id}: could not create reference todo: {e}")

    def _clear(self):
        self.error_message = None
        self.fields = {}
        self.previews = []
        self.raw_text = None
        self.confidence = None
