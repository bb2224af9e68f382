"""
Record browser for stored patient forms.

Lists records, follows the store's live feed and builds the detail view for
a selected record. Stored structured text that cannot be parsed is shown
verbatim instead of failing the detail view.
"""
import logging
from datetime import datetime
from threading import Lock
from typing import Any, Callable, Dict, List, Optional, Union

from intake.models import (
    STRUCTURED_PATIENT_FIELDS,
    DetailField,
    PatientForm,
    PatientFormSummary,
    RecordDetail,
    StructuredSection,
)
from intake.services.field_reconciler import derive_label, parse_for_display, preview_items
from intake.services.record_store import RecordStore
from intake.utils.subscriptions import Subscription

logger = logging.getLogger(__name__)

LIST_ERROR = 'Failed to load patient forms'
FEED_ERROR = 'Failed to load real-time updates for patient forms'

# (field, label, shown as N/A when empty)
DETAIL_FIELDS = (
    ('patientName', 'Name', False),
    ('patientId', 'ID', False),
    ('dateOfBirth', 'Date of Birth', False),
    ('address', 'Address', False),
    ('phoneNumber', 'Phone', False),
    ('email', 'Email', False),
    ('insuranceProvider', 'Insurance Provider', True),
    ('policyNumber', 'Policy Number', True),
)


def format_date(value: Optional[str]) -> str:
    """Format an ISO date for display, falling back to the stored text."""
    if not value:
        return value or ''
    try:
        return datetime.fromisoformat(value).strftime('%m/%d/%Y')
    except ValueError:
        return value


def _medical_history_line(item: Dict[str, Any]) -> str:
    return f"{item.get('condition', '')} (diagnosed: {item.get('diagnosed', '')})"


def _medication_line(item: Dict[str, Any]) -> str:
    return f"{item.get('name', '')} - {item.get('dosage', '')} ({item.get('frequency', '')})"


ITEM_FORMATTERS: Dict[str, Callable[[Dict[str, Any]], str]] = {
    'medicalHistory': _medical_history_line,
    'medications': _medication_line,
}


def section_items(name: str, value: Any) -> List[str]:
    """Display lines for a parsed structured field."""
    formatter = ITEM_FORMATTERS.get(name)
    if formatter and isinstance(value, list) and all(isinstance(item, dict) for item in value):
        return [formatter(item) for item in value]
    return preview_items(value)


def build_detail(record: PatientForm) -> RecordDetail:
    """Build the detail view for one stored record."""
    fields = []
    for name, label, optional in DETAIL_FIELDS:
        value = getattr(record, name, None)
        if name == 'dateOfBirth':
            value = format_date(value)
        if optional and not value:
            value = 'N/A'
        fields.append(DetailField(name=name, label=label, value=value or ''))

    sections = []
    for name in STRUCTURED_PATIENT_FIELDS:
        raw_text = getattr(record, name, None)
        if not raw_text:
            continue
        value, parsed = parse_for_display(raw_text)
        sections.append(StructuredSection(
            name=name,
            label=derive_label(name),
            parsed=parsed,
            items=section_items(name, value) if parsed else [raw_text],
            raw_text=raw_text,
        ))

    return RecordDetail(
        id=record.id,
        fields=fields,
        sections=sections,
        rawOcrText=record.rawOcrText,
        confidence=record.confidence,
        createdAt=record.createdAt,
    )


class RecordBrowser:
    """
    Browsing state over a record store.

    Use as a context manager (or call close()) so the live-feed subscription
    is always released.
    """

    def __init__(self, store: RecordStore, on_change: Optional[Callable[[List[Any]], None]] = None):
        """
        Initialize the browser.

        Args:
            store: Store holding patient forms
            on_change: Optional callback invoked with the visible set after each feed delivery
        """
        self.store = store
        self.on_change = on_change
        self.records: List[Any] = []
        self.selected: Optional[RecordDetail] = None
        self.error_message: Optional[str] = None
        self.is_loading = False
        self._subscription: Optional[Subscription] = None
        self._feed_delivered = False
        self._lock = Lock()

    async def refresh(self) -> List[Any]:
        """Fetch the record list from the store."""
        self.is_loading = True
        try:
            records = await self.store.list()
        except Exception as e:
            logger.error(f"Error fetching patient forms: {e}")
            self.error_message = LIST_ERROR
            return self.records
        finally:
            self.is_loading = False

        with self._lock:
            # Once the live feed has delivered, it owns the visible set.
            if not self._feed_delivered:
                self.records = records
            self.error_message = None
            return self.records

    def subscribe(self) -> Subscription:
        """Follow the store's live feed. Returns the existing subscription when already subscribed."""
        if self._subscription is None or self._subscription.closed:
            self._subscription = self.store.observe(self._on_feed, self._on_feed_error)
        return self._subscription

    def close(self):
        """Release the live-feed subscription."""
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None

    def __enter__(self) -> 'RecordBrowser':
        self.subscribe()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def find(self, record_id: str) -> Optional[Any]:
        with self._lock:
            for record in self.records:
                if record.id == record_id:
                    return record
        return None

    def select(self, record: Union[PatientForm, str]) -> Optional[RecordDetail]:
        """
        Select a record for the detail view.

        Args:
            record: The record or its id

        Returns:
            Detail view, or None if the id is not in the visible set
        """
        if isinstance(record, str):
            found = self.find(record)
            if found is None:
                logger.info(f"Patient form {record} is not in the visible set")
                return None
            record = found
        self.selected = build_detail(record)
        return self.selected

    def clear_selection(self):
        self.selected = None

    def summaries(self) -> List[PatientFormSummary]:
        """List cards for the visible set."""
        with self._lock:
            records = list(self.records)
        return [
            PatientFormSummary(
                id=r.id,
                patientName=r.patientName,
                patientId=r.patientId,
                dateOfBirth=format_date(r.dateOfBirth),
                email=r.email,
                createdAt=r.createdAt,
            )
            for r in records
        ]

    def _on_feed(self, records: List[Any]):
        with self._lock:
            self.records = list(records)
            self._feed_delivered = True
            self.error_message = None
            self.is_loading = False
        if self.on_change:
            self.on_change(self.records)

    def _on_feed_error(self, error: Exception):
        logger.error(f"Error observing PatientForm data: {error}")
        with self._lock:
            self.error_message = FEED_ERROR
            self.is_loading = False
