"""
Field reconciliation between OCR results and the intake form.

OCR payloads have no fixed schema. Each entry is classified at runtime as a
scalar (editable in the form) or a structured value (list or object, shown as
a read-only preview and stored as serialized text).
"""
import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Tuple

from intake.errors import ParseFailure

logger = logging.getLogger(__name__)


class ValueKind(str, Enum):
    """Runtime kind of an OCR field value."""
    SCALAR = "scalar"
    LIST = "list"
    OBJECT = "object"

    @property
    def is_structured(self) -> bool:
        return self is not ValueKind.SCALAR


@dataclass
class EditableField:
    """A scalar OCR field the user can edit."""
    name: str
    value: Any


@dataclass(frozen=True)
class StructuredPreview:
    """A list or object OCR field shown read-only and stored serialized."""
    name: str
    value: Any
    kind: ValueKind


def classify_value(value: Any) -> ValueKind:
    """Classify a payload value. Strings, numbers, booleans and None are scalars."""
    if isinstance(value, Mapping):
        return ValueKind.OBJECT
    if isinstance(value, (list, tuple)):
        return ValueKind.LIST
    return ValueKind.SCALAR


def split(fields: Mapping[str, Any]) -> Tuple[List[EditableField], List[StructuredPreview]]:
    """
    Split OCR form fields into editable scalars and structured previews.

    A list of scalars is still structured; it is never promoted to an
    editable field. Both outputs keep the payload's key order.

    Args:
        fields: OCR form fields (field name -> value)

    Returns:
        Tuple of (editable fields, structured previews)
    """
    if not isinstance(fields, Mapping):
        raise TypeError(f"OCR form fields must be a mapping, got {type(fields).__name__}")

    editable: List[EditableField] = []
    previews: List[StructuredPreview] = []

    for name, value in fields.items():
        kind = classify_value(value)
        if kind.is_structured:
            previews.append(StructuredPreview(name=name, value=value, kind=kind))
        else:
            editable.append(EditableField(name=name, value=value))

    logger.debug(f"Split {len(fields)} OCR fields: {len(editable)} editable, {len(previews)} structured")
    return editable, previews


def serialize(value: Any) -> str:
    """Serialize a structured value to compact JSON text for storage."""
    return json.dumps(_plain(value), separators=(',', ':'), ensure_ascii=False)


def parse(text: str) -> Any:
    """
    Parse text produced by serialize().

    Raises:
        ParseFailure: If the text is not valid JSON
    """
    try:
        return json.loads(text)
    except (TypeError, ValueError) as e:
        raise ParseFailure(f"Could not parse structured text: {e}") from e


def parse_for_display(text: str) -> Tuple[Any, bool]:
    """
    Parse stored structured text for display without ever raising.

    Returns:
        Tuple of (value, parsed). On failure the raw text is returned with parsed=False.
    """
    try:
        return parse(text), True
    except ParseFailure as e:
        logger.info(f"Showing stored text verbatim: {e.message}")
        return text, False


def merge(edited: Mapping[str, Any], previews: Iterable[StructuredPreview]) -> Dict[str, Any]:
    """
    Build a storage record from edited scalar values and structured previews.

    Edited values win over the originally recognized ones; every structured
    preview is added under its own name as serialized text.

    Args:
        edited: Current editable field values
        previews: Structured previews from split()

    Returns:
        Draft record ready for the store
    """
    record: Dict[str, Any] = dict(edited)
    for preview in previews:
        if preview.name in record:
            raise ValueError(f"Field '{preview.name}' is both editable and structured")
        record[preview.name] = serialize(preview.value)
    return record


_INTERNAL_CAPITAL = re.compile(r'(?<!^)([A-Z])')


def derive_label(name: str) -> str:
    """Display label for a field name, e.g. 'dateOfBirth' -> 'Date Of Birth'."""
    spaced = _INTERNAL_CAPITAL.sub(r' \1', name)
    return spaced[:1].upper() + spaced[1:]


def format_item(item: Any) -> str:
    """Render one item of a structured value as a single display line."""
    if isinstance(item, str):
        return item
    return serialize(item)


def preview_items(value: Any) -> List[str]:
    """Display lines for a structured value (list items, or 'Label: value' per object entry)."""
    kind = classify_value(value)
    if kind is ValueKind.LIST:
        return [format_item(item) for item in value]
    if kind is ValueKind.OBJECT:
        return [f"{derive_label(str(key))}: {format_item(item)}" for key, item in value.items()]
    return [format_item(value)]


def _plain(value: Any) -> Any:
    # Read-only mapping proxies and tuples are not JSON types.
    if isinstance(value, Mapping):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return value
