"""
Pydantic models for stored records and API request/response schemas.
"""
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, ConfigDict, Field, model_validator
from datetime import datetime


# Stored field names follow the hosted data schema (camelCase).
REQUIRED_PATIENT_FIELDS = (
    'patientName',
    'patientId',
    'dateOfBirth',
    'address',
    'phoneNumber',
    'email',
)

STRUCTURED_PATIENT_FIELDS = (
    'medicalHistory',
    'medications',
    'allergies',
    'emergencyContact',
)


class PatientFormInput(BaseModel):
    """Record written to the PatientForm store. All fields are strings except confidence."""
    model_config = ConfigDict(extra='forbid')

    patientName: str
    patientId: str
    dateOfBirth: str
    address: str
    phoneNumber: str
    email: str
    insuranceProvider: Optional[str] = None
    policyNumber: Optional[str] = None
    medicalHistory: Optional[str] = None
    medications: Optional[str] = None
    allergies: Optional[str] = None
    emergencyContact: Optional[str] = None
    rawOcrText: Optional[str] = None
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)

    @model_validator(mode='before')
    @classmethod
    def stringify_numbers(cls, data: Any) -> Any:
        """OCR can return numbers for fields that are stored as strings (e.g. patientId)."""
        if not isinstance(data, dict):
            return data
        coerced = dict(data)
        for key, value in data.items():
            if key == 'confidence':
                continue
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                coerced[key] = str(value)
        return coerced


class PatientForm(PatientFormInput):
    """A stored patient form with its store-assigned identity."""
    id: str
    createdAt: datetime
    updatedAt: datetime


class TodoInput(BaseModel):
    """Record written to the Todo store."""
    model_config = ConfigDict(extra='forbid')

    content: Optional[str] = None


class Todo(TodoInput):
    """A stored todo item."""
    id: str
    createdAt: datetime
    updatedAt: datetime


class RateLimitStatus(BaseModel):
    """Rate limit status response model."""
    total_calls: int
    max_calls: int
    remaining_calls: int
    calls_by_service: Dict[str, int]


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str
    timestamp: datetime


class EditableFieldView(BaseModel):
    """An editable scalar field as shown in the intake form."""
    name: str
    label: str
    value: Any = None


class StructuredPreviewView(BaseModel):
    """A read-only structured field preview."""
    name: str
    label: str
    kind: str = Field(..., description="list | object")
    items: List[str] = Field(default_factory=list, description="Display lines for the value")
    value: Any = None


class FormSessionState(BaseModel):
    """Serializable snapshot of one form session."""
    session_id: str
    state: str
    filename: Optional[str] = None
    is_loading: bool = False
    is_submitting: bool = False
    error_message: Optional[str] = None
    fields: List[EditableFieldView] = Field(default_factory=list)
    previews: List[StructuredPreviewView] = Field(default_factory=list)
    confidence: Optional[float] = None
    last_record_id: Optional[str] = None


class FieldEditRequest(BaseModel):
    """Request model for editing one or more form fields."""
    fields: Dict[str, Any] = Field(..., description="Field name to new scalar value")


class TodoCreateRequest(BaseModel):
    """Request model for creating a todo."""
    content: Optional[str] = None


class PatientFormSummary(BaseModel):
    """Card shown in the patient form list."""
    id: str
    patientName: str
    patientId: str
    dateOfBirth: str
    email: str
    createdAt: datetime


class DetailField(BaseModel):
    """Labelled scalar value in the record detail view."""
    name: str
    label: str
    value: str


class StructuredSection(BaseModel):
    """Structured value re-parsed for the record detail view."""
    name: str
    label: str
    parsed: bool = Field(..., description="False when the stored text is shown verbatim")
    items: List[str] = Field(default_factory=list)
    raw_text: str


class RecordDetail(BaseModel):
    """Detail view of one stored patient form."""
    id: str
    fields: List[DetailField]
    sections: List[StructuredSection]
    rawOcrText: Optional[str] = None
    confidence: Optional[float] = None
    createdAt: datetime
