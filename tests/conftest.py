import asyncio
import copy

import pytest

from intake.errors import SubmitFailure
from intake.models import PatientForm, PatientFormInput, Todo, TodoInput
from intake.services.recognition_client import MOCK_FORM_FIELDS, RecognitionClient, UploadedDocument
from intake.services.record_store import InMemoryRecordStore


def ok_response(form_fields, raw_text="Patient Intake Form", confidence=0.9):
    return {
        'status': 200,
        'data': {
            'formFields': copy.deepcopy(form_fields),
            'rawText': raw_text,
            'confidence': confidence,
        },
    }


def make_document(filename="intake.pdf", content=b"%PDF-1.4 test"):
    return UploadedDocument(filename=filename, content=content, content_type="application/pdf")


class StaticRecognitionClient(RecognitionClient):
    """Returns a canned provider response for every document."""

    service_name = 'static_ocr'

    def __init__(self, response, **kwargs):
        super().__init__(**kwargs)
        self.response = response
        self.calls = 0

    async def _request(self, document):
        self.calls += 1
        if isinstance(self.response, Exception):
            raise self.response
        return copy.deepcopy(self.response)


class GatedRecognitionClient(RecognitionClient):
    """Holds each request until release(filename) is called. Create inside a running loop."""

    service_name = 'gated_ocr'

    def __init__(self, responses, **kwargs):
        super().__init__(**kwargs)
        self.responses = responses
        self.gates = {name: asyncio.Event() for name in responses}

    def release(self, filename):
        self.gates[filename].set()

    async def _request(self, document):
        await self.gates[document.filename].wait()
        return copy.deepcopy(self.responses[document.filename])


class FlakyRecordStore(InMemoryRecordStore):
    """In-memory store whose writes fail while `fail` is set."""

    def __init__(self, message="Database unavailable"):
        super().__init__('PatientForm', PatientFormInput, PatientForm)
        self.fail = True
        self.message = message

    async def _put(self, stored):
        if self.fail:
            raise SubmitFailure(self.message)
        await super()._put(stored)


@pytest.fixture
def form_store():
    return InMemoryRecordStore('PatientForm', PatientFormInput, PatientForm)


@pytest.fixture
def todo_store():
    return InMemoryRecordStore('Todo', TodoInput, Todo)


@pytest.fixture
def mock_fields():
    return copy.deepcopy(MOCK_FORM_FIELDS)


@pytest.fixture
def valid_record():
    return {
        'patientName': 'Jane Doe',
        'patientId': '12345',
        'dateOfBirth': '1980-05-15',
        'address': '123 Main St, Anytown, US 12345',
        'phoneNumber': '(555) 123-4567',
        'email': 'jane.doe@example.com',
    }
