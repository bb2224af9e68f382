"""
Document recognition clients.

A client accepts one uploaded document and returns a RecognitionResult, or
raises RecognitionFailure. Every failure cause (transport, decode, provider
error status, timeout, rate limit) is normalized to RecognitionFailure.

Provider responses follow one contract:
    {status, data?: {formFields, rawText, confidence}, message?}
Only status 200 with formFields present is a success.
"""
import asyncio
import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

import requests

from intake.config import Config
from intake.errors import RecognitionFailure
from intake.utils.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


@dataclass
class UploadedDocument:
    """A file handed to the recognition client."""
    filename: str
    content: bytes
    content_type: str = 'application/octet-stream'

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class RecognitionResult:
    """
    Structured OCR output for one document.

    form_fields returns a fresh deep copy on every access, so the result
    cannot be changed after creation.
    """
    fields: Mapping[str, Any] = field(repr=False)
    raw_text: str = ''
    confidence: float = 0.0

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> 'RecognitionResult':
        form_fields = data.get('formFields')
        if not isinstance(form_fields, Mapping):
            raise RecognitionFailure("Recognition response did not contain form fields")
        return cls(
            fields=copy.deepcopy(dict(form_fields)),
            raw_text=str(data.get('rawText') or ''),
            confidence=_clamp_confidence(data.get('confidence')),
        )

    @property
    def form_fields(self) -> Dict[str, Any]:
        return copy.deepcopy(dict(self.fields))


def _clamp_confidence(value: Any) -> float:
    try:
        confidence = float(value or 0)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring non-numeric confidence {value!r}")
        return 0.0
    return min(max(confidence, 0.0), 1.0)


class RecognitionClient:
    """Base class for recognition clients."""

    service_name = 'recognition'

    def __init__(self, rate_limiter: Optional[RateLimiter] = None, timeout: Optional[float] = None):
        """
        Initialize the client.

        Args:
            rate_limiter: Optional rate limiter shared with other provider clients
            timeout: Seconds to wait for the provider (defaults to Config.RECOGNITION_TIMEOUT)
        """
        self.rate_limiter = rate_limiter
        self.timeout = timeout if timeout is not None else Config.RECOGNITION_TIMEOUT
        self.last_response: Optional[Dict[str, Any]] = None

    async def recognize(self, document: UploadedDocument) -> RecognitionResult:
        """
        Recognize form fields in a document.

        Args:
            document: Uploaded file

        Returns:
            RecognitionResult with form fields and provenance

        Raises:
            RecognitionFailure: On any failure
        """
        if self.rate_limiter:
            can_call, reason = self.rate_limiter.can_make_call(self.service_name)
            if not can_call:
                logger.warning(f"Rate limit exceeded: {reason}")
                self.last_response = {'status': 429, 'message': f"Rate limit exceeded: {reason}", 'data': {}}
                raise RecognitionFailure(f"Rate limit exceeded: {reason}")

        logger.info(f"Processing document {document.filename} ({document.size} bytes) with {self.service_name}")

        try:
            response = await asyncio.wait_for(self._request(document), timeout=self.timeout)
        except asyncio.TimeoutError:
            message = f"Document recognition timed out after {self.timeout:g} seconds"
            logger.error(message)
            self.last_response = {'status': 504, 'message': message, 'data': {}}
            raise RecognitionFailure(message)
        except RecognitionFailure as e:
            self.last_response = {'status': 500, 'message': e.message, 'data': {}}
            raise
        except Exception as e:
            logger.error(f"Error processing document with {self.service_name}: {e}")
            self.last_response = {'status': 500, 'message': str(e) or 'Unknown error', 'data': {}}
            raise RecognitionFailure(str(e) or 'Unknown error') from e
        finally:
            if self.rate_limiter:
                self.rate_limiter.record_call(self.service_name)

        self.last_response = response
        return self.interpret_response(response)

    @staticmethod
    def interpret_response(response: Any) -> RecognitionResult:
        """
        Turn a provider response into a RecognitionResult.

        Raises:
            RecognitionFailure: Unless status is 200 and formFields is present
        """
        if not isinstance(response, Mapping):
            raise RecognitionFailure("Malformed recognition response")

        data = response.get('data')
        if response.get('status') == 200 and isinstance(data, Mapping) and data.get('formFields') is not None:
            return RecognitionResult.from_payload(data)

        message = response.get('message') or 'Failed to process the document'
        logger.error(f"Recognition failed with status {response.get('status')}: {message}")
        raise RecognitionFailure(message)

    async def _request(self, document: UploadedDocument) -> Dict[str, Any]:
        raise NotImplementedError


# Development payload returned by the mock provider.
MOCK_FORM_FIELDS: Dict[str, Any] = {
    'patientName': 'Jane Doe',
    'patientId': '12345',
    'dateOfBirth': '1980-05-15',
    'address': '123 Main St, Anytown, US 12345',
    'phoneNumber': '(555) 123-4567',
    'email': 'jane.doe@example.com',
    'insuranceProvider': 'Example Health Insurance',
    'policyNumber': 'POL-987654321',
    'medicalHistory': [
        {'condition': 'Asthma', 'diagnosed': '2010'},
        {'condition': 'Hypertension', 'diagnosed': '2015'}
    ],
    'medications': [
        {'name': 'Albuterol', 'dosage': '90mcg', 'frequency': 'As needed'},
        {'name': 'Lisinopril', 'dosage': '10mg', 'frequency': 'Daily'}
    ],
    'allergies': ['Penicillin', 'Peanuts'],
    'emergencyContact': {
        'name': 'John Doe',
        'relationship': 'Spouse',
        'phoneNumber': '(555) 987-6543'
    }
}

MOCK_RAW_TEXT = "Patient Intake Form\nName: Jane Doe\nID: 12345\nDOB: 05/15/1980\n..."


class MockRecognitionClient(RecognitionClient):
    """Returns a fixed patient-intake payload after a fixed delay."""

    service_name = 'mock_ocr'

    def __init__(
        self,
        delay_seconds: Optional[float] = None,
        form_fields: Optional[Dict[str, Any]] = None,
        rate_limiter: Optional[RateLimiter] = None,
        timeout: Optional[float] = None
    ):
        super().__init__(rate_limiter=rate_limiter, timeout=timeout)
        self.delay_seconds = Config.MOCK_RECOGNITION_DELAY if delay_seconds is None else delay_seconds
        self.form_fields = form_fields if form_fields is not None else MOCK_FORM_FIELDS

    async def _request(self, document: UploadedDocument) -> Dict[str, Any]:
        await asyncio.sleep(self.delay_seconds)
        return {
            'status': 200,
            'data': {
                'formFields': copy.deepcopy(self.form_fields),
                'rawText': MOCK_RAW_TEXT,
                'confidence': 0.95
            }
        }


class MistralOCRClient(RecognitionClient):
    """Uploads the document to the Mistral OCR endpoint over HTTP."""

    service_name = 'mistral_ocr'

    def __init__(
        self,
        api_key: Optional[str] = None,
        endpoint: Optional[str] = None,
        rate_limiter: Optional[RateLimiter] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None
    ):
        super().__init__(rate_limiter=rate_limiter, timeout=timeout)
        self.api_key = api_key or Config.MISTRAL_API_KEY
        self.endpoint = endpoint or Config.MISTRAL_OCR_ENDPOINT
        self.session = session or requests.Session()

        if not self.api_key:
            raise ValueError("MISTRAL_API_KEY is required")

        logger.info(f"Initialized Mistral OCR client for {self.endpoint}")

    async def _request(self, document: UploadedDocument) -> Dict[str, Any]:
        return await asyncio.to_thread(self._post, document)

    def _post(self, document: UploadedDocument) -> Dict[str, Any]:
        try:
            response = self.session.post(
                self.endpoint,
                headers={'Authorization': f'Bearer {self.api_key}'},
                files={'file': (document.filename, document.content, document.content_type)},
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise RecognitionFailure(f"Could not reach OCR provider: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = None

        result: Dict[str, Any] = {'status': response.status_code, 'data': body if isinstance(body, dict) else {}}
        if response.status_code != 200:
            message = body.get('message') if isinstance(body, dict) else None
            result['message'] = message or f"OCR provider returned HTTP {response.status_code}"
        elif body is None:
            result['message'] = "OCR provider returned a non-JSON response"
        return result


def create_recognition_client(rate_limiter: Optional[RateLimiter] = None) -> RecognitionClient:
    """Build the recognition client selected by Config.RECOGNITION_PROVIDER."""
    if Config.RECOGNITION_PROVIDER == 'mistral':
        return MistralOCRClient(rate_limiter=rate_limiter)
    return MockRecognitionClient(rate_limiter=rate_limiter)
