import asyncio

import pytest
import requests

from conftest import StaticRecognitionClient, make_document, ok_response
from intake.errors import RecognitionFailure
from intake.services.recognition_client import (
    MistralOCRClient,
    MockRecognitionClient,
    RecognitionClient,
    RecognitionResult,
)
from intake.utils.rate_limiter import RateLimiter


def test_mock_client_returns_patient_fields():
    client = MockRecognitionClient(delay_seconds=0)
    result = asyncio.run(client.recognize(make_document()))

    assert result.form_fields['patientName'] == 'Jane Doe'
    assert result.form_fields['allergies'] == ['Penicillin', 'Peanuts']
    assert result.confidence == 0.95
    assert result.raw_text.startswith('Patient Intake Form')
    assert client.last_response['status'] == 200


def test_result_cannot_be_changed_through_form_fields():
    result = RecognitionResult.from_payload({'formFields': {'allergies': ['Peanuts']}})
    fields = result.form_fields
    fields['allergies'].append('Penicillin')

    assert result.form_fields == {'allergies': ['Peanuts']}


def test_provider_error_uses_provider_message():
    client = StaticRecognitionClient({'status': 500, 'message': 'OCR backend down', 'data': {}})

    with pytest.raises(RecognitionFailure) as exc_info:
        asyncio.run(client.recognize(make_document()))

    assert exc_info.value.message == 'OCR backend down'
    assert client.last_response['status'] == 500


def test_missing_form_fields_is_a_failure():
    client = StaticRecognitionClient({'status': 200, 'data': {'rawText': 'hello'}})

    with pytest.raises(RecognitionFailure) as exc_info:
        asyncio.run(client.recognize(make_document()))

    assert exc_info.value.message == 'Failed to process the document'


def test_transport_error_is_normalized():
    client = StaticRecognitionClient(ConnectionError('connection reset'))

    with pytest.raises(RecognitionFailure) as exc_info:
        asyncio.run(client.recognize(make_document()))

    assert exc_info.value.message == 'connection reset'


def test_timeout_is_a_recognition_failure():
    client = MockRecognitionClient(delay_seconds=1.0, timeout=0.01)

    with pytest.raises(RecognitionFailure) as exc_info:
        asyncio.run(client.recognize(make_document()))

    assert 'timed out' in exc_info.value.message


def test_rate_limit_blocks_recognition():
    limiter = RateLimiter(max_total_calls=1, enabled=True)
    client = StaticRecognitionClient(ok_response({'patientName': 'Jane Doe'}), rate_limiter=limiter)

    asyncio.run(client.recognize(make_document()))
    with pytest.raises(RecognitionFailure) as exc_info:
        asyncio.run(client.recognize(make_document()))

    assert exc_info.value.message.startswith('Rate limit exceeded')
    assert 'Document recognition limit reached: 1/1' in exc_info.value.message
    assert client.calls == 1
    assert limiter.get_stats()['calls_by_service'] == {'static_ocr': 1}


def test_disabled_budget_still_counts_calls():
    limiter = RateLimiter(max_total_calls=1, enabled=False)
    client = StaticRecognitionClient(ok_response({'patientName': 'Jane Doe'}), rate_limiter=limiter)

    asyncio.run(client.recognize(make_document()))
    asyncio.run(client.recognize(make_document()))

    stats = limiter.get_stats()
    assert stats['total_calls'] == 2
    assert stats['remaining_calls'] == 0


def test_confidence_is_clamped():
    result = RecognitionClient.interpret_response(ok_response({'a': 'b'}, confidence=7))
    assert result.confidence == 1.0

    result = RecognitionClient.interpret_response(ok_response({'a': 'b'}, confidence='n/a'))
    assert result.confidence == 0.0


class FakeResponse:
    def __init__(self, status_code, body):
        self.status_code = status_code
        self._body = body

    def json(self):
        if self._body is None:
            raise ValueError('No JSON object could be decoded')
        return self._body


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []

    def post(self, url, headers=None, files=None, timeout=None):
        self.requests.append({'url': url, 'headers': headers, 'files': files, 'timeout': timeout})
        if self.error:
            raise self.error
        return self.response


def test_mistral_client_posts_document_with_bearer_token():
    body = {'formFields': {'patientName': 'Jane Doe'}, 'rawText': 'Name: Jane Doe', 'confidence': 0.8}
    session = FakeSession(FakeResponse(200, body))
    client = MistralOCRClient(api_key='secret', endpoint='https://ocr.example/v1/ocr', session=session, timeout=5)

    result = asyncio.run(client.recognize(make_document('scan.png', b'png-bytes')))

    assert result.form_fields == {'patientName': 'Jane Doe'}
    assert result.confidence == 0.8
    sent = session.requests[0]
    assert sent['url'] == 'https://ocr.example/v1/ocr'
    assert sent['headers'] == {'Authorization': 'Bearer secret'}
    assert sent['files']['file'][0] == 'scan.png'


def test_mistral_client_http_error():
    session = FakeSession(FakeResponse(401, {'message': 'Unauthorized'}))
    client = MistralOCRClient(api_key='secret', session=session)

    with pytest.raises(RecognitionFailure) as exc_info:
        asyncio.run(client.recognize(make_document()))

    assert exc_info.value.message == 'Unauthorized'


def test_mistral_client_connection_error():
    session = FakeSession(error=requests.ConnectionError('no route to host'))
    client = MistralOCRClient(api_key='secret', session=session)

    with pytest.raises(RecognitionFailure) as exc_info:
        asyncio.run(client.recognize(make_document()))

    assert 'no route to host' in exc_info.value.message


def test_mistral_client_requires_api_key(monkeypatch):
    from intake.config import Config

    monkeypatch.setattr(Config, 'MISTRAL_API_KEY', None)
    with pytest.raises(ValueError):
        MistralOCRClient(api_key=None, session=FakeSession())
