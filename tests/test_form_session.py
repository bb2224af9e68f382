import asyncio

import pytest

from conftest import FlakyRecordStore, GatedRecognitionClient, StaticRecognitionClient, make_document, ok_response
from intake.errors import InvalidFieldValueError, SessionStateError, UnknownFieldError
from intake.services.form_session import FormSession, SessionState
from intake.services.recognition_client import MockRecognitionClient


def ready_session(form_store, todo_store=None, fields=None):
    client = MockRecognitionClient(delay_seconds=0) if fields is None else StaticRecognitionClient(ok_response(fields))
    session = FormSession(client, form_store, todo_store=todo_store)
    asyncio.run(session.select_file(make_document()))
    return session


def test_new_session_is_idle(form_store):
    session = FormSession(MockRecognitionClient(delay_seconds=0), form_store)

    assert session.state is SessionState.IDLE
    assert session.fields == {}
    assert session.previews == []


def test_recognized_fields_populate_the_form(form_store):
    session = ready_session(form_store)

    assert session.state is SessionState.READY
    assert session.fields['patientName'] == 'Jane Doe'
    assert [p.name for p in session.previews] == ['medicalHistory', 'medications', 'allergies', 'emergencyContact']
    assert session.confidence == 0.95


def test_edited_submit_persists_edits_and_serialized_structures(form_store, todo_store):
    session = ready_session(form_store, todo_store)
    session.edit_field('patientName', 'Jane Smith')

    stored = asyncio.run(session.submit())

    assert stored.patientName == 'Jane Smith'
    assert stored.allergies == '["Penicillin","Peanuts"]'
    assert stored.emergencyContact == '{"name":"John Doe","relationship":"Spouse","phoneNumber":"(555) 987-6543"}'
    assert stored.rawOcrText.startswith('Patient Intake Form')
    assert stored.confidence == 0.95
    assert [r.id for r in asyncio.run(form_store.list())] == [stored.id]

    todos = asyncio.run(todo_store.list())
    assert [t.content for t in todos] == ['Patient Form: Jane Smith - ID: 12345']


def test_successful_submit_clears_session_state(form_store):
    session = ready_session(form_store)
    stored = asyncio.run(session.submit())

    assert session.state is SessionState.SUBMITTED
    assert session.fields == {}
    assert session.previews == []
    assert session.error_message is None
    assert session.raw_text is None
    assert session.last_record.id == stored.id
    assert session.snapshot().last_record_id == stored.id


def test_new_file_after_submit_starts_over(form_store):
    session = ready_session(form_store)
    asyncio.run(session.submit())

    state = asyncio.run(session.select_file(make_document('next.pdf')))

    assert state is SessionState.READY
    assert session.filename == 'next.pdf'
    assert session.fields['patientId'] == '12345'


def test_recognition_failure_keeps_provider_message(form_store):
    client = StaticRecognitionClient({'status': 500, 'message': 'OCR backend down', 'data': {}})
    session = FormSession(client, form_store)

    state = asyncio.run(session.select_file(make_document()))

    assert state is SessionState.RECOGNITION_FAILED
    assert session.error_message == 'OCR backend down'
    assert session.fields == {}
    with pytest.raises(SessionStateError):
        asyncio.run(session.submit())
    assert asyncio.run(form_store.list()) == []


def test_rejected_write_keeps_fields_for_retry():
    store = FlakyRecordStore('Database unavailable')
    session = ready_session(store)
    session.edit_field('patientName', 'Jane Smith')

    assert asyncio.run(session.submit()) is None
    assert session.state is SessionState.SUBMIT_FAILED
    assert session.error_message == 'Database unavailable'
    assert session.fields['patientName'] == 'Jane Smith'
    assert len(session.previews) == 4

    store.fail = False
    stored = asyncio.run(session.submit())

    assert session.state is SessionState.SUBMITTED
    assert stored.patientName == 'Jane Smith'


def test_edit_after_failed_submit_returns_to_ready():
    store = FlakyRecordStore()
    session = ready_session(store)
    asyncio.run(session.submit())
    assert session.error_message

    session.edit_field('email', 'jane.smith@example.com')

    assert session.state is SessionState.READY
    assert session.fields['email'] == 'jane.smith@example.com'
    assert session.error_message is None


def test_missing_required_fields_fail_the_submit(form_store):
    session = ready_session(form_store, fields={'patientName': 'Jane Doe', 'allergies': ['Peanuts']})

    asyncio.run(session.submit())

    assert session.state is SessionState.SUBMIT_FAILED
    assert 'patientId' in session.error_message
    assert session.fields == {'patientName': 'Jane Doe'}


def test_edits_are_limited_to_editable_fields(form_store):
    session = ready_session(form_store)

    with pytest.raises(UnknownFieldError):
        session.edit_field('allergies', 'Peanuts')
    with pytest.raises(UnknownFieldError):
        session.edit_field('favoriteColor', 'blue')


def test_structured_values_are_rejected_by_scalar_fields(form_store):
    session = ready_session(form_store)

    with pytest.raises(InvalidFieldValueError):
        session.edit_field('patientName', ['Jane', 'Smith'])
    with pytest.raises(InvalidFieldValueError):
        session.edit_field('address', {'street': '1 Main St'})

    assert session.fields['patientName'] == 'Jane Doe'
    assert session.fields['address'] == '123 Main St, Anytown, US 12345'


def test_rejected_batch_leaves_every_field_unchanged(form_store):
    session = ready_session(form_store)

    with pytest.raises(UnknownFieldError):
        session.edit_fields({'patientName': 'Changed', 'bogus': 'x'})
    with pytest.raises(InvalidFieldValueError):
        session.edit_fields({'email': 'new@example.com', 'phoneNumber': ['555-0100']})

    assert session.fields['patientName'] == 'Jane Doe'
    assert session.fields['email'] == 'jane.doe@example.com'

    session.edit_fields({'patientName': 'Jane Smith', 'email': 'jane.smith@example.com'})
    assert session.fields['patientName'] == 'Jane Smith'
    assert session.fields['email'] == 'jane.smith@example.com'


def test_edits_and_submit_need_a_recognized_document(form_store):
    session = FormSession(MockRecognitionClient(delay_seconds=0), form_store)

    with pytest.raises(SessionStateError):
        session.edit_field('patientName', 'Jane Smith')
    with pytest.raises(SessionStateError):
        asyncio.run(session.submit())


def test_latest_file_selection_wins(form_store):
    async def scenario(release_order):
        client = GatedRecognitionClient({
            'first.pdf': ok_response({'patientName': 'First Patient'}),
            'second.pdf': ok_response({'patientName': 'Second Patient'}),
        })
        session = FormSession(client, form_store)
        first = asyncio.create_task(session.select_file(make_document('first.pdf')))
        second = asyncio.create_task(session.select_file(make_document('second.pdf')))
        await asyncio.sleep(0)

        for name in release_order:
            client.release(name)
            await asyncio.sleep(0.01)
        await asyncio.gather(first, second)
        return session

    late_first = asyncio.run(scenario(['second.pdf', 'first.pdf']))
    assert late_first.state is SessionState.READY
    assert late_first.filename == 'second.pdf'
    assert late_first.fields == {'patientName': 'Second Patient'}

    in_order = asyncio.run(scenario(['first.pdf', 'second.pdf']))
    assert in_order.fields == {'patientName': 'Second Patient'}


def test_snapshot_labels_fields_and_previews(form_store):
    snapshot = ready_session(form_store).snapshot()

    labels = {f.name: f.label for f in snapshot.fields}
    assert labels['dateOfBirth'] == 'Date Of Birth'
    allergies = next(p for p in snapshot.previews if p.name == 'allergies')
    assert allergies.kind == 'list'
    assert allergies.items == ['Penicillin', 'Peanuts']
    assert snapshot.state == 'ready'
    assert snapshot.is_loading is False
