#!/usr/bin/env python3
"""
Patient Intake Session - Example Usage
======================================

Runs one upload -> edit -> submit -> browse cycle against the mock OCR
provider and the in-memory store.

Usage:
    python examples/intake_session_example.py path/to/intake.pdf --set patientName="Jane Smith"
"""

import sys
import json
import asyncio
import argparse
import logging
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from intake.models import PatientForm, PatientFormInput, Todo, TodoInput
from intake.services.form_session import FormSession, SessionState
from intake.services.recognition_client import MockRecognitionClient, UploadedDocument
from intake.services.record_browser import RecordBrowser
from intake.services.record_store import InMemoryRecordStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def parse_edits(pairs):
    """Turn ['name=value', ...] into a dict."""
    edits = {}
    for pair in pairs or []:
        name, sep, value = pair.partition('=')
        if not sep:
            raise ValueError(f"Expected name=value, got '{pair}'")
        edits[name] = value
    return edits


async def run(path: Path, edits: dict, delay: float):
    forms = InMemoryRecordStore('PatientForm', PatientFormInput, PatientForm)
    todos = InMemoryRecordStore('Todo', TodoInput, Todo)
    session = FormSession(MockRecognitionClient(delay_seconds=delay), forms, todo_store=todos)

    document = UploadedDocument(filename=path.name, content=path.read_bytes())

    with RecordBrowser(forms) as browser:
        state = await session.select_file(document)
        if state is not SessionState.READY:
            logger.error(f"Recognition failed: {session.error_message}")
            return 1

        print("\nRecognized fields:")
        print(json.dumps(session.snapshot().model_dump(include={'fields', 'previews'}), indent=2))

        session.edit_fields(edits)

        stored = await session.submit()
        if stored is None:
            logger.error(f"Submit failed: {session.error_message}")
            return 1

        print("\nStored record:")
        print(stored.model_dump_json(indent=2))

        detail = browser.select(stored.id)
        print("\nDetail view:")
        print(detail.model_dump_json(indent=2))

    print("\nTodos:")
    for todo in await todos.list():
        print(f"  - {todo.content}")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Run one patient intake session against the mock OCR provider")
    parser.add_argument('document', help="Path to the document to upload")
    parser.add_argument('--set', dest='edits', action='append', metavar='NAME=VALUE', help="Edit a field before submitting")
    parser.add_argument('--delay', type=float, default=0.2, help="Mock recognition delay in seconds")
    args = parser.parse_args()

    path = Path(args.document)
    if not path.exists():
        logger.error(f"File not found: {path}")
        return 1

    return asyncio.run(run(path, parse_edits(args.edits), args.delay))


if __name__ == '__main__':
    sys.exit(main())
