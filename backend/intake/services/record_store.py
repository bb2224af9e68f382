"""
Record stores for patient forms and todos.

A store validates records against its schema, assigns identity and
timestamps, lists stored records (most recent first) and publishes the full
record set to live-feed listeners after every change.
"""
import asyncio
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from threading import Lock
from typing import Any, Dict, List, Mapping, Optional, Type

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel, ValidationError

from intake.config import Config
from intake.errors import RecordValidationError, SubmitFailure
from intake.models import PatientForm, PatientFormInput, Todo, TodoInput
from intake.utils.subscriptions import ErrorListener, FeedHub, Listener, Subscription

logger = logging.getLogger(__name__)


def _format_validation_error(model_name: str, error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        location = '.'.join(str(part) for part in item.get('loc', ())) or model_name
        problems.append(f"{location}: {item.get('msg')}")
    return f"Invalid {model_name} record - " + '; '.join(problems)


class RecordStore:
    """Base class for stores. Subclasses implement _put and _scan."""

    def __init__(self, name: str, input_model: Type[BaseModel], stored_model: Type[BaseModel]):
        self.name = name
        self.input_model = input_model
        self.stored_model = stored_model
        self.feed = FeedHub(name)

    def validate(self, record: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Validate a draft record against the input schema.

        Raises:
            RecordValidationError: If required fields are missing or unknown fields are present
        """
        try:
            validated = self.input_model.model_validate(dict(record))
        except ValidationError as e:
            raise RecordValidationError(_format_validation_error(self.name, e)) from e
        return validated.model_dump(exclude_none=True)

    async def create(self, record: Mapping[str, Any]) -> BaseModel:
        """
        Store a new record.

        Args:
            record: Draft record (field name -> value)

        Returns:
            The stored record with its assigned id and timestamps

        Raises:
            SubmitFailure: If validation or the write fails
        """
        values = self.validate(record)
        now = datetime.now(timezone.utc)
        values.update({'id': str(uuid.uuid4()), 'createdAt': now, 'updatedAt': now})
        stored = self.stored_model.model_validate(values)

        await self._put(stored)
        logger.info(f"Created {self.name} record {values['id']}")

        await self._notify()
        return stored

    async def list(self) -> List[BaseModel]:
        """Return all stored records, most recent first."""
        records = await self._scan()
        return sorted(records, key=lambda r: r.createdAt, reverse=True)

    def observe(self, listener: Listener, on_error: Optional[ErrorListener] = None) -> Subscription:
        """
        Register a live-feed listener.

        The listener receives the full current record set after every change.
        The caller owns the returned Subscription and must cancel it.
        """
        return self.feed.subscribe(listener, on_error)

    async def _notify(self):
        try:
            records = await self.list()
        except Exception as e:
            logger.error(f"Failed to refresh {self.name} feed: {e}")
            self.feed.publish_error(e)
            return
        self.feed.publish(records)

    async def _put(self, stored: BaseModel):
        raise NotImplementedError

    async def _scan(self) -> List[BaseModel]:
        raise NotImplementedError


class InMemoryRecordStore(RecordStore):
    """Process-local store (default backend)."""

    def __init__(self, name: str, input_model: Type[BaseModel], stored_model: Type[BaseModel]):
        super().__init__(name, input_model, stored_model)
        self._rows: Dict[str, BaseModel] = {}
        self._lock = Lock()

    async def _put(self, stored: BaseModel):
        with self._lock:
            self._rows[stored.id] = stored

    async def _scan(self) -> List[BaseModel]:
        with self._lock:
            return list(self._rows.values())

    def clear(self):
        """Drop all rows (useful for testing)."""
        with self._lock:
            self._rows.clear()


class DynamoDBRecordStore(RecordStore):
    """
    Store backed by an Amazon DynamoDB table keyed on `id`.

    The live feed is published after writes made through this process.
    """

    def __init__(
        self,
        name: str,
        input_model: Type[BaseModel],
        stored_model: Type[BaseModel],
        table_name: str,
        table: Optional[Any] = None
    ):
        super().__init__(name, input_model, stored_model)
        self.table_name = table_name

        if table is not None:
            self.table = table
            return

        try:
            config = Config.get_boto3_config()
            if 'profile_name' in config:
                session = boto3.Session(profile_name=config['profile_name'])
                resource = session.resource('dynamodb', region_name=config['region_name'])
            else:
                resource = boto3.resource('dynamodb', **config)
            self.table = resource.Table(table_name)
            logger.info(f"Initialized DynamoDB store for table {table_name}")
        except Exception as e:
            logger.error(f"Failed to initialize DynamoDB client: {e}")
            raise

    async def _put(self, stored: BaseModel):
        item = self._to_item(stored)
        try:
            await asyncio.to_thread(self.table.put_item, Item=item)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"DynamoDB put_item failed for {self.table_name}: {e}")
            raise SubmitFailure(str(e)) from e

    async def _scan(self) -> List[BaseModel]:
        try:
            items = await asyncio.to_thread(self._scan_all)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"DynamoDB scan failed for {self.table_name}: {e}")
            raise
        return [self.stored_model.model_validate(self._from_item(item)) for item in items]

    def _scan_all(self) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        kwargs: Dict[str, Any] = {}
        while True:
            response = self.table.scan(**kwargs)
            items.extend(response.get('Items', []))
            last_key = response.get('LastEvaluatedKey')
            if not last_key:
                return items
            kwargs['ExclusiveStartKey'] = last_key

    @staticmethod
    def _to_item(stored: BaseModel) -> Dict[str, Any]:
        item = stored.model_dump(mode='json', exclude_none=True)
        # DynamoDB rejects Python floats.
        return {
            key: Decimal(str(value)) if isinstance(value, float) else value
            for key, value in item.items()
        }

    @staticmethod
    def _from_item(item: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            key: float(value) if isinstance(value, Decimal) else value
            for key, value in item.items()
        }


def create_stores() -> Dict[str, RecordStore]:
    """Build the patient form and todo stores selected by Config.STORAGE_BACKEND."""
    if Config.STORAGE_BACKEND == 'dynamodb':
        return {
            'patient_forms': DynamoDBRecordStore(
                'PatientForm', PatientFormInput, PatientForm, table_name=Config.PATIENT_FORMS_TABLE
            ),
            'todos': DynamoDBRecordStore('Todo', TodoInput, Todo, table_name=Config.TODOS_TABLE),
        }
    return {
        'patient_forms': InMemoryRecordStore('PatientForm', PatientFormInput, PatientForm),
        'todos': InMemoryRecordStore('Todo', TodoInput, Todo),
    }
