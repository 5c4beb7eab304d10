"""
In-memory record stores for forms, studies and code lists.

Each store is keyed by one attribute of its record model (``form_id``,
``study_id``, ``code_list_id``). Every mutation takes the identity of
the caller and stamps the record's audit fields with it.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

from pydantic.alias_generators import to_camel

from edc.core.schema import AuditedModel

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=AuditedModel)


class StoreError(Exception):
    """Base class for record store failures."""


class RecordNotFoundError(StoreError):
    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} '{key}' not found")


class DuplicateRecordError(StoreError):
    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} '{key}' already exists")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _wire_key(name: str) -> str:
    """Accept snake_case attribute names alongside camelCase wire keys."""
    return to_camel(name) if "_" in name else name


def _resolve(record: Any, path: str) -> Any:
    """Follow a dotted path through model attributes and dict keys."""
    current = record
    for part in path.split("."):
        if current is None:
            return None
        if isinstance(current, dict):
            current = current.get(part)
        else:
            current = getattr(current, part, None)
    return current


class RecordStore(Generic[RecordT]):
    """Thread-safe in-memory store of pydantic records.

    Args:
        model: The record model class.
        key_attr: Attribute holding the record's unique key.
        kind: Human-readable record kind used in error messages.
    """

    def __init__(self, model: type[RecordT], key_attr: str, kind: str):
        self._model = model
        self._key_attr = key_attr
        self.kind = kind
        self._records: dict[str, RecordT] = {}
        self._lock = threading.RLock()

    def _key_of(self, record: RecordT) -> str:
        return getattr(record, self._key_attr)

    def find(self, filters: dict[str, Any] | None = None) -> list[RecordT]:
        """Return records matching every filter, newest first.

        Filter keys are attribute paths (``"sponsor.name"``); None values
        are ignored.
        """
        active = {k: v for k, v in (filters or {}).items() if v is not None}
        with self._lock:
            records = list(self._records.values())

        matched = [
            r for r in records
            if all(_resolve(r, path) == expected for path, expected in active.items())
        ]
        # Ties on created_at keep newest-inserted first
        return sorted(
            reversed(matched),
            key=lambda r: r.created_at or datetime.min.replace(tzinfo=timezone.utc),
            reverse=True,
        )

    def count(self, filters: dict[str, Any] | None = None) -> int:
        return len(self.find(filters))

    def get(self, key: str) -> RecordT | None:
        with self._lock:
            return self._records.get(key)

    def create(self, record: RecordT, actor: str) -> RecordT:
        """Insert a new record.

        Raises:
            DuplicateRecordError: If a record with the same key exists.
        """
        key = self._key_of(record)
        now = _now()
        stamped = record.model_copy(update={
            "created_at": now,
            "updated_at": now,
            "created_by": actor,
            "updated_by": actor,
        })

        with self._lock:
            if key in self._records:
                raise DuplicateRecordError(self.kind, key)
            self._records[key] = stamped

        logger.info("Created %s '%s' (by %s)", self.kind, key, actor)
        return stamped

    def update(self, key: str, changes: dict[str, Any], actor: str) -> RecordT:
        """Merge changes into a record and re-validate it.

        The record key and creation audit fields cannot be changed.

        Raises:
            RecordNotFoundError: If no record has this key.
            pydantic.ValidationError: If the merged record is invalid.
        """
        with self._lock:
            current = self._records.get(key)
            if current is None:
                raise RecordNotFoundError(self.kind, key)

            merged = current.model_dump(by_alias=True)
            merged.update({_wire_key(k): v for k, v in changes.items()})
            updated = self._model.model_validate(merged).model_copy(update={
                self._key_attr: key,
                "created_at": current.created_at,
                "created_by": current.created_by,
                "updated_at": _now(),
                "updated_by": actor,
            })
            self._records[key] = updated

        logger.info("Updated %s '%s' (by %s)", self.kind, key, actor)
        return updated

    def delete(self, key: str) -> RecordT:
        """Remove a record and return it.

        Raises:
            RecordNotFoundError: If no record has this key.
        """
        with self._lock:
            record = self._records.pop(key, None)
        if record is None:
            raise RecordNotFoundError(self.kind, key)
        logger.info("Deleted %s '%s'", self.kind, key)
        return record
