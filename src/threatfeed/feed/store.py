"""
Record store interface and in-memory implementation.

The core only talks to persistence through ``RecordStore``: lookup by id,
bounded query by filter, insert, partial update and idempotent set-insert.
Documents are JSON-safe dicts; the store owns the integer ``id`` key.
"""

import copy
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from ..core.errors import RecordNotFound, StoreUnavailable
from .filters import Filter, matches

logger = logging.getLogger(__name__)


class RecordStore(ABC):
    """Base class for record stores (one instance per collection)."""

    @abstractmethod
    def find_by_id(self, record_id: int) -> Optional[Dict[str, Any]]:
        """Return the document with this id, or None."""

    @abstractmethod
    def find_by_filter(
        self, flt: Optional[Filter] = None, limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """
        Return documents matching ``flt`` ordered by id.

        Args:
            flt: Filter to apply (None matches everything)
            limit: Maximum number of documents to return
        """

    @abstractmethod
    def insert(self, doc: Dict[str, Any]) -> int:
        """Insert a document and return its new id."""

    @abstractmethod
    def update_fields(self, record_id: int, partial: Dict[str, Any]) -> None:
        """Set each dotted-path key in ``partial`` on the document."""

    @abstractmethod
    def add_to_set(self, record_id: int, field: str, value: Any) -> bool:
        """
        Add ``value`` to the array at ``field`` unless already present.

        Returns:
            True if the value was added, False if it was already there
        """


def to_jsonable(value: Any) -> Any:
    """Convert enums, datetimes and nested containers to JSON-safe values."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_jsonable(v) for v in value]
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    return value


def set_path(doc: Dict[str, Any], path: str, value: Any) -> None:
    """Set a dotted path on a document, creating intermediate objects."""
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        if not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]
    current[parts[-1]] = to_jsonable(value)


def add_to_set_path(doc: Dict[str, Any], path: str, value: Any) -> bool:
    """Insert a value into the array at a dotted path; False if already present."""
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        if not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]
    items = current.get(parts[-1])
    if not isinstance(items, list):
        items = []
        current[parts[-1]] = items
    value = to_jsonable(value)
    if value in items:
        return False
    items.append(value)
    return True


class InMemoryRecordStore(RecordStore):
    """
    Dict-backed record store.

    Used in tests and for single-process tooling. ``fail_on`` names operations
    that raise ``StoreUnavailable``, which lets callers exercise the
    infrastructure-failure paths.
    """

    def __init__(self, name: str = "memory", fail_on: Optional[Iterable[str]] = None):
        self.name = name
        self.fail_on = set(fail_on or [])
        self._docs: Dict[int, Dict[str, Any]] = {}
        self._next_id = 1

    def _check(self, operation: str) -> None:
        if operation in self.fail_on:
            raise StoreUnavailable(f"{self.name}: {operation} unavailable")

    def find_by_id(self, record_id: int) -> Optional[Dict[str, Any]]:
        self._check("find_by_id")
        doc = self._docs.get(record_id)
        return copy.deepcopy(doc) if doc is not None else None

    def find_by_filter(
        self, flt: Optional[Filter] = None, limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        self._check("find_by_filter")
        results = []
        for record_id in sorted(self._docs):
            doc = self._docs[record_id]
            if flt is None or matches(doc, flt):
                results.append(copy.deepcopy(doc))
                if limit is not None and len(results) >= limit:
                    break
        return results

    def insert(self, doc: Dict[str, Any]) -> int:
        self._check("insert")
        record_id = self._next_id
        self._next_id += 1
        stored = to_jsonable(dict(doc))
        stored["id"] = record_id
        self._docs[record_id] = stored
        logger.debug(f"{self.name}: inserted document {record_id}")
        return record_id

    def update_fields(self, record_id: int, partial: Dict[str, Any]) -> None:
        self._check("update_fields")
        doc = self._docs.get(record_id)
        if doc is None:
            raise RecordNotFound(record_id)
        for path, value in partial.items():
            set_path(doc, path, value)

    def add_to_set(self, record_id: int, field: str, value: Any) -> bool:
        self._check("add_to_set")
        doc = self._docs.get(record_id)
        if doc is None:
            raise RecordNotFound(record_id)
        return add_to_set_path(doc, field, value)

    def __len__(self) -> int:
        return len(self._docs)
