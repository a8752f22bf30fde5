"""
SQLite-backed record store.

Each collection is one table holding JSON documents. Frequently queried paths
get expression indexes, and filters are compiled to SQL over the JSON1
functions so candidate lookups stay bounded queries rather than scans in
Python.
"""

import json
import logging
import re
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

from ..core.errors import RecordNotFound, StoreUnavailable
from .filters import And, AnyOf, Eq, Filter, IsEmpty, Ne, Or, Regex
from .store import RecordStore, add_to_set_path, set_path, to_jsonable

logger = logging.getLogger(__name__)

_PATH_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")

# Array-valued paths and indexed paths per collection
THREAT_FEED_ARRAYS = {
    "indicators",
    "context.tags",
    "context.references",
    "correlated_threats",
    "attribution.techniques",
}
THREAT_FEED_INDEXES = ["hash", "threat_id", "status", "type", "target.value", "context.title"]

CORRELATION_ARRAYS = {"evidence.common_indicators"}
CORRELATION_INDEXES = ["parent_threat_id", "child_threat_id", "correlation_type"]

PATTERN_ARRAYS = {"indicators", "actions"}
PATTERN_INDEXES = ["pattern_id", "is_active"]


def _regexp(pattern: str, value: Any) -> int:
    if not isinstance(value, str) or pattern is None:
        return 0
    try:
        return 1 if re.search(pattern, value) else 0
    except re.error:
        return 0


class SQLiteRecordStore(RecordStore):
    """
    Persistent record store using SQLite.

    One instance per collection; several collections may share a database
    file.
    """

    def __init__(
        self,
        db_path: str,
        table: str = "threat_feed",
        indexes: Optional[Iterable[str]] = None,
        array_fields: Optional[Iterable[str]] = None,
    ):
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database file
            table: Table (collection) name
            indexes: Dotted JSON paths to index
            array_fields: Dotted paths holding arrays, used to compile
                fan-out filters
        """
        if not re.match(r"^[A-Za-z_][A-Za-z0-9_]*$", table):
            raise ValueError(f"Invalid table name: {table}")
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.table = table
        self.indexes = list(indexes or [])
        self.array_fields = set(array_fields or [])
        self._init_db()

    @classmethod
    def for_threats(cls, db_path: str) -> "SQLiteRecordStore":
        return cls(db_path, "threat_feed", THREAT_FEED_INDEXES, THREAT_FEED_ARRAYS)

    @classmethod
    def for_correlations(cls, db_path: str) -> "SQLiteRecordStore":
        return cls(db_path, "threat_correlations", CORRELATION_INDEXES, CORRELATION_ARRAYS)

    @classmethod
    def for_patterns(cls, db_path: str) -> "SQLiteRecordStore":
        return cls(db_path, "threat_patterns", PATTERN_INDEXES, PATTERN_ARRAYS)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Cannot open {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        conn.create_function("regexp", 2, _regexp)
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreUnavailable(f"{self.table}: {e}") from e
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._connect() as conn:
            conn.execute(
                f"CREATE TABLE IF NOT EXISTS {self.table} ("
                "id INTEGER PRIMARY KEY AUTOINCREMENT, "
                "doc TEXT NOT NULL)"
            )
            for path in self.indexes:
                index_name = f"idx_{self.table}_{path.replace('.', '_')}"
                conn.execute(
                    f"CREATE INDEX IF NOT EXISTS {index_name} "
                    f"ON {self.table}({self._json_expr(path)})"
                )

        logger.info(f"Initialized {self.table} store at {self.db_path}")

    # ------------------------------------------------------------------
    # RecordStore
    # ------------------------------------------------------------------

    def find_by_id(self, record_id: int) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT id, doc FROM {self.table} WHERE id = ?", (record_id,)
            ).fetchone()
        return self._row_to_doc(row) if row else None

    def find_by_filter(
        self, flt: Optional[Filter] = None, limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        params: List[Any] = []
        where = self._compile(flt, params) if flt is not None else "1"
        query = f"SELECT id, doc FROM {self.table} WHERE {where} ORDER BY id"
        if limit is not None:
            query += " LIMIT ?"
            params.append(int(limit))

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_doc(row) for row in rows]

    def insert(self, doc: Dict[str, Any]) -> int:
        stored = to_jsonable(dict(doc))
        stored.pop("id", None)
        with self._connect() as conn:
            cursor = conn.execute(
                f"INSERT INTO {self.table} (doc) VALUES (?)", (json.dumps(stored),)
            )
            record_id = cursor.lastrowid
        logger.debug(f"{self.table}: inserted document {record_id}")
        return record_id

    def update_fields(self, record_id: int, partial: Dict[str, Any]) -> None:
        def apply(doc: Dict[str, Any]) -> None:
            for path, value in partial.items():
                set_path(doc, path, value)

        self._read_modify_write(record_id, apply)

    def add_to_set(self, record_id: int, field: str, value: Any) -> bool:
        added = []

        def apply(doc: Dict[str, Any]) -> None:
            added.append(add_to_set_path(doc, field, value))

        self._read_modify_write(record_id, apply)
        return added[0]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _read_modify_write(
        self, record_id: int, apply: Callable[[Dict[str, Any]], None]
    ) -> None:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT doc FROM {self.table} WHERE id = ?", (record_id,)
            ).fetchone()
            if row is None:
                raise RecordNotFound(record_id)
            doc = json.loads(row["doc"])
            apply(doc)
            conn.execute(
                f"UPDATE {self.table} SET doc = ? WHERE id = ?",
                (json.dumps(doc), record_id),
            )

    def _row_to_doc(self, row: sqlite3.Row) -> Dict[str, Any]:
        doc = json.loads(row["doc"])
        doc["id"] = row["id"]
        return doc

    @staticmethod
    def _json_expr(path: str, source: str = "doc") -> str:
        if not _PATH_RE.match(path):
            raise ValueError(f"Invalid field path: {path}")
        return f"json_extract({source}, '$.{path}')"

    def _predicate(
        self, path: str, template: str, values: List[Any], params: List[Any]
    ) -> str:
        """
        Build a predicate for ``path``; ``template`` uses ``{expr}`` for the
        value expression and ``?`` for each entry of ``values``.
        """
        if path == "id":
            params.extend(values)
            return template.format(expr="id")

        parts = path.split(".")
        for i in range(1, len(parts) + 1):
            prefix = ".".join(parts[:i])
            if prefix in self.array_fields:
                rest = ".".join(parts[i:])
                elem = self._json_expr(rest, "je.value") if rest else "je.value"
                params.extend(values)
                return (
                    f"EXISTS (SELECT 1 FROM json_each({self.table}.doc, '$.{prefix}') AS je "
                    f"WHERE {template.format(expr=elem)})"
                )

        params.extend(values)
        return template.format(expr=self._json_expr(path))

    def _compile(self, flt: Filter, params: List[Any]) -> str:
        """Compile a filter tree to a SQL boolean expression."""
        if isinstance(flt, And):
            if not flt.clauses:
                return "1"
            return "(" + " AND ".join(self._compile(c, params) for c in flt.clauses) + ")"
        if isinstance(flt, Or):
            if not flt.clauses:
                return "0"
            return "(" + " OR ".join(self._compile(c, params) for c in flt.clauses) + ")"
        if isinstance(flt, Eq):
            return self._predicate(flt.field, "{expr} = ?", [_param(flt.value)], params)
        if isinstance(flt, Ne):
            eq = self._predicate(flt.field, "{expr} = ?", [_param(flt.value)], params)
            return f"NOT COALESCE({eq}, 0)"
        if isinstance(flt, AnyOf):
            if not flt.values:
                return "0"
            placeholders = ", ".join("?" for _ in flt.values)
            return self._predicate(
                flt.field,
                f"{{expr}} IN ({placeholders})",
                [_param(v) for v in flt.values],
                params,
            )
        if isinstance(flt, Regex):
            pattern = f"(?i){flt.pattern}" if flt.ignore_case else flt.pattern
            return self._predicate(flt.field, "regexp(?, {expr})", [pattern], params)
        if isinstance(flt, IsEmpty):
            expr = f"json_array_length({self.table}.doc, '$.{flt.field}')"
            if not _PATH_RE.match(flt.field):
                raise ValueError(f"Invalid field path: {flt.field}")
            return f"COALESCE({expr}, 0) = 0"
        raise TypeError(f"Unsupported filter: {flt!r}")


def _param(value: Any) -> Any:
    value = to_jsonable(value)
    if isinstance(value, bool):
        return int(value)
    return value
