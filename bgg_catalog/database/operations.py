"""
Document store operations for catalog collections.

This module provides create / find / find-by-id / update operations over
sqlite tables, with exact-match and "value in set" filters. Each call opens
its own connection, so the store can be shared between worker threads.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from ..error_handling import DocumentNotFound, DuplicateDocument
from .models import COLLECTIONS, create_database

logger = logging.getLogger(__name__)

COLUMN_FIELDS = ("id", "bgg_id", "name")
Where = Dict[str, Dict[str, Any]]


def _sql_value(value: Any) -> Any:
    # JSON booleans come back from json_extract as 0/1
    if isinstance(value, bool):
        return int(value)
    return value


class DocumentStore:
    """
    High-level document operations for the catalog collections.
    """

    def __init__(self, db_path: Union[str, Path], timeout: float = 30.0):
        """
        Initialize the document store.

        Args:
            db_path: Path to the sqlite database
            timeout: Seconds to wait on a locked database
        """
        self.db_path = Path(db_path)
        self.timeout = timeout

        # Create database if it doesn't exist
        if not self.db_path.exists():
            logger.info(f"Database not found at {self.db_path}, creating it...")
        create_database(str(self.db_path))

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _table(self, collection: str) -> str:
        if collection not in COLLECTIONS:
            raise ValueError(f"Unknown collection: {collection}")
        return collection

    def _to_document(self, row: sqlite3.Row) -> Dict[str, Any]:
        document = json.loads(row["data"] or "{}")
        document.update({"id": row["id"], "bgg_id": row["bgg_id"], "name": row["name"]})
        return document

    def _split(self, data: Dict[str, Any]):
        columns = {k: data[k] for k in ("bgg_id", "name") if k in data}
        body = {k: v for k, v in data.items() if k not in COLUMN_FIELDS}
        return columns, body

    def _where_clause(self, where: Optional[Where]):
        clauses: List[str] = []
        params: List[Any] = []
        for field_name, condition in (where or {}).items():
            if field_name in COLUMN_FIELDS:
                target = field_name
            else:
                if not field_name.replace("_", "").isalnum():
                    raise ValueError(f"Invalid field name: {field_name}")
                target = f"json_extract(data, '$.{field_name}')"
            for op, value in condition.items():
                if op == "equals":
                    if value is None:
                        clauses.append(f"{target} IS NULL")
                    else:
                        clauses.append(f"{target} = ?")
                        params.append(_sql_value(value))
                elif op == "in":
                    values = [_sql_value(v) for v in value]
                    if not values:
                        clauses.append("0")
                        continue
                    clauses.append(f"{target} IN ({', '.join('?' for _ in values)})")
                    params.extend(values)
                else:
                    raise ValueError(f"Unsupported filter operator: {op}")
        sql = " WHERE " + " AND ".join(clauses) if clauses else ""
        return sql, params

    def create(self, collection: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert a new document.

        Raises:
            DuplicateDocument: if bgg_id (or a unique name) already exists
        """
        table = self._table(collection)
        columns, body = self._split(data)
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    f"INSERT INTO {table} (bgg_id, name, data) VALUES (?, ?, ?)",
                    (columns.get("bgg_id"), columns.get("name"), json.dumps(body)),
                )
                doc_id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise DuplicateDocument(f"Duplicate {collection} '{data.get('name')}': {e}") from e
        document = dict(body)
        document.update({"id": doc_id, "bgg_id": columns.get("bgg_id"), "name": columns.get("name")})
        logger.debug(f"Created {collection} {doc_id}: {document.get('name')}")
        return document

    def find(self, collection: str, where: Optional[Where] = None,
             limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Find documents matching all filters.

        Args:
            collection: Collection name
            where: {field: {"equals": value}} or {field: {"in": [values]}}
            limit: Maximum number of documents to return
        """
        table = self._table(collection)
        sql, params = self._where_clause(where)
        query = f"SELECT id, bgg_id, name, data FROM {table}{sql} ORDER BY id ASC"
        if limit:
            query += " LIMIT ?"
            params.append(limit)
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._to_document(row) for row in rows]

    def find_one(self, collection: str, where: Where) -> Optional[Dict[str, Any]]:
        docs = self.find(collection, where, limit=1)
        return docs[0] if docs else None

    def find_by_id(self, collection: str, doc_id: int) -> Dict[str, Any]:
        """
        Raises:
            DocumentNotFound: if no document has this id
        """
        table = self._table(collection)
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT id, bgg_id, name, data FROM {table} WHERE id = ?", (doc_id,)
            ).fetchone()
        if row is None:
            raise DocumentNotFound(collection, doc_id)
        return self._to_document(row)

    def update(self, collection: str, doc_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge fields into an existing document in a single write.

        Raises:
            DocumentNotFound: if no document has this id
            DuplicateDocument: if the update violates a uniqueness constraint
        """
        table = self._table(collection)
        columns, body = self._split(data)
        try:
            with self._connect() as conn:
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute(
                    f"SELECT id, bgg_id, name, data FROM {table} WHERE id = ?", (doc_id,)
                ).fetchone()
                if row is None:
                    raise DocumentNotFound(collection, doc_id)
                merged = json.loads(row["data"] or "{}")
                merged.update(body)
                conn.execute(
                    f"""UPDATE {table} SET bgg_id = ?, name = ?, data = ?,
                        last_updated = datetime('now') WHERE id = ?""",
                    (columns.get("bgg_id", row["bgg_id"]), columns.get("name", row["name"]),
                     json.dumps(merged), doc_id),
                )
        except sqlite3.IntegrityError as e:
            raise DuplicateDocument(f"Update of {collection} {doc_id} conflicts: {e}") from e
        merged.update({
            "id": doc_id,
            "bgg_id": columns.get("bgg_id", row["bgg_id"]),
            "name": columns.get("name", row["name"]),
        })
        return merged

    def count(self, collection: str, where: Optional[Where] = None) -> int:
        table = self._table(collection)
        sql, params = self._where_clause(where)
        with self._connect() as conn:
            return conn.execute(f"SELECT COUNT(*) FROM {table}{sql}", params).fetchone()[0]

    def get_statistics(self) -> Dict[str, int]:
        """
        Get document counts per collection.

        Returns:
            Dictionary with statistics
        """
        stats = {f"total_{collection}": self.count(collection) for collection in COLLECTIONS}
        stats["incomplete_games"] = self.count(
            "games", {"processing_state": {"in": ["unprocessed", "processing"]}})
        stats["incomplete_accessories"] = self.count("accessories", {"processing": {"equals": True}})
        return stats
