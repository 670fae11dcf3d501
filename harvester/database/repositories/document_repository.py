from typing import Any

from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from harvester.database.connection import get_connection
from harvester.database.filters import Filter, compile_filter
from harvester.database.models import CATALOG_COLUMNS, JSON_COLUMNS, DocumentRecord
from harvester.processor.exceptions import CatalogError, DocumentNotFoundError

_SELECT_COLUMNS = ", ".join(CATALOG_COLUMNS.values())


class DocumentRepository:
    """Database operations for the books catalog table."""

    def __init__(self, read_only: bool = False) -> None:
        self._read_only = read_only

    def query(self, filter_: Filter, limit: int | None = None) -> list[DocumentRecord]:
        """Return the books matching a catalog filter, ordered by id."""
        where, params = compile_filter(filter_)
        sql = f"SELECT {_SELECT_COLUMNS} FROM books WHERE {where} ORDER BY object_id"
        if limit is not None:
            sql += " LIMIT %s"
            params.append(limit)

        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(sql, params)
                rows = cur.fetchall()

        return [DocumentRecord.from_row(row) for row in rows]

    def find_by_id(self, object_id: str) -> DocumentRecord:
        """Fetch one book. Raises DocumentNotFoundError if it is gone."""
        records = self.query({"objectId": object_id}, limit=1)
        if not records:
            raise DocumentNotFoundError(f"Book {object_id} not found in catalog")
        return records[0]

    def update(self, object_id: str, changes: dict[str, Any]) -> None:
        """Write a partial set of catalog fields for one book."""
        if not changes or self._read_only:
            return

        assignments: list[str] = []
        params: list[Any] = []
        for catalog_name, value in changes.items():
            column = CATALOG_COLUMNS.get(catalog_name)
            if column is None or column == "object_id":
                raise CatalogError(f"Field cannot be updated: {catalog_name}")
            assignments.append(f"{column} = %s")
            params.append(Jsonb(value) if column in JSON_COLUMNS else value)
        params.append(object_id)

        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"UPDATE books SET {', '.join(assignments)}, updated_at = NOW() "
                    "WHERE object_id = %s",
                    params,
                )
                updated = cur.rowcount
            conn.commit()

        if updated == 0:
            raise DocumentNotFoundError(f"Book {object_id} not found in catalog")
