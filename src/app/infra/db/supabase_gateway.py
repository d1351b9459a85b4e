from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any

from postgrest.exceptions import APIError
from supabase import Client, create_client

from src.app.domain.errors import GatewayError
from src.app.infra.db.base import PersistenceGateway

logger = logging.getLogger(__name__)

OWNER_COLUMN = "user_id"


@dataclass(frozen=True)
class ChildTable:
    """Ordered list field stored as rows of a child table."""
    table: str
    foreign_key: str
    columns: tuple[str, ...]

    def select_clause(self) -> str:
        return f"{self.table} (pos, {', '.join(self.columns)})"

    def build_rows(self, record_id: str, items: list[Any]) -> list[dict[str, Any]]:
        rows: list[dict[str, Any]] = []
        for pos, item in enumerate(items):
            row: dict[str, Any] = {self.foreign_key: record_id, "pos": pos}
            if isinstance(item, dict):
                for column in self.columns:
                    row[column] = item.get(column)
            else:
                row[self.columns[0]] = item
            rows.append(row)
        return rows

    def read_rows(self, rows: Any) -> list[Any]:
        if not isinstance(rows, list):
            return []
        ordered = sorted(rows, key=lambda row: row.get("pos") or 0)
        if len(self.columns) == 1:
            return [row.get(self.columns[0]) for row in ordered]
        return [{column: row.get(column) for column in self.columns} for row in ordered]


CHILD_TABLES: dict[str, dict[str, ChildTable]] = {
    "recipes": {
        "ingredients": ChildTable("recipe_ingredients", "recipe_id", ("text",)),
        "steps": ChildTable("recipe_steps", "recipe_id", ("text", "seconds")),
    },
}


def _create_supabase_client() -> Client:
    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    if not url or not key:
        raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY required")
    return create_client(url, key)


def _single_row(result: Any) -> dict[str, Any] | None:
    # maybe_single() returns None instead of an empty response on newer clients
    if result is None:
        return None
    data = result.data
    if isinstance(data, list):
        return data[0] if data else None
    return data or None


class SupabaseGateway(PersistenceGateway):
    def __init__(self, client: Client | None = None):
        self._client = client or _create_supabase_client()
        logger.info("SupabaseGateway initialized")

    def fetch_by_id(self, collection: str, record_id: str) -> dict[str, Any] | None:
        children = CHILD_TABLES.get(collection, {})
        select = ", ".join(["*", *(child.select_clause() for child in children.values())])

        try:
            result = (
                self._client.table(collection)
                .select(select)
                .eq("id", record_id)
                .maybe_single()
                .execute()
            )
        except (APIError, ConnectionError, TimeoutError) as error:
            logger.error("Error fetching %s id=%s: %s", collection, record_id, error)
            raise GatewayError("fetch", str(error)) from error

        row = _single_row(result)
        if row is None:
            logger.debug("No %s found for id=%s", collection, record_id)
            return None

        record = dict(row)
        for field_name, child in children.items():
            record[field_name] = child.read_rows(record.pop(child.table, None))
        return record

    def update_by_id(self, collection: str, record_id: str, fields: dict[str, Any]) -> None:
        children = CHILD_TABLES.get(collection, {})
        base = {name: value for name, value in fields.items() if name not in children}

        try:
            if base:
                self._client.table(collection).update(base).eq("id", record_id).execute()

            # Delete-then-insert keeps repeated identical snapshots idempotent
            for field_name, child in children.items():
                if field_name not in fields:
                    continue
                self._client.table(child.table).delete().eq(child.foreign_key, record_id).execute()
                rows = child.build_rows(record_id, list(fields[field_name] or []))
                if rows:
                    self._client.table(child.table).insert(rows).execute()
        except (APIError, ConnectionError, TimeoutError) as error:
            logger.error("Error updating %s id=%s: %s", collection, record_id, error)
            raise GatewayError("update", str(error)) from error

        logger.info("Updated %s id=%s fields=%s", collection, record_id, sorted(fields))

    def fetch_owner_id(self, collection: str, record_id: str) -> str | None:
        try:
            result = (
                self._client.table(collection)
                .select(OWNER_COLUMN)
                .eq("id", record_id)
                .maybe_single()
                .execute()
            )
        except (APIError, ConnectionError, TimeoutError) as error:
            logger.error("Error fetching owner of %s id=%s: %s", collection, record_id, error)
            raise GatewayError("fetch_owner", str(error)) from error

        row = _single_row(result)
        if not row or not row.get(OWNER_COLUMN):
            return None
        return str(row[OWNER_COLUMN])

    def delete_by_id(self, collection: str, record_id: str, owner_id: str) -> bool:
        try:
            result = (
                self._client.table(collection)
                .delete()
                .match({"id": record_id, OWNER_COLUMN: owner_id})
                .execute()
            )
        except (APIError, ConnectionError, TimeoutError) as error:
            logger.error("Error deleting %s id=%s: %s", collection, record_id, error)
            raise GatewayError("delete", str(error)) from error

        deleted = bool(result.data)
        logger.info("Deleted %s id=%s owner=%s deleted=%s", collection, record_id, owner_id, deleted)
        return deleted
