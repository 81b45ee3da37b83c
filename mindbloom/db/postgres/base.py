"""Shared query helpers for the PostgreSQL repositories"""
import logging
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence

import psycopg
from psycopg import sql
from psycopg.types.json import Jsonb
from pydantic import BaseModel

from mindbloom.db.connection import Database
from mindbloom.exceptions import ConcurrentModificationError, wrap_external_exception
from mindbloom.resilience.retry import with_timeout

logger = logging.getLogger(__name__)


def to_column(value: Any) -> Any:
    """Adapt a model field value for a query parameter"""
    if isinstance(value, Enum):
        return value.value
    return value


def to_jsonb(models: Iterable[BaseModel]) -> Jsonb:
    return Jsonb([m.model_dump(mode="json") for m in models])


class PostgresRepository:
    """
    Base class: every query is bounded by PERSISTENCE_TIMEOUT and psycopg
    errors are wrapped into the MindBloom exception hierarchy
    """

    table: str = ""
    columns: Sequence[str] = ()
    json_columns: Sequence[str] = ()

    def __init__(self, database: Database):
        self.db = database

    async def _run(self, operation: str, query, params: Sequence[Any] = (), fetch: str = "none"):
        try:
            return await with_timeout(self._execute(query, params, fetch), operation)
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation=operation, context={"table": self.table}) from e

    async def _execute(self, query, params: Sequence[Any], fetch: str):
        async with self.db.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                if fetch == "one":
                    result = await cur.fetchone()
                elif fetch == "all":
                    result = await cur.fetchall()
                else:
                    result = cur.rowcount
            await conn.commit()
            return result

    async def fetch_one(self, operation: str, query, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        return await self._run(operation, query, params, fetch="one")

    async def fetch_all(self, operation: str, query, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        return await self._run(operation, query, params, fetch="all")

    async def execute(self, operation: str, query, params: Sequence[Any] = ()) -> int:
        return await self._run(operation, query, params)

    def _row_params(self, model: BaseModel) -> List[Any]:
        params = []
        for column in self.columns:
            value = getattr(model, column)
            if column in self.json_columns:
                params.append(to_jsonb(value))
            else:
                params.append(to_column(value))
        return params

    async def insert(self, model: BaseModel, operation: str) -> Dict[str, Any]:
        query = sql.SQL("INSERT INTO {table} ({columns}) VALUES ({values}) RETURNING *").format(
            table=sql.Identifier(self.table),
            columns=sql.SQL(", ").join(map(sql.Identifier, self.columns)),
            values=sql.SQL(", ").join(sql.Placeholder() * len(self.columns)),
        )
        return await self.fetch_one(operation, query, self._row_params(model))

    async def insert_rows(self, models: Sequence[BaseModel], operation: str) -> List[Dict[str, Any]]:
        """Insert several rows in one statement (all or nothing)"""
        if not models:
            return []
        row = sql.SQL("({})").format(sql.SQL(", ").join(sql.Placeholder() * len(self.columns)))
        query = sql.SQL("INSERT INTO {table} ({columns}) VALUES {rows} RETURNING *").format(
            table=sql.Identifier(self.table),
            columns=sql.SQL(", ").join(map(sql.Identifier, self.columns)),
            rows=sql.SQL(", ").join([row] * len(models)),
        )
        params = [value for model in models for value in self._row_params(model)]
        return await self.fetch_all(operation, query, params)

    async def get_by_id(self, record_id: str, operation: str) -> Optional[Dict[str, Any]]:
        query = sql.SQL("SELECT * FROM {table} WHERE id = %s").format(table=sql.Identifier(self.table))
        return await self.fetch_one(operation, query, (record_id,))

    async def delete_by_id(self, record_id: str, operation: str) -> bool:
        query = sql.SQL("DELETE FROM {table} WHERE id = %s").format(table=sql.Identifier(self.table))
        return await self.execute(operation, query, (record_id,)) > 0

    async def versioned_update(self, model: BaseModel, record_type: str, operation: str) -> Dict[str, Any]:
        """
        UPDATE ... WHERE id = ? AND version = ?

        No matching row means someone else wrote first (or the row is gone).
        """
        editable = [c for c in self.columns if c not in ("id", "created_at", "updated_at", "version")]
        assignments = sql.SQL(", ").join(
            sql.SQL("{} = %s").format(sql.Identifier(c)) for c in editable
        )
        query = sql.SQL(
            "UPDATE {table} SET {assignments}, version = version + 1, updated_at = now() "
            "WHERE id = %s AND version = %s RETURNING *"
        ).format(table=sql.Identifier(self.table), assignments=assignments)

        values = dict(zip(self.columns, self._row_params(model)))
        params = [values[c] for c in editable] + [model.id, model.version]

        row = await self.fetch_one(operation, query, params)
        if row is None:
            raise ConcurrentModificationError(
                message=f"{record_type} {model.id} was modified concurrently",
                record_type=record_type,
                record_id=model.id,
                expected_version=model.version,
                operation=operation,
            )
        return row
