from __future__ import annotations

import copy
import json
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from functools import lru_cache
from typing import Any, Literal, Protocol

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from bazaar.core.config import get_settings
from bazaar.core.errors import MarketplaceError, NotFoundError, StoreError

logger = logging.getLogger(__name__)

FilterOp = Literal["eq", "neq", "gt", "gte", "lt", "lte", "in", "ilike", "is_null"]
SortDir = Literal["asc", "desc"]
OrderBy = tuple[str, SortDir]

_IDENTIFIER_RE = re.compile(r"^[a-z_][a-z0-9_]*$")


class StoreConflictError(MarketplaceError):
    """Raised when a conditional update finds the row in an unexpected state."""


@dataclass(frozen=True, slots=True)
class Filter:
    field: str
    op: FilterOp
    value: Any = None


@dataclass(frozen=True, slots=True)
class TableSpec:
    columns: frozenset[str]
    json_columns: frozenset[str] = field(default_factory=frozenset)


TABLES: dict[str, TableSpec] = {
    "listings": TableSpec(
        columns=frozenset(
            {
                "id",
                "farmer_id",
                "crop_name",
                "variety_name",
                "crop_type",
                "description",
                "sowing_date",
                "expected_harvest_date",
                "expected_yield",
                "yield_unit",
                "quantity",
                "quantity_unit",
                "price_per_unit",
                "packaging_type",
                "contact_phone",
                "location",
                "primary_image_url",
                "image_urls",
                "status",
                "admin_notes",
                "reviewed_by",
                "reviewed_at",
                "review_history",
                "created_at",
                "updated_at",
                "expires_at",
            }
        ),
        json_columns=frozenset({"location", "image_urls", "review_history"}),
    ),
    "notifications": TableSpec(
        columns=frozenset(
            {"id", "user_id", "type", "title", "message", "data", "is_read", "read_at", "created_at"}
        ),
        json_columns=frozenset({"data"}),
    ),
    "user_profiles": TableSpec(
        columns=frozenset({"id", "name", "role", "phone", "phone_verified", "created_at"}),
    ),
    "deals": TableSpec(
        columns=frozenset(
            {
                "id",
                "buyer_id",
                "farmer_id",
                "listing_id",
                "offer_price",
                "quantity",
                "total_amount",
                "status",
                "created_at",
                "updated_at",
            }
        ),
    ),
    "modules": TableSpec(
        columns=frozenset({"id", "module_id", "name", "key_hash", "scopes", "enabled", "created_at"}),
    ),
}


class RecordStore(Protocol):
    async def create(self, table: str, record: dict[str, Any]) -> dict[str, Any]: ...

    async def get(self, table: str, record_id: str) -> dict[str, Any] | None: ...

    async def update(
        self,
        table: str,
        record_id: str,
        patch: dict[str, Any],
        *,
        expected: dict[str, Any] | None = None,
    ) -> dict[str, Any]: ...

    async def delete(self, table: str, record_id: str) -> bool: ...

    async def list(
        self,
        table: str,
        *,
        filters: list[Filter] | None = None,
        order_by: list[OrderBy] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]: ...

    async def close(self) -> None: ...


def _table_spec(table: str) -> TableSpec:
    spec = TABLES.get(table)
    if spec is None:
        raise StoreError(f"unknown table: {table}")
    return spec


def _check_fields(spec: TableSpec, table: str, names: Any) -> None:
    unknown = sorted(set(names) - spec.columns)
    if unknown:
        raise StoreError(f"unknown columns for {table}: {unknown}")


class InMemoryRecordStore:
    """Process-local store for development and tests; rows keep insertion order."""

    def __init__(self) -> None:
        self.tables: dict[str, dict[str, dict[str, Any]]] = {name: {} for name in TABLES}

    async def create(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        spec = _table_spec(table)
        _check_fields(spec, table, record.keys())
        row = copy.deepcopy(record)
        row_id = str(row.get("id") or uuid.uuid4())
        row["id"] = row_id
        rows = self.tables[table]
        if row_id in rows:
            raise StoreError(f"duplicate id for {table}: {row_id}")
        rows[row_id] = row
        return copy.deepcopy(row)

    async def get(self, table: str, record_id: str) -> dict[str, Any] | None:
        _table_spec(table)
        row = self.tables[table].get(str(record_id))
        return copy.deepcopy(row) if row is not None else None

    async def update(
        self,
        table: str,
        record_id: str,
        patch: dict[str, Any],
        *,
        expected: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        spec = _table_spec(table)
        _check_fields(spec, table, patch.keys())
        row = self.tables[table].get(str(record_id))
        if row is None:
            raise NotFoundError(f"{table} record not found")
        for key, value in (expected or {}).items():
            if row.get(key) != value:
                raise StoreConflictError(f"{table} record {record_id} does not match expected {key}")
        row.update(copy.deepcopy(patch))
        return copy.deepcopy(row)

    async def delete(self, table: str, record_id: str) -> bool:
        _table_spec(table)
        return self.tables[table].pop(str(record_id), None) is not None

    async def list(
        self,
        table: str,
        *,
        filters: list[Filter] | None = None,
        order_by: list[OrderBy] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        _table_spec(table)
        rows = [row for row in self.tables[table].values() if all(_matches(row, item) for item in filters or [])]
        for name, direction in reversed(order_by or []):
            present = [row for row in rows if _lookup(row, name) is not None]
            missing = [row for row in rows if _lookup(row, name) is None]
            present.sort(key=lambda row: _lookup(row, name), reverse=direction == "desc")
            rows = present + missing
        end = None if limit is None else offset + limit
        return [copy.deepcopy(row) for row in rows[offset:end]]

    async def close(self) -> None:
        return None


def _lookup(row: dict[str, Any], name: str) -> Any:
    value: Any = row
    for part in name.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _matches(row: dict[str, Any], item: Filter) -> bool:
    value = _lookup(row, item.field)
    if item.op == "is_null":
        return (value is None) == bool(item.value)
    if item.op == "eq":
        return value == item.value
    if item.op == "neq":
        return value != item.value
    if item.op == "in":
        return value in item.value
    if value is None:
        return False
    if item.op == "ilike":
        pattern = "".join(
            ".*" if char == "%" else "." if char == "_" else re.escape(char) for char in str(item.value)
        )
        return re.fullmatch(pattern, str(value), flags=re.IGNORECASE | re.DOTALL) is not None
    if item.op == "gt":
        return value > item.value
    if item.op == "gte":
        return value >= item.value
    if item.op == "lt":
        return value < item.value
    if item.op == "lte":
        return value <= item.value
    raise StoreError(f"unsupported filter op: {item.op}")


class PostgresRecordStore:
    def __init__(self, database_url: str | None, min_pool_size: int, max_pool_size: int) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def create(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        spec = _table_spec(table)
        _check_fields(spec, table, record.keys())
        values = {**record, "id": str(record.get("id") or uuid.uuid4())}
        params: list[Any] = []
        columns = list(values)
        tokens = [self._bind(params, spec, name, values[name]) for name in columns]
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                f"""
                insert into {table} ({", ".join(columns)})
                values ({", ".join(tokens)})
                returning *
                """,
                *params,
            )
        except (asyncpg.PostgresError, OSError) as exc:
            raise StoreError(f"{table} insert failed") from exc
        return self._row_to_dict(spec, row)

    async def get(self, table: str, record_id: str) -> dict[str, Any] | None:
        spec = _table_spec(table)
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(f"select * from {table} where id = $1", record_id)
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError):
            return None
        except (asyncpg.PostgresError, OSError) as exc:
            raise StoreError(f"{table} read failed") from exc
        return self._row_to_dict(spec, row) if row else None

    async def update(
        self,
        table: str,
        record_id: str,
        patch: dict[str, Any],
        *,
        expected: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        spec = _table_spec(table)
        _check_fields(spec, table, patch.keys())
        _check_fields(spec, table, (expected or {}).keys())
        if not patch:
            existing = await self.get(table, record_id)
            if existing is None:
                raise NotFoundError(f"{table} record not found")
            return existing

        params: list[Any] = [record_id]
        assignments = [f"{name} = {self._bind(params, spec, name, value)}" for name, value in patch.items()]
        conditions = ["id = $1"]
        for name, value in (expected or {}).items():
            if value is None:
                conditions.append(f"{name} is null")
            else:
                conditions.append(f"{name} = {self._bind(params, spec, name, value)}")

        pool = await self._get_pool()
        try:
            # Single statement; the where clause doubles as compare-and-swap.
            row = await pool.fetchrow(
                f"""
                update {table}
                set {", ".join(assignments)}
                where {" and ".join(conditions)}
                returning *
                """,
                *params,
            )
            if row is None:
                exists = await pool.fetchval(f"select 1 from {table} where id = $1", record_id)
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise NotFoundError(f"{table} record not found") from exc
        except (asyncpg.PostgresError, OSError) as exc:
            raise StoreError(f"{table} update failed") from exc

        if row is None:
            if not exists:
                raise NotFoundError(f"{table} record not found")
            raise StoreConflictError(f"{table} record {record_id} does not match expected state")
        return self._row_to_dict(spec, row)

    async def delete(self, table: str, record_id: str) -> bool:
        _table_spec(table)
        pool = await self._get_pool()
        try:
            deleted = await pool.fetchval(f"delete from {table} where id = $1 returning id", record_id)
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError):
            return False
        except (asyncpg.PostgresError, OSError) as exc:
            raise StoreError(f"{table} delete failed") from exc
        return deleted is not None

    async def list(
        self,
        table: str,
        *,
        filters: list[Filter] | None = None,
        order_by: list[OrderBy] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        spec = _table_spec(table)
        params: list[Any] = []

        def bind(value: Any) -> str:
            params.append(value)
            return f"${len(params)}"

        conditions: list[str] = []
        for item in filters or []:
            expr = self._column_expr(spec, table, item.field)
            if item.op == "is_null":
                conditions.append(f"{expr} is {'' if item.value else 'not '}null")
            elif item.op == "in":
                conditions.append(f"{expr} = any({bind(list(item.value))})")
            elif item.op == "ilike":
                conditions.append(f"{expr} ilike {bind(item.value)}")
            else:
                operator = {"eq": "=", "neq": "<>", "gt": ">", "gte": ">=", "lt": "<", "lte": "<="}[item.op]
                conditions.append(f"{expr} {operator} {bind(item.value)}")

        where_sql = " and ".join(conditions) if conditions else "true"
        order_sql = ", ".join(
            f"{self._column_expr(spec, table, name)} {'desc' if direction == 'desc' else 'asc'} nulls last"
            for name, direction in order_by or []
        )
        sql = f"select * from {table} where {where_sql}"
        if order_sql:
            sql += f" order by {order_sql}"
        if limit is not None:
            sql += f" limit {bind(limit)}"
        if offset:
            sql += f" offset {bind(offset)}"

        pool = await self._get_pool()
        try:
            rows = await pool.fetch(sql, *params)
        except (asyncpg.PostgresError, OSError) as exc:
            raise StoreError(f"{table} query failed") from exc
        return [self._row_to_dict(spec, row) for row in rows]

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise StoreError("KB_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise StoreError("database unavailable") from exc

    @staticmethod
    def _bind(params: list[Any], spec: TableSpec, name: str, value: Any) -> str:
        if name in spec.json_columns:
            params.append(json.dumps(value, default=_json_default) if value is not None else None)
            return f"${len(params)}::jsonb"
        params.append(value)
        return f"${len(params)}"

    @staticmethod
    def _column_expr(spec: TableSpec, table: str, name: str) -> str:
        column, _, key = name.partition(".")
        if column not in spec.columns:
            raise StoreError(f"unknown column for {table}: {column}")
        if not key:
            return column
        if column not in spec.json_columns or not _IDENTIFIER_RE.match(key):
            raise StoreError(f"invalid json path for {table}: {name}")
        return f"({column}->>'{key}')"

    @staticmethod
    def _row_to_dict(spec: TableSpec, row: asyncpg.Record) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for name, value in row.items():
            if isinstance(value, uuid.UUID):
                value = str(value)
            elif isinstance(value, Decimal):
                value = float(value)
            elif name in spec.json_columns and isinstance(value, str):
                try:
                    value = json.loads(value)
                except json.JSONDecodeError:
                    value = None
            result[name] = value
        return result


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"not JSON serializable: {type(value).__name__}")


@lru_cache
def get_store() -> RecordStore:
    settings = get_settings()
    if not settings.database_url:
        logger.warning("KB_DATABASE_URL not set; using in-memory record store")
        return InMemoryRecordStore()
    return PostgresRecordStore(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )
