"""SQLite database client wrapper with CRUD operations."""

import asyncio
import contextvars
import json
import logging
import re
import threading
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any

import aiosqlite

from src.core.config import constants, settings
from src.core.errors import PersistenceError


logger = logging.getLogger(__name__)


class DatabaseError(PersistenceError):
    """Raised when a database operation fails."""


class RecordNotFoundError(KeyError):
    """Raised when a record does not exist in a collection."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else super().__str__()


def _validate_collection_name(collection: str) -> None:
    """Validate that a collection name contains only alphanumeric characters and underscores."""
    if not re.match(r"^[a-zA-Z_][a-zA-Z0-9_]*$", collection):
        msg = f"Invalid collection name: {collection}. Only alphanumeric characters and underscores are allowed."
        raise ValueError(msg)


def sanitize_param(value: str | int | float | bool | None) -> str:
    """Escape a value for safe embedding in filter queries via json.dumps."""
    return json.dumps(str(value))[1:-1]


def _encode_value(val: Any) -> Any:
    """Encode a Python value into something SQLite can bind."""
    if isinstance(val, datetime | date):
        return val.isoformat()
    if isinstance(val, Enum):
        return val.value
    if isinstance(val, dict | list):
        return json.dumps(val)
    return val


def get_db_path(db_path: str | None = None) -> Path:
    """Get the resolved SQLite database file path."""
    path_str = db_path or settings.sqlite_db_path
    return Path(path_str).resolve()


def _parse_value(value: str, *, is_like: bool = False) -> str | int | float | bool | None:
    """Parse a string value to the appropriate Python type for SQLite."""
    if is_like:
        escaped = value.replace("%", r"\%").replace("_", r"\_")
        return f"%{escaped}%"

    if value.isdigit():
        return int(value)
    if value.replace(".", "", 1).isdigit():
        return float(value)

    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False

    return value


def _get_sql_operator(op: str) -> str:
    """Map filter operator to SQL operator."""
    op_map = {
        "=": "=",
        "!=": "!=",
        ">": ">",
        "<": "<",
        ">=": ">=",
        "<=": "<=",
        "~": "LIKE",
    }
    sql_op = op_map.get(op)
    if not sql_op:
        msg = f"Unsupported operator: {op}"
        raise ValueError(msg)
    return sql_op


def _parse_single_comparison(comparison: str) -> tuple[str, str | int | float | None]:
    """Parse a single comparison expression into a SQL condition and parameter."""
    match = re.match(
        r"""(\w+)\s*(!=|>=|<=|=|>|<|~)\s*(['"])([^'"]*)\3""",
        comparison,
    )
    if not match:
        msg = f"Invalid filter syntax: {comparison}"
        raise ValueError(msg)

    field = match.group(1)
    op = match.group(2)
    raw_value = match.group(4)

    sql_op = _get_sql_operator(op)
    is_like = sql_op == "LIKE"
    value = _parse_value(raw_value, is_like=is_like)

    if is_like:
        return f"{field} LIKE ? ESCAPE '\\'", value
    return f"{field} {sql_op} ?", value


def _parse_or_group(or_group: str) -> tuple[str, list[str | int | float | None]]:
    """Parse a parenthesized OR group into a SQL condition and parameters."""
    inner = or_group[1:-1]  # Remove parentheses
    or_parts = [p.strip() for p in inner.split("||")]
    or_conditions = []
    or_params = []

    for part in or_parts:
        cond, value = _parse_single_comparison(part)
        or_conditions.append(cond)
        or_params.append(value)

    return f"({' OR '.join(or_conditions)})", or_params


def _split_and_conditions(filter_query: str) -> list[str]:
    """Split filter query by && while preserving parenthesized groups."""
    parts = []
    current = ""
    paren_depth = 0

    for char in filter_query:
        if char == "(":
            paren_depth += 1
        elif char == ")":
            paren_depth -= 1

        current += char

        if paren_depth == 0 and current.endswith("&&"):
            parts.append(current[:-2].strip())
            current = ""

    if current.strip():
        parts.append(current.strip())

    return parts


def parse_filter(filter_query: str) -> tuple[str, list[str | int | float | None]]:
    """Parse filter syntax into a SQL WHERE clause and parameter list."""
    if not filter_query:
        return "", []

    parts = _split_and_conditions(filter_query)
    conditions = []
    params = []

    for raw_part in parts:
        part = raw_part.strip()

        # Handle parenthesized OR groups
        if part.startswith("(") and part.endswith(")"):
            cond, cond_params = _parse_or_group(part)
            conditions.append(cond)
            params.extend(cond_params)
        else:
            cond, value = _parse_single_comparison(part)
            conditions.append(cond)
            params.append(value)

    return " AND ".join(conditions), params


def _parse_sort(sort: str) -> str:
    """Translate "+field" / "-field" / "field [ASC|DESC]" into a safe ORDER BY clause."""
    safe_sort = "rowid ASC"
    if not sort:
        return safe_sort

    stripped = sort.strip()
    if stripped[0] in "+-":
        direction = "DESC" if stripped[0] == "-" else "ASC"
        stripped = f"{stripped[1:]} {direction}"

    # Only allow: column_name [ASC|DESC]
    if re.match(r"^[A-Za-z_][A-Za-z0-9_]*\s*(ASC|DESC)?$", stripped, re.IGNORECASE):
        return stripped

    logger.warning("Invalid sort parameter, using default", extra={"sort": sort})
    return safe_sort


_db_connections: dict[tuple[int, int, str], aiosqlite.Connection] = {}
_db_lock = threading.Lock()

# One writer per connection; the transaction owner may re-enter.
_transaction_locks: dict[tuple[int, int, str], asyncio.Lock] = {}
_transaction_depth: contextvars.ContextVar[int] = contextvars.ContextVar("transaction_depth", default=0)
_holds_connection: contextvars.ContextVar[bool] = contextvars.ContextVar("holds_connection", default=False)


def _cache_key(db_path: str | None) -> tuple[int, int, str]:
    return (threading.get_ident(), id(asyncio.get_running_loop()), str(get_db_path(db_path)))


async def get_connection(*, db_path: str | None = None) -> aiosqlite.Connection:
    """Get or create a cached connection for the current thread, loop, and db path."""
    cache_key = _cache_key(db_path)
    thread_id, loop_id, path_str = cache_key

    if cache_key in _db_connections:
        return _db_connections[cache_key]

    Path(path_str).parent.mkdir(parents=True, exist_ok=True)

    # Autocommit mode: transactions are opened explicitly by transaction()
    conn = await aiosqlite.connect(path_str, isolation_level=None)
    await conn.execute("PRAGMA foreign_keys = ON")
    await conn.execute("PRAGMA journal_mode = WAL")

    with _db_lock:
        existing = _db_connections.get(cache_key)
        if existing is None:
            _db_connections[cache_key] = conn
            _transaction_locks[cache_key] = asyncio.Lock()

    if existing is not None:
        # Another coroutine on this loop won the race while we awaited
        await conn.close()
        return existing

    logger.info(
        "Created new SQLite connection",
        extra={"db_path": path_str, "thread_id": thread_id, "loop_id": loop_id},
    )
    return conn


async def close_connection(*, db_path: str | None = None) -> None:
    """Close the cached SQLite connection for the current thread, loop, and db path."""
    cache_key = _cache_key(db_path)
    thread_id, loop_id, path_str = cache_key

    with _db_lock:
        conn = _db_connections.pop(cache_key, None)
        _transaction_locks.pop(cache_key, None)

    if conn is None:
        return

    try:
        await conn.close()
        logger.info(
            "Closed SQLite connection",
            extra={"thread_id": thread_id, "loop_id": loop_id, "db_path": path_str},
        )
    except Exception as e:
        logger.warning(
            "Error closing SQLite connection",
            extra={"error": str(e), "thread_id": thread_id, "loop_id": loop_id},
        )


async def init_db(*, db_path: str | None = None) -> None:
    """Initialize the database schema by delegating to schema.init_db()."""
    from src.core import schema

    await schema.init_db(db_path=db_path)


@asynccontextmanager
async def transaction() -> AsyncIterator[None]:
    """Run the enclosed operations as one atomic unit of work.

    Nested use inside the same task joins the outer transaction. Any exception
    escaping the outermost block rolls every write back.
    """
    depth = _transaction_depth.get()
    if depth:
        token = _transaction_depth.set(depth + 1)
        try:
            yield
        finally:
            _transaction_depth.reset(token)
        return

    conn = await get_connection()
    async with _transaction_locks[_cache_key(None)]:
        await conn.execute("BEGIN IMMEDIATE")
        token = _transaction_depth.set(1)
        try:
            yield
        except BaseException:
            await conn.execute("ROLLBACK")
            logger.warning("Rolled back transaction")
            raise
        else:
            await conn.execute("COMMIT")
        finally:
            _transaction_depth.reset(token)


@asynccontextmanager
async def _exclusive_connection() -> AsyncIterator[aiosqlite.Connection]:
    """Connection for one operation.

    Outside a transaction the operation waits for the connection's lock, so it
    never runs inside (or reads from) another task's open transaction.
    """
    conn = await get_connection()
    if _transaction_depth.get() or _holds_connection.get():
        yield conn
        return

    async with _transaction_locks[_cache_key(None)]:
        token = _holds_connection.set(True)
        try:
            yield conn
        finally:
            _holds_connection.reset(token)


def _row_to_dict(cursor: aiosqlite.Cursor, row: Any) -> dict[str, Any]:
    columns = [description[0] for description in cursor.description]
    return dict(zip(columns, row, strict=True))


async def create_record(*, collection: str, data: dict[str, Any]) -> dict[str, Any]:
    """Insert a new record and return it.

    Records are keyed by the caller-supplied ``id`` column.
    """
    if "id" not in data:
        msg = f"Record for {collection} is missing an id"
        raise ValueError(msg)

    try:
        _validate_collection_name(collection)

        columns = list(data.keys())
        columns_str = ", ".join(columns)
        placeholders_str = ", ".join("?" for _ in columns)
        values = [_encode_value(data[key]) for key in columns]

        query = f"INSERT INTO {collection} ({columns_str}) VALUES ({placeholders_str})"  # noqa: S608 - collection is validated
        async with _exclusive_connection() as conn:
            await conn.execute(query, values)
            result = await get_record(collection=collection, record_id=str(data["id"]))

        logger.info("Created record", extra={"collection": collection, "record_id": data["id"]})
        return result
    except RecordNotFoundError as e:
        msg = f"Record vanished after insert into {collection}: {data['id']}"
        raise DatabaseError(msg) from e
    except Exception as e:
        if isinstance(e, aiosqlite.OperationalError) and "no such table" in str(e):
            msg = f"Table '{collection}' does not exist. Call init_db() first."
            logger.error("Table not found", extra={"collection": collection})
            raise DatabaseError(msg) from e
        logger.error("create_record_failed", extra={"collection": collection, "error": str(e)})
        msg = f"Failed to create record in {collection}: {e}"
        raise DatabaseError(msg) from e


async def get_record(*, collection: str, record_id: str) -> dict[str, Any]:
    """Fetch a single record by ID, raising RecordNotFoundError if not found."""
    try:
        _validate_collection_name(collection)

        query = f"SELECT * FROM {collection} WHERE id = ?"  # noqa: S608 - collection is validated
        async with _exclusive_connection() as conn:
            cursor = await conn.execute(query, (record_id,))
            row = await cursor.fetchone()

        if row is None:
            msg = f"Record not found in {collection}: {record_id}"
            raise RecordNotFoundError(msg)

        logger.debug("Retrieved record", extra={"collection": collection, "record_id": record_id})
        return _row_to_dict(cursor, row)
    except RecordNotFoundError:
        raise
    except Exception as e:
        logger.error("get_record_failed", extra={"collection": collection, "record_id": record_id, "error": str(e)})
        msg = f"Failed to get record from {collection}: {e}"
        raise DatabaseError(msg) from e


async def update_record(*, collection: str, record_id: str, data: dict[str, Any]) -> dict[str, Any]:
    """Update a record by ID and return the updated record."""
    if not data:
        msg = "Empty update payload"
        raise ValueError(msg)

    try:
        _validate_collection_name(collection)

        set_clause = ", ".join(f"{key} = ?" for key in data)
        values = [_encode_value(val) for val in data.values()]
        values.append(record_id)

        query = f"UPDATE {collection} SET {set_clause} WHERE id = ?"  # noqa: S608 - collection is validated
        async with _exclusive_connection() as conn:
            cursor = await conn.execute(query, values)

            if cursor.rowcount == 0:
                msg = f"Record not found in {collection}: {record_id}"
                raise RecordNotFoundError(msg)

            logger.info("Updated record", extra={"collection": collection, "record_id": record_id})
            return await get_record(collection=collection, record_id=record_id)
    except RecordNotFoundError:
        raise
    except Exception as e:
        logger.error("update_record_failed", extra={"collection": collection, "record_id": record_id, "error": str(e)})
        msg = f"Failed to update record in {collection}: {e}"
        raise DatabaseError(msg) from e


async def delete_record(*, collection: str, record_id: str) -> None:
    """Delete a record by ID, raising RecordNotFoundError if not found."""
    try:
        _validate_collection_name(collection)

        query = f"DELETE FROM {collection} WHERE id = ?"  # noqa: S608 - collection is validated
        async with _exclusive_connection() as conn:
            cursor = await conn.execute(query, (record_id,))

        if cursor.rowcount == 0:
            msg = f"Record not found in {collection}: {record_id}"
            raise RecordNotFoundError(msg)

        logger.info("Deleted record", extra={"collection": collection, "record_id": record_id})
    except RecordNotFoundError:
        raise
    except Exception as e:
        logger.error("delete_record_failed", extra={"collection": collection, "record_id": record_id, "error": str(e)})
        msg = f"Failed to delete record from {collection}: {e}"
        raise DatabaseError(msg) from e


async def list_records(
    *,
    collection: str,
    page: int = 1,
    per_page: int = 50,
    filter_query: str = "",
    sort: str = "",
) -> list[dict[str, Any]]:
    """List records with optional filtering, sorting, and pagination."""
    try:
        _validate_collection_name(collection)

        where_clause = ""
        params: list[Any] = []
        if filter_query:
            where_clause, params = parse_filter(filter_query)
            where_clause = f"WHERE {where_clause}"

        order_by = _parse_sort(sort)
        offset = (page - 1) * per_page

        query = f"SELECT * FROM {collection} {where_clause} ORDER BY {order_by} LIMIT ? OFFSET ?"  # noqa: S608 - collection is validated
        params.extend([per_page, offset])

        async with _exclusive_connection() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
        records = [_row_to_dict(cursor, row) for row in rows]

        logger.debug("Listed records", extra={"collection": collection, "count": len(records)})
        return records
    except Exception as e:
        logger.error("list_records_failed", extra={"collection": collection, "error": str(e)})
        msg = f"Failed to list records from {collection}: {e}"
        raise DatabaseError(msg) from e


async def list_all_records(*, collection: str, filter_query: str = "", sort: str = "") -> list[dict[str, Any]]:
    """Drain every page of a filtered listing as one consistent read."""
    per_page = constants.DEFAULT_PER_PAGE_LIMIT
    records: list[dict[str, Any]] = []
    page = 1
    async with _exclusive_connection():
        while True:
            batch = await list_records(
                collection=collection,
                page=page,
                per_page=per_page,
                filter_query=filter_query,
                sort=sort,
            )
            records.extend(batch)
            if len(batch) < per_page:
                return records
            page += 1
