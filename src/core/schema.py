"""SQLite schema management (code-first approach)."""

import logging

from src.core import db_client


logger = logging.getLogger(__name__)


# Central list of all collections in the schema, in dependency order
COLLECTIONS = [
    "tasks",
    "task_edges",
    "task_supplies",
    "app_state",
]


TABLE_SCHEMAS: dict[str, str] = {
    "tasks": """CREATE TABLE IF NOT EXISTS tasks (
        id TEXT PRIMARY KEY,
        created TEXT NOT NULL DEFAULT (datetime('now')),
        updated TEXT NOT NULL DEFAULT (datetime('now')),
        name TEXT NOT NULL,
        category TEXT NOT NULL,
        tags TEXT NOT NULL DEFAULT '[]',
        description TEXT NOT NULL DEFAULT '',
        active INTEGER NOT NULL DEFAULT 1,
        interval_unit TEXT NOT NULL DEFAULT 'DAY'
            CHECK (interval_unit IN ('DAY', 'WEEK', 'MONTH', 'ADHOC')),
        interval_qty INTEGER NOT NULL DEFAULT 1 CHECK (interval_qty >= 0),
        specific_days_of_week TEXT NOT NULL DEFAULT '[]',
        excluded_days_of_week TEXT NOT NULL DEFAULT '[]',
        excluded_dates TEXT NOT NULL DEFAULT '[]',
        overdue_behavior TEXT NOT NULL DEFAULT 'POSTPONE'
            CHECK (overdue_behavior IN ('POSTPONE', 'SKIP_TO_NEXT')),
        delete_after_completion INTEGER NOT NULL DEFAULT 0,
        next_due TEXT,
        last_completed TEXT,
        completion_streak INTEGER NOT NULL DEFAULT 0 CHECK (completion_streak >= 0),
        undo_snapshot TEXT,
        time_estimate INTEGER,
        difficulty TEXT CHECK (difficulty IS NULL OR difficulty IN ('LOW', 'MEDIUM', 'HIGH')),
        child_order INTEGER,
        inherit_parent_schedule INTEGER NOT NULL DEFAULT 0,
        requires_manual_completion INTEGER NOT NULL DEFAULT 0,
        requires_inventory INTEGER NOT NULL DEFAULT 0
    )""",
    "task_edges": """CREATE TABLE IF NOT EXISTS task_edges (
        id TEXT PRIMARY KEY,
        created TEXT NOT NULL DEFAULT (datetime('now')),
        kind TEXT NOT NULL CHECK (kind IN ('PARENT', 'TRIGGER')),
        source_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
        target_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
        CHECK (source_id != target_id),
        UNIQUE (kind, source_id, target_id)
    )""",
    "task_supplies": """CREATE TABLE IF NOT EXISTS task_supplies (
        id TEXT PRIMARY KEY,
        created TEXT NOT NULL DEFAULT (datetime('now')),
        task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
        supply_id TEXT NOT NULL,
        consumption_mode TEXT NOT NULL CHECK (consumption_mode IN ('FIXED', 'PROMPTED', 'RECOUNT')),
        fixed_quantity INTEGER,
        prompted_default_value INTEGER,
        UNIQUE (task_id, supply_id)
    )""",
    "app_state": """CREATE TABLE IF NOT EXISTS app_state (
        id TEXT PRIMARY KEY,
        updated TEXT NOT NULL DEFAULT (datetime('now')),
        value TEXT
    )""",
}


INDEXES: list[str] = [
    "CREATE INDEX IF NOT EXISTS idx_tasks_next_due ON tasks (active, next_due)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_last_completed ON tasks (last_completed)",
    "CREATE INDEX IF NOT EXISTS idx_edges_source ON task_edges (source_id, kind)",
    "CREATE INDEX IF NOT EXISTS idx_edges_target ON task_edges (target_id, kind)",
    "CREATE INDEX IF NOT EXISTS idx_task_supplies_task ON task_supplies (task_id)",
]


async def init_db(*, db_path: str | None = None) -> None:
    """Create every table and index if missing (idempotent)."""
    logger.info("Starting SQLite schema sync...")

    conn = await db_client.get_connection(db_path=db_path)
    for collection_name in COLLECTIONS:
        await conn.execute(TABLE_SCHEMAS[collection_name])
    for index_sql in INDEXES:
        await conn.execute(index_sql)

    logger.info("SQLite schema sync complete", extra={"collections": COLLECTIONS})
