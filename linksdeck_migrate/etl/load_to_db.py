#!/usr/bin/env python3
"""
Import Pipeline
---------------
 - Loads the transformed dataset into the LinksDeck PostgreSQL schema
 - One transaction for everything: any failing row rolls the whole import back
 - UPSERT per table (INSERT ... ON CONFLICT) so re-running is a no-op in effect
 - Parents before children: users, links, tags, link_tags, timeline_entries,
   maintenance_status, developers, maintenance_logs
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import create_engine, func, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError

from linksdeck_migrate.db_models import (
    Developer,
    Link,
    LinkTag,
    MaintenanceLog,
    MaintenanceStatus,
    Tag,
    TimelineEntry,
    User,
)
from linksdeck_migrate.errors import DestinationError
from linksdeck_migrate.etl.snapshot_io import read_transformed
from linksdeck_migrate.models import TransformedDataset

log = logging.getLogger(__name__)


# -----------------------
# Database helpers
# -----------------------


def mask_url(db_url: str) -> str:
    """Connection string with the password replaced by ***."""
    try:
        return make_url(db_url).render_as_string(hide_password=True)
    except ArgumentError:
        return "<unparseable database url>"


def get_engine(db_url: str, db_schema: Optional[str] = None, echo: bool = False) -> Engine:
    """
    Create the SQLAlchemy engine. A non-public `db_schema` is applied to every
    unqualified table through schema_translate_map.
    """
    log.info(f"Connecting to: {mask_url(db_url)}")
    try:
        engine = create_engine(db_url, echo=echo, pool_pre_ping=True, future=True)
    except (ArgumentError, ImportError) as e:
        raise DestinationError(f"invalid database url {mask_url(db_url)}: {e}") from e
    if db_schema and db_schema.lower() != "public":
        engine = engine.execution_options(schema_translate_map={None: db_schema})
    return engine


def _insert(conn: Connection, table):
    """Dialect-specific INSERT that supports ON CONFLICT."""
    dialect = conn.dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise DestinationError(f"unsupported destination dialect: {dialect}")


def _earliest(conn: Connection, existing, incoming):
    """LEAST(a, b) on PostgreSQL; SQLite spells the scalar form min(a, b)."""
    if conn.dialect.name == "postgresql":
        return func.least(existing, incoming)
    return func.min(existing, incoming)


def _upsert_by_key(conn: Connection, table, rows: List[Dict[str, Any]], key: Sequence[str]) -> None:
    """INSERT ... ON CONFLICT (key) DO UPDATE every non-key column."""
    stmt = _insert(conn, table)
    update_map = {c: getattr(stmt.excluded, c) for c in rows[0] if c not in key}
    conn.execute(stmt.on_conflict_do_update(index_elements=list(key), set_=update_map), rows)


# -----------------------
# Per-table writers
# -----------------------


def upsert_users(conn: Connection, ds: TransformedDataset) -> int:
    rows = [
        {
            "id": u.id,
            "email": u.email,
            "display_name": u.display_name,
            "created_at": u.created_at,
            "updated_at": u.updated_at,
        }
        for u in ds.users
    ]
    if rows:
        table = User.__table__
        stmt = _insert(conn, table)
        # created_at is the account's birth date: never rewritten by a re-import
        conn.execute(
            stmt.on_conflict_do_update(
                index_elements=[table.c.id],
                set_={
                    "email": stmt.excluded.email,
                    "display_name": stmt.excluded.display_name,
                    "updated_at": stmt.excluded.updated_at,
                },
            ),
            rows,
        )
    return len(rows)


def upsert_links(conn: Connection, ds: TransformedDataset) -> int:
    rows = [
        {
            "id": link.id,
            "user_id": link.user_id,
            "url": link.url,
            "title": link.title,
            "is_archived": link.is_archived,
            "summary": link.summary,
            "created_at": link.created_at,
            "updated_at": link.updated_at,
        }
        for link in ds.links
    ]
    if rows:
        _upsert_by_key(conn, Link.__table__, rows, ["id"])
    return len(rows)


def upsert_tags(conn: Connection, ds: TransformedDataset) -> int:
    """Conflict on (user_id, name); created_at only ever moves earlier."""
    rows = [
        {"id": t.id, "user_id": t.user_id, "name": t.name, "created_at": t.created_at}
        for t in ds.tags
    ]
    if rows:
        table = Tag.__table__
        stmt = _insert(conn, table)
        conn.execute(
            stmt.on_conflict_do_update(
                index_elements=[table.c.user_id, table.c.name],
                set_={"created_at": _earliest(conn, table.c.created_at, stmt.excluded.created_at)},
            ),
            rows,
        )
    return len(rows)


def insert_link_tags(conn: Connection, ds: TransformedDataset) -> int:
    """First write wins: an existing (link_id, tag_id) pair is left alone."""
    rows = [
        {"link_id": lt.link_id, "tag_id": lt.tag_id, "created_at": lt.created_at}
        for lt in ds.link_tags
    ]
    if rows:
        table = LinkTag.__table__
        stmt = _insert(conn, table)
        conn.execute(
            stmt.on_conflict_do_nothing(index_elements=[table.c.link_id, table.c.tag_id]), rows
        )
    return len(rows)


def upsert_timeline_entries(conn: Connection, ds: TransformedDataset) -> int:
    rows = [
        {
            "id": e.id,
            "link_id": e.link_id,
            "type": e.type,
            "content": e.content,
            "created_at": e.created_at,
        }
        for e in ds.timeline_entries
    ]
    if rows:
        _upsert_by_key(conn, TimelineEntry.__table__, rows, ["id"])
    return len(rows)


def upsert_maintenance_status(conn: Connection, ds: TransformedDataset) -> int:
    """The singleton row is always fully overwritten."""
    status = ds.maintenance_status
    table = MaintenanceStatus.__table__
    stmt = _insert(conn, table).values(
        id=status.id,
        is_maintenance_mode=status.is_maintenance_mode,
        reason=status.reason,
        started_at=status.started_at,
        started_by=status.started_by,
        updated_at=func.now(),
    )
    conn.execute(
        stmt.on_conflict_do_update(
            index_elements=[table.c.id],
            set_={
                "is_maintenance_mode": stmt.excluded.is_maintenance_mode,
                "reason": stmt.excluded.reason,
                "started_at": stmt.excluded.started_at,
                "started_by": stmt.excluded.started_by,
                "updated_at": func.now(),
            },
        )
    )
    return 1


def upsert_developers(conn: Connection, ds: TransformedDataset) -> int:
    """added_at keeps the earliest value; deleted_at is overwritten unconditionally."""
    rows = [
        {"uid": d.uid, "email": d.email, "added_at": d.added_at, "deleted_at": d.deleted_at}
        for d in ds.developers
    ]
    if rows:
        table = Developer.__table__
        stmt = _insert(conn, table)
        conn.execute(
            stmt.on_conflict_do_update(
                index_elements=[table.c.uid],
                set_={
                    "email": stmt.excluded.email,
                    "added_at": _earliest(conn, table.c.added_at, stmt.excluded.added_at),
                    "deleted_at": stmt.excluded.deleted_at,
                },
            ),
            rows,
        )
    return len(rows)


def upsert_maintenance_logs(conn: Connection, ds: TransformedDataset) -> int:
    rows = [
        {
            "id": m.id,
            "action": m.action,
            "reason": m.reason,
            "performed_by": m.performed_by,
            "performed_by_uid": m.performed_by_uid,
            "timestamp": m.timestamp,
            "previous_status": m.previous_status,
        }
        for m in ds.maintenance_logs
    ]
    if rows:
        _upsert_by_key(conn, MaintenanceLog.__table__, rows, ["id"])
    return len(rows)


# Foreign-key order: parents first
IMPORT_STEPS: List[Tuple[str, Callable[[Connection, TransformedDataset], int]]] = [
    ("users", upsert_users),
    ("links", upsert_links),
    ("tags", upsert_tags),
    ("link_tags", insert_link_tags),
    ("timeline_entries", upsert_timeline_entries),
    ("maintenance_status", upsert_maintenance_status),
    ("developers", upsert_developers),
    ("maintenance_logs", upsert_maintenance_logs),
]


# -----------------------
# Main import logic
# -----------------------


def import_dataset(engine: Engine, ds: TransformedDataset) -> Dict[str, int]:
    """
    Apply the dataset in one transaction. Returns rows written per table.
    Raises DestinationError after rolling back on any failure.
    """
    written: Dict[str, int] = {}
    try:
        with engine.begin() as conn:
            if conn.dialect.name == "postgresql":
                conn.execute(text("SET TIME ZONE 'UTC'"))
            for table, step in IMPORT_STEPS:
                try:
                    written[table] = step(conn, ds)
                except SQLAlchemyError as e:
                    raise DestinationError(f"failed to import {table}: {e}") from e
                log.info(f"Upserted {written[table]} rows into {table}")
    except SQLAlchemyError as e:
        # connect/begin/commit failures (row failures are wrapped above)
        raise DestinationError(f"import transaction failed: {e}") from e
    return written


def import_to_postgres(
    db_url: str, transformed_path: str, db_schema: Optional[str] = None, echo: bool = False
) -> Dict[str, int]:
    """IMPORT entry point: transformed dataset file -> destination database."""
    started = time.time()
    ds = read_transformed(transformed_path)
    engine = get_engine(db_url, db_schema=db_schema, echo=echo)
    try:
        written = import_dataset(engine, ds)
    finally:
        engine.dispose()
    log.info(f"✅ Import committed in {time.time() - started:.2f}s ({sum(written.values())} rows)")
    return written
