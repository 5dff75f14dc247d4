# =========================================
# File: linksdeck_migrate/quality/verify_import.py
# Purpose: VERIFY stage (reconciliation after IMPORT)
# - Expected counts come from the transformed dataset only (never the raw export)
# - Actual counts are live COUNT(*) queries against the destination
# - Referential audit: link_tags rows pointing at a missing link or tag
# - Optional JSON report + markdown quality report; never writes to the DB
# =========================================

import logging
from datetime import datetime, timezone
from typing import Dict, Optional

import pandas as pd
from sqlalchemy import func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

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
from linksdeck_migrate.etl.load_to_db import get_engine
from linksdeck_migrate.etl.snapshot_io import read_transformed, write_text, write_verification_report
from linksdeck_migrate.models import MAINTENANCE_STATUS_ID, TransformedDataset, VerificationSummary

log = logging.getLogger(__name__)

ORPHAN_KEY = "orphan_link_tags"

_COUNTED_TABLES = {
    "users": User.__table__,
    "links": Link.__table__,
    "tags": Tag.__table__,
    "link_tags": LinkTag.__table__,
    "timeline_entries": TimelineEntry.__table__,
    "developers": Developer.__table__,
    "maintenance_logs": MaintenanceLog.__table__,
}


def expected_counts(ds: TransformedDataset) -> Dict[str, int]:
    """What IMPORT should have left behind, straight from the dataset."""
    expected = ds.row_counts()
    expected["maintenance_status"] = 1
    return expected


def _orphan_link_tags_query():
    lt, links, tags = LinkTag.__table__, Link.__table__, Tag.__table__
    joined = lt.outerjoin(links, links.c.id == lt.c.link_id).outerjoin(tags, tags.c.id == lt.c.tag_id)
    return (
        select(func.count())
        .select_from(joined)
        .where((links.c.id.is_(None)) | (tags.c.id.is_(None)))
    )


def actual_counts(engine: Engine) -> Dict[str, int]:
    """Live counts per table plus the orphan audit (read-only)."""
    actual: Dict[str, int] = {}
    status = MaintenanceStatus.__table__
    try:
        with engine.connect() as conn:
            for key, table in _COUNTED_TABLES.items():
                actual[key] = conn.execute(select(func.count()).select_from(table)).scalar_one()
            actual["maintenance_status"] = conn.execute(
                select(func.count())
                .select_from(status)
                .where(status.c.id == MAINTENANCE_STATUS_ID)
            ).scalar_one()
            actual[ORPHAN_KEY] = conn.execute(_orphan_link_tags_query()).scalar_one()
    except SQLAlchemyError as e:
        raise DestinationError(f"failed to count destination rows: {e}") from e
    return actual


def reconcile(expected: Dict[str, int], actual: Dict[str, int]) -> VerificationSummary:
    """matched only if every expected count is met exactly and there are no orphans."""
    matched = all(actual.get(key) == count for key, count in expected.items())
    matched = matched and actual.get(ORPHAN_KEY, 0) == 0
    return VerificationSummary(expected=expected, actual=actual, matched=matched)


def summary_frame(summary: VerificationSummary) -> pd.DataFrame:
    """One row per table (plus the orphan audit) with expected/actual/status."""
    rows = []
    for key, count in summary.expected.items():
        got = summary.actual.get(key)
        rows.append({"table": key, "expected": count, "actual": got, "ok": got == count})
    orphans = summary.actual.get(ORPHAN_KEY, 0)
    rows.append({"table": ORPHAN_KEY, "expected": 0, "actual": orphans, "ok": orphans == 0})
    return pd.DataFrame(rows, columns=["table", "expected", "actual", "ok"])


def render_markdown_report(summary: VerificationSummary, environment: str = "") -> str:
    """Human-readable companion to the JSON report (same layout as a data-quality report)."""
    frame = summary_frame(summary)
    ts = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%SZ")
    lines = ["# Migration Verification Report", "", f"- Generated at: {ts}"]
    if environment:
        lines.append(f"- Environment: **{environment}**")
    lines += [
        f"- Result: **{'MATCHED' if summary.matched else 'MISMATCH'}**",
        "",
        "## Lineage",
        "- Source: Firestore export -> transformed dataset (expected counts)",
        "- Target: PostgreSQL tables (actual counts)",
        "",
        "| table | expected | actual | status |",
        "|---|---:|---:|---|",
    ]
    for row in frame.itertuples(index=False):
        lines.append(f"| {row.table} | {row.expected} | {row.actual} | {'✅' if row.ok else '❌'} |")
    mismatches = int((~frame["ok"]).sum())
    lines += ["", f"**Total issues:** {mismatches}"]
    return "\n".join(lines) + "\n"


def write_markdown_report(path: str, summary: VerificationSummary, environment: str = "") -> None:
    write_text(path, render_markdown_report(summary, environment))


def verify_dataset(
    engine: Engine, ds: TransformedDataset, report_path: Optional[str] = None
) -> VerificationSummary:
    """Reconcile one dataset against a live destination. Does not raise on mismatch."""
    summary = reconcile(expected_counts(ds), actual_counts(engine))
    if report_path:
        write_verification_report(report_path, summary)
    return summary


def verify_import(
    db_url: str,
    transformed_path: str,
    report_path: Optional[str] = None,
    markdown_path: Optional[str] = None,
    db_schema: Optional[str] = None,
    environment: str = "",
) -> VerificationSummary:
    """VERIFY entry point: transformed dataset file + live destination -> summary."""
    ds = read_transformed(transformed_path)
    engine = get_engine(db_url, db_schema=db_schema)
    try:
        summary = verify_dataset(engine, ds, report_path=report_path)
    finally:
        engine.dispose()

    if markdown_path:
        write_markdown_report(markdown_path, summary, environment=environment)

    table = summary_frame(summary).to_string(index=False)
    if summary.matched:
        log.info(f"Verification matched.\n{table}")
    else:
        log.error(f"Verification MISMATCH ({summary.orphan_link_tags} orphan link_tags).\n{table}")
    if report_path:
        log.info(f"Verification report written to {report_path}")
    return summary
