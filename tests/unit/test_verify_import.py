# tests/unit/test_verify_import.py
# ------------------------------------------------------------
# Purpose: Unit tests for the VERIFY stage in
#          linksdeck_migrate/quality/verify_import.py.
# Notes:   Import into SQLite first, then reconcile; orphans are
#          produced by deleting a parent row behind the importer's back.
# ------------------------------------------------------------

import json
import os

import pytest
from sqlalchemy import text

from linksdeck_migrate.errors import ArtifactIOError
from linksdeck_migrate.etl.load_to_db import import_dataset
from linksdeck_migrate.etl.snapshot_io import write_transformed
from linksdeck_migrate.etl.transform_pipeline import transform_snapshot
from linksdeck_migrate.quality.verify_import import (
    expected_counts,
    reconcile,
    summary_frame,
    verify_dataset,
    verify_import,
    write_markdown_report,
)


def test_expected_counts_come_from_the_dataset(sample_snapshot, fixed_now):
    ds = transform_snapshot(sample_snapshot, now=fixed_now)

    assert expected_counts(ds) == {
        "users": 1,
        "links": 2,
        "tags": 2,
        "link_tags": 3,
        "timeline_entries": 2,
        "developers": 1,
        "maintenance_logs": 1,
        "maintenance_status": 1,
    }


def test_reconcile_requires_exact_counts_and_no_orphans():
    expected = {"users": 2}
    assert reconcile(expected, {"users": 2, "orphan_link_tags": 0}).matched is True
    # Extra rows are a mismatch too, not just missing ones.
    assert reconcile(expected, {"users": 3, "orphan_link_tags": 0}).matched is False
    assert reconcile(expected, {"users": 2, "orphan_link_tags": 1}).matched is False


def test_verify_matches_after_import(sqlite_engine, sample_snapshot, fixed_now, tmp_path):
    ds = transform_snapshot(sample_snapshot, now=fixed_now)
    import_dataset(sqlite_engine, ds)

    report = tmp_path / "verify-report.json"
    summary = verify_dataset(sqlite_engine, ds, report_path=str(report))

    assert summary.matched is True
    assert summary.orphan_link_tags == 0
    data = json.loads(report.read_text(encoding="utf-8"))
    assert data["matched"] is True
    assert data["expected"]["link_tags"] == 3
    assert data["actual"]["orphan_link_tags"] == 0


def test_deleted_parent_shows_up_as_orphans(sqlite_engine, sample_snapshot, fixed_now):
    ds = transform_snapshot(sample_snapshot, now=fixed_now)
    import_dataset(sqlite_engine, ds)

    # SQLite does not enforce the foreign keys here, so the join rows survive.
    with sqlite_engine.begin() as conn:
        conn.execute(text("DELETE FROM links WHERE id = 'l2'"))

    summary = verify_dataset(sqlite_engine, ds)

    assert summary.matched is False
    assert summary.actual["links"] == 1
    assert summary.orphan_link_tags == 1


def test_summary_frame_flags_each_table(sample_snapshot, fixed_now):
    ds = transform_snapshot(sample_snapshot, now=fixed_now)
    actual = dict(expected_counts(ds), users=0, orphan_link_tags=0)
    frame = summary_frame(reconcile(expected_counts(ds), actual))

    # One row per table plus the orphan audit.
    assert list(frame.columns) == ["table", "expected", "actual", "ok"]
    assert len(frame) == len(expected_counts(ds)) + 1
    assert not frame.loc[frame["table"] == "users", "ok"].item()
    assert int((~frame["ok"]).sum()) == 1


def test_verify_import_writes_json_and_markdown(tmp_path, sqlite_url, sqlite_engine, sample_snapshot, fixed_now):
    ds = transform_snapshot(sample_snapshot, now=fixed_now)
    import_dataset(sqlite_engine, ds)
    transformed = tmp_path / "transformed.json"
    write_transformed(str(transformed), ds)

    report = tmp_path / "out" / "verify-report.json"
    markdown = tmp_path / "out" / "verify-report.md"
    summary = verify_import(
        sqlite_url,
        str(transformed),
        report_path=str(report),
        markdown_path=str(markdown),
        environment="dev",
    )

    assert summary.matched is True
    assert report.exists()
    md = markdown.read_text(encoding="utf-8")
    assert "**MATCHED**" in md
    assert "| link_tags | 3 | 3 | ✅ |" in md
    assert "**Total issues:** 0" in md


def test_verify_never_writes_to_the_destination(sqlite_engine, sample_snapshot, fixed_now):
    ds = transform_snapshot(sample_snapshot, now=fixed_now)

    # Empty destination: everything mismatches, nothing gets created.
    summary = verify_dataset(sqlite_engine, ds)
    assert summary.matched is False
    assert all(summary.actual[t] == 0 for t in ds.row_counts())
    assert verify_dataset(sqlite_engine, ds).actual == summary.actual


def test_single_link_with_case_duplicate_tags_end_to_end(sqlite_engine, snapshot_factory, fixed_now):
    snapshot = snapshot_factory(
        {
            "users": {"u1": {"email": "a@x.test"}},
            "links": {"l1": {"userId": "u1", "url": "https://a.test", "tags": ["A", "a "]}},
        }
    )
    ds = transform_snapshot(snapshot, now=fixed_now)
    import_dataset(sqlite_engine, ds)
    summary = verify_dataset(sqlite_engine, ds)

    assert ds.links[0].title == "https://a.test"
    assert summary.matched is True
    assert (summary.actual["links"], summary.actual["tags"], summary.actual["link_tags"]) == (1, 1, 1)


def test_markdown_report_is_replaced_atomically(tmp_path, monkeypatch, sample_snapshot, fixed_now):
    ds = transform_snapshot(sample_snapshot, now=fixed_now)
    summary = reconcile(expected_counts(ds), dict(expected_counts(ds), orphan_link_tags=0))
    markdown = tmp_path / "verify-report.md"
    markdown.write_text("previous report\n", encoding="utf-8")

    def broken_replace(src, dst):
        raise OSError("interrupted")

    # A failed write keeps the previous report whole and leaves no temp file behind.
    monkeypatch.setattr("linksdeck_migrate.etl.snapshot_io.os.replace", broken_replace)
    with pytest.raises(ArtifactIOError):
        write_markdown_report(str(markdown), summary)

    assert markdown.read_text(encoding="utf-8") == "previous report\n"
    assert os.listdir(tmp_path) == ["verify-report.md"]

    monkeypatch.undo()
    write_markdown_report(str(markdown), summary, environment="prod")
    text_out = markdown.read_text(encoding="utf-8")
    assert text_out.startswith("# Migration Verification Report\n")
    assert "- Environment: **prod**" in text_out
    assert "**Total issues:** 0" in text_out
