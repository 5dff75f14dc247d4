# tests/unit/test_run_migration.py
# ------------------------------------------------------------
# Purpose: End-to-end pipeline runs through linksdeck_migrate/run_migration.py
#          with an in-memory document source and a SQLite destination.
# ------------------------------------------------------------

import json

import pytest
from sqlalchemy import text

from linksdeck_migrate.errors import ArtifactIOError, ReconciliationMismatch
from linksdeck_migrate.etl.snapshot_io import write_raw_snapshot
from linksdeck_migrate.run_migration import MigrationRun, PipelineState, RunSettings, main


@pytest.fixture
def settings(tmp_path, sqlite_url):
    return RunSettings(
        project_id="demo",
        database_url=sqlite_url,
        export_file=str(tmp_path / "firestore-export.json"),
        transformed_file=str(tmp_path / "transformed.json"),
        verify_report=str(tmp_path / "verify-report.json"),
    )


@pytest.fixture
def make_run(settings, source_factory, sample_collections, fixed_now):
    def _make():
        source = source_factory(
            sample_collections, singletons={("maintenance", "current"): {"isMaintenanceMode": False}}
        )
        return MigrationRun(settings, source_factory=lambda _settings: source, now=fixed_now)

    return _make


def test_mode_all_walks_every_state(make_run, settings):
    run = make_run()
    summary = run.run("all")

    assert summary.matched is True
    assert run.history == [
        PipelineState.IDLE,
        PipelineState.EXPORTING,
        PipelineState.TRANSFORMING,
        PipelineState.IMPORTING,
        PipelineState.VERIFYING,
        PipelineState.DONE,
    ]
    with open(settings.verify_report, encoding="utf-8") as f:
        assert json.load(f)["matched"] is True


def test_mode_all_twice_is_idempotent(make_run, settings):
    first = make_run().run("all")
    second = make_run().run("all")

    assert first.actual == second.actual
    # The second run upserts over the first without adding rows.
    assert second.matched is True


def test_mismatch_fails_the_full_run(make_run, sqlite_engine):
    # A row the dataset knows nothing about makes the users count disagree.
    with sqlite_engine.begin() as conn:
        conn.execute(
            text(
                "INSERT INTO users (id, created_at, updated_at) "
                "VALUES ('stray', '2024-01-01 00:00:00.000000', '2024-01-01 00:00:00.000000')"
            )
        )

    run = make_run()
    with pytest.raises(ReconciliationMismatch) as exc:
        run.run("all")

    assert run.state == PipelineState.FAILED
    assert exc.value.summary.actual["users"] == 2


def test_verify_mode_reports_mismatch_without_failing(make_run, settings):
    # Export + transform only, nothing imported yet.
    run = make_run()
    run.run("export")
    run.run("transform")

    summary = make_run().run("verify")
    assert summary.matched is False


def test_failed_stage_moves_to_failed(settings):
    run = MigrationRun(settings)
    # No export file on disk -> transform cannot read its input.
    with pytest.raises(ArtifactIOError):
        run.run("transform")
    assert run.history == [PipelineState.IDLE, PipelineState.TRANSFORMING, PipelineState.FAILED]


def test_settings_from_config_accepts_a_parsed_secret():
    cfg = {
        "environment": "dev",
        "db_schema": "public",
        "firebase": {"project_id": "demo", "service_account_json": {"type": "service_account"}},
        "database": {"url": "postgres://u:p@h:5432/db"},
        "paths": {
            "export_file": "a.json",
            "transformed_file": "b.json",
            "verify_report": "c.json",
            "markdown_report": "",
        },
    }
    settings = RunSettings.from_config(cfg)

    assert json.loads(settings.service_account_json) == {"type": "service_account"}
    assert settings.database_url == "postgresql+psycopg2://u:p@h:5432/db"
    assert settings.markdown_report == ""


# -----------------------
# CLI
# -----------------------


def test_main_returns_1_on_missing_config(tmp_path):
    assert main(["--config", str(tmp_path / "missing.yaml")]) == 1


def test_main_returns_1_when_mode_requirements_are_missing(tmp_path, monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    cfg = tmp_path / "cfg.yaml"
    cfg.write_text("database:\n  url: ${DATABASE_URL}\n", encoding="utf-8")

    assert main(["--mode", "import", "--config", str(cfg)]) == 1


def test_main_runs_transform_with_flag_overrides(tmp_path, sample_snapshot):
    export = tmp_path / "export.json"
    transformed = tmp_path / "out" / "transformed.json"
    write_raw_snapshot(str(export), sample_snapshot)
    cfg = tmp_path / "cfg.yaml"
    cfg.write_text("log_level: warning\n", encoding="utf-8")

    code = main(
        [
            "--mode", "transform",
            "--config", str(cfg),
            "--export-file", str(export),
            "--transformed-file", str(transformed),
        ]
    )

    assert code == 0
    assert json.loads(transformed.read_text(encoding="utf-8"))["users"][0]["id"] == "u1"


def test_main_returns_1_on_stage_failure(tmp_path):
    cfg = tmp_path / "cfg.yaml"
    cfg.write_text("log_level: INFO\n", encoding="utf-8")

    code = main(
        [
            "--mode", "transform",
            "--config", str(cfg),
            "--export-file", str(tmp_path / "does-not-exist.json"),
            "--transformed-file", str(tmp_path / "t.json"),
        ]
    )
    assert code == 1
