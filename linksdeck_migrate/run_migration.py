#!/usr/bin/env python3
# =========================================
# File: linksdeck_migrate/run_migration.py
# Purpose: Driving surface for the Firestore -> PostgreSQL migration
# - --mode export | transform | import | verify | all
# - Each stage is re-runnable on its own from its input file
# - 'all' runs the four stages in order and fails on a verification mismatch
# =========================================

import argparse
import json
import logging
import sys
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

from config.config_loader import build_db_url, get_config, lookup, validate_config
from linksdeck_migrate.cloud.firestore_source import FirestoreSource
from linksdeck_migrate.errors import MigrationError, ReconciliationMismatch
from linksdeck_migrate.etl.export_documents import DocumentSource, export_documents
from linksdeck_migrate.etl.load_to_db import import_to_postgres
from linksdeck_migrate.etl.transform_pipeline import transform_export
from linksdeck_migrate.models import VerificationSummary
from linksdeck_migrate.quality.verify_import import verify_import

log = logging.getLogger(__name__)

MODES = ("export", "transform", "import", "verify", "all")


class PipelineState(str, Enum):
    """Where a run currently is. Any fatal stage error goes straight to FAILED."""

    IDLE = "idle"
    EXPORTING = "exporting"
    TRANSFORMING = "transforming"
    IMPORTING = "importing"
    VERIFYING = "verifying"
    DONE = "done"
    FAILED = "failed"


@dataclass
class RunSettings:
    """Everything a run needs, resolved from config + CLI flags."""

    project_id: str = ""
    service_account_json: str = ""
    database_url: str = ""
    db_schema: str = "public"
    export_file: str = "./tmp/firestore-export.json"
    transformed_file: str = "./tmp/transformed.json"
    verify_report: str = "./tmp/verify-report.json"
    markdown_report: str = ""
    environment: str = "dev"
    echo: bool = False

    @classmethod
    def from_config(cls, cfg: dict) -> "RunSettings":
        secret = lookup(cfg, "firebase.service_account_json") or ""
        if isinstance(secret, dict):
            secret = json.dumps(secret)  # unquoted JSON in YAML parses as a mapping
        paths = cfg["paths"]
        return cls(
            project_id=lookup(cfg, "firebase.project_id") or "",
            service_account_json=secret,
            database_url=build_db_url(cfg),
            db_schema=cfg.get("db_schema") or "public",
            export_file=paths["export_file"],
            transformed_file=paths["transformed_file"],
            verify_report=paths["verify_report"],
            markdown_report=paths.get("markdown_report") or "",
            environment=cfg.get("environment", "dev"),
        )


def _firestore_source(settings: RunSettings) -> FirestoreSource:
    return FirestoreSource(settings.project_id, settings.service_account_json)


class MigrationRun:
    """
    One pipeline run: Idle -> Exporting -> Transforming -> Importing -> Verifying -> Done|Failed.
    `source_factory` and `now` are injectable (tests use an in-memory source and a fixed clock).
    """

    def __init__(
        self,
        settings: RunSettings,
        source_factory: Callable[[RunSettings], DocumentSource] = _firestore_source,
        now: Optional[datetime] = None,
    ):
        self.settings = settings
        self.source_factory = source_factory
        self.now = now
        self.state = PipelineState.IDLE
        self.history: List[PipelineState] = [PipelineState.IDLE]
        self.summary: Optional[VerificationSummary] = None

    def _enter(self, state: PipelineState) -> None:
        self.state = state
        self.history.append(state)

    def _stage(self, state: PipelineState, name: str, fn: Callable[[], object]):
        log.info(f"[{name}] start")
        self._enter(state)
        try:
            result = fn()
        except BaseException:
            # also covers Ctrl+C: file writes and the DB transaction clean up on their own
            self._enter(PipelineState.FAILED)
            log.error(f"[{name}] failed")
            raise
        log.info(f"[{name}] done")
        return result

    # --- stages ---

    def export(self) -> None:
        def _run():
            source = self.source_factory(self.settings)
            try:
                export_documents(source, self.settings.export_file)
            finally:
                close = getattr(source, "close", None)
                if close:
                    close()

        self._stage(PipelineState.EXPORTING, "export", _run)

    def transform(self) -> None:
        self._stage(
            PipelineState.TRANSFORMING,
            "transform",
            lambda: transform_export(self.settings.export_file, self.settings.transformed_file, now=self.now),
        )

    def load(self) -> None:
        s = self.settings
        self._stage(
            PipelineState.IMPORTING,
            "import",
            lambda: import_to_postgres(s.database_url, s.transformed_file, db_schema=s.db_schema, echo=s.echo),
        )

    def verify(self, strict: bool) -> VerificationSummary:
        s = self.settings

        def _run() -> VerificationSummary:
            summary = verify_import(
                s.database_url,
                s.transformed_file,
                report_path=s.verify_report or None,
                markdown_path=s.markdown_report or None,
                db_schema=s.db_schema,
                environment=s.environment,
            )
            if strict and not summary.matched:
                raise ReconciliationMismatch(summary)
            return summary

        self.summary = self._stage(PipelineState.VERIFYING, "verify", _run)
        return self.summary

    def run(self, mode: str) -> Optional[VerificationSummary]:
        """Run one stage, or all four in order. A mismatch is only fatal in 'all'."""
        if mode == "export":
            self.export()
        elif mode == "transform":
            self.transform()
        elif mode == "import":
            self.load()
        elif mode == "verify":
            self.verify(strict=False)
        elif mode == "all":
            self.export()
            self.transform()
            self.load()
            self.verify(strict=True)
        else:
            raise MigrationError(f"invalid mode: {mode}")
        self._enter(PipelineState.DONE)
        return self.summary


# -----------------------
# CLI interface
# -----------------------
def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="LinksDeck Firestore -> PostgreSQL migration (export/transform/import/verify)"
    )
    p.add_argument("--mode", choices=MODES, default="all", help="Stage to run (default: all)")
    p.add_argument("--env", help="Config environment (config/<env>.yaml); defaults to $ENV or dev")
    p.add_argument("--config", help="Explicit path to a YAML config file")
    p.add_argument("--project-id", help="Firebase project ID")
    p.add_argument("--service-account-json", help="Firebase service account JSON payload")
    p.add_argument("--database-url", help="PostgreSQL connection string")
    p.add_argument("--export-file", help="Path to the raw Firestore export JSON")
    p.add_argument("--transformed-file", help="Path to the transformed dataset JSON")
    p.add_argument("--verify-report", help="Path to the verification report JSON")
    p.add_argument("--markdown-report", help="Optional markdown verification report")
    p.add_argument("--echo", action="store_true", help="Print SQL statements")
    return p.parse_args(argv)


def _apply_overrides(cfg: dict, args: argparse.Namespace) -> dict:
    """CLI flags win over YAML values."""
    if args.project_id:
        cfg["firebase"]["project_id"] = args.project_id
    if args.service_account_json:
        cfg["firebase"]["service_account_json"] = args.service_account_json
    if args.database_url:
        cfg["database"]["url"] = args.database_url
    for key in ("export_file", "transformed_file", "verify_report", "markdown_report"):
        value = getattr(args, key)
        if value:
            cfg["paths"][key] = value
    return cfg


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main execution flow:
    - Reads config (+ flag overrides) and validates what the mode needs
    - Runs the requested stage(s)
    - Exit code 0 on success, 1 on any fatal error
    """
    args = parse_args(argv)
    try:
        cfg = _apply_overrides(get_config(env=args.env, path=args.config), args)
        logging.basicConfig(
            level=cfg["log_level"],
            format="%(asctime)s [%(levelname)s] %(message)s",
        )
        validate_config(cfg, args.mode)
    except MigrationError as e:
        logging.basicConfig(level="INFO", format="%(asctime)s [%(levelname)s] %(message)s")
        log.error(f"❌ {e}")
        return 1

    settings = RunSettings.from_config(cfg)
    settings.echo = args.echo
    run = MigrationRun(settings)
    try:
        summary = run.run(args.mode)
    except MigrationError as e:
        log.exception(f"❌ Migration failed ({args.mode}): {e}")
        return 1

    if summary is not None:
        log.info(f"verify matched: {summary.matched}")
        log.info(f"expected: {summary.expected}")
        log.info(f"actual: {summary.actual}")
    log.info(f"✅ {args.mode} completed ({run.state.value}).")
    return 0


if __name__ == "__main__":
    sys.exit(main())
