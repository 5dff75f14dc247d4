# =========================================
# File: linksdeck_migrate/etl/snapshot_io.py
# Purpose: Read/write the pipeline's file artifacts
# - raw export snapshot, transformed dataset, verification report (+ markdown)
# - JSON, indent=2, UTF-8 (human-readable and diff-friendly)
# - Writes are atomic: temp file in the same folder, then os.replace()
# =========================================

import json
import logging
import os
import tempfile
from typing import Any, Callable, TypeVar

from linksdeck_migrate.errors import ArtifactIOError
from linksdeck_migrate.models import RawSnapshot, TransformedDataset, VerificationSummary

log = logging.getLogger(__name__)

T = TypeVar("T")


def write_text(path: str, text: str) -> None:
    """
    Write `text` to `path` so that readers only ever see a complete file.
    On any failure (including Ctrl+C) the temp file is removed and the previous
    artifact, if any, is left untouched.
    """
    folder = os.path.dirname(os.path.abspath(path))
    suffix = os.path.splitext(path)[1]
    tmp_path = None
    try:
        os.makedirs(folder, exist_ok=True)  # Ensure ./tmp (or wherever) exists
        fd, tmp_path = tempfile.mkstemp(prefix=".tmp-", suffix=suffix, dir=folder)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)  # Atomic rename over the final name
    except OSError as e:
        raise ArtifactIOError(f"failed to write {path}: {e}") from e
    finally:
        if tmp_path and os.path.exists(tmp_path):
            os.remove(tmp_path)
    log.debug(f"Wrote {len(text)} bytes to {path}")


def write_json(path: str, payload: Any) -> None:
    """Serialize `payload` as indented UTF-8 JSON and write it atomically."""
    try:
        text = json.dumps(payload, indent=2, ensure_ascii=False) + "\n"
    except (TypeError, ValueError) as e:
        raise ArtifactIOError(f"failed to prepare {path}: {e}") from e
    write_text(path, text)


def read_json(path: str) -> Any:
    """Load a JSON artifact; missing or malformed files raise ArtifactIOError."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError as e:
        raise ArtifactIOError(f"artifact not found: {path}") from e
    except (OSError, ValueError) as e:
        raise ArtifactIOError(f"failed to read {path}: {e}") from e


def _load(path: str, factory: Callable[[Any], T]) -> T:
    data = read_json(path)
    if not isinstance(data, dict):
        raise ArtifactIOError(f"{path}: expected a JSON object at the top level")
    try:
        return factory(data)
    except (KeyError, TypeError, ValueError) as e:
        raise ArtifactIOError(f"{path}: malformed artifact ({e!r})") from e


def write_raw_snapshot(path: str, snapshot: RawSnapshot) -> None:
    write_json(path, snapshot.to_dict())


def read_raw_snapshot(path: str) -> RawSnapshot:
    return _load(path, RawSnapshot.from_dict)


def write_transformed(path: str, dataset: TransformedDataset) -> None:
    write_json(path, dataset.to_dict())


def read_transformed(path: str) -> TransformedDataset:
    return _load(path, TransformedDataset.from_dict)


def write_verification_report(path: str, summary: VerificationSummary) -> None:
    write_json(path, summary.to_dict())
