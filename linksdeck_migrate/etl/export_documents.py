# =========================================
# File: linksdeck_migrate/etl/export_documents.py
# Purpose: EXPORT stage
# - Snapshot the LinksDeck collections + maintenance/current singleton
# - Write one self-contained raw snapshot file (fully replaced each run)
# =========================================

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol, Sequence

from linksdeck_migrate.etl.snapshot_io import write_raw_snapshot
from linksdeck_migrate.models import RawDocument, RawSnapshot

log = logging.getLogger(__name__)

EXPORT_COLLECTIONS = ("users", "links", "tags", "developers", "maintenanceLogs")
SINGLETON_COLLECTION = "maintenance"
SINGLETON_ID = "current"


class DocumentSource(Protocol):
    """What EXPORT needs from a document store (FirestoreSource implements it)."""

    def list_collection(self, name: str) -> List[RawDocument]: ...

    def get_document(self, collection: str, doc_id: str) -> Optional[RawDocument]: ...


def build_snapshot(
    source: DocumentSource,
    collections: Sequence[str] = EXPORT_COLLECTIONS,
    now: Optional[datetime] = None,
) -> RawSnapshot:
    """Read every collection (sequentially) plus the maintenance singleton."""
    data: Dict[str, List[RawDocument]] = {}
    for name in collections:
        data[name] = list(source.list_collection(name))  # SourceAccessError propagates

    singleton = source.get_document(SINGLETON_COLLECTION, SINGLETON_ID)

    return RawSnapshot(
        exported_at=now or datetime.now(timezone.utc),
        collections=data,
        maintenance_current=singleton,
    )


def export_documents(
    source: DocumentSource,
    out_path: str,
    collections: Sequence[str] = EXPORT_COLLECTIONS,
    now: Optional[datetime] = None,
) -> RawSnapshot:
    """
    EXPORT entry point. Nothing is written unless every read succeeded, so a
    failed run leaves the previous snapshot (if any) in place.
    """
    snapshot = build_snapshot(source, collections, now=now)
    write_raw_snapshot(out_path, snapshot)

    total = sum(len(docs) for docs in snapshot.collections.values())
    log.info(
        f"Exported {total} documents from {len(snapshot.collections)} collections "
        f"(maintenance/current {'present' if snapshot.maintenance_current else 'absent'}) "
        f"-> {out_path}"
    )
    return snapshot
