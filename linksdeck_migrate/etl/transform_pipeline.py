# =========================================
# File: linksdeck_migrate/etl/transform_pipeline.py
# Purpose: TRANSFORM stage (raw Firestore snapshot -> relational rows)
# - Coerce every field through the tolerant readers (never fails on bad data)
# - Drop documents missing required fields (counted, logged, never fatal)
# - Deduplicate tags per (userId, lower(trim(name))), earliest createdAt wins
# - Synthesize deterministic tag ids for tags only embedded in links
# - Explode embedded link tags / timeline arrays into link_tags / timeline_entries
# - Sort every table deterministically and append the summary report
# =========================================

import logging
import time
from collections import Counter
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set, Tuple

from linksdeck_migrate.etl.snapshot_io import read_raw_snapshot, write_transformed
from linksdeck_migrate.field_coercion import (
    deterministic_tag_id,
    parse_bool,
    parse_optional_string,
    parse_optional_time,
    parse_string,
    parse_time,
    sanitize_tag_name,
    tag_key,
    to_list,
    to_map,
)
from linksdeck_migrate.models import (
    MAINTENANCE_STATUS_ID,
    DeveloperRow,
    LinkRow,
    LinkTagRow,
    MaintenanceLogRow,
    MaintenanceStatusRow,
    RawDocument,
    RawSnapshot,
    TagRow,
    TimelineEntryRow,
    TransformedDataset,
    UserRow,
)

log = logging.getLogger(__name__)

TIMELINE_TYPES = ("note", "summary")


# -----------------------
# Accumulator (one per transform run)
# -----------------------


class _TransformState:
    """
    Dedup maps and counters for a single transform invocation.
    Nothing here is module-level, so concurrent or repeated runs cannot interfere.
    """

    def __init__(self, now: datetime):
        self.now = now
        self.tags: Dict[str, TagRow] = {}  # tag_key -> winning row
        self.synthesized: Set[str] = set()  # tag_keys created from embedded link tags
        self.link_tags: Dict[Tuple[str, str], LinkTagRow] = {}  # (linkId, tagId) -> row
        self.duplicate_tags_merged = 0
        self.skipped: Counter = Counter()  # collection -> dropped documents

    def put_tag(self, tag: TagRow) -> None:
        """Top-level tag document. On collision the earlier createdAt (then lower id) wins."""
        key = tag_key(tag.user_id, tag.name)
        existing = self.tags.get(key)
        if existing is None:
            self.tags[key] = tag
            return
        self.duplicate_tags_merged += 1
        if (tag.created_at, tag.id) < (existing.created_at, existing.id):
            self.tags[key] = tag

    def resolve_embedded_tag(self, user_id: str, name: str, created_at: datetime) -> TagRow:
        """
        Tag referenced by name inside a link. Reuses the deduplicated tag when one
        exists, otherwise synthesizes one with a content-derived id.
        """
        key = tag_key(user_id, name)
        existing = self.tags.get(key)
        if existing is None:
            tag = TagRow(
                id=deterministic_tag_id(user_id, name),
                user_id=user_id,
                name=name,
                created_at=created_at,
            )
            self.tags[key] = tag
            self.synthesized.add(key)
            return tag
        if key in self.synthesized and (created_at, name) < (existing.created_at, existing.name):
            # Same synthesized tag seen from an earlier link (ties: smaller spelling): keep id
            existing.name = name
            existing.created_at = created_at
        return existing

    def put_link_tag(self, row: LinkTagRow) -> None:
        self.link_tags[(row.link_id, row.tag_id)] = row  # last write wins


# -----------------------
# Per-collection transforms
# -----------------------


def transform_users(docs: List[RawDocument], state: _TransformState) -> List[UserRow]:
    rows = []
    for doc in docs:
        data = doc.fields
        created_at = parse_time(data.get("createdAt"), state.now)
        rows.append(
            UserRow(
                id=doc.id,
                email=parse_optional_string(data.get("email")),
                display_name=parse_optional_string(data.get("displayName")),
                created_at=created_at,
                updated_at=parse_time(data.get("updatedAt"), created_at),
            )
        )
    return rows


def transform_tags(docs: List[RawDocument], state: _TransformState) -> None:
    """Top-level tags go straight into the dedup map."""
    for doc in docs:
        data = doc.fields
        user_id = parse_string(data.get("userId"))
        name = sanitize_tag_name(parse_string(data.get("name")))
        if not user_id or not name:
            state.skipped["tags"] += 1
            continue
        state.put_tag(
            TagRow(
                id=doc.id,
                user_id=user_id,
                name=name,
                created_at=parse_time(data.get("createdAt"), state.now),
            )
        )


def _timeline_entries(link_id: str, raw_entries, link_created: datetime) -> List[TimelineEntryRow]:
    entries = []
    for index, raw in enumerate(to_list(raw_entries)):
        entry = to_map(raw)
        content = parse_string(entry.get("content")).strip()
        if not content:
            continue
        entry_type = parse_string(entry.get("type")).strip()
        if entry_type not in TIMELINE_TYPES:
            entry_type = "note"
        entries.append(
            TimelineEntryRow(
                id=f"{link_id}_{index}",  # stable while the array order is stable
                link_id=link_id,
                type=entry_type,
                content=content,
                created_at=parse_time(entry.get("createdAt"), link_created),
            )
        )
    return entries


def transform_links(
    docs: List[RawDocument], state: _TransformState
) -> Tuple[List[LinkRow], List[TimelineEntryRow]]:
    links: List[LinkRow] = []
    timeline: List[TimelineEntryRow] = []
    for doc in docs:
        data = doc.fields
        user_id = parse_string(data.get("userId"))
        url = parse_string(data.get("url")).strip()
        if not user_id or not url:
            state.skipped["links"] += 1
            continue
        title = parse_string(data.get("title")).strip() or url

        created_at = parse_time(data.get("createdAt"), state.now)
        links.append(
            LinkRow(
                id=doc.id,
                user_id=user_id,
                url=url,
                title=title,
                is_archived=parse_bool(data.get("isArchived"), False),
                summary=parse_optional_string(data.get("summary")),
                created_at=created_at,
                updated_at=parse_time(data.get("updatedAt"), created_at),
            )
        )

        for raw_name in to_list(data.get("tags")):
            name = sanitize_tag_name(parse_string(raw_name))
            if not name:
                continue
            tag = state.resolve_embedded_tag(user_id, name, created_at)
            state.put_link_tag(LinkTagRow(link_id=doc.id, tag_id=tag.id, created_at=created_at))

        timeline.extend(_timeline_entries(doc.id, data.get("timeline"), created_at))
    return links, timeline


def transform_developers(docs: List[RawDocument], state: _TransformState) -> List[DeveloperRow]:
    rows = []
    for doc in docs:
        data = doc.fields
        email = parse_string(data.get("email")).strip()
        if not email:
            state.skipped["developers"] += 1
            continue

        # deleted=true without a timestamp -> "deleted now"; a deletedAt without
        # the flag is kept as-is (source data is not normalized here).
        deleted_at = parse_optional_time(data.get("deletedAt"))
        if parse_bool(data.get("deleted"), False) and deleted_at is None:
            deleted_at = state.now

        rows.append(
            DeveloperRow(
                uid=doc.id,
                email=email,
                added_at=parse_time(data.get("addedAt"), state.now),
                deleted_at=deleted_at,
            )
        )
    return rows


def transform_maintenance_logs(
    docs: List[RawDocument], state: _TransformState
) -> List[MaintenanceLogRow]:
    rows = []
    for doc in docs:
        data = doc.fields
        action = parse_string(data.get("action")).strip()
        rows.append(
            MaintenanceLogRow(
                id=doc.id,
                action="enabled" if action == "enabled" else "disabled",
                reason=parse_optional_string(data.get("reason")),
                performed_by=parse_string(data.get("performedBy")).strip(),
                performed_by_uid=parse_string(data.get("performedByUid")).strip(),
                timestamp=parse_time(data.get("timestamp"), state.now),
                previous_status=parse_bool(data.get("previousStatus"), False),
            )
        )
    return rows


def transform_maintenance_status(doc: Optional[RawDocument]) -> MaintenanceStatusRow:
    """Absent singleton means 'not in maintenance'."""
    if doc is None:
        return MaintenanceStatusRow()
    data = doc.fields
    return MaintenanceStatusRow(
        id=MAINTENANCE_STATUS_ID,
        is_maintenance_mode=parse_bool(data.get("isMaintenanceMode"), False),
        reason=parse_optional_string(data.get("reason")),
        started_at=parse_optional_time(data.get("startedAt")),
        started_by=parse_optional_string(data.get("startedBy")),
    )


# -----------------------
# Ordering + report
# -----------------------


def _sort_dataset(ds: TransformedDataset) -> None:
    """Deterministic, diff-friendly order (not something the destination relies on)."""
    ds.users.sort(key=lambda r: r.id)
    ds.links.sort(key=lambda r: r.id)
    ds.links.sort(key=lambda r: r.created_at, reverse=True)  # stable: ties stay id-ordered
    ds.tags.sort(key=lambda r: (r.user_id, r.name, r.id))
    ds.link_tags.sort(key=lambda r: (r.link_id, r.tag_id))
    ds.timeline_entries.sort(key=lambda r: (r.link_id, r.created_at, r.id))
    ds.developers.sort(key=lambda r: r.uid)
    ds.maintenance_logs.sort(key=lambda r: r.id)
    ds.maintenance_logs.sort(key=lambda r: r.timestamp, reverse=True)


def build_report(ds: TransformedDataset, duplicate_tags_merged: int) -> List[str]:
    lines = [f"{table}: {count}" for table, count in ds.row_counts().items()]
    lines.append(f"duplicate_tags_merged: {duplicate_tags_merged}")
    return lines


# -----------------------
# Orchestration
# -----------------------


def transform_snapshot(snapshot: RawSnapshot, now: Optional[datetime] = None) -> TransformedDataset:
    """
    Pure transform of one raw snapshot. `now` is only used as the fallback for
    missing/unparseable timestamps; pin it to get byte-identical re-runs.
    """
    now = parse_time(now, None) if now else datetime.now(timezone.utc)
    state = _TransformState(now)

    users = transform_users(snapshot.collection("users"), state)
    # Top-level tags first so embedded link tags resolve to their ids
    transform_tags(snapshot.collection("tags"), state)
    links, timeline = transform_links(snapshot.collection("links"), state)

    ds = TransformedDataset(
        generated_at=now,
        users=users,
        links=links,
        tags=list(state.tags.values()),
        link_tags=list(state.link_tags.values()),
        timeline_entries=timeline,
        maintenance_status=transform_maintenance_status(snapshot.maintenance_current),
        developers=transform_developers(snapshot.collection("developers"), state),
        maintenance_logs=transform_maintenance_logs(snapshot.collection("maintenanceLogs"), state),
    )
    _sort_dataset(ds)
    ds.report = build_report(ds, state.duplicate_tags_merged)

    for collection, count in sorted(state.skipped.items()):
        log.warning(f"Skipped {count} invalid document(s) in '{collection}'")
    return ds


def transform_export(export_path: str, out_path: str, now: Optional[datetime] = None) -> TransformedDataset:
    """TRANSFORM entry point: raw snapshot file -> transformed dataset file."""
    started = time.time()
    snapshot = read_raw_snapshot(export_path)
    ds = transform_snapshot(snapshot, now=now)
    write_transformed(out_path, ds)

    elapsed = time.time() - started
    log.info(f"Transform completed in {elapsed:.2f}s -> {out_path}")
    for line in ds.report:
        log.info(f"  {line}")
    return ds
