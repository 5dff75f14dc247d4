"""
Data model shared by every stage.

RawDocument / RawSnapshot are what EXPORT writes and TRANSFORM reads.
The *Row classes plus TransformedDataset are the contract between TRANSFORM,
IMPORT and VERIFY. Field names on disk are camelCase; absent optional values
are left out of the file.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from linksdeck_migrate.field_coercion import format_time, parse_time

MAINTENANCE_STATUS_ID = "current"


def _required_time(data: Dict[str, Any], key: str) -> datetime:
    parsed = parse_time(data.get(key), None)
    if parsed is None:
        raise ValueError(f"missing or invalid timestamp '{key}'")
    return parsed


def _optional_time(data: Dict[str, Any], key: str) -> Optional[datetime]:
    return parse_time(data.get(key), None)


def _compact(values: Dict[str, Any]) -> Dict[str, Any]:
    """Drop None values (mirrors `omitempty` on optional columns)."""
    return {k: v for k, v in values.items() if v is not None}


# -----------------------
# Raw (export side)
# -----------------------


@dataclass(frozen=True)
class RawDocument:
    """One Firestore document: its id plus the untyped field mapping."""

    id: str
    fields: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "data": self.fields}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RawDocument":
        fields = data.get("data")
        return cls(id=str(data["id"]), fields=fields if isinstance(fields, dict) else {})


@dataclass
class RawSnapshot:
    """Root artifact of EXPORT. Fully replaced on every export run."""

    exported_at: datetime
    collections: Dict[str, List[RawDocument]] = field(default_factory=dict)
    maintenance_current: Optional[RawDocument] = None

    def collection(self, name: str) -> List[RawDocument]:
        return self.collections.get(name, [])

    def to_dict(self) -> Dict[str, Any]:
        return _compact(
            {
                "exportedAt": format_time(self.exported_at),
                "collections": {
                    name: [doc.to_dict() for doc in docs]
                    for name, docs in self.collections.items()
                },
                "maintenanceCurrent": (
                    self.maintenance_current.to_dict() if self.maintenance_current else None
                ),
            }
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RawSnapshot":
        collections = data.get("collections") or {}
        if not isinstance(collections, dict):
            raise ValueError("'collections' must be a mapping")
        singleton = data.get("maintenanceCurrent")
        return cls(
            exported_at=_required_time(data, "exportedAt"),
            collections={
                name: [RawDocument.from_dict(doc) for doc in (docs or [])]
                for name, docs in collections.items()
            },
            maintenance_current=RawDocument.from_dict(singleton) if singleton else None,
        )


# -----------------------
# Relational rows
# -----------------------


@dataclass
class UserRow:
    id: str
    created_at: datetime
    updated_at: datetime
    email: Optional[str] = None
    display_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact(
            {
                "id": self.id,
                "email": self.email,
                "displayName": self.display_name,
                "createdAt": format_time(self.created_at),
                "updatedAt": format_time(self.updated_at),
            }
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserRow":
        return cls(
            id=data["id"],
            email=data.get("email"),
            display_name=data.get("displayName"),
            created_at=_required_time(data, "createdAt"),
            updated_at=_required_time(data, "updatedAt"),
        )


@dataclass
class LinkRow:
    id: str
    user_id: str
    url: str
    title: str
    created_at: datetime
    updated_at: datetime
    is_archived: bool = False
    summary: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact(
            {
                "id": self.id,
                "userId": self.user_id,
                "url": self.url,
                "title": self.title,
                "isArchived": self.is_archived,
                "summary": self.summary,
                "createdAt": format_time(self.created_at),
                "updatedAt": format_time(self.updated_at),
            }
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LinkRow":
        return cls(
            id=data["id"],
            user_id=data["userId"],
            url=data["url"],
            title=data["title"],
            is_archived=bool(data.get("isArchived", False)),
            summary=data.get("summary"),
            created_at=_required_time(data, "createdAt"),
            updated_at=_required_time(data, "updatedAt"),
        )


@dataclass
class TagRow:
    id: str
    user_id: str
    name: str
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "name": self.name,
            "createdAt": format_time(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TagRow":
        return cls(
            id=data["id"],
            user_id=data["userId"],
            name=data["name"],
            created_at=_required_time(data, "createdAt"),
        )


@dataclass
class LinkTagRow:
    link_id: str
    tag_id: str
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "linkId": self.link_id,
            "tagId": self.tag_id,
            "createdAt": format_time(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LinkTagRow":
        return cls(
            link_id=data["linkId"],
            tag_id=data["tagId"],
            created_at=_required_time(data, "createdAt"),
        )


@dataclass
class TimelineEntryRow:
    id: str
    link_id: str
    type: str
    content: str
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "linkId": self.link_id,
            "type": self.type,
            "content": self.content,
            "createdAt": format_time(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimelineEntryRow":
        return cls(
            id=data["id"],
            link_id=data["linkId"],
            type=data["type"],
            content=data["content"],
            created_at=_required_time(data, "createdAt"),
        )


@dataclass
class MaintenanceStatusRow:
    id: str = MAINTENANCE_STATUS_ID
    is_maintenance_mode: bool = False
    reason: Optional[str] = None
    started_at: Optional[datetime] = None
    started_by: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact(
            {
                "id": self.id,
                "isMaintenanceMode": self.is_maintenance_mode,
                "reason": self.reason,
                "startedAt": format_time(self.started_at),
                "startedBy": self.started_by,
            }
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MaintenanceStatusRow":
        return cls(
            id=data.get("id") or MAINTENANCE_STATUS_ID,
            is_maintenance_mode=bool(data.get("isMaintenanceMode", False)),
            reason=data.get("reason"),
            started_at=_optional_time(data, "startedAt"),
            started_by=data.get("startedBy"),
        )


@dataclass
class DeveloperRow:
    uid: str
    email: str
    added_at: datetime
    deleted_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact(
            {
                "uid": self.uid,
                "email": self.email,
                "addedAt": format_time(self.added_at),
                "deletedAt": format_time(self.deleted_at),
            }
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeveloperRow":
        return cls(
            uid=data["uid"],
            email=data["email"],
            added_at=_required_time(data, "addedAt"),
            deleted_at=_optional_time(data, "deletedAt"),
        )


@dataclass
class MaintenanceLogRow:
    id: str
    action: str
    performed_by: str
    performed_by_uid: str
    timestamp: datetime
    previous_status: bool = False
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact(
            {
                "id": self.id,
                "action": self.action,
                "reason": self.reason,
                "performedBy": self.performed_by,
                "performedByUid": self.performed_by_uid,
                "timestamp": format_time(self.timestamp),
                "previousStatus": self.previous_status,
            }
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MaintenanceLogRow":
        return cls(
            id=data["id"],
            action=data["action"],
            reason=data.get("reason"),
            performed_by=data.get("performedBy", ""),
            performed_by_uid=data.get("performedByUid", ""),
            timestamp=_required_time(data, "timestamp"),
            previous_status=bool(data.get("previousStatus", False)),
        )


# -----------------------
# Transform output
# -----------------------


@dataclass
class TransformedDataset:
    """Everything TRANSFORM produced. IMPORT writes it, VERIFY counts against it."""

    generated_at: datetime
    users: List[UserRow] = field(default_factory=list)
    links: List[LinkRow] = field(default_factory=list)
    tags: List[TagRow] = field(default_factory=list)
    link_tags: List[LinkTagRow] = field(default_factory=list)
    timeline_entries: List[TimelineEntryRow] = field(default_factory=list)
    maintenance_status: MaintenanceStatusRow = field(default_factory=MaintenanceStatusRow)
    developers: List[DeveloperRow] = field(default_factory=list)
    maintenance_logs: List[MaintenanceLogRow] = field(default_factory=list)
    report: List[str] = field(default_factory=list)

    def row_counts(self) -> Dict[str, int]:
        """Per-table row counts, keyed by destination table name."""
        return {
            "users": len(self.users),
            "links": len(self.links),
            "tags": len(self.tags),
            "link_tags": len(self.link_tags),
            "timeline_entries": len(self.timeline_entries),
            "developers": len(self.developers),
            "maintenance_logs": len(self.maintenance_logs),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generatedAt": format_time(self.generated_at),
            "users": [r.to_dict() for r in self.users],
            "links": [r.to_dict() for r in self.links],
            "tags": [r.to_dict() for r in self.tags],
            "linkTags": [r.to_dict() for r in self.link_tags],
            "timelineEntries": [r.to_dict() for r in self.timeline_entries],
            "maintenanceStatus": self.maintenance_status.to_dict(),
            "developers": [r.to_dict() for r in self.developers],
            "maintenanceLogs": [r.to_dict() for r in self.maintenance_logs],
            "report": list(self.report),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransformedDataset":
        return cls(
            generated_at=_required_time(data, "generatedAt"),
            users=[UserRow.from_dict(r) for r in data.get("users") or []],
            links=[LinkRow.from_dict(r) for r in data.get("links") or []],
            tags=[TagRow.from_dict(r) for r in data.get("tags") or []],
            link_tags=[LinkTagRow.from_dict(r) for r in data.get("linkTags") or []],
            timeline_entries=[
                TimelineEntryRow.from_dict(r) for r in data.get("timelineEntries") or []
            ],
            maintenance_status=MaintenanceStatusRow.from_dict(data.get("maintenanceStatus") or {}),
            developers=[DeveloperRow.from_dict(r) for r in data.get("developers") or []],
            maintenance_logs=[
                MaintenanceLogRow.from_dict(r) for r in data.get("maintenanceLogs") or []
            ],
            report=[str(line) for line in data.get("report") or []],
        )


@dataclass
class VerificationSummary:
    """Outcome of VERIFY. `actual` also carries the `orphan_link_tags` audit."""

    expected: Dict[str, int]
    actual: Dict[str, int]
    matched: bool

    @property
    def orphan_link_tags(self) -> int:
        return self.actual.get("orphan_link_tags", 0)

    def to_dict(self) -> Dict[str, Any]:
        return {"expected": self.expected, "actual": self.actual, "matched": self.matched}
