# tests/conftest.py
# ------------------------------------------------------------
# Purpose: Shared fixtures for the migration tests.
#  - A fixed "now" so transform output is reproducible
#  - An in-memory document source (no Firestore, no credentials)
#  - A throw-away SQLite destination built from the SQLAlchemy models
# ------------------------------------------------------------

from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine

from linksdeck_migrate.db_models import Base
from linksdeck_migrate.models import RawDocument, RawSnapshot

FIXED_NOW = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class InMemorySource:
    """
    Stand-in for FirestoreSource: same two read operations, backed by dicts.
    collections: {"links": {"l1": {...fields...}}, ...}
    """

    def __init__(self, collections=None, singletons=None, fail_on=None):
        self.collections = collections or {}
        self.singletons = singletons or {}      # {("maintenance", "current"): {...}}
        self.fail_on = fail_on                  # collection name that raises
        self.closed = False

    def list_collection(self, name):
        if name == self.fail_on:
            from linksdeck_migrate.errors import SourceAccessError
            raise SourceAccessError(f"failed to export collection {name}: permission denied")
        return [RawDocument(id=i, fields=f) for i, f in self.collections.get(name, {}).items()]

    def get_document(self, collection, doc_id):
        fields = self.singletons.get((collection, doc_id))
        return RawDocument(id=doc_id, fields=fields) if fields is not None else None

    def close(self):
        self.closed = True


def make_snapshot(collections=None, maintenance=None, exported_at=FIXED_NOW):
    """Build a RawSnapshot from plain {collection: {id: fields}} dicts."""
    return RawSnapshot(
        exported_at=exported_at,
        collections={
            name: [RawDocument(id=i, fields=f) for i, f in docs.items()]
            for name, docs in (collections or {}).items()
        },
        maintenance_current=RawDocument(id="current", fields=maintenance) if maintenance else None,
    )


@pytest.fixture
def fixed_now():
    return FIXED_NOW


@pytest.fixture
def sample_collections():
    # One user, a couple of links with embedded tags/timeline, one top-level tag,
    # a developer and a maintenance log: enough to touch every table.
    return {
        "users": {
            "u1": {"email": "ana@example.com", "displayName": "Ana", "createdAt": "2024-01-01T10:00:00Z"},
        },
        "tags": {
            "t-work": {"userId": "u1", "name": "Work", "createdAt": "2024-01-02T00:00:00Z"},
        },
        "links": {
            "l1": {
                "userId": "u1",
                "url": "https://example.com/a",
                "title": "Example A",
                "tags": ["work", "reading"],
                "timeline": [
                    {"type": "note", "content": "first note", "createdAt": "2024-02-01T00:00:00Z"},
                    {"type": "summary", "content": "  tl;dr  ", "createdAt": "2024-02-02T00:00:00Z"},
                ],
                "createdAt": "2024-02-01T00:00:00Z",
            },
            "l2": {
                "userId": "u1",
                "url": "https://example.com/b",
                "tags": ["Reading"],
                "createdAt": "2024-03-01T00:00:00Z",
            },
        },
        "developers": {
            "dev1": {"email": "dev@example.com", "addedAt": "2024-01-05T00:00:00Z"},
        },
        "maintenanceLogs": {
            "log1": {
                "action": "enabled",
                "reason": "upgrade",
                "performedBy": "dev@example.com",
                "performedByUid": "dev1",
                "timestamp": "2024-04-01T00:00:00Z",
                "previousStatus": False,
            },
        },
    }


@pytest.fixture
def sample_snapshot(sample_collections):
    return make_snapshot(sample_collections, maintenance={"isMaintenanceMode": False})


@pytest.fixture
def sqlite_url(tmp_path):
    """File-backed SQLite database with the destination tables already created."""
    url = f"sqlite:///{tmp_path / 'destination.db'}"
    engine = create_engine(url, future=True)
    Base.metadata.create_all(engine)
    engine.dispose()
    return url


@pytest.fixture
def sqlite_engine(sqlite_url):
    engine = create_engine(sqlite_url, future=True)
    yield engine
    engine.dispose()


@pytest.fixture
def source_factory():
    """The InMemorySource class, so tests can build sources with their own data."""
    return InMemorySource


@pytest.fixture
def snapshot_factory():
    return make_snapshot
