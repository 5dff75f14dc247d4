# =========================================
# File: linksdeck_migrate/db_models.py
# Purpose: Destination tables (LinksDeck PostgreSQL schema) as SQLAlchemy models
# - The real schema is provisioned by the server's migrations; these models
#   mirror it so IMPORT/VERIFY can build statements and tests can create_all()
# =========================================

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class User(Base):
    """Table for users (id = Firebase uid)"""

    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String)
    display_name = Column(String)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class Link(Base):
    """Table for saved links"""

    __tablename__ = "links"
    __table_args__ = (Index("ix_links_user_id", "user_id"),)

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    url = Column(Text, nullable=False)
    title = Column(Text, nullable=False)
    is_archived = Column(Boolean, nullable=False, default=False)
    summary = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class Tag(Base):
    """Table for tags (one name per user)"""

    __tablename__ = "tags"
    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_tags_user_id_name"),)

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    name = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


class LinkTag(Base):
    """Join table links <-> tags"""

    __tablename__ = "link_tags"

    link_id = Column(String, ForeignKey("links.id"), primary_key=True)
    tag_id = Column(String, ForeignKey("tags.id"), primary_key=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class TimelineEntry(Base):
    """Notes / summaries attached to a link"""

    __tablename__ = "timeline_entries"
    __table_args__ = (Index("ix_timeline_entries_link_id", "link_id"),)

    id = Column(String, primary_key=True)
    link_id = Column(String, ForeignKey("links.id"), nullable=False)
    type = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


class MaintenanceStatus(Base):
    """Single row (id='current')"""

    __tablename__ = "maintenance_status"

    id = Column(String, primary_key=True)
    is_maintenance_mode = Column(Boolean, nullable=False, default=False)
    reason = Column(Text)
    started_at = Column(DateTime(timezone=True))
    started_by = Column(String)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Developer(Base):
    """Developer allow-list (soft delete via deleted_at)"""

    __tablename__ = "developers"

    uid = Column(String, primary_key=True)
    email = Column(String, nullable=False)
    added_at = Column(DateTime(timezone=True), nullable=False)
    deleted_at = Column(DateTime(timezone=True))


class MaintenanceLog(Base):
    """Audit trail of maintenance toggles"""

    __tablename__ = "maintenance_logs"

    id = Column(String, primary_key=True)
    action = Column(String, nullable=False)
    reason = Column(Text)
    performed_by = Column(String, nullable=False)
    performed_by_uid = Column(String, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    previous_status = Column(Boolean, nullable=False, default=False)
