"""
Read-only mirror of the tables the statistics engine queries.

Only the columns touched by the aggregations are declared. The CRUD services
own the real schema and its migrations; ``metadata.create_all`` is only used by
tests and local fixtures.
"""

from __future__ import annotations

from sqlalchemy import Column, DateTime, ForeignKey, Integer, MetaData, String, Table

REGISTERED = "registered"
CANCELLED = "cancelled"
WAITLIST = "waitlist"

ATTENDED = "attended"
NO_SHOW = "no_show"
CHECKED_IN = "checked_in"

metadata = MetaData()

organizations = Table(
    "organizations",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("title", String(255), nullable=False),
    Column("image_url", String(1024), nullable=True),
)

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("username", String(255), nullable=False),
)

events = Table(
    "events",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("title", String(255), nullable=False),
    Column("organization_id", Integer, ForeignKey("organizations.id"), nullable=False, index=True),
    Column("start_time", DateTime(timezone=True), nullable=False, index=True),
    Column("end_time", DateTime(timezone=True), nullable=False),
    Column("image_url", String(1024), nullable=True),
)

event_registrations = Table(
    "event_registrations",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("event_id", Integer, ForeignKey("events.id"), nullable=False, index=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("status", String(32), nullable=False),
    Column("registered_at", DateTime(timezone=True), nullable=False),
)

event_attendance = Table(
    "event_attendance",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("registration_id", Integer, ForeignKey("event_registrations.id"), nullable=False, unique=True),
    Column("status", String(32), nullable=False),
    Column("checked_in_at", DateTime(timezone=True), nullable=True),
)

tags = Table(
    "tags",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String(255), nullable=False),
)

event_tags = Table(
    "event_tags",
    metadata,
    Column("event_id", Integer, ForeignKey("events.id"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id"), primary_key=True),
)
