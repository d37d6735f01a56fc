from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from event_stats import schema
from event_stats.repository import SQLStatisticsRepository
from event_stats.service import StatisticsService

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


class StoreBuilder:
    """Inserts fixture rows into the in-memory store with sequential ids."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._ids = {}

    def _next_id(self, table: str, explicit: Optional[int] = None) -> int:
        if explicit is not None:
            self._ids[table] = max(self._ids.get(table, 0), explicit)
            return explicit
        self._ids[table] = self._ids.get(table, 0) + 1
        return self._ids[table]

    def _insert(self, table, **values) -> None:
        with self.engine.begin() as connection:
            connection.execute(table.insert().values(**values))

    def organization(self, title: str = "Chess Club", image_url: Optional[str] = None, id: Optional[int] = None) -> int:
        org_id = self._next_id("organizations", id)
        self._insert(schema.organizations, id=org_id, title=title, image_url=image_url)
        return org_id

    def user(self, username: Optional[str] = None) -> int:
        user_id = self._next_id("users")
        self._insert(schema.users, id=user_id, username=username or f"user{user_id}")
        return user_id

    def users(self, count: int) -> List[int]:
        return [self.user() for _ in range(count)]

    def event(
        self,
        organization_id: int,
        start: datetime,
        title: Optional[str] = None,
        image_url: Optional[str] = None,
        id: Optional[int] = None,
    ) -> int:
        event_id = self._next_id("events", id)
        self._insert(
            schema.events,
            id=event_id,
            title=title or f"Event {event_id}",
            organization_id=organization_id,
            start_time=start,
            end_time=start + timedelta(hours=2),
            image_url=image_url,
        )
        return event_id

    def register(
        self,
        event_id: int,
        user_id: Optional[int] = None,
        status: str = schema.REGISTERED,
        registered_at: Optional[datetime] = None,
    ) -> int:
        if user_id is None:
            user_id = self.user()
        registration_id = self._next_id("event_registrations")
        self._insert(
            schema.event_registrations,
            id=registration_id,
            event_id=event_id,
            user_id=user_id,
            status=status,
            registered_at=registered_at or NOW - timedelta(days=60),
        )
        return registration_id

    def registrations(self, event_id: int, count: int, status: str = schema.REGISTERED) -> List[int]:
        return [self.register(event_id, status=status) for _ in range(count)]

    def attend(self, registration_id: int, status: str = schema.ATTENDED) -> int:
        attendance_id = self._next_id("event_attendance")
        self._insert(
            schema.event_attendance,
            id=attendance_id,
            registration_id=registration_id,
            status=status,
            checked_in_at=NOW if status != schema.NO_SHOW else None,
        )
        return attendance_id

    def tag(self, name: str, *event_ids: int) -> int:
        tag_id = self._next_id("tags")
        self._insert(schema.tags, id=tag_id, name=name)
        for event_id in event_ids:
            self._insert(schema.event_tags, event_id=event_id, tag_id=tag_id)
        return tag_id


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
    schema.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine) -> StoreBuilder:
    return StoreBuilder(engine)


@pytest.fixture
def repository(engine) -> SQLStatisticsRepository:
    return SQLStatisticsRepository(engine)


@pytest.fixture
def service(repository) -> StatisticsService:
    return StatisticsService(repository, clock=lambda: NOW)


@pytest.fixture
def now() -> datetime:
    return NOW
