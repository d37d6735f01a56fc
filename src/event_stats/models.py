from __future__ import annotations

from dataclasses import dataclass, field, fields, is_dataclass
from datetime import date, datetime
from typing import Any, Dict, Optional, Sequence


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _serialize(obj: Any) -> Any:
    if is_dataclass(obj) and not isinstance(obj, type):
        return {_camel(f.name): _serialize(getattr(obj, f.name)) for f in fields(obj)}
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, (list, tuple)):
        return [_serialize(item) for item in obj]
    return obj


class _Serializable:
    def as_dict(self) -> Dict[str, Any]:
        """
        Convert the record into a JSON-ready dict with camelCase keys.

        Dates and datetimes are rendered as ISO-8601 strings so the HTTP
        facade can return the payload as-is.
        """

        return _serialize(self)


@dataclass(frozen=True)
class OrganizationRef(_Serializable):
    id: int
    title: str
    image_url: Optional[str] = None


@dataclass(frozen=True)
class EventStats(_Serializable):
    event_id: int
    event_title: str
    start_time: datetime
    registrations: int
    attendees: int
    attendance_rate: float


@dataclass(frozen=True)
class DashboardStatistics(_Serializable):
    total_events: int
    total_registrations: int
    total_attendees: int
    upcoming_events: int
    past_events: int
    recent_events: Sequence[EventStats] = field(default_factory=tuple)
    skipped_rows: int = 0


@dataclass(frozen=True)
class EventSummary(_Serializable):
    event_id: int
    total_registrations: int
    total_attendees: int
    checked_in: int
    no_show: int
    attendance_rate: float


@dataclass(frozen=True)
class TagCount(_Serializable):
    tag_id: int
    tag_name: str
    event_count: int


@dataclass(frozen=True)
class TagDistribution(_Serializable):
    year: int
    month: int
    tags: Sequence[TagCount]
    total_events: int
    skipped_rows: int = 0


@dataclass(frozen=True)
class ActivityPoint(_Serializable):
    date: date
    count: int
    level: int


@dataclass(frozen=True)
class ActivityCalendar(_Serializable):
    year: int
    activities: Sequence[ActivityPoint]
    total_events: int
    skipped_rows: int = 0


@dataclass(frozen=True)
class OverallStatistics(_Serializable):
    total_events: int
    total_users: int
    total_organizations: int
    total_registrations: int
    upcoming_events: int
    average_attendance_rate: float
    events_this_month: int
    registrations_this_month: int


@dataclass(frozen=True)
class TrendPoint(_Serializable):
    date: date
    event_count: int
    registration_count: int


@dataclass(frozen=True)
class EventTrends(_Serializable):
    days: int
    trends: Sequence[TrendPoint]
    skipped_rows: int = 0


@dataclass(frozen=True)
class ClubStanding(_Serializable):
    organization_id: int
    organization_title: str
    organization_image: Optional[str]
    total_events: int
    total_registrations: int
    total_attendees: int
    average_attendance_rate: float


@dataclass(frozen=True)
class ClubLeaderboard(_Serializable):
    limit: int
    days: int
    clubs: Sequence[ClubStanding]
    skipped_rows: int = 0


@dataclass(frozen=True)
class EngagementLevel(_Serializable):
    level: str
    count: int
    percentage: float


@dataclass(frozen=True)
class EngagementBreakdown(_Serializable):
    levels: Sequence[EngagementLevel]
    total_users: int
    trend_message: str = "Showing engagement metrics"
    description: str = "User engagement breakdown"
    is_positive_trend: bool = True


@dataclass(frozen=True)
class TopEvent(_Serializable):
    id: int
    title: str
    image_url: Optional[str]
    start_time: datetime
    total_registrations: int
    total_attendees: int
    attendance_rate: float
    organization: Optional[OrganizationRef] = None


@dataclass(frozen=True)
class TopEvents(_Serializable):
    limit: int
    days: int
    events: Sequence[TopEvent]
    skipped_rows: int = 0


@dataclass(frozen=True)
class LowRegistrationEvent(_Serializable):
    id: int
    title: str
    image_url: Optional[str]
    start_time: datetime
    capacity: int
    total_registrations: int
    capacity_utilization: float
    days_until_event: int
    organization: Optional[OrganizationRef] = None


@dataclass(frozen=True)
class LowRegistrationEvents(_Serializable):
    days_ahead: int
    threshold: int
    capacity: int
    limit: int
    events: Sequence[LowRegistrationEvent]
    skipped_rows: int = 0


@dataclass(frozen=True)
class OrganizationActivity(_Serializable):
    id: int
    title: str
    image_url: Optional[str]
    events_this_month: int
    events_last_month: int
    total_events: int
    average_attendance: float
    growth_rate: float


@dataclass(frozen=True)
class OrganizationActivityReport(_Serializable):
    limit: int
    organizations: Sequence[OrganizationActivity]
    skipped_rows: int = 0
