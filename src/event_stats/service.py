from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Hashable, Optional, TypeVar

from .cache import ResultCache
from .config import StatisticsConfig
from .context import RequestContext
from .metrics import (
    UTC,
    activity_level,
    as_utc,
    calendar_month_bounds,
    days_until,
    growth_rate,
    month_bounds,
    percent_of,
    previous_month_start,
    trailing_window_start,
    year_bounds,
)
from .models import (
    ActivityCalendar,
    ActivityPoint,
    ClubLeaderboard,
    ClubStanding,
    DashboardStatistics,
    EngagementBreakdown,
    EngagementLevel,
    EventStats,
    EventSummary,
    EventTrends,
    LowRegistrationEvent,
    LowRegistrationEvents,
    OrganizationActivity,
    OrganizationActivityReport,
    OverallStatistics,
    TagCount,
    TagDistribution,
    TopEvent,
    TopEvents,
    TrendPoint,
)
from .params import (
    DEFAULT_DAYS_AHEAD,
    DEFAULT_LOW_REGISTRATION_LIMIT,
    DEFAULT_ORGANIZATION_LIMIT,
    DEFAULT_TOP_LIMIT,
    DEFAULT_WINDOW_DAYS,
    normalize_count,
    validate_month,
    validate_year,
)
from .repository import StatisticsRepository

logger = logging.getLogger(__name__)

R = TypeVar("R")

ENGAGEMENT_TIERS = ("active_users", "registered_for_events", "attended_events", "repeat_attendees")


def _utc_now() -> datetime:
    return datetime.now(UTC)


class StatisticsService:
    """
    Read-only analytics over events, registrations and attendance.

    The service holds no per-request state: each operation normalizes its
    parameters, reads raw counts through the repository and derives rates and
    levels with :mod:`event_stats.metrics`. ``clock`` is injectable so tests can
    pin "now".
    """

    def __init__(
        self,
        repository: StatisticsRepository,
        config: Optional[StatisticsConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
        cache: Optional[ResultCache] = None,
    ) -> None:
        self.repository = repository
        self.config = config or StatisticsConfig()
        self.clock = clock or _utc_now
        self.cache = cache or ResultCache(ttl_s=self.config.cache_ttl_seconds)

    def dashboard_summary(self, ctx: Optional[RequestContext] = None) -> DashboardStatistics:
        logger.debug("dashboard_summary")
        ctx = ctx or RequestContext()
        return self._cached(("dashboard_summary",), lambda: self._dashboard_summary(ctx))

    def event_summary(self, event_id: int, ctx: Optional[RequestContext] = None) -> EventSummary:
        logger.debug("event_summary event_id=%s", event_id)
        ctx = ctx or RequestContext()

        def compute() -> EventSummary:
            counts = self.repository.event_status_counts(ctx, event_id)
            return EventSummary(
                event_id=event_id,
                total_registrations=counts.registrations,
                total_attendees=counts.attended,
                checked_in=counts.checked_in,
                no_show=counts.no_show,
                attendance_rate=percent_of(counts.attended, counts.registrations),
            )

        return self._cached(("event_summary", event_id), compute)

    def tag_distribution(
        self,
        year: Optional[int] = None,
        month: Optional[int] = None,
        ctx: Optional[RequestContext] = None,
    ) -> TagDistribution:
        now = self._now()
        year = validate_year(now.year if year is None else year)
        month = validate_month(now.month if month is None else month)
        logger.debug("tag_distribution year=%s month=%s", year, month)
        ctx = ctx or RequestContext()

        def compute() -> TagDistribution:
            start, end = month_bounds(year, month)
            batch = self.repository.tag_event_counts(ctx, start, end)
            tags = tuple(TagCount(tag_id=row.tag_id, tag_name=row.name, event_count=row.event_count) for row in batch.rows)
            return TagDistribution(
                year=year,
                month=month,
                tags=tags,
                total_events=sum(tag.event_count for tag in tags),
                skipped_rows=batch.skipped,
            )

        return self._cached(("tag_distribution", year, month), compute)

    def activity_by_year(self, year: Optional[int] = None, ctx: Optional[RequestContext] = None) -> ActivityCalendar:
        year = validate_year(self._now().year if year is None else year)
        logger.debug("activity_by_year year=%s", year)
        ctx = ctx or RequestContext()

        def compute() -> ActivityCalendar:
            start, end = year_bounds(year)
            batch = self.repository.daily_event_counts(ctx, start, end)
            activities = tuple(
                ActivityPoint(date=row.day, count=row.event_count, level=activity_level(row.event_count))
                for row in batch.rows
            )
            return ActivityCalendar(
                year=year,
                activities=activities,
                total_events=sum(point.count for point in activities),
                skipped_rows=batch.skipped,
            )

        return self._cached(("activity_by_year", year), compute)

    def overall_summary(self, ctx: Optional[RequestContext] = None) -> OverallStatistics:
        logger.debug("overall_summary")
        ctx = ctx or RequestContext()

        def compute() -> OverallStatistics:
            now = self._now()
            month_start, month_end = calendar_month_bounds(now)
            totals = self.repository.overall_totals(ctx, now, month_start, month_end)
            return OverallStatistics(
                total_events=totals.total_events,
                total_users=totals.total_users,
                total_organizations=totals.total_organizations,
                total_registrations=totals.total_registrations,
                upcoming_events=totals.upcoming_events,
                average_attendance_rate=totals.average_attendance_rate,
                events_this_month=totals.events_in_month,
                registrations_this_month=totals.registrations_in_month,
            )

        return self._cached(("overall_summary",), compute)

    def event_trends(self, days: Optional[int] = None, ctx: Optional[RequestContext] = None) -> EventTrends:
        days = normalize_count(days, DEFAULT_WINDOW_DAYS, self.config.max_days, field="days")
        logger.debug("event_trends days=%s", days)
        ctx = ctx or RequestContext()

        def compute() -> EventTrends:
            now = self._now()
            batch = self.repository.daily_event_counts(ctx, trailing_window_start(now, days), now, include_end=True)
            trends = tuple(
                TrendPoint(date=row.day, event_count=row.event_count, registration_count=row.registration_count)
                for row in batch.rows
            )
            return EventTrends(days=days, trends=trends, skipped_rows=batch.skipped)

        return self._cached(("event_trends", days), compute)

    def top_clubs(
        self,
        limit: Optional[int] = None,
        days: Optional[int] = None,
        ctx: Optional[RequestContext] = None,
    ) -> ClubLeaderboard:
        limit = normalize_count(limit, DEFAULT_TOP_LIMIT, self.config.max_limit, field="limit")
        days = normalize_count(days, DEFAULT_WINDOW_DAYS, self.config.max_days, field="days")
        logger.debug("top_clubs limit=%s days=%s", limit, days)
        ctx = ctx or RequestContext()

        def compute() -> ClubLeaderboard:
            now = self._now()
            batch = self.repository.club_counts(ctx, trailing_window_start(now, days), now, limit)
            clubs = tuple(
                ClubStanding(
                    organization_id=row.organization.id,
                    organization_title=row.organization.title,
                    organization_image=row.organization.image_url,
                    total_events=row.total_events,
                    total_registrations=row.registrations,
                    total_attendees=row.attendees,
                    average_attendance_rate=percent_of(row.attendees, row.registrations),
                )
                for row in batch.rows
            )
            return ClubLeaderboard(limit=limit, days=days, clubs=clubs, skipped_rows=batch.skipped)

        return self._cached(("top_clubs", limit, days), compute)

    def user_engagement_levels(self, ctx: Optional[RequestContext] = None) -> EngagementBreakdown:
        logger.debug("user_engagement_levels")
        ctx = ctx or RequestContext()

        def compute() -> EngagementBreakdown:
            counts = self.repository.engagement_counts(ctx)
            total = counts.total_users
            tier_counts = (total, counts.registered_users, counts.attended_users, counts.repeat_attendees)
            levels = tuple(
                EngagementLevel(level=name, count=count, percentage=percent_of(count, total))
                for name, count in zip(ENGAGEMENT_TIERS, tier_counts)
            )
            return EngagementBreakdown(levels=levels, total_users=total)

        return self._cached(("user_engagement_levels",), compute)

    def top_events(
        self,
        limit: Optional[int] = None,
        days: Optional[int] = None,
        ctx: Optional[RequestContext] = None,
    ) -> TopEvents:
        limit = normalize_count(limit, DEFAULT_TOP_LIMIT, self.config.max_limit, field="limit")
        days = normalize_count(days, DEFAULT_WINDOW_DAYS, self.config.max_days, field="days")
        logger.debug("top_events limit=%s days=%s", limit, days)
        ctx = ctx or RequestContext()

        def compute() -> TopEvents:
            now = self._now()
            batch = self.repository.event_performance(ctx, trailing_window_start(now, days), now, limit)
            events = tuple(
                TopEvent(
                    id=row.event_id,
                    title=row.title,
                    image_url=row.image_url,
                    start_time=row.start_time,
                    total_registrations=row.registrations,
                    total_attendees=row.attendees,
                    attendance_rate=percent_of(row.attendees, row.registrations),
                    organization=row.organization,
                )
                for row in batch.rows
            )
            return TopEvents(limit=limit, days=days, events=events, skipped_rows=batch.skipped)

        return self._cached(("top_events", limit, days), compute)

    def low_registration_events(
        self,
        days_ahead: Optional[int] = None,
        threshold: Optional[int] = None,
        capacity: Optional[int] = None,
        limit: Optional[int] = None,
        ctx: Optional[RequestContext] = None,
    ) -> LowRegistrationEvents:
        days_ahead = normalize_count(days_ahead, DEFAULT_DAYS_AHEAD, self.config.max_days, field="days_ahead")
        threshold = normalize_count(threshold, self.config.low_registration_threshold, field="threshold")
        capacity = normalize_count(capacity, self.config.default_capacity, field="capacity")
        limit = normalize_count(
            limit, min(DEFAULT_LOW_REGISTRATION_LIMIT, self.config.max_limit), self.config.max_limit, field="limit"
        )
        logger.debug(
            "low_registration_events days_ahead=%s threshold=%s capacity=%s limit=%s",
            days_ahead,
            threshold,
            capacity,
            limit,
        )
        ctx = ctx or RequestContext()

        def compute() -> LowRegistrationEvents:
            now = self._now()
            batch = self.repository.low_registration_counts(
                ctx, now, now + timedelta(days=days_ahead), threshold, limit
            )
            events = tuple(
                LowRegistrationEvent(
                    id=row.event_id,
                    title=row.title,
                    image_url=row.image_url,
                    start_time=row.start_time,
                    capacity=capacity,
                    total_registrations=row.registrations,
                    capacity_utilization=percent_of(row.registrations, capacity),
                    days_until_event=days_until(row.start_time, now),
                    organization=row.organization,
                )
                for row in batch.rows
            )
            return LowRegistrationEvents(
                days_ahead=days_ahead,
                threshold=threshold,
                capacity=capacity,
                limit=limit,
                events=events,
                skipped_rows=batch.skipped,
            )

        return self._cached(("low_registration_events", days_ahead, threshold, capacity, limit), compute)

    def organization_activity(
        self, limit: Optional[int] = None, ctx: Optional[RequestContext] = None
    ) -> OrganizationActivityReport:
        limit = normalize_count(limit, DEFAULT_ORGANIZATION_LIMIT, self.config.max_limit, field="limit")
        logger.debug("organization_activity limit=%s", limit)
        ctx = ctx or RequestContext()

        def compute() -> OrganizationActivityReport:
            this_start, this_end = calendar_month_bounds(self._now())
            last_start = previous_month_start(this_start)
            batch = self.repository.organization_event_counts(ctx, this_start, this_end, last_start, limit)
            organizations = tuple(
                OrganizationActivity(
                    id=row.organization.id,
                    title=row.organization.title,
                    image_url=row.organization.image_url,
                    events_this_month=row.events_this_month,
                    events_last_month=row.events_last_month,
                    total_events=row.total_events,
                    average_attendance=percent_of(row.attendees, row.registrations),
                    growth_rate=growth_rate(row.events_this_month, row.events_last_month),
                )
                for row in batch.rows
            )
            return OrganizationActivityReport(limit=limit, organizations=organizations, skipped_rows=batch.skipped)

        return self._cached(("organization_activity", limit), compute)

    def _dashboard_summary(self, ctx: RequestContext) -> DashboardStatistics:
        now = self._now()
        totals = self.repository.dashboard_totals(ctx, now)
        batch = self.repository.recent_event_counts(ctx, self.config.recent_events_limit)
        recent = tuple(
            EventStats(
                event_id=row.event_id,
                event_title=row.title,
                start_time=row.start_time,
                registrations=row.registrations,
                attendees=row.attendees,
                attendance_rate=percent_of(row.attendees, row.registrations),
            )
            for row in batch.rows
        )
        return DashboardStatistics(
            total_events=totals.total_events,
            total_registrations=totals.total_registrations,
            total_attendees=totals.total_attendees,
            upcoming_events=totals.upcoming_events,
            past_events=totals.past_events,
            recent_events=recent,
            skipped_rows=batch.skipped,
        )

    def _now(self) -> datetime:
        return as_utc(self.clock())

    def _cached(self, key: Hashable, compute: Callable[[], R]) -> R:
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("Serving %s from cache", key[0] if isinstance(key, tuple) else key)
            return cached
        result = compute()
        self.cache.set(key, result)
        return result
