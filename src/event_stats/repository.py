from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Generic, List, Optional, Sequence, TypeVar

from sqlalchemy import and_, case, create_engine, distinct, func, literal, select
from sqlalchemy.engine import Engine, Row
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql import Select

from . import schema
from .config import StatisticsConfig, load_config
from .context import RequestContext
from .errors import RowDecodeError, StoreUnavailable
from .metrics import as_utc, to_date
from .models import OrganizationRef
from .schema import ATTENDED, CHECKED_IN, NO_SHOW, REGISTERED

logger = logging.getLogger(__name__)

T = TypeVar("T")

_e = schema.events
_r = schema.event_registrations
_a = schema.event_attendance
_o = schema.organizations
_u = schema.users
_t = schema.tags
_et = schema.event_tags

_DECODE_ERRORS = (TypeError, ValueError, KeyError, AttributeError)


@dataclass(frozen=True)
class RowBatch(Generic[T]):
    rows: Sequence[T]
    skipped: int = 0


@dataclass(frozen=True)
class DashboardTotals:
    total_events: int
    total_registrations: int
    total_attendees: int
    upcoming_events: int
    past_events: int


@dataclass(frozen=True)
class EventCountsRow:
    event_id: int
    title: str
    start_time: datetime
    registrations: int
    attendees: int


@dataclass(frozen=True)
class EventStatusCounts:
    registrations: int
    attended: int
    checked_in: int
    no_show: int


@dataclass(frozen=True)
class TagCountRow:
    tag_id: int
    name: str
    event_count: int


@dataclass(frozen=True)
class DailyCountRow:
    day: date
    event_count: int
    registration_count: int


@dataclass(frozen=True)
class OverallTotals:
    total_events: int
    total_users: int
    total_organizations: int
    total_registrations: int
    upcoming_events: int
    average_attendance_rate: float
    events_in_month: int
    registrations_in_month: int


@dataclass(frozen=True)
class ClubCountsRow:
    organization: OrganizationRef
    total_events: int
    registrations: int
    attendees: int


@dataclass(frozen=True)
class EngagementCounts:
    total_users: int
    registered_users: int
    attended_users: int
    repeat_attendees: int


@dataclass(frozen=True)
class EventPerformanceRow:
    event_id: int
    title: str
    image_url: Optional[str]
    start_time: datetime
    organization: Optional[OrganizationRef]
    registrations: int
    attendees: int


@dataclass(frozen=True)
class OrganizationCountsRow:
    organization: OrganizationRef
    events_this_month: int
    events_last_month: int
    total_events: int
    registrations: int
    attendees: int


class StatisticsRepository:
    """
    Read-only query interface the statistics service depends on.

    Every method issues bounded, single-shot reads and returns plain rows with
    raw counts; ratios and buckets are derived by the service.
    """

    def dashboard_totals(self, ctx: RequestContext, now: datetime) -> DashboardTotals:
        raise NotImplementedError

    def recent_event_counts(self, ctx: RequestContext, limit: int) -> RowBatch[EventCountsRow]:
        raise NotImplementedError

    def event_status_counts(self, ctx: RequestContext, event_id: int) -> EventStatusCounts:
        raise NotImplementedError

    def tag_event_counts(self, ctx: RequestContext, start: datetime, end: datetime) -> RowBatch[TagCountRow]:
        raise NotImplementedError

    def daily_event_counts(
        self,
        ctx: RequestContext,
        start: datetime,
        end: datetime,
        include_end: bool = False,
    ) -> RowBatch[DailyCountRow]:
        raise NotImplementedError

    def overall_totals(
        self,
        ctx: RequestContext,
        now: datetime,
        month_start: datetime,
        month_end: datetime,
    ) -> OverallTotals:
        raise NotImplementedError

    def club_counts(
        self, ctx: RequestContext, start: datetime, end: datetime, limit: int
    ) -> RowBatch[ClubCountsRow]:
        raise NotImplementedError

    def engagement_counts(self, ctx: RequestContext) -> EngagementCounts:
        raise NotImplementedError

    def event_performance(
        self, ctx: RequestContext, start: datetime, end: datetime, limit: int
    ) -> RowBatch[EventPerformanceRow]:
        raise NotImplementedError

    def low_registration_counts(
        self, ctx: RequestContext, start: datetime, end: datetime, threshold: int, limit: int
    ) -> RowBatch[EventPerformanceRow]:
        raise NotImplementedError

    def organization_event_counts(
        self,
        ctx: RequestContext,
        this_month_start: datetime,
        this_month_end: datetime,
        last_month_start: datetime,
        limit: int,
    ) -> RowBatch[OrganizationCountsRow]:
        raise NotImplementedError


def _registered_count():
    return func.count(distinct(case((_r.c.status == REGISTERED, _r.c.id))))


def _attendance_count(status: str):
    return func.count(distinct(case((_a.c.status == status, _a.c.id))))


def _count(statement: Select):
    return statement.scalar_subquery()


def _timestamp(value: Any) -> datetime:
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if not isinstance(value, datetime):
        raise TypeError(f"expected a timestamp, got {value!r}")
    return as_utc(value)


def _organization(row: Row, id_key: str, title_key: str, image_key: str) -> Optional[OrganizationRef]:
    mapping = row._mapping
    if mapping[id_key] is None:
        return None
    return OrganizationRef(id=int(mapping[id_key]), title=str(mapping[title_key]), image_url=mapping[image_key])


class SQLStatisticsRepository(StatisticsRepository):
    """
    SQLAlchemy Core implementation over the relational event store.

    Each query borrows a pooled connection for its own duration only. Rows that
    cannot be decoded are skipped and counted, or raise ``RowDecodeError`` when
    ``strict_rows`` is enabled.
    """

    def __init__(self, engine: Engine, strict_rows: bool = False):
        self.engine = engine
        self.strict_rows = strict_rows

    def dashboard_totals(self, ctx: RequestContext, now: datetime) -> DashboardTotals:
        statement = select(
            _count(select(func.count()).select_from(_e)).label("total_events"),
            _count(select(func.count()).select_from(_r).where(_r.c.status == REGISTERED)).label(
                "total_registrations"
            ),
            _count(select(func.count()).select_from(_a).where(_a.c.status == ATTENDED)).label("total_attendees"),
            _count(select(func.count()).select_from(_e).where(_e.c.start_time >= now)).label("upcoming_events"),
            _count(select(func.count()).select_from(_e).where(_e.c.start_time < now)).label("past_events"),
        )
        row = self._fetch_one(ctx, "dashboard_totals", statement)
        return self._decode_one(
            "dashboard_totals",
            row,
            lambda r: DashboardTotals(
                total_events=int(r.total_events),
                total_registrations=int(r.total_registrations),
                total_attendees=int(r.total_attendees),
                upcoming_events=int(r.upcoming_events),
                past_events=int(r.past_events),
            ),
        )

    def recent_event_counts(self, ctx: RequestContext, limit: int) -> RowBatch[EventCountsRow]:
        recent = (
            select(_e.c.id, _e.c.title, _e.c.start_time)
            .order_by(_e.c.start_time.desc(), _e.c.id.desc())
            .limit(limit)
            .subquery("recent")
        )
        statement = (
            select(
                recent.c.id,
                recent.c.title,
                recent.c.start_time,
                _registered_count().label("registrations"),
                _attendance_count(ATTENDED).label("attendees"),
            )
            .select_from(
                recent.outerjoin(_r, _r.c.event_id == recent.c.id).outerjoin(_a, _a.c.registration_id == _r.c.id)
            )
            .group_by(recent.c.id, recent.c.title, recent.c.start_time)
            .order_by(recent.c.start_time.desc(), recent.c.id.desc())
        )
        rows = self._fetch(ctx, "recent_event_counts", statement)
        return self._decode(
            "recent_event_counts",
            rows,
            lambda r: EventCountsRow(
                event_id=int(r.id),
                title=str(r.title),
                start_time=_timestamp(r.start_time),
                registrations=int(r.registrations),
                attendees=int(r.attendees),
            ),
        )

    def event_status_counts(self, ctx: RequestContext, event_id: int) -> EventStatusCounts:
        statement = (
            select(
                _registered_count().label("registrations"),
                _attendance_count(ATTENDED).label("attended"),
                _attendance_count(CHECKED_IN).label("checked_in"),
                _attendance_count(NO_SHOW).label("no_show"),
            )
            .select_from(_r.outerjoin(_a, _a.c.registration_id == _r.c.id))
            .where(_r.c.event_id == event_id)
        )
        row = self._fetch_one(ctx, "event_status_counts", statement)
        return self._decode_one(
            "event_status_counts",
            row,
            lambda r: EventStatusCounts(
                registrations=int(r.registrations),
                attended=int(r.attended),
                checked_in=int(r.checked_in),
                no_show=int(r.no_show),
            ),
        )

    def tag_event_counts(self, ctx: RequestContext, start: datetime, end: datetime) -> RowBatch[TagCountRow]:
        event_count = func.count(distinct(_e.c.id)).label("event_count")
        statement = (
            select(_t.c.id, _t.c.name, event_count)
            .select_from(_t.join(_et, _et.c.tag_id == _t.c.id).join(_e, _e.c.id == _et.c.event_id))
            .where(_e.c.start_time >= start, _e.c.start_time < end)
            .group_by(_t.c.id, _t.c.name)
            .order_by(event_count.desc(), _t.c.name, _t.c.id)
        )
        rows = self._fetch(ctx, "tag_event_counts", statement)
        return self._decode(
            "tag_event_counts",
            rows,
            lambda r: TagCountRow(tag_id=int(r.id), name=str(r.name), event_count=int(r.event_count)),
        )

    def daily_event_counts(
        self,
        ctx: RequestContext,
        start: datetime,
        end: datetime,
        include_end: bool = False,
    ) -> RowBatch[DailyCountRow]:
        day = func.date(_e.c.start_time)
        upper = _e.c.start_time <= end if include_end else _e.c.start_time < end
        statement = (
            select(
                day.label("day"),
                func.count(distinct(_e.c.id)).label("event_count"),
                func.count(distinct(_r.c.id)).label("registration_count"),
            )
            .select_from(_e.outerjoin(_r, and_(_r.c.event_id == _e.c.id, _r.c.status == REGISTERED)))
            .where(_e.c.start_time >= start, upper)
            .group_by(day)
            .order_by(day)
        )
        rows = self._fetch(ctx, "daily_event_counts", statement)
        return self._decode(
            "daily_event_counts",
            rows,
            lambda r: DailyCountRow(
                day=to_date(r.day),
                event_count=int(r.event_count),
                registration_count=int(r.registration_count),
            ),
        )

    def overall_totals(
        self,
        ctx: RequestContext,
        now: datetime,
        month_start: datetime,
        month_end: datetime,
    ) -> OverallTotals:
        per_event = (
            select(
                _e.c.id,
                _registered_count().label("reg_count"),
                _attendance_count(ATTENDED).label("att_count"),
            )
            .select_from(_e.outerjoin(_r, _r.c.event_id == _e.c.id).outerjoin(_a, _a.c.registration_id == _r.c.id))
            .group_by(_e.c.id)
            .subquery("per_event")
        )
        per_event_rate = case(
            (per_event.c.reg_count > 0, per_event.c.att_count * 100.0 / per_event.c.reg_count),
            else_=0.0,
        )
        statement = select(
            _count(select(func.count()).select_from(_e)).label("total_events"),
            _count(select(func.count()).select_from(_u)).label("total_users"),
            _count(select(func.count()).select_from(_o)).label("total_organizations"),
            _count(select(func.count()).select_from(_r).where(_r.c.status == REGISTERED)).label(
                "total_registrations"
            ),
            _count(select(func.count()).select_from(_e).where(_e.c.start_time >= now)).label("upcoming_events"),
            _count(select(func.coalesce(func.avg(per_event_rate), 0.0))).label("average_attendance_rate"),
            _count(
                select(func.count())
                .select_from(_e)
                .where(_e.c.start_time >= month_start, _e.c.start_time < month_end)
            ).label("events_in_month"),
            _count(
                select(func.count())
                .select_from(_r)
                .where(_r.c.registered_at >= month_start, _r.c.registered_at < month_end)
            ).label("registrations_in_month"),
        )
        row = self._fetch_one(ctx, "overall_totals", statement)
        return self._decode_one(
            "overall_totals",
            row,
            lambda r: OverallTotals(
                total_events=int(r.total_events),
                total_users=int(r.total_users),
                total_organizations=int(r.total_organizations),
                total_registrations=int(r.total_registrations),
                upcoming_events=int(r.upcoming_events),
                average_attendance_rate=float(r.average_attendance_rate or 0.0),
                events_in_month=int(r.events_in_month),
                registrations_in_month=int(r.registrations_in_month),
            ),
        )

    def club_counts(
        self, ctx: RequestContext, start: datetime, end: datetime, limit: int
    ) -> RowBatch[ClubCountsRow]:
        total_events = func.count(distinct(_e.c.id)).label("total_events")
        registrations = _registered_count().label("registrations")
        statement = (
            select(
                _o.c.id,
                _o.c.title,
                _o.c.image_url,
                total_events,
                registrations,
                _attendance_count(ATTENDED).label("attendees"),
            )
            .select_from(
                _o.join(
                    _e,
                    and_(_e.c.organization_id == _o.c.id, _e.c.start_time >= start, _e.c.start_time <= end),
                )
                .outerjoin(_r, _r.c.event_id == _e.c.id)
                .outerjoin(_a, _a.c.registration_id == _r.c.id)
            )
            .group_by(_o.c.id, _o.c.title, _o.c.image_url)
            .order_by(total_events.desc(), registrations.desc(), _o.c.id)
            .limit(limit)
        )
        rows = self._fetch(ctx, "club_counts", statement)
        return self._decode(
            "club_counts",
            rows,
            lambda r: ClubCountsRow(
                organization=OrganizationRef(id=int(r.id), title=str(r.title), image_url=r.image_url),
                total_events=int(r.total_events),
                registrations=int(r.registrations),
                attendees=int(r.attendees),
            ),
        )

    def engagement_counts(self, ctx: RequestContext) -> EngagementCounts:
        attended_join = _r.join(_a, _a.c.registration_id == _r.c.id)
        repeat_users = (
            select(_r.c.user_id)
            .select_from(attended_join)
            .where(_a.c.status == ATTENDED)
            .group_by(_r.c.user_id)
            .having(func.count(_a.c.id) > 1)
            .subquery("repeat_users")
        )
        statement = select(
            _count(select(func.count()).select_from(_u)).label("total_users"),
            _count(select(func.count(distinct(_r.c.user_id))).where(_r.c.status == REGISTERED)).label(
                "registered_users"
            ),
            _count(
                select(func.count(distinct(_r.c.user_id))).select_from(attended_join).where(_a.c.status == ATTENDED)
            ).label("attended_users"),
            _count(select(func.count()).select_from(repeat_users)).label("repeat_attendees"),
        )
        row = self._fetch_one(ctx, "engagement_counts", statement)
        return self._decode_one(
            "engagement_counts",
            row,
            lambda r: EngagementCounts(
                total_users=int(r.total_users),
                registered_users=int(r.registered_users),
                attended_users=int(r.attended_users),
                repeat_attendees=int(r.repeat_attendees),
            ),
        )

    def event_performance(
        self, ctx: RequestContext, start: datetime, end: datetime, limit: int
    ) -> RowBatch[EventPerformanceRow]:
        registrations = _registered_count().label("registrations")
        attendees = _attendance_count(ATTENDED).label("attendees")
        statement = (
            self._event_rows(registrations, attendees)
            .select_from(
                _e.outerjoin(_o, _o.c.id == _e.c.organization_id)
                .outerjoin(_r, _r.c.event_id == _e.c.id)
                .outerjoin(_a, _a.c.registration_id == _r.c.id)
            )
            .where(_e.c.start_time >= start, _e.c.start_time <= end)
            .group_by(*self._event_group_columns())
            .order_by(registrations.desc(), attendees.desc(), _e.c.id)
            .limit(limit)
        )
        rows = self._fetch(ctx, "event_performance", statement)
        return self._decode("event_performance", rows, self._event_performance_row)

    def low_registration_counts(
        self, ctx: RequestContext, start: datetime, end: datetime, threshold: int, limit: int
    ) -> RowBatch[EventPerformanceRow]:
        registrations = func.count(distinct(_r.c.id))
        statement = (
            self._event_rows(registrations.label("registrations"), literal(0).label("attendees"))
            .select_from(
                _e.outerjoin(_o, _o.c.id == _e.c.organization_id).outerjoin(
                    _r, and_(_r.c.event_id == _e.c.id, _r.c.status == REGISTERED)
                )
            )
            .where(_e.c.start_time >= start, _e.c.start_time <= end)
            .group_by(*self._event_group_columns())
            .having(registrations < threshold)
            .order_by(_e.c.start_time, _e.c.id)
            .limit(limit)
        )
        rows = self._fetch(ctx, "low_registration_counts", statement)
        return self._decode("low_registration_counts", rows, self._event_performance_row)

    def organization_event_counts(
        self,
        ctx: RequestContext,
        this_month_start: datetime,
        this_month_end: datetime,
        last_month_start: datetime,
        limit: int,
    ) -> RowBatch[OrganizationCountsRow]:
        this_month = func.count(
            distinct(case((and_(_e.c.start_time >= this_month_start, _e.c.start_time < this_month_end), _e.c.id)))
        ).label("events_this_month")
        last_month = func.count(
            distinct(case((and_(_e.c.start_time >= last_month_start, _e.c.start_time < this_month_start), _e.c.id)))
        ).label("events_last_month")
        total_events = func.count(distinct(_e.c.id)).label("total_events")
        statement = (
            select(
                _o.c.id,
                _o.c.title,
                _o.c.image_url,
                this_month,
                last_month,
                total_events,
                _registered_count().label("registrations"),
                _attendance_count(ATTENDED).label("attendees"),
            )
            .select_from(
                _o.outerjoin(_e, _e.c.organization_id == _o.c.id)
                .outerjoin(_r, _r.c.event_id == _e.c.id)
                .outerjoin(_a, _a.c.registration_id == _r.c.id)
            )
            .group_by(_o.c.id, _o.c.title, _o.c.image_url)
            .order_by(this_month.desc(), total_events.desc(), _o.c.id)
            .limit(limit)
        )
        rows = self._fetch(ctx, "organization_event_counts", statement)
        return self._decode(
            "organization_event_counts",
            rows,
            lambda r: OrganizationCountsRow(
                organization=OrganizationRef(id=int(r.id), title=str(r.title), image_url=r.image_url),
                events_this_month=int(r.events_this_month),
                events_last_month=int(r.events_last_month),
                total_events=int(r.total_events),
                registrations=int(r.registrations),
                attendees=int(r.attendees),
            ),
        )

    @staticmethod
    def _event_rows(registrations, attendees) -> Select:
        return select(
            _e.c.id,
            _e.c.title,
            _e.c.image_url,
            _e.c.start_time,
            _o.c.id.label("org_id"),
            _o.c.title.label("org_title"),
            _o.c.image_url.label("org_image_url"),
            registrations,
            attendees,
        )

    @staticmethod
    def _event_group_columns():
        return (_e.c.id, _e.c.title, _e.c.image_url, _e.c.start_time, _o.c.id, _o.c.title, _o.c.image_url)

    @staticmethod
    def _event_performance_row(row: Row) -> EventPerformanceRow:
        return EventPerformanceRow(
            event_id=int(row.id),
            title=str(row.title),
            image_url=row.image_url,
            start_time=_timestamp(row.start_time),
            organization=_organization(row, "org_id", "org_title", "org_image_url"),
            registrations=int(row.registrations),
            attendees=int(row.attendees),
        )

    def _fetch(self, ctx: RequestContext, name: str, statement: Select) -> List[Row]:
        ctx.check()
        logger.debug("Running statistics query %s", name)
        try:
            with self.engine.connect() as connection:
                result = connection.execute(statement)
                try:
                    return list(result.fetchall())
                except _DECODE_ERRORS as exc:
                    # Column type processing failed while the rows were materialized.
                    raise RowDecodeError(f"could not decode {name} result", query=name) from exc
        except SQLAlchemyError as exc:
            logger.warning("Statistics query %s failed: %s", name, exc)
            # The driver message carries the SQL text and bound parameters, so it stays out of the error body.
            raise StoreUnavailable(f"{name} query failed", operation=name) from exc

    def _fetch_one(self, ctx: RequestContext, name: str, statement: Select) -> Row:
        rows = self._fetch(ctx, name, statement)
        if not rows:
            raise RowDecodeError(f"{name} returned no rows", query=name)
        return rows[0]

    def _decode(self, name: str, rows: Sequence[Row], decoder: Callable[[Row], T]) -> RowBatch[T]:
        decoded: List[T] = []
        skipped = 0
        for row in rows:
            try:
                decoded.append(decoder(row))
            except _DECODE_ERRORS as exc:
                if self.strict_rows:
                    raise RowDecodeError(f"could not decode {name} row: {exc}", query=name, row=tuple(row)) from exc
                skipped += 1
        if skipped:
            logger.warning("Skipped %d undecodable %s row(s)", skipped, name)
        return RowBatch(rows=tuple(decoded), skipped=skipped)

    @staticmethod
    def _decode_one(name: str, row: Row, decoder: Callable[[Row], T]) -> T:
        # Single-row aggregates have nothing to fall back to, so they always fail loudly.
        try:
            return decoder(row)
        except _DECODE_ERRORS as exc:
            raise RowDecodeError(f"could not decode {name} row: {exc}", query=name, row=tuple(row)) from exc


def build_engine(config: StatisticsConfig) -> Engine:
    if not config.database_url:
        raise ValueError("database_url is not configured")
    kwargs = {"pool_pre_ping": True}
    if config.database_url.startswith("sqlite"):
        return create_engine(config.database_url, **kwargs)
    if config.database_url.startswith("postgresql"):
        # DATE(start_time) must bucket by UTC calendar day.
        kwargs["connect_args"] = {"options": "-c timezone=utc"}
    return create_engine(config.database_url, pool_size=config.pool_size, **kwargs)


def build_repository_from_env(config: Optional[StatisticsConfig] = None) -> Optional[StatisticsRepository]:
    cfg = config or load_config()
    if cfg.database_url:
        return SQLStatisticsRepository(build_engine(cfg), strict_rows=cfg.strict_rows)
    return None
