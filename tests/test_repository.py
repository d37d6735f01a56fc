import time
from datetime import timedelta

import pytest
from sqlalchemy import create_engine

from event_stats.config import StatisticsConfig
from event_stats.context import RequestContext
from event_stats.errors import DeadlineExceeded, OperationCancelled, RowDecodeError, StoreUnavailable
from event_stats.repository import SQLStatisticsRepository, build_engine, build_repository_from_env


def _decode_int(row):
    return int(row[0])


def test_decode_skips_and_counts_bad_rows(engine, caplog):
    repository = SQLStatisticsRepository(engine)

    batch = repository._decode("sample", [("1",), ("oops",), (None,), ("4",)], _decode_int)

    assert batch.rows == (1, 4)
    assert batch.skipped == 2
    assert "Skipped 2 undecodable sample row(s)" in caplog.text


def test_strict_decode_raises_on_first_bad_row(engine):
    repository = SQLStatisticsRepository(engine, strict_rows=True)

    with pytest.raises(RowDecodeError) as excinfo:
        repository._decode("sample", [("1",), ("oops",)], _decode_int)

    assert excinfo.value.query == "sample"
    assert excinfo.value.row == ("oops",)
    assert excinfo.value.to_dict()["error"] == "ROW_DECODE"


def test_single_row_aggregates_always_raise(engine):
    repository = SQLStatisticsRepository(engine)

    with pytest.raises(RowDecodeError):
        repository._decode_one("totals", ("oops",), _decode_int)


def test_missing_tables_surface_as_store_unavailable():
    bare = create_engine("sqlite://")
    repository = SQLStatisticsRepository(bare)

    with pytest.raises(StoreUnavailable) as excinfo:
        repository.engagement_counts(RequestContext())

    assert excinfo.value.operation == "engagement_counts"
    assert excinfo.value.to_dict()["error"] == "INTERNAL"
    assert excinfo.value.message == "engagement_counts query failed"
    assert "no such table" in str(excinfo.value.__cause__)


def test_cancelled_context_stops_before_querying(repository, now):
    ctx = RequestContext()
    ctx.cancel()

    with pytest.raises(OperationCancelled):
        repository.dashboard_totals(ctx, now)


def test_expired_deadline_stops_before_querying(repository, now):
    ctx = RequestContext(deadline=time.monotonic() - 1)

    with pytest.raises(DeadlineExceeded):
        repository.tag_event_counts(ctx, now - timedelta(days=30), now)


def test_with_timeout_sets_remaining_budget():
    assert RequestContext.with_timeout(None).remaining() is None
    assert RequestContext.with_timeout(0).deadline is None
    remaining = RequestContext.with_timeout(5).remaining()
    assert 0 < remaining <= 5


def test_event_rows_come_back_as_utc(repository, store, now):
    org = store.organization()
    store.event(org, now - timedelta(days=1))

    batch = repository.recent_event_counts(RequestContext(), 5)

    assert batch.rows[0].start_time == now - timedelta(days=1)
    assert batch.rows[0].start_time.utcoffset() == timedelta(0)


def test_build_repository_from_env_without_url():
    assert build_repository_from_env(StatisticsConfig()) is None


def test_build_repository_from_env_with_sqlite_url():
    repository = build_repository_from_env(StatisticsConfig(database_url="sqlite://", strict_rows=True))

    assert isinstance(repository, SQLStatisticsRepository)
    assert repository.strict_rows is True


def test_build_engine_requires_url():
    with pytest.raises(ValueError):
        build_engine(StatisticsConfig())


class _StubResult:
    def __init__(self, error):
        self.error = error

    def fetchall(self):
        raise self.error


class _StubConnection:
    def __init__(self, execute_error=None, fetch_error=None):
        self.execute_error = execute_error
        self.fetch_error = fetch_error

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def execute(self, statement):
        if self.execute_error is not None:
            raise self.execute_error
        return _StubResult(self.fetch_error)


class _StubEngine:
    def __init__(self, connection):
        self.connection = connection

    def connect(self):
        return self.connection


def test_errors_raised_while_executing_propagate_unchanged():
    repository = SQLStatisticsRepository(_StubEngine(_StubConnection(execute_error=TypeError("bad bind"))))

    with pytest.raises(TypeError, match="bad bind"):
        repository.engagement_counts(RequestContext())


def test_errors_raised_while_materializing_rows_are_decode_errors(now):
    repository = SQLStatisticsRepository(_StubEngine(_StubConnection(fetch_error=ValueError("bad timestamp"))))

    with pytest.raises(RowDecodeError) as excinfo:
        repository.tag_event_counts(RequestContext(), now - timedelta(days=30), now)

    assert excinfo.value.query == "tag_event_counts"
    assert isinstance(excinfo.value.__cause__, ValueError)


def test_low_registration_counts_respects_limit(repository, store, now):
    org = store.organization()
    ids = [store.event(org, now + timedelta(days=day)) for day in (3, 1, 2)]

    batch = repository.low_registration_counts(RequestContext(), now, now + timedelta(days=30), 10, 2)

    assert [row.event_id for row in batch.rows] == [ids[1], ids[2]]
