"""
Event statistics engine.

Read-only aggregations over events, registrations and attendance that back the
admin dashboard: KPI totals, daily trends, leaderboards and engagement tiers.
"""

from .config import StatisticsConfig, load_config  # noqa: F401
from .context import RequestContext  # noqa: F401
from .errors import (  # noqa: F401
    DeadlineExceeded,
    InvalidParameter,
    OperationCancelled,
    RowDecodeError,
    StatisticsError,
    StoreUnavailable,
)
from .models import (  # noqa: F401
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
    OrganizationRef,
    OverallStatistics,
    TagCount,
    TagDistribution,
    TopEvent,
    TopEvents,
    TrendPoint,
)
from .repository import (  # noqa: F401
    SQLStatisticsRepository,
    StatisticsRepository,
    build_engine,
    build_repository_from_env,
)
from .service import StatisticsService  # noqa: F401
