"""
Weekly attendance reporting core for the Kendra network.

Computes reporting weeks and Pushp numbers, applies role-scoped filtering over
paginated report queries, and aggregates attendance into dashboard trends and
summary statistics.
"""

from .aggregation import build_trend_series, round_half_up, summarize_reports  # noqa: F401
from .dashboard import DashboardService  # noqa: F401
from .errors import (  # noqa: F401
    ConfigurationError,
    InvalidInputError,
    NotAuthenticatedError,
    NotFoundError,
    PermissionDeniedError,
    ReportsError,
)
from .filters import ReportFilterEngine, Scope, search_reports  # noqa: F401
from .gateway import (  # noqa: F401
    GatewayCapabilities,
    ReportGateway,
    ReportQuery,
    SQLReportGateway,
    build_gateway,
)
from .models import (  # noqa: F401
    City,
    DashboardStats,
    DateRange,
    Kendra,
    Report,
    ReportFilters,
    ReportPage,
    TrendPoint,
    UserProfile,
)
from .pagination import PagerState, ReportPager  # noqa: F401
from .service import ReferenceDataService, ReportService  # noqa: F401
from .session import AuthSession  # noqa: F401
