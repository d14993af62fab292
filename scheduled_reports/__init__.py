# ============================================================================
# Scheduled Reports - Report Dispatch Engine
# ============================================================================
# Periodic analytics reports delivered by email.
#
# Features:
#   - Site-local report hours planned as UTC cron triggers (APScheduler)
#   - Per sub-report table/graph display policy
#   - Recipient resolution from the owner and additional addresses
#   - HTML and PDF emails over SMTP or SendGrid, one send per recipient
#   - Audit logging of every dispatch
# ============================================================================

from .config import ReportingConfig, configure_logging
from .engine import DispatchContext, DispatchEngine
from .routes import register_reporting_routes
from .scheduler import ReportScheduler, hour_in_utc, plan_dispatches
from .services import ReportingServices, build_services

__version__ = "1.0.0"
__all__ = [
    "ReportingConfig",
    "configure_logging",
    "DispatchContext",
    "DispatchEngine",
    "register_reporting_routes",
    "ReportScheduler",
    "hour_in_utc",
    "plan_dispatches",
    "ReportingServices",
    "build_services",
]
