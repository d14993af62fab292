# ============================================================================
# Scheduled Reports - Configuration Management
# ============================================================================
# Environment-backed configuration with type casting and defaults.
# A ReportingConfig instance is built once at startup and handed to the
# engine and scheduler explicitly.
# ============================================================================

import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import TimezoneLookupError

ENV_PREFIX = "REPORTS_"

# key -> (default, value_type, category)
DEFAULT_CONFIG = {
    # Storage
    "db_path": ("reports.db", "string", "general"),
    "log_level": ("INFO", "string", "general"),

    # Scheduler
    "scheduler_enabled": (True, "bool", "scheduler"),
    "misfire_grace_time": (300, "int", "scheduler"),

    # Email configuration
    "email_provider": ("smtp", "string", "email"),
    "sendgrid_api_key": ("", "string", "email"),
    "smtp_host": ("localhost", "string", "email"),
    "smtp_port": (587, "int", "email"),
    "smtp_user": ("", "string", "email"),
    "smtp_pass": ("", "string", "email"),
    "smtp_starttls": (True, "bool", "email"),
    "from_email": ("noreply@localhost", "string", "email"),
    "from_name": ("Scheduled Reports", "string", "email"),
    "use_custom_branding": (False, "bool", "email"),
    "custom_from_name": ("Web Analytics Reports", "string", "email"),
    "suppress_delivery_errors": (False, "bool", "email"),

    # Rendering
    "graphs_enabled": (True, "bool", "features"),

    # Identity
    "super_user_login": ("admin", "string", "users"),
    "super_user_email": ("", "string", "users"),
}


class ReportingConfig:
    """
    Configuration for the reporting system.

    Values come from (in order of precedence) the ``overrides`` mapping,
    ``REPORTS_<KEY>`` environment variables, then ``DEFAULT_CONFIG``.
    """

    def __init__(self, overrides: Optional[Mapping[str, Any]] = None, environ: Optional[Mapping[str, str]] = None):
        self._values: Dict[str, Any] = {}
        environ = os.environ if environ is None else environ

        for key, (default, vtype, category) in DEFAULT_CONFIG.items():
            raw = environ.get(ENV_PREFIX + key.upper())
            self._values[key] = default if raw is None else self._cast_value(raw, vtype)

        for key, value in (overrides or {}).items():
            self._values[key] = value

    @staticmethod
    def _cast_value(value: str, value_type: str) -> Any:
        """Cast string value to appropriate type."""
        if value is None:
            return None
        if value_type == "bool":
            return value.strip().lower() in ("true", "1", "yes", "on")
        if value_type == "int":
            try:
                return int(value)
            except ValueError:
                return 0
        return value

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value."""
        return self._values.get(key, default)

    def get_all(self, category: str = None) -> Dict[str, Any]:
        """Get all configuration values, optionally filtered by category."""
        if category is None:
            return dict(self._values)

        result = {}
        for key, (default, vtype, cat) in DEFAULT_CONFIG.items():
            if cat == category:
                result[key] = self._values.get(key, default)
        return result

    @property
    def sender_name(self) -> str:
        if self.get("use_custom_branding"):
            return self.get("custom_from_name")
        return self.get("from_name")

    def __repr__(self):
        return f"<ReportingConfig db={self.get('db_path')} provider={self.get('email_provider')}>"


# ============================================================================
# Logging
# ============================================================================

def configure_logging(level: str = "INFO"):
    """Install a basic log format for the ``reporting.*`` loggers."""
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )


# ============================================================================
# Timezone Helpers
# ============================================================================

def get_timezone(tz_name: str) -> ZoneInfo:
    """Resolve an IANA timezone identifier, raising TimezoneLookupError."""
    if not tz_name:
        raise TimezoneLookupError("Empty timezone identifier")
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise TimezoneLookupError(f"Unknown timezone '{tz_name}': {e}") from e


def utc_now() -> datetime:
    """Current time in UTC."""
    return datetime.now(timezone.utc)


def format_time_for_display(dt: datetime = None) -> str:
    """Format a datetime for display (UTC when naive)."""
    if dt is None:
        dt = utc_now()
    elif dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.strftime("%Y-%m-%d %H:%M:%S %Z")
