# ============================================================================
# Scheduled Reports - Schedule Planner & Task Runner (APScheduler-based)
# ============================================================================
# Report hours are stored in the site's local time.  The planner turns them
# into a UTC hour-of-day once per planning pass; APScheduler then fires
# cron triggers in UTC at that hour with the cadence of the report period.
# ============================================================================

import logging
import traceback
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import STATE_PAUSED
from apscheduler.triggers.cron import CronTrigger

from .config import ReportingConfig, format_time_for_display, get_timezone, utc_now
from .errors import ReportNotFound, TimezoneLookupError
from .interfaces import ReportStore, TimezoneService
from .models import User
from .periods import (
    PERIOD_DAY,
    PERIOD_MONTH,
    PERIOD_NEVER,
    PERIOD_RANGE,
    PERIOD_WEEK,
    PERIOD_YEAR,
)

logger = logging.getLogger("reporting.scheduler")

UTC = get_timezone("UTC")

# The site offset is read at this instant. Daylight saving is ignored, so a
# report drifts by one hour relative to local time during DST.
REFERENCE_INSTANT = datetime(2011, 1, 1, 0, 0, 0, tzinfo=timezone.utc)


def hour_in_utc(hour: int, tz_name: str) -> int:
    """Convert a site-local hour-of-day to the UTC hour-of-day.

    >>> hour_in_utc(0, "Etc/GMT-2")
    22
    >>> hour_in_utc(8, "America/New_York")
    13
    """
    local_offset = REFERENCE_INSTANT.astimezone(get_timezone(tz_name)).hour
    return (24 - local_offset + hour) % 24


@dataclass
class PlannedDispatch:
    report_id: int
    period: str
    hour_utc: int

    def to_dict(self):
        return asdict(self)


def plan_dispatches(
    reports: Iterable,
    timezone_for: Callable[[int], str],
) -> Tuple[List[PlannedDispatch], List[str]]:
    """
    Compute the UTC dispatch hour of every schedulable report.

    Deleted reports and reports with period ``never`` are skipped.  A
    timezone lookup failure only drops that report; it is returned as a
    warning and planning continues with the next one.
    """
    planned: List[PlannedDispatch] = []
    warnings: List[str] = []

    for report in reports:
        if report.deleted or report.period == PERIOD_NEVER:
            continue
        try:
            tz_name = timezone_for(report.site_id)
            hour_utc = hour_in_utc(report.hour, tz_name)
        except TimezoneLookupError as e:
            message = f"Report {report.id} not scheduled: {e}"
            logger.warning(message)
            warnings.append(message)
            continue

        planned.append(PlannedDispatch(report_id=report.id, period=report.period, hour_utc=hour_utc))

    return planned, warnings


class ReportScheduler:
    """
    Runs report dispatches on their cadence.

    period | trigger (UTC)
    ------ | ---------------------------
    day    | every day at hour_utc:00
    week   | Mondays at hour_utc:00
    month  | 1st of the month at hour_utc:00
    year   | January 1st at hour_utc:00
    range  | every day at hour_utc:00

    Each report has exactly one job, ``report_<id>``.  Jobs never overlap
    for the same report (``max_instances=1``).
    """

    def __init__(self, engine, store: ReportStore, timezones: TimezoneService,
                 config: ReportingConfig, audit=None):
        self.engine = engine
        self.store = store
        self.timezones = timezones
        self.config = config
        self.audit = audit

        # report_id -> APScheduler job ID
        self._jobs: Dict[int, str] = {}
        self._warnings: List[str] = []
        self._running = False
        self._scheduler: Optional[BackgroundScheduler] = None
        self._init_scheduler()

    def _init_scheduler(self):
        """Initialize the APScheduler instance."""
        self._scheduler = BackgroundScheduler(
            timezone=UTC,
            job_defaults={
                "coalesce": True,       # Combine missed runs
                "max_instances": 1,     # Only one instance per job at a time
                "misfire_grace_time": int(self.config.get("misfire_grace_time", 300)),
            },
        )
        self._scheduler.add_listener(self._on_job_executed, EVENT_JOB_EXECUTED)
        self._scheduler.add_listener(self._on_job_error, EVENT_JOB_ERROR)

    def _on_job_executed(self, event):
        logger.debug(f"Job {event.job_id} executed")

    def _on_job_error(self, event):
        logger.error(f"Job {event.job_id} failed: {event.exception}")
        self._audit("scheduler_job_error", details=f"Job {event.job_id} failed: {event.exception}")

    def _audit(self, action, user_name=None, report_id=None, details=None):
        if self.audit is None:
            return
        self.audit.log(action=action, category="scheduler", user_name=user_name,
                       report_id=report_id, details=details)

    # ------------------------------------------------------------------
    # Lifecycle: start / stop
    # ------------------------------------------------------------------

    def start(self, user: str = None) -> bool:
        """Start the scheduler. Returns True if started successfully."""
        if not self.config.get("scheduler_enabled"):
            logger.warning("Cannot start scheduler: scheduler_enabled is False")
            return False

        if self._running:
            logger.info("Scheduler already running")
            return True

        self.refresh_schedules()

        if self._scheduler.state == STATE_PAUSED:
            self._scheduler.resume()
        else:
            self._scheduler.start()
        self._running = True

        logger.info(f"Scheduler started at {format_time_for_display()} with {len(self._jobs)} reports")
        self._audit("scheduler_started", user_name=user,
                    details=f"Scheduler started with {len(self._jobs)} reports")
        return True

    def stop(self, user: str = None) -> bool:
        """Pause the scheduler; jobs are kept and resume on the next start()."""
        if not self._running:
            logger.info("Scheduler already stopped")
            return True

        self._scheduler.pause()
        self._running = False

        logger.info(f"Scheduler stopped at {format_time_for_display()}")
        self._audit("scheduler_stopped", user_name=user)
        return True

    def shutdown(self):
        """Stop the background thread for good (application exit)."""
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._running = False

    def is_running(self) -> bool:
        return self._running and self._scheduler.running

    # ------------------------------------------------------------------
    # Trigger builder
    # ------------------------------------------------------------------

    @staticmethod
    def _build_trigger(period: str, hour_utc: int) -> Optional[CronTrigger]:
        if period in (PERIOD_DAY, PERIOD_RANGE):
            return CronTrigger(hour=hour_utc, minute=0, timezone=UTC)
        if period == PERIOD_WEEK:
            return CronTrigger(day_of_week="mon", hour=hour_utc, minute=0, timezone=UTC)
        if period == PERIOD_MONTH:
            return CronTrigger(day=1, hour=hour_utc, minute=0, timezone=UTC)
        if period == PERIOD_YEAR:
            return CronTrigger(month=1, day=1, hour=hour_utc, minute=0, timezone=UTC)
        return None

    # ------------------------------------------------------------------
    # Job management
    # ------------------------------------------------------------------

    def _add_job(self, planned: PlannedDispatch):
        self._remove_job(planned.report_id)

        trigger = self._build_trigger(planned.period, planned.hour_utc)
        if trigger is None:
            logger.warning(f"Unknown period '{planned.period}' for report {planned.report_id}")
            return

        job_id = f"report_{planned.report_id}"
        self._scheduler.add_job(
            self._execute_scheduled_job,
            trigger=trigger,
            id=job_id,
            args=[planned.report_id],
            replace_existing=True,
        )
        self._jobs[planned.report_id] = job_id
        logger.info(f"Added job {job_id} ({planned.period} at {planned.hour_utc:02d}:00 UTC)")

    def _remove_job(self, report_id: int):
        job_id = self._jobs.pop(report_id, None)
        if job_id and self._scheduler.get_job(job_id):
            self._scheduler.remove_job(job_id)

    def refresh_schedules(self) -> Dict[str, Any]:
        """Re-plan every report (full refresh)."""
        for report_id in list(self._jobs.keys()):
            self._remove_job(report_id)

        planned, warnings = plan_dispatches(self.store.list_reports(), self.timezones.timezone_for)
        for item in planned:
            self._add_job(item)

        self._warnings = warnings
        logger.info(f"Planned {len(planned)} reports ({len(warnings)} warnings)")
        return {"planned": len(planned), "warnings": warnings}

    def sync_report(self, report_id: int):
        """Re-plan a single report after a create/update/delete."""
        try:
            report = self.store.get_report(report_id)
        except ReportNotFound:
            self.remove_report(report_id)
            return

        planned, warnings = plan_dispatches([report], self.timezones.timezone_for)
        if planned:
            self._add_job(planned[0])
        else:
            self.remove_report(report_id)
        self._warnings.extend(warnings)

    def remove_report(self, report_id: int):
        self._remove_job(report_id)
        logger.info(f"Removed job for report {report_id}")

    # ------------------------------------------------------------------
    # Job execution
    # ------------------------------------------------------------------

    def _dispatch_identity(self) -> User:
        """Scheduled runs act as the super user."""
        return User(
            login=self.config.get("super_user_login"),
            email=self.config.get("super_user_email"),
        )

    def _execute_scheduled_job(self, report_id: int, identity: Optional[User] = None):
        """Execute a scheduled report job (or a manual run on behalf of *identity*).

        1. Reload the report (gets latest definition)
        2. Skip if deleted or never
        3. Dispatch through the engine
        4. Record the send time
        5. Audit log
        """
        logger.info(f"Executing scheduled job: report_id={report_id}")

        try:
            report = self.store.get_report(report_id)
        except ReportNotFound:
            logger.warning(f"Report {report_id} not found, skipping")
            return

        # a manual run may send a report that has no schedule
        if report.deleted or (identity is None and report.period == PERIOD_NEVER):
            logger.info(f"Report {report_id} is no longer scheduled, skipping")
            return

        try:
            result = self.engine.dispatch(report_id, current_user=identity or self._dispatch_identity())
        except Exception as e:
            logger.error(f"Report {report_id} dispatch failed: {e}\n{traceback.format_exc()}")
            self._audit("scheduled_report_error", report_id=report_id,
                        details=f"Report {report_id} ({report.description}) error: {e}")
            return

        if not result.get("ok"):
            logger.error(f"Report {report_id} dispatch failed: {result.get('error', 'unknown')}")
            self._audit("scheduled_report_failed", report_id=report_id,
                        details=f"Report {report_id} ({report.description}) failed: {result.get('error')}")
            return

        if not result.get("skipped"):
            self.store.mark_sent(report_id, utc_now())

        self._audit("scheduled_report_completed", report_id=report_id,
                    details=f"Report {report_id} ({report.description}) completed: "
                            f"sent={result.get('sent', 0)}, skipped={bool(result.get('skipped'))}")

    def run_now(self, report_id: int, user: Optional[User] = None) -> Dict[str, Any]:
        """Dispatch a report immediately, outside its schedule, as *user*."""
        user_name = user.login if user else None
        logger.info(f"Manual report trigger: report={report_id}, user={user_name}")
        self._audit("report_manual_trigger", user_name=user_name, report_id=report_id,
                    details=f"Manual trigger for report {report_id}")
        self._execute_scheduled_job(report_id, identity=user)
        return {"ok": True, "report_id": report_id}

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def _next_run(self, job_id: str) -> Optional[datetime]:
        job = self._scheduler.get_job(job_id)
        # pending jobs have no next_run_time until the scheduler starts
        return getattr(job, "next_run_time", None) if job else None

    def get_status(self) -> Dict[str, Any]:
        """Get comprehensive scheduler status."""
        status = {
            "enabled": bool(self.config.get("scheduler_enabled")),
            "running": self.is_running(),
            "current_time": format_time_for_display(utc_now()),
            "timezone": "UTC",
            "reports_count": len(self._jobs),
            "warnings": list(self._warnings),
            "jobs": [],
        }

        for report_id, job_id in sorted(self._jobs.items()):
            next_run = self._next_run(job_id)
            status["jobs"].append({
                "job_id": job_id,
                "report_id": report_id,
                "next_run": format_time_for_display(next_run) if next_run else None,
                "next_run_iso": next_run.isoformat() if next_run else None,
            })

        upcoming = [j for j in status["jobs"] if j["next_run_iso"]]
        upcoming.sort(key=lambda j: j["next_run_iso"])
        status["next_report"] = upcoming[0]["next_run"] if upcoming else None
        return status
