"""
Scheduled Reports — Schedule Planner & Task Runner Tests
========================================================
Tests: UTC hour conversion, planning pass, cron triggers, job execution
"""

from datetime import datetime, timezone

import pytest

from scheduled_reports.errors import TimezoneLookupError
from scheduled_reports.models import ReportDefinition
from scheduled_reports.scheduler import (
    PlannedDispatch,
    ReportScheduler,
    hour_in_utc,
    plan_dispatches,
)


def _fields(trigger):
    return {f.name: str(f) for f in trigger.fields}


class FakeEngine:
    def __init__(self, result=None, error=None):
        self.calls = []
        self.result = result or {"ok": True, "sent": 2}
        self.error = error

    def dispatch(self, report_id, current_user=None):
        self.calls.append((report_id, current_user))
        if self.error:
            raise self.error
        return self.result


# ============================================================================
# UTC hour conversion
# ============================================================================

class TestHourInUtc:

    def test_utc_plus_two_midnight(self):
        assert hour_in_utc(0, "Etc/GMT-2") == 22

    def test_helsinki_uses_winter_offset(self):
        assert hour_in_utc(0, "Europe/Helsinki") == 22

    def test_new_york_morning(self):
        assert hour_in_utc(8, "America/New_York") == 13

    def test_utc_is_identity(self):
        for hour in range(24):
            assert hour_in_utc(hour, "UTC") == hour

    def test_wraps_past_midnight(self):
        # 23:00 in Tokyo (UTC+9) is 14:00 UTC
        assert hour_in_utc(23, "Asia/Tokyo") == 14

    def test_result_always_in_range(self):
        for tz_name in ("Pacific/Kiritimati", "Pacific/Pago_Pago", "Asia/Kolkata", "UTC"):
            for hour in range(24):
                assert 0 <= hour_in_utc(hour, tz_name) <= 23

    def test_unknown_timezone(self):
        with pytest.raises(TimezoneLookupError):
            hour_in_utc(8, "Mars/Olympus_Mons")


# ============================================================================
# Planning pass
# ============================================================================

class TestPlanDispatches:

    def _report(self, report_id, **fields):
        values = dict(id=report_id, site_id=1, period="day", hour=8)
        values.update(fields)
        return ReportDefinition(**values)

    def test_plans_every_schedulable_report(self):
        timezones = {1: "UTC", 2: "America/New_York"}
        planned, warnings = plan_dispatches(
            [self._report(1), self._report(2, site_id=2, period="week")],
            timezones.__getitem__,
        )
        assert planned == [
            PlannedDispatch(report_id=1, period="day", hour_utc=8),
            PlannedDispatch(report_id=2, period="week", hour_utc=13),
        ]
        assert warnings == []

    def test_skips_deleted_and_never(self):
        planned, warnings = plan_dispatches(
            [self._report(1, deleted=True), self._report(2, period="never"), self._report(3)],
            lambda site_id: "UTC",
        )
        assert [p.report_id for p in planned] == [3]
        assert warnings == []

    def test_timezone_failure_only_drops_that_report(self):
        def timezone_for(site_id):
            if site_id == 2:
                raise TimezoneLookupError("Site 2 not found")
            return "UTC"

        planned, warnings = plan_dispatches(
            [self._report(1, site_id=2), self._report(2), self._report(3, site_id=1, hour=23)],
            timezone_for,
        )
        assert [p.report_id for p in planned] == [2, 3]
        assert len(warnings) == 1
        assert "Report 1" in warnings[0]

    def test_unknown_timezone_identifier_is_a_warning(self):
        planned, warnings = plan_dispatches([self._report(1)], lambda site_id: "Not/AZone")
        assert planned == []
        assert len(warnings) == 1


# ============================================================================
# Cron triggers
# ============================================================================

class TestTriggers:

    def test_daily(self):
        fields = _fields(ReportScheduler._build_trigger("day", 22))
        assert fields["hour"] == "22"
        assert fields["minute"] == "0"
        assert fields["day_of_week"] == "*"
        assert fields["day"] == "*"

    def test_weekly_fires_on_monday(self):
        trigger = ReportScheduler._build_trigger("week", 22)
        assert _fields(trigger)["day_of_week"] == "mon"

        after = datetime(2024, 1, 3, 12, 0, tzinfo=timezone.utc)  # Wednesday
        next_fire = trigger.get_next_fire_time(None, after)
        assert next_fire.weekday() == 0
        assert (next_fire.year, next_fire.month, next_fire.day, next_fire.hour) == (2024, 1, 8, 22)
        assert next_fire.utcoffset().total_seconds() == 0

    def test_monthly_fires_on_first(self):
        fields = _fields(ReportScheduler._build_trigger("month", 5))
        assert fields["day"] == "1"
        assert fields["hour"] == "5"

    def test_yearly_fires_on_january_first(self):
        fields = _fields(ReportScheduler._build_trigger("year", 0))
        assert fields["month"] == "1"
        assert fields["day"] == "1"

    def test_range_runs_daily(self):
        fields = _fields(ReportScheduler._build_trigger("range", 7))
        assert fields["day"] == "*"
        assert fields["hour"] == "7"

    def test_never_has_no_trigger(self):
        assert ReportScheduler._build_trigger("never", 7) is None


# ============================================================================
# Task runner
# ============================================================================

class TestReportScheduler:

    @pytest.fixture
    def fake_engine(self):
        return FakeEngine()

    @pytest.fixture
    def scheduler(self, fake_engine, reports, sites, config, audit):
        sched = ReportScheduler(fake_engine, reports, sites, config, audit=audit)
        yield sched
        sched.shutdown()

    def test_refresh_creates_one_job_per_report(self, scheduler, make_report, reports):
        r1 = make_report()
        r2 = make_report(period="day")
        make_report(period="never")
        reports.delete_report(make_report())

        result = scheduler.refresh_schedules()

        assert result["planned"] == 2
        status = scheduler.get_status()
        assert [j["report_id"] for j in status["jobs"]] == [r1, r2]
        assert status["jobs"][0]["job_id"] == f"report_{r1}"
        assert status["running"] is False

    def test_unknown_site_is_reported_not_fatal(self, scheduler, make_report):
        make_report(site_id=999)
        ok = make_report()

        result = scheduler.refresh_schedules()

        assert result["planned"] == 1
        assert len(result["warnings"]) == 1
        assert [j["report_id"] for j in scheduler.get_status()["jobs"]] == [ok]

    def test_sync_removes_deleted_report(self, scheduler, make_report, reports):
        report_id = make_report()
        scheduler.sync_report(report_id)
        assert scheduler.get_status()["reports_count"] == 1

        reports.delete_report(report_id)
        scheduler.sync_report(report_id)
        assert scheduler.get_status()["reports_count"] == 0

    def test_sync_replaces_existing_job(self, scheduler, make_report, reports):
        report_id = make_report()
        scheduler.sync_report(report_id)
        scheduler.sync_report(report_id)
        assert scheduler.get_status()["reports_count"] == 1

    def test_execute_dispatches_as_super_user_and_marks_sent(self, scheduler, fake_engine, make_report, reports):
        report_id = make_report()

        scheduler._execute_scheduled_job(report_id)

        assert len(fake_engine.calls) == 1
        called_id, identity = fake_engine.calls[0]
        assert called_id == report_id
        assert identity.login == "admin"
        assert identity.email == "admin@example.com"
        assert reports.get_report(report_id).last_sent_at is not None

    def test_execute_skips_deleted_report(self, scheduler, fake_engine, make_report, reports):
        report_id = make_report()
        reports.delete_report(report_id)

        scheduler._execute_scheduled_job(report_id)

        assert fake_engine.calls == []

    def test_execute_skips_missing_report(self, scheduler, fake_engine):
        scheduler._execute_scheduled_job(12345)
        assert fake_engine.calls == []

    def test_skipped_dispatch_is_not_marked_sent(self, reports, sites, config, audit, make_report):
        engine = FakeEngine(result={"ok": True, "skipped": "owner not found"})
        sched = ReportScheduler(engine, reports, sites, config, audit=audit)
        report_id = make_report()

        sched._execute_scheduled_job(report_id)

        assert reports.get_report(report_id).last_sent_at is None

    def test_dispatch_error_is_logged_and_audited(self, reports, sites, config, audit, make_report):
        engine = FakeEngine(error=RuntimeError("renderer exploded"))
        sched = ReportScheduler(engine, reports, sites, config, audit=audit)
        report_id = make_report()

        sched._execute_scheduled_job(report_id)  # must not raise

        assert reports.get_report(report_id).last_sent_at is None
        actions = [e["action"] for e in audit.get_recent(category="scheduler")]
        assert "scheduled_report_error" in actions

    def test_run_now_dispatches_as_acting_user(self, scheduler, fake_engine, make_report, reports, alice):
        report_id = make_report()

        result = scheduler.run_now(report_id, alice)

        assert result == {"ok": True, "report_id": report_id}
        assert fake_engine.calls == [(report_id, alice)]
        assert reports.get_report(report_id).last_sent_at is not None

    def test_run_now_is_audited(self, scheduler, make_report, audit, alice):
        report_id = make_report()

        scheduler.run_now(report_id, alice)

        entries = audit.get_recent(category="scheduler")
        trigger = next(e for e in entries if e["action"] == "report_manual_trigger")
        assert trigger["user_name"] == "alice"
        assert trigger["report_id"] == report_id
        assert "scheduled_report_completed" in [e["action"] for e in entries]

    def test_run_now_sends_unscheduled_report(self, scheduler, fake_engine, make_report, alice):
        report_id = make_report(period="never")
        scheduler.run_now(report_id, alice)
        assert len(fake_engine.calls) == 1

    def test_run_now_skips_deleted_report(self, scheduler, fake_engine, make_report, reports, alice):
        report_id = make_report()
        reports.delete_report(report_id)
        scheduler.run_now(report_id, alice)
        assert fake_engine.calls == []

    def test_run_now_swallows_dispatch_errors(self, reports, sites, config, audit, make_report, alice):
        engine = FakeEngine(error=RuntimeError("renderer exploded"))
        sched = ReportScheduler(engine, reports, sites, config, audit=audit)
        report_id = make_report()

        assert sched.run_now(report_id, alice)["ok"] is True
        assert reports.get_report(report_id).last_sent_at is None

    def test_start_refused_when_disabled(self, scheduler):
        assert scheduler.start() is False
        assert scheduler.is_running() is False

    def test_start_and_stop(self, fake_engine, reports, sites, audit, make_report):
        from scheduled_reports.config import ReportingConfig
        enabled = ReportingConfig(overrides={"scheduler_enabled": True}, environ={})
        sched = ReportScheduler(fake_engine, reports, sites, enabled, audit=audit)
        make_report()
        try:
            assert sched.start(user="tester") is True
            status = sched.get_status()
            assert status["running"] is True
            assert status["next_report"] is not None
            assert sched.stop(user="tester") is True
            assert sched.is_running() is False
        finally:
            sched.shutdown()
