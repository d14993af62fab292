# ============================================================================
# Scheduled Reports - Management API Routes
# ============================================================================
# Thin FastAPI layer over the engine and repositories.
#
#   /api/reports/*     report definitions, preview, send, download
#   /api/segments/*    segment deactivation guard
#   /api/sites/*       site removal cascade
#   /api/users/*       user removal cascade
#   /api/scheduler/*   task runner status and refresh
#
# Registration via register_reporting_routes(app, services).
# ============================================================================

import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request
from fastapi.responses import Response

from .errors import InvalidReportDefinition, ReportNotFound, SegmentInUse, UserNotFound
from .lifecycle import deactivate_segment, delete_site_reports, delete_user_reports
from .models import User
from .parameters import DEFAULT_DISPLAY_FORMAT, DISPLAY_FORMAT_LABELS
from .periods import PERIOD_TO_FREQUENCY, PERIODS
from .services import ReportingServices

logger = logging.getLogger("reporting.routes")

router = APIRouter(prefix="/api/reports", tags=["reports"])
admin_router = APIRouter(prefix="/api", tags=["reports-admin"])

# Fields a client may set on a report definition
EDITABLE_FIELDS = (
    "site_id", "description", "segment_id", "period", "hour",
    "channel_type", "format", "sub_report_ids", "parameters",
)


# ============================================================================
# Helper utilities
# ============================================================================

def _services(request: Request) -> ReportingServices:
    return request.app.state.reporting


def _get_user(request: Request) -> User:
    """Resolve the acting user from the X-User header."""
    services = _services(request)
    login = request.headers.get("X-User") or services.config.get("super_user_login")
    try:
        return services.users.get_user(login)
    except UserNotFound:
        if login == services.users.super_user_login:
            return User(login=login, email=services.users.get_super_user_email())
        raise HTTPException(status_code=403, detail=f"Unknown user '{login}'")


def _get_report(services: ReportingServices, report_id: int):
    try:
        report = services.reports.get_report(report_id)
    except ReportNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    if report.deleted:
        raise HTTPException(status_code=404, detail=f"Report {report_id} not found")
    return report


def _report_out(report) -> Dict[str, Any]:
    data = report.to_dict()
    data["frequency"] = PERIOD_TO_FREQUENCY.get(report.period, report.period)
    return data


async def _editable(request: Request) -> Dict[str, Any]:
    try:
        data = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Request body must be JSON")
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    return {k: v for k, v in data.items() if k in EDITABLE_FIELDS}


# ============================================================================
# Report definitions
# ============================================================================

@router.get("")
async def list_reports(request: Request, site_id: Optional[int] = None,
                       period: Optional[str] = None, segment_id: Optional[int] = None):
    """List non-deleted reports, optionally filtered."""
    services = _services(request)
    reports = services.reports.list_reports(site_id=site_id, period=period, segment_id=segment_id)
    return {"reports": [_report_out(r) for r in reports]}


@router.get("/meta")
async def report_meta(request: Request):
    """Channel types, formats, parameters, periods and display formats."""
    services = _services(request)
    return {
        "channels": services.registry.describe(),
        "periods": {p: PERIOD_TO_FREQUENCY[p] for p in PERIODS},
        "display_formats": {int(k): v for k, v in DISPLAY_FORMAT_LABELS.items()},
        "default_display_format": int(DEFAULT_DISPLAY_FORMAT),
    }


@router.get("/audit")
async def report_audit(request: Request, limit: int = 100, category: Optional[str] = None):
    entries = _services(request).audit.get_recent(limit, category)
    return {"entries": entries}


@router.get("/{report_id}")
async def get_report(report_id: int, request: Request):
    report = _get_report(_services(request), report_id)
    return _report_out(report)


@router.post("")
async def create_report(request: Request):
    """Create a report definition.

    Expects JSON body:
    ```json
    {
        "site_id": 1,
        "description": "Weekly overview",
        "period": "week",
        "hour": 8,
        "channel_type": "email",
        "format": "html",
        "sub_report_ids": ["VisitsSummary_get", "UserCountry_getCountry"],
        "parameters": {"displayFormat": 1, "emailMe": true, "additionalEmails": []}
    }
    ```
    """
    services = _services(request)
    user = _get_user(request)
    data = await _editable(request)
    data["owner_login"] = user.login

    try:
        report = services.engine.validate_report(data)
    except InvalidReportDefinition as e:
        raise HTTPException(status_code=400, detail=str(e))
    if services.sites.get_by_id(report.site_id) is None:
        raise HTTPException(status_code=400, detail=f"Site {report.site_id} does not exist")

    report_id = services.reports.create(report)
    services.scheduler.sync_report(report_id)

    services.audit.log(
        action="report_created",
        category="reports",
        user_name=user.login,
        report_id=report_id,
        details=f"Created report: {report.description}",
    )
    logger.info("Report created: id=%d, description=%s, user=%s", report_id, report.description, user.login)
    return {"ok": True, "id": report_id}


@router.put("/{report_id}")
async def update_report(report_id: int, request: Request):
    services = _services(request)
    user = _get_user(request)
    existing = _get_report(services, report_id)
    data = await _editable(request)

    try:
        report = services.engine.validate_report(data, existing=existing)
    except InvalidReportDefinition as e:
        raise HTTPException(status_code=400, detail=str(e))
    if services.sites.get_by_id(report.site_id) is None:
        raise HTTPException(status_code=400, detail=f"Site {report.site_id} does not exist")

    services.reports.update(report)
    services.scheduler.sync_report(report_id)

    services.audit.log(
        action="report_updated",
        category="reports",
        user_name=user.login,
        report_id=report_id,
        details=f"Updated report: {report.description}",
    )
    logger.info("Report %d updated by %s", report_id, user.login)
    return {"ok": True, "id": report_id}


@router.delete("/{report_id}")
async def delete_report(report_id: int, request: Request):
    """Soft-delete a report."""
    services = _services(request)
    user = _get_user(request)
    report = _get_report(services, report_id)

    services.reports.delete_report(report_id)
    services.scheduler.remove_report(report_id)

    services.audit.log(
        action="report_deleted",
        category="reports",
        user_name=user.login,
        report_id=report_id,
        details=f"Deleted report: {report.description}",
    )
    logger.info("Report %d deleted by %s", report_id, user.login)
    return {"ok": True, "id": report_id}


# ============================================================================
# Recipients, sending, download
# ============================================================================

@router.get("/{report_id}/recipients")
async def preview_recipients(report_id: int, request: Request):
    """Addresses the report would be sent to, as seen by the acting user."""
    services = _services(request)
    report = _get_report(services, report_id)
    return {"report_id": report_id,
            "recipients": services.engine.preview_recipients(report, _get_user(request))}


@router.post("/{report_id}/send")
async def send_report_now(report_id: int, request: Request, background_tasks: BackgroundTasks):
    """Dispatch a report immediately (in the background)."""
    services = _services(request)
    user = _get_user(request)
    report = _get_report(services, report_id)

    background_tasks.add_task(services.scheduler.run_now, report_id, user)

    services.audit.log(
        action="report_manual_send",
        category="reports",
        user_name=user.login,
        report_id=report_id,
        details=f"Manual send for report {report_id}: {report.description}",
    )
    logger.info("Manual send for report %d by %s", report_id, user.login)
    return {"ok": True, "message": f"Report '{report.description}' queued", "report_id": report_id}


@router.get("/{report_id}/download")
async def download_report(report_id: int, request: Request):
    """Render a report and return it as a file."""
    services = _services(request)
    user = _get_user(request)
    _get_report(services, report_id)

    try:
        rendered, filename = services.engine.generate(report_id, current_user=user)
    except InvalidReportDefinition as e:
        raise HTTPException(status_code=400, detail=str(e))

    return Response(
        content=rendered.content,
        media_type=rendered.content_type,
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"},
    )


# ============================================================================
# Lifecycle hooks
# ============================================================================

@admin_router.post("/segments/{segment_id}/deactivate")
async def deactivate_segment_route(segment_id: int, request: Request):
    services = _services(request)
    user = _get_user(request)
    if services.segments.get_by_id(segment_id) is None:
        raise HTTPException(status_code=404, detail=f"Segment {segment_id} not found")

    try:
        deactivate_segment(services.reports, services.segments, segment_id, user=user.login)
    except SegmentInUse as e:
        raise HTTPException(status_code=409, detail=str(e))

    services.audit.log(action="segment_deactivated", category="reports",
                       user_name=user.login, details=f"Segment {segment_id} deactivated")
    return {"ok": True, "id": segment_id}


@admin_router.delete("/sites/{site_id}")
async def delete_site(site_id: int, request: Request):
    services = _services(request)
    user = _get_user(request)
    if services.sites.get_by_id(site_id) is None:
        raise HTTPException(status_code=404, detail=f"Site {site_id} not found")

    deleted = delete_site_reports(services.reports, site_id, scheduler=services.scheduler)
    services.sites.delete(site_id)

    services.audit.log(action="site_deleted", category="reports", user_name=user.login,
                       details=f"Site {site_id} deleted with {len(deleted)} reports")
    return {"ok": True, "id": site_id, "deleted_reports": deleted}


@admin_router.delete("/users/{login}")
async def delete_user(login: str, request: Request):
    services = _services(request)
    user = _get_user(request)

    count = delete_user_reports(services.reports, login, scheduler=services.scheduler)
    services.users.delete(login)

    services.audit.log(action="user_deleted", category="reports", user_name=user.login,
                       details=f"User '{login}' deleted with {count} reports")
    return {"ok": True, "login": login, "deleted_reports": count}


# ============================================================================
# Scheduler
# ============================================================================

@admin_router.get("/scheduler/status")
async def scheduler_status(request: Request):
    return _services(request).scheduler.get_status()


@admin_router.post("/scheduler/refresh")
async def scheduler_refresh(request: Request):
    user = _get_user(request)
    result = _services(request).scheduler.refresh_schedules()
    logger.info("Scheduler refreshed by %s", user.login)
    return {"ok": True, **result}


# ============================================================================
# Registration function
# ============================================================================

def register_reporting_routes(app, services: ReportingServices):
    """Attach the services to the app and include the routers."""
    app.state.reporting = services
    app.include_router(router)
    app.include_router(admin_router)
    logger.info("Reporting routes registered: /api/reports, /api/segments, /api/sites, /api/users, /api/scheduler")
