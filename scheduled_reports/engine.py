# ============================================================================
# Scheduled Reports - Dispatch Engine
# ============================================================================
# Turns one report definition into a delivered report:
#
#   load -> select sub-reports -> display policy -> render
#        -> resolve recipients -> deliver -> audit
#
# Each stage reads and fills a DispatchContext.  Nothing here knows which
# channel it is talking to; channel specifics come from the ChannelRegistry.
# ============================================================================

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from . import charts
from .config import ReportingConfig, get_timezone, utc_now
from .delivery import ChannelRegistry
from .display import apply_display_policy, filter_report_metadata
from .errors import (
    DeliveryFailure,
    InvalidReportDefinition,
    RecipientResolutionAborted,
    TimezoneLookupError,
)
from .interfaces import MetadataCatalog, Renderer, ReportStore, TimezoneService, UserDirectory
from .models import ReportDefinition, User
from .parameters import validate_hour, validate_period
from .periods import report_dates
from .renderer import FILE_EXTENSIONS, RenderedReport, ReportHeader

logger = logging.getLogger("reporting.engine")

OUTPUT_EMAIL = "email"        # deliver through the report's channel
OUTPUT_DOWNLOAD = "download"  # return the rendered file to the caller


def _as_int(value, field_name: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidReportDefinition(f"{field_name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidReportDefinition(f"{field_name} must be an integer, got '{value}'")


@dataclass
class DispatchContext:
    """State of one report dispatch, filled in stage by stage."""
    report: ReportDefinition
    current_user: Optional[User] = None
    output_type: str = OUTPUT_EMAIL
    title: str = ""
    description: str = ""
    date_range: Optional[Tuple[date, date]] = None
    pretty_date: str = ""
    segment_name: Optional[str] = None
    processed_reports: List[Any] = field(default_factory=list)
    rendered: Optional[RenderedReport] = None
    filename: str = ""
    recipients: List[str] = field(default_factory=list)

    @property
    def period(self) -> str:
        return self.report.period

    @property
    def content(self) -> bytes:
        return self.rendered.content if self.rendered else b""

    @property
    def content_type(self) -> str:
        return self.rendered.content_type if self.rendered else ""

    @property
    def attachments(self) -> List[Any]:
        return self.rendered.attachments if self.rendered else []


class DispatchEngine:
    """Orchestrates report generation and delivery.

    Public surface
    --------------
    * ``dispatch(report_id, current_user)`` -- render and deliver a report.
    * ``generate(report_id)`` -- render only (downloads).
    * ``preview_recipients(report, current_user)`` -- address list shown
      while editing a report.
    * ``validate_report(data)`` -- write-time validation for the management API.
    """

    def __init__(
        self,
        store: ReportStore,
        catalog: MetadataCatalog,
        renderer: Renderer,
        users: UserDirectory,
        sites: TimezoneService,
        segments,
        registry: ChannelRegistry,
        config: ReportingConfig,
        audit=None,
        graphing: Optional[bool] = None,
    ):
        self.store = store
        self.catalog = catalog
        self.renderer = renderer
        self.users = users
        self.sites = sites
        self.segments = segments
        self.registry = registry
        self.config = config
        self.audit = audit
        self.graphing = charts.graphing_capable(config) if graphing is None else graphing

    def _audit(self, action, user_name=None, report_id=None, details=None):
        if self.audit is None:
            return
        self.audit.log(action=action, category="reports", user_name=user_name,
                       report_id=report_id, details=details)

    # ------------------------------------------------------------------
    # Pipeline stages
    # ------------------------------------------------------------------

    def _site_now(self, site_id: int) -> datetime:
        """Current time in the site's timezone (UTC if it cannot be found)."""
        try:
            return utc_now().astimezone(get_timezone(self.sites.timezone_for(site_id)))
        except TimezoneLookupError as e:
            logger.warning(f"Site {site_id}: {e}; computing report dates in UTC")
            return utc_now()

    def _prepare(self, report: ReportDefinition, current_user, output_type, now) -> DispatchContext:
        context = DispatchContext(report=report, current_user=current_user, output_type=output_type)
        context.title = self.sites.name_for(report.site_id) or f"Site {report.site_id}"
        context.description = report.description

        now = now or self._site_now(report.site_id)
        context.date_range, context.pretty_date = report_dates(report.period, now)

        if report.segment_id is not None and self.segments is not None:
            segment = self.segments.get_active(report.segment_id)
            if segment is not None:
                context.segment_name = segment.name

        return context

    def _process(self, context: DispatchContext, channel):
        report = context.report
        available = {m.id: m for m in filter_report_metadata(self.catalog.report_metadata(report.site_id))}

        processed = []
        for sub_report_id in report.sub_report_ids:
            meta = available.get(sub_report_id)
            if meta is None:
                logger.warning(f"Report {report.id}: sub-report '{sub_report_id}' is not available, skipping")
                continue
            processed.append(self.catalog.report_data(
                report.site_id, meta, report.period, context.date_range, context.segment_name,
            ))

        context.processed_reports = apply_display_policy(
            processed,
            channel.display_policy_hints(report),
            self.graphing,
            self.catalog.evolution_columns(),
        )

    def _render(self, context: DispatchContext):
        report = context.report
        header = ReportHeader(
            title=context.title,
            pretty_date=context.pretty_date,
            description=report.description,
            segment_name=context.segment_name,
        )
        context.rendered = self.renderer.render(
            report.format,
            context.processed_reports,
            header,
            render_images_inline=context.output_type != OUTPUT_EMAIL,
        )
        extension = FILE_EXTENSIONS.get(report.format, report.format)
        context.filename = f"{context.title} - {context.pretty_date} - {report.description}.{extension}"

    def _build(self, report: ReportDefinition, current_user, output_type, now) -> Tuple[DispatchContext, Any]:
        channel = self.registry.get(report.channel_type)
        context = self._prepare(report, current_user, output_type, now)
        self._process(context, channel)
        self._render(context)
        return context, channel

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def dispatch(self, report_id: int, current_user: Optional[User] = None,
                 output_type: str = OUTPUT_EMAIL, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Render a report and deliver it to every resolved recipient.

        Returns ``{ok, report_id, recipients, sent, failed, filename}``.  An
        aborted recipient resolution returns ``ok`` with ``skipped`` set.
        DeliveryFailure propagates unless delivery errors are suppressed.
        """
        report = self.store.get_report(report_id)
        user_name = current_user.login if current_user else None

        if report.deleted:
            logger.info(f"Report {report_id} is deleted, not dispatching")
            return {"ok": True, "report_id": report_id, "skipped": "deleted"}

        logger.info(f"REPORT_DISPATCH report_id={report_id} period={report.period} format={report.format}")
        context, channel = self._build(report, current_user, output_type, now)

        try:
            context.recipients = channel.resolve_recipients(report, current_user)
        except RecipientResolutionAborted as e:
            logger.warning(f"Report {report_id} not sent: {e}")
            self._audit("report_dispatch_skipped", user_name=user_name, report_id=report_id, details=str(e))
            return {"ok": True, "report_id": report_id, "skipped": str(e),
                    "recipients": [], "sent": 0, "failed": 0}

        if not context.recipients:
            logger.info(f"Report {report_id} has no recipients")

        try:
            results = channel.deliver(context, context.recipients)
        except DeliveryFailure as e:
            logger.error(f"Report {report_id}: {e}")
            self._audit("report_dispatch_failed", user_name=user_name, report_id=report_id, details=str(e))
            raise

        sent = sum(1 for r in results if r.success)
        failed = len(results) - sent

        self._audit(
            "report_dispatched",
            user_name=user_name,
            report_id=report_id,
            details=f"'{context.filename}' sent to {sent} of {len(results)} recipients",
        )

        return {
            "ok": True,
            "report_id": report_id,
            "filename": context.filename,
            "recipients": context.recipients,
            "sent": sent,
            "failed": failed,
            "deliveries": [r.to_dict() for r in results],
        }

    def generate(self, report_id: int, current_user: Optional[User] = None,
                 output_type: str = OUTPUT_DOWNLOAD, now: Optional[datetime] = None) -> Tuple[RenderedReport, str]:
        """Render a report without delivering it. Returns (rendered, filename)."""
        report = self.store.get_report(report_id)
        context, _ = self._build(report, current_user, output_type, now)

        self._audit("report_generated", user_name=current_user.login if current_user else None,
                    report_id=report_id, details=context.filename)
        return context.rendered, context.filename

    def preview_recipients(self, report: ReportDefinition, current_user: Optional[User] = None) -> List[str]:
        return self.registry.get(report.channel_type).preview_recipients(report, current_user)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_report(self, data: Dict[str, Any], existing: Optional[ReportDefinition] = None) -> ReportDefinition:
        """
        Validate and normalize report fields coming from the management API.

        ``existing`` supplies values for fields missing from ``data`` (update).
        Raises InvalidReportDefinition (or a subclass) on the first problem.
        """
        base = existing.to_dict() if existing else ReportDefinition().to_dict()
        merged = {**base, **data}

        description = str(merged.get("description") or "").strip()
        if not description:
            raise InvalidReportDefinition("A report description is required")

        channel = self.registry.get(merged.get("channel_type"))

        report_format = merged.get("format")
        if report_format not in channel.formats:
            raise InvalidReportDefinition(
                f"Report format '{report_format}' is not valid for '{channel.channel_type}'. "
                f"Supported values: {', '.join(channel.formats)}"
            )

        sub_report_ids = merged.get("sub_report_ids") or []
        if isinstance(sub_report_ids, str):
            sub_report_ids = [sub_report_ids]
        sub_report_ids = [str(s) for s in sub_report_ids if str(s).strip()]
        if not sub_report_ids:
            raise InvalidReportDefinition("At least one sub-report must be selected")
        if len(sub_report_ids) > 1 and not channel.allow_multiple_reports:
            raise InvalidReportDefinition(
                f"Report type '{channel.channel_type}' allows only one sub-report"
            )

        segment_id = _as_int(merged.get("segment_id"), "segment_id")
        if segment_id is not None and self.segments is not None:
            if self.segments.get_active(segment_id) is None:
                raise InvalidReportDefinition(f"Segment {segment_id} does not exist")

        return ReportDefinition(
            id=merged.get("id"),
            site_id=_as_int(merged.get("site_id"), "site_id") or 0,
            owner_login=merged.get("owner_login") or "",
            description=description,
            segment_id=segment_id,
            period=validate_period(merged.get("period")),
            hour=validate_hour(merged.get("hour")),
            channel_type=channel.channel_type,
            format=report_format,
            sub_report_ids=sub_report_ids,
            parameters=channel.validate_parameters(merged.get("parameters") or {}),
            created_at=merged.get("created_at"),
            last_sent_at=merged.get("last_sent_at"),
            deleted=bool(merged.get("deleted")),
        )
