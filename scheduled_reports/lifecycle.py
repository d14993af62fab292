# ============================================================================
# Scheduled Reports - Lifecycle Hooks
# ============================================================================
# Reactions to segment, site and user changes made elsewhere in the host
# application.
# ============================================================================

import logging
from typing import List, Optional

from .errors import SegmentInUse
from .interfaces import ReportStore

logger = logging.getLogger("reporting.lifecycle")


def ensure_segment_unused(store: ReportStore, segment_id: int):
    """Raise SegmentInUse if a non-deleted report references *segment_id*."""
    reports = store.list_reports(segment_id=segment_id)
    if reports:
        raise SegmentInUse(segment_id, [r.description for r in reports])


def deactivate_segment(store: ReportStore, segments, segment_id: int, user: Optional[str] = None):
    """Deactivate a segment unless a scheduled report still uses it."""
    ensure_segment_unused(store, segment_id)
    segments.set_deleted(segment_id, True)
    logger.info(f"Segment {segment_id} deactivated by {user or 'unknown'}")


def delete_site_reports(store: ReportStore, site_id: int, scheduler=None) -> List[int]:
    """Soft-delete every report of a site that is being removed."""
    deleted = []
    for report in store.list_reports(site_id=site_id):
        store.delete_report(report.id)
        if scheduler is not None:
            scheduler.remove_report(report.id)
        deleted.append(report.id)

    logger.info(f"Site {site_id} removed: {len(deleted)} reports deleted")
    return deleted


def delete_user_reports(store: ReportStore, login: str, scheduler=None) -> int:
    """Remove every report owned by a user that is being removed."""
    report_ids = [r.id for r in store.list_reports(owner_login=login)]
    count = store.purge_for_owner(login)
    if scheduler is not None:
        for report_id in report_ids:
            scheduler.remove_report(report_id)

    logger.info(f"User '{login}' removed: {count} reports deleted")
    return count
