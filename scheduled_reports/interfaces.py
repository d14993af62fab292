# ============================================================================
# Scheduled Reports - Collaborator Interfaces
# ============================================================================
# The dispatch engine talks to storage, the metadata catalog, the renderer,
# the user directory and the timezone service only through these classes.
# Default sqlite / in-memory implementations live in models.py, catalog.py
# and renderer.py; tests substitute fakes.
# ============================================================================

from abc import ABC, abstractmethod
from typing import List, Optional


class ReportStore(ABC):
    """Read/delete access to persisted report definitions."""

    @abstractmethod
    def list_reports(self, site_id=None, period=None, segment_id=None,
                     owner_login=None, include_deleted=False) -> List["ReportDefinition"]:
        pass

    @abstractmethod
    def get_report(self, report_id: int) -> "ReportDefinition":
        """Return the report or raise ReportNotFound."""
        pass

    @abstractmethod
    def delete_report(self, report_id: int):
        pass

    @abstractmethod
    def mark_sent(self, report_id: int, when=None):
        pass

    def purge_for_owner(self, login: str) -> int:
        """Remove every report of *login*. Stores without hard delete soft-delete."""
        reports = self.list_reports(owner_login=login)
        for report in reports:
            self.delete_report(report.id)
        return len(reports)


class MetadataCatalog(ABC):
    """Describes which sub-reports exist for a site and supplies their data."""

    @abstractmethod
    def report_metadata(self, site_id: int) -> List["SubReportMeta"]:
        pass

    @abstractmethod
    def report_data(self, site_id: int, meta: "SubReportMeta", period: str,
                    date_range, segment=None) -> "ProcessedReport":
        pass

    def evolution_columns(self) -> List[str]:
        """Evolution-column keys computed for the multi-site summary."""
        return []


class Renderer(ABC):
    @abstractmethod
    def render(self, report_format: str, processed_reports: List["ProcessedReport"],
               header: "ReportHeader", render_images_inline: bool = False) -> "RenderedReport":
        pass


class UserDirectory(ABC):
    super_user_login: str = ""

    @abstractmethod
    def get_user(self, login: str) -> "User":
        """Return the user or raise UserNotFound."""
        pass

    @abstractmethod
    def get_super_user_email(self) -> str:
        pass


class TimezoneService(ABC):
    @abstractmethod
    def timezone_for(self, site_id: int) -> str:
        """Return the IANA timezone of a site or raise TimezoneLookupError."""
        pass

    def name_for(self, site_id: int) -> Optional[str]:
        return None
