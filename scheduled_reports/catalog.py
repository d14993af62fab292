# ============================================================================
# Scheduled Reports - Metadata Catalog
# ============================================================================
# Sub-report metadata (category, name, dimension, graph availability) and
# the processed data handed to the renderer.  InMemoryMetadataCatalog is the
# default catalog; a host application plugs in its own MetadataCatalog.
# ============================================================================

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .interfaces import MetadataCatalog

logger = logging.getLogger("reporting.catalog")

API_CATEGORY = "API"
MULTI_SITES_MODULE = "MultiSites"
MULTI_SITES_CATEGORY = "All Websites"
SINGLE_SITE_DASHBOARD_NAME = "Single Website dashboard"

# Base metrics of the multi-site summary and the evolution column computed
# for each of them.
MULTI_SITES_API_METRICS = {
    "nb_visits": {"evolution_column": "visits_evolution", "label": "Visits"},
    "nb_actions": {"evolution_column": "actions_evolution", "label": "Actions"},
    "nb_pageviews": {"evolution_column": "pageviews_evolution", "label": "Pageviews"},
    "revenue": {"evolution_column": "revenue_evolution", "label": "Revenue"},
}


def multi_sites_evolution_columns() -> List[str]:
    return [m["evolution_column"] for m in MULTI_SITES_API_METRICS.values()]


@dataclass
class SubReportMeta:
    id: str
    category: str
    name: str
    module: str = ""
    action: str = ""
    dimension: Optional[str] = None
    graph_url_available: bool = False
    metrics: Dict[str, str] = field(default_factory=dict)

    @property
    def dimension_present(self) -> bool:
        return bool(self.dimension)

    @property
    def is_multi_sites_summary(self) -> bool:
        return self.module == MULTI_SITES_MODULE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category,
            "name": self.name,
            "module": self.module,
            "action": self.action,
            "dimension": self.dimension,
            "graph_url_available": self.graph_url_available,
            "metrics": dict(self.metrics),
        }


@dataclass
class ProcessedReport:
    """One sub-report ready for rendering, with its display decisions."""
    metadata: SubReportMeta
    columns: Dict[str, str] = field(default_factory=dict)
    rows: List[Dict[str, Any]] = field(default_factory=list)
    display_table: bool = True
    display_graph: bool = False
    evolution_graph: bool = False


class InMemoryMetadataCatalog(MetadataCatalog):
    """
    Catalog backed by plain dicts.

    ``metadata`` maps site id (or ``None`` for every site) to a list of
    SubReportMeta; ``data`` maps ``(site_id, sub_report_id)`` to rows.
    """

    def __init__(
        self,
        metadata: Dict[Optional[int], List[SubReportMeta]],
        data: Optional[Dict[tuple, List[Dict[str, Any]]]] = None,
    ):
        self._metadata = metadata
        self._data = data or {}

    def report_metadata(self, site_id: int) -> List[SubReportMeta]:
        return list(self._metadata.get(site_id, self._metadata.get(None, [])))

    def report_data(self, site_id, meta, period, date_range, segment=None) -> ProcessedReport:
        columns = {}
        if meta.dimension:
            columns["label"] = meta.dimension
        columns.update(meta.metrics)

        rows = [dict(r) for r in self._data.get((site_id, meta.id), [])]
        logger.debug("Catalog data site=%s report=%s rows=%d", site_id, meta.id, len(rows))
        return ProcessedReport(metadata=meta, columns=columns, rows=rows)

    def evolution_columns(self) -> List[str]:
        return multi_sites_evolution_columns()


def default_metadata() -> List[SubReportMeta]:
    """Built-in sub-report definitions shipped with the application."""
    multi_sites_metrics = {}
    for key, settings in MULTI_SITES_API_METRICS.items():
        multi_sites_metrics[key] = settings["label"]
        multi_sites_metrics[settings["evolution_column"]] = f"{settings['label']} evolution"

    return [
        SubReportMeta(
            id="VisitsSummary_get", category="Visits Summary", name="Visits Summary",
            module="VisitsSummary", action="get", graph_url_available=True,
            metrics={"nb_visits": "Visits", "nb_uniq_visitors": "Unique visitors",
                     "bounce_rate": "Bounce rate"},
        ),
        SubReportMeta(
            id="UserCountry_getCountry", category="Visitor Location", name="Country",
            module="UserCountry", action="getCountry", dimension="Country",
            graph_url_available=True, metrics={"nb_visits": "Visits"},
        ),
        SubReportMeta(
            id="Referrers_getWebsites", category="Referrers", name="Websites",
            module="Referrers", action="getWebsites", dimension="Website",
            graph_url_available=True, metrics={"nb_visits": "Visits"},
        ),
        SubReportMeta(
            id="Actions_getPageUrls", category="Actions", name="Page URLs",
            module="Actions", action="getPageUrls", dimension="Page URL",
            graph_url_available=False, metrics={"nb_hits": "Pageviews"},
        ),
        SubReportMeta(
            id="MultiSites_getAll", category=MULTI_SITES_CATEGORY, name="All Websites dashboard",
            module=MULTI_SITES_MODULE, action="getAll", dimension="Website",
            graph_url_available=True, metrics=multi_sites_metrics,
        ),
        SubReportMeta(
            id="MultiSites_getOne", category=MULTI_SITES_CATEGORY, name=SINGLE_SITE_DASHBOARD_NAME,
            module=MULTI_SITES_MODULE, action="getOne", dimension="Website",
            graph_url_available=True, metrics=multi_sites_metrics,
        ),
        SubReportMeta(
            id="API_get", category=API_CATEGORY, name="Main metrics",
            module="API", action="get", metrics={"nb_visits": "Visits"},
        ),
    ]
