# ============================================================================
# Scheduled Reports - Display Policy
# ============================================================================
# Decides, per sub-report, whether the table and/or the graph is rendered.
#
#   display format               | table | graph (aggregate) | graph (key metric)
#   ---------------------------- | ----- | ----------------- | ------------------
#   GRAPHS_ONLY_FOR_KEY_METRICS  | yes   | no                | if capable
#   GRAPHS_ONLY                  | no    | if capable        | if capable
#   TABLES_AND_GRAPHS            | yes   | if capable        | if capable
#   TABLES_ONLY                  | yes   | no                | no
#
# "if capable" means the host can draw charts AND the sub-report has a graph.
# ============================================================================

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List

from .catalog import (
    API_CATEGORY,
    MULTI_SITES_CATEGORY,
    SINGLE_SITE_DASHBOARD_NAME,
    ProcessedReport,
    SubReportMeta,
)
from .parameters import DisplayFormat, DEFAULT_DISPLAY_FORMAT

logger = logging.getLogger("reporting.display")


@dataclass(frozen=True)
class DisplayHints:
    """Report-wide inputs to the display policy."""
    display_format: DisplayFormat = DEFAULT_DISPLAY_FORMAT
    evolution_graph: bool = False


def filter_report_metadata(metadata: Iterable[SubReportMeta]) -> List[SubReportMeta]:
    """Drop API sub-reports and the single-site variant of the multi-site summary."""
    filtered = []
    for meta in metadata:
        if meta.category == API_CATEGORY:
            continue
        if meta.category == MULTI_SITES_CATEGORY and meta.name == SINGLE_SITE_DASHBOARD_NAME:
            continue
        filtered.append(meta)
    return filtered


def should_display_table(display_format: DisplayFormat) -> bool:
    return display_format != DisplayFormat.GRAPHS_ONLY


def should_display_graph(
    is_aggregate: bool,
    display_format: DisplayFormat,
    graphing_capable: bool,
    graph_url_available: bool,
) -> bool:
    if is_aggregate:
        wanted = display_format in (DisplayFormat.GRAPHS_ONLY, DisplayFormat.TABLES_AND_GRAPHS)
    else:
        wanted = display_format != DisplayFormat.TABLES_ONLY
    return wanted and graphing_capable and graph_url_available


def strip_evolution_columns(columns: Dict[str, str], evolution_columns: Iterable[str]) -> Dict[str, str]:
    """Return *columns* without the evolution-metric keys."""
    excluded = set(evolution_columns)
    return {key: label for key, label in columns.items() if key not in excluded}


def apply_display_policy(
    processed_reports: List[ProcessedReport],
    hints: DisplayHints,
    graphing_capable: bool,
    evolution_columns: Iterable[str] = (),
) -> List[ProcessedReport]:
    """Set display flags on every processed sub-report (in place) and return them."""
    evolution_columns = list(evolution_columns)

    for processed in processed_reports:
        meta = processed.metadata

        processed.display_table = should_display_table(hints.display_format)
        processed.display_graph = should_display_graph(
            meta.dimension_present,
            hints.display_format,
            graphing_capable,
            meta.graph_url_available,
        )
        processed.evolution_graph = hints.evolution_graph

        # remove evolution metrics from the multi-site summary
        if meta.is_multi_sites_summary:
            processed.columns = strip_evolution_columns(processed.columns, evolution_columns)

        logger.debug(
            "Display %s: table=%s graph=%s evolution=%s",
            meta.id, processed.display_table, processed.display_graph, processed.evolution_graph,
        )

    return processed_reports
