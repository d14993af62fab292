# ============================================================================
# Scheduled Reports - Report Renderer
# ============================================================================
# Renders processed sub-reports into a single HTML document (tables and
# graphs in definition order) and, for the pdf format, converts that
# document with WeasyPrint.
#
# Graph images are either returned as inline attachments referenced through
# cid: URLs (email output) or embedded directly as data URIs (downloads and
# every PDF).
# ============================================================================

import logging
from dataclasses import dataclass, field
from datetime import datetime
from html import escape as html_escape
from typing import Any, Dict, List, Optional, Tuple

from . import charts
from .config import format_time_for_display
from .errors import InvalidReportDefinition
from .interfaces import Renderer

logger = logging.getLogger("reporting.renderer")

FORMAT_HTML = "html"
FORMAT_PDF = "pdf"
RENDERED_FORMATS = (FORMAT_HTML, FORMAT_PDF)

CONTENT_TYPES = {
    FORMAT_HTML: "text/html",
    FORMAT_PDF: "application/pdf",
}

FILE_EXTENSIONS = {
    FORMAT_HTML: "html",
    FORMAT_PDF: "pdf",
}


@dataclass
class InlineAttachment:
    """An image (or other part) carried next to the report body."""
    content: bytes
    mime_type: str
    filename: str
    content_id: str


@dataclass
class ReportHeader:
    title: str
    pretty_date: str
    description: str = ""
    segment_name: Optional[str] = None


@dataclass
class RenderedReport:
    content: bytes
    content_type: str
    attachments: List[InlineAttachment] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Shared CSS (inline for self-contained output)
# ---------------------------------------------------------------------------

_BRAND_DARK = "#1f4e79"
_GRAY_50 = "#f9fafb"
_GRAY_200 = "#e5e7eb"
_GRAY_500 = "#6b7280"

_BASE_CSS = f"""
    body {{
        font-family: Arial, Helvetica, sans-serif;
        margin: 0;
        padding: 0;
        background: {_GRAY_50};
        color: #111827;
        font-size: 13px;
        line-height: 1.5;
    }}
    .page-wrap {{ max-width: 960px; margin: 0 auto; padding: 20px; }}
    .header {{ border-bottom: 3px solid {_BRAND_DARK}; padding-bottom: 12px; margin-bottom: 20px; }}
    .header h1 {{ margin: 0; font-size: 22px; color: {_BRAND_DARK}; }}
    .header .subtitle {{ margin: 4px 0 0; font-size: 14px; color: {_GRAY_500}; }}
    h2 {{ font-size: 16px; color: {_BRAND_DARK}; margin: 28px 0 10px; }}
    table {{ width: 100%; border-collapse: collapse; margin-bottom: 16px; font-size: 12px; }}
    th {{
        background: {_BRAND_DARK};
        color: #fff;
        padding: 7px 10px;
        text-align: left;
        font-weight: 600;
        font-size: 11px;
    }}
    td {{ padding: 6px 10px; border-bottom: 1px solid {_GRAY_200}; }}
    tr:nth-child(even) {{ background: #f8fafc; }}
    .graph {{ text-align: center; margin: 8px 0 16px; }}
    .graph img {{ max-width: 100%; }}
    .empty {{ color: {_GRAY_500}; padding: 10px 0; }}
    .footer {{ color: {_GRAY_500}; font-size: 11px; margin-top: 24px; }}
"""


def _safe(val: Any) -> str:
    """Return a safe, HTML-escaped string representation of a value."""
    if val is None:
        return ""
    return html_escape(str(val))


class ReportRenderer(Renderer):
    """Default renderer for the html and pdf formats."""

    def render(self, report_format: str, processed_reports, header: ReportHeader,
               render_images_inline: bool = False) -> RenderedReport:
        if report_format not in RENDERED_FORMATS:
            raise InvalidReportDefinition(
                f"Format '{report_format}' cannot be rendered. "
                f"Supported values: {', '.join(RENDERED_FORMATS)}"
            )

        # a PDF cannot reference mail parts, so its images are always embedded
        inline = render_images_inline or report_format == FORMAT_PDF
        html, attachments = self.render_html(processed_reports, header, inline)

        if report_format == FORMAT_PDF:
            return RenderedReport(content=self.render_pdf(html), content_type=CONTENT_TYPES[FORMAT_PDF])

        return RenderedReport(
            content=html.encode("utf-8"),
            content_type=CONTENT_TYPES[FORMAT_HTML],
            attachments=attachments,
        )

    # ------------------------------------------------------------------
    # HTML rendering
    # ------------------------------------------------------------------

    def render_html(self, processed_reports, header: ReportHeader,
                    render_images_inline: bool = False) -> Tuple[str, List[InlineAttachment]]:
        """Render the HTML document and collect the cid: attachments it references."""
        attachments: List[InlineAttachment] = []
        sections = []

        for processed in processed_reports:
            sections.append(self._html_section(processed, render_images_inline, attachments))

        subtitle = _safe(header.pretty_date)
        if header.description:
            subtitle += f" &middot; {_safe(header.description)}"
        if header.segment_name:
            subtitle += f" &middot; Segment: {_safe(header.segment_name)}"

        html = (
            "<!DOCTYPE html>\n"
            "<html lang=\"en\">\n"
            "<head>\n"
            "  <meta charset=\"utf-8\">\n"
            f"  <title>Report {_safe(header.title)} - {_safe(header.pretty_date)}</title>\n"
            f"  <style>{_BASE_CSS}</style>\n"
            "</head>\n"
            "<body>\n"
            "<div class=\"page-wrap\">\n"
            "  <div class=\"header\">\n"
            f"    <h1>{_safe(header.title)}</h1>\n"
            f"    <div class=\"subtitle\">{subtitle}</div>\n"
            "  </div>\n"
            f"  {''.join(sections)}\n"
            f"  <div class=\"footer\">Generated: {_safe(format_time_for_display())}</div>\n"
            "</div>\n"
            "</body>\n"
            "</html>"
        )
        return html, attachments

    def _html_section(self, processed, render_images_inline: bool,
                      attachments: List[InlineAttachment]) -> str:
        meta = processed.metadata
        parts = [f"<h2 id=\"{_safe(meta.id)}\">{_safe(meta.name)}</h2>"]

        if processed.display_graph:
            png = charts.report_graph(processed)
            if png:
                if render_images_inline:
                    src = f"data:image/png;base64,{charts.to_base64(png)}"
                else:
                    content_id = f"{meta.id}_graph"
                    attachments.append(InlineAttachment(
                        content=png,
                        mime_type="image/png",
                        filename=f"{meta.id}.png",
                        content_id=content_id,
                    ))
                    src = f"cid:{content_id}"
                parts.append(f"<div class=\"graph\"><img src=\"{src}\" alt=\"{_safe(meta.name)}\"/></div>")

        if processed.display_table:
            parts.append(self._html_data_table(processed.columns, processed.rows))

        return "\n".join(parts)

    def _html_data_table(self, columns: Dict[str, str], rows: List[Dict]) -> str:
        if not rows:
            return "<p class=\"empty\">There is no data for this report.</p>"
        ths = "".join(f"<th>{_safe(label)}</th>" for label in columns.values())
        trs = []
        for row in rows:
            tds = "".join(f"<td>{_safe(row.get(key, ''))}</td>" for key in columns)
            trs.append(f"<tr>{tds}</tr>")
        return f"<table><thead><tr>{ths}</tr></thead><tbody>{''.join(trs)}</tbody></table>"

    # ------------------------------------------------------------------
    # PDF rendering
    # ------------------------------------------------------------------

    def render_pdf(self, html: str) -> bytes:
        """Convert an HTML string to PDF bytes via WeasyPrint."""
        from weasyprint import HTML as WeasyprintHTML

        started = datetime.now()
        pdf = WeasyprintHTML(string=html).write_pdf()
        logger.info("PDF rendered (%d bytes) in %.2fs", len(pdf), (datetime.now() - started).total_seconds())
        return pdf
