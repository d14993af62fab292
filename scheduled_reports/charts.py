# ============================================================================
# Scheduled Reports - Matplotlib Chart Generator
# ============================================================================
# Generates PNG images for the graphs of processed sub-reports.  Email output
# attaches the bytes as cid: images; downloads embed them as data URIs.
# ============================================================================

import base64
import io
import logging
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger("reporting.charts")

try:
    import matplotlib
    matplotlib.use("Agg")  # non-interactive backend
    import matplotlib.pyplot as plt
    HAS_MATPLOTLIB = True
except ImportError:
    HAS_MATPLOTLIB = False
    logger.warning("matplotlib not installed - graphs disabled")

# ---------------------------------------------------------------------------
# Colours
# ---------------------------------------------------------------------------

PRIMARY = "#1f4e79"
PRIMARY_LIGHT = "#3b82f6"
GRAY_500 = "#6b7280"
WHITE = "#ffffff"

PALETTE = [
    PRIMARY, "#dc2626", "#16a34a", "#ca8a04", PRIMARY_LIGHT,
    "#7c3aed", "#0891b2", "#c026d3", "#ea580c", "#4f46e5",
]

DEFAULT_SIZE = (7, 4)
DEFAULT_DPI = 110

# Longest x-axis label before it gets truncated
MAX_LABEL_LENGTH = 24


def graphing_capable(config) -> bool:
    """True when graphs can be drawn on this host and are enabled."""
    return HAS_MATPLOTLIB and bool(config.get("graphs_enabled", True))


def _setup_style():
    try:
        plt.style.use("seaborn-v0_8-whitegrid")
    except OSError:
        plt.style.use("default")


def _fig_to_png(fig) -> bytes:
    buf = io.BytesIO()
    fig.savefig(buf, format="png", dpi=DEFAULT_DPI, bbox_inches="tight",
                facecolor=WHITE, edgecolor="none")
    plt.close(fig)
    return buf.getvalue()


def to_base64(png: bytes) -> str:
    return base64.b64encode(png).decode("ascii")


def _short(label: Any) -> str:
    label = str(label)
    if len(label) > MAX_LABEL_LENGTH:
        return label[:MAX_LABEL_LENGTH - 1] + "…"
    return label


def _number(value: Any) -> float:
    try:
        return float(str(value).rstrip("%").replace(",", ""))
    except (TypeError, ValueError):
        return 0.0


# ============================================================================
# Chart functions
# ============================================================================

def line_chart(
    labels: List[str],
    datasets: List[Dict[str, Any]],
    title: str = "",
    size: Tuple[int, int] = DEFAULT_SIZE,
) -> bytes:
    """Multi-series line chart.

    ``datasets`` is a list of ``{"label": str, "data": [float], "color": str}``
    (colour optional).  Returns PNG bytes.
    """
    _setup_style()
    fig, ax = plt.subplots(figsize=size)

    x = range(len(labels))
    for i, ds in enumerate(datasets):
        color = ds.get("color", PALETTE[i % len(PALETTE)])
        ax.plot(x, ds["data"], marker="o", markersize=4, linewidth=2,
                color=color, label=ds.get("label", f"Series {i + 1}"))

    ax.set_xticks(list(x))
    if len(labels) > 10:
        ax.set_xticklabels(labels, rotation=45, ha="right", fontsize=8)
    else:
        ax.set_xticklabels(labels, fontsize=9)

    ax.set_title(title, fontsize=12, fontweight="bold", color=PRIMARY, pad=10)
    if len(datasets) > 1:
        ax.legend(fontsize=8, framealpha=0.9)
    ax.grid(True, alpha=0.3)
    fig.tight_layout()

    return _fig_to_png(fig)


def bar_chart(
    labels: List[str],
    values: List[float],
    title: str = "",
    color: Optional[str] = None,
    size: Tuple[int, int] = DEFAULT_SIZE,
) -> bytes:
    """Vertical bar chart. Returns PNG bytes."""
    _setup_style()
    fig, ax = plt.subplots(figsize=size)

    bars = ax.bar(range(len(labels)), values, color=color or PRIMARY, width=0.65,
                  edgecolor="white", linewidth=0.5)

    ax.set_xticks(range(len(labels)))
    if len(labels) > 8:
        ax.set_xticklabels(labels, rotation=45, ha="right", fontsize=8)
    else:
        ax.set_xticklabels(labels, fontsize=9)

    for bar_obj, val in zip(bars, values):
        if val > 0:
            ax.text(bar_obj.get_x() + bar_obj.get_width() / 2, bar_obj.get_height(),
                    f"{val:g}", ha="center", va="bottom", fontsize=8, color=GRAY_500)

    ax.set_title(title, fontsize=12, fontweight="bold", color=PRIMARY, pad=10)
    ax.grid(axis="y", alpha=0.3)
    ax.set_axisbelow(True)
    fig.tight_layout()

    return _fig_to_png(fig)


def report_graph(processed) -> Optional[bytes]:
    """
    Draw the graph of one processed sub-report.

    Aggregate sub-reports plot their first metric per dimension label; key
    metric sub-reports plot each metric of their first row.  An evolution
    graph draws the same data as lines instead of bars.  Returns ``None``
    when there is nothing to plot.
    """
    meta = processed.metadata
    metrics = [key for key in processed.columns if key != "label"]
    if not processed.rows or not metrics:
        return None

    if meta.dimension_present:
        metric = metrics[0]
        labels = [_short(row.get("label", "")) for row in processed.rows]
        values = [_number(row.get(metric)) for row in processed.rows]
        title = f"{meta.name} - {processed.columns[metric]}"
    else:
        row = processed.rows[0]
        labels = [_short(processed.columns[key]) for key in metrics]
        values = [_number(row.get(key)) for key in metrics]
        title = meta.name

    logger.debug("Graph %s: %d points (evolution=%s)", meta.id, len(values), processed.evolution_graph)

    if processed.evolution_graph:
        return line_chart(labels, [{"label": title, "data": values}], title=title)
    return bar_chart(labels, values, title=title)
