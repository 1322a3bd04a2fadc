"""create_chart tool: render bar/line/pie charts to PNG.

The image is not sent to the model. It travels back as an attachment on the
ToolOutcome and the active progress strategy delivers it to the user.
Rendering uses the object-oriented Figure API (no pyplot global state) so
concurrent invocations can render in worker threads.
"""

from __future__ import annotations

import asyncio
import io
import logging
from typing import Any

import matplotlib

matplotlib.use("Agg")

from matplotlib.figure import Figure  # noqa: E402

from quarry.api.models import Attachment, ToolOutcome  # noqa: E402
from quarry.api.tools import ToolDispatcher  # noqa: E402

logger = logging.getLogger(__name__)

CHART_TYPES = ("bar", "line", "pie")
_WIDTH_PX = 800
_HEIGHT_PX = 600
_DPI = 100


def _validate(chart_type: str, data: Any) -> tuple[list[str], list[dict[str, Any]]]:
    if chart_type not in CHART_TYPES:
        raise ValueError(f"Unsupported chart type {chart_type!r}, expected one of {', '.join(CHART_TYPES)}")
    if not isinstance(data, dict):
        raise ValueError("data must be an object with labels and datasets")
    labels = data.get("labels")
    datasets = data.get("datasets")
    if not isinstance(labels, list) or not labels:
        raise ValueError("data.labels must be a non-empty list")
    if not isinstance(datasets, list) or not datasets:
        raise ValueError("data.datasets must be a non-empty list")
    for i, dataset in enumerate(datasets):
        values = dataset.get("data") if isinstance(dataset, dict) else None
        if not isinstance(values, list) or len(values) != len(labels):
            raise ValueError(f"datasets[{i}].data must be a list with one value per label")
    return [str(label) for label in labels], datasets


def render_chart(title: str, chart_type: str, data: Any) -> bytes:
    """Render a chart.js-style payload ({labels, datasets[{label, data}]}) to PNG bytes."""
    labels, datasets = _validate(chart_type, data)

    fig = Figure(figsize=(_WIDTH_PX / _DPI, _HEIGHT_PX / _DPI), dpi=_DPI, facecolor="white")
    ax = fig.add_subplot()
    ax.set_title(title, fontsize=20)

    if chart_type == "pie":
        dataset = datasets[0]
        ax.pie([float(v or 0) for v in dataset["data"]], labels=labels, autopct="%1.1f%%")
        ax.axis("equal")
    else:
        positions = list(range(len(labels)))
        width = 0.8 / len(datasets)
        for i, dataset in enumerate(datasets):
            values = [float(v or 0) for v in dataset["data"]]
            label = str(dataset.get("label", f"Series {i + 1}"))
            if chart_type == "bar":
                offset = (i - (len(datasets) - 1) / 2) * width
                ax.bar([p + offset for p in positions], values, width=width, label=label)
            else:
                ax.plot(positions, values, marker="o", label=label)
        ax.set_xticks(positions)
        ax.set_xticklabels(labels, rotation=45 if len(labels) > 8 else 0, ha="right" if len(labels) > 8 else "center")
        ax.set_ylim(bottom=min(0.0, ax.get_ylim()[0]))
        ax.legend(loc="upper center", bbox_to_anchor=(0.5, 1.0), ncol=max(1, len(datasets)))

    fig.tight_layout()
    buffer = io.BytesIO()
    fig.savefig(buffer, format="png", facecolor="white")
    return buffer.getvalue()


async def create_chart(title: str = "", type: str = "", data: Any = None) -> ToolOutcome | dict[str, Any]:
    """Render the chart in a worker thread and return it as an attachment."""
    try:
        png = await asyncio.to_thread(render_chart, title, type, data)
    except Exception as e:
        logger.warning("Chart rendering failed (%s, %r): %s", type, title, e)
        return {"success": False, "error": str(e)}

    logger.info("Rendered %s chart %r (%d bytes)", type, title, len(png))
    return ToolOutcome.success(
        {"success": True},
        attachments=[Attachment(filename="chart.png", data=png, caption=f"\U0001f4ca {title}")],
    )


_CREATE_CHART_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": "Visualize data as a chart image and post it to the chat.",
    "properties": {
        "title": {"type": "string", "description": "Chart title"},
        "type": {"type": "string", "enum": list(CHART_TYPES), "description": "Chart type"},
        "data": {
            "type": "object",
            "description": "Chart data. { labels: string[], datasets: [{ label: string, data: number[] }] }",
        },
    },
    "required": ["title", "type", "data"],
}


def register_chart_tools(dispatcher: ToolDispatcher) -> None:
    """Register create_chart with the dispatcher."""
    dispatcher.register(
        "create_chart",
        create_chart,
        _CREATE_CHART_SCHEMA,
        status=lambda args: f"\U0001f4ca **Creating chart**: {args.get('title', '')}",
    )
