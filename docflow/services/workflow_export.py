"""
CSV exports of the workflow metrics.

Each function renders one workflow_metrics aggregate as a UTF-8 CSV string,
one row per entity, for spreadsheet users. The column set is fixed so a
report stays importable when new statuses appear with no instances yet.
"""

from __future__ import annotations

import csv
import io
from datetime import datetime

from docflow.models.workflow import InstanceStatus
from docflow.services import workflow_metrics

_STATUS_COLUMNS = [s.value for s in InstanceStatus]


def _render(header: list[str], rows) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(header)
    for row in rows:
        writer.writerow(["" if value is None else value for value in row])
    return buf.getvalue()


def _summary_row(summary: dict) -> list:
    return [
        summary["total"],
        *(summary["by_status"][status] for status in _STATUS_COLUMNS),
        summary["average_approval_hours"],
        summary["approval_rate"],
    ]


def overview_csv(since: datetime | None = None, until: datetime | None = None) -> str:
    """A single data row: totals, per-status counts, average hours, approval rate."""
    header = ["total", *(s.lower() for s in _STATUS_COLUMNS), "average_approval_hours", "approval_rate"]
    return _render(header, [_summary_row(workflow_metrics.overview(since, until))])


def templates_csv(since: datetime | None = None, until: datetime | None = None) -> str:
    header = [
        "template_id", "template_name", "total", *(s.lower() for s in _STATUS_COLUMNS),
        "average_approval_hours", "approval_rate",
    ]
    rows = (
        [entry["template_id"], entry["template_name"], *_summary_row(entry)]
        for entry in workflow_metrics.by_template(since, until)
    )
    return _render(header, rows)


def steps_csv(template_id: int | None = None, since: datetime | None = None,
              until: datetime | None = None) -> str:
    columns = [
        "template_id", "step_order", "step_name", "tasks", "completed",
        "approved", "rejected", "pending", "voided", "completion_rate",
    ]
    rows = (
        [entry[c] for c in columns]
        for entry in workflow_metrics.by_step(template_id, since, until)
    )
    return _render(columns, rows)
