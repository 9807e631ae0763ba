"""
Document Approval Workflow Engine
Scheduled Jobs.

Jobs:
    - workflow_sla_sweep: expire overdue workflows, flag overdue tasks
"""

from __future__ import annotations

import logging
from typing import Any

from docflow.services.engine import EXTENSION_KEY
from docflow.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


@register_job("workflow_sla_sweep", interval_setting="WORKFLOW_SLA_SWEEP_INTERVAL_SECONDS")
def workflow_sla_sweep(app) -> dict[str, Any]:
    """Expire IN_PROGRESS workflows past their due date and notify overdue approvers."""
    engine = app.extensions[EXTENSION_KEY]
    result = engine.sla_watcher.sweep()
    logger.debug("workflow_sla_sweep finished: %s", result)
    return result
