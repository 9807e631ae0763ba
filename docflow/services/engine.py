"""
Workflow engine wiring.

init_workflow_engine(app) builds the collaborators once per app and stores
them under app.extensions["workflow_engine"]; blueprints and jobs fetch them
with get_engine(). Embedding callers and tests construct WorkflowEngine
directly with their own clock, membership and hook.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from flask import Flask, current_app

from docflow.core.clock import Clock, SystemClock
from docflow.services.approver_resolver import ApproverResolver, DirectoryRoleMembership, RoleMembership
from docflow.services.notification import InAppNotificationHook, NotificationHook
from docflow.services.sla_watcher import SLAWatcher
from docflow.services.task_manager import TaskManager
from docflow.services.workflow_orchestrator import WorkflowOrchestrator

logger = logging.getLogger(__name__)

EXTENSION_KEY = "workflow_engine"


@dataclass
class WorkflowEngine:
    clock: Clock
    resolver: ApproverResolver
    tasks: TaskManager
    orchestrator: WorkflowOrchestrator
    sla_watcher: SLAWatcher

    @classmethod
    def build(
        cls,
        clock: Clock | None = None,
        membership: RoleMembership | None = None,
        hook: NotificationHook | None = None,
        sla_batch_size: int = 200,
        notify_overdue_tasks: bool = True,
    ) -> WorkflowEngine:
        clock = clock or SystemClock()
        hook = hook or InAppNotificationHook()
        resolver = ApproverResolver(membership or DirectoryRoleMembership())
        tasks = TaskManager(clock)
        return cls(
            clock=clock,
            resolver=resolver,
            tasks=tasks,
            orchestrator=WorkflowOrchestrator(clock, resolver, tasks, hook),
            sla_watcher=SLAWatcher(
                clock, tasks, hook,
                batch_size=sla_batch_size,
                notify_overdue_tasks=notify_overdue_tasks,
            ),
        )


def init_workflow_engine(app: Flask, engine: WorkflowEngine | None = None) -> WorkflowEngine:
    engine = engine or WorkflowEngine.build(
        sla_batch_size=app.config.get("WORKFLOW_SLA_SWEEP_BATCH_SIZE", 200),
        notify_overdue_tasks=app.config.get("WORKFLOW_NOTIFY_OVERDUE_TASKS", True),
    )
    app.extensions[EXTENSION_KEY] = engine
    logger.debug("Workflow engine initialised (clock=%s)", type(engine.clock).__name__)
    return engine


def get_engine() -> WorkflowEngine:
    return current_app.extensions[EXTENSION_KEY]
