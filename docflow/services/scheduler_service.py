"""
Document Approval Workflow Engine
Scheduler Service.

Runs periodic maintenance jobs (today: the SLA sweep) on a daemon thread.

    @register_job("workflow_sla_sweep", interval_setting="WORKFLOW_SLA_SWEEP_INTERVAL_SECONDS")
    def workflow_sla_sweep(app): ...

Each registered job gets a ScheduledJob row holding its interval, enabled
flag and latest outcome. A job is due when it has never run or when
interval_seconds have passed since last_run_at, so the schedule survives a
restart. The admin API can run any job on demand; the thread itself only
starts when WORKFLOW_SCHEDULER_ENABLED is set.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from flask import Flask
from sqlalchemy import select

from docflow.core.clock import as_utc
from docflow.models import db
from docflow.models.scheduling import ScheduledJob

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 600


@dataclass(frozen=True)
class RegisteredJob:
    name: str
    fn: Callable
    interval_setting: str | None = None

    @property
    def summary(self) -> str:
        return (self.fn.__doc__ or f"Scheduled job: {self.name}").strip().splitlines()[0]


_job_registry: dict[str, RegisteredJob] = {}


def register_job(name: str, interval_setting: str | None = None):
    """Register ``fn(app) -> dict`` under ``name``.

    ``interval_setting`` names the app config key holding the interval in
    seconds; it is read when the job row is first created.
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = RegisteredJob(name, fn, interval_setting)
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    return {name: job.fn for name, job in _job_registry.items()}


def _job_record(job_name: str) -> ScheduledJob | None:
    return db.session.execute(
        select(ScheduledJob).where(ScheduledJob.job_name == job_name)
    ).scalar_one_or_none()


def _is_due(record: ScheduledJob | None, now: datetime) -> bool:
    if record is None or not record.is_enabled:
        return False
    if record.last_run_at is None:
        return True
    return as_utc(record.last_run_at) + timedelta(seconds=record.interval_seconds) <= now


class SchedulerService:
    """Class-level singleton bound to one Flask app by init_app()."""

    _app: Flask | None = None
    _stop: threading.Event | None = None
    _thread: threading.Thread | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService initialized with %d registered jobs", len(_job_registry))

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """Insert a ScheduledJob row for every registered job that lacks one."""
        if not cls._app:
            return []

        created = []
        with cls._app.app_context():
            for job in _job_registry.values():
                if _job_record(job.name) is not None:
                    continue
                interval = DEFAULT_INTERVAL_SECONDS
                if job.interval_setting:
                    interval = int(cls._app.config.get(job.interval_setting, interval))
                row = ScheduledJob(
                    job_name=job.name,
                    description=job.summary,
                    interval_seconds=interval,
                    status="active",
                    is_enabled=True,
                )
                db.session.add(row)
                created.append(row)
            if created:
                db.session.commit()
                logger.info("Registered %d scheduled job(s): %s",
                            len(created), ", ".join(r.job_name for r in created))
        return created

    @classmethod
    def run_job(cls, job_name: str) -> dict:
        """Run one job now, in its own app context, and record the outcome.

        Job failures are caught and reported in the returned dict
        (status "failed") so one bad run never kills the scheduler thread.
        """
        job = _job_registry.get(job_name)
        if job is None:
            return {"job_name": job_name, "status": "error", "error": f"Unknown job: {job_name}"}
        if not cls._app:
            return {"job_name": job_name, "status": "error", "error": "Scheduler not initialized"}

        started = time.monotonic()
        outcome = {"job_name": job_name, "status": "success", "result": None, "error": None}
        try:
            with cls._app.app_context():
                outcome["result"] = job.fn(cls._app)
        except Exception as exc:
            outcome["status"] = "failed"
            outcome["error"] = str(exc)
            logger.exception("Job %s failed", job_name, extra={"job_name": job_name})
        outcome["duration_ms"] = int((time.monotonic() - started) * 1000)

        with cls._app.app_context():
            record = _job_record(job_name)
            if record is not None:
                result = outcome["result"]
                record.record_run(
                    status=outcome["status"],
                    duration_ms=outcome["duration_ms"],
                    result=result if isinstance(result, dict) else {"output": str(result)},
                    error=outcome["error"],
                )
                db.session.commit()

        logger.info("Job %s finished: %s (%dms)", job_name, outcome["status"], outcome["duration_ms"],
                    extra={"job_name": job_name, "duration_ms": outcome["duration_ms"]})
        return outcome

    @classmethod
    def list_jobs(cls) -> list[dict]:
        items = []
        for name, job in _job_registry.items():
            record = _job_record(name)
            items.append({
                "job_name": name,
                "summary": job.summary,
                "db_record": record.to_dict() if record else None,
            })
        return items

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        record = _job_record(job_name)
        if record is None:
            return None
        record.is_enabled = enabled
        record.status = "active" if enabled else "paused"
        db.session.commit()
        logger.info("Job %s %s", job_name, "enabled" if enabled else "paused",
                    extra={"job_name": job_name})
        return record.to_dict()

    # ── Background loop ───────────────────────────────────────────────────

    @classmethod
    def start(cls, tick_seconds: float = 5.0) -> None:
        if cls._thread and cls._thread.is_alive():
            return
        cls.ensure_jobs_registered()
        cls._stop = threading.Event()
        cls._thread = threading.Thread(
            target=cls._loop, args=(tick_seconds,), name="docflow-scheduler", daemon=True,
        )
        cls._thread.start()
        logger.info("Scheduler thread started (tick=%ss)", tick_seconds)

    @classmethod
    def stop(cls) -> None:
        if cls._stop:
            cls._stop.set()
        if cls._thread:
            cls._thread.join(timeout=10)
        cls._thread = None

    @classmethod
    def _due_jobs(cls) -> list[str]:
        now = datetime.now(timezone.utc)
        with cls._app.app_context():
            return [name for name in _job_registry if _is_due(_job_record(name), now)]

    @classmethod
    def _loop(cls, tick_seconds: float) -> None:
        while not cls._stop.is_set():
            for name in cls._due_jobs():
                cls.run_job(name)
            cls._stop.wait(tick_seconds)
