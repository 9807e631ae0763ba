"""
Document Approval Workflow Engine
Scheduled job registry model.

One ScheduledJob row per job registered with
docflow.services.scheduler_service.register_job(): its interval, whether
the background loop may run it, and the outcome of the latest run.
"""

from datetime import datetime, timezone

from docflow.models import db


def _now():
    return datetime.now(timezone.utc)


class ScheduledJob(db.Model):
    __tablename__ = "scheduled_jobs"

    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(100), unique=True, nullable=False)
    description = db.Column(db.String(500), default="")
    interval_seconds = db.Column(db.Integer, nullable=False, default=600)
    status = db.Column(db.String(20), default="active", comment="active | paused | failed")
    is_enabled = db.Column(db.Boolean, default=True)

    last_run_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_run_status = db.Column(db.String(20), nullable=True)
    last_run_duration_ms = db.Column(db.Integer, nullable=True)
    last_run_result = db.Column(db.JSON, nullable=True, comment="Sweep counters of the latest run")
    run_count = db.Column(db.Integer, default=0)
    error_count = db.Column(db.Integer, default=0)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_now)

    def record_run(self, *, status="success", duration_ms=0, result=None, error=None, at=None):
        self.last_run_at = at or _now()
        self.last_run_status = status
        self.last_run_duration_ms = duration_ms
        self.last_run_result = result
        self.run_count = (self.run_count or 0) + 1
        if status != "success":
            self.error_count = (self.error_count or 0) + 1
            self.last_error = str(error) if error else None
            self.status = "failed"

    def to_dict(self):
        last_run = None
        if self.last_run_at:
            last_run = {
                "at": self.last_run_at.isoformat(),
                "status": self.last_run_status,
                "duration_ms": self.last_run_duration_ms,
                "result": self.last_run_result,
            }
        return {
            "id": self.id,
            "job_name": self.job_name,
            "description": self.description,
            "interval_seconds": self.interval_seconds,
            "status": self.status,
            "is_enabled": self.is_enabled,
            "run_count": self.run_count,
            "error_count": self.error_count,
            "last_error": self.last_error,
            "last_run": last_run,
        }

    def __repr__(self):
        return f"<ScheduledJob {self.job_name} enabled={self.is_enabled}>"
