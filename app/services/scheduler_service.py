"""
Project Workflow Platform
Scheduler Service.

Lightweight job runner for the workflow maintenance jobs. Jobs are plain
functions registered by name; each run executes inside the Flask app
context and its outcome is persisted on the matching ScheduledJob row.

Triggering is external: the scheduler API, the ``flask run-job`` command,
or a cron entry calling either.

Architecture:
    - register_job: decorator filling the in-process registry
    - SchedulerService: registration persistence and execution
    - ScheduledJob: run history (last status, duration, result, errors)
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from flask import Flask

from app.models import db
from app.models.scheduling import ScheduledJob

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════

_job_registry: dict[str, Callable] = {}


def register_job(name: str):
    """Decorator to register a job function.

    Usage:
        @register_job("workflow_healing_sweep")
        def heal_trackers(app):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    """Return all registered job functions."""
    return dict(_job_registry)


class SchedulerService:
    """
    Lightweight scheduler service.

    Manages job registration, persistence, and execution.
    Jobs are executed within Flask app context.
    """

    _app: Flask | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        """Initialize scheduler with Flask app context."""
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService initialized with %d registered jobs",
                    len(_job_registry))

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """
        Ensure all registered jobs have a corresponding DB record.
        Creates missing records with default config.
        """
        if not cls._app:
            return []

        created = []
        with cls._app.app_context():
            for name, fn in _job_registry.items():
                if ScheduledJob.query.filter_by(job_name=name).first():
                    continue
                job = ScheduledJob(
                    job_name=name,
                    description=(fn.__doc__ or f"Scheduled job: {name}").strip().splitlines()[0],
                    schedule_type="interval",
                    schedule_config=_get_default_schedule(name),
                    status="active",
                    is_enabled=True,
                )
                db.session.add(job)
                created.append(job)
            if created:
                db.session.commit()
                logger.info("Created %d scheduled job records", len(created))
        return created

    @classmethod
    def run_job(cls, job_name: str) -> dict:
        """
        Execute a single job by name.

        Returns:
            Dict with status, duration_ms, result or error.
        """
        fn = _job_registry.get(job_name)
        if not fn:
            return {"job_name": job_name, "status": "error", "error": f"Unknown job: {job_name}"}

        if not cls._app:
            return {"job_name": job_name, "status": "error", "error": "Scheduler not initialized"}

        start = time.monotonic()
        result = None
        error = None
        status = "success"

        try:
            with cls._app.app_context():
                result = fn(cls._app)
        except Exception as exc:
            status = "failed"
            error = str(exc)
            logger.exception("Job %s failed: %s", job_name, exc)

        duration_ms = int((time.monotonic() - start) * 1000)

        with cls._app.app_context():
            job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
            if job_record is None:
                job_record = ScheduledJob(job_name=job_name, schedule_config=_get_default_schedule(job_name))
                db.session.add(job_record)
            job_record.record_run(
                status=status,
                duration_ms=duration_ms,
                result=result if isinstance(result, dict) else {"output": str(result)},
                error=error,
            )
            db.session.commit()

        logger.info("Job %s finished: %s in %dms", job_name, status, duration_ms,
                    extra={"job_name": job_name})
        return {
            "job_name": job_name,
            "status": status,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }

    @classmethod
    def list_jobs(cls) -> list[dict]:
        """List all registered jobs with their DB status."""
        jobs = []
        for name in _job_registry:
            job_record = ScheduledJob.query.filter_by(job_name=name).first()
            jobs.append({
                "job_name": name,
                "registered": True,
                "db_record": job_record.to_dict() if job_record else None,
            })
        return jobs


def _get_default_schedule(job_name: str) -> dict:
    """Return default schedule config for known job types."""
    defaults = {
        "workflow_healing_sweep": {"minutes": 60, "description": "Hourly"},
        "batch_alert_generation": {"minutes": 15, "description": "Every 15 minutes"},
    }
    return defaults.get(job_name, {"minutes": 1440, "description": "Daily"})
