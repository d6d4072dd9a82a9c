"""Scheduler blueprint: list background jobs and trigger them by hand."""

import logging

from flask import Blueprint, jsonify

from app.services.scheduler_service import SchedulerService, get_registered_jobs
from app.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

scheduler_bp = Blueprint("scheduler", __name__, url_prefix="/api/v1/scheduler")
register_error_handlers(scheduler_bp)


@scheduler_bp.route("/jobs", methods=["GET"])
def list_scheduled_jobs():
    """List registered jobs with their persisted run history."""
    SchedulerService.ensure_jobs_registered()
    jobs = SchedulerService.list_jobs()
    return jsonify({"jobs": jobs, "total": len(jobs)})


@scheduler_bp.route("/jobs/<job_name>/run", methods=["POST"])
def run_job(job_name):
    """Run a registered job synchronously."""
    if job_name not in get_registered_jobs():
        return api_error(E.NOT_FOUND, f"Unknown job: {job_name}")
    result = SchedulerService.run_job(job_name)
    return jsonify(result)
