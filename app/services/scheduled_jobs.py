"""
Project Workflow Platform
Scheduled Jobs.

Concrete maintenance jobs for the workflow engine.

Jobs:
    - workflow_healing_sweep: ensure_ready over every project
    - batch_alert_generation: reconcile alerts for every project still in flight
"""

from __future__ import annotations

import logging
from typing import Any

from app.core.exceptions import NotFoundError, TrackerWriteConflictError
from app.models import db
from app.models.project import Project
from app.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Workflow Healing Sweep
# ═══════════════════════════════════════════════════════════════════════════

@register_job("workflow_healing_sweep")
def heal_workflow_trackers(app) -> dict[str, Any]:
    """Create missing trackers and repair half-initialized ones for every project."""
    from app.services import workflow_service

    results = {"projects_checked": 0, "trackers": 0, "errors": 0}

    project_ids = [pid for (pid,) in db.session.query(Project.id).order_by(Project.id).all()]
    for project_id in project_ids:
        try:
            trackers = workflow_service.ensure_ready(project_id)
            results["projects_checked"] += 1
            results["trackers"] += len(trackers)
        except (NotFoundError, TrackerWriteConflictError) as e:
            db.session.rollback()
            results["errors"] += 1
            logger.warning("Healing skipped for project %s: %s", project_id, e,
                           extra={"project_id": project_id})
        except Exception:
            db.session.rollback()
            results["errors"] += 1
            logger.exception("Healing failed for project %s", project_id,
                             extra={"project_id": project_id})

    logger.info("Workflow healing sweep: %s", results)
    return results


# ═══════════════════════════════════════════════════════════════════════════
#  Job 2: Batch Alert Generation
# ═══════════════════════════════════════════════════════════════════════════

@register_job("batch_alert_generation")
def generate_alerts_for_open_projects(app) -> dict[str, Any]:
    """Reconcile alerts for the current line items of every non-completed project."""
    from app.services.alert_generator import generate_batch_alerts

    project_ids = [
        pid for (pid,) in
        db.session.query(Project.id).filter(Project.status != "COMPLETED").order_by(Project.id).all()
    ]
    result = generate_batch_alerts(
        project_ids, max_workers=app.config.get("ALERT_BATCH_MAX_WORKERS"),
    )
    logger.info("Batch alert generation: %s", result.to_dict())
    return result.to_dict()
