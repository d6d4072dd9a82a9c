"""
Alert Generator

Keeps WorkflowAlert rows in step with tracker pointers: exactly one ACTIVE
alert per currently actionable line item of a project, no matter how many
times reconciliation runs. The per-(project, line item) existence check is
the correctness guard; the partial unique index on ACTIVE alerts backs it
when two writers race.

Usage:
    from app.services import alert_generator

    result = alert_generator.reconcile(project_id, [candidate], completed_line_item_id=7)
    batch = alert_generator.generate_batch_alerts([1, 2, 3])
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, NamedTuple

from flask import current_app
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import NotFoundError, UnknownProjectError, ValidationError
from app.models import db
from app.models.alert import (
    ALERT_STATUS_ACTIVE,
    ALERT_STATUS_COMPLETED,
    ALERT_STATUS_DISMISSED,
    ALERT_STATUSES,
    ALERT_TYPE_LINE_ITEM,
    WorkflowAlert,
)
from app.models.phase_override import ProjectPhaseOverride
from app.models.project import Project
from app.models.tracker import ProjectWorkflowTracker
from app.models.workflow import (
    DEFAULT_ALERT_DAYS,
    DEFAULT_PRIORITY,
    DEFAULT_RESPONSIBLE_ROLE,
    normalize_phase_type,
)
from app.services import template_store
from app.services.template_store import TemplateLineItem, WorkflowTemplate

logger = logging.getLogger(__name__)


class AlertCandidate(NamedTuple):
    """A line item that just became actionable on one tracker."""
    line_item: TemplateLineItem
    phase_type: str | None = None
    section_name: str | None = None
    tracker_id: int | None = None


@dataclass
class ReconcileResult:
    opened: list = field(default_factory=list)
    closed: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "opened": [a.to_dict() for a in self.opened],
            "closed": [a.to_dict() for a in self.closed],
        }


@dataclass
class BatchAlertResult:
    projects: int = 0
    opened: int = 0
    failed: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"projects": self.projects, "opened": self.opened, "failed": list(self.failed)}


# ── Helpers ──────────────────────────────────────────────────────────────────


def candidate_for(tracker, template: WorkflowTemplate | None) -> AlertCandidate | None:
    """Candidate for the tracker's current pointer, or None when exhausted."""
    if template is None or tracker.current_line_item_id is None:
        return None
    item = template.line_item(tracker.current_line_item_id)
    if item is None:
        return None
    phase = template.phase(tracker.current_phase_id)
    section = template.section(tracker.current_section_id)
    return AlertCandidate(
        line_item=item,
        phase_type=phase.phase_type if phase else None,
        section_name=section.label if section else None,
        tracker_id=tracker.id,
    )


def active_override(project_id: int) -> ProjectPhaseOverride | None:
    return (
        ProjectPhaseOverride.query
        .filter_by(project_id=project_id, is_active=True)
        .order_by(ProjectPhaseOverride.created_at.desc(), ProjectPhaseOverride.id.desc())
        .first()
    )


def _suppressed_phases(project_id: int) -> set[str]:
    override = active_override(project_id)
    if override is None:
        return set()
    return {p for p in (normalize_phase_type(v) for v in override.suppress_alerts_for or []) if p}


def _active_alert(project_id: int, line_item_id: int) -> WorkflowAlert | None:
    return WorkflowAlert.query.filter_by(
        project_id=project_id, line_item_id=line_item_id, status=ALERT_STATUS_ACTIVE,
    ).first()


def _close_active(project_id: int, line_item_id: int, status: str) -> list[WorkflowAlert]:
    alerts = WorkflowAlert.query.filter_by(
        project_id=project_id, line_item_id=line_item_id, status=ALERT_STATUS_ACTIVE,
    ).all()
    for alert in alerts:
        alert.close(status)
    return alerts


def _build_alert(project: Project, candidate: AlertCandidate) -> WorkflowAlert:
    item = candidate.line_item
    days = item.alert_days if item.alert_days is not None else DEFAULT_ALERT_DAYS
    customer = project.customer_name or project.name
    return WorkflowAlert(
        project_id=project.id,
        tracker_id=candidate.tracker_id,
        line_item_id=item.id,
        type=ALERT_TYPE_LINE_ITEM,
        status=ALERT_STATUS_ACTIVE,
        priority=item.priority or DEFAULT_PRIORITY,
        responsible_role=item.responsible_role or DEFAULT_RESPONSIBLE_ROLE,
        title=f"{item.name} - {customer}",
        message=f"{item.name} is now ready to be completed for project {project.name}",
        step_name=item.name,
        phase_type=candidate.phase_type,
        section_name=candidate.section_name,
        due_date=datetime.now(timezone.utc) + timedelta(days=days),
    )


# ── Reconciliation ───────────────────────────────────────────────────────────


def reconcile(
    project_id: int,
    newly_active_line_items: Iterable,
    completed_line_item_id: int | None = None,
    *,
    tracker_id: int | None = None,
    retired_line_item_id: int | None = None,
    commit: bool = True,
) -> ReconcileResult:
    """Close the completed item's alert and open alerts for newly active items.

    ``newly_active_line_items`` holds AlertCandidate values (bare
    TemplateLineItem values are accepted and attributed to *tracker_id*).
    ``retired_line_item_id`` names an item that stopped being actionable
    without being completed; its alert is dismissed.

    Raises:
        UnknownProjectError: no such project.
    """
    project = db.session.get(Project, project_id)
    if project is None:
        raise UnknownProjectError(project_id)

    result = ReconcileResult()
    if completed_line_item_id is not None:
        result.closed.extend(_close_active(project_id, completed_line_item_id, ALERT_STATUS_COMPLETED))
    if retired_line_item_id is not None:
        result.closed.extend(_close_active(project_id, retired_line_item_id, ALERT_STATUS_DISMISSED))

    suppressed = None
    for candidate in newly_active_line_items or ():
        if candidate is None:
            continue
        if isinstance(candidate, TemplateLineItem):
            candidate = AlertCandidate(line_item=candidate, tracker_id=tracker_id)
        if suppressed is None:
            suppressed = _suppressed_phases(project_id)
        if candidate.phase_type and candidate.phase_type in suppressed:
            logger.debug("Alert suppressed by phase override: project=%s item=%s",
                         project_id, candidate.line_item.id)
            continue
        if _active_alert(project_id, candidate.line_item.id) is not None:
            continue

        alert = _build_alert(project, candidate)
        try:
            with db.session.begin_nested():
                db.session.add(alert)
        except IntegrityError:
            # Another writer opened the same alert first.
            logger.info("Concurrent alert for project=%s item=%s already exists",
                        project_id, candidate.line_item.id)
            continue
        result.opened.append(alert)

    if commit:
        db.session.commit()
    if result.opened or result.closed:
        logger.info(
            "Alerts reconciled: project=%s opened=%d closed=%d",
            project_id, len(result.opened), len(result.closed),
            extra={"project_id": project_id, "line_item_id": completed_line_item_id},
        )
    return result


def _dismissed_by_user(project_id: int, line_item_id: int) -> bool:
    latest = (
        WorkflowAlert.query
        .filter_by(project_id=project_id, line_item_id=line_item_id)
        .order_by(WorkflowAlert.created_at.desc(), WorkflowAlert.id.desc())
        .first()
    )
    return latest is not None and latest.status == ALERT_STATUS_DISMISSED


def generate_for_project(project_id: int, *, commit: bool = True) -> ReconcileResult:
    """Reconcile the current pointer of every tracker of one project.

    A current item whose latest alert was dismissed stays quiet until the
    pointer leaves it and comes back through a completion.
    """
    candidates = []
    trackers = ProjectWorkflowTracker.query.filter_by(project_id=project_id).all()
    for tracker in trackers:
        if tracker.current_line_item_id is None:
            continue
        if _dismissed_by_user(project_id, tracker.current_line_item_id):
            continue
        candidate = candidate_for(tracker, template_store.find_template(tracker.workflow_type))
        if candidate is not None:
            candidates.append(candidate)
    return reconcile(project_id, candidates, commit=commit)


def _generate_in_context(app, project_id: int) -> int:
    with app.app_context():
        return len(generate_for_project(project_id).opened)


def generate_batch_alerts(project_ids: Iterable[int], *, max_workers: int | None = None) -> BatchAlertResult:
    """Reconcile many projects; one project's failure never aborts the batch.

    Safe to run redundantly or concurrently with itself.
    """
    ids = list(dict.fromkeys(project_ids))
    result = BatchAlertResult(projects=len(ids))
    if not ids:
        return result

    app = current_app._get_current_object()
    workers = max_workers or app.config.get("ALERT_BATCH_MAX_WORKERS", 4)

    if workers <= 1 or len(ids) == 1:
        for project_id in ids:
            try:
                result.opened += len(generate_for_project(project_id).opened)
            except Exception:
                db.session.rollback()
                logger.exception("Batch alert generation failed for project %s", project_id,
                                 extra={"project_id": project_id})
                result.failed.append(project_id)
    else:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {pool.submit(_generate_in_context, app, pid): pid for pid in ids}
            for future in as_completed(futures):
                project_id = futures[future]
                try:
                    result.opened += future.result()
                except Exception:
                    logger.exception("Batch alert generation failed for project %s", project_id,
                                     extra={"project_id": project_id})
                    result.failed.append(project_id)

    logger.info("Batch alerts: projects=%d opened=%d failed=%d",
                result.projects, result.opened, len(result.failed))
    return result


# ── External actions ─────────────────────────────────────────────────────────


def dismiss_alert(alert_id: int) -> WorkflowAlert:
    alert = db.session.get(WorkflowAlert, alert_id)
    if alert is None:
        raise NotFoundError(resource="WorkflowAlert", resource_id=alert_id)
    if alert.status == ALERT_STATUS_ACTIVE:
        alert.close(ALERT_STATUS_DISMISSED)
        db.session.commit()
    return alert


def list_alerts(project_id: int | None = None, status: str | None = None) -> list[WorkflowAlert]:
    q = WorkflowAlert.query
    if project_id is not None:
        q = q.filter_by(project_id=project_id)
    if status:
        status = status.upper()
        if status not in ALERT_STATUSES:
            raise ValidationError(f"Unknown alert status: {status}", details={"status": sorted(ALERT_STATUSES)})
        q = q.filter_by(status=status)
    return q.order_by(WorkflowAlert.created_at.desc(), WorkflowAlert.id.desc()).all()
