"""
Workflow Service

Exposed workflow operations. Each one loads state through the tracker
repository, runs the pure progression engine, persists the new tracker,
writes the derived phase/progress/status back onto the project and then
reconciles alerts.

Tracker writes are optimistic: a lost version race is retried once from a
fresh read before ``TrackerWriteConflictError`` reaches the caller.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import (
    NotFoundError,
    TrackerWriteConflictError,
    UnknownLineItemError,
    UnknownProjectError,
    ValidationError,
)
from app.models import db
from app.models.phase_override import ProjectPhaseOverride
from app.models.project import Project
from app.services import alert_generator
from app.services import progression_engine as engine
from app.services import template_store
from app.services import tracker_repository as repo
from app.services.notification import NotificationService
from app.services.progression_engine import CompletionOutcome, PhaseKey, TrackerState

logger = logging.getLogger(__name__)

MAX_WRITE_ATTEMPTS = 2

# Statuses set by people; automation leaves them alone.
MANUAL_STATUSES = ("ON_HOLD", "CANCELLED")


# ═════════════════════════════════════════════════════════════════════════════
# Internal helpers
# ═════════════════════════════════════════════════════════════════════════════


def _load_project(project_id: int) -> Project:
    project = db.session.get(Project, project_id)
    if project is None:
        raise UnknownProjectError(project_id)
    return project


def _with_retry(operation, project_id, *args, **kwargs):
    for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
        try:
            return operation(project_id, *args, **kwargs)
        except TrackerWriteConflictError:
            db.session.rollback()
            if attempt == MAX_WRITE_ATTEMPTS:
                raise
            logger.warning("Tracker write conflict on project %s, retrying", project_id,
                           extra={"project_id": project_id})


def _tracker_for_item(project_id: int, line_item_id: int, workflow_type: str | None):
    """Pick the tracker that owns *line_item_id* and its template.

    With an explicit workflow type only that tracker is considered. Without
    one, the main tracker wins when its template holds the item; otherwise
    the first other tracker whose template does.
    """
    trackers = repo.list_for_project(project_id)
    if not trackers:
        trackers = repo.ensure_ready(project_id)

    if workflow_type:
        wf_type = template_store.normalize_workflow_type(workflow_type)
        state = next((t for t in trackers if t.workflow_type == wf_type), None)
        if state is None:
            raise NotFoundError(resource="ProjectWorkflowTracker", resource_id=f"{project_id}/{wf_type}")
        return state, template_store.get_template(wf_type)

    for state in trackers:
        template = template_store.find_template(state.workflow_type)
        if template is not None and line_item_id in template:
            return state, template
    raise UnknownLineItemError(line_item_id, trackers[0].workflow_type if trackers else None)


def _project_snapshot(project: Project, main: TrackerState | None):
    """Derived (phase, progress, template) for a project's main tracker."""
    template = template_store.find_template(main.workflow_type) if main else None
    override = alert_generator.active_override(project.id)
    phase = engine.derive_phase_key(main, template, override, project.status)

    progress = project.progress or 0
    if main is not None and template is not None:
        skipped = engine.line_items_in_phases(template, override.suppress_alerts_for or []) if override else ()
        progress = engine.compute_progress(main, template, also_resolved=skipped)
    return phase, progress, template


def _write_back(project: Project) -> tuple[str | None, str]:
    """Update project phase/progress/status from its main tracker. No commit."""
    main = repo.get(project.id)
    phase, progress, template = _project_snapshot(project, main)

    old_phase = project.phase
    project.phase = phase.value
    project.progress = progress
    if project.status not in MANUAL_STATUSES:
        if main is not None and template is not None and main.is_exhausted:
            project.status = "COMPLETED"
        elif phase is PhaseKey.LEAD:
            project.status = "PENDING"
        else:
            project.status = "IN_PROGRESS"
    return old_phase, project.phase


def _deliver(project: Project, reconciled, old_phase, new_phase) -> None:
    """Best-effort notification delivery."""
    try:
        if reconciled is not None:
            NotificationService.deliver_alert_diff(project.id, reconciled.opened, reconciled.closed)
        NotificationService.notify_phase_change(project, old_phase, new_phase)
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Notification delivery failed for project %s", project.id,
                         extra={"project_id": project.id})


def _item_payload(template, line_item_id):
    item = template.line_item(line_item_id) if template is not None else None
    return item.to_dict() if item else None


# ═════════════════════════════════════════════════════════════════════════════
# Exposed operations
# ═════════════════════════════════════════════════════════════════════════════


def complete_line_item(project_id, line_item_id, notes=None, *, workflow_type=None, completed_by=None) -> dict:
    """Mark a line item complete on the owning tracker.

    Returns ``{tracker, new_progress, next_active_item, outcome, alerts, phase}``.
    A repeated completion returns outcome ``already_completed`` and writes nothing.
    """
    return _with_retry(_complete_once, project_id, line_item_id, notes,
                       workflow_type=workflow_type, completed_by=completed_by)


def _complete_once(project_id, line_item_id, notes, *, workflow_type, completed_by) -> dict:
    project = _load_project(project_id)
    line_item_id = engine.coerce_line_item_id(line_item_id)
    state, template = _tracker_for_item(project_id, line_item_id, workflow_type)
    if engine.is_half_initialized(state, template):
        state = engine.initialize_tracker(
            project_id, template, existing=state, starting_phase=state.starting_phase,
        )

    result = engine.complete_line_item(state, template, line_item_id, completed_by=completed_by, notes=notes)
    if result.outcome is CompletionOutcome.ALREADY_COMPLETED:
        logger.info("Line item %s already completed on tracker %s", line_item_id, state.id,
                    extra={"project_id": project_id, "tracker_id": state.id, "line_item_id": line_item_id})
        return {
            "outcome": result.outcome.value,
            "tracker": state.to_dict(),
            "new_progress": project.progress,
            "next_active_item": _item_payload(template, state.current_line_item_id),
            "phase": project.phase,
            "is_complete": result.is_complete,
            "alerts": {"opened": [], "closed": []},
        }

    saved = repo.save(result.tracker, commit=False)
    old_phase, new_phase = _write_back(project)
    db.session.commit()
    logger.info(
        "Line item %s completed on project %s (%s)", line_item_id, project_id, saved.workflow_type,
        extra={"project_id": project_id, "tracker_id": saved.id,
               "workflow_type": saved.workflow_type, "line_item_id": line_item_id},
    )

    candidates = [alert_generator.candidate_for(saved, template)] if result.newly_active else []
    reconciled = alert_generator.reconcile(
        project_id, candidates, completed_line_item_id=line_item_id, tracker_id=saved.id,
    )
    _deliver(project, reconciled, old_phase, new_phase)

    return {
        "outcome": result.outcome.value,
        "tracker": saved.to_dict(),
        "new_progress": project.progress,
        "next_active_item": result.active_item.to_dict() if result.active_item else None,
        "phase": project.phase,
        "is_complete": result.is_complete,
        "alerts": reconciled.to_dict(),
    }


def uncomplete_line_item(project_id, line_item_id, *, workflow_type=None) -> dict:
    """Reverse a completion; the tracker pointer may move earlier."""
    return _with_retry(_uncomplete_once, project_id, line_item_id, workflow_type=workflow_type)


def _uncomplete_once(project_id, line_item_id, *, workflow_type) -> dict:
    project = _load_project(project_id)
    line_item_id = engine.coerce_line_item_id(line_item_id)
    state, template = _tracker_for_item(project_id, line_item_id, workflow_type)

    updated = engine.uncomplete_line_item(state, template, line_item_id)
    if updated is state:
        return {
            "outcome": "not_completed",
            "tracker": state.to_dict(),
            "new_progress": project.progress,
            "next_active_item": _item_payload(template, state.current_line_item_id),
            "phase": project.phase,
            "alerts": {"opened": [], "closed": []},
        }

    saved = repo.save(updated, commit=False)
    old_phase, new_phase = _write_back(project)
    db.session.commit()
    logger.info("Line item %s uncompleted on project %s", line_item_id, project_id,
                extra={"project_id": project_id, "tracker_id": saved.id, "line_item_id": line_item_id})

    moved = saved.current_line_item_id != state.current_line_item_id
    reconciled = alert_generator.reconcile(
        project_id,
        [alert_generator.candidate_for(saved, template)] if moved else [],
        tracker_id=saved.id,
        retired_line_item_id=state.current_line_item_id if moved else None,
    )
    _deliver(project, reconciled, old_phase, new_phase)

    return {
        "outcome": "uncompleted",
        "tracker": saved.to_dict(),
        "new_progress": project.progress,
        "next_active_item": _item_payload(template, saved.current_line_item_id),
        "phase": project.phase,
        "alerts": reconciled.to_dict(),
    }


def get_position(project_id) -> dict:
    """Current phase, section, line item and progress, plus every tracker."""
    project = _load_project(project_id)
    states = repo.list_for_project(project_id)
    main = next((t for t in states if t.is_main_workflow), states[0] if states else None)
    phase, progress, _ = _project_snapshot(project, main)

    trackers = []
    main_position = engine.Position(None, None, None)
    for state in states:
        template = template_store.find_template(state.workflow_type)
        position = engine.resolve_position(state, template)
        if state is main:
            main_position = position
        trackers.append({
            **state.to_dict(),
            "position": position.to_dict(),
            "progress": engine.compute_progress(state, template) if template else 0,
        })

    return {
        "project_id": project.id,
        "phase": phase.value,
        "section": main_position.section.label if main_position.section else None,
        "line_item": main_position.line_item.to_dict() if main_position.line_item else None,
        "progress": progress,
        "trackers": trackers,
    }


def initialize_workflow(project_id, workflow_types, starting_phase=None, primary_type=None,
                        trade_names=None) -> list[TrackerState]:
    """Create trackers for the given workflow types and open their first alerts."""
    if isinstance(workflow_types, str):
        workflow_types = [workflow_types]
    types = [template_store.normalize_workflow_type(t) for t in workflow_types or []]
    types = [t for t in types if t]
    if not types:
        raise ValidationError("workflow_types is required", details={"workflow_types": "non-empty list"})
    if starting_phase and PhaseKey.parse(starting_phase) is None:
        raise ValidationError(f"Unknown phase: {starting_phase}",
                              details={"starting_phase": [k.value for k in PhaseKey]})

    project = _load_project(project_id)
    states = repo.initialize_for_project(
        project_id, types,
        primary_type=primary_type or project.project_type,
        starting_phase=starting_phase or project.starting_phase,
        trade_names=trade_names,
        commit=False,
    )
    old_phase, new_phase = _write_back(project)
    db.session.commit()

    reconciled = alert_generator.generate_for_project(project_id)
    _deliver(project, reconciled, old_phase, new_phase)
    return states


def ensure_ready(project_id) -> list[TrackerState]:
    """Heal or create the project's trackers, then refresh derived fields and alerts."""
    project = _load_project(project_id)
    states = repo.ensure_ready(project_id, commit=False)
    _write_back(project)
    db.session.commit()
    alert_generator.generate_for_project(project_id)
    return states


# ── Phase overrides ──────────────────────────────────────────────────────────


def set_phase_override(project_id, to_phase, *, suppress_alerts_for=None, reason=None,
                       overridden_by=None) -> ProjectPhaseOverride:
    """Force the displayed phase; earlier overrides are deactivated."""
    key = PhaseKey.parse(to_phase)
    if key is None:
        raise ValidationError(f"Unknown phase: {to_phase}", details={"to_phase": [k.value for k in PhaseKey]})
    suppressed = []
    for value in suppress_alerts_for or []:
        phase = PhaseKey.parse(value)
        if phase is None:
            raise ValidationError(f"Unknown phase: {value}", details={"suppress_alerts_for": value})
        if phase.value not in suppressed:
            suppressed.append(phase.value)

    project = _load_project(project_id)
    for existing in project.phase_overrides.filter_by(is_active=True).all():
        existing.deactivate()
    override = ProjectPhaseOverride(
        project_id=project_id,
        from_phase=project.phase,
        to_phase=key.value,
        suppress_alerts_for=suppressed,
        reason=reason,
        overridden_by=overridden_by,
    )
    db.session.add(override)
    db.session.flush()
    old_phase, new_phase = _write_back(project)
    db.session.commit()
    logger.info("Phase override on project %s: %s -> %s", project_id, old_phase, new_phase,
                extra={"project_id": project_id})
    _deliver(project, None, old_phase, new_phase)
    return override


def clear_phase_override(project_id) -> int:
    project = _load_project(project_id)
    active = project.phase_overrides.filter_by(is_active=True).all()
    for override in active:
        override.deactivate()
    db.session.flush()
    _write_back(project)
    db.session.commit()
    if active:
        alert_generator.generate_for_project(project_id)
    return len(active)
