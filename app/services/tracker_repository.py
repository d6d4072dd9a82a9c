"""
Tracker Repository

Converts between ``ProjectWorkflowTracker`` rows and engine ``TrackerState``
snapshots and owns every tracker write.

Writes are guarded by the tracker's ``version`` column: ``save`` refuses a
snapshot whose version no longer matches the row, and SQLAlchemy raises
``StaleDataError`` on flush when another transaction bumped it first. Both
surface as ``TrackerWriteConflictError``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.orm.exc import StaleDataError

from app.core.exceptions import TrackerWriteConflictError, UnknownProjectError
from app.models import db
from app.models.project import Project
from app.models.tracker import CompletedWorkflowItem, ProjectWorkflowTracker
from app.services import progression_engine as engine
from app.services import template_store
from app.services.progression_engine import CompletedItem, TrackerState

logger = logging.getLogger(__name__)


# ── Row <-> snapshot ─────────────────────────────────────────────────────────


def to_state(row: ProjectWorkflowTracker) -> TrackerState:
    items = tuple(
        CompletedItem(
            line_item_id=c.line_item_id,
            section_id=c.section_id,
            phase_id=c.phase_id,
            completed_at=c.completed_at,
            completed_by=c.completed_by,
            notes=c.notes,
            is_skipped=bool(c.is_skipped),
        )
        for c in row.completed_items
    )
    return TrackerState(
        id=row.id,
        project_id=row.project_id,
        workflow_type=row.workflow_type,
        trade_name=row.trade_name,
        is_main_workflow=bool(row.is_main_workflow),
        current_phase_id=row.current_phase_id,
        current_section_id=row.current_section_id,
        current_line_item_id=row.current_line_item_id,
        total_line_items=row.total_line_items or 0,
        completed_items=items,
        version=row.version,
        starting_phase=row.starting_phase,
    )


def _apply(row: ProjectWorkflowTracker, state: TrackerState) -> None:
    """Copy pointer, flags and completed items from *state* onto *row*."""
    row.trade_name = state.trade_name
    row.is_main_workflow = state.is_main_workflow
    row.current_phase_id = state.current_phase_id
    row.current_section_id = state.current_section_id
    row.current_line_item_id = state.current_line_item_id
    row.total_line_items = state.total_line_items
    row.starting_phase = state.starting_phase
    # Always dirty the parent row so the version column is bumped even when
    # only child rows changed.
    row.updated_at = datetime.now(timezone.utc)

    wanted = {c.line_item_id: c for c in state.completed_items}
    existing = {c.line_item_id: c for c in row.completed_items}

    for line_item_id, item in list(existing.items()):
        if line_item_id not in wanted:
            row.completed_items.remove(item)

    for line_item_id, item in wanted.items():
        current = existing.get(line_item_id)
        if current is None:
            row.completed_items.append(CompletedWorkflowItem(
                line_item_id=item.line_item_id,
                section_id=item.section_id,
                phase_id=item.phase_id,
                completed_at=item.completed_at,
                completed_by=item.completed_by,
                notes=item.notes,
                is_skipped=item.is_skipped,
            ))
            if not item.is_skipped:
                row.last_completed_line_item_id = item.line_item_id
        elif bool(current.is_skipped) != item.is_skipped or current.completed_at != item.completed_at:
            current.section_id = item.section_id
            current.phase_id = item.phase_id
            current.completed_at = item.completed_at
            current.completed_by = item.completed_by
            current.notes = item.notes
            current.is_skipped = item.is_skipped
            if not item.is_skipped:
                row.last_completed_line_item_id = item.line_item_id


def _flush_or_conflict(row: ProjectWorkflowTracker, commit: bool) -> None:
    try:
        if commit:
            db.session.commit()
        else:
            db.session.flush()
    except StaleDataError as exc:
        tracker_id = row.id
        db.session.rollback()
        logger.warning("Tracker %s version conflict: %s", tracker_id, exc,
                       extra={"tracker_id": tracker_id})
        raise TrackerWriteConflictError(tracker_id) from exc


# ── Queries ──────────────────────────────────────────────────────────────────


def _query_for_project(project_id: int):
    return (
        ProjectWorkflowTracker.query
        .filter_by(project_id=project_id)
        .order_by(ProjectWorkflowTracker.is_main_workflow.desc(), ProjectWorkflowTracker.id)
    )


def get_row(project_id: int, workflow_type: str | None = None) -> ProjectWorkflowTracker | None:
    query = _query_for_project(project_id)
    if workflow_type:
        return query.filter_by(workflow_type=template_store.normalize_workflow_type(workflow_type)).first()
    main = query.filter_by(is_main_workflow=True).first()
    return main or query.first()


def get(project_id: int, workflow_type: str | None = None) -> TrackerState | None:
    """Tracker for *workflow_type*, or the main tracker when no type is given."""
    row = get_row(project_id, workflow_type)
    return to_state(row) if row else None


def list_for_project(project_id: int) -> list[TrackerState]:
    return [to_state(row) for row in _query_for_project(project_id).all()]


# ── Writes ───────────────────────────────────────────────────────────────────


def create(state: TrackerState, *, commit: bool = True) -> TrackerState:
    """Insert a new tracker row from *state*.

    A new main tracker demotes any existing main tracker of the project.
    """
    if state.is_main_workflow:
        for other in ProjectWorkflowTracker.query.filter_by(
            project_id=state.project_id, is_main_workflow=True,
        ).all():
            other.is_main_workflow = False
        db.session.flush()

    row = ProjectWorkflowTracker(project_id=state.project_id, workflow_type=state.workflow_type)
    _apply(row, state)
    db.session.add(row)
    _flush_or_conflict(row, commit)
    logger.info(
        "Tracker created: project=%s type=%s main=%s",
        state.project_id, state.workflow_type, state.is_main_workflow,
        extra={"project_id": state.project_id, "tracker_id": row.id, "workflow_type": state.workflow_type},
    )
    return to_state(row)


def save(state: TrackerState, *, commit: bool = True) -> TrackerState:
    """Replace pointer and completed items of an existing tracker atomically.

    Raises:
        TrackerWriteConflictError: *state* was read at an older version.
    """
    row = db.session.get(ProjectWorkflowTracker, state.id) if state.id else None
    if row is None:
        raise TrackerWriteConflictError(state.id, state.version)
    if state.version is not None and row.version != state.version:
        raise TrackerWriteConflictError(state.id, state.version)

    _apply(row, state)
    _flush_or_conflict(row, commit)
    return to_state(row)


def delete_for_project(project_id: int, *, commit: bool = True) -> int:
    rows = ProjectWorkflowTracker.query.filter_by(project_id=project_id).all()
    for row in rows:
        db.session.delete(row)
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return len(rows)


# ── Initialization & healing ─────────────────────────────────────────────────


def initialize_for_project(
    project_id: int,
    workflow_types: list[str],
    *,
    primary_type: str | None = None,
    starting_phase=None,
    trade_names: dict | None = None,
    commit: bool = True,
) -> list[TrackerState]:
    """Create trackers for every requested type the project does not have yet.

    Template failures never abort: the affected tracker is created without
    a pointer and with the default total, to be repaired by ``ensure_ready``.
    """
    existing = {t.workflow_type: t for t in list_for_project(project_id)}
    requested = [template_store.normalize_workflow_type(t) for t in workflow_types]
    missing = [t for t in requested if t and t not in existing]
    if not missing:
        return list_for_project(project_id)

    templates = {t: template_store.find_template(t) for t in missing}
    states = engine.initialize_multiple_workflows(
        project_id,
        missing,
        templates,
        primary_type=primary_type,
        starting_phase=starting_phase,
        trade_names=trade_names,
        default_total_line_items=template_store.default_total_line_items(),
    )
    has_main = any(t.is_main_workflow for t in existing.values())
    for state in states:
        if has_main and state.is_main_workflow:
            state = state.replace(is_main_workflow=False)
        create(state, commit=False)
    if commit:
        db.session.commit()
    return list_for_project(project_id)


def ensure_ready(project_id: int, *, commit: bool = True) -> list[TrackerState]:
    """Make sure the project has usable trackers; idempotent.

    - no trackers: initialize from the declared workflow types
    - half-initialized trackers: re-run initialization, keeping completions
    - no main tracker: promote the first one

    Raises:
        UnknownProjectError: no such project.
    """
    project = db.session.get(Project, project_id)
    if project is None:
        raise UnknownProjectError(project_id)

    trackers = list_for_project(project_id)
    if not trackers:
        types = project.declared_workflow_types() or [
            template_store.default_workflow_type()
        ]
        logger.info("Initializing workflows for project %s: %s", project_id, types,
                    extra={"project_id": project_id})
        return initialize_for_project(
            project_id, types,
            primary_type=types[0],
            starting_phase=project.starting_phase,
            commit=commit,
        )

    changed = False
    for state in trackers:
        template = template_store.find_template(state.workflow_type)
        if template is not None and engine.is_half_initialized(state, template):
            healed = engine.initialize_tracker(
                project_id, template, existing=state, starting_phase=state.starting_phase,
            )
            save(healed, commit=False)
            changed = True
            logger.info("Healed half-initialized tracker %s (%s)", state.id, state.workflow_type,
                        extra={"project_id": project_id, "tracker_id": state.id,
                               "workflow_type": state.workflow_type})

    if not any(t.is_main_workflow for t in trackers):
        first = get_row(project_id)
        first.is_main_workflow = True
        changed = True

    if changed:
        if commit:
            db.session.commit()
        else:
            db.session.flush()
        trackers = list_for_project(project_id)
    return trackers
