"""Project CRUD service; creation also starts the project's workflows."""

from __future__ import annotations

import logging

from app.core.exceptions import ConflictError, UnknownProjectError, ValidationError
from app.models import db
from app.models.project import PROJECT_STATUSES, Project
from app.services import template_store
from app.services.progression_engine import PhaseKey

logger = logging.getLogger(__name__)


def _parse_trade_types(value) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, (list, tuple)):
        raise ValidationError("trade_types must be a list", details={"trade_types": "list of workflow types"})
    types = []
    for item in value:
        key = template_store.normalize_workflow_type(item)
        if key and key not in types:
            types.append(key)
    return types


def create_project(data: dict, *, initialize_workflow: bool = True) -> Project:
    """Create a project and (best-effort) its workflow trackers and first alerts.

    Workflow initialization failures are logged; the project is kept.
    """
    name = str(data.get("name", "") or "").strip()
    if not name:
        raise ValidationError("name is required", details={"name": "required"})

    project_number = data.get("project_number")
    if project_number is not None:
        try:
            project_number = int(project_number)
        except (TypeError, ValueError):
            raise ValidationError("project_number must be an integer", details={"project_number": project_number})
        if Project.query.filter_by(project_number=project_number).first():
            raise ConflictError("Project", "project_number", str(project_number))

    status = str(data.get("status") or "PENDING").strip().upper()
    if status not in PROJECT_STATUSES:
        raise ValidationError(f"Unknown status: {status}", details={"status": sorted(PROJECT_STATUSES)})

    starting_phase = data.get("starting_phase")
    if starting_phase and PhaseKey.parse(starting_phase) is None:
        raise ValidationError(f"Unknown phase: {starting_phase}",
                              details={"starting_phase": [k.value for k in PhaseKey]})

    project_type = (
        template_store.normalize_workflow_type(data.get("project_type"))
        or template_store.default_workflow_type()
    )
    project = Project(
        project_number=project_number,
        name=name,
        customer_name=(data.get("customer_name") or "").strip() or None,
        project_type=project_type,
        trade_types=_parse_trade_types(data.get("trade_types")),
        status=status,
        starting_phase=PhaseKey.parse(starting_phase).value if starting_phase else None,
    )
    db.session.add(project)
    db.session.commit()
    logger.info("Project created: %s (%s)", project.id, project.name, extra={"project_id": project.id})

    if initialize_workflow:
        from app.services import workflow_service

        try:
            workflow_service.initialize_workflow(
                project.id,
                project.declared_workflow_types(),
                starting_phase=starting_phase,
                primary_type=project_type,
            )
        except Exception:
            db.session.rollback()
            logger.exception("Workflow initialization failed for project %s", project.id,
                             extra={"project_id": project.id})
        db.session.refresh(project)
    return project


def get_project(project_id: int) -> Project:
    project = db.session.get(Project, project_id)
    if project is None:
        raise UnknownProjectError(project_id)
    return project


def list_projects(status: str | None = None) -> list[Project]:
    query = Project.query
    if status:
        query = query.filter_by(status=status.strip().upper())
    return query.order_by(Project.created_at.desc(), Project.id.desc()).all()


def delete_project(project_id: int) -> None:
    """Delete a project together with its trackers, alerts and overrides."""
    project = get_project(project_id)
    db.session.delete(project)
    db.session.commit()
    logger.info("Project deleted: %s", project_id, extra={"project_id": project_id})
