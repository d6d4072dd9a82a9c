"""Project workflow blueprint.

REST API for projects, workflow progression, alerts and phase overrides.

Endpoint groups:
  Projects          GET/POST /api/v1/projects
                    GET/DELETE /api/v1/projects/<id>
  Workflow          POST /api/v1/projects/<id>/workflow/initialize
                    GET  /api/v1/projects/<id>/workflow/position
                    GET  /api/v1/projects/<id>/workflow/trackers
                    POST /api/v1/projects/<id>/workflow/ensure-ready
                    POST /api/v1/projects/<id>/workflow/line-items/<lid>/complete
                    POST /api/v1/projects/<id>/workflow/line-items/<lid>/uncomplete
  Alerts            GET  /api/v1/projects/<id>/alerts
                    POST /api/v1/alerts/<id>/dismiss
  Notifications     GET  /api/v1/projects/<id>/notifications
  Phase override    POST/DELETE /api/v1/projects/<id>/phase-override

Service layer owns all business logic and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from app.services import alert_generator, project_service, workflow_service
from app.services import tracker_repository as repo
from app.services.notification import NotificationService
from app.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

workflow_bp = Blueprint("workflow", __name__, url_prefix="/api/v1")
register_error_handlers(workflow_bp)


def _body() -> dict:
    return request.get_json(silent=True) or {}


# ═════════════════════════════════════════════════════════════════════════
# Projects
# ═════════════════════════════════════════════════════════════════════════


@workflow_bp.route("/projects", methods=["POST"])
def create_project():
    data = _body()
    if not str(data.get("name", "") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "name is required")
    project = project_service.create_project(data)
    return jsonify(project.to_dict()), 201


@workflow_bp.route("/projects", methods=["GET"])
def list_projects():
    projects = project_service.list_projects(request.args.get("status"))
    return jsonify({"projects": [p.to_dict() for p in projects], "total": len(projects)})


@workflow_bp.route("/projects/<int:project_id>", methods=["GET"])
def get_project(project_id):
    project = project_service.get_project(project_id)
    return jsonify(project.to_dict())


@workflow_bp.route("/projects/<int:project_id>", methods=["DELETE"])
def delete_project(project_id):
    project_service.delete_project(project_id)
    return jsonify({"message": "Project deleted"}), 200


# ═════════════════════════════════════════════════════════════════════════
# Workflow progression
# ═════════════════════════════════════════════════════════════════════════


@workflow_bp.route("/projects/<int:project_id>/workflow/initialize", methods=["POST"])
def initialize_workflow(project_id):
    data = _body()
    workflow_types = data.get("workflow_types")
    if not workflow_types:
        return api_error(E.VALIDATION_REQUIRED, "workflow_types is required")
    states = workflow_service.initialize_workflow(
        project_id,
        workflow_types,
        starting_phase=data.get("starting_phase"),
        primary_type=data.get("primary_type"),
        trade_names=data.get("trade_names"),
    )
    return jsonify({"trackers": [s.to_dict() for s in states]}), 201


@workflow_bp.route("/projects/<int:project_id>/workflow/position", methods=["GET"])
def get_position(project_id):
    return jsonify(workflow_service.get_position(project_id))


@workflow_bp.route("/projects/<int:project_id>/workflow/trackers", methods=["GET"])
def list_trackers(project_id):
    project_service.get_project(project_id)
    return jsonify({"trackers": [s.to_dict() for s in repo.list_for_project(project_id)]})


@workflow_bp.route("/projects/<int:project_id>/workflow/ensure-ready", methods=["POST"])
def ensure_ready(project_id):
    states = workflow_service.ensure_ready(project_id)
    return jsonify({"trackers": [s.to_dict() for s in states]})


@workflow_bp.route(
    "/projects/<int:project_id>/workflow/line-items/<int:line_item_id>/complete", methods=["POST"],
)
def complete_line_item(project_id, line_item_id):
    data = _body()
    result = workflow_service.complete_line_item(
        project_id,
        line_item_id,
        data.get("notes"),
        workflow_type=data.get("workflow_type"),
        completed_by=data.get("completed_by"),
    )
    return jsonify(result)


@workflow_bp.route(
    "/projects/<int:project_id>/workflow/line-items/<int:line_item_id>/uncomplete", methods=["POST"],
)
def uncomplete_line_item(project_id, line_item_id):
    data = _body()
    result = workflow_service.uncomplete_line_item(
        project_id, line_item_id, workflow_type=data.get("workflow_type"),
    )
    return jsonify(result)


# ═════════════════════════════════════════════════════════════════════════
# Alerts & notifications
# ═════════════════════════════════════════════════════════════════════════


@workflow_bp.route("/projects/<int:project_id>/alerts", methods=["GET"])
def list_project_alerts(project_id):
    project_service.get_project(project_id)
    alerts = alert_generator.list_alerts(project_id, request.args.get("status"))
    return jsonify({"alerts": [a.to_dict() for a in alerts], "total": len(alerts)})


@workflow_bp.route("/alerts/<int:alert_id>/dismiss", methods=["POST"])
def dismiss_alert(alert_id):
    alert = alert_generator.dismiss_alert(alert_id)
    return jsonify(alert.to_dict())


@workflow_bp.route("/projects/<int:project_id>/notifications", methods=["GET"])
def list_project_notifications(project_id):
    project_service.get_project(project_id)
    items, total = NotificationService.list_for_project(
        project_id,
        recipient=request.args.get("recipient"),
        unread_only=request.args.get("unread_only", "false").lower() == "true",
        limit=request.args.get("limit", 50, type=int),
        offset=request.args.get("offset", 0, type=int),
    )
    return jsonify({"notifications": [n.to_dict() for n in items], "total": total})


@workflow_bp.route("/projects/<int:project_id>/notifications/mark-all-read", methods=["POST"])
def mark_all_notifications_read(project_id):
    project_service.get_project(project_id)
    count = NotificationService.mark_all_read(project_id, recipient=_body().get("recipient"))
    return jsonify({"marked_read": count})


# ═════════════════════════════════════════════════════════════════════════
# Phase override
# ═════════════════════════════════════════════════════════════════════════


@workflow_bp.route("/projects/<int:project_id>/phase-override", methods=["POST"])
def set_phase_override(project_id):
    data = _body()
    if not data.get("to_phase"):
        return api_error(E.VALIDATION_REQUIRED, "to_phase is required")
    suppress = data.get("suppress_alerts_for") or []
    if not isinstance(suppress, list):
        return api_error(E.VALIDATION_INVALID, "suppress_alerts_for must be a list")
    override = workflow_service.set_phase_override(
        project_id,
        data["to_phase"],
        suppress_alerts_for=suppress,
        reason=data.get("reason"),
        overridden_by=data.get("overridden_by"),
    )
    return jsonify(override.to_dict()), 201


@workflow_bp.route("/projects/<int:project_id>/phase-override", methods=["DELETE"])
def clear_phase_override(project_id):
    cleared = workflow_service.clear_phase_override(project_id)
    return jsonify({"cleared": cleared})
