"""Workflow template blueprint.

Endpoint groups:
  Templates         GET  /api/v1/workflow-templates
                    GET  /api/v1/workflow-templates/<type>
  Import            POST /api/v1/workflow-templates/<type>/import
  Import sessions   POST /api/v1/workflow-templates/import-sessions
                    POST /api/v1/workflow-templates/import-sessions/<sid>/rows
                    POST /api/v1/workflow-templates/import-sessions/<sid>/commit
                    DELETE /api/v1/workflow-templates/import-sessions/<sid>
  Display labels    GET  /api/v1/workflow-templates/display-label?name=&phase=&workflow_type=
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from app.services import template_store
from app.services.display_mapper import map_line_item_to_display
from app.services.template_import import import_rows, import_sessions
from app.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

template_bp = Blueprint("workflow_templates", __name__, url_prefix="/api/v1/workflow-templates")
register_error_handlers(template_bp)


def _rows_from_body():
    data = request.get_json(silent=True) or {}
    rows = data.get("rows")
    if rows is None:
        return None, data, api_error(E.VALIDATION_REQUIRED, "rows is required")
    return rows, data, None


# ── Templates ────────────────────────────────────────────────────────────────


@template_bp.route("", methods=["GET"])
def list_templates():
    types = template_store.list_workflow_types()
    return jsonify({
        "workflow_types": [
            {"workflow_type": t, "total_line_items": template_store.get_total_line_item_count(t)}
            for t in types
        ],
    })


@template_bp.route("/display-label", methods=["GET"])
def display_label():
    name = request.args.get("name") or request.args.get("line_item_id")
    if not name:
        return api_error(E.VALIDATION_REQUIRED, "name or line_item_id is required")
    workflow_type = request.args.get("workflow_type")
    template = template_store.find_template(workflow_type) if workflow_type else None
    label = map_line_item_to_display(name, request.args.get("phase"), template)
    return jsonify(label.to_dict())


@template_bp.route("/<string:workflow_type>", methods=["GET"])
def get_template(workflow_type):
    template = template_store.get_template(workflow_type)
    return jsonify(template.to_dict())


# ── Import ───────────────────────────────────────────────────────────────────


@template_bp.route("/<string:workflow_type>/import", methods=["POST"])
def import_template(workflow_type):
    rows, data, err = _rows_from_body()
    if err:
        return err
    summary = import_rows(workflow_type, rows, replace=data.get("replace", True))
    return jsonify(summary.to_dict()), 201


@template_bp.route("/import-sessions", methods=["POST"])
def create_import_session():
    data = request.get_json(silent=True) or {}
    if not data.get("workflow_type"):
        return api_error(E.VALIDATION_REQUIRED, "workflow_type is required")
    session = import_sessions.create(data["workflow_type"], replace=data.get("replace", True))
    return jsonify({"session_id": session["id"], "workflow_type": session["workflow_type"]}), 201


@template_bp.route("/import-sessions/<string:session_id>/rows", methods=["POST"])
def add_import_rows(session_id):
    rows, _, err = _rows_from_body()
    if err:
        return err
    session = import_sessions.add_rows(session_id, rows)
    return jsonify({"session_id": session_id, "staged_rows": len(session["rows"])})


@template_bp.route("/import-sessions/<string:session_id>/commit", methods=["POST"])
def commit_import_session(session_id):
    summary = import_sessions.commit(session_id)
    return jsonify(summary.to_dict()), 201


@template_bp.route("/import-sessions/<string:session_id>", methods=["DELETE"])
def discard_import_session(session_id):
    import_sessions.discard(session_id)
    return jsonify({"message": "Import session discarded"})
