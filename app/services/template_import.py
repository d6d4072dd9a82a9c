"""
Workflow Template Import

Accepts template rows already normalized to ``(phase, section, line_item)``
and upserts them as the active template of one workflow type. File parsing
happens upstream; this module only validates and persists.

Row keys:
    phase (required)        canonical phase key or alias (SECOND_SUPP, 2ND_SUPP)
    section (required)      section name, unique within the phase
    line_item (required)    line item name, unique within the section
    section_display_name    label shown in the UI (defaults to the name)
    letter, description, responsible_role, priority, alert_days
    section_order, line_item_order   explicit display_order overrides

Large imports can be staged through an import session: rows are appended
in chunks and committed in one go. Sessions live in the shared cache with
a TTL (IMPORT_SESSION_TTL) and expire on their own.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

from flask import current_app, has_app_context

from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.workflow import (
    ALERT_PRIORITIES,
    DEFAULT_ALERT_DAYS,
    DEFAULT_PRIORITY,
    DEFAULT_RESPONSIBLE_ROLE,
    PHASE_TYPES,
    RESPONSIBLE_ROLES,
    WorkflowLineItem,
    WorkflowPhase,
    WorkflowSection,
    normalize_phase_type,
)
from app.services import cache_service, template_store

logger = logging.getLogger(__name__)

PHASE_DISPLAY_NAMES = {
    "LEAD": "Lead",
    "PROSPECT": "Prospect",
    "APPROVED": "Approved",
    "EXECUTION": "Execution",
    "SECOND_SUPPLEMENT": "2nd Supplement",
    "COMPLETION": "Completion",
}


@dataclass
class ImportSummary:
    workflow_type: str
    phases: int = 0
    sections: int = 0
    line_items: int = 0
    created: int = 0
    updated: int = 0
    retired: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


# ═════════════════════════════════════════════════════════════════════════════
# Validation
# ═════════════════════════════════════════════════════════════════════════════


def _text(row: dict, key: str) -> str:
    return str(row.get(key) or "").strip()


def _optional_int(value, field_name: str, errors: list, idx: int, minimum: int = 0):
    if value is None or value == "":
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        errors.append(f"row {idx}: {field_name} must be an integer")
        return None
    if number < minimum:
        errors.append(f"row {idx}: {field_name} must be >= {minimum}")
        return None
    return number


def validate_rows(rows, *, start_index: int = 1) -> list[dict]:
    """Normalize and check rows; raise ValidationError listing every problem."""
    if not isinstance(rows, list):
        raise ValidationError("rows must be a list", details={"rows": "list of objects"})

    errors: list[str] = []
    clean: list[dict] = []
    for idx, row in enumerate(rows, start=start_index):
        if not isinstance(row, dict):
            errors.append(f"row {idx}: must be an object")
            continue
        phase = normalize_phase_type(row.get("phase"))
        section = _text(row, "section")
        line_item = _text(row, "line_item")
        if phase is None:
            errors.append(f"row {idx}: unknown phase {row.get('phase')!r}")
        if not section:
            errors.append(f"row {idx}: section is required")
        if not line_item:
            errors.append(f"row {idx}: line_item is required")

        role = (_text(row, "responsible_role") or DEFAULT_RESPONSIBLE_ROLE).upper().replace(" ", "_")
        if role not in RESPONSIBLE_ROLES:
            errors.append(f"row {idx}: unknown responsible_role {role!r}")
        priority = (_text(row, "priority") or DEFAULT_PRIORITY).upper()
        if priority not in ALERT_PRIORITIES:
            errors.append(f"row {idx}: unknown priority {priority!r}")

        alert_days = _optional_int(row.get("alert_days"), "alert_days", errors, idx)
        clean.append({
            "phase": phase,
            "section": section,
            "section_display_name": _text(row, "section_display_name") or None,
            "line_item": line_item,
            "letter": _text(row, "letter") or None,
            "description": _text(row, "description"),
            "responsible_role": role,
            "priority": priority,
            "alert_days": DEFAULT_ALERT_DAYS if alert_days is None else alert_days,
            "section_order": _optional_int(row.get("section_order"), "section_order", errors, idx, 1),
            "line_item_order": _optional_int(row.get("line_item_order"), "line_item_order", errors, idx, 1),
        })

    if errors:
        raise ValidationError(f"{len(errors)} invalid template row(s)", details={"rows": errors})
    return clean


def _check_structure(rows: list[dict]) -> None:
    """Duplicate line items and clashing explicit display orders."""
    errors = []
    seen_items = set()
    section_orders: dict[tuple, dict] = {}
    item_orders: dict[tuple, dict] = {}
    for row in rows:
        key = (row["phase"], row["section"], row["line_item"])
        if key in seen_items:
            errors.append(f"duplicate line item {row['line_item']!r} in {row['phase']}/{row['section']}")
        seen_items.add(key)

        if row["section_order"] is not None:
            orders = section_orders.setdefault(row["phase"], {})
            other = orders.setdefault(row["section_order"], row["section"])
            if other != row["section"]:
                errors.append(
                    f"section_order {row['section_order']} used by {other!r} and {row['section']!r} in {row['phase']}"
                )
        if row["line_item_order"] is not None:
            orders = item_orders.setdefault((row["phase"], row["section"]), {})
            other = orders.setdefault(row["line_item_order"], row["line_item"])
            if other != row["line_item"]:
                errors.append(
                    f"line_item_order {row['line_item_order']} used twice in {row['phase']}/{row['section']}"
                )
    if errors:
        raise ValidationError("Template structure is invalid", details={"rows": errors})


# ═════════════════════════════════════════════════════════════════════════════
# Upsert
# ═════════════════════════════════════════════════════════════════════════════


def _letter(position: int) -> str:
    letters = ""
    position += 1
    while position:
        position, rem = divmod(position - 1, 26)
        letters = chr(ord("A") + rem) + letters
    return letters


def import_rows(workflow_type: str, rows, *, replace: bool = True) -> ImportSummary:
    """Validate *rows* and upsert them as the template of *workflow_type*.

    With ``replace`` (default) template rows missing from the import are
    retired (``is_active = False``), never deleted.
    """
    wf_type = template_store.normalize_workflow_type(workflow_type)
    if not wf_type:
        raise ValidationError("workflow_type is required", details={"workflow_type": "required"})
    clean = validate_rows(rows)
    if not clean:
        raise ValidationError("No template rows to import", details={"rows": "empty"})
    _check_structure(clean)

    summary = ImportSummary(workflow_type=wf_type)

    # phase -> section -> [rows], in first-appearance order
    grouped: dict[str, dict[str, list[dict]]] = {}
    for row in clean:
        grouped.setdefault(row["phase"], {}).setdefault(row["section"], []).append(row)

    existing_phases = {p.phase_type: p for p in WorkflowPhase.query.filter_by(workflow_type=wf_type).all()}
    kept_phase_ids, kept_section_ids, kept_item_ids = set(), set(), set()

    for phase_type in PHASE_TYPES:
        sections = grouped.get(phase_type)
        if not sections:
            continue
        phase = existing_phases.get(phase_type)
        if phase is None:
            phase = WorkflowPhase(workflow_type=wf_type, phase_type=phase_type)
            db.session.add(phase)
            summary.created += 1
        else:
            summary.updated += 1
        phase.display_name = PHASE_DISPLAY_NAMES.get(phase_type, phase_type)
        phase.display_order = PHASE_TYPES.index(phase_type) + 1
        phase.is_active = True
        db.session.flush()
        kept_phase_ids.add(phase.id)
        summary.phases += 1

        existing_sections = {s.name: s for s in WorkflowSection.query.filter_by(phase_id=phase.id).all()}
        for s_pos, (section_name, section_rows) in enumerate(sections.items()):
            section = existing_sections.get(section_name)
            if section is None:
                section = WorkflowSection(phase_id=phase.id, name=section_name)
                db.session.add(section)
                summary.created += 1
            else:
                summary.updated += 1
            first = section_rows[0]
            section.display_name = first["section_display_name"] or section.display_name
            section.display_order = first["section_order"] or s_pos + 1
            section.is_active = True
            db.session.flush()
            kept_section_ids.add(section.id)
            summary.sections += 1

            existing_items = {li.name: li for li in WorkflowLineItem.query.filter_by(section_id=section.id).all()}
            for i_pos, row in enumerate(section_rows):
                item = existing_items.get(row["line_item"])
                if item is None:
                    item = WorkflowLineItem(section_id=section.id, name=row["line_item"])
                    db.session.add(item)
                    summary.created += 1
                else:
                    summary.updated += 1
                item.letter = row["letter"] or _letter(i_pos)
                item.description = row["description"]
                item.display_order = row["line_item_order"] or i_pos + 1
                item.responsible_role = row["responsible_role"]
                item.priority = row["priority"]
                item.alert_days = row["alert_days"]
                item.is_active = True
                db.session.flush()
                kept_item_ids.add(item.id)
                summary.line_items += 1

    if replace:
        summary.retired = _retire_missing(wf_type, kept_phase_ids, kept_section_ids, kept_item_ids)

    db.session.commit()
    template_store.invalidate_template_cache(wf_type)
    logger.info("Template imported: %s", summary.to_dict(), extra={"workflow_type": wf_type})
    return summary


def _retire_missing(wf_type: str, phase_ids: set, section_ids: set, item_ids: set) -> int:
    retired = 0
    for phase in WorkflowPhase.query.filter_by(workflow_type=wf_type, is_active=True).all():
        if phase.id not in phase_ids:
            phase.is_active = False
            retired += 1
        for section in phase.sections:
            if section.is_active and section.id not in section_ids:
                section.is_active = False
                retired += 1
            for item in section.line_items:
                if item.is_active and item.id not in item_ids:
                    item.is_active = False
                    retired += 1
    return retired


# ═════════════════════════════════════════════════════════════════════════════
# Import sessions
# ═════════════════════════════════════════════════════════════════════════════


class ImportSessionStore:
    """Keyed, TTL-bounded staging area for chunked imports."""

    PREFIX = "wfimport:"
    DEFAULT_TTL = 1800

    def __init__(self):
        self._lock = threading.Lock()

    def _ttl(self) -> int:
        if has_app_context():
            return current_app.config.get("IMPORT_SESSION_TTL", self.DEFAULT_TTL)
        return self.DEFAULT_TTL

    def _key(self, session_id: str) -> str:
        return f"{self.PREFIX}{session_id}"

    def create(self, workflow_type: str, *, replace: bool = True) -> dict:
        wf_type = template_store.normalize_workflow_type(workflow_type)
        if not wf_type:
            raise ValidationError("workflow_type is required", details={"workflow_type": "required"})
        session = {
            "id": uuid.uuid4().hex,
            "workflow_type": wf_type,
            "replace": bool(replace),
            "rows": [],
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        cache_service.set_cached(self._key(session["id"]), session, ttl=self._ttl())
        return session

    def get(self, session_id: str) -> dict:
        session = cache_service.get_cached(self._key(session_id))
        if session is None:
            raise NotFoundError(resource="ImportSession", resource_id=session_id)
        return session

    def add_rows(self, session_id: str, rows) -> dict:
        """Validate and append a chunk; the whole chunk is rejected on any error."""
        with self._lock:
            session = self.get(session_id)
            validate_rows(rows, start_index=len(session["rows"]) + 1)
            session["rows"].extend(rows)
            cache_service.set_cached(self._key(session_id), session, ttl=self._ttl())
        return session

    def commit(self, session_id: str) -> ImportSummary:
        """Import the staged rows; the session survives a failed import."""
        with self._lock:
            session = self.get(session_id)
            summary = import_rows(session["workflow_type"], session["rows"], replace=session["replace"])
            cache_service.delete_cached(self._key(session_id))
        return summary

    def discard(self, session_id: str) -> None:
        self.get(session_id)
        cache_service.delete_cached(self._key(session_id))


import_sessions = ImportSessionStore()
