"""
Workflow Template Store

Holds per-workflow-type hierarchy definitions (Phase → Section → Line Item)
as immutable snapshots and their canonical flattened ordering.

Snapshots are built from the active template rows and served from the
process-wide cache (``cache_service``); every template edit must call
``invalidate_template_cache``.

Usage:
    from app.services import template_store

    template = template_store.get_template("ROOFING")
    total = template_store.get_total_line_item_count("ROOFING")
    for entry in template_store.flatten_sequence("ROOFING"):
        ...
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import NamedTuple

from flask import current_app, has_app_context
from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import TemplateUnavailableError
from app.models import db
from app.models.workflow import (
    DEFAULT_ALERT_DAYS,
    DEFAULT_PRIORITY,
    DEFAULT_RESPONSIBLE_ROLE,
    WorkflowLineItem,
    WorkflowPhase,
    WorkflowSection,
)
from app.services import cache_service

logger = logging.getLogger(__name__)

# Progress denominator used when a template cannot be resolved.
DEFAULT_TOTAL_LINE_ITEMS = 24


# ═════════════════════════════════════════════════════════════════════════════
# Snapshot types
# ═════════════════════════════════════════════════════════════════════════════


class SequenceEntry(NamedTuple):
    """Coordinates of one line item in the flattened sequence."""
    phase_id: int
    section_id: int
    line_item_id: int


@dataclass(frozen=True)
class TemplateLineItem:
    id: int
    name: str
    display_order: int
    letter: str | None = None
    description: str = ""
    responsible_role: str = DEFAULT_RESPONSIBLE_ROLE
    priority: str = DEFAULT_PRIORITY
    alert_days: int = DEFAULT_ALERT_DAYS

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "display_order": self.display_order,
            "letter": self.letter,
            "description": self.description,
            "responsible_role": self.responsible_role,
            "priority": self.priority,
            "alert_days": self.alert_days,
        }


@dataclass(frozen=True)
class TemplateSection:
    id: int
    name: str
    display_order: int
    display_name: str | None = None
    line_items: tuple[TemplateLineItem, ...] = ()

    @property
    def label(self) -> str:
        return self.display_name or self.name

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "display_name": self.display_name,
            "display_order": self.display_order,
            "line_items": [li.to_dict() for li in self.line_items],
        }


@dataclass(frozen=True)
class TemplatePhase:
    id: int
    phase_type: str
    display_order: int
    display_name: str | None = None
    sections: tuple[TemplateSection, ...] = ()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "phase_type": self.phase_type,
            "display_name": self.display_name,
            "display_order": self.display_order,
            "sections": [s.to_dict() for s in self.sections],
        }


@dataclass(frozen=True)
class WorkflowTemplate:
    """Immutable template snapshot with precomputed sequence and lookups."""

    workflow_type: str
    phases: tuple[TemplatePhase, ...] = ()
    sequence: tuple[SequenceEntry, ...] = field(init=False, repr=False, compare=False)
    _positions: dict = field(init=False, repr=False, compare=False)
    _line_items: dict = field(init=False, repr=False, compare=False)
    _sections: dict = field(init=False, repr=False, compare=False)
    _phases: dict = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        sequence, positions, line_items, sections, phases = [], {}, {}, {}, {}
        for phase in self.phases:
            phases[phase.id] = phase
            for section in phase.sections:
                sections[section.id] = section
                for item in section.line_items:
                    positions[item.id] = len(sequence)
                    line_items[item.id] = item
                    sequence.append(SequenceEntry(phase.id, section.id, item.id))
        object.__setattr__(self, "sequence", tuple(sequence))
        object.__setattr__(self, "_positions", positions)
        object.__setattr__(self, "_line_items", line_items)
        object.__setattr__(self, "_sections", sections)
        object.__setattr__(self, "_phases", phases)

    def __len__(self) -> int:
        return len(self.sequence)

    def __contains__(self, line_item_id) -> bool:
        return line_item_id in self._positions

    def entry_for(self, line_item_id: int) -> SequenceEntry | None:
        idx = self._positions.get(line_item_id)
        return self.sequence[idx] if idx is not None else None

    def line_item(self, line_item_id: int | None) -> TemplateLineItem | None:
        return self._line_items.get(line_item_id)

    def section(self, section_id: int | None) -> TemplateSection | None:
        return self._sections.get(section_id)

    def phase(self, phase_id: int | None) -> TemplatePhase | None:
        return self._phases.get(phase_id)

    def phase_by_type(self, phase_type: str) -> TemplatePhase | None:
        for phase in self.phases:
            if phase.phase_type == phase_type:
                return phase
        return None

    def to_dict(self) -> dict:
        return {
            "workflow_type": self.workflow_type,
            "total_line_items": len(self.sequence),
            "phases": [p.to_dict() for p in self.phases],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WorkflowTemplate":
        phases = []
        for p in data.get("phases", []):
            sections = []
            for s in p.get("sections", []):
                items = tuple(
                    TemplateLineItem(
                        id=li["id"],
                        name=li["name"],
                        display_order=li["display_order"],
                        letter=li.get("letter"),
                        description=li.get("description") or "",
                        responsible_role=li.get("responsible_role") or DEFAULT_RESPONSIBLE_ROLE,
                        priority=li.get("priority") or DEFAULT_PRIORITY,
                        alert_days=DEFAULT_ALERT_DAYS if li.get("alert_days") is None else li["alert_days"],
                    )
                    for li in s.get("line_items", [])
                )
                sections.append(TemplateSection(
                    id=s["id"], name=s["name"], display_order=s["display_order"],
                    display_name=s.get("display_name"), line_items=items,
                ))
            phases.append(TemplatePhase(
                id=p["id"], phase_type=p["phase_type"], display_order=p["display_order"],
                display_name=p.get("display_name"), sections=tuple(sections),
            ))
        return cls(workflow_type=data["workflow_type"], phases=tuple(phases))


# ═════════════════════════════════════════════════════════════════════════════
# Loading
# ═════════════════════════════════════════════════════════════════════════════


def normalize_workflow_type(workflow_type) -> str:
    return str(workflow_type or "").strip().upper()


def _config(key, default):
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def _load_template_dict(workflow_type: str) -> dict | None:
    """Build the snapshot dict from active template rows, or None if empty."""
    phases = (
        WorkflowPhase.query
        .filter_by(workflow_type=workflow_type, is_active=True)
        .order_by(WorkflowPhase.display_order, WorkflowPhase.id)
        .all()
    )
    if not phases:
        return None

    phase_ids = [p.id for p in phases]
    sections = (
        WorkflowSection.query
        .filter(WorkflowSection.phase_id.in_(phase_ids), WorkflowSection.is_active.is_(True))
        .order_by(WorkflowSection.display_order, WorkflowSection.id)
        .all()
    )
    section_ids = [s.id for s in sections]
    items = []
    if section_ids:
        items = (
            WorkflowLineItem.query
            .filter(WorkflowLineItem.section_id.in_(section_ids), WorkflowLineItem.is_active.is_(True))
            .order_by(WorkflowLineItem.display_order, WorkflowLineItem.id)
            .all()
        )
    if not items:
        return None

    items_by_section: dict[int, list] = {}
    for li in items:
        items_by_section.setdefault(li.section_id, []).append({
            "id": li.id,
            "name": li.name,
            "display_order": li.display_order,
            "letter": li.letter,
            "description": li.description or "",
            "responsible_role": li.responsible_role,
            "priority": li.priority,
            "alert_days": li.alert_days,
        })
    sections_by_phase: dict[int, list] = {}
    for s in sections:
        sections_by_phase.setdefault(s.phase_id, []).append({
            "id": s.id,
            "name": s.name,
            "display_name": s.display_name,
            "display_order": s.display_order,
            "line_items": items_by_section.get(s.id, []),
        })
    return {
        "workflow_type": workflow_type,
        "phases": [
            {
                "id": p.id,
                "phase_type": p.phase_type,
                "display_name": p.display_name,
                "display_order": p.display_order,
                "sections": sections_by_phase.get(p.id, []),
            }
            for p in phases
        ],
    }


# ═════════════════════════════════════════════════════════════════════════════
# Public API
# ═════════════════════════════════════════════════════════════════════════════


def get_template(workflow_type: str) -> WorkflowTemplate:
    """Return the template snapshot for *workflow_type*.

    Raises:
        TemplateUnavailableError: no active line items exist for the type.
    """
    wf_type = normalize_workflow_type(workflow_type)
    if not wf_type:
        raise TemplateUnavailableError(str(workflow_type), reason="workflow type is empty")

    ttl = _config("TEMPLATE_CACHE_TTL", cache_service.TEMPLATE_TTL)
    data = cache_service.get_cached(
        cache_service.template_key(wf_type),
        ttl=ttl,
        loader=lambda: _load_template_dict(wf_type),
    )
    if not data:
        raise TemplateUnavailableError(wf_type, reason="no active line items")
    return WorkflowTemplate.from_dict(data)


def get_total_line_item_count(workflow_type: str) -> int:
    """Progress denominator for *workflow_type*.

    Never raises: an unavailable template (or a failed lookup) yields the
    configured default estimate.
    """
    try:
        return len(get_template(workflow_type))
    except TemplateUnavailableError as exc:
        logger.warning("%s; using default total line items", exc)
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.warning("Template lookup failed for %s (%s); using default total line items",
                       workflow_type, exc)
    return default_total_line_items()


def default_total_line_items() -> int:
    return _config("WORKFLOW_DEFAULT_TOTAL_LINE_ITEMS", DEFAULT_TOTAL_LINE_ITEMS)


def default_workflow_type() -> str:
    return normalize_workflow_type(_config("DEFAULT_WORKFLOW_TYPE", "ROOFING"))


def find_template(workflow_type: str) -> WorkflowTemplate | None:
    """Soft variant of ``get_template``: logs and returns None when unavailable."""
    try:
        return get_template(workflow_type)
    except TemplateUnavailableError as exc:
        logger.warning("%s", exc, extra={"workflow_type": normalize_workflow_type(workflow_type)})
        return None


def flatten_sequence(workflow_type: str) -> list[SequenceEntry]:
    """Canonical phase → section → line item order for *workflow_type*."""
    return list(get_template(workflow_type).sequence)


def list_workflow_types() -> list[str]:
    rows = (
        db.session.query(WorkflowPhase.workflow_type)
        .filter(WorkflowPhase.is_active.is_(True))
        .distinct()
        .order_by(WorkflowPhase.workflow_type)
        .all()
    )
    return [r[0] for r in rows]


def invalidate_template_cache(workflow_type: str | None = None) -> int:
    """Drop cached snapshots (one type, or all of them)."""
    if workflow_type:
        cache_service.delete_cached(cache_service.template_key(normalize_workflow_type(workflow_type)))
        removed = 1
    else:
        removed = cache_service.delete_prefix(cache_service.TEMPLATE_PREFIX)
    logger.debug("Template cache invalidated: %s", workflow_type or "all")
    return removed
