"""
Workflow Progression Engine

Pure state-transition logic over a tracker snapshot and a template snapshot.
Nothing in this module touches the database, the cache or the clock except
through arguments (``completed_at`` defaults to "now").

Position rule: the pointer triple always names the FIRST sequence entry
that is not yet resolved (completed or skipped). Entries may be completed
out of order, so completing an item never simply means "go to index + 1".

Usage:
    from app.services import progression_engine as engine

    result = engine.complete_line_item(tracker, template, line_item_id)
    if result.outcome is engine.CompletionOutcome.ALREADY_COMPLETED:
        ...
    progress = engine.compute_progress(result.tracker, template)
    phase = engine.derive_phase_key(result.tracker, template)
"""

from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Mapping

from app.core.exceptions import UnknownLineItemError
from app.models.workflow import normalize_phase_type
from app.services.template_store import (
    SequenceEntry,
    TemplateLineItem,
    TemplatePhase,
    TemplateSection,
    WorkflowTemplate,
)


# ═════════════════════════════════════════════════════════════════════════════
# Enums & lookup tables
# ═════════════════════════════════════════════════════════════════════════════

class PhaseKey(str, Enum):
    LEAD = "LEAD"
    PROSPECT = "PROSPECT"
    APPROVED = "APPROVED"
    EXECUTION = "EXECUTION"
    SECOND_SUPPLEMENT = "SECOND_SUPPLEMENT"
    COMPLETION = "COMPLETION"

    @classmethod
    def parse(cls, value) -> "PhaseKey | None":
        key = normalize_phase_type(value)
        return cls(key) if key else None


class CompletionOutcome(str, Enum):
    COMPLETED = "completed"
    ALREADY_COMPLETED = "already_completed"


# Used when a project has no tracker, or its main template is unavailable.
STATUS_TO_PHASE: dict[str, PhaseKey] = {
    "PENDING": PhaseKey.LEAD,
    "LEAD": PhaseKey.LEAD,
    "PROSPECT": PhaseKey.PROSPECT,
    "APPROVED": PhaseKey.APPROVED,
    "IN_PROGRESS": PhaseKey.EXECUTION,
    "EXECUTION": PhaseKey.EXECUTION,
    "SECOND_SUPPLEMENT": PhaseKey.SECOND_SUPPLEMENT,
    "COMPLETED": PhaseKey.COMPLETION,
    "COMPLETION": PhaseKey.COMPLETION,
}


# ═════════════════════════════════════════════════════════════════════════════
# State snapshots
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class CompletedItem:
    line_item_id: int
    section_id: int | None
    phase_id: int | None
    completed_at: datetime
    completed_by: str | None = None
    notes: str | None = None
    is_skipped: bool = False

    def to_dict(self) -> dict:
        return {
            "line_item_id": self.line_item_id,
            "section_id": self.section_id,
            "phase_id": self.phase_id,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "completed_by": self.completed_by,
            "notes": self.notes,
            "is_skipped": self.is_skipped,
        }


@dataclass(frozen=True)
class TrackerState:
    """Snapshot of one ProjectWorkflowTracker row and its completed items."""

    project_id: int
    workflow_type: str
    id: int | None = None
    trade_name: str | None = None
    is_main_workflow: bool = False
    current_phase_id: int | None = None
    current_section_id: int | None = None
    current_line_item_id: int | None = None
    total_line_items: int = 0
    completed_items: tuple[CompletedItem, ...] = ()
    version: int | None = None
    starting_phase: str | None = None

    @property
    def pointer(self) -> tuple[int | None, int | None, int | None]:
        return (self.current_phase_id, self.current_section_id, self.current_line_item_id)

    @property
    def is_exhausted(self) -> bool:
        return self.pointer == (None, None, None)

    @property
    def completed_line_item_ids(self) -> frozenset[int]:
        return frozenset(c.line_item_id for c in self.completed_items if not c.is_skipped)

    @property
    def skipped_line_item_ids(self) -> frozenset[int]:
        return frozenset(c.line_item_id for c in self.completed_items if c.is_skipped)

    @property
    def resolved_line_item_ids(self) -> frozenset[int]:
        return frozenset(c.line_item_id for c in self.completed_items)

    def replace(self, **changes) -> "TrackerState":
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "workflow_type": self.workflow_type,
            "trade_name": self.trade_name,
            "is_main_workflow": self.is_main_workflow,
            "current_phase_id": self.current_phase_id,
            "current_section_id": self.current_section_id,
            "current_line_item_id": self.current_line_item_id,
            "total_line_items": self.total_line_items,
            "completed_count": len(self.completed_line_item_ids),
            "skipped_count": len(self.skipped_line_item_ids),
            "is_exhausted": self.is_exhausted,
            "version": self.version,
            "starting_phase": self.starting_phase,
        }


@dataclass(frozen=True)
class Position:
    """Resolved template objects for a tracker pointer."""
    phase: TemplatePhase | None
    section: TemplateSection | None
    line_item: TemplateLineItem | None

    def to_dict(self) -> dict:
        return {
            "phase": self.phase.phase_type if self.phase else None,
            "phase_id": self.phase.id if self.phase else None,
            "section": self.section.label if self.section else None,
            "section_id": self.section.id if self.section else None,
            "line_item": self.line_item.name if self.line_item else None,
            "line_item_id": self.line_item.id if self.line_item else None,
        }


@dataclass(frozen=True)
class CompletionResult:
    tracker: TrackerState
    outcome: CompletionOutcome
    completed_item: CompletedItem | None = None
    newly_active: TemplateLineItem | None = None
    active_item: TemplateLineItem | None = None
    is_complete: bool = False
    phase_changed: bool = False
    section_changed: bool = False

    @property
    def already_completed(self) -> bool:
        return self.outcome is CompletionOutcome.ALREADY_COMPLETED


# ═════════════════════════════════════════════════════════════════════════════
# Helpers
# ═════════════════════════════════════════════════════════════════════════════

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def coerce_line_item_id(value) -> int:
    """Accept only engine identifiers (int or digit string)."""
    if isinstance(value, bool):
        raise TypeError("line_item_id must be an int, not bool")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise TypeError(f"line_item_id must be a line item id, got {type(value).__name__}")


def _check_template(tracker: TrackerState, template: WorkflowTemplate) -> None:
    if template.workflow_type != tracker.workflow_type:
        raise ValueError(
            f"Template {template.workflow_type} does not belong to tracker workflow {tracker.workflow_type}"
        )


def first_unresolved_entry(resolved_ids: Iterable[int], template: WorkflowTemplate) -> SequenceEntry | None:
    """First sequence entry (in canonical order) whose line item is not resolved."""
    resolved = resolved_ids if isinstance(resolved_ids, (set, frozenset)) else set(resolved_ids)
    for entry in template.sequence:
        if entry.line_item_id not in resolved:
            return entry
    return None


def _repoint(tracker: TrackerState, template: WorkflowTemplate) -> TrackerState:
    entry = first_unresolved_entry(tracker.resolved_line_item_ids, template)
    if entry is None:
        return tracker.replace(current_phase_id=None, current_section_id=None, current_line_item_id=None)
    return tracker.replace(
        current_phase_id=entry.phase_id,
        current_section_id=entry.section_id,
        current_line_item_id=entry.line_item_id,
    )


def resolve_position(tracker: TrackerState | None, template: WorkflowTemplate | None) -> Position:
    if tracker is None or template is None:
        return Position(None, None, None)
    return Position(
        phase=template.phase(tracker.current_phase_id),
        section=template.section(tracker.current_section_id),
        line_item=template.line_item(tracker.current_line_item_id),
    )


# ═════════════════════════════════════════════════════════════════════════════
# Progress & phase
# ═════════════════════════════════════════════════════════════════════════════

def compute_progress(
    tracker: TrackerState,
    template: WorkflowTemplate,
    total_line_items: int | None = None,
    *,
    also_resolved: Iterable[int] = (),
) -> int:
    """Percent complete, 0-100.

    Numerator: resolved line items that are still part of the template, plus
    *also_resolved* (items of phases jumped over by a manual override).
    Denominator: the precomputed template count captured on the tracker,
    not the number of completions. A zero denominator yields 0.
    """
    total = total_line_items or tracker.total_line_items or len(template)
    if not total or total <= 0:
        return 0
    resolved = tracker.resolved_line_item_ids.union(also_resolved)
    done = sum(1 for line_item_id in resolved if line_item_id in template)
    percent = math.floor(100 * done / total + 0.5)
    return max(0, min(100, percent))


def derive_phase_key(
    tracker: TrackerState | None,
    template: WorkflowTemplate | None = None,
    override=None,
    project_status: str | None = None,
) -> PhaseKey:
    """Display phase for a project.

    Priority:
        1. active manual override (``override.to_phase``)
        2. phase type of the tracker's current phase
        3. COMPLETION when the pointer triple is all-null
        4. no tracker at all: project status through STATUS_TO_PHASE
        5. a tracker whose template is unavailable: same as 4, since its
           pointer cannot be resolved and a placeholder pointer is all-null
    Default LEAD.
    """
    if override is not None and getattr(override, "is_active", True):
        key = PhaseKey.parse(getattr(override, "to_phase", None))
        if key is not None:
            return key

    if tracker is not None and template is not None:
        if tracker.current_phase_id is not None:
            phase = template.phase(tracker.current_phase_id)
            key = PhaseKey.parse(phase.phase_type) if phase else None
            if key is not None:
                return key
        if tracker.is_exhausted:
            return PhaseKey.COMPLETION
        return PhaseKey.LEAD

    status = str(project_status or "").strip().upper()
    return STATUS_TO_PHASE.get(status, PhaseKey.LEAD)


# ═════════════════════════════════════════════════════════════════════════════
# Transitions
# ═════════════════════════════════════════════════════════════════════════════

def complete_line_item(
    tracker: TrackerState,
    template: WorkflowTemplate,
    line_item_id,
    *,
    completed_at: datetime | None = None,
    completed_by: str | None = None,
    notes: str | None = None,
) -> CompletionResult:
    """Mark *line_item_id* complete and move the pointer to the first unresolved entry.

    Raises:
        UnknownLineItemError: the item is not in the template sequence.
    """
    _check_template(tracker, template)
    line_item_id = coerce_line_item_id(line_item_id)

    if line_item_id in tracker.completed_line_item_ids:
        return CompletionResult(
            tracker=tracker,
            outcome=CompletionOutcome.ALREADY_COMPLETED,
            active_item=template.line_item(tracker.current_line_item_id),
            is_complete=tracker.is_exhausted,
        )

    entry = template.entry_for(line_item_id)
    if entry is None:
        raise UnknownLineItemError(line_item_id, tracker.workflow_type)

    completed = CompletedItem(
        line_item_id=line_item_id,
        section_id=entry.section_id,
        phase_id=entry.phase_id,
        completed_at=completed_at or _utcnow(),
        completed_by=completed_by,
        notes=notes,
    )
    # A skipped entry for the same item becomes a real completion.
    items = tuple(c for c in tracker.completed_items if c.line_item_id != line_item_id) + (completed,)
    updated = _repoint(tracker.replace(completed_items=items), template)

    moved = updated.current_line_item_id != tracker.current_line_item_id
    active = template.line_item(updated.current_line_item_id)
    return CompletionResult(
        tracker=updated,
        outcome=CompletionOutcome.COMPLETED,
        completed_item=completed,
        newly_active=active if moved else None,
        active_item=active,
        is_complete=updated.is_exhausted,
        phase_changed=updated.current_phase_id != tracker.current_phase_id,
        section_changed=updated.current_section_id != tracker.current_section_id,
    )


def uncomplete_line_item(tracker: TrackerState, template: WorkflowTemplate, line_item_id) -> TrackerState:
    """Remove a completion (or skip) and recompute the pointer; it may move earlier."""
    _check_template(tracker, template)
    line_item_id = coerce_line_item_id(line_item_id)
    if line_item_id not in template:
        raise UnknownLineItemError(line_item_id, tracker.workflow_type)
    if line_item_id not in tracker.resolved_line_item_ids:
        return tracker
    items = tuple(c for c in tracker.completed_items if c.line_item_id != line_item_id)
    return _repoint(tracker.replace(completed_items=items), template)


def initialize_tracker(
    project_id: int,
    template: WorkflowTemplate,
    *,
    is_main_workflow: bool = False,
    trade_name: str | None = None,
    starting_phase=None,
    existing: TrackerState | None = None,
    skipped_at: datetime | None = None,
) -> TrackerState:
    """Tracker positioned at the first item of *starting_phase* (default: first phase).

    Entries strictly before the starting phase's first item are recorded as
    skipped, not completed. ``existing`` keeps id, flags and completions of a
    tracker being re-initialized; without an explicit *starting_phase* its
    recorded starting phase is reused.
    """
    base = existing or TrackerState(
        project_id=project_id,
        workflow_type=template.workflow_type,
        is_main_workflow=is_main_workflow,
        trade_name=trade_name,
    )
    items = list(base.completed_items)
    resolved = {c.line_item_id for c in items}

    phase_key = PhaseKey.parse(starting_phase or base.starting_phase)
    start_phase = template.phase_by_type(phase_key.value) if phase_key else None
    if start_phase is not None:
        now = skipped_at or _utcnow()
        for entry in template.sequence:
            if entry.phase_id == start_phase.id:
                break
            if entry.line_item_id not in resolved:
                items.append(CompletedItem(
                    line_item_id=entry.line_item_id,
                    section_id=entry.section_id,
                    phase_id=entry.phase_id,
                    completed_at=now,
                    is_skipped=True,
                ))

    tracker = base.replace(
        completed_items=tuple(items),
        total_line_items=len(template),
        starting_phase=phase_key.value if phase_key else None,
    )
    return _repoint(tracker, template)


def initialize_multiple_workflows(
    project_id: int,
    workflow_types: Iterable[str],
    templates: Mapping[str, WorkflowTemplate | None],
    *,
    primary_type: str | None = None,
    starting_phase=None,
    trade_names: Mapping[str, str] | None = None,
    default_total_line_items: int = 0,
) -> list[TrackerState]:
    """One tracker per requested workflow type; exactly one is the main workflow.

    The main tracker is *primary_type* when it is in the list, otherwise the
    first type. A type whose template is missing from *templates* still gets
    a tracker: null pointer, ``default_total_line_items`` as denominator,
    left for the repository's healing pass.
    The starting phase is recorded on every tracker so healing repeats it.
    """
    types: list[str] = []
    for wf_type in workflow_types:
        key = str(wf_type or "").strip().upper()
        if key and key not in types:
            types.append(key)
    if not types:
        return []

    primary = str(primary_type or "").strip().upper()
    main_type = primary if primary in types else types[0]
    trade_names = trade_names or {}
    start_key = PhaseKey.parse(starting_phase)

    trackers = []
    for wf_type in types:
        template = templates.get(wf_type)
        is_main = wf_type == main_type
        trade_name = trade_names.get(wf_type) or wf_type.title()
        if template is None or len(template) == 0:
            trackers.append(TrackerState(
                project_id=project_id,
                workflow_type=wf_type,
                trade_name=trade_name,
                is_main_workflow=is_main,
                total_line_items=default_total_line_items,
                starting_phase=start_key.value if start_key else None,
            ))
            continue
        trackers.append(initialize_tracker(
            project_id,
            template,
            is_main_workflow=is_main,
            trade_name=trade_name,
            starting_phase=starting_phase,
        ))
    return trackers


def is_half_initialized(tracker: TrackerState, template: WorkflowTemplate | None) -> bool:
    """True when a tracker was created without a usable template.

    Signs: a zero denominator, a denominator that does not match a template
    that is now available, or a null pointer while template items remain
    unresolved.
    """
    if tracker.total_line_items <= 0:
        return True
    if template is None:
        return False
    if tracker.total_line_items != len(template) and not tracker.resolved_line_item_ids:
        return True
    if tracker.is_exhausted and first_unresolved_entry(tracker.resolved_line_item_ids, template) is not None:
        return True
    return False


def line_items_in_phases(template: WorkflowTemplate, phase_types: Iterable) -> frozenset[int]:
    """Ids of every line item belonging to the given phase types."""
    wanted = {key.value for key in (PhaseKey.parse(p) for p in phase_types) if key}
    ids = set()
    for phase in template.phases:
        if normalize_phase_type(phase.phase_type) in wanted:
            for section in phase.sections:
                ids.update(item.id for item in section.line_items)
    return frozenset(ids)
