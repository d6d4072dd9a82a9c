"""
Project Workflow Platform
Workflow template domain models.

Models:
    - WorkflowPhase: top-level stage of a workflow type (LEAD, PROSPECT, ...)
    - WorkflowSection: named grouping of line items inside a phase
    - WorkflowLineItem: atomic unit of work

One template per ``workflow_type``. Rows are never hard-deleted by edits;
retired rows get ``is_active = False`` so completed history keeps resolving.
"""

from datetime import datetime, timezone

from app.models import db


# ── Constants ────────────────────────────────────────────────────────────────

# Canonical phase order. Template phases are expected to follow it.
PHASE_TYPES = (
    "LEAD",
    "PROSPECT",
    "APPROVED",
    "EXECUTION",
    "SECOND_SUPPLEMENT",
    "COMPLETION",
)

PHASE_ALIASES = {
    "SECOND_SUPP": "SECOND_SUPPLEMENT",
    "2ND_SUPP": "SECOND_SUPPLEMENT",
    "2ND_SUPPLEMENT": "SECOND_SUPPLEMENT",
    "SUPPLEMENT": "SECOND_SUPPLEMENT",
}

RESPONSIBLE_ROLES = {"OFFICE", "ADMINISTRATION", "PROJECT_MANAGER", "FIELD_DIRECTOR", "ROOF_SUPERVISOR"}
ALERT_PRIORITIES = {"LOW", "MEDIUM", "HIGH"}

DEFAULT_RESPONSIBLE_ROLE = "OFFICE"
DEFAULT_PRIORITY = "MEDIUM"
DEFAULT_ALERT_DAYS = 1


def normalize_phase_type(value):
    """Return the canonical phase key for *value*, or None if unrecognised."""
    if value is None:
        return None
    key = str(value).strip().upper().replace(" ", "_").replace("-", "_")
    key = PHASE_ALIASES.get(key, key)
    return key if key in PHASE_TYPES else None


def _utcnow():
    return datetime.now(timezone.utc)


class WorkflowPhase(db.Model):
    """Top-level stage of a workflow template."""

    __tablename__ = "workflow_phases"
    __table_args__ = (
        db.UniqueConstraint("workflow_type", "phase_type", name="uq_workflow_phase_type"),
        db.Index("ix_workflow_phases_type_order", "workflow_type", "display_order"),
    )

    id = db.Column(db.Integer, primary_key=True)
    workflow_type = db.Column(db.String(50), nullable=False, index=True,
                              comment="ROOFING | GUTTERS | SIDING | ...")
    phase_type = db.Column(db.String(30), nullable=False, comment="Canonical phase key")
    display_name = db.Column(db.String(150), nullable=True)
    display_order = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    sections = db.relationship(
        "WorkflowSection", backref="phase", lazy="select",
        order_by="WorkflowSection.display_order",
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "workflow_type": self.workflow_type,
            "phase_type": self.phase_type,
            "display_name": self.display_name,
            "display_order": self.display_order,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<WorkflowPhase {self.workflow_type}:{self.phase_type}>"


class WorkflowSection(db.Model):
    """Named grouping of line items within a phase."""

    __tablename__ = "workflow_sections"
    __table_args__ = (
        db.UniqueConstraint("phase_id", "name", name="uq_workflow_section_name"),
    )

    id = db.Column(db.Integer, primary_key=True)
    phase_id = db.Column(
        db.Integer, db.ForeignKey("workflow_phases.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False, comment="Stable section key")
    display_name = db.Column(db.String(250), nullable=True, comment="Label incl. role suffix")
    display_order = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    line_items = db.relationship(
        "WorkflowLineItem", backref="section", lazy="select",
        order_by="WorkflowLineItem.display_order",
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "phase_id": self.phase_id,
            "name": self.name,
            "display_name": self.display_name,
            "display_order": self.display_order,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<WorkflowSection {self.id}: {self.name[:40]}>"


class WorkflowLineItem(db.Model):
    """Atomic unit of work. Its completion is the only fact the engine tracks."""

    __tablename__ = "workflow_line_items"
    __table_args__ = (
        db.UniqueConstraint("section_id", "name", name="uq_workflow_line_item_name"),
    )

    id = db.Column(db.Integer, primary_key=True)
    section_id = db.Column(
        db.Integer, db.ForeignKey("workflow_sections.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    letter = db.Column(db.String(5), nullable=True, comment="a, b, c ... inside the section")
    name = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    display_order = db.Column(db.Integer, nullable=False, default=0)
    responsible_role = db.Column(db.String(30), nullable=False, default=DEFAULT_RESPONSIBLE_ROLE)
    priority = db.Column(db.String(10), nullable=False, default=DEFAULT_PRIORITY)
    alert_days = db.Column(db.Integer, nullable=False, default=DEFAULT_ALERT_DAYS)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "section_id": self.section_id,
            "letter": self.letter,
            "name": self.name,
            "description": self.description,
            "display_order": self.display_order,
            "responsible_role": self.responsible_role,
            "priority": self.priority,
            "alert_days": self.alert_days,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<WorkflowLineItem {self.id}: {self.name[:40]}>"
