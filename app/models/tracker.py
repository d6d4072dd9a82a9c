"""
Project Workflow Platform
Workflow tracker models.

Models:
    - ProjectWorkflowTracker: per-project-per-workflow-type pointer + progress state
    - CompletedWorkflowItem: one row per completed (or skipped) line item

The tracker carries a ``version`` column used by SQLAlchemy's optimistic
concurrency check: every save bumps it, and a concurrent writer holding a
stale version gets ``StaleDataError`` on flush.
"""

from datetime import datetime, timezone

from app.models import db


class ProjectWorkflowTracker(db.Model):
    """Progression state of one workflow type inside one project."""

    __tablename__ = "project_workflow_trackers"
    __table_args__ = (
        db.UniqueConstraint("project_id", "workflow_type", name="uq_tracker_project_workflow_type"),
        db.Index(
            "uq_tracker_project_main_true",
            "project_id",
            unique=True,
            postgresql_where=db.text("is_main_workflow IS TRUE"),
            sqlite_where=db.text("is_main_workflow = 1"),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    workflow_type = db.Column(db.String(50), nullable=False)
    trade_name = db.Column(db.String(100), nullable=True)
    is_main_workflow = db.Column(db.Boolean, nullable=False, default=False)

    # Pointer triple. All NULL = workflow exhausted.
    current_phase_id = db.Column(
        db.Integer, db.ForeignKey("workflow_phases.id", ondelete="SET NULL"), nullable=True,
    )
    current_section_id = db.Column(
        db.Integer, db.ForeignKey("workflow_sections.id", ondelete="SET NULL"), nullable=True,
    )
    current_line_item_id = db.Column(
        db.Integer, db.ForeignKey("workflow_line_items.id", ondelete="SET NULL"), nullable=True,
    )
    total_line_items = db.Column(db.Integer, nullable=False, default=0,
                                 comment="Progress denominator captured from the template")
    starting_phase = db.Column(db.String(30), nullable=True,
                               comment="Phase the tracker was initialized at; reused when healing")
    last_completed_line_item_id = db.Column(db.Integer, nullable=True)

    version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    completed_items = db.relationship(
        "CompletedWorkflowItem", backref="tracker", lazy="select",
        cascade="all, delete-orphan", passive_deletes=True,
        order_by="CompletedWorkflowItem.id",
    )

    __mapper_args__ = {"version_id_col": version}

    def to_dict(self):
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
            "starting_phase": self.starting_phase,
            "version": self.version,
            "completed_count": sum(1 for c in self.completed_items if not c.is_skipped),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<ProjectWorkflowTracker {self.id}: project={self.project_id} {self.workflow_type}>"


class CompletedWorkflowItem(db.Model):
    """A line item resolved on a tracker — completed, or skipped at initialization."""

    __tablename__ = "completed_workflow_items"
    __table_args__ = (
        db.UniqueConstraint("tracker_id", "line_item_id", name="uq_completed_tracker_line_item"),
    )

    id = db.Column(db.Integer, primary_key=True)
    tracker_id = db.Column(
        db.Integer, db.ForeignKey("project_workflow_trackers.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    phase_id = db.Column(db.Integer, nullable=True)
    section_id = db.Column(db.Integer, nullable=True)
    line_item_id = db.Column(db.Integer, nullable=False)
    completed_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    completed_by = db.Column(db.String(150), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    is_skipped = db.Column(db.Boolean, nullable=False, default=False,
                           comment="Skipped before the starting phase, not actually completed")

    def to_dict(self):
        return {
            "id": self.id,
            "tracker_id": self.tracker_id,
            "phase_id": self.phase_id,
            "section_id": self.section_id,
            "line_item_id": self.line_item_id,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "completed_by": self.completed_by,
            "notes": self.notes,
            "is_skipped": self.is_skipped,
        }

    def __repr__(self):
        return f"<CompletedWorkflowItem tracker={self.tracker_id} item={self.line_item_id}>"
