"""
Project Workflow Platform
Workflow alert model.

An ACTIVE alert means "this line item is currently actionable for this
project". At most one ACTIVE alert exists per (project_id, line_item_id);
the partial unique index backs the reconciliation check at the DB level.
"""

from datetime import datetime, timezone

from app.models import db


# ── Constants ────────────────────────────────────────────────────────────────

ALERT_STATUS_ACTIVE = "ACTIVE"
ALERT_STATUS_COMPLETED = "COMPLETED"
ALERT_STATUS_DISMISSED = "DISMISSED"
ALERT_STATUSES = {ALERT_STATUS_ACTIVE, ALERT_STATUS_COMPLETED, ALERT_STATUS_DISMISSED}

ALERT_TYPE_LINE_ITEM = "Work Flow Line Item"


class WorkflowAlert(db.Model):
    """Notification record for the currently actionable line item of a tracker."""

    __tablename__ = "workflow_alerts"
    __table_args__ = (
        db.Index("ix_workflow_alerts_project_status", "project_id", "status"),
        db.Index(
            "uq_workflow_alerts_active_line_item",
            "project_id",
            "line_item_id",
            unique=True,
            postgresql_where=db.text("status = 'ACTIVE'"),
            sqlite_where=db.text("status = 'ACTIVE'"),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    tracker_id = db.Column(
        db.Integer, db.ForeignKey("project_workflow_trackers.id", ondelete="SET NULL"),
        nullable=True,
    )
    line_item_id = db.Column(db.Integer, nullable=False, index=True)

    type = db.Column(db.String(50), nullable=False, default=ALERT_TYPE_LINE_ITEM)
    status = db.Column(db.String(20), nullable=False, default=ALERT_STATUS_ACTIVE)
    priority = db.Column(db.String(10), nullable=False, default="MEDIUM")
    responsible_role = db.Column(db.String(30), nullable=False, default="OFFICE")

    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    step_name = db.Column(db.String(300), nullable=True, comment="Line item label at creation time")
    phase_type = db.Column(db.String(30), nullable=True)
    section_name = db.Column(db.String(250), nullable=True)

    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    acknowledged_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def close(self, status=ALERT_STATUS_COMPLETED):
        self.status = status
        self.acknowledged_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "tracker_id": self.tracker_id,
            "line_item_id": self.line_item_id,
            "type": self.type,
            "status": self.status,
            "priority": self.priority,
            "responsible_role": self.responsible_role,
            "title": self.title,
            "message": self.message,
            "step_name": self.step_name,
            "phase_type": self.phase_type,
            "section_name": self.section_name,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "acknowledged_at": self.acknowledged_at.isoformat() if self.acknowledged_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<WorkflowAlert {self.id}: project={self.project_id} item={self.line_item_id} [{self.status}]>"
