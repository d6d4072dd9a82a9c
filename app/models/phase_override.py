"""Manual phase override store — consulted first when deriving a project's phase."""

from datetime import datetime, timezone

from app.models import db


class ProjectPhaseOverride(db.Model):
    """
    Manual correction of a project's displayed phase.

    ``suppress_alerts_for`` lists the phase keys jumped over by the override;
    alerts for line items in those phases are not opened and their items
    count toward progress.
    """

    __tablename__ = "project_phase_overrides"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    from_phase = db.Column(db.String(30), nullable=True)
    to_phase = db.Column(db.String(30), nullable=False)
    suppress_alerts_for = db.Column(db.JSON, nullable=False, default=list)
    reason = db.Column(db.Text, nullable=True)
    overridden_by = db.Column(db.String(150), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    deactivated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def deactivate(self):
        self.is_active = False
        self.deactivated_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "from_phase": self.from_phase,
            "to_phase": self.to_phase,
            "suppress_alerts_for": list(self.suppress_alerts_for or []),
            "reason": self.reason,
            "overridden_by": self.overridden_by,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "deactivated_at": self.deactivated_at.isoformat() if self.deactivated_at else None,
        }

    def __repr__(self):
        return f"<ProjectPhaseOverride {self.id}: project={self.project_id} -> {self.to_phase}>"
