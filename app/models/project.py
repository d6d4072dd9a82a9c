"""Project domain model — the unit a workflow tracker belongs to."""

from datetime import datetime, timezone

from app.models import db


PROJECT_STATUSES = {"PENDING", "IN_PROGRESS", "COMPLETED", "ON_HOLD", "CANCELLED"}


class Project(db.Model):
    """Customer job progressed through one or more workflow templates."""

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    project_number = db.Column(db.Integer, nullable=True, unique=True, index=True)
    name = db.Column(db.String(200), nullable=False)
    customer_name = db.Column(db.String(200), nullable=True)
    project_type = db.Column(
        db.String(50), nullable=True, default="ROOFING",
        comment="Primary workflow type: ROOFING | GUTTERS | SIDING | ...",
    )
    trade_types = db.Column(
        db.JSON, nullable=True, default=list,
        comment="Workflow types requested for this project (one tracker each)",
    )
    status = db.Column(db.String(30), nullable=False, default="PENDING")
    starting_phase = db.Column(
        db.String(30), nullable=True,
        comment="Phase requested at creation; earlier template items start out skipped",
    )

    # ── Written back by the progression engine ──
    phase = db.Column(db.String(30), nullable=True, comment="Derived phase key")
    progress = db.Column(db.Integer, nullable=False, default=0, comment="0-100")

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    trackers = db.relationship(
        "ProjectWorkflowTracker", backref="project", lazy="select",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    alerts = db.relationship(
        "WorkflowAlert", backref="project", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    phase_overrides = db.relationship(
        "ProjectPhaseOverride", backref="project", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    def declared_workflow_types(self) -> list[str]:
        """Requested workflow types, primary type first, without duplicates."""
        types = []
        for value in [self.project_type, *(self.trade_types or [])]:
            key = str(value or "").strip().upper()
            if key and key not in types:
                types.append(key)
        return types

    def to_dict(self) -> dict:
        """Serialize core project fields for API responses."""
        return {
            "id": self.id,
            "project_number": self.project_number,
            "name": self.name,
            "customer_name": self.customer_name,
            "project_type": self.project_type,
            "trade_types": list(self.trade_types or []),
            "status": self.status,
            "starting_phase": self.starting_phase,
            "phase": self.phase,
            "progress": self.progress,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<Project {self.id}: {self.name}>"
