"""
Project Workflow Platform
Notification Service.

Delivery layer for workflow events: turns alert reconciliation diffs and
phase changes into in-app Notification rows. Delivery is best-effort;
callers log failures and carry on.
"""

from datetime import datetime, timezone

from app.models import db
from app.models.notification import Notification


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, title, message="", category="workflow", severity="info",
               recipient="all", project_id=None, entity_type="", entity_id=None,
               commit=True):
        """
        Create a single notification record.

        Returns:
            The created Notification instance.
        """
        notif = Notification(
            project_id=project_id,
            recipient=recipient,
            title=title,
            message=message,
            category=category,
            severity=severity,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        db.session.add(notif)
        if commit:
            db.session.commit()
        return notif

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_project(project_id, recipient=None, unread_only=False, limit=50, offset=0):
        """
        Retrieve notifications of a project, newest first.
        """
        q = Notification.query.filter_by(project_id=project_id)
        if recipient:
            q = q.filter(
                (Notification.recipient == recipient) | (Notification.recipient == "all")
            )
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_all_read(project_id, recipient=None):
        """Mark every unread notification of a project as read."""
        q = Notification.query.filter_by(project_id=project_id, is_read=False)
        if recipient:
            q = q.filter(
                (Notification.recipient == recipient) | (Notification.recipient == "all")
            )
        now = datetime.now(timezone.utc)
        count = q.update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        db.session.commit()
        return count

    # ── Workflow Integration Helpers ──────────────────────────────────────

    @staticmethod
    def deliver_alert_diff(project_id, opened=(), closed=()):
        """Create one notification per opened alert, addressed to its responsible role.

        Closed alerts only produce a summary line when nothing was opened,
        so a completion that hands work on is announced once.
        """
        notifications = []
        for alert in opened:
            notifications.append(NotificationService.create(
                title=alert.title,
                message=alert.message,
                category="alert",
                severity="warning" if alert.priority == "HIGH" else "info",
                recipient=alert.responsible_role,
                project_id=project_id,
                entity_type="workflow_alert",
                entity_id=alert.id,
                commit=False,
            ))
        if closed and not opened:
            names = ", ".join(a.step_name or str(a.line_item_id) for a in closed)
            notifications.append(NotificationService.create(
                title=f"Workflow step closed: {names}",
                message=f"{len(closed)} alert(s) closed",
                category="workflow",
                severity="success",
                project_id=project_id,
                entity_type="workflow_alert",
                entity_id=closed[0].id,
                commit=False,
            ))
        if notifications:
            db.session.commit()
        return notifications

    @staticmethod
    def notify_phase_change(project, old_phase, new_phase):
        """Create notification when a project's derived phase changes."""
        if not new_phase or old_phase == new_phase:
            return None

        severity = "success" if new_phase == "COMPLETION" else "info"
        return NotificationService.create(
            title=f"{project.name} moved to {new_phase}",
            message=f"Phase changed from {old_phase or 'none'} to {new_phase}.",
            category="phase",
            severity=severity,
            project_id=project.id,
            entity_type="project",
            entity_id=project.id,
        )
