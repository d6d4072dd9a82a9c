"""
Tests — in-app notifications for workflow events.

Covers:
    1. Alert diff delivery (opened alerts, closed-only summaries)
    2. Phase change notifications
    3. Recipient filtering, unread filtering, mark-all-read
"""

from app.models.alert import WorkflowAlert
from app.models.notification import Notification
from app.services import workflow_service
from app.services.notification import NotificationService


def _alerts(project_id):
    return Notification.query.filter_by(project_id=project_id, category="alert").all()


# ═══════════════════════════════════════════════════════════════════════════
#  Delivery
# ═══════════════════════════════════════════════════════════════════════════


def test_opened_alert_is_addressed_to_its_role(make_project):
    project = make_project()
    alert = WorkflowAlert.query.filter_by(project_id=project.id).one()

    notes = _alerts(project.id)
    assert len(notes) == 1
    assert notes[0].recipient == alert.responsible_role
    assert notes[0].entity_type == "workflow_alert"
    assert notes[0].entity_id == alert.id


def test_closed_only_diff_gets_summary(make_project):
    project = make_project()
    alert = WorkflowAlert.query.filter_by(project_id=project.id).one()

    created = NotificationService.deliver_alert_diff(project.id, opened=[], closed=[alert])
    assert len(created) == 1
    assert created[0].title.startswith("Workflow step closed:")
    assert created[0].severity == "success"


def test_empty_diff_creates_nothing(make_project):
    project = make_project()
    assert NotificationService.deliver_alert_diff(project.id) == []


def test_phase_change_notification(make_project):
    project = make_project()
    workflow_service.set_phase_override(project.id, "EXECUTION")

    phase_notes = Notification.query.filter_by(project_id=project.id, category="phase").all()
    assert phase_notes[-1].title == f"{project.name} moved to EXECUTION"
    assert phase_notes[-1].message == "Phase changed from LEAD to EXECUTION."
    assert NotificationService.notify_phase_change(project, "EXECUTION", "EXECUTION") is None


# ═══════════════════════════════════════════════════════════════════════════
#  Queries
# ═══════════════════════════════════════════════════════════════════════════


def test_recipient_filter_includes_broadcasts(make_project):
    project = make_project()
    role = _alerts(project.id)[0].recipient
    NotificationService.create(title="Everyone", project_id=project.id)
    NotificationService.create(title="Crew only", recipient="CREW_LEAD_X", project_id=project.id)

    items, total = NotificationService.list_for_project(project.id, recipient=role)
    titles = {n.title for n in items}
    assert "Everyone" in titles
    assert "Crew only" not in titles
    assert total == len(items)


def test_mark_all_read(make_project):
    project = make_project()
    _, unread = NotificationService.list_for_project(project.id, unread_only=True)
    assert unread > 0

    assert NotificationService.mark_all_read(project.id) == unread
    _, unread = NotificationService.list_for_project(project.id, unread_only=True)
    assert unread == 0
