"""Tests — scheduled maintenance jobs and their run history."""

from app.models import db
from app.models.alert import WorkflowAlert
from app.models.project import Project
from app.models.scheduling import ScheduledJob
from app.services import tracker_repository as repo
from app.services.scheduler_service import SchedulerService, get_registered_jobs


def test_jobs_are_registered():
    assert {"workflow_healing_sweep", "batch_alert_generation"} <= set(get_registered_jobs())


def test_healing_sweep_creates_missing_trackers(templates, make_project):
    make_project()
    bare = Project(name="No trackers yet", project_type="GUTTERS")
    db.session.add(bare)
    db.session.commit()

    result = SchedulerService.run_job("workflow_healing_sweep")
    assert result["status"] == "success"
    assert result["result"]["projects_checked"] == 2
    assert result["result"]["errors"] == 0
    assert repo.get(bare.id).workflow_type == "GUTTERS"


def test_batch_alert_generation_reopens_missing_alerts(make_project):
    project = make_project()
    WorkflowAlert.query.delete()
    db.session.commit()

    result = SchedulerService.run_job("batch_alert_generation")
    assert result["status"] == "success"
    assert result["result"]["opened"] == 1
    assert WorkflowAlert.query.filter_by(project_id=project.id, status="ACTIVE").count() == 1


def test_run_history_is_recorded(templates):
    SchedulerService.run_job("batch_alert_generation")
    SchedulerService.run_job("batch_alert_generation")

    record = ScheduledJob.query.filter_by(job_name="batch_alert_generation").one()
    assert record.run_count == 2
    assert record.last_run_status == "success"
    assert record.error_count == 0


def test_unknown_job():
    result = SchedulerService.run_job("does_not_exist")
    assert result["status"] == "error"


def test_healing_continues_past_a_failing_project(monkeypatch, templates):
    from app.services import workflow_service

    broken = Project(name="Broken", project_type="ROOFING")
    healthy = Project(name="Healthy", project_type="GUTTERS")
    db.session.add_all([broken, healthy])
    db.session.commit()
    broken_id, healthy_id = broken.id, healthy.id

    real_ensure_ready = workflow_service.ensure_ready

    def flaky(project_id):
        if project_id == broken_id:
            raise RuntimeError("corrupt tracker row")
        return real_ensure_ready(project_id)

    monkeypatch.setattr(workflow_service, "ensure_ready", flaky)

    result = SchedulerService.run_job("workflow_healing_sweep")
    assert result["status"] == "success"
    assert result["result"]["errors"] == 1
    assert result["result"]["projects_checked"] == 1
    assert repo.get(healthy_id).workflow_type == "GUTTERS"
    assert repo.get(broken_id) is None


def test_failed_job_is_recorded(monkeypatch, templates):
    from app.services import alert_generator

    def boom(project_ids, **kwargs):
        raise RuntimeError("database on fire")

    monkeypatch.setattr(alert_generator, "generate_batch_alerts", boom)

    result = SchedulerService.run_job("batch_alert_generation")
    assert result["status"] == "failed"
    assert "database on fire" in result["error"]

    record = ScheduledJob.query.filter_by(job_name="batch_alert_generation").one()
    assert record.error_count == 1
    assert record.last_error == "database on fire"
