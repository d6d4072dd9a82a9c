"""
Tests — HTTP API (workflow, templates, scheduler, health).

Covers:
    1. Project CRUD and validation errors
    2. Completion / uncompletion endpoints and error mapping
    3. Alerts, notifications and phase override endpoints
    4. Template endpoints, imports and display labels
    5. Scheduler endpoints and health checks
"""

import pytest

from app.core.exceptions import TemplateUnavailableError, TrackerWriteConflictError
from app.services import tracker_repository as repo


def _create_project(client, **overrides):
    body = {"name": "API Roof", "customer_name": "Ana", **overrides}
    res = client.post("/api/v1/projects", json=body)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _first_ids(templates, n=2, workflow_type="ROOFING"):
    return [e.line_item_id for e in templates[workflow_type].sequence[:n]]


# ═══════════════════════════════════════════════════════════════════════════
#  Projects
# ═══════════════════════════════════════════════════════════════════════════


class TestProjectsApi:
    def test_create_and_get(self, client, templates):
        project = _create_project(client, project_number=1001)
        assert project["phase"] == "LEAD"
        assert project["progress"] == 0

        res = client.get(f"/api/v1/projects/{project['id']}")
        assert res.status_code == 200
        assert res.get_json()["project_number"] == 1001

    def test_list_by_status(self, client, templates):
        _create_project(client, name="One")
        _create_project(client, name="Two")
        body = client.get("/api/v1/projects").get_json()
        assert body["total"] == 2
        assert client.get("/api/v1/projects?status=pending").get_json()["total"] == 2
        assert client.get("/api/v1/projects?status=COMPLETED").get_json()["total"] == 0

    def test_name_required(self, client, templates):
        res = client.post("/api/v1/projects", json={"customer_name": "Nobody"})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_duplicate_project_number(self, client, templates):
        _create_project(client, project_number=7)
        res = client.post("/api/v1/projects", json={"name": "Other", "project_number": 7})
        assert res.status_code == 409

    def test_bad_starting_phase(self, client, templates):
        res = client.post("/api/v1/projects", json={"name": "X", "starting_phase": "DINNER"})
        assert res.status_code == 422
        assert "starting_phase" in res.get_json()["details"]

    def test_missing_project(self, client, templates):
        res = client.get("/api/v1/projects/999")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_delete_cascades(self, client, templates):
        project = _create_project(client)
        res = client.delete(f"/api/v1/projects/{project['id']}")
        assert res.status_code == 200
        assert repo.list_for_project(project["id"]) == []
        assert client.get(f"/api/v1/projects/{project['id']}").status_code == 404

    def test_non_json_body_is_rejected(self, client, templates):
        res = client.post("/api/v1/projects", data="name=x", content_type="text/plain")
        assert res.status_code == 415


# ═══════════════════════════════════════════════════════════════════════════
#  Workflow
# ═══════════════════════════════════════════════════════════════════════════


class TestWorkflowApi:
    def test_complete_and_position(self, client, templates):
        project = _create_project(client)
        first, second = _first_ids(templates)

        res = client.post(
            f"/api/v1/projects/{project['id']}/workflow/line-items/{first}/complete",
            json={"notes": "done", "completed_by": "ana"},
        )
        assert res.status_code == 200
        body = res.get_json()
        assert body["outcome"] == "completed"
        assert body["new_progress"] == 4
        assert body["next_active_item"]["id"] == second

        position = client.get(f"/api/v1/projects/{project['id']}/workflow/position").get_json()
        assert position["line_item"]["id"] == second
        assert position["progress"] == 4

    def test_repeat_completion(self, client, templates):
        project = _create_project(client)
        first = _first_ids(templates, 1)[0]
        url = f"/api/v1/projects/{project['id']}/workflow/line-items/{first}/complete"
        client.post(url, json={})
        res = client.post(url, json={})
        assert res.status_code == 200
        assert res.get_json()["outcome"] == "already_completed"

    def test_complete_without_body(self, client, templates):
        project = _create_project(client)
        first = _first_ids(templates, 1)[0]
        res = client.post(f"/api/v1/projects/{project['id']}/workflow/line-items/{first}/complete")
        assert res.status_code == 200

    def test_unknown_line_item(self, client, templates):
        project = _create_project(client)
        res = client.post(f"/api/v1/projects/{project['id']}/workflow/line-items/99999/complete", json={})
        assert res.status_code == 404

    def test_uncomplete(self, client, templates):
        project = _create_project(client)
        first = _first_ids(templates, 1)[0]
        base = f"/api/v1/projects/{project['id']}/workflow/line-items/{first}"
        client.post(f"{base}/complete", json={})
        res = client.post(f"{base}/uncomplete", json={})
        assert res.status_code == 200
        assert res.get_json()["outcome"] == "uncompleted"

    def test_write_conflict_maps_to_409(self, client, templates, monkeypatch):
        project = _create_project(client)
        first = _first_ids(templates, 1)[0]

        def always_conflict(state, **kwargs):
            raise TrackerWriteConflictError(state.id, state.version)

        monkeypatch.setattr(repo, "save", always_conflict)
        res = client.post(f"/api/v1/projects/{project['id']}/workflow/line-items/{first}/complete", json={})
        assert res.status_code == 409
        assert res.get_json()["details"] == {"retryable": True}

    def test_template_unavailable_maps_to_503(self, client, templates, monkeypatch):
        from app.services import workflow_service

        project = _create_project(client)

        def unavailable(*args, **kwargs):
            raise TemplateUnavailableError("ROOFING", reason="database offline")

        monkeypatch.setattr(workflow_service, "_tracker_for_item", unavailable)
        res = client.post(f"/api/v1/projects/{project['id']}/workflow/line-items/1/complete", json={})
        assert res.status_code == 503
        assert res.get_json()["code"] == "ERR_TEMPLATE_UNAVAILABLE"

    def test_initialize_and_list_trackers(self, client, templates):
        project = _create_project(client)
        res = client.post(
            f"/api/v1/projects/{project['id']}/workflow/initialize",
            json={"workflow_types": ["GUTTERS"], "trade_names": {"GUTTERS": "Seamless Gutters"}},
        )
        assert res.status_code == 201
        trackers = client.get(f"/api/v1/projects/{project['id']}/workflow/trackers").get_json()["trackers"]
        assert [t["workflow_type"] for t in trackers] == ["ROOFING", "GUTTERS"]
        assert trackers[1]["trade_name"] == "Seamless Gutters"

    def test_initialize_requires_types(self, client, templates):
        project = _create_project(client)
        res = client.post(f"/api/v1/projects/{project['id']}/workflow/initialize", json={})
        assert res.status_code == 400

    def test_ensure_ready(self, client, templates):
        project = _create_project(client)
        res = client.post(f"/api/v1/projects/{project['id']}/workflow/ensure-ready", json={})
        assert res.status_code == 200
        assert len(res.get_json()["trackers"]) == 1


# ═══════════════════════════════════════════════════════════════════════════
#  Alerts, notifications, overrides
# ═══════════════════════════════════════════════════════════════════════════


class TestAlertsApi:
    def test_list_and_dismiss(self, client, templates):
        project = _create_project(client)
        alerts = client.get(f"/api/v1/projects/{project['id']}/alerts?status=ACTIVE").get_json()
        assert alerts["total"] == 1

        alert_id = alerts["alerts"][0]["id"]
        res = client.post(f"/api/v1/alerts/{alert_id}/dismiss")
        assert res.status_code == 200
        assert res.get_json()["status"] == "DISMISSED"

    def test_bad_status_filter(self, client, templates):
        project = _create_project(client)
        res = client.get(f"/api/v1/projects/{project['id']}/alerts?status=LATER")
        assert res.status_code == 422

    def test_notifications(self, client, templates):
        project = _create_project(client)
        body = client.get(f"/api/v1/projects/{project['id']}/notifications").get_json()
        assert body["total"] >= 1
        assert body["notifications"][0]["project_id"] == project["id"]

        res = client.post(f"/api/v1/projects/{project['id']}/notifications/mark-all-read", json={})
        assert res.get_json()["marked_read"] == body["total"]
        unread = client.get(f"/api/v1/projects/{project['id']}/notifications?unread_only=true").get_json()
        assert unread["total"] == 0

    def test_phase_override(self, client, templates):
        project = _create_project(client)
        res = client.post(
            f"/api/v1/projects/{project['id']}/phase-override",
            json={"to_phase": "APPROVED", "suppress_alerts_for": ["LEAD", "PROSPECT"], "reason": "signed"},
        )
        assert res.status_code == 201
        assert res.get_json()["to_phase"] == "APPROVED"
        assert client.get(f"/api/v1/projects/{project['id']}").get_json()["phase"] == "APPROVED"

        res = client.delete(f"/api/v1/projects/{project['id']}/phase-override")
        assert res.get_json() == {"cleared": 1}

    @pytest.mark.parametrize("body,status", [
        ({}, 400),
        ({"to_phase": "APPROVED", "suppress_alerts_for": "LEAD"}, 400),
        ({"to_phase": "NOWHERE"}, 422),
    ])
    def test_phase_override_validation(self, client, templates, body, status):
        project = _create_project(client)
        res = client.post(f"/api/v1/projects/{project['id']}/phase-override", json=body)
        assert res.status_code == status


# ═══════════════════════════════════════════════════════════════════════════
#  Templates
# ═══════════════════════════════════════════════════════════════════════════


class TestTemplatesApi:
    def test_list_and_get(self, client, templates):
        body = client.get("/api/v1/workflow-templates").get_json()
        assert {"workflow_type": "ROOFING", "total_line_items": 24} in body["workflow_types"]

        roofing = client.get("/api/v1/workflow-templates/roofing").get_json()
        assert roofing["total_line_items"] == 24
        assert roofing["phases"][0]["phase_type"] == "LEAD"

    def test_unavailable_template(self, client, templates):
        res = client.get("/api/v1/workflow-templates/SOLAR")
        assert res.status_code == 503

    def test_import(self, client):
        res = client.post("/api/v1/workflow-templates/solar/import", json={"rows": [
            {"phase": "LEAD", "section": "Intake", "line_item": "Survey roof"},
            {"phase": "EXECUTION", "section": "Install", "line_item": "Mount panels"},
        ]})
        assert res.status_code == 201
        assert res.get_json()["line_items"] == 2

    def test_import_validation(self, client):
        res = client.post("/api/v1/workflow-templates/solar/import", json={"rows": [{"phase": "LEAD"}]})
        assert res.status_code == 422
        assert res.get_json()["details"]["rows"]

    def test_import_requires_rows(self, client):
        res = client.post("/api/v1/workflow-templates/solar/import", json={})
        assert res.status_code == 400

    def test_import_session_flow(self, client):
        res = client.post("/api/v1/workflow-templates/import-sessions", json={"workflow_type": "SOLAR"})
        assert res.status_code == 201
        sid = res.get_json()["session_id"]

        res = client.post(f"/api/v1/workflow-templates/import-sessions/{sid}/rows", json={"rows": [
            {"phase": "LEAD", "section": "Intake", "line_item": "Survey roof"},
        ]})
        assert res.get_json()["staged_rows"] == 1

        res = client.post(f"/api/v1/workflow-templates/import-sessions/{sid}/commit")
        assert res.status_code == 201
        assert client.post(f"/api/v1/workflow-templates/import-sessions/{sid}/commit").status_code == 404

    def test_display_label(self, client, templates):
        res = client.get("/api/v1/workflow-templates/display-label?name=Pull%20permits&phase=APPROVED")
        assert res.get_json()["section"] == "Pre-Job Actions - Office"

        first = _first_ids(templates, 1)[0]
        res = client.get(f"/api/v1/workflow-templates/display-label?name={first}&phase=LEAD&workflow_type=ROOFING")
        assert res.get_json()["matched_by"] == "id"

        assert client.get("/api/v1/workflow-templates/display-label").status_code == 400


# ═══════════════════════════════════════════════════════════════════════════
#  Scheduler & health
# ═══════════════════════════════════════════════════════════════════════════


class TestSchedulerAndHealthApi:
    def test_list_jobs(self, client):
        jobs = client.get("/api/v1/scheduler/jobs").get_json()["jobs"]
        assert {j["job_name"] for j in jobs} >= {"workflow_healing_sweep", "batch_alert_generation"}
        assert all(j["db_record"]["is_enabled"] for j in jobs)

    def test_run_job(self, client, templates):
        _create_project(client)
        res = client.post("/api/v1/scheduler/jobs/batch_alert_generation/run")
        assert res.status_code == 200
        assert res.get_json()["status"] == "success"

    def test_run_unknown_job(self, client):
        assert client.post("/api/v1/scheduler/jobs/nope/run").status_code == 404

    def test_health(self, client, templates):
        assert client.get("/api/v1/health").status_code == 200
        assert client.get("/api/v1/health/ready").get_json() == {"status": "ok"}
        live = client.get("/api/v1/health/live").get_json()
        assert live["status"] == "healthy"
        assert live["checks"]["cache"]["status"] == "ok"
        assert "ROOFING" in live["checks"]["templates"]["workflow_types"]

    def test_unknown_route(self, client):
        res = client.get("/api/v1/nothing-here")
        assert res.status_code == 404
        assert res.get_json()["error"] == "Not found"
