"""
Tests — workflow templates: store, import, import sessions, seeding.

Covers:
    1. Snapshot loading, ordering and cache invalidation
    2. Unavailable templates and the default denominator
    3. Row validation and structural checks
    4. Re-import retiring missing rows
    5. Chunked import sessions
"""

import pytest

from app.core.exceptions import NotFoundError, TemplateUnavailableError, ValidationError
from app.models import db
from app.models.workflow import WorkflowLineItem
from app.services import template_store
from app.services.seed_templates import ROOFING_ROWS, seed_default_templates
from app.services.template_import import import_rows, import_sessions


def _rows(*items, phase="LEAD", section="Intake"):
    return [{"phase": phase, "section": section, "line_item": name} for name in items]


# ═══════════════════════════════════════════════════════════════════════════
#  Store
# ═══════════════════════════════════════════════════════════════════════════


class TestTemplateStore:
    def test_seeded_roofing_template(self, templates):
        roofing = templates["ROOFING"]
        assert len(roofing) == len(ROOFING_ROWS) == 24
        assert [p.phase_type for p in roofing.phases] == [
            "LEAD", "PROSPECT", "APPROVED", "EXECUTION", "SECOND_SUPPLEMENT", "COMPLETION",
        ]
        first = roofing.line_item(roofing.sequence[0].line_item_id)
        assert first.name == "Input Customer Information"
        assert template_store.get_total_line_item_count("roofing") == 24

    def test_lists_workflow_types(self, templates):
        assert template_store.list_workflow_types() == ["GUTTERS", "ROOFING"]

    def test_sequence_follows_display_order(self):
        import_rows("SIDING", [
            {"phase": "PROSPECT", "section": "Measure", "line_item": "Measure walls"},
            {"phase": "LEAD", "section": "Intake", "line_item": "Second", "line_item_order": 2},
            {"phase": "LEAD", "section": "Intake", "line_item": "First", "line_item_order": 1},
        ])
        template = template_store.get_template("SIDING")
        names = [template.line_item(e.line_item_id).name for e in template_store.flatten_sequence("SIDING")]
        assert names == ["First", "Second", "Measure walls"]

    def test_unknown_type_is_unavailable(self):
        with pytest.raises(TemplateUnavailableError):
            template_store.get_template("SOLAR")
        assert template_store.find_template("SOLAR") is None

    def test_unavailable_template_uses_default_denominator(self, app):
        assert template_store.get_total_line_item_count("SOLAR") == app.config["WORKFLOW_DEFAULT_TOTAL_LINE_ITEMS"]

    def test_cache_is_invalidated_on_import(self):
        import_rows("SIDING", _rows("One", "Two"))
        assert len(template_store.get_template("SIDING")) == 2
        import_rows("SIDING", _rows("One", "Two", "Three"))
        assert len(template_store.get_template("SIDING")) == 3

    def test_stale_cache_until_invalidated(self):
        import_rows("SIDING", _rows("One", "Two"))
        template_store.get_template("SIDING")
        item = WorkflowLineItem.query.filter_by(name="Two").one()
        item.is_active = False
        db.session.commit()
        assert len(template_store.get_template("SIDING")) == 2
        template_store.invalidate_template_cache("SIDING")
        assert len(template_store.get_template("SIDING")) == 1


# ═══════════════════════════════════════════════════════════════════════════
#  Import
# ═══════════════════════════════════════════════════════════════════════════


class TestImport:
    def test_rejects_invalid_rows_with_every_problem(self):
        with pytest.raises(ValidationError) as exc:
            import_rows("SIDING", [
                {"phase": "NOPE", "section": "Intake", "line_item": "A"},
                {"phase": "LEAD", "section": "", "line_item": "B"},
                {"phase": "LEAD", "section": "Intake", "line_item": "C", "responsible_role": "JANITOR"},
            ])
        problems = exc.value.details["rows"]
        assert len(problems) == 3
        assert template_store.find_template("SIDING") is None

    def test_rejects_duplicate_line_items(self):
        with pytest.raises(ValidationError):
            import_rows("SIDING", _rows("Same", "Same"))

    def test_rejects_empty_import(self):
        with pytest.raises(ValidationError):
            import_rows("SIDING", [])

    def test_accepts_phase_aliases(self):
        summary = import_rows("SIDING", _rows("Draft supplement", phase="2nd Supp", section="Supp"))
        assert summary.phases == 1
        assert template_store.get_template("SIDING").phases[0].phase_type == "SECOND_SUPPLEMENT"

    def test_reimport_retires_missing_rows_and_keeps_ids(self):
        import_rows("SIDING", _rows("One", "Two", "Three"))
        before = {li.name: li.id for li in template_store.get_template("SIDING").phases[0].sections[0].line_items}

        summary = import_rows("SIDING", _rows("One", "Three"))
        assert summary.retired == 1
        template = template_store.get_template("SIDING")
        after = {li.name: li.id for li in template.phases[0].sections[0].line_items}
        assert after == {"One": before["One"], "Three": before["Three"]}
        assert WorkflowLineItem.query.filter_by(name="Two", is_active=False).count() == 1

    def test_merge_import_keeps_existing_rows(self):
        import_rows("SIDING", _rows("One"))
        import_rows("SIDING", _rows("Two", section="Follow-up"), replace=False)
        assert len(template_store.get_template("SIDING")) == 2

    def test_seeding_is_idempotent(self, templates):
        assert seed_default_templates() == 0


# ═══════════════════════════════════════════════════════════════════════════
#  Import sessions
# ═══════════════════════════════════════════════════════════════════════════


class TestImportSessions:
    def test_chunked_import(self):
        session = import_sessions.create("siding")
        import_sessions.add_rows(session["id"], _rows("One", "Two"))
        import_sessions.add_rows(session["id"], _rows("Three", phase="PROSPECT", section="Measure"))

        summary = import_sessions.commit(session["id"])
        assert summary.line_items == 3
        assert len(template_store.get_template("SIDING")) == 3
        with pytest.raises(NotFoundError):
            import_sessions.get(session["id"])

    def test_invalid_chunk_is_rejected_whole(self):
        session = import_sessions.create("SIDING")
        import_sessions.add_rows(session["id"], _rows("One"))
        with pytest.raises(ValidationError):
            import_sessions.add_rows(session["id"], [
                {"phase": "LEAD", "section": "Intake", "line_item": "Two"},
                {"phase": "LEAD", "section": "Intake"},
            ])
        assert len(import_sessions.get(session["id"])["rows"]) == 1

    def test_failed_commit_keeps_session(self):
        session = import_sessions.create("SIDING")
        import_sessions.add_rows(session["id"], _rows("Dup"))
        import_sessions.add_rows(session["id"], _rows("Dup"))
        with pytest.raises(ValidationError):
            import_sessions.commit(session["id"])
        assert len(import_sessions.get(session["id"])["rows"]) == 2

    def test_discard(self):
        session = import_sessions.create("SIDING")
        import_sessions.discard(session["id"])
        with pytest.raises(NotFoundError):
            import_sessions.discard(session["id"])
