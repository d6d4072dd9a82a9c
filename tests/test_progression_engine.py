"""
Tests — progression engine (pure, no database).

Covers:
    1. Tracker initialization (default start, starting phase, multiple workflows)
    2. Completion: in order, out of order, duplicate, skipped items
    3. Uncompletion and pointer recomputation
    4. Progress rounding and phase derivation
    5. Half-initialized detection
"""

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from app.core.exceptions import UnknownLineItemError
from app.services import progression_engine as engine
from app.services.display_mapper import DisplayLabel
from app.services.progression_engine import CompletionOutcome, PhaseKey, TrackerState
from app.services.template_store import (
    TemplateLineItem,
    TemplatePhase,
    TemplateSection,
    WorkflowTemplate,
)


def _template(workflow_type="ROOFING"):
    """LEAD: 100, 101 (section 10) / PROSPECT: 200 (section 20)."""
    return WorkflowTemplate(
        workflow_type=workflow_type,
        phases=(
            TemplatePhase(id=1, phase_type="LEAD", display_order=1, sections=(
                TemplateSection(id=10, name="Input Customer Information", display_order=1, line_items=(
                    TemplateLineItem(id=100, name="Make sure the name is spelled correctly", display_order=1),
                    TemplateLineItem(id=101, name="Confirm email", display_order=2),
                )),
            )),
            TemplatePhase(id=2, phase_type="PROSPECT", display_order=2, sections=(
                TemplateSection(id=20, name="Site Inspection", display_order=1, line_items=(
                    TemplateLineItem(id=200, name="Take site photos", display_order=1),
                )),
            )),
        ),
    )


@pytest.fixture()
def template():
    return _template()


@pytest.fixture()
def tracker(template):
    return engine.initialize_tracker(1, template, is_main_workflow=True)


# ═══════════════════════════════════════════════════════════════════════════
#  Initialization
# ═══════════════════════════════════════════════════════════════════════════


class TestInitialize:
    def test_points_at_first_sequence_entry(self, tracker):
        assert tracker.pointer == (1, 10, 100)
        assert tracker.total_line_items == 3
        assert tracker.completed_items == ()
        assert tracker.is_main_workflow is True

    def test_starting_phase_skips_earlier_items(self, template):
        state = engine.initialize_tracker(1, template, starting_phase="PROSPECT")
        assert state.pointer == (2, 20, 200)
        assert state.skipped_line_item_ids == {100, 101}
        assert state.completed_line_item_ids == frozenset()
        assert engine.compute_progress(state, template) == 67

    def test_unknown_starting_phase_starts_at_beginning(self, template):
        state = engine.initialize_tracker(1, template, starting_phase="NOT_A_PHASE")
        assert state.pointer == (1, 10, 100)

    def test_multiple_workflows_have_exactly_one_main(self, template):
        gutters = _template("GUTTERS")
        states = engine.initialize_multiple_workflows(
            7, ["gutters", "ROOFING", "ROOFING"], {"ROOFING": template, "GUTTERS": gutters},
            primary_type="roofing",
        )
        assert [s.workflow_type for s in states] == ["GUTTERS", "ROOFING"]
        assert [s.is_main_workflow for s in states] == [False, True]
        assert all(s.project_id == 7 for s in states)

    def test_primary_not_requested_falls_back_to_first(self, template):
        states = engine.initialize_multiple_workflows(
            7, ["ROOFING"], {"ROOFING": template}, primary_type="SIDING",
        )
        assert states[0].is_main_workflow is True

    def test_missing_template_yields_null_pointer_tracker(self, template):
        states = engine.initialize_multiple_workflows(
            7, ["ROOFING", "SIDING"], {"ROOFING": template}, default_total_line_items=24,
        )
        siding = states[1]
        assert siding.is_exhausted
        assert siding.total_line_items == 24
        assert siding.trade_name == "Siding"

    def test_placeholder_records_starting_phase(self, template):
        states = engine.initialize_multiple_workflows(
            7, ["ROOFING", "SIDING"], {"ROOFING": template}, starting_phase="prospect",
        )
        assert [s.starting_phase for s in states] == ["PROSPECT", "PROSPECT"]
        assert states[0].skipped_line_item_ids == {100, 101}


# ═══════════════════════════════════════════════════════════════════════════
#  Completion
# ═══════════════════════════════════════════════════════════════════════════


class TestComplete:
    def test_full_walkthrough(self, tracker, template):
        first = engine.complete_line_item(tracker, template, 100)
        assert first.outcome is CompletionOutcome.COMPLETED
        assert first.tracker.pointer == (1, 10, 101)
        assert first.newly_active.id == 101
        assert engine.compute_progress(first.tracker, template) == 33

        second = engine.complete_line_item(first.tracker, template, 101)
        assert second.tracker.pointer == (2, 20, 200)
        assert second.phase_changed and second.section_changed
        assert engine.compute_progress(second.tracker, template) == 67
        assert engine.derive_phase_key(second.tracker, template) is PhaseKey.PROSPECT

        third = engine.complete_line_item(second.tracker, template, "200")
        assert third.is_complete
        assert third.newly_active is None
        assert third.tracker.is_exhausted
        assert engine.compute_progress(third.tracker, template) == 100
        assert engine.derive_phase_key(third.tracker, template) is PhaseKey.COMPLETION

    def test_out_of_order_completion_keeps_pointer(self, tracker, template):
        result = engine.complete_line_item(tracker, template, 200)
        assert result.tracker.pointer == (1, 10, 100)
        assert result.newly_active is None
        assert engine.compute_progress(result.tracker, template) == 33

        # Filling the gap jumps straight past the already completed item
        result = engine.complete_line_item(result.tracker, template, 100)
        result = engine.complete_line_item(result.tracker, template, 101)
        assert result.tracker.is_exhausted

    def test_duplicate_completion_is_a_no_op(self, tracker, template):
        once = engine.complete_line_item(tracker, template, 100)
        twice = engine.complete_line_item(once.tracker, template, 100)
        assert twice.already_completed
        assert twice.tracker is once.tracker
        assert twice.completed_item is None

    def test_completing_skipped_item_records_real_completion(self, template):
        state = engine.initialize_tracker(1, template, starting_phase="PROSPECT")
        result = engine.complete_line_item(state, template, 100, completed_by="ops")
        assert 100 in result.tracker.completed_line_item_ids
        assert 100 not in result.tracker.skipped_line_item_ids
        assert len([c for c in result.tracker.completed_items if c.line_item_id == 100]) == 1

    def test_records_completion_metadata(self, tracker, template):
        when = datetime(2024, 5, 1, tzinfo=timezone.utc)
        result = engine.complete_line_item(tracker, template, 100, completed_at=when, notes="done", completed_by="kim")
        item = result.completed_item
        assert (item.section_id, item.phase_id) == (10, 1)
        assert item.completed_at == when
        assert item.notes == "done"

    def test_unknown_line_item_raises(self, tracker, template):
        with pytest.raises(UnknownLineItemError):
            engine.complete_line_item(tracker, template, 999)

    def test_display_label_is_rejected(self, tracker, template):
        label = DisplayLabel("Input Customer Information - Office", "Confirm email", "LEAD", "section")
        with pytest.raises(TypeError):
            engine.complete_line_item(tracker, template, label)

    def test_template_of_another_workflow_is_rejected(self, tracker):
        with pytest.raises(ValueError):
            engine.complete_line_item(tracker, _template("GUTTERS"), 100)


# ═══════════════════════════════════════════════════════════════════════════
#  Uncompletion
# ═══════════════════════════════════════════════════════════════════════════


class TestUncomplete:
    def test_pointer_moves_back(self, tracker, template):
        state = engine.complete_line_item(tracker, template, 100).tracker
        state = engine.complete_line_item(state, template, 101).tracker
        reverted = engine.uncomplete_line_item(state, template, 100)
        assert reverted.pointer == (1, 10, 100)
        assert reverted.completed_line_item_ids == {101}

    def test_unresolved_item_returns_same_state(self, tracker, template):
        assert engine.uncomplete_line_item(tracker, template, 101) is tracker

    def test_reopens_exhausted_tracker(self, tracker, template):
        state = tracker
        for item_id in (100, 101, 200):
            state = engine.complete_line_item(state, template, item_id).tracker
        reverted = engine.uncomplete_line_item(state, template, 200)
        assert reverted.pointer == (2, 20, 200)

    def test_unknown_item_raises(self, tracker, template):
        with pytest.raises(UnknownLineItemError):
            engine.uncomplete_line_item(tracker, template, 999)


# ═══════════════════════════════════════════════════════════════════════════
#  Progress & phase
# ═══════════════════════════════════════════════════════════════════════════


class TestProgressAndPhase:
    def test_rounds_half_up(self, tracker, template):
        state = engine.complete_line_item(tracker, template, 100).tracker
        assert engine.compute_progress(state, template, total_line_items=8) == 13
        assert engine.compute_progress(state, template, total_line_items=24) == 4

    def test_zero_denominator_is_zero(self):
        empty = WorkflowTemplate(workflow_type="ROOFING")
        state = TrackerState(project_id=1, workflow_type="ROOFING")
        assert engine.compute_progress(state, empty) == 0

    def test_clamped_to_hundred(self, template):
        state = TrackerState(
            project_id=1, workflow_type="ROOFING", total_line_items=2,
            completed_items=tuple(
                engine.CompletedItem(i, None, None, datetime.now(timezone.utc)) for i in (100, 101, 200)
            ),
        )
        assert engine.compute_progress(state, template) == 100

    def test_also_resolved_counts_toward_progress(self, tracker, template):
        skipped = engine.line_items_in_phases(template, ["LEAD"])
        assert skipped == {100, 101}
        assert engine.compute_progress(tracker, template, also_resolved=skipped) == 67

    def test_override_wins(self, tracker, template):
        override = SimpleNamespace(to_phase="execution", is_active=True)
        assert engine.derive_phase_key(tracker, template, override) is PhaseKey.EXECUTION

    def test_inactive_override_is_ignored(self, tracker, template):
        override = SimpleNamespace(to_phase="EXECUTION", is_active=False)
        assert engine.derive_phase_key(tracker, template, override) is PhaseKey.LEAD

    @pytest.mark.parametrize("status,expected", [
        ("PENDING", PhaseKey.LEAD),
        ("IN_PROGRESS", PhaseKey.EXECUTION),
        ("COMPLETED", PhaseKey.COMPLETION),
        ("ON_HOLD", PhaseKey.LEAD),
        (None, PhaseKey.LEAD),
    ])
    def test_status_fallback_without_tracker(self, status, expected):
        assert engine.derive_phase_key(None, None, None, status) is expected

    def test_unresolvable_tracker_uses_status_fallback(self):
        placeholder = TrackerState(project_id=1, workflow_type="SOLAR", total_line_items=24)
        assert placeholder.is_exhausted
        assert engine.derive_phase_key(placeholder, None, None, "IN_PROGRESS") is PhaseKey.EXECUTION
        assert engine.derive_phase_key(placeholder, None, None, "PENDING") is PhaseKey.LEAD

    def test_phase_aliases(self):
        assert PhaseKey.parse("2nd supp") is PhaseKey.SECOND_SUPPLEMENT
        assert PhaseKey.parse("Second_Supp") is PhaseKey.SECOND_SUPPLEMENT
        assert PhaseKey.parse("bogus") is None


# ═══════════════════════════════════════════════════════════════════════════
#  Half-initialized trackers
# ═══════════════════════════════════════════════════════════════════════════


class TestHalfInitialized:
    def test_zero_total(self, template):
        state = TrackerState(project_id=1, workflow_type="ROOFING")
        assert engine.is_half_initialized(state, template)

    def test_null_pointer_with_unresolved_items(self, template):
        state = TrackerState(project_id=1, workflow_type="ROOFING", total_line_items=3)
        assert engine.is_half_initialized(state, template)

    def test_healthy_tracker(self, tracker, template):
        assert not engine.is_half_initialized(tracker, template)

    def test_reinitialize_keeps_completions(self, tracker, template):
        done = engine.complete_line_item(tracker, template, 200).tracker
        broken = done.replace(current_phase_id=None, current_section_id=None, current_line_item_id=None)
        healed = engine.initialize_tracker(1, template, existing=broken)
        assert healed.pointer == (1, 10, 100)
        assert healed.completed_line_item_ids == {200}
        assert healed.is_main_workflow is True

    def test_reinitialize_repeats_recorded_starting_phase(self, template):
        broken = TrackerState(project_id=1, workflow_type="ROOFING", starting_phase="PROSPECT")
        assert engine.is_half_initialized(broken, template)
        healed = engine.initialize_tracker(1, template, existing=broken)
        assert healed.pointer == (2, 20, 200)
        assert healed.skipped_line_item_ids == {100, 101}
        assert healed.starting_phase == "PROSPECT"
