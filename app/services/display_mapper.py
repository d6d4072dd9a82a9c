"""
Phase/Display Mapper

Turns a freeform step name (or a stable line-item id) into the labels the
UI shows: a role-suffixed section label and a line-item label.

Matching tiers, first hit wins:
    1. id         stable line-item id resolved against a template snapshot
       section    exact section key in the phase table
    2. section    section key contained in the name
    3. line_item  known line-item label contained in (or containing) the name
    4. fallback   generic per-phase section label

``DisplayLabel`` is output only. It is a distinct type so it cannot be
passed back into the progression engine in place of an id.
"""

from __future__ import annotations

from dataclasses import dataclass

from app.models.workflow import normalize_phase_type
from app.services.template_store import WorkflowTemplate


@dataclass(frozen=True)
class DisplayLabel:
    section: str
    line_item: str
    phase: str
    matched_by: str

    def to_dict(self) -> dict:
        return {
            "section": self.section,
            "line_item": self.line_item,
            "phase": self.phase,
            "matched_by": self.matched_by,
        }


GENERAL_SECTION = "General Workflow"
GENERIC_STEP = "Workflow Step"

# phase -> section key -> (section label, known line-item labels)
SECTION_TABLE: dict[str, dict[str, tuple[str, tuple[str, ...]]]] = {
    "LEAD": {
        "Input Customer Information": (
            "Input Customer Information - Office",
            ("Make sure the name is spelled correctly",
             "Make sure the email is correct. Send a confirmation email to confirm email."),
        ),
        "Complete Questions to Ask Checklist": (
            "Complete Questions to Ask Checklist - Office",
            ("Input answers from Question Checklist into notes", "Record property details"),
        ),
        "Input Lead Property Information": (
            "Input Lead Property Information - Office",
            ("Add Home View photos - Maps", "Add Street View photos - Google Maps",
             "Add elevation screenshot - PPRBD", "Add property age - County Assessor Website",
             "Evaluate ladder requirements - By looking at the room"),
        ),
        "Assign A Project Manager": (
            "Assign A Project Manager - Office",
            ("Use workflow from Lead Assigning Flowchart", "Select and brief the Project Manager"),
        ),
        "Schedule Initial Inspection": (
            "Schedule Initial Inspection - Office",
            ("Call Customer and coordinate with PM schedule", "Create Calendar Appointment in AL"),
        ),
    },
    "PROSPECT": {
        "Site Inspection": (
            "Site Inspection - Project Manager",
            ("Take site photos", "Complete inspection form", "Document material colors",
             "Capture Hover photos", "Present upgrade options"),
        ),
        "Write Estimate": (
            "Write Estimate - Project Manager",
            ("Fill out Estimate Form", "Write initial estimate - AccuLynx",
             "Write Customer Pay Estimates", "Send for Approval"),
        ),
        "Insurance Process": (
            "Insurance Process - Administration",
            ("Compare field vs insurance estimates", "Identify supplemental items",
             "Draft estimate in Xactimate"),
        ),
        "Agreement Preparation": (
            "Agreement Preparation - Administration",
            ("Trade cost analysis", "Prepare Estimate Forms", "Match AL estimates",
             "Calculate customer pay items", "Send shingle/class4 email - PDF"),
        ),
        "Agreement Signing": (
            "Agreement Signing - Administration",
            ("Review and send signature request", "Record in QuickBooks", "Process deposit",
             "Collect signed disclaimers"),
        ),
    },
    "APPROVED": {
        "Administrative Setup": (
            "Administrative Setup - Administration",
            ("Confirm shingle choice", "Order materials", "Create labor orders",
             "Send labor order to roofing crew"),
        ),
        "Pre-Job Actions": (
            "Pre-Job Actions - Office",
            ("Pull permits",),
        ),
        "Prepare for Production": (
            "Prepare for Production - Administration",
            ("All pictures in Job (Gutter, Ventilation, Elevation)", "Verify Labor Order in Scheduler",
             "Verify Material Orders", "Subcontractor Work"),
        ),
    },
    "EXECUTION": {
        "Installation": (
            "Installation - Field Director",
            ("Document work start", "Capture progress photos", "Daily Job Progress Note",
             "Upload Pictures"),
        ),
        "Quality Check": (
            "Quality Check - Field + Admin",
            ("Completion photos - Roof Supervisor", "Complete inspection - Roof Supervisor",
             "Upload Roof Packet", "Verify Packet is complete - Admin"),
        ),
        "Multiple Trades": (
            "Multiple Trades - Administration",
            ("Confirm start date", "Confirm material/labor for all trades"),
        ),
        "Subcontractor Work": (
            "Subcontractor Work - Administration",
            ("Coordinate with subcontractors", "Verify subcontractor permits"),
        ),
    },
    "SECOND_SUPPLEMENT": {
        "Supplement Assessment": (
            "Supplement Assessment - Administration",
            ("Assess additional damage", "Document supplement needs", "Prepare supplement estimate"),
        ),
        "Additional Work": (
            "Additional Work - Field Director",
            ("Execute additional scope", "Document additional work", "Update completion status"),
        ),
    },
    "COMPLETION": {
        "Project Closeout": (
            "Project Closeout - Administration",
            ("Final inspection completed", "Customer walkthrough", "Submit warranty information",
             "Process final payment"),
        ),
        "Customer Satisfaction": (
            "Customer Satisfaction - Administration",
            ("Send satisfaction survey", "Collect customer feedback", "Update customer records"),
        ),
    },
}

PHASE_FALLBACK_SECTIONS = {
    "LEAD": "Lead Management - Office",
    "PROSPECT": "Prospect Development - Project Manager",
    "APPROVED": "Project Setup - Administration",
    "EXECUTION": "Project Execution - Field Director",
    "SECOND_SUPPLEMENT": "Supplement Work - Administration",
    "COMPLETION": "Project Completion - Administration",
}


def _phase(phase_key) -> str:
    value = getattr(phase_key, "value", phase_key)
    return normalize_phase_type(value) or str(value or "LEAD").strip().upper() or "LEAD"


def _as_id(value) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _from_template(line_item_id: int, template: WorkflowTemplate) -> DisplayLabel | None:
    entry = template.entry_for(line_item_id)
    if entry is None:
        return None
    section = template.section(entry.section_id)
    phase = template.phase(entry.phase_id)
    return DisplayLabel(
        section=section.label,
        line_item=template.line_item(line_item_id).name,
        phase=phase.phase_type,
        matched_by="id",
    )


def _contains(a: str, b: str) -> bool:
    a, b = a.lower(), b.lower()
    return a in b or b in a


def map_line_item_to_display(name_or_id, phase_key, template: WorkflowTemplate | None = None) -> DisplayLabel:
    """Resolve display labels for a line item name or id within *phase_key*."""
    phase = _phase(phase_key)

    line_item_id = _as_id(name_or_id)
    if line_item_id is not None and template is not None:
        label = _from_template(line_item_id, template)
        if label is not None:
            return label

    name = str(name_or_id).strip() if name_or_id is not None else ""
    sections = SECTION_TABLE.get(phase)
    if not sections:
        return DisplayLabel(GENERAL_SECTION, name or GENERIC_STEP, phase, "fallback")

    if name in sections:
        section_label, items = sections[name]
        return DisplayLabel(section_label, items[0] if items else name, phase, "section")

    lowered = name.lower()
    if lowered:
        for key, (section_label, items) in sections.items():
            if key.lower() in lowered:
                item = next((i for i in items if _contains(i, name)), name)
                return DisplayLabel(section_label, item, phase, "section")

        for section_label, items in sections.values():
            for item in items:
                if _contains(item, name):
                    return DisplayLabel(section_label, item, phase, "line_item")

    return DisplayLabel(PHASE_FALLBACK_SECTIONS[phase], name or GENERIC_STEP, phase, "fallback")


def sections_for_phase(phase_key) -> list[str]:
    return [label for label, _ in SECTION_TABLE.get(_phase(phase_key), {}).values()]
