"""Default workflow templates seeded by ``flask seed-workflow-templates``."""

from __future__ import annotations

import logging

from app.models.workflow import WorkflowPhase
from app.services.template_import import import_rows

logger = logging.getLogger(__name__)


def _step(phase, section, line_item, role, description=""):
    return {
        "phase": phase,
        "section": section,
        "line_item": line_item,
        "responsible_role": role,
        "description": description,
    }


ROOFING_ROWS = [
    # LEAD
    _step("LEAD", "Input Customer Information", "Input Customer Information", "OFFICE",
          "Input customer contact and property information"),
    _step("LEAD", "Complete Questions to Ask Checklist", "Complete Questions to Ask Checklist", "OFFICE",
          "Complete initial customer questionnaire"),
    _step("LEAD", "Input Lead Property Information", "Input Lead Property Information", "OFFICE",
          "Add property photos and details"),
    _step("LEAD", "Assign A Project Manager", "Assign A Project Manager", "OFFICE",
          "Assign and brief the project manager"),
    _step("LEAD", "Schedule Initial Inspection", "Schedule Initial Inspection", "OFFICE",
          "Schedule site inspection with customer"),
    # PROSPECT
    _step("PROSPECT", "Site Inspection", "Site Inspection", "PROJECT_MANAGER",
          "Conduct on-site inspection and documentation"),
    _step("PROSPECT", "Write Estimate", "Write Estimate", "PROJECT_MANAGER", "Create project estimate"),
    _step("PROSPECT", "Insurance Process", "Insurance Process", "ADMINISTRATION",
          "Process insurance claim and documentation"),
    _step("PROSPECT", "Agreement Preparation", "Agreement Preparation", "ADMINISTRATION",
          "Prepare contract and agreement documents"),
    _step("PROSPECT", "Agreement Signing", "Agreement Signing", "ADMINISTRATION",
          "Get customer signatures on agreements"),
    # APPROVED
    _step("APPROVED", "Administrative Setup", "Administrative Setup", "ADMINISTRATION",
          "Set up project administration"),
    _step("APPROVED", "Pre-Job Actions", "Pre-Job Actions", "OFFICE", "Complete pre-job requirements"),
    _step("APPROVED", "Prepare for Production", "Prepare for Production", "ADMINISTRATION",
          "Prepare materials and crew for production"),
    # EXECUTION
    _step("EXECUTION", "Installation", "Installation", "FIELD_DIRECTOR", "Execute roofing installation"),
    _step("EXECUTION", "Quality Check", "Quality Check", "ROOF_SUPERVISOR", "Perform quality inspection"),
    _step("EXECUTION", "Multiple Trades", "Multiple Trades", "ADMINISTRATION", "Coordinate multiple trade work"),
    _step("EXECUTION", "Subcontractor Work", "Subcontractor Work", "ADMINISTRATION",
          "Manage subcontractor activities"),
    _step("EXECUTION", "Update Customer", "Update Customer", "ADMINISTRATION", "Provide customer updates"),
    # SECOND_SUPPLEMENT
    _step("SECOND_SUPP", "Create Supp in Xactimate", "Create Supp in Xactimate", "ADMINISTRATION",
          "Create supplement in Xactimate"),
    _step("SECOND_SUPP", "Follow-Up Calls", "Follow-Up Calls", "ADMINISTRATION",
          "Make insurance follow-up calls"),
    _step("SECOND_SUPP", "Review Approved Supp", "Review Approved Supp", "ADMINISTRATION",
          "Review approved supplement"),
    _step("SECOND_SUPP", "Customer Update", "Customer Update", "ADMINISTRATION",
          "Update customer on supplement status"),
    # COMPLETION
    _step("COMPLETION", "Financial Processing", "Financial Processing", "ADMINISTRATION",
          "Process project financials"),
    _step("COMPLETION", "Project Closeout", "Project Closeout", "OFFICE",
          "Complete project closeout procedures"),
]

GUTTERS_ROWS = [
    _step("LEAD", "Input Customer Information", "Input Customer Information", "OFFICE"),
    _step("LEAD", "Schedule Gutter Inspection", "Schedule Gutter Inspection", "OFFICE"),
    _step("PROSPECT", "Gutter Measurement", "Measure gutter runs and downspouts", "PROJECT_MANAGER"),
    _step("PROSPECT", "Write Estimate", "Write gutter estimate", "PROJECT_MANAGER"),
    _step("APPROVED", "Administrative Setup", "Order gutter materials", "ADMINISTRATION"),
    _step("EXECUTION", "Installation", "Install gutters", "FIELD_DIRECTOR"),
    _step("EXECUTION", "Quality Check", "Final gutter inspection", "FIELD_DIRECTOR"),
    _step("COMPLETION", "Project Closeout", "Collect final payment", "ADMINISTRATION"),
]

DEFAULT_TEMPLATES = {
    "ROOFING": ROOFING_ROWS,
    "GUTTERS": GUTTERS_ROWS,
}


def seed_default_templates() -> int:
    """Import every default template whose workflow type has no phases yet."""
    seeded = 0
    for workflow_type, rows in DEFAULT_TEMPLATES.items():
        if WorkflowPhase.query.filter_by(workflow_type=workflow_type).first():
            logger.debug("Template %s already present, skipping", workflow_type)
            continue
        import_rows(workflow_type, rows, replace=False)
        seeded += 1
    return seeded
