"""
Project Workflow Platform
Blueprint registry.

    workflow_bp    /api/v1                      projects, trackers, alerts, overrides
    template_bp    /api/v1/workflow-templates   templates, imports, display labels
    scheduler_bp   /api/v1/scheduler            maintenance jobs
    health_bp      /api/v1/health               readiness + liveness
"""
