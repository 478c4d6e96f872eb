"""
Error taxonomy for FlowBatch Core

ConfigurationError and AdapterError abort a run, InterpolationError only
degrades output, GraphIntegrityError is raised at graph mutation time.
"""
from typing import Any, Optional


class WorkflowError(Exception):
    """Base class for workflow engine errors"""
    pass


class ConfigurationError(WorkflowError):
    """A node is missing a required config field or is misconfigured"""
    pass


class AdapterError(WorkflowError):
    """
    A task adapter failed (transport error or non-2xx response)

    Args:
        message: Human-readable error text
        status: HTTP status code, if the backend answered
        body: Response body, if the backend answered
    """

    def __init__(self, message: str, status: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.status = status
        self.body = body


class TaskTimeoutError(AdapterError):
    """Adapter call timed out after exhausting its retries"""
    pass


class InterpolationError(WorkflowError):
    """A token could not be resolved (non-fatal, collected by the interpolator)"""

    def __init__(self, token: str, reason: str):
        super().__init__(f"{{{{{token}}}}}: {reason}")
        self.token = token
        self.reason = reason


class GraphIntegrityError(WorkflowError, ValueError):
    """A graph mutation would break a structural invariant"""
    pass


class ConcurrentRunError(WorkflowError):
    """A run was requested for a workflow that already has one in flight"""

    def __init__(self, workflow_id: str, active_run_id: str):
        super().__init__(f"Workflow {workflow_id} already has an active run ({active_run_id})")
        self.workflow_id = workflow_id
        self.active_run_id = active_run_id
