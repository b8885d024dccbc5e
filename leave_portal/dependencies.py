"""Shared FastAPI dependencies."""

from fastapi import Request

from leave_portal.leave.service import ApprovalWorkflow


def get_workflow(request: Request) -> ApprovalWorkflow:
    """The application's ApprovalWorkflow, built once by ``create_app``."""
    return request.app.state.workflow
