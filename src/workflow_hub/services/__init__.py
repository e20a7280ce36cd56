"""Workflow-hub services: workflow operations, execution tracking and analytics."""

from __future__ import annotations

from workflow_hub.services.analytics import AnalyticsAggregator, WorkflowAnalytics
from workflow_hub.services.execution_tracker import ExecutionSummary, ExecutionTracker
from workflow_hub.services.pagination import Page, PageRequest, Pagination
from workflow_hub.services.stores import Stores
from workflow_hub.services.uploads import S3UploadUrlIssuer, UploadTicket, UploadUrlIssuer
from workflow_hub.services.workflow_service import (
    DeleteOutcome,
    ReorderOutcome,
    StepBatchResult,
    WorkflowDetail,
    WorkflowService,
    WorkflowSummary,
    WorkflowUpdate,
)

__all__ = [
    "AnalyticsAggregator",
    "DeleteOutcome",
    "ExecutionSummary",
    "ExecutionTracker",
    "Page",
    "PageRequest",
    "Pagination",
    "ReorderOutcome",
    "S3UploadUrlIssuer",
    "StepBatchResult",
    "Stores",
    "UploadTicket",
    "UploadUrlIssuer",
    "WorkflowAnalytics",
    "WorkflowDetail",
    "WorkflowService",
    "WorkflowSummary",
    "WorkflowUpdate",
]
