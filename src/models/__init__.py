"""
Data models and schemas for the application
"""

from .github import EventType, WebhookEvent
from .jobs import (
    JobType,
    JobStatus,
    JobCreate,
    Job,
    RetryPolicy,
    BackoffPolicy,
    PrReviewPayload,
    IssueCommentPayload,
    ReviewCommentPayload,
)

__all__ = [
    "EventType",
    "WebhookEvent",
    "JobType",
    "JobStatus",
    "JobCreate",
    "Job",
    "RetryPolicy",
    "BackoffPolicy",
    "PrReviewPayload",
    "IssueCommentPayload",
    "ReviewCommentPayload",
]
