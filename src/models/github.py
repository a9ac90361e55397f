"""
GitHub webhook data models
"""

from enum import Enum
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field


class EventType(str, Enum):
    """GitHub webhook event types that can produce jobs"""

    PULL_REQUEST = "pull_request"
    ISSUE_COMMENT = "issue_comment"
    REVIEW_COMMENT = "pull_request_review_comment"


class GitHubUser(BaseModel):
    """GitHub user model"""

    login: str
    type: Optional[str] = None

    class Config:
        extra = "allow"


class GitHubRepository(BaseModel):
    """GitHub repository model"""

    name: str
    full_name: Optional[str] = None
    owner: GitHubUser

    class Config:
        extra = "allow"


class GitHubPullRequest(BaseModel):
    """GitHub pull request model"""

    number: int
    html_url: str = ""

    class Config:
        extra = "allow"


class GitHubIssue(BaseModel):
    """GitHub issue model (pull requests are issues carrying a pull_request link)"""

    number: int
    pull_request: Optional[Dict[str, Any]] = None

    class Config:
        extra = "allow"


class GitHubComment(BaseModel):
    """Issue or review comment model"""

    id: int
    body: str = ""
    user: GitHubUser
    path: Optional[str] = None
    line: Optional[int] = None
    position: Optional[int] = None
    diff_hunk: Optional[str] = None

    class Config:
        extra = "allow"


class PullRequestEventPayload(BaseModel):
    """Payload of a pull_request event"""

    action: str
    repository: GitHubRepository
    pull_request: GitHubPullRequest
    sender: Optional[GitHubUser] = None

    class Config:
        extra = "allow"


class IssueCommentEventPayload(BaseModel):
    """Payload of an issue_comment event"""

    action: str
    repository: GitHubRepository
    issue: GitHubIssue
    comment: GitHubComment
    sender: Optional[GitHubUser] = None

    class Config:
        extra = "allow"


class ReviewCommentEventPayload(BaseModel):
    """Payload of a pull_request_review_comment event"""

    action: str
    repository: GitHubRepository
    pull_request: GitHubPullRequest
    comment: GitHubComment
    sender: Optional[GitHubUser] = None

    class Config:
        extra = "allow"


class WebhookEvent(BaseModel):
    """Transport-level envelope of an inbound webhook delivery"""

    event_type: str
    action: Optional[str] = None
    installation_id: Optional[str] = None
    delivery_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_payload(
        cls, event_type: str, payload: Dict[str, Any], delivery_id: Optional[str] = None
    ) -> "WebhookEvent":
        """Build an event envelope from the decoded request body"""
        installation = payload.get("installation") or {}
        installation_id = installation.get("id") if isinstance(installation, dict) else None
        return cls(
            event_type=event_type,
            action=payload.get("action"),
            installation_id=str(installation_id) if installation_id is not None else None,
            delivery_id=delivery_id,
            payload=payload,
        )
