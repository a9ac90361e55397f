"""
Job queue data models
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, Union
from pydantic import BaseModel, Field
import uuid


class JobType(str, Enum):
    """Job type enumeration"""

    PR_REVIEW = "pr-review"
    ISSUE_COMMENT = "issue-comment"
    REVIEW_COMMENT = "review-comment"


class JobStatus(str, Enum):
    """Job status enumeration"""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class PrReviewPayload(BaseModel):
    """Payload for reviewing a newly opened or updated pull request"""

    installation_id: str
    owner: str
    repo: str
    pull_number: int


class IssueCommentPayload(BaseModel):
    """Payload for replying to a conversation comment on a pull request"""

    installation_id: str
    owner: str
    repo: str
    pr_number: int
    comment_body: str
    comment_user: str


class ReviewCommentPayload(BaseModel):
    """Payload for replying inside an inline review comment thread"""

    installation_id: str
    owner: str
    repo: str
    pr_number: int
    pr_url: str
    file_path: str
    line_position: Union[int, str]
    comment_body: str
    comment_user: str
    line: Optional[int] = None
    position: Optional[int] = None
    diff_hunk: Optional[str] = None
    comment_id: int


JobPayload = Union[PrReviewPayload, IssueCommentPayload, ReviewCommentPayload]

PAYLOAD_MODELS = {
    JobType.PR_REVIEW: PrReviewPayload,
    JobType.ISSUE_COMMENT: IssueCommentPayload,
    JobType.REVIEW_COMMENT: ReviewCommentPayload,
}


class BackoffPolicy(BaseModel):
    """Exponential backoff between attempts of the same job"""

    type: str = "exponential"
    delay_ms: int = Field(default=5000, ge=0)

    def delay_before_attempt(self, attempt: int) -> float:
        """
        Seconds to wait before the given attempt number (1-based).

        The first attempt runs immediately; attempt n waits delay_ms * 2^(n-2).
        """
        if attempt < 2:
            return 0.0
        return self.delay_ms * (2 ** (attempt - 2)) / 1000.0


class RetryPolicy(BaseModel):
    """Retry policy attached to a job at enqueue time"""

    attempts: int = Field(default=3, ge=1)
    backoff: BackoffPolicy = Field(default_factory=BackoffPolicy)


DEFAULT_RETRY_POLICY = RetryPolicy(attempts=3, backoff=BackoffPolicy(type="exponential", delay_ms=5000))


class JobCreate(BaseModel):
    """Job creation request produced by the event classifier"""

    job_type: JobType
    payload: JobPayload
    policy: RetryPolicy = Field(default_factory=lambda: DEFAULT_RETRY_POLICY.model_copy(deep=True))


class Job(BaseModel):
    """Durable job record as stored by the queue broker"""

    job_id: str
    queue_name: str
    job_type: JobType
    payload: Dict[str, Any]
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    max_attempts: int = 3
    backoff_delay_ms: int = 5000
    available_at: datetime
    leased_until: Optional[datetime] = None
    last_error: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @classmethod
    def create_new(cls, job_create: JobCreate, queue_name: str, now: Optional[datetime] = None) -> "Job":
        """Create a new pending job from a job creation request"""
        now = now or datetime.now(timezone.utc)
        return cls(
            job_id=str(uuid.uuid4()),
            queue_name=queue_name,
            job_type=job_create.job_type,
            payload=job_create.payload.model_dump(),
            status=JobStatus.PENDING,
            attempts=0,
            max_attempts=job_create.policy.attempts,
            backoff_delay_ms=job_create.policy.backoff.delay_ms,
            available_at=now,
            created_at=now,
        )

    @property
    def backoff(self) -> BackoffPolicy:
        return BackoffPolicy(delay_ms=self.backoff_delay_ms)

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)

    def typed_payload(self) -> JobPayload:
        """Validate the stored payload back into the variant for this job type"""
        return PAYLOAD_MODELS[self.job_type].model_validate(self.payload)
