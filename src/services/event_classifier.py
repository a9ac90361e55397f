"""
Decides which inbound GitHub webhook events become queue jobs
"""

import structlog
from typing import Optional

from pydantic import ValidationError

from src.models.github import (
    EventType,
    GitHubComment,
    GitHubUser,
    IssueCommentEventPayload,
    PullRequestEventPayload,
    ReviewCommentEventPayload,
    WebhookEvent,
)
from src.models.jobs import (
    JobCreate,
    JobType,
    PrReviewPayload,
    IssueCommentPayload,
    ReviewCommentPayload,
)

logger = structlog.get_logger()

DEFAULT_BOT_MARKER = "🤖 "

PR_REVIEW_ACTIONS = ("opened", "synchronize")


class EventClassifier:
    """
    Maps a webhook event to at most one job.

    Pure: no network calls and no state. Events that do not qualify produce
    None; that is normal traffic, not an error.
    """

    def __init__(self, bot_username: str = "", bot_marker: str = DEFAULT_BOT_MARKER):
        self.bot_username = bot_username
        self.bot_marker = bot_marker

    def classify(self, event: WebhookEvent) -> Optional[JobCreate]:
        """Return the job this event should produce, or None"""
        if not event.installation_id:
            logger.warning(
                "Malformed webhook event: missing installation ID",
                event_type=event.event_type,
                action=event.action,
                delivery_id=event.delivery_id,
            )
            return None

        try:
            if event.event_type == EventType.PULL_REQUEST.value:
                return self._classify_pull_request(event)
            if event.event_type == EventType.ISSUE_COMMENT.value:
                return self._classify_issue_comment(event)
            if event.event_type == EventType.REVIEW_COMMENT.value:
                return self._classify_review_comment(event)
        except ValidationError as e:
            logger.warning(
                "Malformed webhook event: invalid payload",
                event_type=event.event_type,
                action=event.action,
                delivery_id=event.delivery_id,
                errors=e.error_count(),
            )
            return None

        logger.debug("Ignoring event type", event_type=event.event_type, action=event.action)
        return None

    def is_bot_authored(self, comment: GitHubComment, sender: Optional[GitHubUser] = None) -> bool:
        """A comment is the bot's own if it carries the marker or was written by the bot account"""
        if comment.body.startswith(self.bot_marker):
            return True
        if self.bot_username:
            if comment.user.login == self.bot_username:
                return True
            if sender is not None and sender.login == self.bot_username:
                return True
        return False

    def _classify_pull_request(self, event: WebhookEvent) -> Optional[JobCreate]:
        if event.action not in PR_REVIEW_ACTIONS:
            return None

        data = PullRequestEventPayload.model_validate(event.payload)
        payload = PrReviewPayload(
            installation_id=event.installation_id,
            owner=data.repository.owner.login,
            repo=data.repository.name,
            pull_number=data.pull_request.number,
        )

        logger.info(
            "Pull request qualifies for review",
            repo=f"{payload.owner}/{payload.repo}",
            pull_number=payload.pull_number,
            action=event.action,
        )
        return JobCreate(job_type=JobType.PR_REVIEW, payload=payload)

    def _classify_issue_comment(self, event: WebhookEvent) -> Optional[JobCreate]:
        if event.action != "created":
            return None

        data = IssueCommentEventPayload.model_validate(event.payload)

        # Only respond to comments on PRs, not regular issues
        if not data.issue.pull_request:
            return None

        if self.is_bot_authored(data.comment, data.sender):
            logger.debug("Skipping bot-authored comment", comment_id=data.comment.id)
            return None

        payload = IssueCommentPayload(
            installation_id=event.installation_id,
            owner=data.repository.owner.login,
            repo=data.repository.name,
            pr_number=data.issue.number,
            comment_body=data.comment.body,
            comment_user=data.comment.user.login,
        )

        logger.info(
            "Comment qualifies for response",
            repo=f"{payload.owner}/{payload.repo}",
            pr_number=payload.pr_number,
            comment_user=payload.comment_user,
        )
        return JobCreate(job_type=JobType.ISSUE_COMMENT, payload=payload)

    def _classify_review_comment(self, event: WebhookEvent) -> Optional[JobCreate]:
        if event.action != "created":
            return None

        data = ReviewCommentEventPayload.model_validate(event.payload)

        if self.is_bot_authored(data.comment, data.sender):
            logger.debug("Skipping bot-authored review comment", comment_id=data.comment.id)
            return None

        comment = data.comment
        payload = ReviewCommentPayload(
            installation_id=event.installation_id,
            owner=data.repository.owner.login,
            repo=data.repository.name,
            pr_number=data.pull_request.number,
            pr_url=data.pull_request.html_url,
            file_path=comment.path or "",
            line_position=comment.position or "N/A",
            comment_body=comment.body,
            comment_user=comment.user.login,
            line=comment.line,
            position=comment.position,
            diff_hunk=comment.diff_hunk,
            comment_id=comment.id,
        )

        logger.info(
            "Review comment qualifies for response",
            repo=f"{payload.owner}/{payload.repo}",
            pr_number=payload.pr_number,
            file_path=payload.file_path,
        )
        return JobCreate(job_type=JobType.REVIEW_COMMENT, payload=payload)
