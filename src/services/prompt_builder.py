"""
Job payload to reviewer instruction conversion
"""

import structlog
from typing import Any, Callable, Dict, List

from src.models.jobs import (
    JobPayload,
    JobType,
    PrReviewPayload,
    IssueCommentPayload,
    ReviewCommentPayload,
)

logger = structlog.get_logger()


PR_REVIEW_RESPONSE_FORMAT: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "status": {
            "type": "string",
            "enum": ["approved", "changes_requested", "commented"],
        },
        "review": {
            "type": "object",
            "properties": {
                "summary": {"type": "string"},
                "keyPoints": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["summary"],
        },
    },
    "required": ["status", "review"],
}

STATUS_HEADINGS = {
    "approved": "Looks good",
    "changes_requested": "Changes requested",
    "commented": "Review notes",
}


class PromptBuilder:
    """Builds the single natural-language instruction sent to the reviewer for each job type"""

    def __init__(self):
        self.templates: Dict[JobType, Callable[[Any], str]] = {
            JobType.PR_REVIEW: self.build_pr_review,
            JobType.ISSUE_COMMENT: self.build_issue_comment_reply,
            JobType.REVIEW_COMMENT: self.build_review_comment_reply,
        }

    def build(self, job_type: JobType, payload: JobPayload) -> str:
        prompt = self.templates[job_type](payload)
        logger.debug("Prompt built", job_type=job_type.value, prompt_length=len(prompt))
        return prompt

    def build_pr_review(self, payload: PrReviewPayload) -> str:
        return (
            f"Review pull request #{payload.pull_number} in repo {payload.owner}/{payload.repo}.\n"
            "\n"
            "Point out anything in the changes that might need attention.\n"
            "\n"
            "If no changes are required, say that it all looks good.\n"
            "Summarise the review and list the key points separately."
        )

    def build_issue_comment_reply(self, payload: IssueCommentPayload) -> str:
        return (
            f"Respond to this comment on PR #{payload.pr_number} in {payload.owner}/{payload.repo}:\n"
            "\n"
            f"Comment: {payload.comment_body}\n"
            f"Comment Author: {payload.comment_user}\n"
            "\n"
            "Generate a brief, helpful response."
        )

    def build_review_comment_reply(self, payload: ReviewCommentPayload) -> str:
        return (
            f"You are responding to a code review comment thread on PR #{payload.pr_number} "
            f"in {payload.owner}/{payload.repo}.\n"
            "This is a REVIEW COMMENT response, not a general PR comment.\n"
            "\n"
            f"Original Comment: {payload.comment_body}\n"
            f"Comment Author: {payload.comment_user}\n"
            f"File: {payload.file_path}\n"
            f"Line: {payload.line_position}\n"
            f"Diff Context: {payload.diff_hunk}\n"
            "\n"
            "The response will be posted in this thread:\n"
            f"prUrl: {payload.pr_url}\n"
            f"filename: {payload.file_path}\n"
            f"line: {payload.line}\n"
            f"position: {payload.position}\n"
            f"inReplyTo: {payload.comment_id}\n"
            "\n"
            "Generate a brief, technical response."
        )


def with_marker(body: str, marker: str) -> str:
    """Prefix a comment body with the bot marker unless it already carries it"""
    if body.startswith(marker):
        return body
    return f"{marker}{body}"


def format_review_comment(result: Dict[str, Any]) -> str:
    """
    Render a reviewer result as a PR comment body.

    Accepts the structured review shape (status, review.summary,
    review.keyPoints) or a free-text ``response``.
    """
    review = result.get("review")
    if not isinstance(review, dict):
        return str(result.get("response") or "").strip()

    heading = STATUS_HEADINGS.get(result.get("status", ""), "Review notes")
    lines: List[str] = [f"**{heading}**", ""]

    summary = str(review.get("summary") or "").strip()
    if summary:
        lines.extend([summary, ""])

    key_points = [str(point).strip() for point in review.get("keyPoints") or [] if str(point).strip()]
    if key_points:
        lines.append("Key points:")
        lines.extend(f"- {point}" for point in key_points)

    return "\n".join(lines).strip()
