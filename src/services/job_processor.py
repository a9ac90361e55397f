"""
Per-type job handlers: resolve the installation token, ask the reviewer, post the outcome
"""

import structlog
from typing import Any, Callable, Dict, Optional

from config.settings import Settings
from src.models.jobs import (
    JobType,
    PrReviewPayload,
    IssueCommentPayload,
    ReviewCommentPayload,
)
from .errors import AuthError, UpstreamError
from .github_client import GitHubAPIError, GitHubClient
from .job_queue import JobQueue
from .prompt_builder import (
    PR_REVIEW_RESPONSE_FORMAT,
    PromptBuilder,
    format_review_comment,
    with_marker,
)
from .reviewer_client import ReviewerClient, build_reviewer
from .token_provider import TokenProvider, build_token_provider

logger = structlog.get_logger()

GitHubClientFactory = Callable[[str], GitHubClient]


class JobProcessor:
    """
    Executes queue jobs.

    Handlers raise AuthError or UpstreamError on failure and leave the retry
    decision to the queue. A job that exhausts its attempts leaves nothing
    on GitHub.
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        reviewer: ReviewerClient,
        github_client_factory: GitHubClientFactory,
        bot_marker: str = "🤖 ",
        prompt_builder: Optional[PromptBuilder] = None,
    ):
        self.token_provider = token_provider
        self.reviewer = reviewer
        self.github_client_factory = github_client_factory
        self.bot_marker = bot_marker
        self.prompt_builder = prompt_builder or PromptBuilder()

    def register_handlers(self, queue: JobQueue) -> None:
        queue.register(JobType.PR_REVIEW, self.handle_pr_review)
        queue.register(JobType.ISSUE_COMMENT, self.handle_issue_comment)
        queue.register(JobType.REVIEW_COMMENT, self.handle_review_comment)

    async def handle_pr_review(self, payload: PrReviewPayload) -> None:
        repo_full_name = f"{payload.owner}/{payload.repo}"
        logger.info("Processing PR review", repo=repo_full_name, pull_number=payload.pull_number)

        token = await self._resolve_token(payload.installation_id)
        prompt = self.prompt_builder.build(JobType.PR_REVIEW, payload)
        result = await self._ask_reviewer(prompt, token, PR_REVIEW_RESPONSE_FORMAT)

        body = format_review_comment(result)
        if not body:
            logger.warning("Reviewer returned no review", repo=repo_full_name, pull_number=payload.pull_number)
            return

        async with self.github_client_factory(token) as github:
            await self._post(github.create_comment(repo_full_name, payload.pull_number, with_marker(body, self.bot_marker)))

        logger.info("Review completed", repo=repo_full_name, pull_number=payload.pull_number)

    async def handle_issue_comment(self, payload: IssueCommentPayload) -> None:
        repo_full_name = f"{payload.owner}/{payload.repo}"
        logger.info("Processing comment", repo=repo_full_name, pr_number=payload.pr_number)

        token = await self._resolve_token(payload.installation_id)
        prompt = self.prompt_builder.build(JobType.ISSUE_COMMENT, payload)
        result = await self._ask_reviewer(prompt, token)

        reply = str(result.get("response") or "").strip()
        if not reply:
            logger.warning("Reviewer returned an empty reply", repo=repo_full_name, pr_number=payload.pr_number)
            return

        async with self.github_client_factory(token) as github:
            await self._post(github.create_comment(repo_full_name, payload.pr_number, with_marker(reply, self.bot_marker)))

        logger.info("Response posted to comment", repo=repo_full_name, pr_number=payload.pr_number)

    async def handle_review_comment(self, payload: ReviewCommentPayload) -> None:
        repo_full_name = f"{payload.owner}/{payload.repo}"
        logger.info(
            "Processing review comment",
            repo=repo_full_name,
            pr_number=payload.pr_number,
            file_path=payload.file_path,
            comment_id=payload.comment_id,
        )

        token = await self._resolve_token(payload.installation_id)
        prompt = self.prompt_builder.build(JobType.REVIEW_COMMENT, payload)
        result = await self._ask_reviewer(prompt, token)

        reply = str(result.get("response") or "").strip()
        if not reply:
            logger.warning("Reviewer returned an empty reply", repo=repo_full_name, comment_id=payload.comment_id)
            return

        async with self.github_client_factory(token) as github:
            await self._post(
                github.reply_to_review_comment(
                    repo_full_name, payload.pr_number, payload.comment_id, with_marker(reply, self.bot_marker)
                )
            )

        logger.info("Response posted to review comment", repo=repo_full_name, comment_id=payload.comment_id)

    async def _resolve_token(self, installation_id: str) -> str:
        try:
            return await self.token_provider.get_token(installation_id)
        except AuthError:
            logger.error(
                "Installation token unavailable; installation may be suspended or uninstalled",
                installation_id=installation_id,
            )
            raise
        except Exception as e:
            logger.error("Token resolution failed", installation_id=installation_id, error=str(e))
            raise AuthError(f"Token resolution failed: {e}", installation_id) from e

    async def _ask_reviewer(
        self, prompt: str, token: str, response_format: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        try:
            return await self.reviewer.run(
                input=prompt,
                state={"token": token},
                response_format=response_format,
            )
        except Exception as e:
            raise UpstreamError(f"Reviewer failed: {e}") from e

    async def _post(self, request) -> Dict[str, Any]:
        try:
            return await request
        except GitHubAPIError as e:
            raise UpstreamError(f"Posting to GitHub failed: {e.message}") from e


def build_job_processor(settings: Settings) -> JobProcessor:
    """Wire the processor's collaborators from configuration"""
    return JobProcessor(
        token_provider=build_token_provider(settings),
        reviewer=build_reviewer(settings),
        github_client_factory=lambda token: GitHubClient(token, api_url=settings.GITHUB_API_URL),
        bot_marker=settings.BOT_COMMENT_MARKER,
    )
