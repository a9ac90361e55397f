"""
GitHub API client for posting bot replies
"""

import httpx
import structlog
from typing import Dict, Any, Optional

logger = structlog.get_logger()


class GitHubAPIError(Exception):
    """Custom exception for GitHub API errors"""
    def __init__(self, message: str, status_code: int = None, response_data: dict = None):
        self.message = message
        self.status_code = status_code
        self.response_data = response_data
        super().__init__(message)


class GitHubClient:
    """GitHub API client authenticated with an installation token"""

    def __init__(
        self,
        token: str,
        api_url: str = "https://api.github.com",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not token:
            raise ValueError("GitHub token is required")

        self.token = token
        self.api_url = api_url.rstrip("/")
        self.headers = {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": "PR-Review-Bot/1.0",
        }
        self.client = httpx.AsyncClient(
            headers=self.headers,
            timeout=httpx.Timeout(30.0),
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.client.aclose()

    async def _make_request(self, method: str, url: str, **kwargs) -> Dict[Any, Any]:
        """Make an authenticated request to GitHub API with error handling"""
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.RequestError as e:
            logger.error("GitHub API request failed", error=str(e), url=url)
            raise GitHubAPIError(f"Request failed: {str(e)}") from e

        if response.status_code >= 400:
            error_data = {}
            try:
                error_data = response.json()
            except ValueError:
                pass

            raise GitHubAPIError(
                f"GitHub API error: {response.status_code}",
                status_code=response.status_code,
                response_data=error_data
            )

        return response.json() if response.content else {}

    async def create_comment(self, repo_full_name: str, issue_number: int, body: str) -> Dict[str, Any]:
        """Create a comment on an issue or pull request conversation"""
        url = f"{self.api_url}/repos/{repo_full_name}/issues/{issue_number}/comments"
        data = {"body": body}
        return await self._make_request("POST", url, json=data)

    async def reply_to_review_comment(
        self, repo_full_name: str, pull_number: int, comment_id: int, body: str
    ) -> Dict[str, Any]:
        """Reply inside an inline review comment thread"""
        url = f"{self.api_url}/repos/{repo_full_name}/pulls/{pull_number}/comments/{comment_id}/replies"
        data = {"body": body}
        return await self._make_request("POST", url, json=data)
