"""
Tests for GitHub API client
"""

import json

import httpx
import pytest

from src.services.github_client import GitHubClient, GitHubAPIError


class TestGitHubClient:
    """Test cases for GitHub API client"""

    @pytest.fixture
    def requests(self):
        return []

    @pytest.fixture
    def transport(self, requests):
        """Record requests and answer like GitHub would"""
        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(201, json={"id": 1, "body": json.loads(request.content)["body"]})

        return httpx.MockTransport(handler)

    def test_client_initialization(self):
        """Test client initialization"""
        client = GitHubClient(token="test_token")

        assert client.token == "test_token"
        assert client.headers["Authorization"] == "Bearer test_token"
        assert client.headers["Accept"] == "application/vnd.github+json"
        assert client.headers["User-Agent"] == "PR-Review-Bot/1.0"

    def test_client_no_token_raises_error(self):
        """Test that missing token raises ValueError"""
        with pytest.raises(ValueError, match="GitHub token is required"):
            GitHubClient(token="")

    @pytest.mark.asyncio
    async def test_create_comment(self, transport, requests):
        """Test posting a conversation comment on a pull request"""
        async with GitHubClient(token="test_token", transport=transport) as client:
            result = await client.create_comment("owner/repo", 42, "🤖 Looks good")

        assert result == {"id": 1, "body": "🤖 Looks good"}
        assert len(requests) == 1
        request = requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://api.github.com/repos/owner/repo/issues/42/comments"
        assert request.headers["Authorization"] == "Bearer test_token"
        assert json.loads(request.content) == {"body": "🤖 Looks good"}

    @pytest.mark.asyncio
    async def test_reply_to_review_comment(self, transport, requests):
        """Test replying inside an inline review comment thread"""
        async with GitHubClient(token="test_token", transport=transport) as client:
            await client.reply_to_review_comment("owner/repo", 9, 555, "🤖 Yes, it is bounded")

        request = requests[0]
        assert str(request.url) == "https://api.github.com/repos/owner/repo/pulls/9/comments/555/replies"
        assert json.loads(request.content) == {"body": "🤖 Yes, it is bounded"}

    @pytest.mark.asyncio
    async def test_custom_api_url(self, transport, requests):
        """Test that a GitHub Enterprise base URL is honoured"""
        async with GitHubClient(
            token="test_token", api_url="https://ghe.example.com/api/v3/", transport=transport
        ) as client:
            await client.create_comment("owner/repo", 1, "hi")

        assert str(requests[0].url) == "https://ghe.example.com/api/v3/repos/owner/repo/issues/1/comments"

    @pytest.mark.asyncio
    async def test_error_status_raises_api_error(self):
        """Test that 4xx/5xx responses raise GitHubAPIError with details"""
        transport = httpx.MockTransport(
            lambda request: httpx.Response(403, json={"message": "Resource not accessible by integration"})
        )

        async with GitHubClient(token="test_token", transport=transport) as client:
            with pytest.raises(GitHubAPIError) as exc_info:
                await client.create_comment("owner/repo", 42, "hi")

        assert exc_info.value.status_code == 403
        assert exc_info.value.response_data == {"message": "Resource not accessible by integration"}

    @pytest.mark.asyncio
    async def test_error_without_json_body(self):
        """Test that a non-JSON error body is tolerated"""
        transport = httpx.MockTransport(lambda request: httpx.Response(502, text="Bad gateway"))

        async with GitHubClient(token="test_token", transport=transport) as client:
            with pytest.raises(GitHubAPIError, match="502"):
                await client.create_comment("owner/repo", 42, "hi")

    @pytest.mark.asyncio
    async def test_network_error_raises_api_error(self):
        """Test that transport failures surface as GitHubAPIError"""
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with GitHubClient(token="test_token", transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(GitHubAPIError, match="Request failed"):
                await client.create_comment("owner/repo", 42, "hi")
