"""
Tests for the Claude Code CLI reviewer client
"""

import asyncio
import json
import os
import sys
from unittest.mock import AsyncMock, Mock, patch

import pytest

from src.services.reviewer_client import (
    ClaudeCodeReviewer,
    ReviewerError,
    ReviewerErrorType,
    build_reviewer,
)


def cli_process(stdout: str, returncode: int = 0, stderr: str = ""):
    process = Mock()
    process.communicate = AsyncMock(return_value=(stdout.encode(), stderr.encode()))
    process.wait = AsyncMock(return_value=returncode)
    process.returncode = returncode
    return process


def envelope(result: str, is_error: bool = False) -> str:
    return json.dumps({"type": "result", "is_error": is_error, "result": result})


class TestClaudeCodeReviewer:
    """Test cases for ClaudeCodeReviewer"""

    @pytest.fixture
    def reviewer(self):
        return ClaudeCodeReviewer(cli_path="claude", timeout=30)

    @pytest.mark.asyncio
    async def test_free_text_response(self, reviewer):
        """Test a plain reply is returned as {"response": text}"""
        process = cli_process(envelope("  Thanks for asking!  "))

        with patch("asyncio.create_subprocess_exec", new=AsyncMock(return_value=process)) as mock_exec:
            result = await reviewer.run(input="Reply to this", state={"token": "ghs_abc"})

        assert result == {"response": "Thanks for asking!"}

        args, kwargs = mock_exec.call_args
        assert list(args) == ["claude", "-p", "--output-format", "json"]
        assert kwargs["env"]["GH_TOKEN"] == "ghs_abc"
        assert kwargs["env"]["GITHUB_TOKEN"] == "ghs_abc"
        process.communicate.assert_awaited_once_with(input=b"Reply to this")

    @pytest.mark.asyncio
    async def test_structured_response(self, reviewer):
        """Test structured requests embed the schema and parse fenced JSON"""
        review = {"status": "approved", "review": {"summary": "Fine", "keyPoints": []}}
        process = cli_process(envelope(f"```json\n{json.dumps(review)}\n```"))
        schema = {"type": "object", "required": ["status"]}

        with patch("asyncio.create_subprocess_exec", new=AsyncMock(return_value=process)):
            result = await reviewer.run(input="Review PR", state={}, response_format=schema)

        assert result == review
        prompt = process.communicate.await_args.kwargs["input"].decode()
        assert prompt.startswith("Review PR")
        assert '"required": [\n    "status"\n  ]' in prompt

    @pytest.mark.asyncio
    async def test_plain_text_output_accepted(self, reviewer):
        process = cli_process("Just text\n")

        with patch("asyncio.create_subprocess_exec", new=AsyncMock(return_value=process)):
            result = await reviewer.run(input="hi", state={})

        assert result == {"response": "Just text"}

    @pytest.mark.asyncio
    async def test_token_not_exported_when_absent(self, reviewer):
        process = cli_process(envelope("ok"))

        with patch.dict("os.environ", {}, clear=True):
            with patch("asyncio.create_subprocess_exec", new=AsyncMock(return_value=process)) as mock_exec:
                await reviewer.run(input="hi", state={})

        assert "GH_TOKEN" not in mock_exec.call_args.kwargs["env"]

    @pytest.mark.asyncio
    async def test_cli_reported_error(self, reviewer):
        process = cli_process(envelope("rate limited", is_error=True))

        with patch("asyncio.create_subprocess_exec", new=AsyncMock(return_value=process)):
            with pytest.raises(ReviewerError, match="rate limited"):
                await reviewer.run(input="hi", state={})

    @pytest.mark.asyncio
    async def test_non_zero_exit(self, reviewer):
        """Test a failing CLI process raises ReviewerError"""
        process = cli_process("", returncode=2, stderr="authentication failed")

        with patch("asyncio.create_subprocess_exec", new=AsyncMock(return_value=process)):
            with pytest.raises(ReviewerError) as exc_info:
                await reviewer.run(input="hi", state={})

        assert exc_info.value.error_type == ReviewerErrorType.PROCESS_FAILED
        assert "authentication failed" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_cli_not_found(self, reviewer):
        with patch("asyncio.create_subprocess_exec", new=AsyncMock(side_effect=FileNotFoundError())):
            with pytest.raises(ReviewerError) as exc_info:
                await reviewer.run(input="hi", state={})

        assert exc_info.value.error_type == ReviewerErrorType.COMMAND_NOT_FOUND

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self):
        """Test a hung reviewer is killed once the timeout elapses"""
        reviewer = ClaudeCodeReviewer(timeout=0.05)
        process = cli_process("")
        process.returncode = None

        async def never_finishes(input=None):
            await asyncio.sleep(10)

        process.communicate = never_finishes

        with patch("asyncio.create_subprocess_exec", new=AsyncMock(return_value=process)):
            with pytest.raises(ReviewerError) as exc_info:
                await reviewer.run(input="hi", state={})

        assert exc_info.value.error_type == ReviewerErrorType.TIMEOUT
        process.kill.assert_called_once()
        process.wait.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cancelled_run_kills_process(self, reviewer):
        """Test cancelling an attempt mid-review kills the CLI before re-raising"""
        process = cli_process("")
        process.returncode = None
        started = asyncio.Event()

        async def never_finishes(input=None):
            started.set()
            await asyncio.sleep(10)

        process.communicate = never_finishes

        with patch("asyncio.create_subprocess_exec", new=AsyncMock(return_value=process)):
            task = asyncio.create_task(reviewer.run(input="hi", state={"token": "ghs_abc"}))
            await asyncio.wait_for(started.wait(), timeout=5)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        process.kill.assert_called_once()
        process.wait.assert_awaited_once()

    @pytest.mark.asyncio
    @pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell")
    async def test_cancelled_run_leaves_no_child_process(self, tmp_path):
        """Test a real CLI process does not outlive a cancelled attempt"""
        pid_file = tmp_path / "cli.pid"
        cli = tmp_path / "claude"
        cli.write_text(f"#!/bin/sh\necho $$ > {pid_file}\nexec sleep 30\n")
        cli.chmod(0o755)
        reviewer = ClaudeCodeReviewer(cli_path=str(cli), timeout=60)

        task = asyncio.create_task(reviewer.run(input="hi", state={}))
        for _ in range(200):
            if pid_file.exists() and pid_file.read_text().strip():
                break
            await asyncio.sleep(0.01)
        pid = int(pid_file.read_text().strip())

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        with pytest.raises(ProcessLookupError):
            os.kill(pid, 0)

    @pytest.mark.asyncio
    async def test_invalid_structured_output(self, reviewer):
        process = cli_process(envelope("I could not produce JSON"))

        with patch("asyncio.create_subprocess_exec", new=AsyncMock(return_value=process)):
            with pytest.raises(ReviewerError) as exc_info:
                await reviewer.run(input="hi", state={}, response_format={"type": "object"})

        assert exc_info.value.error_type == ReviewerErrorType.PARSING_ERROR

    def test_build_reviewer_from_settings(self):
        settings = Mock(CLAUDE_CODE_PATH="/usr/local/bin/claude", REVIEWER_TIMEOUT=120)

        reviewer = build_reviewer(settings)

        assert reviewer.cli_path == "/usr/local/bin/claude"
        assert reviewer.timeout == 120
