"""
AI reviewer client backed by the Claude Code CLI
"""

import asyncio
import json
import os
import structlog
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

from config.settings import Settings

logger = structlog.get_logger()


class ReviewerErrorType(str, Enum):
    """Types of reviewer failures"""
    COMMAND_NOT_FOUND = "command_not_found"
    TIMEOUT = "timeout"
    PROCESS_FAILED = "process_failed"
    PARSING_ERROR = "parsing_error"


class ReviewerError(Exception):
    """Raised when the AI reviewer could not produce a result"""
    def __init__(self, message: str, error_type: ReviewerErrorType = ReviewerErrorType.PROCESS_FAILED):
        self.message = message
        self.error_type = error_type
        super().__init__(message)


class ReviewerClient(Protocol):
    """
    Opaque AI capability: takes an instruction plus execution state and
    returns either a structured object or ``{"response": text}``.
    """

    async def run(
        self,
        input: str,
        state: Dict[str, Any],
        response_format: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]: ...


class ClaudeCodeReviewer:
    """Runs the Claude Code CLI headless for each request"""

    def __init__(self, cli_path: str = "claude", timeout: int = 600, extra_args: Optional[List[str]] = None):
        self.cli_path = cli_path
        self.timeout = timeout
        self.extra_args = extra_args or []

    async def run(
        self,
        input: str,
        state: Dict[str, Any],
        response_format: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Execute one reviewer request and return its result"""
        prompt = input
        if response_format:
            prompt = (
                f"{input}\n\n"
                "Respond with a single JSON object and nothing else. "
                f"It must match this JSON schema:\n{json.dumps(response_format, indent=2)}"
            )

        command = [self.cli_path, "-p", "--output-format", "json", *self.extra_args]
        env = dict(os.environ)
        token = state.get("token")
        if token:
            # Lets the CLI's GitHub tooling act as the installation
            env["GH_TOKEN"] = token
            env["GITHUB_TOKEN"] = token

        logger.info(
            "Starting reviewer execution",
            prompt_length=len(prompt),
            structured=bool(response_format),
            timeout=self.timeout,
        )

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except FileNotFoundError as e:
            raise ReviewerError(
                f"Claude CLI not found at path: {self.cli_path}",
                ReviewerErrorType.COMMAND_NOT_FOUND,
            ) from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(input=prompt.encode("utf-8")),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            await self._terminate(process)
            logger.error("Reviewer execution timed out", timeout=self.timeout)
            raise ReviewerError(
                f"Reviewer timed out after {self.timeout} seconds",
                ReviewerErrorType.TIMEOUT,
            ) from e
        except asyncio.CancelledError:
            logger.warning("Reviewer execution cancelled, killing CLI process", pid=process.pid)
            await self._terminate(process)
            raise

        if process.returncode != 0:
            stderr_text = stderr.decode("utf-8", errors="replace").strip()
            logger.error("Reviewer execution failed", return_code=process.returncode, stderr=stderr_text[:500])
            raise ReviewerError(f"Claude CLI exited with code {process.returncode}: {stderr_text[:200]}")

        text = self._extract_result_text(stdout.decode("utf-8", errors="replace"))
        logger.info("Reviewer execution completed", output_length=len(text))

        if response_format:
            return self._parse_structured(text)
        return {"response": text}

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        try:
            process.kill()
        except ProcessLookupError:
            pass
        await process.wait()

    def _extract_result_text(self, stdout: str) -> str:
        """Pull the final result out of the CLI's JSON envelope"""
        try:
            envelope = json.loads(stdout)
        except json.JSONDecodeError:
            # Older CLI builds print plain text
            return stdout.strip()

        if not isinstance(envelope, dict):
            raise ReviewerError("Unexpected reviewer output", ReviewerErrorType.PARSING_ERROR)
        if envelope.get("is_error"):
            raise ReviewerError(f"Reviewer reported an error: {envelope.get('result', '')}")
        return str(envelope.get("result", "")).strip()

    def _parse_structured(self, text: str) -> Dict[str, Any]:
        cleaned = text.strip()
        if cleaned.startswith("```"):
            # Drop a markdown fence around the JSON
            cleaned = cleaned.split("\n", 1)[-1]
            cleaned = cleaned.rsplit("```", 1)[0]
        try:
            result = json.loads(cleaned)
        except json.JSONDecodeError as e:
            raise ReviewerError(
                f"Reviewer returned invalid JSON: {e}", ReviewerErrorType.PARSING_ERROR
            ) from e
        if not isinstance(result, dict):
            raise ReviewerError("Reviewer returned a non-object result", ReviewerErrorType.PARSING_ERROR)
        return result


def build_reviewer(settings: Settings) -> ReviewerClient:
    return ClaudeCodeReviewer(cli_path=settings.CLAUDE_CODE_PATH, timeout=settings.REVIEWER_TIMEOUT)
