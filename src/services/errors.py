"""
Error taxonomy for event intake and job processing
"""

from typing import Optional


class PRBotError(Exception):
    """Base exception for the review bot"""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class MalformedEventError(PRBotError):
    """Inbound webhook is missing a required header or field; never enqueued, never retried"""


class AuthError(PRBotError):
    """Installation token could not be resolved; likely to fail the same way on every attempt"""
    def __init__(self, message: str, installation_id: Optional[str] = None):
        self.installation_id = installation_id
        super().__init__(message)


class UpstreamError(PRBotError):
    """AI reviewer or GitHub API call failed; may be transient"""


class BrokerError(PRBotError):
    """Queue broker infrastructure failure during enqueue or drain"""


class JobStalledError(PRBotError):
    """A job's lease expired before its outcome was recorded"""
