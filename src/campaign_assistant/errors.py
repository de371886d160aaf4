from __future__ import annotations

from datetime import datetime


class CampaignAssistantError(Exception):
    """Base class for errors raised by the campaign assistant core."""


class InsufficientCreditsError(CampaignAssistantError):
    def __init__(
        self,
        message: str,
        *,
        remaining_credits: int,
        max_credits: int | None,
        reset_at: datetime | None,
    ):
        super().__init__(message)
        self.remaining_credits = remaining_credits
        self.max_credits = max_credits
        self.reset_at = reset_at


class GenerationError(CampaignAssistantError):
    """Every configured provider failed; ``attempts`` holds the failover trail."""

    def __init__(self, message: str, attempts: list | None = None):
        super().__init__(message)
        self.attempts = list(attempts or [])


class PersistenceError(CampaignAssistantError):
    pass


class ConcurrentUpdateError(PersistenceError):
    pass
