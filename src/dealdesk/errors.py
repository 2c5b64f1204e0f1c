from __future__ import annotations
from typing import Optional


class NegotiationError(Exception):
    """Base class for errors raised by the negotiation core and its collaborators."""


class PolicyConfigError(NegotiationError, ValueError):
    """Raised when a negotiation policy fails validation. Never recovered automatically."""


class PolicyNotFoundError(NegotiationError, KeyError):
    def __init__(self, template_id: str):
        super().__init__(template_id)
        self.template_id = template_id

    def __str__(self) -> str:
        return f"Policy template {self.template_id!r} not found"


class DealNotFoundError(NegotiationError, KeyError):
    def __init__(self, deal_id: str):
        super().__init__(deal_id)
        self.deal_id = deal_id

    def __str__(self) -> str:
        return f"Deal {self.deal_id!r} not found"


class DealClosedError(NegotiationError):
    """A turn was sent to a deal that already reached a terminal status."""

    def __init__(self, deal_id: str, status: str, reason: Optional[str] = None):
        self.deal_id = deal_id
        self.status = status
        super().__init__(reason or f"Deal is {status}. Reset to continue.")
