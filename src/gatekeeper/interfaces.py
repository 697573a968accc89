"""
Interface contracts for collaborators the review engine consumes but does not own.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class SupportTicket:
    id: int
    guild_id: int
    user_id: int
    status: str
    created_at: str
    closed_at: Optional[str] = None
    close_reason: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.status == "open"


@runtime_checkable
class TicketGateway(Protocol):
    """Support-ticket (modmail) subsystem, as seen by review decisions."""

    async def find_open_ticket(self, guild_id: int, user_id: int) -> Optional[SupportTicket]:
        """Most recent open ticket for the user, or None."""
        ...

    async def close_ticket(self, ticket_id: int, reason: str) -> None:
        """Close the ticket, recording a human-readable reason."""
        ...
