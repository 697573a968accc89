from __future__ import annotations

import logging
from typing import Optional

from ..interfaces import TicketGateway
from ..services.stats import RuntimeStats
from .models import DecisionKind

log = logging.getLogger("gatekeeper.review.tickets")

CLOSE_REASONS: dict[DecisionKind, str] = {
    DecisionKind.APPROVE: "Your application has been approved.",
    DecisionKind.REJECT: "Your application has been rejected.",
    DecisionKind.PERM_REJECT: "Your application has been permanently rejected and you cannot apply again.",
    DecisionKind.KICK: "You have been removed from the server.",
}


class TicketClosure:
    """Closes the applicant's open support ticket once a decision is final."""

    def __init__(self, gateway: TicketGateway, *, stats: Optional[RuntimeStats] = None) -> None:
        self._gateway = gateway
        self._stats = stats

    async def close_for_decision(self, guild_id: int, user_id: int, kind: DecisionKind) -> bool:
        """Return True if a ticket was closed. Failures are logged, never raised."""
        try:
            ticket = await self._gateway.find_open_ticket(guild_id, user_id)
            if ticket is None or not ticket.is_open:
                log.debug("No open ticket for user %s in guild %s", user_id, guild_id)
                return False
            await self._gateway.close_ticket(ticket.id, CLOSE_REASONS[kind])
        except Exception:
            log.exception("Failed to close ticket for user %s in guild %s after %s", user_id, guild_id, kind.value)
            return False

        if self._stats:
            self._stats.tickets_closed += 1
        log.info("Closed ticket %s for user %s (%s)", ticket.id, user_id, kind.value)
        return True
