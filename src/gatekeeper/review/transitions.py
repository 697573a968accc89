from __future__ import annotations

import logging
from typing import Callable, Optional

from ..database import atomic
from ..services.application_store import ApplicationStore
from ..services.claim_store import ClaimStore
from ..services.review_action_store import ReviewActionStore
from ..services.timeutil import now_epoch
from .claims import check_claim
from .models import (
    Already,
    ApplicationNotFound,
    ApplicationStatus,
    Changed,
    Conflict,
    Invalid,
    TERMINAL_STATUSES,
    Terminal,
    TxResult,
)

log = logging.getLogger("gatekeeper.review.transitions")


class TransitionEngine:
    """Atomic application state changes, each paired with one audit row.

    Every operation reads the current status inside the same IMMEDIATE
    transaction that writes the new one, so two decisions on one
    application are totally ordered and the later one sees the earlier
    one's result.
    """

    def __init__(
        self,
        *,
        applications: ApplicationStore,
        claims: ClaimStore,
        actions: ReviewActionStore,
        busy_timeout_ms: int = 5_000,
        clock: Callable[[], int] = now_epoch,
    ) -> None:
        self.applications = applications
        self.claims = claims
        self.actions = actions
        self._busy_timeout_ms = busy_timeout_ms
        self._clock = clock

    def _atomic(self):
        return atomic(self.applications.path, busy_timeout_ms=self._busy_timeout_ms)

    # Terminal decisions

    async def approve(self, app_id: str, moderator_id: int, reason: Optional[str] = None) -> TxResult:
        return await self._resolve(app_id, moderator_id, ApplicationStatus.APPROVED, "approve", reason)

    async def reject(
        self,
        app_id: str,
        moderator_id: int,
        reason: str,
        *,
        permanent: bool = False,
    ) -> TxResult:
        action = "perm_reject" if permanent else "reject"
        return await self._resolve(
            app_id, moderator_id, ApplicationStatus.REJECTED, action, reason, permanent=permanent
        )

    async def kick(self, app_id: str, moderator_id: int, reason: Optional[str] = None) -> TxResult:
        return await self._resolve(app_id, moderator_id, ApplicationStatus.KICKED, "kick", reason)

    async def _resolve(
        self,
        app_id: str,
        moderator_id: int,
        target: ApplicationStatus,
        action: str,
        reason: Optional[str],
        *,
        permanent: bool = False,
    ) -> TxResult:
        async with self._atomic() as db:
            status = await self.applications.status_in(db, app_id)
            if status is None:
                raise ApplicationNotFound(app_id)
            if status == target:
                return Already(status)
            if status in TERMINAL_STATUSES:
                return Terminal(status)
            if status == ApplicationStatus.DRAFT:
                return Invalid(status)

            action_id = await self.actions.insert_in(
                db,
                app_id=app_id,
                moderator_id=moderator_id,
                action=action,
                reason=reason,
                created_at=self._clock(),
            )
            await self.applications.resolve_in(
                db, app_id, target, resolver_id=moderator_id, reason=reason, permanent=permanent
            )
            await self.claims.delete_in(db, app_id)

        log.info("Application %s %s -> %s by %s (action=%s id=%s)", app_id, status.value, target.value, moderator_id, action, action_id)
        return Changed(action_id)

    # needs_info <-> submitted

    async def request_info(self, app_id: str, moderator_id: int, reason: Optional[str] = None) -> TxResult:
        return await self._toggle_pending(app_id, moderator_id, ApplicationStatus.NEEDS_INFO, "need_info", reason)

    async def resubmit(self, app_id: str, applicant_id: int) -> TxResult:
        return await self._toggle_pending(app_id, applicant_id, ApplicationStatus.SUBMITTED, "resubmit", None)

    async def _toggle_pending(
        self,
        app_id: str,
        actor_id: int,
        target: ApplicationStatus,
        action: str,
        reason: Optional[str],
    ) -> TxResult:
        async with self._atomic() as db:
            status = await self.applications.status_in(db, app_id)
            if status is None:
                raise ApplicationNotFound(app_id)
            if status == target:
                return Already(status)
            if status in TERMINAL_STATUSES:
                return Terminal(status)
            if status == ApplicationStatus.DRAFT:
                return Invalid(status)

            action_id = await self.actions.insert_in(
                db, app_id=app_id, moderator_id=actor_id, action=action, reason=reason, created_at=self._clock()
            )
            await self.applications.set_pending_status_in(db, app_id, target)

        log.info("Application %s %s -> %s by %s", app_id, status.value, target.value, actor_id)
        return Changed(action_id)

    # Claims

    async def claim(self, app_id: str, moderator_id: int) -> TxResult:
        """Check-and-claim in one transaction; appends a ``claim`` audit row."""
        async with self._atomic() as db:
            status = await self.applications.status_in(db, app_id)
            if status is None:
                raise ApplicationNotFound(app_id)
            if status in TERMINAL_STATUSES:
                return Terminal(status)
            if status == ApplicationStatus.DRAFT:
                return Invalid(status)

            existing = await self.claims.get_in(db, app_id)
            conflict = check_claim(existing, moderator_id)
            if existing is not None and conflict:
                return Conflict(existing.reviewer_id, conflict)
            if existing is not None:
                return Already(status)

            await self.claims.upsert_in(db, app_id, moderator_id)
            action_id = await self.actions.insert_in(
                db, app_id=app_id, moderator_id=moderator_id, action="claim", reason=None, created_at=self._clock()
            )

        log.info("Application %s claimed by %s", app_id, moderator_id)
        return Changed(action_id)

    async def unclaim(self, app_id: str, moderator_id: int, *, force: bool = False) -> TxResult:
        """Release a claim with an ``unclaim`` audit row.

        Only the owner may unclaim unless ``force`` is set (admin override).
        """
        async with self._atomic() as db:
            status = await self.applications.status_in(db, app_id)
            if status is None:
                raise ApplicationNotFound(app_id)

            existing = await self.claims.get_in(db, app_id)
            if existing is None:
                return Already(status)
            conflict = check_claim(existing, moderator_id)
            if conflict and not force:
                return Conflict(existing.reviewer_id, conflict)

            await self.claims.delete_in(db, app_id)
            action_id = await self.actions.insert_in(
                db,
                app_id=app_id,
                moderator_id=moderator_id,
                action="unclaim",
                reason=("override" if conflict else None),
                created_at=self._clock(),
            )

        if conflict:
            log.warning("Application %s: claim of %s force-released by %s", app_id, existing.reviewer_id, moderator_id)
        else:
            log.info("Application %s unclaimed by %s", app_id, moderator_id)
        return Changed(action_id)
