from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Optional, TypeVar

import aiosqlite
import discord

from ..constants import MAX_REASON_LENGTH
from ..services.application_store import ApplicationStore
from ..services.claim_store import ClaimStore
from ..services.review_action_store import ReviewActionStore
from ..services.review_config_store import ReviewConfigStore
from ..services.stats import RuntimeStats
from ..services.task_queue import TaskQueue
from .claims import ClaimGuard
from .models import (
    Already,
    Application,
    Changed,
    Conflict,
    DecisionContext,
    DecisionKind,
    DecisionOutcome,
    Invalid,
    ReviewAction,
    Terminal,
    TxResult,
)
from .notifications import NotificationFlows, build_welcome_notice
from .tickets import TicketClosure
from .transitions import TransitionEngine

log = logging.getLogger("gatekeeper.review.service")

T = TypeVar("T")


def clean_reason(reason: Optional[str]) -> Optional[str]:
    if reason is None:
        return None
    trimmed = reason.strip()[:MAX_REASON_LENGTH]
    return trimmed or None


def _refusal(tx: TxResult) -> DecisionOutcome:
    if isinstance(tx, Already):
        return DecisionOutcome("already", f"Already {tx.status.value}.")
    if isinstance(tx, Terminal):
        return DecisionOutcome("terminal", f"Already resolved ({tx.status.value}).")
    if isinstance(tx, Invalid):
        return DecisionOutcome("invalid", "Application not submitted yet.")
    if isinstance(tx, Conflict):
        return DecisionOutcome("conflict", tx.message)
    raise TypeError(f"not a refusal: {tx!r}")


class ReviewService:
    """Command-level review actions.

    Order for every decision: claim guard, atomic transition, then side
    effects (DM, role, welcome, ticket) strictly after the commit. Side
    effect failures become warnings on the outcome; they never change
    the stored decision.
    """

    def __init__(
        self,
        *,
        client: discord.Client,
        applications: ApplicationStore,
        claims: ClaimStore,
        actions: ReviewActionStore,
        configs: ReviewConfigStore,
        engine: TransitionEngine,
        notifications: NotificationFlows,
        tickets: TicketClosure,
        task_queue: Optional[TaskQueue] = None,
        stats: Optional[RuntimeStats] = None,
        history_limit: int = 4,
    ) -> None:
        self.client = client
        self.applications = applications
        self.claims = claims
        self.guard = ClaimGuard(claims)
        self.actions = actions
        self.configs = configs
        self.engine = engine
        self.notifications = notifications
        self.tickets = tickets
        self.task_queue = task_queue
        self.stats = stats
        self.history_limit = history_limit

    # Lookups

    async def _bounded(self, aw: Awaitable[T]) -> T:
        return await asyncio.wait_for(aw, timeout=self.notifications.timeout_seconds)

    async def _load(self, app_id: str) -> tuple[Optional[Application], Optional[DecisionOutcome]]:
        app = await self.applications.load_application(app_id)
        if app is None:
            return None, DecisionOutcome("not_found", "Application not found.")
        return app, None

    async def _guard(self, app_id: str, moderator_id: int) -> Optional[DecisionOutcome]:
        conflict = await self.guard.conflict_for(app_id, moderator_id)
        if conflict:
            return DecisionOutcome("conflict", conflict)
        return None

    async def _resolve_member(self, guild: discord.Guild, user_id: int) -> Optional[discord.Member]:
        member = guild.get_member(user_id)
        if member is not None:
            return member
        try:
            return await self._bounded(guild.fetch_member(user_id))
        except Exception as e:
            log.warning("Could not fetch member %s in guild %s: %s", user_id, guild.id, e)
            return None

    async def _resolve_user(self, user_id: int) -> Optional[discord.abc.User]:
        user = self.client.get_user(user_id)
        if user is not None:
            return user
        try:
            return await self._bounded(self.client.fetch_user(user_id))
        except Exception as e:
            log.warning("Could not fetch user %s: %s", user_id, e)
            return None

    # Post-commit helpers

    def _recorded(self) -> None:
        if self.stats:
            self.stats.decisions_recorded += 1

    async def _attach_meta(self, action_id: int, meta: dict[str, Any]) -> None:
        try:
            await self.actions.update_meta(action_id, meta)
        except aiosqlite.Error:
            log.exception("Failed to attach meta to review action %s", action_id)

    async def _close_ticket(self, app: Application, kind: DecisionKind) -> None:
        async def _run() -> None:
            await self.tickets.close_for_decision(app.guild_id, app.user_id, kind)

        if self.task_queue is not None and self.task_queue.running:
            try:
                await self.task_queue.enqueue(_run)
                return
            except RuntimeError:
                log.warning("Task queue full; closing ticket for %s inline", app.id)
        await _run()

    # Claims

    async def claim(self, app_id: str, moderator_id: int) -> DecisionOutcome:
        app, missing = await self._load(app_id)
        if missing:
            return missing
        tx = await self.engine.claim(app_id, moderator_id)
        if isinstance(tx, Changed):
            return DecisionOutcome("changed", "Application claimed.", review_action_id=tx.review_action_id)
        if isinstance(tx, Already):
            return DecisionOutcome("already", "You already hold the claim on this application.")
        if isinstance(tx, Terminal):
            return DecisionOutcome("terminal", f"Cannot claim: application is already **{tx.status.value}**.")
        return _refusal(tx)

    async def unclaim(self, app_id: str, moderator_id: int, *, force: bool = False) -> DecisionOutcome:
        app, missing = await self._load(app_id)
        if missing:
            return missing
        tx = await self.engine.unclaim(app_id, moderator_id, force=force)
        if isinstance(tx, Changed):
            return DecisionOutcome("changed", "Claim released.", review_action_id=tx.review_action_id)
        if isinstance(tx, Already):
            return DecisionOutcome("already", "Application is not claimed.")
        if isinstance(tx, Conflict):
            return DecisionOutcome("conflict", f"You did not claim this application. {tx.message}")
        return _refusal(tx)

    # Decisions

    async def approve(self, app_id: str, moderator_id: int, reason: Optional[str] = None) -> DecisionOutcome:
        app, missing = await self._load(app_id)
        if missing:
            return missing
        blocked = await self._guard(app_id, moderator_id)
        if blocked:
            return blocked

        reason = clean_reason(reason)
        tx = await self.engine.approve(app_id, moderator_id, reason)
        if not isinstance(tx, Changed):
            return _refusal(tx)
        self._recorded()

        outcome = DecisionOutcome("changed", "Application approved.", review_action_id=tx.review_action_id)
        meta: dict[str, Any] = {"dm_delivered": False}

        guild = self.client.get_guild(app.guild_id)
        member = await self._resolve_member(guild, app.user_id) if guild else None
        if guild is None or member is None:
            outcome.dm_delivered = False
            outcome.welcome_delivered = False
            outcome.warnings.append("Applicant is not in the server; no DM or welcome was sent.")
        else:
            try:
                cfg = await self.configs.get(guild.id)
            except aiosqlite.Error:
                log.exception("Failed to load review config for guild %s", guild.id)
                cfg = None
                outcome.role_applied = False
                outcome.welcome_delivered = False
                meta["welcome_posted"] = False
                meta["welcome_error"] = "config_unavailable"
                outcome.warnings.append("Review config unavailable; role and welcome were skipped.")

            if cfg is not None and cfg.accepted_role_id:
                role = guild.get_role(cfg.accepted_role_id)
                if role is None:
                    outcome.role_applied = False
                    outcome.warnings.append(f"Accepted role <@&{cfg.accepted_role_id}> no longer exists.")
                else:
                    grant = await self.notifications.grant_role(member, role)
                    outcome.role_applied = grant.applied
                    if not grant.applied:
                        detail = "missing permissions" if grant.missing_permissions else grant.error
                        outcome.warnings.append(f"Failed to grant role {role.mention} ({detail}).")
                meta["role_applied"] = outcome.role_applied

            dm = await self.notifications.notify(member, DecisionContext(DecisionKind.APPROVE, guild.name, reason))
            outcome.dm_delivered = dm.delivered
            meta.update(dm.to_meta())
            if not dm.delivered:
                outcome.warnings.append("DM delivery failed.")

            # the welcome only goes out once the accepted role is in place
            if cfg is not None and cfg.accepted_role_id and not outcome.role_applied:
                outcome.welcome_delivered = False
                meta["welcome_posted"] = False
                meta["welcome_error"] = "role_not_applied"
                outcome.warnings.append(build_welcome_notice("role_not_applied"))
            elif cfg is not None:
                welcome = await self.notifications.post_welcome(
                    guild=guild,
                    member=member,
                    channel_id=cfg.general_channel_id,
                    template=cfg.welcome_template,
                )
                outcome.welcome_delivered = welcome.ok
                meta["welcome_posted"] = welcome.ok
                if not welcome.ok and welcome.reason:
                    meta["welcome_error"] = welcome.reason
                    outcome.warnings.append(build_welcome_notice(welcome.reason))

        await self._attach_meta(tx.review_action_id, meta)
        await self._close_ticket(app, DecisionKind.APPROVE)
        return outcome

    async def reject(
        self,
        app_id: str,
        moderator_id: int,
        reason: Optional[str],
        *,
        permanent: bool = False,
    ) -> DecisionOutcome:
        app, missing = await self._load(app_id)
        if missing:
            return missing
        blocked = await self._guard(app_id, moderator_id)
        if blocked:
            return blocked

        reason = clean_reason(reason)
        if reason is None:
            return DecisionOutcome("reason_required", "Reason is required.")

        tx = await self.engine.reject(app_id, moderator_id, reason, permanent=permanent)
        if not isinstance(tx, Changed):
            return _refusal(tx)
        self._recorded()

        kind = DecisionKind.PERM_REJECT if permanent else DecisionKind.REJECT
        if permanent:
            log.info("Permanent rejection of %s (user=%s) by %s", app_id, app.user_id, moderator_id)
        message = "Application permanently rejected." if permanent else "Application rejected."
        outcome = DecisionOutcome("changed", message, review_action_id=tx.review_action_id)

        guild = self.client.get_guild(app.guild_id)
        guild_name = guild.name if guild else "this server"
        user = await self._resolve_user(app.user_id)
        if user is None:
            outcome.dm_delivered = False
            meta: dict[str, Any] = {"dm_delivered": False, "dm_error": "not_found"}
        else:
            dm = await self.notifications.notify(user, DecisionContext(kind, guild_name, reason))
            outcome.dm_delivered = dm.delivered
            meta = dm.to_meta()
        if not outcome.dm_delivered:
            outcome.warnings.append("DM delivery failed.")

        await self._attach_meta(tx.review_action_id, meta)
        await self._close_ticket(app, kind)
        return outcome

    async def kick(self, app_id: str, moderator_id: int, reason: Optional[str] = None) -> DecisionOutcome:
        app, missing = await self._load(app_id)
        if missing:
            return missing
        blocked = await self._guard(app_id, moderator_id)
        if blocked:
            return blocked

        reason = clean_reason(reason)
        tx = await self.engine.kick(app_id, moderator_id, reason)
        if not isinstance(tx, Changed):
            return _refusal(tx)
        self._recorded()

        outcome = DecisionOutcome("changed", "Application kicked.", review_action_id=tx.review_action_id)
        meta: dict[str, Any] = {"dm_delivered": False, "kick_succeeded": False}

        guild = self.client.get_guild(app.guild_id)
        member = await self._resolve_member(guild, app.user_id) if guild else None
        if guild is None or member is None:
            outcome.dm_delivered = False
            outcome.warnings.append("Member not found in the server (may have already left).")
        else:
            # DM first: once kicked, the bot may no longer share a server with them
            dm = await self.notifications.notify(member, DecisionContext(DecisionKind.KICK, guild.name, reason))
            outcome.dm_delivered = dm.delivered
            meta.update(dm.to_meta())
            if not dm.delivered:
                outcome.warnings.append("DM delivery failed.")
            try:
                await self._bounded(member.kick(reason=reason))
                meta["kick_succeeded"] = True
            except Exception as e:
                log.warning("Kick of %s in guild %s failed: %s", member.id, guild.id, e)
                meta["kick_error"] = str(e) or type(e).__name__
                outcome.warnings.append("Removing the member failed; check role hierarchy and permissions.")

        await self._attach_meta(tx.review_action_id, meta)
        await self._close_ticket(app, DecisionKind.KICK)
        return outcome

    # needs_info <-> submitted

    async def request_info(self, app_id: str, moderator_id: int, reason: Optional[str] = None) -> DecisionOutcome:
        app, missing = await self._load(app_id)
        if missing:
            return missing
        blocked = await self._guard(app_id, moderator_id)
        if blocked:
            return blocked
        tx = await self.engine.request_info(app_id, moderator_id, clean_reason(reason))
        if isinstance(tx, Changed):
            return DecisionOutcome("changed", "Requested more information from the applicant.", review_action_id=tx.review_action_id)
        if isinstance(tx, Already):
            return DecisionOutcome("already", "Already waiting on the applicant.")
        return _refusal(tx)

    async def resubmit(self, app_id: str, applicant_id: int) -> DecisionOutcome:
        app, missing = await self._load(app_id)
        if missing:
            return missing
        if app.user_id != int(applicant_id):
            return DecisionOutcome("invalid", "Only the applicant can resubmit this application.")
        tx = await self.engine.resubmit(app_id, applicant_id)
        if isinstance(tx, Changed):
            return DecisionOutcome("changed", "Application resubmitted.", review_action_id=tx.review_action_id)
        if isinstance(tx, Already):
            return DecisionOutcome("already", "Application is already awaiting review.")
        return _refusal(tx)

    # History

    async def history(self, app_id: str, limit: Optional[int] = None) -> list[ReviewAction]:
        return await self.actions.recent_for_app(app_id, limit or self.history_limit)
