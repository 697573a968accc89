from __future__ import annotations

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Awaitable, ClassVar, Optional, TypeVar

import discord

from ..constants import COLORS, MISSING_PERMISSIONS_CODE
from ..services.stats import RuntimeStats
from .models import (
    DecisionContext,
    DecisionKind,
    NotificationFailure,
    NotificationResult,
    RoleGrantResult,
    WelcomeFailureReason,
    WelcomeResult,
)

log = logging.getLogger("gatekeeper.review.notifications")

T = TypeVar("T")

DEFAULT_WELCOME_TEMPLATE = "Welcome {applicant.mention} to {guild.name}! 👋"

# Unknown {tokens} are left untouched.
_WELCOME_TOKEN_RE = re.compile(r"\{(applicant\.(?:mention|tag|display)|guild\.name)\}")


# Decision DMs


class DecisionMessage(ABC):
    """DM text for one decision kind."""

    kind: ClassVar[DecisionKind]

    @abstractmethod
    def render(self, ctx: DecisionContext) -> str:
        ...


class ApproveMessage(DecisionMessage):
    kind = DecisionKind.APPROVE

    def render(self, ctx: DecisionContext) -> str:
        content = f"Hi, welcome to {ctx.guild_name}! Your application has been approved."
        if ctx.reason:
            content += f"\n\n**Note from reviewer:** {ctx.reason}"
        return content + "\n\nEnjoy your stay!"


class RejectMessage(DecisionMessage):
    kind = DecisionKind.REJECT

    def render(self, ctx: DecisionContext) -> str:
        lines = [
            f"Hello, thanks for applying to {ctx.guild_name}. The moderation team was not able to "
            "approve this application. You can submit a new one anytime!",
        ]
        if ctx.reason:
            lines.append(f"Reason: {ctx.reason}.")
        return "\n".join(lines)


class PermRejectMessage(DecisionMessage):
    kind = DecisionKind.PERM_REJECT

    def render(self, ctx: DecisionContext) -> str:
        return (
            f"You've been permanently rejected from **{ctx.guild_name}** and cannot apply again. "
            "Thanks for stopping by."
        )


class KickMessage(DecisionMessage):
    kind = DecisionKind.KICK

    def render(self, ctx: DecisionContext) -> str:
        lines = [
            f"Hi, your application with {ctx.guild_name} was reviewed and you were removed from the server. "
            "If you believe this was a mistake, you may re-apply in the future.",
        ]
        if ctx.reason:
            lines.append(f"Reason: {ctx.reason}.")
        return "\n".join(lines)


DECISION_MESSAGES: dict[DecisionKind, DecisionMessage] = {
    m.kind: m for m in (ApproveMessage(), RejectMessage(), PermRejectMessage(), KickMessage())
}


def render_decision_message(ctx: DecisionContext) -> str:
    return DECISION_MESSAGES[ctx.kind].render(ctx)


# Welcome announcement


def render_welcome_template(
    template: Optional[str],
    *,
    guild_name: str,
    applicant_id: int,
    applicant_tag: Optional[str] = None,
    applicant_display: Optional[str] = None,
) -> str:
    """Substitute {applicant.mention}, {applicant.tag}, {applicant.display} and {guild.name}."""
    base = template if isinstance(template, str) and template.strip() else DEFAULT_WELCOME_TEMPLATE
    tag = applicant_tag if applicant_tag and applicant_tag.strip() else str(applicant_id)
    display = applicant_display if applicant_display and applicant_display.strip() else tag

    values = {
        "applicant.mention": f"<@{applicant_id}>",
        "applicant.tag": tag,
        "applicant.display": display,
        "guild.name": guild_name,
    }
    return _WELCOME_TOKEN_RE.sub(lambda m: values[m.group(1)], base)


def build_welcome_notice(reason: WelcomeFailureReason) -> str:
    if reason == "missing_channel":
        return "Welcome message not posted: general channel not configured."
    if reason == "invalid_channel":
        return "Welcome message not posted: configured general channel is unavailable."
    if reason == "missing_permissions":
        return "Welcome message not posted: missing permissions in the configured channel."
    if reason == "fetch_failed":
        return "Welcome message not posted: failed to resolve the configured general channel."
    if reason == "role_not_applied":
        return "Welcome message not posted: accepted role was not granted."
    return "Welcome message not posted: failed to send to the configured general channel."


def is_missing_permissions(err: BaseException) -> bool:
    if isinstance(err, discord.Forbidden):
        return True
    return getattr(err, "code", None) == MISSING_PERMISSIONS_CODE


def classify_failure(err: BaseException) -> NotificationFailure:
    if isinstance(err, asyncio.TimeoutError):
        return "timeout"
    if isinstance(err, discord.Forbidden):
        return "forbidden"
    if isinstance(err, discord.NotFound):
        return "not_found"
    if isinstance(err, discord.HTTPException):
        return "http_error"
    return "error"


class NotificationFlows:
    """Best-effort outbound messages that follow a committed decision.

    Nothing here raises to the caller: failures come back as
    ``delivered=False`` / a failure reason. Every Discord call is bounded
    by ``timeout_seconds``.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 30.0,
        stats: Optional[RuntimeStats] = None,
        warned_guilds: Optional[set[int]] = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self._stats = stats
        # Guilds already warned about a broken welcome template this process.
        self._warned_guilds: set[int] = warned_guilds if warned_guilds is not None else set()

    async def _bounded(self, aw: Awaitable[T]) -> T:
        return await asyncio.wait_for(aw, timeout=self.timeout_seconds)

    # DMs

    async def notify(self, user: discord.abc.User, ctx: DecisionContext) -> NotificationResult:
        content = render_decision_message(ctx)
        try:
            await self._bounded(user.send(content=content))
        except Exception as e:
            failure = classify_failure(e)
            if failure == "error":
                log.exception("Unexpected error sending %s DM to %s", ctx.kind.value, user.id)
            else:
                log.warning("Failed to DM %s about %s (%s): %s", user.id, ctx.kind.value, failure, e)
            if self._stats:
                self._stats.dms_failed += 1
            return NotificationResult(delivered=False, failure=failure, detail=str(e) or type(e).__name__)
        log.debug("Delivered %s DM to %s", ctx.kind.value, user.id)
        return NotificationResult(delivered=True)

    # Roles

    async def grant_role(self, member: discord.Member, role: discord.Role) -> RoleGrantResult:
        if any(r.id == role.id for r in member.roles):
            return RoleGrantResult(applied=True)
        try:
            await self._bounded(member.add_roles(role, reason="Application approved"))
        except Exception as e:
            missing = is_missing_permissions(e)
            log.warning("Failed to grant role %s to %s: %s", role.id, member.id, e)
            return RoleGrantResult(applied=False, error=str(e) or type(e).__name__, missing_permissions=missing)
        return RoleGrantResult(applied=True)

    # Welcome

    def reset_template_warnings(self) -> None:
        self._warned_guilds.clear()

    def _warn_invalid_template_once(self, guild_id: int, detail: str) -> None:
        if guild_id in self._warned_guilds:
            return
        self._warned_guilds.add(guild_id)
        log.warning("Invalid welcome template for guild %s (%s); using default layout", guild_id, detail)

    def _default_welcome(self, guild: discord.Guild, member: discord.Member) -> tuple[str, discord.Embed]:
        embed = discord.Embed(title=f"Welcome to {guild.name} 🐾", color=COLORS["welcome"])
        embed.set_thumbnail(url=member.display_avatar.url)
        lines = [
            f"👋 Welcome to {guild.name}, {member}!",
            f"This server now has **{guild.member_count} Users**!",
            "✅ Enjoy your stay!",
            f"{guild.name} Moderation Team",
        ]
        embed.description = "\n".join(lines)
        return member.mention, embed

    async def post_welcome(
        self,
        *,
        guild: discord.Guild,
        member: discord.Member,
        channel_id: Optional[int],
        template: Any = None,
    ) -> WelcomeResult:
        result = await self._post_welcome(guild=guild, member=member, channel_id=channel_id, template=template)
        if self._stats:
            if result.ok:
                self._stats.welcomes_posted += 1
            else:
                self._stats.welcomes_failed += 1
        if not result.ok:
            log.warning(
                "Welcome not posted (guild=%s channel=%s reason=%s): %s",
                guild.id,
                channel_id,
                result.reason,
                result.error,
            )
        return result

    async def _post_welcome(
        self,
        *,
        guild: discord.Guild,
        member: discord.Member,
        channel_id: Optional[int],
        template: Any,
    ) -> WelcomeResult:
        if not channel_id:
            return WelcomeResult(ok=False, reason="missing_channel")

        channel: Any = guild.get_channel(channel_id)
        if channel is None:
            try:
                channel = await self._bounded(guild.fetch_channel(channel_id))
            except Exception as e:
                return WelcomeResult(ok=False, reason="fetch_failed", error=e)

        if not isinstance(channel, discord.abc.Messageable):
            return WelcomeResult(ok=False, reason="invalid_channel")

        me = guild.me
        if me is not None:
            perms = channel.permissions_for(me)
            if not (perms.view_channel and perms.send_messages):
                return WelcomeResult(ok=False, reason="missing_permissions")

        if isinstance(template, str) and template.strip():
            content = render_welcome_template(
                template,
                guild_name=guild.name,
                applicant_id=member.id,
                applicant_tag=str(member),
                applicant_display=member.display_name,
            )
            embed = discord.Embed(title="Welcome!", color=COLORS["welcome"])
            embed.set_thumbnail(url=member.display_avatar.url)
        else:
            if isinstance(template, str):
                self._warn_invalid_template_once(guild.id, "empty_template")
            elif template is not None:
                self._warn_invalid_template_once(guild.id, "non_string_template")
            content, embed = self._default_welcome(guild, member)

        allowed = discord.AllowedMentions(everyone=False, roles=False, users=[member])

        try:
            message = await self._bounded(channel.send(content=content, embed=embed, allowed_mentions=allowed))
        except Exception as first:
            log.info("Welcome with embed failed in %s (%s); retrying as plain text", channel_id, first)
            try:
                message = await self._bounded(channel.send(content=content, allowed_mentions=allowed))
            except Exception as e:
                reason: WelcomeFailureReason = "missing_permissions" if is_missing_permissions(e) else "send_failed"
                return WelcomeResult(ok=False, reason=reason, error=e)
            log.info("Welcome posted without embed (guild=%s user=%s message=%s)", guild.id, member.id, message.id)
            return WelcomeResult(ok=True, message_id=message.id, fallback_used=True)

        log.info("Welcome posted (guild=%s user=%s message=%s)", guild.id, member.id, message.id)
        return WelcomeResult(ok=True, message_id=message.id)
