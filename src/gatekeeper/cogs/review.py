from __future__ import annotations

import logging
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from ..constants import MAX_HISTORY_LIMIT, MAX_REASON_LENGTH
from ..review.models import DecisionOutcome, ReviewAction
from ..review.service import ReviewService
from ..services.discord_safety import safe_defer, safe_send
from ..services.review_config_store import ReviewConfig
from ..utils import error_embed, info_embed, safe_embed, success_embed, warning_embed

log = logging.getLogger("gatekeeper.cog.review")


def outcome_embed(outcome: DecisionOutcome) -> discord.Embed:
    if outcome.ok:
        return warning_embed(outcome.render()) if outcome.warnings else success_embed(outcome.render())
    if outcome.status in ("already", "terminal"):
        return info_embed(outcome.render())
    return error_embed(outcome.render())


def history_embed(app_id: str, actions: list[ReviewAction]) -> discord.Embed:
    e = safe_embed(f"Review history: {app_id}", "" if actions else "No review actions yet.")
    for a in actions:
        value = f"<@{a.moderator_id}> <t:{a.created_at}:R>"
        if a.reason:
            value += f"\n{a.reason[:200]}"
        e.add_field(name=f"#{a.id} • {a.action}", value=value, inline=False)
    return e


@app_commands.guild_only()
@app_commands.default_permissions(moderate_members=True)
class ReviewCog(commands.GroupCog, group_name="review", group_description="Review membership applications."):
    def __init__(self, bot: commands.Bot, service: ReviewService) -> None:
        self.bot = bot
        self.service = service
        super().__init__()

    async def _reply(self, interaction: discord.Interaction, outcome: DecisionOutcome) -> None:
        log.info(
            "%s by %s on guild %s: %s",
            getattr(interaction.command, "name", "?"),
            interaction.user.id,
            interaction.guild_id,
            outcome.status,
        )
        await safe_send(interaction, embed=outcome_embed(outcome))

    @app_commands.command(name="claim", description="Claim an application so only you can decide it.")
    async def claim(self, interaction: discord.Interaction, app_id: str) -> None:
        await safe_defer(interaction)
        await self._reply(interaction, await self.service.claim(app_id, interaction.user.id))

    @app_commands.command(name="unclaim", description="Release your claim on an application.")
    @app_commands.describe(force="Administrators only: release someone else's claim.")
    async def unclaim(self, interaction: discord.Interaction, app_id: str, force: bool = False) -> None:
        await safe_defer(interaction)
        perms = getattr(interaction.user, "guild_permissions", None)
        if force and not (perms and perms.administrator):
            await safe_send(interaction, embed=error_embed("Only administrators can force-release a claim."))
            return
        await self._reply(interaction, await self.service.unclaim(app_id, interaction.user.id, force=force))

    @app_commands.command(name="approve", description="Approve an application.")
    async def approve(
        self,
        interaction: discord.Interaction,
        app_id: str,
        reason: Optional[app_commands.Range[str, 1, MAX_REASON_LENGTH]] = None,
    ) -> None:
        await safe_defer(interaction)
        await self._reply(interaction, await self.service.approve(app_id, interaction.user.id, reason))

    @app_commands.command(name="reject", description="Reject an application.")
    @app_commands.describe(permanent="Block the applicant from ever applying again.")
    async def reject(
        self,
        interaction: discord.Interaction,
        app_id: str,
        reason: app_commands.Range[str, 1, MAX_REASON_LENGTH],
        permanent: bool = False,
    ) -> None:
        await safe_defer(interaction)
        outcome = await self.service.reject(app_id, interaction.user.id, reason, permanent=permanent)
        await self._reply(interaction, outcome)

    @app_commands.command(name="kick", description="Reject an application and remove the applicant.")
    @app_commands.checks.bot_has_permissions(kick_members=True)
    async def kick(
        self,
        interaction: discord.Interaction,
        app_id: str,
        reason: Optional[app_commands.Range[str, 1, MAX_REASON_LENGTH]] = None,
    ) -> None:
        await safe_defer(interaction)
        await self._reply(interaction, await self.service.kick(app_id, interaction.user.id, reason))

    @app_commands.command(name="needinfo", description="Ask the applicant for more information.")
    async def needinfo(
        self,
        interaction: discord.Interaction,
        app_id: str,
        reason: Optional[app_commands.Range[str, 1, MAX_REASON_LENGTH]] = None,
    ) -> None:
        await safe_defer(interaction)
        await self._reply(interaction, await self.service.request_info(app_id, interaction.user.id, reason))

    @app_commands.command(name="history", description="Show recent review actions for an application.")
    async def history(
        self,
        interaction: discord.Interaction,
        app_id: str,
        limit: Optional[app_commands.Range[int, 1, MAX_HISTORY_LIMIT]] = None,
    ) -> None:
        await safe_defer(interaction)
        if await self.service.applications.load_application(app_id) is None:
            await safe_send(interaction, embed=error_embed("Application not found."))
            return
        actions = await self.service.history(app_id, limit)
        await safe_send(interaction, embed=history_embed(app_id, actions))

    @app_commands.command(name="config", description="Set the welcome channel, template and accepted role.")
    @app_commands.checks.has_permissions(manage_guild=True)
    @app_commands.describe(template="Tokens: {applicant.mention} {applicant.tag} {applicant.display} {guild.name}")
    async def config(
        self,
        interaction: discord.Interaction,
        channel: Optional[discord.TextChannel] = None,
        role: Optional[discord.Role] = None,
        template: Optional[str] = None,
    ) -> None:
        assert interaction.guild_id is not None
        await safe_defer(interaction)
        store = self.service.configs
        current = await store.get(interaction.guild_id)
        cfg = ReviewConfig(
            guild_id=interaction.guild_id,
            general_channel_id=channel.id if channel else current.general_channel_id,
            welcome_template=template if template is not None else current.welcome_template,
            accepted_role_id=role.id if role else current.accepted_role_id,
        )
        await store.upsert(cfg)
        self.service.notifications.reset_template_warnings()
        lines = [
            f"Welcome channel: {f'<#{cfg.general_channel_id}>' if cfg.general_channel_id else 'not set'}",
            f"Accepted role: {f'<@&{cfg.accepted_role_id}>' if cfg.accepted_role_id else 'not set'}",
            f"Template: {cfg.welcome_template or 'default'}",
        ]
        await safe_send(interaction, embed=success_embed("\n".join(lines)))
