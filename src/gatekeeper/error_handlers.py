from __future__ import annotations

import logging

import aiosqlite
import discord
from discord import app_commands
from discord.ext import commands

from .constants import ERROR_MESSAGES
from .review.models import ApplicationNotFound, ReviewError
from .services.discord_safety import safe_send
from .utils import error_embed

log = logging.getLogger("gatekeeper.error_handlers")


def describe_app_command_error(error: app_commands.AppCommandError) -> str:
    """Map a slash-command error to the text shown to the moderator."""
    if isinstance(error, app_commands.CommandInvokeError):
        original = error.original
        if isinstance(original, ApplicationNotFound):
            return ERROR_MESSAGES["not_found"]
        if isinstance(original, (ReviewError, aiosqlite.Error)):
            return ERROR_MESSAGES["database_error"]
    if isinstance(error, app_commands.NoPrivateMessage):
        return ERROR_MESSAGES["guild_only"]
    if isinstance(error, app_commands.MissingPermissions):
        return ERROR_MESSAGES["missing_permissions"]
    if isinstance(error, app_commands.BotMissingPermissions):
        return "The bot lacks required permissions to run this command."
    if isinstance(error, app_commands.CommandOnCooldown):
        return f"This command is on cooldown. Try again in {error.retry_after:.1f}s"
    if isinstance(error, app_commands.CheckFailure):
        return ERROR_MESSAGES["missing_permissions"]
    return ERROR_MESSAGES["database_error"]


class ErrorHandler(commands.Cog):
    """Centralized slash-command error handling."""

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot
        self._previous = None

    async def cog_load(self) -> None:
        tree = self.bot.tree
        self._previous = tree.on_error
        tree.on_error = self.on_app_command_error

    async def cog_unload(self) -> None:
        if self._previous is not None:
            self.bot.tree.on_error = self._previous

    async def on_app_command_error(
        self,
        interaction: discord.Interaction,
        error: app_commands.AppCommandError,
    ) -> None:
        expected = not isinstance(error, app_commands.CommandInvokeError) or isinstance(
            error.original, ApplicationNotFound
        )
        if expected:
            log.info("App command %s refused: %s", getattr(interaction.command, "name", "?"), error)
        else:
            log.exception(
                "Unexpected error in app command %s",
                getattr(interaction.command, "qualified_name", "?"),
                exc_info=error,
            )
        await safe_send(interaction, embed=error_embed(describe_app_command_error(error)))


async def setup_error_handlers(bot: commands.Bot) -> None:
    await bot.add_cog(ErrorHandler(bot))
