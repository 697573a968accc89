from __future__ import annotations

import discord

from .constants import COLORS, MAX_EMBED_DESCRIPTION, MAX_EMBED_TITLE


def safe_embed(title: str, description: str, color: int = COLORS["default"]) -> discord.Embed:
    """Create an embed with safe length limits."""
    if len(title) > MAX_EMBED_TITLE:
        title = title[: MAX_EMBED_TITLE - 1] + "…"
    if len(description) > MAX_EMBED_DESCRIPTION:
        description = description[: MAX_EMBED_DESCRIPTION - 1] + "…"
    return discord.Embed(title=title, description=description, color=color)


def error_embed(message: str) -> discord.Embed:
    return safe_embed("Error", message, COLORS["error"])


def success_embed(message: str) -> discord.Embed:
    return safe_embed("Success", message, COLORS["success"])


def info_embed(message: str) -> discord.Embed:
    return safe_embed("Information", message, COLORS["info"])


def warning_embed(message: str) -> discord.Embed:
    return safe_embed("Warning", message, COLORS["warning"])
