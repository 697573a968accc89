from __future__ import annotations

import asyncio
import logging

import discord
from discord.ext import commands

from .cogs.review import ReviewCog
from .config import Settings
from .constants import CACHE_TTL_SECONDS
from .database import initialize_database
from .error_handlers import setup_error_handlers
from .review.notifications import NotificationFlows
from .review.service import ReviewService
from .review.tickets import TicketClosure
from .review.transitions import TransitionEngine
from .services.application_store import ApplicationStore
from .services.claim_store import ClaimStore
from .services.review_action_store import ReviewActionStore
from .services.review_config_store import ReviewConfigStore
from .services.stats import RuntimeStats
from .services.task_queue import QueuePolicy, TaskQueue
from .services.ticket_store import TicketStore

log = logging.getLogger("gatekeeper.bot")


class _CommandSyncManager:
    def __init__(self, bot: "GatekeeperBot") -> None:
        self.bot = bot
        self._lock = asyncio.Lock()

    async def sync_startup(self) -> None:
        if self.bot.settings.sync_guild_id:
            await self.sync_guild(self.bot.settings.sync_guild_id)
        else:
            await self.sync_global()

    async def sync_global(self) -> None:
        async with self._lock:
            await self.bot.tree.sync()
            log.info("Commands synced globally")
            self._log_tree()

    async def sync_guild(self, guild_id: int) -> None:
        async with self._lock:
            guild = discord.Object(id=guild_id)
            self.bot.tree.copy_global_to(guild=guild)
            await self.bot.tree.sync(guild=guild)
            log.info("Commands synced to guild %d", guild_id)
            self._log_tree()

    def _log_tree(self) -> None:
        cmds = self.bot.tree.get_commands()
        log.info("Tree commands loaded: %d", len(cmds))
        for c in cmds:
            log.info(" - /%s", c.name)


class GatekeeperBot(commands.Bot):
    def __init__(self, settings: Settings) -> None:
        intents = discord.Intents.default()
        intents.members = True
        # Slash commands only; message content intent is optional.
        intents.message_content = bool(settings.message_content_intent)

        log.info("INTENTS: guilds=%s members=%s message_content=%s", intents.guilds, intents.members, intents.message_content)

        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            allowed_mentions=discord.AllowedMentions(everyone=False, roles=False, users=True),
            help_command=None,
        )

        self.settings = settings
        self.stats = RuntimeStats()

        self.task_queue = TaskQueue(
            QueuePolicy(
                max_batch=settings.queue_max_batch,
                every_ms=settings.queue_every_ms,
                max_queue_size=settings.queue_max_size,
            ),
            stats=self.stats,
        )

        cache_ttl = settings.cache_default_ttl_seconds or CACHE_TTL_SECONDS

        self.application_store = ApplicationStore(settings.sqlite_path)
        self.claim_store = ClaimStore(settings.sqlite_path)
        self.review_action_store = ReviewActionStore(settings.sqlite_path)
        self.ticket_store = TicketStore(settings.sqlite_path)
        self.review_config_store = ReviewConfigStore(settings.sqlite_path, cache_ttl)

        self.review_service = ReviewService(
            client=self,
            applications=self.application_store,
            claims=self.claim_store,
            actions=self.review_action_store,
            configs=self.review_config_store,
            engine=TransitionEngine(
                applications=self.application_store,
                claims=self.claim_store,
                actions=self.review_action_store,
                busy_timeout_ms=settings.sqlite_busy_timeout_ms,
            ),
            notifications=NotificationFlows(timeout_seconds=settings.notify_timeout_seconds, stats=self.stats),
            tickets=TicketClosure(self.ticket_store, stats=self.stats),
            task_queue=self.task_queue,
            stats=self.stats,
            history_limit=settings.history_limit,
        )
        self._sync_mgr = _CommandSyncManager(self)

    async def setup_hook(self) -> None:
        stores = [
            self.application_store,
            self.claim_store,
            self.review_action_store,
            self.ticket_store,
            self.review_config_store,
        ]
        await initialize_database(self.settings.sqlite_path, stores)

        self.task_queue.start()

        await setup_error_handlers(self)
        await self.add_cog(ReviewCog(self, self.review_service))
        log.info("Loaded cog: ReviewCog")

        await self._sync_mgr.sync_startup()
        log.info("Command sync complete")

    async def close(self) -> None:
        s = self.stats
        log.info(
            "Shutting down after %ss: decisions=%s dms_failed=%s welcomes=%s/%s tickets_closed=%s",
            s.uptime_seconds(),
            s.decisions_recorded,
            s.dms_failed,
            s.welcomes_posted,
            s.welcomes_posted + s.welcomes_failed,
            s.tickets_closed,
        )
        try:
            await self.task_queue.stop()
        finally:
            await super().close()

    async def on_ready(self) -> None:
        log.info("Logged in as %s (id=%s) in %d guilds", self.user, getattr(self.user, "id", "?"), len(self.guilds))
