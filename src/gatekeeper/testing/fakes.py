from __future__ import annotations

import asyncio
import itertools
from types import SimpleNamespace
from typing import Any, Optional

import discord

_message_ids = itertools.count(900_000)


def http_response(status: int, reason: str) -> SimpleNamespace:
    return SimpleNamespace(status=status, reason=reason)


def forbidden(message: str = "Missing Permissions", code: int = 50013) -> discord.Forbidden:
    return discord.Forbidden(http_response(403, "Forbidden"), {"code": code, "message": message})


def not_found(message: str = "Unknown Channel", code: int = 10003) -> discord.NotFound:
    return discord.NotFound(http_response(404, "Not Found"), {"code": code, "message": message})


def http_error(message: str = "Internal Server Error") -> discord.HTTPException:
    return discord.HTTPException(http_response(500, "Internal Server Error"), {"code": 0, "message": message})


class Script:
    """Outcome of the next calls to a fake Discord method.

    ``fail`` is raised on every call while set; ``delay`` is awaited first so
    timeouts can be exercised.
    """

    def __init__(self) -> None:
        self.fail: Optional[BaseException] = None
        self.fail_times: Optional[int] = None
        self.delay: float = 0.0
        self.calls: list[dict[str, Any]] = []

    async def run(self, **kwargs: Any) -> None:
        self.calls.append(kwargs)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail is not None:
            if self.fail_times is None or self.fail_times > 0:
                if self.fail_times is not None:
                    self.fail_times -= 1
                raise self.fail


class FakeRole:
    """Fake Discord Role for testing."""

    def __init__(self, id: int = 555, name: str = "Member") -> None:
        self.id = id
        self.name = name
        self.mention = f"<@&{id}>"

    def __repr__(self) -> str:
        return f"<FakeRole id={self.id} name={self.name}>"


class FakeUser:
    """Fake Discord User for testing."""

    def __init__(self, id: int = 1001, name: str = "applicant") -> None:
        self.id = id
        self.name = name
        self.display_name = name
        self.mention = f"<@{id}>"
        self.display_avatar = SimpleNamespace(url=f"https://cdn.discordapp.com/embed/avatars/{id % 5}.png")
        self.dm = Script()
        self.sent: list[str] = []

    async def send(self, content: Optional[str] = None, **kwargs: Any) -> SimpleNamespace:
        await self.dm.run(content=content, **kwargs)
        self.sent.append(content or "")
        return SimpleNamespace(id=next(_message_ids), content=content)

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id} name={self.name}>"


class FakeMember(FakeUser):
    """Fake Discord Member for testing."""

    def __init__(self, id: int = 1001, name: str = "applicant", *, display_name: Optional[str] = None) -> None:
        super().__init__(id, name)
        self.display_name = display_name or name
        self.roles: list[FakeRole] = []
        self.guild_permissions = discord.Permissions.none()
        self.role_grants = Script()
        self.kicks = Script()
        self.kicked = False

    async def add_roles(self, *roles: FakeRole, reason: Optional[str] = None) -> None:
        await self.role_grants.run(roles=roles, reason=reason)
        self.roles.extend(roles)

    async def kick(self, *, reason: Optional[str] = None) -> None:
        await self.kicks.run(reason=reason)
        self.kicked = True


class FakeTextChannel(discord.abc.Messageable):
    """Fake text channel; ``messages`` collects what was posted."""

    def __init__(
        self,
        id: int = 4242,
        name: str = "general",
        *,
        permissions: Optional[discord.Permissions] = None,
    ) -> None:
        self.id = id
        self.name = name
        self.mention = f"<#{id}>"
        self.permissions = permissions or discord.Permissions(view_channel=True, send_messages=True, embed_links=True)
        self.messages: list[dict[str, Any]] = []
        self.sends = Script()
        self.embed_fail: Optional[BaseException] = None

    async def _get_channel(self) -> "FakeTextChannel":
        return self

    def permissions_for(self, obj: Any) -> discord.Permissions:
        return self.permissions

    async def send(self, content: Optional[str] = None, **kwargs: Any) -> SimpleNamespace:  # type: ignore[override]
        if kwargs.get("embed") is not None and self.embed_fail is not None:
            self.sends.calls.append({"content": content, **kwargs})
            raise self.embed_fail
        await self.sends.run(content=content, **kwargs)
        message = SimpleNamespace(id=next(_message_ids), content=content, embed=kwargs.get("embed"))
        self.messages.append({"id": message.id, "content": content, **kwargs})
        return message

    def __str__(self) -> str:
        return self.name


class FakeVoiceChannel:
    """Not messageable; used to exercise invalid channel handling."""

    def __init__(self, id: int = 4343, name: str = "voice") -> None:
        self.id = id
        self.name = name


class FakeGuild:
    """Fake Discord Guild for testing."""

    def __init__(self, id: int = 77, name: str = "Test Guild", *, member_count: int = 42) -> None:
        self.id = id
        self.name = name
        self.member_count = member_count
        self.me: Optional[FakeMember] = FakeMember(id=1, name="gatekeeper")
        self.channels: dict[int, Any] = {}
        self.uncached_channels: dict[int, Any] = {}
        self.members: dict[int, FakeMember] = {}
        self.uncached_members: dict[int, FakeMember] = {}
        self.roles: dict[int, FakeRole] = {}
        self.channel_fetch_fail: Optional[BaseException] = None

    def add_channel(self, channel: Any, *, cached: bool = True) -> Any:
        (self.channels if cached else self.uncached_channels)[channel.id] = channel
        return channel

    def add_member(self, member: FakeMember, *, cached: bool = True) -> FakeMember:
        (self.members if cached else self.uncached_members)[member.id] = member
        return member

    def add_role(self, role: FakeRole) -> FakeRole:
        self.roles[role.id] = role
        return role

    def get_channel(self, channel_id: int) -> Any:
        return self.channels.get(channel_id)

    async def fetch_channel(self, channel_id: int) -> Any:
        if self.channel_fetch_fail is not None:
            raise self.channel_fetch_fail
        channel = self.uncached_channels.get(channel_id)
        if channel is None:
            raise not_found()
        return channel

    def get_member(self, user_id: int) -> Optional[FakeMember]:
        return self.members.get(user_id)

    async def fetch_member(self, user_id: int) -> FakeMember:
        member = self.uncached_members.get(user_id)
        if member is None:
            raise not_found("Unknown Member", 10007)
        return member

    def get_role(self, role_id: int) -> Optional[FakeRole]:
        return self.roles.get(role_id)


class FakeClient:
    """Stands in for the bot: guild and user lookups only."""

    def __init__(self) -> None:
        self.guilds: dict[int, FakeGuild] = {}
        self.users: dict[int, FakeUser] = {}
        self.uncached_users: dict[int, FakeUser] = {}

    def add_guild(self, guild: FakeGuild) -> FakeGuild:
        self.guilds[guild.id] = guild
        return guild

    def get_guild(self, guild_id: int) -> Optional[FakeGuild]:
        return self.guilds.get(guild_id)

    def get_user(self, user_id: int) -> Optional[FakeUser]:
        return self.users.get(user_id)

    async def fetch_user(self, user_id: int) -> FakeUser:
        user = self.uncached_users.get(user_id)
        if user is None:
            raise not_found("Unknown User", 10013)
        return user


class ExplodingTicketGateway:
    """Ticket gateway whose every call fails."""

    def __init__(self, error: Optional[BaseException] = None) -> None:
        self.error = error or RuntimeError("ticket backend down")
        self.calls = 0

    async def find_open_ticket(self, guild_id: int, user_id: int) -> Any:
        self.calls += 1
        raise self.error

    async def close_ticket(self, ticket_id: int, reason: str) -> None:
        self.calls += 1
        raise self.error
