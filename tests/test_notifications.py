from __future__ import annotations

import asyncio
import logging

import discord
import pytest

from gatekeeper.review.models import DecisionContext, DecisionKind, NotificationResult
from gatekeeper.review.notifications import (
    DEFAULT_WELCOME_TEMPLATE,
    NotificationFlows,
    build_welcome_notice,
    classify_failure,
    is_missing_permissions,
    render_decision_message,
    render_welcome_template,
)
from gatekeeper.testing.fakes import (
    FakeGuild,
    FakeMember,
    FakeRole,
    FakeTextChannel,
    FakeUser,
    FakeVoiceChannel,
    forbidden,
    http_error,
    not_found,
)


# Templates


def test_welcome_template_substitutes_every_token():
    text = render_welcome_template(
        "Hi {applicant.mention} ({applicant.tag} / {applicant.display}) in {guild.name}",
        guild_name="Cozy Den",
        applicant_id=42,
        applicant_tag="fox",
        applicant_display="Foxy",
    )
    assert text == "Hi <@42> (fox / Foxy) in Cozy Den"


def test_welcome_template_falls_back_for_missing_names():
    text = render_welcome_template(
        "{applicant.tag}|{applicant.display}", guild_name="G", applicant_id=42, applicant_tag="  "
    )
    assert text == "42|42"


def test_welcome_template_leaves_unknown_tokens():
    text = render_welcome_template("{applicant.mention} {nope}", guild_name="G", applicant_id=1)
    assert text == "<@1> {nope}"


@pytest.mark.parametrize("template", [None, "", "   ", 123])
def test_blank_or_invalid_template_uses_default(template):
    text = render_welcome_template(template, guild_name="G", applicant_id=7)
    assert text == DEFAULT_WELCOME_TEMPLATE.replace("{applicant.mention}", "<@7>").replace("{guild.name}", "G")


def test_reject_message_includes_reason():
    text = render_decision_message(DecisionContext(DecisionKind.REJECT, "Cozy Den", "incomplete answers"))
    assert "Cozy Den" in text
    assert "incomplete answers" in text


def test_perm_reject_message_is_final():
    text = render_decision_message(DecisionContext(DecisionKind.PERM_REJECT, "Cozy Den", "ban evasion"))
    assert "permanently" in text
    assert "cannot apply again" in text


@pytest.mark.parametrize("kind", list(DecisionKind))
def test_every_decision_kind_has_a_message(kind):
    assert render_decision_message(DecisionContext(kind, "Cozy Den")).strip()


def test_approve_message_without_reason_has_no_note():
    text = render_decision_message(DecisionContext(DecisionKind.APPROVE, "Cozy Den"))
    assert "Note from reviewer" not in text


def test_welcome_notices():
    assert "not configured" in build_welcome_notice("missing_channel")
    assert "missing permissions" in build_welcome_notice("missing_permissions")
    assert "failed to send" in build_welcome_notice("send_failed")
    assert "role was not granted" in build_welcome_notice("role_not_applied")


# Failure classification


def test_classify_failure():
    assert classify_failure(asyncio.TimeoutError()) == "timeout"
    assert classify_failure(forbidden()) == "forbidden"
    assert classify_failure(not_found()) == "not_found"
    assert classify_failure(http_error()) == "http_error"
    assert classify_failure(ValueError("x")) == "error"


def test_missing_permissions_detection():
    assert is_missing_permissions(forbidden())
    assert not is_missing_permissions(http_error())
    assert not is_missing_permissions(RuntimeError("x"))


# DMs


async def test_notify_delivers():
    flows = NotificationFlows(timeout_seconds=1)
    user = FakeUser()
    result = await flows.notify(user, DecisionContext(DecisionKind.APPROVE, "Cozy Den"))
    assert result == NotificationResult(delivered=True)
    assert len(user.sent) == 1


async def test_notify_forbidden_is_not_raised(stats):
    flows = NotificationFlows(timeout_seconds=1, stats=stats)
    user = FakeUser()
    user.dm.fail = forbidden("Cannot send messages to this user", 50007)

    result = await flows.notify(user, DecisionContext(DecisionKind.REJECT, "Cozy Den", "nope"))
    assert result.delivered is False
    assert result.failure == "forbidden"
    assert result.to_meta()["dm_delivered"] is False
    assert stats.dms_failed == 1


async def test_notify_times_out():
    flows = NotificationFlows(timeout_seconds=0.05)
    user = FakeUser()
    user.dm.delay = 1.0

    result = await flows.notify(user, DecisionContext(DecisionKind.KICK, "Cozy Den"))
    assert result.delivered is False
    assert result.failure == "timeout"
    assert user.sent == []


# Roles


async def test_grant_role_adds_missing_role():
    flows = NotificationFlows(timeout_seconds=1)
    member, role = FakeMember(), FakeRole()
    result = await flows.grant_role(member, role)
    assert result.applied
    assert member.roles == [role]


async def test_grant_role_skips_existing_role():
    flows = NotificationFlows(timeout_seconds=1)
    member, role = FakeMember(), FakeRole()
    member.roles.append(role)
    assert (await flows.grant_role(member, role)).applied
    assert member.role_grants.calls == []


async def test_grant_role_reports_missing_permissions():
    flows = NotificationFlows(timeout_seconds=1)
    member = FakeMember()
    member.role_grants.fail = forbidden()
    result = await flows.grant_role(member, FakeRole())
    assert result.applied is False
    assert result.missing_permissions is True


# Welcome


@pytest.fixture()
def guild() -> FakeGuild:
    return FakeGuild(name="Cozy Den", member_count=99)


@pytest.fixture()
def member() -> FakeMember:
    return FakeMember(id=1001, name="fox", display_name="Foxy")


async def test_welcome_without_channel(guild, member):
    result = await NotificationFlows().post_welcome(guild=guild, member=member, channel_id=None)
    assert result.ok is False
    assert result.reason == "missing_channel"


async def test_welcome_default_layout(guild, member, stats):
    channel = guild.add_channel(FakeTextChannel(id=10))
    result = await NotificationFlows(stats=stats).post_welcome(guild=guild, member=member, channel_id=10)

    assert result.ok and not result.fallback_used
    sent = channel.messages[0]
    assert sent["content"] == "<@1001>"
    embed = sent["embed"]
    assert "Cozy Den" in embed.title
    assert "**99 Users**" in embed.description
    assert sent["allowed_mentions"].everyone is False
    assert stats.welcomes_posted == 1


async def test_welcome_custom_template(guild, member):
    channel = guild.add_channel(FakeTextChannel(id=10))
    result = await NotificationFlows().post_welcome(
        guild=guild, member=member, channel_id=10, template="Say hi to {applicant.display} in {guild.name}!"
    )
    assert result.ok
    assert channel.messages[0]["content"] == "Say hi to Foxy in Cozy Den!"


async def test_welcome_fetches_uncached_channel(guild, member):
    channel = guild.add_channel(FakeTextChannel(id=11), cached=False)
    result = await NotificationFlows().post_welcome(guild=guild, member=member, channel_id=11)
    assert result.ok
    assert len(channel.messages) == 1


async def test_welcome_unknown_channel_is_a_fetch_failure(guild, member):
    result = await NotificationFlows().post_welcome(guild=guild, member=member, channel_id=12)
    assert result.ok is False
    assert result.reason == "fetch_failed"
    assert isinstance(result.error, discord.NotFound)


async def test_welcome_channel_fetch_failure(guild, member):
    guild.channel_fetch_fail = http_error()
    result = await NotificationFlows().post_welcome(guild=guild, member=member, channel_id=12)
    assert result.reason == "fetch_failed"


async def test_welcome_non_text_channel(guild, member):
    guild.add_channel(FakeVoiceChannel(id=13))
    result = await NotificationFlows().post_welcome(guild=guild, member=member, channel_id=13)
    assert result.reason == "invalid_channel"


async def test_welcome_without_send_permission(guild, member):
    channel = guild.add_channel(
        FakeTextChannel(id=14, permissions=discord.Permissions(view_channel=True, send_messages=False))
    )
    result = await NotificationFlows().post_welcome(guild=guild, member=member, channel_id=14)
    assert result.reason == "missing_permissions"
    assert channel.messages == []


async def test_welcome_retries_without_embed(guild, member):
    channel = guild.add_channel(FakeTextChannel(id=15))
    channel.embed_fail = forbidden("Missing Permissions: embed_links")

    result = await NotificationFlows().post_welcome(guild=guild, member=member, channel_id=15)
    assert result.ok and result.fallback_used
    assert channel.messages[0].get("embed") is None
    assert channel.messages[0]["content"] == "<@1001>"


async def test_welcome_send_failure_is_classified(guild, member, stats):
    channel = guild.add_channel(FakeTextChannel(id=16))
    channel.sends.fail = forbidden()
    result = await NotificationFlows(stats=stats).post_welcome(guild=guild, member=member, channel_id=16)
    assert result.ok is False
    assert result.reason == "missing_permissions"
    assert stats.welcomes_failed == 1

    channel.sends.fail = http_error()
    result = await NotificationFlows().post_welcome(guild=guild, member=member, channel_id=16)
    assert result.reason == "send_failed"


async def test_invalid_template_warns_once_per_guild(guild, member, caplog):
    guild.add_channel(FakeTextChannel(id=17))
    flows = NotificationFlows()

    with caplog.at_level(logging.WARNING, logger="gatekeeper.review.notifications"):
        await flows.post_welcome(guild=guild, member=member, channel_id=17, template=["not", "text"])
        await flows.post_welcome(guild=guild, member=member, channel_id=17, template=["not", "text"])
    warnings = [r for r in caplog.records if "Invalid welcome template" in r.getMessage()]
    assert len(warnings) == 1

    flows.reset_template_warnings()
    with caplog.at_level(logging.WARNING, logger="gatekeeper.review.notifications"):
        await flows.post_welcome(guild=guild, member=member, channel_id=17, template="")
    warnings = [r for r in caplog.records if "Invalid welcome template" in r.getMessage()]
    assert len(warnings) == 2


async def test_warned_guilds_state_is_injectable(guild, member):
    guild.add_channel(FakeTextChannel(id=18))
    seen: set[int] = set()
    flows = NotificationFlows(warned_guilds=seen)
    await flows.post_welcome(guild=guild, member=member, channel_id=18, template="   ")
    assert seen == {guild.id}
