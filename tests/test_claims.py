from __future__ import annotations

from gatekeeper.review.claims import ClaimGuard, check_claim, claimed_message
from gatekeeper.review.models import Claim
from tests.conftest import MOD_A, MOD_B


def test_unclaimed_is_free_for_anyone():
    assert check_claim(None, MOD_A) is None


def test_owner_passes_the_guard():
    assert check_claim(Claim("app", MOD_A, "2026-01-01T00:00:00+00:00"), MOD_A) is None


def test_other_moderator_gets_named_owner():
    message = check_claim(Claim("app", MOD_A, "2026-01-01T00:00:00+00:00"), MOD_B)
    assert message == claimed_message(MOD_A)
    assert f"<@{MOD_A}>" in message


async def test_claim_round_trip(stores, app):
    guard = ClaimGuard(stores.claims)
    claim = await guard.acquire(app.id, MOD_A)

    stored = await stores.claims.get_claim(app.id)
    assert stored == claim
    assert await stores.claims.get_review_claim(app.id) == claim
    assert await guard.conflict_for(app.id, MOD_B) == claimed_message(MOD_A)
    assert await guard.conflict_for(app.id, MOD_A) is None

    assert await guard.release(app.id) is True
    assert await guard.get_claim(app.id) is None
    assert await guard.release(app.id) is False


async def test_acquire_overwrites_existing_claim(stores, app):
    await stores.claims.acquire_claim(app.id, MOD_A)
    await stores.claims.acquire_claim(app.id, MOD_B)
    assert (await stores.claims.get_claim(app.id)).reviewer_id == MOD_B
