from __future__ import annotations

from typing import Optional

from ..services.claim_store import ClaimStore
from .models import Claim


def claimed_message(owner_id: int) -> str:
    # <@id> renders as a mention in Discord
    return f"This application is claimed by <@{owner_id}>. Ask them to finish or unclaim it."


def check_claim(claim: Optional[Claim], actor_id: int) -> Optional[str]:
    """Return a conflict message if someone other than ``actor_id`` holds the claim."""
    if claim is not None and claim.reviewer_id != int(actor_id):
        return claimed_message(claim.reviewer_id)
    return None


class ClaimGuard:
    """Read-side claim checks used before every decision."""

    def __init__(self, store: ClaimStore) -> None:
        self._store = store

    async def get_claim(self, app_id: str) -> Optional[Claim]:
        return await self._store.get_claim(app_id)

    async def conflict_for(self, app_id: str, actor_id: int) -> Optional[str]:
        return check_claim(await self._store.get_claim(app_id), actor_id)

    async def acquire(self, app_id: str, actor_id: int) -> Claim:
        return await self._store.acquire_claim(app_id, actor_id)

    async def release(self, app_id: str) -> bool:
        return await self._store.release_claim(app_id)
