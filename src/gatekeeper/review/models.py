from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Literal, Optional, Union


class ApplicationStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    NEEDS_INFO = "needs_info"
    APPROVED = "approved"
    REJECTED = "rejected"
    KICKED = "kicked"


TERMINAL_STATUSES = frozenset(
    {ApplicationStatus.APPROVED, ApplicationStatus.REJECTED, ApplicationStatus.KICKED}
)
PENDING_STATUSES = frozenset({ApplicationStatus.SUBMITTED, ApplicationStatus.NEEDS_INFO})


ReviewActionKind = Literal[
    "approve",
    "reject",
    "perm_reject",
    "kick",
    "need_info",
    "resubmit",
    "claim",
    "unclaim",
]


class DecisionKind(str, Enum):
    """Decisions that notify the applicant and close their support ticket."""

    APPROVE = "approve"
    REJECT = "reject"
    PERM_REJECT = "perm_reject"
    KICK = "kick"


@dataclass(frozen=True)
class Application:
    id: str
    guild_id: int
    user_id: int
    status: ApplicationStatus
    permanently_rejected: bool
    created_at: str
    submitted_at: Optional[str] = None
    updated_at: Optional[str] = None
    resolved_at: Optional[str] = None
    resolver_id: Optional[int] = None
    resolution_reason: Optional[str] = None
    permanent_reject_at: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_pending(self) -> bool:
        return self.status in PENDING_STATUSES


@dataclass(frozen=True)
class Claim:
    app_id: str
    reviewer_id: int
    claimed_at: str


@dataclass(frozen=True)
class ReviewAction:
    id: int
    app_id: str
    moderator_id: int
    action: str
    reason: Optional[str]
    meta: Optional[dict[str, Any]]
    created_at: int


# Transition results. Expected refusals are values, not exceptions.


@dataclass(frozen=True)
class Changed:
    kind: ClassVar[str] = "changed"
    review_action_id: int


@dataclass(frozen=True)
class Already:
    kind: ClassVar[str] = "already"
    status: ApplicationStatus


@dataclass(frozen=True)
class Terminal:
    kind: ClassVar[str] = "terminal"
    status: ApplicationStatus


@dataclass(frozen=True)
class Invalid:
    kind: ClassVar[str] = "invalid"
    status: ApplicationStatus


@dataclass(frozen=True)
class Conflict:
    kind: ClassVar[str] = "conflict"
    owner_id: int
    message: str


TxResult = Union[Changed, Already, Terminal, Invalid, Conflict]


NotificationFailure = Literal["timeout", "forbidden", "not_found", "http_error", "error"]


@dataclass(frozen=True)
class NotificationResult:
    delivered: bool
    failure: Optional[NotificationFailure] = None
    detail: Optional[str] = None

    def to_meta(self) -> dict[str, Any]:
        meta: dict[str, Any] = {"dm_delivered": self.delivered}
        if self.failure:
            meta["dm_error"] = self.failure
        return meta


@dataclass(frozen=True)
class DecisionContext:
    kind: DecisionKind
    guild_name: str
    reason: Optional[str] = None


WelcomeFailureReason = Literal[
    "missing_channel",
    "invalid_channel",
    "missing_permissions",
    "fetch_failed",
    "send_failed",
    "role_not_applied",
]


@dataclass(frozen=True)
class WelcomeResult:
    ok: bool
    message_id: Optional[int] = None
    reason: Optional[WelcomeFailureReason] = None
    error: Optional[BaseException] = None
    fallback_used: bool = False


@dataclass(frozen=True)
class RoleGrantResult:
    applied: bool
    error: Optional[str] = None
    missing_permissions: bool = False


OutcomeStatus = Literal[
    "changed",
    "already",
    "terminal",
    "invalid",
    "conflict",
    "not_found",
    "reason_required",
]


@dataclass
class DecisionOutcome:
    """What the moderator is told after issuing a review command."""

    status: OutcomeStatus
    message: str
    review_action_id: Optional[int] = None
    dm_delivered: Optional[bool] = None
    welcome_delivered: Optional[bool] = None
    role_applied: Optional[bool] = None
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == "changed"

    def render(self) -> str:
        return "\n".join([self.message, *self.warnings])


class ReviewError(Exception):
    """Base error for review persistence problems."""


class ApplicationNotFound(ReviewError):
    def __init__(self, app_id: str) -> None:
        super().__init__(f"Application not found: {app_id}")
        self.app_id = app_id


class ApplicationBlocked(ReviewError):
    """Raised when a permanently rejected user tries to submit again."""

    def __init__(self, guild_id: int, user_id: int) -> None:
        super().__init__(f"User {user_id} is permanently rejected in guild {guild_id}")
        self.guild_id = guild_id
        self.user_id = user_id
