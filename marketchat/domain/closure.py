import math
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Protocol

from marketchat.domain.enums import ClosedReason
from marketchat.domain.exceptions import InvalidClosurePolicy

DAY = timedelta(days=1)

CLOSED_NOTICE = "This chat has been closed."
CLOSED_SEND_NOTICE = "This chat is closed. You can no longer send messages."

_CLOSED_LEADS: dict[ClosedReason | None, str] = {
    ClosedReason.PRODUCT_UNAVAILABLE: "This chat was closed because this product is unavailable",
    ClosedReason.INACTIVE: "This chat was closed due to inactivity",
}
_DEFAULT_CLOSED_LEAD = "This chat is closed"


class ConversationSnapshot(Protocol):
    vendor_user_id: str
    customer_user_id: str
    admin_takeover_enabled: bool
    closed_at: datetime | None
    closed_reason: ClosedReason | None


@dataclass(frozen=True, slots=True)
class ClosurePolicy:
    participant_visibility_days: int = 7
    admin_retention_days: int = 14
    inactivity_close_days: int = 7

    def __post_init__(self) -> None:
        if self.participant_visibility_days < 1:
            raise InvalidClosurePolicy("Participant visibility must be at least one day.")
        if self.admin_retention_days <= self.participant_visibility_days:
            raise InvalidClosurePolicy(
                "Admin retention must be longer than participant visibility."
            )
        if self.inactivity_close_days < 1:
            raise InvalidClosurePolicy("Inactivity threshold must be at least one day.")

    @property
    def participant_visibility(self) -> timedelta:
        return self.participant_visibility_days * DAY

    @property
    def admin_retention(self) -> timedelta:
        return self.admin_retention_days * DAY

    @property
    def inactivity_threshold(self) -> timedelta:
        return self.inactivity_close_days * DAY


@dataclass(frozen=True, slots=True)
class ClosureState:
    is_closed: bool
    can_view: bool
    can_send: bool
    closed_at: datetime | None
    closed_reason: ClosedReason | None
    participant_visible_until: datetime | None
    admin_retention_until: datetime | None
    participant_notice: str


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class ConversationClosure:
    """Derives visibility and send permissions from a conversation's closure fields."""

    def __init__(self, policy: ClosurePolicy | None = None) -> None:
        self.policy = policy or ClosurePolicy()

    def evaluate(
        self,
        conversation: ConversationSnapshot,
        *,
        is_admin: bool,
        now: datetime,
        viewer_id: str | None = None,
    ) -> ClosureState:
        now = as_utc(now)
        blocked_by_takeover = (
            not is_admin
            and conversation.admin_takeover_enabled
            and viewer_id is not None
            and viewer_id == conversation.vendor_user_id
        )

        if conversation.closed_at is None:
            return ClosureState(
                is_closed=False,
                can_view=True,
                can_send=not blocked_by_takeover,
                closed_at=None,
                closed_reason=None,
                participant_visible_until=None,
                admin_retention_until=None,
                participant_notice="",
            )

        closed_at = as_utc(conversation.closed_at)
        visible_until = closed_at + self.policy.participant_visibility
        retention_until = closed_at + self.policy.admin_retention
        admin_can_view = now < retention_until
        participant_can_view = now < visible_until

        return ClosureState(
            is_closed=True,
            can_view=admin_can_view if is_admin else participant_can_view,
            can_send=admin_can_view if is_admin else False,
            closed_at=closed_at,
            closed_reason=conversation.closed_reason,
            participant_visible_until=visible_until,
            admin_retention_until=retention_until,
            participant_notice=self._participant_notice(
                conversation.closed_reason,
                visible_until,
                now,
            ),
        )

    def auto_close_reason(
        self,
        last_activity_at: datetime | None,
        *,
        product_unavailable: bool,
        now: datetime,
    ) -> ClosedReason | None:
        if product_unavailable:
            return ClosedReason.PRODUCT_UNAVAILABLE
        if last_activity_at is None:
            return None
        if as_utc(now) - as_utc(last_activity_at) >= self.policy.inactivity_threshold:
            return ClosedReason.INACTIVE
        return None

    def inactivity_cutoff(self, now: datetime) -> datetime:
        return as_utc(now) - self.policy.inactivity_threshold

    def retention_cutoff(self, now: datetime) -> datetime:
        return as_utc(now) - self.policy.admin_retention

    @staticmethod
    def _participant_notice(
        reason: ClosedReason | None,
        visible_until: datetime,
        now: datetime,
    ) -> str:
        if now >= visible_until:
            return CLOSED_NOTICE

        remaining_days = max(0, math.ceil((visible_until - now) / DAY))
        lead = _CLOSED_LEADS.get(reason, _DEFAULT_CLOSED_LEAD)
        suffix = "" if remaining_days == 1 else "s"
        return f"{lead} and will disappear in {remaining_days} day{suffix}."


def last_activity_at(
    *candidates: datetime | None,
) -> datetime | None:
    known = [as_utc(value) for value in candidates if value is not None]
    if not known:
        return None
    return max(known)
