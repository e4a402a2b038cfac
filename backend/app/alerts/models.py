"""
models.py — Shared data structures for alert dispatch.

Defines:
    • DeliveryState    — per-dispatch delivery state machine
    • PushErrorKind    — classification of push provider failures
    • AlertChannel     — device / multicast / topic targeting
    • NotificationType — in-app notification categories
    • PushPayload      — the message handed to a push provider
    • SendResult       — outcome of one device or topic send
    • BatchResult      — aggregated multicast outcome
    • NotificationRecord — in-app notification persisted per dispatch
    • AlertEvent       — one dispatch attempt and its final state

═══════════════════════════════════════════════════════════════════════════
DELIVERY STATE MACHINE
═══════════════════════════════════════════════════════════════════════════

    CREATED ──► DISPATCHING ──► DELIVERED
       │             ├────────► FAILED
       │             └────────► SKIPPED
       └──────────────────────► SKIPPED   (no device token / cooldown)

DELIVERED, FAILED and SKIPPED are terminal.  Any other move raises
ValidationError.

═══════════════════════════════════════════════════════════════════════════
PUSH ERROR CLASSIFICATION
═══════════════════════════════════════════════════════════════════════════

    Kind                 Meaning                          Caller action
    ──────────────────   ──────────────────────────────   ─────────────────
    invalid_token        token unregistered / mismatched   prune the token
    transient            any other provider failure        log, no retry
    channel_unavailable  provider not configured           no-op failure
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from backend.app.core.errors import ValidationError


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class DeliveryState(str, Enum):
    """Delivery state of one dispatch attempt."""
    CREATED     = "created"
    DISPATCHING = "dispatching"
    DELIVERED   = "delivered"
    FAILED      = "failed"
    SKIPPED     = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES: FrozenSet[DeliveryState] = frozenset({
    DeliveryState.DELIVERED,
    DeliveryState.FAILED,
    DeliveryState.SKIPPED,
})

_ALLOWED_TRANSITIONS: Dict[DeliveryState, FrozenSet[DeliveryState]] = {
    DeliveryState.CREATED: frozenset({
        DeliveryState.DISPATCHING,
        DeliveryState.SKIPPED,
    }),
    DeliveryState.DISPATCHING: _TERMINAL_STATES,
}


class PushErrorKind(str, Enum):
    INVALID_TOKEN       = "invalid_token"
    TRANSIENT           = "transient"
    CHANNEL_UNAVAILABLE = "channel_unavailable"

    @classmethod
    def from_code(cls, code: Optional[str]) -> "PushErrorKind":
        """Map a provider error code onto a kind; unknown codes are transient."""
        try:
            return cls(code)
        except ValueError:
            return cls.TRANSIENT


class AlertChannel(str, Enum):
    """Push targeting mode."""
    DEVICE    = "device"       # one registration token
    MULTICAST = "multicast"    # many tokens, batched
    TOPIC     = "topic"        # provider-side topic fan-out


class NotificationType(str, Enum):
    EPIDEMIC_ALERT = "epidemic_alert"
    ZONE_ENTRY     = "zone_entry"
    REPORT_UPDATE  = "report_update"
    ZONE_UPDATE    = "zone_update"
    NEW_POST       = "new_post"
    SYSTEM         = "system"


# ═══════════════════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════════════════

def _generate_id() -> str:
    return f"NTF-{uuid.uuid4().hex[:12].upper()}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PushPayload:
    """
    Message handed to a push provider.

    Push providers only accept string data values, so ``data`` is coerced
    to ``Dict[str, str]`` on construction and ``None`` values are dropped.
    """
    title: str
    body: str
    data: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.data = {
            str(k): str(v) for k, v in (self.data or {}).items() if v is not None
        }

    def to_dict(self) -> Dict[str, Any]:
        return {"title": self.title, "body": self.body, "data": dict(self.data)}


@dataclass
class SendResult:
    """Outcome of a single device or topic send."""
    success: bool
    message_id: Optional[str] = None
    error_kind: Optional[PushErrorKind] = None
    error_message: Optional[str] = None


@dataclass
class BatchResult:
    """Aggregated outcome of a multicast broadcast."""
    success_count: int = 0
    failure_count: int = 0
    invalid_tokens: List[str] = field(default_factory=list)
    batch_count: int = 0

    @property
    def total(self) -> int:
        return self.success_count + self.failure_count

    def merge(self, other: "BatchResult") -> None:
        self.success_count += other.success_count
        self.failure_count += other.failure_count
        self.invalid_tokens.extend(other.invalid_tokens)
        self.batch_count += other.batch_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "successCount": self.success_count,
            "failureCount": self.failure_count,
            "invalidTokens": list(self.invalid_tokens),
            "batchCount": self.batch_count,
        }


@dataclass
class NotificationRecord:
    """In-app notification written for every dispatch attempt."""
    title: str
    body: str
    type: NotificationType = NotificationType.SYSTEM
    data: Dict[str, Any] = field(default_factory=dict)
    user_id: Optional[str] = None
    is_broadcast: bool = False
    is_read: bool = False
    id: str = field(default_factory=_generate_id)
    created_at: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "body": self.body,
            "type": self.type.value,
            "data": self.data,
            "userId": self.user_id,
            "isBroadcast": self.is_broadcast,
            "isRead": self.is_read,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass
class AlertEvent:
    """
    One dispatch attempt.

    Attributes
    ----------
    dedup_key : str
        ``"<user_id>:<zone_id>"`` for zone entries, ``"report:<id>:<status>"``
        for report updates, ``"topic:<name>"`` for topic sends.
    prune_token : str | None
        Set when the provider reported the device token as invalid; the
        caller is expected to remove it.
    skip_reason : str | None
        ``"no_device_token"`` or ``"cooldown"`` when the event was skipped.
    """
    user_id: Optional[str]
    zone_id: Optional[str]
    channel: AlertChannel
    payload: PushPayload
    dedup_key: str
    timestamp: datetime = field(default_factory=_now)
    state: DeliveryState = DeliveryState.CREATED
    message_id: Optional[str] = None
    error_kind: Optional[PushErrorKind] = None
    error_message: Optional[str] = None
    prune_token: Optional[str] = None
    skip_reason: Optional[str] = None
    notification: Optional[NotificationRecord] = None

    def transition(self, new_state: DeliveryState) -> None:
        allowed = _ALLOWED_TRANSITIONS.get(self.state, frozenset())
        if new_state not in allowed:
            raise ValidationError(
                f"Illegal delivery transition {self.state.value} → {new_state.value}",
                field="state",
            )
        self.state = new_state

    def skip(self, reason: str) -> None:
        self.transition(DeliveryState.SKIPPED)
        self.skip_reason = reason

    def apply(self, result: SendResult) -> None:
        """Move a DISPATCHING event to its terminal state from a send result."""
        if result.success:
            self.transition(DeliveryState.DELIVERED)
            self.message_id = result.message_id
        else:
            self.transition(DeliveryState.FAILED)
            self.error_kind = result.error_kind or PushErrorKind.TRANSIENT
            self.error_message = result.error_message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "zoneId": self.zone_id,
            "channel": self.channel.value,
            "payload": self.payload.to_dict(),
            "dedupKey": self.dedup_key,
            "timestamp": self.timestamp.isoformat(),
            "deliveryState": self.state.value,
            "messageId": self.message_id,
            "errorKind": self.error_kind.value if self.error_kind else None,
            "skipReason": self.skip_reason,
            "notificationId": self.notification.id if self.notification else None,
        }
