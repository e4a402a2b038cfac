"""
alert_dispatcher.py — Push fan-out for zone entries and broadcasts.

The dispatcher owns three delivery paths:

    1. Device        one user, one device token (zone entry, report update)
    2. Multicast     many tokens, chunked into provider batches
    3. Topic         one provider call fanned out server-side ("all")

═══════════════════════════════════════════════════════════════════════════
ZONE ENTRY FLOW
═══════════════════════════════════════════════════════════════════════════

    zones[0] ──► localised payload ──► cooldown? ──yes──► SKIPPED (no record)
                                           │ no
                                           ▼
                                      device token? ──no──► SKIPPED
                                           │ yes                 │
                                           ▼                     │
                                      DISPATCHING                │
                                           │                     │
                              ┌────────────┴──────────┐          │
                              ▼                       ▼          │
                          DELIVERED                FAILED        │
                              │         (invalid_token → prune)  │
                              └───────────┬───────────┘          │
                                          ▼                      │
                               notification record ◄─────────────┘

The in-app record is written even when the push could not be sent, so the
user still sees the alert on the next app open.

═══════════════════════════════════════════════════════════════════════════
BATCHING
═══════════════════════════════════════════════════════════════════════════

Tokens are chunked into batches of ``batch_size`` (≤ 500, the provider
limit).  Batches run concurrently under a semaphore of ``max_concurrency``
and are isolated from each other: a batch that raises counts every one of
its tokens as failed and the others carry on.

    1 200 tokens, batch 500  →  [500, 500, 200]  →  3 batches

No retries are made; push is best effort and the in-app record is the
durable copy.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import List, Optional, Sequence

from backend.app.alerts.channels.base import PushChannel
from backend.app.alerts.models import (
    AlertChannel,
    AlertEvent,
    BatchResult,
    DeliveryState,
    NotificationRecord,
    NotificationType,
    PushErrorKind,
    PushPayload,
    SendResult,
)
from backend.app.alerts.templates import (
    epidemic_broadcast_payload,
    new_post_payload,
    report_update_payload,
    system_announcement_payload,
    zone_entry_payload,
)
from backend.app.core.cache import acquire_once
from backend.app.core.config import PROVIDER_MAX_BATCH_SIZE
from backend.app.core.errors import PushChannelError, ValidationError
from backend.app.store.base import PointStore
from backend.app.zones.models import Zone

logger = logging.getLogger(__name__)

DEFAULT_BROADCAST_TOPIC = "all"


def chunk(items: Sequence[str], size: int) -> List[List[str]]:
    """
    Split ``items`` into consecutive chunks of at most ``size``.

    >>> [len(c) for c in chunk(["t"] * 1200, 500)]
    [500, 500, 200]
    """
    if size <= 0:
        raise ValidationError("batch size must be positive", field="batch_size")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


class AlertDispatcher:
    """
    Delivers alerts through an injected push channel and records an in-app
    notification for every attempt.

    Parameters
    ----------
    push : PushChannel
        Provider built once at startup.
    store : PointStore
        Source of device tokens and sink for notification records.
    batch_size : int
        Tokens per multicast batch, clamped to the provider limit.
    max_concurrency : int
        Batches in flight at once.
    language : str
        Template language (``vi`` or ``en``).
    cooldown_seconds : int
        Minimum gap between zone-entry pushes for the same (user, zone).
        0 disables the cooldown.
    """

    def __init__(
        self,
        push: PushChannel,
        store: PointStore,
        *,
        batch_size: int = PROVIDER_MAX_BATCH_SIZE,
        max_concurrency: int = 4,
        language: str = "vi",
        broadcast_topic: str = DEFAULT_BROADCAST_TOPIC,
        cooldown_seconds: int = 0,
    ):
        self.push = push
        self.store = store
        self.batch_size = max(1, min(batch_size, PROVIDER_MAX_BATCH_SIZE))
        self.max_concurrency = max(1, max_concurrency)
        self.language = language
        self._broadcast_topic = broadcast_topic
        self.cooldown_seconds = cooldown_seconds

    # ── Provider calls, errors classified ──

    async def _send_to_device(self, token: str, payload: PushPayload) -> SendResult:
        try:
            return await self.push.send_to_device(token, payload)
        except PushChannelError as exc:
            kind = PushErrorKind.from_code(exc.code)
            logger.warning(
                "Push to device failed [%s]: %s", kind.value, exc.message,
                extra={"channel": AlertChannel.DEVICE.value},
            )
            return SendResult(success=False, error_kind=kind, error_message=exc.message)
        except Exception as exc:
            logger.error(
                "Push to device raised: %s", exc,
                extra={"channel": AlertChannel.DEVICE.value},
            )
            return SendResult(
                success=False,
                error_kind=PushErrorKind.TRANSIENT,
                error_message=str(exc),
            )

    async def _send_to_topic(self, topic: str, payload: PushPayload) -> SendResult:
        try:
            return await self.push.send_to_topic(topic, payload)
        except PushChannelError as exc:
            kind = PushErrorKind.from_code(exc.code)
            logger.warning(
                "Push to topic %s failed [%s]: %s", topic, kind.value, exc.message,
                extra={"channel": AlertChannel.TOPIC.value},
            )
            return SendResult(success=False, error_kind=kind, error_message=exc.message)
        except Exception as exc:
            logger.error(
                "Push to topic %s raised: %s", topic, exc,
                extra={"channel": AlertChannel.TOPIC.value},
            )
            return SendResult(
                success=False,
                error_kind=PushErrorKind.TRANSIENT,
                error_message=str(exc),
            )

    async def _send_batch(
        self,
        batch: List[str],
        payload: PushPayload,
        semaphore: asyncio.Semaphore,
    ) -> BatchResult:
        async with semaphore:
            try:
                result = await self.push.send_to_devices(batch, payload)
            except Exception as exc:
                logger.error(
                    "Batch of %d token(s) failed: %s", len(batch), exc,
                    extra={"channel": AlertChannel.MULTICAST.value},
                )
                return BatchResult(failure_count=len(batch), batch_count=1)
        result.batch_count = 1
        return result

    # ── Zone entry ──

    async def _cooldown_active(self, user_id: str, zone_id: str) -> bool:
        if self.cooldown_seconds <= 0:
            return False
        key = f"alert:cooldown:{user_id}:{zone_id}"
        return not await acquire_once(key, self.cooldown_seconds)

    async def _deliver_to_user(
        self,
        event: AlertEvent,
        notification_type: NotificationType,
    ) -> AlertEvent:
        """Device push for ``event.user_id`` followed by its in-app record."""
        user_id = event.user_id
        payload = event.payload
        log_extra = {"user_id": user_id, "zone_id": event.zone_id}

        token = await self.store.get_device_token(user_id)
        if not token:
            event.skip("no_device_token")
            logger.warning(
                "User %s has no device token, %s push skipped", user_id, notification_type.value,
                extra=log_extra,
            )
        else:
            event.transition(DeliveryState.DISPATCHING)
            event.apply(await self._send_to_device(token, payload))
            if event.error_kind is PushErrorKind.INVALID_TOKEN:
                event.prune_token = token

        event.notification = await self.store.record_notification(
            NotificationRecord(
                title=payload.title,
                body=payload.body,
                type=notification_type,
                data=dict(payload.data),
                user_id=user_id,
            )
        )
        return event

    async def dispatch_zone_entry(self, user_id: str, zones: Sequence[Zone]) -> AlertEvent:
        """
        Alert ``user_id`` about the most dangerous of ``zones``.

        ``zones`` must already be ordered most dangerous first (as returned
        by ``find_containing``).  Push failures never raise; they are
        reported on the returned event.
        """
        if not zones:
            raise ValidationError("zone entry requires at least one zone", field="zones")

        zone = zones[0]
        payload = zone_entry_payload(zone, self.language)
        event = AlertEvent(
            user_id=user_id,
            zone_id=zone.id,
            channel=AlertChannel.DEVICE,
            payload=payload,
            dedup_key=f"{user_id}:{zone.id}",
        )
        log_extra = {"user_id": user_id, "zone_id": zone.id}

        if await self._cooldown_active(user_id, zone.id):
            event.skip("cooldown")
            logger.info("Zone entry alert suppressed by cooldown", extra=log_extra)
            return event

        await self._deliver_to_user(event, NotificationType.ZONE_ENTRY)
        logger.info(
            "Zone entry alert %s → %s", zone.name, event.state.value,
            extra={**log_extra, "delivery_state": event.state.value},
        )
        return event

    async def notify_report_update(self, user_id: str, report_id: str, status: str) -> AlertEvent:
        """Tell the reporter their report was verified or rejected."""
        payload = report_update_payload(report_id, status, self.language)
        event = AlertEvent(
            user_id=user_id,
            zone_id=None,
            channel=AlertChannel.DEVICE,
            payload=payload,
            dedup_key=f"report:{report_id}:{status}",
        )
        await self._deliver_to_user(event, NotificationType.REPORT_UPDATE)
        logger.info(
            "Report %s update (%s) → %s", report_id, status, event.state.value,
            extra={"user_id": user_id, "delivery_state": event.state.value},
        )
        return event

    # ── Broadcasts ──

    async def broadcast(
        self,
        payload: PushPayload,
        tokens: Sequence[str],
        *,
        notification_type: NotificationType = NotificationType.SYSTEM,
    ) -> BatchResult:
        """
        Multicast ``payload`` to ``tokens`` in concurrent, isolated batches.

        ``success_count + failure_count`` always equals ``len(tokens)``.
        """
        start = time.perf_counter()
        batches = chunk(list(tokens), self.batch_size)
        semaphore = asyncio.Semaphore(self.max_concurrency)

        outcomes = await asyncio.gather(
            *(self._send_batch(b, payload, semaphore) for b in batches)
        )
        result = BatchResult()
        for outcome in outcomes:
            result.merge(outcome)

        await self.store.record_notification(
            NotificationRecord(
                title=payload.title,
                body=payload.body,
                type=notification_type,
                data=dict(payload.data),
                is_broadcast=True,
            )
        )
        duration_ms = round((time.perf_counter() - start) * 1000, 1)
        logger.info(
            "Push batch result: %d success, %d failed, %d invalid token(s)",
            result.success_count, result.failure_count, len(result.invalid_tokens),
            extra={
                "channel": AlertChannel.MULTICAST.value,
                "batch_count": result.batch_count,
                "duration_ms": duration_ms,
            },
        )
        return result

    async def broadcast_topic(
        self,
        payload: PushPayload,
        *,
        topic: Optional[str] = None,
        notification_type: NotificationType = NotificationType.SYSTEM,
        zone_id: Optional[str] = None,
    ) -> AlertEvent:
        """Single provider call targeting ``topic`` (default broadcast topic)."""
        topic = topic or self._broadcast_topic
        event = AlertEvent(
            user_id=None,
            zone_id=zone_id,
            channel=AlertChannel.TOPIC,
            payload=payload,
            dedup_key=f"topic:{topic}",
        )
        event.transition(DeliveryState.DISPATCHING)
        event.apply(await self._send_to_topic(topic, payload))

        event.notification = await self.store.record_notification(
            NotificationRecord(
                title=payload.title,
                body=payload.body,
                type=notification_type,
                data=dict(payload.data),
                is_broadcast=True,
            )
        )
        logger.info(
            "Topic %s push → %s", topic, event.state.value,
            extra={"channel": AlertChannel.TOPIC.value, "zone_id": zone_id},
        )
        return event

    async def announce_system(
        self,
        title: str,
        body: str,
        data: Optional[dict] = None,
    ) -> AlertEvent:
        return await self.broadcast_topic(
            system_announcement_payload(title, body, data),
            notification_type=NotificationType.SYSTEM,
        )

    async def broadcast_epidemic(self, zone: Zone) -> AlertEvent:
        return await self.broadcast_topic(
            epidemic_broadcast_payload(zone, self.language),
            notification_type=NotificationType.EPIDEMIC_ALERT,
            zone_id=zone.id,
        )

    async def announce_new_post(
        self,
        post_id: str,
        title: str,
        author_name: str,
        author_id: str,
    ) -> BatchResult:
        """Multicast a new community post to every registered device except the author's."""
        tokens = await self.store.list_device_tokens()
        recipients = [token for user, token in tokens.items() if user != author_id and token]
        payload = new_post_payload(post_id, title, author_name, author_id, self.language)
        return await self.broadcast(payload, recipients, notification_type=NotificationType.NEW_POST)

    # ── Topic membership ──

    async def _manage_topic(
        self,
        action: str,
        tokens: Sequence[str],
        topic: Optional[str],
    ) -> BatchResult:
        topic = topic or self._broadcast_topic
        call = getattr(self.push, f"{action}_topic")
        result = BatchResult()
        for batch in chunk(list(tokens), self.batch_size):
            try:
                outcome = await call(batch, topic)
            except PushChannelError as exc:
                logger.warning(
                    "Topic %s %s failed for %d token(s) [%s]: %s",
                    topic, action, len(batch), exc.code, exc.message,
                    extra={"channel": AlertChannel.TOPIC.value},
                )
                outcome = BatchResult(failure_count=len(batch))
            except Exception as exc:
                logger.error(
                    "Topic %s %s raised: %s", topic, action, exc,
                    extra={"channel": AlertChannel.TOPIC.value},
                )
                outcome = BatchResult(failure_count=len(batch))
            outcome.batch_count = 1
            result.merge(outcome)
        logger.info(
            "Topic %s %s: %d success, %d failed", topic, action,
            result.success_count, result.failure_count,
            extra={"channel": AlertChannel.TOPIC.value, "batch_count": result.batch_count},
        )
        return result

    async def subscribe_to_topic(self, tokens: Sequence[str], topic: Optional[str] = None) -> BatchResult:
        return await self._manage_topic("subscribe_to", tokens, topic)

    async def unsubscribe_from_topic(self, tokens: Sequence[str], topic: Optional[str] = None) -> BatchResult:
        return await self._manage_topic("unsubscribe_from", tokens, topic)
