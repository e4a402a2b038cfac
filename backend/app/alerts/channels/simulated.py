"""
simulated.py — Logging push channel for development and testing.

Every send is logged and reported as delivered with a synthetic message id.
No network calls are made.
"""

from __future__ import annotations

import logging
import uuid
from typing import Sequence

from backend.app.alerts.channels.base import PushChannel
from backend.app.alerts.models import BatchResult, PushPayload, SendResult

logger = logging.getLogger(__name__)


def _message_id() -> str:
    return f"sim-{uuid.uuid4().hex[:16]}"


class SimulatedPushChannel(PushChannel):
    name = "simulation"

    async def send_to_device(self, token: str, payload: PushPayload) -> SendResult:
        logger.info(
            "[PUSH] %s... ← %s", token[:20], payload.title,
            extra={"channel": "device"},
        )
        return SendResult(success=True, message_id=_message_id())

    async def send_to_devices(
        self, tokens: Sequence[str], payload: PushPayload,
    ) -> BatchResult:
        logger.info(
            "[PUSH] multicast to %d device(s) ← %s", len(tokens), payload.title,
            extra={"channel": "multicast"},
        )
        return BatchResult(success_count=len(tokens), batch_count=1)

    async def send_to_topic(self, topic: str, payload: PushPayload) -> SendResult:
        logger.info(
            "[PUSH] topic %s ← %s", topic, payload.title,
            extra={"channel": "topic"},
        )
        return SendResult(success=True, message_id=_message_id())

    async def subscribe_to_topic(self, tokens: Sequence[str], topic: str) -> BatchResult:
        logger.info("[PUSH] %d device(s) subscribed to %s", len(tokens), topic)
        return BatchResult(success_count=len(tokens), batch_count=1)

    async def unsubscribe_from_topic(self, tokens: Sequence[str], topic: str) -> BatchResult:
        logger.info("[PUSH] %d device(s) unsubscribed from %s", len(tokens), topic)
        return BatchResult(success_count=len(tokens), batch_count=1)
