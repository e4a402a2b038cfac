"""
base.py — Push channel interface.

A push channel is built once at startup and injected into the
AlertDispatcher.  Implementations raise ``PushChannelError`` on failure;
the dispatcher turns every error into a classified result.

    send_to_device(token, payload)    → SendResult
    send_to_devices(tokens, payload)  → BatchResult   (one provider batch)
    send_to_topic(topic, payload)     → SendResult

    subscribe_to_topic(tokens, topic)      → BatchResult
    unsubscribe_from_topic(tokens, topic)  → BatchResult

Topic management is optional; the base implementation reports the channel
as unavailable for it.
"""

from __future__ import annotations

import abc
import logging
from typing import Sequence

from backend.app.alerts.models import BatchResult, PushErrorKind, PushPayload, SendResult
from backend.app.core.errors import PushChannelError

logger = logging.getLogger(__name__)


class PushChannel(abc.ABC):
    """Abstract push provider."""

    name: str = "push"

    @property
    def available(self) -> bool:
        return True

    @abc.abstractmethod
    async def send_to_device(self, token: str, payload: PushPayload) -> SendResult:
        ...

    @abc.abstractmethod
    async def send_to_devices(
        self, tokens: Sequence[str], payload: PushPayload,
    ) -> BatchResult:
        """Send one batch; the dispatcher keeps batches within the provider limit."""

    @abc.abstractmethod
    async def send_to_topic(self, topic: str, payload: PushPayload) -> SendResult:
        ...

    async def subscribe_to_topic(self, tokens: Sequence[str], topic: str) -> BatchResult:
        raise PushChannelError(
            f"{self.name} does not manage topics",
            code=PushErrorKind.CHANNEL_UNAVAILABLE.value,
        )

    async def unsubscribe_from_topic(self, tokens: Sequence[str], topic: str) -> BatchResult:
        raise PushChannelError(
            f"{self.name} does not manage topics",
            code=PushErrorKind.CHANNEL_UNAVAILABLE.value,
        )

    async def close(self) -> None:
        """Release provider resources; no-op by default."""


class DisabledPushChannel(PushChannel):
    """Stand-in used when no provider is configured; every call fails."""

    name = "disabled"

    def __init__(self, reason: str = "push provider not configured"):
        self.reason = reason

    @property
    def available(self) -> bool:
        return False

    def _unavailable(self) -> PushChannelError:
        return PushChannelError(self.reason, code=PushErrorKind.CHANNEL_UNAVAILABLE.value)

    async def send_to_device(self, token: str, payload: PushPayload) -> SendResult:
        logger.warning("[PUSH] Disabled, not sent: %s", payload.title)
        raise self._unavailable()

    async def send_to_devices(
        self, tokens: Sequence[str], payload: PushPayload,
    ) -> BatchResult:
        raise self._unavailable()

    async def send_to_topic(self, topic: str, payload: PushPayload) -> SendResult:
        logger.warning("[PUSH] Disabled, topic %s not sent: %s", topic, payload.title)
        raise self._unavailable()
