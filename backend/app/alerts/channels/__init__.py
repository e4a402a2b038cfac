"""
channels — Push provider backends.

Each channel implements PushChannel:
    send_to_device / send_to_devices / send_to_topic

``build_push_channel`` picks one from settings at startup.  Batching and
error classification live in the alert dispatcher.
"""

from __future__ import annotations

import logging

from backend.app.alerts.channels.base import DisabledPushChannel, PushChannel
from backend.app.alerts.channels.simulated import SimulatedPushChannel

logger = logging.getLogger(__name__)

__all__ = [
    "PushChannel",
    "DisabledPushChannel",
    "SimulatedPushChannel",
    "build_push_channel",
]


def build_push_channel(settings) -> PushChannel:
    """
    Build the configured push channel.

    ``fcm`` falls back to a disabled channel when Firebase is not
    configured or fails to initialise, so startup never aborts on push.
    """
    provider = (settings.PUSH_PROVIDER or "").lower()

    if provider == "simulation":
        logger.info("Push channel: simulation")
        return SimulatedPushChannel()

    if provider == "fcm":
        try:
            from backend.app.alerts.channels.fcm import FCMPushChannel

            channel = FCMPushChannel.from_settings(settings)
        except Exception as exc:
            logger.error("Failed to initialise Firebase: %s", exc)
            return DisabledPushChannel(f"firebase init failed: {exc}")
        if channel is None:
            logger.warning("Firebase not configured — push notifications disabled")
            return DisabledPushChannel("firebase not configured")
        return channel

    logger.info("Push channel: disabled (PUSH_PROVIDER=%s)", provider)
    return DisabledPushChannel()
