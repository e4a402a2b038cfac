"""
fcm.py — Firebase Cloud Messaging push channel.

Credentials are resolved in this order:
    1. FIREBASE_CREDENTIALS_FILE (service-account JSON)
    2. FIREBASE_PROJECT_ID + FIREBASE_CLIENT_EMAIL + FIREBASE_PRIVATE_KEY

``firebase_admin`` is imported lazily so the package is only needed when
``PUSH_PROVIDER=fcm``.  Its messaging calls are blocking and run in a
worker thread.

Provider errors map onto PushErrorKind:

    UnregisteredError, SenderIdMismatchError   → invalid_token
    anything else                              → transient

Topic management reports per-token errors by reason string; unregistered or
malformed tokens are returned as invalid so the caller can prune them.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any, Dict, Optional, Sequence

from backend.app.alerts.channels.base import PushChannel
from backend.app.alerts.models import BatchResult, PushErrorKind, PushPayload, SendResult
from backend.app.core.errors import PushChannelError

logger = logging.getLogger(__name__)

ANDROID_CHANNEL_ID = "safezone_alerts"
FCM_APP_NAME = "safezone"
TOKEN_URI = "https://oauth2.googleapis.com/token"
_INVALID_TOPIC_REASONS = frozenset({"registration-token-not-registered", "invalid-argument"})


def _load_service_account(
    credentials_file: Optional[str],
    project_id: Optional[str],
    client_email: Optional[str],
    private_key: Optional[str],
) -> Optional[Dict[str, Any]]:
    """Service-account info from file or env values; None if neither is set."""
    if credentials_file and os.path.exists(credentials_file):
        with open(credentials_file, "r", encoding="utf-8") as f:
            info = json.load(f)
    elif project_id and client_email and private_key:
        info = {
            "type": "service_account",
            "project_id": project_id,
            "client_email": client_email,
            "private_key": private_key,
            "token_uri": TOKEN_URI,
        }
    else:
        return None

    # Keys pasted into env vars carry literal "\n"
    if info.get("private_key"):
        info["private_key"] = info["private_key"].replace("\\n", "\n")
    return info


class FCMPushChannel(PushChannel):
    name = "fcm"

    def __init__(self, app: Any):
        from firebase_admin import messaging

        self._app = app
        self._messaging = messaging

    @classmethod
    def from_settings(cls, settings) -> Optional["FCMPushChannel"]:
        """Initialise Firebase from settings; None when not configured."""
        info = _load_service_account(
            settings.FIREBASE_CREDENTIALS_FILE,
            settings.FIREBASE_PROJECT_ID,
            settings.FIREBASE_CLIENT_EMAIL,
            settings.FIREBASE_PRIVATE_KEY,
        )
        if info is None:
            return None

        import firebase_admin
        from firebase_admin import credentials

        try:
            app = firebase_admin.get_app(FCM_APP_NAME)
        except ValueError:
            app = firebase_admin.initialize_app(
                credentials.Certificate(info), name=FCM_APP_NAME,
            )
        logger.info("Firebase Admin initialised for project %s", info.get("project_id"))
        return cls(app)

    # ── Message builders ──

    def _notification(self, payload: PushPayload):
        return self._messaging.Notification(title=payload.title, body=payload.body)

    def _android(self):
        m = self._messaging
        return m.AndroidConfig(
            priority="high",
            notification=m.AndroidNotification(
                channel_id=ANDROID_CHANNEL_ID,
                priority="high",
                default_sound=True,
                default_vibrate_timings=True,
            ),
        )

    def _apns(self):
        m = self._messaging
        return m.APNSConfig(
            payload=m.APNSPayload(aps=m.Aps(sound="default", badge=1)),
        )

    def _classify(self, exc: Exception) -> PushErrorKind:
        m = self._messaging
        if isinstance(exc, (m.UnregisteredError, m.SenderIdMismatchError)):
            return PushErrorKind.INVALID_TOKEN
        return PushErrorKind.TRANSIENT

    async def _send(self, message) -> SendResult:
        try:
            message_id = await asyncio.to_thread(
                self._messaging.send, message, app=self._app,
            )
        except Exception as exc:
            raise PushChannelError(str(exc), code=self._classify(exc).value) from exc
        return SendResult(success=True, message_id=message_id)

    # ── PushChannel ──

    async def send_to_device(self, token: str, payload: PushPayload) -> SendResult:
        message = self._messaging.Message(
            token=token,
            notification=self._notification(payload),
            data=payload.data,
            android=self._android(),
            apns=self._apns(),
        )
        return await self._send(message)

    async def send_to_devices(
        self, tokens: Sequence[str], payload: PushPayload,
    ) -> BatchResult:
        message = self._messaging.MulticastMessage(
            tokens=list(tokens),
            notification=self._notification(payload),
            data=payload.data,
            android=self._android(),
            apns=self._apns(),
        )
        try:
            response = await asyncio.to_thread(
                self._messaging.send_each_for_multicast, message, app=self._app,
            )
        except Exception as exc:
            raise PushChannelError(str(exc), code=self._classify(exc).value) from exc

        invalid = [
            token
            for token, resp in zip(tokens, response.responses)
            if not resp.success
            and resp.exception is not None
            and self._classify(resp.exception) is PushErrorKind.INVALID_TOKEN
        ]
        return BatchResult(
            success_count=response.success_count,
            failure_count=response.failure_count,
            invalid_tokens=invalid,
            batch_count=1,
        )

    async def send_to_topic(self, topic: str, payload: PushPayload) -> SendResult:
        message = self._messaging.Message(
            topic=topic,
            notification=self._notification(payload),
            data=payload.data,
            android=self._android(),
            apns=self._apns(),
        )
        return await self._send(message)

    async def _manage_topic(self, call, tokens: Sequence[str], topic: str) -> BatchResult:
        tokens = list(tokens)
        try:
            response = await asyncio.to_thread(call, tokens, topic, app=self._app)
        except Exception as exc:
            raise PushChannelError(str(exc), code=self._classify(exc).value) from exc
        invalid = [
            tokens[err.index] for err in response.errors
            if err.reason in _INVALID_TOPIC_REASONS
        ]
        return BatchResult(
            success_count=response.success_count,
            failure_count=response.failure_count,
            invalid_tokens=invalid,
            batch_count=1,
        )

    async def subscribe_to_topic(self, tokens: Sequence[str], topic: str) -> BatchResult:
        return await self._manage_topic(self._messaging.subscribe_to_topic, tokens, topic)

    async def unsubscribe_from_topic(self, tokens: Sequence[str], topic: str) -> BatchResult:
        return await self._manage_topic(self._messaging.unsubscribe_from_topic, tokens, topic)

    async def close(self) -> None:
        import firebase_admin

        firebase_admin.delete_app(self._app)
