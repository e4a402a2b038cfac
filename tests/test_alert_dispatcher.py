"""
test_alert_dispatcher.py — Tests for zone-entry alerts and push fan-out.

Covers:
    • Delivery state machine (legal / illegal transitions)
    • Zone entry (delivered, no token, invalid token, transient, unavailable)
    • Multicast batching (chunk sizes, failure isolation, invalid tokens)
    • Bounded batch concurrency
    • Topic broadcasts (system announcement, epidemic broadcast)
    • Topic membership, report updates and new-post announcements
    • Optional cooldown
    • Push channel factory and localised templates

Run with:
    pytest tests/test_alert_dispatcher.py -v
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import List, Sequence
from unittest.mock import AsyncMock, patch

import pytest

from backend.app.alerts.alert_dispatcher import AlertDispatcher, chunk
from backend.app.alerts.channels import (
    DisabledPushChannel,
    PushChannel,
    SimulatedPushChannel,
    build_push_channel,
)
from backend.app.alerts.models import (
    AlertChannel,
    AlertEvent,
    BatchResult,
    DeliveryState,
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
from backend.app.core.errors import PushChannelError, ValidationError
from backend.app.gis.risk import RiskLevel
from backend.app.store.memory import InMemoryStore
from backend.app.zones.models import Zone


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

class FakePushChannel(PushChannel):
    """Records calls; behaviour is configured per test."""

    name = "fake"

    def __init__(
        self,
        device_error: Exception = None,
        topic_error: Exception = None,
        failing_batches: Sequence[int] = (),
        invalid_tokens: Sequence[str] = (),
    ):
        self.device_error = device_error
        self.topic_error = topic_error
        self.failing_batches = set(failing_batches)
        self.invalid_tokens = set(invalid_tokens)
        self.device_calls: List[str] = []
        self.batch_sizes: List[int] = []
        self.topic_calls: List[str] = []
        self.memberships: List[tuple] = []

    async def send_to_device(self, token, payload):
        self.device_calls.append(token)
        if self.device_error:
            raise self.device_error
        return SendResult(success=True, message_id="msg-1")

    async def send_to_devices(self, tokens, payload):
        index = len(self.batch_sizes)
        self.batch_sizes.append(len(tokens))
        await asyncio.sleep(0)
        if index in self.failing_batches:
            raise PushChannelError("batch rejected", code="transient")
        invalid = [t for t in tokens if t in self.invalid_tokens]
        return BatchResult(
            success_count=len(tokens) - len(invalid),
            failure_count=len(invalid),
            invalid_tokens=invalid,
        )

    async def send_to_topic(self, topic, payload):
        self.topic_calls.append(topic)
        if self.topic_error:
            raise self.topic_error
        return SendResult(success=True, message_id="topic-1")

    async def subscribe_to_topic(self, tokens, topic):
        self.memberships.append(("subscribe", topic, list(tokens)))
        if self.topic_error:
            raise self.topic_error
        return BatchResult(success_count=len(tokens))

    async def unsubscribe_from_topic(self, tokens, topic):
        self.memberships.append(("unsubscribe", topic, list(tokens)))
        return BatchResult(success_count=len(tokens))


class SlowPushChannel(FakePushChannel):
    """Holds each multicast batch open briefly and tracks how many overlap."""

    def __init__(self):
        super().__init__()
        self.in_flight = 0
        self.peak = 0

    async def send_to_devices(self, tokens, payload):
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            return BatchResult(success_count=len(tokens))
        finally:
            self.in_flight -= 1


def _make_zone(
    zid: str = "Z1",
    name: str = "Phường Bến Thành",
    risk: RiskLevel = RiskLevel.HIGH,
    case_count: int = 60,
) -> Zone:
    return Zone(
        id=zid,
        name=name,
        disease_type="dengue",
        center_lat=10.7725,
        center_lon=106.6980,
        radius_km=2.0,
        risk_level=risk,
        case_count=case_count,
    )


def _make_dispatcher(push=None, tokens=None, **kwargs):
    store = InMemoryStore(device_tokens=tokens if tokens is not None else {"U1": "tok-U1"})
    return AlertDispatcher(push or FakePushChannel(), store, **kwargs), store


def _tokens(n: int) -> List[str]:
    return [f"tok-{i:05d}" for i in range(n)]


def _payload() -> PushPayload:
    return PushPayload(title="Test", body="Body", data={"type": "system"})


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Models & state machine
# ═══════════════════════════════════════════════════════════════════════════

class TestDeliveryStateMachine:

    def _event(self) -> AlertEvent:
        return AlertEvent(
            user_id="U1", zone_id="Z1", channel=AlertChannel.DEVICE,
            payload=_payload(), dedup_key="U1:Z1",
        )

    def test_happy_path(self):
        e = self._event()
        e.transition(DeliveryState.DISPATCHING)
        e.transition(DeliveryState.DELIVERED)
        assert e.state.is_terminal

    def test_created_may_skip(self):
        e = self._event()
        e.skip("no_device_token")
        assert e.state == DeliveryState.SKIPPED
        assert e.skip_reason == "no_device_token"

    def test_created_cannot_jump_to_delivered(self):
        with pytest.raises(ValidationError):
            self._event().transition(DeliveryState.DELIVERED)

    def test_terminal_states_are_final(self):
        e = self._event()
        e.transition(DeliveryState.DISPATCHING)
        e.transition(DeliveryState.FAILED)
        with pytest.raises(ValidationError):
            e.transition(DeliveryState.DISPATCHING)


class TestPushPayload:

    def test_data_coerced_to_strings(self):
        p = PushPayload(title="t", body="b", data={"count": 3, "flag": True, "none": None})
        assert p.data == {"count": "3", "flag": "True"}

    def test_error_kind_from_unknown_code(self):
        assert PushErrorKind.from_code("weird") == PushErrorKind.TRANSIENT
        assert PushErrorKind.from_code("invalid_token") == PushErrorKind.INVALID_TOKEN


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Zone entry
# ═══════════════════════════════════════════════════════════════════════════

class TestZoneEntry:

    def test_delivered(self):
        dispatcher, store = _make_dispatcher()
        event = asyncio.run(dispatcher.dispatch_zone_entry("U1", [_make_zone()]))
        assert event.state == DeliveryState.DELIVERED
        assert event.message_id == "msg-1"
        assert event.dedup_key == "U1:Z1"
        assert dispatcher.push.device_calls == ["tok-U1"]
        assert len(store.notifications) == 1
        record = store.notifications[0]
        assert record.type == NotificationType.ZONE_ENTRY
        assert record.user_id == "U1"
        assert record.is_read is False

    def test_uses_highest_risk_zone(self):
        dispatcher, _ = _make_dispatcher()
        zones = [_make_zone("CRIT", risk=RiskLevel.CRITICAL), _make_zone("LOW", risk=RiskLevel.LOW)]
        event = asyncio.run(dispatcher.dispatch_zone_entry("U1", zones))
        assert event.zone_id == "CRIT"
        assert event.payload.data["riskLevel"] == "critical"

    def test_no_token_skipped_record_persisted(self):
        dispatcher, store = _make_dispatcher(tokens={})
        event = asyncio.run(dispatcher.dispatch_zone_entry("U1", [_make_zone()]))
        assert event.state == DeliveryState.SKIPPED
        assert event.skip_reason == "no_device_token"
        assert dispatcher.push.device_calls == []
        assert len(store.notifications) == 1
        assert event.notification is store.notifications[0]

    def test_invalid_token_marked_for_pruning(self):
        push = FakePushChannel(device_error=PushChannelError("gone", code="invalid_token"))
        dispatcher, store = _make_dispatcher(push)
        event = asyncio.run(dispatcher.dispatch_zone_entry("U1", [_make_zone()]))
        assert event.state == DeliveryState.FAILED
        assert event.error_kind == PushErrorKind.INVALID_TOKEN
        assert event.prune_token == "tok-U1"
        assert len(store.notifications) == 1

    def test_generic_failure_not_raised(self):
        push = FakePushChannel(device_error=RuntimeError("socket closed"))
        dispatcher, _ = _make_dispatcher(push)
        event = asyncio.run(dispatcher.dispatch_zone_entry("U1", [_make_zone()]))
        assert event.state == DeliveryState.FAILED
        assert event.error_kind == PushErrorKind.TRANSIENT
        assert event.prune_token is None
        assert len(push.device_calls) == 1   # no retry

    def test_unavailable_channel(self):
        dispatcher, store = _make_dispatcher(DisabledPushChannel())
        event = asyncio.run(dispatcher.dispatch_zone_entry("U1", [_make_zone()]))
        assert event.state == DeliveryState.FAILED
        assert event.error_kind == PushErrorKind.CHANNEL_UNAVAILABLE
        assert len(store.notifications) == 1

    def test_empty_zone_list_rejected(self):
        dispatcher, _ = _make_dispatcher()
        with pytest.raises(ValidationError):
            asyncio.run(dispatcher.dispatch_zone_entry("U1", []))


class TestCooldown:

    def test_disabled_by_default(self):
        dispatcher, store = _make_dispatcher()
        for _ in range(3):
            asyncio.run(dispatcher.dispatch_zone_entry("U1", [_make_zone()]))
        assert len(dispatcher.push.device_calls) == 3
        assert len(store.notifications) == 3

    def test_suppressed_when_already_claimed(self):
        dispatcher, store = _make_dispatcher(cooldown_seconds=600)
        with patch(
            "backend.app.alerts.alert_dispatcher.acquire_once",
            AsyncMock(return_value=False),
        ) as claim:
            event = asyncio.run(dispatcher.dispatch_zone_entry("U1", [_make_zone()]))
        claim.assert_awaited_once_with("alert:cooldown:U1:Z1", 600)
        assert event.state == DeliveryState.SKIPPED
        assert event.skip_reason == "cooldown"
        assert store.notifications == []
        assert dispatcher.push.device_calls == []

    def test_first_claim_dispatches(self):
        dispatcher, _ = _make_dispatcher(cooldown_seconds=600)
        with patch(
            "backend.app.alerts.alert_dispatcher.acquire_once",
            AsyncMock(return_value=True),
        ):
            event = asyncio.run(dispatcher.dispatch_zone_entry("U1", [_make_zone()]))
        assert event.state == DeliveryState.DELIVERED


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Multicast batching
# ═══════════════════════════════════════════════════════════════════════════

class TestChunk:

    def test_sizes(self):
        assert [len(c) for c in chunk(_tokens(1200), 500)] == [500, 500, 200]

    def test_exact_multiple(self):
        assert [len(c) for c in chunk(_tokens(1000), 500)] == [500, 500]

    def test_empty(self):
        assert chunk([], 500) == []


class TestBroadcast:

    def test_1200_tokens_three_batches(self):
        dispatcher, store = _make_dispatcher()
        result = asyncio.run(dispatcher.broadcast(_payload(), _tokens(1200)))
        assert sorted(dispatcher.push.batch_sizes) == [200, 500, 500]
        assert result.batch_count == 3
        assert result.success_count + result.failure_count == 1200
        assert result.success_count == 1200
        assert store.notifications[0].is_broadcast is True

    def test_failed_batch_isolated(self):
        push = FakePushChannel(failing_batches=[1])
        dispatcher, _ = _make_dispatcher(push)
        result = asyncio.run(dispatcher.broadcast(_payload(), _tokens(1200)))
        failed_size = push.batch_sizes[1]
        assert result.failure_count == failed_size
        assert result.success_count == 1200 - failed_size
        assert result.batch_count == 3

    def test_invalid_tokens_collected(self):
        tokens = _tokens(600)
        push = FakePushChannel(invalid_tokens=[tokens[3], tokens[550]])
        dispatcher, _ = _make_dispatcher(push)
        result = asyncio.run(dispatcher.broadcast(_payload(), tokens))
        assert sorted(result.invalid_tokens) == sorted([tokens[3], tokens[550]])
        assert result.failure_count == 2

    def test_batch_size_clamped_to_provider_limit(self):
        dispatcher, _ = _make_dispatcher(batch_size=5000)
        assert dispatcher.batch_size == 500

    def test_small_batch_size(self):
        dispatcher, _ = _make_dispatcher(batch_size=100, max_concurrency=2)
        result = asyncio.run(dispatcher.broadcast(_payload(), _tokens(250)))
        assert result.batch_count == 3
        assert result.total == 250

    def test_disabled_channel_counts_all_failed(self):
        dispatcher, _ = _make_dispatcher(DisabledPushChannel())
        result = asyncio.run(dispatcher.broadcast(_payload(), _tokens(700)))
        assert result.success_count == 0
        assert result.failure_count == 700

    def test_no_tokens(self):
        dispatcher, store = _make_dispatcher()
        result = asyncio.run(dispatcher.broadcast(_payload(), []))
        assert result.total == 0
        assert result.batch_count == 0
        assert len(store.notifications) == 1

    def test_concurrency_bounded(self):
        push = SlowPushChannel()
        dispatcher, _ = _make_dispatcher(push, batch_size=2, max_concurrency=2)
        result = asyncio.run(dispatcher.broadcast(_payload(), _tokens(10)))
        assert result.batch_count == 5
        assert result.success_count == 10
        assert 1 < push.peak <= 2

    def test_single_slot_serialises_batches(self):
        push = SlowPushChannel()
        dispatcher, _ = _make_dispatcher(push, batch_size=2, max_concurrency=1)
        asyncio.run(dispatcher.broadcast(_payload(), _tokens(6)))
        assert push.peak == 1


class TestNewPost:

    def test_author_excluded(self):
        tokens = {"U1": "tok-U1", "U2": "tok-U2", "U3": "tok-U3"}
        dispatcher, store = _make_dispatcher(tokens=tokens)
        result = asyncio.run(dispatcher.announce_new_post("P1", "Rửa tay", "Lan", "U2"))
        assert result.success_count == 2
        assert result.total == 2
        record = store.notifications[0]
        assert record.type == NotificationType.NEW_POST
        assert record.is_broadcast is True
        assert record.data["postId"] == "P1"
        assert record.data["authorId"] == "U2"
        assert record.body == "Lan đã đăng: Rửa tay"

    def test_invalid_tokens_reported(self):
        push = FakePushChannel(invalid_tokens=["tok-U3"])
        dispatcher, _ = _make_dispatcher(push, tokens={"U1": "tok-U1", "U3": "tok-U3"})
        result = asyncio.run(dispatcher.announce_new_post("P1", "t", "A", "U9"))
        assert result.invalid_tokens == ["tok-U3"]


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: Topic broadcasts
# ═══════════════════════════════════════════════════════════════════════════

class TestTopicBroadcast:

    def test_announce_system(self):
        dispatcher, store = _make_dispatcher()
        event = asyncio.run(dispatcher.announce_system("Bảo trì", "Hệ thống bảo trì", {"v": 2}))
        assert dispatcher.push.topic_calls == ["all"]
        assert event.state == DeliveryState.DELIVERED
        assert event.payload.title == "📢 Bảo trì"
        assert event.payload.data == {"type": "system", "v": "2"}
        assert store.notifications[0].type == NotificationType.SYSTEM
        assert store.notifications[0].is_broadcast is True

    def test_broadcast_epidemic(self):
        dispatcher, store = _make_dispatcher()
        event = asyncio.run(dispatcher.broadcast_epidemic(_make_zone()))
        assert event.zone_id == "Z1"
        assert event.payload.data["action"] == "open_map"
        assert store.notifications[0].type == NotificationType.EPIDEMIC_ALERT

    def test_custom_topic(self):
        dispatcher, _ = _make_dispatcher(broadcast_topic="vn-hcm")
        asyncio.run(dispatcher.broadcast_topic(_payload()))
        assert dispatcher.push.topic_calls == ["vn-hcm"]

    def test_topic_failure_recorded(self):
        push = FakePushChannel(topic_error=PushChannelError("quota", code="transient"))
        dispatcher, store = _make_dispatcher(push)
        event = asyncio.run(dispatcher.announce_system("t", "b"))
        assert event.state == DeliveryState.FAILED
        assert event.error_kind == PushErrorKind.TRANSIENT
        assert len(store.notifications) == 1


class TestTopicMembership:

    def test_subscribe_default_topic(self):
        dispatcher, _ = _make_dispatcher()
        result = asyncio.run(dispatcher.subscribe_to_topic(["a", "b"]))
        assert dispatcher.push.memberships == [("subscribe", "all", ["a", "b"])]
        assert result.success_count == 2
        assert result.batch_count == 1

    def test_unsubscribe_named_topic(self):
        dispatcher, _ = _make_dispatcher()
        asyncio.run(dispatcher.unsubscribe_from_topic(["a"], "vn-hcm"))
        assert dispatcher.push.memberships == [("unsubscribe", "vn-hcm", ["a"])]

    def test_chunked_by_batch_size(self):
        dispatcher, _ = _make_dispatcher(batch_size=2)
        result = asyncio.run(dispatcher.subscribe_to_topic(_tokens(5)))
        assert [len(m[2]) for m in dispatcher.push.memberships] == [2, 2, 1]
        assert result.batch_count == 3
        assert result.success_count == 5

    def test_failure_counted_not_raised(self):
        push = FakePushChannel(topic_error=PushChannelError("quota", code="transient"))
        dispatcher, store = _make_dispatcher(push)
        result = asyncio.run(dispatcher.subscribe_to_topic(["a", "b", "c"]))
        assert result.failure_count == 3
        assert result.success_count == 0
        assert store.notifications == []

    def test_disabled_channel_does_not_manage_topics(self):
        dispatcher, _ = _make_dispatcher(DisabledPushChannel())
        result = asyncio.run(dispatcher.subscribe_to_topic(["a"]))
        assert result.failure_count == 1

    def test_simulated_channel_accepts_all(self):
        dispatcher, _ = _make_dispatcher(SimulatedPushChannel())
        result = asyncio.run(dispatcher.unsubscribe_from_topic(_tokens(3)))
        assert result.success_count == 3


class TestReportUpdate:

    def test_verified_delivered(self):
        dispatcher, store = _make_dispatcher()
        event = asyncio.run(dispatcher.notify_report_update("U1", "R7", "verified"))
        assert event.state == DeliveryState.DELIVERED
        assert event.zone_id is None
        assert dispatcher.push.device_calls == ["tok-U1"]
        record = store.notifications[0]
        assert record.type == NotificationType.REPORT_UPDATE
        assert record.user_id == "U1"
        assert record.title == "Cập nhật báo cáo"
        assert record.body == "Báo cáo của bạn đã được xác nhận"
        assert record.data["reportId"] == "R7"
        assert record.data["status"] == "verified"

    def test_rejected_without_token_still_recorded(self):
        dispatcher, store = _make_dispatcher(tokens={})
        event = asyncio.run(dispatcher.notify_report_update("U1", "R7", "rejected"))
        assert event.state == DeliveryState.SKIPPED
        assert event.skip_reason == "no_device_token"
        assert store.notifications[0].body == "Báo cáo của bạn đã bị từ chối"

    def test_invalid_token_marked_for_pruning(self):
        push = FakePushChannel(device_error=PushChannelError("gone", code="invalid_token"))
        dispatcher, _ = _make_dispatcher(push)
        event = asyncio.run(dispatcher.notify_report_update("U1", "R7", "verified"))
        assert event.prune_token == "tok-U1"


# ═══════════════════════════════════════════════════════════════════════════
# Section 5: Channels & templates
# ═══════════════════════════════════════════════════════════════════════════

class TestBuildPushChannel:

    def _settings(self, provider: str, **overrides):
        values = dict(
            PUSH_PROVIDER=provider,
            FIREBASE_CREDENTIALS_FILE=None,
            FIREBASE_PROJECT_ID=None,
            FIREBASE_CLIENT_EMAIL=None,
            FIREBASE_PRIVATE_KEY=None,
        )
        values.update(overrides)
        return SimpleNamespace(**values)

    def test_simulation(self):
        assert isinstance(build_push_channel(self._settings("simulation")), SimulatedPushChannel)

    def test_disabled(self):
        channel = build_push_channel(self._settings("disabled"))
        assert isinstance(channel, DisabledPushChannel)
        assert channel.available is False

    def test_fcm_without_credentials_is_disabled(self):
        channel = build_push_channel(self._settings("fcm"))
        assert isinstance(channel, DisabledPushChannel)


class TestSimulatedChannel:

    def test_multicast_all_succeed(self):
        result = asyncio.run(SimulatedPushChannel().send_to_devices(_tokens(10), _payload()))
        assert result.success_count == 10
        assert result.failure_count == 0


class TestTemplates:

    def test_zone_entry_vietnamese_default(self):
        p = zone_entry_payload(_make_zone(risk=RiskLevel.CRITICAL))
        assert p.title.startswith("⛔")
        assert "Rất cao" in p.body
        assert "Phường Bến Thành" in p.body
        assert p.data["type"] == "zone_entry"
        assert p.data["zoneId"] == "Z1"

    def test_zone_entry_english(self):
        p = zone_entry_payload(_make_zone(risk=RiskLevel.MEDIUM), "en")
        assert p.title.startswith("🟠")
        assert "Risk level: Medium" in p.body

    def test_unknown_language_falls_back(self):
        p = zone_entry_payload(_make_zone(), "fr")
        assert "Mức độ nguy hiểm" in p.body

    def test_epidemic_broadcast(self):
        p = epidemic_broadcast_payload(_make_zone(), "en")
        assert p.title == "⚠️ Epidemic alert: dengue"
        assert p.data["type"] == "epidemic_alert"

    def test_system_announcement(self):
        p = system_announcement_payload("Hello", "World")
        assert p.title == "📢 Hello"
        assert p.data == {"type": "system"}

    def test_report_update_english(self):
        assert report_update_payload("R1", "rejected", "en").body == "Your report has been rejected"
        assert report_update_payload("R1", "verified", "en").data["type"] == "report_update"

    def test_new_post(self):
        p = new_post_payload("P1", "Title", "Minh", "U5")
        assert p.title == "📝 Bài viết mới"
        assert p.data["type"] == "new_post"
        assert p.data["action"] == "open_post"
