"""
templates.py — Localised push payloads.

Vietnamese is the default language; English is available through
``ALERT_LANGUAGE=en``.  Unknown languages fall back to Vietnamese.

    Risk       Emoji   vi            en
    ────────   ─────   ───────────   ─────────
    low        🟡      Thấp          Low
    medium     🟠      Trung bình    Medium
    high       🔴      Cao           High
    critical   ⛔      Rất cao       Critical
"""

from __future__ import annotations

from typing import Dict, Mapping, Optional

from backend.app.alerts.models import NotificationType, PushPayload
from backend.app.gis.risk import RiskLevel
from backend.app.zones.models import Zone

DEFAULT_LANGUAGE = "vi"

RISK_EMOJI: Dict[RiskLevel, str] = {
    RiskLevel.LOW:      "🟡",
    RiskLevel.MEDIUM:   "🟠",
    RiskLevel.HIGH:     "🔴",
    RiskLevel.CRITICAL: "⛔",
}

RISK_TEXT: Dict[str, Dict[RiskLevel, str]] = {
    "vi": {
        RiskLevel.LOW:      "Thấp",
        RiskLevel.MEDIUM:   "Trung bình",
        RiskLevel.HIGH:     "Cao",
        RiskLevel.CRITICAL: "Rất cao",
    },
    "en": {
        RiskLevel.LOW:      "Low",
        RiskLevel.MEDIUM:   "Medium",
        RiskLevel.HIGH:     "High",
        RiskLevel.CRITICAL: "Critical",
    },
}

_STRINGS: Dict[str, Dict[str, str]] = {
    "vi": {
        "zone_entry_title": "{emoji} CẢNH BÁO: Bạn đang trong vùng dịch!",
        "zone_entry_body": (
            "Khu vực: {zone}\nLoại bệnh: {disease}\nMức độ nguy hiểm: {risk}"
        ),
        "epidemic_title": "⚠️ Cảnh báo dịch bệnh: {disease}",
        "epidemic_body": (
            "Phát hiện ổ dịch mới tại {zone}. Mức độ: {risk}. "
            "Hãy cẩn thận khi di chuyển qua khu vực này."
        ),
        "report_title": "Cập nhật báo cáo",
        "report_verified": "Báo cáo của bạn đã được xác nhận",
        "report_rejected": "Báo cáo của bạn đã bị từ chối",
        "new_post_title": "📝 Bài viết mới",
        "new_post_body": "{author} đã đăng: {title}",
    },
    "en": {
        "zone_entry_title": "{emoji} WARNING: You are inside an epidemic zone!",
        "zone_entry_body": (
            "Area: {zone}\nDisease: {disease}\nRisk level: {risk}"
        ),
        "epidemic_title": "⚠️ Epidemic alert: {disease}",
        "epidemic_body": (
            "New outbreak detected at {zone}. Risk: {risk}. "
            "Take care when travelling through this area."
        ),
        "report_title": "Report update",
        "report_verified": "Your report has been verified",
        "report_rejected": "Your report has been rejected",
        "new_post_title": "📝 New post",
        "new_post_body": "{author} posted: {title}",
    },
}


def _lang(language: Optional[str]) -> str:
    language = (language or DEFAULT_LANGUAGE).lower()
    return language if language in _STRINGS else DEFAULT_LANGUAGE


def risk_text(level: RiskLevel, language: Optional[str] = None) -> str:
    return RISK_TEXT[_lang(language)][level]


def zone_entry_payload(zone: Zone, language: Optional[str] = None) -> PushPayload:
    """
    High-priority alert for a user who is inside ``zone``.

    >>> p = zone_entry_payload(Zone("Z1", "Q1", "dengue", 10.0, 106.0, 2.0), "en")
    >>> p.title
    '🟡 WARNING: You are inside an epidemic zone!'
    >>> p.data["riskLevel"]
    'low'
    """
    lang = _lang(language)
    strings = _STRINGS[lang]
    return PushPayload(
        title=strings["zone_entry_title"].format(emoji=RISK_EMOJI[zone.risk_level]),
        body=strings["zone_entry_body"].format(
            zone=zone.name,
            disease=zone.disease_type,
            risk=risk_text(zone.risk_level, lang),
        ),
        data={
            "type": NotificationType.ZONE_ENTRY.value,
            "zoneId": zone.id,
            "zoneName": zone.name,
            "diseaseType": zone.disease_type,
            "riskLevel": zone.risk_level.value,
            "action": "open_zone_detail",
        },
    )


def epidemic_broadcast_payload(zone: Zone, language: Optional[str] = None) -> PushPayload:
    lang = _lang(language)
    strings = _STRINGS[lang]
    return PushPayload(
        title=strings["epidemic_title"].format(disease=zone.disease_type),
        body=strings["epidemic_body"].format(
            zone=zone.name, risk=risk_text(zone.risk_level, lang),
        ),
        data={
            "type": NotificationType.EPIDEMIC_ALERT.value,
            "zoneId": zone.id,
            "zoneName": zone.name,
            "diseaseType": zone.disease_type,
            "riskLevel": zone.risk_level.value,
            "action": "open_map",
        },
    )


def system_announcement_payload(
    title: str,
    body: str,
    data: Optional[Mapping[str, object]] = None,
) -> PushPayload:
    return PushPayload(
        title=f"📢 {title}",
        body=body,
        data={"type": NotificationType.SYSTEM.value, **(data or {})},
    )


def report_update_payload(
    report_id: str,
    status: str,
    language: Optional[str] = None,
) -> PushPayload:
    """
    Tell a reporter their report was reviewed.

    Any status other than ``verified`` reads as a rejection.

    >>> report_update_payload("R1", "verified", "en").body
    'Your report has been verified'
    """
    strings = _STRINGS[_lang(language)]
    body_key = "report_verified" if status == "verified" else "report_rejected"
    return PushPayload(
        title=strings["report_title"],
        body=strings[body_key],
        data={
            "type": NotificationType.REPORT_UPDATE.value,
            "reportId": report_id,
            "status": status,
            "action": "open_report",
        },
    )


def new_post_payload(
    post_id: str,
    title: str,
    author_name: str,
    author_id: str,
    language: Optional[str] = None,
) -> PushPayload:
    strings = _STRINGS[_lang(language)]
    return PushPayload(
        title=strings["new_post_title"],
        body=strings["new_post_body"].format(author=author_name, title=title),
        data={
            "type": NotificationType.NEW_POST.value,
            "postId": post_id,
            "authorId": author_id,
            "authorName": author_name,
            "action": "open_post",
        },
    )
