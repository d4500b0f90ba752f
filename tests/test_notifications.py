import asyncio
import json
from datetime import datetime

import httpx
import pytest

from slotwatch import config, notifications
from slotwatch.notifications import (
    build_appointment_message,
    build_summary_message,
    send_appointment_notification,
    send_summary,
    send_system_status,
)

SITE = {"id": 12, "url": "https://consulate.example.gov/book?x=1&y=2", "site_type": "government"}
USER = {"user_id": "424242", "notification_preferences": {"immediate": True, "daily_summary": True, "weekly_summary": False}}


def appointment(day: int, time: str = "09:00", details: str = "") -> dict:
    return {
        "id": day,
        "appointment_date": datetime(2025, 7, day).isoformat(),
        "appointment_details": {"time": time, "details": details, "original_text": f"07/{day:02d}/2025"},
    }


@pytest.fixture
def telegram(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setitem(config.CFG, "telegram_token", "123:abc")
    sent = []
    status = {"code": 200}

    def handler(request: httpx.Request) -> httpx.Response:
        sent.append((request.url.path, json.loads(request.content)))
        return httpx.Response(status["code"], json={"ok": status["code"] == 200})

    real_client = httpx.AsyncClient
    monkeypatch.setattr(
        notifications.httpx, "AsyncClient",
        lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs),
    )
    return sent, status


def test_message_caps_listing_and_counts_overflow() -> None:
    text = build_appointment_message(SITE, [appointment(d) for d in range(1, 8)])

    assert "Found 7 new appointments" in text
    assert "01.07.2025" in text and "05.07.2025" in text
    assert "06.07.2025" not in text
    assert "... and 2 more appointments available!" in text
    assert "GOVERNMENT" in text
    assert "&amp;" in text


def test_message_fills_missing_time_and_details() -> None:
    text = build_appointment_message(SITE, [appointment(3, time="", details="<b>Desk</b>")])
    assert "Found 1 new appointment " in text
    assert "Not specified" in text
    assert "&lt;b&gt;Desk&lt;/b&gt;" in text
    assert "more appointments" not in text


def test_delivery_goes_to_the_owner_chat(telegram) -> None:
    sent, _ = telegram
    assert asyncio.run(send_appointment_notification(USER, SITE, [appointment(1)])) is True

    path, payload = sent[0]
    assert path == "/bot123:abc/sendMessage"
    assert payload["chat_id"] == "424242"
    assert payload["parse_mode"] == "HTML"


def test_api_error_is_reported_as_not_delivered(telegram) -> None:
    sent, status = telegram
    status["code"] = 500
    assert asyncio.run(send_appointment_notification(USER, SITE, [appointment(1)])) is False
    assert len(sent) == 1


def test_missing_token_is_not_delivered() -> None:
    assert asyncio.run(send_appointment_notification(USER, SITE, [appointment(1)])) is False


def test_summary_honours_preferences(telegram) -> None:
    sent, _ = telegram
    stats = {"total_sites": 2, "active_sites": 1, "total_appointments": 3,
             "available_appointments": 2, "recent_appointments": [appointment(4)]}

    assert asyncio.run(send_summary(USER, stats, "daily")) is True
    assert asyncio.run(send_summary(USER, stats, "weekly")) is False
    assert len(sent) == 1
    assert "Daily Monitoring Summary" in sent[0][1]["text"]
    assert "04.07.2025" in sent[0][1]["text"]


def test_summary_kind_is_validated() -> None:
    with pytest.raises(ValueError):
        asyncio.run(send_summary(USER, {}, "monthly"))


def test_empty_summary_mentions_no_active_sites() -> None:
    stats = {"total_sites": 0, "active_sites": 0, "total_appointments": 0,
             "available_appointments": 0, "recent_appointments": []}
    assert "No active sites." in build_summary_message(stats, "weekly")


def test_system_status_goes_to_admin_chat(telegram, monkeypatch: pytest.MonkeyPatch) -> None:
    sent, _ = telegram
    summary = {"total_sites": 3, "success_count": 2, "error_count": 1, "skipped_count": 0, "appointments_found": 4}

    assert asyncio.run(send_system_status(summary)) is False
    monkeypatch.setitem(config.CFG, "admin_chat_id", "-100777")
    assert asyncio.run(send_system_status(summary)) is True
    assert sent[0][1]["chat_id"] == "-100777"
    assert "New appointments: 4" in sent[0][1]["text"]
