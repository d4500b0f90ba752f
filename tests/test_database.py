import sqlite3
from datetime import datetime, timedelta

import pytest

from slotwatch import database

NOW = datetime(2025, 6, 1, 12, 0, 0)


def test_scan_selector_window(make_site) -> None:
    never = make_site()
    fresh = make_site()
    boundary = make_site()
    stale = make_site()
    inactive = make_site()

    database.update_site(fresh["id"], last_checked=NOW - timedelta(minutes=4))
    database.update_site(boundary["id"], last_checked=NOW - timedelta(minutes=5))
    database.update_site(stale["id"], last_checked=NOW - timedelta(minutes=45))
    database.deactivate_site(inactive["id"])

    due = {s["id"] for s in database.get_due_sites(NOW)}
    assert due == {never["id"], boundary["id"], stale["id"]}


def test_scan_selector_ignores_per_site_interval(make_site) -> None:
    site = make_site(check_interval=60)
    database.update_site(site["id"], last_checked=NOW - timedelta(minutes=6))
    assert [s["id"] for s in database.get_due_sites(NOW)] == [site["id"]]


@pytest.mark.parametrize(("requested", "stored"), [(None, 30), (1, 5), (15, 15), (120, 60)])
def test_check_interval_is_clamped(make_site, requested, stored) -> None:
    assert make_site(check_interval=requested)["check_interval"] == stored


def test_one_active_site_per_user_and_url(make_site) -> None:
    first = make_site(url="https://x.example.com")
    with pytest.raises(sqlite3.IntegrityError):
        make_site(url="https://x.example.com")

    database.deactivate_site(first["id"])
    again = make_site(url="https://x.example.com")
    assert again["is_active"] is True
    assert make_site(user_id="2002", url="https://x.example.com")["user_id"] == "2002"


def test_find_or_create_leaves_existing_record_untouched(make_site) -> None:
    site = make_site()
    when = datetime(2025, 7, 1)
    row, created = database.find_or_create_appointment(site["id"], when, {"time": "09:00"}, NOW)
    assert created is True
    assert row["is_available"] is True and row["notified"] is False

    database.mark_appointments_notified([row["id"]])
    again, created = database.find_or_create_appointment(
        site["id"], when, {"time": "17:00"}, NOW + timedelta(hours=1)
    )
    assert created is False
    assert again["id"] == row["id"]
    assert again["appointment_details"] == {"time": "09:00"}
    assert again["notified"] is True
    assert again["found_at"] == NOW.isoformat()


def test_retention_deletes_strictly_older_than_cutoff(make_site) -> None:
    site = make_site()
    ids = {}
    for days in (8, 7, 6):
        row, _ = database.find_or_create_appointment(site["id"], NOW - timedelta(days=days), {}, NOW)
        ids[days] = row["id"]

    assert database.delete_appointments_before(NOW - timedelta(days=7)) == 1
    assert database.get_appointment(ids[8]) is None
    assert database.get_appointment(ids[7]) is not None
    assert database.get_appointment(ids[6]) is not None
    assert database.delete_appointments_before(NOW - timedelta(days=7)) == 0


def test_deleting_site_cascades_to_appointments(make_site) -> None:
    site = make_site()
    row, _ = database.find_or_create_appointment(site["id"], datetime(2025, 7, 1), {}, NOW)
    assert database.delete_site(site["id"]) is True
    assert database.get_appointment(row["id"]) is None


def test_unnotified_listing_carries_owner(make_site) -> None:
    site = make_site(user_id="3003")
    a, _ = database.find_or_create_appointment(site["id"], datetime(2025, 7, 1), {}, NOW)
    b, _ = database.find_or_create_appointment(site["id"], datetime(2025, 7, 2), {}, NOW)
    c, _ = database.find_or_create_appointment(site["id"], datetime(2025, 7, 3), {}, NOW)
    database.mark_appointments_notified([a["id"]])
    database.mark_appointment_unavailable(c["id"])

    pending = database.get_unnotified_appointments()
    assert [p["id"] for p in pending] == [b["id"]]
    assert pending[0]["user_id"] == "3003"


def test_appointment_stats(make_site) -> None:
    s1 = make_site(user_id="4004")
    s2 = make_site(user_id="4004")
    database.deactivate_site(s2["id"])
    make_site(user_id="5005")
    database.update_site(s1["id"], last_checked=NOW)

    for day in range(1, 8):
        database.find_or_create_appointment(s1["id"], datetime(2025, 7, day), {}, NOW + timedelta(minutes=day))
    gone, _ = database.find_or_create_appointment(s2["id"], datetime(2025, 8, 1), {}, NOW)
    database.mark_appointment_unavailable(gone["id"])

    stats = database.get_appointment_stats("4004")
    assert stats["total_sites"] == 2
    assert stats["active_sites"] == 1
    assert stats["last_checked"] == NOW.isoformat()
    assert stats["total_appointments"] == 8
    assert stats["available_appointments"] == 7
    assert len(stats["recent_appointments"]) == 5
    assert stats["recent_appointments"][0]["appointment_date"] == datetime(2025, 7, 7).isoformat()


def test_preferences_merge_and_filter(db) -> None:
    database.create_user("6006", "six")
    database.create_user("7007", "seven", {"daily_summary": True})
    updated = database.update_user_preferences("6006", weekly_summary=True, unknown=True)
    assert updated["notification_preferences"] == {
        "immediate": True,
        "daily_summary": False,
        "weekly_summary": True,
    }
    assert [u["user_id"] for u in database.get_users_with_preference("daily_summary")] == ["7007"]
    database.set_user_active("7007", False)
    assert database.get_users_with_preference("daily_summary") == []
