"""SQLite veritabanı — kullanıcılar, izlenen siteler ve randevular."""

import json
import sqlite3
from datetime import datetime, timedelta
from pathlib import Path

from slotwatch.config import (
    CFG,
    DEFAULT_CHECK_INTERVAL,
    MAX_CHECK_INTERVAL,
    MIN_CHECK_INTERVAL,
    RECHECK_WINDOW_MINUTES,
)

DB_PATH = Path(CFG["db_path"])

DEFAULT_PREFERENCES = {"immediate": True, "daily_summary": False, "weekly_summary": False}

_JSON_COLUMNS = ("notification_preferences", "appointment_details")


def _get_conn() -> sqlite3.Connection:
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(DB_PATH))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def _ts(value: datetime) -> str:
    return value.isoformat()


def init_db():
    """Tablo yoksa oluştur."""
    conn = _get_conn()
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS users (
            user_id                  TEXT PRIMARY KEY,
            username                 TEXT NOT NULL,
            notification_preferences TEXT NOT NULL DEFAULT '{}',
            is_active                BOOLEAN NOT NULL DEFAULT 1,
            created_at               DATETIME DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS monitored_sites (
            id                    INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id               TEXT NOT NULL,
            url                   TEXT NOT NULL,
            site_type             TEXT NOT NULL DEFAULT 'generic',
            encrypted_credentials TEXT NOT NULL,
            check_interval        INTEGER NOT NULL DEFAULT 30,
            last_checked          DATETIME DEFAULT NULL,
            is_active             BOOLEAN NOT NULL DEFAULT 1,
            created_at            DATETIME DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(user_id) REFERENCES users(user_id) ON DELETE CASCADE
        );

        CREATE UNIQUE INDEX IF NOT EXISTS ux_sites_active_user_url
            ON monitored_sites(user_id, url) WHERE is_active = 1;

        CREATE TABLE IF NOT EXISTS appointments (
            id                  INTEGER PRIMARY KEY AUTOINCREMENT,
            site_id             INTEGER NOT NULL,
            appointment_date    DATETIME NOT NULL,
            appointment_details TEXT NOT NULL DEFAULT '{}',
            is_available        BOOLEAN NOT NULL DEFAULT 1,
            notified            BOOLEAN NOT NULL DEFAULT 0,
            found_at            DATETIME NOT NULL,
            UNIQUE(site_id, appointment_date),
            FOREIGN KEY(site_id) REFERENCES monitored_sites(id) ON DELETE CASCADE
        );
    """)
    conn.commit()
    conn.close()


def _row_to_dict(row) -> dict:
    if not row:
        return None
    data = dict(row)
    for key in _JSON_COLUMNS:
        if key in data and isinstance(data[key], str):
            data[key] = json.loads(data[key] or "{}")
    for key in ("is_active", "is_available", "notified"):
        if key in data:
            data[key] = bool(data[key])
    return data


# ─── Users CRUD ───

def get_user(user_id: str) -> dict | None:
    conn = _get_conn()
    row = conn.execute("SELECT * FROM users WHERE user_id = ?", (user_id,)).fetchone()
    conn.close()
    return _row_to_dict(row)


def create_user(user_id: str, username: str, preferences: dict | None = None) -> dict:
    prefs = dict(DEFAULT_PREFERENCES)
    prefs.update(preferences or {})
    conn = _get_conn()
    conn.execute(
        "INSERT INTO users (user_id, username, notification_preferences) VALUES (?, ?, ?)",
        (user_id, username, json.dumps(prefs)),
    )
    conn.commit()
    row = conn.execute("SELECT * FROM users WHERE user_id = ?", (user_id,)).fetchone()
    conn.close()
    return _row_to_dict(row)


def update_user_preferences(user_id: str, **prefs) -> dict | None:
    user = get_user(user_id)
    if not user:
        return None
    merged = dict(user["notification_preferences"])
    merged.update({k: bool(v) for k, v in prefs.items() if k in DEFAULT_PREFERENCES and v is not None})
    conn = _get_conn()
    conn.execute(
        "UPDATE users SET notification_preferences = ? WHERE user_id = ?",
        (json.dumps(merged), user_id),
    )
    conn.commit()
    conn.close()
    return get_user(user_id)


def set_user_active(user_id: str, active: bool) -> bool:
    conn = _get_conn()
    cur = conn.execute("UPDATE users SET is_active = ? WHERE user_id = ?", (int(active), user_id))
    conn.commit()
    conn.close()
    return cur.rowcount > 0


def get_users_with_preference(preference: str) -> list[dict]:
    conn = _get_conn()
    rows = conn.execute("SELECT * FROM users WHERE is_active = 1 ORDER BY user_id").fetchall()
    conn.close()
    users = [_row_to_dict(r) for r in rows]
    return [u for u in users if u["notification_preferences"].get(preference)]


# ─── Monitored sites CRUD ───

def clamp_interval(minutes: int | None) -> int:
    if minutes is None:
        return DEFAULT_CHECK_INTERVAL
    return max(MIN_CHECK_INTERVAL, min(MAX_CHECK_INTERVAL, int(minutes)))


def get_site(site_id: int) -> dict | None:
    conn = _get_conn()
    row = conn.execute("SELECT * FROM monitored_sites WHERE id = ?", (site_id,)).fetchone()
    conn.close()
    return _row_to_dict(row)


def get_sites_for_user(user_id: str) -> list[dict]:
    conn = _get_conn()
    rows = conn.execute(
        "SELECT * FROM monitored_sites WHERE user_id = ? ORDER BY id", (user_id,)
    ).fetchall()
    conn.close()
    return [_row_to_dict(r) for r in rows]


def create_site(user_id: str, url: str, encrypted_credentials: str, site_type: str = "generic", check_interval: int | None = None) -> dict:
    conn = _get_conn()
    cur = conn.execute(
        "INSERT INTO monitored_sites (user_id, url, site_type, encrypted_credentials, check_interval) VALUES (?, ?, ?, ?, ?)",
        (user_id, url, site_type, encrypted_credentials, clamp_interval(check_interval)),
    )
    conn.commit()
    row = conn.execute("SELECT * FROM monitored_sites WHERE id = ?", (cur.lastrowid,)).fetchone()
    conn.close()
    return _row_to_dict(row)


def update_site(site_id: int, **kwargs) -> dict | None:
    allowed = {"url", "site_type", "encrypted_credentials", "check_interval", "last_checked", "is_active"}
    fields = {k: v for k, v in kwargs.items() if k in allowed and v is not None}
    if "check_interval" in fields:
        fields["check_interval"] = clamp_interval(fields["check_interval"])
    if isinstance(fields.get("last_checked"), datetime):
        fields["last_checked"] = _ts(fields["last_checked"])
    if not fields:
        return get_site(site_id)

    set_clause = ", ".join(f"{k} = ?" for k in fields)
    values = list(fields.values()) + [site_id]
    conn = _get_conn()
    conn.execute(f"UPDATE monitored_sites SET {set_clause} WHERE id = ?", values)
    conn.commit()
    row = conn.execute("SELECT * FROM monitored_sites WHERE id = ?", (site_id,)).fetchone()
    conn.close()
    return _row_to_dict(row)


def deactivate_site(site_id: int) -> bool:
    conn = _get_conn()
    cur = conn.execute("UPDATE monitored_sites SET is_active = 0 WHERE id = ?", (site_id,))
    conn.commit()
    conn.close()
    return cur.rowcount > 0


def delete_site(site_id: int) -> bool:
    conn = _get_conn()
    cur = conn.execute("DELETE FROM monitored_sites WHERE id = ?", (site_id,))
    conn.commit()
    conn.close()
    return cur.rowcount > 0


def get_due_sites(now: datetime, window_minutes: int = RECHECK_WINDOW_MINUTES) -> list[dict]:
    """Active sites never checked, or last checked at least `window_minutes` before `now`."""
    cutoff = _ts(now - timedelta(minutes=window_minutes))
    conn = _get_conn()
    rows = conn.execute(
        """
        SELECT * FROM monitored_sites
        WHERE is_active = 1 AND (last_checked IS NULL OR last_checked <= ?)
        ORDER BY id
        """,
        (cutoff,),
    ).fetchall()
    conn.close()
    return [_row_to_dict(r) for r in rows]


# ─── Appointments ───

def get_appointment(appointment_id: int) -> dict | None:
    conn = _get_conn()
    row = conn.execute("SELECT * FROM appointments WHERE id = ?", (appointment_id,)).fetchone()
    conn.close()
    return _row_to_dict(row)


def find_or_create_appointment(site_id: int, appointment_date: datetime, details: dict, found_at: datetime) -> tuple[dict, bool]:
    """(site_id, appointment_date) anahtarıyla bul ya da oluştur. Var olan kayda dokunulmaz."""
    key_date = _ts(appointment_date)
    conn = _get_conn()
    cur = conn.execute(
        """
        INSERT OR IGNORE INTO appointments
            (site_id, appointment_date, appointment_details, is_available, notified, found_at)
        VALUES (?, ?, ?, 1, 0, ?)
        """,
        (site_id, key_date, json.dumps(details, ensure_ascii=False), _ts(found_at)),
    )
    created = cur.rowcount > 0
    conn.commit()
    row = conn.execute(
        "SELECT * FROM appointments WHERE site_id = ? AND appointment_date = ?",
        (site_id, key_date),
    ).fetchone()
    conn.close()
    return _row_to_dict(row), created


def mark_appointments_notified(appointment_ids: list[int]) -> int:
    if not appointment_ids:
        return 0
    placeholders = ", ".join("?" for _ in appointment_ids)
    conn = _get_conn()
    cur = conn.execute(
        f"UPDATE appointments SET notified = 1 WHERE id IN ({placeholders})",
        list(appointment_ids),
    )
    conn.commit()
    conn.close()
    return cur.rowcount


def mark_appointment_unavailable(appointment_id: int) -> bool:
    conn = _get_conn()
    cur = conn.execute("UPDATE appointments SET is_available = 0 WHERE id = ?", (appointment_id,))
    conn.commit()
    conn.close()
    return cur.rowcount > 0


def get_unnotified_appointments(site_id: int | None = None) -> list[dict]:
    """Bildirimi henüz teslim edilmemiş, hâlâ müsait randevular (site sahibiyle birlikte)."""
    query = """
        SELECT a.*, s.user_id AS user_id
        FROM appointments a
        JOIN monitored_sites s ON s.id = a.site_id
        WHERE a.notified = 0 AND a.is_available = 1
    """
    params = []
    if site_id is not None:
        query += " AND a.site_id = ?"
        params.append(site_id)
    conn = _get_conn()
    rows = conn.execute(query + " ORDER BY a.site_id, a.appointment_date", params).fetchall()
    conn.close()
    return [_row_to_dict(r) for r in rows]


def delete_appointments_before(cutoff: datetime) -> int:
    conn = _get_conn()
    cur = conn.execute("DELETE FROM appointments WHERE appointment_date < ?", (_ts(cutoff),))
    conn.commit()
    conn.close()
    return cur.rowcount


def get_appointment_stats(user_id: str, recent_limit: int = 5) -> dict:
    conn = _get_conn()
    site_row = conn.execute(
        """
        SELECT COUNT(*) AS total_sites,
               COALESCE(SUM(CASE WHEN is_active = 1 THEN 1 ELSE 0 END), 0) AS active_sites,
               MAX(last_checked) AS last_checked
        FROM monitored_sites WHERE user_id = ?
        """,
        (user_id,),
    ).fetchone()
    appt_row = conn.execute(
        """
        SELECT COUNT(*) AS total_appointments,
               COALESCE(SUM(CASE WHEN a.is_available = 1 THEN 1 ELSE 0 END), 0) AS available_appointments
        FROM appointments a
        JOIN monitored_sites s ON s.id = a.site_id
        WHERE s.user_id = ?
        """,
        (user_id,),
    ).fetchone()
    recent = conn.execute(
        """
        SELECT a.* FROM appointments a
        JOIN monitored_sites s ON s.id = a.site_id
        WHERE s.user_id = ? AND a.is_available = 1
        ORDER BY a.found_at DESC, a.id DESC
        LIMIT ?
        """,
        (user_id, recent_limit),
    ).fetchall()
    conn.close()
    return {
        "total_sites": site_row["total_sites"],
        "active_sites": site_row["active_sites"],
        "last_checked": site_row["last_checked"],
        "total_appointments": appt_row["total_appointments"],
        "available_appointments": appt_row["available_appointments"],
        "recent_appointments": [_row_to_dict(r) for r in recent],
    }
