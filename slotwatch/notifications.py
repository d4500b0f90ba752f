import logging
from datetime import datetime
from html import escape

import httpx

from slotwatch.config import CFG, NOTIFY_DISPLAY_LIMIT

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"


def get_telegram_token() -> str:
    return CFG["telegram_token"]


async def send_telegram_message(text: str, chat_id: str | int) -> bool:
    """
    Sends an asynchronous message to a Telegram chat.
    Returns True only when the Bot API accepted the message.
    """
    token = get_telegram_token()
    if not token:
        logger.warning("[NOTIFY] TELEGRAM_BOT_TOKEN is not configured, message dropped")
        return False
    if not chat_id:
        logger.warning("[NOTIFY] No chat id, message dropped")
        return False

    url = f"{TELEGRAM_API}/bot{token}/sendMessage"
    payload = {
        "chat_id": chat_id,
        "text": text,
        "parse_mode": "HTML",
        "disable_web_page_preview": True,
    }

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.post(url, json=payload)
            if response.status_code == 200:
                logger.info("[NOTIFY] Telegram message sent to %s: %s...", chat_id, text[:50])
                return True
            logger.error("[NOTIFY] Telegram API error: %s - %s", response.status_code, response.text)
            return False
    except httpx.HTTPError as e:
        logger.error("[NOTIFY] Telegram send failed: %s", e)
        return False


def _format_date(value) -> str:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            return value
    return value.strftime("%d.%m.%Y")


def build_appointment_message(site: dict, appointments: list[dict]) -> str:
    count = len(appointments)
    plural = "" if count == 1 else "s"
    lines = [
        "🔔 <b>New Appointments Available!</b>",
        f"Found {count} new appointment{plural} for your monitored website.",
        "",
        f"🌐 {escape(site['url'])}",
        f"📋 Type: {escape(str(site.get('site_type', 'generic')).upper())} | 🆔 Site #{site['id']}",
        "",
    ]

    for index, appt in enumerate(appointments[:NOTIFY_DISPLAY_LIMIT], start=1):
        details = appt.get("appointment_details") or {}
        time_text = details.get("time") or "Not specified"
        detail_text = details.get("details") or "No additional details"
        lines.append(
            f"📅 <b>{index}.</b> {_format_date(appt['appointment_date'])} ⏰ {escape(time_text)}\n"
            f"    {escape(detail_text)}"
        )

    if count > NOTIFY_DISPLAY_LIMIT:
        lines.append(f"\n... and {count - NOTIFY_DISPLAY_LIMIT} more appointments available!")

    return "\n".join(lines)


async def send_appointment_notification(user: dict, site: dict, appointments: list[dict]) -> bool:
    if not appointments:
        return False
    text = build_appointment_message(site, appointments)
    ok = await send_telegram_message(text, user["user_id"])
    if ok:
        logger.info("[NOTIFY] Appointment notification delivered to %s for site #%s", user["user_id"], site["id"])
    return ok


def build_summary_message(stats: dict, kind: str) -> str:
    title = "📊 <b>Daily Monitoring Summary</b>" if kind == "daily" else "📈 <b>Weekly Monitoring Summary</b>"
    lines = [
        title,
        "",
        f"🌐 Sites: {stats['total_sites']} ({stats['active_sites']} active)",
        f"📅 Appointments found: {stats['total_appointments']}",
        f"🎯 Still available: {stats['available_appointments']}",
    ]
    recent = stats.get("recent_appointments") or []
    if recent:
        lines.append("")
        lines.append("<b>Recent:</b>")
        for index, appt in enumerate(recent, start=1):
            lines.append(f"{index}. {_format_date(appt['appointment_date'])}")
    elif stats["active_sites"] == 0:
        lines.append("")
        lines.append("No active sites.")
    return "\n".join(lines)


async def send_summary(user: dict, stats: dict, kind: str = "daily") -> bool:
    """Günlük/haftalık özet; kullanıcının tercihi kapalıysa gönderilmez."""
    if kind not in ("daily", "weekly"):
        raise ValueError(f"Unknown summary kind: {kind}")
    prefs = user.get("notification_preferences") or {}
    if not prefs.get(f"{kind}_summary"):
        return False
    return await send_telegram_message(build_summary_message(stats, kind), user["user_id"])


async def send_system_status(summary: dict) -> bool:
    chat_id = CFG["admin_chat_id"]
    if not chat_id:
        return False
    text = (
        "🤖 <b>System Status</b>\n"
        f"📊 Sites checked: {summary['total_sites']}\n"
        f"✅ Successful: {summary['success_count']}\n"
        f"❌ Failed: {summary['error_count']}\n"
        f"⏭ Skipped: {summary.get('skipped_count', 0)}\n"
        f"🎯 New appointments: {summary['appointments_found']}\n"
        f"🕒 {datetime.now().strftime('%d.%m.%Y %H:%M')}"
    )
    return await send_telegram_message(text, chat_id)
