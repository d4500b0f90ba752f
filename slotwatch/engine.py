"""Monitoring engine: batch orchestration, per-site checks, dedup and notification.

Every per-site failure is turned into a ``success=False`` result at the
check_site boundary so one broken site never takes the batch down. Storage
errors are the exception: they propagate, and run_batch counts them as an
error for that site while the rest of the batch settles normally.
"""

import asyncio
import logging
import sqlite3
from datetime import datetime, timedelta

from slotwatch import database
from slotwatch.check_guard import CheckGuard
from slotwatch.config import CFG, RETENTION_DAYS
from slotwatch.credentials import DecryptionError, decrypt_credentials
from slotwatch.dates import normalize_appointment_date
from slotwatch.notifications import send_appointment_notification, send_summary
from slotwatch.scraper import SiteScraper
from slotwatch.session_manager import BrowserSessionManager

logger = logging.getLogger(__name__)

IN_PROGRESS_MESSAGE = "Check already in progress"


def _failed(message: str, error: str | None = None) -> dict:
    result = {
        "success": False,
        "appointments": [],
        "appointments_found": 0,
        "new_appointments": 0,
        "message": message,
    }
    if error:
        result["error"] = error
    return result


class MonitorEngine:
    def __init__(self, *, sessions=None, scraper=None, guard=None, decrypt=None, notifier=None, summary_sender=None, max_concurrent: int | None = None):
        self.sessions = sessions or BrowserSessionManager()
        self.scraper = scraper or SiteScraper(self.sessions)
        self.guard = guard or CheckGuard()
        self.decrypt = decrypt or decrypt_credentials
        self.notifier = notifier or send_appointment_notification
        self.summary_sender = summary_sender or send_summary
        self.max_concurrent = max_concurrent or CFG["max_concurrent_checks"]

    # ─── Single site ───

    async def check_site(self, site: dict, now: datetime | None = None, *, limiter: asyncio.Semaphore | None = None) -> dict:
        now = now or datetime.now()
        with self.guard.hold(site["id"]) as acquired:
            if not acquired:
                result = _failed(IN_PROGRESS_MESSAGE)
                result["skipped"] = True
                return result
            if limiter is None:
                return await self._run_check(site, now)
            async with limiter:
                return await self._run_check(site, now)

    async def _run_check(self, site: dict, now: datetime) -> dict:
        site_id = site["id"]
        logger.info("[CHECK] Checking site #%s: %s", site_id, site["url"])
        try:
            credentials = self.decrypt(site["encrypted_credentials"])
            result = await self.scraper.check_appointments(site, credentials)
            database.update_site(site_id, last_checked=now)

            slots = result.get("appointments") or []
            if not result.get("success") or not slots:
                logger.info("[CHECK] Site #%s: %s", site_id, result.get("message") or "No appointments found")
                failed = _failed(result.get("message") or "No appointments found", result.get("error"))
                failed["success"] = bool(result.get("success"))
                return failed

            new_appointments = self._store_slots(site_id, slots, now)
            if new_appointments:
                logger.info("[CHECK] Created %d new appointment records for site #%s", len(new_appointments), site_id)
                await self._notify_new(site, new_appointments)

            return {
                "success": True,
                "appointments": slots,
                "appointments_found": len(slots),
                "new_appointments": len(new_appointments),
                "message": f"Found {len(slots)} appointments ({len(new_appointments)} new)",
            }
        except sqlite3.Error:
            raise
        except DecryptionError as e:
            logger.error("[CHECK] Site #%s: credentials could not be decrypted (%s)", site_id, e)
            return _failed("Could not decrypt site credentials", str(e))
        except Exception as e:
            logger.exception("[CHECK] Error checking site #%s", site_id)
            return _failed("Error occurred during check", str(e))

    def _store_slots(self, site_id: int, slots: list[dict], now: datetime) -> list[dict]:
        created_rows = []
        for slot in slots:
            raw_date = slot.get("date") or ""
            details = {
                "time": slot.get("time") or "",
                "details": slot.get("details") or "",
                "original_text": raw_date,
            }
            appointment_date = normalize_appointment_date(raw_date, now)
            row, created = database.find_or_create_appointment(site_id, appointment_date, details, now)
            if created:
                created_rows.append(row)
        return created_rows

    async def _deliver(self, user: dict, site: dict, appointments: list[dict]) -> bool:
        try:
            delivered = await self.notifier(user, site, appointments)
        except Exception:
            logger.exception("[NOTIFY] Delivery to %s failed for site #%s", user["user_id"], site["id"])
            return False
        if delivered:
            database.mark_appointments_notified([a["id"] for a in appointments])
        else:
            logger.warning(
                "[NOTIFY] Delivery to %s not confirmed; %d appointments left for retry",
                user["user_id"], len(appointments),
            )
        return bool(delivered)

    def _notifiable_owner(self, site: dict) -> dict | None:
        """The site's owner if they are active and want immediate notifications."""
        user = database.get_user(site["user_id"])
        if not user:
            logger.warning("[NOTIFY] Site #%s has no owner record, skipping notification", site["id"])
            return None
        if not user["is_active"]:
            logger.debug("[NOTIFY] User %s is inactive", user["user_id"])
            return None
        if not user["notification_preferences"].get("immediate"):
            logger.debug("[NOTIFY] User %s has immediate notifications off", user["user_id"])
            return None
        return user

    async def _notify_new(self, site: dict, appointments: list[dict]) -> bool:
        user = self._notifiable_owner(site)
        if not user:
            return False
        return await self._deliver(user, site, appointments)

    # ─── Batch ───

    async def run_batch(self, now: datetime | None = None) -> dict:
        now = now or datetime.now()
        sites = database.get_due_sites(now)
        logger.info("[BATCH] Found %d sites to check", len(sites))

        limiter = asyncio.Semaphore(self.max_concurrent)
        results = await asyncio.gather(
            *(self.check_site(site, now, limiter=limiter) for site in sites),
            return_exceptions=True,
        )

        success_count = error_count = skipped_count = appointments_found = 0
        for site, result in zip(sites, results):
            if isinstance(result, BaseException):
                error_count += 1
                logger.error("[BATCH] Site #%s raised: %r", site["id"], result)
            elif result.get("skipped"):
                skipped_count += 1
                logger.info("[BATCH] Site #%s skipped: %s", site["id"], result["message"])
            elif result.get("success"):
                success_count += 1
                appointments_found += result.get("new_appointments", 0)
            else:
                error_count += 1

        summary = {
            "total_sites": len(sites),
            "success_count": success_count,
            "error_count": error_count,
            "skipped_count": skipped_count,
            "appointments_found": appointments_found,
        }
        logger.info(
            "[BATCH] Completed: %d successful, %d errors, %d skipped, %d new appointments",
            success_count, error_count, skipped_count, appointments_found,
        )
        return summary

    # ─── Maintenance ───

    def get_appointment_stats(self, user_id: str) -> dict:
        return database.get_appointment_stats(user_id)

    def cleanup_old_appointments(self, now: datetime | None = None) -> int:
        now = now or datetime.now()
        deleted = database.delete_appointments_before(now - timedelta(days=RETENTION_DAYS))
        logger.info("[SWEEP] Cleaned up %d old appointments", deleted)
        return deleted

    def mark_appointment_unavailable(self, appointment_id: int) -> bool:
        updated = database.mark_appointment_unavailable(appointment_id)
        if updated:
            logger.info("[SWEEP] Marked appointment #%s as unavailable", appointment_id)
        return updated

    async def retry_pending_notifications(self, now: datetime | None = None) -> dict:
        """Re-send still-available appointments whose notification was never confirmed.

        Each site is retried under the check guard, so a site whose check is
        still delivering its own new appointments is left for the next sweep.
        """
        now = now or datetime.now()
        cutoff = (now - timedelta(days=RETENTION_DAYS)).isoformat()

        pending_sites = sorted({appt["site_id"] for appt in database.get_unnotified_appointments()})

        attempted = delivered = 0
        for site_id in pending_sites:
            with self.guard.hold(site_id) as acquired:
                if not acquired:
                    continue
                site = database.get_site(site_id)
                if not site or not site["is_active"]:
                    continue
                user = self._notifiable_owner(site)
                if not user:
                    continue
                # Guard alındıktan sonra yeniden oku: bu arada teslim edilenler düşer
                appointments = [
                    a for a in database.get_unnotified_appointments(site_id)
                    if a["appointment_date"] >= cutoff
                ]
                if not appointments:
                    continue
                attempted += 1
                if await self._deliver(user, site, appointments):
                    delivered += len(appointments)

        if attempted:
            logger.info("[NOTIFY] Retry sweep: %d sites attempted, %d appointments delivered", attempted, delivered)
        return {"sites_attempted": attempted, "appointments_delivered": delivered}

    async def send_summaries(self, kind: str = "daily") -> int:
        sent = 0
        for user in database.get_users_with_preference(f"{kind}_summary"):
            stats = database.get_appointment_stats(user["user_id"])
            if await self.summary_sender(user, stats, kind):
                sent += 1
        logger.info("[NOTIFY] Sent %d %s summaries", sent, kind)
        return sent

    async def close(self):
        await self.sessions.close()
