"""Ortam değişkenlerinden yapılandırma — tek CFG sözlüğü."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).parent.parent

# ─── Sabitler ───
RECHECK_WINDOW_MINUTES = 5
RETENTION_DAYS = 7
MIN_CHECK_INTERVAL = 5
MAX_CHECK_INTERVAL = 60
DEFAULT_CHECK_INTERVAL = 30
NOTIFY_DISPLAY_LIMIT = 5

SITE_TYPES = ("generic", "government")


def _env_bool(key: str, default: str) -> bool:
    return os.getenv(key, default).strip().lower() in {"1", "true", "yes", "on"}


def _build_default_cfg():
    """Ortam değişkenlerinden varsayılan yapılandırmayı oluştur."""
    return {
        "db_path": os.getenv("DB_PATH", str(BASE_DIR / "data" / "slotwatch.db")),
        "encryption_key": os.getenv("ENCRYPTION_KEY", ""),
        "telegram_token": os.getenv("TELEGRAM_BOT_TOKEN", ""),
        "admin_chat_id": os.getenv("TELEGRAM_ADMIN_CHAT_ID", ""),
        "headless": _env_bool("HEADLESS", "true"),
        "nav_timeout_ms": int(os.getenv("NAV_TIMEOUT_MS", "30000")),
        "selector_timeout_ms": int(os.getenv("SELECTOR_TIMEOUT_MS", "3000")),
        "settle_timeout_ms": int(os.getenv("SETTLE_TIMEOUT_MS", "15000")),
        "max_concurrent_checks": max(1, int(os.getenv("MAX_CONCURRENT_CHECKS", "4"))),
        "batch_every_minutes": max(1, int(os.getenv("BATCH_EVERY_MINUTES", "5"))),
        "notify_retry_every_minutes": max(1, int(os.getenv("NOTIFY_RETRY_EVERY_MINUTES", "30"))),
        "summary_hour": int(os.getenv("SUMMARY_HOUR", "9")),
        "scheduler_enabled": _env_bool("SCHEDULER_ENABLED", "true"),
        "debug": _env_bool("DEBUG", "false"),
        "json_logs": _env_bool("JSON_LOGS", "false"),
        "log_file": os.getenv("LOG_FILE", ""),
        "host": os.getenv("HOST", "127.0.0.1"),
        "port": int(os.getenv("PORT", "8000")),
    }


CFG = _build_default_cfg()
