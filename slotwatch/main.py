"""FastAPI uygulaması — izleme motorunu komut katmanına açan REST yüzeyi."""

import sqlite3
from datetime import datetime
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from slotwatch.config import CFG, MAX_CHECK_INTERVAL, MIN_CHECK_INTERVAL, SITE_TYPES
from slotwatch.credentials import encrypt_credentials
from slotwatch.database import (
    create_site,
    create_user,
    deactivate_site,
    get_site,
    get_sites_for_user,
    get_user,
    init_db,
    update_user_preferences,
)
from slotwatch.engine import MonitorEngine
from slotwatch.logging_utils import configure_logging
from slotwatch.scheduler import start_scheduler, stop_scheduler

app = FastAPI(title="SlotWatch", version="1.0.0")

engine = MonitorEngine()


# ─── Startup / Shutdown ───
@app.on_event("startup")
async def on_startup():
    configure_logging(debug=CFG["debug"], json_logs=CFG["json_logs"], log_file=CFG["log_file"])
    init_db()
    if CFG["scheduler_enabled"]:
        start_scheduler(engine)


@app.on_event("shutdown")
async def on_shutdown():
    stop_scheduler()
    await engine.close()


# ─── Pydantic models ───
class RunAt(BaseModel):
    now: Optional[datetime] = None


class UserCreate(BaseModel):
    user_id: str
    username: str
    immediate: bool = True
    daily_summary: bool = False
    weekly_summary: bool = False


class PreferencesUpdate(BaseModel):
    immediate: Optional[bool] = None
    daily_summary: Optional[bool] = None
    weekly_summary: Optional[bool] = None


class SiteCreate(BaseModel):
    user_id: str
    url: str
    username: str
    password: str
    site_type: str = "generic"
    check_interval: int = Field(30, ge=MIN_CHECK_INTERVAL, le=MAX_CHECK_INTERVAL)


def _public_site(site: dict) -> dict:
    # Şifreli blob dışarı verilmez
    return {k: v for k, v in site.items() if k != "encrypted_credentials"}


# ─── REST: Kullanıcılar ───
@app.post("/api/users", status_code=201)
def register_user(data: UserCreate):
    if get_user(data.user_id):
        raise HTTPException(400, "User is already registered.")
    prefs = {
        "immediate": data.immediate,
        "daily_summary": data.daily_summary,
        "weekly_summary": data.weekly_summary,
    }
    return create_user(data.user_id, data.username, prefs)


@app.put("/api/users/{user_id}/preferences")
def edit_preferences(user_id: str, data: PreferencesUpdate):
    user = update_user_preferences(user_id, **data.model_dump(exclude_none=True))
    if not user:
        raise HTTPException(404, "User not found.")
    return user


@app.get("/api/users/{user_id}/stats")
def user_stats(user_id: str):
    if not get_user(user_id):
        raise HTTPException(404, "User not found.")
    return engine.get_appointment_stats(user_id)


@app.get("/api/users/{user_id}/sites")
def list_sites(user_id: str):
    return [_public_site(s) for s in get_sites_for_user(user_id)]


# ─── REST: İzlenen siteler ───
@app.post("/api/sites", status_code=201)
def add_site(data: SiteCreate):
    if not get_user(data.user_id):
        raise HTTPException(404, "User not found.")
    if data.site_type not in SITE_TYPES:
        raise HTTPException(400, f"Unsupported site type: {data.site_type}")
    blob = encrypt_credentials({"username": data.username, "password": data.password})
    try:
        site = create_site(data.user_id, data.url, blob, data.site_type, data.check_interval)
    except sqlite3.IntegrityError:
        raise HTTPException(400, "This URL is already being monitored.")
    return _public_site(site)


@app.delete("/api/sites/{site_id}")
def remove_site(site_id: int):
    if not deactivate_site(site_id):
        raise HTTPException(404, "Site not found.")
    return {"ok": True}


@app.post("/api/sites/{site_id}/check")
async def check_now(site_id: int):
    site = get_site(site_id)
    if not site:
        raise HTTPException(404, "Site not found.")
    result = await engine.check_site(site)
    if result.get("skipped"):
        raise HTTPException(409, result["message"])
    return result


# ─── REST: Motor işlemleri ───
@app.post("/api/batch")
async def run_batch(data: Optional[RunAt] = None):
    return await engine.run_batch(data.now if data else None)


@app.post("/api/cleanup")
def cleanup(data: Optional[RunAt] = None):
    deleted = engine.cleanup_old_appointments(data.now if data else None)
    return {"deleted": deleted}


@app.post("/api/appointments/{appointment_id}/unavailable")
def appointment_unavailable(appointment_id: int):
    if not engine.mark_appointment_unavailable(appointment_id):
        raise HTTPException(404, "Appointment not found.")
    return {"ok": True}


# ─── REST: Session durumu ───
@app.get("/api/session")
def session_status():
    status = engine.sessions.get_status()
    status["checks_in_progress"] = sorted(engine.guard.active_ids())
    return status


def run():
    uvicorn.run("slotwatch.main:app", host=CFG["host"], port=CFG["port"])


if __name__ == "__main__":
    run()
