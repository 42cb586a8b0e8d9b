"""
CRX: Notification Banner
A single site-wide banner (on/off, message, optional image).
Personal per-user notifications live in crx.users.
"""
from fastapi import HTTPException

from crx.db import now_iso, save_uploaded_file, delete_uploaded_file, check_images

TRUTHY = {"true", "1", "yes", "on"}


def _banner(db: dict):
    return db["notifications"][0] if db["notifications"] else None

def _upsert(db: dict) -> dict:
    banner = _banner(db)
    if banner is None:
        banner = {"isOn": False, "message": "", "image": None, "updatedAt": now_iso()}
        db["notifications"].append(banner)
    return banner

def get_current(db: dict):
    return _banner(db)

def update(db: dict, is_on, message) -> dict:
    """Form fields arrive as strings; both are required."""
    if is_on is None or message is None:
        raise HTTPException(400, "Both 'isOn' and 'message' are required")
    banner = _upsert(db)
    banner["isOn"] = is_on if isinstance(is_on, bool) else str(is_on).strip().lower() in TRUTHY
    banner["message"] = str(message)
    banner["updatedAt"] = now_iso()
    return banner

def upload_image(db: dict, filename: str, content: bytes) -> dict:
    check_images([(filename, content)])
    banner = _upsert(db)
    if banner.get("image"):
        delete_uploaded_file(banner["image"])
    banner["image"] = save_uploaded_file("notifications", filename, content)
    banner["updatedAt"] = now_iso()
    return banner

def clear_image(db: dict) -> dict:
    banner = _banner(db)
    if banner is None:
        raise HTTPException(404, "No notification configured")
    if banner.get("image"):
        delete_uploaded_file(banner["image"])
    banner["image"] = None
    banner["updatedAt"] = now_iso()
    return banner
