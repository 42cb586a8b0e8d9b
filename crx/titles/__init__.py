"""
CRX: Titles
Vehicle title document types, maintained by hand or bulk-imported from sheets.
"""
from fastapi import HTTPException

from crx.db import next_id, find_one, now_iso


def create(db: dict, data: dict) -> dict:
    now = now_iso()
    title = {"titleID": next_id(db["titles"], "titleID"), "name": data["name"].strip(),
             "description": (data.get("description") or "").strip(),
             "createdAt": now, "updatedAt": now}
    db["titles"].append(title)
    return title

def create_bulk(db: dict, items: list) -> list:
    return [create(db, item) for item in items if (item.get("name") or "").strip()]

def find_all(db: dict) -> list:
    return sorted(db["titles"], key=lambda t: t["titleID"])

def find_one_title(db: dict, title_id: int) -> dict:
    title = find_one(db["titles"], "titleID", title_id)
    if not title:
        raise HTTPException(404, f"Title {title_id} not found")
    return title

def update(db: dict, title_id: int, changes: dict) -> dict:
    title = find_one_title(db, title_id)
    for field in ("name", "description"):
        if changes.get(field) is not None:
            title[field] = changes[field].strip()
    title["updatedAt"] = now_iso()
    return title
