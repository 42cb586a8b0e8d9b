"""
CRX: Damage Claims
Per-car claims that credit the owner's profit balance once approved.
"""
import logging
from fastapi import HTTPException

from crx.config import DAMAGE_PENDING, DAMAGE_APPROVED, DAMAGE_REJECTED, ROLE_DEALER
from crx.db import next_id, find_one, money, now_iso, save_uploaded_file, check_images
from crx import users

logger = logging.getLogger(__name__)


def create(db: dict, data: dict, images: list = None, actor: dict = None) -> dict:
    """File a claim against a car. `images` is a list of (filename, bytes)."""
    images = images or []
    car = find_one(db["cars"], "carID", data["carID"])
    if not car:
        raise HTTPException(400, f"Car {data['carID']} does not exist")
    if not find_one(db["users"], "username", car["username"]):
        raise HTTPException(400, f"Owner '{car['username']}' of car {car['carID']} does not exist")
    if actor and actor["role"] == ROLE_DEALER and actor["username"] != car["username"]:
        raise HTTPException(403, "You can only file claims for your own cars")
    check_images(images)
    now = now_iso()
    damage = {
        "damageID": next_id(db["damages"], "damageID"),
        "carID": car["carID"], "username": car["username"], "vinCode": car["vinCode"],
        "comment": data.get("comment") or "", "amount": money(data["amount"]),
        "imageUrls": [save_uploaded_file("damages", name, content) for name, content in images],
        "status": DAMAGE_PENDING, "approverComment": None,
        "createdAt": now, "updatedAt": now,
    }
    db["damages"].append(damage)
    logger.info("Damage claim %s filed for car %s", damage["damageID"], car["carID"])
    return damage

def find_all(db: dict, actor: dict) -> list:
    found = db["damages"]
    if actor["role"] == ROLE_DEALER:
        found = [d for d in found if d["username"] == actor["username"]]
    return sorted(found, key=lambda d: d.get("createdAt", ""), reverse=True)

def find_one_claim(db: dict, damage_id: int, actor: dict = None) -> dict:
    damage = find_one(db["damages"], "damageID", damage_id)
    if not damage:
        raise HTTPException(404, f"Damage {damage_id} not found")
    if actor and actor["role"] == ROLE_DEALER and damage["username"] != actor["username"]:
        raise HTTPException(403, "You can only view your own damage claims")
    return damage

def review(db: dict, damage_id: int, is_approved: bool, approver_comment: str = None) -> dict:
    """Approve or reject a claim. Only a status change moves money."""
    damage = find_one_claim(db, damage_id)
    new_status = DAMAGE_APPROVED if is_approved else DAMAGE_REJECTED
    old_status = damage["status"]
    if new_status != old_status:
        if new_status == DAMAGE_APPROVED:
            users.adjust_balance(db, damage["username"], profit=damage["amount"])
        elif old_status == DAMAGE_APPROVED:
            users.adjust_balance(db, damage["username"], profit=-damage["amount"])
        damage["status"] = new_status
        owner = find_one(db["users"], "username", damage["username"])
        users.push_notification(owner, f"Damage claim #{damage_id} for {damage['vinCode']} was {new_status}")
        logger.info("Damage %s moved %s -> %s", damage_id, old_status, new_status)
    if approver_comment is not None:
        damage["approverComment"] = approver_comment
    damage["updatedAt"] = now_iso()
    return damage
