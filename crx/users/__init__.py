"""
CRX: User Directory
Account records, roles, dealer levels, balances and personal notifications.
"""
import logging
from fastapi import HTTPException

from crx.config import ROLES, DEFAULT_ROLE, DEFAULT_LEVEL, ROLE_DEALER
from crx.db import next_id, find_one, paginate, money, now_iso, _n
from crx.auth import hash_password

logger = logging.getLogger(__name__)

_PRIVATE_FIELDS = ("password", "refreshTokens")

def public(user: dict) -> dict:
    """User record without credentials."""
    return {k: v for k, v in user.items() if k not in _PRIVATE_FIELDS}

# ============================================================
# LOOKUPS
# ============================================================
def find_by_id(db: dict, user_id: int) -> dict:
    user = find_one(db["users"], "userID", user_id)
    if not user:
        raise HTTPException(404, f"User {user_id} not found")
    return user

def find_by_username(db: dict, username: str) -> dict:
    user = find_one(db["users"], "username", username)
    if not user:
        raise HTTPException(404, f"User {username} not found")
    return user

def find_by_email(db: dict, email: str) -> dict:
    email = (email or "").lower()
    for u in db["users"]:
        if (u.get("email") or "").lower() == email:
            return u
    raise HTTPException(404, "User not found")

def _email_taken(db: dict, email: str, exclude_id: int = None) -> bool:
    email = (email or "").lower()
    return any((u.get("email") or "").lower() == email and u["userID"] != exclude_id for u in db["users"])

def _check_role(role: str):
    if role not in ROLES:
        raise HTTPException(400, f"Invalid role. Must be one of: {ROLES}")

# ============================================================
# CREATE / UPDATE
# ============================================================
def create(db: dict, data: dict) -> dict:
    users = db["users"]
    if find_one(users, "username", data["username"]):
        raise HTTPException(409, "Username already exists")
    if _email_taken(db, data["email"]):
        raise HTTPException(409, "Email already exists")
    user_id = data.get("userID")
    if user_id is not None and find_one(users, "userID", user_id):
        raise HTTPException(409, f"User ID {user_id} already exists")
    role = data.get("role") or DEFAULT_ROLE
    _check_role(role)
    user = {
        "userID": user_id or next_id(users, "userID"),
        "username": data["username"],
        "firstname": data.get("firstname", ""),
        "lastname": data.get("lastname", ""),
        "password": hash_password(data["password"]),
        "email": data["email"],
        "role": role,
        "level": data.get("level") or DEFAULT_LEVEL,
        "isActive": data.get("isActive", True),
        "totalBalance": money(max(_n(data.get("totalBalance")), 0)),
        "profitBalance": money(max(_n(data.get("profitBalance")), 0)),
        "phoneNumber": data.get("phoneNumber"),
        "personalManager": data.get("personalManager"),
        "personalExpert": data.get("personalExpert"),
        "notifications": [],
        "refreshTokens": [],
        "createdAt": now_iso(),
    }
    users.append(user)
    logger.info("Created user %s (%s)", user["username"], role)
    return user

def update(db: dict, user_id: int, changes: dict) -> dict:
    user = find_by_id(db, user_id)
    if "email" in changes and _email_taken(db, changes["email"], exclude_id=user_id):
        raise HTTPException(409, "Email already exists")
    for field, value in changes.items():
        if field == "password":
            user["password"] = hash_password(value)
        elif field in ("totalBalance", "profitBalance"):
            user[field] = money(value)
        else:
            user[field] = value
    return user

def update_role(db: dict, user_id: int, role: str) -> dict:
    _check_role(role)
    user = find_by_id(db, user_id)
    user["role"] = role
    logger.info("User %s role set to %s", user["username"], role)
    return user

def adjust_balance(db: dict, username: str, total: float = 0, profit: float = 0) -> dict:
    """Add signed deltas to a user's balances, rounded to cents."""
    user = find_by_username(db, username)
    if total:
        user["totalBalance"] = money(_n(user.get("totalBalance")) + total)
    if profit:
        user["profitBalance"] = money(_n(user.get("profitBalance")) + profit)
    return user

# ============================================================
# LISTING
# ============================================================
def _matches(user: dict, role, level, search) -> bool:
    if role and user.get("role") != role:
        return False
    if level and user.get("level") != level:
        return False
    if search:
        s = search.lower()
        hay = (user.get("username"), user.get("firstname"), user.get("lastname"))
        if not any(s in (h or "").lower() for h in hay):
            return False
    return True

def find_all(db: dict, page=None, limit=None, role=None, level=None, search=None) -> dict:
    found = [u for u in db["users"] if _matches(u, role, level, search)]
    found.sort(key=lambda u: u.get("createdAt", ""), reverse=True)
    result = paginate(found, page, limit, "users")
    result["users"] = [public(u) for u in result["users"]]
    return result

def find_dealers(db: dict, page=None, limit=None, level=None, search=None) -> dict:
    return find_all(db, page, limit, role=ROLE_DEALER, level=level, search=search)

# ============================================================
# PERSONAL NOTIFICATIONS
# ============================================================
def push_notification(user: dict, message: str) -> dict:
    notes = user.setdefault("notifications", [])
    note = {"id": next_id(notes, "id"), "isRead": False, "message": message,
            "createTime": now_iso(), "seenTime": None}
    notes.append(note)
    return note

def list_notifications(db: dict, user_id: int) -> list:
    user = find_by_id(db, user_id)
    return sorted(user.get("notifications", []), key=lambda n: n["id"], reverse=True)

def mark_notification_read(db: dict, user_id: int, note_id: int) -> dict:
    user = find_by_id(db, user_id)
    note = find_one(user.get("notifications", []), "id", note_id)
    if not note:
        raise HTTPException(404, "Notification not found")
    if not note["isRead"]:
        note["isRead"] = True
        note["seenTime"] = now_iso()
    return note
