"""
CRX: Authentication & RBAC
Password hashing, access/refresh JWTs, token rotation and blacklist, role guards.
"""
import uuid, logging
from datetime import datetime, timedelta, timezone
from fastapi import Request, HTTPException

from crx.config import (
    JWT_SECRET, JWT_ALGORITHM, ACCESS_TOKEN_EXPIRY_MINUTES, REFRESH_TOKEN_EXPIRY_DAYS,
    BCRYPT_ROUNDS, MIN_PASSWORD_LENGTH
)
from crx.db import get_db, find_one

logger = logging.getLogger(__name__)

# ============================================================
# PASSWORD HASHING
# ============================================================
import bcrypt

def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode()

def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return bcrypt.checkpw(password.encode(), hashed.encode())

# ============================================================
# JWT
# ============================================================
import jwt as pyjwt

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)

def _expired(iso: str) -> bool:
    try:
        return datetime.fromisoformat(iso) <= _utcnow()
    except (TypeError, ValueError):
        return True

def create_jwt(user: dict, token_type: str = "access") -> str:
    now = _utcnow()
    if token_type == "refresh":
        exp = now + timedelta(days=REFRESH_TOKEN_EXPIRY_DAYS)
    else:
        exp = now + timedelta(minutes=ACCESS_TOKEN_EXPIRY_MINUTES)
    payload = {
        "sub": str(user["userID"]), "username": user["username"],
        "role": user["role"], "level": user.get("level"),
        "type": token_type, "exp": exp, "iat": now
    }
    if token_type == "refresh":
        payload["jti"] = uuid.uuid4().hex
    return pyjwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)

def decode_jwt(token: str, token_type: str = "access") -> dict:
    try:
        payload = pyjwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except pyjwt.ExpiredSignatureError:
        raise HTTPException(401, "Token expired")
    except pyjwt.InvalidTokenError:
        raise HTTPException(401, "Invalid token")
    if payload.get("type") != token_type:
        raise HTTPException(401, "Invalid token type")
    return payload

def _claims(payload: dict) -> dict:
    return {"userID": int(payload["sub"]), "username": payload["username"],
            "role": payload["role"], "level": payload.get("level")}

# ============================================================
# SESSIONS
# ============================================================
def public_profile(user: dict) -> dict:
    return {"id": user["userID"], "username": user["username"], "email": user.get("email"),
            "role": user["role"], "firstname": user.get("firstname"), "lastname": user.get("lastname"),
            "profitBalance": user.get("profitBalance", 0), "totalBalance": user.get("totalBalance", 0),
            "level": user.get("level")}

def _issue_refresh(user: dict) -> str:
    token = create_jwt(user, "refresh")
    exp = _utcnow() + timedelta(days=REFRESH_TOKEN_EXPIRY_DAYS)
    user.setdefault("refreshTokens", []).append({"token": token, "expiresAt": exp.isoformat()})
    return token

def login(db: dict, username: str, password: str) -> tuple:
    """Verify credentials. Returns (access_token, refresh_token, profile)."""
    user = find_one(db["users"], "username", username)
    if not user or not verify_password(password, user.get("password", "")):
        logger.info("Failed login for %s", username)
        raise HTTPException(401, "Invalid credentials")
    if not user.get("isActive", True):
        raise HTTPException(401, "Account is deactivated")
    refresh = _issue_refresh(user)
    logger.info("User %s logged in", username)
    return create_jwt(user), refresh, public_profile(user)

def refresh_session(db: dict, refresh_token: str) -> tuple:
    """Rotate a stored refresh token. Returns (access_token, new_refresh_token)."""
    if not refresh_token:
        raise HTTPException(401, "Refresh token missing")
    payload = decode_jwt(refresh_token, "refresh")
    user = find_one(db["users"], "userID", int(payload["sub"]))
    stored = user and [t for t in user.get("refreshTokens", []) if t["token"] == refresh_token]
    if not stored or not user.get("isActive", True):
        raise HTTPException(401, "Invalid refresh token")
    user["refreshTokens"] = [t for t in user["refreshTokens"] if t["token"] != refresh_token]
    return create_jwt(user), _issue_refresh(user)

def logout(db: dict, access_token: str = None, refresh_token: str = None):
    """Drop the refresh token and blacklist the access token until it expires."""
    if refresh_token:
        for user in db["users"]:
            tokens = user.get("refreshTokens", [])
            kept = [t for t in tokens if t["token"] != refresh_token]
            if len(kept) != len(tokens):
                user["refreshTokens"] = kept
    if access_token:
        try:
            payload = pyjwt.decode(access_token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
        except pyjwt.InvalidTokenError:
            return
        exp = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
        db["token_blacklist"].append({"token": access_token, "expiresAt": exp.isoformat()})

def change_password(db: dict, user_id: int, current: str, new: str):
    user = find_one(db["users"], "userID", user_id)
    if not user:
        raise HTTPException(404, "User not found")
    if not verify_password(current, user.get("password", "")):
        raise HTTPException(400, "Current password is incorrect")
    if len(new) < MIN_PASSWORD_LENGTH:
        raise HTTPException(400, f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    user["password"] = hash_password(new)
    user["refreshTokens"] = []

def cleanup_expired_tokens(db: dict) -> int:
    """Drop expired refresh tokens and blacklist entries. Returns how many were removed."""
    removed = 0
    for user in db["users"]:
        tokens = user.get("refreshTokens", [])
        kept = [t for t in tokens if not _expired(t.get("expiresAt"))]
        removed += len(tokens) - len(kept)
        user["refreshTokens"] = kept
    before = len(db["token_blacklist"])
    db["token_blacklist"] = [t for t in db["token_blacklist"] if not _expired(t.get("expiresAt"))]
    removed += before - len(db["token_blacklist"])
    return removed

# ============================================================
# REQUEST HELPERS
# ============================================================
def bearer_token(request: Request) -> str:
    auth = request.headers.get("Authorization", "")
    return auth[7:] if auth.startswith("Bearer ") else ""

async def get_current_user(request: Request) -> dict:
    """Dependency: require a valid, non-revoked access token for an active user.
    Role and level come from the stored user, not the token."""
    token = bearer_token(request)
    if not token:
        raise HTTPException(401, "Authentication required")
    payload = decode_jwt(token, "access")
    db = get_db()
    if find_one(db["token_blacklist"], "token", token):
        raise HTTPException(401, "Token has been revoked")
    user = find_one(db["users"], "userID", int(payload["sub"]))
    if not user or not user.get("isActive", True):
        raise HTTPException(401, "Account not found or deactivated")
    return _claims({"sub": user["userID"], "username": user["username"],
                    "role": user["role"], "level": user.get("level")})

# ============================================================
# RBAC
# ============================================================
def require_roles(*roles: str):
    """Dependency: require one of the given roles."""
    async def checker(request: Request):
        user = await get_current_user(request)
        if user["role"] not in roles:
            raise HTTPException(403, f"Requires role: {', '.join(roles)}. Your role: {user['role']}")
        return user
    return checker
