"""
CRX: Password Reset
Single-use, one-hour reset tokens delivered by email over SMTP.
"""
import secrets, smtplib, logging
from datetime import datetime, timedelta, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from fastapi import HTTPException

from crx.config import (
    SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASS, SMTP_FROM, SMTP_TIMEOUT_SECONDS, FRONTEND_URL,
    RESET_TOKEN_TTL_HOURS, COMPANY_NAME
)
from crx.db import find_one, now_iso
from crx.auth import hash_password

logger = logging.getLogger(__name__)

GENERIC_MESSAGE = "If an account with that email exists, a password reset link has been sent."


class EmailDeliveryError(Exception):
    """SMTP is not configured or the message could not be sent."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)

def _expired(reset: dict) -> bool:
    return datetime.fromisoformat(reset["expiresAt"]) <= _utcnow()

# ============================================================
# EMAIL
# ============================================================
def _build_message(to: str, link: str) -> MIMEMultipart:
    msg = MIMEMultipart("alternative")
    msg["From"] = SMTP_FROM or SMTP_USER
    msg["To"] = to
    msg["Subject"] = f"{COMPANY_NAME}: password reset"
    text = (f"A password reset was requested for your account.\n\n"
            f"Open this link within {RESET_TOKEN_TTL_HOURS} hour(s) to choose a new password:\n{link}\n\n"
            f"If you did not request this, ignore this email.")
    html = (f"<p>A password reset was requested for your account.</p>"
            f"<p><a href=\"{link}\">Reset your password</a> (valid for {RESET_TOKEN_TTL_HOURS} hour(s)).</p>"
            f"<p>If you did not request this, ignore this email.</p>")
    msg.attach(MIMEText(text, "plain"))
    msg.attach(MIMEText(html, "html"))
    return msg

def send_reset_email(to: str, token: str):
    if not (SMTP_HOST and SMTP_USER and SMTP_PASS):
        raise EmailDeliveryError("SMTP is not configured")
    link = f"{FRONTEND_URL.rstrip('/')}/reset-password?token={token}"
    msg = _build_message(to, link)
    try:
        with smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=SMTP_TIMEOUT_SECONDS) as server:
            server.starttls()
            server.login(SMTP_USER, SMTP_PASS)
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        raise EmailDeliveryError(f"Failed to send reset email: {e}")

# ============================================================
# RESET FLOW
# ============================================================
def request_reset(db: dict, email: str) -> dict:
    """Create a token and email it. Unknown addresses get the same answer."""
    email = (email or "").strip().lower()
    user = next((u for u in db["users"] if (u.get("email") or "").lower() == email), None)
    if not user:
        logger.info("Password reset requested for unknown email")
        return {"message": GENERIC_MESSAGE}
    reset = {"email": user["email"], "token": secrets.token_hex(32),
             "expiresAt": (_utcnow() + timedelta(hours=RESET_TOKEN_TTL_HOURS)).isoformat(),
             "used": False, "createdAt": now_iso()}
    try:
        send_reset_email(user["email"], reset["token"])
    except EmailDeliveryError:
        logger.error("Password reset email to user %s failed", user["username"])
        raise
    db["password_resets"].append(reset)
    logger.info("Password reset email sent to user %s", user["username"])
    return {"message": GENERIC_MESSAGE}

def reset_password(db: dict, token: str, new_password: str) -> dict:
    reset = find_one(db["password_resets"], "token", token)
    if not reset or reset["used"] or _expired(reset):
        raise HTTPException(400, "Invalid or expired reset token")
    user = next((u for u in db["users"] if u.get("email") == reset["email"]), None)
    if not user:
        raise HTTPException(400, "Invalid or expired reset token")
    user["password"] = hash_password(new_password)
    user["refreshTokens"] = []
    reset["used"] = True
    logger.info("Password reset completed for user %s", user["username"])
    return {"message": "Password has been reset successfully"}

def purge_expired(db: dict) -> int:
    before = len(db["password_resets"])
    db["password_resets"] = [r for r in db["password_resets"] if not _expired(r)]
    return before - len(db["password_resets"])
