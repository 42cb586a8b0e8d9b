"""
CRX: Configuration & Constants
Environment variables, feature flags, roles, statuses and integration endpoints.
"""
import os
from pathlib import Path

# ============================================================
# PATHS
# ============================================================
BASE_DIR = Path(__file__).parent.parent.parent
DATA_DIR = Path(os.environ.get("CRX_DATA_DIR", BASE_DIR / "data"))
UPLOAD_DIR = DATA_DIR / "uploads"
UPLOAD_FOLDERS = ("cars", "damages", "notifications", "invoices")

for d in (DATA_DIR, UPLOAD_DIR, *(UPLOAD_DIR / f for f in UPLOAD_FOLDERS)):
    d.mkdir(parents=True, exist_ok=True)

DB_PATH = DATA_DIR / "db.json"

# ============================================================
# FEATURE FLAGS
# ============================================================
PERSIST_DATA = os.environ.get("PERSIST_DATA", "true").lower() == "true"
SCHEDULER_ENABLED = os.environ.get("SCHEDULER_ENABLED", "true").lower() == "true"
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [o.strip() for o in os.environ.get("CORS_ORIGINS", "http://localhost:4200").split(",") if o.strip()]

# ============================================================
# AUTH
# ============================================================
JWT_SECRET = os.environ.get("JWT_SECRET", os.urandom(32).hex())
JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRY_MINUTES = int(os.environ.get("ACCESS_TOKEN_EXPIRY_MINUTES", "60"))
REFRESH_TOKEN_EXPIRY_DAYS = int(os.environ.get("REFRESH_TOKEN_EXPIRY_DAYS", "7"))
REFRESH_COOKIE_NAME = "refresh_token"
COOKIE_SECURE = os.environ.get("COOKIE_SECURE", "false").lower() == "true"
BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "10"))
MIN_PASSWORD_LENGTH = 6

# ============================================================
# ROLES
# ============================================================
ROLE_ADMIN = "admin"
ROLE_MODERATOR = "moderator"
ROLE_ACCOUNTANT = "accountant"
ROLE_DEALER = "dealer"
ROLES = [ROLE_ADMIN, ROLE_MODERATOR, ROLE_ACCOUNTANT, ROLE_DEALER]
DEFAULT_ROLE = ROLE_DEALER
DEFAULT_LEVEL = "A"

# ============================================================
# CARS / DAMAGES
# ============================================================
CAR_STATUSES = ["Purchased", "In Transit", "Green"]
CAR_STATUS_DEFAULT = "Purchased"
CAR_STATUS_GREEN = "Green"

DAMAGE_PENDING = "pending"
DAMAGE_APPROVED = "approved"
DAMAGE_REJECTED = "rejected"

PAYMENT_AUCTION = "auction"
PAYMENT_TRANSPORTATION = "transportation"

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 25
MAX_LIMIT = 100

# ============================================================
# UPLOADS
# ============================================================
MAX_UPLOAD_BYTES = int(os.environ.get("MAX_UPLOAD_MB", "10")) * 1024 * 1024
IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp"}
SHEET_EXTENSIONS = {".xlsx", ".csv"}
MEDIA_TYPES = {".pdf": "application/pdf", ".jpg": "image/jpeg", ".jpeg": "image/jpeg",
               ".png": "image/png", ".gif": "image/gif", ".webp": "image/webp"}

# ============================================================
# BANK OF GEORGIA / NBG
# ============================================================
BOG_CLIENT_ID = os.environ.get("BOG_CLIENT_ID", "")
BOG_CLIENT_SECRET = os.environ.get("BOG_CLIENT_SECRET", "")
BOG_TOKEN_URL = os.environ.get(
    "BOG_TOKEN_URL", "https://account.bog.ge/auth/realms/bog/protocol/openid-connect/token")
BOG_STATEMENT_URL = os.environ.get(
    "BOG_STATEMENT_URL", "https://api.businessonline.ge/api/statement")
BOG_ACCOUNT_NUMBER = os.environ.get("BOG_ACCOUNT_NUMBER", "GE40BG0000000498826082")
BOG_CURRENCY = os.environ.get("BOG_CURRENCY", "USD")
NBG_RATE_URL = os.environ.get(
    "NBG_RATE_URL", "https://nbg.gov.ge/gw/api/ct/monetarypolicy/currencies/en/json/?currencies=USD")
BANK_TIMEOUT_SECONDS = float(os.environ.get("BANK_TIMEOUT_SECONDS", "30"))
BANK_TOKEN_SAFETY_SECONDS = 300
BANK_SYNC_MINUTES = int(os.environ.get("BANK_SYNC_MINUTES", "10"))
BANK_FEE_THRESHOLD = 10000
BANK_FEE_RATE = 0.003
TRANSPORT_KEYWORD = "ტრანსპორტირებ"

# ============================================================
# EMAIL
# ============================================================
SMTP_HOST = os.environ.get("SMTP_HOST", "")
SMTP_PORT = int(os.environ.get("SMTP_PORT", "587"))
SMTP_USER = os.environ.get("SMTP_USER", "")
SMTP_PASS = os.environ.get("SMTP_PASS", "")
SMTP_FROM = os.environ.get("SMTP_FROM", SMTP_USER)
SMTP_TIMEOUT_SECONDS = float(os.environ.get("SMTP_TIMEOUT_SECONDS", "15"))
FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:4200")
RESET_TOKEN_TTL_HOURS = 1

# ============================================================
# INVOICE
# ============================================================
COMPANY_NAME = os.environ.get("COMPANY_NAME", "CRX Auto Import")
COMPANY_DETAILS = os.environ.get("COMPANY_DETAILS", "Tbilisi, Georgia")

VERSION = "1.0.0"
