"""
CRX: Database Layer
File-based JSON document store with PostgreSQL upgrade path, plus local file storage.
"""
import os, json, math, uuid, logging
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from pathlib import Path

from fastapi import HTTPException

from crx.config import (
    DB_PATH, UPLOAD_DIR, UPLOAD_FOLDERS, PERSIST_DATA, MAX_LIMIT, DEFAULT_LIMIT, DEFAULT_PAGE, IMAGE_EXTENSIONS
)

logger = logging.getLogger(__name__)

# ============================================================
# DATABASE URL (PostgreSQL optional, file-based default)
# ============================================================
DATABASE_URL = os.environ.get("DATABASE_URL")

# ============================================================
# EMPTY DB SCHEMA
# ============================================================
EMPTY_DB = {
    "users": [], "cars": [], "damages": [], "prices": [], "dealer_types": [],
    "titles": [], "file_entries": [], "notifications": [], "password_resets": [],
    "processed_entries": [], "token_blacklist": [], "counters": []
}

def _fresh_db():
    """Return a fresh empty database."""
    return json.loads(json.dumps(EMPTY_DB))

# ============================================================
# FILE BACKEND
# ============================================================
_db_cache = None

def _file_load():
    global _db_cache
    if DB_PATH.exists() and PERSIST_DATA:
        try:
            with open(DB_PATH) as f:
                _db_cache = json.load(f)
            # Ensure all collections exist
            for k, v in EMPTY_DB.items():
                if k not in _db_cache:
                    _db_cache[k] = type(v)()
        except (json.JSONDecodeError, IOError) as e:
            logger.warning("db.json unreadable (%s), starting empty", e)
            _db_cache = _fresh_db()
    else:
        _db_cache = _fresh_db()
    return _db_cache

def _file_save(db):
    global _db_cache
    _db_cache = db
    if PERSIST_DATA:
        tmp = DB_PATH.with_suffix(".tmp")
        with open(tmp, "w") as f:
            json.dump(db, f, indent=2, default=str)
        tmp.replace(DB_PATH)

def _file_get():
    global _db_cache
    if _db_cache is None:
        return _file_load()
    return _db_cache

# ============================================================
# POSTGRES BACKEND (optional)
# ============================================================
_pg_pool = None

def _pg_connect():
    """Initialize PostgreSQL connection pool."""
    global _pg_pool
    if DATABASE_URL and not _pg_pool:
        from psycopg2.pool import SimpleConnectionPool
        _pg_pool = SimpleConnectionPool(1, 5, DATABASE_URL)
        _pg_init()
        logger.info("Connected to PostgreSQL")

def _pg_init():
    """Create the state table if it doesn't exist."""
    conn = _pg_pool.getconn()
    try:
        cur = conn.cursor()
        cur.execute("""
            CREATE TABLE IF NOT EXISTS app_state (
                id TEXT PRIMARY KEY DEFAULT 'main',
                data JSONB NOT NULL DEFAULT '{}',
                updated_at TIMESTAMP DEFAULT NOW()
            )
        """)
        cur.execute("INSERT INTO app_state (id, data) VALUES ('main', %s) ON CONFLICT DO NOTHING",
                    (json.dumps(EMPTY_DB),))
        conn.commit()
    finally:
        _pg_pool.putconn(conn)

def _pg_load():
    conn = _pg_pool.getconn()
    try:
        cur = conn.cursor()
        cur.execute("SELECT data FROM app_state WHERE id='main'")
        row = cur.fetchone()
        db = row[0] if row else _fresh_db()
        for k, v in EMPTY_DB.items():
            db.setdefault(k, type(v)())
        return db
    finally:
        _pg_pool.putconn(conn)

def _pg_save(db):
    conn = _pg_pool.getconn()
    try:
        cur = conn.cursor()
        cur.execute("UPDATE app_state SET data=%s, updated_at=NOW() WHERE id='main'",
                    (json.dumps(db, default=str),))
        conn.commit()
    finally:
        _pg_pool.putconn(conn)

# ============================================================
# PUBLIC API
# ============================================================
if DATABASE_URL:
    logger.info("Using PostgreSQL backend")
    _pg_connect()
    load_db = _pg_load
    save_db = _pg_save
    get_db = _pg_load
else:
    logger.info("Using file backend (%s)", DB_PATH)
    load_db = _file_load
    save_db = _file_save
    get_db = _file_get

def reset_db():
    """Replace the whole store with the empty schema."""
    db = _fresh_db()
    save_db(db)
    return db

# ============================================================
# COLLECTION HELPERS
# ============================================================
def next_id(records: list, field: str) -> int:
    """Highest numeric value of `field` plus one; 1 for an empty collection."""
    ids = [r[field] for r in records if isinstance(r.get(field), (int, float))]
    return int(max(ids)) + 1 if ids else 1

def find_one(records: list, field: str, value):
    for r in records:
        if r.get(field) == value:
            return r
    return None

def next_sequence(db: dict, name: str) -> int:
    """Atomically bump a named counter in the `counters` collection."""
    counters = db.setdefault("counters", [])
    counter = find_one(counters, "_id", name)
    if counter is None:
        counter = {"_id": name, "seq": 0}
        counters.append(counter)
    counter["seq"] += 1
    return counter["seq"]

def clamp_paging(page, limit) -> tuple:
    page = max(int(page or DEFAULT_PAGE), 1)
    limit = min(max(int(limit or DEFAULT_LIMIT), 1), MAX_LIMIT)
    return page, limit

def paginate(records: list, page, limit, key: str) -> dict:
    """Slice an already filtered and sorted list into one page."""
    page, limit = clamp_paging(page, limit)
    total = len(records)
    start = (page - 1) * limit
    return {key: records[start:start + limit], "total": total,
            "totalPages": math.ceil(total / limit), "page": page, "limit": limit}

def now_iso() -> str:
    return datetime.now().isoformat()

# ============================================================
# FILE STORAGE
# ============================================================
def save_uploaded_file(folder: str, original_name: str, content: bytes) -> str:
    """Store an upload under uploads/<folder>/ and return its public path."""
    if folder not in UPLOAD_FOLDERS:
        raise ValueError(f"Unknown upload folder: {folder}")
    ext = Path(original_name or "").suffix.lower()
    filename = f"{uuid.uuid4().hex}{ext}"
    (UPLOAD_DIR / folder / filename).write_bytes(content)
    return f"/uploads/{folder}/{filename}"

def check_images(files: list):
    """Reject any (filename, bytes) pair that isn't an image."""
    for name, _ in files:
        if Path(name or "").suffix.lower() not in IMAGE_EXTENSIONS:
            raise HTTPException(400, f"Only image files are allowed: {name}")

def delete_uploaded_file(public_path: str) -> bool:
    """Remove a stored upload by its public path. Returns False when it's already gone."""
    if not public_path or not public_path.startswith("/uploads/"):
        return False
    fp = (UPLOAD_DIR / public_path[len("/uploads/"):]).resolve()
    if not fp.is_relative_to(UPLOAD_DIR.resolve()) or not fp.is_file():
        return False
    fp.unlink()
    return True

def load_uploaded_file(folder: str, filename: str) -> tuple:
    """Resolve a stored upload, return (path, exists). Rejects traversal attempts."""
    if ".." in filename or "/" in filename or "\\" in filename or folder not in UPLOAD_FOLDERS:
        raise HTTPException(400, "Invalid filename")
    fp = UPLOAD_DIR / folder / filename
    # Ensure resolved path is within uploads directory
    if not fp.resolve().is_relative_to(UPLOAD_DIR.resolve()):
        raise HTTPException(403, "Access denied")
    return fp, fp.exists()

# ============================================================
# UTILITIES
# ============================================================
def _n(val, default=0):
    """Safe numeric conversion: None/empty/inf/nan → default, strings → float."""
    if val is None or val == "":
        return float(default)
    try:
        num = float(val)
    except (ValueError, TypeError):
        return float(default)
    return num if math.isfinite(num) else float(default)

def money(val) -> float:
    """Round half-up to cents. Non-numeric and non-finite values count as 0."""
    try:
        d = Decimal(str(_n(val))).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        d = Decimal(0)
    return float(d)
