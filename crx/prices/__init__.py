"""
CRX: Pricing Table
Per-location base prices with one computed column per dealer type.

Column value = basePrice + upsellAmount + dealerType.amount. Columns are
recomputed whenever a row or a dealer type changes, so stored values are
always consistent with the inputs.
"""
import math, logging
from fastapi import HTTPException

from crx.db import next_id, money, now_iso, _n

logger = logging.getLogger(__name__)

RESERVED_COLUMNS = {"id", "location", "basePrice", "upsellAmount", "createdAt", "updatedAt"}

# ============================================================
# HELPERS
# ============================================================
def _by_location(db: dict, location: str):
    key = (location or "").strip().lower()
    for p in db["prices"]:
        if p["location"].strip().lower() == key:
            return p
    return None

def _list_price(row: dict) -> float:
    return money(_n(row.get("basePrice")) + _n(row.get("upsellAmount")))

def _compute_columns(row: dict, dealer_types: list) -> dict:
    for dt in dealer_types:
        row[dt["name"]] = money(_list_price(row) + _n(dt["amount"]))
    return row

def _recompute_all(db: dict):
    for row in db["prices"]:
        _compute_columns(row, db["dealer_types"])

# ============================================================
# PRICE ROWS
# ============================================================
def create_price(db: dict, data: dict) -> dict:
    if _by_location(db, data["location"]):
        raise HTTPException(409, f"Price for location '{data['location']}' already exists")
    now = now_iso()
    row = {"id": next_id(db["prices"], "id"), "location": data["location"].strip(),
           "basePrice": money(data["basePrice"]), "upsellAmount": money(data.get("upsellAmount", 0)),
           "createdAt": now, "updatedAt": now}
    _compute_columns(row, db["dealer_types"])
    db["prices"].append(row)
    return row

def find_all(db: dict) -> list:
    return sorted(db["prices"], key=lambda p: p["location"].lower())

def find_one(db: dict, price_id: int) -> dict:
    row = find_one_row(db, price_id)
    if not row:
        raise HTTPException(404, f"Price {price_id} not found")
    return row

def find_one_row(db: dict, price_id: int):
    for p in db["prices"]:
        if p["id"] == price_id:
            return p
    return None

def update(db: dict, price_id: int, changes: dict) -> dict:
    row = find_one(db, price_id)
    if "location" in changes:
        other = _by_location(db, changes["location"])
        if other and other["id"] != price_id:
            raise HTTPException(409, f"Price for location '{changes['location']}' already exists")
        row["location"] = changes["location"].strip()
    for field in ("basePrice", "upsellAmount"):
        if field in changes:
            row[field] = money(changes[field])
    row["updatedAt"] = now_iso()
    return _compute_columns(row, db["dealer_types"])

def find_all_for_dealer(db: dict, level: str) -> list:
    """Dealer view: one price per location, from the dealer's own column."""
    return [{"id": p["id"], "location": p["location"], "price": _price_for_level(db, p, level)}
            for p in find_all(db)]

def _price_for_level(db: dict, row: dict, level: str) -> float:
    if level and find_one_dealer_type(db, level) and level in row:
        return row[level]
    return _list_price(row)

def quote(db: dict, location: str, level: str):
    """Price a dealer pays for `location`, or None when the location is unpriced."""
    row = _by_location(db, location)
    return _price_for_level(db, row, level) if row else None

def base_price(db: dict, location: str):
    row = _by_location(db, location)
    return row["basePrice"] if row else None

# ============================================================
# DEALER TYPES
# ============================================================
def find_one_dealer_type(db: dict, name: str):
    for dt in db["dealer_types"]:
        if dt["name"] == name:
            return dt
    return None

def _check_column_name(db: dict, name: str, exclude_id: int = None):
    if name in RESERVED_COLUMNS:
        raise HTTPException(400, f"'{name}' is a reserved column name")
    dt = find_one_dealer_type(db, name)
    if dt and dt["id"] != exclude_id:
        raise HTTPException(409, f"Dealer type '{name}' already exists")

def create_dealer_type(db: dict, data: dict) -> dict:
    _check_column_name(db, data["name"])
    dt = {"id": next_id(db["dealer_types"], "id"), "name": data["name"], "amount": money(data["amount"])}
    db["dealer_types"].append(dt)
    _recompute_all(db)
    logger.info("Dealer type %s added, %d price rows updated", dt["name"], len(db["prices"]))
    return dt

def list_dealer_types(db: dict) -> list:
    return sorted(db["dealer_types"], key=lambda d: d["id"])

def get_dealer_type(db: dict, dt_id: int) -> dict:
    for dt in db["dealer_types"]:
        if dt["id"] == dt_id:
            return dt
    raise HTTPException(404, f"Dealer type {dt_id} not found")

def update_dealer_type(db: dict, dt_id: int, changes: dict) -> dict:
    dt = get_dealer_type(db, dt_id)
    new_name = changes.get("name")
    if new_name and new_name != dt["name"]:
        _check_column_name(db, new_name, exclude_id=dt_id)
        for row in db["prices"]:
            row.pop(dt["name"], None)
        # dealers on the old tier follow the rename
        for user in db["users"]:
            if user.get("level") == dt["name"]:
                user["level"] = new_name
        dt["name"] = new_name
    if changes.get("amount") is not None:
        dt["amount"] = money(changes["amount"])
    _recompute_all(db)
    return dt

def delete_dealer_type(db: dict, dt_id: int) -> dict:
    dt = get_dealer_type(db, dt_id)
    db["dealer_types"] = [d for d in db["dealer_types"] if d["id"] != dt_id]
    for row in db["prices"]:
        row.pop(dt["name"], None)
    logger.info("Dealer type %s removed", dt["name"])
    return dt

# ============================================================
# SHEET IMPORT
# ============================================================
def import_rows(db: dict, rows: list) -> dict:
    """Upsert price rows by location. Returns counts plus skipped rows with reasons."""
    created, updated, skipped = 0, 0, []
    for i, raw in enumerate(rows, start=2):
        location = str(raw.get("location") or "").strip()
        if not location:
            skipped.append({"row": i, "reason": "missing location"})
            continue
        try:
            base = float(raw.get("basePrice"))
            upsell = float(raw.get("upsellAmount") or 0)
        except (TypeError, ValueError):
            skipped.append({"row": i, "reason": "non-numeric price"})
            continue
        if not (math.isfinite(base) and math.isfinite(upsell)):
            skipped.append({"row": i, "reason": "non-numeric price"})
            continue
        if base < 0 or upsell < 0:
            skipped.append({"row": i, "reason": "negative price"})
            continue
        existing = _by_location(db, location)
        if existing:
            update(db, existing["id"], {"basePrice": base, "upsellAmount": upsell})
            updated += 1
        else:
            create_price(db, {"location": location, "basePrice": base, "upsellAmount": upsell})
            created += 1
    return {"created": created, "updated": updated, "skipped": skipped}
