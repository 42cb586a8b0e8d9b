"""
CRX: Car Inventory
Car records and their ledger operations: create, query, update, transfer, delete.

Every mutation ends in `_settle`, which reconciles the derived money fields and
pays out a pending bonus once the car's balance reaches zero.
"""
import logging
from datetime import date
from fastapi import HTTPException

from crx.config import (
    CAR_STATUSES, CAR_STATUS_DEFAULT, CAR_STATUS_GREEN, ROLE_DEALER
)
from crx.db import (
    next_id, find_one as _find, paginate, money, now_iso, _n,
    save_uploaded_file, delete_uploaded_file, check_images
)
from crx import ledger, prices, users

logger = logging.getLogger(__name__)

TEXT_FIELDS = ("carName", "location", "lotNumber", "auctionName", "dateOfPurchase", "dateOfArrival",
               "comment", "shippingLine", "dateOfContainerOpening", "greenDate", "buyer", "buyerPN",
               "buyerPhone", "containerNumber", "arrivalPort", "bonusReceiver")
FLAG_FIELDS = ("isHybridOrElectric", "isOffsite", "isTaken", "isTitleTaken", "doubleRate",
               "oversized", "iAuctionClosed")
SEARCH_FIELDS = ("vinCode", "containerNumber", "username", "status", "buyer")

# ============================================================
# HELPERS
# ============================================================
def _norm_vin(vin: str) -> str:
    return (vin or "").strip().upper()

def _by_vin(db: dict, vin: str):
    return _find(db["cars"], "vinCode", _norm_vin(vin))

def _is_dealer(actor: dict) -> bool:
    return bool(actor) and actor.get("role") == ROLE_DEALER

def _check_owner(db: dict, username: str):
    if not _find(db["users"], "username", username):
        raise HTTPException(400, f"Dealer '{username}' does not exist")

def _store_photos(photos: list) -> list:
    return [save_uploaded_file("cars", name, content) for name, content in photos]

def _base_for(db: dict, car: dict):
    if car.get("profitManual"):
        return None
    return prices.base_price(db, car.get("location"))

def _pay_bonus(db: dict, car: dict):
    receiver = _find(db["users"], "username", car["bonusReceiver"])
    if not receiver:
        logger.warning("Bonus receiver %s for car %s not found, payout skipped",
                       car["bonusReceiver"], car["carID"])
        return
    users.adjust_balance(db, receiver["username"], profit=car["bonusAmount"])
    car["bonusPaid"] = True
    users.push_notification(receiver, f"Bonus of {car['bonusAmount']:.2f} credited for car {car['vinCode']}")
    logger.info("Bonus %.2f paid to %s for car %s", car["bonusAmount"], receiver["username"], car["carID"])

def _settle(db: dict, car: dict, before_to_be_paid: float) -> dict:
    ledger.reconcile(car, _base_for(db, car))
    if ledger.bonus_due(before_to_be_paid, car):
        _pay_bonus(db, car)
    return car

# ============================================================
# CREATE
# ============================================================
def create(db: dict, data: dict, photos: list = None) -> dict:
    """Create a car for an existing dealer. `photos` is a list of (filename, bytes)."""
    photos = photos or []
    _check_owner(db, data["username"])
    vin = _norm_vin(data["vinCode"])
    if _by_vin(db, vin):
        raise HTTPException(409, f"Car with VIN {vin} already exists")
    check_images(photos)

    car = {"carID": next_id(db["cars"], "carID"), "username": data["username"], "vinCode": vin}
    for f in TEXT_FIELDS:
        car[f] = data.get(f)
    for f in FLAG_FIELDS:
        car[f] = bool(data.get(f, False))
    for f in ledger.MONEY_INPUTS:
        car[f] = data.get(f) or 0
    car.update({"status": CAR_STATUS_DEFAULT, "photos": [], "createdAt": now_iso(),
                "auctionPaid": 0, "transPaid": 0, "transferred": 0, "bonusPaid": False,
                "profit": 0, "profitManual": False})

    if not car["transportationPrice"] and car.get("location"):
        owner = _find(db["users"], "username", car["username"])
        quoted = prices.quote(db, car["location"], owner.get("level"))
        if quoted is not None:
            car["transportationPrice"] = quoted

    ledger.reconcile(car, _base_for(db, car))
    car["photos"] = _store_photos(photos)
    db["cars"].append(car)
    logger.info("Car %s (%s) created for %s", car["carID"], vin, car["username"])
    return car

# ============================================================
# QUERY
# ============================================================
def _matches(car: dict, filters: dict) -> bool:
    for field in SEARCH_FIELDS:
        needle = filters.get(field)
        if needle and needle.lower() not in str(car.get(field) or "").lower():
            return False
    day = filters.get("dateOfPurchase")
    if day and str(car.get("dateOfPurchase") or "")[:10] != day[:10]:
        return False
    return True

def find_all(db: dict, filters: dict = None, page=None, limit=None, actor: dict = None) -> dict:
    filters = {k: v for k, v in (filters or {}).items() if v}
    if _is_dealer(actor):
        filters.pop("username", None)
    found = [c for c in db["cars"] if _matches(c, filters)]
    if _is_dealer(actor):
        found = [c for c in found if c["username"] == actor["username"]]
    found.sort(key=lambda c: c.get("createdAt", ""), reverse=True)
    return paginate(found, page, limit, "cars")

def find_one(db: dict, car_id: int, actor: dict = None) -> dict:
    car = _find(db["cars"], "carID", car_id)
    if not car:
        raise HTTPException(404, f"Car {car_id} not found")
    if _is_dealer(actor) and car["username"] != actor["username"]:
        raise HTTPException(403, "You can only access your own cars")
    return car

# ============================================================
# UPDATE
# ============================================================
def update(db: dict, car_id: int, changes: dict) -> dict:
    car = find_one(db, car_id)
    before = car.get("toBePaid", 0)
    changes = dict(changes)

    if "vinCode" in changes:
        vin = _norm_vin(changes["vinCode"])
        other = _by_vin(db, vin)
        if other and other["carID"] != car_id:
            raise HTTPException(409, f"Car with VIN {vin} already exists")
        changes["vinCode"] = vin
    if "username" in changes and changes["username"] != car["username"]:
        _check_owner(db, changes["username"])
        # transferred money belongs to the current owner's balance
        if _n(car.get("transferred")) > 0:
            raise HTTPException(400, "Cannot change the owner of a car with transferred funds")
    if "status" in changes:
        if changes["status"] not in CAR_STATUSES:
            raise HTTPException(400, f"Invalid status. Must be one of: {CAR_STATUSES}")
        if changes["status"] == CAR_STATUS_GREEN and not (changes.get("greenDate") or car.get("greenDate")):
            changes["greenDate"] = date.today().isoformat()

    paid = changes.pop("paid", None)
    if "profit" in changes:
        car["profit"] = money(changes.pop("profit"))
        car["profitManual"] = True

    for field, value in changes.items():
        if field in ledger.MONEY_INPUTS:
            value = value or 0
        car[field] = value
    if paid is not None:
        ledger.reallocate_paid(car, paid)

    _settle(db, car, before)
    logger.info("Car %s updated: %s", car_id, ", ".join(sorted(changes)) or "no fields")
    return car

def add_photos(db: dict, car_id: int, photos: list) -> dict:
    car = find_one(db, car_id)
    check_images(photos)
    car["photos"] = car.get("photos", []) + _store_photos(photos)
    return car

# ============================================================
# PAYMENTS
# ============================================================
def transfer(db: dict, car_id: int, amount: float, actor: dict) -> dict:
    """Move money from the owner's totalBalance onto the car, auction first."""
    car = find_one(db, car_id, actor)
    owner = _find(db["users"], "username", car["username"])
    if not owner:
        raise HTTPException(400, f"Owner '{car['username']}' of car {car_id} does not exist")
    amount = money(amount)
    if amount <= 0:
        raise HTTPException(400, "Transfer amount must be greater than zero")
    if amount > _n(car.get("toBePaid")):
        raise HTTPException(400, f"Transfer amount exceeds the outstanding balance of {car['toBePaid']:.2f}")
    if amount > _n(owner.get("totalBalance")):
        raise HTTPException(400, "Insufficient balance")

    before = car["toBePaid"]
    users.adjust_balance(db, owner["username"], total=-amount)
    ledger.apply_payment(car, amount, None)
    car["transferred"] = money(_n(car.get("transferred")) + amount)
    _settle(db, car, before)
    logger.info("Transferred %.2f from %s to car %s", amount, owner["username"], car_id)
    return {"car": car, "totalBalance": owner["totalBalance"]}

def apply_bank_payment(db: dict, car_id: int, amount: float, target: str) -> dict:
    """Apply an incoming bank payment to a car. User balances are untouched."""
    car = find_one(db, car_id)
    before = car.get("toBePaid", 0)
    applied = ledger.apply_payment(car, amount, target)
    _settle(db, car, before)
    logger.info("Bank payment %.2f applied to car %s (%s): %s", amount, car_id, target, applied)
    return applied

# ============================================================
# DELETE
# ============================================================
def delete(db: dict, car_id: int) -> dict:
    """Remove a car, refunding transfers and reversing a paid bonus."""
    car = find_one(db, car_id)
    refund = _n(car.get("transferred"))
    if refund > 0:
        if _find(db["users"], "username", car["username"]):
            users.adjust_balance(db, car["username"], total=refund)
            logger.info("Refunded %.2f to %s for deleted car %s", refund, car["username"], car_id)
        else:
            logger.warning("Owner %s of deleted car %s not found, %.2f not refunded",
                           car["username"], car_id, refund)
    if car.get("bonusPaid"):
        receiver = _find(db["users"], "username", car.get("bonusReceiver"))
        if receiver:
            reversal = min(_n(car.get("bonusAmount")), _n(receiver.get("profitBalance")))
            users.adjust_balance(db, receiver["username"], profit=-reversal)
            logger.info("Reversed bonus %.2f from %s for deleted car %s", reversal, receiver["username"], car_id)
    for path in car.get("photos", []):
        delete_uploaded_file(path)
    db["cars"] = [c for c in db["cars"] if c["carID"] != car_id]
    return car
