"""
CRX: Car Financial Ledger
Pure rules over car records: charges, outstanding buckets, payments, profit, bonus.

Buckets:
  auction charge   = auctionPrice + auctionFine + interestSum
  transport charge = transportationPrice + titlePrice
  Each bucket tracks what has been paid against it (auctionPaid / transPaid).
  toBePaid is the sum of both outstanding amounts, never below zero.
"""
from crx.config import PAYMENT_AUCTION, PAYMENT_TRANSPORTATION
from crx.db import money, _n

MONEY_INPUTS = ("auctionPrice", "transportationPrice", "auctionFine", "titlePrice",
                "interestSum", "financingAmount", "bonusAmount")
DERIVED_FIELDS = ("totalCost", "auctionPriceToPay", "transPriceToPay", "toBePaid", "paid")
BOOKKEEPING_FIELDS = ("auctionPaid", "transPaid", "transferred", "bonusPaid")

_PAID_FIELD = {PAYMENT_AUCTION: "auctionPaid", PAYMENT_TRANSPORTATION: "transPaid"}


def auction_charge(car: dict) -> float:
    return money(_n(car.get("auctionPrice")) + _n(car.get("auctionFine")) + _n(car.get("interestSum")))

def transport_charge(car: dict) -> float:
    return money(_n(car.get("transportationPrice")) + _n(car.get("titlePrice")))

def _charge(car: dict, bucket: str) -> float:
    return auction_charge(car) if bucket == PAYMENT_AUCTION else transport_charge(car)

def outstanding(car: dict, bucket: str) -> float:
    return money(max(_charge(car, bucket) - _n(car.get(_PAID_FIELD[bucket])), 0))


def reconcile(car: dict, base_price: float = None) -> dict:
    """Recompute every derived money field in place.

    `base_price` is the pricing-table base for the car's location; when given,
    profit is the transportation margin over it. Otherwise the stored profit stays.
    """
    for field in MONEY_INPUTS:
        car[field] = money(max(_n(car.get(field)), 0))
    car["auctionPaid"] = money(max(_n(car.get("auctionPaid")), 0))
    car["transPaid"] = money(max(_n(car.get("transPaid")), 0))
    car["transferred"] = money(max(_n(car.get("transferred")), 0))

    car["totalCost"] = money(auction_charge(car) + transport_charge(car))
    car["auctionPriceToPay"] = outstanding(car, PAYMENT_AUCTION)
    car["transPriceToPay"] = outstanding(car, PAYMENT_TRANSPORTATION)
    car["toBePaid"] = money(car["auctionPriceToPay"] + car["transPriceToPay"])
    car["paid"] = money(car["auctionPaid"] + car["transPaid"])

    if base_price is not None:
        car["profit"] = money(car["transportationPrice"] - _n(base_price))
    else:
        car["profit"] = money(car.get("profit"))
    return car


def apply_payment(car: dict, amount: float, target: str = None) -> dict:
    """Apply a payment to the buckets. Returns {auction, transportation} applied.

    The target bucket fills first and the rest spills into the other one.
    No target means auction first. Whatever exceeds both stays on the first
    bucket as an overpayment.
    """
    if target not in (None, PAYMENT_AUCTION, PAYMENT_TRANSPORTATION):
        raise ValueError(f"Unknown payment target: {target}")
    first = target or PAYMENT_AUCTION
    second = PAYMENT_TRANSPORTATION if first == PAYMENT_AUCTION else PAYMENT_AUCTION
    remaining = money(amount)
    applied = {PAYMENT_AUCTION: 0.0, PAYMENT_TRANSPORTATION: 0.0}

    for bucket in (first, second):
        take = min(remaining, outstanding(car, bucket))
        if take > 0:
            applied[bucket] = money(applied[bucket] + take)
            remaining = money(remaining - take)
            field = _PAID_FIELD[bucket]
            car[field] = money(_n(car.get(field)) + take)
    if remaining > 0:
        applied[first] = money(applied[first] + remaining)
        field = _PAID_FIELD[first]
        car[field] = money(_n(car.get(field)) + remaining)
    return applied


def reallocate_paid(car: dict, paid: float) -> dict:
    """Replace the total paid with `paid`, redistributed auction first."""
    car["auctionPaid"] = 0.0
    car["transPaid"] = 0.0
    return apply_payment(car, max(_n(paid), 0), None)


def bonus_due(before_to_be_paid: float, car: dict) -> bool:
    """True when this change settled the car and an unpaid bonus is attached."""
    return (_n(before_to_be_paid) > 0 and _n(car.get("toBePaid")) == 0
            and bool(car.get("bonusReceiver")) and _n(car.get("bonusAmount")) > 0
            and not car.get("bonusPaid"))
