import json

import pytest
from fastapi import HTTPException

from crx import cars, damages
from conftest import actor

VIN = "1HGCM82633A004352"


@pytest.fixture
def car(db, dealer):
    return cars.create(db, {"username": "dealer1", "vinCode": VIN, "auctionPrice": 1000})


def test_claim_starts_pending(db, dealer, car):
    damage = damages.create(db, {"carID": car["carID"], "amount": 150.499, "comment": "Scratched door"},
                            actor=actor(dealer))
    assert damage["status"] == "pending"
    assert damage["amount"] == 150.5
    assert damage["vinCode"] == VIN
    assert dealer["profitBalance"] == 0


def test_claim_for_unknown_car(db, dealer):
    with pytest.raises(HTTPException) as e:
        damages.create(db, {"carID": 77, "amount": 10})
    assert e.value.status_code == 400


def test_claim_for_foreign_car_forbidden(db, car, make_user):
    other = make_user("dealer2")
    with pytest.raises(HTTPException) as e:
        damages.create(db, {"carID": car["carID"], "amount": 10}, actor=actor(other))
    assert e.value.status_code == 403


def test_approve_credits_profit_once(db, dealer, car):
    damage = damages.create(db, {"carID": car["carID"], "amount": 200})
    damages.review(db, damage["damageID"], True, "ok")
    damages.review(db, damage["damageID"], True)
    assert dealer["profitBalance"] == 200
    assert damage["status"] == "approved"
    assert damage["approverComment"] == "ok"
    assert len(dealer["notifications"]) == 1


def test_reject_after_approve_reverses_credit(db, dealer, car):
    damage = damages.create(db, {"carID": car["carID"], "amount": 200})
    damages.review(db, damage["damageID"], True)
    damages.review(db, damage["damageID"], False, "duplicate claim")
    assert dealer["profitBalance"] == 0
    assert damage["status"] == "rejected"


def test_reject_pending_moves_no_money(db, dealer, car):
    damage = damages.create(db, {"carID": car["carID"], "amount": 200})
    damages.review(db, damage["damageID"], False)
    assert dealer["profitBalance"] == 0
    assert dealer["notifications"][0]["message"].endswith("rejected")


def test_dealers_only_see_their_claims(db, car, dealer, make_user):
    other = make_user("dealer2")
    damage = damages.create(db, {"carID": car["carID"], "amount": 20})
    assert damages.find_all(db, actor(other)) == []
    assert len(damages.find_all(db, actor(dealer))) == 1
    with pytest.raises(HTTPException) as e:
        damages.find_one_claim(db, damage["damageID"], actor(other))
    assert e.value.status_code == 403


def test_damage_routes(client, car, dealer_headers, admin_headers, dealer):
    payload = json.dumps({"carID": car["carID"], "amount": 75, "comment": "Broken mirror"})
    r = client.post("/api/damages", data={"damage": payload},
                    files=[("images", ("mirror.jpg", b"\xff\xd8\xff", "image/jpeg"))], headers=dealer_headers)
    assert r.status_code == 201
    body = r.json()
    assert body["imageUrls"][0].startswith("/uploads/damages/")
    r = client.put(f"/api/damages/{body['damageID']}", json={"isApproved": True}, headers=dealer_headers)
    assert r.status_code == 403
    r = client.put(f"/api/damages/{body['damageID']}", json={"isApproved": True}, headers=admin_headers)
    assert r.json()["status"] == "approved"
    assert dealer["profitBalance"] == 75


def test_damage_amount_must_be_positive(client, car, dealer_headers):
    r = client.post("/api/damages", data={"damage": json.dumps({"carID": car["carID"], "amount": 0})},
                    headers=dealer_headers)
    assert r.status_code == 422
