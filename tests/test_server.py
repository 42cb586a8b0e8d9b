import json

from crx.config import UPLOAD_DIR

VIN = "1HGCM82633A004352"


def _car_form(**kw):
    data = {"username": "dealer1", "vinCode": VIN, "carName": "Honda Accord", "auctionPrice": 1000,
            "transportationPrice": 1500, "dateOfPurchase": "2024-03-05"}
    data.update(kw)
    return {"car": json.dumps(data)}


def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok" and r.json()["storage"] == "file"


def test_create_car_with_photo_and_serve_it(client, dealer, admin_headers):
    r = client.post("/api/cars", data=_car_form(), headers=admin_headers,
                    files=[("photos", ("front.png", b"\x89PNG\r\n", "image/png"))])
    assert r.status_code == 201, r.text
    car = r.json()
    assert car["toBePaid"] == 2500 and car["dateOfPurchase"] == "2024-03-05"
    photo = car["photos"][0]
    r = client.get(f"/api{photo}")
    assert r.status_code == 200
    assert r.headers["content-type"] == "image/png"
    assert r.content == b"\x89PNG\r\n"


def test_create_car_rejects_bad_form_json(client, dealer, admin_headers):
    r = client.post("/api/cars", data={"car": "{not json"}, headers=admin_headers)
    assert r.status_code == 400
    r = client.post("/api/cars", data=_car_form(auctionPrice=-1), headers=admin_headers)
    assert r.status_code == 422
    r = client.post("/api/cars", data=_car_form(colour="red"), headers=admin_headers)
    assert r.status_code == 422


def test_create_car_is_staff_only(client, dealer_headers):
    assert client.post("/api/cars", data=_car_form(), headers=dealer_headers).status_code == 403


def test_dealer_sees_only_own_cars(client, admin_headers, dealer_headers, make_user):
    make_user("dealer2")
    client.post("/api/cars", data=_car_form(), headers=admin_headers)
    client.post("/api/cars", data=_car_form(username="dealer2", vinCode="JH4KA7561PC008269"),
                headers=admin_headers)
    r = client.get("/api/cars", headers=dealer_headers)
    assert [c["vinCode"] for c in r.json()["cars"]] == [VIN]
    assert client.get("/api/cars/2", headers=dealer_headers).status_code == 403
    r = client.get("/api/cars", params={"limit": 1, "page": 2}, headers=admin_headers)
    assert r.json()["total"] == 2 and len(r.json()["cars"]) == 1


def test_update_and_transfer_routes(client, dealer, admin_headers, dealer_headers):
    client.post("/api/cars", data=_car_form(), headers=admin_headers)
    r = client.put("/api/cars/1", json={"status": "In Transit", "auctionFine": 25}, headers=admin_headers)
    assert r.status_code == 200 and r.json()["toBePaid"] == 2525
    r = client.post("/api/cars/transfer", json={"id": 1, "amount": 1025}, headers=dealer_headers)
    assert r.status_code == 200
    assert r.json()["totalBalance"] == 3975
    assert r.json()["car"]["auctionPriceToPay"] == 0


def test_delete_car_route(client, dealer, admin_headers):
    client.post("/api/cars", data=_car_form(), headers=admin_headers)
    r = client.delete("/api/cars/1", headers=admin_headers)
    assert r.json()["success"] is True
    assert client.get("/api/cars/1", headers=admin_headers).status_code == 404


def test_upload_serving_rejects_traversal(client):
    assert client.get("/api/uploads/cars/..db.json").status_code == 400
    assert client.get("/api/uploads/secrets/x.png").status_code == 400
    assert client.get("/api/uploads/cars/missing.png").status_code == 404


def test_invoice_file_is_served_as_pdf(client):
    (UPLOAD_DIR / "invoices" / "invoice_9_TEST.pdf").write_bytes(b"%PDF-1.4 test")
    r = client.get("/api/uploads/invoices/invoice_9_TEST.pdf")
    assert r.status_code == 200
    assert r.headers["content-type"] == "application/pdf"


def test_non_finite_money_rejected(client, dealer, admin_headers, dealer_headers):
    client.post("/api/cars", data=_car_form(), headers=admin_headers)
    json_headers = {"Content-Type": "application/json"}
    r = client.put("/api/cars/1", content='{"auctionPrice": Infinity}', headers={**admin_headers, **json_headers})
    assert r.status_code == 422
    r = client.post("/api/cars/transfer", content='{"id": 1, "amount": NaN}', headers={**dealer_headers, **json_headers})
    assert r.status_code == 422
    r = client.post("/api/prices/base", content='{"location": "NJ", "basePrice": -Infinity}',
                    headers={**admin_headers, **json_headers})
    assert r.status_code == 422
    assert client.get("/api/cars/1", headers=admin_headers).json()["auctionPrice"] == 1000
    assert dealer["totalBalance"] == 5000
