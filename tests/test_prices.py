import pytest
from fastapi import HTTPException

from crx import prices


@pytest.fixture
def table(db):
    prices.create_dealer_type(db, {"name": "A", "amount": 100})
    prices.create_dealer_type(db, {"name": "B", "amount": 250})
    prices.create_price(db, {"location": "Newark, NJ", "basePrice": 1000, "upsellAmount": 50})
    prices.create_price(db, {"location": "Savannah, GA", "basePrice": 1200})
    return db


def test_rows_carry_one_column_per_dealer_type(table):
    row = prices.find_all(table)[0]
    assert row["location"] == "Newark, NJ"
    assert row["A"] == 1150 and row["B"] == 1300


def test_duplicate_location_is_case_insensitive(table):
    with pytest.raises(HTTPException) as e:
        prices.create_price(table, {"location": "newark, nj ", "basePrice": 1})
    assert e.value.status_code == 409


def test_update_recomputes_columns(table):
    row = prices.update(table, 1, {"basePrice": 900})
    assert row["A"] == 1050 and row["B"] == 1200
    with pytest.raises(HTTPException) as e:
        prices.update(table, 1, {"location": "SAVANNAH, GA"})
    assert e.value.status_code == 409


def test_dealer_type_amount_change_recomputes_every_row(table):
    prices.update_dealer_type(table, 1, {"amount": 0})
    assert [r["A"] for r in prices.find_all(table)] == [1050, 1200]


def test_dealer_type_rename_moves_column_and_users(table, make_user):
    dealer = make_user("dealer1", level="A")
    prices.update_dealer_type(table, 1, {"name": "Gold"})
    row = prices.find_one(table, 1)
    assert "A" not in row and row["Gold"] == 1150
    assert dealer["level"] == "Gold"


@pytest.mark.parametrize("name,status", [("basePrice", 400), ("location", 400), ("B", 409)])
def test_dealer_type_name_checks(table, name, status):
    with pytest.raises(HTTPException) as e:
        prices.create_dealer_type(table, {"name": name, "amount": 1})
    assert e.value.status_code == status


def test_delete_dealer_type_drops_column(table):
    prices.delete_dealer_type(table, 2)
    assert all("B" not in r for r in table["prices"])
    with pytest.raises(HTTPException) as e:
        prices.get_dealer_type(table, 2)
    assert e.value.status_code == 404


def test_dealer_view_and_quote(table):
    view = prices.find_all_for_dealer(table, "B")
    assert view == [{"id": 1, "location": "Newark, NJ", "price": 1300},
                    {"id": 2, "location": "Savannah, GA", "price": 1450}]
    assert prices.quote(table, "savannah, ga", "A") == 1300
    assert prices.quote(table, "Newark, NJ", "Unknown") == 1050
    assert prices.quote(table, "Houston, TX", "A") is None
    assert prices.base_price(table, "Newark, NJ") == 1000


def test_import_rows_upserts_and_reports_skips(table):
    result = prices.import_rows(table, [
        {"location": "Newark, NJ", "basePrice": "950", "upsellAmount": None},
        {"location": "Houston, TX", "basePrice": 1400, "upsellAmount": "25"},
        {"location": "", "basePrice": 10},
        {"location": "Miami, FL", "basePrice": "n/a"},
        {"location": "Tacoma, WA", "basePrice": -1},
    ])
    assert result["created"] == 1 and result["updated"] == 1
    assert result["skipped"] == [{"row": 4, "reason": "missing location"},
                                 {"row": 5, "reason": "non-numeric price"},
                                 {"row": 6, "reason": "negative price"}]
    assert prices.quote(table, "Houston, TX", "A") == 1525


def test_price_routes_by_role(client, table, admin_headers, dealer_headers, make_user, login):
    r = client.get("/api/prices/base", headers=admin_headers)
    assert r.status_code == 200 and "A" in r.json()[0]
    r = client.get("/api/prices/base", headers=dealer_headers)
    assert r.json()[0] == {"id": 1, "location": "Newark, NJ", "price": 1150}
    make_user("books", role="accountant")
    assert client.get("/api/prices/base", headers=login("books")).status_code == 403
    r = client.post("/api/prices/base", json={"location": "Miami, FL", "basePrice": 1100},
                    headers=dealer_headers)
    assert r.status_code == 403


def test_price_upload_route(client, admin_headers):
    csv_body = b"location,basePrice,upsellAmount\nNewark NJ,1000,0\n"
    r = client.post("/api/prices/upload", files={"file": ("prices.csv", csv_body, "text/csv")},
                    headers=admin_headers)
    assert r.status_code == 200
    assert r.json() == {"created": 1, "updated": 0, "skipped": []}


def test_import_rows_skips_non_finite_prices(db):
    result = prices.import_rows(db, [
        {"location": "NJ", "basePrice": "inf"},
        {"location": "GA", "basePrice": 100, "upsellAmount": "nan"},
        {"location": "TX", "basePrice": "1e400"},
    ])
    assert result["created"] == 0
    assert [s["reason"] for s in result["skipped"]] == ["non-numeric price"] * 3
    assert db["prices"] == []


def test_dealer_prices_follow_level_rename(client, table, dealer, dealer_headers):
    client.get("/api/prices/base", headers=dealer_headers)
    prices.update_dealer_type(table, 1, {"name": "Gold"})
    r = client.get("/api/prices/base", headers=dealer_headers)
    assert dealer["level"] == "Gold"
    assert r.json()[0] == {"id": 1, "location": "Newark, NJ", "price": 1150}
