"""
CRX: Bank Statement Sync
Bank of Georgia business API client and statement reconciliation.

Flow:
  1. OAuth2 client-credentials token (cached until expires_in - 300s)
  2. USD rate from the National Bank of Georgia
  3. Statement entries for an account/currency
  4. Each unseen entry: GEL credit -> USD, large transfers pay a 0.3% fee,
     VIN in the comment picks the car, the transportation keyword picks the bucket.
  5. Every entry id is recorded so reruns never double-apply.
"""
import time, logging
from datetime import date, datetime, timedelta

import httpx
from fastapi import HTTPException

from crx.config import (
    BOG_CLIENT_ID, BOG_CLIENT_SECRET, BOG_TOKEN_URL, BOG_STATEMENT_URL, BOG_ACCOUNT_NUMBER,
    BOG_CURRENCY, NBG_RATE_URL, BANK_TIMEOUT_SECONDS, BANK_TOKEN_SAFETY_SECONDS,
    BANK_FEE_THRESHOLD, BANK_FEE_RATE, TRANSPORT_KEYWORD, PAYMENT_AUCTION, PAYMENT_TRANSPORTATION
)
from crx.db import get_db, save_db, money, now_iso, _n
from crx import cars

logger = logging.getLogger(__name__)


class BankApiError(Exception):
    """Upstream bank or rate API failure. `auth` marks rejected credentials."""

    def __init__(self, message: str, status: int = None, auth: bool = False):
        super().__init__(message)
        self.status = status
        self.auth = auth

    def to_http(self) -> HTTPException:
        return HTTPException(401 if self.auth else 502, str(self))


# ============================================================
# CLIENT
# ============================================================
class BankClient:
    def __init__(self, client_id: str = BOG_CLIENT_ID, client_secret: str = BOG_CLIENT_SECRET,
                 transport: httpx.AsyncBaseTransport = None):
        self.client_id = client_id
        self.client_secret = client_secret
        self._transport = transport
        self._token = None
        self._token_expires_at = 0.0

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=BANK_TIMEOUT_SECONDS, transport=self._transport)

    def clear_token(self):
        self._token = None
        self._token_expires_at = 0.0

    async def get_access_token(self) -> str:
        if self._token and self._token_expires_at > time.monotonic():
            return self._token
        if not self.configured:
            raise BankApiError("Bank API credentials are not configured", auth=True)
        data = {"grant_type": "client_credentials", "client_id": self.client_id,
                "client_secret": self.client_secret}
        try:
            async with self._http() as client:
                r = await client.post(BOG_TOKEN_URL, data=data, auth=(self.client_id, self.client_secret))
        except httpx.HTTPError as e:
            raise BankApiError(f"Token request failed: {e}")
        if r.status_code != 200:
            raise BankApiError(f"Token request rejected: {r.status_code}", status=r.status_code,
                               auth=r.status_code in (400, 401, 403))
        try:
            body = r.json()
            self._token = body["access_token"]
        except (ValueError, KeyError) as e:
            raise BankApiError(f"Token response unreadable: {e}")
        ttl = max(int(body.get("expires_in", 0)) - BANK_TOKEN_SAFETY_SECONDS, 0)
        self._token_expires_at = time.monotonic() + ttl
        return self._token

    async def fetch_usd_rate(self) -> float:
        try:
            async with self._http() as client:
                r = await client.get(NBG_RATE_URL)
            r.raise_for_status()
            rate = _extract_rate(r.json())
        except httpx.HTTPError as e:
            raise BankApiError(f"USD rate request failed: {e}")
        except ValueError as e:
            raise BankApiError(f"USD rate response unreadable: {e}")
        if not rate or rate <= 0:
            raise BankApiError("Invalid USD rate received")
        return rate

    async def get_statement(self, account: str = BOG_ACCOUNT_NUMBER, currency: str = BOG_CURRENCY,
                            start: date = None, end: date = None) -> list:
        token = await self.get_access_token()
        url = f"{BOG_STATEMENT_URL}/{account}/{currency}"
        if start and end:
            url += f"/{start.isoformat()}/{end.isoformat()}"
        try:
            async with self._http() as client:
                r = await client.get(url, headers={"Authorization": f"Bearer {token}"})
        except httpx.HTTPError as e:
            raise BankApiError(f"Statement request failed: {e}")
        if r.status_code in (401, 403):
            self.clear_token()
            raise BankApiError("Statement request unauthorized", status=r.status_code, auth=True)
        if r.status_code != 200:
            raise BankApiError(f"Statement request failed: {r.status_code}", status=r.status_code)
        try:
            body = r.json()
        except ValueError as e:
            raise BankApiError(f"Statement response unreadable: {e}")
        if isinstance(body, dict):
            return body.get("Records") or []
        return body or []


def _extract_rate(body) -> float:
    """NBG answers with a bare number, {rate}, or [{currencies: [{code, rate}]}]."""
    if isinstance(body, (int, float)):
        return float(body)
    if isinstance(body, dict):
        return _n(body.get("rate"))
    if isinstance(body, list) and body:
        for cur in body[0].get("currencies", []):
            if cur.get("code") == "USD":
                return _n(cur.get("rate")) / max(_n(cur.get("quantity"), 1), 1)
    return 0.0

_client = None

def get_client() -> BankClient:
    global _client
    if _client is None:
        _client = BankClient()
    return _client

# ============================================================
# RECONCILIATION
# ============================================================
def normalize_credit(credit: float, usd_rate: float) -> float:
    amount = _n(credit) / usd_rate
    if amount > BANK_FEE_THRESHOLD:
        amount -= amount * BANK_FEE_RATE
    return money(amount)

def payment_target(comment: str) -> str:
    return PAYMENT_TRANSPORTATION if TRANSPORT_KEYWORD in (comment or "") else PAYMENT_AUCTION

def match_car(db: dict, comment: str):
    text = (comment or "").upper()
    for car in db["cars"]:
        vin = car.get("vinCode")
        if vin and vin in text:
            return car
    return None

def process_entries(db: dict, entries: list, usd_rate: float) -> dict:
    """Apply unseen statement entries to cars. Returns {processed, matched, skipped}."""
    seen = {e["entryId"] for e in db["processed_entries"]}
    processed, matched, skipped = 0, 0, 0
    for entry in entries:
        entry_id = entry.get("Id")
        if entry_id is None or entry_id in seen:
            skipped += 1
            continue
        comment = entry.get("EntryComment") or ""
        amount, vin = 0.0, ""
        if comment and _n(entry.get("Credit")) > 0:
            amount = normalize_credit(entry["Credit"], usd_rate)
            car = match_car(db, comment)
            if car:
                vin = car["vinCode"]
                try:
                    cars.apply_bank_payment(db, car["carID"], amount, payment_target(comment))
                    matched += 1
                except HTTPException as e:
                    logger.error("Entry %s: failed to update car %s: %s", entry_id, car["carID"], e.detail)
        db["processed_entries"].append({"entryId": entry_id, "amount": amount, "vinCode": vin,
                                        "processedAt": now_iso()})
        seen.add(entry_id)
        processed += 1
    return {"processed": processed, "matched": matched, "skipped": skipped}

async def sync_statement(client: BankClient, account: str = BOG_ACCOUNT_NUMBER, currency: str = BOG_CURRENCY,
                         start: date = None, end: date = None) -> dict:
    usd_rate = await client.fetch_usd_rate()
    entries = await client.get_statement(account, currency, start, end)
    db = get_db()
    result = process_entries(db, entries, usd_rate)
    save_db(db)
    logger.info("Statement %s/%s: %d entries, %d processed, %d matched (rate %.4f)",
                account, currency, len(entries), result["processed"], result["matched"], usd_rate)
    return {"records": entries, "usdRate": usd_rate, **result}

async def run_statement_job(client: BankClient = None) -> dict:
    """Scheduled/manual sync of yesterday->today. Never raises on upstream failures."""
    client = client or get_client()
    started = datetime.now()
    end = started.date()
    start = end - timedelta(days=1)
    summary = {"startDate": start.isoformat(), "endDate": end.isoformat()}
    try:
        result = await sync_statement(client, start=start, end=end)
        summary.update(success=True, recordCount=len(result["records"]), matched=result["matched"])
    except BankApiError as e:
        logger.error("Bank statement sync failed: %s", e)
        summary.update(success=False, error=str(e), recordCount=0, matched=0)
    finished = datetime.now()
    summary.update(duration=int((finished - started).total_seconds() * 1000), timestamp=finished.isoformat())
    return summary
