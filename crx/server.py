"""
CRX: Vehicle Import Brokerage API
FastAPI routing layer: auth, users, cars ledger, damages, prices, titles,
file import, notifications, invoices, bank sync and password reset.
"""

import os, asyncio, logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, UploadFile, File, Form, HTTPException, Depends, Request, Response, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse

from crx.config import (
    VERSION, LOG_LEVEL, CORS_ORIGINS, SCHEDULER_ENABLED, MAX_UPLOAD_BYTES, MEDIA_TYPES,
    REFRESH_COOKIE_NAME, REFRESH_TOKEN_EXPIRY_DAYS, COOKIE_SECURE,
    ROLE_ADMIN, ROLE_MODERATOR, ROLE_ACCOUNTANT, ROLE_DEALER, PAYMENT_TRANSPORTATION
)
from crx.db import get_db, save_db, load_uploaded_file, DATABASE_URL
from crx.auth import get_current_user, require_roles, bearer_token
from crx.schemas import (
    LoginBody, ChangePasswordBody, PasswordResetRequestBody, PasswordResetBody,
    UserCreate, UserUpdate, RoleUpdate, NotificationPush,
    CarCreate, CarUpdate, TransferBody, DamageCreate, DamageReview,
    PriceCreate, PriceUpdate, DealerTypeCreate, DealerTypeUpdate, TitleCreate, TitleUpdate,
    parse_form_json
)
from crx import (
    auth, users, cars, damages, prices, titles, imports, notifications, invoices, bank, password_reset
)

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler = None
    if SCHEDULER_ENABLED:
        from crx.scheduler import create_scheduler
        scheduler = create_scheduler()
        scheduler.start()
        logger.info("Scheduler started")
    yield
    if scheduler:
        scheduler.shutdown(wait=False)


app = FastAPI(title="CRX Brokerage API", version=VERSION, lifespan=lifespan)
app.add_middleware(CORSMiddleware, allow_origins=CORS_ORIGINS, allow_credentials=True,
                   allow_methods=["*"], allow_headers=["*"])

ADMIN = require_roles(ROLE_ADMIN)
STAFF = require_roles(ROLE_ADMIN, ROLE_MODERATOR)
BACK_OFFICE = require_roles(ROLE_ADMIN, ROLE_MODERATOR, ROLE_ACCOUNTANT)
FINANCE = require_roles(ROLE_ADMIN, ROLE_ACCOUNTANT)
PAYERS = require_roles(ROLE_ADMIN, ROLE_ACCOUNTANT, ROLE_DEALER)

# ============================================================
# HELPERS
# ============================================================
async def _read_uploads(files: Optional[List[UploadFile]]) -> list:
    """Read multipart files into (filename, bytes), enforcing the size limit."""
    out = []
    for f in files or []:
        content = await f.read()
        if len(content) > MAX_UPLOAD_BYTES:
            raise HTTPException(400, f"File '{f.filename}' exceeds {MAX_UPLOAD_BYTES // (1024 * 1024)}MB limit")
        out.append((f.filename or "", content))
    return out

def _set_refresh_cookie(response: Response, token: str):
    response.set_cookie(REFRESH_COOKIE_NAME, token, httponly=True, secure=COOKIE_SECURE, samesite="lax",
                        max_age=REFRESH_TOKEN_EXPIRY_DAYS * 86400, path="/api/auth")

# ============================================================
# HEALTH
# ============================================================
@app.get("/api/health")
async def health():
    return {"status": "ok", "product": "CRX Brokerage API", "version": VERSION,
            "storage": "postgres" if DATABASE_URL else "file"}

# ============================================================
# AUTH
# ============================================================
@app.post("/api/auth/login")
async def login(body: LoginBody, response: Response):
    db = get_db()
    access, refresh, profile = auth.login(db, body.username, body.password)
    save_db(db)
    _set_refresh_cookie(response, refresh)
    return {"access_token": access, "user": profile}

@app.post("/api/auth/refresh")
async def refresh(request: Request, response: Response):
    db = get_db()
    access, new_refresh = auth.refresh_session(db, request.cookies.get(REFRESH_COOKIE_NAME))
    save_db(db)
    _set_refresh_cookie(response, new_refresh)
    return {"access_token": access}

@app.post("/api/auth/logout")
async def logout(request: Request, response: Response):
    db = get_db()
    auth.logout(db, bearer_token(request), request.cookies.get(REFRESH_COOKIE_NAME))
    save_db(db)
    response.delete_cookie(REFRESH_COOKIE_NAME, path="/api/auth")
    return {"message": "Logged out successfully"}

@app.get("/api/auth/profile")
async def profile(user: dict = Depends(get_current_user)):
    return user

@app.post("/api/auth/change-password")
async def change_password(body: ChangePasswordBody, user: dict = Depends(get_current_user)):
    db = get_db()
    auth.change_password(db, user["userID"], body.currentPassword, body.newPassword)
    save_db(db)
    return {"message": "Password changed successfully"}

@app.post("/api/auth/register", status_code=201)
async def register(body: UserCreate, user: dict = Depends(ADMIN)):
    db = get_db()
    created = users.create(db, body.model_dump(mode="json"))
    save_db(db)
    return users.public(created)

# ============================================================
# PASSWORD RESET
# ============================================================
@app.post("/api/password-reset/request")
async def request_password_reset(body: PasswordResetRequestBody):
    db = get_db()
    try:
        # SMTP is blocking; keep it off the event loop
        result = await asyncio.to_thread(password_reset.request_reset, db, body.email)
    except password_reset.EmailDeliveryError as e:
        raise HTTPException(503, str(e))
    save_db(db)
    return result

@app.post("/api/password-reset/reset")
async def reset_password(body: PasswordResetBody):
    db = get_db()
    result = password_reset.reset_password(db, body.token, body.newPassword)
    save_db(db)
    return result

# ============================================================
# USERS
# ============================================================
@app.get("/api/users")
async def list_users(page: int = 1, limit: int = 25, role: Optional[str] = None, level: Optional[str] = None,
                     search: Optional[str] = None, user: dict = Depends(ADMIN)):
    return users.find_all(get_db(), page, limit, role, level, search)

@app.get("/api/users/dealers")
async def list_dealers(page: int = 1, limit: int = 25, level: Optional[str] = None,
                       search: Optional[str] = None, user: dict = Depends(STAFF)):
    return users.find_dealers(get_db(), page, limit, level, search)

@app.get("/api/users/me/notifications")
async def my_notifications(user: dict = Depends(get_current_user)):
    return users.list_notifications(get_db(), user["userID"])

@app.post("/api/users/me/notifications/{note_id}/read")
async def read_notification(note_id: int, user: dict = Depends(get_current_user)):
    db = get_db()
    note = users.mark_notification_read(db, user["userID"], note_id)
    save_db(db)
    return note

@app.get("/api/users/{user_id}")
async def get_user(user_id: int, user: dict = Depends(BACK_OFFICE)):
    return users.public(users.find_by_id(get_db(), user_id))

@app.put("/api/users/{user_id}")
async def update_user(user_id: int, body: UserUpdate, user: dict = Depends(ADMIN)):
    db = get_db()
    updated = users.update(db, user_id, body.fields_set())
    save_db(db)
    return users.public(updated)

@app.put("/api/users/{user_id}/role")
async def update_user_role(user_id: int, body: RoleUpdate, user: dict = Depends(ADMIN)):
    db = get_db()
    updated = users.update_role(db, user_id, body.role)
    save_db(db)
    return users.public(updated)

@app.post("/api/users/{user_id}/notifications", status_code=201)
async def push_user_notification(user_id: int, body: NotificationPush, user: dict = Depends(STAFF)):
    db = get_db()
    note = users.push_notification(users.find_by_id(db, user_id), body.message)
    save_db(db)
    return note

# ============================================================
# CARS
# ============================================================
@app.post("/api/cars", status_code=201)
async def create_car(car: str = Form(...), photos: Optional[List[UploadFile]] = File(None),
                     user: dict = Depends(STAFF)):
    data = parse_form_json(CarCreate, car, "car")
    files = await _read_uploads(photos)
    db = get_db()
    created = cars.create(db, data.model_dump(mode="json"), files)
    save_db(db)
    return created

@app.get("/api/cars")
async def list_cars(page: int = 1, limit: int = 25, vinCode: Optional[str] = None,
                    containerNumber: Optional[str] = None, username: Optional[str] = None,
                    status: Optional[str] = None, buyer: Optional[str] = None,
                    dateOfPurchase: Optional[str] = None, user: dict = Depends(get_current_user)):
    filters = {"vinCode": vinCode, "containerNumber": containerNumber, "username": username,
               "status": status, "buyer": buyer, "dateOfPurchase": dateOfPurchase}
    return cars.find_all(get_db(), filters, page, limit, actor=user)

@app.post("/api/cars/transfer")
async def transfer_to_car(body: TransferBody, user: dict = Depends(PAYERS)):
    db = get_db()
    result = cars.transfer(db, body.id, body.amount, user)
    save_db(db)
    return result

@app.get("/api/cars/{car_id}")
async def get_car(car_id: int, user: dict = Depends(get_current_user)):
    return cars.find_one(get_db(), car_id, actor=user)

@app.put("/api/cars/{car_id}")
async def update_car(car_id: int, body: CarUpdate, user: dict = Depends(STAFF)):
    db = get_db()
    updated = cars.update(db, car_id, body.fields_set())
    save_db(db)
    return updated

@app.post("/api/cars/{car_id}/photos")
async def add_car_photos(car_id: int, photos: List[UploadFile] = File(...), user: dict = Depends(STAFF)):
    files = await _read_uploads(photos)
    db = get_db()
    updated = cars.add_photos(db, car_id, files)
    save_db(db)
    return updated

@app.delete("/api/cars/{car_id}")
async def delete_car(car_id: int, user: dict = Depends(ADMIN)):
    db = get_db()
    deleted = cars.delete(db, car_id)
    save_db(db)
    return {"success": True, "car": deleted}

# ============================================================
# DAMAGES
# ============================================================
@app.post("/api/damages", status_code=201)
async def create_damage(damage: str = Form(...), images: Optional[List[UploadFile]] = File(None),
                        user: dict = Depends(get_current_user)):
    data = parse_form_json(DamageCreate, damage, "damage")
    files = await _read_uploads(images)
    db = get_db()
    created = damages.create(db, data.model_dump(mode="json"), files, actor=user)
    save_db(db)
    return created

@app.get("/api/damages")
async def list_damages(user: dict = Depends(get_current_user)):
    return damages.find_all(get_db(), user)

@app.get("/api/damages/{damage_id}")
async def get_damage(damage_id: int, user: dict = Depends(get_current_user)):
    return damages.find_one_claim(get_db(), damage_id, actor=user)

@app.put("/api/damages/{damage_id}")
async def review_damage(damage_id: int, body: DamageReview, user: dict = Depends(STAFF)):
    db = get_db()
    updated = damages.review(db, damage_id, body.isApproved, body.approverComment)
    save_db(db)
    return updated

# ============================================================
# PRICES
# ============================================================
@app.post("/api/prices/base", status_code=201)
async def create_price(body: PriceCreate, user: dict = Depends(ADMIN)):
    db = get_db()
    row = prices.create_price(db, body.model_dump(mode="json"))
    save_db(db)
    return row

@app.get("/api/prices/base")
async def list_prices(user: dict = Depends(get_current_user)):
    db = get_db()
    if user["role"] in (ROLE_ADMIN, ROLE_MODERATOR):
        return prices.find_all(db)
    if user["role"] == ROLE_DEALER:
        return prices.find_all_for_dealer(db, user.get("level"))
    raise HTTPException(403, "Not allowed to view prices")

@app.get("/api/prices/base/{price_id}")
async def get_price(price_id: int, user: dict = Depends(ADMIN)):
    return prices.find_one(get_db(), price_id)

@app.put("/api/prices/base/{price_id}")
async def update_price(price_id: int, body: PriceUpdate, user: dict = Depends(ADMIN)):
    db = get_db()
    row = prices.update(db, price_id, body.fields_set())
    save_db(db)
    return row

@app.post("/api/prices/upload")
async def upload_prices(file: UploadFile = File(...), user: dict = Depends(ADMIN)):
    content = await file.read()
    rows = imports.read_sheet(file.filename, content)
    db = get_db()
    result = prices.import_rows(db, rows)
    save_db(db)
    return result

@app.post("/api/prices/dealer-types", status_code=201)
async def create_dealer_type(body: DealerTypeCreate, user: dict = Depends(ADMIN)):
    db = get_db()
    dt = prices.create_dealer_type(db, body.model_dump(mode="json"))
    save_db(db)
    return dt

@app.get("/api/prices/dealer-types")
async def list_dealer_types(user: dict = Depends(get_current_user)):
    return prices.list_dealer_types(get_db())

@app.get("/api/prices/dealer-types/{dt_id}")
async def get_dealer_type(dt_id: int, user: dict = Depends(get_current_user)):
    return prices.get_dealer_type(get_db(), dt_id)

@app.put("/api/prices/dealer-types/{dt_id}")
async def update_dealer_type(dt_id: int, body: DealerTypeUpdate, user: dict = Depends(ADMIN)):
    db = get_db()
    dt = prices.update_dealer_type(db, dt_id, body.fields_set())
    save_db(db)
    return dt

@app.delete("/api/prices/dealer-types/{dt_id}")
async def delete_dealer_type(dt_id: int, user: dict = Depends(ADMIN)):
    db = get_db()
    dt = prices.delete_dealer_type(db, dt_id)
    save_db(db)
    return {"success": True, "dealerType": dt}

# ============================================================
# TITLES & FILE IMPORT
# ============================================================
@app.get("/api/titles")
async def list_titles(user: dict = Depends(get_current_user)):
    return titles.find_all(get_db())

@app.get("/api/titles/{title_id}")
async def get_title(title_id: int, user: dict = Depends(get_current_user)):
    return titles.find_one_title(get_db(), title_id)

@app.post("/api/titles", status_code=201)
async def create_title(body: TitleCreate, user: dict = Depends(STAFF)):
    db = get_db()
    title = titles.create(db, body.model_dump(mode="json"))
    save_db(db)
    return title

@app.put("/api/titles/{title_id}")
async def update_title(title_id: int, body: TitleUpdate, user: dict = Depends(STAFF)):
    db = get_db()
    title = titles.update(db, title_id, body.fields_set())
    save_db(db)
    return title

@app.get("/api/file-upload")
async def list_file_entries(user: dict = Depends(get_current_user)):
    return imports.find_all_entries(get_db())

@app.post("/api/file-upload")
async def upload_title_file(file: UploadFile = File(...), user: dict = Depends(STAFF)):
    content = await file.read()
    db = get_db()
    result = imports.import_titles(db, file.filename, content, file.content_type)
    save_db(db)
    return result

# ============================================================
# NOTIFICATION BANNER
# ============================================================
@app.get("/api/notification")
async def get_notification(user: dict = Depends(get_current_user)):
    return notifications.get_current(get_db())

@app.put("/api/notification")
async def update_notification(isOn: Optional[str] = Form(None), message: Optional[str] = Form(None),
                              user: dict = Depends(STAFF)):
    db = get_db()
    banner = notifications.update(db, isOn, message)
    save_db(db)
    return banner

@app.post("/api/notification/image")
async def upload_notification_image(file: UploadFile = File(...), user: dict = Depends(STAFF)):
    name, content = (await _read_uploads([file]))[0]
    db = get_db()
    banner = notifications.upload_image(db, name, content)
    save_db(db)
    return banner

@app.delete("/api/notification/image")
async def clear_notification_image(user: dict = Depends(STAFF)):
    db = get_db()
    banner = notifications.clear_image(db)
    save_db(db)
    return banner

# ============================================================
# INVOICES
# ============================================================
@app.get("/api/invoices/generate/{car_id}")
async def generate_invoice(car_id: int, invoice_type: str = Query(PAYMENT_TRANSPORTATION, alias="type"),
                           amount: Optional[float] = None, user: dict = Depends(get_current_user)):
    db = get_db()
    car = cars.find_one(db, car_id, actor=user)
    _, pdf = invoices.generate(db, car, invoice_type, amount)
    save_db(db)
    return Response(content=pdf, media_type="application/pdf", headers={
        "Content-Disposition": f'attachment; filename="invoice-{car_id}.pdf"',
        "Cache-Control": "no-cache, no-store, must-revalidate",
        "Pragma": "no-cache", "Expires": "0"})

# ============================================================
# BANK
# ============================================================
@app.get("/api/bank/statement")
async def bank_statement(accountNumber: Optional[str] = None, currency: Optional[str] = None,
                         user: dict = Depends(FINANCE)):
    kwargs = {k: v for k, v in (("account", accountNumber), ("currency", currency)) if v}
    try:
        return await bank.sync_statement(bank.get_client(), **kwargs)
    except bank.BankApiError as e:
        raise e.to_http()

@app.post("/api/bank/trigger-sync")
async def bank_trigger_sync(user: dict = Depends(FINANCE)):
    logger.info("Manual bank sync triggered by %s", user["username"])
    return await bank.run_statement_job()

# ============================================================
# FILE SERVING
# ============================================================
@app.get("/api/uploads/{folder}/{filename}")
async def serve_upload(folder: str, filename: str):
    """Serve a stored upload (car photos, damage images, banner, invoices)."""
    fp, exists = load_uploaded_file(folder, filename)
    if not exists: raise HTTPException(404, "File not found")
    mt = MEDIA_TYPES.get(fp.suffix.lower(), "application/octet-stream")
    return FileResponse(fp, media_type=mt)

if __name__ == "__main__":
    import uvicorn
    port = int(os.environ.get("PORT", 8000))
    logger.info("Starting CRX Brokerage API v%s on port %d", VERSION, port)
    uvicorn.run(app, host="0.0.0.0", port=port)
