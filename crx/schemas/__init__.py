"""
CRX: Request Schemas
Pydantic models for JSON bodies and JSON-string form fields.
"""
from datetime import date
from typing import Optional, List

from pydantic import BaseModel, ConfigDict, Field, EmailStr, ValidationError
from fastapi import HTTPException

from crx.config import MIN_PASSWORD_LENGTH


class _Body(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True, allow_inf_nan=False)

    def fields_set(self) -> dict:
        """Only the fields the client actually sent, JSON-ready."""
        return self.model_dump(mode="json", exclude_unset=True)


# ============================================================
# AUTH
# ============================================================
class LoginBody(_Body):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)

class ChangePasswordBody(_Body):
    currentPassword: str = Field(min_length=1)
    newPassword: str = Field(min_length=MIN_PASSWORD_LENGTH)

class PasswordResetRequestBody(_Body):
    email: EmailStr

class PasswordResetBody(_Body):
    token: str = Field(min_length=1)
    newPassword: str = Field(min_length=MIN_PASSWORD_LENGTH)

# ============================================================
# USERS
# ============================================================
class UserCreate(_Body):
    userID: Optional[int] = Field(None, ge=1)
    username: str = Field(min_length=3)
    firstname: str = Field(min_length=1)
    lastname: str = Field(min_length=1)
    password: str = Field(min_length=MIN_PASSWORD_LENGTH)
    email: EmailStr
    role: Optional[str] = None
    level: Optional[str] = None
    isActive: bool = True
    totalBalance: float = Field(0, ge=0)
    profitBalance: float = Field(0, ge=0)
    phoneNumber: Optional[str] = None
    personalManager: Optional[str] = None
    personalExpert: Optional[str] = None

class UserUpdate(_Body):
    firstname: Optional[str] = None
    lastname: Optional[str] = None
    password: Optional[str] = Field(None, min_length=MIN_PASSWORD_LENGTH)
    email: Optional[EmailStr] = None
    level: Optional[str] = None
    isActive: Optional[bool] = None
    totalBalance: Optional[float] = Field(None, ge=0)
    profitBalance: Optional[float] = Field(None, ge=0)
    phoneNumber: Optional[str] = None
    personalManager: Optional[str] = None
    personalExpert: Optional[str] = None

class RoleUpdate(_Body):
    role: str

class NotificationPush(_Body):
    message: str = Field(min_length=1)

# ============================================================
# CARS
# ============================================================
class _CarFields(_Body):
    carName: Optional[str] = None
    location: Optional[str] = None
    lotNumber: Optional[str] = None
    auctionName: Optional[str] = None
    dateOfPurchase: Optional[date] = None
    dateOfArrival: Optional[date] = None
    comment: Optional[str] = None
    shippingLine: Optional[str] = None
    dateOfContainerOpening: Optional[date] = None
    greenDate: Optional[date] = None
    buyer: Optional[str] = None
    buyerPN: Optional[str] = None
    buyerPhone: Optional[str] = None
    containerNumber: Optional[str] = None
    arrivalPort: Optional[str] = None
    auctionPrice: Optional[float] = Field(None, ge=0)
    transportationPrice: Optional[float] = Field(None, ge=0)
    auctionFine: Optional[float] = Field(None, ge=0)
    titlePrice: Optional[float] = Field(None, ge=0)
    interestSum: Optional[float] = Field(None, ge=0)
    financingAmount: Optional[float] = Field(None, ge=0)
    bonusReceiver: Optional[str] = None
    bonusAmount: Optional[float] = Field(None, ge=0)
    isHybridOrElectric: Optional[bool] = None
    isOffsite: Optional[bool] = None
    isTaken: Optional[bool] = None
    isTitleTaken: Optional[bool] = None
    doubleRate: Optional[bool] = None
    oversized: Optional[bool] = None
    iAuctionClosed: Optional[bool] = None

class CarCreate(_CarFields):
    username: str = Field(min_length=1)
    vinCode: str = Field(min_length=1)

class CarUpdate(_CarFields):
    username: Optional[str] = Field(None, min_length=1)
    vinCode: Optional[str] = Field(None, min_length=1)
    status: Optional[str] = None
    paid: Optional[float] = Field(None, ge=0)
    profit: Optional[float] = None

class TransferBody(_Body):
    id: int = Field(ge=1)
    amount: float = Field(ge=0)

# ============================================================
# DAMAGES
# ============================================================
class DamageCreate(_Body):
    carID: int = Field(ge=1)
    comment: Optional[str] = None
    amount: float = Field(gt=0)

class DamageReview(_Body):
    isApproved: bool
    approverComment: Optional[str] = None

# ============================================================
# PRICES
# ============================================================
class PriceCreate(_Body):
    location: str = Field(min_length=1)
    basePrice: float = Field(ge=0)
    upsellAmount: float = Field(0, ge=0)

class PriceUpdate(_Body):
    location: Optional[str] = Field(None, min_length=1)
    basePrice: Optional[float] = Field(None, ge=0)
    upsellAmount: Optional[float] = Field(None, ge=0)

class DealerTypeCreate(_Body):
    name: str = Field(min_length=1)
    amount: float

class DealerTypeUpdate(_Body):
    name: Optional[str] = Field(None, min_length=1)
    amount: Optional[float] = None

# ============================================================
# TITLES
# ============================================================
class TitleCreate(_Body):
    name: str = Field(min_length=1)
    description: Optional[str] = ""

class TitleUpdate(_Body):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None

# ============================================================
# FORM JSON FIELDS
# ============================================================
def parse_form_json(model, raw: str, field: str):
    """Validate a JSON-string multipart field against a schema.
    Invalid JSON → 400, schema violations → 422."""
    try:
        return model.model_validate_json(raw)
    except ValidationError as e:
        if any(err["type"] == "json_invalid" for err in e.errors()):
            raise HTTPException(400, f"Invalid JSON in '{field}' field")
        raise HTTPException(422, [{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()])
