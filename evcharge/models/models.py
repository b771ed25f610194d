# models.py
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from typing import Any, Optional


# ---- auth ----

class LoginBody(BaseModel):
    email: EmailStr
    password: str


class RegisterBody(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6)
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class OwnerRegisterBody(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6)
    displayName: Optional[str] = None
    phone: Optional[str] = None


class AdminLoginBody(BaseModel):
    email: EmailStr
    password: str
    rememberMe: bool = False


class RefreshBody(BaseModel):
    refreshToken: Optional[str] = None


class ChangePasswordBody(BaseModel):
    currentPassword: str
    newPassword: str = Field(min_length=6)


class ProfileBody(BaseModel):
    name: Optional[str] = None
    displayName: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class SendResetBody(BaseModel):
    email: EmailStr
    role: Optional[str] = None


class ResetPasswordBody(BaseModel):
    token: str
    newPassword: str = Field(min_length=6)


# ---- users ----

class UserUpdateBody(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    avatar: Optional[str] = None
    bio: Optional[str] = None
    preferences: Optional[dict] = None


class FavoriteBody(BaseModel):
    stationId: str


# ---- stations ----

class LocationBody(BaseModel):
    lat: Optional[float] = None
    lng: Optional[float] = None
    address: Optional[str] = None


class StationBody(BaseModel):
    # Acepta los alias de precio/conectores que envían los formularios
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    address: Optional[str] = None
    location: Optional[LocationBody] = None
    pricing: Optional[dict] = None
    connectors: Optional[list] = None
    slots: Optional[int] = None
    amenities: Optional[list[str]] = None
    status: Optional[str] = None


# ---- bookings ----

class BookingBody(BaseModel):
    stationId: Optional[str] = None
    startTime: Optional[Any] = None
    endTime: Optional[Any] = None
    durationMins: Optional[float] = None
    vehicleType: str = "car"
    connectorType: str = "type2"
    notes: Optional[str] = None
    pricePerKwh: Optional[float] = None


class BookingUpdateBody(BaseModel):
    status: Optional[str] = None
    notes: Optional[str] = None


# ---- payments ----

class IntentBody(BaseModel):
    bookingId: str
    amount: Optional[float] = None
    currency: str = "INR"
    paymentMethod: str = "card"
    customerEmail: Optional[str] = None
    customerName: Optional[str] = None


class CheckoutBody(BaseModel):
    bookingId: str


class ConfirmBody(BaseModel):
    cardNumber: Optional[str] = None


class VerifyBody(BaseModel):
    paymentId: str
    bookingId: Optional[str] = None
    payload: Optional[dict] = None


class PayoutBody(BaseModel):
    amount: float


# ---- notifications ----

class NotificationSendBody(BaseModel):
    title: Optional[str] = None
    message: Optional[str] = None
    type: str = "system"
    targetUsers: Optional[list[str]] = None


# ---- admin ----

class AdminUserUpdateBody(BaseModel):
    role: Optional[str] = None
    status: Optional[str] = None
    verified: Optional[bool] = None
    active: Optional[bool] = None


class RoleBody(BaseModel):
    role: str


class ReasonBody(BaseModel):
    reason: Optional[str] = None


class FeatureBody(BaseModel):
    featured: Optional[bool] = None


class BulkUpdateBody(BaseModel):
    stationIds: list[str]
    updates: dict


class AdminBookingUpdateBody(BaseModel):
    status: str


class ProcessPayoutBody(BaseModel):
    payoutId: Optional[str] = None
    ownerId: Optional[str] = None


class SettingsBody(BaseModel):
    platformFeePercent: Optional[float] = Field(default=None, ge=0, le=50)
    currency: Optional[str] = None
    supportEmail: Optional[EmailStr] = None
