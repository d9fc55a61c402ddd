"""Auth request/response schemas."""
import re
from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, field_validator
from teletabib.models.user import UserRole

PHONE_MIN_DIGITS = 7
PHONE_MAX_DIGITS = 15


def _validate_phone_digits(value: str, label: str) -> str:
    s = (value or "").strip()
    digits = re.sub(r"\D", "", s)
    if len(digits) < PHONE_MIN_DIGITS:
        raise ValueError(f"{label} must have at least {PHONE_MIN_DIGITS} digits.")
    if len(digits) > PHONE_MAX_DIGITS:
        raise ValueError(f"{label} cannot exceed {PHONE_MAX_DIGITS} digits.")
    return s


class SignUpRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)
    name: str = Field(min_length=1, max_length=255)
    contact_number: str
    phone: str | None = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Name is required.")
        return v.strip()

    @field_validator("contact_number")
    @classmethod
    def contact_number_valid(cls, v: str) -> str:
        return _validate_phone_digits(v, "Contact number")

    @field_validator("phone")
    @classmethod
    def phone_valid(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return _validate_phone_digits(v, "Phone number")


class DoctorSignUpRequest(BaseModel):
    """Doctor registration form. Accepts the web client's camelCase keys."""
    first_name: str = Field(alias="firstName", min_length=1, max_length=100)
    last_name: str = Field(alias="lastName", min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)
    phone: str
    city: str = Field(min_length=1, max_length=100)
    speciality: str = Field(min_length=1, max_length=255)
    pmdc: str = Field(min_length=1, max_length=50)
    experience: str | None = Field(default=None, max_length=100)
    message: str | None = None

    class Config:
        populate_by_name = True

    @field_validator("first_name", "last_name", "city", "speciality", "pmdc")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("This field is required.")
        return v.strip()

    @field_validator("phone")
    @classmethod
    def phone_valid(cls, v: str) -> str:
        return _validate_phone_digits(v, "Phone number")


class VerifyOtpRequest(BaseModel):
    email: EmailStr
    otp: str

    @field_validator("otp")
    @classmethod
    def otp_digits(cls, v: str) -> str:
        v = (v or "").strip()
        if not v.isdigit() or not 4 <= len(v) <= 10:
            raise ValueError("OTP must be a numeric code.")
        return v


class ResendOtpRequest(BaseModel):
    email: EmailStr


class SignInRequest(BaseModel):
    email: EmailStr
    password: str


class SetTestOtpRequest(BaseModel):
    """Stage a pending registration with a known code (non-production only)."""
    email: EmailStr
    otp: str = "123456"
    name: str = "Test User"
    password: str = "Test@1234"


class UserResponse(BaseModel):
    id: int
    email: str
    name: str
    contact_number: str
    phone: str | None = None
    verified: bool
    role: UserRole

    class Config:
        from_attributes = True


class SignUpResponse(BaseModel):
    success: bool = True
    message: str = "OTP sent to your email. Please verify to complete registration."
    email: str
    expires_in: int = Field(serialization_alias="expiresIn")


class ResendOtpResponse(BaseModel):
    success: bool = True
    message: str = "New verification code sent"
    expires_in: int = Field(serialization_alias="expiresIn")


class AuthResponse(BaseModel):
    """Returned by verify-otp (new account) and sign-in."""
    success: bool = True
    message: str
    token: str
    user: UserResponse
    redirect_to: str = Field(serialization_alias="redirectTo")


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class OtpStatusResponse(BaseModel):
    found: bool
    email: str
    state: str
    name: str | None = None
    otp: str | None = None  # only when DEBUG is on
    attempts: int | None = None
    expires_at: datetime | None = Field(default=None, serialization_alias="expiresAt")
    current_time: datetime = Field(serialization_alias="currentTime")
    time_remaining_ms: int | None = Field(default=None, serialization_alias="timeRemainingMs")
    is_expired: bool | None = Field(default=None, serialization_alias="isExpired")
