"""Authentication: OTP-gated sign-up, sign-in and account endpoints."""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, Request
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from teletabib.config import get_settings
from teletabib.database import get_db
from teletabib.dependencies import (
    get_clock,
    get_current_user,
    get_registration_gate,
    require_debug_endpoints,
)
from teletabib.errors import InfrastructureError, InvalidCredentialsError
from teletabib.models.user import User
from teletabib.schemas.auth import (
    AuthResponse,
    DoctorSignUpRequest,
    MessageResponse,
    OtpStatusResponse,
    ResendOtpRequest,
    ResendOtpResponse,
    SetTestOtpRequest,
    SignInRequest,
    SignUpRequest,
    SignUpResponse,
    UserResponse,
    VerifyOtpRequest,
)
from teletabib.services.audit_log import create_log, CATEGORY_FAILED_ATTEMPT
from teletabib.services.auth import create_access_token, verify_password
from teletabib.services.registration import RegistrationGate, normalize_email
from teletabib.services.staging import Clock

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _request_meta(request: Request) -> dict:
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": (request.headers.get("user-agent") or "").strip() or None,
    }


@contextmanager
def _infrastructure_guard(error: str, email: str):
    """Turn store/database outages into a 500 with a generic message."""
    try:
        yield
    except (SQLAlchemyError, RedisError) as e:
        logger.exception("[Auth] %s for %s", error, email)
        raise InfrastructureError(error) from e


@router.post("/sign-up", response_model=SignUpResponse)
def sign_up(data: SignUpRequest, gate: RegistrationGate = Depends(get_registration_gate)):
    """Stage the registration and email a one-time code. The account is created by /verify-otp."""
    with _infrastructure_guard("Failed to process registration", data.email):
        dispatch = gate.start_signup(
            email=data.email,
            password=data.password,
            name=data.name,
            contact_number=data.contact_number,
            phone=data.phone,
        )
    return SignUpResponse(email=dispatch.email, expires_in=dispatch.expires_in)


@router.post("/doctor-signup", response_model=SignUpResponse)
def doctor_sign_up(data: DoctorSignUpRequest, gate: RegistrationGate = Depends(get_registration_gate)):
    """Same OTP gate as /sign-up; verification creates a doctor account and profile."""
    with _infrastructure_guard("Failed to process doctor registration", data.email):
        dispatch = gate.start_doctor_signup(
            email=data.email,
            password=data.password,
            first_name=data.first_name,
            last_name=data.last_name,
            phone=data.phone,
            city=data.city,
            speciality=data.speciality,
            pmdc=data.pmdc,
            experience=data.experience,
            message=data.message,
        )
    return SignUpResponse(
        message="OTP sent to your email. Please verify to complete doctor registration.",
        email=dispatch.email,
        expires_in=dispatch.expires_in,
    )


@router.post("/verify-otp", response_model=AuthResponse, status_code=201)
def verify_otp(request: Request, data: VerifyOtpRequest, gate: RegistrationGate = Depends(get_registration_gate)):
    with _infrastructure_guard("Verification failed", data.email):
        completed = gate.verify(data.email, data.otp, request_meta=_request_meta(request))
    return AuthResponse(
        message="Registration successful",
        token=completed.token,
        user=UserResponse.model_validate(completed.user),
        redirect_to=completed.redirect_to,
    )


@router.post("/resend-otp", response_model=ResendOtpResponse)
def resend_otp(data: ResendOtpRequest, gate: RegistrationGate = Depends(get_registration_gate)):
    with _infrastructure_guard("Failed to resend OTP", data.email):
        dispatch = gate.resend(data.email)
    return ResendOtpResponse(expires_in=dispatch.expires_in)


@router.post("/sign-in", response_model=AuthResponse)
def sign_in(request: Request, data: SignInRequest, db: Session = Depends(get_db)):
    email = normalize_email(data.email)
    user = db.query(User).filter(User.email == email).first()
    if not user or user.deleted_at is not None or not verify_password(data.password, user.hashed_password):
        meta = _request_meta(request)
        create_log(
            db,
            CATEGORY_FAILED_ATTEMPT,
            "Sign-in failed",
            f"Failed sign-in attempt for email: {email}.",
            actor_email=email,
            ip_address=meta["ip_address"],
            user_agent=meta["user_agent"],
            meta={"reason": "invalid_email_or_password"},
        )
        db.commit()
        raise InvalidCredentialsError()
    token = create_access_token(user.id, user.email, user.role)
    return AuthResponse(
        message="Sign in successful",
        token=token,
        user=UserResponse.model_validate(user),
        redirect_to=user.redirect_to,
    )


@router.post("/logout", response_model=MessageResponse)
def logout():
    # Tokens are stateless; the client discards its copy
    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)):
    return current_user


@router.delete("/delete-account", response_model=MessageResponse)
def delete_account(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    """Soft delete: the row stays (email remains taken) but can no longer sign in."""
    current_user.deleted_at = datetime.now(timezone.utc)
    db.commit()
    logger.info("[Auth] Account soft-deleted: user_id=%s", current_user.id)
    return MessageResponse(message="Account deleted successfully")


# --- Debug (non-production only) ---

debug_router = APIRouter(
    prefix="/api/auth/debug",
    tags=["auth-debug"],
    dependencies=[Depends(require_debug_endpoints)],
)


@debug_router.get("/otp-status", response_model=OtpStatusResponse)
def otp_status(
    email: str = Query(..., min_length=3),
    gate: RegistrationGate = Depends(get_registration_gate),
    clock: Clock = Depends(get_clock),
):
    email = normalize_email(email)
    now = clock()
    state = gate.state(email)
    record = gate.store.get(email)
    if record is None:
        return OtpStatusResponse(found=False, email=email, state=state.value, current_time=now)
    remaining = record.otp_expires_at - now
    return OtpStatusResponse(
        found=True,
        email=email,
        state=state.value,
        name=record.name,
        otp=record.otp if get_settings().debug else None,
        attempts=record.attempts,
        expires_at=record.otp_expires_at,
        current_time=now,
        time_remaining_ms=int(remaining.total_seconds() * 1000),
        is_expired=record.is_expired(now),
    )


@debug_router.delete("/clear-otps", response_model=MessageResponse)
def clear_otps(gate: RegistrationGate = Depends(get_registration_gate)):
    removed = gate.store.clear()
    logger.info("[Auth] Debug: cleared %d pending registration(s)", removed)
    return MessageResponse(message=f"Cleared {removed} temporary entries")


@debug_router.post("/set-test-otp", response_model=MessageResponse)
def set_test_otp(data: SetTestOtpRequest, gate: RegistrationGate = Depends(get_registration_gate)):
    record = gate.stage_test_registration(data.email, otp=data.otp, name=data.name, password=data.password)
    return MessageResponse(message=f"Test data set for {record.email}")
