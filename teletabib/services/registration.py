"""Registration OTP gate.

A signup is staged (not written to users) until the emailed one-time code is
verified. Per email the flow is NONE -> PENDING -> VERIFIED, or PENDING -> EXPIRED
-> NONE once the staged entry is cleared.
"""
from __future__ import annotations

import enum
import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from teletabib.config import Settings, get_settings
from teletabib.errors import ApiError
from teletabib.models.doctor_profile import DoctorProfile
from teletabib.models.user import User, UserRole
from teletabib.services.audit_log import create_log, CATEGORY_FAILED_ATTEMPT, CATEGORY_REGISTRATION
from teletabib.services.auth import create_access_token, get_password_hash
from teletabib.services.notifications import send_otp_email, send_welcome_email
from teletabib.services.staging import Clock, DoctorDetails, PendingRegistration, StagingStore, utcnow

logger = logging.getLogger(__name__)


class RegistrationState(str, enum.Enum):
    none = "none"
    pending = "pending"
    expired = "expired"
    verified = "verified"


class RegistrationError(ApiError):
    error = "Registration failed"


class DuplicateUserError(RegistrationError):
    error = "User already exists with this email"


class RegistrationInProgressError(RegistrationError):
    error = "Registration already in progress. Please verify your OTP or wait for it to expire."

    def __init__(self):
        super().__init__(
            message=(
                "A registration is already in progress for this email. Please check your email "
                "for the OTP or wait for it to expire before trying again."
            )
        )


class NoPendingRegistrationError(RegistrationError):
    error = "No pending registration found or OTP expired"


class CodeExpiredError(RegistrationError):
    error = "OTP expired. Please request a new one."


class InvalidCodeError(RegistrationError):
    error = "Invalid OTP"


class TooManyAttemptsError(RegistrationError):
    error = "Too many invalid attempts. Please sign up again."


class NotificationDeliveryError(RegistrationError):
    status_code = 503
    error = "We could not send the verification email. Please try again later."


@dataclass
class OtpDispatch:
    email: str
    expires_at: datetime
    expires_in: int  # minutes


@dataclass
class CompletedRegistration:
    user: User
    token: str

    @property
    def redirect_to(self) -> str:
        return self.user.redirect_to


class EmailNotifier:
    """Sends gate notifications through the configured mail provider."""

    def send_otp(self, email: str, code: str, name: str | None = None) -> bool:
        return send_otp_email(email, code, name=name)

    def send_welcome(self, email: str, name: str | None = None) -> bool:
        return send_welcome_email(email, name=name)


def normalize_email(email: str | None) -> str:
    return str(email or "").strip().lower()


def generate_otp(length: int = 6) -> str:
    return f"{secrets.randbelow(10 ** length):0{length}d}"


class RegistrationGate:
    def __init__(
        self,
        db: Session,
        store: StagingStore,
        notifier: EmailNotifier | None = None,
        clock: Clock = utcnow,
        settings: Settings | None = None,
    ):
        settings = settings or get_settings()
        self.db = db
        self.store = store
        self.notifier = notifier or EmailNotifier()
        self.clock = clock
        self.windows = {
            UserRole.patient: timedelta(minutes=settings.otp_expire_minutes),
            UserRole.doctor: timedelta(minutes=settings.doctor_otp_expire_minutes),
        }
        self.grace = timedelta(seconds=settings.staging_grace_seconds)
        self.max_attempts = settings.otp_max_attempts
        self.otp_length = settings.otp_length

    def _window(self, role: UserRole) -> timedelta:
        return self.windows.get(role, self.windows[UserRole.patient])

    def _dispatch(self, record: PendingRegistration) -> OtpDispatch:
        minutes = int(self._window(record.role).total_seconds() // 60)
        return OtpDispatch(email=record.email, expires_at=record.otp_expires_at, expires_in=minutes)

    def _retention(self, record: PendingRegistration, now: datetime) -> timedelta:
        # Keep the entry a little past code expiry so late attempts report "expired"
        return record.otp_expires_at + self.grace - now

    def _locked_out(self, attempts: int) -> bool:
        return bool(self.max_attempts) and attempts >= self.max_attempts

    def _user_exists(self, email: str) -> bool:
        return self.db.query(User.id).filter(User.email == email).first() is not None

    def _log_failed_verification(self, email: str, reason: str, request_meta: dict | None) -> None:
        meta = request_meta or {}
        try:
            create_log(
                self.db,
                CATEGORY_FAILED_ATTEMPT,
                "OTP verification failed",
                f"OTP verification failed for {email}: {reason}.",
                actor_email=email,
                ip_address=meta.get("ip_address"),
                user_agent=meta.get("user_agent"),
                meta={"reason": reason},
            )
            self.db.commit()
        except SQLAlchemyError:
            # The verification outcome stands even if the audit row is lost
            self.db.rollback()
            logger.exception("[Auth] Could not record failed verification for %s (%s)", email, reason)

    def state(self, email: str) -> RegistrationState:
        email = normalize_email(email)
        if self._user_exists(email):
            return RegistrationState.verified
        record = self.store.get(email)
        if record is None:
            return RegistrationState.none
        if record.is_expired(self.clock()):
            return RegistrationState.expired
        return RegistrationState.pending

    def start_signup(
        self,
        email: str,
        password: str,
        name: str,
        contact_number: str,
        phone: str | None = None,
    ) -> OtpDispatch:
        """Stage a patient signup and email its code. Nothing is written to users yet."""
        return self._stage(
            normalize_email(email),
            password,
            DuplicateUserError(),
            name=name.strip(),
            contact_number=contact_number.strip(),
            phone=(phone or "").strip() or None,
        )

    def start_doctor_signup(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        phone: str,
        city: str,
        speciality: str,
        pmdc: str,
        experience: str | None = None,
        message: str | None = None,
    ) -> OtpDispatch:
        """Stage a doctor signup. Verification creates a doctor account with its profile."""
        details = DoctorDetails(
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            city=city.strip(),
            speciality=speciality.strip(),
            pmdc=pmdc.strip(),
            experience=(experience or "").strip() or None,
            message=(message or "").strip() or None,
        )
        phone = phone.strip()
        return self._stage(
            normalize_email(email),
            password,
            DuplicateUserError("Doctor already exists with this email"),
            role=UserRole.doctor,
            name=f"{details.first_name} {details.last_name}",
            contact_number=phone,
            phone=phone,
            doctor=details,
        )

    def _stage(self, email: str, password: str, duplicate: DuplicateUserError, role: UserRole = UserRole.patient, **fields) -> OtpDispatch:
        if self._user_exists(email):
            logger.info("[Auth] Sign-up refused, user already exists: %s", email)
            raise duplicate

        now = self.clock()
        existing = self.store.get(email)
        if existing is not None:
            if not existing.is_expired(now):
                logger.info("[Auth] Sign-up refused, registration in progress: %s", email)
                raise RegistrationInProgressError()
            # Only the entry that was read; a fresh one staged meanwhile must survive
            if self.store.delete_if(email, existing):
                logger.info("[Auth] Cleared expired pending registration for %s", email)

        code = generate_otp(self.otp_length)
        record = PendingRegistration(
            email=email,
            hashed_password=get_password_hash(password),
            role=role,
            otp=code,
            otp_expires_at=now + self._window(role),
            created_at=now,
            **fields,
        )
        if not self.store.put_if_absent(email, record, self._retention(record, now)):
            # Lost the race to a concurrent signup for the same email
            raise RegistrationInProgressError()

        try:
            sent = self.notifier.send_otp(email, code, record.name)
        except Exception:
            self.store.delete_if(email, record)
            raise
        if not sent:
            self.store.delete_if(email, record)
            logger.error("[Auth] OTP email not sent to %s; pending registration discarded", email)
            raise NotificationDeliveryError()

        logger.info(
            "[Auth] Pending %s registration staged for %s, expires at %s",
            role.value,
            email,
            record.otp_expires_at.isoformat(),
        )
        return self._dispatch(record)

    def verify(self, email: str, otp: str, request_meta: dict | None = None) -> CompletedRegistration:
        """Check the code and, on a match, create the user from the staged data (one-shot)."""
        email = normalize_email(email)
        submitted = (otp or "").strip()
        now = self.clock()

        record = self.store.get(email)
        if record is None:
            raise NoPendingRegistrationError()

        if record.is_expired(now):
            self.store.delete_if(email, record)
            self._log_failed_verification(email, "expired_code", request_meta)
            raise CodeExpiredError()

        if self._locked_out(record.attempts):
            self.store.delete_if(email, record)
            self._log_failed_verification(email, "too_many_attempts", request_meta)
            raise TooManyAttemptsError()

        if not hmac.compare_digest(record.otp, submitted):
            # Counted against the code that was read; a resend in between is left alone
            self.store.record_failed_attempt(email, record.otp)
            self._log_failed_verification(email, "invalid_code", request_meta)
            raise InvalidCodeError()

        consumed = self.store.pop(email)
        if consumed is None:
            # Another request verified (or cleared) this signup first
            raise NoPendingRegistrationError()
        if not hmac.compare_digest(consumed.otp, submitted):
            # A resend swapped the code between the read and the consume
            self.store.put_if_absent(email, consumed, self._retention(consumed, now))
            raise InvalidCodeError()
        if self._locked_out(consumed.attempts):
            # Concurrent wrong guesses reached the limit before this one was consumed
            self._log_failed_verification(email, "too_many_attempts", request_meta)
            raise TooManyAttemptsError()

        user = User(
            email=consumed.email,
            hashed_password=consumed.hashed_password,
            name=consumed.name,
            contact_number=consumed.contact_number,
            phone=consumed.phone,
            verified=True,
            role=consumed.role,
        )
        self.db.add(user)
        try:
            self.db.flush()
            if consumed.doctor is not None:
                self.db.add(DoctorProfile(user_id=user.id, **consumed.doctor.model_dump()))
            create_log(
                self.db,
                CATEGORY_REGISTRATION,
                "Registration completed",
                f"User {user.email} verified their email and was registered.",
                actor_user_id=user.id,
                actor_email=user.email,
                ip_address=(request_meta or {}).get("ip_address"),
                user_agent=(request_meta or {}).get("user_agent"),
                meta={"role": user.role},
            )
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.warning("[Auth] %s was registered concurrently; pending entry discarded", email)
            raise DuplicateUserError()
        except SQLAlchemyError:
            self.db.rollback()
            # Give the user another chance once the database is back
            self.store.put_if_absent(email, consumed, self._retention(consumed, now))
            raise
        self.db.refresh(user)

        if not self.notifier.send_welcome(user.email, user.name):
            logger.warning("[Auth] Welcome email not sent to %s", user.email)

        token = create_access_token(user.id, user.email, user.role)
        logger.info("[Auth] Registration completed for %s (user_id=%s, role=%s)", user.email, user.id, user.role.value)
        return CompletedRegistration(user=user, token=token)

    def resend(self, email: str) -> OtpDispatch:
        """Issue a fresh code with a full new window; attempts start over."""
        email = normalize_email(email)
        now = self.clock()
        record = self.store.get(email)
        if record is None:
            raise NoPendingRegistrationError("No pending registration found")

        code = generate_otp(self.otp_length)
        renewed = record.model_copy(
            update={"otp": code, "otp_expires_at": now + self._window(record.role), "attempts": 0}
        )
        if not self.store.replace(email, renewed, self._retention(renewed, now)):
            raise NoPendingRegistrationError("No pending registration found")

        if not self.notifier.send_otp(email, code, renewed.name):
            # The entry keeps the new code; the user can ask for another resend
            logger.error("[Auth] Resend OTP email not sent to %s", email)
            raise NotificationDeliveryError()

        logger.info("[Auth] OTP re-sent to %s, expires at %s", email, renewed.otp_expires_at.isoformat())
        return self._dispatch(renewed)

    def stage_test_registration(
        self,
        email: str,
        otp: str,
        name: str,
        password: str,
        contact_number: str = "+1234567890",
    ) -> PendingRegistration:
        """Stage an entry with a known code, overwriting any existing one. Debug only."""
        email = normalize_email(email)
        now = self.clock()
        record = PendingRegistration(
            email=email,
            hashed_password=get_password_hash(password),
            name=name,
            contact_number=contact_number,
            phone=contact_number,
            otp=otp,
            otp_expires_at=now + self._window(UserRole.patient),
            created_at=now,
        )
        self.store.put(email, record, self._retention(record, now))
        return record
