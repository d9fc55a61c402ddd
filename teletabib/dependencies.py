"""Shared dependencies: DB session, current user, registration gate."""
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from teletabib.config import get_settings
from teletabib.database import get_db
from teletabib.models.user import User
from teletabib.services.auth import decode_token_with_error
from teletabib.services.registration import EmailNotifier, RegistrationGate
from teletabib.services.staging import Clock, StagingStore, get_staging_store, utcnow

security = HTTPBearer(auto_error=False)


def get_current_user(
    db: Session = Depends(get_db),
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> User:
    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")
    token_str = (credentials.credentials or "").strip()
    payload, _ = decode_token_with_error(token_str)
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token")
    user = db.query(User).filter(User.id == user_id).first()
    if not user or user.deleted_at is not None:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def get_notifier() -> EmailNotifier:
    return EmailNotifier()


def get_clock() -> Clock:
    return utcnow


def get_registration_gate(
    db: Session = Depends(get_db),
    store: StagingStore = Depends(get_staging_store),
    notifier: EmailNotifier = Depends(get_notifier),
    clock: Clock = Depends(get_clock),
) -> RegistrationGate:
    return RegistrationGate(db, store, notifier=notifier, clock=clock)


def require_debug_endpoints() -> None:
    """Debug routes exist only outside production."""
    if get_settings().is_production:
        raise HTTPException(status_code=404, detail="Not Found")
