"""Durable user accounts. Rows are created only after OTP verification."""
from sqlalchemy import Column, Integer, String, Enum as SQLEnum, DateTime, Boolean
from sqlalchemy.sql import func
from teletabib.database import Base
import enum


class UserRole(str, enum.Enum):
    patient = "patient"
    doctor = "doctor"
    admin = "admin"


# Landing page per role after sign-in / verification
ROLE_REDIRECTS = {
    UserRole.patient: "/patient",
    UserRole.doctor: "/doctor",
    UserRole.admin: "/admin",
}


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    # Unique email is the final arbiter for concurrent registrations
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    role = Column(SQLEnum(UserRole), nullable=False, default=UserRole.patient)

    name = Column(String(255), nullable=False)
    contact_number = Column(String(50), nullable=False)
    phone = Column(String(50), nullable=True)

    verified = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def redirect_to(self) -> str:
        return ROLE_REDIRECTS.get(self.role, "/")
