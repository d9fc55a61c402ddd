"""Professional details captured by doctor sign-up. Written together with the User on OTP verification."""
from sqlalchemy import Column, Integer, String, Text, ForeignKey, DateTime
from sqlalchemy.orm import backref, relationship
from sqlalchemy.sql import func
from teletabib.database import Base


class DoctorProfile(Base):
    __tablename__ = "doctor_profiles"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)

    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    city = Column(String(100), nullable=False)
    speciality = Column(String(255), nullable=False)
    pmdc = Column(String(50), nullable=False)  # PMDC registration number
    experience = Column(String(100), nullable=True)
    message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", backref=backref("doctor_profile", uselist=False, passive_deletes=True))
