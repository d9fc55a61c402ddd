"""
All SQLAlchemy models. Schema is the source of truth for new DBs.
Base.metadata.create_all() creates every table; no migration scripts needed for fresh installs.
"""
from teletabib.models.user import User
from teletabib.models.doctor_profile import DoctorProfile
from teletabib.models.audit_log import AuditLog

__all__ = [
    "User",
    "DoctorProfile",
    "AuditLog",
]
