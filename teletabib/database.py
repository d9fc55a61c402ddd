"""
Database connection and session.

Schema source of truth: teletabib.models. On startup, Base.metadata.create_all(bind=engine)
creates the users and audit_logs tables. Pending registrations are never stored here;
they live in the staging store (teletabib.services.staging) until the OTP is verified.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from teletabib.config import get_settings

settings = get_settings()
engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
