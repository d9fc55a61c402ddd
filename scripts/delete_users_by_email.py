"""
Delete the user with the given email (hard delete) and any pending registration for it.
Audit log rows are kept; their actor reference is nulled by the foreign key.
Usage: python scripts/delete_users_by_email.py <email>
"""
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from sqlalchemy.exc import SQLAlchemyError

from teletabib.database import SessionLocal
from teletabib.models.audit_log import AuditLog
from teletabib.models.user import User
from teletabib.services.registration import normalize_email
from teletabib.services.staging import get_staging_store


def main():
    email = normalize_email(sys.argv[1] if len(sys.argv) > 1 else "")
    if not email:
        print("Usage: python scripts/delete_users_by_email.py <email>")
        sys.exit(1)

    # Only meaningful with the shared redis backend; the in-memory store is per process
    get_staging_store().delete(email)

    db = SessionLocal()
    try:
        users = db.query(User).filter(User.email == email).all()
        if not users:
            print(f"No users found with email: {email}")
            sys.exit(0)

        for user in users:
            uid = user.id
            db.query(AuditLog).filter(AuditLog.actor_user_id == uid).update(
                {AuditLog.actor_user_id: None}, synchronize_session=False
            )
            db.delete(user)
            print(f"Deleted user: {email} (role={user.role.value}, id={uid})")

        db.commit()
        print(f"Done. Deleted {len(users)} user(s) with email: {email}")
    except SQLAlchemyError as e:
        db.rollback()
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
