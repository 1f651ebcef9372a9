"""
Seed operator roles and, optionally, a first admin account.

    python scripts/seed_roles.py
    python scripts/seed_roles.py --admin-email admin@local.test --admin-name "Local Admin"
"""

import argparse

from dotenv import load_dotenv

load_dotenv()

from rosterhub.core.rbac import ADMIN_ROLE
from rosterhub.db.session import SessionLocal
from rosterhub.models.rbac import Role, UserRole
from rosterhub.models.user import User

ROLE_NAMES = [ADMIN_ROLE]


def main():
    parser = argparse.ArgumentParser(description="Seed operator roles")
    parser.add_argument("--admin-email", help="Create (or reuse) this operator and grant ADMIN")
    parser.add_argument("--admin-name", default="Admin")
    args = parser.parse_args()

    db = SessionLocal()
    try:
        existing = {r.name for r in db.query(Role).all()}
        to_add = [Role(name=name) for name in ROLE_NAMES if name not in existing]
        if to_add:
            db.add_all(to_add)
            db.commit()
        print("Roles seeded:", ROLE_NAMES)

        if args.admin_email:
            email = args.admin_email.strip().lower()
            user = db.query(User).filter(User.email == email).one_or_none()
            if user is None:
                user = User(email=email, full_name=args.admin_name, is_active=True)
                db.add(user)
                db.flush()
            role = db.query(Role).filter(Role.name == ADMIN_ROLE).one()
            linked = (
                db.query(UserRole)
                .filter(UserRole.user_id == user.id, UserRole.role_id == role.id)
                .one_or_none()
            )
            if linked is None:
                db.add(UserRole(user_id=user.id, role_id=role.id))
            db.commit()
            print(f"Admin ready: {email}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
