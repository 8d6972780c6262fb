#!/usr/bin/env python3
"""Create a user or attach a role to an existing one (idempotent).

Usage:
  python scripts/add_user.py --email medewerker@post.nl --role staff --password secret
"""

import argparse
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.medinv.models import Role, User
from scripts._db_utils import script_session


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--email", required=True, help="User email")
    parser.add_argument("--role", default="staff", help="Role key (admin or staff)")
    parser.add_argument("--password", help="Password for a new user; ignored for existing users")
    args = parser.parse_args()

    email = args.email.strip().lower()
    with script_session() as s:
        role = s.query(Role).filter(Role.key == args.role).one_or_none()
        if not role:
            print(f"Role not found: {args.role}. Run python scripts/init_db.py first.")
            sys.exit(1)

        user = s.query(User).filter(User.email.ilike(email)).one_or_none()
        if not user:
            if not args.password:
                print("--password is required to create a new user.")
                sys.exit(1)
            user = User(email=email, password_hash=generate_password_hash(args.password), is_active=True)
            s.add(user)
            print(f"Created user {email}")
        if role in (user.roles or []):
            print(f"User already has role {args.role}: {email}")
            return
        user.roles.append(role)
        print(f"Role {args.role} attached to {email}")


if __name__ == "__main__":
    main()
