import os
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.medinv.models import Permission, Role, User
from scripts._db_utils import script_session

PERMISSIONS = (
    ("admin.view", "Admin: view dashboard and audit log"),
    ("inventory.view", "Inventory: view items and low stock"),
    ("inventory.edit", "Inventory: edit items, locations and status"),
    ("inventory.delete", "Inventory: delete items"),
    ("cabinets.view", "Cabinets: view"),
    ("cabinets.edit", "Cabinets: edit cabinets and order"),
    ("posts.view", "Posts: view posts and contacts"),
    ("posts.edit", "Posts: edit posts and contacts"),
    ("import.run", "Import: bulk import items from CSV"),
    ("alerts.send", "Alerts: send supply requests"),
    ("email_settings.edit", "Email: edit SMTP settings"),
    ("backup.run", "Backup: export and restore"),
)

# Post staff: look things up and flip stock status, nothing structural.
STAFF_PERMISSIONS = ("inventory.view", "inventory.edit", "cabinets.view", "posts.view", "alerts.send")


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed permissions/roles/admin user in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@example.nl").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///medinv.db").strip()

    # Direct engine/session so release can seed without importing app.wsgi.
    with script_session(db_url) as s:
        perms: dict[str, Permission] = {}
        for key, name in PERMISSIONS:
            p = s.query(Permission).filter(Permission.key == key).one_or_none()
            if not p:
                p = Permission(key=key, name=name)
                s.add(p)
            perms[key] = p

        def ensure_role(key: str, name: str, permission_keys) -> Role:
            role = s.query(Role).filter(Role.key == key).one_or_none()
            if not role:
                role = Role(key=key, name=name)
                s.add(role)
            for pk in permission_keys:
                if perms[pk] not in role.permissions:
                    role.permissions.append(perms[pk])
            return role

        role_admin = ensure_role("admin", "Administrator", [k for k, _ in PERMISSIONS])
        ensure_role("staff", "Post staff", STAFF_PERMISSIONS)

        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(email=admin_email, password_hash=generate_password_hash(admin_password), is_active=True)
            s.add(user)
        if role_admin not in user.roles:
            user.roles.append(role_admin)

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
