import os
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.doccontrol.models import Permission, Role, Tenant, User  # noqa: E402
from scripts._db_utils import script_session  # noqa: E402

PERMISSIONS = {
    "docs.view": "Docs: view",
    "docs.create": "Docs: create, edit and route drafts",
    "docs.approve": "Docs: record approval decisions",
    "docs.admin": "Docs: administer document types",
}

ROLES = {
    "admin": ("Administrator", list(PERMISSIONS)),
    "author": ("Document author", ["docs.view", "docs.create", "docs.approve"]),
    "viewer": ("Viewer", ["docs.view"]),
}


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed permissions, roles, a tenant and its admin user idempotently.
    Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@example.com").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"
    tenant_name = (os.environ.get("TENANT_NAME") or "Default").strip()
    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///doccontrol.db").strip()

    with script_session(db_url) as s:
        perms: dict[str, Permission] = {}
        for key, name in PERMISSIONS.items():
            p = s.query(Permission).filter(Permission.key == key).one_or_none()
            if not p:
                p = Permission(key=key, name=name)
                s.add(p)
            perms[key] = p

        roles: dict[str, Role] = {}
        for key, (name, keys) in ROLES.items():
            role = s.query(Role).filter(Role.key == key).one_or_none()
            if not role:
                role = Role(key=key, name=name)
                s.add(role)
            for k in keys:
                if perms[k] not in role.permissions:
                    role.permissions.append(perms[k])
            roles[key] = role

        tenant = s.query(Tenant).filter(Tenant.name == tenant_name).one_or_none()
        if not tenant:
            tenant = Tenant(name=tenant_name)
            s.add(tenant)
            s.flush()

        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(
                tenant_id=tenant.id,
                email=admin_email,
                password_hash=generate_password_hash(admin_password),
                is_active=True,
            )
            s.add(user)
        if roles["admin"] not in user.roles:
            user.roles.append(roles["admin"])

    print("Initialized database (seed_only).")
    print(f"Tenant: {tenant_name}")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
