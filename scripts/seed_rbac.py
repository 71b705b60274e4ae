"""
Seed script to populate default roles, permissions, and accounts.

Run this script after database initialization to create:
- Roles admin, editor, viewer
- The permission catalogue and role-permission mapping
- An admin account from ADMIN_EMAIL / ADMIN_PASSWORD (skipped when unset)
- A default editor account and sample editorials

Every step is idempotent.

Usage:
    uv run python -m scripts.seed_rbac
"""
import asyncio
from sqlalchemy import and_, delete, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import AsyncSessionLocal, init_db
from app.features.users.auth import hash_password
from app.features.users.models import User
from app.features.permissions.models import Permission, Role, role_permissions, user_roles
from app.features.editorials.models import Editorial
from app.utils import get_logger


log = get_logger(__name__)


DEFAULT_PERMISSIONS = [
    # Admin permissions
    ("dashboard:access", "Open the admin dashboard"),
    ("role:create", "Create roles"),
    ("role:update", "Update roles"),
    ("role:delete", "Delete roles"),
    ("permission:view", "View permissions"),
    ("permission:update", "Update permissions"),
    ("user:grant:editor", "Grant the editor role"),
    ("user:revoke:editor", "Revoke the editor role"),
    ("journal:view", "View editorials"),
    ("journal:create", "Create editorials"),
    ("journal:edit:any", "Edit any editorial"),
    ("journal:delete:any", "Delete any editorial"),

    # Editor-only (own) permissions
    ("journal:edit:own", "Edit own editorials"),
    ("journal:delete:own", "Delete own editorials"),
]


DEFAULT_ROLES = {
    "admin": [
        "dashboard:access",
        "role:create", "role:update", "role:delete",
        "permission:view", "permission:update",
        "user:grant:editor", "user:revoke:editor",
        "journal:view", "journal:create", "journal:edit:any", "journal:delete:any",
    ],
    "editor": [
        "journal:view", "journal:create", "journal:edit:own", "journal:delete:own",
    ],
    "viewer": ["journal:view"],
}


async def seed_roles(db: AsyncSession) -> dict[str, Role]:
    """Ensure the default roles exist."""
    roles_map = {}
    for name in DEFAULT_ROLES:
        result = await db.execute(select(Role).where(Role.name == name))
        role = result.scalars().first()
        if role is None:
            role = Role(name=name)
            db.add(role)
            log.info(f"Created role: {name}")
        roles_map[name] = role

    await db.commit()
    log.info(f"Ensured roles: {', '.join(roles_map)}")
    return roles_map


async def seed_permissions(db: AsyncSession) -> dict[str, Permission]:
    """
    Ensure the default permissions exist.

    Returns:
        Dictionary mapping permission names to Permission objects
    """
    permissions_map = {}

    for name, description in DEFAULT_PERMISSIONS:
        result = await db.execute(select(Permission).where(Permission.name == name))
        existing = result.scalars().first()

        if existing:
            log.debug(f"Permission '{name}' already exists, skipping")
            permissions_map[name] = existing
            continue

        permission = Permission(name=name, description=description)
        db.add(permission)
        permissions_map[name] = permission
        log.info(f"Created permission: {name}")

    await db.commit()
    log.info(f"Ensured {len(permissions_map)} permissions")
    return permissions_map


async def seed_role_permissions(
    db: AsyncSession,
    roles_map: dict[str, Role],
    permissions_map: dict[str, Permission],
):
    """Add any missing role -> permission mappings from DEFAULT_ROLES."""
    for role_name, permission_names in DEFAULT_ROLES.items():
        role = roles_map[role_name]
        for perm_name in permission_names:
            permission = permissions_map.get(perm_name)
            if permission is None:
                log.warning(f"Permission '{perm_name}' not found for role '{role_name}'")
                continue

            result = await db.execute(
                select(role_permissions).where(
                    and_(
                        role_permissions.c.role_id == role.id,
                        role_permissions.c.permission_id == permission.id
                    )
                )
            )
            if result.first():
                continue

            await db.execute(insert(role_permissions).values(role_id=role.id, permission_id=permission.id))
            log.info(f"Assigned permission '{perm_name}' to role '{role_name}'")

    await db.commit()


async def ensure_user(db: AsyncSession, email: str, password: str, reset_password: bool = False) -> User:
    """Get or create an account; optionally overwrite the password of an existing one."""
    email = email.strip().lower()
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()

    if user is None:
        user = User(email=email, password_hash=hash_password(password))
        db.add(user)
        await db.flush()
        log.info(f"Created user: {email}")
    elif reset_password:
        user.password_hash = hash_password(password)
        log.info(f"Updated password for {email}")

    return user


async def ensure_user_role(db: AsyncSession, user: User, role: Role) -> None:
    result = await db.execute(
        select(user_roles).where(
            and_(user_roles.c.user_id == user.id, user_roles.c.role_id == role.id)
        )
    )
    if result.first() is None:
        await db.execute(insert(user_roles).values(user_id=user.id, role_id=role.id))
        log.info(f"Assigned role '{role.name}' to {user.email}")


async def seed_accounts(db: AsyncSession, roles_map: dict[str, Role]) -> tuple[User | None, User]:
    """
    Bootstrap the admin (when configured) and the default editor.

    The configured admin becomes the only holder of the admin role.
    """
    admin = None
    if config.ADMIN_EMAIL and config.ADMIN_PASSWORD:
        admin = await ensure_user(db, config.ADMIN_EMAIL, config.ADMIN_PASSWORD, reset_password=True)
        admin_role = roles_map[config.ADMIN_ROLE]
        await ensure_user_role(db, admin, admin_role)

        result = await db.execute(
            delete(user_roles).where(
                and_(user_roles.c.role_id == admin_role.id, user_roles.c.user_id != admin.id)
            )
        )
        if result.rowcount:
            log.info(f"Removed admin role from {result.rowcount} other user(s)")
    else:
        log.warning("ADMIN_EMAIL and ADMIN_PASSWORD are not set; skipping admin bootstrap.")

    editor = await ensure_user(db, config.DEFAULT_EDITOR_EMAIL, config.DEFAULT_EDITOR_PASSWORD)
    await ensure_user_role(db, editor, roles_map["editor"])

    await db.commit()
    return admin, editor


async def seed_editorials(db: AsyncSession, admin: User | None, editor: User):
    """Create sample editorials when there are none."""
    result = await db.execute(select(Editorial.id).limit(1))
    if result.first():
        log.info("Editorials exist, skipping creation")
        return

    if admin is not None:
        db.add(Editorial(title="Admin Post", content="This post was created by admin.", author_id=admin.id))
    db.add(Editorial(title="Editor Post", content="This post was created by editor.", author_id=editor.id))
    await db.commit()
    log.info("Created sample editorials")


async def main():
    """Main function to seed roles, permissions, and accounts."""
    log.info("Starting RBAC seeding...")

    # Initialize database tables first
    await init_db()

    async with AsyncSessionLocal() as db:
        try:
            roles_map = await seed_roles(db)
            permissions_map = await seed_permissions(db)
            await seed_role_permissions(db, roles_map, permissions_map)
            admin, editor = await seed_accounts(db, roles_map)
            await seed_editorials(db, admin, editor)
        except Exception as e:
            log.error(f"Error seeding RBAC data: {e}", exc_info=True)
            await db.rollback()
            raise

    log.info("Seed complete.")
    if admin is not None:
        log.info(f"Admin email: {config.ADMIN_EMAIL} (password set via ADMIN_PASSWORD)")
    else:
        log.info("No admin was created (ADMIN_EMAIL and/or ADMIN_PASSWORD not set).")


if __name__ == "__main__":
    asyncio.run(main())
