"""
auth/permissions.py -- Permission identifiers and the default role catalogue.

Permissions are opaque strings. Routes and guards compare them by equality;
nothing interprets their structure. The default roles are seeded into the
role table by auth/store.py on first start and are never overwritten after
that, so an operator can edit a role's permission list without the next
restart undoing it.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from auth.models import Role

# Link management
CREATE_LINK = "CREATE_LINK"
READ_OWN_LINKS = "READ_OWN_LINKS"
READ_ALL_LINKS = "READ_ALL_LINKS"
UPDATE_OWN_LINKS = "UPDATE_OWN_LINKS"
UPDATE_ALL_LINKS = "UPDATE_ALL_LINKS"
DELETE_OWN_LINKS = "DELETE_OWN_LINKS"
DELETE_ALL_LINKS = "DELETE_ALL_LINKS"

# User management
MANAGE_USERS = "MANAGE_USERS"
VIEW_USERS = "VIEW_USERS"
MANAGE_ROLES = "MANAGE_ROLES"

# System
ADMIN_ACCESS = "ADMIN_ACCESS"
SYSTEM_CONFIG = "SYSTEM_CONFIG"

ALL_PERMISSIONS: tuple[str, ...] = (
    CREATE_LINK,
    READ_OWN_LINKS,
    READ_ALL_LINKS,
    UPDATE_OWN_LINKS,
    UPDATE_ALL_LINKS,
    DELETE_OWN_LINKS,
    DELETE_ALL_LINKS,
    MANAGE_USERS,
    VIEW_USERS,
    MANAGE_ROLES,
    ADMIN_ACCESS,
    SYSTEM_CONFIG,
)

# ---------------------------------------------------------------------------
# Default roles
# ---------------------------------------------------------------------------

USER_ROLE_ID = "role-user"
MODERATOR_ROLE_ID = "role-moderator"
ADMIN_ROLE_ID = "role-admin"

_USER_PERMISSIONS = (CREATE_LINK, READ_OWN_LINKS, UPDATE_OWN_LINKS, DELETE_OWN_LINKS)

DEFAULT_ROLES: tuple[Role, ...] = (
    Role(
        id=USER_ROLE_ID,
        name="USER",
        description="Standard account: manages its own links.",
        permissions=_USER_PERMISSIONS,
    ),
    Role(
        id=MODERATOR_ROLE_ID,
        name="MODERATOR",
        description="Reviews and edits any user's links.",
        permissions=_USER_PERMISSIONS + (READ_ALL_LINKS, UPDATE_ALL_LINKS, DELETE_ALL_LINKS, VIEW_USERS),
    ),
    Role(
        id=ADMIN_ROLE_ID,
        name="ADMIN",
        description="Full access, including user and role management.",
        permissions=ALL_PERMISSIONS,
    ),
)

# Role assigned to every self-registered account.
DEFAULT_USER_ROLE_ID = USER_ROLE_ID
