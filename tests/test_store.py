"""Unit tests for auth/store.py -- UserStore and RoleStore.

Covers:
- save/find round trip with case-insensitive username and email lookups
- duplicate username/email raise IntegrityError and leave no partial rows
- default USER role on save, role assignment and removal
- permission union across active roles only
"""

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import User
from auth.permissions import (
    ADMIN_ROLE_ID,
    CREATE_LINK,
    MANAGE_USERS,
    MODERATOR_ROLE_ID,
    USER_ROLE_ID,
    VIEW_USERS,
)
from auth.store import RoleStore, UserStore, create_store_engine, from_iso, to_iso
from core.config import utcnow

# ---------------------------------------------------------------------------
# Shared fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def engine(tmp_path):
    engine = create_store_engine(f"sqlite:///{tmp_path / 'store.db'}")
    yield engine
    engine.dispose()


@pytest.fixture
def users(engine):
    return UserStore(engine=engine)


@pytest.fixture
def roles(engine):
    return RoleStore(engine=engine)


def _user(username="Alice", email="Alice@Example.com", **overrides) -> User:
    values = dict(
        id="",
        username=username,
        email=email,
        password_hash="hash",
        password_salt="salt",
        created_at=utcnow(),
    )
    values.update(overrides)
    return User(**values)


# ---------------------------------------------------------------------------
# UserStore
# ---------------------------------------------------------------------------


def test_save_normalises_and_assigns_defaults(users):
    saved = users.save(_user())
    assert saved.id
    assert saved.username == "alice"
    assert saved.email == "alice@example.com"
    assert saved.role_ids == (USER_ROLE_ID,)


def test_case_insensitive_lookups(users):
    saved = users.save(_user())
    assert users.find_by_username("ALICE").id == saved.id
    assert users.find_by_email("alice@EXAMPLE.com").id == saved.id
    assert users.exists_by_username("Alice")
    assert users.exists_by_email("ALICE@example.com")
    assert users.find_by_username("bob") is None
    assert not users.exists_by_email("bob@example.com")


def test_round_trip_preserves_fields(users):
    saved = users.save(_user(first_name="Alice", last_name="Liddell"))
    found = users.find_by_id(saved.id)
    assert found.first_name == "Alice"
    assert found.last_name == "Liddell"
    assert found.password_hash == "hash"
    assert found.password_salt == "salt"
    assert found.is_active
    assert found.created_at == saved.created_at
    assert found.role_ids == (USER_ROLE_ID,)


@pytest.mark.parametrize(
    "duplicate",
    [
        {"username": "alice", "email": "other@example.com"},
        {"username": "other", "email": "ALICE@example.com"},
    ],
)
def test_duplicates_rejected(users, duplicate):
    users.save(_user())
    with pytest.raises(IntegrityError):
        users.save(_user(**duplicate))
    assert users.count_users() == 1


def test_update_and_deactivate(users):
    saved = users.save(_user())
    saved.first_name = "Al"
    assert users.update(saved)
    assert users.find_by_id(saved.id).first_name == "Al"

    assert users.deactivate(saved.id)
    assert not users.find_by_id(saved.id).is_active
    assert users.list_active() == []


def test_update_unknown_user(users):
    assert not users.update(_user(id="missing"))
    assert not users.update_last_login("missing")


def test_update_last_login(users):
    saved = users.save(_user())
    when = utcnow()
    assert users.update_last_login(saved.id, when)
    assert users.find_by_id(saved.id).last_login_at == when


def test_iso_helpers_keep_microseconds():
    now = utcnow()
    assert from_iso(to_iso(now)) == now
    assert to_iso(None) is None
    assert from_iso(None) is None


# ---------------------------------------------------------------------------
# RoleStore
# ---------------------------------------------------------------------------


def test_default_roles_seeded_once(engine):
    RoleStore(engine=engine)
    roles = RoleStore(engine=engine)
    assert {r.id for r in roles.list_roles()} == {USER_ROLE_ID, MODERATOR_ROLE_ID, ADMIN_ROLE_ID}


def test_user_permissions_are_role_union(users, roles):
    saved = users.save(_user())
    assert roles.get_user_permissions(saved.id) == frozenset(roles.find_by_id(USER_ROLE_ID).permissions)
    assert not roles.user_has_permission(saved.id, VIEW_USERS)

    assert roles.assign(saved.id, MODERATOR_ROLE_ID)
    perms = roles.get_user_permissions(saved.id)
    assert CREATE_LINK in perms
    assert VIEW_USERS in perms
    assert MANAGE_USERS not in perms


def test_assign_is_idempotent(users, roles):
    saved = users.save(_user())
    assert roles.assign(saved.id, ADMIN_ROLE_ID) is True
    assert roles.assign(saved.id, ADMIN_ROLE_ID) is False
    assert users.find_by_id(saved.id).role_ids == (ADMIN_ROLE_ID, USER_ROLE_ID)


def test_remove_role(users, roles):
    saved = users.save(_user())
    assert roles.remove(saved.id, USER_ROLE_ID) is True
    assert roles.remove(saved.id, USER_ROLE_ID) is False
    assert roles.get_user_permissions(saved.id) == frozenset()


def test_unknown_role(roles):
    assert roles.find_by_id("role-nope") is None
