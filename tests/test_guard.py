"""Tests for auth/guard.py -- bearer parsing, security context, permission guards."""

import asyncio
from datetime import timedelta

import pytest

from auth import guard
from auth.guard import extract_bearer_token
from auth.models import SecurityContext
from auth.permissions import ADMIN_ROLE_ID, CREATE_LINK, MANAGE_USERS, VIEW_USERS
from conftest import PASSWORD, register
from core.config import utcnow
from core.errors import ErrorKind


def run(coro):
    return asyncio.run(coro)


@pytest.mark.parametrize(
    "header, token",
    [
        ("Bearer abc.def.ghi", "abc.def.ghi"),
        ("  Bearer   abc  ", "abc"),
        ("bearer abc", None),
        ("Basic abc", None),
        ("Bearer", None),
        ("Bearer a b", None),
        ("", None),
        (None, None),
    ],
)
def test_extract_bearer_token(header, token):
    assert extract_bearer_token(header) == token


# ---------------------------------------------------------------------------
# build_context
# ---------------------------------------------------------------------------


def test_valid_access_token_authenticates(auth_context):
    user = register(auth_context, "alice")
    pair = run(auth_context.service.authenticate("alice", PASSWORD))
    ctx = run(auth_context.guard.build_context(f"Bearer {pair.access_token}", "10.0.0.1", "pytest"))
    assert ctx.is_authenticated
    assert ctx.user_id == user.id
    assert ctx.username == "alice"
    assert ctx.ip_address == "10.0.0.1"
    assert CREATE_LINK in ctx.permissions
    assert MANAGE_USERS not in ctx.permissions


def test_admin_gets_union_of_roles(auth_context):
    register(auth_context, "root", roles=(ADMIN_ROLE_ID,))
    pair = run(auth_context.service.authenticate("root", PASSWORD))
    ctx = run(auth_context.guard.build_context(f"Bearer {pair.access_token}"))
    assert {CREATE_LINK, MANAGE_USERS, VIEW_USERS} <= ctx.permissions


def test_refresh_token_is_not_an_identity(auth_context):
    register(auth_context, "alice")
    pair = run(auth_context.service.authenticate("alice", PASSWORD))
    ctx = run(auth_context.guard.build_context(f"Bearer {pair.refresh_token}"))
    assert not ctx.is_authenticated


def test_revoked_access_token_is_anonymous(auth_context):
    register(auth_context, "alice")
    pair = run(auth_context.service.authenticate("alice", PASSWORD))
    run(auth_context.service.logout(access_token=pair.access_token))
    ctx = run(auth_context.guard.build_context(f"Bearer {pair.access_token}"))
    assert not ctx.is_authenticated


def test_inactive_user_is_anonymous(auth_context):
    user = register(auth_context, "alice")
    pair = run(auth_context.service.authenticate("alice", PASSWORD))
    auth_context.users.deactivate(user.id)
    ctx = run(auth_context.guard.build_context(f"Bearer {pair.access_token}"))
    assert not ctx.is_authenticated


def test_unrecorded_token_is_anonymous(auth_context):
    user = register(auth_context, "alice")
    stored = auth_context.users.find_by_id(user.id)
    token = auth_context.signer.generate_access_token(stored, utcnow() + timedelta(minutes=5))
    ctx = run(auth_context.guard.build_context(f"Bearer {token}"))
    assert not ctx.is_authenticated


@pytest.mark.parametrize("header", [None, "", "Bearer garbage", "Token abc"])
def test_bad_headers_are_anonymous(auth_context, header):
    ctx = run(auth_context.guard.build_context(header, "10.0.0.9"))
    assert not ctx.is_authenticated
    assert ctx.permissions == frozenset()
    assert ctx.ip_address == "10.0.0.9"


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------


def _ctx(*permissions, user_id="user-1"):
    return SecurityContext(
        is_authenticated=True,
        user_id=user_id,
        username="alice",
        email="alice@example.com",
        permissions=frozenset(permissions),
    )


def test_guards_on_anonymous():
    anonymous = SecurityContext.anonymous()
    assert guard.require_authentication(anonymous) is ErrorKind.UNAUTHORIZED_ACCESS
    assert guard.require_permission(anonymous, VIEW_USERS) is ErrorKind.UNAUTHORIZED_ACCESS
    assert guard.require_any_permission(anonymous, VIEW_USERS) is ErrorKind.UNAUTHORIZED_ACCESS
    assert guard.require_all_permissions(anonymous, VIEW_USERS) is ErrorKind.UNAUTHORIZED_ACCESS
    assert guard.require_resource_access(anonymous, "user-1") is ErrorKind.UNAUTHORIZED_ACCESS


def test_permission_guards():
    ctx = _ctx(VIEW_USERS)
    assert guard.require_authentication(ctx) is None
    assert guard.require_permission(ctx, VIEW_USERS) is None
    assert guard.require_permission(ctx, MANAGE_USERS) is ErrorKind.INSUFFICIENT_PERMISSIONS
    assert guard.require_any_permission(ctx, MANAGE_USERS, VIEW_USERS) is None
    assert guard.require_all_permissions(ctx, MANAGE_USERS, VIEW_USERS) is ErrorKind.INSUFFICIENT_PERMISSIONS
    assert guard.require_all_permissions(_ctx(MANAGE_USERS, VIEW_USERS), MANAGE_USERS, VIEW_USERS) is None


def test_resource_access_owner_or_admin():
    assert guard.require_resource_access(_ctx(), "user-1") is None
    assert guard.require_resource_access(_ctx(), "user-2") is ErrorKind.INSUFFICIENT_PERMISSIONS
    assert guard.require_resource_access(_ctx(MANAGE_USERS), "user-2", MANAGE_USERS) is None
    assert guard.require_resource_access(_ctx(), None) is ErrorKind.INSUFFICIENT_PERMISSIONS
