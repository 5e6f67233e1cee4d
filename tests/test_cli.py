"""Tests for main.py -- the administration CLI."""

import pytest

import main
from auth.context import build_auth_context
from auth.permissions import ADMIN_ROLE_ID
from conftest import PASSWORD, TEST_SECRET
from core.config import get_settings


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    """Point get_settings() at a throwaway database for the duration of one test."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.setenv("JWT_SECRET", TEST_SECRET)
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


def test_gen_secret(capsys):
    assert main.main(["gen-secret"]) == 0
    secret = capsys.readouterr().out.strip()
    assert len(secret) >= 32


def test_no_command_prints_help(capsys):
    assert main.main([]) == 0
    assert "create-admin" in capsys.readouterr().out


def test_create_admin(cli_env, capsys):
    code = main.main(["create-admin", "--username", "root", "--email", "root@example.com", "--password", PASSWORD])
    assert code == 0
    assert "Created admin 'root'" in capsys.readouterr().out

    auth = build_auth_context(cli_env)
    try:
        user = auth.users.find_by_username("root")
        assert ADMIN_ROLE_ID in user.role_ids
    finally:
        auth.close()


def test_create_admin_rejects_weak_password(cli_env, capsys):
    code = main.main(["create-admin", "--username", "root", "--email", "root@example.com", "--password", "weak"])
    assert code == 1
    assert "password:" in capsys.readouterr().out


def test_cleanup_tokens(cli_env, capsys):
    assert main.main(["cleanup-tokens", "--retention-days", "0"]) == 0
    assert "Removed 0 expired and 0 used token row(s)." in capsys.readouterr().out


def test_cleanup_rejects_negative_retention(cli_env):
    assert main.main(["cleanup-tokens", "--retention-days", "-1"]) == 2


def test_production_without_secret_fails(cli_env, monkeypatch, capsys):
    monkeypatch.setenv("ENVIRONMENT", "production")
    monkeypatch.setenv("JWT_SECRET", "")
    get_settings.cache_clear()
    assert main.main(["cleanup-tokens"]) == 1
    assert "No signing secret configured" in capsys.readouterr().out
