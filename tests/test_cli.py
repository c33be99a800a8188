"""Tests for the prm command line interface."""

import pytest
from typer.testing import CliRunner

from product_requirements.auth import decode_token
from product_requirements.cli import app
from product_requirements.db.base import reset_engine

runner = CliRunner()


@pytest.fixture
def cli_database(tmp_path, monkeypatch):
    """Point the CLI at a throwaway SQLite file."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'cli.db'}")
    reset_engine()
    yield
    reset_engine()


@pytest.fixture
def initialized(cli_database):
    result = runner.invoke(app, ["init", "--admin-username", "root", "--admin-email", "root@example.com"])
    assert result.exit_code == 0, result.output
    return result


class TestInit:
    def test_init_seeds_and_creates_admin(self, initialized):
        assert "requirement types: 5 created" in initialized.output
        assert "Administrator 'root' created" in initialized.output

    def test_second_init_requires_force(self, initialized):
        result = runner.invoke(app, ["init"])
        assert result.exit_code == 1
        assert "--force" in result.output

    def test_forced_init_is_idempotent(self, initialized):
        result = runner.invoke(app, ["init", "--force", "--admin-username", "root"])
        assert result.exit_code == 0
        assert "requirement types: 0 created" in result.output
        assert "already exists" in result.output


class TestUsersAndTokens:
    def test_create_user_and_issue_token(self, initialized):
        created = runner.invoke(app, ["create-user", "dana", "dana@example.com", "--role", "Commenter"])
        assert created.exit_code == 0
        assert "Commenter 'dana'" in created.output

        issued = runner.invoke(app, ["issue-token", "dana"])
        assert issued.exit_code == 0
        assert decode_token(issued.output.strip())["role"] == "Commenter"

    def test_duplicate_user(self, initialized):
        result = runner.invoke(app, ["create-user", "root", "other@example.com"])
        assert result.exit_code == 1
        assert "already taken" in result.output

    def test_token_for_unknown_user(self, initialized):
        result = runner.invoke(app, ["issue-token", "nobody"])
        assert result.exit_code == 1


class TestSearchCommand:
    def test_search_on_empty_installation(self, initialized):
        result = runner.invoke(app, ["search", "anything", "--type", "epic"])
        assert result.exit_code == 0
        assert "0 match(es)" in result.output

    def test_invalid_limit(self, initialized):
        result = runner.invoke(app, ["search", "--limit", "0"])
        assert result.exit_code == 1
