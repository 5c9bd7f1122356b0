"""
Tests for the operator CLI.
"""

from typer.testing import CliRunner

from cli import app
from shared.config.settings import settings
from chat_relay import __version__
from chat_relay.components.auth.identity import IdentityResolver

runner = CliRunner()


def test_version():
    result = runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_config_masks_secrets():
    result = runner.invoke(app, ["config"])

    assert result.exit_code == 0
    assert "room_grace_period_seconds" in result.output
    assert "********" in result.output
    assert settings.jwt_secret not in result.output


def test_token_is_accepted_by_resolver():
    result = runner.invoke(app, ["token", "42", "--name", "Alice"])

    assert result.exit_code == 0
    resolver = IdentityResolver(settings.jwt_secret, settings.jwt_issuer, settings.jwt_audience)
    identity = resolver.resolve(result.output.strip(), "conn1")
    assert identity.user_id == "42"
    assert identity.display_name == "Alice"
