"""
Tests for the command-line interface.
"""
import pytest
from typer.testing import CliRunner

from redamigos.cli import app
from redamigos.settings import settings

runner = CliRunner()


@pytest.fixture(autouse=True)
def session_file(tmp_path, monkeypatch):
    path = tmp_path / "session.json"
    monkeypatch.setattr(settings, "session_file", path)
    return path


def _register(identification="1020304050", *extra):
    return runner.invoke(
        app,
        ["register", "--id", identification, "--first-name", "Sofía", "--last-name", "Castro", "--accept-terms", *extra],
    )


def test_register_signs_in(session_file):
    result = _register()
    assert result.exit_code == 0, result.output
    assert "Your referral code: GGF-" in result.output
    assert session_file.exists()

    whoami = runner.invoke(app, ["whoami"])
    assert "Sofía Castro" in whoami.output


def test_register_requires_consent():
    result = runner.invoke(app, ["register", "--id", "1020304050", "--first-name", "Sofía", "--last-name", "Castro"])
    assert result.exit_code == 1


def test_register_with_invalid_code():
    result = _register("1020304050", "--code", "GGF-NOPE00")
    assert result.exit_code == 1
    assert "code_invalid" in result.output


def test_logout_then_whoami(session_file):
    _register()
    assert runner.invoke(app, ["logout"]).exit_code == 0
    assert not session_file.exists()

    result = runner.invoke(app, ["whoami"])
    assert result.exit_code == 1
    assert "Not signed in" in result.output


def test_login(session_file):
    _register()
    runner.invoke(app, ["logout"])

    result = runner.invoke(app, ["login", "--id", "1020304050", "--password", "1020304050"])
    assert result.exit_code == 0, result.output
    assert "Signed in as" in result.output
    assert session_file.exists()


def test_login_wrong_password():
    _register()
    runner.invoke(app, ["logout"])
    result = runner.invoke(app, ["login", "--id", "1020304050", "--password", "wrong"])
    assert result.exit_code == 1


def test_stats_and_network():
    _register()
    stats = runner.invoke(app, ["stats"])
    assert stats.exit_code == 0
    assert "Your referrals:" in stats.output

    network = runner.invoke(app, ["network"])
    assert "No referrals yet" in network.output


def test_orphans_empty():
    result = runner.invoke(app, ["orphans"])
    assert result.exit_code == 0
    assert "No orphaned identities" in result.output
