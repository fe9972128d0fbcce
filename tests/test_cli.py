"""Tests for the typer CLI."""

import pytest
from conftest import make_record
from typer.testing import CliRunner

from referral_intake import cli
from referral_intake.config import Settings
from referral_intake.models import ReferralStatus

runner = CliRunner()


@pytest.fixture
def wired(monkeypatch, settings, workflow):
    monkeypatch.setattr(cli, "get_settings", lambda: settings)
    monkeypatch.setattr(cli, "_workflow", lambda: workflow)
    return workflow


def test_status_all_configured(wired):
    result = runner.invoke(cli.app, ["status"])
    assert result.exit_code == 0
    assert "Configuration Checks" in result.output


def test_status_missing_configuration(monkeypatch):
    monkeypatch.setattr(cli, "get_settings", lambda: Settings(_env_file=None))
    result = runner.invoke(cli.app, ["status"])
    assert result.exit_code == 1


def test_slots_lists_free_times(wired):
    result = runner.invoke(cli.app, ["slots"])
    assert result.exit_code == 0
    assert "2024-06-10|09:00" in result.output


def test_referral_show(wired, graph):
    graph.rows.append(make_record().to_row())
    result = runner.invoke(cli.app, ["referral", "show", "ref-abcd1234"])
    assert result.exit_code == 0
    assert "Jane Client" in result.output


def test_referral_show_missing(wired):
    result = runner.invoke(cli.app, ["referral", "show", "REF-00000000"])
    assert result.exit_code == 1


def test_referral_invoice_requires_completion(wired, graph):
    graph.rows.append(make_record(status=ReferralStatus.PENDING).to_row())
    result = runner.invoke(cli.app, ["referral", "invoice", "REF-ABCD1234"])
    assert result.exit_code == 1
    assert "cannot move from pending to invoiced" in result.output


def test_post_button(wired, web_client):
    result = runner.invoke(cli.app, ["post-button", "--variant", "completion"])
    assert result.exit_code == 0
    assert "C_COMPLETED" in web_client.channels
