"""Tests for the command-line entry point."""

from pathlib import Path

import pytest

import main

EXAMPLE = Path(__file__).resolve().parents[2] / "config.example.yaml"


@pytest.fixture(autouse=True)
def no_logging_setup(monkeypatch):
    monkeypatch.setattr(main, "setup_logging", lambda *args, **kwargs: None)


def test_check_config_accepts_example(capsys) -> None:
    assert main.main(["check-config", "--config", str(EXAMPLE)]) == 0

    out = capsys.readouterr().out
    assert "is valid" in out
    assert "1=FirstAccount" in out


def test_check_config_reports_problems(tmp_path, capsys) -> None:
    path = tmp_path / "bad.yaml"
    path.write_text("server:\n  port: 1\naccounts:\n  - slot: 1\n")

    assert main.main(["check-config", "--config", str(path)]) == 1

    out = capsys.readouterr().out
    assert "server.host is required" in out
    assert "accounts[0].username is required" in out


def test_check_config_missing_file(tmp_path, capsys) -> None:
    assert main.main(["check-config", "--config", str(tmp_path / "missing.yaml")]) == 1
    assert "not found" in capsys.readouterr().out


def test_run_with_missing_config_fails(tmp_path) -> None:
    assert main.main(["run", "--config", str(tmp_path / "missing.yaml"), "--log-dir", str(tmp_path)]) == 1


def test_no_command_prints_help(capsys) -> None:
    assert main.main([]) == 0
    assert "Quick start" in capsys.readouterr().out
