"""Tests for the command-line entry point."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

import aidev.__main__ as cli


@pytest.fixture(autouse=True)
def _quiet(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "setup_logging", lambda *args, **kwargs: None)
    for name in ("AIDEV_TELEMETRY", "AIDEV_API_KEY", "AIDEV_PROVIDER"):
        monkeypatch.delenv(name, raising=False)


def test_list_marks_unavailable_tools(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["list"]) == 0

    lines = capsys.readouterr().out.splitlines()
    dead_code = next(line for line in lines if line.startswith("dead-code"))
    lint = next(line for line in lines if line.startswith("lint"))
    commit = next(line for line in lines if line.startswith("commit"))
    assert "(not available)" not in dead_code
    assert lint.endswith("(not available)")
    assert "[model, mutating]" in commit


def test_unknown_tool_exits_with_usage_code(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["--settings", str(tmp_path / "settings.json"), "run", "format", "--cwd", str(tmp_path)])

    assert code == 2
    assert 'Unknown tool "format"' in capsys.readouterr().err


def test_tool_without_factory_exits_with_usage_code(tmp_path: Path) -> None:
    code = cli.main(["--settings", str(tmp_path / "settings.json"), "run", "lint", "--cwd", str(tmp_path)])

    assert code == 2


def test_denied_command_exits_with_usage_code(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    settings_path = tmp_path / "settings.json"
    settings_path.write_text(json.dumps({"denied_commands": ["aidev.scanDeadCode"]}), encoding="utf-8")
    (tmp_path / "a.py").write_text("x = 1\n", encoding="utf-8")

    code = cli.main(["--settings", str(settings_path), "run", "dead-code", "--cwd", str(tmp_path)])

    assert code == 2
    captured = capsys.readouterr()
    assert "User lacks permission to execute 'aidev.scanDeadCode'" in captured.err
    assert captured.out == ""


def test_run_goes_through_command_router(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    executed: list[tuple[str, dict]] = []

    async def fake_execute(self, command: str, **params):
        executed.append((command, params))
        return None

    monkeypatch.setattr(cli.CommandRouter, "execute", fake_execute)

    code = cli.main(
        ["--settings", str(tmp_path / "settings.json"), "run", "dead-code", "--path", "src", "--cwd", str(tmp_path)]
    )

    assert code == 2
    assert executed == [("aidev.scanDeadCode", {"paths": ["src"]})]
