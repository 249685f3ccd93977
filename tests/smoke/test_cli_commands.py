"""
Smoke Tests for CLI Commands.

These tests verify that CLI commands run without errors and produce output.
They don't validate correctness deeply - just that commands work.

Usage:
    pytest tests/smoke/test_cli_commands.py -v
    pytest tests/smoke/test_cli_commands.py -v -m smoke
"""

import json
import subprocess
import sys
from pathlib import Path

import pytest

# Mark all tests in this module as smoke tests
pytestmark = pytest.mark.smoke

# Project root
PROJECT_ROOT = Path(__file__).parent.parent.parent


def run_cli_command(command: str, timeout: int = 30) -> tuple[int, str, str]:
    """
    Run a CLI command and return exit code, stdout, stderr.

    Args:
        command: The command to run (after 'python -m src.cli.main')
        timeout: Maximum time to wait

    Returns:
        Tuple of (exit_code, stdout, stderr)
    """
    full_command = f'"{sys.executable}" -m src.cli.main {command}'

    result = subprocess.run(
        full_command,
        shell=True,
        cwd=PROJECT_ROOT,
        capture_output=True,
        text=True,
        timeout=timeout,
        env={"PYTHONIOENCODING": "utf-8", "COLUMNS": "200", **_base_env()},
    )

    return result.returncode, result.stdout, result.stderr


def _base_env() -> dict[str, str]:
    import os

    return {k: v for k, v in os.environ.items() if k not in ("COLUMNS", "LOG_FILE")}


class TestCLIHelp:
    """Test that help commands work."""

    def test_main_help(self):
        """Main help should display without errors."""
        code, stdout, stderr = run_cli_command("--help")

        assert code == 0, f"Help failed: {stderr}"
        assert "Commands" in stdout
        for command in ("rescore", "keywords", "due", "health"):
            assert command in stdout

    @pytest.mark.parametrize("command", ["rescore", "keywords", "due", "health"])
    def test_command_help(self, command):
        code, stdout, stderr = run_cli_command(f"{command} --help")
        assert code == 0, f"{command} --help failed: {stderr}"


class TestRescore:
    """Offline replay needs no platform."""

    def test_rescore_events(self, tmp_path):
        events = [
            {"item_id": "fc-1", "grade": 3, "concept_id": "sub-heart", "reviewed_at": "2025-03-01T09:00:00Z"},
            {"item_id": "fc-2", "grade": 1, "concept_id": "sub-heart", "reviewed_at": "2025-03-01T09:01:00Z"},
            {"item_id": "fc-1", "grade": 4, "concept_id": "sub-heart", "reviewed_at": "2025-03-05T09:00:00Z"},
            {"item_id": "q-1", "grade": 3, "instrument": "quiz"},
        ]
        path = tmp_path / "events.json"
        path.write_text(json.dumps(events), encoding="utf-8")

        code, stdout, stderr = run_cli_command(f'rescore "{path}"')

        assert code == 0, f"rescore failed: {stderr}"
        assert "Replayed 4 reviews" in stdout
        assert "sub-heart" in stdout
        assert "fc-1" in stdout

    def test_rescore_invalid_grade(self, tmp_path):
        path = tmp_path / "events.json"
        path.write_text(json.dumps([{"item_id": "fc-1", "grade": 7}]), encoding="utf-8")

        code, stdout, stderr = run_cli_command(f'rescore "{path}"')
        assert code == 1

    def test_rescore_empty(self, tmp_path):
        path = tmp_path / "events.json"
        path.write_text("[]", encoding="utf-8")

        code, stdout, stderr = run_cli_command(f'rescore "{path}"')
        assert code == 0
        assert "No events" in stdout


class TestHealth:
    def test_unreachable_platform_exits_nonzero(self):
        code, stdout, stderr = _run_with_env("health", {"API_BASE_URL": "http://127.0.0.1:9"})
        assert code == 1
        assert "unreachable" in stdout


def _run_with_env(command: str, extra: dict[str, str]) -> tuple[int, str, str]:
    result = subprocess.run(
        f'"{sys.executable}" -m src.cli.main {command}',
        shell=True,
        cwd=PROJECT_ROOT,
        capture_output=True,
        text=True,
        timeout=30,
        env={**_base_env(), "PYTHONIOENCODING": "utf-8", "COLUMNS": "200", **extra},
    )
    return result.returncode, result.stdout, result.stderr
