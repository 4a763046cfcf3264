"""
Smoke Tests for CLI Commands.

These tests verify that CLI commands run without errors and produce output.
They don't validate correctness deeply - just that commands work against a
throwaway SQLite file.

Usage:
    pytest tests/smoke/test_cli_commands.py -v
    pytest tests/smoke/test_cli_commands.py -v -m smoke
"""

import os
import subprocess
import sys
from pathlib import Path

import pytest

# Mark all tests in this module as smoke tests
pytestmark = pytest.mark.smoke

# Project root
PROJECT_ROOT = Path(__file__).parent.parent.parent


@pytest.fixture
def cli(tmp_path):
    """Return a runner bound to a fresh database file."""
    env = {
        **os.environ,
        "DATABASE_URL": f"sqlite:///{tmp_path / 'smoke.db'}",
        "LOG_LEVEL": "WARNING",
        "MUTATION_SERVICE_URL": "",
        "COLUMNS": "200",
    }

    def run_cli_command(command: str, timeout: int = 30) -> tuple[int, str, str]:
        """
        Run a CLI command and return exit code, stdout, stderr.

        Args:
            command: The command to run (after 'python -m src.cli.main')
            timeout: Maximum time to wait

        Returns:
            Tuple of (exit_code, stdout, stderr)
        """
        full_command = f"{sys.executable} -m src.cli.main {command}"

        result = subprocess.run(
            full_command,
            shell=True,
            cwd=PROJECT_ROOT,
            env=env,
            capture_output=True,
            text=True,
            timeout=timeout,
        )

        return result.returncode, result.stdout, result.stderr

    return run_cli_command


class TestCLIHelp:
    """Test that help commands work."""

    def test_main_help(self, cli):
        """Main help should display without errors."""
        code, stdout, stderr = cli("--help")

        assert code == 0, f"Help failed: {stderr}"
        assert "codedrill" in stdout.lower()
        assert "Commands" in stdout

    @pytest.mark.parametrize("group", ["db", "problems", "session", "attempt"])
    def test_group_help(self, cli, group):
        code, stdout, stderr = cli(f"{group} --help")

        assert code == 0, f"{group} help failed: {stderr}"

    def test_version(self, cli):
        code, stdout, stderr = cli("version")

        assert code == 0, f"Version failed: {stderr}"
        assert "0.1.0" in stdout


class TestCLIDatabase:
    """Test db and problem commands."""

    def test_db_init_is_idempotent(self, cli):
        assert cli("db init")[0] == 0
        code, stdout, stderr = cli("db init")

        assert code == 0, f"db init failed: {stderr}"
        assert "Database initialized" in stdout

    def test_add_and_list_problems(self, cli):
        code, stdout, stderr = cli(
            'problems add two-sum --title "Two Sum" --category Arrays --difficulty Easy'
        )
        assert code == 0, f"problems add failed: {stderr}"
        assert "two-sum" in stdout

        code, stdout, stderr = cli("problems list")
        assert code == 0, f"problems list failed: {stderr}"
        assert "two-sum" in stdout

    def test_unknown_difficulty_is_rejected(self, cli):
        code, _, _ = cli("problems add x --category Arrays --difficulty Impossible")

        assert code == 2


class TestCLIPractice:
    """Test a short practice round through the CLI."""

    def test_session_attempt_and_rating(self, cli):
        cli("problems add two-sum --category Arrays --difficulty Easy")

        code, stdout, stderr = cli("session start")
        assert code == 0, f"session start failed: {stderr}"
        assert "two-sum" in stdout

        code, stdout, stderr = cli("attempt start two-sum --session 1")
        assert code == 0, f"attempt start failed: {stderr}"
        assert "Attempt #1" in stdout
        assert "20 min" in stdout

        code, stdout, stderr = cli("attempt status 1")
        assert code == 0, f"attempt status failed: {stderr}"
        assert "left" in stdout

        code, stdout, stderr = cli("attempt rate 1 good")
        assert code == 0, f"attempt rate failed: {stderr}"
        assert "Good" in stdout
        assert "New -> Review" in stdout

        code, stdout, stderr = cli("attempt rate 1 easy")
        assert code == 1
        assert "already" in stdout.lower()

    def test_invalid_rating(self, cli):
        cli("problems add two-sum --category Arrays --difficulty Easy")
        cli("attempt start two-sum")

        code, stdout, _ = cli("attempt rate 1 7")

        assert code == 1

    def test_empty_session(self, cli):
        code, stdout, stderr = cli("session start")

        assert code == 0, f"session start failed: {stderr}"
        assert "Nothing to practice" in stdout


class TestCLIReports:
    """Test reporting commands."""

    def test_due_runs(self, cli):
        code, stdout, stderr = cli("due")

        assert code == 0, f"due failed: {stderr}"
        assert "Due reviews" in stdout

    def test_stats_runs(self, cli):
        cli("problems add two-sum --category Arrays --difficulty Easy")
        code, stdout, stderr = cli("stats")

        assert code == 0, f"stats failed: {stderr}"
        assert "Due today" in stdout
        assert "Arrays" in stdout

    def test_preview_runs(self, cli):
        cli("problems add two-sum --category Arrays --difficulty Easy")
        code, stdout, stderr = cli("preview two-sum")

        assert code == 0, f"preview failed: {stderr}"
        assert "Again" in stdout and "Easy" in stdout
