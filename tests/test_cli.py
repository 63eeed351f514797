"""
Tests for the CLI interface.
"""
import os
import tempfile

import pytest
import yaml
from typer.testing import CliRunner

from usage_guard.cli.main import app, EXIT_CODE_PASS, EXIT_CODE_FAIL

runner = CliRunner()


@pytest.fixture
def temp_dir():
    """Temporary directory for databases and config files."""
    path = tempfile.mkdtemp()
    yield path
    import shutil
    shutil.rmtree(path, ignore_errors=True)


def write_config(directory, data):
    """Write a YAML overrides file and return its path."""
    path = os.path.join(directory, "limits.yaml")
    with open(path, 'w', encoding='utf-8') as f:
        yaml.dump(data, f)
    return path


class TestCLI:
    """Test informational commands."""

    def test_no_command(self):
        """Test running without a command prints a hint."""
        result = runner.invoke(app, [])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Use --help" in result.output

    def test_status(self):
        """Test status command."""
        result = runner.invoke(app, ["status"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Usage Guard is ready" in result.output

    def test_init_creates_database(self, temp_dir):
        """Test init creates the SQLite file."""
        db_path = os.path.join(temp_dir, "usage.db")

        result = runner.invoke(app, ["init", "--db", db_path])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Database initialized successfully" in result.output
        assert os.path.exists(db_path)

    def test_config_hides_keys(self):
        """Test config shows limits but never the admin key."""
        result = runner.invoke(
            app,
            ["config"],
            env={"ADMIN_OVERRIDE_ENABLED": "true", "ADMIN_OVERRIDE_KEY": "super-secret-key"},
        )

        assert result.exit_code == EXIT_CODE_PASS
        assert "Token limits" in result.output
        assert "Admin override: enabled" in result.output
        assert "super-secret-key" not in result.output

    def test_config_shows_features(self):
        """Test config lists feature flags and what an upgrade unlocks."""
        result = runner.invoke(app, ["config"], env={"DEMO_FEATURE_EXPORT": "true"})

        assert result.exit_code == EXIT_CODE_PASS
        assert "Features" in result.output
        assert "Research mode" in result.output
        assert "Available on upgrade" in result.output
        assert "Document Export" not in result.output

    def test_invalid_config_file(self, temp_dir):
        """Test a missing overrides file is reported."""
        result = runner.invoke(app, ["config", "-c", os.path.join(temp_dir, "missing.yaml")])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Invalid configuration" in result.output

    def test_stats_without_database(self, temp_dir):
        """Test stats on an uninitialized database."""
        result = runner.invoke(app, ["stats", "-u", "u1", "--db", os.path.join(temp_dir, "empty.db")])

        assert result.exit_code == EXIT_CODE_PASS
        assert "No usage data found" in result.output


class TestSimulations:
    """Test dry-run commands."""

    def test_chat_within_limits(self):
        """Test a light workload passes."""
        result = runner.invoke(app, ["simulate-chat", "-n", "3", "-t", "100"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Allowed: 3  Denied: 0" in result.output

    def test_chat_session_limit(self, temp_dir):
        """Test the session limit denies the third request."""
        config_path = write_config(temp_dir, {"tokens": {"per_session": 3000}})

        result = runner.invoke(app, ["simulate-chat", "-n", "3", "-t", "1500", "-c", config_path])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Allowed: 2  Denied: 1" in result.output

    def test_chat_enforced_fails_on_denial(self):
        """Test --enforced exits with an error when anything is denied."""
        result = runner.invoke(app, ["simulate-chat", "-n", "2", "-t", "5000", "--enforced"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Allowed: 0  Denied: 2" in result.output

    def test_chat_show_hits(self):
        """Test the hit summary lists denied limit types."""
        result = runner.invoke(app, ["simulate-chat", "-n", "2", "-t", "5000", "--show-hits"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Limit hits" in result.output
        assert "per_request" in result.output

    def test_ocr_session_pages(self):
        """Test three 8-page documents fit a 30-page session and the rest do not."""
        result = runner.invoke(app, ["simulate-ocr", "-n", "5", "-p", "8"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Completed: 3  Denied: 2" in result.output

    def test_ocr_simulated_size_follows_page_estimate(self):
        """Test simulated PDFs are sized like the page estimator expects, so 53 pages exceed 5MB."""
        result = runner.invoke(app, ["simulate-ocr", "-n", "1", "-p", "53"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "file_size" in result.output
        assert "Completed: 0  Denied: 1" in result.output

    def test_ocr_enforced(self):
        """Test --enforced on an oversized document."""
        result = runner.invoke(app, ["simulate-ocr", "-n", "1", "-p", "12", "-e"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Completed: 0  Denied: 1" in result.output

    def test_usage_persists_to_database(self, temp_dir):
        """Test simulated usage can be read back with stats."""
        db_path = os.path.join(temp_dir, "usage.db")
        runner.invoke(app, ["init", "--db", db_path])
        runner.invoke(app, ["simulate-chat", "-n", "2", "-t", "100", "--db", db_path])

        result = runner.invoke(
            app,
            ["stats", "-u", "simulated-user", "-s", "simulated-session", "--db", db_path],
        )

        assert result.exit_code == EXIT_CODE_PASS
        assert "Token usage for simulated-user" in result.output
