"""Unit tests for the operator CLI."""

import json

import pytest
from typer.testing import CliRunner

from ooh_booking.interfaces.cli.main import app

runner = CliRunner()


class TestCLI:
    """Tests for CLI commands against a temp database."""

    @pytest.fixture
    def database(self, tmp_path) -> str:
        """Database URL with the sample criteria loaded."""
        url = f"sqlite:///{tmp_path / 'cli.db'}"
        rules = tmp_path / "criteria.json"
        rules.write_text(
            json.dumps(
                [
                    {
                        "format": "PARABUS",
                        "medium_type": "traditional",
                        "market": "CIUDAD DE MEXICO",
                        "faces_max_dg": 5,
                        "tariff_min_dcm": 2000,
                        "tariff_max_dcm": 3000,
                    }
                ]
            ),
            encoding="utf-8",
        )
        result = runner.invoke(app, ["load-criteria", str(rules), "--database", url])
        assert result.exit_code == 0, result.output
        return url

    def test_init_db(self, tmp_path):
        """Test that init-db creates the database."""
        result = runner.invoke(app, ["init-db", "--database", f"sqlite:///{tmp_path / 'new.db'}"])

        assert result.exit_code == 0
        assert "Database initialized" in result.output
        assert (tmp_path / "new.db").exists()

    def test_evaluate_pending(self, database):
        """Test evaluating terms that need both authorizations."""
        result = runner.invoke(
            app,
            ["evaluate", "--format", "Parabus", "--faces", "4", "--cost", "10000",
             "--city", "CDMX", "--database", database],
        )

        assert result.exit_code == 0, result.output
        assert "2500.00" in result.output
        assert result.output.count("pending") == 2

    def test_evaluate_other_format(self, database):
        """Test that formats without criteria are approved."""
        result = runner.invoke(
            app,
            ["evaluate", "-f", "Espectacular", "-n", "1", "-c", "10", "--database", database],
        )

        assert result.exit_code == 0, result.output
        assert "pending" not in result.output

    def test_unknown_proposal_exits_nonzero(self, database):
        """Test that booking errors exit with status 1."""
        result = runner.invoke(app, ["summary", "missing", "--database", database])

        assert result.exit_code == 1
        assert "not found" in result.output
