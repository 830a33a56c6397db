"""CLI smoke tests against the in-memory store."""

from __future__ import annotations

from typer.testing import CliRunner

from infracc.cli import app

runner = CliRunner()


class TestCli:
    """Test commands end to end with --memory."""

    def test_ingest_reports_summary(self, tmp_path):
        path = tmp_path / "billing.csv"
        path.write_text("id,service,region,monthlyCost\nr1,EC2,us-east-1,40\nr1,EC2,us-east-1,10\nr2,S3,,1\n")

        result = runner.invoke(app, ["ingest", str(path), "--memory"])

        assert result.exit_code == 0, result.output
        assert "Read 3 rows from billing.csv" in result.output
        assert "3 of 3 records" in result.output

    def test_ingest_missing_file_fails(self, tmp_path):
        result = runner.invoke(app, ["ingest", str(tmp_path / "nope.csv"), "--memory"])

        assert result.exit_code == 1

    def test_ingest_unsupported_file_names_it(self, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_text("id\nr1\n")

        result = runner.invoke(app, ["ingest", str(path), "--memory"])

        assert result.exit_code == 1
        assert "Unsupported file format: notes.txt" in result.output

    def test_stats_on_empty_store(self):
        result = runner.invoke(app, ["stats", "--memory"])

        assert result.exit_code == 0, result.output
        assert "Records" in result.output

    def test_show_unknown_record(self):
        result = runner.invoke(app, ["show", "i-404", "--memory"])

        assert result.exit_code == 1
        assert "No record" in result.output

    def test_clear_requires_confirmation(self):
        result = runner.invoke(app, ["clear", "--memory"], input="n\n")

        assert result.exit_code != 0

    def test_clear_with_yes(self):
        result = runner.invoke(app, ["clear", "--memory", "--yes"])

        assert result.exit_code == 0, result.output
        assert "cleared" in result.output
