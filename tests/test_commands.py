"""Tests for the recon-entity-db CLI (recon_entity_db.commands)."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from recon_entity_db import __version__
from recon_entity_db.commands import main
from recon_entity_db.store import DatabaseSource


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


class TestMain:
    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_lists_commands(self, runner):
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        for command in ["serve", "search", "suggest", "entity", "properties", "status", "convert", "import-tabular"]:
            assert command in result.output


class TestSearch:
    def test_search_flat_file(self, runner, sample_flat_file):
        result = runner.invoke(main, ["search", str(sample_flat_file), "Douglas", "--type", "person"])
        assert result.exit_code == 0, result.output
        assert "1. Douglas Adams" in result.output
        assert "ID: person:q42" in result.output

    def test_search_sqlite(self, runner, sample_db_path):
        result = runner.invoke(main, ["search", str(sample_db_path), "q42"])
        assert result.exit_code == 0, result.output
        assert "Douglas Adams [match]" in result.output
        assert "Score: 100.00" in result.output

    def test_property_constraint(self, runner, sample_flat_file):
        result = runner.invoke(main, ["search", str(sample_flat_file), "Douglas", "--prop", "country=US"])
        assert result.exit_code == 0, result.output
        assert "Douglas Hofstadter" in result.output
        assert "Douglas Adams" not in result.output

    def test_bad_property_option(self, runner, sample_flat_file):
        result = runner.invoke(main, ["search", str(sample_flat_file), "Douglas", "--prop", "country"])
        assert result.exit_code != 0
        assert "PID=VALUE" in result.output

    def test_no_results(self, runner, sample_flat_file):
        result = runner.invoke(main, ["search", str(sample_flat_file), "Tolkien"])
        assert result.exit_code == 0
        assert "No results found." in result.output


class TestLookupCommands:
    def test_suggest(self, runner, sample_db_path):
        result = runner.invoke(main, ["suggest", str(sample_db_path), "Doug"])
        assert result.exit_code == 0, result.output
        assert result.output.splitlines() == ["person:q42\tDouglas Adams", "person:q1\tDouglas Hofstadter"]

    def test_entity(self, runner, sample_flat_file):
        result = runner.invoke(main, ["entity", str(sample_flat_file), "author:q42"])
        assert result.exit_code == 0, result.output
        assert "Douglas Adams (person:q42)" in result.output
        assert "country: UK" in result.output
        assert "Description: English writer" in result.output
        assert "View: http://example.org/entity/person:q42" in result.output

    def test_entity_not_found(self, runner, sample_flat_file):
        result = runner.invoke(main, ["entity", str(sample_flat_file), "book:q42"])
        assert result.exit_code == 1
        assert "Entity not found" in result.output

    def test_properties_for_type(self, runner, sample_db_path):
        result = runner.invoke(main, ["properties", str(sample_db_path), "person"])
        assert result.exit_code == 0, result.output
        assert result.output.splitlines() == ["birth_year\tBirth Year\tint", "country\tCountry\tstring"]

    def test_list_types(self, runner, sample_flat_file):
        result = runner.invoke(main, ["properties", str(sample_flat_file)])
        assert result.exit_code == 0, result.output
        assert "person\tPerson" in result.output.splitlines()


class TestManagementCommands:
    def test_status(self, runner, sample_db_path):
        result = runner.invoke(main, ["status", str(sample_db_path)])
        assert result.exit_code == 0, result.output
        assert "Name: Example Source" in result.output
        assert "Backend: DatabaseSource" in result.output
        assert "entities" in result.output

    def test_status_source_from_environment(self, runner, sample_flat_file):
        result = runner.invoke(main, ["status"], env={"RECON_ENTITY_DB_SOURCE": str(sample_flat_file)})
        assert result.exit_code == 0, result.output
        assert "Backend: MemorySource" in result.output

    def test_status_missing_source(self, runner, tmp_path: Path):
        result = runner.invoke(main, ["status", str(tmp_path / "missing.sqlite")])
        assert result.exit_code == 2

    def test_convert(self, runner, sample_flat_file, tmp_path: Path):
        db_path = tmp_path / "out.sqlite"
        result = runner.invoke(main, ["convert", str(sample_flat_file), str(db_path)])
        assert result.exit_code == 0, result.output
        assert "Wrote 7 entities, 3 properties, 7 property values." in result.output

        source = DatabaseSource(db_path)
        try:
            assert source.get_entity("person:q42").name == "Douglas Adams"
        finally:
            source.close()

    def test_convert_refuses_overwrite(self, runner, sample_flat_file, sample_db_path):
        result = runner.invoke(main, ["convert", str(sample_flat_file), str(sample_db_path)])
        assert result.exit_code == 1
        assert "--force" in result.output

    def test_convert_force(self, runner, sample_flat_file, sample_db_path):
        result = runner.invoke(main, ["convert", str(sample_flat_file), str(sample_db_path), "--force"])
        assert result.exit_code == 0, result.output

    def test_convert_bad_file(self, runner, tmp_path: Path):
        bad = tmp_path / "bad.txt"
        bad.write_text("ns\tname\tschema\t\nonly\ttwo\n", encoding="utf-8")
        result = runner.invoke(main, ["convert", str(bad), str(tmp_path / "bad.sqlite")])
        assert result.exit_code == 1
        assert "line 2" in result.output
        assert not (tmp_path / "bad.sqlite").exists()


class TestImportTabular:
    def test_import(self, runner, tmp_path: Path):
        (tmp_path / "things.csv").write_text("id,label,color\nk1,Widget,red\n", encoding="utf-8")
        config = {
            "name": "Things",
            "files": [{"id": "thing", "filename": "things.csv",
                       "column2property": {"0": "id", "1": "name", "2": "color"}}],
        }
        config_path = tmp_path / "config.json"
        config_path.write_text(json.dumps(config), encoding="utf-8")
        output = tmp_path / "things.txt"

        result = runner.invoke(main, ["import-tabular", str(config_path), "-o", str(output)])
        assert result.exit_code == 0, result.output
        assert "Imported 1 entities and 1 properties" in result.output
        assert output.exists()

    def test_requires_output(self, runner, tmp_path: Path):
        config_path = tmp_path / "config.json"
        config_path.write_text(json.dumps({"files": []}), encoding="utf-8")
        result = runner.invoke(main, ["import-tabular", str(config_path)])
        assert result.exit_code == 2

    def test_invalid_config(self, runner, tmp_path: Path):
        config_path = tmp_path / "config.json"
        config_path.write_text(json.dumps({"files": [{"id": "thing"}]}), encoding="utf-8")
        result = runner.invoke(main, ["import-tabular", str(config_path), "--dry-run"])
        assert result.exit_code == 1
        assert "Invalid config" in result.output


class TestServe:
    def test_serve_passes_options(self, runner, sample_flat_file):
        with patch("recon_entity_db.server.run_server") as mock_run:
            result = runner.invoke(
                main, ["serve", str(sample_flat_file), "--port", "9000", "--prefix", "/recon", "--no-warmup"]
            )
        assert result.exit_code == 0, result.output
        mock_run.assert_called_once_with(
            source_location=str(sample_flat_file),
            host="0.0.0.0",
            port=9000,
            public_url=None,
            prefix="/recon",
            do_warmup=False,
            verbose=False,
        )

    def test_serve_bad_prefix(self, runner, sample_flat_file):
        with patch("recon_entity_db.server.run_server", side_effect=ValueError("Prefix must start")):
            result = runner.invoke(main, ["serve", str(sample_flat_file), "--prefix", "recon"])
        assert result.exit_code == 1
        assert "Prefix must start" in result.output
