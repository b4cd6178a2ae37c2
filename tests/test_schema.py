"""Tests for the SQLite schema and database builder in recon_entity_db.schema."""

import sqlite3
from pathlib import Path

import pytest

from recon_entity_db.models import EntityRecord, EntityType, Property, SourceMetadata
from recon_entity_db.schema import (
    ENTITIES_TABLE,
    ENTITY_PROPERTIES_TABLE,
    FTS_TABLE,
    METADATA_TABLE,
    PROPS2TYPES_TABLE,
    build_database,
    create_all_tables,
)


TYPES = [EntityType(id="gene", name="Gene"), EntityType(id="protein", name="Protein")]

RECORDS = [
    Property(id="symbol", name="Symbol", type_ids=["gene", "protein"]),
    EntityRecord(key="672", name="BRCA1", description="DNA repair", type_ids=["gene"], properties={"symbol": "BRCA1"}),
    EntityRecord(key="P38398", name="Breast cancer type 1 susceptibility protein", type_ids=["protein", "gene"]),
]


def _table_names(conn: sqlite3.Connection) -> set[str]:
    return {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type IN ('table', 'view')")}


class TestCreateAllTables:
    def test_creates_tables(self):
        conn = sqlite3.connect(":memory:")
        create_all_tables(conn)
        names = _table_names(conn)
        for table in ["recongo_metadata", "recongo_types", "recongo_properties", "recongo_props2types",
                      "recongo_entities", "recongo_entity_properties", "recongo_entities_fts"]:
            assert table in names
        conn.close()

    def test_idempotent(self):
        conn = sqlite3.connect(":memory:")
        create_all_tables(conn)
        create_all_tables(conn)
        conn.close()


class TestBuildDatabase:
    def test_counts(self, tmp_path: Path):
        counts = build_database(tmp_path / "genes.db", SourceMetadata(name="Genes"), TYPES, RECORDS)
        assert counts == {"entities": 2, "properties": 1, "property_values": 1}

    def test_rows(self, tmp_path: Path):
        db_path = tmp_path / "genes.db"
        build_database(db_path, SourceMetadata(name="Genes", view_url="http://ex.org/{{id}}"), TYPES, RECORDS)

        conn = sqlite3.connect(str(db_path))
        meta = dict(conn.execute(f"SELECT meta_key, meta_value FROM {METADATA_TABLE}"))
        assert meta["name"] == "Genes"
        assert meta["view_url"] == "http://ex.org/{{id}}"

        assert set(conn.execute(f"SELECT prop_id, type_id FROM {PROPS2TYPES_TABLE}")) == {
            ("symbol", "gene"), ("symbol", "protein"),
        }
        assert set(conn.execute(f"SELECT ent_types, ent_id FROM {ENTITIES_TABLE}")) == {
            ("gene", "672"), ("protein,gene", "P38398"),
        }
        assert list(conn.execute(f"SELECT ent_types, ent_id, prop_id, prop_value FROM {ENTITY_PROPERTIES_TABLE}")) == [
            ("gene", "672", "symbol", "BRCA1"),
        ]
        conn.close()

    def test_reloaded_key_keeps_last_row(self, tmp_path: Path):
        """A second row with the same key and primary type replaces the first and its values."""
        db_path = tmp_path / "genes.db"
        records = [
            EntityRecord(key="672", name="BRCA1", type_ids=["gene"], properties={"symbol": "OLD", "chr": "17"}),
            EntityRecord(key="672", name="BRCA1 gene", type_ids=["gene", "protein"], properties={"symbol": "BRCA1"}),
        ]
        counts = build_database(db_path, SourceMetadata(), TYPES, records)
        assert counts == {"entities": 1, "properties": 0, "property_values": 1}

        conn = sqlite3.connect(str(db_path))
        assert list(conn.execute(f"SELECT ent_types, ent_id, ent_name FROM {ENTITIES_TABLE}")) == [
            ("gene,protein", "672", "BRCA1 gene"),
        ]
        assert list(conn.execute(f"SELECT ent_types, ent_id, prop_id, prop_value FROM {ENTITY_PROPERTIES_TABLE}")) == [
            ("gene,protein", "672", "symbol", "BRCA1"),
        ]
        conn.close()

    def test_same_key_other_primary_type_kept(self, tmp_path: Path):
        records = [
            EntityRecord(key="672", name="BRCA1", type_ids=["gene"]),
            EntityRecord(key="672", name="BRCA1 protein", type_ids=["protein", "gene"]),
        ]
        counts = build_database(tmp_path / "genes.db", SourceMetadata(), TYPES, records)
        assert counts["entities"] == 2

    def test_fts_index_populated(self, tmp_path: Path):
        db_path = tmp_path / "genes.db"
        build_database(db_path, SourceMetadata(), TYPES, RECORDS)
        conn = sqlite3.connect(str(db_path))
        rows = conn.execute(f"SELECT ent_id FROM {FTS_TABLE} WHERE {FTS_TABLE} MATCH ?", ('"susceptibility"',)).fetchall()
        assert rows == [("P38398",)]
        conn.close()

    def test_existing_file_refused(self, tmp_path: Path):
        db_path = tmp_path / "genes.db"
        db_path.write_bytes(b"")
        with pytest.raises(FileExistsError):
            build_database(db_path, SourceMetadata(), TYPES, RECORDS)

    def test_failed_build_leaves_no_file(self, tmp_path: Path):
        db_path = tmp_path / "genes.db"
        bad = [*RECORDS, EntityRecord(key="x", name="Untyped", type_ids=[])]
        with pytest.raises(ValueError, match="has no type"):
            build_database(db_path, SourceMetadata(), TYPES, bad)
        assert not db_path.exists()
