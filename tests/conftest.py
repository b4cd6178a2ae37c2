"""
Shared test fixtures for recon-entity-db.

Provides a small flat file, the in-memory and SQLite sources built from
it, and resets module-level singletons between tests.
"""

import json
from pathlib import Path

import pytest

from recon_entity_db.loader import convert_flat_file, load_flat_file
from recon_entity_db.memory import MemorySource
from recon_entity_db.store import DatabaseSource


SAMPLE_TYPES = [
    {"id": "person", "name": "Person", "description": "A human being", "url": "http://example.org/entity/{{id}}"},
    {"id": "author", "name": "Author", "description": "", "url": ""},
    {"id": "book", "name": "Book", "description": "", "url": ""},
    {"id": "series", "name": "Radio Series", "description": "", "url": ""},
]

SAMPLE_ROWS = [
    ["birth_year", "Birth Year", "property,person", {"description": "Year of birth", "type": "int"}],
    ["country", "Country", "property,person,author", {}],
    ["written_by", "Written by", "property,book", {}],
    ["q42", "Douglas Adams", "person,author", {"description": "English writer", "birth_year": 1952, "country": "UK"}],
    ["q1", "Douglas Hofstadter", "person", {"birth_year": 1945, "country": "US"}],
    ["q5", "Adams", "person", {"country": "US"}],
    ["q7", "Michael Douglas", "person", {}],
    ["q9", "Arthur Dent", "", {}],
    ["hhgttg", "The Hitchhiker's Guide to the Galaxy", "book", {"written_by": {"id": "person:q42"}, "year": 1979}],
    ["hhgttg", "The Hitchhiker's Guide to the Galaxy (radio)", "series", {}],
]


def sample_lines() -> list[str]:
    """Lines of the sample flat file, header first."""
    header = "\t".join([
        "http://example.org/entity/",
        "Example Source",
        "http://example.org/type/",
        json.dumps(SAMPLE_TYPES),
    ])
    rows = ["\t".join([key, name, types, json.dumps(values)]) for key, name, types, values in SAMPLE_ROWS]
    return [header, *rows]


# ---------------------------------------------------------------------------
# Singleton reset (autouse) -- clears module-level caches every test
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _reset_module_singletons():
    """Clear module-level singletons so tests are fully isolated."""
    import recon_entity_db.server as _server
    import recon_entity_db.source as _source

    yield

    for instance in _source._source_instances.values():
        instance.close()
    _source._source_instances.clear()

    _server._source = None
    _server._source_location = None
    _server._public_url = _server.DEFAULT_PUBLIC_URL


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------

@pytest.fixture
def sample_flat_file(tmp_path: Path) -> Path:
    """Write the sample flat file and return its path."""
    path = tmp_path / "sample.txt"
    path.write_text("\n".join(sample_lines()) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def sample_db_path(tmp_path: Path, sample_flat_file: Path) -> Path:
    """Convert the sample flat file into a SQLite database."""
    db_path = tmp_path / "sample.sqlite"
    convert_flat_file(sample_flat_file, db_path)
    return db_path


@pytest.fixture
def memory_source(sample_flat_file: Path) -> MemorySource:
    """In-memory source loaded from the sample flat file."""
    return load_flat_file(sample_flat_file)


@pytest.fixture
def db_source(sample_db_path: Path):
    """SQLite source over the sample database."""
    source = DatabaseSource(sample_db_path)
    yield source
    source.close()


@pytest.fixture(params=["memory", "sqlite"])
def any_source(request):
    """Each backend in turn, loaded with the same sample data."""
    if request.param == "memory":
        return request.getfixturevalue("memory_source")
    return request.getfixturevalue("db_source")
