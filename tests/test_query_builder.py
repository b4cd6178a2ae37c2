"""Tests for full-text query construction helpers in recon_entity_db.store."""

from recon_entity_db.store import (
    PropertySearchQuery,
    escape_like,
    fts_match_expression,
    table_alias,
)


class TestTableAlias:
    def test_sequential_letters(self):
        assert [table_alias(i) for i in range(4)] == ["b", "c", "d", "e"]

    def test_wraps_with_suffix(self):
        assert table_alias(24) == "z"
        assert table_alias(25) == "b1"
        assert table_alias(50) == "b2"

    def test_unique(self):
        aliases = [table_alias(i) for i in range(200)]
        assert len(set(aliases)) == 200
        assert "a" not in aliases


class TestMatchExpression:
    def test_single_token_is_prefix(self):
        assert fts_match_expression("Doug") == '"Doug"*'

    def test_tokens_quoted(self):
        assert fts_match_expression("Douglas  Adams") == '"Douglas" "Adams"*'

    def test_embedded_quotes_doubled(self):
        assert fts_match_expression('say "hi"') == '"say" """hi"""*'

    def test_operators_are_quoted(self):
        assert fts_match_expression("cats OR dogs") == '"cats" "OR" "dogs"*'

    def test_no_searchable_token(self):
        assert fts_match_expression("") is None
        assert fts_match_expression("   ") is None
        assert fts_match_expression("- * !") is None

    def test_punctuation_tokens_dropped(self):
        assert fts_match_expression("Adams -") == '"Adams"*'


class TestEscapeLike:
    def test_wildcards(self):
        assert escape_like("50%_off") == "50\\%\\_off"

    def test_backslash(self):
        assert escape_like("a\\b") == "a\\\\b"

    def test_plain(self):
        assert escape_like("Doug") == "Doug"


class TestPropertySearchQuery:
    def test_no_constraints(self):
        query = PropertySearchQuery('"Doug"*')
        assert query.params == ['"Doug"*']
        assert "JOIN" not in query.sql
        assert "recongo_entities_fts MATCH ?" in query.sql
        assert query.sql.rstrip().endswith("ORDER BY score, recongo_entities_fts.ent_id")

    def test_one_join_per_constraint(self):
        query = PropertySearchQuery('"Douglas"*')
        assert query.add_constraint("country", "UK") == "b"
        assert query.add_constraint("birth_year", "1952") == "c"

        sql = query.sql
        assert "JOIN recongo_entity_properties b ON b.ent_id = recongo_entities_fts.ent_id" in sql
        assert "JOIN recongo_entity_properties c ON c.ent_id = recongo_entities_fts.ent_id" in sql
        assert "b.prop_id = ? AND b.prop_value = ?" in sql
        assert "c.prop_id = ? AND c.prop_value = ?" in sql

    def test_param_order_tracks_clauses(self):
        """Search term first, then (property id, value) per constraint in order."""
        query = PropertySearchQuery('"Douglas"*')
        query.add_constraint("country", "UK")
        query.add_constraint("birth_year", "1952")
        assert query.params == ['"Douglas"*', "country", "UK", "birth_year", "1952"]
        assert query.sql.count("?") == len(query.params)

    def test_values_never_interpolated(self):
        query = PropertySearchQuery('"x"*')
        query.add_constraint("country", "UK'; DROP TABLE recongo_entities; --")
        assert "DROP TABLE" not in query.sql

    def test_params_is_a_copy(self):
        query = PropertySearchQuery('"x"*')
        query.params.append("junk")
        assert query.params == ['"x"*']
