import json
import tempfile
import unittest
from pathlib import Path

from migration_errors import ParseError
from schema_introspect import (
    load_schema_dump,
    parse_access_definition,
    parse_analyzer_definition,
    parse_event_definition,
    parse_field_definition,
    parse_function_definition,
    parse_index_definition,
    parse_param_definition,
    parse_schema_dump,
    parse_sequence_definition,
    parse_table_definition,
    parse_table_info,
    parse_user_definition,
    split_clauses,
    tokenize_definition,
)
from schema_model import DEFAULT_EXPRESSION


class TestTokenizer(unittest.TestCase):
    def test_keeps_bracketed_and_quoted_text_together(self) -> None:
        self.assertEqual(tokenize_definition("A (b c) 'd e' {f g}"), ["A", "(b c)", "'d e'", "{f g}"])

    def test_unbalanced_input(self) -> None:
        with self.assertRaises(ValueError):
            tokenize_definition("A (b")
        with self.assertRaises(ValueError):
            tokenize_definition("A 'b")

    def test_split_clauses(self) -> None:
        clauses = split_clauses("TYPE string DEFAULT ALWAYS 'x' READONLY", ("TYPE", "DEFAULT", "READONLY"))
        self.assertEqual(clauses["TYPE"].text, "string")
        self.assertEqual(clauses["DEFAULT"].tokens, ["ALWAYS", "'x'"])
        self.assertEqual(clauses["READONLY"].tokens, [])


class TestParseField(unittest.TestCase):
    def test_full_definition(self) -> None:
        field = parse_field_definition(
            "DEFINE FIELD author ON TABLE post TYPE record<user> REFERENCE ON DELETE CASCADE "
            "DEFAULT ALWAYS NONE COMMENT 'Who wrote it'",
            "author",
            "post",
        )
        self.assertEqual(field.type, "record<user>")
        self.assertEqual(field.reference.table, "user")
        self.assertEqual(field.reference.on_delete, "CASCADE")
        self.assertEqual(field.default.kind, DEFAULT_EXPRESSION)
        self.assertEqual(field.default.value, "NONE")
        self.assertTrue(field.default_always)
        self.assertEqual(field.comment, "Who wrote it")

    def test_flags_in_any_order(self) -> None:
        field = parse_field_definition(
            "DEFINE FIELD meta ON user READONLY FLEXIBLE TYPE option<object> PERMISSIONS FOR select WHERE $auth"
        )
        self.assertEqual(field.name, "meta")
        self.assertTrue(field.readonly)
        self.assertTrue(field.flexible)
        self.assertTrue(field.optional)
        self.assertEqual(field.permissions, "FOR select WHERE $auth")

    def test_value_and_assert(self) -> None:
        field = parse_field_definition(
            "DEFINE FIELD total ON order TYPE number VALUE $this.price * $this.qty ASSERT $value >= 0"
        )
        self.assertEqual(field.value, "$this.price * $this.qty")
        self.assertEqual(field.assertion, "$value >= 0")

    def test_unrecognized_text(self) -> None:
        with self.assertRaises(ParseError):
            parse_field_definition("SELECT * FROM user")
        with self.assertRaises(ParseError) as ctx:
            parse_field_definition("DEFINE FIELD x ON t blah TYPE int")
        self.assertEqual(ctx.exception.entity, "field ?.?")


class TestParseIndexAndEvent(unittest.TestCase):
    def test_fulltext_index(self) -> None:
        index = parse_index_definition(
            "DEFINE INDEX ft ON post FIELDS body FULLTEXT ANALYZER english BM25(1.2,0.75) HIGHLIGHTS"
        )
        self.assertEqual(index.kind, "search")
        self.assertEqual(index.analyzer, "english")
        self.assertEqual(index.bm25, "1.2,0.75")
        self.assertTrue(index.highlights)

    def test_hnsw_index(self) -> None:
        index = parse_index_definition(
            "DEFINE INDEX emb ON doc FIELDS embedding HNSW DIMENSION 384 DIST COSINE TYPE F32 EFC 150 M 12"
        )
        self.assertEqual(index.kind, "hnsw")
        self.assertEqual((index.dimension, index.dist, index.vector_type), (384, "COSINE", "F32"))
        self.assertEqual((index.efc, index.m, index.m0), (150, 12, None))

    def test_composite_unique_index(self) -> None:
        index = parse_index_definition("DEFINE INDEX pair ON t FIELDS a, b UNIQUE")
        self.assertEqual(index.columns, ["a", "b"])
        self.assertTrue(index.unique)
        self.assertEqual(index.kind, "btree")

    def test_index_without_columns(self) -> None:
        with self.assertRaises(ParseError):
            parse_index_definition("DEFINE INDEX broken ON t UNIQUE")

    def test_event_trigger_and_guard(self) -> None:
        event = parse_event_definition(
            'DEFINE EVENT notify ON user WHEN $event = "CREATE" AND $after.active = true THEN (CREATE log)'
        )
        self.assertEqual(event.trigger_type, "create")
        self.assertEqual(event.when, "$after.active = true")
        self.assertEqual(event.then, "(CREATE log)")

    def test_event_without_trigger(self) -> None:
        event = parse_event_definition("DEFINE EVENT e ON user WHEN $before.x != $after.x THEN { CREATE log }")
        self.assertIsNone(event.trigger_type)
        self.assertEqual(event.when, "$before.x != $after.x")


class TestParseTable(unittest.TestCase):
    def test_table_options(self) -> None:
        table = parse_table_definition(
            "DEFINE TABLE OVERWRITE audit DROP SCHEMALESS CHANGEFEED 3d INCLUDE ORIGINAL "
            "PERMISSIONS FOR select FULL COMMENT 'x'"
        )
        self.assertEqual(table.name, "audit")
        self.assertTrue(table.drop)
        self.assertEqual(table.schema_mode, "loose")
        self.assertEqual(table.changefeed.duration, "3d")
        self.assertTrue(table.changefeed.include_original)
        self.assertEqual(table.permissions, "FOR select FULL")
        self.assertEqual(table.comment, "x")

    def test_relation_from_type_clause(self) -> None:
        table = parse_table_definition("DEFINE TABLE likes TYPE RELATION IN user OUT post ENFORCED SCHEMAFULL")
        self.assertTrue(table.is_relation())
        self.assertEqual((table.relation_from, table.relation_to), ("user", "post"))
        self.assertTrue(table.enforced)

    def test_table_info_skips_wildcards_and_infers_relation(self) -> None:
        info = {
            "fields": {
                "in": "DEFINE FIELD in ON follows TYPE record<user>",
                "out": "DEFINE FIELD out ON follows TYPE record<user>",
                "tags": "DEFINE FIELD tags ON follows TYPE array<string>",
                "tags[*]": "DEFINE FIELD tags[*] ON follows TYPE string",
                "meta.*": "DEFINE FIELD meta.* ON follows TYPE any",
            }
        }
        table = parse_table_info("follows", "DEFINE TABLE follows SCHEMAFULL", info)
        self.assertEqual(sorted(table.field_map()), ["in", "out", "tags"])
        self.assertTrue(table.is_relation())
        self.assertEqual((table.relation_from, table.relation_to), ("user", "user"))


class TestParseDatabaseEntities(unittest.TestCase):
    def test_function(self) -> None:
        func = parse_function_definition("DEFINE FUNCTION fn::math::add($a: int, $b: int) { RETURN $a + $b; }")
        self.assertEqual(func.name, "math::add")
        self.assertEqual([(p.name, p.type) for p in func.params], [("a", "int"), ("b", "int")])
        self.assertIsNone(func.returns)
        self.assertEqual(func.body, "RETURN $a + $b")

    def test_function_without_body(self) -> None:
        with self.assertRaises(ParseError):
            parse_function_definition("DEFINE FUNCTION fn::broken($a: int)")

    def test_legacy_scope(self) -> None:
        access = parse_access_definition("DEFINE SCOPE account SESSION 24h SIGNUP (CREATE user) SIGNIN (SELECT * FROM user)")
        self.assertEqual(access.name, "account")
        self.assertEqual(access.access_type, "record")
        self.assertEqual(access.session, "24h")
        self.assertEqual(access.signup, "(CREATE user)")

    def test_access_durations(self) -> None:
        access = parse_access_definition(
            "DEFINE ACCESS api ON DATABASE TYPE RECORD AUTHENTICATE { $auth } DURATION FOR TOKEN 15m, FOR SESSION 12h"
        )
        self.assertEqual((access.token, access.session), ("15m", "12h"))
        self.assertEqual(access.authenticate, "{ $auth }")

    def test_jwt_access(self) -> None:
        access = parse_access_definition(
            "DEFINE ACCESS api ON DATABASE TYPE JWT ALGORITHM HS256 KEY '[REDACTED]' "
            "WITH ISSUER KEY '[REDACTED]' DURATION FOR TOKEN 1h, FOR SESSION NONE"
        )
        self.assertEqual(access.access_type, "jwt")
        self.assertEqual(access.jwt_algorithm, "HS256")
        self.assertEqual(access.jwt_key, "[REDACTED]")
        self.assertEqual(access.jwt_issuer_key, "[REDACTED]")
        self.assertIsNone(access.jwt_url)
        self.assertEqual(access.token, "1h")

    def test_jwt_url_access(self) -> None:
        access = parse_access_definition(
            "DEFINE ACCESS sso ON DATABASE TYPE JWT URL 'https://example.com/jwks.json' DURATION FOR SESSION 2h"
        )
        self.assertEqual(access.jwt_url, "https://example.com/jwks.json")
        self.assertIsNone(access.jwt_key)
        self.assertEqual(access.session, "2h")

    def test_bearer_access(self) -> None:
        access = parse_access_definition("DEFINE ACCESS service ON DATABASE TYPE BEARER KEY svc TYPE string")
        self.assertEqual(access.access_type, "bearer")
        self.assertEqual((access.bearer_key, access.bearer_type), ("svc", "string"))

    def test_analyzer(self) -> None:
        analyzer = parse_analyzer_definition(
            "DEFINE ANALYZER english FUNCTION fn::stem TOKENIZERS BLANK,CLASS FILTERS LOWERCASE,SNOWBALL(ENGLISH)"
        )
        self.assertEqual(analyzer.tokenizers, ["blank", "class"])
        self.assertEqual(analyzer.filters, ["lowercase", "snowball(english)"])
        self.assertEqual(analyzer.function, "stem")

    def test_param(self) -> None:
        param = parse_param_definition("DEFINE PARAM $endpoint VALUE 'https://api.example.com' COMMENT 'api'")
        self.assertEqual(param.name, "endpoint")
        self.assertEqual(param.value, "'https://api.example.com'")
        self.assertEqual(param.comment, "api")

    def test_sequence(self) -> None:
        seq = parse_sequence_definition("DEFINE SEQUENCE order_no BATCH 1000 START 100 TIMEOUT 5s")
        self.assertEqual((seq.start, seq.batch, seq.timeout), (100, 1000, "5s"))

    def test_user(self) -> None:
        user = parse_user_definition(
            "DEFINE USER admin ON DATABASE PASSHASH '$argon2id$v=19$abc' ROLES OWNER, EDITOR "
            "DURATION FOR TOKEN 1h, FOR SESSION NONE"
        )
        self.assertEqual(user.level, "database")
        self.assertEqual(user.passhash, "$argon2id$v=19$abc")
        self.assertEqual(user.roles, ["OWNER", "EDITOR"])
        self.assertEqual(user.token_duration, "1h")
        self.assertIsNone(user.session_duration)


class TestParseSchemaDump(unittest.TestCase):
    DUMP = {
        "db": {
            "tables": {
                "_migrations": "DEFINE TABLE _migrations TYPE NORMAL SCHEMAFULL",
                "user": "DEFINE TABLE user TYPE NORMAL SCHEMAFULL",
                "likes": "DEFINE TABLE likes TYPE RELATION IN user OUT user SCHEMAFULL",
            },
            "scopes": {"legacy": "DEFINE SCOPE legacy SESSION 1d"},
            "accesses": {"account": "DEFINE ACCESS account ON DATABASE TYPE RECORD DURATION FOR SESSION 1d"},
            "params": {"$limit": "DEFINE PARAM $limit VALUE 10"},
        },
        "tables": {"user": {"fields": {"email": "DEFINE FIELD email ON user TYPE string"}}},
    }

    def test_dump(self) -> None:
        schema = parse_schema_dump(self.DUMP)
        self.assertEqual([t.name for t in schema.tables], ["user"])
        self.assertEqual([r.name for r in schema.relations], ["likes"])
        self.assertEqual([a.name for a in schema.scopes], ["account", "legacy"])
        self.assertEqual([p.name for p in schema.params], ["limit"])
        self.assertEqual(schema.tables[0].fields[0].name, "email")

    def test_load_from_file(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "current.json"
            path.write_text(json.dumps(self.DUMP), encoding="utf-8")
            schema = load_schema_dump(path)
        self.assertEqual(len(schema.tables), 1)


if __name__ == "__main__":
    unittest.main()
