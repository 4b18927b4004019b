import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from load_schema import Config, load_config, load_desired_schema, read_environment, schema_from_document
from migration_errors import EnvironmentNotFoundError, MigrationError, SchemaValidationError


class TestLoadConfig(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.cwd = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_defaults(self) -> None:
        config = load_config(env={}, cwd=self.cwd)
        self.assertEqual(config, Config())
        self.assertEqual(config.url, "http://localhost:8000")

    def test_environment_variables(self) -> None:
        config = load_config(env={"SMIG_NAMESPACE": "app", "SMIG_PASSWORD": "secret"}, cwd=self.cwd)
        self.assertEqual(config.namespace, "app")
        self.assertEqual(config.password, "secret")
        self.assertEqual(config.database, "test")

    def test_precedence(self) -> None:
        (self.cwd / "smig.yaml").write_text(
            "url: http://file:8000\n"
            "namespace: filens\n"
            "environments:\n"
            "  prod:\n"
            "    url: http://prod:8000\n"
            "    database: proddb\n",
            encoding="utf-8",
        )
        config = load_config(
            environment="prod",
            overrides={"database": "clidb", "username": None},
            env={"SMIG_URL": "http://env:8000", "SMIG_USERNAME": "envuser"},
            cwd=self.cwd,
        )
        self.assertEqual(config.url, "http://prod:8000")
        self.assertEqual(config.namespace, "filens")
        self.assertEqual(config.database, "clidb")
        self.assertEqual(config.username, "envuser")

    def test_unknown_environment(self) -> None:
        (self.cwd / "smig.yaml").write_text("environments:\n  dev:\n    database: devdb\n", encoding="utf-8")
        with self.assertRaises(EnvironmentNotFoundError) as ctx:
            load_config(environment="prod", env={}, cwd=self.cwd)
        self.assertEqual(ctx.exception.available, ["dev"])

    def test_missing_explicit_config_file(self) -> None:
        with self.assertRaises(MigrationError):
            load_config(path=self.cwd / "nope.yaml", env={}, cwd=self.cwd)

    def test_dotenv_file(self) -> None:
        (self.cwd / ".env").write_text("SMIG_URL=http://dotenv:8000\nSMIG_NAMESPACE=fromfile\n", encoding="utf-8")
        with mock.patch.dict(os.environ, {"SMIG_URL": "http://real:8000"}, clear=True):
            values = read_environment(self.cwd)
        self.assertEqual(values["SMIG_URL"], "http://real:8000")
        self.assertEqual(values["SMIG_NAMESPACE"], "fromfile")


class TestConfig(unittest.TestCase):
    def test_http_url(self) -> None:
        self.assertEqual(Config(url="ws://localhost:8000/rpc").http_url(), "http://localhost:8000")
        self.assertEqual(Config(url="wss://db.example.com/").http_url(), "https://db.example.com")
        self.assertEqual(Config(url="http://h:8000").http_url(), "http://h:8000")

    def test_redacted(self) -> None:
        values = Config(password="hunter2").redacted()
        self.assertEqual(values["password"], "*******")
        self.assertEqual(values["username"], "root")


class TestSchemaFromDocument(unittest.TestCase):
    def test_tables_and_fields(self) -> None:
        schema = schema_from_document(
            {
                "tables": [
                    {
                        "name": "user",
                        "was": "users",
                        "fields": {
                            "email": "string",
                            "nickname": "string?",
                            "age": {"type": "int", "default": 0, "was": ["years"]},
                        },
                        "indexes": [{"name": "email_idx", "columns": "email", "unique": True}],
                        "permissions": {"select": True, "update": "WHERE id = $auth.id"},
                    }
                ]
            }
        )
        table = schema.tables[0]
        self.assertEqual(table.previous_names, ["users"])
        fields = table.field_map()
        self.assertEqual(fields["email"].type, "string")
        self.assertTrue(fields["nickname"].optional)
        self.assertEqual(fields["nickname"].type, "string")
        self.assertEqual(fields["age"].default.value, 0)
        self.assertEqual(fields["age"].previous_names, ["years"])
        self.assertEqual(table.indexes[0].columns, ["email"])
        self.assertTrue(table.indexes[0].unique)
        self.assertEqual(table.permissions, "FOR select FULL, FOR update WHERE id = $auth.id")

    def test_relation_fields_are_derived(self) -> None:
        schema = schema_from_document({"relations": [{"name": "likes", "from": "user", "to": "post"}]})
        relation = schema.relations[0]
        self.assertTrue(relation.is_relation())
        self.assertEqual([(f.name, f.type) for f in relation.fields], [("in", "record<user>"), ("out", "record<post>")])

    def test_database_entities(self) -> None:
        schema = schema_from_document(
            {
                "params": {"max_retries": 3, "greeting": "hello"},
                "functions": [{"name": "fn::greet", "params": {"name": "string"}, "body": "RETURN $name"}],
                "users": [{"name": "admin", "password": "pw", "roles": "owner, editor"}],
                "analyzers": [{"name": "english", "tokenizers": ["BLANK"], "filters": ["LOWERCASE"]}],
            }
        )
        self.assertEqual({p.name: p.value for p in schema.params}, {"max_retries": "3", "greeting": "'hello'"})
        self.assertEqual(schema.functions[0].name, "greet")
        self.assertEqual(schema.functions[0].params[0].name, "name")
        self.assertEqual(schema.users[0].roles, ["OWNER", "EDITOR"])
        self.assertEqual(schema.analyzers[0].tokenizers, ["blank"])

    def test_jwt_and_bearer_access(self) -> None:
        schema = schema_from_document(
            {
                "accesses": [
                    {"name": "api", "type": "JWT", "algorithm": "HS512", "key": "secret", "issuerKey": "signer"},
                    {"name": "sso", "type": "jwt", "url": "https://example.com/jwks.json"},
                    {"name": "service", "type": "bearer", "key": "svc", "bearerType": "string"},
                ]
            }
        )
        api, sso, service = schema.scopes
        self.assertEqual((api.access_type, api.jwt_algorithm, api.jwt_key), ("jwt", "HS512", "secret"))
        self.assertEqual(api.jwt_issuer_key, "signer")
        self.assertEqual(sso.jwt_url, "https://example.com/jwks.json")
        self.assertEqual((service.bearer_key, service.bearer_type, service.jwt_key), ("svc", "string", None))

    def test_jwt_access_without_key_is_rejected(self) -> None:
        with self.assertRaises(SchemaValidationError):
            schema_from_document({"accesses": [{"name": "api", "type": "jwt", "algorithm": "HS512"}]})

    def test_duplicate_fields_are_rejected(self) -> None:
        doc = {"tables": [{"name": "t", "fields": [{"name": "a", "type": "int"}, {"name": "a", "type": "string"}]}]}
        with self.assertRaises(SchemaValidationError):
            schema_from_document(doc)

    def test_load_from_file(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "schema.yaml"
            path.write_text("tables:\n  - name: post\n    fields:\n      title: string\n", encoding="utf-8")
            schema = load_desired_schema(path)
        self.assertEqual(schema.tables[0].fields[0].name, "title")

    def test_non_mapping_file(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "schema.yaml"
            path.write_text("- a\n- b\n", encoding="utf-8")
            with self.assertRaises(MigrationError):
                load_desired_schema(path)

    def test_malformed_yaml(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "schema.yaml"
            path.write_text("tables: [\n  - name: user\n", encoding="utf-8")
            with self.assertRaises(SchemaValidationError):
                load_desired_schema(path)

    def test_entry_without_name(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "schema.yaml"
            path.write_text("tables:\n  - fields:\n      title: string\n", encoding="utf-8")
            with self.assertRaises(SchemaValidationError) as ctx:
                load_desired_schema(path)
        self.assertIn("'name'", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
