import contextlib
import io
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import migrate
from load_schema import load_desired_schema
from migration_manager import LEDGER_DDL


SCHEMA_YAML = """\
tables:
  - name: user
    fields:
      email: string
"""


class RecordingClient:
    def __init__(self) -> None:
        self.executed: list[str] = []
        self.records: dict[str, dict] = {}

    def connect(self) -> None:
        pass

    def close(self) -> None:
        pass

    def execute_query(self, sql: str) -> list:
        self.executed.append(sql)
        return []

    def create(self, table: str, data: dict) -> dict:
        record = {"id": f"{table}:1", **data}
        self.records[record["id"]] = record
        return record

    def select(self, table: str) -> list[dict]:
        return list(self.records.values())

    def delete(self, record_id: str) -> None:
        del self.records[record_id]

    def dump_schema(self) -> dict:
        return {"db": {"tables": {}}, "tables": {}}


class TestMigrateCli(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        root = Path(self._tmp.name)
        self.schema_path = root / "schema.yaml"
        self.schema_path.write_text(SCHEMA_YAML, encoding="utf-8")
        self.config_path = root / "smig.yaml"
        self.config_path.write_text(f"schema: {self.schema_path}\npassword: secret\n", encoding="utf-8")
        self._env = mock.patch.dict(os.environ, {}, clear=True)
        self._env.start()

    def tearDown(self) -> None:
        self._env.stop()
        self._tmp.cleanup()

    def run_cli(self, *argv: str) -> tuple[int, str, str]:
        out, err = io.StringIO(), io.StringIO()
        with contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
            code = migrate.main([argv[0], "--config", str(self.config_path), *argv[1:]])
        return code, out.getvalue(), err.getvalue()

    def test_config_masks_password(self) -> None:
        code, out, _ = self.run_cli("config")
        self.assertEqual(code, 0)
        self.assertIn("  password:  ******", out)
        self.assertNotIn("secret", out)
        _, out, _ = self.run_cli("config", "--show-secrets")
        self.assertIn("secret", out)

    def test_validate(self) -> None:
        code, out, _ = self.run_cli("validate")
        self.assertEqual(code, 0)
        self.assertIn("1 tables, 0 relations", out)

    def test_missing_schema_file(self) -> None:
        code, _, err = self.run_cli("validate", "--schema", str(self.schema_path.with_name("missing.yaml")))
        self.assertEqual(code, 1)
        self.assertTrue(err.startswith("Error:"))

    def test_dry_run_applies_nothing(self) -> None:
        client = RecordingClient()
        with mock.patch("migrate.SurrealClient") as surreal:
            surreal.from_config.return_value = client
            code, out, _ = self.run_cli("migrate", "--dry-run")
        self.assertEqual(code, 0)
        self.assertIn("DEFINE TABLE user", out)
        self.assertIn("Would rollback (down):", out)
        self.assertEqual(client.executed, [LEDGER_DDL])
        self.assertEqual(client.records, {})

    def test_migrate_records_entry(self) -> None:
        client = RecordingClient()
        with mock.patch("migrate.SurrealClient") as surreal:
            surreal.from_config.return_value = client
            code, out, _ = self.run_cli("migrate", "-m", "add user")
        self.assertEqual(code, 0)
        self.assertIn("Applied migration _migrations:1", out)
        self.assertEqual(client.records["_migrations:1"]["message"], "add user")

    def test_url_override_reaches_client(self) -> None:
        client = RecordingClient()
        with mock.patch("migrate.SurrealClient") as surreal:
            surreal.from_config.return_value = client
            self.run_cli("status", "--url", "ws://db:8000/rpc")
        config = surreal.from_config.call_args.args[0]
        self.assertEqual(config.http_url(), "http://db:8000")

    def test_connection_check_reads_ledger(self) -> None:
        client = RecordingClient()
        with mock.patch("migrate.SurrealClient") as surreal:
            surreal.from_config.return_value = client
            code, out, _ = self.run_cli("test")
        self.assertEqual(code, 0)
        self.assertEqual(client.executed, ["SELECT * FROM _migrations LIMIT 1;"])
        self.assertIn("Database connection successful", out)
        self.assertIn("  namespace: test", out)

    def test_validate_rejects_malformed_yaml(self) -> None:
        self.schema_path.write_text("tables: [\n  - name: user\n", encoding="utf-8")
        code, _, err = self.run_cli("validate")
        self.assertEqual(code, 1)
        self.assertIn("Invalid YAML", err)

    def test_init_creates_files(self) -> None:
        root = Path(self._tmp.name) / "fresh"
        root.mkdir()
        schema, config = root / "schema.yaml", root / "smig.yaml"
        out = io.StringIO()
        with contextlib.redirect_stdout(out):
            code = migrate.main(["init", "--schema", str(schema), "--config", str(config)])
        self.assertEqual(code, 0)
        self.assertIn(f"Created {schema}", out.getvalue())
        self.assertIn(f"schema: {schema}", config.read_text(encoding="utf-8"))
        desired = load_desired_schema(schema)
        self.assertEqual([t.name for t in desired.tables], ["user"])

    def test_init_refuses_to_overwrite(self) -> None:
        err = io.StringIO()
        with contextlib.redirect_stdout(io.StringIO()), contextlib.redirect_stderr(err):
            code = migrate.main(["init", "--schema", str(self.schema_path), "--no-config"])
        self.assertEqual(code, 1)
        self.assertIn("--force", err.getvalue())
        self.assertEqual(self.schema_path.read_text(encoding="utf-8"), SCHEMA_YAML)
        with contextlib.redirect_stdout(io.StringIO()):
            code = migrate.main(["init", "--schema", str(self.schema_path), "--no-config", "--force"])
        self.assertEqual(code, 0)
        self.assertIn("email_idx", self.schema_path.read_text(encoding="utf-8"))


if __name__ == "__main__":
    unittest.main()
