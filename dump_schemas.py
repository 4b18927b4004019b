#!/usr/bin/env python3
"""Dump the current SurrealDB schema to schemas/current.json.

Connects over the HTTP /sql endpoint and runs INFO FOR DB plus INFO FOR TABLE
for every table in the configured namespace/database.

Usage:
    python dump_schemas.py [--url URL] [--namespace NS] [--database DB] [--output PATH]
"""

from __future__ import annotations

import argparse
import base64
import datetime as dt
import json
import logging
import sys
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any

from load_schema import Config, load_config
from migration_errors import DatabaseConnectionError, MigrationError, QueryError


logger = logging.getLogger(__name__)

SCRIPT_DIR = Path(__file__).resolve().parent
OUTPUT_PATH = SCRIPT_DIR / "schemas" / "current.json"


def to_surql(value: Any) -> str:
    """Render a Python value as a SurrealQL literal."""
    if value is None:
        return "NONE"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, dt.datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=dt.timezone.utc)
        stamp = value.astimezone(dt.timezone.utc).isoformat().replace("+00:00", "Z")
        return f'd"{stamp}"'
    if isinstance(value, dict):
        items = ", ".join(f"{json.dumps(str(k))}: {to_surql(v)}" for k, v in value.items())
        return "{ " + items + " }" if items else "{}"
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(to_surql(v) for v in value) + "]"
    return json.dumps(str(value), ensure_ascii=False)


def split_record_id(record_id: str) -> tuple[str, str]:
    table, sep, key = str(record_id).partition(":")
    if not sep or not table or not key:
        raise ValueError(f"Invalid record id: {record_id!r}")
    if key.startswith("⟨") and key.endswith("⟩"):
        key = key[1:-1]
    elif key.startswith("`") and key.endswith("`"):
        key = key[1:-1]
    return table, key


class SurrealClient:
    """Sequential client for the SurrealDB HTTP /sql endpoint."""

    def __init__(
        self,
        url: str,
        namespace: str,
        database: str,
        username: str | None = None,
        password: str | None = None,
        timeout: float = 30,
    ) -> None:
        self.url = url.rstrip("/")
        self.namespace = namespace
        self.database = database
        self.username = username
        self.password = password
        self.timeout = timeout
        self.connected = False

    @classmethod
    def from_config(cls, config: Config) -> SurrealClient:
        return cls(config.http_url(), config.namespace, config.database, config.username, config.password)

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Content-Type": "text/plain",
            "Surreal-NS": self.namespace,
            "Surreal-DB": self.database,
            "NS": self.namespace,
            "DB": self.database,
        }
        if self.username is not None:
            token = base64.b64encode(f"{self.username}:{self.password or ''}".encode("utf-8")).decode("ascii")
            headers["Authorization"] = f"Basic {token}"
        return headers

    def query(self, sql: str) -> list[dict]:
        """Run statements and return the raw per-statement responses."""
        req = urllib.request.Request(f"{self.url}/sql", data=sql.encode("utf-8"), headers=self._headers(), method="POST")
        logger.debug("POST %s/sql: %s", self.url, sql)
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                body = resp.read().decode("utf-8")
        except urllib.error.HTTPError as e:
            detail = e.read().decode("utf-8", errors="replace")
            if e.code in (401, 403):
                raise DatabaseConnectionError(f"Authentication failed at {self.url}: {detail}") from e
            raise QueryError(sql, f"HTTP {e.code}: {detail}") from e
        except urllib.error.URLError as e:
            raise DatabaseConnectionError(f"Error connecting to SurrealDB at {self.url}: {e.reason}") from e

        responses = json.loads(body) if body.strip() else []
        if isinstance(responses, dict):
            responses = [responses]
        for response in responses:
            if str(response.get("status", "OK")).upper() != "OK":
                raise QueryError(sql, str(response.get("result") or response.get("detail") or response))
        return responses

    def connect(self) -> None:
        self.query("RETURN true;")
        self.connected = True
        logger.info("Connected to %s (ns=%s, db=%s)", self.url, self.namespace, self.database)

    def close(self) -> None:
        self.connected = False

    def execute_query(self, sql: str) -> list[Any]:
        return [response.get("result") for response in self.query(sql)]

    def create(self, table: str, data: dict) -> dict:
        result = self.execute_query(f"CREATE {table} CONTENT {to_surql(data)};")
        created = result[0] if result else None
        if isinstance(created, list):
            created = created[0] if created else None
        return created or {}

    def select(self, table: str) -> list[dict]:
        result = self.execute_query(f"SELECT * FROM {table};")
        rows = result[0] if result else []
        return list(rows or [])

    def delete(self, record_id: str) -> None:
        table, key = split_record_id(record_id)
        self.execute_query(f"DELETE type::thing({json.dumps(table)}, {json.dumps(key)});")

    def info_for_db(self) -> dict:
        result = self.execute_query("INFO FOR DB;")
        return result[0] or {} if result else {}

    def info_for_table(self, table: str) -> dict:
        result = self.execute_query(f"INFO FOR TABLE {table};")
        return result[0] or {} if result else {}

    def dump_schema(self) -> dict:
        """Raw definition text for the database and every table in it."""
        db = self.info_for_db()
        tables = {name: self.info_for_table(name) for name in sorted(db.get("tables") or {})}
        return {"db": db, "tables": tables}


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Dump SurrealDB schema definitions")
    parser.add_argument("--config", default=None, help="Config file (default: smig.yaml when present)")
    parser.add_argument("--env", default=None, help="Environment name from the config file")
    parser.add_argument("--url", default=None, help="SurrealDB URL (default: http://localhost:8000)")
    parser.add_argument("--namespace", default=None, help="Namespace")
    parser.add_argument("--database", default=None, help="Database")
    parser.add_argument("--username", default=None, help="Username")
    parser.add_argument("--password", default=None, help="Password")
    parser.add_argument("--output", default=str(OUTPUT_PATH), help="Output JSON file")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    overrides = {
        "url": args.url,
        "namespace": args.namespace,
        "database": args.database,
        "username": args.username,
        "password": args.password,
    }
    try:
        config = load_config(args.config, args.env, overrides)
        client = SurrealClient.from_config(config)
        client.connect()
        dump = client.dump_schema()
        client.close()
    except MigrationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    out_path = Path(args.output)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(json.dumps(dump, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    print(f"  {config.namespace}/{config.database}: {len(dump['tables'])} tables")
    print(f"\nSchema written to {out_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
