"""Load the declarative desired schema and the connection configuration from YAML."""

from __future__ import annotations

import dataclasses
import os
from pathlib import Path
from typing import Any, Mapping

from dotenv import dotenv_values

from migration_errors import EnvironmentNotFoundError, MigrationError, SchemaValidationError
from schema_model import (
    Access,
    Analyzer,
    Changefeed,
    DefaultValue,
    Event,
    Field,
    FieldReference,
    Function,
    FunctionParam,
    Index,
    Param,
    Schema,
    Sequence,
    Table,
    User,
    as_name_list,
    validate_schema,
)
from schema_normalize import permissions_from_mapping, serialize_default_value

try:
    import yaml
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required. Install with: pip install pyyaml") from exc


CONFIG_FILES = ("smig.yaml", "smig.yml")
ENV_VARS = {
    "url": "SMIG_URL",
    "username": "SMIG_USERNAME",
    "password": "SMIG_PASSWORD",
    "namespace": "SMIG_NAMESPACE",
    "database": "SMIG_DATABASE",
    "schema": "SMIG_SCHEMA",
}


@dataclasses.dataclass
class Config:
    url: str = "http://localhost:8000"
    username: str = "root"
    password: str = "root"
    namespace: str = "test"
    database: str = "test"
    schema: str = "schema.yaml"

    def http_url(self) -> str:
        """HTTP base URL; websocket URLs from older configs are mapped to their HTTP equivalent."""
        url = self.url.rstrip("/")
        if url.startswith("ws://"):
            url = "http://" + url[len("ws://"):]
        elif url.startswith("wss://"):
            url = "https://" + url[len("wss://"):]
        if url.endswith("/rpc"):
            url = url[: -len("/rpc")]
        return url

    def redacted(self) -> dict[str, str]:
        values = dataclasses.asdict(self)
        values["password"] = "*" * len(self.password) if self.password else ""
        return values


def read_environment(cwd: Path | None = None) -> dict[str, str]:
    """Process environment layered over a .env file in `cwd`; real variables win."""
    dotenv_path = (cwd or Path.cwd()) / ".env"
    values = {k: v for k, v in dotenv_values(dotenv_path).items() if v is not None} if dotenv_path.exists() else {}
    values.update(os.environ)
    return values


def find_config_file(cwd: Path) -> Path | None:
    for name in CONFIG_FILES:
        candidate = cwd / name
        if candidate.exists():
            return candidate
    return None


def config_file_values(path: Path, environment: str | None) -> dict[str, Any]:
    try:
        doc = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise MigrationError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(doc, dict):
        raise MigrationError(f"Config file must be a mapping: {path}")
    environments = doc.get("environments") or {}
    values = {k: v for k, v in doc.items() if k in ENV_VARS}
    if environment:
        if environment not in environments:
            raise EnvironmentNotFoundError(environment, sorted(environments))
        values.update({k: v for k, v in (environments[environment] or {}).items() if k in ENV_VARS})
    return values


def load_config(
    path: str | Path | None = None,
    environment: str | None = None,
    overrides: Mapping[str, Any] | None = None,
    env: Mapping[str, str] | None = None,
    cwd: Path | None = None,
) -> Config:
    """Resolve configuration: overrides > config file > SMIG_* variables > defaults."""
    cwd = cwd or Path.cwd()
    env = read_environment(cwd) if env is None else env
    values: dict[str, Any] = {}

    for key, var in ENV_VARS.items():
        if env.get(var):
            values[key] = env[var]

    environment = environment or env.get("SMIG_ENV") or None
    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise MigrationError(f"Config file not found: {config_path}")
    else:
        config_path = find_config_file(cwd)
    if config_path is not None:
        values.update(config_file_values(config_path, environment))
    elif environment:
        raise EnvironmentNotFoundError(environment, [])

    for key, value in (overrides or {}).items():
        if value is not None and key in ENV_VARS:
            values[key] = value

    return Config(**{k: str(v) for k, v in values.items()})


# Desired schema documents.


def _previous_names(doc: Mapping[str, Any]) -> list[str]:
    names: list[str] = []
    for key in ("was", "previousName", "previous_name", "previous_names"):
        names.extend(as_name_list(doc.get(key)))
    return names


def _permissions(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, Mapping):
        return permissions_from_mapping(value)
    return str(value)


def _get(doc: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in doc:
            return doc[key]
    return default


def _named_items(value: Any, scalar_key: str = "type") -> list[dict]:
    """Accept either a list of mappings with `name` or a mapping of name -> definition."""
    if not value:
        return []
    if isinstance(value, Mapping):
        items = []
        for name, entry in value.items():
            if isinstance(entry, Mapping):
                items.append({"name": name, **entry})
            else:
                items.append({"name": name, scalar_key: entry})
        return items
    return [dict(item) for item in value]


def field_from_document(doc: Mapping[str, Any]) -> Field:
    field_type = str(_get(doc, "type", default="any")).strip()
    optional = bool(doc.get("optional", False))
    if field_type.endswith("?"):
        field_type = field_type[:-1]
        optional = True

    reference = doc.get("reference") or doc.get("references")
    if isinstance(reference, Mapping):
        reference = FieldReference(
            table=str(reference["table"]),
            on_delete=_get(reference, "on_delete", "onDelete"),
        )
    elif reference:
        reference = FieldReference(table=str(reference), on_delete=_get(doc, "on_delete", "onDelete"))

    return Field(
        name=str(doc["name"]),
        type=field_type,
        optional=optional,
        readonly=bool(doc.get("readonly", False)),
        flexible=bool(doc.get("flexible", False)),
        default=DefaultValue.from_python(doc.get("default")),
        default_always=bool(_get(doc, "default_always", "defaultAlways", default=False)),
        value=_get(doc, "value"),
        assertion=_get(doc, "assert", "assertion"),
        permissions=_permissions(doc.get("permissions")),
        reference=reference or None,
        comment=doc.get("comment"),
        previous_names=_previous_names(doc),
    )


def index_from_document(doc: Mapping[str, Any]) -> Index:
    columns = _get(doc, "columns", "fields", default=[])
    if isinstance(columns, str):
        columns = [c.strip() for c in columns.split(",") if c.strip()]
    kind = str(_get(doc, "kind", "type", default="btree")).lower()
    if kind in ("fulltext", "full_text"):
        kind = "search"
    if kind == "unique":
        kind = "btree"

    bm25 = doc.get("bm25")
    if bm25 is True:
        bm25 = ""
    elif isinstance(bm25, (list, tuple)):
        bm25 = ",".join(str(v) for v in bm25)
    elif bm25 is False:
        bm25 = None

    return Index(
        name=str(doc["name"]),
        columns=[str(c) for c in columns],
        unique=bool(doc.get("unique", False)) or str(_get(doc, "kind", "type", default="")).lower() == "unique",
        kind=kind,
        analyzer=doc.get("analyzer"),
        bm25=bm25,
        highlights=bool(doc.get("highlights", False)),
        doc_ids_cache=_get(doc, "doc_ids_cache", "docIdsCache"),
        doc_lengths_cache=_get(doc, "doc_lengths_cache", "docLengthsCache"),
        postings_cache=_get(doc, "postings_cache", "postingsCache"),
        terms_cache=_get(doc, "terms_cache", "termsCache"),
        dimension=doc.get("dimension"),
        dist=_get(doc, "dist", "distance"),
        capacity=doc.get("capacity"),
        efc=doc.get("efc"),
        m=doc.get("m"),
        m0=doc.get("m0"),
        lm=doc.get("lm"),
        vector_type=_get(doc, "vector_type", "vectorType"),
        comment=doc.get("comment"),
        previous_names=_previous_names(doc),
    )


def event_from_document(doc: Mapping[str, Any]) -> Event:
    trigger = _get(doc, "trigger", "trigger_type", "triggerType", "on")
    return Event(
        name=str(doc["name"]),
        trigger_type=str(trigger).lower() if trigger else None,
        when=doc.get("when"),
        then=str(_get(doc, "then", "then_statement", "thenStatement", default="")),
        comment=doc.get("comment"),
        previous_names=_previous_names(doc),
    )


def table_from_document(doc: Mapping[str, Any], relation: bool = False) -> Table:
    changefeed = doc.get("changefeed")
    if isinstance(changefeed, Mapping):
        changefeed = Changefeed(
            duration=str(changefeed["duration"]),
            include_original=bool(_get(changefeed, "include_original", "includeOriginal", default=False)),
        )
    elif changefeed:
        changefeed = Changefeed(duration=str(changefeed))

    schema_mode = doc.get("schema_mode")
    if schema_mode is None:
        schema_mode = "full" if doc.get("schemafull", True) else "loose"

    table = Table(
        name=str(doc["name"]),
        fields=[field_from_document(f) for f in _named_items(doc.get("fields"))],
        indexes=[index_from_document(i) for i in _named_items(doc.get("indexes"))],
        events=[event_from_document(e) for e in _named_items(doc.get("events"))],
        schema_mode=str(schema_mode),
        kind="relation" if relation else str(doc.get("kind", "normal")).lower(),
        permissions=_permissions(doc.get("permissions")),
        drop=bool(doc.get("drop", False)),
        changefeed=changefeed or None,
        comment=doc.get("comment"),
        relation_from=_get(doc, "from", "in") if relation else None,
        relation_to=_get(doc, "to", "out") if relation else None,
        enforced=bool(doc.get("enforced", False)),
        previous_names=_previous_names(doc),
    )
    table.ensure_relation_fields()
    return table


def function_from_document(doc: Mapping[str, Any]) -> Function:
    params = doc.get("params") or []
    if isinstance(params, Mapping):
        params = [{"name": k, "type": v} for k, v in params.items()]
    return Function(
        name=str(doc["name"]).removeprefix("fn::"),
        params=[FunctionParam(name=str(p["name"]).lstrip("$"), type=str(p.get("type", "any"))) for p in params],
        returns=_get(doc, "returns", "return_type", "returnType"),
        body=str(doc.get("body", "")),
        permissions=_permissions(doc.get("permissions")),
        comment=doc.get("comment"),
        previous_names=_previous_names(doc),
    )


def access_from_document(doc: Mapping[str, Any]) -> Access:
    access_type = str(_get(doc, "type", "access_type", default="record")).lower()
    bearer = access_type == "bearer"
    return Access(
        name=str(doc["name"]),
        access_type=access_type,
        signup=doc.get("signup"),
        signin=doc.get("signin"),
        authenticate=doc.get("authenticate"),
        session=doc.get("session"),
        token=doc.get("token"),
        jwt_algorithm=_get(doc, "algorithm"),
        jwt_key=None if bearer else _get(doc, "key"),
        jwt_url=_get(doc, "url"),
        jwt_issuer_key=_get(doc, "issuer_key", "issuerKey"),
        bearer_key=_get(doc, "bearer_key", "bearerKey", "key") if bearer else None,
        bearer_type=_get(doc, "bearer_type", "bearerType", "key_type") if bearer else None,
        comment=doc.get("comment"),
        previous_names=_previous_names(doc),
    )


def analyzer_from_document(doc: Mapping[str, Any]) -> Analyzer:
    function = doc.get("function")
    return Analyzer(
        name=str(doc["name"]),
        tokenizers=[str(t).lower() for t in doc.get("tokenizers") or []],
        filters=[str(f).lower() for f in doc.get("filters") or []],
        function=str(function).removeprefix("fn::") if function else None,
        comment=doc.get("comment"),
        previous_names=_previous_names(doc),
    )


def param_from_document(doc: Mapping[str, Any]) -> Param:
    return Param(
        name=str(doc["name"]).lstrip("$"),
        value=serialize_default_value(DefaultValue.from_python(doc.get("value"))),
        comment=doc.get("comment"),
        previous_names=_previous_names(doc),
    )


def sequence_from_document(doc: Mapping[str, Any]) -> Sequence:
    return Sequence(
        name=str(doc["name"]),
        start=doc.get("start"),
        batch=doc.get("batch"),
        timeout=doc.get("timeout"),
        comment=doc.get("comment"),
        previous_names=_previous_names(doc),
    )


def user_from_document(doc: Mapping[str, Any]) -> User:
    roles = doc.get("roles") or ["VIEWER"]
    if isinstance(roles, str):
        roles = [r.strip() for r in roles.split(",")]
    return User(
        name=str(doc["name"]),
        level=str(doc.get("level", "database")).lower(),
        password=doc.get("password"),
        passhash=doc.get("passhash"),
        roles=[str(r).upper() for r in roles],
        token_duration=_get(doc, "token_duration", "tokenDuration"),
        session_duration=_get(doc, "session_duration", "sessionDuration"),
        comment=doc.get("comment"),
        previous_names=_previous_names(doc),
    )


def schema_from_document(doc: Mapping[str, Any]) -> Schema:
    schema = Schema(
        tables=[table_from_document(t) for t in _named_items(doc.get("tables"))],
        relations=[table_from_document(r, relation=True) for r in _named_items(doc.get("relations"))],
        functions=[function_from_document(f) for f in _named_items(doc.get("functions"))],
        scopes=[access_from_document(a) for a in _named_items(_get(doc, "accesses", "scopes"))],
        analyzers=[analyzer_from_document(a) for a in _named_items(doc.get("analyzers"))],
        params=[param_from_document(p) for p in _named_items(doc.get("params"), "value")],
        sequences=[sequence_from_document(s) for s in _named_items(doc.get("sequences"))],
        users=[user_from_document(u) for u in _named_items(doc.get("users"))],
        comments=[str(c) for c in doc.get("comments") or []],
    )
    validate_schema(schema)
    return schema


def load_desired_schema(path: Path) -> Schema:
    try:
        doc = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise SchemaValidationError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(doc, Mapping):
        raise MigrationError(f"Schema file must be a mapping: {path}")
    try:
        return schema_from_document(doc)
    except SchemaValidationError:
        raise
    except KeyError as exc:
        raise SchemaValidationError(f"Entry in {path} is missing required key {exc}") from exc
    except (TypeError, ValueError) as exc:
        raise SchemaValidationError(f"Malformed entry in {path}: {exc}") from exc
