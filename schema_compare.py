"""Per-entity structural comparison and rename detection."""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Iterable

from schema_model import (
    Access,
    Analyzer,
    Event,
    Field,
    FieldReference,
    Function,
    Index,
    Param,
    Sequence,
    Table,
    User,
)
from schema_normalize import (
    collapse_whitespace,
    normalize_block,
    normalize_comment,
    normalize_default,
    normalize_expression,
    normalize_permissions,
    normalize_type,
    unwrap_block,
)


logger = logging.getLogger(__name__)

FIELD_PROPERTIES = (
    "type",
    "readonly",
    "flexible",
    "default",
    "default_always",
    "value",
    "assert",
    "permissions",
    "reference",
    "comment",
)

CHANGE_NONE = "none"
CHANGE_ALTERABLE = "alterable"
CHANGE_RECREATE = "recreate"


@dataclasses.dataclass
class PropertyChange:
    old: Any
    new: Any


@dataclasses.dataclass
class FieldComparison:
    has_changes: bool
    changed_props: dict[str, PropertyChange]


@dataclasses.dataclass
class IndexComparison:
    has_changes: bool
    change_class: str
    changes: dict[str, PropertyChange]


@dataclasses.dataclass
class RenameDetection:
    is_renamed: bool
    old_name: str | None
    new_name: str


def reference_key(ref: FieldReference | None) -> tuple[str, str] | None:
    if ref is None:
        return None
    on_delete = collapse_whitespace(ref.on_delete or "IGNORE").upper()
    return (ref.table.strip().lower(), on_delete)


def field_property_values(field: Field) -> dict[str, tuple[Any, Any]]:
    """Map each comparable property to (raw value, normalized value)."""
    full_type = field.full_type()
    return {
        "type": (full_type, normalize_type(full_type)),
        "readonly": (field.readonly, bool(field.readonly)),
        "flexible": (field.flexible, bool(field.flexible)),
        "default": (field.default, normalize_default(field.default)),
        "default_always": (field.default_always, bool(field.default_always and field.default is not None)),
        "value": (field.value, normalize_expression(field.value)),
        "assert": (field.assertion, normalize_expression(field.assertion)),
        "permissions": (field.permissions, normalize_permissions(field.permissions, field_level=True)),
        "reference": (field.reference, reference_key(field.reference)),
        "comment": (field.comment, normalize_comment(field.comment)),
    }


def compare_fields(table: str, new: Field, current: Field) -> FieldComparison:
    new_props = field_property_values(new)
    current_props = field_property_values(current)
    changed: dict[str, PropertyChange] = {}
    for prop in FIELD_PROPERTIES:
        new_raw, new_norm = new_props[prop]
        old_raw, old_norm = current_props[prop]
        if new_norm != old_norm:
            changed[prop] = PropertyChange(old=old_raw, new=new_raw)
    if changed:
        logger.debug("Field %s.%s changed: %s", table, new.name, ", ".join(changed))
    return FieldComparison(has_changes=bool(changed), changed_props=changed)


# Parameters the database reports for a bare BM25.
BM25_DEFAULT = "1.2,0.75"


def _bm25_key(value: str | None) -> str | None:
    if value is None:
        return None
    return value.replace(" ", "").strip("()") or BM25_DEFAULT


def index_property_values(index: Index) -> dict[str, Any]:
    kind = (index.kind or "btree").lower()
    if kind == "hash":
        # Reported back without a kind keyword, same as btree.
        kind = "btree"
    props: dict[str, Any] = {
        "columns": sorted(c.strip() for c in index.columns),
        "kind": kind,
        "unique": bool(index.unique),
    }
    if kind == "search":
        props["analyzer"] = (index.analyzer or "").lower() or None
        props["highlights"] = bool(index.highlights)
        props["bm25"] = _bm25_key(index.bm25)
        for name in ("doc_ids_cache", "doc_lengths_cache", "postings_cache", "terms_cache"):
            props[name] = getattr(index, name)
    elif kind in ("mtree", "hnsw"):
        props["dimension"] = index.dimension
        props["dist"] = (index.dist or "EUCLIDEAN").upper()
        props["vector_type"] = (index.vector_type or "").upper() or None
        tunables = ("capacity",) if kind == "mtree" else ("efc", "m", "m0", "lm")
        for name in tunables:
            props[name] = getattr(index, name)
    return props


# Tunables the database fills in with its own defaults when unspecified.
INDEX_DEFAULTED = {
    "bm25",
    "doc_ids_cache",
    "doc_lengths_cache",
    "postings_cache",
    "terms_cache",
    "vector_type",
    "capacity",
    "efc",
    "m",
    "m0",
    "lm",
}


def compare_indexes(new: Index, current: Index) -> IndexComparison:
    new_props = index_property_values(new)
    current_props = index_property_values(current)
    changes: dict[str, PropertyChange] = {}
    for prop in sorted(set(new_props) | set(current_props)):
        new_value = new_props.get(prop)
        if prop in INDEX_DEFAULTED and new_value is None:
            continue
        old_value = current_props.get(prop)
        if new_value != old_value:
            changes[prop] = PropertyChange(old=old_value, new=new_value)

    if not changes:
        return IndexComparison(has_changes=False, change_class=CHANGE_NONE, changes={})
    if "columns" in changes or "kind" in changes:
        change_class = CHANGE_RECREATE
    else:
        change_class = CHANGE_ALTERABLE
    return IndexComparison(has_changes=True, change_class=change_class, changes=changes)


def event_key(event: Event) -> tuple:
    return (
        (event.trigger_type or "").lower(),
        normalize_expression(unwrap_block(event.when)),
        normalize_block(event.then),
        normalize_comment(event.comment),
    )


def compare_events(new: Event, current: Event) -> bool:
    return event_key(new) != event_key(current)


def changefeed_key(table: Table) -> tuple[str, bool] | None:
    if table.changefeed is None:
        return None
    return (normalize_expression(table.changefeed.duration), bool(table.changefeed.include_original))


def table_property_values(table: Table) -> dict[str, Any]:
    props: dict[str, Any] = {
        "schema_mode": table.schema_mode,
        "kind": table.kind,
        "drop": bool(table.drop),
        "changefeed": changefeed_key(table),
        "permissions": normalize_permissions(table.permissions),
        "comment": normalize_comment(table.comment),
    }
    if table.is_relation():
        props["enforced"] = bool(table.enforced)
    return props


def compare_tables(new: Table, current: Table) -> dict[str, PropertyChange]:
    """Table-level property differences; fields, indexes and events are compared separately."""
    new_props = table_property_values(new)
    current_props = table_property_values(current)
    return {
        prop: PropertyChange(old=current_props.get(prop), new=value)
        for prop, value in new_props.items()
        if current_props.get(prop) != value
    }


def relation_endpoints_changed(new: Table, current: Table) -> bool:
    if not new.is_relation() or not current.is_relation():
        return False
    return (new.relation_from, new.relation_to) != (current.relation_from, current.relation_to)


def function_key(func: Function) -> tuple:
    return (
        normalize_block(func.body),
        tuple((p.name.lstrip("$"), normalize_type(p.type)) for p in func.params),
        normalize_type(func.returns) if func.returns else None,
        normalize_permissions(func.permissions),
        normalize_comment(func.comment),
    )


def compare_functions(new: Function, current: Function) -> bool:
    return function_key(new) != function_key(current)


def duration_key(value: str | None) -> str | None:
    text = normalize_expression(value)
    return None if text.upper() in ("", "NONE") else text


REDACTED = "[REDACTED]"


def access_key(access: Access, with_token: bool = True, skip: frozenset[str] = frozenset()) -> tuple:
    kind = access.access_type.lower()
    options: tuple = ()
    if kind == "jwt":
        options = (
            (access.jwt_algorithm or "").upper() or None,
            None if "jwt_key" in skip else access.jwt_key,
            access.jwt_url,
            None if "jwt_issuer_key" in skip else access.jwt_issuer_key,
        )
    elif kind == "bearer" and "bearer" not in skip:
        options = (access.bearer_key, (access.bearer_type or "").lower() or None)
    return (
        kind,
        options,
        duration_key(access.session),
        duration_key(access.token) if with_token else None,
        normalize_block(access.signup),
        normalize_block(access.signin),
        normalize_block(access.authenticate),
        normalize_comment(access.comment),
    )


def compare_scopes(new: Access, current: Access) -> bool:
    # The database always reports a token duration; only compare it when one is declared.
    with_token = new.token is not None
    # Secret keys come back redacted, so they cannot be compared.
    skip = {name for name in ("jwt_key", "jwt_issuer_key") if getattr(current, name) == REDACTED}
    if current.bearer_key is None and current.bearer_type is None:
        skip.add("bearer")
    return access_key(new, with_token, frozenset(skip)) != access_key(current, with_token, frozenset(skip))


def analyzer_key(analyzer: Analyzer) -> tuple:
    return (
        tuple(collapse_whitespace(t).lower() for t in analyzer.tokenizers),
        tuple(collapse_whitespace(f).lower().replace(" ", "") for f in analyzer.filters),
        (analyzer.function or "").removeprefix("fn::") or None,
        normalize_comment(analyzer.comment),
    )


def compare_analyzers(new: Analyzer, current: Analyzer) -> bool:
    return analyzer_key(new) != analyzer_key(current)


def compare_params(new: Param, current: Param) -> bool:
    return normalize_default(new.value) != normalize_default(current.value) or normalize_comment(
        new.comment
    ) != normalize_comment(current.comment)


def compare_sequences(new: Sequence, current: Sequence) -> bool:
    with_batch = new.batch is not None

    def key(seq: Sequence) -> tuple:
        return (
            seq.start or 0,
            seq.batch if with_batch else None,
            duration_key(seq.timeout),
            normalize_comment(seq.comment),
        )

    return key(new) != key(current)


def compare_users(new: User, current: User) -> bool:
    with_token = new.token_duration is not None

    def key(user: User) -> tuple:
        return (
            user.level.lower(),
            tuple(sorted(r.upper() for r in user.roles)),
            duration_key(user.token_duration) if with_token else None,
            duration_key(user.session_duration),
            normalize_comment(user.comment),
        )

    # Passwords are reported back only as hashes, so a plain password change is not detectable.
    return key(new) != key(current)


def detect_rename(kind: str, entity: Any, current_names: Iterable[str]) -> RenameDetection:
    """Pick the first declared previous name present in current, unless the new name already exists."""
    names = set(current_names)
    result = RenameDetection(is_renamed=False, old_name=None, new_name=entity.name)
    if entity.name in names:
        return result
    for old_name in entity.previous_names:
        if old_name in names and old_name != entity.name:
            result.is_renamed = True
            result.old_name = old_name
            logger.debug("Detected %s rename: %s -> %s", kind, old_name, entity.name)
            break
    return result


def detect_table_rename(table: Table, current_names: Iterable[str]) -> RenameDetection:
    return detect_rename("table", table, current_names)


def detect_field_rename(table: str, field: Field, current_names: Iterable[str]) -> RenameDetection:
    return detect_rename(f"field on {table}", field, current_names)


def detect_index_rename(table: str, index: Index, current_names: Iterable[str]) -> RenameDetection:
    return detect_rename(f"index on {table}", index, current_names)


def detect_event_rename(table: str, event: Event, current_names: Iterable[str]) -> RenameDetection:
    return detect_rename(f"event on {table}", event, current_names)


def detect_function_rename(func: Function, current_names: Iterable[str]) -> RenameDetection:
    return detect_rename("function", func, current_names)


def detect_scope_rename(access: Access, current_names: Iterable[str]) -> RenameDetection:
    return detect_rename("access", access, current_names)


def detect_analyzer_rename(analyzer: Analyzer, current_names: Iterable[str]) -> RenameDetection:
    return detect_rename("analyzer", analyzer, current_names)
