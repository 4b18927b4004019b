import unittest

from schema_model import DefaultValue
from schema_normalize import (
    normalize_block,
    normalize_comment,
    normalize_default,
    normalize_expression,
    normalize_permissions,
    normalize_type,
    permissions_from_mapping,
    serialize_default_value,
    unwrap_block,
)


class TestNormalizeType(unittest.TestCase):
    def test_optional_spellings(self) -> None:
        self.assertEqual(normalize_type("string?"), "option<string>")
        self.assertEqual(normalize_type("none | int"), "option<int>")
        self.assertEqual(normalize_type("Option< Int >"), "option<int>")
        self.assertEqual(normalize_type("record<user>?"), "option<record<user>>")
        self.assertEqual(normalize_type("array<string>?"), "option<array<string>>")

    def test_missing_type_is_any(self) -> None:
        self.assertEqual(normalize_type(None), "any")
        self.assertEqual(normalize_type("  "), "any")

    def test_union_spacing(self) -> None:
        self.assertEqual(normalize_type("record<user|post>"), "record<user | post>")


class TestNormalizeDefault(unittest.TestCase):
    def test_literal_matches_quoted_report(self) -> None:
        self.assertEqual(normalize_default(DefaultValue.from_python("active")), normalize_default("'active'"))
        self.assertEqual(normalize_default('"active"'), "active")

    def test_numbers(self) -> None:
        self.assertEqual(normalize_default("1.0"), "1")
        self.assertEqual(normalize_default(DefaultValue.from_python(1)), "1")
        self.assertEqual(normalize_default("5f"), "5")
        self.assertEqual(normalize_default(2.5), "2.5")

    def test_booleans(self) -> None:
        self.assertEqual(normalize_default(DefaultValue.from_python(True)), "true")
        self.assertEqual(normalize_default(False), "false")

    def test_arrays_and_objects(self) -> None:
        self.assertEqual(normalize_default("[1, 2]"), normalize_default(DefaultValue.from_python([1, 2])))
        self.assertEqual(normalize_default("{'a': 1}"), '{"a":1}')

    def test_expressions_pass_through(self) -> None:
        self.assertEqual(normalize_default(DefaultValue.expression("time::now()")), "time::now()")
        self.assertEqual(normalize_default("`user`::admin"), "user::admin")

    def test_none(self) -> None:
        self.assertEqual(normalize_default(None), "")


class TestNormalizeExpression(unittest.TestCase):
    def test_whitespace_and_semicolon(self) -> None:
        self.assertEqual(normalize_expression("  $value   >  0 ;"), "$value > 0")

    def test_array_quotes(self) -> None:
        self.assertEqual(normalize_expression('$value IN ["a", "b"]'), "$value IN ['a', 'b']")

    def test_weeks_become_days(self) -> None:
        self.assertEqual(normalize_expression("2w"), "14d")

    def test_redundant_parentheses(self) -> None:
        self.assertEqual(normalize_expression("($value > 0) AND ($value < 10)"), "$value > 0 AND $value < 10")
        self.assertEqual(normalize_expression("(string::len($value))"), "string::len($value)")

    def test_blocks(self) -> None:
        self.assertEqual(unwrap_block("{ RETURN 1; }"), "RETURN 1")
        self.assertEqual(unwrap_block("(SELECT * FROM user)"), "SELECT * FROM user")
        self.assertEqual(unwrap_block("(a) + (b)"), "(a) + (b)")
        self.assertEqual(normalize_block("{ RETURN 1; }"), normalize_block("RETURN 1"))


class TestNormalizePermissions(unittest.TestCase):
    def test_empty_and_none_mean_full(self) -> None:
        for value in (None, "", "NONE", "full"):
            with self.subTest(value=value):
                self.assertEqual(normalize_permissions(value), "FULL")

    def test_clause_order_and_case(self) -> None:
        a = "FOR update, select WHERE $auth.id = id FOR create NONE"
        b = "for select, update where $auth.id = id, for create none"
        self.assertEqual(normalize_permissions(a), normalize_permissions(b))
        self.assertEqual(normalize_permissions(a), "FOR SELECT, UPDATE WHERE $AUTH.ID = ID, FOR CREATE NONE")

    def test_field_level_drops_delete(self) -> None:
        self.assertEqual(normalize_permissions("FOR select, delete FULL", field_level=True), "FOR SELECT FULL")
        self.assertEqual(normalize_permissions("FOR delete NONE", field_level=True), "FULL")
        self.assertEqual(normalize_permissions("FOR delete NONE"), "FOR DELETE NONE")

    def test_mapping(self) -> None:
        text = permissions_from_mapping({"select": True, "create": "WHERE $auth"})
        self.assertEqual(text, "FOR select FULL, FOR create WHERE $auth")
        self.assertEqual(normalize_permissions({"select": True}), "FOR SELECT FULL")


class TestSerializeDefault(unittest.TestCase):
    def test_kinds(self) -> None:
        self.assertEqual(serialize_default_value(None), "NONE")
        self.assertEqual(serialize_default_value(DefaultValue.from_python("it's")), "'it\\'s'")
        self.assertEqual(serialize_default_value(DefaultValue.from_python(True)), "true")
        self.assertEqual(serialize_default_value(DefaultValue.from_python(2.5)), "2.5")
        self.assertEqual(serialize_default_value(DefaultValue.from_python([1, "a"])), '[1, "a"]')
        self.assertEqual(serialize_default_value(DefaultValue.from_python("time::now()")), "time::now()")

    def test_comment(self) -> None:
        self.assertIsNone(normalize_comment("null"))
        self.assertIsNone(normalize_comment(None))
        self.assertEqual(normalize_comment("hi"), "hi")


if __name__ == "__main__":
    unittest.main()
