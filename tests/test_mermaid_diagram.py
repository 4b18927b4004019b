import unittest

from mermaid_diagram import constraint_summary, generate_mermaid, simplify_type
from schema_model import DefaultValue, Field, Index, Schema, Table, make_relation


def blog_schema() -> Schema:
    user = Table(
        name="user",
        fields=[
            Field(name="email", type="string", assertion="string::is::email($value)"),
            Field(name="created", type="datetime", default=DefaultValue.from_python("time::now()"), readonly=True),
            Field(name="meta.source", type="string"),
        ],
        indexes=[Index(name="email_idx", columns=["email"], unique=True)],
    )
    post = Table(
        name="post",
        fields=[
            Field(name="author", type="record<user>"),
            Field(name="editors", type="array<record<user>>"),
            Field(name="reviewer", type="record<user>", optional=True),
        ],
    )
    likes = make_relation("likes", "user", "post", fields=[Field(name="at", type="datetime")])
    return Schema(tables=[user, post], relations=[likes])


class TestGenerateMermaid(unittest.TestCase):
    def test_relationships(self) -> None:
        lines = generate_mermaid(blog_schema()).splitlines()
        self.assertEqual(lines[0], "erDiagram")
        self.assertEqual(
            lines[1:5],
            [
                '    user }o--o{ post : "likes"',
                '    post }o--|| user : "author"',
                '    post ||--o{ user : "editors"',
                '    post }o--o| user : "reviewer"',
            ],
        )

    def test_minimal_entities(self) -> None:
        diagram = generate_mermaid(blog_schema())
        self.assertTrue(diagram.endswith("\n"))
        self.assertIn("    user {\n        string email UK\n        datetime created\n        string meta_source\n    }", diagram)
        self.assertIn("        record author FK\n        array editors FK\n        record reviewer FK", diagram)
        self.assertNotIn("likes {", diagram)

    def test_detailed_notes(self) -> None:
        diagram = generate_mermaid(blog_schema(), level="detailed")
        self.assertIn('        datetime created "default: time::now(); readonly"', diagram)
        self.assertIn('        string email UK "email"', diagram)
        self.assertIn("    likes {", diagram)
        self.assertIn("        datetime at", diagram)

    def test_unknown_level(self) -> None:
        with self.assertRaises(ValueError):
            generate_mermaid(Schema(), level="verbose")

    def test_empty_schema(self) -> None:
        self.assertEqual(generate_mermaid(Schema()), "erDiagram\n")


class TestHelpers(unittest.TestCase):
    def test_simplify_type(self) -> None:
        self.assertEqual(simplify_type("option<float>"), "number")
        self.assertEqual(simplify_type("set<string>"), "array")
        self.assertEqual(simplify_type("record<user | post>"), "record")

    def test_constraint_summary(self) -> None:
        self.assertEqual(constraint_summary("string::len($value) >= 3 AND string::len($value) <= 20"), "3-20 chars")
        self.assertEqual(constraint_summary("$value >= 18"), ">=18")
        self.assertEqual(constraint_summary(None), "")


if __name__ == "__main__":
    unittest.main()
