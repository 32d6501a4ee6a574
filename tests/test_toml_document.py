"""Tests for the format-preserving TOML document layer."""

import datetime

import pytest

from whl_deps.toml_document import (
    Array,
    Document,
    ParseError,
    parse,
    parse_value,
    remove_item,
    serialize,
)

MANIFEST = '''\
# Project manifest
[project]
name = "demo"  # the name
version = '1.0.0'
dependencies = [
    # HTTP
    "requests>=2,<3",  # pinned major
    "click",
]

[project.optional-dependencies]
docs = ["sphinx>=7", 'furo']

[tool.uv]
dev-dependencies = [ "pytest" ]

[[tool.scripts]]
name = "a"
when = 1979-05-27 07:32:00
multi = """
line "one"
"""
inline = { a = 1, b = [1, 2] }
"quoted key".x = -1_000
'''


# ── Round trip ───────────────────────────────────────────────────────────


class TestRoundTrip:
    @pytest.mark.parametrize("text", [
        MANIFEST,
        "",
        "\n\n",
        "# only a comment",
        'a = 1',
        'a = 1   \n\t b = "x"\t# tab\n',
        "[project]\r\nname = \"x\"\r\ndependencies = [\r\n  \"a\",\r\n  \"b\",\r\n]\r\n",
        'deps = [\n\n  "a" ,\n\n  # gap\n\n  "b"\n  ,]\n',
        'nested = [[1, 2], [3, [4]], ]\nempty = [ ]\n',
        "s = '''\nraw \\ text\n'''\n",
        'site."google.com" = true\n',
    ])
    def test_unmodified_document_is_byte_identical(self, text):
        assert serialize(parse(text)) == text

    def test_str_matches_serialize(self):
        doc = parse(MANIFEST)
        assert isinstance(doc, Document)
        assert str(doc) == MANIFEST
        assert doc.unwrap()["project"]["name"] == "demo"


# ── Lookup ───────────────────────────────────────────────────────────────


class TestLookup:
    def test_get_values(self):
        doc = parse(MANIFEST)
        deps = doc.get(("project", "dependencies"))
        assert isinstance(deps, Array)
        assert deps.unwrap() == ["requests>=2,<3", "click"]
        assert doc.get(("project", "version")) == "1.0.0"
        assert doc.get(("project", "optional-dependencies", "docs")).unwrap() == ["sphinx>=7", "furo"]
        assert doc.get(("tool", "uv", "dev-dependencies")).unwrap() == ["pytest"]
        assert doc.get(("project", "missing")) is None
        assert doc.get(("project", "name", "deeper")) is None

    def test_array_of_tables_keys_are_not_addressable(self):
        doc = parse(MANIFEST)
        assert doc.get(("tool", "scripts", "name")) is None

    def test_dotted_keys_resolve_to_full_path(self):
        doc = parse('project.name = "x"\nproject.dependencies = ["a"]\n')
        assert doc.get(["project", "dependencies"]).unwrap() == ["a"]

    def test_values_unwrap_to_python(self):
        script = parse(MANIFEST).unwrap()["tool"]["scripts"][0]
        assert script["when"] == datetime.datetime(1979, 5, 27, 7, 32)
        assert script["multi"] == 'line "one"\n'
        assert script["inline"] == {"a": 1, "b": [1, 2]}
        assert script["quoted key"] == {"x": -1000}


# ── Errors ───────────────────────────────────────────────────────────────


class TestParseErrors:
    @pytest.mark.parametrize("text", [
        "[project\nname = 1\n",
        "a = [1, 2\n",
        'a = "abc\n',
        "a = \n",
        "= 1\n",
        "a = 1\na = 2\n",
        'a = """never closed\n',
    ])
    def test_invalid_documents(self, text):
        with pytest.raises(ParseError):
            parse(text)

    def test_syntax_error_has_position(self):
        with pytest.raises(ParseError) as exc_info:
            parse("a = [1, 2\n")
        assert exc_info.value.line is not None

    def test_invalid_value(self):
        with pytest.raises(ParseError):
            parse_value("not a value")
        with pytest.raises(ParseError):
            parse_value('"a" "b"')

    def test_parse_value(self):
        assert parse_value('["a", "b"]').unwrap() == ["a", "b"]
        assert parse_value("42") == 42


# ── Array removal ────────────────────────────────────────────────────────


def _remove(text, index, path=("deps",)):
    doc = parse(text)
    removed = remove_item(doc.get(path), index)
    return removed, serialize(doc)


class TestArrayRemove:
    def test_inline_last(self):
        removed, text = _remove('deps = ["requests>=2,<3", "click"]\n', 1)
        assert text == 'deps = ["requests>=2,<3"]\n'
        assert removed == "click"
        assert removed.as_string() == '"click"'

    def test_inline_first(self):
        _, text = _remove('deps = ["requests>=2,<3", "click"]\n', 0)
        assert text == 'deps = ["click"]\n'

    def test_inline_trailing_comma_kept(self):
        assert _remove('deps = ["a", "b", ]\n', 1)[1] == 'deps = ["a", ]\n'

    def test_only_element(self):
        assert _remove('deps = ["flask"]\n', 0)[1] == 'deps = []\n'

    def test_emptied_multiline_array_collapses(self):
        assert _remove('deps = [\n    "flask",\n]\n', 0)[1] == 'deps = []\n'

    def test_emptied_array_keeps_comment(self):
        text = _remove('deps = [\n    # none yet\n    "flask",\n]\n', 0)[1]
        assert text == 'deps = [\n    # none yet\n]\n'
        assert parse(text).get(("deps",)).unwrap() == []

    def test_multiline_keeps_comment_above_removed_entry(self):
        text = 'deps = [\n    # HTTP\n    "requests",  # pinned\n    "click",\n]\n'
        assert _remove(text, 0)[1] == 'deps = [\n    # HTTP\n    "click",\n]\n'

    def test_multiline_drops_same_line_comment(self):
        text = 'deps = [\n    "requests",  # pinned\n    "click",\n]\n'
        assert _remove(text, 0)[1] == 'deps = [\n    "click",\n]\n'

    def test_multiline_last_without_trailing_comma(self):
        text = 'deps = [\n  "a",\n  "b"\n]\n'
        assert _remove(text, 1)[1] == 'deps = [\n  "a",\n]\n'

    def test_multiline_last_with_trailing_comma(self):
        text = 'deps = [\n  "a",  # first\n  "b",\n]\n'
        assert _remove(text, 1)[1] == 'deps = [\n  "a",  # first\n]\n'

    def test_middle_element(self):
        text = 'deps = [\n  "a",\n  "b",\n  "c",\n]\n'
        assert _remove(text, 1)[1] == 'deps = [\n  "a",\n  "c",\n]\n'

    def test_crlf_line_endings(self):
        text = 'deps = [\r\n  "a",\r\n  "b",\r\n]\r\n'
        assert _remove(text, 0)[1] == 'deps = [\r\n  "b",\r\n]\r\n'

    def test_rest_of_document_untouched(self):
        doc = parse(MANIFEST)
        remove_item(doc.get(("project", "dependencies")), 1)
        expected = MANIFEST.replace('    "click",\n', "")
        assert serialize(doc) == expected

    def test_index_out_of_range(self):
        doc = parse('deps = ["a"]\n')
        with pytest.raises(IndexError):
            remove_item(doc.get(("deps",)), 3)
        assert serialize(doc) == 'deps = ["a"]\n'


# ── Key-level mutation ───────────────────────────────────────────────────


class TestKeyMutation:
    def test_remove_key_line(self):
        doc = parse(MANIFEST)
        assert doc.remove(("project", "version")) is True
        assert serialize(doc) == MANIFEST.replace("version = '1.0.0'\n", "")
        assert doc.remove(("project", "version")) is False

    def test_replace_value_keeps_comment(self):
        doc = parse(MANIFEST)
        doc.replace(("project", "name"), '"renamed"')
        assert 'name = "renamed"  # the name\n' in serialize(doc)
        assert doc.get(("project", "name")) == "renamed"

    def test_replace_with_array(self):
        doc = parse('deps = []\n')
        node = doc.replace(["deps"], '["a", "b"]')
        assert isinstance(node, Array)
        assert serialize(doc) == 'deps = ["a", "b"]\n'

    def test_replace_missing_key(self):
        doc = parse('a = 1\n')
        with pytest.raises(KeyError):
            doc.replace(("b",), "2")
