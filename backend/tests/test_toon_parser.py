"""
Tests for the TOON parser.
"""

import pytest

from toonkit.exceptions import ParseErrorCause, ToonParseError
from toonkit.toon import (
    ToonParser,
    ToonParserOptions,
    is_toon_comment,
    is_toon_schema,
    parse,
    toon_to_json,
    validate_toon,
)

PROVIDER_DOC = """
# Provider catalog
provider{id,name,version}:
  schoolinfo,School Info API,1.0.0

endpoints.student[2]{id,apiType,name}:
  class-days,08,Class days
  enrollment,\\"09\\",Enrollment   # explicit string literal

endpoints.school[1]{id,apiType,name}:
  basic,1,Basic info
"""


def test_parse_single_table():
    result = parse("users[2]{id,name,role}:\n  1,Alice,admin\n  2,Bob,user")
    assert result == {
        "users": [
            {"id": 1, "name": "Alice", "role": "admin"},
            {"id": 2, "name": "Bob", "role": "user"},
        ]
    }


def test_parse_nested_tables():
    result = parse(PROVIDER_DOC)

    assert result["provider"] == [{"id": "schoolinfo", "name": "School Info API", "version": "1.0.0"}]
    assert set(result["endpoints"]) == {"student", "school"}
    student = result["endpoints"]["student"]
    assert student[0] == {"id": "class-days", "apiType": 8, "name": "Class days"}
    # Quoted literal survives as a string with its zeros
    assert student[1]["apiType"] == "09"
    assert result["endpoints"]["school"][0]["apiType"] == 1


def test_parse_flat_keeps_dotted_names():
    result = parse(PROVIDER_DOC, {"nested_paths": False})
    assert list(result) == ["provider", "endpoints.student", "endpoints.school"]


def test_value_coercion():
    text = "t{a,b,c,d,e,f,g,h}:\n  ,null,true,false,-12,3.50,1e5,hello world"
    row = parse(text)["t"][0]
    assert row == {
        "a": None,
        "b": None,
        "c": True,
        "d": False,
        "e": -12,
        "f": 3.5,
        "g": "1e5",
        "h": "hello world",
    }
    assert isinstance(row["f"], float)


def test_raw_mode_keeps_strings():
    row = parse("t{a,b,c}:\n  08,true,", {"auto_convert": False})["t"][0]
    assert row == {"a": "08", "b": "true", "c": ""}


def test_quoted_values_keep_commas_and_comments():
    text = 't{name,note}:\n  "Smith, John","see #3"  # trailing comment'
    assert parse(text)["t"][0] == {"name": "Smith, John", "note": "see #3"}


def test_backslash_escapes():
    text = 't{a,b}:\n  x\\,y,say \\"hi\\"'
    row = parse(text)["t"][0]
    assert row["a"] == "x,y"
    assert row["b"] == 'say "hi"'


def test_escaped_quote_inside_quoted_field():
    text = 'products{name,price,inStock}:\n  "Laptop 15\\"",999,true'
    assert parse(text)["products"] == [{"name": 'Laptop 15"', "price": 999, "inStock": True}]


def test_comment_handling_in_data_lines():
    assert parse("users{id,name,role}:\n  1,Alice,admin # trusted user")["users"] == [
        {"id": 1, "name": "Alice", "role": "admin"}
    ]
    assert parse('t{a,b,c}:\n  "a#b",2,c')["t"] == [{"a": "a#b", "b": 2, "c": "c"}]


def test_trailing_empty_field_is_kept():
    row = parse("t{a,b,c}:\n  1,2,")["t"][0]
    assert row == {"a": 1, "b": 2, "c": None}


def test_custom_comment_char():
    text = "; header\nt{a}:\n  x ; note\n  # not a comment"
    result = parse(text, ToonParserOptions(comment_char=";", strict_count=False))
    assert result["t"] == [{"a": "x"}, {"a": "# not a comment"}]


def test_invalid_comment_char_rejected():
    with pytest.raises(ValueError):
        ToonParserOptions(comment_char=",")


def test_unknown_options_rejected():
    with pytest.raises(ValueError):
        ToonParserOptions(nestedPaths=False)
    with pytest.raises(ValueError):
        parse("t{a}:\n  1", {"nestedPaths": False})


def test_empty_table():
    assert parse("t[0]{a,b}:") == {"t": []}
    assert parse("t{a,b}:\nu{c}:\n  1") == {"t": [], "u": [{"c": 1}]}


def test_empty_document():
    assert parse("") == {}
    assert parse("# only comments\n\n   \n") == {}


def test_row_count_mismatch():
    with pytest.raises(ToonParseError) as exc:
        parse("t[3]{a}:\n  1\n  2\nu{b}:\n  x")

    assert exc.value.cause == ParseErrorCause.ROW_COUNT_MISMATCH
    # Reported where the table was sealed
    assert exc.value.line_number == 4


def test_row_count_lenient():
    result = parse("t[3]{a}:\n  1", {"strict_count": False})
    assert result == {"t": [{"a": 1}]}


def test_more_rows_than_declared():
    text = "t[2]{a}:\n  1\n  2\n  3"
    with pytest.raises(ToonParseError) as exc:
        parse(text)
    assert exc.value.cause == ParseErrorCause.ROW_COUNT_MISMATCH

    assert parse(text, {"strict_count": False})["t"] == [{"a": 1}, {"a": 2}, {"a": 3}]


def test_field_count_mismatch():
    with pytest.raises(ToonParseError) as exc:
        parse("t{a,b}:\n  1,2\n  1,2,3")

    assert exc.value.cause == ParseErrorCause.FIELD_COUNT_MISMATCH
    assert exc.value.line_number == 3
    assert str(exc.value).startswith("Line 3:")
    assert "[a, b]" in str(exc.value)
    assert "got 3 values" in str(exc.value)


def test_data_before_schema():
    with pytest.raises(ToonParseError) as exc:
        parse("# comment\n1,2,3")

    assert exc.value.cause == ParseErrorCause.DATA_BEFORE_SCHEMA
    assert exc.value.line_number == 2


@pytest.mark.parametrize("line", [
    "bad name{a}:",
    "t[x]{a}:",
    "t{}:",
    "t{a,,b}:",
    "t{a,a}:",
    "t{a}: trailing",
])
def test_malformed_schema(line):
    with pytest.raises(ToonParseError) as exc:
        parse(line)
    assert exc.value.cause == ParseErrorCause.MALFORMED_SCHEMA
    assert exc.value.line_number == 1


def test_duplicate_table_name():
    with pytest.raises(ToonParseError) as exc:
        parse("t{a}:\n  1\nt{a}:\n  2")
    assert exc.value.cause == ParseErrorCause.PATH_CONFLICT
    assert exc.value.line_number == 3


def test_leaf_branch_conflict():
    with pytest.raises(ToonParseError) as exc:
        parse("a{x}:\n  1\na.b{y}:\n  2")
    assert exc.value.cause == ParseErrorCause.PATH_CONFLICT
    assert exc.value.line_number == 3

    # No conflict when the tree is not built
    assert parse("a{x}:\n  1\na.b{y}:\n  2", {"nested_paths": False})["a.b"] == [{"y": 2}]


def test_error_to_dict():
    with pytest.raises(ToonParseError) as exc:
        parse("1,2")
    assert exc.value.to_dict() == {
        "cause": "DATA_BEFORE_SCHEMA",
        "line": 1,
        "message": "Data line found before schema definition",
    }


def test_parser_instance_is_reusable():
    parser = ToonParser()
    assert parser.parse("t{a}:\n  1") == {"t": [{"a": 1}]}
    assert parser.parse("u{b}:\n  2") == {"u": [{"b": 2}]}


def test_helpers():
    assert is_toon_schema("users[2]{id,name}:")
    assert is_toon_schema("  endpoints.student{id}:  ")
    assert not is_toon_schema("users{}:")
    assert not is_toon_schema("1,Alice")
    assert is_toon_comment("  # note")
    assert not is_toon_comment("t{a}:")
    assert validate_toon("t[1]{a}:\n  1")
    assert toon_to_json("t{a}:\n  1") == '{"t": [{"a": 1}]}'

    with pytest.raises(ToonParseError):
        validate_toon("t[2]{a}:\n  1")
