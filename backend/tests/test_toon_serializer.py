"""
Tests for the TOON serializer and the JSON/file helpers.
"""

import json

import pytest

from toonkit.exceptions import ToonSerializeError
from toonkit.toon import (
    ToonEncoder,
    json_to_toon,
    load_toon_file,
    parse,
    save_toon_file,
    serialize_multi_table,
    serialize_table,
)


def test_serialize_table():
    records = [
        {"id": 1, "name": "Alice", "active": True},
        {"id": 2, "name": "Bob", "active": False},
    ]
    assert serialize_table(records, "users") == (
        "users[2]{id,name,active}:\n"
        "  1,Alice,true\n"
        "  2,Bob,false"
    )


def test_serialize_empty_list():
    assert serialize_table([]) == ""


def test_missing_keys_become_null():
    text = serialize_table([{"a": 1, "b": 2}, {"a": 3}])
    assert text.splitlines()[-1] == "  3,null"
    assert parse(text)["data"][1] == {"a": 3, "b": None}


def test_string_quoting():
    assert ToonEncoder.encode_string("plain text") == "plain text"
    assert ToonEncoder.encode_string("a,b") == '"a,b"'
    assert ToonEncoder.encode_string("see #3") == '"see #3"'
    assert ToonEncoder.encode_string("see #3", comment_char=";") == "see #3"
    assert ToonEncoder.encode_string('say "hi"') == '"say \\"hi\\""'


def test_ambiguous_strings_use_literal_form():
    # Strings that would otherwise read back as numbers, booleans or null
    for value in ["08", "true", "null", "-1.5", ""]:
        encoded = ToonEncoder.encode_string(value)
        assert encoded == f'"\\"{value}\\""'


def test_strings_round_trip():
    values = ["08", "true", "null", "", "  padded  ", '"quoted"', "a,b", "x\\y", "t{a}: b", 'mixed "q", #c']
    records = [{"v": v} for v in values]
    assert parse(serialize_table(records, "t"))["t"] == records


def test_numbers_round_trip():
    records = [{"i": -42, "f": 2.5}, {"i": 0, "f": 1e-07}, {"i": 10**12, "f": 3.0}]
    parsed = parse(serialize_table(records))["data"]
    assert parsed == records
    assert all(isinstance(row["f"], float) for row in parsed)


def test_lists_and_dicts():
    text = serialize_table([{"tags": ["a", "b", None], "meta": {"k": 1}}])
    assert text.splitlines()[1] == '  "a,b,null","{\\"k\\":1}"'
    row = parse(text)["data"][0]
    assert row["tags"] == "a,b,null"
    assert json.loads(row["meta"]) == {"k": 1}


def test_line_breaks_rejected():
    with pytest.raises(ToonSerializeError):
        serialize_table([{"a": "line1\nline2"}])


@pytest.mark.parametrize("records,table_name", [
    ("not a list", "data"),
    ([1, 2], "data"),
    ([{"a": 1}], "bad name"),
    ([{"a,b": 1}], "data"),
    ([{"": 1}], "data"),
    ([{}], "data"),
    ([{"v": ' a\\"b'}], "data"),
    ([{"v": '"x\\"y"'}], "data"),
])
def test_invalid_input(records, table_name):
    with pytest.raises(ToonSerializeError):
        serialize_table(records, table_name)


def test_serialize_multi_table():
    text = serialize_multi_table({
        "endpoints.student": [{"id": "class-days"}],
        "empty": [],
        "tools": [{"name": "overview"}],
    })
    assert text == (
        "endpoints.student[1]{id}:\n"
        "  class-days\n"
        "\n"
        "tools[1]{name}:\n"
        "  overview"
    )
    assert parse(text) == {
        "endpoints": {"student": [{"id": "class-days"}]},
        "tools": [{"name": "overview"}],
    }


def test_multi_table_prefix_conflict():
    with pytest.raises(ToonSerializeError):
        serialize_multi_table({"a": [{"x": 1}], "a.b": [{"y": 2}]})
    with pytest.raises(ToonSerializeError):
        serialize_multi_table({"a.b": [{"y": 2}], "a": [{"x": 1}]})

    # Empty tables are not written, so they cannot conflict
    assert serialize_multi_table({"a": [], "a.b": [{"y": 2}]}) == "a.b[1]{y}:\n  2"
    assert serialize_multi_table({"a": [{"x": 1}], "ab": [{"y": 2}]}) == "a[1]{x}:\n  1\n\nab[1]{y}:\n  2"


def test_json_to_toon():
    assert json_to_toon('[{"a": 1}]', "rows") == "rows[1]{a}:\n  1"
    assert json_to_toon('{"x": [{"a": 1}], "y": [{"b": "z"}]}') == "x[1]{a}:\n  1\n\ny[1]{b}:\n  z"

    with pytest.raises(ToonSerializeError):
        json_to_toon('"just a string"')


def test_file_round_trip(tmp_path):
    path = tmp_path / "users.toon"
    records = [{"id": 1, "name": "Alice"}, {"id": 2, "name": "Bob"}]

    save_toon_file(str(path), records, "users")
    assert load_toon_file(str(path)) == {"users": records}
