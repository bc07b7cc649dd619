"""
TOON (Token-Oriented Object Notation) Parser/Serializer.

TOON is a compact tabular text format for structurally repeated configuration
(parameter lists, endpoint catalogs). One schema line declares a table's name,
optional expected row count and field order; CSV-style data lines follow.

Format example:
    # users of the admin console
    users[2]{id,name,role}:
      1,Alice,admin
      2,Bob,user   # trailing comments are stripped

    endpoints.student[1]{id,apiType,name}:
      class-days,08,Class days

Parsed:
    {"users": [{"id": 1, "name": "Alice", "role": "admin"}, ...],
     "endpoints": {"student": [{"id": "class-days", "apiType": 8, "name": "Class days"}]}}
"""

import json
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from logger import get_logger

from .exceptions import ParseErrorCause, ToonParseError, ToonSerializeError

logger = get_logger(__name__)

ToonValue = Union[str, int, float, bool, None]
ToonRow = dict[str, ToonValue]
ToonTable = list[ToonRow]

# Precompiled patterns
TABLE_NAME_RE = re.compile(r"[A-Za-z0-9._-]+", re.ASCII)
SCHEMA_LINE_RE = re.compile(r"([A-Za-z0-9._-]+)(?:\[(\d+)\])?\{([^}]*)\}:", re.ASCII)
INTEGER_RE = re.compile(r"-?\d+", re.ASCII)
FLOAT_RE = re.compile(r"-?\d+\.\d+", re.ASCII)

# Characters that would break a schema line if used inside a field name
_RESERVED_FIELD_CHARS = set(',{}"\\\n\r')
_RESERVED_COMMENT_CHARS = set('",\\{}[]:')


class ToonParserOptions(BaseModel):
    """Immutable parser configuration.

    Attributes:
        comment_char: Character that starts a trailing comment outside quotes (default '#')
        strict_count: Fail when a table's row count differs from its declared count (default True)
        auto_convert: Coerce values to None/bool/int/float (default True)
        nested_paths: Expand dotted table names into nested mappings (default True)
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    comment_char: str = Field("#", min_length=1, max_length=1, description="Comment marker")
    strict_count: bool = Field(True, description="Enforce declared row counts")
    auto_convert: bool = Field(True, description="Coerce values to native types")
    nested_paths: bool = Field(True, description="Expand dotted names into nested tables")

    @field_validator("comment_char")
    @classmethod
    def validate_comment_char(cls, v: str) -> str:
        if v in _RESERVED_COMMENT_CHARS or v.isspace():
            raise ValueError(f"Character {v!r} cannot be used as a comment marker")
        return v


@dataclass(frozen=True)
class _Schema:
    name: str
    count: int | None
    fields: tuple[str, ...]
    line_number: int


def resolve_options(options: "ToonParserOptions | Mapping[str, Any] | None") -> ToonParserOptions:
    """Resolve parser options with defaults applied."""
    if options is None:
        return ToonParserOptions()
    if isinstance(options, ToonParserOptions):
        return options
    return ToonParserOptions(**dict(options))


def is_schema_line(line: str) -> bool:
    """Classify a comment-stripped, trimmed line as a schema declaration."""
    return "{" in line and "}:" in line


class ToonParser:
    """
    Parser for converting TOON text to a tree of named tables.

    Each call to parse() keeps its state in local variables, so one parser
    instance can be shared between threads.
    """

    def __init__(self, options: ToonParserOptions | Mapping[str, Any] | None = None):
        self.options = resolve_options(options)

    def parse(self, text: str) -> dict[str, Any]:
        """
        Parse a TOON document.

        Args:
            text: TOON-formatted string

        Returns:
            Mapping of table name to rows; dotted names become nested mappings
            unless nested_paths is disabled.

        Raises:
            ToonParseError: On the first malformed line (no partial result)
        """
        tables: dict[str, ToonTable] = {}
        declared_lines: dict[str, int] = {}
        schema: _Schema | None = None
        rows: ToonTable = []
        line_number = 0

        for line_number, raw_line in enumerate(text.split("\n"), start=1):
            line = self.remove_comment(raw_line).strip()
            if not line:
                continue

            if is_schema_line(line):
                if schema is not None:
                    self._seal(schema, rows, line_number, tables, declared_lines)
                schema = self.parse_schema(line, line_number)
                rows = []
                if schema.name in tables:
                    raise ToonParseError(
                        f"Table '{schema.name}' is declared more than once",
                        line_number,
                        ParseErrorCause.PATH_CONFLICT,
                        line,
                    )
                continue

            if schema is None:
                raise ToonParseError(
                    "Data line found before schema definition",
                    line_number,
                    ParseErrorCause.DATA_BEFORE_SCHEMA,
                    line,
                )
            rows.append(self.parse_data_line(line, schema, line_number))

        if schema is not None:
            self._seal(schema, rows, line_number, tables, declared_lines)

        if self.options.nested_paths:
            return self._build_nested(tables, declared_lines)
        return tables

    def remove_comment(self, line: str) -> str:
        """Strip a trailing comment, ignoring comment characters inside quotes."""
        comment_char = self.options.comment_char
        if comment_char not in line:
            return line

        in_quotes = False
        escaped = False
        for i, ch in enumerate(line):
            if escaped:
                escaped = False
                continue
            if ch == "\\":
                escaped = True
            elif ch == '"':
                in_quotes = not in_quotes
            elif ch == comment_char and not in_quotes:
                return line[:i]

        return line

    @staticmethod
    def parse_schema(line: str, line_number: int = 0) -> _Schema:
        """
        Parse a schema line such as ``endpoints.student[6]{id,apiType,name}:``.

        Raises:
            ToonParseError: MALFORMED_SCHEMA for any deviation from the grammar
        """
        match = SCHEMA_LINE_RE.fullmatch(line)
        if not match:
            raise ToonParseError(
                f"Invalid schema syntax: {line}", line_number, ParseErrorCause.MALFORMED_SCHEMA, line
            )

        name, count, fields_str = match.groups()
        if not fields_str.strip():
            raise ToonParseError(
                f"Empty field list in schema: {line}", line_number, ParseErrorCause.MALFORMED_SCHEMA, line
            )

        fields = tuple(f.strip() for f in fields_str.split(","))
        if "" in fields:
            raise ToonParseError(
                f"Empty field name in schema: {line}", line_number, ParseErrorCause.MALFORMED_SCHEMA, line
            )
        if len(set(fields)) != len(fields):
            duplicates = sorted({f for f in fields if fields.count(f) > 1})
            raise ToonParseError(
                f"Duplicate field(s) {', '.join(duplicates)} in schema: {line}",
                line_number,
                ParseErrorCause.MALFORMED_SCHEMA,
                line,
            )

        return _Schema(
            name=name,
            count=int(count) if count is not None else None,
            fields=fields,
            line_number=line_number,
        )

    def parse_data_line(self, line: str, schema: _Schema, line_number: int = 0) -> ToonRow:
        """Split a data line and zip its values against the active schema."""
        values = self.split_fields(line)

        if len(values) != len(schema.fields):
            raise ToonParseError(
                f"Field count mismatch. Expected {len(schema.fields)} fields "
                f"[{', '.join(schema.fields)}], got {len(values)} values",
                line_number,
                ParseErrorCause.FIELD_COUNT_MISMATCH,
                line,
            )

        if not self.options.auto_convert:
            return dict(zip(schema.fields, values))
        return {field: self.coerce_value(value) for field, value in zip(schema.fields, values)}

    @staticmethod
    def split_fields(line: str) -> list[str]:
        """Split a data line on commas, respecting quotes and backslash escapes."""
        values = []
        current: list[str] = []
        in_quotes = False
        escaped = False

        for ch in line:
            if escaped:
                current.append(ch)
                escaped = False
                continue
            if ch == "\\":
                escaped = True
                continue
            if ch == '"':
                in_quotes = not in_quotes
            elif ch == "," and not in_quotes:
                values.append("".join(current).strip())
                current = []
            else:
                current.append(ch)

        values.append("".join(current).strip())
        return values

    @staticmethod
    def coerce_value(token: str) -> ToonValue:
        """Coerce a raw field token to None, str, bool, int or float."""
        if token == "":
            return None

        # Explicitly quoted literal (e.g. \"08\" in the source)
        if len(token) >= 2 and token.startswith('"') and token.endswith('"'):
            return token[1:-1].replace('\\"', '"')

        if token == "null":
            return None
        if token == "true":
            return True
        if token == "false":
            return False

        if INTEGER_RE.fullmatch(token):
            return int(token)
        if FLOAT_RE.fullmatch(token):
            return float(token)

        return token

    def _seal(
        self,
        schema: _Schema,
        rows: ToonTable,
        line_number: int,
        tables: dict[str, ToonTable],
        declared_lines: dict[str, int],
    ) -> None:
        """Validate the declared row count and commit the table."""
        if self.options.strict_count and schema.count is not None and len(rows) != schema.count:
            raise ToonParseError(
                f"Row count mismatch for '{schema.name}'. Expected {schema.count}, got {len(rows)}",
                line_number,
                ParseErrorCause.ROW_COUNT_MISMATCH,
            )
        tables[schema.name] = rows
        declared_lines[schema.name] = schema.line_number

    @staticmethod
    def _build_nested(tables: dict[str, ToonTable], declared_lines: dict[str, int]) -> dict[str, Any]:
        """
        Fold dotted table names into nested mappings.

        endpoints.student -> {"endpoints": {"student": [...]}}
        """
        result: dict[str, Any] = {}

        for name, rows in tables.items():
            parts = name.split(".")
            node = result

            for depth, part in enumerate(parts[:-1]):
                child = node.setdefault(part, {})
                if not isinstance(child, dict):
                    prefix = ".".join(parts[: depth + 1])
                    raise ToonParseError(
                        f"Table '{name}' conflicts with table '{prefix}': "
                        f"'{prefix}' cannot be both a table and a group of tables",
                        declared_lines[name],
                        ParseErrorCause.PATH_CONFLICT,
                    )
                node = child

            leaf = parts[-1]
            if leaf in node:
                raise ToonParseError(
                    f"Table '{name}' conflicts with nested tables already declared under '{name}'",
                    declared_lines[name],
                    ParseErrorCause.PATH_CONFLICT,
                )
            node[leaf] = rows

        return result

    @staticmethod
    def to_json(parsed: Mapping[str, Any], pretty: bool = True) -> str:
        """Convert a parse result to a JSON string."""
        return json.dumps(parsed, indent=2 if pretty else None, ensure_ascii=False)


class ToonEncoder:
    """
    Serializer for converting lists of uniform records to TOON text.

    The field list comes from the first record; later records are assumed to
    share it (missing keys encode as null).
    """

    @staticmethod
    def _quote(text: str) -> str:
        """Wrap text in quotes, escaping backslashes and quotes."""
        if "\n" in text or "\r" in text:
            raise ToonSerializeError("TOON values cannot contain line breaks")
        escaped = text.replace("\\", "\\\\").replace('"', '\\"').replace("}:", "}\\:")
        return f'"{escaped}"'

    @staticmethod
    def _format_float(value: float) -> str:
        if not math.isfinite(value):
            return repr(value)
        text = repr(value)
        # 1e-07 would read back as a string; write it positionally instead
        if "e" in text or "E" in text:
            text = format(Decimal(text), "f")
        if "." not in text:
            text += ".0"
        return text

    @classmethod
    def encode_string(cls, value: str, comment_char: str = "#") -> str:
        """
        Encode a string so that parsing it back yields the same string.

        Bare text is used when safe; text containing a comma, quote, backslash
        or the comment character is quoted; text that would otherwise be read
        back as null/bool/number, or would lose whitespace or its own quotes,
        is written as an escaped-quote literal.

        Raises:
            ToonSerializeError: For line breaks, or a backslash-quote pair in
                text that needs the literal form
        """
        if "\n" in value or "\r" in value:
            raise ToonSerializeError("TOON values cannot contain line breaks")

        is_quote_bounded = len(value) >= 2 and value.startswith('"') and value.endswith('"')
        if value != value.strip() or is_quote_bounded or not isinstance(ToonParser.coerce_value(value), str):
            if '\\"' in value:
                # Inside a literal every \" reads back as a bare quote
                raise ToonSerializeError(f"Cannot encode {value!r}: backslash-quote inside a quoted literal")
            return cls._quote(f'"{value}"')

        if any(ch in value for ch in (",", '"', "\\", comment_char)) or "}:" in value:
            return cls._quote(value)
        return value

    @classmethod
    def encode_value(cls, v: Any, comment_char: str = "#") -> str:
        """
        Encode a Python value to its TOON field representation.

        Args:
            v: None, bool, int, float, str, list or dict

        Returns:
            TOON-formatted field text
        """
        if v is None:
            return "null"
        if isinstance(v, bool):
            return "true" if v else "false"
        if isinstance(v, int):
            return str(v)
        if isinstance(v, float):
            return cls._format_float(v)
        if isinstance(v, str):
            return cls.encode_string(v, comment_char)
        if isinstance(v, (list, tuple)):
            items = []
            for item in v:
                if item is None:
                    items.append("null")
                elif isinstance(item, bool):
                    items.append("true" if item else "false")
                else:
                    items.append(str(item))
            return cls._quote(",".join(items))
        if isinstance(v, Mapping):
            return cls._quote(json.dumps(v, separators=(",", ":"), ensure_ascii=False, default=str))

        # Fallback
        return cls.encode_string(str(v), comment_char)

    @staticmethod
    def _check_field_name(field: Any, comment_char: str) -> str:
        if not isinstance(field, str) or not field or field != field.strip():
            raise ToonSerializeError(f"Invalid field name: {field!r}")
        if comment_char in field or any(ch in _RESERVED_FIELD_CHARS for ch in field):
            raise ToonSerializeError(f"Field name {field!r} contains a reserved character")
        return field

    @classmethod
    def encode_table(cls, records: Any, table_name: str = "data", comment_char: str = "#") -> str:
        """
        Encode a list of uniform records as one TOON table.

        Args:
            records: List of mappings sharing the first record's keys
            table_name: Table name, dots allowed for nesting

        Returns:
            TOON text (empty string for an empty list)

        Raises:
            ToonSerializeError: If records is not a list of mappings or a name is invalid
        """
        if not isinstance(records, (list, tuple)):
            raise ToonSerializeError("Input must be a list of records.")
        if not records:
            return ""
        if not isinstance(table_name, str) or not TABLE_NAME_RE.fullmatch(table_name):
            raise ToonSerializeError(f"Invalid table name: {table_name!r}")
        if not all(isinstance(record, Mapping) for record in records):
            raise ToonSerializeError("Every record must be a mapping.")

        fields = [cls._check_field_name(f, comment_char) for f in records[0].keys()]
        if not fields:
            raise ToonSerializeError("Records must have at least one field.")

        schema_line = f"{table_name}[{len(records)}]{{{','.join(fields)}}}:"
        data_lines = [
            "  " + ",".join(cls.encode_value(record.get(f), comment_char) for f in fields)
            for record in records
        ]
        return "\n".join([schema_line, *data_lines])

    @classmethod
    def encode_tables(cls, tables: Any, comment_char: str = "#") -> str:
        """
        Encode a mapping of table name -> records, one block per non-empty table.

        Raises:
            ToonSerializeError: If one table name is a dotted prefix of another
                (e.g. ``a`` and ``a.b``), which would not parse back
        """
        if not isinstance(tables, Mapping):
            raise ToonSerializeError("Input must be a mapping of table name to records.")

        names = [name for name, records in tables.items() if records and isinstance(name, str)]
        for name in names:
            for other in names:
                if other.startswith(name + "."):
                    raise ToonSerializeError(
                        f"Table '{name}' conflicts with table '{other}': "
                        f"'{name}' cannot be both a table and a group of tables"
                    )

        blocks = []
        for name, records in tables.items():
            block = cls.encode_table(records, name, comment_char)
            if block:
                blocks.append(block)
        return "\n\n".join(blocks)


def parse(text: str, options: ToonParserOptions | Mapping[str, Any] | None = None) -> dict[str, Any]:
    """
    Convenience function to parse TOON text.

    Args:
        text: TOON-formatted string
        options: Parser options (ToonParserOptions or a plain dict)

    Returns:
        Tree of named tables
    """
    return ToonParser(options).parse(text)


def serialize_table(records: Any, table_name: str = "data", comment_char: str = "#") -> str:
    """Convenience function to encode a list of records as one TOON table."""
    return ToonEncoder.encode_table(records, table_name, comment_char)


def serialize_multi_table(tables: Any, comment_char: str = "#") -> str:
    """Convenience function to encode several tables separated by blank lines."""
    return ToonEncoder.encode_tables(tables, comment_char)


def json_to_toon(json_str: str, table_name: str = "data") -> str:
    """
    Convert JSON string to TOON format.

    A JSON array becomes one table named table_name; a JSON object of arrays
    becomes one table per key.
    """
    data = json.loads(json_str)
    if isinstance(data, list):
        return serialize_table(data, table_name)
    if isinstance(data, dict):
        return serialize_multi_table(data)
    raise ToonSerializeError("JSON input must be an array or an object of arrays.")


def toon_to_json(
    toon_str: str,
    indent: int | None = None,
    options: ToonParserOptions | Mapping[str, Any] | None = None,
) -> str:
    """Convert TOON string to JSON string."""
    return json.dumps(parse(toon_str, options), indent=indent, ensure_ascii=False)


def validate_toon(text: str, options: ToonParserOptions | Mapping[str, Any] | None = None) -> bool:
    """
    Validate a TOON document.

    Returns:
        True if the document parses, raises ToonParseError otherwise.
    """
    parse(text, options)
    return True


def is_toon_schema(line: str) -> bool:
    """Check whether a line is a well-formed schema declaration."""
    match = SCHEMA_LINE_RE.fullmatch(line.strip())
    return match is not None and bool(match.group(3).strip())


def is_toon_comment(line: str, comment_char: str = "#") -> bool:
    return line.strip().startswith(comment_char)


def load_toon_file(file_path: str, options: ToonParserOptions | Mapping[str, Any] | None = None) -> dict[str, Any]:
    """Read a UTF-8 TOON file and parse it."""
    with open(file_path, encoding="utf-8") as f:
        content = f.read()
    logger.debug(f"Parsing TOON file: {file_path} ({len(content)} chars)")
    return parse(content, options)


def save_toon_file(file_path: str, records: Any, table_name: str = "data") -> None:
    """Serialize records as one table and write them to a UTF-8 file."""
    content = serialize_table(records, table_name)
    with open(file_path, "w", encoding="utf-8") as f:
        f.write(content)
    logger.debug(f"Saved TOON table '{table_name}' to {file_path}")
