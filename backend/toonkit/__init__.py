"""
Core package for toonkit.
Parses and serializes TOON, the compact tabular format used to describe
API providers, and holds the models shared by the provider/tool services.
"""

__version__ = "1.0.0"

from .exceptions import ParseErrorCause, ToonError, ToonParseError, ToonSerializeError
from .toon import (
                   ToonEncoder,
                   ToonParser,
                   ToonParserOptions,
                   is_toon_comment,
                   is_toon_schema,
                   json_to_toon,
                   load_toon_file,
                   parse,
                   save_toon_file,
                   serialize_multi_table,
                   serialize_table,
                   toon_to_json,
                   validate_toon,
)
