"""
Command-line interface.

    python main.py parse providers/schoolinfo.toon --flat
    python main.py validate providers/schoolinfo.toon
    python main.py from-json rows.json --table users -o users.toon
    python main.py tools --providers-dir providers
    python main.py serve --port 3000
"""

import argparse
import asyncio
import json
import sys

from pydantic import ValidationError

from config import DEFAULT_TABLE_NAME, HOST, PORT, PROVIDERS_DIR, TOON_COMMENT_CHAR
from logger import get_logger, setup_logging
from toonkit.exceptions import ProviderServiceError, ToonParseError, ToonSerializeError
from toonkit.toon import ToonParserOptions, json_to_toon, load_toon_file, validate_toon

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="toonkit", description="TOON parser, converter and provider tools server")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("parse", help="Parse a TOON file and print it as JSON")
    p.add_argument("file", help="Input .toon file")
    p.add_argument("--flat", action="store_true", help="Keep dotted table names as flat keys")
    p.add_argument("--lenient", action="store_true", help="Do not enforce declared row counts")
    p.add_argument("--raw", action="store_true", help="Keep every value as a string")
    p.add_argument("--comment-char", default=TOON_COMMENT_CHAR, help="Comment marker (default: %(default)s)")

    p = sub.add_parser("validate", help="Check that a TOON file parses")
    p.add_argument("file", help="Input .toon file")
    p.add_argument("--lenient", action="store_true", help="Do not enforce declared row counts")
    p.add_argument("--comment-char", default=TOON_COMMENT_CHAR, help="Comment marker (default: %(default)s)")

    p = sub.add_parser("from-json", help="Convert a JSON array (or object of arrays) to TOON")
    p.add_argument("file", help="Input .json file")
    p.add_argument("--table", default=DEFAULT_TABLE_NAME, help="Table name for a JSON array (default: %(default)s)")
    p.add_argument("-o", "--output", help="Output file (default: stdout)")

    p = sub.add_parser("tools", help="List the tools generated from provider files")
    p.add_argument("--providers-dir", default=PROVIDERS_DIR, help="Directory of provider .toon files")

    p = sub.add_parser("serve", help="Run the HTTP server")
    p.add_argument("--host", default=HOST, help="Host to bind to (default: %(default)s)")
    p.add_argument("--port", type=int, default=PORT, help="Port to listen on (default: %(default)s)")

    return parser


def cmd_parse(args: argparse.Namespace) -> int:
    options = ToonParserOptions(
        comment_char=args.comment_char,
        strict_count=not args.lenient,
        auto_convert=not args.raw,
        nested_paths=not args.flat,
    )
    print(json.dumps(load_toon_file(args.file, options), indent=2, ensure_ascii=False))
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    with open(args.file, encoding="utf-8") as f:
        content = f.read()
    options = ToonParserOptions(comment_char=args.comment_char, strict_count=not args.lenient)
    validate_toon(content, options)
    print(f"✓ Valid TOON: {args.file}")
    return 0


def cmd_from_json(args: argparse.Namespace) -> int:
    with open(args.file, encoding="utf-8") as f:
        content = f.read()
    text = json_to_toon(content, args.table)

    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(text + "\n")
        print(f"✓ Saved to: {args.output}")
    else:
        print(text)
    return 0


def cmd_tools(args: argparse.Namespace) -> int:
    from services.provider_factory import ProviderFactory
    from services.tool_registry import build_registry

    registry = asyncio.run(build_registry(args.providers_dir, ProviderFactory()))
    tools = registry.list_tools()
    if not tools:
        print(f"No tools found in {args.providers_dir}")
        return 0

    for tool in tools:
        summary = tool["description"].splitlines()[0] if tool["description"] else ""
        print(f"{tool['name']}\t{summary}")

    stats = registry.get_stats()
    print(f"\n{stats['totalTools']} tool(s) from {stats['totalProviders']} provider(s)")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("app:app", host=args.host, port=args.port)
    return 0


COMMANDS = {
    "parse": cmd_parse,
    "validate": cmd_validate,
    "from-json": cmd_from_json,
    "tools": cmd_tools,
    "serve": cmd_serve,
}


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(log_file=None, stream=sys.stderr)

    try:
        return COMMANDS[args.command](args)
    except FileNotFoundError as e:
        print(f"✗ File not found: {e.filename}", file=sys.stderr)
    except ToonParseError as e:
        print(f"✗ Invalid TOON ({e.cause.value}): {e}", file=sys.stderr)
    except (ToonSerializeError, ValidationError) as e:
        print(f"✗ {e}", file=sys.stderr)
    except json.JSONDecodeError as e:
        print(f"✗ Invalid JSON: {e}", file=sys.stderr)
    except ProviderServiceError as e:
        logger.error(f"[{e.code.value}] {e.message}")
        print(f"✗ {e.message}", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
