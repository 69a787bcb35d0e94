"""Pile entry point."""

from __future__ import annotations
import argparse
import sys
from typing import List, Optional

from interpreter import DEFAULT_MAX_DEPTH, Interpreter, TracebackFormatter
from lexer import PileLexError
from scanner import PileScopeError
from stack import PileRuntimeError


def _dump_tokens(interpreter: Interpreter) -> None:
    print(">>>>>>> [TOKENS]")
    for token in interpreter.tokens:
        print(token.describe())


def _dump_scope(interpreter: Interpreter) -> None:
    print(">>>>>>> [VARIABLES]")
    for line in interpreter.scope.describe_variables():
        print(line)
    print(">>>>>>> [ROUTINES]")
    for line in interpreter.scope.describe_routines():
        print(line)


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Pile stack-language interpreter")
    parser.add_argument("program", help="Source file path or literal source with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Emit stack snapshots in tracebacks")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    parser.add_argument("--dump-tokens", action="store_true", help="Print the token table before running")
    parser.add_argument("--dump-scope", action="store_true", help="Print global variables and routines before running")
    parser.add_argument("--max-depth", type=int, default=DEFAULT_MAX_DEPTH, help="Maximum routine call depth")
    args = parser.parse_args(argv)

    if args.source_mode:
        source_text = args.program
        filename = "<string>"
    else:
        filename = args.program
        try:
            with open(filename, "r", encoding="utf-8") as handle:
                source_text = handle.read()
        except (OSError, UnicodeDecodeError) as exc:
            print(f"Failed to read {filename}: {exc}", file=sys.stderr)
            return 1

    interpreter = Interpreter(
        source=source_text,
        filename=filename,
        verbose=args.verbose,
        max_depth=args.max_depth,
        output_sink=lambda text: print(text, end="", flush=True),
    )
    try:
        if args.dump_tokens or args.dump_scope:
            interpreter.parse()
            if args.dump_tokens:
                _dump_tokens(interpreter)
            if args.dump_scope:
                _dump_scope(interpreter)
        interpreter.run()
    except PileLexError as error:
        print(f"LexError: {error}", file=sys.stderr)
        return 1
    except PileScopeError as error:
        print(f"ScopeError: {error}", file=sys.stderr)
        return 1
    except PileRuntimeError as error:
        formatter = TracebackFormatter(interpreter)
        print(formatter.format_text(error, verbose=args.verbose), file=sys.stderr)
        if args.traceback_json:
            print(formatter.to_json(error), file=sys.stderr)
        return 1
    return 0


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
