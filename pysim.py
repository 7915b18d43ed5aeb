"""Snippet simulator entry point and REPL wiring."""

from __future__ import annotations
import argparse
import os
import sys
from typing import List, Optional

from extensions import RuntimeServices, SimExtensionError, build_default_services, load_runtime_services
from grading import outputs_equivalent
from interpreter import DEFAULT_FILENAME, Interpreter, TracebackFormatter
from lexer import SimError
from normalizer import normalize_code


def run_repl(verbose: bool, services: RuntimeServices) -> int:
    print("\x1b[38;2;153;221;255mpysim\033[0m REPL. One statement per line, Ctrl-D to exit.")
    for line in services.describe():
        print(f"  extension builtin {line}")
    interpreter = Interpreter(
        source="",
        filename="<stdin>",
        verbose=verbose,
        services=services,
        output_sink=lambda text: print(text, end=""),
    )
    number = 0

    while True:
        try:
            line = input("\x1b[38;2;153;221;255m>>>\033[0m ")
        except EOFError:
            print()
            break
        number += 1
        try:
            interpreter.execute_line(line, number)
        except SimError as error:
            formatter = TracebackFormatter(interpreter)
            print(formatter.format_text(error, verbose=interpreter.verbose), file=sys.stderr)

    return 0


def _read_program(program: str, source_mode: bool) -> Optional[str]:
    if source_mode:
        return program
    try:
        with open(program, "r", encoding="utf-8") as handle:
            return handle.read()
    except OSError as exc:
        print(f"Failed to read {program}: {exc}", file=sys.stderr)
        return None


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Line-by-line simulator for introductory Python snippets")
    parser.add_argument("program", nargs="?", help="Source file path or literal source with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program (and --compare) arguments as literal source text")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Emit the failing statement and scope snapshot in tracebacks")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    parser.add_argument("--ext", action="append", default=[], metavar="PATH", help="Load an extension module (repeatable)")
    parser.add_argument("--normalize", action="store_true", help="Print the normalized program text instead of running it")
    parser.add_argument("--compare", metavar="TARGET", help="Compare the program's output with a reference solution's")
    args = parser.parse_args(argv)

    try:
        services = load_runtime_services(args.ext) if args.ext else build_default_services()
    except SimExtensionError as exc:
        print(f"ExtensionError: {exc}", file=sys.stderr)
        return 1

    if args.program is None:
        if args.source_mode:
            print("-source requires a program string", file=sys.stderr)
            return 1
        return run_repl(verbose=args.verbose, services=services)

    source_text = _read_program(args.program, args.source_mode)
    if source_text is None:
        return 1

    if args.normalize:
        print(normalize_code(source_text))
        return 0

    filename = DEFAULT_FILENAME if args.source_mode else os.path.basename(args.program)
    try:
        interpreter = Interpreter(source=source_text, filename=filename, verbose=args.verbose, services=services)
    except SimExtensionError as exc:
        print(f"ExtensionError: {exc}", file=sys.stderr)
        return 1
    result = interpreter.run()
    if result.stdout:
        print(result.stdout)
    if not result.ok:
        print(result.stderr, file=sys.stderr)
        if args.traceback_json and interpreter.error is not None:
            print(TracebackFormatter(interpreter).to_json(interpreter.error), file=sys.stderr)
        return 1

    if args.compare is not None:
        target_text = _read_program(args.compare, args.source_mode)
        if target_text is None:
            return 1
        expected = Interpreter(source=target_text, filename=filename, services=services).run()
        if not expected.ok:
            print("Reference solution failed:", file=sys.stderr)
            print(expected.stderr, file=sys.stderr)
            return 1
        if not outputs_equivalent(result, expected):
            print("Output differs from the reference solution", file=sys.stderr)
            return 1
        print("Output matches the reference solution")
    return 0


if __name__ == "__main__":
    raise SystemExit(run_cli())
