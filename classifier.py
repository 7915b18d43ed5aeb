"""Syntactic classification of single source lines.

Each line is checked against an ordered list of pattern rules and the first
rule that matches decides its kind. Nothing here evaluates code; the
interpreter dispatches on the returned kind.
"""

from __future__ import annotations
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from lexer import KEYWORDS, SimError


class SimSyntaxError(SimError):
    kind = "SyntaxError"


BLOCK_KEYWORDS = ("if", "elif", "else", "for", "while", "def", "class", "try", "except", "finally")
FLOW_KEYWORDS = ("return", "pass", "break", "continue")
RAISABLE_ERRORS = ("ValueError",)

_IDENT = r"[^\W\d]\w*"
_HEADER = re.compile(r"^(%s)\b" % "|".join(BLOCK_KEYWORDS))
_FLOW = re.compile(r"^(%s)\b" % "|".join(FLOW_KEYWORDS))
_PRINT = re.compile(r"^print\s*\((.*)\)$")
_RAISE = re.compile(r"^raise\s+(%s)\s*\((.+)\)$" % "|".join(RAISABLE_ERRORS))
_ASSIGN = re.compile(r"^(%s(?:\s*,\s*%s)*)\s*=(?!=)\s*(.+)$" % (_IDENT, _IDENT))
_AUGMENTED = re.compile(r"^(%s)\s*(\*\*|//|[+\-*/%%])=\s*(.+)$" % _IDENT)
_ITEM_ASSIGN = re.compile(r"^(%s\s*\[.+\])\s*=(?!=)\s*(.+)$" % _IDENT)

RESERVED_WORDS = set(KEYWORDS) | set(BLOCK_KEYWORDS) | set(FLOW_KEYWORDS) | {
    "lambda", "import", "from", "global", "nonlocal", "del", "with", "as",
    "assert", "yield", "raise", "async", "await",
}


@dataclass
class Line:
    number: int
    text: str


@dataclass
class Blank(Line):
    pass


@dataclass
class Header(Line):
    keyword: str


@dataclass
class FlowKeyword(Line):
    keyword: str


@dataclass
class Print(Line):
    arguments: str


@dataclass
class Raise(Line):
    error_kind: str
    arguments: str


@dataclass
class Assignment(Line):
    targets: List[str]
    expression: str
    operator: Optional[str] = None


@dataclass
class ItemAssignment(Line):
    target: str
    expression: str


@dataclass
class ExpressionStatement(Line):
    expression: str


def strip_comment(text: str) -> str:
    """Drop a trailing ``#`` comment that is not inside a string literal."""
    quote: Optional[str] = None
    i = 0
    while i < len(text):
        ch = text[i]
        if quote is not None:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
        elif ch == "#":
            return text[:i]
        i += 1
    return text


def mask_strings(text: str) -> Tuple[str, bool]:
    """Blank out string literal contents, keeping the quotes and the length.

    Returns the masked text and whether every string literal was closed.
    """
    out: List[str] = []
    quote: Optional[str] = None
    i = 0
    while i < len(text):
        ch = text[i]
        if quote is not None:
            if ch == "\\" and i + 1 < len(text):
                out.append("__")
                i += 2
                continue
            if ch == quote:
                quote = None
                out.append(ch)
            else:
                out.append("_")
        else:
            if ch in ("'", '"'):
                quote = ch
            out.append(ch)
        i += 1
    return "".join(out), quote is None


def _balanced(text: str, open_ch: str, close_ch: str) -> bool:
    depth = 0
    for ch in text:
        if ch == open_ch:
            depth += 1
        elif ch == close_ch:
            depth -= 1
            if depth < 0:
                return False
    return depth == 0


def check_syntax(masked: str, quotes_closed: bool, number: int) -> None:
    if not _balanced(masked, "(", ")"):
        raise SimSyntaxError("unmatched ')'", line=number)
    if not quotes_closed or not _balanced(masked, "[", "]") or not _balanced(masked, "{", "}"):
        raise SimSyntaxError("invalid syntax", line=number)
    if "===" in masked:
        raise SimSyntaxError("invalid syntax", line=number)
    if _HEADER.match(masked) and not masked.endswith(":"):
        raise SimSyntaxError("expected ':'", line=number)


def classify_line(raw: str, number: int) -> Line:
    text = strip_comment(raw.strip()).strip()
    if not text:
        return Blank(number=number, text=raw.strip())

    masked, quotes_closed = mask_strings(text)
    check_syntax(masked, quotes_closed, number)

    match = _FLOW.match(masked)
    if match:
        return FlowKeyword(number=number, text=text, keyword=match.group(1))

    match = _PRINT.match(masked)
    if match:
        return Print(number=number, text=text, arguments=text[match.start(1):match.end(1)].strip())

    match = _RAISE.match(masked)
    if match:
        return Raise(
            number=number,
            text=text,
            error_kind=match.group(1),
            arguments=text[match.start(2):match.end(2)],
        )

    assignment = _classify_assignment(text, masked, number)
    if assignment is not None:
        return assignment

    match = _HEADER.match(masked)
    if match:
        return Header(number=number, text=text, keyword=match.group(1))

    return ExpressionStatement(number=number, text=text, expression=text)


def _classify_assignment(text: str, masked: str, number: int) -> Optional[Line]:
    match = _AUGMENTED.match(masked)
    if match and match.group(1) not in RESERVED_WORDS:
        return Assignment(
            number=number,
            text=text,
            targets=[match.group(1)],
            expression=text[match.start(3):match.end(3)],
            operator=match.group(2),
        )

    match = _ASSIGN.match(masked)
    if match:
        targets = [name.strip() for name in match.group(1).split(",")]
        if not any(name in RESERVED_WORDS for name in targets):
            return Assignment(
                number=number,
                text=text,
                targets=targets,
                expression=text[match.start(2):match.end(2)],
            )

    match = _ITEM_ASSIGN.match(masked)
    if match:
        return ItemAssignment(
            number=number,
            text=text,
            target=text[match.start(1):match.end(1)],
            expression=text[match.start(2):match.end(2)],
        )
    return None
