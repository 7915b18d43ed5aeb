"""Textual canonical form of a snippet, for exact-match grading."""

from __future__ import annotations


def normalize_code(code: str) -> str:
    """Trim the text and every line in it, with ``\\n`` line endings."""
    text = code.strip().replace("\r\n", "\n").replace("\r", "\n")
    return "\n".join(line.strip() for line in text.split("\n"))
