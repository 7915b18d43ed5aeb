"""
tests/test_normalizer.py - Tests for normalizer.py
"""

import pytest

from normalizer import normalize_code


SAMPLES = [
    "",
    "   ",
    "x = 1",
    "  x = 1  \n y=2",
    "a\r\nb\r\n",
    "\n\n  print(x)\n\t\n",
    "mixed\rold\r\nendings\n",
]


class TestNormalizeCode:
    """Tests for normalize_code."""

    def test_trims_each_line(self):
        """Surrounding whitespace on every line is removed."""
        assert normalize_code("  x = 1  \n y=2") == "x = 1\ny=2"

    def test_whitespace_only_differences_are_equal(self):
        """Snippets that differ only in per-line padding normalize equally."""
        assert normalize_code("  x = 1  \n y=2") == normalize_code("x = 1\ny=2")

    def test_line_endings(self):
        """CRLF and lone CR become LF."""
        assert normalize_code("a\r\nb\rc") == "a\nb\nc"

    def test_outer_blank_lines_removed(self):
        """Leading and trailing blank lines disappear."""
        assert normalize_code("\n\n  print(x)\n\n") == "print(x)"

    def test_inner_blank_lines_kept(self):
        """Blank lines in the middle survive as empty lines."""
        assert normalize_code("a\n   \nb") == "a\n\nb"

    def test_empty(self):
        """Empty input normalizes to the empty string."""
        assert normalize_code("") == ""

    def test_content_differences_survive(self):
        """Whitespace inside a line is not touched."""
        assert normalize_code("x=1") != normalize_code("x = 1")

    @pytest.mark.parametrize("text", SAMPLES)
    def test_idempotent(self, text):
        """Normalizing twice changes nothing."""
        once = normalize_code(text)
        assert normalize_code(once) == once
