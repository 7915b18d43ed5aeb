"""
tests/test_lexer_parser.py - Tests for lexer.py and parser.py

Tokenizing is the safety boundary of the expression language, so most of the
lexer tests are about what it refuses.
"""

import pytest


class TestTokenize:
    """Tests for Lexer.tokenize."""

    def test_assignment_tokens(self):
        """A simple assignment lexes into name, equals, number, EOF."""
        from lexer import tokenize

        types = [token.type for token in tokenize("x = 1")]
        assert types == ["NAME", "EQUALS", "NUMBER", "EOF"]

    def test_longest_operator_wins(self):
        """'**' and '//' are single tokens, not two stars or two slashes."""
        from lexer import tokenize

        types = [token.type for token in tokenize("a ** b // c")]
        assert types == ["NAME", "POW", "NAME", "FLOORDIV", "NAME", "EOF"]

    def test_keywords(self):
        """Teaching-language keywords get their own token types."""
        from lexer import tokenize

        types = [token.type for token in tokenize("True and not None")]
        assert types == ["TRUE", "AND", "NOT", "NONE", "EOF"]

    def test_columns_are_one_based(self):
        """Token columns count from 1."""
        from lexer import tokenize

        tokens = tokenize("ab + 1")
        assert [token.column for token in tokens[:3]] == [1, 4, 6]

    def test_float_and_exponent(self):
        """Decimal points and exponents produce FLOAT tokens."""
        from lexer import tokenize

        tokens = tokenize("3.5 1e3 .5")
        assert [t.type for t in tokens[:3]] == ["FLOAT", "FLOAT", "FLOAT"]

    def test_underscore_separators(self):
        """Digit separators are dropped from the token value."""
        from lexer import tokenize

        assert tokenize("1_000")[0].value == "1000"

    def test_string_escapes(self):
        """Escape sequences are decoded inside regular strings."""
        from lexer import tokenize

        token = tokenize('"a\\nb"')[0]
        assert token.type == "STRING"
        assert token.value == "a\nb"

    def test_raw_string_keeps_backslash(self):
        """Raw strings keep escape sequences verbatim."""
        from lexer import tokenize

        assert tokenize('r"a\\nb"')[0].value == "a\\nb"

    def test_fstring_prefix(self):
        """An f prefix glued to a quote yields an FSTRING token."""
        from lexer import tokenize

        token = tokenize('f"hola {x}"')[0]
        assert token.type == "FSTRING"
        assert token.value == "hola {x}"

    def test_any_character_inside_strings(self):
        """Characters rejected in code are fine inside string literals."""
        from lexer import tokenize

        assert tokenize('"$ ; @ ñ"')[0].value == "$ ; @ ñ"

    @pytest.mark.parametrize("text, char", [("a $ b", "$"), ("x; y", ";"), ("a @ b", "@"), ("`x`", "`")])
    def test_invalid_character(self, text, char):
        """Characters outside the operator set are rejected before evaluation."""
        from lexer import SimParseError, tokenize

        with pytest.raises(SimParseError) as excinfo:
            tokenize(text)
        assert f"invalid character '{char}'" in excinfo.value.message
        assert excinfo.value.kind == "SyntaxError"

    def test_unterminated_string(self):
        """A string without its closing quote is a parse error."""
        from lexer import SimParseError, tokenize

        with pytest.raises(SimParseError, match="unterminated string literal"):
            tokenize('"hola')

    def test_leading_zeros(self):
        """Leading zeros in integer literals are refused."""
        from lexer import SimParseError, tokenize

        with pytest.raises(SimParseError, match="leading zeros"):
            tokenize("007")

    def test_zero_is_fine(self):
        """A plain zero is not a leading-zero literal."""
        from lexer import tokenize

        assert tokenize("0")[0].value == "0"


class TestParseExpression:
    """Tests for parse_expression precedence and shapes."""

    def test_multiplication_binds_tighter(self):
        """1 + 2 * 3 parses as 1 + (2 * 3)."""
        from parser import BinaryOp, parse_expression

        node = parse_expression("1 + 2 * 3")
        assert isinstance(node, BinaryOp) and node.op == "+"
        assert isinstance(node.right, BinaryOp) and node.right.op == "*"

    def test_power_is_right_associative(self):
        """2 ** 3 ** 2 parses as 2 ** (3 ** 2)."""
        from parser import BinaryOp, Literal, parse_expression

        node = parse_expression("2 ** 3 ** 2")
        assert isinstance(node.left, Literal) and node.left.value == 2
        assert isinstance(node.right, BinaryOp) and node.right.op == "**"

    def test_unary_minus_below_power(self):
        """-2 ** 2 parses as -(2 ** 2)."""
        from parser import BinaryOp, UnaryOp, parse_expression

        node = parse_expression("-2 ** 2")
        assert isinstance(node, UnaryOp) and node.op == "-"
        assert isinstance(node.operand, BinaryOp)

    def test_chained_comparison(self):
        """1 < x <= 3 is one Compare node with two operators."""
        from parser import Compare, parse_expression

        node = parse_expression("1 < x <= 3")
        assert isinstance(node, Compare)
        assert node.ops == ["<", "<="]

    def test_membership_operators(self):
        """'not in' and 'is not' are two-word comparison operators."""
        from parser import parse_expression

        assert parse_expression("a not in b").ops == ["not in"]
        assert parse_expression("a is not None").ops == ["is not"]

    def test_conditional_expression(self):
        """x if c else y parses as a Conditional."""
        from parser import Conditional, parse_expression

        node = parse_expression("x if c else y")
        assert isinstance(node, Conditional)
        assert node.test.name == "c"

    def test_top_level_tuple(self):
        """A bare comma list at top level is a tuple."""
        from parser import TupleLiteral, parse_expression

        node = parse_expression("1, 2")
        assert isinstance(node, TupleLiteral)
        assert len(node.items) == 2

    def test_adjacent_strings_concatenate(self):
        """Adjacent string literals collapse into one Literal."""
        from parser import Literal, parse_expression

        node = parse_expression('"a" "b"')
        assert isinstance(node, Literal) and node.value == "ab"

    def test_method_call(self):
        """name.method(arg) is a call on an Attribute."""
        from parser import Attribute, CallExpression, parse_expression

        node = parse_expression('texto.replace("a", "b")')
        assert isinstance(node, CallExpression)
        assert isinstance(node.func, Attribute) and node.func.name == "replace"
        assert len(node.args) == 2

    def test_slice(self):
        """Subscripts with colons produce a SliceExpression."""
        from parser import IndexExpression, SliceExpression, parse_expression

        node = parse_expression("s[::-1]")
        assert isinstance(node, IndexExpression)
        assert isinstance(node.index, SliceExpression)
        assert node.index.lower is None and node.index.upper is None

    def test_dict_literal(self):
        """Dict literals keep keys and values in order."""
        from parser import DictLiteral, parse_expression

        node = parse_expression('{"a": 1, "b": 2}')
        assert isinstance(node, DictLiteral)
        assert [key.value for key in node.keys] == ["a", "b"]

    def test_fstring_field(self):
        """f-string fields carry their conversion and format spec."""
        from parser import FString, FormattedValue, parse_expression

        node = parse_expression('f"{x!r:>5} fin"')
        assert isinstance(node, FString)
        field = node.parts[0]
        assert isinstance(field, FormattedValue)
        assert field.conversion == "r"
        assert field.spec == ">5"
        assert node.parts[1] == " fin"

    def test_fstring_doubled_braces(self):
        """Doubled braces are literal text."""
        from parser import parse_expression

        node = parse_expression('f"{{x}}"')
        assert node.parts == ["{x}"]

    @pytest.mark.parametrize("text", ["1 2", "1 +", "(1", "[1, 2", 'f"{}"', "x.", "a if b"])
    def test_malformed(self, text):
        """Malformed expressions raise SimParseError."""
        from lexer import SimParseError
        from parser import parse_expression

        with pytest.raises(SimParseError):
            parse_expression(text)


class TestParseArguments:
    """Tests for parse_arguments (the inside of a call)."""

    def test_empty(self):
        """No text means no arguments."""
        from parser import parse_arguments

        assert parse_arguments("") == []

    def test_positional_and_keyword(self):
        """Keyword arguments keep their names."""
        from parser import parse_arguments

        args = parse_arguments('1, "a", sep="-"')
        assert [arg.name for arg in args] == [None, None, "sep"]

    def test_positional_after_keyword(self):
        """A positional argument after a keyword one is refused."""
        from lexer import SimParseError
        from parser import parse_arguments

        with pytest.raises(SimParseError, match="positional argument follows keyword argument"):
            parse_arguments('sep="-", 1')
