from __future__ import annotations
from dataclasses import dataclass
from typing import Any, List, Optional, Union

from lexer import SimParseError, Token, tokenize


@dataclass
class Node:
    column: int


class Expression(Node):
    pass


@dataclass
class Literal(Expression):
    value: Any


@dataclass
class FormattedValue:
    expression: Expression
    conversion: Optional[str]
    spec: Optional[str]


@dataclass
class FString(Expression):
    parts: List[Union[str, FormattedValue]]


@dataclass
class Identifier(Expression):
    name: str


@dataclass
class ListLiteral(Expression):
    items: List[Expression]


@dataclass
class TupleLiteral(Expression):
    items: List[Expression]


@dataclass
class DictLiteral(Expression):
    keys: List[Expression]
    values: List[Expression]


@dataclass
class UnaryOp(Expression):
    op: str
    operand: Expression


@dataclass
class BinaryOp(Expression):
    op: str
    left: Expression
    right: Expression


@dataclass
class BoolOp(Expression):
    op: str
    left: Expression
    right: Expression


@dataclass
class Compare(Expression):
    left: Expression
    ops: List[str]
    comparators: List[Expression]


@dataclass
class Conditional(Expression):
    test: Expression
    body: Expression
    orelse: Expression


@dataclass
class Attribute(Expression):
    base: Expression
    name: str


@dataclass
class CallArgument:
    name: Optional[str]
    expression: Expression


@dataclass
class CallExpression(Expression):
    func: Expression
    args: List[CallArgument]


@dataclass
class SliceExpression(Expression):
    lower: Optional[Expression]
    upper: Optional[Expression]
    step: Optional[Expression]


@dataclass
class IndexExpression(Expression):
    base: Expression
    index: Expression


COMPARISON_TOKENS = {
    "EQ": "==",
    "NE": "!=",
    "LT": "<",
    "GT": ">",
    "LE": "<=",
    "GE": ">=",
}

ADDITIVE_TOKENS = {"PLUS": "+", "MINUS": "-"}

MULTIPLICATIVE_TOKENS = {
    "STAR": "*",
    "SLASH": "/",
    "FLOORDIV": "//",
    "PERCENT": "%",
}

# Tokens that may start an expression; used to tell "1," from "1, 2".
EXPRESSION_START = {
    "NUMBER", "FLOAT", "STRING", "FSTRING", "NAME", "TRUE", "FALSE", "NONE",
    "NOT", "MINUS", "PLUS", "LPAREN", "LBRACKET", "LBRACE",
}


class Parser:
    def __init__(self, tokens: List[Token], source: str) -> None:
        self.tokens = tokens
        self.source = source
        self.index = 0

    def parse(self) -> Expression:
        expr = self._parse_expression_list()
        self._expect_end()
        return expr

    def parse_arguments(self) -> List[CallArgument]:
        """Parse a bare argument list, as found between the parentheses of a call."""
        if self._peek().type == "EOF":
            return []
        args = self._parse_call_arguments(closing="EOF")
        self._expect_end()
        return args

    def _expect_end(self) -> None:
        token = self._peek()
        if token.type != "EOF":
            raise SimParseError(f"unexpected '{token.value}' at column {token.column}")

    def _parse_expression_list(self) -> Expression:
        first = self._parse_expression()
        if self._peek().type != "COMMA":
            return first
        items = [first]
        while self._match("COMMA"):
            if self._peek().type not in EXPRESSION_START:
                break
            items.append(self._parse_expression())
        return TupleLiteral(column=first.column, items=items)

    def _parse_expression(self) -> Expression:
        body = self._parse_or()
        if self._peek().type == "IF":
            self._consume("IF")
            test = self._parse_or()
            self._consume("ELSE")
            orelse = self._parse_expression()
            return Conditional(column=body.column, test=test, body=body, orelse=orelse)
        return body

    def _parse_or(self) -> Expression:
        left = self._parse_and()
        while self._peek().type == "OR":
            self._consume("OR")
            right = self._parse_and()
            left = BoolOp(column=left.column, op="or", left=left, right=right)
        return left

    def _parse_and(self) -> Expression:
        left = self._parse_not()
        while self._peek().type == "AND":
            self._consume("AND")
            right = self._parse_not()
            left = BoolOp(column=left.column, op="and", left=left, right=right)
        return left

    def _parse_not(self) -> Expression:
        if self._peek().type == "NOT":
            keyword = self._consume("NOT")
            operand = self._parse_not()
            return UnaryOp(column=keyword.column, op="not", operand=operand)
        return self._parse_comparison()

    def _parse_comparison(self) -> Expression:
        left = self._parse_additive()
        ops: List[str] = []
        comparators: List[Expression] = []
        while True:
            token = self._peek()
            if token.type in COMPARISON_TOKENS:
                self.index += 1
                ops.append(COMPARISON_TOKENS[token.type])
            elif token.type == "IN":
                self.index += 1
                ops.append("in")
            elif token.type == "NOT" and self._peek_next().type == "IN":
                self.index += 2
                ops.append("not in")
            elif token.type == "IS":
                self.index += 1
                ops.append("is not" if self._match("NOT") else "is")
            else:
                break
            comparators.append(self._parse_additive())
        if not ops:
            return left
        return Compare(column=left.column, left=left, ops=ops, comparators=comparators)

    def _parse_additive(self) -> Expression:
        left = self._parse_multiplicative()
        while self._peek().type in ADDITIVE_TOKENS:
            op = ADDITIVE_TOKENS[self._peek().type]
            self.index += 1
            right = self._parse_multiplicative()
            left = BinaryOp(column=left.column, op=op, left=left, right=right)
        return left

    def _parse_multiplicative(self) -> Expression:
        left = self._parse_unary()
        while self._peek().type in MULTIPLICATIVE_TOKENS:
            op = MULTIPLICATIVE_TOKENS[self._peek().type]
            self.index += 1
            right = self._parse_unary()
            left = BinaryOp(column=left.column, op=op, left=left, right=right)
        return left

    def _parse_unary(self) -> Expression:
        token = self._peek()
        if token.type in ADDITIVE_TOKENS:
            self.index += 1
            operand = self._parse_unary()
            return UnaryOp(column=token.column, op=ADDITIVE_TOKENS[token.type], operand=operand)
        return self._parse_power()

    def _parse_power(self) -> Expression:
        base = self._parse_postfix()
        if self._peek().type == "POW":
            self._consume("POW")
            # Right-associative, and binds tighter than a unary minus on its left.
            exponent = self._parse_unary()
            return BinaryOp(column=base.column, op="**", left=base, right=exponent)
        return base

    def _parse_postfix(self) -> Expression:
        expr = self._parse_primary()
        while True:
            token = self._peek()
            if token.type == "LPAREN":
                self._consume("LPAREN")
                args = self._parse_call_arguments(closing="RPAREN")
                self._consume("RPAREN")
                expr = CallExpression(column=expr.column, func=expr, args=args)
            elif token.type == "LBRACKET":
                self._consume("LBRACKET")
                index = self._parse_subscript()
                self._consume("RBRACKET")
                expr = IndexExpression(column=expr.column, base=expr, index=index)
            elif token.type == "DOT":
                self._consume("DOT")
                name = self._consume("NAME")
                expr = Attribute(column=expr.column, base=expr, name=name.value)
            else:
                return expr

    def _parse_subscript(self) -> Expression:
        column = self._peek().column
        lower: Optional[Expression] = None
        if self._peek().type != "COLON":
            lower = self._parse_expression()
            if self._peek().type != "COLON":
                return lower
        self._consume("COLON")
        upper: Optional[Expression] = None
        step: Optional[Expression] = None
        if self._peek().type not in ("COLON", "RBRACKET"):
            upper = self._parse_expression()
        if self._match("COLON") and self._peek().type != "RBRACKET":
            step = self._parse_expression()
        return SliceExpression(column=column, lower=lower, upper=upper, step=step)

    def _parse_call_arguments(self, *, closing: str) -> List[CallArgument]:
        args: List[CallArgument] = []
        seen_kw = False
        while self._peek().type != closing:
            if self._peek().type == "NAME" and self._peek_next().type == "EQUALS":
                name_tok = self._consume("NAME")
                self._consume("EQUALS")
                seen_kw = True
                args.append(CallArgument(name=name_tok.value, expression=self._parse_expression()))
            else:
                if seen_kw:
                    raise SimParseError(
                        f"positional argument follows keyword argument at column {self._peek().column}"
                    )
                args.append(CallArgument(name=None, expression=self._parse_expression()))
            if not self._match("COMMA"):
                break
        return args

    def _parse_primary(self) -> Expression:
        token = self._peek()
        if token.type == "NUMBER":
            self.index += 1
            return Literal(column=token.column, value=int(token.value))
        if token.type == "FLOAT":
            self.index += 1
            return Literal(column=token.column, value=float(token.value))
        if token.type in ("STRING", "FSTRING"):
            return self._parse_strings()
        if token.type == "TRUE":
            self.index += 1
            return Literal(column=token.column, value=True)
        if token.type == "FALSE":
            self.index += 1
            return Literal(column=token.column, value=False)
        if token.type == "NONE":
            self.index += 1
            return Literal(column=token.column, value=None)
        if token.type == "NAME":
            self.index += 1
            return Identifier(column=token.column, name=token.value)
        if token.type == "LPAREN":
            return self._parse_parenthesized()
        if token.type == "LBRACKET":
            return self._parse_list_literal()
        if token.type == "LBRACE":
            return self._parse_dict_literal()
        if token.type == "EOF":
            raise SimParseError("unexpected end of expression")
        raise SimParseError(f"unexpected '{token.value}' at column {token.column}")

    def _parse_strings(self) -> Expression:
        # Adjacent literals concatenate: "a" "b" == "ab".
        column = self._peek().column
        parts: List[Union[str, FormattedValue]] = []
        formatted = False
        while self._peek().type in ("STRING", "FSTRING"):
            token = self._peek()
            self.index += 1
            if token.type == "FSTRING":
                formatted = True
                parts.extend(_parse_fstring_body(token.value, token.column))
            else:
                parts.append(token.value)
        if not formatted:
            return Literal(column=column, value="".join(p for p in parts if isinstance(p, str)))
        return FString(column=column, parts=parts)

    def _parse_parenthesized(self) -> Expression:
        lparen = self._consume("LPAREN")
        if self._match("RPAREN"):
            return TupleLiteral(column=lparen.column, items=[])
        expr = self._parse_expression()
        if self._peek().type != "COMMA":
            self._consume("RPAREN")
            return expr
        items = [expr]
        while self._match("COMMA"):
            if self._peek().type == "RPAREN":
                break
            items.append(self._parse_expression())
        self._consume("RPAREN")
        return TupleLiteral(column=lparen.column, items=items)

    def _parse_list_literal(self) -> ListLiteral:
        lbracket = self._consume("LBRACKET")
        items: List[Expression] = []
        while self._peek().type != "RBRACKET":
            items.append(self._parse_expression())
            if not self._match("COMMA"):
                break
        self._consume("RBRACKET")
        return ListLiteral(column=lbracket.column, items=items)

    def _parse_dict_literal(self) -> DictLiteral:
        lbrace = self._consume("LBRACE")
        keys: List[Expression] = []
        values: List[Expression] = []
        while self._peek().type != "RBRACE":
            keys.append(self._parse_expression())
            self._consume("COLON")
            values.append(self._parse_expression())
            if not self._match("COMMA"):
                break
        self._consume("RBRACE")
        return DictLiteral(column=lbrace.column, keys=keys, values=values)

    def _consume(self, token_type: str) -> Token:
        token = self._peek()
        if token.type != token_type:
            found = token.value or "end of expression"
            raise SimParseError(f"expected {token_type} but found '{found}' at column {token.column}")
        self.index += 1
        return token

    def _match(self, token_type: str) -> bool:
        if self._peek().type == token_type:
            self.index += 1
            return True
        return False

    def _peek(self) -> Token:
        return self.tokens[self.index]

    def _peek_next(self) -> Token:
        if self.index + 1 < len(self.tokens):
            return self.tokens[self.index + 1]
        return self.tokens[-1]


def _parse_fstring_body(body: str, column: int) -> List[Union[str, FormattedValue]]:
    parts: List[Union[str, FormattedValue]] = []
    literal: List[str] = []
    i = 0
    n = len(body)
    while i < n:
        ch = body[i]
        if ch in "{}" and i + 1 < n and body[i + 1] == ch:
            literal.append(ch)
            i += 2
            continue
        if ch == "}":
            raise SimParseError(f"f-string: single '}}' is not allowed at column {column}")
        if ch != "{":
            literal.append(ch)
            i += 1
            continue
        end = _find_field_end(body, i + 1, column)
        if literal:
            parts.append("".join(literal))
            literal = []
        parts.append(_parse_replacement_field(body[i + 1:end], column))
        i = end + 1
    if literal:
        parts.append("".join(literal))
    return parts


def _find_field_end(body: str, start: int, column: int) -> int:
    depth = 0
    quote: Optional[str] = None
    for i in range(start, len(body)):
        ch = body[i]
        if quote is not None:
            if ch == quote:
                quote = None
            continue
        if ch in ("'", '"'):
            quote = ch
        elif ch in "([{":
            depth += 1
        elif ch in ")]}":
            if ch == "}" and depth == 0:
                return i
            depth -= 1
    raise SimParseError(f"f-string: expecting '}}' at column {column}")


def _parse_replacement_field(field: str, column: int) -> FormattedValue:
    depth = 0
    quote: Optional[str] = None
    expr_end = len(field)
    conversion: Optional[str] = None
    spec: Optional[str] = None
    for i, ch in enumerate(field):
        if quote is not None:
            if ch == quote:
                quote = None
            continue
        if ch in ("'", '"'):
            quote = ch
        elif ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth -= 1
        elif depth == 0 and ch == "!" and field[i + 1:i + 2] != "=":
            expr_end = i
            rest = field[i + 1:]
            conversion, _, tail = rest.partition(":")
            if conversion not in ("r", "s"):
                raise SimParseError(f"f-string: invalid conversion character at column {column}")
            spec = tail if ":" in rest else None
            break
        elif depth == 0 and ch == ":":
            expr_end = i
            spec = field[i + 1:]
            break
    source = field[:expr_end]
    if not source.strip():
        raise SimParseError(f"f-string: empty expression not allowed at column {column}")
    return FormattedValue(expression=parse_expression(source), conversion=conversion, spec=spec)


def parse_expression(text: str) -> Expression:
    return Parser(tokenize(text), text).parse()


def parse_arguments(text: str) -> List[CallArgument]:
    return Parser(tokenize(text), text).parse_arguments()
