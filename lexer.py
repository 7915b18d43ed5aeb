from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional


class SimError(Exception):
    """Base class for simulator errors."""

    kind = "RuntimeError"

    def __init__(self, message: str, *, line: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.line = line


class SimParseError(SimError):
    """Raised when an expression cannot be tokenized or parsed."""

    kind = "SyntaxError"


class SimExtensionError(Exception):
    """Raised when an extension cannot be loaded or registers something invalid."""


@dataclass
class Token:
    type: str
    value: str
    column: int


KEYWORDS = {
    "True": "TRUE",
    "False": "FALSE",
    "None": "NONE",
    "and": "AND",
    "or": "OR",
    "not": "NOT",
    "in": "IN",
    "is": "IS",
    "if": "IF",
    "else": "ELSE",
}

# Longest operators first so "**" wins over "*".
OPERATORS = [
    ("**", "POW"),
    ("//", "FLOORDIV"),
    ("==", "EQ"),
    ("!=", "NE"),
    ("<=", "LE"),
    (">=", "GE"),
    ("+", "PLUS"),
    ("-", "MINUS"),
    ("*", "STAR"),
    ("/", "SLASH"),
    ("%", "PERCENT"),
    ("<", "LT"),
    (">", "GT"),
    ("=", "EQUALS"),
    ("(", "LPAREN"),
    (")", "RPAREN"),
    ("[", "LBRACKET"),
    ("]", "RBRACKET"),
    ("{", "LBRACE"),
    ("}", "RBRACE"),
    (",", "COMMA"),
    (":", "COLON"),
    (".", "DOT"),
]

ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "\\": "\\",
    "'": "'",
    '"': '"',
    "0": "\0",
}

STRING_PREFIXES = {"f", "F", "r", "R", "fr", "rf", "Fr", "fR", "Rf", "rF", "FR", "RF"}


class Lexer:
    def __init__(self, text: str) -> None:
        self.text = text
        self.index = 0

    def tokenize(self) -> List[Token]:
        tokens: List[Token] = []
        tokens_append = tokens.append
        text = self.text
        n = len(text)

        while self.index < n:
            ch = text[self.index]
            if ch in " \t\r\n":
                self.index += 1
                continue
            if ch in ('"', "'"):
                tokens_append(self._consume_string(prefix=""))
                continue
            if ch.isdigit() or (ch == "." and self.index + 1 < n and text[self.index + 1].isdigit()):
                tokens_append(self._consume_number())
                continue
            if ch.isidentifier():
                word_start = self.index
                word = self._consume_word()
                # String prefixes glue directly onto the opening quote.
                if word in STRING_PREFIXES and not self._eof and self._peek() in ('"', "'"):
                    tokens_append(self._consume_string(prefix=word, start=word_start))
                    continue
                tokens_append(Token(KEYWORDS.get(word, "NAME"), word, word_start + 1))
                continue
            operator = self._match_operator()
            if operator is not None:
                tokens_append(operator)
                continue
            raise SimParseError(f"invalid character '{ch}' at column {self.index + 1}")
        tokens_append(Token("EOF", "", self.index + 1))
        return tokens

    def _match_operator(self) -> Optional[Token]:
        text = self.text
        for symbol, token_type in OPERATORS:
            if text.startswith(symbol, self.index):
                token = Token(token_type, symbol, self.index + 1)
                self.index += len(symbol)
                return token
        return None

    def _consume_word(self) -> str:
        start = self.index
        text = self.text
        n = len(text)
        self.index += 1
        while self.index < n and (text[self.index].isidentifier() or text[self.index].isdigit()):
            self.index += 1
        return text[start:self.index]

    def _consume_number(self) -> Token:
        start = self.index
        text = self.text
        n = len(text)
        is_float = False
        while self.index < n and (text[self.index].isdigit() or text[self.index] == "_"):
            self.index += 1
        if self.index < n and text[self.index] == ".":
            is_float = True
            self.index += 1
            while self.index < n and (text[self.index].isdigit() or text[self.index] == "_"):
                self.index += 1
        if self.index < n and text[self.index] in "eE":
            j = self.index + 1
            if j < n and text[j] in "+-":
                j += 1
            if j < n and text[j].isdigit():
                is_float = True
                self.index = j
                while self.index < n and text[self.index].isdigit():
                    self.index += 1
        raw = text[start:self.index]
        if raw.endswith("_") or "__" in raw:
            raise SimParseError(f"invalid decimal literal at column {start + 1}")
        if not is_float and len(raw) > 1 and raw[0] == "0" and raw.strip("0_"):
            raise SimParseError(f"leading zeros in decimal integer literals are not permitted at column {start + 1}")
        if self.index < n and (text[self.index].isidentifier()):
            raise SimParseError(f"invalid decimal literal at column {start + 1}")
        return Token("FLOAT" if is_float else "NUMBER", raw.replace("_", ""), start + 1)

    def _consume_string(self, *, prefix: str, start: Optional[int] = None) -> Token:
        column = (self.index if start is None else start) + 1
        opening = self._peek()
        raw_mode = "r" in prefix.lower()
        self.index += 1  # consume opening quote
        chars: List[str] = []
        while not self._eof:
            ch = self._peek()
            if ch == opening:
                self.index += 1
                token_type = "FSTRING" if "f" in prefix.lower() else "STRING"
                return Token(token_type, "".join(chars), column)
            if ch == "\\" and self.index + 1 < len(self.text):
                nxt = self.text[self.index + 1]
                if raw_mode:
                    chars.append(ch + nxt)
                else:
                    chars.append(ESCAPES.get(nxt, ch + nxt))
                self.index += 2
                continue
            chars.append(ch)
            self.index += 1
        raise SimParseError(f"unterminated string literal at column {column}")

    @property
    def _eof(self) -> bool:
        return self.index >= len(self.text)

    def _peek(self) -> str:
        return self.text[self.index]


def tokenize(text: str) -> List[Token]:
    return Lexer(text).tokenize()
