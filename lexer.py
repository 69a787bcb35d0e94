from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional


class PileError(Exception):
    """Base class for interpreter errors."""

    def __init__(self, message: str, *, location: Optional["Location"] = None) -> None:
        super().__init__(message)
        self.message = message
        self.location = location


class PileLexError(PileError):
    """Raised when tokenization fails."""


class TokenKind(Enum):
    LIT_STRING = "LIT_STRING"
    LIT_INT = "LIT_INT"
    LIT_FLOAT = "LIT_FLOAT"
    LIT_BOOL = "LIT_BOOL"

    ID_INVOCATION = "ID_INVOCATION"

    ID_VAR = "ID_VAR"
    VAR_SYM = "VAR_SYM"

    ID_ROUTINE = "ID_ROUTINE"
    ROUTINE_SYM = "ROUTINE_SYM"

    KW_END = "KW_END"
    KW_DUP = "KW_DUP"
    KW_DROP = "KW_DROP"
    KW_SWAP = "KW_SWAP"
    KW_OVER = "KW_OVER"
    KW_CR = "KW_CR"

    OP_SUM = "OP_SUM"
    OP_SUB = "OP_SUB"
    OP_MUL = "OP_MUL"
    OP_DIV = "OP_DIV"
    OP_MOD = "OP_MOD"
    OP_EQ = "OP_EQ"

    OP_EMIT = "OP_EMIT"
    OP_PRINT = "OP_PRINT"
    OP_PRINT_MEM = "OP_PRINT_MEM"
    OP_BIND = "OP_BIND"


LITERAL_KINDS = frozenset({
    TokenKind.LIT_STRING,
    TokenKind.LIT_INT,
    TokenKind.LIT_FLOAT,
    TokenKind.LIT_BOOL,
})

KEYWORDS: Dict[str, TokenKind] = {
    "end": TokenKind.KW_END,
    "dup": TokenKind.KW_DUP,
    "drop": TokenKind.KW_DROP,
    "swap": TokenKind.KW_SWAP,
    "over": TokenKind.KW_OVER,
    "cr": TokenKind.KW_CR,
    "emit": TokenKind.OP_EMIT,
    "true": TokenKind.LIT_BOOL,
    "false": TokenKind.LIT_BOOL,
}

SYMBOLS: Dict[str, TokenKind] = {
    "@": TokenKind.VAR_SYM,
    ":": TokenKind.ROUTINE_SYM,
    "+": TokenKind.OP_SUM,
    "*": TokenKind.OP_MUL,
    "/": TokenKind.OP_DIV,
    "%": TokenKind.OP_MOD,
}

# An escaped newline is stored as the two raw characters.
ESCAPED_NEWLINE = "\\n"


def _is_digit(ch: str) -> bool:
    return ch != "" and ch in "0123456789"


def _is_alnum(ch: str) -> bool:
    return ch.isascii() and ch.isalnum()


@dataclass(frozen=True)
class Location:
    file: str
    line: int
    column: int

    def __str__(self) -> str:
        return f"{self.file}:{self.line}:{self.column}"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    text: str
    location: Location

    def render(self) -> str:
        if self.kind is TokenKind.LIT_STRING:
            return f'"{self.text}"'
        return self.text

    def describe(self) -> str:
        return f"{self.kind.value:<15}:{self.location.line}:{self.location.column:<5} {self.text}"


class Lexer:
    def __init__(self, text: str, filename: str) -> None:
        self.text = text
        self.filename = filename
        self.index = 0
        self.line = 1
        self.column = 1
        # Kind of the last emitted token, used to classify identifiers after a sigil.
        self.last_kind: Optional[TokenKind] = None

    def tokenize(self) -> List[Token]:
        tokens: List[Token] = []
        tokens_append = tokens.append
        _advance = self._advance
        text = self.text
        n = len(text)

        while self.index < n:
            ch: str = text[self.index]
            if ch.isspace():
                _advance()
                continue
            if ch == ";":
                self._consume_comment()
                continue
            if ch == '"':
                token: Optional[Token] = self._consume_string()
            elif ch.isascii() and ch.isalpha():
                token = self._consume_identifier()
            elif _is_digit(ch):
                token = self._consume_number()
            else:
                token = self._consume_symbol()
            if token is not None:
                tokens_append(token)
                self.last_kind = token.kind
        return tokens

    def _consume_comment(self) -> None:
        text = self.text
        n = len(text)
        _advance = self._advance
        while self.index < n and text[self.index] != "\n":
            _advance()

    def _consume_string(self) -> Token:
        opening = self._location()
        self._advance()  # consume opening quote
        location = self._location()
        start = self.index
        text = self.text
        while True:
            if self._eof:
                raise PileLexError(f"Unterminated string literal at {opening}", location=opening)
            if text[self.index] == '"' and text[self.index - 1] != "\\":
                break
            self._advance()
        value = text[start:self.index]
        self._advance()  # consume closing quote
        if ESCAPED_NEWLINE in value:
            raise PileLexError(
                f"Can't use new line escape char inside string at {location}",
                location=location,
            )
        return Token(TokenKind.LIT_STRING, value, location)

    def _consume_identifier(self) -> Token:
        location = self._location()
        start = self.index
        text = self.text
        n = len(text)
        while self.index < n and (_is_alnum(text[self.index]) or text[self.index] == "-"):
            self._advance()
        value = text[start:self.index]
        if self.last_kind is TokenKind.VAR_SYM:
            kind = TokenKind.ID_VAR
        elif self.last_kind is TokenKind.ROUTINE_SYM:
            kind = TokenKind.ID_ROUTINE
        else:
            kind = KEYWORDS.get(value, TokenKind.ID_INVOCATION)
        return Token(kind, value, location)

    def _consume_number(self) -> Token:
        location = self._location()
        text = self.text
        sign = "-" if self.index > 0 and text[self.index - 1] == "-" else ""
        whole = self._consume_digits()
        # Only one radix point, and only when a digit follows it.
        if not self._eof and self._peek() == "." and _is_digit(self._peek_at(1)):
            self._advance()  # consume '.'
            frac = self._consume_digits()
            return Token(TokenKind.LIT_FLOAT, f"{sign}{whole}.{frac}", location)
        return Token(TokenKind.LIT_INT, sign + whole, location)

    def _consume_digits(self) -> str:
        start = self.index
        text = self.text
        n = len(text)
        while self.index < n and _is_digit(text[self.index]):
            self._advance()
        return text[start:self.index]

    def _consume_symbol(self) -> Optional[Token]:
        location = self._location()
        ch = self._peek()
        if ch in SYMBOLS:
            self._advance()
            return Token(SYMBOLS[ch], ch, location)
        if ch == "-":
            self._advance()
            if _is_digit(self._peek_at(0)):
                # folded into the numeric literal that follows
                return None
            return Token(TokenKind.OP_SUB, ch, location)
        if ch == "=":
            if self._peek_at(1) == "=":
                self._advance()
                self._advance()
                return Token(TokenKind.OP_EQ, "==", location)
            self._advance()
            return Token(TokenKind.OP_BIND, ch, location)
        if ch == ".":
            if self.text.startswith("mem", self.index + 1):
                for _ in range(4):
                    self._advance()
                return Token(TokenKind.OP_PRINT_MEM, ".mem", location)
            self._advance()
            return Token(TokenKind.OP_PRINT, ch, location)
        raise PileLexError(f"Symbol not recognized: '{ch}' at {location}", location=location)

    def _location(self) -> Location:
        return Location(self.filename, self.line, self.column)

    @property
    def _eof(self) -> bool:
        return self.index >= len(self.text)

    def _peek(self) -> str:
        return self.text[self.index]

    def _peek_at(self, offset: int) -> str:
        position = self.index + offset
        if position < len(self.text):
            return self.text[position]
        return ""

    def _advance(self) -> None:
        if self.text[self.index] == "\n":
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        self.index += 1


def tokenize(text: str, filename: str = "<string>") -> List[Token]:
    return Lexer(text, filename).tokenize()
