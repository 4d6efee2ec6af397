from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional


class MiniError(Exception):
    """Base class for interpreter errors."""


class MiniLexError(MiniError):
    """Raised when the source text cannot be tokenized."""

    def __init__(self, errors: List[str]) -> None:
        super().__init__("\n".join(errors))
        self.errors = errors


class MiniParseError(MiniError):
    """Raised when parsing fails."""


@dataclass(frozen=True)
class Token:
    type: str
    value: str
    line: int
    column: int
    offset: int


@dataclass(frozen=True)
class Fragment:
    text: str
    line: int
    column: int
    offset: int


KEYWORDS = {
    "if": "IF",
    "else": "ELSE",
    "func": "FUNC",
    "return": "RETURN",
    "while": "WHILE",
}

SYMBOLS = {
    "+": "PLUS",
    "-": "MINUS",
    "*": "STAR",
    "/": "SLASH",
    "%": "PERCENT",
    "=": "ASSIGN",
    "&&": "LAND",
    "||": "LOR",
    "==": "EQL",
    "<": "LSS",
    ">": "GTR",
    "!": "NOT",
    "!=": "NEQ",
    "<=": "LEQ",
    ">=": "GEQ",
    "(": "LPAREN",
    "[": "LBRACKET",
    "{": "LBRACE",
    ",": "COMMA",
    ".": "PERIOD",
    ")": "RPAREN",
    "]": "RBRACKET",
    "}": "RBRACE",
    ";": "SEMICOLON",
    ":": "COLON",
}

# first character -> characters that may follow it to form one operator
COMPOUND = {
    "=": "=",
    "!": "=",
    "<": "=",
    ">": "=",
    "&": "&",
    "|": "|",
}

ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "0": "\0",
    "\\": "\\",
    '"': '"',
    "'": "'",
}


def decode_string(text: str) -> str:
    """Strip the quotes from a STRING token and resolve its escapes."""
    body = text[1:-1]
    out: List[str] = []
    i = 0
    while i < len(body):
        ch = body[i]
        if ch == "\\" and i + 1 < len(body):
            out.append(ESCAPES.get(body[i + 1], body[i + 1]))
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


class Lexer:
    def __init__(self, text: str, filename: str) -> None:
        self.text = text
        self.filename = filename
        self.index = 0
        self.line = 1
        self.column = 1
        self.errors: List[str] = []

    def tokenize(self) -> List[Token]:
        fragments = self._scan()
        if self.errors:
            raise MiniLexError(self.errors)
        fragments = merge_compound(fragments)
        tokens: List[Token] = []
        invalid: List[str] = []
        for fragment in fragments:
            token_type = self._classify(fragment.text)
            if token_type is None:
                invalid.append(f"{self._where(fragment.line, fragment.column)}: invalid token {fragment.text!r}")
                continue
            tokens.append(Token(token_type, fragment.text, fragment.line, fragment.column, fragment.offset))
        if invalid:
            raise MiniLexError(invalid)
        tokens.append(Token("EOF", "", self.line, self.column, self.index))
        return tokens

    def _scan(self) -> List[Fragment]:
        fragments: List[Fragment] = []
        fragments_append = fragments.append
        _advance = self._advance
        text = self.text
        n = len(text)

        while self.index < n:
            ch: str = text[self.index]
            if ch in " \t\r\n":
                _advance()
                continue
            if ch == "/" and self.index + 1 < n and text[self.index + 1] in "/*":
                self._consume_comment()
                continue
            if ch == '"':
                fragment = self._consume_string()
                if fragment is not None:
                    fragments_append(fragment)
                continue
            if ch.isdigit() or (ch == "." and self.index + 1 < n and text[self.index + 1].isdigit()):
                fragments_append(self._consume_number())
                continue
            if ch.isalpha() or ch == "_":
                fragments_append(self._consume_identifier())
                continue
            fragments_append(Fragment(ch, self.line, self.column, self.index))
            _advance()
        return fragments

    def _consume_comment(self) -> None:
        line, col = self.line, self.column
        text = self.text
        n = len(text)
        _advance = self._advance
        if text[self.index + 1] == "/":
            while self.index < n and text[self.index] != "\n":
                _advance()
            return
        _advance()
        _advance()
        while self.index < n:
            if text[self.index] == "*" and self.index + 1 < n and text[self.index + 1] == "/":
                _advance()
                _advance()
                return
            _advance()
        self.errors.append(f"{self._where(line, col)}: comment not terminated")

    def _consume_string(self) -> Optional[Fragment]:
        line, col, start = self.line, self.column, self.index
        self._advance()  # consume opening quote
        while not self._eof:
            ch = self._peek()
            if ch == '"':
                self._advance()
                return Fragment(self.text[start:self.index], line, col, start)
            if ch == "\n":
                break
            if ch == "\\":
                esc_line, esc_col = self.line, self.column
                self._advance()
                if self._eof:
                    break
                if self._peek() not in ESCAPES:
                    self.errors.append(f"{self._where(esc_line, esc_col)}: invalid char escape")
            self._advance()
        self.errors.append(f"{self._where(line, col)}: literal not terminated")
        return None

    def _consume_number(self) -> Fragment:
        line, col, start = self.line, self.column, self.index
        text = self.text
        n = len(text)
        _advance = self._advance
        while self.index < n and text[self.index].isdigit():
            _advance()
        if self.index < n and text[self.index] == ".":
            _advance()
            while self.index < n and text[self.index].isdigit():
                _advance()
        if self.index < n and text[self.index] in "eE":
            _advance()
            if self.index < n and text[self.index] in "+-":
                _advance()
            while self.index < n and text[self.index].isdigit():
                _advance()
        # "0x1F" or "12ab" stay one fragment and fail classification as a whole
        while self.index < n and (text[self.index].isalnum() or text[self.index] == "_"):
            _advance()
        return Fragment(text[start:self.index], line, col, start)

    def _consume_identifier(self) -> Fragment:
        line, col, start = self.line, self.column, self.index
        text = self.text
        n = len(text)
        _advance = self._advance
        while self.index < n and (text[self.index].isalnum() or text[self.index] == "_"):
            _advance()
        return Fragment(text[start:self.index], line, col, start)

    def _classify(self, text: str) -> Optional[str]:
        if text in SYMBOLS:
            return SYMBOLS[text]
        if text in KEYWORDS:
            return KEYWORDS[text]
        if text.isdigit() and text.isascii():
            return "NUMBER"
        if text.startswith('"'):
            return "STRING"
        if text[0].isalpha():
            return "IDENT"
        return None

    def _where(self, line: int, column: int) -> str:
        return f"{self.filename}:{line}:{column}"

    @property
    def _eof(self) -> bool:
        return self.index >= len(self.text)

    def _peek(self) -> str:
        return self.text[self.index]

    def _advance(self) -> None:
        if self.text[self.index] == "\n":
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        self.index += 1


def merge_compound(fragments: List[Fragment]) -> List[Fragment]:
    """Join textually adjacent pairs such as '<' '=' into one operator."""
    merged: List[Fragment] = []
    i = 0
    while i < len(fragments):
        current = fragments[i]
        if i + 1 < len(fragments):
            following = fragments[i + 1]
            if (
                current.text in COMPOUND
                and following.text == COMPOUND[current.text]
                and following.offset == current.offset + 1
            ):
                merged.append(Fragment(current.text + following.text, current.line, current.column, current.offset))
                i += 2
                continue
        merged.append(current)
        i += 1
    return merged
