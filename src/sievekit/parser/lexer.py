"""
Sieve Script Lexer (Tokenizer)

Converts raw Sieve script text into a stream of tokens.
Handles: identifiers, tags, numbers, quoted strings, text: multiline
strings, bracketed string lists, punctuation and both comment forms.
"""

from dataclasses import dataclass
from enum import Enum, auto
from typing import Iterator, List, Optional, Union

from sievekit.errors import SieveSyntaxError


class TokenType(Enum):
    """Types of tokens in a Sieve script."""
    IDENTIFIER = auto()      # fileinto, header, anyof
    TAG = auto()             # :contains, :copy
    NUMBER = auto()          # 100, 10K
    STRING = auto()          # "quoted string"
    MULTILINE = auto()       # text: ... .
    STRING_LIST = auto()     # ["a", "b"]
    SEMICOLON = auto()       # ;
    LBRACE = auto()          # {
    RBRACE = auto()          # }
    LPAREN = auto()          # (
    RPAREN = auto()          # )
    COMMA = auto()           # ,
    COMMENT = auto()         # # hash comment or /* bracket comment */
    EOF = auto()             # End of input


# Token types that carry a decoded value rather than punctuation
VALUE_TYPES = frozenset({
    TokenType.IDENTIFIER,
    TokenType.TAG,
    TokenType.NUMBER,
    TokenType.STRING,
    TokenType.MULTILINE,
    TokenType.STRING_LIST,
})

# Token types that close a statement for the standalone tokenize() entry point
STATEMENT_END = frozenset({
    TokenType.SEMICOLON,
    TokenType.LBRACE,
    TokenType.RBRACE,
    TokenType.EOF,
})


@dataclass
class Token:
    """A single token from the lexer."""
    type: TokenType
    value: Union[str, List[str]]
    line: int
    column: int
    offset: int = 0

    def __repr__(self):
        return f"Token({self.type.name}, {self.value!r}, L{self.line}:{self.column})"


class Lexer:
    """
    Tokenizer for Sieve scripts.

    Usage:
        lexer = Lexer(source_text)
        tokens = list(lexer.tokenize())
    """

    # Characters that end a bare atom
    DELIMITERS = set(';{}()[],"#')
    PUNCTUATION = {
        ';': TokenType.SEMICOLON,
        '{': TokenType.LBRACE,
        '}': TokenType.RBRACE,
        '(': TokenType.LPAREN,
        ')': TokenType.RPAREN,
        ',': TokenType.COMMA,
    }
    NUMBER_UNITS = set("KMGkmg")

    def __init__(self, source: str, filename: str = "<unknown>", charset: str = "utf-8"):
        self.source = source
        self.filename = filename
        self.charset = charset
        self.pos = 0
        self.offset = 0  # byte offset of self.pos in the script charset
        self.line = 1
        self.column = 1
        self.length = len(source)

    def _current(self) -> Optional[str]:
        """Get current character or None if at end."""
        if self.pos >= self.length:
            return None
        return self.source[self.pos]

    def _peek(self, offset: int = 1) -> Optional[str]:
        """Peek ahead by offset characters."""
        pos = self.pos + offset
        if pos >= self.length:
            return None
        return self.source[pos]

    def _advance(self) -> Optional[str]:
        """Advance one character and return it."""
        ch = self._current()
        if ch is not None:
            self.pos += 1
            self.offset += self._char_width(ch)
            if ch == '\n':
                self.line += 1
                self.column = 1
            else:
                self.column += 1
        return ch

    def _char_width(self, ch: str) -> int:
        if ch < '\x80':
            return 1
        try:
            return len(ch.encode(self.charset))
        except UnicodeEncodeError:
            return len(ch.encode('utf-8'))

    def _error(self, message: str, offset: int, line: int, column: int) -> SieveSyntaxError:
        return SieveSyntaxError(message, offset, line, column)

    def _skip_whitespace(self) -> None:
        while self._current() is not None and self._current().isspace():
            self._advance()

    def _read_hash_comment(self) -> str:
        """Read a comment from # to end of line."""
        result = []
        self._advance()
        while True:
            ch = self._current()
            if ch is None or ch == '\n':
                break
            result.append(ch)
            self._advance()
        return ''.join(result).rstrip('\r')

    def _read_bracket_comment(self) -> str:
        """Read a /* ... */ comment."""
        start, line, col = self.offset, self.line, self.column
        self._advance()
        self._advance()
        result = []
        while True:
            ch = self._current()
            if ch is None:
                raise self._error("Unterminated bracket comment", start, line, col)
            if ch == '*' and self._peek() == '/':
                self._advance()
                self._advance()
                break
            result.append(ch)
            self._advance()
        return ''.join(result).replace('\r\n', '\n')

    def _read_quoted(self) -> str:
        """
        Read a quoted string. A backslash takes the next character literally,
        so \\" is a quote, \\\\ a backslash and \\a just "a".
        """
        start, line, col = self.offset, self.line, self.column
        self._advance()

        result = []
        while True:
            ch = self._current()
            if ch is None:
                raise self._error("Unterminated quoted string", start, line, col)
            if ch == '"':
                self._advance()
                break
            if ch == '\\':
                self._advance()
                esc = self._current()
                if esc is None:
                    raise self._error("Unterminated quoted string", start, line, col)
                result.append(esc)
                self._advance()
            elif ch == '\r' and self._peek() == '\n':
                # CRLF inside a literal decodes to LF, as in text: strings
                self._advance()
            else:
                result.append(ch)
                self._advance()

        return ''.join(result)

    def _read_atom(self) -> str:
        result = []
        while True:
            ch = self._current()
            if ch is None or ch.isspace() or ch in self.DELIMITERS:
                break
            if ch == '/' and self._peek() == '*':
                break
            result.append(ch)
            self._advance()
        return ''.join(result)

    def _at_multiline(self) -> bool:
        """Check for the text: keyword at the current position."""
        if self.source[self.pos:self.pos + 5].lower() != 'text:':
            return False
        after = self._peek(5)
        return after is None or after.isspace() or after == '#'

    def _read_multiline(self, start: int, line: int, col: int) -> str:
        """
        Read the body of a text: string. The cursor sits right after "text:".

        The body ends at a line holding a single dot. A leading ".." is
        unstuffed to "." and line terminators are normalized to "\\n".
        """
        while self._current() in (' ', '\t'):
            self._advance()
        if self._current() == '#':
            self._read_hash_comment()
        if self._current() == '\r' and self._peek() == '\n':
            self._advance()
        if self._current() != '\n':
            raise self._error("Expected line break after text:", start, line, col)
        self._advance()

        lines = []
        while True:
            if self._current() is None:
                raise self._error("Unterminated multiline string", start, line, col)
            end = self.source.find('\n', self.pos)
            if end == -1:
                end = self.length
            raw = self.source[self.pos:end]
            if raw.endswith('\r'):
                raw = raw[:-1]

            while self.pos < end:
                self._advance()
            if self._current() == '\n':
                self._advance()

            if raw == '.':
                break
            if self._current() is None and end == self.length:
                raise self._error("Unterminated multiline string", start, line, col)
            if raw.startswith('..'):
                raw = raw[1:]
            lines.append(raw)

        return '\n'.join(lines)

    def _read_string_list(self) -> List[str]:
        """Read a bracketed, comma separated list of strings."""
        start, line, col = self.offset, self.line, self.column
        self._advance()

        items: List[str] = []
        expect_item = True
        while True:
            self._skip_list_filler()
            ch = self._current()
            if ch is None:
                raise self._error("Unterminated string list", start, line, col)
            if ch == ']' and (not items or not expect_item):
                self._advance()
                break
            if expect_item:
                if ch == '"':
                    items.append(self._read_quoted())
                elif self._at_multiline():
                    m_start, m_line, m_col = self.offset, self.line, self.column
                    for _ in range(5):
                        self._advance()
                    items.append(self._read_multiline(m_start, m_line, m_col))
                else:
                    raise self._error("Expected string in string list", self.offset, self.line, self.column)
                expect_item = False
            elif ch == ',':
                self._advance()
                expect_item = True
            else:
                raise self._error(f"Unexpected character {ch!r} in string list",
                                  self.offset, self.line, self.column)

        return items

    def _skip_list_filler(self) -> None:
        """Skip whitespace and comments between list items."""
        while True:
            self._skip_whitespace()
            if self._current() == '#':
                self._read_hash_comment()
            elif self._current() == '/' and self._peek() == '*':
                self._read_bracket_comment()
            else:
                return

    def tokenize(self, include_comments: bool = False) -> Iterator[Token]:
        """
        Generate tokens from the source.

        Args:
            include_comments: If True, emit COMMENT tokens. Otherwise skip them.
        """
        while True:
            self._skip_whitespace()

            ch = self._current()
            start, line, col = self.offset, self.line, self.column

            if ch is None:
                yield Token(TokenType.EOF, '', line, col, start)
                break

            if ch == '#':
                comment = self._read_hash_comment()
                if include_comments:
                    yield Token(TokenType.COMMENT, comment, line, col, start)
                continue

            if ch == '/' and self._peek() == '*':
                comment = self._read_bracket_comment()
                if include_comments:
                    yield Token(TokenType.COMMENT, comment, line, col, start)
                continue

            if ch == '"':
                value = self._read_quoted()
                yield Token(TokenType.STRING, value, line, col, start)
                continue

            if ch == '[':
                items = self._read_string_list()
                yield Token(TokenType.STRING_LIST, items, line, col, start)
                continue

            if ch == ']':
                raise self._error("Unexpected ']' outside of a string list", start, line, col)

            if ch in self.PUNCTUATION:
                self._advance()
                yield Token(self.PUNCTUATION[ch], ch, line, col, start)
                continue

            atom = self._read_atom()
            if not atom:
                raise self._error(f"Unexpected character {ch!r}", start, line, col)

            if atom.lower() == 'text:':
                value = self._read_multiline(start, line, col)
                yield Token(TokenType.MULTILINE, value, line, col, start)
            elif atom.startswith(':'):
                yield Token(TokenType.TAG, atom, line, col, start)
            elif self._is_number(atom):
                yield Token(TokenType.NUMBER, atom, line, col, start)
            else:
                yield Token(TokenType.IDENTIFIER, atom, line, col, start)

    def _is_number(self, atom: str) -> bool:
        digits = atom[:-1] if atom[-1] in self.NUMBER_UNITS else atom
        return digits.isdigit() and digits.isascii()

    def tokenize_all(self, include_comments: bool = False) -> List[Token]:
        """Convenience method to get all tokens as a list."""
        return list(self.tokenize(include_comments))


def tokenize(source: Union[str, bytes], mode: int = 0, charset: str = "utf-8"):
    """
    Low-level lexical inspection of the first statement in `source`.

    Returns decoded values only (strings, lists of strings, atoms). With
    mode 1 the first value is returned on its own; with mode 0 every value
    up to the end of the statement is returned as a list.
    """
    if mode not in (0, 1):
        raise ValueError(f"tokenize mode must be 0 or 1, got {mode!r}")
    if isinstance(source, bytes):
        source = source.decode(charset)

    values = []
    for token in Lexer(source, charset=charset).tokenize():
        if token.type in STATEMENT_END:
            break
        if token.type in VALUE_TYPES:
            values.append(token.value)
            if mode == 1:
                return token.value

    if mode == 1:
        return None
    return values


def read_script(filepath: str, charset: str = "utf-8") -> str:
    """Read a script file, falling back to latin-1 when the charset does not fit."""
    for encoding in [charset, 'utf-8-sig', 'latin-1']:
        try:
            with open(filepath, 'r', encoding=encoding, newline='') as f:
                return f.read()
        except UnicodeDecodeError:
            continue
    raise SieveSyntaxError(f"Cannot decode {filepath}")


def tokenize_file(filepath: str, charset: str = "utf-8", **kwargs) -> List[Token]:
    """Tokenize a file and return all tokens."""
    source = read_script(filepath, charset)
    lexer = Lexer(source, filename=filepath, charset=charset)
    return lexer.tokenize_all(**kwargs)
