"""
The PL lexer: turns source text into a flat list of tokens.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, List

from plang.plang_datatypes import PLSyntaxError


class TokenType(Enum):
    # Literals
    NUMBER = 'NUMBER'
    STRING = 'STRING'
    BOOLEAN = 'BOOLEAN'
    NULL = 'NULL'
    IDENTIFIER = 'IDENTIFIER'

    # Arithmetic
    PLUS = 'PLUS'
    MINUS = 'MINUS'
    MULTIPLY = 'MULTIPLY'
    DIVIDE = 'DIVIDE'
    MODULO = 'MODULO'
    POWER = 'POWER'

    # Comparison
    EQUAL = 'EQUAL'
    NOT_EQUAL = 'NOT_EQUAL'
    LESS_THAN = 'LESS_THAN'
    GREATER_THAN = 'GREATER_THAN'
    LESS_EQUAL = 'LESS_EQUAL'
    GREATER_EQUAL = 'GREATER_EQUAL'

    # Logical
    AND = 'AND'
    OR = 'OR'
    NOT = 'NOT'

    # Assignment
    ASSIGN = 'ASSIGN'
    PLUS_ASSIGN = 'PLUS_ASSIGN'
    MINUS_ASSIGN = 'MINUS_ASSIGN'

    # Delimiters
    LPAREN = 'LPAREN'
    RPAREN = 'RPAREN'
    LBRACE = 'LBRACE'
    RBRACE = 'RBRACE'
    LBRACKET = 'LBRACKET'
    RBRACKET = 'RBRACKET'
    COMMA = 'COMMA'
    DOT = 'DOT'
    COLON = 'COLON'
    SEMICOLON = 'SEMICOLON'
    ARROW = 'ARROW'

    # Keywords
    IF = 'IF'
    ELSE = 'ELSE'
    WHILE = 'WHILE'
    FOR = 'FOR'
    FUNCTION = 'FUNCTION'
    RETURN = 'RETURN'
    VAR = 'VAR'
    CONST = 'CONST'
    BREAK = 'BREAK'
    CONTINUE = 'CONTINUE'
    SWITCH = 'SWITCH'
    CASE = 'CASE'
    DEFAULT = 'DEFAULT'

    # Special
    NEWLINE = 'NEWLINE'
    EOF = 'EOF'


KEYWORDS = {
    'if': TokenType.IF,
    'else': TokenType.ELSE,
    'while': TokenType.WHILE,
    'for': TokenType.FOR,
    'function': TokenType.FUNCTION,
    'return': TokenType.RETURN,
    'var': TokenType.VAR,
    'const': TokenType.CONST,
    'break': TokenType.BREAK,
    'continue': TokenType.CONTINUE,
    'switch': TokenType.SWITCH,
    'case': TokenType.CASE,
    'default': TokenType.DEFAULT,
    'and': TokenType.AND,
    'or': TokenType.OR,
    'not': TokenType.NOT,
    'true': TokenType.BOOLEAN,
    'false': TokenType.BOOLEAN,
    'null': TokenType.NULL,
}

KEYWORD_TYPES = frozenset(KEYWORDS.values()) - {TokenType.BOOLEAN, TokenType.NULL}

TWO_CHAR_TOKENS = {
    '==': TokenType.EQUAL,
    '!=': TokenType.NOT_EQUAL,
    '<=': TokenType.LESS_EQUAL,
    '>=': TokenType.GREATER_EQUAL,
    '->': TokenType.ARROW,
    '+=': TokenType.PLUS_ASSIGN,
    '-=': TokenType.MINUS_ASSIGN,
}

SINGLE_CHAR_TOKENS = {
    '+': TokenType.PLUS,
    '-': TokenType.MINUS,
    '*': TokenType.MULTIPLY,
    '/': TokenType.DIVIDE,
    '%': TokenType.MODULO,
    '^': TokenType.POWER,
    '=': TokenType.ASSIGN,
    '<': TokenType.LESS_THAN,
    '>': TokenType.GREATER_THAN,
    '(': TokenType.LPAREN,
    ')': TokenType.RPAREN,
    '{': TokenType.LBRACE,
    '}': TokenType.RBRACE,
    '[': TokenType.LBRACKET,
    ']': TokenType.RBRACKET,
    ',': TokenType.COMMA,
    '.': TokenType.DOT,
    ':': TokenType.COLON,
    ';': TokenType.SEMICOLON,
}

ESCAPES = {
    'n': '\n',
    't': '\t',
    'r': '\r',
    '\\': '\\',
    '"': '"',
    "'": "'",
}


@dataclass(frozen=True)
class Token:
    type: TokenType
    value: Any
    line: int
    column: int

    @property
    def is_keyword(self) -> bool:
        return self.type in KEYWORD_TYPES

    def describe(self) -> str:
        """Short human-readable form used in parser error messages."""
        if self.type is TokenType.EOF:
            return "end of input"
        if self.type is TokenType.NEWLINE:
            return "newline"
        if self.type is TokenType.STRING:
            return f"string {self.value!r}"
        if self.type is TokenType.NUMBER:
            return f"number {self.value:g}"
        return f"'{self.value}'"

    def __repr__(self) -> str:
        return f"Token({self.type.name}, {self.value!r}, {self.line}:{self.column})"


class Lexer:
    """Scans PL source text left to right, tracking line and column."""

    def __init__(self, source: str):
        self.source = source
        self.position = 0
        self.line = 1
        self.column = 1

    def tokenize(self) -> List[Token]:
        tokens: List[Token] = []
        while True:
            self._skip_whitespace_and_comments()
            if self.position >= len(self.source):
                break
            tokens.append(self._next_token())
        tokens.append(Token(TokenType.EOF, None, self.line, self.column))
        return tokens

    def _next_token(self) -> Token:
        char = self.source[self.position]

        if char == '\n':
            token = Token(TokenType.NEWLINE, '\n', self.line, self.column)
            self.position += 1
            self.line += 1
            self.column = 1
            return token

        if char in ('"', "'"):
            return self._read_string()

        if char.isascii() and char.isdigit():
            return self._read_number()

        if self._is_identifier_start(char):
            return self._read_identifier()

        pair = self.source[self.position:self.position + 2]
        if pair in TWO_CHAR_TOKENS:
            token = Token(TWO_CHAR_TOKENS[pair], pair, self.line, self.column)
            self._advance(2)
            return token

        if char in SINGLE_CHAR_TOKENS:
            token = Token(SINGLE_CHAR_TOKENS[char], char, self.line, self.column)
            self._advance(1)
            return token

        raise PLSyntaxError(f"Unexpected character '{char}'", self.line, self.column)

    def _skip_whitespace_and_comments(self):
        src = self.source
        while self.position < len(src):
            char = src[self.position]
            if char in (' ', '\t', '\r'):
                self._advance(1)
            elif char == '/' and self._peek() == '/':
                # Line comment: discard up to (not including) the newline
                while self.position < len(src) and src[self.position] != '\n':
                    self._advance(1)
            else:
                break

    def _read_string(self) -> Token:
        src = self.source
        quote = src[self.position]
        start_line, start_column = self.line, self.column
        self._advance(1)
        chars = []
        while self.position < len(src) and src[self.position] != quote:
            char = src[self.position]
            if char == '\\':
                self._advance(1)
                if self.position >= len(src):
                    break
                escaped = src[self.position]
                chars.append(ESCAPES.get(escaped, escaped))
                if escaped == '\n':
                    self.position += 1
                    self.line += 1
                    self.column = 1
                else:
                    self._advance(1)
                continue
            chars.append(char)
            if char == '\n':
                self.position += 1
                self.line += 1
                self.column = 1
            else:
                self._advance(1)

        if self.position >= len(src):
            raise PLSyntaxError("Unterminated string", start_line, start_column)

        self._advance(1)  # closing quote
        return Token(TokenType.STRING, ''.join(chars), start_line, start_column)

    def _read_number(self) -> Token:
        src = self.source
        start = self.position
        start_line, start_column = self.line, self.column
        self._consume_digits()

        if self._at('.') and self._is_digit_at(self.position + 1):
            self._advance(1)
            self._consume_digits()

        if self._at('e') or self._at('E'):
            offset = 1
            if self.position + 1 < len(src) and src[self.position + 1] in '+-':
                offset = 2
            if self._is_digit_at(self.position + offset):
                self._advance(offset)
                self._consume_digits()

        text = src[start:self.position]
        return Token(TokenType.NUMBER, float(text), start_line, start_column)

    def _read_identifier(self) -> Token:
        src = self.source
        start = self.position
        start_line, start_column = self.line, self.column
        while self.position < len(src) and self._is_identifier_part(src[self.position]):
            self._advance(1)
        text = src[start:self.position]
        lowered = text.lower()
        token_type = KEYWORDS.get(lowered, TokenType.IDENTIFIER)
        if token_type is TokenType.BOOLEAN:
            return Token(token_type, lowered == 'true', start_line, start_column)
        if token_type is TokenType.NULL:
            return Token(token_type, None, start_line, start_column)
        return Token(token_type, text, start_line, start_column)

    # --- Helpers ---

    def _advance(self, n: int):
        self.position += n
        self.column += n

    def _peek(self) -> str:
        if self.position + 1 < len(self.source):
            return self.source[self.position + 1]
        return ''

    def _at(self, char: str) -> bool:
        return self.position < len(self.source) and self.source[self.position] == char

    def _is_digit_at(self, index: int) -> bool:
        return index < len(self.source) and self.source[index].isascii() and self.source[index].isdigit()

    def _consume_digits(self):
        while self._is_digit_at(self.position):
            self._advance(1)

    @staticmethod
    def _is_identifier_start(char: str) -> bool:
        return char == '_' or (char.isascii() and char.isalpha())

    @staticmethod
    def _is_identifier_part(char: str) -> bool:
        return char == '_' or (char.isascii() and char.isalnum())


def tokenize(source: str) -> List[Token]:
    """Tokenize PL source text. Raises PLSyntaxError with line/column on failure."""
    return Lexer(source).tokenize()
