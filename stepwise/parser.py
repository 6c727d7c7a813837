"""
Expression parser for STEPWISE.

Turns learner input into an expression tree. This is the only place
where tree nodes are created from text.

Accepted syntax:
    3, -3                   integers
    1/3, \\frac{1}{3}        fractions (a number, "/", a number)
    2 1/3, 2\\frac{1}{3}     mixed numbers (whole number followed by a fraction)
    + - * /                 binary operators, usual precedence
    \\cdot \\times ×          aliases for *
    \\div ÷ :                aliases for /
    -x, +x                  unary signs
    ( ), \\left( \\right)     parentheses

A number followed by "/" and another number is always a fraction literal,
so "6/3" is the fraction six thirds; integer division is written "6 : 3".

parse() never raises on bad input. It returns a ParseFailure, which is
falsy, so callers can write:

    if tree := parse(text):
        ...
    else:
        print(tree.code)
"""

import logging
import re
from typing import List, Optional, Tuple, Union

from .expression import (
    Node, Integer, Fraction, MixedNumber, BinaryOp, UnaryOp, Group,
    INTEGER, FRACTION, gcd,
)

logger = logging.getLogger(__name__)

# Token types
NUMBER = "NUMBER"
OP = "OP"
LPAREN = "LPAREN"
RPAREN = "RPAREN"
LBRACE = "LBRACE"
RBRACE = "RBRACE"
COMMAND = "COMMAND"

_OPERATOR_ALIASES = {
    "+": "+", "-": "-", "*": "*", "/": "/",
    "×": "*", "·": "*", "÷": "/", ":": "/",
    "−": "-",
}

_COMMAND_OPERATORS = {"cdot": "*", "times": "*", "div": "/"}

_NUMBER_RE = re.compile(r"\d+(?:\.\d+)?")
_COMMAND_RE = re.compile(r"\\([A-Za-z]+)")


class ParseFailure:
    """
    Result of a failed parse.

    ParseFailure is falsy, so it can stand in for a tree in conditionals.

    Attributes:
        code: Machine-readable reason, e.g. "zero-denominator".
        message: Human-readable description.
        position: Character offset in the input, when known.
    """

    __slots__ = ("code", "message", "position")

    def __init__(self, code: str, message: str, position: Optional[int] = None):
        self.code = code
        self.message = message
        self.position = position

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        where = f" at {self.position}" if self.position is not None else ""
        return f"ParseFailure({self.code}{where}: {self.message})"

    def __eq__(self, other):
        if isinstance(other, ParseFailure):
            return (self.code, self.position) == (other.code, other.position)
        return False

    def to_dict(self):
        return {"code": self.code, "message": self.message, "position": self.position}


ParseResult = Union[Node, ParseFailure]


class _ParseError(Exception):
    def __init__(self, code: str, message: str, position: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.position = position


class Token:
    __slots__ = ("type", "value", "pos", "raw")

    def __init__(self, type_: str, value: str, pos: int, raw: str = ""):
        self.type = type_
        self.value = value
        self.pos = pos
        self.raw = raw or value

    def __repr__(self) -> str:
        return f"Token({self.type}, {self.value!r}, {self.pos})"


# ============================================================
# Tokenizer
# ============================================================

def tokenize(text: str) -> List[Token]:
    """
    Split text into tokens. Whitespace is dropped.

    Raises:
        _ParseError: On characters or commands outside the grammar.
    """
    tokens: List[Token] = []
    i = 0
    while i < len(text):
        c = text[i]

        if c.isspace():
            i += 1
            continue

        m = _NUMBER_RE.match(text, i)
        if m:
            tokens.append(Token(NUMBER, m.group(0), i))
            i = m.end()
            continue

        if c in _OPERATOR_ALIASES:
            tokens.append(Token(OP, _OPERATOR_ALIASES[c], i, c))
            i += 1
            continue

        if c == "\\":
            m = _COMMAND_RE.match(text, i)
            if not m:
                raise _ParseError("unknown-command", "Expected a command name after '\\'", i)
            name = m.group(1)
            if name in _COMMAND_OPERATORS:
                tokens.append(Token(OP, _COMMAND_OPERATORS[name], i, m.group(0)))
            elif name in ("frac", "left", "right"):
                tokens.append(Token(COMMAND, name, i, m.group(0)))
            else:
                raise _ParseError("unknown-command", f"Unsupported command: \\{name}", i)
            i = m.end()
            continue

        if c == "(":
            tokens.append(Token(LPAREN, c, i))
        elif c == ")":
            tokens.append(Token(RPAREN, c, i))
        elif c == "{":
            tokens.append(Token(LBRACE, c, i))
        elif c == "}":
            tokens.append(Token(RBRACE, c, i))
        else:
            raise _ParseError("invalid-character", f"Unexpected character {c!r}", i)
        i += 1

    return tokens


def _has_fraction_context(tokens: List[Token]) -> bool:
    for tok in tokens:
        if tok.type == OP and tok.raw == "/":
            return True
        if tok.type == COMMAND and tok.value == "frac":
            return True
    return False


# ============================================================
# Decimal normalization
# ============================================================

def decimal_to_fraction(literal: str) -> Tuple[str, str]:
    """
    Convert a terminating decimal literal to a reduced (numerator, denominator).

    Examples:
        "0.5"  -> ("1", "2")
        "1.25" -> ("5", "4")
        "12.5" -> ("25", "2")
    """
    negative = literal.startswith("-")
    digits = literal.lstrip("-")
    whole, _, frac = digits.partition(".")
    numerator = int(whole + frac) if (whole + frac) else 0
    denominator = 10 ** len(frac)
    common = gcd(numerator, denominator) or 1
    numerator //= common
    denominator //= common
    if negative:
        numerator = -numerator
    return str(numerator), str(denominator)


# ============================================================
# Parser
# ============================================================

def _check_size(tok: Token) -> None:
    """Reject literals too long to convert to an int."""
    try:
        int(tok.value.replace(".", ""))
    except ValueError:
        raise _ParseError("number-too-large",
                          f"Number with {len(tok.value)} digits is too large", tok.pos)


class _Parser:
    """Recursive descent over a token list."""

    def __init__(self, tokens: List[Token], text: str, decimals_as_fractions: bool):
        self.tokens = tokens
        self.text = text
        self.pos = 0
        self.decimals_as_fractions = decimals_as_fractions

    # -- token access --

    def peek(self, offset: int = 0) -> Optional[Token]:
        index = self.pos + offset
        return self.tokens[index] if index < len(self.tokens) else None

    def consume(self) -> Token:
        tok = self.peek()
        if tok is None:
            raise _ParseError("unexpected-end", "Unexpected end of input", len(self.text))
        self.pos += 1
        return tok

    def expect(self, type_: str, value: Optional[str] = None) -> Token:
        tok = self.peek()
        if tok is None:
            code = "unbalanced-parentheses" if type_ == RPAREN else "unexpected-end"
            raise _ParseError(code, f"Expected {value or type_} but input ended", len(self.text))
        if tok.type != type_ or (value is not None and tok.value != value):
            code = "unbalanced-parentheses" if type_ == RPAREN else "unexpected-token"
            raise _ParseError(code, f"Expected {value or type_}, found {tok.raw!r}", tok.pos)
        self.pos += 1
        return tok

    def at_op(self, *ops: str) -> bool:
        tok = self.peek()
        return tok is not None and tok.type == OP and tok.value in ops

    # -- grammar --

    def parse(self) -> Node:
        if not self.tokens:
            raise _ParseError("empty-input", "Expression is empty", 0)
        node = self.parse_sum()
        tok = self.peek()
        if tok is not None:
            code = "unbalanced-parentheses" if tok.type == RPAREN else "unexpected-token"
            raise _ParseError(code, f"Unexpected {tok.raw!r}", tok.pos)
        return node

    def parse_sum(self) -> Node:
        left = self.parse_product()
        while self.at_op("+", "-"):
            op = self.consume().value
            right = self.parse_product()
            left = BinaryOp(op, left, right)
        return left

    def parse_product(self) -> Node:
        left = self.parse_unary()
        while self.at_op("*", "/"):
            op = self.consume().value
            right = self.parse_unary()
            left = BinaryOp(op, left, right)
        return left

    def parse_unary(self) -> Node:
        if self.at_op("-"):
            nxt = self.peek(1)
            self.consume()
            if nxt is not None and nxt.type == NUMBER:
                return self.parse_literal(negative=True)
            return UnaryOp("-", self.parse_unary())
        if self.at_op("+"):
            self.consume()
            return UnaryOp("+", self.parse_unary())
        return self.parse_primary()

    def parse_primary(self) -> Node:
        tok = self.peek()
        if tok is None:
            raise _ParseError("unexpected-end", "Unexpected end of input", len(self.text))

        if tok.type == NUMBER:
            return self.parse_literal(negative=False)

        if tok.type == LPAREN:
            self.consume()
            inner = self.parse_sum()
            self.expect(RPAREN)
            return Group(inner)

        if tok.type == COMMAND:
            if tok.value == "left":
                self.consume()
                self.expect(LPAREN)
                inner = self.parse_sum()
                self.expect(COMMAND, "right")
                self.expect(RPAREN)
                return Group(inner)
            if tok.value == "frac":
                return self.parse_frac_command()
            raise _ParseError("unexpected-token", f"Unexpected {tok.raw!r}", tok.pos)

        raise _ParseError("unexpected-token", f"Unexpected {tok.raw!r}", tok.pos)

    def parse_frac_command(self) -> Node:
        start = self.consume()
        self.expect(LBRACE)
        numerator = self.parse_sum()
        self.expect(RBRACE)
        self.expect(LBRACE)
        den_tok = self.peek()
        denominator = self.parse_sum()
        self.expect(RBRACE)

        if denominator.kind == INTEGER and int(denominator.value) == 0:
            raise _ParseError("zero-denominator", "Denominator is zero",
                              den_tok.pos if den_tok else start.pos)
        if (numerator.kind == INTEGER and denominator.kind == INTEGER
                and not denominator.value.startswith("-")):
            return Fraction(numerator.value, denominator.value)
        return BinaryOp("/", numerator, denominator)

    def number_value(self, tok: Token, negative: bool) -> str:
        """The literal text of a NUMBER token, rejecting decimals we cannot place."""
        if "." in tok.value:
            raise _ParseError("unsupported-decimal",
                              f"Decimal {tok.value} is only accepted next to fractions", tok.pos)
        _check_size(tok)
        return ("-" if negative else "") + tok.value

    def parse_literal(self, negative: bool) -> Node:
        tok = self.consume()

        if "." in tok.value:
            if not self.decimals_as_fractions or self.at_op("/") and self._slash_is_literal():
                raise _ParseError("unsupported-decimal",
                                  f"Decimal {tok.value} is only accepted next to fractions", tok.pos)
            _check_size(tok)
            numerator, denominator = decimal_to_fraction(("-" if negative else "") + tok.value)
            logger.debug("Normalized decimal %s to %s/%s", tok.value, numerator, denominator)
            if denominator == "1":
                return Integer(numerator)
            return Fraction(numerator, denominator)

        value = self.number_value(tok, negative)

        # a/b fraction literal
        if self.at_op("/") and self._slash_is_literal():
            return self.finish_fraction(value)

        # whole number followed by a fraction: mixed number
        nxt = self.peek()
        if nxt is not None and nxt.type == NUMBER:
            nxt2 = self.peek(1)
            if nxt2 is not None and nxt2.type == OP and nxt2.raw == "/":
                num_tok = self.consume()
                numerator = self.number_value(num_tok, False)
                self.consume()
                den_tok = self.expect(NUMBER)
                denominator = self.checked_denominator(den_tok)
                return MixedNumber(value, numerator, denominator)
            raise _ParseError("unexpected-token", f"Unexpected number {nxt.value}", nxt.pos)
        if nxt is not None and nxt.type == COMMAND and nxt.value == "frac":
            inner = self.parse_frac_command()
            if inner.kind != FRACTION or inner.numerator.startswith("-"):
                raise _ParseError("unexpected-token",
                                  "Mixed number needs a plain fraction part", nxt.pos)
            return MixedNumber(value, inner.numerator, inner.denominator)

        return Integer(value)

    def _slash_is_literal(self) -> bool:
        """True when the "/" at the cursor sits between two plain numbers."""
        slash = self.peek()
        after = self.peek(1)
        return (slash is not None and slash.raw == "/"
                and after is not None and after.type == NUMBER)

    def finish_fraction(self, numerator: str) -> Node:
        self.consume()  # "/"
        den_tok = self.expect(NUMBER)
        denominator = self.checked_denominator(den_tok)
        return Fraction(numerator, denominator)

    def checked_denominator(self, tok: Token) -> str:
        value = self.number_value(tok, False)
        if int(value) == 0:
            raise _ParseError("zero-denominator", "Denominator is zero", tok.pos)
        return value


def parse(text: str) -> ParseResult:
    """
    Parse text into an expression tree.

    Returns:
        The root node, or a (falsy) ParseFailure describing the problem.

    Examples:
        parse("1/3 + 2/5")  -> BinaryOp("+", Fraction("1", "3"), Fraction("2", "5"))
        parse("2 1/3")      -> MixedNumber("2", "1", "3")
        parse("1/0")        -> ParseFailure(zero-denominator ...)
    """
    if text is None:
        return ParseFailure("empty-input", "Expression is empty", 0)
    try:
        tokens = tokenize(text)
        parser = _Parser(tokens, text, decimals_as_fractions=_has_fraction_context(tokens))
        return parser.parse()
    except _ParseError as e:
        logger.debug("Parse failed for %r: %s (%s)", text, e.message, e.code)
        return ParseFailure(e.code, e.message, e.position)
    except RecursionError:
        logger.debug("Parse failed for %r: nesting too deep", text[:40])
        return ParseFailure("nesting-too-deep", "Expression is nested too deeply", 0)


def parse_or_raise(text: str) -> Node:
    """
    Parse text, raising ValueError on failure.

    Convenience for tests and scripts where bad input is a bug.
    """
    result = parse(text)
    if not result:
        raise ValueError(f"Could not parse {text!r}: {result.message} ({result.code})")
    return result
