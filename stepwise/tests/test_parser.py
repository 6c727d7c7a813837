"""Tests for the expression parser."""

import sys

import pytest
from stepwise import (
    parse, parse_or_raise, serialize, ParseFailure,
    Integer, Fraction, MixedNumber, BinaryOp, UnaryOp, Group,
)
from stepwise.parser import decimal_to_fraction

NEEDS_DIGIT_LIMIT = pytest.mark.skipif(
    not hasattr(sys, "get_int_max_str_digits"),
    reason="int conversion has no digit limit on this Python",
)


class TestLiterals:
    """Tests for numeric literals."""

    def test_integer(self):
        """Plain integers parse to Integer nodes."""
        assert parse("42") == Integer("42")

    def test_fraction(self):
        """a/b between two numbers is a fraction literal."""
        assert parse("1/3") == Fraction("1", "3")

    def test_latex_fraction(self):
        """\\frac{a}{b} is the same fraction literal."""
        assert parse("\\frac{1}{3}") == Fraction("1", "3")

    def test_mixed_number(self):
        """A whole number followed by a fraction is a mixed number."""
        assert parse("2 1/3") == MixedNumber("2", "1", "3")

    def test_mixed_number_latex(self):
        """Whole number followed by \\frac is a mixed number."""
        assert parse("2\\frac{1}{3}") == MixedNumber("2", "1", "3")

    def test_negative_literal_folds_sign(self):
        """Unary minus directly before a number becomes part of the literal."""
        assert parse("-3") == Integer("-3")
        assert parse("-1/2") == Fraction("-1", "2")

    def test_literal_keeps_text(self):
        """Literals keep the digits as typed (no reduction)."""
        assert parse("2/4") == Fraction("2", "4")


class TestOperators:
    """Tests for operators and precedence."""

    def test_addition(self):
        """Binary + between fractions."""
        assert parse("1/3 + 2/5") == BinaryOp("+", Fraction("1", "3"), Fraction("2", "5"))

    def test_precedence(self):
        """* binds tighter than +."""
        tree = parse("1 + 2 * 3")
        assert tree == BinaryOp("+", Integer("1"), BinaryOp("*", Integer("2"), Integer("3")))

    def test_left_associative(self):
        """Operators of equal precedence group to the left."""
        tree = parse("1 - 2 - 3")
        assert tree == BinaryOp("-", BinaryOp("-", Integer("1"), Integer("2")), Integer("3"))

    def test_division_aliases(self):
        """:, \\div and ÷ all mean division."""
        expected = BinaryOp("/", Integer("6"), Integer("3"))
        assert parse("6 : 3") == expected
        assert parse("6 \\div 3") == expected
        assert parse("6 ÷ 3") == expected

    def test_multiplication_aliases(self):
        """\\cdot, \\times and × all mean multiplication."""
        expected = BinaryOp("*", Integer("2"), Integer("3"))
        assert parse("2 \\cdot 3") == expected
        assert parse("2 \\times 3") == expected
        assert parse("2 × 3") == expected

    def test_slash_after_fraction_is_division(self):
        """A / that is not between two plain numbers is division."""
        tree = parse("1/2 / 3/4")
        assert tree == BinaryOp("/", Fraction("1", "2"), Fraction("3", "4"))

    def test_slash_after_group_is_division(self):
        """(6)/3 divides a group by an integer."""
        assert parse("(6)/3") == BinaryOp("/", Group(Integer("6")), Integer("3"))

    def test_unary_minus_before_group(self):
        """Unary minus before anything but a number builds a UnaryOp."""
        assert parse("-(1 + 2)") == UnaryOp("-", Group(BinaryOp("+", Integer("1"), Integer("2"))))

    def test_unary_plus(self):
        """Unary plus is kept as a node."""
        assert parse("+3") == UnaryOp("+", Integer("3"))

    def test_double_minus(self):
        """3 - -2 subtracts a negative literal."""
        assert parse("3 - -2") == BinaryOp("-", Integer("3"), Integer("-2"))

    def test_parentheses(self):
        """Parentheses are kept as Group nodes."""
        tree = parse("(1 + 2) * 3")
        assert tree == BinaryOp("*", Group(BinaryOp("+", Integer("1"), Integer("2"))), Integer("3"))

    def test_latex_parentheses(self):
        """\\left( ... \\right) works like ( ... )."""
        assert parse("\\left(1 + 2\\right)") == parse("(1 + 2)")

    def test_whitespace_insignificant(self):
        """Whitespace does not change the tree."""
        assert parse("1/3+2/5") == parse("  1/3   +   2/5 ")


class TestFailures:
    """Tests for parse failures."""

    @pytest.mark.parametrize("text,code", [
        ("", "empty-input"),
        ("   ", "empty-input"),
        ("1/0", "zero-denominator"),
        ("\\frac{3}{0}", "zero-denominator"),
        ("2 1/0", "zero-denominator"),
        ("(1 + 2", "unbalanced-parentheses"),
        ("1 + 2)", "unbalanced-parentheses"),
        ("1 +", "unexpected-end"),
        ("1 + * 2", "unexpected-token"),
        ("3 4", "unexpected-token"),
        ("x + 1", "invalid-character"),
        ("\\sqrt{4}", "unknown-command"),
        ("0.5 + 1", "unsupported-decimal"),
        pytest.param("(" * 2000 + "1" + ")" * 2000, "nesting-too-deep", id="deep-nesting"),
        pytest.param("1/" + "1" * 5000, "number-too-large", id="huge-denominator",
                     marks=NEEDS_DIGIT_LIMIT),
        pytest.param("1" * 5000 + " + 1", "number-too-large", id="huge-integer",
                     marks=NEEDS_DIGIT_LIMIT),
    ])
    def test_failure_codes(self, text, code):
        """Each kind of bad input reports its own code."""
        result = parse(text)
        assert isinstance(result, ParseFailure)
        assert result.code == code

    def test_failure_is_falsy(self):
        """ParseFailure can be used in conditionals."""
        assert not parse("1/0")

    def test_failure_position(self):
        """Failures carry the offset of the problem."""
        result = parse("1 + $")
        assert result.position == 4

    def test_parse_never_raises(self):
        """Garbage input returns a failure instead of raising."""
        for text in ["((((", "}{", "\\", "1//2", "::"]:
            assert not parse(text)

    def test_parse_or_raise(self):
        """parse_or_raise turns failures into ValueError."""
        with pytest.raises(ValueError, match="zero-denominator"):
            parse_or_raise("1/0")


class TestDecimals:
    """Tests for decimals next to fractions."""

    def test_decimal_with_fraction(self):
        """A decimal next to a fraction becomes a reduced fraction."""
        assert parse("0.5 + 1/4") == BinaryOp("+", Fraction("1", "2"), Fraction("1", "4"))

    def test_decimal_with_latex_fraction(self):
        """\\frac also enables decimal conversion."""
        assert parse("1.25 + \\frac{1}{4}") == BinaryOp("+", Fraction("5", "4"), Fraction("1", "4"))

    def test_negative_decimal(self):
        """The sign is carried into the numerator."""
        assert parse("-0.5 + 1/4").left == Fraction("-1", "2")

    def test_whole_decimal_becomes_integer(self):
        """2.0 next to a fraction is the integer 2."""
        assert parse("2.0 + 1/4").left == Integer("2")

    def test_decimal_alone_rejected(self):
        """Without a fraction in sight, decimals are not guessed."""
        assert parse("0.5").code == "unsupported-decimal"

    def test_decimal_in_fraction_rejected(self):
        """A decimal cannot be a numerator or denominator."""
        assert parse("1/2.5").code == "unsupported-decimal"

    def test_decimal_to_fraction(self):
        """Terminating decimals convert exactly."""
        assert decimal_to_fraction("0.5") == ("1", "2")
        assert decimal_to_fraction("12.5") == ("25", "2")
        assert decimal_to_fraction("0.125") == ("1", "8")


class TestRoundTrip:
    """serialize(parse(text)) says the same thing as text."""

    @pytest.mark.parametrize("text", [
        "3",
        "1/3 + 2/5",
        "2 1/3 - 1/3",
        "1 + 2 * 3",
        "(1 + 2) * 3",
        "1 - (2 - 3)",
        "6 : 3",
        "-(1 + 2)",
        "3 - -2",
        "+3",
        "1/2 : 3/4 * 2",
    ])
    def test_round_trip(self, text):
        """Serializing and reparsing gives the same tree."""
        tree = parse(text)
        assert tree
        assert parse(serialize(tree)) == tree

    def test_serialize_forms(self):
        """Serialized text uses spaced operators and : for division."""
        assert serialize(parse("1/3+2/5")) == "1/3 + 2/5"
        assert serialize(parse("6\\div 3")) == "6 : 3"
        assert serialize(parse("\\frac{1}{3}")) == "1/3"

    def test_deterministic(self):
        """Identical text always gives identical trees."""
        assert parse("1/3 + 2/5 * (3 - 1)") == parse("1/3 + 2/5 * (3 - 1)")
