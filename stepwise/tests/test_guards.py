"""Tests for rule guards."""

import pytest
from stepwise import (
    parse, guard_from_dict,
    OperandGuard, BinaryGuard, SupportGuard, UnaryGuard, GroupGuard,
)
from stepwise.guards import ANCHOR, WINDOW, SUPPORT


class TestGuardLoading:
    """Tests for building guards from JSON."""

    def test_binary_from_dict(self):
        """Binary guard fields are read with defaults."""
        guard = guard_from_dict({"kind": "binary", "op": "+", "left": "fraction"})
        assert isinstance(guard, BinaryGuard)
        assert guard.left == "fraction"
        assert guard.right == "any"
        assert guard.scope == WINDOW

    def test_support_default_ops(self):
        """Support guards cover every operator unless restricted."""
        guard = guard_from_dict({"kind": "support"})
        assert guard.ops == ["+", "-", "*", "/"]
        assert guard.category == SUPPORT

    def test_to_dict_round_trip(self):
        """Guards convert back to the same JSON."""
        data = {"kind": "binary", "op": "-", "left": "fraction", "right": "fraction",
                "denominators": "same"}
        assert guard_from_dict(data).to_dict() == data

    @pytest.mark.parametrize("data", [
        None,
        {"kind": "telepathy"},
        {"kind": "binary"},
        {"kind": "binary", "op": "^"},
        {"kind": "binary", "op": "+", "left": "decimal"},
        {"kind": "binary", "op": "/", "divisible": "yes"},
        {"kind": "operand", "node": "fraction", "condition": "pretty"},
        {"kind": "support", "ops": []},
        {"kind": "unary", "op": "*"},
    ])
    def test_invalid_guards(self, data):
        """Malformed guards raise ValueError."""
        with pytest.raises(ValueError):
            guard_from_dict(data)


class TestGuardMatching:
    """Tests for guard evaluation."""

    def test_operand_reducible(self):
        """Reducible fractions match; lowest terms do not."""
        guard = OperandGuard("fraction", "reducible")
        assert guard.match(parse("2/4"), ()) == ()
        assert guard.match(parse("1/3"), ()) is None

    def test_operand_whole(self):
        """Whole fractions have a denominator dividing the numerator."""
        guard = OperandGuard("fraction", "whole")
        assert guard.match(parse("6/3"), ()) == ()
        assert guard.match(parse("5/3"), ()) is None

    def test_operand_sees_through_groups(self):
        """Parentheses do not hide an operand."""
        assert OperandGuard("mixed").match(parse("(2 1/3)"), ()) == ()

    def test_binary_same_denominator_is_literal(self):
        """Same-denominator compares the written denominators."""
        guard = BinaryGuard("+", "fraction", "fraction", denominators="same")
        assert guard.match(parse("1/3 + 2/3"), ()) == ()
        assert guard.match(parse("1/2 + 2/4"), ()) is None

    def test_binary_different_denominator(self):
        guard = BinaryGuard("+", "fraction", "fraction", denominators="different")
        assert guard.match(parse("1/3 + 2/5"), ()) == ()
        assert guard.match(parse("1/3 + 2/3"), ()) is None

    def test_binary_divisible(self):
        """Exact integer division is told apart from division with remainder."""
        exact = BinaryGuard("/", "integer", "integer", divisible=True)
        inexact = BinaryGuard("/", "integer", "integer", divisible=False)
        assert exact.match(parse("6 : 3"), ()) == ()
        assert inexact.match(parse("6 : 3"), ()) is None
        assert inexact.match(parse("7 : 3"), ()) == ()

    def test_division_by_zero_matches_nothing(self):
        """Neither divisible mode accepts a zero divisor."""
        tree = parse("6 : 0")
        assert BinaryGuard("/", "integer", "integer", divisible=True).match(tree, ()) is None
        assert BinaryGuard("/", "integer", "integer", divisible=False).match(tree, ()) is None

    def test_binary_operand_groups(self):
        """Operands in parentheses still count."""
        guard = BinaryGuard("+", "integer", "integer")
        assert guard.match(parse("(1) + 2"), ()) == ()

    def test_support_targets_integer(self):
        """Support guards point at the integer side."""
        guard = SupportGuard()
        assert guard.match(parse("3 + 2/5"), ()) == (0,)
        assert guard.match(parse("2/5 * 3"), ()) == (1,)
        assert guard.match(parse("1/2 + 2/5"), ()) is None

    def test_support_restricted_ops(self):
        guard = SupportGuard(["+"])
        assert guard.match(parse("3 - 2/5"), ()) is None

    def test_unary(self):
        """Unary guards test sign and operand."""
        assert UnaryGuard("-", "literal").match(parse("-(3)"), ()) == ()
        assert UnaryGuard("-", "literal").match(parse("-(1 + 2)"), ()) is None
        assert UnaryGuard("+").match(parse("+3"), ()) == ()

    def test_group(self):
        """Group guards test the parentheses themselves."""
        guard = GroupGuard("literal")
        assert guard.scope == ANCHOR
        assert guard.match(parse("(3)"), ()) == ()
        assert guard.match(parse("(1 + 2)"), ()) is None
        assert guard.match(parse("3"), ()) is None

    def test_missing_path(self):
        """A path outside the tree never matches."""
        assert OperandGuard("integer").match(parse("3"), (4,)) is None
        assert SupportGuard().match(parse("3"), (0, 1)) is None
