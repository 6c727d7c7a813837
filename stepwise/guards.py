"""
Guard predicates for invariant rules.

A guard decides whether a rule applies at a place in the tree. Guards are a
closed set of five kinds, each read from the "guard" object of a rule in a
course table:

    {"kind": "operand", "node": "fraction", "condition": "reducible"}
    {"kind": "binary", "op": "+", "left": "fraction", "right": "fraction",
     "denominators": "same"}
    {"kind": "support", "ops": ["+", "-"]}
    {"kind": "unary", "op": "-", "operand": "literal"}
    {"kind": "group", "content": "literal"}

Scopes:
    operand, unary and group guards are tested at the anchor (the node the
    learner selected). binary and support guards are tested at the window
    (the binary operation around the anchor).

Parentheses are transparent: guards look through groups, except the group
guard, which is about the parentheses themselves.

Guards never raise. A guard that does not apply returns None from match().
"""

from typing import Any, Dict, List, Optional

from .expression import (
    Node, Path, get_node_at, unwrap_groups, unwrap_path,
    INTEGER, FRACTION, MIXED, BINARY, UNARY, GROUP, LITERAL_KINDS,
    BINARY_OPERATORS, UNARY_OPERATORS, gcd,
)

ANCHOR = "anchor"
WINDOW = "window"

DIRECT = "direct"
SUPPORT = "support"

# Operand kinds accepted by "left", "right", "operand" and "content" fields
OPERAND_KINDS = ("integer", "fraction", "mixed", "literal", "any")

OPERAND_CONDITIONS = ("reducible", "whole", "unit-denominator")

DENOMINATOR_MODES = ("any", "same", "different")


def _kind_matches(node: Node, wanted: str) -> bool:
    if wanted == "any":
        return True
    if wanted == "literal":
        return node.kind in LITERAL_KINDS
    return node.kind == wanted


def _to_int(text: str) -> Optional[int]:
    try:
        return int(text)
    except (TypeError, ValueError):
        return None


# ============================================================
# Guard kinds
# ============================================================

class Guard:
    """Base class for guards."""

    kind = ""
    scope = ANCHOR
    category = DIRECT

    def test(self, node: Node) -> bool:
        """Test a node with enclosing groups already removed."""
        raise NotImplementedError

    def match(self, tree: Node, path: Path) -> Optional[Path]:
        """
        Test the node at path.

        Returns:
            The candidate's target path, or None when the guard does not apply.
        """
        node = get_node_at(tree, path)
        if node is None:
            return None
        return path if self.test(unwrap_groups(node)) else None

    def to_dict(self) -> Dict[str, Any]:
        raise NotImplementedError

    def __eq__(self, other):
        if isinstance(other, Guard):
            return self.to_dict() == other.to_dict()
        return False

    def __hash__(self):
        return hash(repr(self))

    def __repr__(self) -> str:
        fields = ", ".join(f"{k}={v!r}" for k, v in self.to_dict().items() if k != "kind")
        return f"{type(self).__name__}({fields})"


class OperandGuard(Guard):
    """A single literal of the given kind, optionally with a condition.

    Conditions:
        reducible         numerator and denominator share a factor > 1
        whole             denominator divides numerator (e.g. 6/3)
        unit-denominator  denominator is exactly 1
    """

    kind = "operand"
    scope = ANCHOR

    def __init__(self, node: str, condition: Optional[str] = None):
        self.node = node
        self.condition = condition

    def test(self, node: Node) -> bool:
        if not _kind_matches(node, self.node):
            return False
        if self.condition is None:
            return True
        if node.kind not in (FRACTION, MIXED):
            return False
        num = _to_int(node.numerator)
        den = _to_int(node.denominator)
        if num is None or not den:
            return False
        if self.condition == "reducible":
            return gcd(num, den) > 1
        if self.condition == "whole":
            return num % den == 0
        if self.condition == "unit-denominator":
            return den == 1
        return False

    def to_dict(self):
        d = {"kind": self.kind, "node": self.node}
        if self.condition is not None:
            d["condition"] = self.condition
        return d


class BinaryGuard(Guard):
    """A binary operation with operands of the given kinds.

    denominators compares the literal denominator strings of two fraction
    operands: "same" means textually equal, so 1/2 and 2/4 differ.
    divisible applies to integer division: True when the right operand
    divides the left, False when it does not. Division by zero matches
    neither.
    """

    kind = "binary"
    scope = WINDOW

    def __init__(self, op: str, left: str = "any", right: str = "any",
                 denominators: str = "any", divisible: Optional[bool] = None):
        self.op = op
        self.left = left
        self.right = right
        self.denominators = denominators
        self.divisible = divisible

    def test(self, node: Node) -> bool:
        if node.kind != BINARY or node.op != self.op:
            return False
        left = unwrap_groups(node.left)
        right = unwrap_groups(node.right)
        if not (_kind_matches(left, self.left) and _kind_matches(right, self.right)):
            return False

        if self.denominators != "any":
            if left.kind not in (FRACTION, MIXED) or right.kind not in (FRACTION, MIXED):
                return False
            same = left.denominator == right.denominator
            if same != (self.denominators == "same"):
                return False

        if self.divisible is not None:
            if left.kind != INTEGER or right.kind != INTEGER:
                return False
            a, b = _to_int(left.value), _to_int(right.value)
            if a is None or not b:
                return False
            if (a % b == 0) != self.divisible:
                return False
        return True

    def to_dict(self):
        d = {"kind": self.kind, "op": self.op, "left": self.left, "right": self.right}
        if self.denominators != "any":
            d["denominators"] = self.denominators
        if self.divisible is not None:
            d["divisible"] = self.divisible
        return d


class SupportGuard(Guard):
    """A binary operation mixing one integer and one fraction.

    Produces a preparatory candidate that targets the integer operand, so
    the learner can normalize it to a fraction before operating.
    """

    kind = "support"
    scope = WINDOW
    category = SUPPORT

    def __init__(self, ops: Optional[List[str]] = None):
        self.ops = list(ops) if ops else list(BINARY_OPERATORS)

    def integer_side(self, node: Node) -> Optional[int]:
        """Index of the integer operand (0 or 1), or None."""
        if node.kind != BINARY or node.op not in self.ops:
            return None
        kinds = (unwrap_groups(node.left).kind, unwrap_groups(node.right).kind)
        if kinds == (INTEGER, FRACTION):
            return 0
        if kinds == (FRACTION, INTEGER):
            return 1
        return None

    def test(self, node: Node) -> bool:
        return self.integer_side(node) is not None

    def match(self, tree: Node, path: Path) -> Optional[Path]:
        inner_path = unwrap_path(tree, path)
        node = get_node_at(tree, inner_path)
        if node is None:
            return None
        side = self.integer_side(node)
        if side is None:
            return None
        return inner_path + (side,)

    def to_dict(self):
        return {"kind": self.kind, "ops": list(self.ops)}


class UnaryGuard(Guard):
    """A unary sign applied to an operand of the given kind."""

    kind = "unary"
    scope = ANCHOR

    def __init__(self, op: str, operand: str = "any"):
        self.op = op
        self.operand = operand

    def test(self, node: Node) -> bool:
        if node.kind != UNARY or node.op != self.op:
            return False
        return _kind_matches(unwrap_groups(node.operand), self.operand)

    def to_dict(self):
        return {"kind": self.kind, "op": self.op, "operand": self.operand}


class GroupGuard(Guard):
    """Parentheses around content of the given kind."""

    kind = "group"
    scope = ANCHOR

    def __init__(self, content: str = "literal"):
        self.content = content

    def test(self, node: Node) -> bool:
        if node.kind != GROUP:
            return False
        return _kind_matches(unwrap_groups(node.child), self.content)

    def match(self, tree: Node, path: Path) -> Optional[Path]:
        node = get_node_at(tree, path)
        if node is None:
            return None
        return path if self.test(node) else None

    def to_dict(self):
        return {"kind": self.kind, "content": self.content}


GUARD_KINDS = {
    "operand": OperandGuard,
    "binary": BinaryGuard,
    "support": SupportGuard,
    "unary": UnaryGuard,
    "group": GroupGuard,
}


# ============================================================
# Loading
# ============================================================

def _require_choice(data: Dict, key: str, choices, default=None, required=False):
    if key not in data:
        if required:
            raise ValueError(f"missing '{key}'")
        return default
    value = data[key]
    if value not in choices:
        raise ValueError(f"'{key}' must be one of {', '.join(map(str, choices))}, got {value!r}")
    return value


def guard_from_dict(data: Any) -> Guard:
    """
    Build a guard from its JSON form.

    Raises:
        ValueError: If the guard kind is unknown or a field is invalid.
    """
    if not isinstance(data, dict):
        raise ValueError("guard must be an object")
    kind = data.get("kind")
    if kind not in GUARD_KINDS:
        raise ValueError(f"unknown guard kind {kind!r}")

    if kind == "operand":
        node = _require_choice(data, "node", ("integer", "fraction", "mixed", "literal"),
                               required=True)
        condition = _require_choice(data, "condition", OPERAND_CONDITIONS)
        return OperandGuard(node, condition)

    if kind == "binary":
        op = _require_choice(data, "op", BINARY_OPERATORS, required=True)
        left = _require_choice(data, "left", OPERAND_KINDS, default="any")
        right = _require_choice(data, "right", OPERAND_KINDS, default="any")
        denominators = _require_choice(data, "denominators", DENOMINATOR_MODES, default="any")
        divisible = data.get("divisible")
        if divisible is not None and not isinstance(divisible, bool):
            raise ValueError("'divisible' must be true, false or absent")
        return BinaryGuard(op, left, right, denominators, divisible)

    if kind == "support":
        ops = data.get("ops", list(BINARY_OPERATORS))
        if not isinstance(ops, list) or not ops or any(op not in BINARY_OPERATORS for op in ops):
            raise ValueError("'ops' must be a non-empty list of binary operators")
        return SupportGuard(ops)

    if kind == "unary":
        op = _require_choice(data, "op", UNARY_OPERATORS, required=True)
        operand = _require_choice(data, "operand", OPERAND_KINDS, default="any")
        return UnaryGuard(op, operand)

    content = _require_choice(data, "content", OPERAND_KINDS, default="literal")
    return GroupGuard(content)
