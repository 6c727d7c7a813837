"""
Primitive executors for STEPWISE.

A primitive is one atomic, exact transformation of the node at a path.
Each executor offers:

    validate(tree, path) -> ExecutionResult   can the primitive apply here?
    execute(tree, path)  -> ExecutionResult   apply it, returning a new tree

Executors never modify their input tree and never raise; problems come
back as a failed (falsy) ExecutionResult with an error code:

    >>> from stepwise.parser import parse
    >>> result = EXECUTORS["P.INT_TO_FRAC"].execute(parse("3 + 2/5"), (0,))
    >>> result.new_text
    '3/1 + 2/5'
    >>> bool(EXECUTORS["P.INT_ADD"].execute(parse("1/2"), ()))
    False

Parentheses around the target are looked through: applying P.INT_ADD to
"(1 + 2)" replaces the whole group with "3". Only P.PAREN_DROP works on
the group itself.

All arithmetic is on Python integers, with a hand-written Euclidean
gcd/lcm from stepwise.expression. Signs are kept in the numerator.
"""

import logging
from typing import Callable, Dict, Iterable, Optional

from .errors import ExecutorError
from .expression import (
    Node, Path, Integer, Fraction, BinaryOp, get_node_at, replace_node_at,
    unwrap_groups, serialize, gcd, lcm,
    INTEGER, FRACTION, MIXED, BINARY, UNARY, GROUP, LITERAL_KINDS,
)

logger = logging.getLogger(__name__)

TransformFunc = Callable[[Node], Node]


class ExecutionResult:
    """Outcome of validating or executing a primitive. Falsy on failure."""

    def __init__(self, ok: bool, tree: Optional[Node] = None, error: Optional[str] = None,
                 message: str = ""):
        self.ok = ok
        self.tree = tree
        self.error = error
        self.message = message

    @property
    def new_text(self) -> Optional[str]:
        return serialize(self.tree) if self.ok and self.tree is not None else None

    def __bool__(self) -> bool:
        return self.ok

    def __repr__(self) -> str:
        if self.ok:
            return f"ExecutionResult(ok, {self.new_text!r})"
        return f"ExecutionResult({self.error}: {self.message})"

    def to_dict(self) -> Dict:
        d = {"ok": self.ok}
        if self.ok:
            d["newExpressionText"] = self.new_text
        else:
            d["error"] = self.error
            d["message"] = self.message
        return d


class PrimitiveExecutor:
    """Wraps a transform function with path handling and error capture."""

    def __init__(self, id: str, transform: TransformFunc, look_through_groups: bool = True,
                 description: str = ""):
        self.id = id
        self.transform = transform
        self.look_through_groups = look_through_groups
        self.description = description

    def _apply(self, tree: Node, path: Path) -> Node:
        node = get_node_at(tree, tuple(path))
        if node is None:
            raise ExecutorError("invalid-path", f"No node at {tuple(path)!r}")
        if self.look_through_groups:
            node = unwrap_groups(node)
        return self.transform(node)

    def validate(self, tree: Node, path: Path) -> ExecutionResult:
        try:
            self._apply(tree, path)
        except ExecutorError as e:
            return ExecutionResult(False, error=e.code, message=str(e))
        return ExecutionResult(True, tree)

    def execute(self, tree: Node, path: Path) -> ExecutionResult:
        try:
            replacement = self._apply(tree, path)
            new_tree = replace_node_at(tree, tuple(path), replacement)
        except ExecutorError as e:
            logger.debug("%s failed at %r: %s", self.id, path, e)
            return ExecutionResult(False, error=e.code, message=str(e))
        except KeyError as e:
            return ExecutionResult(False, error="invalid-path", message=str(e))
        return ExecutionResult(True, new_tree)

    def __repr__(self) -> str:
        return f"PrimitiveExecutor({self.id!r})"


EXECUTORS: Dict[str, PrimitiveExecutor] = {}


def primitive(primitive_id: str, look_through_groups: bool = True):
    """Register a transform function as the executor for primitive_id."""
    def decorator(func: TransformFunc) -> TransformFunc:
        EXECUTORS[primitive_id] = PrimitiveExecutor(
            primitive_id, func, look_through_groups, (func.__doc__ or "").strip())
        return func
    return decorator


def run_primitives(tree: Node, path: Path, primitive_ids: Iterable[str],
                   executors: Optional[Dict[str, PrimitiveExecutor]] = None) -> ExecutionResult:
    """
    Apply primitives one after another at the same path.

    Stops at the first failure; the input tree is never changed.
    """
    executors = executors if executors is not None else EXECUTORS
    current = tree
    for primitive_id in primitive_ids:
        executor = executors.get(primitive_id)
        if executor is None:
            return ExecutionResult(False, error="unknown-primitive",
                                   message=f"No executor for {primitive_id}")
        result = executor.execute(current, path)
        if not result:
            return result
        current = result.tree
    return ExecutionResult(True, current)


# ============================================================
# Operand helpers
# ============================================================

def _int(text: str) -> int:
    try:
        return int(text)
    except (TypeError, ValueError):
        if isinstance(text, str) and text.lstrip("-").isdigit():
            raise ExecutorError("number-too-large", f"Integer with {len(text)} digits is too large")
        raise ExecutorError("invalid-literal", f"Not an integer: {text!r}")


def _text(value: int) -> str:
    try:
        return str(value)
    except ValueError:
        raise ExecutorError("number-too-large", "Result is too large to write out")


def _fraction(numerator: int, denominator: int) -> Fraction:
    """Build a fraction with the sign in the numerator."""
    if denominator == 0:
        raise ExecutorError("division-by-zero", "Denominator would be zero")
    if denominator < 0:
        numerator, denominator = -numerator, -denominator
    return Fraction(_text(numerator), _text(denominator))


def _expect(node: Node, kind: str) -> Node:
    if node.kind != kind:
        raise ExecutorError("shape-mismatch", f"Expected {kind}, found {node.kind}")
    return node


def _binary(node: Node, op: str, left_kind: str, right_kind: str):
    """Unpack a binary op with the given operator and operand kinds."""
    _expect(node, BINARY)
    if node.op != op:
        raise ExecutorError("shape-mismatch", f"Expected '{op}', found '{node.op}'")
    left = _expect(unwrap_groups(node.left), left_kind)
    right = _expect(unwrap_groups(node.right), right_kind)
    return left, right


def _fraction_parts(node: Node):
    return _int(node.numerator), _int(node.denominator)


# ============================================================
# Normalization
# ============================================================

@primitive("P.INT_TO_FRAC")
def int_to_frac(node: Node) -> Node:
    """n -> n/1"""
    _expect(node, INTEGER)
    return Fraction(node.value, "1")


@primitive("P.FRAC_TO_INT")
def frac_to_int(node: Node) -> Node:
    """a/b -> a:b when b divides a"""
    num, den = _fraction_parts(_expect(node, FRACTION))
    if den == 0 or num % den != 0:
        raise ExecutorError("not-whole", f"{serialize(node)} is not a whole number")
    return Integer(_text(num // den))


@primitive("P.MIXED_TO_IMPROPER")
def mixed_to_improper(node: Node) -> Node:
    """w n/d -> (w*d + n)/d"""
    _expect(node, MIXED)
    whole = _int(node.whole)
    num, den = _fraction_parts(node)
    magnitude = abs(whole) * den + num
    if node.whole.startswith("-"):
        magnitude = -magnitude
    return _fraction(magnitude, den)


# ============================================================
# Integers
# ============================================================

@primitive("P.INT_ADD")
def int_add(node: Node) -> Node:
    left, right = _binary(node, "+", INTEGER, INTEGER)
    return Integer(_text(_int(left.value) + _int(right.value)))


@primitive("P.INT_SUB")
def int_sub(node: Node) -> Node:
    left, right = _binary(node, "-", INTEGER, INTEGER)
    return Integer(_text(_int(left.value) - _int(right.value)))


@primitive("P.INT_MUL")
def int_mul(node: Node) -> Node:
    left, right = _binary(node, "*", INTEGER, INTEGER)
    return Integer(_text(_int(left.value) * _int(right.value)))


@primitive("P.INT_DIV_EXACT")
def int_div_exact(node: Node) -> Node:
    left, right = _binary(node, "/", INTEGER, INTEGER)
    a, b = _int(left.value), _int(right.value)
    if b == 0:
        raise ExecutorError("division-by-zero", "Division by zero")
    if a % b != 0:
        raise ExecutorError("not-divisible", f"{b} does not divide {a}")
    return Integer(_text(a // b))


@primitive("P.INT_DIV_TO_FRAC")
def int_div_to_frac(node: Node) -> Node:
    """a : b -> a/b"""
    left, right = _binary(node, "/", INTEGER, INTEGER)
    return _fraction(_int(left.value), _int(right.value))


# ============================================================
# Fractions
# ============================================================

def _same_den_combine(node: Node, op: str) -> Node:
    left, right = _binary(node, op, FRACTION, FRACTION)
    a, b = _fraction_parts(left)
    c, d = _fraction_parts(right)
    if b != d:
        raise ExecutorError("denominators-differ",
                            f"Denominators {left.denominator} and {right.denominator} differ")
    numerator = a + c if op == "+" else a - c
    return _fraction(numerator, b)


@primitive("P.FRAC_ADD_SAME_DEN")
def frac_add_same_den(node: Node) -> Node:
    """a/c + b/c -> (a+b)/c"""
    return _same_den_combine(node, "+")


@primitive("P.FRAC_SUB_SAME_DEN")
def frac_sub_same_den(node: Node) -> Node:
    """a/c - b/c -> (a-b)/c"""
    return _same_den_combine(node, "-")


@primitive("P.FRAC_LIFT_TO_LCM")
def frac_lift_to_lcm(node: Node) -> Node:
    """a/b + c/d -> (a*m)/L + (c*n)/L with L = lcm(b, d)"""
    _expect(node, BINARY)
    left = _expect(unwrap_groups(node.left), FRACTION)
    right = _expect(unwrap_groups(node.right), FRACTION)
    a, b = _fraction_parts(left)
    c, d = _fraction_parts(right)
    if b == 0 or d == 0:
        raise ExecutorError("division-by-zero", "Denominator is zero")
    if b == d:
        raise ExecutorError("denominators-equal", "Fractions already share a denominator")
    common = lcm(b, d)
    return BinaryOp(node.op,
                    _fraction(a * (common // b), common),
                    _fraction(c * (common // d), common))


@primitive("P.FRAC_MUL")
def frac_mul(node: Node) -> Node:
    """a/b * c/d -> (a*c)/(b*d)"""
    left, right = _binary(node, "*", FRACTION, FRACTION)
    a, b = _fraction_parts(left)
    c, d = _fraction_parts(right)
    return _fraction(a * c, b * d)


@primitive("P.FRAC_DIV_AS_MUL")
def frac_div_as_mul(node: Node) -> Node:
    """a/b : c/d -> a/b * d/c"""
    left, right = _binary(node, "/", FRACTION, FRACTION)
    c, d = _fraction_parts(right)
    if c == 0:
        raise ExecutorError("division-by-zero", "Division by zero")
    return BinaryOp("*", left, _fraction(d, c))


@primitive("P.FRAC_SIMPLIFY")
def frac_simplify(node: Node) -> Node:
    """a/b -> (a/g)/(b/g) with g = gcd(a, b)"""
    num, den = _fraction_parts(_expect(node, FRACTION))
    common = gcd(num, den)
    if common <= 1:
        raise ExecutorError("already-simplified", f"{serialize(node)} is already in lowest terms")
    return _fraction(num // common, den // common)


# ============================================================
# Signs and parentheses
# ============================================================

@primitive("P.NEG_LITERAL")
def neg_literal(node: Node) -> Node:
    """-(a) -> the negated literal"""
    _expect(node, UNARY)
    if node.op != "-":
        raise ExecutorError("shape-mismatch", "Expected unary minus")
    operand = unwrap_groups(node.operand)
    if operand.kind == INTEGER:
        return Integer(_text(-_int(operand.value)))
    if operand.kind == FRACTION:
        num, den = _fraction_parts(operand)
        return _fraction(-num, den)
    if operand.kind == MIXED:
        whole = operand.whole[1:] if operand.whole.startswith("-") else "-" + operand.whole
        return type(operand)(whole, operand.numerator, operand.denominator)
    raise ExecutorError("shape-mismatch", f"Cannot negate {operand.kind} directly")


@primitive("P.UNARY_PLUS_DROP")
def unary_plus_drop(node: Node) -> Node:
    """+a -> a"""
    _expect(node, UNARY)
    if node.op != "+":
        raise ExecutorError("shape-mismatch", "Expected unary plus")
    return node.operand


@primitive("P.PAREN_DROP", look_through_groups=False)
def paren_drop(node: Node) -> Node:
    """(a) -> a for a number a"""
    _expect(node, GROUP)
    inner = unwrap_groups(node)
    if inner.kind not in LITERAL_KINDS:
        raise ExecutorError("shape-mismatch", "Only parentheses around a number can be dropped")
    return inner
