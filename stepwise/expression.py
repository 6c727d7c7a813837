"""
Expression tree for STEPWISE.

STEPWISE - step-by-step arithmetic with explicit rules

An expression is a small immutable tree built from six node types:

    Integer("3")                      3
    Fraction("1", "3")                1/3
    MixedNumber("2", "1", "3")        2 1/3
    BinaryOp("+", left, right)        a + b
    UnaryOp("-", operand)             -(a)
    Group(child)                      (a)

Literal values are kept as the strings the learner typed, so rules can
compare denominators literally ("2/4" and "1/2" do not share a denominator).

Paths:
    A node is addressed by an index path: a tuple of child ordinals from
    the root. The empty tuple is the root. format_path() renders the
    dotted text form used in requests and debug output:

        ()        -> "root"
        (0,)      -> "term[0]"          left operand of a binary op
        (0, 1)    -> "term[0].term[1]"
        (1, 0)    -> "term[1].content"  child of a parenthesized group
        (0,)      -> "operand"          child of a unary op

    Paths are only meaningful for the tree they were computed on.
"""

from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

# Type aliases
Path = Tuple[int, ...]
ROOT: Path = ()

# Node kinds
INTEGER = "integer"
FRACTION = "fraction"
MIXED = "mixed"
BINARY = "binary"
UNARY = "unary"
GROUP = "group"

LITERAL_KINDS = (INTEGER, FRACTION, MIXED)

BINARY_OPERATORS = ("+", "-", "*", "/")
UNARY_OPERATORS = ("+", "-")

_PRECEDENCE = {"+": 1, "-": 1, "*": 2, "/": 2}


# ============================================================
# Nodes
# ============================================================

class Node:
    """Base class for expression nodes.

    Nodes are immutable: transformations build new trees with
    replace_node_at() instead of assigning to attributes.
    """

    __slots__ = ()
    kind = ""

    @property
    def children(self) -> Tuple["Node", ...]:
        return ()

    def with_children(self, children: Tuple["Node", ...]) -> "Node":
        """Return a copy of this node with its children replaced."""
        return self

    def _key(self) -> Tuple:
        raise NotImplementedError

    def __eq__(self, other):
        if isinstance(other, Node):
            return self._key() == other._key()
        return False

    def __hash__(self):
        return hash(self._key())

    def __str__(self) -> str:
        return serialize(self)


class Integer(Node):
    __slots__ = ("value",)
    kind = INTEGER

    def __init__(self, value: Union[str, int]):
        self.value = str(value)

    def _key(self) -> Tuple:
        return (INTEGER, self.value)

    def __repr__(self) -> str:
        return f"Integer({self.value!r})"


class Fraction(Node):
    __slots__ = ("numerator", "denominator")
    kind = FRACTION

    def __init__(self, numerator: Union[str, int], denominator: Union[str, int]):
        self.numerator = str(numerator)
        self.denominator = str(denominator)

    def _key(self) -> Tuple:
        return (FRACTION, self.numerator, self.denominator)

    def __repr__(self) -> str:
        return f"Fraction({self.numerator!r}, {self.denominator!r})"


class MixedNumber(Node):
    __slots__ = ("whole", "numerator", "denominator")
    kind = MIXED

    def __init__(self, whole: Union[str, int], numerator: Union[str, int],
                 denominator: Union[str, int]):
        self.whole = str(whole)
        self.numerator = str(numerator)
        self.denominator = str(denominator)

    def _key(self) -> Tuple:
        return (MIXED, self.whole, self.numerator, self.denominator)

    def __repr__(self) -> str:
        return f"MixedNumber({self.whole!r}, {self.numerator!r}, {self.denominator!r})"


class BinaryOp(Node):
    __slots__ = ("op", "left", "right")
    kind = BINARY

    def __init__(self, op: str, left: Node, right: Node):
        if op not in BINARY_OPERATORS:
            raise ValueError(f"Unknown binary operator: {op!r}")
        self.op = op
        self.left = left
        self.right = right

    @property
    def children(self) -> Tuple[Node, ...]:
        return (self.left, self.right)

    def with_children(self, children: Tuple[Node, ...]) -> Node:
        return BinaryOp(self.op, children[0], children[1])

    def _key(self) -> Tuple:
        return (BINARY, self.op, self.left._key(), self.right._key())

    def __repr__(self) -> str:
        return f"BinaryOp({self.op!r}, {self.left!r}, {self.right!r})"


class UnaryOp(Node):
    __slots__ = ("op", "operand")
    kind = UNARY

    def __init__(self, op: str, operand: Node):
        if op not in UNARY_OPERATORS:
            raise ValueError(f"Unknown unary operator: {op!r}")
        self.op = op
        self.operand = operand

    @property
    def children(self) -> Tuple[Node, ...]:
        return (self.operand,)

    def with_children(self, children: Tuple[Node, ...]) -> Node:
        return UnaryOp(self.op, children[0])

    def _key(self) -> Tuple:
        return (UNARY, self.op, self.operand._key())

    def __repr__(self) -> str:
        return f"UnaryOp({self.op!r}, {self.operand!r})"


class Group(Node):
    __slots__ = ("child",)
    kind = GROUP

    def __init__(self, child: Node):
        self.child = child

    @property
    def children(self) -> Tuple[Node, ...]:
        return (self.child,)

    def with_children(self, children: Tuple[Node, ...]) -> Node:
        return Group(children[0])

    def _key(self) -> Tuple:
        return (GROUP, self.child._key())

    def __repr__(self) -> str:
        return f"Group({self.child!r})"


def is_literal(node: Optional[Node]) -> bool:
    """True for integers, fractions and mixed numbers."""
    return node is not None and node.kind in LITERAL_KINDS


def unwrap_groups(node: Node) -> Node:
    """Strip any number of enclosing parentheses."""
    while node.kind == GROUP:
        node = node.child
    return node


# ============================================================
# Paths
# ============================================================

def segment_name(parent: Node, index: int) -> str:
    """Name of the path segment leading from parent to its index-th child."""
    if parent.kind == BINARY:
        return f"term[{index}]"
    if parent.kind == GROUP:
        return "content"
    if parent.kind == UNARY:
        return "operand"
    raise ValueError(f"{parent.kind} nodes have no children")


def get_node_at(tree: Node, path: Path) -> Optional[Node]:
    """Return the node at path, or None if the path does not exist."""
    node = tree
    for index in path:
        kids = node.children
        if index < 0 or index >= len(kids):
            return None
        node = kids[index]
    return node


def replace_node_at(tree: Node, path: Path, new_node: Node) -> Node:
    """
    Return a new tree with the node at path replaced by new_node.

    The input tree is left untouched; only the nodes along the path are
    rebuilt, the rest are shared (nodes are immutable).

    Raises:
        KeyError: If path does not exist in tree.
    """
    if not path:
        return new_node
    kids = tree.children
    index = path[0]
    if index < 0 or index >= len(kids):
        raise KeyError(f"No node at {path!r}")
    rebuilt = list(kids)
    rebuilt[index] = replace_node_at(kids[index], path[1:], new_node)
    return tree.with_children(tuple(rebuilt))


def parent_path(path: Path) -> Optional[Path]:
    """Path of the parent node, or None for the root."""
    if not path:
        return None
    return path[:-1]


def format_path(tree: Node, path: Path) -> str:
    """Render an index path in dotted text form ("root", "term[0].content")."""
    if not path:
        return "root"
    parts = []
    node = tree
    for index in path:
        parts.append(segment_name(node, index))
        node = node.children[index]
    return ".".join(parts)


def parse_path(tree: Node, text: Optional[str]) -> Optional[Path]:
    """
    Resolve a dotted path string against tree.

    Returns the index path, or None if text is empty or names a node that
    does not exist in this tree. A leading "root" segment is accepted.
    """
    if text is None:
        return None
    text = text.strip()
    if not text:
        return None
    if text == "root":
        return ROOT

    path: List[int] = []
    node = tree
    for segment in text.split("."):
        segment = segment.strip()
        if segment == "root" and not path:
            continue
        found = None
        for index in range(len(node.children)):
            if segment_name(node, index) == segment:
                found = index
                break
        if found is None:
            return None
        path.append(found)
        node = node.children[found]
    return tuple(path)


def walk(tree: Node, path: Path = ROOT) -> Iterator[Tuple[Path, Node]]:
    """Yield (path, node) pairs in a deterministic pre-order traversal."""
    yield path, tree
    for index, child in enumerate(tree.children):
        yield from walk(child, path + (index,))


def operator_paths(tree: Node, path: Path = ROOT) -> List[Path]:
    """
    Paths of all binary operators, depth first with each operation before
    its operands.

    "(1 + 2) - (3 * 4)" gives [(), (0, 0), (1, 0)]: the "-" first, then "+", then "*".
    """
    node = tree
    result: List[Path] = [path] if node.kind == BINARY else []
    for index, child in enumerate(node.children):
        result.extend(operator_paths(child, path + (index,)))
    return result


def find_nth_operator(tree: Node, index: int) -> Optional[Path]:
    """Path of the index-th binary operator (0-based), or None."""
    if index is None or index < 0:
        return None
    paths = operator_paths(tree)
    if index >= len(paths):
        return None
    return paths[index]


def unwrap_path(tree: Node, path: Path) -> Path:
    """Extend path through any groups at that position to the inner node."""
    node = get_node_at(tree, path)
    while node is not None and node.kind == GROUP:
        path = path + (0,)
        node = node.child
    return path


def enclosing_operation(tree: Node, path: Path) -> Optional[Path]:
    """
    Path of the nearest binary op above path, skipping parentheses.

    Returns None when the nearest non-group ancestor is not a binary op
    (or when path is the root).
    """
    current = parent_path(path)
    while current is not None:
        node = get_node_at(tree, current)
        if node is None:
            return None
        if node.kind == BINARY:
            return current
        if node.kind != GROUP:
            return None
        current = parent_path(current)
    return None


# ============================================================
# Serialization
# ============================================================

def _needs_parens(parent_op: str, child: Node, is_right: bool) -> bool:
    if child.kind != BINARY:
        return False
    parent_prec = _PRECEDENCE[parent_op]
    child_prec = _PRECEDENCE[child.op]
    if child_prec < parent_prec:
        return True
    # a - (b - c), a / (b * c): the right side of a non-associative op
    if child_prec == parent_prec and is_right and parent_op in ("-", "/"):
        return True
    return False


def serialize(node: Node) -> str:
    """
    Render a tree as plain text that parses back to the same tree.

    Division between operands is written with ":" so that "6 : 3" never
    re-parses as the fraction literal "6/3".

    Examples:
        Fraction("1", "3")                            -> "1/3"
        MixedNumber("2", "1", "3")                    -> "2 1/3"
        BinaryOp("+", Integer("3"), Fraction(2, 5))   -> "3 + 2/5"
    """
    kind = node.kind
    if kind == INTEGER:
        return node.value
    if kind == FRACTION:
        return f"{node.numerator}/{node.denominator}"
    if kind == MIXED:
        return f"{node.whole} {node.numerator}/{node.denominator}"
    if kind == GROUP:
        return f"({serialize(node.child)})"
    if kind == UNARY:
        inner = serialize(node.operand)
        if node.operand.kind == BINARY:
            inner = f"({inner})"
        return f"{node.op}{inner}"
    if kind == BINARY:
        left = serialize(node.left)
        right = serialize(node.right)
        if _needs_parens(node.op, node.left, False):
            left = f"({left})"
        if _needs_parens(node.op, node.right, True):
            right = f"({right})"
        symbol = ":" if node.op == "/" else node.op
        return f"{left} {symbol} {right}"
    raise TypeError(f"Not an expression node: {node!r}")


def to_dict(node: Node) -> Dict[str, Any]:
    """Convert a tree to a JSON-serializable dictionary."""
    kind = node.kind
    if kind == INTEGER:
        return {"type": kind, "value": node.value}
    if kind == FRACTION:
        return {"type": kind, "numerator": node.numerator, "denominator": node.denominator}
    if kind == MIXED:
        return {"type": kind, "whole": node.whole,
                "numerator": node.numerator, "denominator": node.denominator}
    if kind == BINARY:
        return {"type": kind, "op": node.op,
                "left": to_dict(node.left), "right": to_dict(node.right)}
    if kind == UNARY:
        return {"type": kind, "op": node.op, "operand": to_dict(node.operand)}
    if kind == GROUP:
        return {"type": kind, "child": to_dict(node.child)}
    raise TypeError(f"Not an expression node: {node!r}")


# ============================================================
# Integer helpers
# ============================================================

def gcd(a: int, b: int) -> int:
    """Greatest common divisor by the Euclidean algorithm (always >= 0)."""
    a, b = abs(a), abs(b)
    while b:
        a, b = b, a % b
    return a


def lcm(a: int, b: int) -> int:
    """Least common multiple (always >= 0); lcm(0, n) is 0."""
    if a == 0 or b == 0:
        return 0
    return abs(a * b) // gcd(a, b)
