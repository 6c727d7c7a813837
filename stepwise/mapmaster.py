"""
Candidate generation (MapMaster).

Given a tree, the learner's selection and the invariant sets in play,
MapMaster lists every rule application that is valid at the selected
place. It never chooses between them; that is StepMaster's job.

    >>> from stepwise import parse, load_builtin_registry
    >>> mapmaster = MapMaster(load_builtin_registry())
    >>> result = mapmaster.generate(parse("3 + 2/5"), Selection(path="term[0]"))
    >>> [(c.invariant_rule_id, c.target_path_text) for c in result]
    [('R.INT_TO_FRAC_SUPPORT', 'term[0]')]

Selection:
    A selection names a path ("term[1]"), or an operator ordinal (0 is the
    outermost binary operator, then depth first), or nothing. The path wins when both are
    given. A selection that names nothing in the tree falls back to the
    root.

Window:
    When the selected node is an operand of a binary operation, rules about
    operations are tested against that operation (the window). Selecting
    "2/5" in "3 + 2/5" therefore still finds operations on the "+".
"""

import logging
from typing import Dict, Iterable, List, Optional

from .expression import (
    Node, Path, ROOT, BINARY, get_node_at, unwrap_groups, parse_path,
    find_nth_operator, enclosing_operation, format_path,
)
from .guards import WINDOW
from .registry import InvariantRegistry

logger = logging.getLogger(__name__)


class Selection:
    """What the learner pointed at."""

    def __init__(self, path: Optional[str] = None, operator_index: Optional[int] = None):
        self.path = path
        self.operator_index = operator_index

    def __bool__(self) -> bool:
        return bool(self.path and self.path.strip()) or self.operator_index is not None

    def __repr__(self) -> str:
        if self.path:
            return f"Selection(path={self.path!r})"
        if self.operator_index is not None:
            return f"Selection(operator_index={self.operator_index})"
        return "Selection()"


class Candidate:
    """One valid next step: a rule, its primitives, and where to apply them."""

    def __init__(self, id: str, invariant_rule_id: str, primitive_ids: List[str],
                 target_path: Path, description: str, category: str = "direct",
                 invariant_set_id: str = "", target_path_text: str = ""):
        self.id = id
        self.invariant_rule_id = invariant_rule_id
        self.invariant_set_id = invariant_set_id
        self.primitive_ids = list(primitive_ids)
        self.target_path = tuple(target_path)
        self.target_path_text = target_path_text or ("root" if not target_path else "")
        self.description = description
        self.category = category

    @property
    def primary_primitive_id(self) -> str:
        return self.primitive_ids[0]

    def __repr__(self) -> str:
        where = self.target_path_text or repr(self.target_path)
        return f"Candidate({self.id}: {self.invariant_rule_id} @ {where} -> {', '.join(self.primitive_ids)})"

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "invariantRuleId": self.invariant_rule_id,
            "invariantSetId": self.invariant_set_id,
            "primitiveIds": list(self.primitive_ids),
            "targetPath": self.target_path_text,
            "description": self.description,
            "category": self.category,
        }


class MapResult:
    """Candidates plus the anchor the selection resolved to."""

    def __init__(self, candidates: List[Candidate], resolved_anchor_path: Optional[Path] = None,
                 window_path: Optional[Path] = None):
        self.candidates = candidates
        self.resolved_anchor_path = resolved_anchor_path
        self.window_path = window_path

    def __len__(self) -> int:
        return len(self.candidates)

    def __iter__(self):
        return iter(self.candidates)

    def __bool__(self) -> bool:
        return len(self.candidates) > 0

    def __repr__(self) -> str:
        return f"MapResult({len(self.candidates)} candidates, anchor={self.resolved_anchor_path!r})"


def resolve_selection(tree: Node, selection: Optional[Selection]) -> Optional[Path]:
    """
    Turn a selection into an anchor path in tree.

    Returns None when the selection is empty or does not resolve; callers
    then anchor at the root.
    """
    if not selection:
        return None
    if selection.path and selection.path.strip():
        path = parse_path(tree, selection.path)
        if path is not None:
            return path
        logger.debug("Selection path %r not found in tree", selection.path)
    if selection.operator_index is not None:
        path = find_nth_operator(tree, selection.operator_index)
        if path is not None:
            return path
        logger.debug("Operator index %d out of range", selection.operator_index)
    return None


def window_for(tree: Node, anchor: Path) -> Path:
    """The binary operation whose guards apply for an anchor."""
    node = get_node_at(tree, anchor)
    if node is None or unwrap_groups(node).kind == BINARY:
        return anchor
    enclosing = enclosing_operation(tree, anchor)
    return enclosing if enclosing is not None else anchor


class MapMaster:
    """
    Candidate generator over an invariant registry.

    Stateless apart from the registry it reads.
    """

    def __init__(self, registry: InvariantRegistry):
        self.registry = registry

    def generate(self, tree: Node, selection: Optional[Selection] = None,
                 invariant_set_ids: Optional[Iterable[str]] = None) -> MapResult:
        """
        List the rule applications valid at the selected place.

        Args:
            tree: Parsed expression. A falsy value (such as a ParseFailure)
                yields no candidates.
            selection: Where the learner pointed; None anchors at the root.
            invariant_set_ids: Sets to consult, in order. None means all.

        Returns:
            MapResult with candidates in rule table order.
        """
        if not tree:
            return MapResult([])

        resolved = resolve_selection(tree, selection)
        anchor = resolved if resolved is not None else ROOT
        window = window_for(tree, anchor)

        candidates: List[Candidate] = []
        for rule in self.registry.rules_for_sets(invariant_set_ids):
            guard = rule.guard
            scope_path = window if guard.scope == WINDOW else anchor
            target = guard.match(tree, scope_path)
            if target is None:
                continue
            candidates.append(Candidate(
                id=f"c{len(candidates)}",
                invariant_rule_id=rule.id,
                invariant_set_id=rule.invariant_set_id,
                primitive_ids=rule.primitive_ids,
                target_path=target,
                target_path_text=format_path(tree, target),
                description=rule.title,
                category=guard.category,
            ))

        logger.debug("Generated %d candidate(s) at anchor %s (window %s)",
                     len(candidates), format_path(tree, anchor), format_path(tree, window))
        return MapResult(candidates, resolved, window)

