"""
Candidate selection (StepMaster).

StepMaster narrows MapMaster's candidates to the single step the learner
is allowed to take, under a pedagogical policy:

    1. locality    keep candidates targeting exactly the selected node
    2. repetition  drop the rule application that was just performed
    3. preference  keep candidates whose primary primitive was requested

Filters run in that order and stop as soon as nothing is left. The first
surviving candidate wins; there is no scoring.
"""

import logging
from typing import Callable, Dict, List, NamedTuple, Optional, Tuple

from .expression import Path
from .history import StepHistory
from .mapmaster import Candidate

logger = logging.getLogger(__name__)

CHOSEN = "chosen"
NO_CANDIDATES = "no-candidates"


class StepPolicy(NamedTuple):
    """How strict the pipeline is."""

    name: str
    allow_repetition: bool = False
    max_history_depth: int = 50
    locality_enforcement: bool = True

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "allowRepetition": self.allow_repetition,
            "maxHistoryDepth": self.max_history_depth,
            "localityEnforcement": self.locality_enforcement,
        }


STUDENT_POLICY = StepPolicy("student", allow_repetition=False, max_history_depth=50,
                            locality_enforcement=True)
TEACHER_POLICY = StepPolicy("teacher", allow_repetition=True, max_history_depth=1000,
                            locality_enforcement=False)

POLICIES: Dict[str, StepPolicy] = {
    "student": STUDENT_POLICY,
    "teacher": TEACHER_POLICY,
}

DEFAULT_POLICY = "student"


def get_policy(name: Optional[str], policies: Optional[Dict[str, StepPolicy]] = None) -> StepPolicy:
    """
    Look up a policy by name.

    Unknown or empty names fall back to the student policy with a warning.
    """
    policies = policies if policies is not None else POLICIES
    if name and name in policies:
        return policies[name]
    if name:
        logger.warning("Unknown policy %r, using %r", name, DEFAULT_POLICY)
    return policies.get(DEFAULT_POLICY, STUDENT_POLICY)


class Decision:
    """Outcome of the pipeline."""

    def __init__(self, status: str, candidate: Optional[Candidate] = None,
                 rejected_by: Optional[str] = None):
        self.status = status
        self.candidate = candidate
        self.rejected_by = rejected_by

    @property
    def chosen_candidate_id(self) -> Optional[str]:
        return self.candidate.id if self.candidate else None

    @property
    def primitives_to_apply(self) -> List[str]:
        return list(self.candidate.primitive_ids) if self.candidate else []

    def __bool__(self) -> bool:
        return self.status == CHOSEN

    def __repr__(self) -> str:
        if self.candidate:
            return f"Decision(chosen {self.candidate.id}: {', '.join(self.primitives_to_apply)})"
        return f"Decision({self.status}, rejected_by={self.rejected_by})"

    def to_dict(self) -> Dict:
        d = {
            "status": self.status,
            "chosenCandidateId": self.chosen_candidate_id,
            "primitivesToApply": self.primitives_to_apply,
        }
        if self.rejected_by:
            d["rejectedBy"] = self.rejected_by
        return d


# ============================================================
# Filters
# ============================================================

class _Context(NamedTuple):
    history: StepHistory
    policy: StepPolicy
    action_target: Optional[Path]
    preferred_primitive_id: Optional[str]


def locality_filter(candidates: List[Candidate], ctx: _Context) -> List[Candidate]:
    """Keep candidates whose target is exactly the selected node."""
    if not ctx.policy.locality_enforcement or ctx.action_target is None:
        return candidates
    target = tuple(ctx.action_target)
    return [c for c in candidates if c.target_path == target]


def repetition_filter(candidates: List[Candidate], ctx: _Context) -> List[Candidate]:
    """Drop the rule application performed by the last effective step."""
    if ctx.policy.allow_repetition:
        return candidates
    last = ctx.history.last_step() if ctx.history is not None else None
    if last is None or last.invariant_rule_id is None:
        return candidates
    last_path = tuple(last.target_path) if last.target_path is not None else None
    return [c for c in candidates
            if (c.invariant_rule_id, c.target_path) != (last.invariant_rule_id, last_path)]


def preference_filter(candidates: List[Candidate], ctx: _Context) -> List[Candidate]:
    """Keep candidates whose primary primitive is the requested one."""
    if not ctx.preferred_primitive_id:
        return candidates
    return [c for c in candidates if c.primary_primitive_id == ctx.preferred_primitive_id]


FilterFunc = Callable[[List[Candidate], _Context], List[Candidate]]

FILTERS: List[Tuple[str, FilterFunc]] = [
    ("locality", locality_filter),
    ("repetition", repetition_filter),
    ("preference", preference_filter),
]


def decide(candidates: List[Candidate], history: Optional[StepHistory], policy: StepPolicy,
           action_target: Optional[Path] = None,
           preferred_primitive_id: Optional[str] = None) -> Decision:
    """
    Run the filter pipeline and pick the first survivor.

    Args:
        candidates: MapMaster output, in table order.
        history: Session history (only the last effective step is read).
        policy: Strictness settings.
        action_target: Path the learner selected, or None.
        preferred_primitive_id: Primitive the learner asked for, or None.

    Returns:
        Decision; falsy when nothing survived, with rejected_by naming the
        filter that removed the last candidates.
    """
    if not candidates:
        return Decision(NO_CANDIDATES, rejected_by="generator")

    ctx = _Context(history, policy, action_target, preferred_primitive_id)
    remaining = list(candidates)
    for name, filter_func in FILTERS:
        remaining = filter_func(remaining, ctx)
        logger.debug("%s filter: %d candidate(s) left", name, len(remaining))
        if not remaining:
            return Decision(NO_CANDIDATES, rejected_by=name)

    chosen = remaining[0]
    logger.debug("Chose %r", chosen)
    return Decision(CHOSEN, chosen)
