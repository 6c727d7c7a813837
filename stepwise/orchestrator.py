"""
Step orchestration for STEPWISE.

The orchestrator runs one learner request through the whole engine:

    parse -> generate candidates -> check primitive ids -> decide
          -> execute primitives -> record history

Every outcome comes back as a result object; no exception escapes
run_step(), undo() or hint().

Example:
    >>> engine = StepOrchestrator(load_builtin_registry())
    >>> result = engine.run_step(StepRequest("1/3 + 2/5"))
    >>> result.status, result.new_expression_text
    ('step-applied', '11/15')
"""

import logging
import threading
from typing import Any, Dict, Iterable, List, Optional

from .errors import StepwiseError
from .expression import Node, serialize
from .history import InMemoryHistoryStore, StepHistory
from .mapmaster import Candidate, MapMaster, MapResult, Selection
from .parser import parse
from .primitives import EXECUTORS, PrimitiveExecutor, run_primitives
from .registry import InvariantRegistry
from .stepmaster import POLICIES, StepPolicy, decide, get_policy

logger = logging.getLogger(__name__)

# Step statuses
STEP_APPLIED = "step-applied"
NO_CANDIDATES = "no-candidates"
ENGINE_ERROR = "engine-error"
CHOICE = "choice"  # reserved for multi-choice answers; never produced

# Hint statuses
HINT_FOUND = "hint-found"
NO_HINT = "no-hint"

# Undo statuses
UNDO_COMPLETE = "undo-complete"
NO_HISTORY = "no-history"

DEFAULT_SESSION = "default"


class StepRequest:
    """A learner's request for the next step."""

    def __init__(self, expression_text: str, selection_path: Optional[str] = None,
                 operator_index: Optional[int] = None,
                 preferred_primitive_id: Optional[str] = None,
                 policy_name: Optional[str] = None,
                 session_id: str = DEFAULT_SESSION,
                 invariant_set_ids: Optional[List[str]] = None):
        self.expression_text = expression_text
        self.selection_path = selection_path
        self.operator_index = operator_index
        self.preferred_primitive_id = preferred_primitive_id
        self.policy_name = policy_name
        self.session_id = session_id
        self.invariant_set_ids = invariant_set_ids

    @property
    def selection(self) -> Selection:
        return Selection(self.selection_path, self.operator_index)

    def __repr__(self) -> str:
        return f"StepRequest({self.expression_text!r}, {self.selection!r})"


class StepResult:
    """Outcome of run_step()."""

    def __init__(self, status: str, new_expression_text: Optional[str] = None,
                 history: Optional[StepHistory] = None,
                 debug_info: Optional[Dict[str, Any]] = None,
                 candidate: Optional[Candidate] = None):
        self.status = status
        self.new_expression_text = new_expression_text
        self.history = history
        self.debug_info = debug_info
        self.candidate = candidate

    def __bool__(self) -> bool:
        return self.status == STEP_APPLIED

    def __repr__(self) -> str:
        if self.status == STEP_APPLIED:
            return f"StepResult({self.status}, {self.new_expression_text!r})"
        return f"StepResult({self.status})"

    def to_dict(self) -> Dict:
        d: Dict[str, Any] = {"status": self.status}
        if self.new_expression_text is not None:
            d["newExpressionText"] = self.new_expression_text
        if self.debug_info is not None:
            d["debugInfo"] = self.debug_info
        return d


class HintResult:
    """Outcome of hint(): the step run_step() would take, without taking it."""

    def __init__(self, status: str, candidate: Optional[Candidate] = None,
                 description: Optional[str] = None, error: Optional[str] = None):
        self.status = status
        self.candidate = candidate
        self.description = description
        self.error = error

    def __bool__(self) -> bool:
        return self.status == HINT_FOUND

    def __repr__(self) -> str:
        return f"HintResult({self.status}, {self.description!r})"

    def to_dict(self) -> Dict:
        d: Dict[str, Any] = {"status": self.status}
        if self.candidate is not None:
            d["candidate"] = self.candidate.to_dict()
            d["hintText"] = self.description
        if self.error is not None:
            d["error"] = self.error
        return d


class UndoResult:
    """Outcome of undo()."""

    def __init__(self, status: str, expression_text: Optional[str] = None,
                 history: Optional[StepHistory] = None):
        self.status = status
        self.expression_text = expression_text
        self.history = history

    def __bool__(self) -> bool:
        return self.status == UNDO_COMPLETE

    def __repr__(self) -> str:
        return f"UndoResult({self.status}, {self.expression_text!r})"

    def to_dict(self) -> Dict:
        d: Dict[str, Any] = {"status": self.status}
        if self.expression_text is not None:
            d["expressionText"] = self.expression_text
        return d


class StepOrchestrator:
    """
    Runs learner requests against a registry and a history store.

    All collaborators are passed in, so tests and embedders can swap any of
    them:

        registry        read-only InvariantRegistry
        history_store   object with get(session_id) and put(session_id, history)
        generator       candidate generator (default: MapMaster(registry))
        executors       primitive id -> PrimitiveExecutor
        policies        policy name -> StepPolicy
        max_history_depth  overrides the policy's history depth when set
    """

    def __init__(self, registry: InvariantRegistry, history_store=None, generator=None,
                 executors: Optional[Dict[str, PrimitiveExecutor]] = None,
                 policies: Optional[Dict[str, StepPolicy]] = None,
                 default_policy: Optional[str] = None,
                 max_history_depth: Optional[int] = None):
        self.registry = registry
        self.history_store = history_store if history_store is not None else InMemoryHistoryStore()
        self.generator = generator if generator is not None else MapMaster(registry)
        self.executors = executors if executors is not None else EXECUTORS
        self.policies = policies if policies is not None else POLICIES
        self.default_policy = default_policy
        self.max_history_depth = max_history_depth
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _session_lock(self, session_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = self._locks[session_id] = threading.Lock()
            return lock

    def _policy(self, name: Optional[str]) -> StepPolicy:
        return get_policy(name or self.default_policy, self.policies)

    def _load_history(self, session_id: str, policy: StepPolicy) -> StepHistory:
        history = self.history_store.get(session_id)
        depth = self.max_history_depth if self.max_history_depth is not None else policy.max_history_depth
        history.max_depth = depth
        return history

    def _generate(self, tree: Node, request: StepRequest) -> MapResult:
        return self.generator.generate(tree, request.selection, request.invariant_set_ids)

    def _first_unknown_primitive(self, candidates: Iterable[Candidate]) -> Optional[str]:
        for candidate in candidates:
            for primitive_id in candidate.primitive_ids:
                if not self.registry.has_primitive(primitive_id):
                    return primitive_id
        return None

    # ------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------

    def run_step(self, request: StepRequest) -> StepResult:
        """
        Apply exactly one step to the request's expression.

        Returns:
            StepResult with status step-applied, no-candidates or engine-error.
        """
        with self._session_lock(request.session_id):
            try:
                return self._run_step(request)
            except StepwiseError as e:
                logger.exception("Step failed for %r", request.expression_text)
                return StepResult(ENGINE_ERROR, debug_info={"reason": "engine-exception",
                                                            "message": str(e)})
            except Exception as e:
                logger.exception("Unexpected error in step for %.80r", request.expression_text)
                return StepResult(ENGINE_ERROR, debug_info={"reason": "unexpected-exception",
                                                            "message": f"{type(e).__name__}: {e}"})

    def _run_step(self, request: StepRequest) -> StepResult:
        policy = self._policy(request.policy_name)
        history = self._load_history(request.session_id, policy)

        tree = parse(request.expression_text)
        if not tree:
            logger.info("Parse failed: %r", tree)
            return StepResult(ENGINE_ERROR, history=history,
                              debug_info={"reason": "parse-error", "parseError": tree.to_dict()})

        mapped = self._generate(tree, request)

        invalid_id = self._first_unknown_primitive(mapped.candidates)
        if invalid_id is not None:
            logger.error("Candidate references unknown primitive %s", invalid_id)
            return StepResult(NO_CANDIDATES, history=history,
                              debug_info={"reason": "invalid-primitive-id", "invalidId": invalid_id})

        decision = decide(mapped.candidates, history, policy,
                          action_target=mapped.resolved_anchor_path,
                          preferred_primitive_id=request.preferred_primitive_id)
        if not decision:
            logger.info("No step for %r (rejected by %s)", request.expression_text, decision.rejected_by)
            return StepResult(NO_CANDIDATES, history=history, debug_info={
                "reason": "no-candidates",
                "rejectedBy": decision.rejected_by,
                "candidates": [c.to_dict() for c in mapped.candidates],
            })

        candidate = decision.candidate
        result = run_primitives(tree, candidate.target_path, decision.primitives_to_apply,
                                self.executors)
        if not result:
            logger.warning("Executor failed for %s: %s", candidate.invariant_rule_id, result.message)
            return StepResult(ENGINE_ERROR, history=history, candidate=candidate, debug_info={
                "reason": "executor-failed",
                "error": result.error,
                "message": result.message,
                "candidate": candidate.to_dict(),
            })

        before = serialize(tree)
        after = result.new_text
        history.add_step(before, after, candidate.invariant_rule_id,
                         candidate.target_path, candidate.primitive_ids)
        self.history_store.put(request.session_id, history)
        logger.info("%s: %s -> %s", candidate.invariant_rule_id, before, after)
        return StepResult(STEP_APPLIED, after, history=history, candidate=candidate, debug_info={
            "chosenCandidate": candidate.to_dict(),
            "candidateCount": len(mapped.candidates),
        })

    def undo(self, session_id: str = DEFAULT_SESSION) -> UndoResult:
        """
        Cancel the most recent effective step of a session.

        Returns the expression as it was before that step; candidates are
        not regenerated.
        """
        with self._session_lock(session_id):
            history = self.history_store.get(session_id)
            entry = history.add_undo()
            if entry is None:
                return UndoResult(NO_HISTORY, history=history)
            self.history_store.put(session_id, history)
            restored = parse(entry.expression_after)
            text = serialize(restored) if restored else entry.expression_after
            logger.info("Undid %s, back to %s", entry.undoes, text)
            return UndoResult(UNDO_COMPLETE, text, history)

    def history(self, session_id: str = DEFAULT_SESSION) -> StepHistory:
        return self.history_store.get(session_id)

    # ------------------------------------------------------------
    # Read-only queries
    # ------------------------------------------------------------

    def hint(self, request: StepRequest) -> HintResult:
        """Describe the step run_step() would take, without applying it."""
        try:
            tree = parse(request.expression_text)
            if not tree:
                return HintResult(ENGINE_ERROR, error=f"parse-error: {tree.code}")
            policy = self._policy(request.policy_name)
            history = self._load_history(request.session_id, policy)
            mapped = self._generate(tree, request)
            invalid_id = self._first_unknown_primitive(mapped.candidates)
            if invalid_id is not None:
                return HintResult(ENGINE_ERROR, error=f"invalid-primitive-id: {invalid_id}")
            decision = decide(mapped.candidates, history, policy,
                              action_target=mapped.resolved_anchor_path,
                              preferred_primitive_id=request.preferred_primitive_id)
        except StepwiseError as e:
            logger.exception("Hint failed for %r", request.expression_text)
            return HintResult(ENGINE_ERROR, error=str(e))
        except Exception as e:
            logger.exception("Unexpected error in hint for %.80r", request.expression_text)
            return HintResult(ENGINE_ERROR, error=f"unexpected-exception: {type(e).__name__}")

        if not decision:
            return HintResult(NO_HINT)
        candidate = decision.candidate
        return HintResult(HINT_FOUND, candidate, f"{candidate.description} at {candidate.target_path_text}")

    def preview_candidates(self, request: StepRequest) -> Optional[MapResult]:
        """
        Every candidate at the request's selection, before any filtering.

        Returns None when the expression does not parse.
        """
        tree = parse(request.expression_text)
        if not tree:
            return None
        return self._generate(tree, request)
