"""Tests for the step orchestrator."""

import sys

import pytest
from stepwise import (
    StepOrchestrator, StepRequest, load_builtin_registry, Candidate, MapResult,
    InMemoryHistoryStore,
)
from stepwise.errors import ExecutorError
from stepwise.primitives import EXECUTORS, PrimitiveExecutor


@pytest.fixture(scope="module")
def registry():
    return load_builtin_registry()


@pytest.fixture
def engine(registry):
    return StepOrchestrator(registry)


class BrokenGenerator:
    """Generator that fails with an unexpected error."""

    def generate(self, tree, selection=None, invariant_set_ids=None):
        raise RuntimeError("generator broke")


class FixedGenerator:
    """Generator returning the same candidates for every tree."""

    def __init__(self, candidates):
        self.candidates = candidates

    def generate(self, tree, selection=None, invariant_set_ids=None):
        return MapResult(list(self.candidates))


class TestRunStep:
    """Tests for run_step."""

    def test_different_denominators(self, engine):
        """1/3 + 2/5 takes one bundled step to 11/15."""
        result = engine.run_step(StepRequest("1/3 + 2/5"))
        assert result
        assert result.status == "step-applied"
        assert result.new_expression_text == "11/15"
        assert result.candidate.invariant_rule_id == "R.FRAC_ADD_DIFF_DEN"

    def test_same_denominator(self, engine):
        result = engine.run_step(StepRequest("1/3 + 2/3"))
        assert result.new_expression_text == "3/3"

    def test_same_denominator_subtraction(self, engine):
        result = engine.run_step(StepRequest("5/7 - 2/7"))
        assert result.new_expression_text == "3/7"
        assert result.debug_info["candidateCount"] == 1

    def test_support_step_at_selection(self, engine):
        """Selecting the integer in 3 + 2/5 rewrites it as a fraction."""
        result = engine.run_step(StepRequest("3 + 2/5", selection_path="term[0]"))
        assert result.new_expression_text == "3/1 + 2/5"
        assert result.candidate.category == "support"

    def test_operator_selection(self, engine):
        """The operator ordinal picks which operation to compute."""
        result = engine.run_step(StepRequest("1 * 2 + 3", operator_index=1))
        assert result.new_expression_text == "2 + 3"

    def test_history_recorded(self, engine):
        """A successful step is stored in the session history."""
        engine.run_step(StepRequest("1/3 + 2/3", session_id="s1"))
        history = engine.history("s1")
        assert len(history) == 1
        entry = history.last_step()
        assert entry.expression_before == "1/3 + 2/3"
        assert entry.expression_after == "3/3"
        assert entry.invariant_rule_id == "R.FRAC_ADD_SAME_DEN"
        assert len(engine.history("other")) == 0

    def test_repetition_blocked(self, engine):
        """The same step on the same expression is not repeated."""
        request = StepRequest("3 + 2/5", selection_path="term[0]")
        assert engine.run_step(request)
        again = engine.run_step(request)
        assert again.status == "no-candidates"
        assert again.debug_info["rejectedBy"] == "repetition"

    def test_teacher_policy_allows_repetition(self, engine):
        request = StepRequest("3 + 2/5", selection_path="term[0]", policy_name="teacher")
        assert engine.run_step(request)
        assert engine.run_step(request)

    def test_unknown_policy_falls_back_to_student(self, engine):
        request = StepRequest("3 + 2/5", selection_path="term[0]", policy_name="wizard")
        assert engine.run_step(request)
        assert not engine.run_step(request)

    def test_parse_error(self, engine):
        """Unparseable input is an engine error with the parse details."""
        result = engine.run_step(StepRequest("1 +"))
        assert result.status == "engine-error"
        assert result.debug_info["reason"] == "parse-error"
        assert result.debug_info["parseError"]["code"] == "unexpected-end"

    def test_no_candidates(self, engine):
        """A lone integer has no step."""
        result = engine.run_step(StepRequest("7"))
        assert result.status == "no-candidates"
        assert result.debug_info["rejectedBy"] == "generator"
        assert not result

    def test_preferred_primitive(self, engine):
        """A preferred primitive with no candidate gives no step."""
        result = engine.run_step(StepRequest("1 + 2", preferred_primitive_id="P.FRAC_MUL"))
        assert result.status == "no-candidates"
        assert result.debug_info["rejectedBy"] == "preference"

    def test_invariant_set_restriction(self, engine):
        result = engine.run_step(StepRequest("3 + 2/5", invariant_set_ids=["integers"]))
        assert result.status == "no-candidates"

    def test_invalid_primitive_id(self, registry):
        """Candidates naming undefined primitives are refused."""
        bogus = Candidate("c0", "R.FAKE", ["P.BOGUS"], (), "Fake")
        engine = StepOrchestrator(registry, generator=FixedGenerator([bogus]))
        result = engine.run_step(StepRequest("1 + 2"))
        assert result.status == "no-candidates"
        assert result.debug_info == {"reason": "invalid-primitive-id", "invalidId": "P.BOGUS"}

    def test_executor_failure_leaves_history(self, registry):
        """A failing executor is an engine error and records nothing."""
        def explode(node):
            raise ExecutorError("boom", "exploded")

        executors = dict(EXECUTORS)
        executors["P.INT_ADD"] = PrimitiveExecutor("P.INT_ADD", explode)
        store = InMemoryHistoryStore()
        engine = StepOrchestrator(registry, history_store=store, executors=executors)
        result = engine.run_step(StepRequest("1 + 2", session_id="s1"))
        assert result.status == "engine-error"
        assert result.debug_info["reason"] == "executor-failed"
        assert result.debug_info["error"] == "boom"
        assert "s1" not in store

    def test_unexpected_error_is_engine_error(self, registry):
        """An unexpected exception becomes an engine error and records nothing."""
        store = InMemoryHistoryStore()
        engine = StepOrchestrator(registry, history_store=store, generator=BrokenGenerator())
        result = engine.run_step(StepRequest("1 + 2", session_id="s1"))
        assert result.status == "engine-error"
        assert result.debug_info["reason"] == "unexpected-exception"
        assert "RuntimeError" in result.debug_info["message"]
        assert "s1" not in store

    @pytest.mark.skipif(not hasattr(sys, "get_int_max_str_digits"),
                        reason="int conversion has no digit limit on this Python")
    def test_result_too_large(self, engine):
        """A product too long to write out fails without touching history."""
        big = "9" * 3000
        result = engine.run_step(StepRequest(f"{big} * {big}", session_id="s1"))
        assert result.status == "engine-error"
        assert result.debug_info["reason"] == "executor-failed"
        assert result.debug_info["error"] == "number-too-large"
        assert len(engine.history("s1")) == 0

    def test_max_history_depth(self, registry):
        """The orchestrator's depth overrides the policy's."""
        engine = StepOrchestrator(registry, max_history_depth=1)
        engine.run_step(StepRequest("1 + 2", session_id="s1"))
        engine.run_step(StepRequest("2 * 3", session_id="s1"))
        assert len(engine.history("s1")) == 1

    def test_trimming_keeps_step_before_undo(self, registry):
        """After undo, trimming still remembers the step in force."""
        engine = StepOrchestrator(registry, max_history_depth=2)
        request = StepRequest("3 + 2/5", selection_path="term[0]", session_id="s1")
        assert engine.run_step(request)
        assert engine.run_step(StepRequest("1 + 2", session_id="s1"))
        assert engine.undo("s1").expression_text == "1 + 2"
        again = engine.run_step(request)
        assert again.status == "no-candidates"
        assert again.debug_info["rejectedBy"] == "repetition"

    def test_to_dict(self, engine):
        d = engine.run_step(StepRequest("1 + 2")).to_dict()
        assert d["status"] == "step-applied"
        assert d["newExpressionText"] == "3"
        assert d["debugInfo"]["chosenCandidate"]["invariantRuleId"] == "R.INT_ADD"


class TestUndo:
    """Tests for undo."""

    def test_undo_restores_previous_expression(self, engine):
        engine.run_step(StepRequest("1/3 + 2/3", session_id="s1"))
        result = engine.undo("s1")
        assert result.status == "undo-complete"
        assert result.expression_text == "1/3 + 2/3"
        assert engine.history("s1").last_step() is None

    def test_undo_keeps_record(self, engine):
        """Undo is recorded, not erased."""
        engine.run_step(StepRequest("1/3 + 2/3", session_id="s1"))
        engine.undo("s1")
        assert len(engine.history("s1")) == 2

    def test_undo_with_no_history(self, engine):
        result = engine.undo("empty")
        assert result.status == "no-history"
        assert not result

    def test_undo_allows_same_step_again(self, engine):
        """After undo, the undone step may be taken again."""
        request = StepRequest("3 + 2/5", selection_path="term[0]", session_id="s1")
        engine.run_step(request)
        engine.undo("s1")
        assert engine.run_step(request)


class TestQueries:
    """Tests for hint and preview."""

    def test_hint(self, engine):
        """A hint names the step without applying it."""
        hint = engine.hint(StepRequest("3 + 2/5", session_id="s1"))
        assert hint.status == "hint-found"
        assert hint.candidate.invariant_rule_id == "R.INT_TO_FRAC_SUPPORT"
        assert hint.description == "Write the integer as a fraction at term[0]"
        assert len(engine.history("s1")) == 0

    def test_hint_none(self, engine):
        assert engine.hint(StepRequest("7")).status == "no-hint"

    def test_hint_parse_error(self, engine):
        hint = engine.hint(StepRequest("1/0"))
        assert hint.status == "engine-error"
        assert hint.error == "parse-error: zero-denominator"

    def test_hint_unexpected_error(self, registry):
        engine = StepOrchestrator(registry, generator=BrokenGenerator())
        hint = engine.hint(StepRequest("1 + 2"))
        assert hint.status == "engine-error"
        assert hint.error == "unexpected-exception: RuntimeError"

    def test_hint_to_dict(self, engine):
        d = engine.hint(StepRequest("1 + 2")).to_dict()
        assert d["status"] == "hint-found"
        assert d["hintText"] == "Add two integers at root"

    def test_preview(self, engine):
        """Preview lists every candidate before filtering."""
        result = engine.preview_candidates(StepRequest("4/2"))
        assert [c.invariant_rule_id for c in result] == ["R.FRAC_SIMPLIFY", "R.FRAC_TO_INT"]

    def test_preview_parse_error(self, engine):
        assert engine.preview_candidates(StepRequest("((1")) is None
