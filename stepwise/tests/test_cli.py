"""Tests for the command-line interface."""

import json

import pytest
from stepwise import load_builtin_registry
from stepwise.cli import StepwiseREPL, ScriptRunner, build_parser, main


@pytest.fixture
def repl():
    return StepwiseREPL(load_builtin_registry())


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("STEPWISE_COURSE", "STEPWISE_POLICY", "STEPWISE_LOG_LEVEL",
                 "STEPWISE_MAX_HISTORY_DEPTH"):
        monkeypatch.delenv(name, raising=False)


class TestREPL:
    """Tests for REPL commands."""

    def test_expression_takes_step(self, repl):
        """Typing an expression takes one step."""
        output = repl.process_line("1/3 + 2/5")
        assert output == "11/15    [R.FRAC_ADD_DIFF_DEN]"
        assert repl.expression == "11/15"

    def test_step_continues(self, repl):
        """:step works on the current expression."""
        repl.process_line("1/3 + 2/3")
        assert repl.process_line(":step").startswith("1/1")

    def test_step_without_expression(self, repl):
        assert "No expression" in repl.process_line(":step")

    def test_comments_and_blanks(self, repl):
        assert repl.process_line("") is None
        assert repl.process_line("# note") is None

    def test_parse_error(self, repl):
        assert repl.process_line("1 +").startswith("Error:")

    def test_no_step(self, repl):
        assert repl.process_line("7") == "No step available here"

    def test_select(self, repl):
        """A selection applies to the next step, then clears."""
        repl.process_line(":select term[0]")
        assert repl.selection_path == "term[0]"
        assert repl.process_line("3 + 2/5").startswith("3/1 + 2/5")
        assert repl.selection_path is None

    def test_operator(self, repl):
        repl.process_line(":operator 1")
        assert repl.process_line("1 + 2 * 3").startswith("1 + 6")
        assert "Usage" in repl.process_line(":operator x")

    def test_prefer(self, repl):
        assert repl.process_line(":prefer P.INT_TO_FRAC") == "Preferring: P.INT_TO_FRAC"
        assert repl.process_line(":prefer P.NOPE") == "Unknown primitive: P.NOPE"
        assert repl.process_line(":prefer none") == "Preference cleared"

    def test_policy(self, repl):
        assert repl.process_line(":policy teacher") == "Policy set to: teacher"
        assert repl.process_line(":policy wizard") == "Unknown policy: wizard"
        assert repl.policy == "teacher"

    def test_repetition_message(self, repl):
        """Repeating the same step reports the rejecting filter."""
        repl.process_line(":select term[0]")
        repl.process_line("3 + 2/5")
        repl.process_line(":select term[0]")
        output = repl.process_line("3 + 2/5")
        assert "repetition" in output

    def test_hint(self, repl):
        repl.process_line(":select term[0]")
        repl.expression = "3 + 2/5"
        output = repl.process_line(":hint")
        assert output == "Hint: Write the integer as a fraction at term[0] (P.INT_TO_FRAC)"

    def test_candidates(self, repl):
        repl.expression = "4/2"
        output = repl.process_line(":candidates")
        assert "R.FRAC_SIMPLIFY" in output
        assert "R.FRAC_TO_INT" in output

    def test_undo_and_history(self, repl):
        """Undo goes back one step and both show in the history."""
        repl.process_line("1 + 2")
        assert repl.process_line(":undo") == "1 + 2"
        assert repl.expression == "1 + 2"
        history = repl.process_line(":history")
        assert "R.INT_ADD" in history
        assert "undo" in history
        assert repl.process_line(":undo") == "Nothing to undo"

    def test_sets(self, repl):
        output = repl.process_line(":sets integers")
        assert repl.invariant_set_ids == ["integers"]
        assert "* integers" in output
        assert repl.process_line("3 + 2/5") == "No step available here"
        repl.process_line(":sets all")
        assert repl.invariant_set_ids is None
        assert "Unknown invariant set" in repl.process_line(":sets nope")

    def test_rules(self, repl):
        assert "R.INT_ADD" in repl.process_line(":rules")

    def test_load_missing(self, repl, tmp_path):
        assert repl.process_line(f":load {tmp_path / 'none.json'}").startswith("Error loading")

    def test_json_output(self, repl):
        repl.json_output = True
        data = json.loads(repl.process_line("1 + 2"))
        assert data["newExpressionText"] == "3"

    def test_quit(self, repl):
        repl.process_line(":quit")
        assert not repl.running

    def test_unknown_command(self, repl):
        assert "Unknown command" in repl.process_line(":frobnicate")

    def test_help(self, repl):
        assert ":step" in repl.process_line(":help")


class TestScriptRunner:
    """Tests for one-shot and filter mode."""

    def test_run_expression(self, repl, capsys):
        runner = ScriptRunner(repl)
        assert runner.run_expression("1/3 + 2/3") == 0
        assert capsys.readouterr().out.strip() == "3/3    [R.FRAC_ADD_SAME_DEN]"

    def test_run_expression_failure(self, repl, capsys):
        runner = ScriptRunner(repl)
        assert runner.run_expression("1/0") == 1
        assert "zero-denominator" in capsys.readouterr().out

    def test_lines_are_independent(self, repl, capsys):
        """The same expression on two lines steps both times."""
        repl.selection_path = "term[0]"
        runner = ScriptRunner(repl)
        assert runner.run_expression("3 + 2/5") == 0
        assert runner.run_expression("3 + 2/5") == 0


class TestMain:
    """Tests for argument handling."""

    def test_parser_defaults(self):
        args = build_parser().parse_args([])
        assert args.expr is None
        assert args.json is False

    def test_log_level_case(self):
        assert build_parser().parse_args(["--log-level", "debug"]).log_level == "DEBUG"

    def test_one_shot(self, capsys):
        with pytest.raises(SystemExit) as info:
            main(["-e", "3 + 2/5", "--select", "term[0]"])
        assert info.value.code == 0
        assert capsys.readouterr().out.startswith("3/1 + 2/5")

    def test_one_shot_json(self, capsys):
        with pytest.raises(SystemExit) as info:
            main(["-e", "7", "--json"])
        assert info.value.code == 1
        assert json.loads(capsys.readouterr().out)["status"] == "no-candidates"

    def test_unknown_course(self, capsys):
        with pytest.raises(SystemExit) as info:
            main(["-c", "no-such-course-anywhere", "-e", "1 + 2"])
        assert info.value.code == 2
        assert "no-such-course-anywhere" in capsys.readouterr().err

    def test_bad_config_file(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as info:
            main(["--config", str(tmp_path / "missing.json"), "-e", "1 + 2"])
        assert info.value.code == 2
