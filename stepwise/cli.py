#!/usr/bin/env python3
"""
STEPWISE Command-Line Interface

Provides an interactive REPL, one-shot and pipe/filter modes.

Usage:
    stepwise                            # Start REPL
    stepwise -e "1/3 + 2/5"             # Take one step
    stepwise -e "3 + 2/5" --select term[0]
    stepwise --policy teacher -e "2/4"
    echo "1/3 + 2/3" | stepwise --json  # Filter mode, one result per line

REPL:
    Typing an expression makes it the current expression and takes one
    step. :step takes the next step from wherever you are.

REPL Commands:
    :help              Show help
    :step              Take one step on the current expression
    :hint              Show the next step without taking it
    :candidates        List every candidate at the current selection
    :undo              Undo the last step
    :history           Show the session history
    :select PATH|none  Select a node (e.g. term[0], term[1].content)
    :operator N|none   Select the N-th operator (0 = outermost)
    :prefer ID|none    Prefer a primitive (e.g. P.INT_TO_FRAC)
    :policy NAME       Set policy (student, teacher)
    :sets [ID ...]     Show or restrict the invariant sets in use
    :rules             List the rules of the loaded course
    :load FILE         Load a course table
    :quit              Exit
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from .config import EngineConfig, LOG_LEVELS, load_config, load_course
from .errors import StepwiseError
from .orchestrator import StepOrchestrator, StepRequest, StepResult
from .registry import InvariantRegistry, load_registry_from_file
from .stepmaster import POLICIES

logger = logging.getLogger(__name__)

# Try to import readline for better REPL experience
try:
    import readline
    HAS_READLINE = True
except ImportError:
    HAS_READLINE = False

SESSION = "cli"


class StepwiseCompleter:
    """Tab completer for the STEPWISE REPL."""

    COMMANDS = [
        ":help", ":quit", ":exit", ":q",
        ":step", ":hint", ":candidates", ":undo", ":history",
        ":select", ":operator", ":prefer", ":policy",
        ":sets", ":rules", ":load",
    ]

    def __init__(self, repl: "StepwiseREPL"):
        self.repl = repl
        self.matches: List[str] = []

    def complete(self, text: str, state: int) -> Optional[str]:
        """Return the next possible completion for 'text'."""
        if state == 0:
            line = readline.get_line_buffer() if HAS_READLINE else ""
            self.matches = self._get_matches(text, line)
        try:
            return self.matches[state]
        except IndexError:
            return None

    def _get_matches(self, text: str, line: str) -> List[str]:
        line = line.lstrip()

        if line.startswith(":policy "):
            return [p for p in POLICIES if p.startswith(text)]

        if line.startswith(":prefer "):
            ids = [p.id for p in self.repl.registry.get_all_primitives()] + ["none"]
            return [p for p in ids if p.startswith(text)]

        if line.startswith(":sets "):
            return [s for s in self.repl.registry.set_ids() if s.startswith(text)]

        if text.startswith(":") or (line.startswith(":") and " " not in line):
            return [c for c in self.COMMANDS if c.startswith(text)]

        return []


class StepwiseREPL:
    """Interactive REPL for stepwise."""

    def __init__(self, registry: InvariantRegistry, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self.registry = registry
        self.engine = self._make_engine(registry)
        self.policy = self.config.policy
        self.expression: Optional[str] = None
        self.selection_path: Optional[str] = None
        self.operator_index: Optional[int] = None
        self.preferred_primitive_id: Optional[str] = None
        self.invariant_set_ids: Optional[List[str]] = None
        self.json_output = False
        self.running = True

        if HAS_READLINE:
            self.history_file = Path.home() / ".stepwise_history"
            try:
                readline.read_history_file(self.history_file)
            except (FileNotFoundError, OSError):
                pass
            readline.set_history_length(1000)
            self.completer = StepwiseCompleter(self)
            readline.set_completer(self.completer.complete)
            readline.parse_and_bind("tab: complete")
            readline.set_completer_delims(" \t\n")

    def _make_engine(self, registry: InvariantRegistry) -> StepOrchestrator:
        return StepOrchestrator(registry, default_policy=self.config.policy,
                                max_history_depth=self.config.max_history_depth)

    def save_history(self):
        """Save readline history."""
        if HAS_READLINE:
            try:
                readline.write_history_file(self.history_file)
            except OSError:
                pass

    def request(self, expression: Optional[str] = None, session_id: str = SESSION) -> StepRequest:
        return StepRequest(
            expression if expression is not None else (self.expression or ""),
            selection_path=self.selection_path,
            operator_index=self.operator_index,
            preferred_primitive_id=self.preferred_primitive_id,
            policy_name=self.policy,
            session_id=session_id,
            invariant_set_ids=self.invariant_set_ids,
        )

    def format_result(self, result: StepResult) -> str:
        if self.json_output:
            return json.dumps(result.to_dict())
        if result.status == "step-applied":
            rule = result.candidate.invariant_rule_id if result.candidate else "?"
            return f"{result.new_expression_text}    [{rule}]"
        info = result.debug_info or {}
        reason = info.get("reason", result.status)
        if reason == "parse-error":
            err = info.get("parseError", {})
            return f"Error: {err.get('message')} ({err.get('code')})"
        if reason == "invalid-primitive-id":
            return f"Error: unknown primitive {info.get('invalidId')}"
        if result.status == "no-candidates":
            rejected = info.get("rejectedBy")
            if rejected and rejected != "generator":
                return f"No step available here (all candidates rejected by {rejected} filter)"
            return "No step available here"
        return f"Error: {info.get('message', reason)}"

    def step(self, expression: Optional[str] = None) -> str:
        """Take one step and make the result the current expression."""
        if expression is None and not self.expression:
            return "No expression. Type one first."
        result = self.engine.run_step(self.request(expression))
        if expression is not None:
            self.expression = expression
        if result:
            self.expression = result.new_expression_text
            # paths refer to the old tree
            self.selection_path = None
            self.operator_index = None
        return self.format_result(result)

    def handle_command(self, line: str) -> Optional[str]:
        """
        Handle a REPL command (starts with :).

        Returns a message to print, or None.
        """
        parts = line[1:].split(None, 1)
        if not parts:
            return "Unknown command. Type :help for help."

        cmd = parts[0].lower()
        arg = parts[1].strip() if len(parts) > 1 else ""

        if cmd == "help":
            return self.help_text()

        elif cmd in ("quit", "exit", "q"):
            self.running = False
            return None

        elif cmd == "step":
            return self.step()

        elif cmd == "hint":
            if not self.expression:
                return "No expression. Type one first."
            hint = self.engine.hint(self.request())
            if self.json_output:
                return json.dumps(hint.to_dict())
            if hint:
                return f"Hint: {hint.description} ({hint.candidate.primary_primitive_id})"
            if hint.error:
                return f"Error: {hint.error}"
            return "No hint available"

        elif cmd == "candidates":
            if not self.expression:
                return "No expression. Type one first."
            mapped = self.engine.preview_candidates(self.request())
            if mapped is None:
                return "Error: current expression does not parse"
            if not mapped:
                return "No candidates"
            return "\n".join(
                f"  {c.id}  {c.invariant_rule_id:<24} @ {c.target_path_text:<12} "
                f"{', '.join(c.primitive_ids)}  [{c.category}]"
                for c in mapped
            )

        elif cmd == "undo":
            result = self.engine.undo(SESSION)
            if not result:
                return "Nothing to undo"
            self.expression = result.expression_text
            return self.expression

        elif cmd == "history":
            return self.engine.history(SESSION).format()

        elif cmd == "select":
            if not arg:
                return f"Selection: {self.selection_path or 'none'}"
            self.selection_path = None if arg.lower() == "none" else arg
            return f"Selection set to: {self.selection_path or 'none'}"

        elif cmd == "operator":
            if not arg:
                current = "none" if self.operator_index is None else self.operator_index
                return f"Operator: {current}"
            if arg.lower() == "none":
                self.operator_index = None
                return "Operator selection cleared"
            try:
                self.operator_index = int(arg)
            except ValueError:
                return "Usage: :operator N|none"
            return f"Operator set to: {self.operator_index}"

        elif cmd == "prefer":
            if not arg or arg.lower() == "none":
                self.preferred_primitive_id = None
                return "Preference cleared"
            if not self.registry.has_primitive(arg):
                return f"Unknown primitive: {arg}"
            self.preferred_primitive_id = arg
            return f"Preferring: {arg}"

        elif cmd == "policy":
            if not arg:
                return f"Policy: {self.policy}\nAvailable: {', '.join(POLICIES)}"
            if arg.lower() not in POLICIES:
                return f"Unknown policy: {arg}"
            self.policy = arg.lower()
            return f"Policy set to: {self.policy}"

        elif cmd == "sets":
            if arg:
                if arg.lower() == "all":
                    self.invariant_set_ids = None
                else:
                    ids = arg.split()
                    unknown = [i for i in ids if i not in self.registry.set_ids()]
                    if unknown:
                        return f"Unknown invariant set: {', '.join(unknown)}"
                    self.invariant_set_ids = ids
            active = self.invariant_set_ids or self.registry.set_ids()
            return "\n".join(
                f"  {'*' if s.id in active else ' '} {s.id:<28} {s.name} ({len(s)} rules)"
                for s in self.registry.get_all_invariant_sets()
            )

        elif cmd == "rules":
            lines = []
            for invariant_set in self.registry.get_all_invariant_sets():
                lines.append(f"[{invariant_set.id}]")
                lines.extend(f"  {rule!r}" for rule in invariant_set.rules)
            return "\n".join(lines) if lines else "No rules loaded"

        elif cmd == "load":
            if not arg:
                return "Usage: :load FILENAME"
            try:
                self.registry = load_registry_from_file(arg)
            except StepwiseError as e:
                return f"Error loading {arg}: {e}"
            self.engine = self._make_engine(self.registry)
            self.invariant_set_ids = None
            return f"Loaded {len(self.registry)} rules from {arg}"

        else:
            return f"Unknown command: {cmd}. Type :help for help."

    def help_text(self) -> str:
        """Return help text."""
        return """STEPWISE REPL Commands:
  :help              Show this help
  :step              Take one step on the current expression
  :hint              Show the next step without taking it
  :candidates        List every candidate at the current selection
  :undo              Undo the last step
  :history           Show the session history
  :select PATH|none  Select a node (root, term[0], term[1].content, ...)
  :operator N|none   Select the N-th operator (0 = outermost)
  :prefer ID|none    Prefer a primitive (e.g. P.INT_TO_FRAC)
  :policy NAME       Set policy (student, teacher)
  :sets [ID ...|all] Show or restrict the invariant sets in use
  :rules             List the rules of the loaded course
  :load FILE         Load a course table (.json)
  :quit              Exit

Syntax:
  3 + 2/5            Integers and fractions
  2 1/3              Mixed numbers
  \\frac{1}{3}        LaTeX fractions
  6 : 3              Division (also \\div, ÷)
  (1/2 + 1/3) * 4    Parentheses and precedence
"""

    def process_line(self, line: str) -> Optional[str]:
        """
        Process a single line of input.

        Returns the result to print, or None.
        """
        line = line.strip()

        if not line or line.startswith("#"):
            return None

        if line.startswith(":"):
            return self.handle_command(line)

        return self.step(line)

    def run(self):
        """Run the REPL loop."""
        print("STEPWISE - step-by-step arithmetic")
        print("Type an expression to take a step, :help for help, :quit to exit")
        print()

        while self.running:
            try:
                line = input("stepwise> ")
                result = self.process_line(line)
                if result:
                    print(result)
            except EOFError:
                print()
                break
            except KeyboardInterrupt:
                print()
                continue

        self.save_history()


class ScriptRunner:
    """Runs one-shot and filter mode."""

    def __init__(self, repl: StepwiseREPL):
        self.repl = repl
        self.count = 0

    def run_expression(self, text: str) -> int:
        """
        Take one step on a single expression.

        Returns:
            Exit code (0 when a step was applied)
        """
        # each expression gets its own session so lines do not affect each other
        self.count += 1
        result = self.repl.engine.run_step(self.repl.request(text, f"{SESSION}-{self.count}"))
        print(self.repl.format_result(result))
        return 0 if result else 1

    def run_stdin(self) -> int:
        """
        Take one step on each expression read from stdin.

        Every line is handled independently. Returns 1 if any line failed.
        """
        exit_code = 0
        for line in sys.stdin:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if self.run_expression(line) != 0:
                exit_code = 1
        return exit_code


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stepwise",
        description="STEPWISE - step-by-step arithmetic with explicit rules",
        epilog="Examples:\n"
               "  stepwise                                Start REPL\n"
               "  stepwise -e '1/3 + 2/5'                 Take one step\n"
               "  stepwise -e '3 + 2/5' --select term[0]  Step at a node\n"
               "  echo '1/3 + 2/3' | stepwise --json      Filter mode\n",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument(
        "-e", "--expr",
        help="Take one step on a single expression"
    )

    parser.add_argument(
        "-c", "--course",
        help="Course table: builtin name (stage1) or path to a .json file"
    )

    parser.add_argument(
        "-p", "--policy",
        choices=sorted(POLICIES),
        help="Step policy (default: student)"
    )

    parser.add_argument(
        "--select",
        metavar="PATH",
        help="Select a node by path, e.g. term[0]"
    )

    parser.add_argument(
        "--operator",
        metavar="N",
        type=int,
        help="Select the N-th binary operator (0 = outermost, then depth first)"
    )

    parser.add_argument(
        "--prefer",
        metavar="PRIMITIVE",
        help="Prefer candidates using this primitive, e.g. P.INT_TO_FRAC"
    )

    parser.add_argument(
        "--json",
        action="store_true",
        help="Print results as JSON"
    )

    parser.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        type=str.upper,
        help="Logging level (default: WARNING)"
    )

    parser.add_argument(
        "--config",
        metavar="FILE",
        help="JSON config file"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    return parser


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except StepwiseError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)

    if args.course:
        config.course = args.course
    if args.policy:
        config.policy = args.policy
    if args.log_level:
        config.log_level = args.log_level
    configure_logging(config.log_level)

    try:
        registry = load_course(config.course)
    except StepwiseError as e:
        print(f"Error loading course {config.course}: {e}", file=sys.stderr)
        sys.exit(2)

    repl = StepwiseREPL(registry, config)
    repl.selection_path = args.select
    repl.operator_index = args.operator
    repl.preferred_primitive_id = args.prefer
    repl.json_output = args.json
    runner = ScriptRunner(repl)

    if args.expr:
        sys.exit(runner.run_expression(args.expr))

    elif not sys.stdin.isatty():
        # Pipe/filter mode (stdin is not a terminal)
        sys.exit(runner.run_stdin())

    else:
        repl.run()


if __name__ == "__main__":
    main()
