#!/usr/bin/env python3
"""
STEPWISE Feature Demonstration

This script walks through the main features of the STEPWISE engine.
"""

from pathlib import Path
from stepwise import (
    StepOrchestrator, StepRequest, MapMaster, Selection,
    load_builtin_registry, load_registry_from_file,
    parse, serialize, format_path, operator_paths,
)


def section(title: str):
    """Print a section header."""
    print(f"\n{'='*60}")
    print(f" {title}")
    print('='*60)


def demo_parsing():
    """Demonstrate parsing and serialization."""
    section("Parsing")

    examples = [
        "1/3 + 2/5",
        "2 1/3 - 1/2",
        "\\frac{3}{4} \\cdot 2",
        "0.5 + 1/4",
        "(1 + 2) : 3",
        "1/0",
    ]

    for text in examples:
        tree = parse(text)
        if tree:
            print(f"  {text:<24} => {serialize(tree)}")
        else:
            print(f"  {text:<24} => {tree.code}: {tree.message}")


def demo_paths():
    """Demonstrate node paths and operator ordinals."""
    section("Paths and Operators")

    tree = parse("1/2 + (3 - 1/4) * 2")
    for i, path in enumerate(operator_paths(tree)):
        print(f"  operator {i}: {format_path(path)}")


def demo_candidates():
    """Demonstrate candidate generation."""
    section("Candidates")

    mapmaster = MapMaster(load_builtin_registry())
    examples = [
        ("1/3 + 2/5", None),
        ("3 + 2/5", Selection(path="term[1]")),
        ("4/2", None),
        ("1 + 2 * 3", Selection(operator_index=1)),
    ]

    for text, selection in examples:
        result = mapmaster.generate(parse(text), selection)
        print(f"  {text}  ({selection!r})")
        for candidate in result:
            print(f"    {candidate!r}")


def demo_steps():
    """Demonstrate stepping an expression to its result."""
    section("Step by Step")

    engine = StepOrchestrator(load_builtin_registry())
    text = "1/3 + 2/5"
    print(f"  {text}")
    while True:
        result = engine.run_step(StepRequest(text, session_id="demo"))
        if not result:
            break
        text = result.new_expression_text
        print(f"    -> {text}    [{result.candidate.invariant_rule_id}]")

    print("\n  History:")
    print(engine.history("demo").format("chain"))


def demo_support_and_undo():
    """Demonstrate selection, repetition and undo."""
    section("Selection, Repetition and Undo")

    engine = StepOrchestrator(load_builtin_registry())
    request = StepRequest("3 + 2/5", selection_path="term[0]", session_id="undo")

    print(f"  first:  {engine.run_step(request)!r}")
    again = engine.run_step(request)
    print(f"  again:  {again!r} rejected by {again.debug_info['rejectedBy']}")
    print(f"  undo:   {engine.undo('undo')!r}")
    print(f"  retry:  {engine.run_step(request)!r}")


def demo_hints():
    """Demonstrate hints and policies."""
    section("Hints and Policies")

    engine = StepOrchestrator(load_builtin_registry())
    for text in ["5/7 - 2/7", "7 : 3", "2 1/3", "7"]:
        hint = engine.hint(StepRequest(text))
        print(f"  {text:<12} {hint.description or hint.status}")

    request = StepRequest("2/4", policy_name="teacher", session_id="teacher")
    engine.run_step(request)
    print(f"\n  teacher repeats: {engine.run_step(request)!r}")


def demo_custom_course():
    """Demonstrate loading a course table from a file."""
    section("Custom Course")

    examples_dir = Path(__file__).parent
    registry = load_registry_from_file(examples_dir / "custom_course.json")
    print(f"  Loaded {len(registry)} rules from custom_course.json")

    engine = StepOrchestrator(registry)
    for text in ["2 + 3", "2 * 3", "1/2 + 1/2"]:
        result = engine.run_step(StepRequest(text))
        print(f"  {text:<12} => {result.new_expression_text or result.status}")


def main():
    """Run all demonstrations."""
    print("STEPWISE - step-by-step arithmetic")
    print("Feature Demonstration")

    demo_parsing()
    demo_paths()
    demo_candidates()
    demo_steps()
    demo_support_and_undo()
    demo_hints()
    demo_custom_course()

    print("\n" + "="*60)
    print(" Demo complete!")
    print("="*60)


if __name__ == "__main__":
    main()
