"""
STEPWISE - step-by-step arithmetic with explicit rules

A step-decision engine for arithmetic on integers, fractions and mixed
numbers. Given an expression and the place a learner points at, it finds
the single valid next step, applies it, and remembers it.

Quick Start:
    from stepwise import StepOrchestrator, StepRequest, load_builtin_registry

    engine = StepOrchestrator(load_builtin_registry())

    engine.run_step(StepRequest("1/3 + 2/5")).new_expression_text
    # => "11/15"

    engine.run_step(StepRequest("3 + 2/5", selection_path="term[0]")).new_expression_text
    # => "3/1 + 2/5"

Pipeline:
    parse          text -> expression tree (or a falsy ParseFailure)
    MapMaster      tree + selection -> candidate steps from the course rules
    StepMaster     candidates + history + policy -> one decision
    primitives     decision -> new tree
    history        applied steps, with undo

Course tables:
    Rules live in JSON course tables (see stepwise/courses/stage1.json).
    Each rule has a guard saying where it applies and the primitives it runs:

    {"id": "R.INT_ADD", "title": "Add two integers",
     "primitiveIds": ["P.INT_ADD"],
     "guard": {"kind": "binary", "op": "+", "left": "integer", "right": "integer"}}
"""

__version__ = "0.1.0"

# Expression trees
from .expression import (
    Node,
    Integer,
    Fraction,
    MixedNumber,
    BinaryOp,
    UnaryOp,
    Group,
    Path,
    ROOT,
    serialize,
    to_dict,
    format_path,
    parse_path,
    get_node_at,
    replace_node_at,
    operator_paths,
)

# Parser
from .parser import (
    parse,
    parse_or_raise,
    ParseFailure,
)

# Errors
from .errors import (
    StepwiseError,
    ModelIssue,
    RegistryValidationError,
    RegistryLoadError,
    ConfigError,
    ExecutorError,
)

# Registry and guards
from .guards import (
    Guard,
    OperandGuard,
    BinaryGuard,
    SupportGuard,
    UnaryGuard,
    GroupGuard,
    guard_from_dict,
)
from .registry import (
    InvariantRegistry,
    InvariantSet,
    InvariantRule,
    PrimitiveDefinition,
    validate_model,
    load_registry_from_dict,
    load_registry_from_json,
    load_registry_from_file,
    load_builtin_registry,
    list_builtin_courses,
)

# Engine
from .mapmaster import MapMaster, MapResult, Candidate, Selection
from .stepmaster import (
    StepPolicy,
    Decision,
    decide,
    get_policy,
    STUDENT_POLICY,
    TEACHER_POLICY,
    POLICIES,
)
from .primitives import (
    ExecutionResult,
    PrimitiveExecutor,
    EXECUTORS,
    run_primitives,
)
from .history import StepHistory, StepHistoryEntry, InMemoryHistoryStore
from .orchestrator import (
    StepOrchestrator,
    StepRequest,
    StepResult,
    HintResult,
    UndoResult,
)
from .config import EngineConfig, load_config, load_course

# Public API
__all__ = [
    # Version
    "__version__",
    # Expression trees
    "Node",
    "Integer",
    "Fraction",
    "MixedNumber",
    "BinaryOp",
    "UnaryOp",
    "Group",
    "Path",
    "ROOT",
    "serialize",
    "to_dict",
    "format_path",
    "parse_path",
    "get_node_at",
    "replace_node_at",
    "operator_paths",
    # Parser
    "parse",
    "parse_or_raise",
    "ParseFailure",
    # Errors
    "StepwiseError",
    "ModelIssue",
    "RegistryValidationError",
    "RegistryLoadError",
    "ConfigError",
    "ExecutorError",
    # Guards
    "Guard",
    "OperandGuard",
    "BinaryGuard",
    "SupportGuard",
    "UnaryGuard",
    "GroupGuard",
    "guard_from_dict",
    # Registry
    "InvariantRegistry",
    "InvariantSet",
    "InvariantRule",
    "PrimitiveDefinition",
    "validate_model",
    "load_registry_from_dict",
    "load_registry_from_json",
    "load_registry_from_file",
    "load_builtin_registry",
    "list_builtin_courses",
    # Engine
    "MapMaster",
    "MapResult",
    "Candidate",
    "Selection",
    "StepPolicy",
    "Decision",
    "decide",
    "get_policy",
    "STUDENT_POLICY",
    "TEACHER_POLICY",
    "POLICIES",
    "ExecutionResult",
    "PrimitiveExecutor",
    "EXECUTORS",
    "run_primitives",
    "StepHistory",
    "StepHistoryEntry",
    "InMemoryHistoryStore",
    "StepOrchestrator",
    "StepRequest",
    "StepResult",
    "HintResult",
    "UndoResult",
    # Configuration
    "EngineConfig",
    "load_config",
    "load_course",
]
