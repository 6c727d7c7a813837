"""
Invariant registry for STEPWISE.

The registry holds the catalog of primitives (atomic transformations) and
the invariant sets (collections of rules that say when a primitive may be
applied). It is loaded once from a declarative JSON course table and is
read-only afterwards.

Course table format:
    {
        "primitives": [
            {"id": "P.INT_ADD", "name": "Add integers", "category": "integers"}
        ],
        "invariantSets": [
            {
                "id": "integers",
                "name": "Integer arithmetic",
                "rules": [
                    {
                        "id": "R.INT_ADD",
                        "title": "Add two integers",
                        "priority": 10,
                        "level": "intro",
                        "tags": ["integers"],
                        "primitiveIds": ["P.INT_ADD"],
                        "guard": {"kind": "binary", "op": "+",
                                  "left": "integer", "right": "integer"}
                    }
                ]
            }
        ]
    }

Loading is fail-fast: the whole table is validated and every problem is
reported in a single RegistryValidationError.

Lookups return copies, so callers can never change the shared registry.
"""

import copy
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from .errors import ModelIssue, RegistryLoadError, RegistryValidationError
from .guards import Guard, guard_from_dict

logger = logging.getLogger(__name__)

LEVELS = ("intro", "core", "advanced", "challenge")

# Packaged course tables, by name
COURSES_DIR = Path(__file__).parent / "courses"
DEFAULT_COURSE = "stage1"


# ============================================================
# Model
# ============================================================

class PrimitiveDefinition:
    """An atomic transformation known to the engine."""

    def __init__(self, id: str, name: str, description: str = "",
                 category: str = "", tags: Optional[List[str]] = None):
        self.id = id
        self.name = name
        self.description = description
        self.category = category
        self.tags = tags or []

    def __repr__(self) -> str:
        return f"PrimitiveDefinition({self.id!r})"

    def __eq__(self, other):
        if isinstance(other, PrimitiveDefinition):
            return self.to_dict() == other.to_dict()
        return False

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "tags": list(self.tags),
        }


class InvariantRule:
    """A rule: when its guard holds, its primitives may be applied."""

    def __init__(self, id: str, invariant_set_id: str, title: str,
                 primitive_ids: List[str], guard: Guard,
                 description: str = "", priority: int = 0,
                 level: str = "core", tags: Optional[List[str]] = None,
                 scenario_id: Optional[str] = None,
                 teaching_tag: Optional[str] = None):
        self.id = id
        self.invariant_set_id = invariant_set_id
        self.title = title
        self.description = description
        self.priority = priority  # informational; candidates keep table order
        self.level = level
        self.tags = tags or []
        self.primitive_ids = list(primitive_ids)
        self.scenario_id = scenario_id
        self.teaching_tag = teaching_tag
        self.guard = guard

    def __repr__(self) -> str:
        return f"@{self.id}[{self.priority}] \"{self.title}\" -> {', '.join(self.primitive_ids)}"

    def to_dict(self) -> Dict:
        d = {
            "id": self.id,
            "invariantSetId": self.invariant_set_id,
            "title": self.title,
            "description": self.description,
            "priority": self.priority,
            "level": self.level,
            "tags": list(self.tags),
            "primitiveIds": list(self.primitive_ids),
            "guard": self.guard.to_dict(),
        }
        if self.scenario_id is not None:
            d["scenarioId"] = self.scenario_id
        if self.teaching_tag is not None:
            d["teachingTag"] = self.teaching_tag
        return d


class InvariantSet:
    """A named, ordered collection of rules for one domain."""

    def __init__(self, id: str, name: str, rules: List[InvariantRule],
                 description: str = "", version: str = "1"):
        self.id = id
        self.name = name
        self.description = description
        self.version = version
        self.rules = list(rules)

    def __repr__(self) -> str:
        return f"InvariantSet({self.id!r}, {len(self.rules)} rules)"

    def __len__(self) -> int:
        return len(self.rules)

    def __iter__(self):
        return iter(self.rules)

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "rules": [rule.to_dict() for rule in self.rules],
        }


# ============================================================
# Registry
# ============================================================

class InvariantRegistry:
    """
    Read-only catalog of primitives and invariant sets.

    Build one with the load_registry_* functions, which validate the table
    first. The constructor trusts its input.

    Example:
        >>> registry = load_builtin_registry()
        >>> registry.get_primitive_by_id("P.INT_ADD").name
        'Add integers'
        >>> [r.id for r in registry.find_rules_by_primitive_id("P.INT_ADD")]
        ['R.INT_ADD']
    """

    def __init__(self, primitives: List[PrimitiveDefinition], invariant_sets: List[InvariantSet],
                 source: Optional[str] = None):
        self.source = source
        self._primitives: Dict[str, PrimitiveDefinition] = {p.id: p for p in primitives}
        self._sets: Dict[str, InvariantSet] = {s.id: s for s in invariant_sets}
        self._rules_by_primitive: Dict[str, List[InvariantRule]] = {}
        for invariant_set in invariant_sets:
            for rule in invariant_set.rules:
                for primitive_id in rule.primitive_ids:
                    self._rules_by_primitive.setdefault(primitive_id, []).append(rule)

    def get_invariant_set_by_id(self, set_id: str) -> Optional[InvariantSet]:
        invariant_set = self._sets.get(set_id)
        return copy.deepcopy(invariant_set) if invariant_set is not None else None

    def get_primitive_by_id(self, primitive_id: str) -> Optional[PrimitiveDefinition]:
        primitive = self._primitives.get(primitive_id)
        return copy.deepcopy(primitive) if primitive is not None else None

    def find_rules_by_primitive_id(self, primitive_id: str) -> List[InvariantRule]:
        """All rules that use the primitive, in table order."""
        return copy.deepcopy(self._rules_by_primitive.get(primitive_id, []))

    def get_all_invariant_sets(self) -> List[InvariantSet]:
        return copy.deepcopy(list(self._sets.values()))

    def get_all_primitives(self) -> List[PrimitiveDefinition]:
        return copy.deepcopy(list(self._primitives.values()))

    def find_rule(self, set_id: str, rule_id: str) -> Optional[InvariantRule]:
        invariant_set = self._sets.get(set_id)
        if invariant_set is None:
            return None
        for rule in invariant_set.rules:
            if rule.id == rule_id:
                return copy.deepcopy(rule)
        return None

    def has_primitive(self, primitive_id: str) -> bool:
        return primitive_id in self._primitives

    def set_ids(self) -> List[str]:
        """Invariant set ids in table order."""
        return list(self._sets)

    def rules_for_sets(self, set_ids: Optional[Iterable[str]] = None) -> List[InvariantRule]:
        """
        Rules of the requested sets, in request order then table order.

        None means every set. Unknown set ids are skipped with a warning.
        """
        if set_ids is None:
            set_ids = list(self._sets)
        rules: List[InvariantRule] = []
        for set_id in set_ids:
            invariant_set = self._sets.get(set_id)
            if invariant_set is None:
                logger.warning("Unknown invariant set %r skipped", set_id)
                continue
            rules.extend(copy.deepcopy(invariant_set.rules))
        return rules

    def __contains__(self, primitive_id: str) -> bool:
        return self.has_primitive(primitive_id)

    def __len__(self) -> int:
        return sum(len(s) for s in self._sets.values())

    def __repr__(self) -> str:
        return (f"InvariantRegistry({len(self._primitives)} primitives, "
                f"{len(self._sets)} sets, {len(self)} rules)")

    def to_dict(self) -> Dict:
        """Convert back to the course table format."""
        return {
            "primitives": [p.to_dict() for p in self._primitives.values()],
            "invariantSets": [s.to_dict() for s in self._sets.values()],
        }


# ============================================================
# Validation and loading
# ============================================================

def _check_str(value: Any, path: str, field: str, issues: List[ModelIssue],
               required: bool = True) -> Optional[str]:
    if value is None and not required:
        return None
    if not isinstance(value, str) or (required and not value.strip()):
        issues.append(ModelIssue("INVALID_FIELD", f"{path}.{field}",
                                 f"'{field}' must be a non-empty string"))
        return None
    return value


def _check_tags(value: Any, path: str, issues: List[ModelIssue]) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(t, str) for t in value):
        issues.append(ModelIssue("INVALID_FIELD", f"{path}.tags", "'tags' must be a list of strings"))
        return []
    return list(value)


def _build_primitives(data: Any, issues: List[ModelIssue]) -> List[PrimitiveDefinition]:
    if not isinstance(data, list):
        issues.append(ModelIssue("INVALID_SHAPE", "primitives", "'primitives' must be a list"))
        return []

    primitives = []
    seen = set()
    for i, item in enumerate(data):
        path = f"primitives[{i}]"
        if not isinstance(item, dict):
            issues.append(ModelIssue("INVALID_SHAPE", path, "primitive must be an object"))
            continue
        primitive_id = _check_str(item.get("id"), path, "id", issues)
        if primitive_id is None:
            continue
        if primitive_id in seen:
            issues.append(ModelIssue("DUPLICATE_PRIMITIVE_ID", f"{path}.id",
                                     f"primitive {primitive_id!r} is defined more than once"))
            continue
        seen.add(primitive_id)
        name = _check_str(item.get("name", primitive_id), path, "name", issues) or primitive_id
        description = _check_str(item.get("description", ""), path, "description", issues,
                                 required=False) or ""
        category = _check_str(item.get("category", ""), path, "category", issues,
                              required=False) or ""
        primitives.append(PrimitiveDefinition(
            id=primitive_id,
            name=name,
            description=description,
            category=category,
            tags=_check_tags(item.get("tags"), path, issues),
        ))
    return primitives


def _build_rule(item: Any, set_id: str, path: str, known_primitives: set,
                seen_rules: set, issues: List[ModelIssue]) -> Optional[InvariantRule]:
    if not isinstance(item, dict):
        issues.append(ModelIssue("INVALID_SHAPE", path, "rule must be an object"))
        return None

    ok = True
    rule_id = _check_str(item.get("id"), path, "id", issues)
    if rule_id is None:
        return None
    if rule_id in seen_rules:
        issues.append(ModelIssue("DUPLICATE_RULE_ID", f"{path}.id",
                                 f"rule {rule_id!r} is defined more than once in {set_id!r}"))
        ok = False
    seen_rules.add(rule_id)

    title = _check_str(item.get("title", rule_id), path, "title", issues)
    description = _check_str(item.get("description", ""), path, "description", issues,
                             required=False) or ""

    priority = item.get("priority", 0)
    if not isinstance(priority, int) or isinstance(priority, bool):
        issues.append(ModelIssue("INVALID_FIELD", f"{path}.priority", "'priority' must be an integer"))
        ok = False

    level = item.get("level", "core")
    if level not in LEVELS:
        issues.append(ModelIssue("INVALID_LEVEL", f"{path}.level",
                                 f"level must be one of {', '.join(LEVELS)}, got {level!r}"))
        ok = False

    primitive_ids = item.get("primitiveIds")
    if not isinstance(primitive_ids, list) or not all(isinstance(p, str) for p in primitive_ids or []):
        issues.append(ModelIssue("INVALID_SHAPE", f"{path}.primitiveIds",
                                 "'primitiveIds' must be a list of strings"))
        primitive_ids = []
        ok = False
    elif not primitive_ids:
        issues.append(ModelIssue("EMPTY_PRIMITIVE_IDS", f"{path}.primitiveIds",
                                 f"rule {rule_id!r} references no primitives"))
        ok = False
    for j, primitive_id in enumerate(primitive_ids):
        if primitive_id not in known_primitives:
            issues.append(ModelIssue("UNKNOWN_PRIMITIVE_ID", f"{path}.primitiveIds[{j}]",
                                     f"unknown primitive {primitive_id!r}"))
            ok = False

    scenario_id = _check_str(item.get("scenarioId"), path, "scenarioId", issues, required=False)
    teaching_tag = _check_str(item.get("teachingTag"), path, "teachingTag", issues, required=False)

    guard = None
    try:
        guard = guard_from_dict(item.get("guard"))
    except ValueError as e:
        issues.append(ModelIssue("INVALID_GUARD", f"{path}.guard", str(e)))
        ok = False

    if not ok or title is None:
        return None
    return InvariantRule(
        id=rule_id,
        invariant_set_id=set_id,
        title=title,
        description=description,
        priority=priority,
        level=level,
        tags=_check_tags(item.get("tags"), path, issues),
        primitive_ids=primitive_ids,
        scenario_id=scenario_id,
        teaching_tag=teaching_tag,
        guard=guard,
    )


def _build_sets(data: Any, known_primitives: set, issues: List[ModelIssue]) -> List[InvariantSet]:
    if not isinstance(data, list):
        issues.append(ModelIssue("INVALID_SHAPE", "invariantSets", "'invariantSets' must be a list"))
        return []

    sets = []
    seen_sets = set()
    for i, item in enumerate(data):
        path = f"invariantSets[{i}]"
        if not isinstance(item, dict):
            issues.append(ModelIssue("INVALID_SHAPE", path, "invariant set must be an object"))
            continue
        set_id = _check_str(item.get("id"), path, "id", issues)
        if set_id is None:
            continue
        if set_id in seen_sets:
            issues.append(ModelIssue("DUPLICATE_SET_ID", f"{path}.id",
                                     f"invariant set {set_id!r} is defined more than once"))
            continue
        seen_sets.add(set_id)

        rules_data = item.get("rules")
        if not isinstance(rules_data, list):
            issues.append(ModelIssue("INVALID_SHAPE", f"{path}.rules", "'rules' must be a list"))
            continue

        rules = []
        seen_rules: set = set()
        for j, rule_item in enumerate(rules_data):
            rule = _build_rule(rule_item, set_id, f"{path}.rules[{j}]",
                               known_primitives, seen_rules, issues)
            if rule is not None:
                rules.append(rule)

        sets.append(InvariantSet(
            id=set_id,
            name=_check_str(item.get("name", set_id), path, "name", issues) or set_id,
            description=_check_str(item.get("description", ""), path, "description", issues,
                                   required=False) or "",
            version=str(item.get("version", "1")),
            rules=rules,
        ))
    return sets


def validate_model(data: Any) -> List[ModelIssue]:
    """Return every problem in a course table (empty list when valid)."""
    issues: List[ModelIssue] = []
    _build(data, issues)
    return issues


def _build(data: Any, issues: List[ModelIssue]):
    if not isinstance(data, dict):
        issues.append(ModelIssue("INVALID_SHAPE", "$", "course table must be an object"))
        return [], []
    primitives = _build_primitives(data.get("primitives"), issues)
    known = {p.id for p in primitives}
    sets = _build_sets(data.get("invariantSets"), known, issues)
    return primitives, sets


def load_registry_from_dict(data: Dict, source: Optional[str] = None) -> InvariantRegistry:
    """
    Validate a course table and build a registry.

    Raises:
        RegistryValidationError: With every issue found, if the table is invalid.
    """
    issues: List[ModelIssue] = []
    primitives, sets = _build(data, issues)
    if issues:
        logger.error("Course table%s has %d issue(s)",
                     f" {source}" if source else "", len(issues))
        raise RegistryValidationError(issues, source)
    registry = InvariantRegistry(primitives, sets, source)
    logger.debug("Loaded %r", registry)
    return registry


def load_registry_from_json(text: str, source: Optional[str] = None) -> InvariantRegistry:
    """
    Load a registry from JSON text.

    Raises:
        RegistryLoadError: If the text is not valid JSON.
        RegistryValidationError: If the table is invalid.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise RegistryLoadError(f"Invalid JSON{' in ' + source if source else ''}: {e}") from e
    return load_registry_from_dict(data, source)


def load_registry_from_file(path: Union[str, Path]) -> InvariantRegistry:
    """
    Load a registry from a .json course file.

    Raises:
        RegistryLoadError: If the file cannot be read or is not valid JSON.
        RegistryValidationError: If the table is invalid.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise RegistryLoadError(f"Cannot read course file {path}: {e}") from e
    return load_registry_from_json(text, source=str(path))


def list_builtin_courses() -> List[str]:
    """Names of the course tables shipped with the package."""
    return sorted(p.stem for p in COURSES_DIR.glob("*.json"))


def load_builtin_registry(name: str = DEFAULT_COURSE) -> InvariantRegistry:
    """
    Load a course table shipped with the package.

    Raises:
        RegistryLoadError: If no builtin course has that name.
    """
    path = COURSES_DIR / f"{name}.json"
    if not path.is_file():
        available = ", ".join(list_builtin_courses()) or "none"
        raise RegistryLoadError(f"Unknown builtin course {name!r} (available: {available})")
    return load_registry_from_file(path)
