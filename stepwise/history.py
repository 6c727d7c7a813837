"""
Step history for STEPWISE sessions.

A session's history is an append-only log. Each applied step adds a
"step" entry; undo adds an "undo" entry that points at the step it
cancels. Entries are never edited or removed once written, except when
the log is trimmed to its maximum depth: undone steps and undo records
go first, then the oldest steps still in force.

Ids are numbered per history ("h1", "h2", ...).

The effective view replays the log and drops undone steps. Repetition
checks read the last effective step.
"""

import logging
import re
import threading
import time
import uuid
from typing import Dict, Iterator, List, Optional

from .expression import Path

logger = logging.getLogger(__name__)

STEP = "step"
UNDO = "undo"

_SEQUENTIAL_ID = re.compile(r"h(\d+)$")


class StepHistoryEntry:
    """One record in a session history."""

    __slots__ = ("id", "timestamp", "expression_before", "expression_after",
                 "invariant_rule_id", "target_path", "primitive_ids", "kind", "undoes")

    def __init__(self, expression_before: str, expression_after: str,
                 invariant_rule_id: Optional[str] = None,
                 target_path: Optional[Path] = None,
                 primitive_ids: Optional[List[str]] = None,
                 kind: str = STEP, undoes: Optional[str] = None,
                 id: Optional[str] = None, timestamp: Optional[float] = None):
        object.__setattr__(self, "id", id or uuid.uuid4().hex)
        object.__setattr__(self, "timestamp", timestamp if timestamp is not None else time.time())
        object.__setattr__(self, "expression_before", expression_before)
        object.__setattr__(self, "expression_after", expression_after)
        object.__setattr__(self, "invariant_rule_id", invariant_rule_id)
        object.__setattr__(self, "target_path",
                           tuple(target_path) if target_path is not None else None)
        object.__setattr__(self, "primitive_ids", tuple(primitive_ids or ()))
        object.__setattr__(self, "kind", kind)
        object.__setattr__(self, "undoes", undoes)

    def __setattr__(self, name, value):
        raise AttributeError("history entries are read-only")

    def __repr__(self) -> str:
        if self.kind == UNDO:
            return f"undo {self.undoes}: {self.expression_before} -> {self.expression_after}"
        return f"{self.invariant_rule_id}: {self.expression_before} -> {self.expression_after}"

    def to_dict(self) -> Dict:
        d = {
            "id": self.id,
            "timestamp": self.timestamp,
            "kind": self.kind,
            "expressionBefore": self.expression_before,
            "expressionAfter": self.expression_after,
            "invariantRuleId": self.invariant_rule_id,
            "targetPath": list(self.target_path) if self.target_path is not None else None,
            "primitiveIds": list(self.primitive_ids),
        }
        if self.undoes is not None:
            d["undoes"] = self.undoes
        return d


class StepHistory:
    """
    Append-only log of a session's steps and undos.

    Attributes:
        entries: All records, oldest first.
        max_depth: Maximum number of records kept; None keeps everything.
    """

    def __init__(self, entries: Optional[List[StepHistoryEntry]] = None,
                 max_depth: Optional[int] = None):
        self.entries: List[StepHistoryEntry] = list(entries or [])
        self.max_depth = max_depth
        self._last_id = max((int(m.group(1)) for m in
                             (_SEQUENTIAL_ID.match(e.id) for e in self.entries) if m),
                            default=0)

    def _new_id(self) -> str:
        self._last_id += 1
        return f"h{self._last_id}"

    def append(self, entry: StepHistoryEntry) -> StepHistoryEntry:
        self.entries.append(entry)
        if self.max_depth is not None and len(self.entries) > self.max_depth:
            self._trim(len(self.entries) - self.max_depth)
        return entry

    def _trim(self, excess: int) -> None:
        """
        Drop `excess` records, oldest first.

        Undone steps and undo records go before any step still in force, so
        trimming never changes the last effective step. An undone step is
        always older than its undo record, so no step comes back to life.
        """
        effective = {e.id for e in self.effective_steps()}
        stale = [e for e in self.entries if e.id not in effective]
        drop = stale[:excess]
        if len(drop) < excess:
            live = [e for e in self.entries if e.id in effective]
            drop.extend(live[:excess - len(drop)])
        dropped = {e.id for e in drop}
        self.entries = [e for e in self.entries if e.id not in dropped]
        logger.debug("Trimmed %d old history record(s)", len(drop))

    def add_step(self, expression_before: str, expression_after: str,
                 invariant_rule_id: str, target_path: Path,
                 primitive_ids: List[str]) -> StepHistoryEntry:
        return self.append(StepHistoryEntry(
            expression_before, expression_after,
            invariant_rule_id=invariant_rule_id,
            target_path=target_path,
            primitive_ids=primitive_ids,
            id=self._new_id(),
        ))

    def add_undo(self) -> Optional[StepHistoryEntry]:
        """
        Cancel the last effective step.

        Returns:
            The undo record, or None when there is nothing to undo.
        """
        last = self.last_step()
        if last is None:
            return None
        return self.append(StepHistoryEntry(
            last.expression_after, last.expression_before,
            kind=UNDO, undoes=last.id, id=self._new_id(),
        ))

    def effective_steps(self) -> List[StepHistoryEntry]:
        """Steps that are still in force, oldest first."""
        steps: List[StepHistoryEntry] = []
        for entry in self.entries:
            if entry.kind == STEP:
                steps.append(entry)
            elif entry.kind == UNDO and steps and steps[-1].id == entry.undoes:
                steps.pop()
        return steps

    def last_step(self) -> Optional[StepHistoryEntry]:
        steps = self.effective_steps()
        return steps[-1] if steps else None

    def copy(self) -> "StepHistory":
        # Entries are immutable, so a shallow copy of the list is enough
        clone = StepHistory(list(self.entries), self.max_depth)
        clone._last_id = self._last_id
        return clone

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[StepHistoryEntry]:
        return iter(self.entries)

    def __bool__(self) -> bool:
        return len(self.entries) > 0

    def __repr__(self) -> str:
        return f"StepHistory({len(self.entries)} records, {len(self.effective_steps())} effective)"

    def format(self, style: str = "verbose") -> str:
        """
        Format the history.

        Args:
            style: "verbose" lists every record, "chain" shows the effective
                expressions one per line.
        """
        if style == "chain":
            steps = self.effective_steps()
            if not steps:
                return "(no steps)"
            parts = [steps[0].expression_before]
            for step in steps:
                parts.append(f"  --({step.invariant_rule_id})-->")
                parts.append(step.expression_after)
            return "\n".join(parts)

        if not self.entries:
            return "(no steps)"
        return "\n".join(f"  {i}. {entry!r}" for i, entry in enumerate(self.entries, 1))

    def to_dict(self) -> Dict:
        return {
            "entries": [entry.to_dict() for entry in self.entries],
            "effectiveSteps": len(self.effective_steps()),
        }


class InMemoryHistoryStore:
    """
    History store keeping sessions in a dict.

    get() and put() exchange copies, so a history being built for a step
    that later fails never leaks into the store.
    """

    def __init__(self, max_depth: Optional[int] = None):
        self._sessions: Dict[str, StepHistory] = {}
        self._lock = threading.Lock()
        self.max_depth = max_depth

    def get(self, session_id: str) -> StepHistory:
        with self._lock:
            history = self._sessions.get(session_id)
            if history is None:
                return StepHistory(max_depth=self.max_depth)
            return history.copy()

    def put(self, session_id: str, history: StepHistory) -> None:
        with self._lock:
            self._sessions[session_id] = history.copy()

    def clear(self, session_id: Optional[str] = None) -> None:
        with self._lock:
            if session_id is None:
                self._sessions.clear()
            else:
                self._sessions.pop(session_id, None)

    def session_ids(self) -> List[str]:
        with self._lock:
            return list(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions
