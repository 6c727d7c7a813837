"""
Exception types for STEPWISE.

Load-time problems (a malformed course table, a bad config file) raise.
Step-time problems are reported as typed results by the orchestrator and
never escape it.
"""

from typing import List, Optional


class StepwiseError(Exception):
    """Base class for all STEPWISE errors."""


class ModelIssue:
    """A single problem found while validating a course table."""

    __slots__ = ("code", "path", "message")

    def __init__(self, code: str, path: str, message: str):
        self.code = code
        self.path = path
        self.message = message

    def __repr__(self) -> str:
        return f"{self.code} at {self.path}: {self.message}"

    def __eq__(self, other):
        if isinstance(other, ModelIssue):
            return (self.code, self.path, self.message) == (other.code, other.path, other.message)
        return False

    def to_dict(self):
        return {"code": self.code, "path": self.path, "message": self.message}


class RegistryValidationError(StepwiseError, ValueError):
    """Raised when a course table fails validation.

    All issues found are collected before raising, so one load attempt
    reports every problem in the table.
    """

    def __init__(self, issues: List[ModelIssue], source: Optional[str] = None):
        self.issues = list(issues)
        self.source = source
        where = f" in {source}" if source else ""
        details = "\n".join(f"  {issue!r}" for issue in self.issues)
        super().__init__(f"Invalid invariant model{where}:\n{details}")

    def codes(self) -> List[str]:
        """Issue codes in the order they were found."""
        return [issue.code for issue in self.issues]


class RegistryLoadError(StepwiseError):
    """Raised when a course file cannot be read or is not valid JSON."""


class ConfigError(StepwiseError, ValueError):
    """Raised for invalid engine configuration."""


class ExecutorError(StepwiseError):
    """Raised inside primitive transforms; executors turn it into a result."""

    def __init__(self, code: str, message: str = ""):
        self.code = code
        super().__init__(message or code)
