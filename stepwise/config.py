"""
Engine configuration for STEPWISE.

Settings come from three layers, later ones winning:

    1. defaults (builtin "stage1" course, "student" policy, WARNING logs)
    2. an optional JSON config file
    3. environment variables STEPWISE_COURSE, STEPWISE_POLICY,
       STEPWISE_LOG_LEVEL, STEPWISE_MAX_HISTORY_DEPTH

Config file format:
    {
        "course": "stage1",            # builtin name, or path to a .json table
        "policy": "student",
        "logLevel": "INFO",
        "maxHistoryDepth": 100
    }

A course name that is not builtin is looked up as NAME.json in the course
search paths (./courses, then ~/.config/stepwise/courses).
"""

import json
import logging
import os
from pathlib import Path
from typing import Dict, Mapping, Optional, Union

from .errors import ConfigError
from .registry import (
    COURSES_DIR, DEFAULT_COURSE, InvariantRegistry,
    load_builtin_registry, load_registry_from_file,
)
from .stepmaster import DEFAULT_POLICY, POLICIES

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Standard course search paths
COURSE_SEARCH_PATHS = [
    Path("./courses"),
    Path.home() / ".config" / "stepwise" / "courses",
]

ENV_COURSE = "STEPWISE_COURSE"
ENV_POLICY = "STEPWISE_POLICY"
ENV_LOG_LEVEL = "STEPWISE_LOG_LEVEL"
ENV_MAX_HISTORY_DEPTH = "STEPWISE_MAX_HISTORY_DEPTH"


class EngineConfig:
    """Resolved engine settings."""

    def __init__(self, course: str = DEFAULT_COURSE, policy: str = DEFAULT_POLICY,
                 log_level: str = "WARNING", max_history_depth: Optional[int] = None):
        self.course = course
        self.policy = policy
        self.log_level = log_level
        self.max_history_depth = max_history_depth

    def __repr__(self) -> str:
        return (f"EngineConfig(course={self.course!r}, policy={self.policy!r}, "
                f"log_level={self.log_level!r}, max_history_depth={self.max_history_depth!r})")

    def __eq__(self, other):
        if isinstance(other, EngineConfig):
            return self.to_dict() == other.to_dict()
        return False

    def to_dict(self) -> Dict:
        return {
            "course": self.course,
            "policy": self.policy,
            "logLevel": self.log_level,
            "maxHistoryDepth": self.max_history_depth,
        }

    def validate(self) -> "EngineConfig":
        """
        Check the settings.

        Raises:
            ConfigError: On a non-string setting, an unknown policy or log
                level, or a bad depth.
        """
        for key, value in (("course", self.course), ("policy", self.policy),
                           ("logLevel", self.log_level)):
            if not isinstance(value, str):
                raise ConfigError(f"{key} must be a string, not {type(value).__name__}")
        if self.policy not in POLICIES:
            raise ConfigError(f"Unknown policy {self.policy!r} (available: {', '.join(POLICIES)})")
        if self.log_level not in LOG_LEVELS:
            raise ConfigError(f"Unknown log level {self.log_level!r}")
        if self.max_history_depth is not None and self.max_history_depth < 1:
            raise ConfigError("maxHistoryDepth must be at least 1")
        if not self.course:
            raise ConfigError("course must not be empty")
        return self


def _parse_depth(value, source: str) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ConfigError(f"{source} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{source} must be an integer, got {value!r}")


def load_config(path: Optional[Union[str, Path]] = None,
                env: Optional[Mapping[str, str]] = None) -> EngineConfig:
    """
    Build an EngineConfig from defaults, an optional file and the environment.

    Args:
        path: JSON config file, or None.
        env: Environment mapping (default: os.environ).

    Raises:
        ConfigError: If the file cannot be read or a setting is invalid.
    """
    env = os.environ if env is None else env
    config = EngineConfig()

    if path is not None:
        path = Path(path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise ConfigError(f"Cannot read config file {path}: {e}") from e
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in config file {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain an object")

        unknown = set(data) - {"course", "policy", "logLevel", "maxHistoryDepth"}
        if unknown:
            logger.warning("Ignoring unknown config keys: %s", ", ".join(sorted(unknown)))
        config.course = data.get("course", config.course)
        config.policy = data.get("policy", config.policy)
        level = data.get("logLevel", config.log_level)
        config.log_level = level.upper() if isinstance(level, str) else level
        config.max_history_depth = _parse_depth(data.get("maxHistoryDepth"), "maxHistoryDepth")

    if env.get(ENV_COURSE):
        config.course = env[ENV_COURSE]
    if env.get(ENV_POLICY):
        config.policy = env[ENV_POLICY]
    if env.get(ENV_LOG_LEVEL):
        config.log_level = env[ENV_LOG_LEVEL].upper()
    if env.get(ENV_MAX_HISTORY_DEPTH):
        config.max_history_depth = _parse_depth(env[ENV_MAX_HISTORY_DEPTH], ENV_MAX_HISTORY_DEPTH)

    return config.validate()


def find_course(name_or_path: str) -> Optional[Path]:
    """
    Locate a course table file.

    Args:
        name_or_path: Either a path to a .json file, or a name to search for

    Returns:
        The file path, or None if not found
    """
    path = Path(name_or_path)

    # If it's an explicit path
    if path.suffix == ".json" or "/" in name_or_path or "\\" in name_or_path:
        return path if path.is_file() else None

    for search_dir in COURSE_SEARCH_PATHS:
        candidate = search_dir / f"{name_or_path}.json"
        if candidate.is_file():
            return candidate
    return None


def load_course(name_or_path: str) -> InvariantRegistry:
    """
    Load a course by builtin name, search-path name, or file path.

    Raises:
        ConfigError: If the course cannot be found.
        RegistryLoadError, RegistryValidationError: If the table is broken.
    """
    if (COURSES_DIR / f"{name_or_path}.json").is_file():
        return load_builtin_registry(name_or_path)
    path = find_course(name_or_path)
    if path is None:
        raise ConfigError(f"Course not found: {name_or_path}")
    logger.info("Loading course from %s", path)
    return load_registry_from_file(path)
