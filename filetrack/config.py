"""Workspace configuration.

Values are resolved in order: environment variables, then the workspace's
``config.yml`` (found under the tasks root), then built-in defaults.

Environment variables:
- FILETRACK_ROOT: Tasks root directory (default: ./.tasks)
- FILETRACK_IDENTITY: Overrides the resolved current user
- FILETRACK_DEFAULT_REPORTER: Fallback identity when no override is set
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.yml"
DEFAULT_ROOT = ".tasks"
DEFAULT_ISSUE_STATES = ("todo", "in_progress", "done")
_DONE_NAMES = ("done", "completed", "closed")


@dataclass(frozen=True)
class SprintDefaults:
    """Plan values applied to newly created sprints when they leave them unset."""

    capacity_points: int | None = None
    capacity_hours: int | None = None
    length: str | None = None
    overdue_after: str | None = None

    @property
    def is_empty(self) -> bool:
        return not any(
            (self.capacity_points, self.capacity_hours, self.length, self.overdue_after)
        )


@dataclass(frozen=True)
class TrackerConfig:
    """Resolved workspace configuration."""

    root: Path
    default_reporter: str | None = None
    issue_states: tuple[str, ...] = DEFAULT_ISSUE_STATES
    done_statuses: frozenset[str] = frozenset()
    blocked_statuses: frozenset[str] = frozenset()
    notifications_enabled: bool = True
    sprint_defaults: SprintDefaults = field(default_factory=SprintDefaults)

    def is_done(self, status: str | None) -> bool:
        return bool(status and status.lower() in self.done_statuses)

    def is_blocked(self, status: str | None) -> bool:
        return bool(status and status.lower() in self.blocked_statuses)


def resolve_tasks_root(path: str | Path | None = None) -> Path:
    """Get the tasks root from the argument, environment, or default."""
    if path:
        return Path(path)
    return Path(os.getenv("FILETRACK_ROOT", DEFAULT_ROOT))


def _load_config_file(root: Path) -> dict:
    """Load the workspace config file.

    Returns:
        Parsed mapping, or an empty dict when the file does not exist.

    Raises:
        ConfigError: If the file is unreadable, not YAML, or not a mapping.
    """
    path = root / CONFIG_FILENAME
    if not path.exists():
        return {}
    try:
        with path.open(encoding="utf-8") as f:
            result = yaml.safe_load(f)
    except (yaml.YAMLError, OSError) as e:
        msg = f"Could not load config {path}: {e}"
        raise ConfigError(msg) from e
    if result is None:
        return {}
    if not isinstance(result, dict):
        msg = f"Config {path} must contain a mapping at the top level"
        raise ConfigError(msg)
    return result


def _status_list(value: object, key: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        msg = f"Config key '{key}' must be a list of strings"
        raise ConfigError(msg)
    return tuple(v.strip() for v in value if v.strip())


def _optional_int(value: object, key: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        msg = f"Config key '{key}' must be a non-negative integer"
        raise ConfigError(msg)
    return value or None


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def determine_done_statuses(
    issue_states: tuple[str, ...], explicit: tuple[str, ...] = ()
) -> frozenset[str]:
    """Lowercased statuses that count as done.

    An explicit list wins. Otherwise the last workflow state plus any state
    named done/completed/closed. Falls back to those three names.
    """
    if explicit:
        return frozenset(s.lower() for s in explicit)
    done: set[str] = set()
    if issue_states:
        done.add(issue_states[-1].lower())
    done.update(s.lower() for s in issue_states if s.lower() in _DONE_NAMES)
    return frozenset(done or _DONE_NAMES)


def determine_blocked_statuses(
    issue_states: tuple[str, ...], explicit: tuple[str, ...] = ()
) -> frozenset[str]:
    """Lowercased statuses that indicate a blocked task."""
    if explicit:
        return frozenset(s.lower() for s in explicit)
    return frozenset(s.lower() for s in issue_states if "block" in s.lower())


def load_config(root: str | Path | None = None) -> TrackerConfig:
    """Load configuration for a tasks root.

    Args:
        root: Tasks root (None = env/default).

    Returns:
        A frozen TrackerConfig.

    Raises:
        ConfigError: If the config file is malformed.
    """
    resolved_root = resolve_tasks_root(root)
    data = _load_config_file(resolved_root)

    issue_states = _status_list(data.get("issue_states"), "issue_states")
    issue_states = issue_states or DEFAULT_ISSUE_STATES

    sprints = data.get("sprints") or {}
    if not isinstance(sprints, dict):
        msg = "Config key 'sprints' must be a mapping"
        raise ConfigError(msg)
    notifications = sprints.get("notifications") or {}
    defaults = sprints.get("defaults") or {}
    if not isinstance(notifications, dict) or not isinstance(defaults, dict):
        msg = "Config keys 'sprints.notifications' and 'sprints.defaults' must be mappings"
        raise ConfigError(msg)

    reporter = os.getenv("FILETRACK_DEFAULT_REPORTER") or _optional_str(
        data.get("default_reporter")
    )

    config = TrackerConfig(
        root=resolved_root,
        default_reporter=reporter,
        issue_states=issue_states,
        done_statuses=determine_done_statuses(
            issue_states, _status_list(data.get("done_statuses"), "done_statuses")
        ),
        blocked_statuses=determine_blocked_statuses(
            issue_states,
            _status_list(data.get("blocked_statuses"), "blocked_statuses"),
        ),
        notifications_enabled=bool(notifications.get("enabled", True)),
        sprint_defaults=SprintDefaults(
            capacity_points=_optional_int(
                defaults.get("capacity_points"), "sprints.defaults.capacity_points"
            ),
            capacity_hours=_optional_int(
                defaults.get("capacity_hours"), "sprints.defaults.capacity_hours"
            ),
            length=_optional_str(defaults.get("length")),
            overdue_after=_optional_str(defaults.get("overdue_after")),
        ),
    )
    logger.debug("Loaded config for %s", resolved_root)
    return config
