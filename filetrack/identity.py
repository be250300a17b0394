"""Current-user resolution for ``@me`` aliases.

Lookup order:
1. FILETRACK_IDENTITY environment variable
2. ``default_reporter`` from config (or FILETRACK_DEFAULT_REPORTER)
3. ``user.name`` then ``user.email`` from the enclosing git repo's config
4. USER / USERNAME environment variables
"""

from __future__ import annotations

import configparser
import logging
import os
from pathlib import Path

from cachetools import TTLCache

from .config import load_config
from .errors import ConfigError

logger = logging.getLogger(__name__)

ME_ALIASES = ("@me",)

# Cache: (root, env override) -> resolved identity (or None)
_identity_cache: TTLCache[tuple[str, str], str | None] = TTLCache(maxsize=32, ttl=60)


def invalidate_identity_cache() -> None:
    _identity_cache.clear()


def _find_git_config(start: Path) -> Path | None:
    current = start.resolve()
    for candidate in (current, *current.parents):
        git_config = candidate / ".git" / "config"
        if git_config.is_file():
            return git_config
    return None


def _git_identity(root: Path) -> str | None:
    path = _find_git_config(root)
    if path is None:
        return None
    parser = configparser.ConfigParser(strict=False, interpolation=None)
    try:
        parser.read(path, encoding="utf-8")
    except (configparser.Error, OSError) as e:
        logger.debug(f"Could not read git config {path}: {e}")
        return None
    if not parser.has_section("user"):
        return None
    for key in ("name", "email"):
        value = parser.get("user", key, fallback="").strip()
        if value:
            return value
    return None


def _resolve_uncached(root: Path) -> str | None:
    override = os.getenv("FILETRACK_IDENTITY", "").strip()
    if override:
        return override
    try:
        reporter = load_config(root).default_reporter
    except ConfigError as e:
        logger.debug(f"Ignoring config while resolving identity: {e}")
        reporter = None
    if reporter:
        return reporter
    git_user = _git_identity(root)
    if git_user:
        return git_user
    for var in ("USER", "USERNAME"):
        value = os.getenv(var, "").strip()
        if value:
            return value
    return None


def resolve_current_user(root: str | Path) -> str | None:
    """Resolve the current user's identity for a tasks root.

    Returns:
        The identity string, or None when nothing is configured.
    """
    root_path = Path(root)
    key = (str(root_path.resolve()), os.getenv("FILETRACK_IDENTITY", ""))
    if key in _identity_cache:
        return _identity_cache[key]
    identity = _resolve_uncached(root_path)
    _identity_cache[key] = identity
    return identity


def resolve_me_alias(value: str, root: str | Path) -> str | None:
    """Expand ``@me`` to the current user. Other values pass through trimmed.

    Returns:
        The concrete value, or None if ``@me`` cannot be resolved.
    """
    text = value.strip()
    if text.lower() in ME_ALIASES:
        return resolve_current_user(root)
    return text
