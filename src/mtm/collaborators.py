"""Concrete clock, pause flag and permission gate implementations.

These stand in for the surrounding framework when the manager is run on its
own (CLI, tests). Anything satisfying the protocols in ``mtm.protocols`` can
be injected instead.
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path

import yaml

from mtm.logging import get_logger

logger = get_logger("collaborators")


# =============================================================================
# Clocks
# =============================================================================


class SystemClock:
    """Real clock implementation using system time."""

    def now(self) -> int:
        """Return current unix time in whole seconds."""
        return int(time.time())


@dataclass
class FixedClock:
    """Clock pinned to a settable timestamp."""

    current: int = 0

    def now(self) -> int:
        """Return the pinned timestamp."""
        return self.current

    def set(self, timestamp: int) -> None:
        self.current = timestamp

    def advance(self, seconds: int) -> None:
        self.current += seconds


# =============================================================================
# Pause State
# =============================================================================


@dataclass
class PauseFlag:
    """Mutable global pause flag."""

    paused: bool = False

    def is_paused(self) -> bool:
        return self.paused

    def pause(self) -> None:
        logger.info("Transfer policy paused")
        self.paused = True

    def unpause(self) -> None:
        logger.info("Transfer policy unpaused")
        self.paused = False


# =============================================================================
# Permission Gate
# =============================================================================


class GrantsFileError(Exception):
    """Raised when a grants file cannot be read or has the wrong shape."""


class GrantTable:
    """Permission gate backed by an explicit ``caller -> tags`` table.

    The owner, when configured, passes every check.
    """

    def __init__(
        self,
        grants: Mapping[str, Iterable[str]] | None = None,
        owner: str | None = None,
    ) -> None:
        """Initialize grant table.

        Args:
            grants: Mapping of caller to the tags it holds
            owner: Caller that implicitly holds every tag
        """
        self._grants: dict[str, set[str]] = {
            caller: set(tags) for caller, tags in (grants or {}).items()
        }
        self.owner = owner

    def check(self, caller: str, tag: str) -> bool:
        """Return True if ``caller`` is the owner or holds ``tag``."""
        if self.owner is not None and caller == self.owner:
            return True
        return tag in self._grants.get(caller, set())

    def grant(self, caller: str, tag: str) -> None:
        self._grants.setdefault(caller, set()).add(tag)
        logger.info(f"Granted '{tag}' to '{caller}'")

    def revoke(self, caller: str, tag: str) -> None:
        self._grants.get(caller, set()).discard(tag)
        logger.info(f"Revoked '{tag}' from '{caller}'")

    @classmethod
    def from_yaml(cls, path: Path, owner: str | None = None) -> GrantTable:
        """Load grants from a YAML file.

        The file holds a top-level ``grants`` mapping of caller to a list of
        tags. A missing file yields an empty table.

        Args:
            path: Path to the grants file
            owner: Caller that implicitly holds every tag

        Returns:
            GrantTable populated from the file

        Raises:
            GrantsFileError: If the file is unreadable, not valid YAML, or
                not shaped as ``grants: {caller: [tags]}``
        """
        if not path.exists():
            logger.debug(f"No grants file at {path}")
            return cls(owner=owner)
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise GrantsFileError(f"Failed to load grants from {path}: {e}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise GrantsFileError(f"Grants file {path} must hold a mapping")
        grants = data.get("grants") or {}
        if not isinstance(grants, dict):
            raise GrantsFileError(f"'grants' in {path} must map callers to tag lists")

        table: dict[str, list[str]] = {}
        for caller, tags in grants.items():
            # A single tag may be written as a bare string
            if isinstance(tags, str):
                tags = [tags]
            elif tags is None:
                tags = []
            elif not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
                raise GrantsFileError(f"Tags for '{caller}' in {path} must be a list of strings")
            table[str(caller)] = tags
        logger.debug(f"Loaded grants for {len(table)} callers from {path}")
        return cls(grants=table, owner=owner)
