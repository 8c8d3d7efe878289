"""Protocol definitions for the collaborators the policy consumes.

The policy never samples time, pause state or permissions on its own; it is
handed objects satisfying these protocols so decisions stay deterministic.

USAGE:
    from mtm.protocols import ClockProtocol

    def expired(clock: ClockProtocol, expiry_time: int) -> bool:
        return expiry_time < clock.now()
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class ClockProtocol(Protocol):
    """Protocol for the logical time source."""

    def now(self) -> int:
        """Return the current timestamp (unsigned integer seconds)."""
        ...


@runtime_checkable
class PermissionGateProtocol(Protocol):
    """Protocol for capability checks on administrative callers."""

    def check(self, caller: str, tag: str) -> bool:
        """Return True if ``caller`` holds the permission ``tag``.

        Args:
            caller: Identifier of the actor making the call
            tag: Permission tag required by the operation

        Returns:
            True if the call may proceed
        """
        ...


@runtime_checkable
class PauseStateProtocol(Protocol):
    """Protocol for the global pause flag."""

    def is_paused(self) -> bool:
        """Return True while all policy decisions are suspended."""
        ...
