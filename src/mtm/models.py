"""Data models for the manual transfer policy.

Entries are immutable values keyed by an ordered address pair. The registries
replace an entry wholesale on every write; the only partial change ever made
is the allowance decrement performed by the verifier, which also goes through
a replacement of the stored value.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, NamedTuple


class Result(str, Enum):
    """Three-valued verdict of the transfer policy."""

    VALID = "VALID"
    INVALID = "INVALID"
    NA = "NA"


class TransferPair(NamedTuple):
    """Ordered (sender, recipient) key. ``(a, b)`` and ``(b, a)`` are distinct."""

    from_address: str
    to_address: str


@dataclass(frozen=True)
class ApprovalEntry:
    """Allowance that may move from one address to another until expiry.

    Attributes:
        allowance: Remaining amount that may be transferred
        expiry_time: Last timestamp (inclusive) at which the approval applies
    """

    allowance: int = 0
    expiry_time: int = 0

    def is_active(self, now: int) -> bool:
        """Check whether the approval still applies at ``now`` (inclusive)."""
        return self.expiry_time >= now

    def covers(self, amount: int, now: int) -> bool:
        """Check whether the approval authorizes ``amount`` at ``now``."""
        return self.is_active(now) and 0 <= amount <= self.allowance

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


@dataclass(frozen=True)
class BlockingEntry:
    """Block on transfers between an ordered pair until expiry."""

    expiry_time: int = 0

    def is_active(self, now: int) -> bool:
        """Check whether the block still applies at ``now`` (inclusive)."""
        return self.expiry_time >= now

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


# Absent keys read back as these
NO_APPROVAL = ApprovalEntry()
NO_BLOCKING = BlockingEntry()


# =============================================================================
# Audit Events
# =============================================================================


@dataclass(frozen=True)
class ApprovalSet:
    """Emitted after a successful ``add_manual_approval``."""

    from_address: str
    to_address: str
    allowance: int
    expiry_time: int
    set_by: str

    event_type = "APPROVAL_SET"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class BlockingSet:
    """Emitted after a successful ``add_manual_blocking``."""

    from_address: str
    to_address: str
    expiry_time: int
    set_by: str

    event_type = "BLOCKING_SET"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ApprovalRevoked:
    """Emitted after a successful ``revoke_manual_approval``."""

    from_address: str
    to_address: str
    revoked_by: str

    event_type = "APPROVAL_REVOKED"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class BlockingRevoked:
    """Emitted after a successful ``revoke_manual_blocking``."""

    from_address: str
    to_address: str
    revoked_by: str

    event_type = "BLOCKING_REVOKED"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


AuditEvent = ApprovalSet | BlockingSet | ApprovalRevoked | BlockingRevoked
