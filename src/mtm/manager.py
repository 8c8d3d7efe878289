"""Manual transfer manager: permission-gated registry writes plus verification.

The manager owns both registries and the verifier, and is the only object
callers talk to. Every public call runs under one re-entrant lock so that a
verification's read-then-decrement cannot interleave with a concurrent write
on the same pair.

USAGE:
    manager = ManualTransferManager(
        permission_gate=GrantTable(owner="issuer"),
        clock=SystemClock(),
        pause_state=PauseFlag(),
    )
    manager.add_manual_approval("issuer", "alice", "bob", 100, expiry_time)
    manager.verify_transfer("alice", "bob", 40, is_transfer=True)  # VALID
"""

from __future__ import annotations

import threading
from collections.abc import Callable

from mtm.logging import get_logger, log_audit_event
from mtm.models import (
    ApprovalEntry,
    ApprovalRevoked,
    ApprovalSet,
    AuditEvent,
    BlockingEntry,
    BlockingRevoked,
    BlockingSet,
    Result,
    TransferPair,
)
from mtm.protocols import ClockProtocol, PauseStateProtocol, PermissionGateProtocol
from mtm.registry import ApprovalRegistry, BlockingRegistry
from mtm.verifier import TransferVerifier

logger = get_logger("manager")

# Capability required by every mutating call on this manager
TRANSFER_APPROVAL_TAG = "TRANSFER_APPROVAL"

AuditListener = Callable[[AuditEvent], None]


class Unauthorized(PermissionError):
    """Raised when a caller lacks the permission tag for a mutating call."""

    def __init__(self, caller: str, tag: str) -> None:
        super().__init__(f"Caller '{caller}' lacks permission '{tag}'")
        self.caller = caller
        self.tag = tag


def _require_unsigned(name: str, value: int) -> None:
    if value < 0:
        raise ValueError(f"{name} must be a non-negative integer, got {value}")


class ManualTransferManager:
    """Approval/blocking transfer policy with audited administrative writes."""

    def __init__(
        self,
        permission_gate: PermissionGateProtocol,
        clock: ClockProtocol,
        pause_state: PauseStateProtocol,
        approvals: ApprovalRegistry | None = None,
        blocks: BlockingRegistry | None = None,
    ) -> None:
        """Initialize manager.

        Args:
            permission_gate: Capability check for administrative callers
            clock: Source of the current timestamp
            pause_state: Global pause flag
            approvals: Approval registry (fresh empty one if omitted)
            blocks: Blocking registry (fresh empty one if omitted)
        """
        self._gate = permission_gate
        self._approvals = approvals if approvals is not None else ApprovalRegistry()
        self._blocks = blocks if blocks is not None else BlockingRegistry()
        self._verifier = TransferVerifier(self._approvals, self._blocks, clock, pause_state)
        self._listeners: list[AuditListener] = []
        self._lock = threading.RLock()

    # =========================================================================
    # Audit listeners
    # =========================================================================

    def subscribe(self, listener: AuditListener) -> Callable[[], None]:
        """Register a listener called synchronously with every audit event.

        A listener that raises does not stop delivery to the others; the
        error reaches the caller of the mutating operation afterwards.

        Args:
            listener: Callable receiving the emitted event

        Returns:
            Callable that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: AuditEvent) -> None:
        """Deliver an event to the audit log and every listener.

        A failing listener does not stop delivery to the others. The first
        failure is re-raised once every listener has been called; the registry
        write that produced the event stays in place.
        """
        log_audit_event(event)
        first_error: Exception | None = None
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.exception(
                    f"Audit listener failed on {event.event_type}",
                    extra={"listener": repr(listener)},
                )
                if first_error is None:
                    first_error = e
        if first_error is not None:
            raise first_error

    def _authorize(self, caller: str, operation: str) -> None:
        if not self._gate.check(caller, TRANSFER_APPROVAL_TAG):
            logger.warning(
                f"Unauthorized {operation} by '{caller}'",
                extra={"caller": caller, "tag": TRANSFER_APPROVAL_TAG},
            )
            raise Unauthorized(caller, TRANSFER_APPROVAL_TAG)

    # =========================================================================
    # Administrative mutation
    # =========================================================================

    def add_manual_approval(
        self,
        caller: str,
        from_address: str,
        to_address: str,
        allowance: int,
        expiry_time: int,
    ) -> None:
        """Overwrite the approval for an ordered pair.

        ``expiry_time=0`` removes the approval in effect. No check is made
        that the expiry lies in the future or that the addresses differ.

        Args:
            caller: Actor making the call
            from_address: Sender address
            to_address: Recipient address
            allowance: Amount that may be transferred
            expiry_time: Last timestamp (inclusive) the approval applies

        Raises:
            Unauthorized: If caller lacks the TRANSFER_APPROVAL permission
            ValueError: If allowance or expiry_time is negative
        """
        with self._lock:
            self._authorize(caller, "add_manual_approval")
            _require_unsigned("allowance", allowance)
            _require_unsigned("expiry_time", expiry_time)
            self._approvals.set(from_address, to_address, allowance, expiry_time)
            self._emit(
                ApprovalSet(
                    from_address=from_address,
                    to_address=to_address,
                    allowance=allowance,
                    expiry_time=expiry_time,
                    set_by=caller,
                )
            )

    def add_manual_blocking(
        self,
        caller: str,
        from_address: str,
        to_address: str,
        expiry_time: int,
    ) -> None:
        """Overwrite the block for an ordered pair.

        Raises:
            Unauthorized: If caller lacks the TRANSFER_APPROVAL permission
            ValueError: If expiry_time is negative
        """
        with self._lock:
            self._authorize(caller, "add_manual_blocking")
            _require_unsigned("expiry_time", expiry_time)
            self._blocks.set(from_address, to_address, expiry_time)
            self._emit(
                BlockingSet(
                    from_address=from_address,
                    to_address=to_address,
                    expiry_time=expiry_time,
                    set_by=caller,
                )
            )

    def revoke_manual_approval(self, caller: str, from_address: str, to_address: str) -> None:
        """Remove the approval for an ordered pair.

        Raises:
            Unauthorized: If caller lacks the TRANSFER_APPROVAL permission
        """
        with self._lock:
            self._authorize(caller, "revoke_manual_approval")
            self._approvals.delete(from_address, to_address)
            self._emit(
                ApprovalRevoked(from_address=from_address, to_address=to_address, revoked_by=caller)
            )

    def revoke_manual_blocking(self, caller: str, from_address: str, to_address: str) -> None:
        """Remove the block for an ordered pair.

        Raises:
            Unauthorized: If caller lacks the TRANSFER_APPROVAL permission
        """
        with self._lock:
            self._authorize(caller, "revoke_manual_blocking")
            self._blocks.delete(from_address, to_address)
            self._emit(
                BlockingRevoked(from_address=from_address, to_address=to_address, revoked_by=caller)
            )

    def list_permission_tags(self) -> frozenset[str]:
        """Permission tags required by this manager's mutating calls."""
        return frozenset({TRANSFER_APPROVAL_TAG})

    # =========================================================================
    # Queries
    # =========================================================================

    def verify_transfer(
        self,
        from_address: str,
        to_address: str,
        amount: int,
        is_transfer: bool = False,
    ) -> Result:
        """Verify a transfer; consumes allowance only when ``is_transfer``."""
        with self._lock:
            return self._verifier.verify_transfer(from_address, to_address, amount, is_transfer)

    def get_approval(self, from_address: str, to_address: str) -> ApprovalEntry:
        with self._lock:
            return self._approvals.get(from_address, to_address)

    def get_blocking(self, from_address: str, to_address: str) -> BlockingEntry:
        with self._lock:
            return self._blocks.get(from_address, to_address)

    def list_approvals(self) -> list[tuple[TransferPair, ApprovalEntry]]:
        """All stored approvals, expired ones included, sorted by pair."""
        with self._lock:
            return sorted(self._approvals.items(), key=lambda item: item[0])

    def list_blockings(self) -> list[tuple[TransferPair, BlockingEntry]]:
        """All stored blocks, expired ones included, sorted by pair."""
        with self._lock:
            return sorted(self._blocks.items(), key=lambda item: item[0])
