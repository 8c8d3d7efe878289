"""Approval registry keyed by ordered address pair.

Writes are unconditional overwrites. Writing ``expiry_time=0`` is the delete
idiom: such an entry can never be active, so it reads the same as an absent
one for every decision the verifier makes.
"""

from __future__ import annotations

from collections.abc import Iterator

from mtm.logging import get_logger
from mtm.models import NO_APPROVAL, ApprovalEntry, TransferPair

logger = get_logger("registry.approvals")


class AllowanceUnderflowError(RuntimeError):
    """Raised when consuming more allowance than is stored.

    This is a programming error: the verifier only consumes after confirming
    the allowance covers the amount.
    """


class ApprovalRegistry:
    """In-memory mapping of ``TransferPair`` to ``ApprovalEntry``."""

    def __init__(self) -> None:
        self._entries: dict[TransferPair, ApprovalEntry] = {}

    def set(self, from_address: str, to_address: str, allowance: int, expiry_time: int) -> None:
        """Overwrite the approval for ``(from_address, to_address)``.

        Args:
            from_address: Sender address
            to_address: Recipient address
            allowance: Amount that may be transferred
            expiry_time: Last timestamp (inclusive) the approval applies
        """
        key = TransferPair(from_address, to_address)
        self._entries[key] = ApprovalEntry(allowance=allowance, expiry_time=expiry_time)
        logger.debug(
            f"Approval set {from_address} -> {to_address}",
            extra={"allowance": allowance, "expiry_time": expiry_time},
        )

    def get(self, from_address: str, to_address: str) -> ApprovalEntry:
        """Get the stored approval, or the zero entry if none was written."""
        return self._entries.get(TransferPair(from_address, to_address), NO_APPROVAL)

    def delete(self, from_address: str, to_address: str) -> None:
        """Remove the approval for a pair (no-op if absent)."""
        self._entries.pop(TransferPair(from_address, to_address), None)
        logger.debug(f"Approval removed {from_address} -> {to_address}")

    def consume(self, from_address: str, to_address: str, amount: int) -> ApprovalEntry:
        """Decrease the stored allowance by ``amount``.

        Args:
            from_address: Sender address
            to_address: Recipient address
            amount: Amount to deduct (must not exceed the stored allowance)

        Returns:
            The updated entry

        Raises:
            AllowanceUnderflowError: If ``amount`` is negative or exceeds the allowance
        """
        key = TransferPair(from_address, to_address)
        current = self._entries.get(key, NO_APPROVAL)
        if amount < 0 or amount > current.allowance:
            raise AllowanceUnderflowError(
                f"Cannot consume {amount} from allowance {current.allowance} "
                f"for {from_address} -> {to_address}"
            )

        updated = ApprovalEntry(
            allowance=current.allowance - amount,
            expiry_time=current.expiry_time,
        )
        self._entries[key] = updated
        logger.debug(
            f"Allowance consumed {from_address} -> {to_address}",
            extra={"amount": amount, "remaining": updated.allowance},
        )
        return updated

    def items(self) -> Iterator[tuple[TransferPair, ApprovalEntry]]:
        """Iterate over stored entries, including expired ones."""
        return iter(list(self._entries.items()))

    def __len__(self) -> int:
        return len(self._entries)
