"""Transfer verification against the approval and blocking registries.

Evaluation order, which must not be reordered:
1. Paused -> NA, no registry is consulted
2. Active block for the pair -> INVALID (wins over any approval)
3. Active approval covering the amount -> VALID, consuming the amount
   when the call is an actual transfer
4. Otherwise -> NA

NA means "no opinion" and is never to be read as VALID; other policy layers
decide what happens to transfers this policy does not address.
"""

from __future__ import annotations

from mtm.logging import get_logger
from mtm.models import ApprovalEntry, BlockingEntry, Result
from mtm.protocols import ClockProtocol, PauseStateProtocol
from mtm.registry import ApprovalRegistry, BlockingRegistry

logger = get_logger("verifier")


def decide(
    blocking: BlockingEntry,
    approval: ApprovalEntry,
    amount: int,
    now: int,
) -> Result:
    """Decide a transfer from already looked-up entries.

    Pure function: it neither reads nor writes any registry.

    Args:
        blocking: Blocking entry for the pair (zero entry if absent)
        approval: Approval entry for the pair (zero entry if absent)
        amount: Amount being transferred
        now: Current timestamp

    Returns:
        INVALID if blocked, VALID if approved, NA otherwise
    """
    if blocking.is_active(now):
        return Result.INVALID
    if approval.covers(amount, now):
        return Result.VALID
    return Result.NA


class TransferVerifier:
    """Combines pause state, both registries and the clock into a verdict.

    The only side effect is the allowance decrement on an approved transfer
    with ``is_transfer=True``; previews are read-only.
    """

    def __init__(
        self,
        approvals: ApprovalRegistry,
        blocks: BlockingRegistry,
        clock: ClockProtocol,
        pause_state: PauseStateProtocol,
    ) -> None:
        self._approvals = approvals
        self._blocks = blocks
        self._clock = clock
        self._pause_state = pause_state

    def verify_transfer(
        self,
        from_address: str,
        to_address: str,
        amount: int,
        is_transfer: bool,
    ) -> Result:
        """Verify a proposed transfer.

        Never raises for any input, including zero amounts and
        ``from_address == to_address``.

        Args:
            from_address: Sender address
            to_address: Recipient address
            amount: Amount being transferred
            is_transfer: True for an executed transfer, False for a preview

        Returns:
            The policy verdict
        """
        if self._pause_state.is_paused():
            logger.debug(f"Paused, no opinion on {from_address} -> {to_address}")
            return Result.NA

        now = self._clock.now()
        result = decide(
            blocking=self._blocks.get(from_address, to_address),
            approval=self._approvals.get(from_address, to_address),
            amount=amount,
            now=now,
        )

        if result is Result.VALID and is_transfer:
            self._approvals.consume(from_address, to_address, amount)

        logger.debug(
            f"{result.value} {from_address} -> {to_address}",
            extra={"amount": amount, "is_transfer": is_transfer, "now": now},
        )
        return result
