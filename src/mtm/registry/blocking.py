"""Blocking registry keyed by ordered address pair."""

from __future__ import annotations

from collections.abc import Iterator

from mtm.logging import get_logger
from mtm.models import NO_BLOCKING, BlockingEntry, TransferPair

logger = get_logger("registry.blocking")


class BlockingRegistry:
    """In-memory mapping of ``TransferPair`` to ``BlockingEntry``.

    Same overwrite semantics as the approval registry; ``expiry_time=0``
    never blocks.
    """

    def __init__(self) -> None:
        self._entries: dict[TransferPair, BlockingEntry] = {}

    def set(self, from_address: str, to_address: str, expiry_time: int) -> None:
        """Overwrite the block for ``(from_address, to_address)``."""
        self._entries[TransferPair(from_address, to_address)] = BlockingEntry(expiry_time)
        logger.debug(
            f"Blocking set {from_address} -> {to_address}",
            extra={"expiry_time": expiry_time},
        )

    def get(self, from_address: str, to_address: str) -> BlockingEntry:
        """Get the stored block, or the zero entry if none was written."""
        return self._entries.get(TransferPair(from_address, to_address), NO_BLOCKING)

    def delete(self, from_address: str, to_address: str) -> None:
        """Remove the block for a pair (no-op if absent)."""
        self._entries.pop(TransferPair(from_address, to_address), None)
        logger.debug(f"Blocking removed {from_address} -> {to_address}")

    def items(self) -> Iterator[tuple[TransferPair, BlockingEntry]]:
        """Iterate over stored entries, including expired ones."""
        return iter(list(self._entries.items()))

    def __len__(self) -> int:
        return len(self._entries)
