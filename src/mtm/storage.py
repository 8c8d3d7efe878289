"""JSON snapshot storage for the approval and blocking registries.

The policy core keeps its state in memory; this store lets the command-line
surface carry that state between invocations. One file holds both
registries:

    {
      "approvals": [{"from": "...", "to": "...", "allowance": 0, "expiry_time": 0}],
      "blocks": [{"from": "...", "to": "...", "expiry_time": 0}]
    }
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from mtm.logging import get_logger
from mtm.models import ApprovalEntry, BlockingEntry, TransferPair
from mtm.registry import ApprovalRegistry, BlockingRegistry

logger = get_logger("storage")


class StateFileError(Exception):
    """Raised when a snapshot file cannot be read or parsed."""


def _address(row: dict[str, Any], field: str) -> str:
    value = row[field]
    if not isinstance(value, str):
        raise ValueError(f"'{field}' must be a string, got {value!r}")
    return value


def _unsigned(row: dict[str, Any], field: str) -> int:
    value = row[field]
    # bool is an int subclass; true/false in the file is not a count
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"'{field}' must be a non-negative integer, got {value!r}")
    return value


class StateStore:
    """File-based storage for registry snapshots."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> tuple[ApprovalRegistry, BlockingRegistry]:
        """Load both registries from disk.

        A missing file is an empty state.

        Returns:
            Tuple of (approvals, blocks)

        Raises:
            StateFileError: If the file is unreadable, malformed, or holds
                values outside the non-negative integer domain
        """
        approvals = ApprovalRegistry()
        blocks = BlockingRegistry()
        if not self.path.exists():
            logger.debug(f"No state file at {self.path}, starting empty")
            return approvals, blocks

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            for row in data.get("approvals", []):
                approvals.set(
                    _address(row, "from"),
                    _address(row, "to"),
                    _unsigned(row, "allowance"),
                    _unsigned(row, "expiry_time"),
                )
            for row in data.get("blocks", []):
                blocks.set(_address(row, "from"), _address(row, "to"), _unsigned(row, "expiry_time"))
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as e:
            raise StateFileError(f"Failed to load state from {self.path}: {e}") from e

        logger.info(
            f"Loaded state from {self.path}",
            extra={"approvals": len(approvals), "blocks": len(blocks)},
        )
        return approvals, blocks

    def save(
        self,
        approvals: Iterable[tuple[TransferPair, ApprovalEntry]],
        blocks: Iterable[tuple[TransferPair, BlockingEntry]],
    ) -> None:
        """Write approval and blocking entries to disk.

        Args:
            approvals: ``(pair, entry)`` approvals, e.g. ``manager.list_approvals()``
            blocks: ``(pair, entry)`` blocks, e.g. ``manager.list_blockings()``

        Raises:
            OSError: If the file cannot be written
        """
        data: dict[str, list[dict[str, Any]]] = {
            "approvals": [
                {"from": pair.from_address, "to": pair.to_address, **entry.to_dict()}
                for pair, entry in sorted(approvals, key=lambda item: item[0])
            ],
            "blocks": [
                {"from": pair.from_address, "to": pair.to_address, **entry.to_dict()}
                for pair, entry in sorted(blocks, key=lambda item: item[0])
            ],
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            logger.info(f"Saved state to {self.path}")
        except OSError as e:
            logger.error(f"Failed to save state to {self.path}: {e}")
            raise
