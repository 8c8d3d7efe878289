"""Tests for ManualTransferManager.

Tests cover:
- Permission-gated approval/blocking writes
- Audit event emission (exactly once, never on failure)
- Revocation
- End-to-end verification through the manager
"""

import logging
import threading

import pytest

from mtm.collaborators import FixedClock, GrantTable, PauseFlag
from mtm.manager import TRANSFER_APPROVAL_TAG, ManualTransferManager, Unauthorized
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

NOW = 1_000


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def pause() -> PauseFlag:
    return PauseFlag()


@pytest.fixture
def manager(clock: FixedClock, pause: PauseFlag) -> ManualTransferManager:
    gate = GrantTable(grants={"desk": [TRANSFER_APPROVAL_TAG]}, owner="issuer")
    return ManualTransferManager(permission_gate=gate, clock=clock, pause_state=pause)


@pytest.fixture
def events(manager: ManualTransferManager) -> list[AuditEvent]:
    captured: list[AuditEvent] = []
    manager.subscribe(captured.append)
    return captured


class TestPermissionTags:
    """Tests for the static capability declaration."""

    def test_single_tag(self, manager: ManualTransferManager) -> None:
        assert manager.list_permission_tags() == frozenset({TRANSFER_APPROVAL_TAG})


class TestAddManualApproval:
    """Tests for add_manual_approval."""

    def test_authorized_write_emits_event(
        self, manager: ManualTransferManager, events: list[AuditEvent]
    ) -> None:
        """Test that a granted caller writes the entry and one event fires."""
        manager.add_manual_approval("desk", "alice", "bob", 100, NOW + 60)

        assert manager.get_approval("alice", "bob") == ApprovalEntry(100, NOW + 60)
        assert events == [
            ApprovalSet(
                from_address="alice",
                to_address="bob",
                allowance=100,
                expiry_time=NOW + 60,
                set_by="desk",
            )
        ]

    def test_owner_is_authorized(
        self, manager: ManualTransferManager, events: list[AuditEvent]
    ) -> None:
        """Test that the owner passes the gate without an explicit grant."""
        manager.add_manual_approval("issuer", "alice", "bob", 1, NOW)
        assert len(events) == 1
        assert events[0].set_by == "issuer"

    def test_unauthorized_leaves_state_and_emits_nothing(
        self, manager: ManualTransferManager, events: list[AuditEvent]
    ) -> None:
        """Test that a caller without the tag is rejected with no effect."""
        manager.add_manual_approval("desk", "alice", "bob", 100, NOW + 60)
        events.clear()

        with pytest.raises(Unauthorized) as exc_info:
            manager.add_manual_approval("mallory", "alice", "bob", 999, NOW + 999)

        assert exc_info.value.caller == "mallory"
        assert exc_info.value.tag == TRANSFER_APPROVAL_TAG
        assert isinstance(exc_info.value, PermissionError)
        assert manager.get_approval("alice", "bob") == ApprovalEntry(100, NOW + 60)
        assert events == []

    def test_past_expiry_and_self_pair_are_accepted(
        self, manager: ManualTransferManager, events: list[AuditEvent]
    ) -> None:
        """Test that writes are not validated beyond the unsigned domain."""
        manager.add_manual_approval("desk", "alice", "alice", 0, 1)
        assert manager.get_approval("alice", "alice") == ApprovalEntry(0, 1)
        assert len(events) == 1

    def test_negative_values_rejected(
        self, manager: ManualTransferManager, events: list[AuditEvent]
    ) -> None:
        """Test that negative allowance or expiry raises and writes nothing."""
        with pytest.raises(ValueError):
            manager.add_manual_approval("desk", "alice", "bob", -1, NOW)
        with pytest.raises(ValueError):
            manager.add_manual_approval("desk", "alice", "bob", 1, -1)

        assert manager.get_approval("alice", "bob") == ApprovalEntry()
        assert events == []

    def test_zero_expiry_cancels_approval(self, manager: ManualTransferManager) -> None:
        """Test the overwrite-as-delete idiom end to end."""
        manager.add_manual_approval("desk", "alice", "bob", 100, NOW + 60)
        manager.add_manual_approval("desk", "alice", "bob", 100, 0)

        assert manager.verify_transfer("alice", "bob", 10, is_transfer=True) is Result.NA


class TestAddManualBlocking:
    """Tests for add_manual_blocking."""

    def test_authorized_write_emits_event(
        self, manager: ManualTransferManager, events: list[AuditEvent]
    ) -> None:
        manager.add_manual_blocking("desk", "alice", "bob", NOW + 60)

        assert manager.get_blocking("alice", "bob") == BlockingEntry(NOW + 60)
        assert events == [
            BlockingSet(from_address="alice", to_address="bob", expiry_time=NOW + 60, set_by="desk")
        ]

    def test_unauthorized_leaves_state_and_emits_nothing(
        self, manager: ManualTransferManager, events: list[AuditEvent]
    ) -> None:
        with pytest.raises(Unauthorized):
            manager.add_manual_blocking("mallory", "alice", "bob", NOW + 60)

        assert manager.get_blocking("alice", "bob") == BlockingEntry()
        assert events == []

    def test_block_overrides_approval(self, manager: ManualTransferManager) -> None:
        """Test precedence through the public surface."""
        manager.add_manual_approval("desk", "alice", "bob", 100, NOW + 60)
        manager.add_manual_blocking("desk", "alice", "bob", NOW + 60)

        assert manager.verify_transfer("alice", "bob", 10, is_transfer=True) is Result.INVALID
        assert manager.get_approval("alice", "bob").allowance == 100


class TestRevocation:
    """Tests for revoke_manual_approval / revoke_manual_blocking."""

    def test_revoke_approval(
        self, manager: ManualTransferManager, events: list[AuditEvent]
    ) -> None:
        manager.add_manual_approval("desk", "alice", "bob", 100, NOW + 60)
        manager.revoke_manual_approval("desk", "alice", "bob")

        assert manager.get_approval("alice", "bob") == ApprovalEntry()
        assert events[-1] == ApprovalRevoked(from_address="alice", to_address="bob", revoked_by="desk")
        assert manager.verify_transfer("alice", "bob", 1) is Result.NA

    def test_revoke_blocking(
        self, manager: ManualTransferManager, events: list[AuditEvent]
    ) -> None:
        manager.add_manual_blocking("desk", "alice", "bob", NOW + 60)
        manager.revoke_manual_blocking("desk", "alice", "bob")

        assert manager.get_blocking("alice", "bob") == BlockingEntry()
        assert events[-1] == BlockingRevoked(from_address="alice", to_address="bob", revoked_by="desk")

    def test_revoke_requires_permission(
        self, manager: ManualTransferManager, events: list[AuditEvent]
    ) -> None:
        manager.add_manual_blocking("desk", "alice", "bob", NOW + 60)
        events.clear()

        with pytest.raises(Unauthorized):
            manager.revoke_manual_blocking("mallory", "alice", "bob")

        assert manager.get_blocking("alice", "bob") == BlockingEntry(NOW + 60)
        assert events == []


class TestVerifyTransfer:
    """Tests for verification through the manager."""

    def test_consumption_then_insufficient_preview(self, manager: ManualTransferManager) -> None:
        manager.add_manual_approval("desk", "alice", "bob", 100, NOW + 60)

        assert manager.verify_transfer("alice", "bob", 40, is_transfer=True) is Result.VALID
        assert manager.get_approval("alice", "bob").allowance == 60
        assert manager.verify_transfer("alice", "bob", 70, is_transfer=False) is Result.NA
        assert manager.get_approval("alice", "bob").allowance == 60

    def test_defaults_to_preview(self, manager: ManualTransferManager) -> None:
        manager.add_manual_approval("desk", "alice", "bob", 100, NOW + 60)
        assert manager.verify_transfer("alice", "bob", 100) is Result.VALID
        assert manager.get_approval("alice", "bob").allowance == 100

    def test_pause_suspends_policy(self, manager: ManualTransferManager, pause: PauseFlag) -> None:
        manager.add_manual_blocking("desk", "alice", "bob", NOW + 60)
        pause.pause()
        assert manager.verify_transfer("alice", "bob", 1, is_transfer=True) is Result.NA
        pause.unpause()
        assert manager.verify_transfer("alice", "bob", 1, is_transfer=True) is Result.INVALID

    def test_expiry_follows_clock(self, manager: ManualTransferManager, clock: FixedClock) -> None:
        manager.add_manual_approval("desk", "alice", "bob", 100, NOW + 5)
        clock.advance(5)
        assert manager.verify_transfer("alice", "bob", 1) is Result.VALID
        clock.advance(1)
        assert manager.verify_transfer("alice", "bob", 1) is Result.NA

    def test_concurrent_transfers_never_overspend(self, manager: ManualTransferManager) -> None:
        """Test that the lock keeps read-then-decrement atomic across threads."""
        manager.add_manual_approval("desk", "alice", "bob", 100, NOW + 60)
        results: list[Result] = []
        results_lock = threading.Lock()

        def worker() -> None:
            for _ in range(25):
                result = manager.verify_transfer("alice", "bob", 1, is_transfer=True)
                with results_lock:
                    results.append(result)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results.count(Result.VALID) == 100
        assert results.count(Result.NA) == 100
        assert manager.get_approval("alice", "bob").allowance == 0


class TestListing:
    """Tests for listing and listener management."""

    def test_lists_sorted_by_pair(self, manager: ManualTransferManager) -> None:
        manager.add_manual_approval("desk", "carol", "dave", 5, 1)
        manager.add_manual_approval("desk", "alice", "bob", 7, 2)
        manager.add_manual_blocking("desk", "erin", "frank", 3)

        assert [pair for pair, _ in manager.list_approvals()] == [
            TransferPair("alice", "bob"),
            TransferPair("carol", "dave"),
        ]
        assert manager.list_blockings() == [(TransferPair("erin", "frank"), BlockingEntry(3))]

    def test_unsubscribe_stops_delivery(self, manager: ManualTransferManager) -> None:
        captured: list[AuditEvent] = []
        unsubscribe = manager.subscribe(captured.append)
        manager.add_manual_blocking("desk", "alice", "bob", 1)
        unsubscribe()
        manager.add_manual_blocking("desk", "alice", "bob", 2)

        assert len(captured) == 1

    def test_events_written_to_audit_log(
        self, manager: ManualTransferManager, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.INFO, logger="mtm.audit"):
            manager.add_manual_approval("desk", "alice", "bob", 100, NOW)

        records = [r for r in caplog.records if r.name == "mtm.audit"]
        assert len(records) == 1
        assert records[0].event_type == "APPROVAL_SET"
        assert records[0].set_by == "desk"


class TestListenerFailures:
    """Tests for audit delivery when a listener raises."""

    def test_failing_listener_does_not_starve_others(
        self, manager: ManualTransferManager, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test that every listener sees the event and the error surfaces afterwards."""

        def broken(event: AuditEvent) -> None:
            raise RuntimeError("listener down")

        captured: list[AuditEvent] = []
        manager.subscribe(broken)
        manager.subscribe(captured.append)

        with caplog.at_level(logging.ERROR, logger="mtm.manager"):
            with pytest.raises(RuntimeError, match="listener down"):
                manager.add_manual_approval("desk", "alice", "bob", 5, 20)

        assert captured == [
            ApprovalSet(
                from_address="alice", to_address="bob", allowance=5, expiry_time=20, set_by="desk"
            )
        ]
        # The write is committed even though the caller saw the listener error
        assert manager.get_approval("alice", "bob") == ApprovalEntry(5, 20)
        assert any("Audit listener failed" in r.getMessage() for r in caplog.records)

    def test_first_failure_is_reraised(self, manager: ManualTransferManager) -> None:
        """Test that with several failing listeners the first error wins."""
        calls: list[str] = []

        def first(event: AuditEvent) -> None:
            calls.append("first")
            raise ValueError("first")

        def second(event: AuditEvent) -> None:
            calls.append("second")
            raise KeyError("second")

        manager.subscribe(first)
        manager.subscribe(second)

        with pytest.raises(ValueError, match="first"):
            manager.add_manual_blocking("desk", "alice", "bob", 20)

        assert calls == ["first", "second"]
        assert manager.get_blocking("alice", "bob") == BlockingEntry(20)

    def test_each_listener_gets_event_once(self, manager: ManualTransferManager) -> None:
        captured: list[AuditEvent] = []

        def broken(event: AuditEvent) -> None:
            raise RuntimeError("listener down")

        manager.subscribe(captured.append)
        manager.subscribe(broken)

        with pytest.raises(RuntimeError):
            manager.revoke_manual_approval("desk", "alice", "bob")

        assert captured == [
            ApprovalRevoked(from_address="alice", to_address="bob", revoked_by="desk")
        ]
