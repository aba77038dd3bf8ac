"""
Tests for the transfer workflow — create, confirm (settlement), reject, cancel.
"""

import pytest

from core.errors import (
    InsufficientStock,
    InvalidRequest,
    InvalidTransition,
    NotFound,
    StoreUnavailable,
    UnknownItem,
)
from docstore import InMemoryDocumentStore
from inventory.ledger import COLLECTION as STOCK_COLLECTION
from notifications.emitter import NotificationStatus
from transfers.models import COLLECTION as TRANSFER_COLLECTION
from transfers.models import Priority, SettlementStep, TransferStatus
from transfers.service import TransferService


async def _quantity(service, location_id, item_name="helmet"):
    line = await service.ledger.get_line(location_id, item_name)
    return line.quantity if line else 0


class FlakyStore(InMemoryDocumentStore):
    """Memory store that fails the next write to one collection."""

    def __init__(self):
        super().__init__()
        self.fail_next_update_of: str | None = None

    async def update(self, collection, doc_id, fields):
        if collection == self.fail_next_update_of:
            self.fail_next_update_of = None
            raise StoreUnavailable("Simulated outage", collection=collection)
        return await super().update(collection, doc_id, fields)


class TestCreate:
    async def test_create_checks_stock_without_moving_it(self, service, farms, admin):
        record = await service.create_transfer(admin, farms["x"].id, farms["y"].id, "helmet", 4)

        assert record.status is TransferStatus.PENDING
        assert record.tracking_number.startswith("TRF-")
        assert record.from_location_name == "North Pasture"
        assert record.to_location_name == "River Bend"
        assert record.priority is Priority.MEDIUM
        assert record.settlement_step is SettlementStep.NOT_STARTED
        assert await _quantity(service, farms["x"].id) == 10
        assert await _quantity(service, farms["y"].id) == 0

    async def test_create_emits_unread_notification(self, service, farms, admin):
        record = await service.create_transfer(admin, farms["x"].id, farms["y"].id, "helmet", 4, "urgent")

        notifications = await service.list_notifications(farms["y"].id)
        assert len(notifications) == 1
        notification = notifications[0]
        assert notification.transfer_id == record.id
        assert notification.status is NotificationStatus.UNREAD
        assert notification.priority == "urgent"
        assert notification.message == "Incoming transfer: helmet (4 pieces) from North Pasture"

    async def test_insufficient_stock_creates_nothing(self, service, memory_store, farms, admin):
        await service.set_stock_quantity(farms["x"].id, "helmet", 3)

        with pytest.raises(InsufficientStock):
            await service.create_transfer(admin, farms["x"].id, farms["y"].id, "helmet", 5)

        assert await memory_store.query(TRANSFER_COLLECTION) == []
        assert await service.list_notifications(farms["y"].id) == []

    async def test_unknown_item(self, service, farms, admin):
        with pytest.raises(UnknownItem):
            await service.create_transfer(admin, farms["x"].id, farms["y"].id, "tractor", 1)

    @pytest.mark.parametrize("quantity", [0, -2])
    async def test_non_positive_quantity(self, service, farms, admin, quantity):
        with pytest.raises(InvalidRequest):
            await service.create_transfer(admin, farms["x"].id, farms["y"].id, "helmet", quantity)

    async def test_same_source_and_destination(self, service, farms, admin):
        with pytest.raises(InvalidRequest):
            await service.create_transfer(admin, farms["x"].id, farms["x"].id, "helmet", 1)

    async def test_unknown_priority(self, service, farms, admin):
        with pytest.raises(InvalidRequest):
            await service.create_transfer(admin, farms["x"].id, farms["y"].id, "helmet", 1, "whenever")

    async def test_unknown_destination(self, service, farms, admin):
        with pytest.raises(NotFound):
            await service.create_transfer(admin, farms["x"].id, "nowhere", "helmet", 1)

    async def test_tracking_numbers_are_unique(self, service, farms, admin):
        numbers = {
            (await service.create_transfer(admin, farms["x"].id, farms["y"].id, "helmet", 1)).tracking_number
            for _ in range(5)
        }
        assert len(numbers) == 5

    async def test_without_reservation_same_stock_can_be_promised_twice(self, service, farms, admin):
        await service.create_transfer(admin, farms["x"].id, farms["y"].id, "helmet", 8)
        second = await service.create_transfer(admin, farms["x"].id, farms["y"].id, "helmet", 8)
        assert second.status is TransferStatus.PENDING

    async def test_hold_policy_counts_pending_outgoing(self, memory_store, admin):
        service = TransferService(memory_store, reservation_policy="hold")
        north = await service.add_location("North Pasture")
        river = await service.add_location("River Bend")
        await service.add_stock(north.id, "helmet", 10)

        await service.create_transfer(admin, north.id, river.id, "helmet", 8)
        with pytest.raises(InsufficientStock) as exc_info:
            await service.create_transfer(admin, north.id, river.id, "helmet", 3)
        assert exc_info.value.details["available"] == 2


class TestConfirm:
    async def test_confirm_moves_stock(self, service, farms, admin):
        """X holds 10, transfers 4 to Y: X ends with 6, Y with 4."""
        record = await service.create_transfer(admin, farms["x"].id, farms["y"].id, "helmet", 4)
        confirmed = await service.confirm_transfer(farms["y_user"], record.id)

        assert confirmed.status is TransferStatus.DELIVERED
        assert confirmed.settlement_step is SettlementStep.SETTLED
        assert confirmed.confirmed_at is not None
        assert confirmed.delivered_at == confirmed.confirmed_at
        assert confirmed.resolved_by == "user-y"
        assert await _quantity(service, farms["x"].id) == 6
        assert await _quantity(service, farms["y"].id) == 4

        stored = await service.get_transfer(record.id)
        assert stored.status is TransferStatus.DELIVERED
        assert stored.settlement_step is SettlementStep.SETTLED

    async def test_quantity_is_conserved(self, service, farms, admin):
        before = await _quantity(service, farms["x"].id) + await _quantity(service, farms["y"].id)
        record = await service.create_transfer(admin, farms["x"].id, farms["y"].id, "helmet", 7)
        await service.confirm_transfer(admin, record.id)
        after = await _quantity(service, farms["x"].id) + await _quantity(service, farms["y"].id)
        assert before == after

    async def test_confirm_full_quantity_removes_source_line(self, service, farms, admin):
        record = await service.create_transfer(admin, farms["x"].id, farms["y"].id, "helmet", 10)
        await service.confirm_transfer(admin, record.id)
        assert await service.ledger.get_line(farms["x"].id, "helmet") is None
        assert await _quantity(service, farms["y"].id) == 10

    async def test_confirm_acknowledges_notifications(self, service, farms, admin):
        record = await service.create_transfer(admin, farms["x"].id, farms["y"].id, "helmet", 2)
        await service.confirm_transfer(admin, record.id)

        assert await service.list_notifications(farms["y"].id) == []
        notifications = await service.list_notifications(farms["y"].id, include_acknowledged=True)
        assert [n.status for n in notifications] == [NotificationStatus.ACKNOWLEDGED]
        assert notifications[0].acknowledged_at is not None

    async def test_source_drained_before_confirm_leaves_destination_over_credited(
        self, service, memory_store, farms, admin
    ):
        """Credit runs before debit; a drained source fails the debit and nothing is rolled back."""
        record = await service.create_transfer(admin, farms["x"].id, farms["y"].id, "helmet", 2)
        await service.ledger.debit(farms["x"].id, "helmet", 10)

        with pytest.raises(InsufficientStock):
            await service.confirm_transfer(admin, record.id)

        assert await service.ledger.get_line(farms["x"].id, "helmet") is None
        assert await _quantity(service, farms["y"].id) == 2
        stored = await service.get_transfer(record.id)
        assert stored.status is TransferStatus.DELIVERED
        assert stored.settlement_step is SettlementStep.CREDITED
        assert all(doc["quantity"] >= 0 for doc in await memory_store.query(STOCK_COLLECTION))
        assert await service.list_notifications(farms["y"].id) == []

    async def test_refused_debit_still_closes_notifications_on_resume(self, service, farms, admin):
        record = await service.create_transfer(admin, farms["x"].id, farms["y"].id, "helmet", 2)
        await service.ledger.debit(farms["x"].id, "helmet", 10)
        with pytest.raises(InsufficientStock):
            await service.confirm_transfer(admin, record.id)

        with pytest.raises(InsufficientStock):
            await service.resume_settlement(admin, record.id)

        stored = await service.get_transfer(record.id)
        assert stored.settlement_step is SettlementStep.CREDITED
        notifications = await service.list_notifications(farms["y"].id, include_acknowledged=True)
        assert [n.status for n in notifications] == [NotificationStatus.ACKNOWLEDGED]

    async def test_unauthorized_actor(self, service, farms, admin):
        record = await service.create_transfer(admin, farms["x"].id, farms["y"].id, "helmet", 2)
        with pytest.raises(InvalidTransition):
            await service.confirm_transfer(farms["x_user"], record.id)
        assert (await service.get_transfer(record.id)).status is TransferStatus.PENDING

    async def test_unknown_transfer(self, service, farms, admin):
        with pytest.raises(NotFound):
            await service.confirm_transfer(admin, "missing")


class TestResumeSettlement:
    async def test_resume_after_outage_between_steps(self, admin):
        store = FlakyStore()
        service = TransferService(store)
        north = await service.add_location("North Pasture")
        river = await service.add_location("River Bend")
        await service.add_stock(north.id, "helmet", 10)
        record = await service.create_transfer(admin, north.id, river.id, "helmet", 4)

        # Destination credit creates a new line; the source debit write fails.
        store.fail_next_update_of = "stocks"
        with pytest.raises(StoreUnavailable):
            await service.confirm_transfer(admin, record.id)
        stored = await service.get_transfer(record.id)
        assert stored.status is TransferStatus.DELIVERED
        assert stored.settlement_step is SettlementStep.CREDITED
        assert await _quantity(service, river.id) == 4
        assert await _quantity(service, north.id) == 10

        with pytest.raises(InvalidTransition):
            await service.confirm_transfer(admin, record.id)

        resumed = await service.resume_settlement(admin, record.id)
        assert resumed.settlement_step is SettlementStep.SETTLED
        assert await _quantity(service, north.id) == 6
        assert await _quantity(service, river.id) == 4

    async def test_resume_settled_transfer_is_rejected(self, service, farms, admin):
        record = await service.create_transfer(admin, farms["x"].id, farms["y"].id, "helmet", 2)
        await service.confirm_transfer(admin, record.id)
        with pytest.raises(InvalidTransition):
            await service.resume_settlement(admin, record.id)

    async def test_resume_pending_transfer_is_rejected(self, service, farms, admin):
        record = await service.create_transfer(admin, farms["x"].id, farms["y"].id, "helmet", 2)
        with pytest.raises(InvalidTransition):
            await service.resume_settlement(admin, record.id)


class TestRejectAndCancel:
    async def test_reject_leaves_ledgers_untouched(self, service, farms, admin):
        record = await service.create_transfer(admin, farms["x"].id, farms["y"].id, "helmet", 2)
        rejected = await service.reject_transfer(farms["y_user"], record.id, "wrong item")

        assert rejected.status is TransferStatus.REJECTED
        assert rejected.rejection_reason == "wrong item"
        assert rejected.rejected_at is not None
        assert await _quantity(service, farms["x"].id) == 10
        assert await _quantity(service, farms["y"].id) == 0
        notifications = await service.list_notifications(farms["y"].id, include_acknowledged=True)
        assert [n.status for n in notifications] == [NotificationStatus.ACKNOWLEDGED]

    async def test_cancel_by_creator(self, service, farms):
        record = await service.create_transfer(farms["x_user"], farms["x"].id, farms["y"].id, "helmet", 2)
        cancelled = await service.cancel_transfer(farms["x_user"], record.id)

        assert cancelled.status is TransferStatus.CANCELLED
        assert cancelled.cancelled_at is not None
        assert await _quantity(service, farms["x"].id) == 10

    async def test_destination_cannot_cancel(self, service, farms, admin):
        record = await service.create_transfer(admin, farms["x"].id, farms["y"].id, "helmet", 2)
        with pytest.raises(InvalidTransition):
            await service.cancel_transfer(farms["y_user"], record.id)

    async def test_source_cannot_create_for_another_farm(self, service, farms):
        with pytest.raises(InvalidTransition):
            await service.create_transfer(farms["y_user"], farms["x"].id, farms["y"].id, "helmet", 2)


class TestMonotonicity:
    @pytest.mark.parametrize("first", ["confirm", "reject", "cancel"])
    @pytest.mark.parametrize("second", ["confirm", "reject", "cancel"])
    async def test_terminal_states_accept_no_transition(self, service, farms, admin, first, second):
        actions = {
            "confirm": lambda tid: service.confirm_transfer(admin, tid),
            "reject": lambda tid: service.reject_transfer(admin, tid, "no"),
            "cancel": lambda tid: service.cancel_transfer(admin, tid),
        }
        record = await service.create_transfer(admin, farms["x"].id, farms["y"].id, "helmet", 1)
        await actions[first](record.id)
        status = (await service.get_transfer(record.id)).status

        with pytest.raises(InvalidTransition):
            await actions[second](record.id)
        assert (await service.get_transfer(record.id)).status is status


class TestNotificationMatching:
    async def test_item_match_closes_sibling_notifications(self, service, farms, admin):
        first = await service.create_transfer(admin, farms["x"].id, farms["y"].id, "helmet", 1)
        await service.create_transfer(admin, farms["x"].id, farms["y"].id, "helmet", 1)

        await service.confirm_transfer(admin, first.id)
        assert await service.list_notifications(farms["y"].id) == []

    async def test_transfer_match_only_closes_own_notification(self, memory_store, admin):
        service = TransferService(memory_store, notification_match="transfer")
        north = await service.add_location("North Pasture")
        river = await service.add_location("River Bend")
        await service.add_stock(north.id, "helmet", 10)
        first = await service.create_transfer(admin, north.id, river.id, "helmet", 1)
        second = await service.create_transfer(admin, north.id, river.id, "helmet", 1)

        await service.confirm_transfer(admin, first.id)
        open_notifications = await service.list_notifications(river.id)
        assert [n.transfer_id for n in open_notifications] == [second.id]
