"""
Transfer State Machine — request/approval workflow for moving stock between farms.

Workflow:
  1. Source location requests a transfer       → status='pending'
     (stock is checked, not moved; the destination gets a notification)
  2. Destination confirms                       → status='delivered'
     or rejects                                 → status='rejected'
  3. Source (or an administrator) may cancel a pending request
                                                → status='cancelled'

Confirmation is a saga, not a transaction. Its steps are individually
durable writes executed in this order:

  marked    record set to delivered, timestamps and resolver stamped
  credited  destination ledger credited
  debited   source ledger debited (may fail with InsufficientStock if the
            stock was spent since the request; nothing is rolled back)
  settled   destination notifications acknowledged

When the debit is refused for lack of stock the notifications are still
acknowledged (the transfer is delivered either way) and the cursor stays at
`credited`, so the anomaly scan keeps reporting the unsettled delivery.

Credit runs before debit so a failure never leaves the destination short.
The cursor is persisted on the record after each step; resume_settlement()
picks up after the last completed step. confirm() itself only ever runs on a
pending record, so calling it twice raises InvalidTransition.

Every domain error (NotFound, InvalidRequest, InvalidTransition, UnknownItem,
InsufficientStock) is raised before the first write of its operation, except
the documented debit failure inside the confirm saga.
"""

import structlog

from core.errors import (
    InsufficientStock,
    InvalidRequest,
    InvalidTransition,
    TransferEngineError,
    UnknownItem,
)
from inventory.ledger import InventoryLedger, InventoryLine
from inventory.locations import LocationDirectory
from notifications.emitter import NotificationEmitter
from transfers.models import Actor, Priority, SettlementStep, TransferRecord, TransferStatus
from transfers.records import TransferRecordStore

logger = structlog.get_logger()

DEFAULT_PRIVILEGED_ROLES = ("admin", "superadmin")


class TransferStateMachine:
    def __init__(
        self,
        records: TransferRecordStore,
        ledger: InventoryLedger,
        notifier: NotificationEmitter,
        locations: LocationDirectory,
        *,
        privileged_roles: list[str] | tuple[str, ...] = DEFAULT_PRIVILEGED_ROLES,
        reservation_policy: str = "none",
        notification_match: str = "item",
    ):
        self.records = records
        self.ledger = ledger
        self.notifier = notifier
        self.locations = locations
        self.privileged_roles = tuple(privileged_roles)
        self.reservation_policy = reservation_policy
        self.notification_match = notification_match

    @property
    def store(self):
        return self.records.store

    # ── Guards ─────────────────────────────────────────────────────────────

    def _authorize(self, actor: Actor, location_id: str, action: str, record: TransferRecord | None = None) -> None:
        if actor.is_privileged(self.privileged_roles):
            return
        if actor.location_id == location_id:
            return
        if action == "cancel" and record is not None and actor.user_id == record.created_by:
            return
        raise InvalidTransition(
            f"Actor {actor.user_id} may not {action} transfers for location {location_id}",
            action=action,
            actor=actor.user_id,
            location_id=location_id,
        )

    @staticmethod
    def _require_pending(record: TransferRecord, action: str) -> None:
        if record.status is not TransferStatus.PENDING:
            raise InvalidTransition(
                f"Cannot {action} transfer in '{record.status.value}' status. Must be 'pending'.",
                transfer_id=record.id,
                status=record.status.value,
                action=action,
            )

    async def available_quantity(self, line: InventoryLine) -> int:
        """
        Quantity a new request may draw on.

        Under the `hold` policy, quantities of other pending outgoing transfers
        of the same item are subtracted; under `none` the full line is available.
        """
        if self.reservation_policy != "hold":
            return line.quantity
        pending = await self.records.query(
            from_location_id=line.location_id,
            item_name=line.item_name,
            status=TransferStatus.PENDING,
        )
        return line.quantity - sum(t.quantity for t in pending)

    # ── Create ─────────────────────────────────────────────────────────────

    async def create(
        self,
        from_location_id: str,
        to_location_id: str,
        item_name: str,
        quantity: int,
        priority: Priority | str = Priority.MEDIUM,
        notes: str | None = None,
        *,
        actor: Actor,
    ) -> TransferRecord:
        """Request a transfer. Checks stock but does not move it."""
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise InvalidRequest(f"Transfer quantity must be a positive integer, got {quantity!r}", quantity=quantity)
        if from_location_id == to_location_id:
            raise InvalidRequest("Source and destination must differ", location_id=from_location_id)
        try:
            priority = Priority(priority)
        except ValueError as exc:
            raise InvalidRequest(f"Unknown priority: {priority!r}", priority=str(priority)) from exc

        source = await self.locations.require(from_location_id)
        destination = await self.locations.require(to_location_id)
        self._authorize(actor, from_location_id, "create")

        line = await self.ledger.get_line(from_location_id, item_name)
        if line is None:
            raise UnknownItem(
                f"No stock of '{item_name}' at {source.name}",
                location_id=from_location_id,
                item_name=item_name,
            )
        available = await self.available_quantity(line)
        if quantity > available:
            raise InsufficientStock(
                f"Insufficient stock of '{item_name}' at {source.name}: requested {quantity}, available {available}",
                location_id=from_location_id,
                item_name=item_name,
                requested=quantity,
                available=available,
            )

        record = TransferRecord(
            id="",
            from_location_id=from_location_id,
            from_location_name=source.name,
            to_location_id=to_location_id,
            to_location_name=destination.name,
            item_name=item_name,
            quantity=quantity,
            unit=line.unit,
            priority=priority,
            status=TransferStatus.PENDING,
            tracking_number=await self.records.new_tracking_number(),
            created_at=self.store.server_timestamp(),
            created_by=actor.user_id,
            created_by_name=actor.display_name,
            notes=notes,
        )
        await self.records.insert(record)
        logger.info(
            "transfer.created",
            transfer_id=record.id,
            tracking_number=record.tracking_number,
            from_location=from_location_id,
            to_location=to_location_id,
            item_name=item_name,
            quantity=quantity,
            priority=priority.value,
        )

        await self.notifier.notify_incoming(record)
        return record

    # ── Confirm (saga) ─────────────────────────────────────────────────────

    async def confirm(self, transfer_id: str, *, actor: Actor) -> TransferRecord:
        """Accept a pending transfer and settle it against both ledgers."""
        record = await self.records.require(transfer_id)
        self._require_pending(record, "confirm")
        self._authorize(actor, record.to_location_id, "confirm")

        now = self.store.server_timestamp()
        await self.records.update(
            record,
            status=TransferStatus.DELIVERED,
            confirmed_at=now,
            delivered_at=now,
            resolved_by=actor.user_id,
            resolved_by_name=actor.display_name,
            settlement_step=SettlementStep.MARKED,
        )
        logger.info("transfer.confirmed", transfer_id=record.id, actor=actor.user_id)
        return await self._settle(record)

    async def resume_settlement(self, transfer_id: str, *, actor: Actor) -> TransferRecord:
        """Run the confirm steps that did not complete for a delivered transfer."""
        record = await self.records.require(transfer_id)
        if record.status is not TransferStatus.DELIVERED:
            raise InvalidTransition(
                f"Cannot resume settlement of transfer in '{record.status.value}' status. Must be 'delivered'.",
                transfer_id=record.id,
                status=record.status.value,
            )
        if record.is_settled:
            raise InvalidTransition(
                "Transfer is already settled",
                transfer_id=record.id,
                settlement_step=record.settlement_step.value,
            )
        self._authorize(actor, record.to_location_id, "resume")
        logger.info("transfer.settlement_resumed", transfer_id=record.id, step=record.settlement_step.value)
        return await self._settle(record)

    async def _settle(self, record: TransferRecord) -> TransferRecord:
        try:
            if not record.settlement_step.reached(SettlementStep.CREDITED):
                await self.ledger.credit(
                    record.to_location_id,
                    record.item_name,
                    record.quantity,
                    record.unit,
                    location_name=record.to_location_name,
                )
                await self.records.update(record, settlement_step=SettlementStep.CREDITED)

            if not record.settlement_step.reached(SettlementStep.DEBITED):
                try:
                    await self.ledger.debit(record.from_location_id, record.item_name, record.quantity)
                except InsufficientStock:
                    await self._retire_notifications(record)
                    raise
                await self.records.update(record, settlement_step=SettlementStep.DEBITED)

            if not record.settlement_step.reached(SettlementStep.SETTLED):
                await self._retire_notifications(record)
                await self.records.update(record, settlement_step=SettlementStep.SETTLED)
        except TransferEngineError as exc:
            logger.error(
                "transfer.settlement_incomplete",
                transfer_id=record.id,
                completed_step=record.settlement_step.value,
                error=exc.code,
                message=exc.message,
            )
            raise

        logger.info("transfer.settled", transfer_id=record.id, quantity=record.quantity, item_name=record.item_name)
        return record

    async def _retire_notifications(self, record: TransferRecord) -> int:
        if self.notification_match == "transfer":
            return await self.notifier.acknowledge_for_transfer(record.id)
        return await self.notifier.acknowledge_all_for(record.to_location_id, record.item_name)

    # ── Reject / cancel ────────────────────────────────────────────────────

    async def reject(self, transfer_id: str, reason: str | None = None, *, actor: Actor) -> TransferRecord:
        """Refuse a pending transfer. Nothing was moved, so no ledger change."""
        record = await self.records.require(transfer_id)
        self._require_pending(record, "reject")
        self._authorize(actor, record.to_location_id, "reject")

        await self.records.update(
            record,
            status=TransferStatus.REJECTED,
            rejected_at=self.store.server_timestamp(),
            rejection_reason=reason.strip() if reason else None,
            resolved_by=actor.user_id,
            resolved_by_name=actor.display_name,
        )
        logger.info("transfer.rejected", transfer_id=record.id, actor=actor.user_id, reason=record.rejection_reason)

        await self._retire_notifications(record)
        return record

    async def cancel(self, transfer_id: str, *, actor: Actor) -> TransferRecord:
        """Withdraw a pending request. Notifications stay visible to the destination."""
        record = await self.records.require(transfer_id)
        self._require_pending(record, "cancel")
        self._authorize(actor, record.from_location_id, "cancel", record)

        await self.records.update(
            record,
            status=TransferStatus.CANCELLED,
            cancelled_at=self.store.server_timestamp(),
            resolved_by=actor.user_id,
            resolved_by_name=actor.display_name,
        )
        logger.info("transfer.cancelled", transfer_id=record.id, actor=actor.user_id)
        return record
