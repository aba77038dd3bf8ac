"""
TransferService — the interface the HTTP layer, workers and scripts consume.

Wires one document store into the ledger, record store, notification
emitter, state machine and reporter. Build one per store and reuse it: the
ledger's per-line locks only serialize callers that share an instance.
"""

from datetime import datetime, timedelta

from core.config import Settings
from docstore.base import DocumentStore
from inventory.ledger import InventoryLedger, InventoryLine
from inventory.locations import Location, LocationDirectory
from notifications.emitter import NotificationEmitter, TransferNotification
from reporting.reconciliation import AnomalyReport, ItemTotal, ReconciliationReporter, StockSummaryRow
from transfers.models import Actor, Priority, TransferRecord, TransferStatus
from transfers.records import TrackingNumberGenerator, TransferRecordStore
from transfers.state_machine import TransferStateMachine


class TransferService:
    def __init__(
        self,
        store: DocumentStore,
        *,
        tracking_prefix: str = "TRF",
        privileged_roles: list[str] | tuple[str, ...] = ("admin", "superadmin"),
        reservation_policy: str = "none",
        notification_match: str = "item",
        stale_after: timedelta = timedelta(hours=72),
        implausible_quantity: int = 1_000_000,
    ):
        self.store = store
        self.locations = LocationDirectory(store)
        self.ledger = InventoryLedger(store)
        self.notifications = NotificationEmitter(store)
        self.records = TransferRecordStore(store, TrackingNumberGenerator(tracking_prefix))
        self.machine = TransferStateMachine(
            self.records,
            self.ledger,
            self.notifications,
            self.locations,
            privileged_roles=privileged_roles,
            reservation_policy=reservation_policy,
            notification_match=notification_match,
        )
        self.reporter = ReconciliationReporter(
            store,
            stale_after=stale_after,
            implausible_quantity=implausible_quantity,
        )

    @classmethod
    def from_settings(cls, store: DocumentStore, settings: Settings) -> "TransferService":
        return cls(
            store,
            tracking_prefix=settings.tracking_number_prefix,
            privileged_roles=settings.privileged_roles,
            reservation_policy=settings.reservation_policy,
            notification_match=settings.notification_match,
            stale_after=timedelta(hours=settings.transfer_stale_after_hours),
            implausible_quantity=settings.stock_implausible_quantity,
        )

    # ── Transfer workflow ──────────────────────────────────────────────────

    async def create_transfer(
        self,
        actor: Actor,
        from_location_id: str,
        to_location_id: str,
        item_name: str,
        quantity: int,
        priority: Priority | str = Priority.MEDIUM,
        notes: str | None = None,
    ) -> TransferRecord:
        return await self.machine.create(
            from_location_id, to_location_id, item_name, quantity, priority, notes, actor=actor
        )

    async def confirm_transfer(self, actor: Actor, transfer_id: str) -> TransferRecord:
        return await self.machine.confirm(transfer_id, actor=actor)

    async def reject_transfer(self, actor: Actor, transfer_id: str, reason: str | None = None) -> TransferRecord:
        return await self.machine.reject(transfer_id, reason, actor=actor)

    async def cancel_transfer(self, actor: Actor, transfer_id: str) -> TransferRecord:
        return await self.machine.cancel(transfer_id, actor=actor)

    async def resume_settlement(self, actor: Actor, transfer_id: str) -> TransferRecord:
        return await self.machine.resume_settlement(transfer_id, actor=actor)

    async def get_transfer(self, transfer_id: str) -> TransferRecord:
        return await self.records.require(transfer_id)

    async def list_transfers(
        self,
        location_id: str | None = None,
        status: TransferStatus | str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        direction: str = "any",
    ) -> list[TransferRecord]:
        return await self.reporter.transfer_history(location_id, status, start, end, direction)

    # ── Inventory ──────────────────────────────────────────────────────────

    async def get_inventory(self, location_id: str | None = None) -> list[InventoryLine]:
        return await self.ledger.lines(location_id)

    async def add_stock(
        self,
        location_id: str,
        item_name: str,
        quantity: int,
        unit: str = "pieces",
        notes: str | None = None,
    ) -> InventoryLine:
        location = await self.locations.require(location_id)
        return await self.ledger.add_stock(
            location_id, item_name, quantity, unit, location_name=location.name, notes=notes
        )

    async def set_stock_quantity(
        self,
        location_id: str,
        item_name: str,
        quantity: int,
        notes: str | None = None,
    ) -> InventoryLine:
        return await self.ledger.set_quantity(location_id, item_name, quantity, notes)

    async def remove_stock(self, location_id: str, item_name: str) -> bool:
        return await self.ledger.remove_line(location_id, item_name)

    async def add_location(self, name: str) -> Location:
        return await self.locations.add(name)

    async def list_locations(self) -> list[Location]:
        return await self.locations.list()

    # ── Notifications ──────────────────────────────────────────────────────

    async def list_notifications(self, location_id: str, include_acknowledged: bool = False) -> list[TransferNotification]:
        return await self.notifications.list_for_location(location_id, include_acknowledged)

    async def mark_notification_read(self, notification_id: str, location_id: str | None = None) -> TransferNotification:
        return await self.notifications.mark_read(notification_id, location_id)

    # ── Reports ────────────────────────────────────────────────────────────

    async def summary_report(self, location_id: str | None = None) -> list[StockSummaryRow]:
        return await self.reporter.summary_by_location(location_id)

    async def totals_report(self) -> list[ItemTotal]:
        return await self.reporter.totals_by_item()

    async def status_counts(self, location_id: str | None = None) -> dict[str, int]:
        return await self.reporter.status_counts(location_id)

    async def anomaly_report(self, now: datetime | None = None, max_pending_age: timedelta | None = None) -> AnomalyReport:
        return await self.reporter.exit_and_stock_anomalies(now, max_pending_age)
