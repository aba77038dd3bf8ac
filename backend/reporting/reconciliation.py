"""
Reconciliation Reporter — read-only aggregation over ledgers and transfers.

Feeds dashboards and exports (formatting is the caller's job) and flags
inconsistencies for a human to look at. It never writes.

Anomaly types:
  - negative_quantity     ledger line below zero (manual edit or foreign writer)
  - implausible_quantity  ledger line above the configured ceiling
  - duplicate_line        more than one line for one (location, item)
  - stale_pending         transfer pending longer than the configured age
  - unsettled_delivery    delivered transfer whose settlement never finished
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

import structlog

from core.errors import InvalidRequest
from docstore.base import DocumentStore
from inventory.ledger import COLLECTION as STOCK_COLLECTION
from inventory.ledger import InventoryLine
from transfers.models import COLLECTION as TRANSFER_COLLECTION
from transfers.models import TransferRecord, TransferStatus

logger = structlog.get_logger()

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)

DIRECTIONS = ("any", "incoming", "outgoing")


@dataclass
class StockSummaryRow:
    location_id: str
    location_name: str | None
    item_name: str
    quantity: int
    unit: str
    last_updated: datetime | None


@dataclass
class ItemTotal:
    item_name: str
    unit: str
    quantity: int
    location_count: int


class AnomalyKind(str, Enum):
    NEGATIVE_QUANTITY = "negative_quantity"
    IMPLAUSIBLE_QUANTITY = "implausible_quantity"
    DUPLICATE_LINE = "duplicate_line"
    STALE_PENDING = "stale_pending"
    UNSETTLED_DELIVERY = "unsettled_delivery"


@dataclass
class Anomaly:
    kind: AnomalyKind
    severity: str
    message: str
    location_id: str | None = None
    item_name: str | None = None
    transfer_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class AnomalyReport:
    generated_at: datetime
    anomalies: list[Anomaly] = field(default_factory=list)

    def counts(self) -> dict[str, int]:
        counts = {kind.value: 0 for kind in AnomalyKind}
        for anomaly in self.anomalies:
            counts[anomaly.kind.value] += 1
        counts["total"] = len(self.anomalies)
        return counts

    def of_kind(self, kind: AnomalyKind) -> list[Anomaly]:
        return [a for a in self.anomalies if a.kind is kind]


def classify_stale_severity(age: timedelta, threshold: timedelta) -> str:
    """Severity of a stuck pending transfer, relative to the staleness threshold."""
    if age >= threshold * 4:
        return "high"
    elif age >= threshold * 2:
        return "medium"
    return "low"


class ReconciliationReporter:
    def __init__(
        self,
        store: DocumentStore,
        *,
        stale_after: timedelta = timedelta(hours=72),
        implausible_quantity: int = 1_000_000,
    ):
        self.store = store
        self.stale_after = stale_after
        self.implausible_quantity = implausible_quantity

    async def _lines(self, location_id: str | None = None) -> list[InventoryLine]:
        filters = {"location_id": location_id} if location_id else {}
        return [InventoryLine.from_document(d) for d in await self.store.query(STOCK_COLLECTION, **filters)]

    async def _transfers(self) -> list[TransferRecord]:
        return [TransferRecord.from_document(d) for d in await self.store.query(TRANSFER_COLLECTION)]

    # ── Stock ──────────────────────────────────────────────────────────────

    async def summary_by_location(self, location_id: str | None = None) -> list[StockSummaryRow]:
        """One row per ledger line, ordered by location then item."""
        lines = await self._lines(location_id)
        rows = [
            StockSummaryRow(
                location_id=line.location_id,
                location_name=line.location_name,
                item_name=line.item_name,
                quantity=line.quantity,
                unit=line.unit,
                last_updated=line.last_updated,
            )
            for line in lines
        ]
        return sorted(rows, key=lambda r: (r.location_id, r.item_name))

    async def totals_by_item(self) -> list[ItemTotal]:
        """Quantity on hand per item summed across every location."""
        totals: dict[str, ItemTotal] = {}
        for line in await self._lines():
            total = totals.get(line.item_name)
            if total is None:
                totals[line.item_name] = ItemTotal(line.item_name, line.unit, line.quantity, 1)
            else:
                total.quantity += line.quantity
                total.location_count += 1
        return sorted(totals.values(), key=lambda t: t.item_name)

    # ── Transfers ──────────────────────────────────────────────────────────

    async def transfer_history(
        self,
        location_id: str | None = None,
        status: TransferStatus | str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        direction: str = "any",
    ) -> list[TransferRecord]:
        """Transfers matching every given filter, newest first."""
        if direction not in DIRECTIONS:
            raise InvalidRequest(f"Unknown direction: {direction!r}", direction=direction)
        if status is not None:
            try:
                status = TransferStatus(status)
            except ValueError as exc:
                raise InvalidRequest(f"Unknown transfer status: {status!r}", status=str(status)) from exc
        if start is not None and start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        if end is not None and end.tzinfo is None:
            end = end.replace(tzinfo=timezone.utc)

        def keep(t: TransferRecord) -> bool:
            if location_id is not None:
                incoming = t.to_location_id == location_id
                outgoing = t.from_location_id == location_id
                if direction == "incoming" and not incoming:
                    return False
                if direction == "outgoing" and not outgoing:
                    return False
                if direction == "any" and not (incoming or outgoing):
                    return False
            if status is not None and t.status is not status:
                return False
            if start is not None and (t.created_at is None or t.created_at < start):
                return False
            if end is not None and (t.created_at is None or t.created_at > end):
                return False
            return True

        history = [t for t in await self._transfers() if keep(t)]
        return sorted(history, key=lambda t: t.created_at or _EPOCH, reverse=True)

    async def status_counts(self, location_id: str | None = None) -> dict[str, int]:
        """Transfer counts per status, optionally for transfers touching one location."""
        counts = {status.value: 0 for status in TransferStatus}
        for transfer in await self.transfer_history(location_id=location_id):
            counts[transfer.status.value] += 1
        counts["total"] = sum(counts.values())
        return counts

    # ── Anomalies ──────────────────────────────────────────────────────────

    async def exit_and_stock_anomalies(
        self,
        now: datetime | None = None,
        max_pending_age: timedelta | None = None,
    ) -> AnomalyReport:
        """Advisory scan of ledger lines and transfers. Takes no corrective action."""
        now = now or datetime.now(timezone.utc)
        threshold = max_pending_age or self.stale_after
        report = AnomalyReport(generated_at=now)

        by_key: dict[tuple[str, str], list[InventoryLine]] = defaultdict(list)
        for line in await self._lines():
            by_key[(line.location_id, line.item_name)].append(line)
            if line.quantity < 0:
                report.anomalies.append(
                    Anomaly(
                        kind=AnomalyKind.NEGATIVE_QUANTITY,
                        severity="critical",
                        message=f"Negative stock of '{line.item_name}' at {line.location_id}: {line.quantity}",
                        location_id=line.location_id,
                        item_name=line.item_name,
                        metadata={"quantity": line.quantity, "line_id": line.id},
                    )
                )
            elif line.quantity > self.implausible_quantity:
                report.anomalies.append(
                    Anomaly(
                        kind=AnomalyKind.IMPLAUSIBLE_QUANTITY,
                        severity="medium",
                        message=(
                            f"Implausible stock of '{line.item_name}' at {line.location_id}: "
                            f"{line.quantity} exceeds {self.implausible_quantity}"
                        ),
                        location_id=line.location_id,
                        item_name=line.item_name,
                        metadata={"quantity": line.quantity, "line_id": line.id},
                    )
                )

        for (location_id, item_name), lines in by_key.items():
            if len(lines) > 1:
                report.anomalies.append(
                    Anomaly(
                        kind=AnomalyKind.DUPLICATE_LINE,
                        severity="high",
                        message=f"{len(lines)} ledger lines for '{item_name}' at {location_id}",
                        location_id=location_id,
                        item_name=item_name,
                        metadata={"line_ids": [line.id for line in lines]},
                    )
                )

        for transfer in await self._transfers():
            if transfer.status is TransferStatus.PENDING and transfer.created_at is not None:
                age = now - transfer.created_at
                if age > threshold:
                    report.anomalies.append(
                        Anomaly(
                            kind=AnomalyKind.STALE_PENDING,
                            severity=classify_stale_severity(age, threshold),
                            message=(
                                f"Transfer {transfer.tracking_number} pending for "
                                f"{age.total_seconds() / 3600:.0f}h"
                            ),
                            location_id=transfer.to_location_id,
                            item_name=transfer.item_name,
                            transfer_id=transfer.id,
                            metadata={"age_hours": round(age.total_seconds() / 3600, 1)},
                        )
                    )
            elif transfer.status is TransferStatus.DELIVERED and not transfer.is_settled:
                report.anomalies.append(
                    Anomaly(
                        kind=AnomalyKind.UNSETTLED_DELIVERY,
                        severity="high",
                        message=(
                            f"Transfer {transfer.tracking_number} delivered but settlement stopped "
                            f"after '{transfer.settlement_step.value}'"
                        ),
                        location_id=transfer.from_location_id,
                        item_name=transfer.item_name,
                        transfer_id=transfer.id,
                        metadata={"settlement_step": transfer.settlement_step.value},
                    )
                )

        logger.info("reconciliation.scanned", **report.counts())
        return report
