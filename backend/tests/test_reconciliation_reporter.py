"""
Tests for the reconciliation reporter — summaries, history and anomaly scan.
"""

from datetime import datetime, timedelta, timezone

import pytest

from core.errors import InsufficientStock, InvalidRequest
from inventory.ledger import COLLECTION as STOCK_COLLECTION
from reporting.reconciliation import AnomalyKind, classify_stale_severity
from transfers.models import COLLECTION as TRANSFER_COLLECTION
from transfers.models import TransferStatus


class TestStockReports:
    async def test_summary_and_totals(self, service, farms):
        await service.add_stock(farms["y"].id, "helmet", 5)
        await service.add_stock(farms["y"].id, "fertilizer", 40, "kg")

        summary = await service.summary_report()
        assert [(r.location_id, r.item_name) for r in summary] == sorted(
            [(farms["x"].id, "helmet"), (farms["y"].id, "helmet"), (farms["y"].id, "fertilizer")]
        )

        totals = {t.item_name: t for t in await service.totals_report()}
        assert totals["helmet"].quantity == 15
        assert totals["helmet"].location_count == 2
        assert totals["fertilizer"].unit == "kg"

    async def test_summary_for_one_location(self, service, farms):
        await service.add_stock(farms["y"].id, "helmet", 5)
        rows = await service.summary_report(farms["y"].id)
        assert [(r.location_name, r.quantity) for r in rows] == [("River Bend", 5)]


class TestTransferHistory:
    async def test_direction_and_status_filters(self, service, farms, admin):
        await service.add_stock(farms["y"].id, "seed", 10)
        outgoing = await service.create_transfer(admin, farms["x"].id, farms["y"].id, "helmet", 1)
        incoming = await service.create_transfer(admin, farms["y"].id, farms["x"].id, "seed", 1)
        await service.reject_transfer(admin, incoming.id)

        x = farms["x"].id
        assert [t.id for t in await service.list_transfers(x)] == [incoming.id, outgoing.id]
        assert [t.id for t in await service.list_transfers(x, direction="outgoing")] == [outgoing.id]
        assert [t.id for t in await service.list_transfers(x, direction="incoming")] == [incoming.id]
        assert [t.id for t in await service.list_transfers(x, status="rejected")] == [incoming.id]

        counts = await service.status_counts(x)
        assert counts == {"pending": 1, "delivered": 0, "rejected": 1, "cancelled": 0, "total": 2}

    async def test_date_window(self, service, farms, admin):
        record = await service.create_transfer(admin, farms["x"].id, farms["y"].id, "helmet", 1)
        later = record.created_at + timedelta(seconds=1)
        assert await service.list_transfers(start=later) == []
        assert [t.id for t in await service.list_transfers(end=later)] == [record.id]

    async def test_bad_filters(self, service):
        with pytest.raises(InvalidRequest):
            await service.list_transfers(direction="sideways")
        with pytest.raises(InvalidRequest):
            await service.list_transfers(status="lost")


class TestAnomalies:
    async def test_clean_ledger_has_no_anomalies(self, service, farms, admin):
        record = await service.create_transfer(admin, farms["x"].id, farms["y"].id, "helmet", 1)
        await service.confirm_transfer(admin, record.id)
        report = await service.anomaly_report()
        assert report.anomalies == []
        assert report.counts()["total"] == 0

    async def test_detects_ledger_anomalies(self, service, memory_store, farms):
        x = farms["x"].id
        await memory_store.create(STOCK_COLLECTION, {"location_id": x, "item_name": "diesel", "quantity": -4})
        await memory_store.create(STOCK_COLLECTION, {"location_id": x, "item_name": "helmet", "quantity": 1})
        await memory_store.create(STOCK_COLLECTION, {"location_id": x, "item_name": "grain", "quantity": 5_000_000})

        report = await service.anomaly_report()
        counts = report.counts()
        assert counts["negative_quantity"] == 1
        assert counts["duplicate_line"] == 1
        assert counts["implausible_quantity"] == 1
        assert report.of_kind(AnomalyKind.NEGATIVE_QUANTITY)[0].severity == "critical"

    async def test_detects_stale_pending_and_unsettled(self, service, memory_store, farms, admin):
        stale = await service.create_transfer(admin, farms["x"].id, farms["y"].id, "helmet", 1)
        drained = await service.create_transfer(admin, farms["x"].id, farms["y"].id, "helmet", 2)
        await memory_store.update(
            TRANSFER_COLLECTION,
            stale.id,
            {"created_at": (datetime.now(timezone.utc) - timedelta(days=20)).isoformat()},
        )
        await service.ledger.debit(farms["x"].id, "helmet", 10)
        with pytest.raises(InsufficientStock):
            await service.confirm_transfer(admin, drained.id)

        report = await service.anomaly_report()
        stale_found = report.of_kind(AnomalyKind.STALE_PENDING)
        assert [a.transfer_id for a in stale_found] == [stale.id]
        assert stale_found[0].severity == "high"
        unsettled = report.of_kind(AnomalyKind.UNSETTLED_DELIVERY)
        assert [a.transfer_id for a in unsettled] == [drained.id]
        assert unsettled[0].metadata["settlement_step"] == "credited"
        assert (await service.get_transfer(drained.id)).status is TransferStatus.DELIVERED

    def test_stale_severity_bands(self):
        threshold = timedelta(hours=72)
        assert classify_stale_severity(timedelta(hours=80), threshold) == "low"
        assert classify_stale_severity(timedelta(hours=150), threshold) == "medium"
        assert classify_stale_severity(timedelta(hours=300), threshold) == "high"
