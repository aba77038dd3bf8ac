"""
Reconciliation Worker — periodic anomaly scan over ledgers and transfers.

Advisory only: findings are logged for an operator, nothing is corrected.

Schedule: See celery_app.py beat_schedule
"""

import asyncio
from datetime import datetime, timedelta, timezone

import structlog

from workers.celery_app import celery_app

logger = structlog.get_logger()


@celery_app.task(
    name="workers.reconciliation.scan_anomalies",
    bind=True,
    max_retries=2,
    default_retry_delay=120,
    acks_late=True,
)
def scan_anomalies(self, max_pending_hours: float | None = None):
    """
    Hourly job: flag negative or implausible stock, duplicate ledger lines,
    transfers pending too long and deliveries whose settlement stopped.
    """
    run_id = self.request.id or "manual"
    logger.info("reconciliation.started", run_id=run_id)

    async def _scan():
        from core.config import get_settings
        from docstore import build_store
        from transfers.service import TransferService

        settings = get_settings()
        store = build_store(settings)
        try:
            service = TransferService.from_settings(store, settings)
            max_age = timedelta(hours=max_pending_hours) if max_pending_hours else None
            report = await service.anomaly_report(max_pending_age=max_age)

            for anomaly in report.anomalies:
                logger.warning(
                    f"anomaly.{anomaly.kind.value}",
                    severity=anomaly.severity,
                    location_id=anomaly.location_id,
                    item_name=anomaly.item_name,
                    transfer_id=anomaly.transfer_id,
                    message=anomaly.message,
                )

            return {
                "status": "anomalies_found" if report.anomalies else "clean",
                "counts": report.counts(),
                "completed_at": datetime.now(timezone.utc).isoformat(),
            }
        finally:
            await store.close()

    try:
        return asyncio.run(_scan())
    except Exception as exc:
        logger.error("reconciliation.failed", error=str(exc), exc_info=True)
        raise self.retry(exc=exc)
