"""
Celery Tasks

Sales ledger export, queued by the caisse when an order is paid.
"""

import logging
import time

from app.celery_worker import celery_app, settings
from app.services.excel_manager import ExcelManager

logger = logging.getLogger(__name__)


class LedgerExportError(Exception):
    """The ledger row could not be written."""


@celery_app.task(
    bind=True,
    max_retries=settings.ledger_export_retries,
    autoretry_for=(LedgerExportError,),
    retry_backoff=True,
    retry_backoff_max=60,
)
def export_paid_order(self, order_data: dict) -> dict:
    """
    Append a paid order to the Excel sales ledger.

    A row without an order id is rejected straight away. A row that could
    not be written (lock timeout, unreadable file) raises LedgerExportError
    and is retried with exponential backoff.

    Args:
        order_data: Ledger row built when the order was marked paid

    Returns:
        dict: Result of the export operation
    """
    task_id = self.request.id
    order_id = order_data.get("order_id")
    if not order_id:
        logger.error(f"Task {task_id}: ledger row without an order id rejected")
        return {"success": False, "message": "Missing order_id", "order_id": None}

    attempt = self.request.retries + 1
    start_time = time.time()
    result = ExcelManager.export_paid_order(order_data)
    elapsed = round(time.time() - start_time, 3)

    if not result["success"]:
        logger.warning(
            f"Task {task_id}: order #{order_id} not exported "
            f"(attempt {attempt}): {result['message']}"
        )
        raise LedgerExportError(result["message"])

    result["task_id"] = task_id
    result["processing_time_seconds"] = elapsed
    logger.info(f"Task {task_id}: {result['message']} in {elapsed}s")
    return result
