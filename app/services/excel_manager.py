"""
Excel Sales Ledger with Concurrency Control

Appends one row per paid order to the sales ledger workbook. Several Celery
workers may write at once, so every append holds a file lock.
"""

from datetime import datetime
from typing import Any
from pathlib import Path

import pandas as pd
from filelock import FileLock, Timeout

from app.core.config import get_settings
import logging

settings = get_settings()
logger = logging.getLogger(__name__)


class ExcelManager:
    """Process-safe Excel ledger manager."""

    DATA_DIR = Path(settings.data_directory)
    LEDGER_NAME = settings.ledger_filename
    LOCK_TIMEOUT = settings.excel_lock_timeout

    LEDGER_COLUMNS = [
        "order_id",
        "table_number",
        "created_at",
        "paid_at",
        "items",
        "total_eur",
        "display_total",
        "currency",
        "exported_at",
    ]

    @classmethod
    def ledger_path(cls) -> Path:
        return cls.DATA_DIR / cls.LEDGER_NAME

    @classmethod
    def lock_path(cls) -> Path:
        return cls.DATA_DIR / f"{cls.LEDGER_NAME}.lock"

    @classmethod
    def _ensure_data_dir(cls) -> None:
        """Create data directory if needed."""
        if not cls.DATA_DIR.exists():
            cls.DATA_DIR.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created data directory: {cls.DATA_DIR}")

    @classmethod
    def _load_or_create_df(cls, file_path: Path, columns: list) -> pd.DataFrame:
        """Load existing file or create new DataFrame."""
        if file_path.exists():
            try:
                return pd.read_excel(file_path, engine="openpyxl", dtype={"order_id": str, "table_number": str})
            except Exception as e:
                logger.warning(f"Error reading {file_path}: {e}")
                return pd.DataFrame(columns=columns)
        return pd.DataFrame(columns=columns)

    @classmethod
    def export_paid_order(cls, order_data: dict[str, Any]) -> dict[str, Any]:
        """
        Append a paid order to the ledger.

        An order already in the ledger is not written twice.
        """
        cls._ensure_data_dir()

        order_id = order_data.get("order_id", "unknown")
        result = {
            "success": False,
            "message": "",
            "order_id": order_id,
            "exported_at": None,
        }

        try:
            lock = FileLock(str(cls.lock_path()), timeout=cls.LOCK_TIMEOUT)

            with lock:
                logger.debug(f"Lock acquired for Order #{order_id}")

                df = cls._load_or_create_df(cls.ledger_path(), cls.LEDGER_COLUMNS)

                if not df.empty and str(order_id) in set(df["order_id"].astype(str)):
                    result["success"] = True
                    result["message"] = f"Order #{order_id} already in ledger"
                    return result

                export_time = datetime.now().isoformat()
                new_row = {
                    "order_id": str(order_id),
                    "table_number": str(order_data.get("table_number", "")),
                    "created_at": order_data.get("created_at"),
                    "paid_at": order_data.get("paid_at", export_time),
                    "items": order_data.get("items"),
                    "total_eur": order_data.get("total_eur"),
                    "display_total": order_data.get("display_total"),
                    "currency": order_data.get("currency", "EUR"),
                    "exported_at": export_time,
                }

                new_df = pd.DataFrame([new_row], columns=cls.LEDGER_COLUMNS)
                df = new_df if df.empty else pd.concat([df, new_df], ignore_index=True)
                df.to_excel(str(cls.ledger_path()), index=False, engine="openpyxl")

                logger.info(f"Order #{order_id} written to sales ledger")

                result["success"] = True
                result["message"] = f"Order #{order_id} exported"
                result["exported_at"] = export_time

            logger.debug(f"Lock released for Order #{order_id}")

        except Timeout:
            result["message"] = f"Lock timeout ({cls.LOCK_TIMEOUT}s)"
            logger.error(f"Lock timeout for Order #{order_id}")

        except Exception as e:
            result["message"] = str(e)
            logger.exception(f"Error exporting Order #{order_id}")

        return result

    @classmethod
    def get_ledger_rows(cls) -> list[dict[str, Any]]:
        """Get all ledger rows."""
        if not cls.ledger_path().exists():
            return []

        try:
            df = pd.read_excel(cls.ledger_path(), engine="openpyxl", dtype={"order_id": str, "table_number": str})
            return df.to_dict("records")
        except Exception as e:
            logger.error(f"Error reading ledger: {e}")
            return []

    @classmethod
    def clear_ledger(cls) -> bool:
        """Delete the ledger and its lock file."""
        try:
            for f in [cls.ledger_path(), cls.lock_path()]:
                if f.exists():
                    f.unlink()
            logger.info("Sales ledger cleared")
            return True
        except OSError as e:
            logger.error(f"Error clearing ledger: {e}")
            return False
