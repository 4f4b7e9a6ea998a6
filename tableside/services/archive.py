"""
Session Archive with Concurrency Control

Cleared sessions are appended to a spreadsheet before their documents
are deleted, so the restaurant keeps a record of every closed table.
Several workers may write at once; a file lock serialises them.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import pandas as pd
from filelock import FileLock, Timeout

from tableside.core.config import Settings, get_settings
from tableside.schemas import Session
from tableside.services.billing import compute_bill, format_money

logger = logging.getLogger(__name__)


ARCHIVE_COLUMNS = [
    "session_id",
    "session_key",
    "table_number",
    "customer_name",
    "number_of_people",
    "session_status",
    "bill_status",
    "kitchen_status",
    "items",
    "batch_count",
    "subtotal",
    "cgst",
    "sgst",
    "service_charge",
    "grand_total",
    "created_at",
    "updated_at",
    "bill_requested_at",
    "bill_generated_at",
    "archived_at",
]


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def archive_row(session: Session, settings: Optional[Settings] = None) -> dict[str, Any]:
    """One spreadsheet row for a session, JSON-serialisable for the task queue."""
    totals = compute_bill(session, settings)
    items = "; ".join(
        f"{item.quantity}x {item.name} ({item.portion.value})" for item in session.all_items
    )
    return {
        "session_id": session.id,
        "session_key": session.session_key,
        "table_number": session.table_number,
        "customer_name": session.customer_name,
        "number_of_people": session.number_of_people,
        "session_status": session.session_status.value,
        "bill_status": session.bill_status.value if session.bill_status else None,
        "kitchen_status": session.status.value,
        "items": items,
        "batch_count": len(session.extras_batches),
        "subtotal": float(format_money(totals.subtotal)),
        "cgst": float(format_money(totals.cgst)),
        "sgst": float(format_money(totals.sgst)),
        "service_charge": float(format_money(totals.service_charge)),
        "grand_total": float(format_money(totals.grand_total)),
        "created_at": _iso(session.created_at),
        "updated_at": _iso(session.updated_at),
        "bill_requested_at": _iso(session.bill_requested_at),
        "bill_generated_at": _iso(session.bill_generated_at),
    }


class SessionArchive:
    """
    Spreadsheet of archived sessions.

    Args:
        data_directory: Folder holding the workbook, defaults to settings
        filename: Workbook name, defaults to settings
        lock_timeout: Seconds to wait for the file lock
    """

    def __init__(
        self,
        data_directory: Optional[Path] = None,
        filename: Optional[str] = None,
        lock_timeout: Optional[int] = None,
    ):
        settings = get_settings()
        self.data_dir = Path(data_directory or settings.data_directory)
        self.file_path = self.data_dir / (filename or settings.archive_filename)
        self.lock_path = self.file_path.with_name(self.file_path.name + ".lock")
        self.lock_timeout = lock_timeout if lock_timeout is not None else settings.archive_lock_timeout

    def _ensure_data_dir(self) -> None:
        if not self.data_dir.exists():
            self.data_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created data directory: {self.data_dir}")

    def _load_or_create_df(self) -> pd.DataFrame:
        if self.file_path.exists():
            return pd.read_excel(self.file_path, engine="openpyxl")
        return pd.DataFrame(columns=ARCHIVE_COLUMNS)

    def export_sessions(self, rows: list[dict[str, Any]]) -> dict[str, Any]:
        """
        Append rows to the workbook under the file lock.

        Returns:
            Dict with success, message, count and exported_at
        """
        self._ensure_data_dir()
        result: dict[str, Any] = {
            "success": False,
            "message": "",
            "count": len(rows),
            "exported_at": None,
        }
        if not rows:
            result["success"] = True
            result["message"] = "Nothing to archive"
            return result

        try:
            with FileLock(str(self.lock_path), timeout=self.lock_timeout):
                logger.debug(f"Lock acquired for {len(rows)} archived sessions")

                df = self._load_or_create_df()
                export_time = datetime.now(timezone.utc).isoformat()
                new_rows = pd.DataFrame(
                    [{**row, "archived_at": export_time} for row in rows],
                    columns=ARCHIVE_COLUMNS,
                )
                df = new_rows if df.empty else pd.concat([df, new_rows], ignore_index=True)
                df.to_excel(str(self.file_path), index=False, engine="openpyxl")

                logger.info(f"Archived {len(rows)} sessions to {self.file_path.name}")
                result["success"] = True
                result["message"] = f"{len(rows)} sessions archived"
                result["exported_at"] = export_time

        except Timeout:
            result["message"] = f"Lock timeout ({self.lock_timeout}s)"
            logger.error(f"Lock timeout while archiving {len(rows)} sessions")

        return result

    def get_all_sessions(self) -> list[dict[str, Any]]:
        if not self.file_path.exists():
            return []
        df = pd.read_excel(self.file_path, engine="openpyxl")
        return df.to_dict("records")

    def clear_all(self) -> bool:
        """Delete the workbook and its lock file."""
        removed = False
        for path in (self.file_path, self.lock_path):
            if path.exists():
                path.unlink()
                removed = True
        logger.info("Session archive cleared")
        return removed
