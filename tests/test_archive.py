import pandas as pd
import pytest
from filelock import FileLock

from tableside.schemas import Session
from tableside.services.archive import ARCHIVE_COLUMNS, SessionArchive, archive_row


@pytest.fixture
def archive(tmp_path):
    return SessionArchive(data_directory=tmp_path / "data", filename="sessions.xlsx", lock_timeout=1)


@pytest.fixture
def closed_session():
    return Session.from_document("abc123xyz0000000000", {
        "customerName": "Asha",
        "numberOfPeople": 2,
        "tableNumber": 5,
        "sessionId": "table5_asha",
        "sessionStatus": "closed",
        "sessionItems": [{"id": "i1", "name": "Paneer Tikka", "portion": "Full", "price": 270, "quantity": 1}],
        "sessionTotal": 360,
        "extrasBatches": [{
            "batchId": "b1",
            "items": [{"id": "i2", "name": "Butter Naan", "portion": "N/A", "price": 45, "quantity": 2}],
            "batchTotal": 90,
        }],
        "billStatus": "downloaded",
        "createdAt": "2024-03-01T19:00:00+00:00",
    })


class TestArchiveRow:
    def test_row_carries_bill_breakdown(self, closed_session, settings):
        row = archive_row(closed_session, settings)

        assert row["grand_total"] == 396.0
        assert row["batch_count"] == 1
        assert row["items"] == "1x Paneer Tikka (Full); 2x Butter Naan (N/A)"
        assert row["updated_at"] == row["created_at"]
        assert set(row) | {"archived_at"} == set(ARCHIVE_COLUMNS)


class TestSessionArchive:
    """Test the locked spreadsheet export"""

    def test_export_appends(self, archive, closed_session, settings):
        row = archive_row(closed_session, settings)
        assert archive.export_sessions([row])["success"]
        assert archive.export_sessions([row, row])["count"] == 2

        records = archive.get_all_sessions()
        assert len(records) == 3
        assert records[0]["customer_name"] == "Asha"
        assert records[0]["archived_at"]

    def test_empty_export_writes_nothing(self, archive):
        result = archive.export_sessions([])

        assert result["success"]
        assert not archive.file_path.exists()

    def test_lock_timeout(self, archive, closed_session, settings):
        archive.lock_timeout = 0.1
        archive._ensure_data_dir()
        with FileLock(str(archive.lock_path)):
            result = archive.export_sessions([archive_row(closed_session, settings)])

        assert result["success"] is False
        assert "Lock timeout" in result["message"]

    def test_columns_in_order(self, archive, closed_session, settings):
        archive.export_sessions([archive_row(closed_session, settings)])
        df = pd.read_excel(archive.file_path, engine="openpyxl")

        assert list(df.columns) == ARCHIVE_COLUMNS

    def test_clear_all(self, archive, closed_session, settings):
        archive.export_sessions([archive_row(closed_session, settings)])

        assert archive.clear_all() is True
        assert archive.get_all_sessions() == []
        assert archive.clear_all() is False
