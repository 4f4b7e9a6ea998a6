import asyncio
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from tableside.core.exceptions import (
    NotFoundError,
    SessionClosedError,
    SyncFailure,
    ValidationError,
)
from tableside.schemas import BillStatus, KitchenStatus, Portion, SessionStatus
from tableside.services.billing import compute_bill, format_money
from tableside.services.sessions import RecoveryOutcome, SessionService, session_key
from tableside.services.sessions.rules import parse_table_number
from tableside.services.store import InMemoryDocumentStore, StoreError, VersionConflictError


def stored_total_matches_items(session) -> bool:
    expected = sum(
        (Decimal(str(item.price)) * item.quantity for item in session.session_items),
        Decimal("0"),
    ) + sum((Decimal(str(b.batch_total)) for b in session.extras_batches), Decimal("0"))
    return Decimal(str(session.session_total)) == expected


class InterferingStore(InMemoryDocumentStore):
    """Another writer commits between each compare-and-set read and its write."""

    def __init__(self, interruptions: int):
        super().__init__()
        self.interruptions = interruptions

    async def update(self, collection, document_id, fields, expected_version=None):
        if expected_version is not None and self.interruptions > 0:
            self.interruptions -= 1
            await super().update(collection, document_id, {"touchedBy": "other tab"})
        return await super().update(collection, document_id, fields, expected_version)


class ContendedStore(InMemoryDocumentStore):
    """Plain merges lose the race to another process a few times."""

    def __init__(self, conflicts: int):
        super().__init__()
        self.conflicts = conflicts

    async def update(self, collection, document_id, fields, expected_version=None):
        if expected_version is None and self.conflicts > 0:
            self.conflicts -= 1
            raise VersionConflictError(f"{collection}/{document_id} changed during the write")
        return await super().update(collection, document_id, fields, expected_version)


class OfflineStore(InMemoryDocumentStore):
    async def add(self, collection, data):
        raise StoreError("network unreachable")


@pytest.fixture
async def asha(service, make_item):
    return await service.create_session(5, "Asha", 2, [make_item("Paneer Tikka", 270)])


class TestDiningFlow:
    """Test the full visit: order, extras, bill, approval, download"""

    async def test_create_session(self, asha):
        assert asha.session_total == 270
        assert asha.session_status == SessionStatus.ACTIVE
        assert asha.status == KitchenStatus.WAITING
        assert asha.extras_batches == []
        assert asha.bill_status is None
        assert asha.session_key == "table5_asha"
        assert asha.created_at == asha.updated_at

    async def test_append_extra_batch(self, service, asha, make_item):
        await service.update_kitchen_status(asha.id, KitchenStatus.SERVED)
        session = await service.append_extra_batch(asha.id, [make_item("Butter Naan", 45, 2)])

        assert session.session_total == 360
        assert len(session.extras_batches) == 1
        assert session.extras_batches[0].batch_total == 90
        assert session.has_new_extras is True
        assert session.status == KitchenStatus.WAITING
        assert stored_total_matches_items(session)

    async def test_request_bill_blocks_extras(self, service, asha, make_item):
        await service.append_extra_batch(asha.id, [make_item("Butter Naan", 45, 2)])
        session = await service.request_bill(asha.id)

        assert session.session_status == SessionStatus.BILL_REQUESTED
        assert session.bill_status == BillStatus.PENDING
        assert session.bill_requested_at is not None

        with pytest.raises(SessionClosedError):
            await service.append_extra_batch(asha.id, [make_item("Chapati", 30)])
        assert (await service.get_session(asha.id)).session_total == 360

    async def test_accept_keeps_session_bill_requested(self, service, asha):
        await service.request_bill(asha.id)
        session = await service.accept_bill(asha.id)

        assert session.bill_status == BillStatus.ACCEPTED
        assert session.session_status == SessionStatus.BILL_REQUESTED

    async def test_download_closes_session(self, service, asha, make_item, settings):
        await service.append_extra_batch(asha.id, [make_item("Butter Naan", 45, 2)])
        await service.request_bill(asha.id)
        await service.accept_bill(asha.id)
        session = await service.mark_downloaded(asha.id)

        totals = compute_bill(session, settings)
        assert format_money(totals.subtotal) == Decimal("360.00")
        assert format_money(totals.cgst) == Decimal("9.00")
        assert format_money(totals.sgst) == Decimal("9.00")
        assert format_money(totals.service_charge) == Decimal("18.00")
        assert format_money(totals.grand_total) == Decimal("396.00")
        assert session.bill_status == BillStatus.DOWNLOADED
        assert session.session_status == SessionStatus.CLOSED
        assert session.bill_generated_at is not None

    async def test_force_close_active_session(self, service, asha):
        session = await service.force_close(asha.id)

        assert session.session_status == SessionStatus.CLOSED
        assert session.bill_status is None


class TestValidation:
    """Test create preconditions are checked before any store call"""

    @pytest.mark.parametrize("table", [None, "", "abc", "0", "-3", "5a", True])
    async def test_invalid_table(self, service, make_item, table):
        with pytest.raises(ValidationError):
            await service.create_session(table, "Asha", 2, [make_item()])

    @pytest.mark.parametrize("name", [None, "", "   "])
    async def test_blank_name(self, service, make_item, name):
        with pytest.raises(ValidationError):
            await service.create_session(5, name, 2, [make_item()])

    @pytest.mark.parametrize("people", [0, -1, None, "two"])
    async def test_invalid_party(self, service, make_item, people):
        with pytest.raises(ValidationError):
            await service.create_session(5, "Asha", people, [make_item()])

    async def test_no_items(self, service, store):
        with pytest.raises(ValidationError):
            await service.create_session(5, "Asha", 2, [])
        assert (await store.health_check())["collections"].get("orders", 0) == 0

    async def test_empty_batch(self, service, asha):
        with pytest.raises(ValidationError):
            await service.append_extra_batch(asha.id, [])

    async def test_name_is_trimmed(self, service, make_item):
        session = await service.create_session("7", "  Rohan  Mehta ", 3, [make_item()])

        assert session.customer_name == "Rohan  Mehta"
        assert session.table_number == 7
        assert session.session_key == "table7_rohan_mehta"


class TestKeysAndTables:
    def test_session_key_normalises_whitespace(self):
        assert session_key(12, " Priya  S ") == "table12_priya_s"

    @pytest.mark.parametrize("raw,expected", [
        ("5", 5), (" 12 ", 12), (3, 3), ("0", None), ("x", None), (None, None), ("1.5", None),
        ("\u00b2", None), ("\u0663", None), ("-4", None),
    ])
    def test_parse_table_number(self, raw, expected):
        assert parse_table_number(raw) == expected

    async def test_superscript_table_is_rejected(self, service, make_item):
        with pytest.raises(ValidationError):
            await service.recover_session("\u00b2")
        with pytest.raises(ValidationError):
            await service.create_session("\u00b2", "Asha", 2, [make_item()])


class TestGuards:
    """Test transitions rejected from the wrong state leave the document alone"""

    async def test_accept_without_request(self, service, asha, store):
        before = await store.get("orders", asha.id)
        with pytest.raises(SessionClosedError):
            await service.accept_bill(asha.id)
        assert (await store.get("orders", asha.id)).version == before.version

    async def test_download_before_accept(self, service, asha):
        await service.request_bill(asha.id)
        with pytest.raises(SessionClosedError):
            await service.mark_downloaded(asha.id)

    async def test_request_bill_on_closed(self, service, asha):
        await service.force_close(asha.id)
        with pytest.raises(SessionClosedError):
            await service.request_bill(asha.id)

    async def test_append_to_closed(self, service, asha, make_item):
        await service.force_close(asha.id)
        with pytest.raises(SessionClosedError):
            await service.append_extra_batch(asha.id, [make_item()])

    async def test_accept_after_force_close(self, service, asha):
        await service.request_bill(asha.id)
        await service.force_close(asha.id)
        with pytest.raises(SessionClosedError):
            await service.accept_bill(asha.id)

    async def test_bill_never_accepted_while_active(self, service, asha):
        with pytest.raises(SessionClosedError):
            await service.accept_bill(asha.id)
        session = await service.get_session(asha.id)
        assert session.session_status == SessionStatus.ACTIVE
        assert session.bill_status is None

    async def test_missing_session(self, service, make_item):
        with pytest.raises(NotFoundError):
            await service.append_extra_batch("gone", [make_item()])
        with pytest.raises(NotFoundError):
            await service.update_kitchen_status("gone", KitchenStatus.SERVED)


class TestRetries:
    """Test repeated calls are safe"""

    async def test_request_bill_twice(self, service, asha, store):
        first = await service.request_bill(asha.id)
        version = (await store.get("orders", asha.id)).version
        second = await service.request_bill(asha.id)

        assert second.bill_requested_at == first.bill_requested_at
        assert (await store.get("orders", asha.id)).version == version

    async def test_accept_and_download_twice(self, service, asha):
        await service.request_bill(asha.id)
        await service.accept_bill(asha.id)
        await service.accept_bill(asha.id)
        await service.mark_downloaded(asha.id)
        session = await service.mark_downloaded(asha.id)

        assert session.bill_status == BillStatus.DOWNLOADED

    async def test_force_close_twice(self, service, asha):
        first = await service.force_close(asha.id)
        second = await service.force_close(asha.id)

        assert second.updated_at == first.updated_at


class TestConcurrentAppends:
    """Test overlapping appends never lose a batch"""

    async def test_overlapping_appends_keep_every_batch(self, settings, make_item):
        store = InMemoryDocumentStore(min_latency=0.001, max_latency=0.01)
        service = SessionService(store, settings)
        session = await service.create_session(3, "Kabir", 4, [make_item("Dal Tadka", 160)])

        batches = [[make_item(f"Extra {n}", 10 * n, 1)] for n in range(1, 6)]
        await asyncio.gather(*[service.append_extra_batch(session.id, b) for b in batches])

        final = await service.get_session(session.id)
        assert len(final.extras_batches) == 5
        assert {b.items[0].name for b in final.extras_batches} == {f"Extra {n}" for n in range(1, 6)}
        assert final.session_total == 160 + 150
        assert stored_total_matches_items(final)
        await store.close()

    async def test_append_retries_after_interleaved_write(self, settings, make_item):
        store = InterferingStore(interruptions=2)
        service = SessionService(store, settings)
        session = await service.create_session(3, "Kabir", 4, [make_item("Dal Tadka", 160)])

        result = await service.append_extra_batch(session.id, [make_item("Jeera Rice", 140)])

        assert result.session_total == 300
        stored = await store.get("orders", session.id)
        assert stored.data["touchedBy"] == "other tab"
        assert stored.version == 4

    async def test_persistent_contention_fails_without_writing(self, settings, make_item):
        store = InterferingStore(interruptions=100)
        service = SessionService(store, settings.model_copy(update={"max_append_attempts": 3}))
        session = await service.create_session(3, "Kabir", 4, [make_item("Dal Tadka", 160)])

        with pytest.raises(SyncFailure):
            await service.append_extra_batch(session.id, [make_item("Jeera Rice", 140)])

        stored = await store.get("orders", session.id)
        assert stored.data["extrasBatches"] == []
        assert stored.data["sessionTotal"] == 160

    async def test_earlier_batches_are_never_rewritten(self, service, asha, make_item):
        first = await service.append_extra_batch(asha.id, [make_item("Butter Naan", 45, 2)])
        await service.append_extra_batch(asha.id, [make_item("Chapati", 30, 3)])
        await service.request_bill(asha.id)
        final = await service.force_close(asha.id)

        assert final.extras_batches[0] == first.extras_batches[0]
        assert [b.batch_total for b in final.extras_batches] == [90, 90]


class TestRecovery:
    """Test finding a diner's session again"""

    async def test_resume_active(self, service, asha):
        result = await service.recover_session(5, "Asha")

        assert result.outcome == RecoveryOutcome.RESUMED
        assert result.session.id == asha.id
        assert result.message == "Welcome back! Your session has 1 initial items."

    async def test_recover_twice_same_session(self, service, asha, store):
        first = await service.recover_session("5", "Asha")
        second = await service.recover_session("5", "Asha")

        assert first.session.id == second.session.id == asha.id
        assert (await store.health_check())["collections"]["orders"] == 1

    async def test_resume_bill_requested(self, service, asha):
        await service.request_bill(asha.id)
        result = await service.recover_session(5, "Asha")

        assert result.outcome == RecoveryOutcome.RESUMED
        assert "pending chef approval" in result.message

    async def test_closed_session_surfaces_closed(self, service, asha):
        await service.force_close(asha.id)
        result = await service.recover_session(5, "Asha")

        assert result.outcome == RecoveryOutcome.CLOSED
        assert result.session.id == asha.id

    async def test_nothing_at_table(self, service, asha):
        assert (await service.recover_session(6, "Asha")).outcome == RecoveryOutcome.NONE
        assert (await service.recover_session(5, "Rohan")).outcome == RecoveryOutcome.NONE

    async def test_name_disambiguates_diners(self, service, asha, make_item):
        rohan = await service.create_session(5, "Rohan", 1, [make_item("Chapati", 30)])

        assert (await service.recover_session(5, "Asha")).session.id == asha.id
        assert (await service.recover_session(5, "Rohan")).session.id == rohan.id

    async def test_same_instant_later_session_wins(self, store, settings, make_item):
        instant = datetime(2024, 3, 1, 19, 0, tzinfo=timezone.utc)
        service = SessionService(store, settings, clock=lambda: instant)
        await service.create_session(5, "Asha", 2, [make_item()])
        later = await service.create_session(5, "Rohan", 1, [make_item("Chapati", 30)])

        assert (await service.recover_session(5)).session.id == later.id

    async def test_without_name_latest_session_wins(self, service, asha, make_item):
        """Test the latest session at the table is taken whoever owns it"""
        rohan = await service.create_session(5, "Rohan", 1, [make_item("Chapati", 30)])

        result = await service.recover_session(5)

        assert result.outcome == RecoveryOutcome.RESUMED
        assert result.session.id == rohan.id

    async def test_newer_session_after_closure(self, service, asha, make_item):
        await service.force_close(asha.id)
        again = await service.create_session(5, "Asha", 2, [make_item()])

        result = await service.recover_session(5, "Asha")

        assert result.outcome == RecoveryOutcome.RESUMED
        assert result.session.id == again.id

    async def test_requires_table(self, service):
        with pytest.raises(ValidationError):
            await service.recover_session(None, "Asha")


class TestChefOperations:
    async def test_kitchen_status_any_order(self, service, asha):
        for status in (KitchenStatus.SERVED, KitchenStatus.WAITING, KitchenStatus.PREPARING):
            session = await service.update_kitchen_status(asha.id, status)
            assert session.status == status

    async def test_acknowledge_extras(self, service, asha, make_item):
        await service.append_extra_batch(asha.id, [make_item("Butter Naan", 45)])
        session = await service.acknowledge_extras(asha.id)

        assert session.has_new_extras is False
        assert len(session.extras_batches) == 1

    async def test_list_sessions_by_last_update(self, service, asha, make_item):
        rohan = await service.create_session(6, "Rohan", 1, [make_item()])
        await service.update_kitchen_status(asha.id, KitchenStatus.PREPARING)

        assert [s.id for s in await service.list_sessions()] == [asha.id, rohan.id]

    async def test_clear_closed_sessions(self, service, asha, make_item):
        rohan = await service.create_session(6, "Rohan", 1, [make_item()])
        await service.force_close(asha.id)

        result = await service.clear_closed_sessions()

        assert [s.id for s in result.deleted] == [asha.id]
        assert result.failed == []
        assert [s.id for s in await service.list_sessions()] == [rohan.id]

    async def test_clear_continues_past_failures(self, service, store, asha, make_item):
        rohan = await service.create_session(6, "Rohan", 1, [make_item()])
        await service.force_close(asha.id)
        await service.force_close(rohan.id)
        original_delete = store.delete

        async def flaky_delete(collection, document_id):
            if document_id == asha.id:
                raise StoreError("permission denied")
            await original_delete(collection, document_id)

        store.delete = flaky_delete
        result = await service.clear_closed_sessions()

        assert [s.id for s in result.deleted] == [rohan.id]
        assert result.failed_tables == ["Table 5"]

    async def test_chef_merge_is_reapplied_after_conflict(self, settings, make_item):
        service = SessionService(ContendedStore(conflicts=2), settings)
        session = await service.create_session(5, "Asha", 2, [make_item()])

        closed = await service.force_close(session.id)

        assert closed.session_status == SessionStatus.CLOSED

    async def test_chef_merge_gives_up_as_sync_failure(self, settings, make_item):
        store = ContendedStore(conflicts=0)
        service = SessionService(store, settings)
        session = await service.create_session(5, "Asha", 2, [make_item()])
        store.conflicts = 100

        with pytest.raises(SyncFailure):
            await service.update_kitchen_status(session.id, KitchenStatus.SERVED)
        with pytest.raises(SyncFailure):
            await service.acknowledge_extras(session.id)


class TestStoreFailures:
    async def test_write_failure_is_sync_failure(self, settings, make_item):
        service = SessionService(OfflineStore(), settings)
        with pytest.raises(SyncFailure):
            await service.create_session(5, "Asha", 2, [make_item()])


class TestLiveFeeds:
    """Test session pushes"""

    async def test_watch_session_follows_and_reports_deletion(self, service, asha):
        received = []
        subscription = await service.watch_session(asha.id, received.append)
        await service.update_kitchen_status(asha.id, KitchenStatus.PREPARING)
        await service.force_close(asha.id)
        await service.clear_closed_sessions()
        await subscription.drain()

        assert [s.status if s else None for s in received] == [
            KitchenStatus.WAITING,
            KitchenStatus.PREPARING,
            KitchenStatus.PREPARING,
            None,
        ]
        subscription.cancel()

    async def test_watch_sessions_newest_first(self, service, asha, make_item):
        received = []
        subscription = await service.watch_sessions(received.append)
        rohan = await service.create_session(6, "Rohan", 1, [make_item()])
        await subscription.drain()

        assert [s.id for s in received[-1]] == [rohan.id, asha.id]
        subscription.cancel()

    async def test_totals_hold_at_every_push(self, service, asha, make_item):
        totals_ok = []
        subscription = await service.watch_session(
            asha.id, lambda s: totals_ok.append(stored_total_matches_items(s))
        )
        for n in range(3):
            await service.append_extra_batch(asha.id, [make_item(f"Extra {n}", 12.5, n + 1)])
        await subscription.drain()

        assert totals_ok == [True] * 4
        subscription.cancel()
