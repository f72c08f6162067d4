"""Tests for the in-memory data store."""

from __future__ import annotations

import threading
from datetime import date

import pytest

from era_posting.schema import CLAIMS, PAYMENT_POSTINGS
from era_posting.store import InMemoryDataStore, StoreError


class TestCrud:
    def test_insert_assigns_id(self) -> None:
        store = InMemoryDataStore()
        row = store.insert(PAYMENT_POSTINGS, {"payment_amount": 10.0})
        assert row["id"]
        assert store.get(PAYMENT_POSTINGS, row["id"])["payment_amount"] == 10.0

    def test_duplicate_id_rejected(self) -> None:
        store = InMemoryDataStore()
        store.insert(CLAIMS, {"id": "x"})
        with pytest.raises(StoreError):
            store.insert(CLAIMS, {"id": "x"})

    def test_returned_rows_are_copies(self, store: InMemoryDataStore) -> None:
        row = store.get(CLAIMS, "c-1")
        row["paid_amount"] = 999.0
        assert store.get(CLAIMS, "c-1")["paid_amount"] == 0.0

    def test_update_missing_record(self, store: InMemoryDataStore) -> None:
        with pytest.raises(StoreError):
            store.update(CLAIMS, "nope", {"claim_status": "Paid"})

    def test_unknown_table(self) -> None:
        with pytest.raises(ValueError, match="Unsupported table"):
            InMemoryDataStore().query("patients")

    def test_query_filters(self, store: InMemoryDataStore) -> None:
        assert [r["id"] for r in store.query(CLAIMS, patient_last_name="DOE")] == ["c-1"]
        assert len(store.query(CLAIMS)) == 3


class TestClaimLookups:
    def test_by_control_number(self, store: InMemoryDataStore) -> None:
        store.update(CLAIMS, "c-2", {"payer_claim_control_number": "PAY-2"})
        assert [r["id"] for r in store.find_claims_by_control_number("PCN001")] == ["c-1"]
        assert [r["id"] for r in store.find_claims_by_control_number("PAY-2")] == ["c-2"]
        assert store.find_claims_by_control_number("") == []

    def test_by_patient(self, store: InMemoryDataStore) -> None:
        rows = store.find_claims_by_patient(" doe ", date(2025, 9, 1), date(2025, 10, 31))
        assert [r["id"] for r in rows] == ["c-1"]
        assert store.find_claims_by_patient("DOE", date(2025, 10, 2), date(2025, 10, 31)) == []

    def test_by_patient_with_string_dates(self) -> None:
        store = InMemoryDataStore()
        store.insert(CLAIMS, {"id": "s", "patient_last_name": "LEE", "statement_from_date": "2025-10-05"})
        assert len(store.find_claims_by_patient("lee", date(2025, 10, 5), date(2025, 10, 5))) == 1


class TestAdjustPaidAmount:
    def test_adds_and_floors_at_zero(self, store: InMemoryDataStore) -> None:
        assert store.adjust_paid_amount("c-1", 50.0)["paid_amount"] == 50.0
        assert store.adjust_paid_amount("c-1", -80.0)["paid_amount"] == 0.0

    def test_sets_paid_date(self, store: InMemoryDataStore) -> None:
        claim = store.adjust_paid_amount("c-1", 5.0, paid_date=date(2025, 10, 20))
        assert claim["paid_date"] == date(2025, 10, 20)

    def test_missing_claim(self, store: InMemoryDataStore) -> None:
        with pytest.raises(StoreError):
            store.adjust_paid_amount("nope", 5.0)

    def test_concurrent_adjustments_are_not_lost(self, store: InMemoryDataStore) -> None:
        def worker() -> None:
            for _ in range(100):
                store.adjust_paid_amount("c-2", 1.0)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert store.get(CLAIMS, "c-2")["paid_amount"] == 800.0
