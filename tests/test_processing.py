"""Tests for the ERA file intake workflow."""

from __future__ import annotations

from typing import Any

from era_posting.posting import PostingEngine
from era_posting.processing import process_era_file
from era_posting.schema import ERA_FILES
from era_posting.store import InMemoryDataStore, StoreError


class FailingUpdateStore(InMemoryDataStore):
    """Store whose ERA file updates fail once they set a given processing status."""

    def __init__(self, failing_status: str) -> None:
        super().__init__()
        self.failing_status = failing_status

    def update(self, table: str, record_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        if table == ERA_FILES and changes.get("processing_status") == self.failing_status:
            raise StoreError("timeout")
        return super().update(table, record_id, changes)


class TestProcessEraFile:
    def test_happy_path(self, engine: PostingEngine, store: InMemoryDataStore, sample_835: str) -> None:
        outcome = process_era_file(engine, "remit.835", sample_835, "user-1")
        assert outcome.status == "Posted"
        assert outcome.errors == []
        assert outcome.posting.successful_posts == 2

        record = store.get(ERA_FILES, outcome.era_file_id)
        assert record["file_name"] == "remit.835"
        assert record["uploaded_by"] == "user-1"
        assert record["processing_status"] == "Posted"
        assert record["payer_name"] == "ACME HEALTH PLAN"
        assert record["payer_address"]["city"] == "SPRINGFIELD"
        assert record["payment_amount"] == 425.0
        assert record["provider_adjustment_total"] == 25.0
        assert record["total_claims"] == 2
        assert record["total_service_lines"] == 2
        assert record["processing_started_at"] <= record["processing_completed_at"]
        assert len(record["sha256"]) == 64

    def test_decode_failure_is_recorded(self, engine: PostingEngine, store: InMemoryDataStore) -> None:
        outcome = process_era_file(engine, "bad.835", "GS*HP~ST*835~", "user-1")
        assert outcome.status == "Error"
        assert outcome.posting is None
        assert outcome.errors == ["EDI file must start with ISA segment"]

        record = store.get(ERA_FILES, outcome.era_file_id)
        assert record["processing_status"] == "Error"
        assert record["error_message"] == "EDI file must start with ISA segment"
        assert record["error_details"] == {"errors": ["EDI file must start with ISA segment"]}

    def test_payee_warning_passed_through(
        self, engine: PostingEngine, minimal_835: str
    ) -> None:
        outcome = process_era_file(engine, "min.835", minimal_835.replace("N1*PE*Payee Name~", ""), "user-1")
        assert outcome.warnings == ["Missing payee information (N1*PE loop)"]
        assert outcome.status == "Error"

    def test_duplicate_upload_rejected(
        self, engine: PostingEngine, store: InMemoryDataStore, sample_835: str
    ) -> None:
        first = process_era_file(engine, "remit.835", sample_835, "user-1")
        second = process_era_file(engine, "remit-copy.835", sample_835, "user-1")
        assert second.status == "Error"
        assert second.era_file_id == first.era_file_id
        assert "already posted" in second.errors[0]
        assert len(store.query(ERA_FILES)) == 1

    def test_failed_upload_can_be_retried(
        self, engine: PostingEngine, store: InMemoryDataStore, minimal_835: str
    ) -> None:
        first = process_era_file(engine, "min.835", minimal_835, "user-1")
        assert first.status == "Error"
        second = process_era_file(engine, "min.835", minimal_835, "user-1")
        assert second.era_file_id != first.era_file_id
        assert len(store.query(ERA_FILES)) == 2

    def test_parsed_update_failure_is_reported(self, sample_835: str) -> None:
        store = FailingUpdateStore("Parsed")
        outcome = process_era_file(PostingEngine(store), "remit.835", sample_835, "user-1")
        assert outcome.status == "Error"
        assert outcome.errors == ["Failed to update ERA file record: timeout"]
        assert outcome.posting is None
        assert store.get(ERA_FILES, outcome.era_file_id)["processing_status"] == "Uploaded"

    def test_decode_failure_survives_store_failure(self) -> None:
        store = FailingUpdateStore("Error")
        outcome = process_era_file(PostingEngine(store), "bad.835", "GS*HP~ST*835~", "user-1")
        assert outcome.status == "Error"
        assert outcome.errors == ["EDI file must start with ISA segment"]
        assert store.get(ERA_FILES, outcome.era_file_id)["processing_status"] == "Uploaded"
