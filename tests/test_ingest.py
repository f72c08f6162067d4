"""Tests for claims ingestion and record export."""

from __future__ import annotations

import json
from datetime import date
from pathlib import Path

import polars as pl
import pytest

from era_posting.ingest import load_claims, read_era_text, records_frame, save_records, seed_claims
from era_posting.posting import PostingEngine
from era_posting.processing import process_era_file
from era_posting.schema import CLAIM_COLUMNS, CLAIMS, ERA_SERVICE_LINES
from era_posting.store import InMemoryDataStore


@pytest.fixture
def claims_csv(tmp_path: Path) -> Path:
    path = tmp_path / "claims.csv"
    path.write_text(
        "id,claim_id,patient_first_name,patient_last_name,statement_from_date,billed_amount\n"
        "c-1,PCN001,JANE,DOE,2025-10-01,300.00\n"
        "c-2,PCN002,RICHARD,ROE,2025-10-02,250\n"
    )
    return path


class TestLoadClaims:
    def test_csv(self, claims_csv: Path) -> None:
        df = load_claims(claims_csv)
        assert df.columns == list(CLAIM_COLUMNS)
        assert df.height == 2
        assert df["billed_amount"].to_list() == [300.0, 250.0]
        assert df["statement_from_date"].to_list() == [date(2025, 10, 1), date(2025, 10, 2)]
        assert df["paid_amount"].to_list() == [0.0, 0.0]
        assert df["claim_status"].to_list() == ["Submitted", "Submitted"]
        assert df["payer_claim_control_number"].null_count() == 2

    def test_parquet(self, tmp_path: Path) -> None:
        path = tmp_path / "claims.parquet"
        pl.DataFrame(
            {
                "id": ["c-1"],
                "claim_id": ["PCN001"],
                "billed_amount": [300.0],
                "paid_amount": [12.5],
                "claim_status": ["In Process"],
            }
        ).write_parquet(path)
        df = load_claims(path)
        assert df["paid_amount"][0] == 12.5
        assert df["claim_status"][0] == "In Process"

    def test_missing_required_columns(self, tmp_path: Path) -> None:
        path = tmp_path / "claims.csv"
        path.write_text("claim_id,billed_amount\nPCN001,10\n")
        with pytest.raises(ValueError, match="Missing required claim columns"):
            load_claims(path)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_claims(tmp_path / "nope.csv")

    def test_seed(self, claims_csv: Path) -> None:
        store = InMemoryDataStore()
        assert seed_claims(store, load_claims(claims_csv)) == 2
        claim = store.get(CLAIMS, "c-1")
        assert claim["patient_last_name"] == "DOE"
        assert claim["statement_from_date"] == date(2025, 10, 1)


class TestReadEraText:
    def test_reads(self, tmp_path: Path, sample_835: str) -> None:
        path = tmp_path / "remit.835"
        path.write_text(sample_835)
        assert read_era_text(path) == sample_835

    def test_strips_byte_order_mark(self, tmp_path: Path, sample_835: str) -> None:
        path = tmp_path / "remit.835"
        path.write_bytes(b"\xef\xbb\xbf" + sample_835.encode())
        text = read_era_text(path)
        assert text.startswith("ISA")
        assert text == sample_835

    def test_missing(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            read_era_text(tmp_path / "nope.835")


class TestSaveRecords:
    def test_writes_non_empty_tables(
        self, engine: PostingEngine, store: InMemoryDataStore, sample_835: str, tmp_path: Path
    ) -> None:
        process_era_file(engine, "remit.835", sample_835, "user-1")
        written = save_records(store, tmp_path / "out")

        assert set(written) == {
            "claims",
            "era_files",
            "era_claim_details",
            "era_service_lines",
            "payment_postings",
            "payment_adjustments",
        }
        postings = pl.read_parquet(written["payment_postings"])
        assert postings.height == 2
        assert sorted(postings["payment_amount"].to_list()) == [200.0, 250.0]

    def test_nested_values_become_json(self, engine: PostingEngine, store: InMemoryDataStore, sample_835: str) -> None:
        process_era_file(engine, "remit.835", sample_835, "user-1")
        lines = records_frame(store, ERA_SERVICE_LINES)
        codes = json.loads(lines["adjustment_codes"][0])
        assert {c["reason_code"] for c in codes} == {"45", "1", "2"}
        assert json.loads(lines["procedure_modifiers"][0]) == ["25"]

    def test_empty_table(self) -> None:
        assert records_frame(InMemoryDataStore(), ERA_SERVICE_LINES).height == 0
