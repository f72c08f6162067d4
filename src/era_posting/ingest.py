"""Data ingestion and export.

Loads a claims table (Parquet or CSV) into a store, reads raw 835 text, and
writes the records produced by posting back out as Parquet.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import polars as pl

from era_posting.schema import CLAIM_COLUMNS, CLAIMS, RECORD_TABLES, REQUIRED_CLAIM_COLUMNS
from era_posting.store import DataStore

_POLARS_DTYPES: dict[str, type[pl.DataType]] = {
    "String": pl.Utf8,
    "Float64": pl.Float64,
    "Date": pl.Date,
}


def read_era_text(path: str | Path) -> str:
    """Read an 835 file as text.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"ERA file not found: {path}")
    return path.read_text(encoding="utf-8-sig", errors="replace")


def load_claims(path: str | Path) -> pl.DataFrame:
    """Load a claims table and normalize it to the claim columns.

    Args:
        path: Parquet or CSV file with at least ``id``, ``claim_id`` and
            ``billed_amount`` columns.

    Returns:
        Polars DataFrame with every column in ``CLAIM_COLUMNS``; optional
        columns missing from the file are added as nulls, ``paid_amount``
        defaults to 0 and ``claim_status`` to ``"Submitted"``.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file cannot be read or required columns are missing.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Claims file not found: {path}")

    try:
        if path.suffix.lower() == ".csv":
            raw = pl.read_csv(path, infer_schema_length=0)
        else:
            raw = pl.read_parquet(path)
    except Exception as e:
        raise ValueError(f"Failed to read claims file {path}: {e}") from e

    raw = raw.rename({c: c.strip() for c in raw.columns})
    missing = set(REQUIRED_CLAIM_COLUMNS) - set(raw.columns)
    if missing:
        raise ValueError(
            f"Missing required claim columns: {sorted(missing)}. "
            f"Found columns: {sorted(raw.columns)}"
        )

    for col in CLAIM_COLUMNS:
        if col not in raw.columns:
            raw = raw.with_columns(pl.lit(None).alias(col))

    casts = []
    for col, dtype_name in CLAIM_COLUMNS.items():
        dtype = _POLARS_DTYPES[dtype_name]
        if dtype is pl.Date and raw.schema[col] == pl.Utf8:
            casts.append(pl.col(col).str.to_date(format="%Y-%m-%d", strict=False).alias(col))
        else:
            casts.append(pl.col(col).cast(dtype, strict=False).alias(col))

    return (
        raw.with_columns(casts)
        .with_columns(
            pl.col("paid_amount").fill_null(0.0),
            pl.col("claim_status").fill_null("Submitted"),
        )
        .select(list(CLAIM_COLUMNS))
    )


def seed_claims(store: DataStore, df: pl.DataFrame) -> int:
    """Insert every row of a claims frame into ``store``; returns the row count."""
    for row in df.iter_rows(named=True):
        store.insert(CLAIMS, row)
    return df.height


def _flatten(row: dict[str, Any]) -> dict[str, Any]:
    # nested values are stored as JSON strings in Parquet
    return {
        k: json.dumps(v, default=str) if isinstance(v, (dict, list)) else v
        for k, v in row.items()
    }


def records_frame(store: DataStore, table: str) -> pl.DataFrame:
    """All rows of a store table as a DataFrame (empty frame when none)."""
    rows = [_flatten(r) for r in store.query(table)]
    if not rows:
        return pl.DataFrame()
    df = pl.DataFrame(rows, infer_schema_length=None)
    # all-null columns have no physical type to write
    null_cols = [name for name, dtype in df.schema.items() if dtype == pl.Null]
    if null_cols:
        df = df.with_columns(pl.col(null_cols).cast(pl.Utf8))
    return df


def save_records(store: DataStore, output_dir: Path) -> dict[str, Path]:
    """Write the claims table and every non-empty record table to Parquet.

    Returns:
        Mapping of table name to the file written.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    written: dict[str, Path] = {}
    for table in [CLAIMS, *RECORD_TABLES]:
        df = records_frame(store, table)
        if df.height == 0:
            continue
        path = output_dir / f"{table}.parquet"
        df.write_parquet(path)
        written[table] = path
    return written
