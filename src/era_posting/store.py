"""Persistence boundary for the posting engine.

The engine talks to a :class:`DataStore`: generic insert/update/get/query over
named record tables, plus the claim lookups and the atomic paid-amount
adjustment it needs. :class:`InMemoryDataStore` is the reference
implementation used by the CLI and the tests; any backend satisfying the same
contract can be swapped in.
"""

from __future__ import annotations

import copy
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import date
from typing import Any

from era_posting.schema import CLAIMS, RECORD_TABLES

SUPPORTED_TABLES: set[str] = {CLAIMS, *RECORD_TABLES}


class StoreError(Exception):
    """A persistence operation failed."""


class DataStore(ABC):
    """Abstract record store consumed by the posting engine."""

    @abstractmethod
    def insert(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        """Insert ``record`` and return it with its assigned ``id``."""

    @abstractmethod
    def update(self, table: str, record_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        """Apply ``changes`` to an existing record and return the updated record."""

    @abstractmethod
    def get(self, table: str, record_id: str) -> dict[str, Any] | None:
        """Return one record by id, or ``None``."""

    @abstractmethod
    def query(self, table: str, **filters: Any) -> list[dict[str, Any]]:
        """Return records whose fields equal every keyword filter, in insertion order."""

    @abstractmethod
    def find_claims_by_control_number(self, control_number: str) -> list[dict[str, Any]]:
        """Claims whose ``claim_id`` or ``payer_claim_control_number`` equals ``control_number``."""

    @abstractmethod
    def find_claims_by_patient(
        self, last_name: str, date_from: date, date_to: date
    ) -> list[dict[str, Any]]:
        """Claims for a patient last name (case-insensitive) with a statement date in range."""

    @abstractmethod
    def adjust_paid_amount(
        self, claim_id: str, delta: float, paid_date: date | None = None
    ) -> dict[str, Any]:
        """Atomically add ``delta`` to a claim's ``paid_amount`` (floored at 0).

        Returns the updated claim. Implementations must make the
        read-add-write indivisible so concurrent posters cannot lose updates.
        """


def _as_date(value: Any) -> date | None:
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


class InMemoryDataStore(DataStore):
    """Dictionary-backed store guarded by a single lock."""

    def __init__(self) -> None:
        self._tables: dict[str, dict[str, dict[str, Any]]] = {t: {} for t in SUPPORTED_TABLES}
        self._lock = threading.RLock()

    def _table(self, table: str) -> dict[str, dict[str, Any]]:
        if table not in SUPPORTED_TABLES:
            raise ValueError(f"Unsupported table: {table}")
        return self._tables[table]

    def insert(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            rows = self._table(table)
            row = copy.deepcopy(record)
            row_id = str(row.get("id") or uuid.uuid4())
            if row_id in rows:
                raise StoreError(f"Duplicate id {row_id} in {table}")
            row["id"] = row_id
            rows[row_id] = row
            return copy.deepcopy(row)

    def update(self, table: str, record_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            rows = self._table(table)
            if record_id not in rows:
                raise StoreError(f"No record {record_id} in {table}")
            rows[record_id].update(copy.deepcopy(changes))
            return copy.deepcopy(rows[record_id])

    def get(self, table: str, record_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._table(table).get(record_id)
            return copy.deepcopy(row) if row is not None else None

    def query(self, table: str, **filters: Any) -> list[dict[str, Any]]:
        with self._lock:
            return [
                copy.deepcopy(row)
                for row in self._table(table).values()
                if all(row.get(k) == v for k, v in filters.items())
            ]

    def find_claims_by_control_number(self, control_number: str) -> list[dict[str, Any]]:
        if not control_number:
            return []
        with self._lock:
            return [
                copy.deepcopy(row)
                for row in self._tables[CLAIMS].values()
                if control_number in (row.get("claim_id"), row.get("payer_claim_control_number"))
            ]

    def find_claims_by_patient(
        self, last_name: str, date_from: date, date_to: date
    ) -> list[dict[str, Any]]:
        wanted = last_name.strip().lower()
        matches: list[dict[str, Any]] = []
        with self._lock:
            for row in self._tables[CLAIMS].values():
                if (row.get("patient_last_name") or "").strip().lower() != wanted:
                    continue
                statement_from = _as_date(row.get("statement_from_date"))
                if statement_from is None or not date_from <= statement_from <= date_to:
                    continue
                matches.append(copy.deepcopy(row))
        return matches

    def adjust_paid_amount(
        self, claim_id: str, delta: float, paid_date: date | None = None
    ) -> dict[str, Any]:
        with self._lock:
            claim = self._tables[CLAIMS].get(claim_id)
            if claim is None:
                raise StoreError(f"No record {claim_id} in {CLAIMS}")
            claim["paid_amount"] = max(0.0, round((claim.get("paid_amount") or 0.0) + delta, 2))
            if paid_date is not None:
                claim["paid_date"] = paid_date
            return copy.deepcopy(claim)
