"""Remittance balancing and payment reconciliation.

Two checks:
- Balance: within one decoded 835, the BPR payment amount should equal the
  claims' paid amounts less provider-level (PLB) adjustments.
- Reconciliation: after posting, the postings recorded against an ERA file
  should add up to the file's payment amount with every claim posted.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from era_posting.schema import ERA_FILES, PAYMENT_POSTINGS, PAYMENT_RECONCILIATIONS, ERAFile
from era_posting.store import DataStore, StoreError

logger = logging.getLogger(__name__)


class BalanceCheck(BaseModel):
    """Internal consistency of a single remittance."""

    payment_amount: float
    total_claim_paid: float
    total_provider_adjustments: float
    expected_payment: float = Field(description="total_claim_paid - total_provider_adjustments")
    variance: float = Field(description="payment_amount - expected_payment")
    balanced: bool


class ReconciliationRecord(BaseModel):
    """Outcome of reconciling one posted ERA file."""

    id: str | None = None
    era_file_id: str
    reconciliation_date: date
    expected_payment_amount: float
    actual_payment_amount: float
    variance_amount: float
    reconciliation_status: str = Field(description="'Balanced' | 'Unbalanced' | 'Resolved'")
    discrepancies: dict[str, dict[str, float | int]] | None = None
    reconciled_by: str | None = None
    resolution_notes: str | None = None
    resolved_at: str | None = None
    resolved_by: str | None = None


def check_remittance_balance(era_file: ERAFile, tolerance: float = 0.01) -> BalanceCheck:
    """Check BPR02 against the claim payments and PLB adjustments of a remittance.

    PLB amounts are reductions: a positive PLB04 lowers the payment.
    """
    total_paid = round(sum(c.paid_amount for c in era_file.claims), 2)
    total_plb = round(sum(a.amount for a in era_file.provider_adjustments), 2)
    expected = round(total_paid - total_plb, 2)
    variance = round(era_file.payment_amount - expected, 2)
    return BalanceCheck(
        payment_amount=era_file.payment_amount,
        total_claim_paid=total_paid,
        total_provider_adjustments=total_plb,
        expected_payment=expected,
        variance=variance,
        balanced=abs(variance) <= tolerance,
    )


def reconcile_era_file(
    store: DataStore,
    era_file_id: str,
    actor_id: str,
    tolerance: float = 0.01,
) -> ReconciliationRecord:
    """Compare the postings recorded for an ERA file with its payment amount.

    The expected amount is the file payment plus its provider-level
    adjustments, i.e. what the claim postings should add up to. Reversed
    postings are excluded from the actual amount. The resulting record is
    persisted to the reconciliations table.

    Raises:
        StoreError: If the ERA file does not exist or the record cannot be saved.
    """
    era = store.get(ERA_FILES, era_file_id)
    if era is None:
        raise StoreError(f"ERA file not found: {era_file_id}")

    postings = [
        p
        for p in store.query(PAYMENT_POSTINGS, era_file_id=era_file_id)
        if p.get("posting_status") != "Reversed"
    ]
    actual = round(sum(p.get("payment_amount") or 0.0 for p in postings), 2)
    # PLB reductions come out of the check, not out of the claim payments
    expected = round((era.get("payment_amount") or 0.0) + (era.get("provider_adjustment_total") or 0.0), 2)
    variance = round(actual - expected, 2)

    discrepancies: dict[str, dict[str, float | int]] = {}
    if abs(variance) > tolerance:
        discrepancies["amount_mismatch"] = {
            "expected": expected,
            "actual": actual,
            "variance": variance,
        }

    total_claims = era.get("total_claims") or 0
    claims_posted = era.get("claims_posted") or 0
    if claims_posted < total_claims:
        discrepancies["unposted_claims"] = {
            "total": total_claims,
            "posted": claims_posted,
            "missing": total_claims - claims_posted,
        }

    record = ReconciliationRecord(
        era_file_id=era_file_id,
        reconciliation_date=date.today(),
        expected_payment_amount=expected,
        actual_payment_amount=actual,
        variance_amount=variance,
        reconciliation_status="Unbalanced" if discrepancies else "Balanced",
        discrepancies=discrepancies or None,
        reconciled_by=actor_id,
    )
    saved = store.insert(PAYMENT_RECONCILIATIONS, record.model_dump(exclude={"id"}))
    logger.info(
        "Reconciled ERA file %s: %s (variance %.2f)",
        era_file_id,
        record.reconciliation_status,
        variance,
    )
    return record.model_copy(update={"id": saved["id"]})


def resolve_discrepancy(
    store: DataStore, reconciliation_id: str, notes: str, actor_id: str
) -> ReconciliationRecord:
    """Mark a reconciliation as resolved with the reviewer's notes."""
    changes: dict[str, Any] = {
        "reconciliation_status": "Resolved",
        "resolution_notes": notes,
        "resolved_at": datetime.now(timezone.utc).isoformat(),
        "resolved_by": actor_id,
    }
    updated = store.update(PAYMENT_RECONCILIATIONS, reconciliation_id, changes)
    return ReconciliationRecord(**updated)
