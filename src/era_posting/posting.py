"""Payment posting engine.

Applies decoded ERA claims and manually entered payments to claim records.

ERA posting, per claim and in file order:
1. Match the ERA claim to an internal claim (payer control number, patient
   control number, then scored patient-name + statement-date candidates).
2. Persist the claim detail snapshot and its service lines.
3. Create the payment posting with service-line roll-ups aggregated.
4. Persist one adjustment record per service-line adjustment.
5. Transition claim status and add the payment to the claim's paid amount.

Each claim succeeds or fails on its own; there is no cross-step transaction,
so a failure leaves earlier records in place and reports their ids.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import date, datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, field_validator

from era_posting.codes import DENIED_STATUS_CODE
from era_posting.config import PostingConfig
from era_posting.schema import (
    CLAIMS,
    ERA_CLAIM_DETAILS,
    ERA_FILES,
    ERA_SERVICE_LINES,
    PAYMENT_ADJUSTMENTS,
    PAYMENT_POSTINGS,
    POSTING_TYPES,
    ERAClaim,
    ERAFile,
    ERAServiceLine,
)
from era_posting.store import DataStore, StoreError

logger = logging.getLogger(__name__)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Request / result models
# ---------------------------------------------------------------------------
class ManualAdjustment(BaseModel):
    """One adjustment line entered alongside a manual payment."""

    adjustment_group: str = Field(description="'CO' | 'PR' | 'OA' | 'PI'")
    adjustment_code: str
    adjustment_amount: float
    adjustment_reason: str | None = None


class ManualPaymentRequest(BaseModel):
    """A payment keyed in by a user rather than read from an ERA."""

    claim_id: str = Field(description="Internal claim record id")
    payment_date: date
    payment_amount: float
    payment_method: str
    check_number: str | None = None
    posting_type: str = Field(default="Insurance Payment", description="One of POSTING_TYPES")
    adjustments: list[ManualAdjustment] = Field(default_factory=list)
    notes: str | None = None

    @field_validator("posting_type")
    @classmethod
    def _known_posting_type(cls, value: str) -> str:
        if value not in POSTING_TYPES:
            raise ValueError(f"posting_type must be one of {POSTING_TYPES}, got {value!r}")
        return value


class PaymentPostingResult(BaseModel):
    """Outcome of posting one claim's payment."""

    success: bool
    claim_id: str | None = None
    payment_posting_id: str | None = None
    era_claim_detail_id: str | None = None
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class BatchPostingResult(BaseModel):
    """Outcome of posting every claim in one ERA file."""

    era_file_id: str
    total_claims: int = 0
    successful_posts: int = 0
    failed_posts: int = 0
    file_status: str = Field(default="", description="'Posted' | 'Partially Posted' | 'Error'")
    results: list[PaymentPostingResult] = Field(default_factory=list)


class ReversalResult(BaseModel):
    success: bool
    claim_id: str | None = None
    error: str | None = None


class ClaimCandidate(BaseModel):
    """An internal claim considered for an ERA claim, with its match score."""

    claim: dict[str, Any]
    score: float


class ClaimMatch(BaseModel):
    """Result of matching an ERA claim to an internal claim."""

    strategy: str = Field(
        default="none",
        description="'payer_claim_control_number' | 'patient_control_number' | 'patient_name_and_dates' | 'none'",
    )
    claim: dict[str, Any] | None = None
    candidates: list[ClaimCandidate] = Field(default_factory=list)
    ambiguous: bool = False

    @property
    def matched(self) -> bool:
        return self.claim is not None


# ---------------------------------------------------------------------------
# Shared rules
# ---------------------------------------------------------------------------
def determine_claim_status(
    era_claim: ERAClaim,
    current_status: str | None = None,
    paid_tolerance_ratio: float = 0.95,
) -> str:
    """Claim status implied by an ERA claim's reported status and amounts.

    Evaluated in order: denied (CLP02 = 4), paid (paid >= ratio * billed),
    partially paid, unpaid. Anything else keeps the current status.
    """
    if era_claim.claim_status_code == DENIED_STATUS_CODE:
        return "Denied"
    if era_claim.paid_amount >= era_claim.billed_amount * paid_tolerance_ratio:
        return "Paid"
    if era_claim.paid_amount > 0:
        return "In Process"
    if era_claim.paid_amount == 0:
        return "Rejected"
    return current_status or "In Process"


def aggregate_service_lines(service_lines: list[ERAServiceLine]) -> dict[str, float]:
    """Sum the per-line roll-ups across a claim."""
    return {
        "contractual_adjustment": round(sum(sl.contractual_adjustment for sl in service_lines), 2),
        "deductible": round(sum(sl.deductible for sl in service_lines), 2),
        "copay": round(sum(sl.copay for sl in service_lines), 2),
        "coinsurance": round(sum(sl.coinsurance for sl in service_lines), 2),
    }


def _claim_key(era_claim: ERAClaim) -> tuple[str, str, str]:
    return (
        era_claim.patient_control_number,
        era_claim.payer_claim_control_number or "",
        era_claim.claim_status_code,
    )


def _detail_record(
    era_file_id: str,
    era_claim: ERAClaim,
    claim_id: str | None,
    posting_status: str,
    posting_error: str | None = None,
) -> dict[str, Any]:
    return {
        "era_file_id": era_file_id,
        "claim_id": claim_id,
        "payer_claim_control_number": era_claim.payer_claim_control_number,
        "patient_control_number": era_claim.patient_control_number,
        "patient_first_name": era_claim.patient.first_name,
        "patient_last_name": era_claim.patient.last_name,
        "claim_billed_amount": era_claim.billed_amount,
        "claim_allowed_amount": era_claim.allowed_amount,
        "claim_paid_amount": era_claim.paid_amount,
        "claim_patient_responsibility": era_claim.patient_responsibility,
        "claim_status_code": era_claim.claim_status_code,
        "claim_status_description": era_claim.claim_status_description,
        "posting_status": posting_status,
        "posting_error": posting_error,
    }


def _service_line_record(era_claim_detail_id: str, line: ERAServiceLine) -> dict[str, Any]:
    return {
        "era_claim_detail_id": era_claim_detail_id,
        "service_date": line.service_date,
        "procedure_code": line.procedure_code,
        "procedure_modifiers": list(line.procedure_modifiers),
        "revenue_code": line.revenue_code,
        "billed_amount": line.billed_amount,
        "allowed_amount": line.allowed_amount,
        "paid_amount": line.paid_amount,
        "patient_responsibility": line.patient_responsibility,
        "billed_units": line.billed_units,
        "paid_units": line.paid_units,
        "contractual_adjustment": line.contractual_adjustment,
        "deductible": line.deductible,
        "copay": line.copay,
        "coinsurance": line.coinsurance,
        "line_item_control_number": line.line_item_control_number,
        "adjustment_codes": [adj.model_dump() for adj in line.adjustments],
    }


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------
class PostingEngine:
    """Posts ERA and manual payments against a :class:`DataStore`.

    The engine holds no locks of its own. The store's ``adjust_paid_amount``
    keeps paid-amount updates atomic; callers must still avoid posting the
    same ERA file from two places at once.
    """

    def __init__(self, store: DataStore, config: PostingConfig | None = None) -> None:
        self.store = store
        self.config = config or PostingConfig()

    # -- matching ---------------------------------------------------------
    def _score_candidate(self, era_claim: ERAClaim, claim: dict[str, Any]) -> float:
        score = self.config.fuzzy_match_base_score
        first_name = (claim.get("patient_first_name") or "").strip().lower()
        if first_name and first_name == era_claim.patient.first_name.strip().lower():
            score += self.config.fuzzy_match_first_name_bonus
        billed = claim.get("billed_amount")
        if billed is not None and abs(float(billed) - era_claim.billed_amount) < 0.005:
            score += self.config.fuzzy_match_billed_amount_bonus
        return round(score, 4)

    def rank_candidates(self, era_claim: ERAClaim) -> list[ClaimCandidate]:
        """Patient-name + statement-date candidates, best score first."""
        if not era_claim.patient.last_name or era_claim.statement_from_date is None:
            return []
        date_to = era_claim.statement_to_date or era_claim.statement_from_date
        rows = self.store.find_claims_by_patient(
            era_claim.patient.last_name, era_claim.statement_from_date, date_to
        )
        candidates = [ClaimCandidate(claim=row, score=self._score_candidate(era_claim, row)) for row in rows]
        return sorted(candidates, key=lambda c: c.score, reverse=True)

    def match_claim(self, era_claim: ERAClaim) -> ClaimMatch:
        """Find the internal claim an ERA claim pays.

        Exact control-number strategies are tried first; the first that finds
        anything decides. More than one claim at the best score is ambiguous
        and yields no claim.
        """
        exact_keys = (
            ("payer_claim_control_number", era_claim.payer_claim_control_number),
            ("patient_control_number", era_claim.patient_control_number),
        )
        for strategy, number in exact_keys:
            if not number:
                continue
            rows = self.store.find_claims_by_control_number(number)
            if rows:
                candidates = [ClaimCandidate(claim=row, score=1.0) for row in rows]
                if len(rows) > 1:
                    return ClaimMatch(strategy=strategy, candidates=candidates, ambiguous=True)
                return ClaimMatch(strategy=strategy, claim=rows[0], candidates=candidates)

        candidates = self.rank_candidates(era_claim)
        if not candidates:
            return ClaimMatch()
        if len(candidates) > 1 and candidates[0].score == candidates[1].score:
            return ClaimMatch(
                strategy="patient_name_and_dates", candidates=candidates, ambiguous=True
            )
        return ClaimMatch(
            strategy="patient_name_and_dates", claim=candidates[0].claim, candidates=candidates
        )

    # -- helpers ------------------------------------------------------------
    def _update_quietly(self, table: str, record_id: str, changes: dict[str, Any]) -> None:
        """Best-effort status update; failures are logged, not raised."""
        try:
            self.store.update(table, record_id, changes)
        except StoreError as e:
            logger.warning("Could not update %s %s: %s", table, record_id, e)

    def _posted_claim_keys(self, era_file_id: str) -> Counter[tuple[str, str, str]]:
        counts: Counter[tuple[str, str, str]] = Counter()
        for detail in self.store.query(ERA_CLAIM_DETAILS, era_file_id=era_file_id, posting_status="Posted"):
            counts[
                (
                    detail.get("patient_control_number") or "",
                    detail.get("payer_claim_control_number") or "",
                    detail.get("claim_status_code") or "",
                )
            ] += 1
        return counts

    def _already_posted_result(self, era_file_id: str, era_claim: ERAClaim) -> PaymentPostingResult:
        pcn, payer_ccn, status_code = _claim_key(era_claim)
        try:
            details = [
                d
                for d in self.store.query(
                    ERA_CLAIM_DETAILS,
                    era_file_id=era_file_id,
                    patient_control_number=pcn,
                    claim_status_code=status_code,
                    posting_status="Posted",
                )
                if (d.get("payer_claim_control_number") or "") == payer_ccn
            ]
        except StoreError as e:
            logger.warning("Could not load earlier posting of claim %s: %s", pcn, e)
            details = []
        detail = details[0] if details else {}
        return PaymentPostingResult(
            success=True,
            claim_id=detail.get("claim_id"),
            payment_posting_id=detail.get("payment_posting_id"),
            era_claim_detail_id=detail.get("id"),
            warnings=[
                f"Claim {era_claim.patient_control_number} already posted from this ERA file; skipped"
            ],
        )

    # -- ERA posting ----------------------------------------------------------
    def post_era_payments(self, era_file_id: str, era_file: ERAFile, actor_id: str) -> BatchPostingResult:
        """Post every claim in a decoded ERA file.

        Args:
            era_file_id: Id of the ERA file record the claims came from.
            era_file: The decoded remittance.
            actor_id: User recorded as the poster.

        Returns:
            BatchPostingResult with one PaymentPostingResult per claim.
        """
        self._update_quietly(
            ERA_FILES,
            era_file_id,
            {"processing_status": "Posting", "processing_started_at": _utcnow()},
        )

        scan_error: str | None = None
        try:
            already_posted = self._posted_claim_keys(era_file_id)
        except StoreError as e:
            # without the earlier postings a claim could be paid twice, so none are posted
            logger.warning("Could not check prior postings for ERA file %s: %s", era_file_id, e)
            already_posted = Counter()
            scan_error = f"Failed to check prior postings: {e}"

        results: list[PaymentPostingResult] = []
        for era_claim in era_file.claims:
            key = _claim_key(era_claim)
            if scan_error is not None:
                result = PaymentPostingResult(success=False, errors=[scan_error])
            elif already_posted[key] > 0:
                already_posted[key] -= 1
                result = self._already_posted_result(era_file_id, era_claim)
            else:
                result = self.post_claim_payment(era_file_id, era_claim, actor_id)
            results.append(result)

        successful = sum(1 for r in results if r.success)
        failed = len(results) - successful
        if failed == 0:
            file_status = "Posted"
        elif failed == len(results):
            file_status = "Error"
        else:
            file_status = "Partially Posted"

        self._update_quietly(
            ERA_FILES,
            era_file_id,
            {
                "processing_status": file_status,
                "processing_completed_at": _utcnow(),
                "claims_posted": successful,
                "claims_failed": failed,
            },
        )
        logger.info(
            "ERA file %s: %d/%d claims posted (%s)",
            era_file_id,
            successful,
            len(results),
            file_status,
        )
        return BatchPostingResult(
            era_file_id=era_file_id,
            total_claims=len(results),
            successful_posts=successful,
            failed_posts=failed,
            file_status=file_status,
            results=results,
        )

    def post_claim_payment(self, era_file_id: str, era_claim: ERAClaim, actor_id: str) -> PaymentPostingResult:
        """Post a single ERA claim. Never raises."""
        errors: list[str] = []
        warnings: list[str] = []
        claim_id: str | None = None
        detail_id: str | None = None
        posting_id: str | None = None
        step = "match claim"

        try:
            match = self.match_claim(era_claim)
            if not match.matched:
                if match.ambiguous:
                    errors.append(
                        f"Ambiguous claim match for patient control number "
                        f"{era_claim.patient_control_number}: {len(match.candidates)} candidates "
                        f"via {match.strategy}"
                    )
                else:
                    errors.append(
                        f"No matching claim found for patient control number: "
                        f"{era_claim.patient_control_number}"
                    )
                step = "save ERA claim detail"
                detail = self.store.insert(
                    ERA_CLAIM_DETAILS,
                    _detail_record(era_file_id, era_claim, None, "Error", errors[0]),
                )
                return PaymentPostingResult(
                    success=False, errors=errors, era_claim_detail_id=detail["id"]
                )

            claim = match.claim
            claim_id = claim["id"]
            logger.debug(
                "Matched %s to claim %s via %s",
                era_claim.patient_control_number,
                claim_id,
                match.strategy,
            )

            step = "save ERA claim detail"
            detail = self.store.insert(
                ERA_CLAIM_DETAILS, _detail_record(era_file_id, era_claim, claim_id, "Pending")
            )
            detail_id = detail["id"]

            step = "save service line"
            for line in era_claim.service_lines:
                self.store.insert(ERA_SERVICE_LINES, _service_line_record(detail_id, line))

            step = "create payment posting"
            totals = aggregate_service_lines(era_claim.service_lines)
            posting = self.store.insert(
                PAYMENT_POSTINGS,
                {
                    "era_file_id": era_file_id,
                    "era_claim_detail_id": detail_id,
                    "claim_id": claim_id,
                    "payment_date": date.today(),
                    "payment_method": self.config.era_payment_method,
                    "payment_amount": era_claim.paid_amount,
                    "allowed_amount": era_claim.allowed_amount,
                    "billed_amount": era_claim.billed_amount,
                    **totals,
                    "patient_responsibility": era_claim.patient_responsibility,
                    "posting_type": "Insurance Payment",
                    "posting_status": "Posted",
                    "posted_by": actor_id,
                },
            )
            posting_id = posting["id"]

            step = "create adjustment record"
            for line in era_claim.service_lines:
                for adj in line.adjustments:
                    self.store.insert(
                        PAYMENT_ADJUSTMENTS,
                        {
                            "payment_posting_id": posting_id,
                            "adjustment_group": adj.adjustment_group,
                            "adjustment_code": adj.reason_code,
                            "adjustment_amount": adj.amount,
                            "service_date": line.service_date,
                            "procedure_code": line.procedure_code,
                        },
                    )

            step = "update claim"
            new_status = determine_claim_status(
                era_claim, claim.get("claim_status"), self.config.paid_tolerance_ratio
            )
            self.store.adjust_paid_amount(claim_id, era_claim.paid_amount, paid_date=date.today())
            self.store.update(CLAIMS, claim_id, {"claim_status": new_status})

            step = "mark ERA claim detail posted"
            self.store.update(
                ERA_CLAIM_DETAILS,
                detail_id,
                {"posting_status": "Posted", "posted_at": _utcnow(), "payment_posting_id": posting_id},
            )
        except StoreError as e:
            errors.append(f"Failed to {step}: {e}")
            if detail_id is not None:
                self._update_quietly(
                    ERA_CLAIM_DETAILS, detail_id, {"posting_status": "Error", "posting_error": errors[0]}
                )
            return PaymentPostingResult(
                success=False,
                claim_id=claim_id,
                payment_posting_id=posting_id,
                era_claim_detail_id=detail_id,
                errors=errors,
            )
        except Exception as e:
            logger.exception("Unexpected error posting claim %s", era_claim.patient_control_number)
            errors.append(f"Unexpected error: {e}")
            return PaymentPostingResult(
                success=False,
                claim_id=claim_id,
                payment_posting_id=posting_id,
                era_claim_detail_id=detail_id,
                errors=errors,
            )

        if era_claim.patient_responsibility > 0:
            warnings.append(f"Patient responsibility: ${era_claim.patient_responsibility:.2f}")
        if era_claim.claim_status_code == DENIED_STATUS_CODE:
            warnings.append("Claim was denied by payer")

        return PaymentPostingResult(
            success=True,
            claim_id=claim_id,
            payment_posting_id=posting_id,
            era_claim_detail_id=detail_id,
            warnings=warnings,
        )

    # -- manual posting ---------------------------------------------------------
    def post_manual_payment(self, request: ManualPaymentRequest, actor_id: str) -> PaymentPostingResult:
        """Post a payment entered by hand against an existing claim."""
        errors: list[str] = []
        posting_id: str | None = None
        step = "load claim"

        try:
            claim = self.store.get(CLAIMS, request.claim_id)
            if claim is None:
                return PaymentPostingResult(success=False, errors=["Claim not found"])

            total = sum(a.adjustment_amount for a in request.adjustments)
            contractual = sum(a.adjustment_amount for a in request.adjustments if a.adjustment_group == "CO")
            patient_resp = sum(a.adjustment_amount for a in request.adjustments if a.adjustment_group == "PR")

            step = "create payment posting"
            posting = self.store.insert(
                PAYMENT_POSTINGS,
                {
                    "claim_id": request.claim_id,
                    "payment_date": request.payment_date,
                    "payment_method": request.payment_method,
                    "check_eft_number": request.check_number,
                    "payment_amount": request.payment_amount,
                    "billed_amount": claim.get("billed_amount"),
                    "contractual_adjustment": round(contractual, 2),
                    "other_adjustments": round(total - contractual - patient_resp, 2),
                    "patient_responsibility": round(patient_resp, 2),
                    "posting_type": request.posting_type,
                    "posting_status": "Posted",
                    "notes": request.notes,
                    "posted_by": actor_id,
                },
            )
            posting_id = posting["id"]

            step = "create adjustment record"
            for adj in request.adjustments:
                self.store.insert(
                    PAYMENT_ADJUSTMENTS,
                    {
                        "payment_posting_id": posting_id,
                        "adjustment_group": adj.adjustment_group,
                        "adjustment_code": adj.adjustment_code,
                        "adjustment_amount": adj.adjustment_amount,
                        "adjustment_reason": adj.adjustment_reason,
                    },
                )

            step = "update claim"
            updated = self.store.adjust_paid_amount(
                request.claim_id, request.payment_amount, paid_date=request.payment_date
            )
            billed = claim.get("billed_amount") or 0.0
            new_status = "Paid" if updated["paid_amount"] >= billed else "In Process"
            self.store.update(CLAIMS, request.claim_id, {"claim_status": new_status})
        except StoreError as e:
            errors.append(f"Failed to {step}: {e}")
            return PaymentPostingResult(
                success=False, claim_id=request.claim_id, payment_posting_id=posting_id, errors=errors
            )
        except Exception as e:
            logger.exception("Unexpected error posting manual payment for %s", request.claim_id)
            errors.append(f"Unexpected error: {e}")
            return PaymentPostingResult(
                success=False, claim_id=request.claim_id, payment_posting_id=posting_id, errors=errors
            )

        logger.info(
            "Manual %s of %.2f posted to claim %s (%s)",
            request.posting_type,
            request.payment_amount,
            request.claim_id,
            new_status,
        )
        return PaymentPostingResult(
            success=True, claim_id=request.claim_id, payment_posting_id=posting_id
        )

    # -- reversal -------------------------------------------------------------------
    def reverse_payment_posting(self, posting_id: str, reason: str, actor_id: str) -> ReversalResult:
        """Reverse a posting and unwind its payment from the claim.

        Adjustment records written with the posting are left untouched.
        """
        try:
            posting = self.store.get(PAYMENT_POSTINGS, posting_id)
            if posting is None:
                return ReversalResult(success=False, error="Payment posting not found")
            if posting.get("posting_status") == "Reversed":
                return ReversalResult(
                    success=False,
                    claim_id=posting.get("claim_id"),
                    error="Payment posting already reversed",
                )

            self.store.update(
                PAYMENT_POSTINGS,
                posting_id,
                {
                    "posting_status": "Reversed",
                    "reversal_reason": reason,
                    "reversed_at": _utcnow(),
                    "reversed_by": actor_id,
                },
            )

            claim_id = posting.get("claim_id")
            if claim_id and self.store.get(CLAIMS, claim_id) is not None:
                updated = self.store.adjust_paid_amount(claim_id, -(posting.get("payment_amount") or 0.0))
                new_status = "Submitted" if updated["paid_amount"] == 0 else "In Process"
                self.store.update(CLAIMS, claim_id, {"claim_status": new_status})
        except StoreError as e:
            return ReversalResult(success=False, error=str(e))
        except Exception as e:
            logger.exception("Unexpected error reversing posting %s", posting_id)
            return ReversalResult(success=False, error=f"Unexpected error: {e}")

        logger.info("Reversed posting %s: %s", posting_id, reason)
        return ReversalResult(success=True, claim_id=claim_id)
