"""ERA file intake: record the upload, decode it, then post its claims.

The ERA file record moves Uploaded → Parsed → Posting → Posted / Partially
Posted / Error, and doubles as a coarse progress indicator for callers.
"""

from __future__ import annotations

import hashlib
import logging

from pydantic import BaseModel, Field

from era_posting.config import DecoderConfig
from era_posting.edi import decode
from era_posting.posting import BatchPostingResult, PostingEngine
from era_posting.schema import ERA_FILES, ERAFile
from era_posting.store import StoreError

logger = logging.getLogger(__name__)

# File statuses that mean an earlier upload's claims were (at least partly) posted
_POSTED_FILE_STATUSES = ("Posted", "Partially Posted")


class ProcessingOutcome(BaseModel):
    """What happened to one uploaded ERA file."""

    era_file_id: str | None = None
    status: str = Field(description="Final processing_status of the ERA file record")
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    posting: BatchPostingResult | None = None


def _parsed_header(era: ERAFile) -> dict[str, object]:
    return {
        "processing_status": "Parsed",
        "interchange_control_number": era.interchange_control_number,
        "transaction_control_number": era.transaction_control_number,
        "payer_id": era.payer.identification_code,
        "payer_name": era.payer.name,
        "payer_address": era.payer.address.model_dump() if era.payer.address else None,
        "payment_method": era.payment_method,
        "payment_amount": era.payment_amount,
        "payment_date": era.payment_date,
        "check_eft_number": era.check_eft_number,
        "trace_number": era.trace_number,
        "total_claims": len(era.claims),
        "total_service_lines": era.total_service_lines,
        "provider_adjustment_total": round(sum(a.amount for a in era.provider_adjustments), 2),
    }


def process_era_file(
    engine: PostingEngine,
    file_name: str,
    content: str,
    actor_id: str,
    decoder_config: DecoderConfig | None = None,
) -> ProcessingOutcome:
    """Record, decode and post one ERA file.

    Args:
        engine: Posting engine bound to the target store.
        file_name: Original name of the uploaded file.
        content: Raw 835 text.
        actor_id: User performing the upload.
        decoder_config: Optional decoder settings.

    Returns:
        ProcessingOutcome with the file id, final status, decode errors or
        warnings, and the batch posting result when posting ran.
    """
    store = engine.store
    sha256 = hashlib.sha256(content.encode("utf-8")).hexdigest()

    duplicates = [
        f for f in store.query(ERA_FILES, sha256=sha256)
        if f.get("processing_status") in _POSTED_FILE_STATUSES
    ]
    if duplicates:
        return ProcessingOutcome(
            era_file_id=duplicates[0]["id"],
            status="Error",
            errors=[f"ERA file already posted as {duplicates[0]['id']} ({duplicates[0].get('file_name')})"],
        )

    try:
        record = store.insert(
            ERA_FILES,
            {
                "file_name": file_name,
                "file_size": len(content.encode("utf-8")),
                "sha256": sha256,
                "processing_status": "Uploaded",
                "uploaded_by": actor_id,
            },
        )
    except StoreError as e:
        return ProcessingOutcome(status="Error", errors=[f"Failed to create ERA file record: {e}"])
    era_file_id = record["id"]

    result = decode(content, decoder_config)
    if not result.success or result.data is None:
        try:
            store.update(
                ERA_FILES,
                era_file_id,
                {
                    "processing_status": "Error",
                    "error_message": result.errors[0] if result.errors else "Parse failed",
                    "error_details": {"errors": result.errors},
                },
            )
        except StoreError as e:
            logger.warning("Could not record decode failure on ERA file %s: %s", era_file_id, e)
        logger.info("ERA file %s (%s) failed to decode: %s", era_file_id, file_name, result.errors)
        return ProcessingOutcome(
            era_file_id=era_file_id, status="Error", errors=result.errors, warnings=result.warnings
        )

    try:
        store.update(ERA_FILES, era_file_id, _parsed_header(result.data))
    except StoreError as e:
        return ProcessingOutcome(
            era_file_id=era_file_id,
            status="Error",
            errors=[f"Failed to update ERA file record: {e}"],
            warnings=result.warnings,
        )
    batch = engine.post_era_payments(era_file_id, result.data, actor_id)

    return ProcessingOutcome(
        era_file_id=era_file_id,
        status=batch.file_status,
        warnings=result.warnings,
        posting=batch,
    )
