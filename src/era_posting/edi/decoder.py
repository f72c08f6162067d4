"""ANSI X12 835 remittance decoder.

Turns raw 835 text into an :class:`~era_posting.schema.ERAFile`.

The segment stream is flat; loops are recovered by scanning tags. Each loop
parser is a pure function that takes the segment list and a start index and
returns ``(node, next_index)``, so no scanning state is shared between loops.

Loop boundaries:
  N1   : entity, followed greedily by N3, N4, PER
  LX   : claim (CLP), runs until LX, SE or PLB
  SVC  : service line inside a claim, runs until SVC, LX, SE or PLB
"""

from __future__ import annotations

import logging
from datetime import date

from pydantic import BaseModel, Field

from era_posting.codes import (
    COINSURANCE_CARC,
    COPAY_CARC,
    DEDUCTIBLE_CARC,
    describe_claim_status,
    payment_method_for,
)
from era_posting.config import DecoderConfig
from era_posting.edi.segments import (
    Delimiters,
    Segment,
    detect_delimiters,
    normalize_line_endings,
    parse_amount,
    parse_edi_date,
    parse_edi_datetime,
    split_segments,
)
from era_posting.schema import (
    Address,
    Contact,
    ERAAdjustment,
    ERAClaim,
    ERAEntity,
    ERAFile,
    ERAProviderAdjustment,
    ERAServiceLine,
    PatientInfo,
    RenderingProvider,
)

logger = logging.getLogger(__name__)

CLAIM_TERMINATORS = frozenset({"LX", "SE", "PLB"})
SERVICE_LINE_TERMINATORS = frozenset({"SVC", "LX", "SE", "PLB"})

# CAS carries up to 6 reason/amount/quantity triples after the group code
CAS_MAX_ADJUSTMENTS = 6


class DecodeResult(BaseModel):
    """Outcome of decoding one 835 file."""

    success: bool
    data: ERAFile | None = None
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class _Context(BaseModel):
    """Per-decode settings threaded through the loop parsers."""

    delimiters: Delimiters
    pivot: int = 50

    def parse_date(self, value: str | None) -> date:
        return parse_edi_date(value, self.pivot)


# ---------------------------------------------------------------------------
# Header segments
# ---------------------------------------------------------------------------
def _parse_isa(seg: Segment, ctx: _Context) -> dict[str, object]:
    return {
        "interchange_sender_id": seg.element(6).strip(),
        "interchange_receiver_id": seg.element(8).strip(),
        "interchange_date": parse_edi_datetime(seg.element(9), seg.element(10), ctx.pivot),
        "interchange_control_number": seg.element(13).strip(),
    }


def _parse_bpr(seg: Segment, ctx: _Context) -> dict[str, object]:
    return {
        "transaction_handling_code": seg.element(1),
        "payment_amount": seg.amount(2),
        "credit_debit_flag": seg.element(3),
        "payment_method": payment_method_for(seg.element(4)),
        "payment_format": seg.element(5),
        "check_eft_number": seg.optional(8),
        "payment_date": ctx.parse_date(seg.element(16)),
    }


# ---------------------------------------------------------------------------
# Loops
# ---------------------------------------------------------------------------
def parse_entity_loop(segments: list[Segment], start: int) -> tuple[ERAEntity, int]:
    """Parse an N1 loop and its optional N3/N4/PER segments."""
    n1 = segments[start]
    address: dict[str, str | None] = {}
    contact: Contact | None = None
    index = start + 1

    if index < len(segments) and segments[index].tag == "N3":
        n3 = segments[index]
        address.update(street1=n3.optional(1), street2=n3.optional(2))
        index += 1

    if index < len(segments) and segments[index].tag == "N4":
        n4 = segments[index]
        address.update(city=n4.optional(1), state=n4.optional(2), zip=n4.optional(3))
        index += 1

    if index < len(segments) and segments[index].tag == "PER":
        per = segments[index]
        contact = Contact(name=per.optional(2), phone=per.optional(4), email=per.optional(6))
        index += 1

    entity = ERAEntity(
        entity_identifier_code=n1.element(1),
        name=n1.element(2),
        identification_code=n1.element(4),
        address=Address(**address) if address else None,
        contact=contact,
    )
    return entity, index


def parse_adjustments(seg: Segment) -> list[ERAAdjustment]:
    """Expand a CAS segment into one adjustment per reason/amount/quantity triple."""
    group = seg.element(1)
    adjustments: list[ERAAdjustment] = []
    for slot in range(CAS_MAX_ADJUSTMENTS):
        reason_pos = 2 + slot * 3
        reason = seg.element(reason_pos)
        if not reason:
            continue
        quantity = seg.optional(reason_pos + 2)
        adjustments.append(
            ERAAdjustment(
                adjustment_group=group,
                reason_code=reason,
                amount=seg.amount(reason_pos + 1),
                quantity=parse_amount(quantity) if quantity else None,
            )
        )
    return adjustments


def _roll_up(adjustments: list[ERAAdjustment]) -> dict[str, float]:
    """Bucket a service line's adjustments.

    CO goes to contractual_adjustment. PR always counts toward
    patient_responsibility and also toward exactly one of deductible (CARC 1),
    coinsurance (CARC 2) or copay (CARC 3). OA and PI feed no bucket.
    """
    totals = {
        "contractual_adjustment": 0.0,
        "deductible": 0.0,
        "coinsurance": 0.0,
        "copay": 0.0,
        "patient_responsibility": 0.0,
    }
    for adj in adjustments:
        if adj.adjustment_group == "CO":
            totals["contractual_adjustment"] += adj.amount
        elif adj.adjustment_group == "PR":
            if adj.reason_code == DEDUCTIBLE_CARC:
                totals["deductible"] += adj.amount
            elif adj.reason_code == COINSURANCE_CARC:
                totals["coinsurance"] += adj.amount
            elif adj.reason_code == COPAY_CARC:
                totals["copay"] += adj.amount
            totals["patient_responsibility"] += adj.amount
    return {key: round(value, 2) for key, value in totals.items()}


def parse_service_line_loop(
    segments: list[Segment], start: int, ctx: _Context
) -> tuple[ERAServiceLine, int]:
    """Parse an SVC loop: the SVC segment plus its DTM/CAS/AMT/REF children."""
    svc = segments[start]
    procedure = svc.components(1, ctx.delimiters.component)
    qualifier = procedure[0] if procedure else ""

    service_date: date | None = None
    adjustments: list[ERAAdjustment] = []
    allowed_amount: float | None = None
    line_item_control_number: str | None = None

    index = start + 1
    while index < len(segments):
        seg = segments[index]
        if seg.tag in SERVICE_LINE_TERMINATORS:
            break

        if seg.tag == "DTM" and seg.element(1) == "472":
            service_date = ctx.parse_date(seg.element(2))
        elif seg.tag == "CAS":
            adjustments.extend(parse_adjustments(seg))
        elif seg.tag == "AMT" and seg.element(1) == "B6":
            allowed_amount = seg.amount(2)
        elif seg.tag == "REF" and seg.element(1) == "6R":
            line_item_control_number = seg.optional(2)

        index += 1

    line = ERAServiceLine(
        procedure_code=procedure[1] if len(procedure) > 1 else "",
        procedure_modifiers=[m for m in procedure[2:] if m],
        revenue_code=None if qualifier in ("HC", "") else qualifier,
        billed_amount=svc.amount(2),
        paid_amount=svc.amount(3),
        billed_units=svc.amount(7) if svc.optional(7) else svc.amount(5),
        paid_units=svc.amount(5),
        service_date=service_date or date.today(),
        adjustments=adjustments,
        allowed_amount=allowed_amount,
        line_item_control_number=line_item_control_number,
        **_roll_up(adjustments),
    )
    return line, index


def _parse_nm1(seg: Segment) -> PatientInfo | RenderingProvider | None:
    qualifier = seg.element(1)
    if qualifier == "QC":
        return PatientInfo(
            last_name=seg.element(3),
            first_name=seg.element(4),
            middle_name=seg.optional(5),
            member_id=seg.optional(9),
        )
    if qualifier == "82":
        # NM102 = 2 names an organization rather than a person
        if seg.element(2) == "2":
            return RenderingProvider(npi=seg.optional(9), organization_name=seg.optional(3))
        return RenderingProvider(
            npi=seg.optional(9),
            last_name=seg.optional(3),
            first_name=seg.optional(4),
        )
    return None


def parse_claim_loop(
    segments: list[Segment], start: int, ctx: _Context
) -> tuple[ERAClaim | None, int]:
    """Parse an LX claim loop.

    Returns ``(None, start + 1)`` when the LX is not followed by a CLP, so the
    caller resumes scanning at the segment after the LX.
    """
    index = start + 1
    if index >= len(segments) or segments[index].tag != "CLP":
        logger.debug("LX at segment %d has no CLP; skipping", start)
        return None, index

    clp = segments[index]
    claim_adjustments: list[ERAAdjustment] = []
    patient = PatientInfo()
    rendering_provider: RenderingProvider | None = None
    dates: dict[str, date] = {}
    service_lines: list[ERAServiceLine] = []

    index += 1
    while index < len(segments):
        seg = segments[index]
        if seg.tag in CLAIM_TERMINATORS:
            break

        if seg.tag == "SVC":
            line, index = parse_service_line_loop(segments, index, ctx)
            service_lines.append(line)
            continue

        if seg.tag == "CAS":
            claim_adjustments.extend(parse_adjustments(seg))
        elif seg.tag == "NM1":
            party = _parse_nm1(seg)
            if isinstance(party, PatientInfo):
                patient = party
            elif isinstance(party, RenderingProvider):
                rendering_provider = party
        elif seg.tag == "DTM":
            qualifier = seg.element(1)
            if qualifier == "232":
                dates["statement_from_date"] = ctx.parse_date(seg.element(2))
            elif qualifier == "233":
                dates["statement_to_date"] = ctx.parse_date(seg.element(2))
            elif qualifier == "050":
                dates["received_date"] = ctx.parse_date(seg.element(2))

        index += 1

    status_code = clp.element(2)
    claim = ERAClaim(
        patient_control_number=clp.element(1),
        claim_status_code=status_code,
        claim_status_description=describe_claim_status(status_code),
        billed_amount=clp.amount(3),
        paid_amount=clp.amount(4),
        patient_responsibility=clp.amount(5),
        claim_filing_indicator_code=clp.element(6),
        payer_claim_control_number=clp.optional(7),
        facility_type_code=clp.optional(8),
        claim_adjustments=claim_adjustments,
        patient=patient,
        rendering_provider=rendering_provider,
        service_lines=service_lines,
        **dates,
    )
    return claim, index


def parse_provider_adjustment(seg: Segment, ctx: _Context) -> ERAProviderAdjustment | None:
    """Parse a PLB segment; fewer than four elements yields ``None``.

    PLB03 is usually a composite ``reason:identifier`` with the amount in
    PLB04. A flat PLB03 is read as reason, identifier, amount in PLB03-05.
    """
    if len(seg.elements) < 4:
        return None

    composite = seg.components(3, ctx.delimiters.component)
    if len(composite) > 1:
        reason, identifier, amount = composite[0], composite[1], seg.amount(4)
    else:
        reason, identifier, amount = seg.element(3), seg.element(4), seg.amount(5)

    return ERAProviderAdjustment(
        provider_identifier=seg.element(1),
        fiscal_period_date=ctx.parse_date(seg.element(2)),
        reason_code=reason,
        adjustment_identifier=identifier,
        amount=amount,
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------
def tokenize(content: str, config: DecoderConfig | None = None) -> tuple[list[Segment], Delimiters]:
    """Normalize line endings, pick delimiters and split ``content`` into segments."""
    config = config or DecoderConfig()
    fallback = Delimiters(
        element=config.element_separator,
        segment=config.segment_terminator,
        component=config.component_separator,
    )
    text = normalize_line_endings(content.lstrip("\ufeff"))
    delimiters = detect_delimiters(text, fallback) if config.detect_delimiters else fallback
    return split_segments(text, delimiters), delimiters


def decode(content: str, config: DecoderConfig | None = None) -> DecodeResult:
    """Decode 835 remittance text.

    Args:
        content: Raw EDI text.
        config: Optional decoder settings (delimiter fallbacks, year pivot).

    Returns:
        DecodeResult carrying the ERAFile and any warnings on success, or only
        the accumulated errors on failure.
    """
    config = config or DecoderConfig()
    errors: list[str] = []
    warnings: list[str] = []

    try:
        segments, delimiters = tokenize(content, config)
        if not segments:
            return DecodeResult(success=False, errors=["Empty EDI file"])

        if segments[0].tag != "ISA":
            return DecodeResult(success=False, errors=["EDI file must start with ISA segment"])

        ctx = _Context(delimiters=delimiters, pivot=config.two_digit_year_pivot)
        header = _parse_isa(segments[0], ctx)
        bpr: dict[str, object] | None = None
        payer: ERAEntity | None = None
        payee: ERAEntity | None = None
        claims: list[ERAClaim] = []
        provider_adjustments: list[ERAProviderAdjustment] = []

        index = 1
        while index < len(segments):
            seg = segments[index]

            if seg.tag == "N1":
                entity, index = parse_entity_loop(segments, index)
                if entity.entity_identifier_code == "PR":
                    payer = entity
                elif entity.entity_identifier_code == "PE":
                    payee = entity
                continue

            if seg.tag == "LX":
                claim, index = parse_claim_loop(segments, index, ctx)
                if claim is not None:
                    claims.append(claim)
                continue

            if seg.tag == "GS":
                header["functional_group_control_number"] = seg.element(6)
            elif seg.tag == "ST":
                header["transaction_control_number"] = seg.element(2)
            elif seg.tag == "BPR":
                bpr = _parse_bpr(seg, ctx)
            elif seg.tag == "TRN":
                header["trace_number"] = seg.element(2)
                header["originator_id"] = seg.element(3)
            elif seg.tag == "PLB":
                plb = parse_provider_adjustment(seg, ctx)
                if plb is not None:
                    provider_adjustments.append(plb)

            index += 1

        if bpr is None:
            errors.append("Missing BPR (Financial Information) segment")
        if payer is None:
            errors.append("Missing payer information (N1*PR loop)")
        if payee is None:
            warnings.append("Missing payee information (N1*PE loop)")

        if errors:
            logger.debug("Decode failed: %s", errors)
            return DecodeResult(success=False, errors=errors, warnings=warnings)

        era_file = ERAFile(
            **header,
            **bpr,
            payer=payer,
            payee=payee,
            claims=claims,
            provider_adjustments=provider_adjustments,
            total_segments=len(segments),
        )
    except Exception as e:
        logger.exception("Unexpected failure decoding 835 content")
        return DecodeResult(success=False, errors=[f"Parse error: {e}"])

    logger.debug(
        "Decoded 835 ICN=%s: %d claims, %d service lines, %d PLB",
        era_file.interchange_control_number,
        len(era_file.claims),
        era_file.total_service_lines,
        len(era_file.provider_adjustments),
    )
    return DecodeResult(success=True, data=era_file, warnings=warnings)
