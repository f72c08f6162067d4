"""Shared test fixtures for ERA posting tests."""

from __future__ import annotations

from datetime import date

import pytest

from era_posting.edi import decode
from era_posting.posting import PostingEngine
from era_posting.schema import CLAIMS, ERAFile
from era_posting.store import InMemoryDataStore

SAMPLE_835_SEGMENTS = [
    "ISA*00*          *00*          *ZZ*PAYERID        *ZZ*PROVIDERID     "
    "*251011*1230*^*00501*000000123*0*P*:~",
    "GS*HP*PAYERID*PROVIDERID*20251011*1230*7*X*005010X221A1~",
    "ST*835*0001~",
    "BPR*I*425.00*C*ACH*CCP*01*999999999*EFT0001*DA*123456*01*888888888*DA*654321*1*20251015~",
    "TRN*1*TRACE123*1512345678~",
    "N1*PR*ACME HEALTH PLAN*XV*PAYER01~",
    "N3*100 MAIN ST*SUITE 5~",
    "N4*SPRINGFIELD*IL*62701~",
    "PER*CX*CLAIMS DEPT*TE*8005551234~",
    "N1*PE*RIVERSIDE CLINIC*XX*1234567893~",
    "LX*1~",
    "CLP*PCN001*1*300.00*200.00*40.00*12*PAYERCCN1*11~",
    "NM1*QC*1*DOE*JANE*M***MI*MEM123~",
    "NM1*82*1*SMITH*JOHN****XX*1999999984~",
    "DTM*232*20251001~",
    "DTM*233*20251001~",
    "SVC*HC:99213:25*300.00*200.00**1~",
    "DTM*472*20251001~",
    "CAS*CO*45*60.00~",
    "CAS*PR*1*25.00**2*15.00~",
    "AMT*B6*240.00~",
    "REF*6R*LINE1~",
    "LX*2~",
    "CLP*PCN002*1*250.00*250.00*0*12*PAYERCCN2*11~",
    "NM1*QC*1*ROE*RICHARD~",
    "DTM*232*20251002~",
    "SVC*HC:99214*250.00*250.00**1~",
    "DTM*472*20251002~",
    "PLB*1234567893*20251231*WO:INV1*25.00~",
    "SE*29*0001~",
    "GE*1*7~",
    "IEA*1*000000123~",
]

MINIMAL_835 = (
    "ISA~GS~ST~BPR*I*500.00*C*ACH~TRN~N1*PR*Payer Name**TAXID~N1*PE*Payee Name~"
    "LX*1~CLP*CTRL1*1*500*450*50~SE~"
)


@pytest.fixture
def sample_835() -> str:
    """A two-claim remittance with CAS, AMT, REF and PLB segments, one segment per line."""
    return "\n".join(SAMPLE_835_SEGMENTS)


@pytest.fixture
def minimal_835() -> str:
    return MINIMAL_835


@pytest.fixture
def sample_era(sample_835: str) -> ERAFile:
    result = decode(sample_835)
    assert result.success, result.errors
    return result.data


@pytest.fixture
def claim_rows() -> list[dict]:
    """Internal claims that the sample remittance pays (plus one it does not)."""
    return [
        {
            "id": "c-1",
            "claim_id": "PCN001",
            "payer_claim_control_number": None,
            "patient_first_name": "JANE",
            "patient_last_name": "DOE",
            "statement_from_date": date(2025, 10, 1),
            "billed_amount": 300.0,
            "paid_amount": 0.0,
            "claim_status": "Submitted",
        },
        {
            "id": "c-2",
            "claim_id": "PCN002",
            "payer_claim_control_number": None,
            "patient_first_name": "RICHARD",
            "patient_last_name": "ROE",
            "statement_from_date": date(2025, 10, 2),
            "billed_amount": 250.0,
            "paid_amount": 0.0,
            "claim_status": "Submitted",
        },
        {
            "id": "c-3",
            "claim_id": "CLM-3",
            "payer_claim_control_number": None,
            "patient_first_name": "ALEX",
            "patient_last_name": "SMITH",
            "statement_from_date": date(2025, 9, 15),
            "billed_amount": 180.0,
            "paid_amount": 0.0,
            "claim_status": "Submitted",
        },
    ]


@pytest.fixture
def store(claim_rows: list[dict]) -> InMemoryDataStore:
    s = InMemoryDataStore()
    for row in claim_rows:
        s.insert(CLAIMS, row)
    return s


@pytest.fixture
def engine(store: InMemoryDataStore) -> PostingEngine:
    return PostingEngine(store)
