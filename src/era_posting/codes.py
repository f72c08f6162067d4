"""Code tables for 835 remittance data.

Pure lookups shared by the decoder, the posting engine, and any presentation
layer that needs human-readable descriptions.
"""

from __future__ import annotations

# CLP02 claim status codes
CLAIM_STATUS_CODES: dict[str, str] = {
    "1": "Processed as Primary",
    "2": "Processed as Secondary",
    "3": "Processed as Tertiary",
    "4": "Denied",
    "5": "Pended",
    "19": "Processed as Primary, Forwarded to Additional Payer",
    "20": "Processed as Secondary, Forwarded to Additional Payer",
    "21": "Processed as Tertiary, Forwarded to Additional Payer",
    "22": "Reversal of Previous Payment",
    "23": "Not Our Claim, Forwarded to Additional Payer",
    "25": "Predetermination Pricing Only - No Payment",
}

DENIED_STATUS_CODE = "4"

# Claim Adjustment Reason Codes
CARC_CODES: dict[str, str] = {
    "1": "Deductible Amount",
    "2": "Coinsurance Amount",
    "3": "Co-payment Amount",
    "4": "The procedure code is inconsistent with the modifier used",
    "5": "The procedure code/modifier is inconsistent with the place of service",
    "16": "Claim/service lacks information",
    "18": "Exact duplicate claim/service",
    "22": "Payment adjusted because this care may be covered by another payer",
    "23": "Impact of prior payer(s) adjudication",
    "24": "Charges are covered under a capitation agreement/managed care plan",
    "29": "Time limit for filing has expired",
    "31": "Patient cannot be identified as our insured",
    "45": "Charge exceeds fee schedule/maximum allowable",
    "50": "Non-covered service",
    "96": "Non-covered charges",
    "97": "Payment adjusted because the benefit for this service is included in another service",
    "109": "Claim not covered by this payer/contractor",
    "204": "Service is not covered by this payer",
}

# CARCs that split PR patient responsibility into buckets
DEDUCTIBLE_CARC = "1"
COINSURANCE_CARC = "2"
COPAY_CARC = "3"

# BPR04 payment method codes
PAYMENT_METHOD_CODES: dict[str, str] = {
    "ACH": "ACH",
    "CHK": "Check",
    "FWT": "Wire",
    "CCP": "Credit Card",
}

ADJUSTMENT_GROUPS: dict[str, str] = {
    "CO": "Contractual Obligation",
    "PR": "Patient Responsibility",
    "OA": "Other Adjustment",
    "PI": "Payer Initiated Reduction",
}


def describe_claim_status(code: str) -> str:
    """Map a CLP02 claim status code to its description."""
    return CLAIM_STATUS_CODES.get(code, f"Unknown Status ({code})")


def describe_carc(code: str) -> str:
    """Map a claim adjustment reason code to its description."""
    return CARC_CODES.get(code, f"Adjustment Code {code}")


def payment_method_for(code: str) -> str:
    """Map a BPR04 payment method code, defaulting to ``"Other"``."""
    return PAYMENT_METHOD_CODES.get(code, "Other")


def describe_adjustment_group(code: str) -> str:
    """Map a CAS01 group code to its name."""
    return ADJUSTMENT_GROUPS.get(code, f"Unknown Group ({code})")
