"""
Wristband verification engine.

Compares the five values read from the physical wristband against the stored
case. The engine only produces a verdict; applying it to the case lifecycle is
the job of the service layer.
"""

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from mortuary.domain.model import Case


class Verdict(str, enum.Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


# wristband field -> case attribute
COMPARED_FIELDS = {
    "hc": "hc",
    "document_number": "document_number",
    "full_name": "full_name",
    "service": "service",
    "code": "code",
}

def normalize(value: Optional[str]) -> str:
    """Trim and casefold; inner spacing must match exactly."""
    return (value or "").strip().casefold()


@dataclass(frozen=True)
class WristbandReading:
    hc: str
    document_number: str
    full_name: str
    service: str
    code: str


@dataclass(frozen=True)
class FieldMismatch:
    field: str
    expected: str
    observed: str

    def to_dict(self) -> Dict[str, str]:
        return {"field": self.field, "expected": self.expected, "observed": self.observed}

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> "FieldMismatch":
        return cls(field=data["field"], expected=data["expected"], observed=data["observed"])


@dataclass(frozen=True)
class VerificationResult:
    verdict: Verdict
    matches: Dict[str, bool]
    mismatches: List[FieldMismatch] = field(default_factory=list)

    @property
    def approved(self) -> bool:
        return self.verdict == Verdict.APPROVED

    @property
    def rejection_reason(self) -> Optional[str]:
        if self.approved:
            return None
        return "Wristband mismatch in: " + ", ".join(m.field for m in self.mismatches)


@dataclass(eq=False)
class VerificationAttempt:
    """Append-only record of one comparison at the mortuary door."""
    case_code: str
    guard_id: str
    verified_at: datetime
    observed_hc: str
    observed_document_number: str
    observed_full_name: str
    observed_service: str
    observed_code: str
    hc_match: bool
    document_number_match: bool
    full_name_match: bool
    service_match: bool
    code_match: bool
    verdict: Verdict
    rejection_reason: Optional[str] = None
    observations: Optional[str] = None
    correction_request_id: Optional[int] = None
    correction_request: Optional["CorrectionRequest"] = None  # noqa: F821
    id: Optional[int] = None

    @classmethod
    def record(cls, case_code: str, guard_id: str, reading: WristbandReading,
               result: VerificationResult, verified_at: datetime,
               observations: Optional[str] = None) -> "VerificationAttempt":
        return cls(
            case_code=case_code,
            guard_id=guard_id,
            verified_at=verified_at,
            observed_hc=reading.hc,
            observed_document_number=reading.document_number,
            observed_full_name=reading.full_name,
            observed_service=reading.service,
            observed_code=reading.code,
            hc_match=result.matches["hc"],
            document_number_match=result.matches["document_number"],
            full_name_match=result.matches["full_name"],
            service_match=result.matches["service"],
            code_match=result.matches["code"],
            verdict=result.verdict,
            rejection_reason=result.rejection_reason,
            observations=observations,
        )


class VerificationEngine:
    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def compare(self, case: Case, reading: WristbandReading) -> VerificationResult:
        matches = {}
        mismatches = []
        for reading_field, case_attribute in COMPARED_FIELDS.items():
            expected = getattr(case, case_attribute) or ""
            observed = getattr(reading, reading_field) or ""
            matches[reading_field] = normalize(expected) == normalize(observed)
            if not matches[reading_field]:
                mismatches.append(FieldMismatch(field=reading_field, expected=expected, observed=observed))

        verdict = Verdict.REJECTED if mismatches else Verdict.APPROVED
        self.logger.info(
            f"Wristband verification for case {case.code}: {verdict.value}"
            + (f" (mismatched: {', '.join(m.field for m in mismatches)})" if mismatches else "")
        )
        return VerificationResult(verdict=verdict, matches=matches, mismatches=mismatches)
