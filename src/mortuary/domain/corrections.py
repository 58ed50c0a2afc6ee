"""Correction request opened when a wristband verification is rejected."""

import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from mortuary.domain import exceptions
from mortuary.domain.events import CorrectionRequestCreated, CorrectionRequestResolved
from mortuary.domain.model import as_utc, utcnow
from mortuary.domain.verification import FieldMismatch


class CorrectionState(str, enum.Enum):
    PENDING = "pending"
    RESOLVED = "resolved"


@dataclass(eq=False)
class CorrectionRequest:
    case_code: str
    requested_by: str
    responsible_user_id: str
    mismatches: List[FieldMismatch]
    problem_description: str
    created_at: datetime
    observations: Optional[str] = None
    state: CorrectionState = CorrectionState.PENDING
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolution_description: Optional[str] = None
    resolution_observations: Optional[str] = None
    wristband_reprinted: bool = False
    reprinted_at: Optional[datetime] = None
    id: Optional[int] = None
    events: List = field(default_factory=list)

    @classmethod
    def open(cls, case_code: str, requested_by: str, responsible_user_id: str,
             mismatches: List[FieldMismatch], observations: Optional[str] = None,
             now: Optional[datetime] = None) -> "CorrectionRequest":
        now = now or utcnow()
        fields = [m.field for m in mismatches]
        request = cls(
            case_code=case_code,
            requested_by=requested_by,
            responsible_user_id=responsible_user_id,
            mismatches=list(mismatches),
            problem_description=f"Wristband data does not match the case record: {', '.join(fields)}",
            created_at=now,
            observations=observations,
        )
        request.events.append(
            CorrectionRequestCreated(
                case_code=case_code,
                responsible_user_id=responsible_user_id,
                requested_by=requested_by,
                fields=fields,
                created_at=now,
            )
        )
        return request

    @property
    def is_pending(self) -> bool:
        return self.state == CorrectionState.PENDING

    def resolve(self, user_id: str, description: str, wristband_reprinted: bool,
                observations: Optional[str] = None, now: Optional[datetime] = None) -> None:
        """
        Close the request. Only the responsible nurse may resolve it, once.

        Raises:
            CorrectionRequestAlreadyResolved: request is not pending
            NotResponsibleUser: user is not the responsible nurse
            ValidationError: resolution description is blank
        """
        if not self.is_pending:
            raise exceptions.CorrectionRequestAlreadyResolved(
                f"Correction request {self.id} for case {self.case_code} is already resolved"
            )
        if user_id != self.responsible_user_id:
            raise exceptions.NotResponsibleUser(
                f"User {user_id} is not responsible for correction request {self.id}"
            )
        if not description or not description.strip():
            raise exceptions.ValidationError("Resolution description is required")

        now = now or utcnow()
        self.state = CorrectionState.RESOLVED
        self.resolved_by = user_id
        self.resolved_at = now
        self.resolution_description = description.strip()
        self.resolution_observations = observations
        self.wristband_reprinted = wristband_reprinted
        self.reprinted_at = now if wristband_reprinted else None
        self.events.append(
            CorrectionRequestResolved(
                case_code=self.case_code,
                resolved_by=user_id,
                wristband_reprinted=wristband_reprinted,
                resolved_at=now,
            )
        )

    def elapsed(self, now: Optional[datetime] = None) -> timedelta:
        end = as_utc(self.resolved_at) or as_utc(now) or utcnow()
        return end - as_utc(self.created_at)

    def exceeds_alert_time(self, now: Optional[datetime], threshold_hours: float) -> bool:
        return self.is_pending and self.elapsed(now) >= timedelta(hours=threshold_hours)
