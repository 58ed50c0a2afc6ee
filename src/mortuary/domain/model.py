"""
Case aggregate and its lifecycle state machine.

A case follows a deceased patient from death registration on the ward to
release from the mortuary. Every transition goes through Case.fire(), which
checks the (state, trigger) pair against TRANSITIONS and records a
CaseStateChanged event.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from mortuary.domain import exceptions
from mortuary.domain.events import CaseRegistered, CaseStateChanged


CASE_CODE_PREFIX = "SGM"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def generate_case_code(year: int, sequence: int) -> str:
    return f"{CASE_CODE_PREFIX}-{year}-{sequence:05d}"


class CaseState(str, enum.Enum):
    REGISTERED = "registered"
    IN_TRANSIT = "in_transit"
    PENDING_VERIFICATION = "pending_verification"
    VERIFIED = "verified"
    AWAITING_TRAY_ASSIGNMENT = "awaiting_tray_assignment"
    IN_TRAY = "in_tray"
    AWAITING_RELEASE = "awaiting_release"
    RELEASED = "released"
    ON_HOLD = "on_hold"


class HoldOrigin(str, enum.Enum):
    VERIFICATION = "verification"
    RELEASE = "release"


class CaseTrigger(str, enum.Enum):
    ACCEPT_CUSTODY = "accept_custody"
    ARRIVE_AT_MORTUARY = "arrive_at_mortuary"
    APPROVE_VERIFICATION = "approve_verification"
    REJECT_VERIFICATION = "reject_verification"
    QUEUE_FOR_TRAY = "queue_for_tray"
    RESOLVE_CORRECTION = "resolve_correction"
    ASSIGN_TRAY = "assign_tray"
    HAND_OVER_FOR_RELEASE = "hand_over_for_release"
    PLACE_RELEASE_HOLD = "place_release_hold"
    LIFT_RELEASE_HOLD = "lift_release_hold"
    RELEASE = "release"
    MANUAL_RELEASE = "manual_release"


TRANSITIONS = {
    (CaseState.REGISTERED, CaseTrigger.ACCEPT_CUSTODY): CaseState.IN_TRANSIT,
    (CaseState.IN_TRANSIT, CaseTrigger.ARRIVE_AT_MORTUARY): CaseState.PENDING_VERIFICATION,
    (CaseState.PENDING_VERIFICATION, CaseTrigger.APPROVE_VERIFICATION): CaseState.VERIFIED,
    (CaseState.PENDING_VERIFICATION, CaseTrigger.REJECT_VERIFICATION): CaseState.ON_HOLD,
    (CaseState.VERIFIED, CaseTrigger.QUEUE_FOR_TRAY): CaseState.AWAITING_TRAY_ASSIGNMENT,
    (CaseState.ON_HOLD, CaseTrigger.RESOLVE_CORRECTION): CaseState.PENDING_VERIFICATION,
    (CaseState.AWAITING_TRAY_ASSIGNMENT, CaseTrigger.ASSIGN_TRAY): CaseState.IN_TRAY,
    (CaseState.IN_TRAY, CaseTrigger.HAND_OVER_FOR_RELEASE): CaseState.AWAITING_RELEASE,
    (CaseState.AWAITING_RELEASE, CaseTrigger.PLACE_RELEASE_HOLD): CaseState.ON_HOLD,
    (CaseState.ON_HOLD, CaseTrigger.LIFT_RELEASE_HOLD): CaseState.AWAITING_RELEASE,
    (CaseState.AWAITING_RELEASE, CaseTrigger.RELEASE): CaseState.RELEASED,
    (CaseState.IN_TRAY, CaseTrigger.MANUAL_RELEASE): CaseState.RELEASED,
    (CaseState.AWAITING_RELEASE, CaseTrigger.MANUAL_RELEASE): CaseState.RELEASED,
    (CaseState.ON_HOLD, CaseTrigger.MANUAL_RELEASE): CaseState.RELEASED,
}  # type: Dict[Tuple[CaseState, CaseTrigger], CaseState]

# Hold origin a trigger creates when entering ON_HOLD
HOLD_ORIGIN_SET_BY = {
    CaseTrigger.REJECT_VERIFICATION: HoldOrigin.VERIFICATION,
    CaseTrigger.PLACE_RELEASE_HOLD: HoldOrigin.RELEASE,
}

# Hold origin a trigger requires when leaving ON_HOLD
HOLD_ORIGIN_REQUIRED_BY = {
    CaseTrigger.RESOLVE_CORRECTION: HoldOrigin.VERIFICATION,
    CaseTrigger.LIFT_RELEASE_HOLD: HoldOrigin.RELEASE,
    CaseTrigger.MANUAL_RELEASE: HoldOrigin.RELEASE,
}

TERMINAL_STATES = {CaseState.RELEASED}


def target_of(trigger: CaseTrigger) -> CaseState:
    return next(to for (_, t), to in TRANSITIONS.items() if t == trigger)


@dataclass(eq=False)
class Case:
    code: str
    hc: str
    document_type: str
    document_number: str
    full_name: str
    service: str
    created_by: str
    created_at: datetime
    bed_number: Optional[str] = None
    is_legal_case: bool = False
    state: CaseState = CaseState.REGISTERED
    hold_reason: Optional[str] = None
    hold_origin: Optional[HoldOrigin] = None
    tray_code: Optional[str] = None
    updated_at: Optional[datetime] = None
    events: List = field(default_factory=list)

    @classmethod
    def register(
        cls,
        code: str,
        hc: str,
        document_type: str,
        document_number: str,
        full_name: str,
        service: str,
        created_by: str,
        bed_number: Optional[str] = None,
        is_legal_case: bool = False,
        now: Optional[datetime] = None,
    ) -> "Case":
        now = now or utcnow()
        case = cls(
            code=code,
            hc=hc,
            document_type=document_type,
            document_number=document_number,
            full_name=full_name,
            service=service,
            created_by=created_by,
            created_at=now,
            bed_number=bed_number,
            is_legal_case=is_legal_case,
            updated_at=now,
        )
        case.events.append(
            CaseRegistered(case_code=code, hc=hc, created_by=created_by, created_at=now)
        )
        return case

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def permitted_triggers(self) -> List[CaseTrigger]:
        return [
            trigger
            for (state, trigger) in TRANSITIONS
            if state == self.state and self._hold_origin_allows(trigger)
        ]

    def _hold_origin_allows(self, trigger: CaseTrigger) -> bool:
        if self.state != CaseState.ON_HOLD:
            return True
        required = HOLD_ORIGIN_REQUIRED_BY.get(trigger)
        return required is not None and required == self.hold_origin

    def _already_in_target(self, trigger: CaseTrigger) -> bool:
        if self.state != target_of(trigger):
            return False
        if self.state == CaseState.ON_HOLD:
            return self.hold_origin == HOLD_ORIGIN_SET_BY[trigger]
        return True

    def fire(
        self,
        trigger: CaseTrigger,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CaseState:
        """
        Apply a lifecycle trigger and return the resulting state.

        Firing a trigger whose target is the current state is a no-op, so
        retried requests do not fail or emit duplicate events.

        Raises:
            InvalidTransition: trigger not permitted from the current state
        """
        key = (self.state, trigger)
        if key not in TRANSITIONS or not self._hold_origin_allows(trigger):
            if self._already_in_target(trigger):
                return self.state
            raise exceptions.InvalidTransition(
                self.code, self.state, trigger, self.permitted_triggers()
            )

        now = now or utcnow()
        previous = self.state
        self.state = TRANSITIONS[key]

        if self.state == CaseState.ON_HOLD:
            self.hold_origin = HOLD_ORIGIN_SET_BY[trigger]
            self.hold_reason = reason
        elif previous == CaseState.ON_HOLD:
            self.hold_origin = None
            self.hold_reason = None

        if self.state == CaseState.RELEASED:
            self.tray_code = None
        self.updated_at = now

        self.events.append(
            CaseStateChanged(
                case_code=self.code,
                from_state=previous.value,
                to_state=self.state.value,
                trigger=trigger.value,
                changed_at=now,
                reason=reason,
            )
        )
        return self.state


@dataclass(eq=False)
class CustodyTransfer:
    """Append-only record of a physical handoff of a case."""
    case_code: str
    from_user_id: str
    to_user_id: str
    from_location: str
    to_location: str
    transferred_at: datetime
    observations: Optional[str] = None
    id: Optional[int] = None
