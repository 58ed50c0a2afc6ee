"""Custody handoff directions keyed by the state a scanned case is in."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from mortuary.domain.events import CustodyTransferred
from mortuary.domain.model import Case, CaseState, CaseTrigger, CustodyTransfer


WARD = "ward"
TRANSPORT = "transport"
MORTUARY_DOOR = "mortuary_door"
MORTUARY = "mortuary"
FUNERAL_HOME = "funeral_home"


@dataclass(frozen=True)
class Handoff:
    trigger: CaseTrigger
    from_location: str
    to_location: str
    completed_state: CaseState


PICKUP = Handoff(CaseTrigger.ACCEPT_CUSTODY, WARD, TRANSPORT, CaseState.IN_TRANSIT)
OUTBOUND = Handoff(CaseTrigger.HAND_OVER_FOR_RELEASE, MORTUARY, FUNERAL_HOME, CaseState.AWAITING_RELEASE)

# Recorded by the verification flow, not by a scanned transfer
ARRIVAL = Handoff(CaseTrigger.ARRIVE_AT_MORTUARY, TRANSPORT, MORTUARY_DOOR, CaseState.PENDING_VERIFICATION)

_EXPECTING_TRANSFER = {
    CaseState.REGISTERED: PICKUP,
    CaseState.IN_TRAY: OUTBOUND,
}


def handoff_for(state: CaseState) -> Optional[Handoff]:
    return _EXPECTING_TRANSFER.get(state)


def completed_handoff_for(state: CaseState) -> Optional[Handoff]:
    """Handoff whose transition already produced `state`, for retried scans."""
    return next((h for h in _EXPECTING_TRANSFER.values() if h.completed_state == state), None)


def record_transfer(case: Case, handoff: Handoff, from_user_id: str, to_user_id: str,
                    now: datetime, observations: Optional[str] = None) -> CustodyTransfer:
    """Build the log entry for a handoff; firing the case trigger is up to the caller."""
    transfer = CustodyTransfer(
        case_code=case.code,
        from_user_id=from_user_id,
        to_user_id=to_user_id,
        from_location=handoff.from_location,
        to_location=handoff.to_location,
        transferred_at=now,
        observations=observations,
    )
    case.events.append(
        CustodyTransferred(
            case_code=case.code,
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            to_location=handoff.to_location,
            transferred_at=now,
        )
    )
    return transfer
