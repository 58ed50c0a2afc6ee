"""Domain events for the mortuary custody service."""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from shared.domain.commands import Event


@dataclass
class CaseRegistered(Event):
    case_code: str
    hc: str
    created_by: str
    created_at: datetime


@dataclass
class CaseStateChanged(Event):
    """Raised on every lifecycle transition of a case."""
    case_code: str
    from_state: str
    to_state: str
    trigger: str
    changed_at: datetime
    reason: Optional[str] = None


@dataclass
class CustodyTransferred(Event):
    case_code: str
    from_user_id: str
    to_user_id: str
    to_location: str
    transferred_at: datetime


@dataclass
class CorrectionRequestCreated(Event):
    """Raised when a rejected verification opens a correction request."""
    case_code: str
    responsible_user_id: str
    requested_by: str
    fields: List[str]
    created_at: datetime


@dataclass
class CorrectionRequestResolved(Event):
    case_code: str
    resolved_by: str
    wristband_reprinted: bool
    resolved_at: datetime


@dataclass
class TrayAssigned(Event):
    tray_code: str
    case_code: str
    assigned_by: str
    assigned_at: datetime


@dataclass
class TrayReleased(Event):
    tray_code: str
    case_code: str
    released_by: str
    released_at: datetime


@dataclass
class TrayManuallyReleased(Event):
    """Raised when a tray is released through the override path."""
    tray_code: str
    case_code: str
    released_by: str
    reason: str
    observations: str
    released_at: datetime


@dataclass
class TrayStatusChanged(Event):
    """Raised on maintenance and out-of-service transitions of a tray."""
    tray_code: str
    from_state: str
    to_state: str
    changed_by: str
    changed_at: datetime
    observations: Optional[str] = None
