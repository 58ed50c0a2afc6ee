"""Commands for the mortuary custody service."""

from dataclasses import dataclass
from typing import Optional

from shared.domain.commands import Command
from shared.domain.identity import ActingUser


@dataclass
class RegisterCase(Command):
    """Command to open a case at death registration on the ward."""
    acting_user: ActingUser
    hc: str
    document_type: str
    document_number: str
    full_name: str
    service: str
    bed_number: Optional[str] = None
    is_legal_case: bool = False
    code: Optional[str] = None  # generated as SGM-<year>-<seq> when omitted


@dataclass
class TransferCustody(Command):
    """Command issued when a case code is scanned at a physical handoff."""
    acting_user: ActingUser
    code: str
    observations: Optional[str] = None


@dataclass
class RegisterVerification(Command):
    """Command to compare the wristband against the stored case at the mortuary door."""
    acting_user: ActingUser
    case_code: str
    hc: str
    document_number: str
    full_name: str
    service: str
    wristband_code: str
    observations: Optional[str] = None


@dataclass
class ResolveCorrectionRequest(Command):
    acting_user: ActingUser
    request_id: int
    description: str
    wristband_reprinted: bool
    observations: Optional[str] = None


@dataclass
class CreateTray(Command):
    acting_user: ActingUser
    code: str
    notes: Optional[str] = None


@dataclass
class AssignTray(Command):
    acting_user: ActingUser
    tray_code: str
    case_code: str
    notes: Optional[str] = None


@dataclass
class ReleaseTray(Command):
    """Normal release of a tray; the occupant must clear the release gate."""
    acting_user: ActingUser
    tray_code: str
    notes: Optional[str] = None


@dataclass
class ManualReleaseTray(Command):
    """Override release bypassing the release gate."""
    acting_user: ActingUser
    tray_code: str
    reason: str
    observations: str


@dataclass
class StartTrayMaintenance(Command):
    acting_user: ActingUser
    tray_code: str
    observations: str


@dataclass
class FinishTrayMaintenance(Command):
    acting_user: ActingUser
    tray_code: str
    observations: Optional[str] = None


@dataclass
class MarkTrayOutOfService(Command):
    acting_user: ActingUser
    tray_code: str
    reason: str


@dataclass
class RestoreTray(Command):
    acting_user: ActingUser
    tray_code: str
    observations: Optional[str] = None


@dataclass
class AttemptRelease(Command):
    acting_user: ActingUser
    case_code: str


@dataclass
class PlaceReleaseHold(Command):
    acting_user: ActingUser
    case_code: str
    reason: str


@dataclass
class LiftReleaseHold(Command):
    acting_user: ActingUser
    case_code: str
