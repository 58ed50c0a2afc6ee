"""
Tray aggregate: an exclusive single-occupant storage unit.

Occupancy history rows (TrayOccupancy) belong to the tray and are only ever
appended and closed, never deleted, so they double as the audit trail.
Elapsed times and alert levels are computed from the supplied `now`.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from mortuary.domain import exceptions
from mortuary.domain.events import (
    TrayAssigned,
    TrayManuallyReleased,
    TrayReleased,
    TrayStatusChanged,
)
from mortuary.domain.model import as_utc, utcnow


MANUAL_RELEASE_REASON_MIN = 3
MANUAL_RELEASE_REASON_MAX = 100
MANUAL_RELEASE_OBSERVATIONS_MIN = 20
MANUAL_RELEASE_OBSERVATIONS_MAX = 500


class TrayState(str, enum.Enum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    MAINTENANCE = "maintenance"
    OUT_OF_SERVICE = "out_of_service"


class ReleaseKind(str, enum.Enum):
    NORMAL = "normal"
    MANUAL = "manual"


class AlertLevel(str, enum.Enum):
    NONE = "none"
    WARNING = "warning"
    CRITICAL = "critical"


def validate_manual_release(reason: Optional[str], observations: Optional[str]) -> None:
    """Check the justification of a manual release before anything is loaded or changed."""
    reason = (reason or "").strip()
    observations = (observations or "").strip()
    if not MANUAL_RELEASE_REASON_MIN <= len(reason) <= MANUAL_RELEASE_REASON_MAX:
        raise exceptions.ValidationError(
            f"Manual release reason must be between {MANUAL_RELEASE_REASON_MIN} "
            f"and {MANUAL_RELEASE_REASON_MAX} characters"
        )
    if not MANUAL_RELEASE_OBSERVATIONS_MIN <= len(observations) <= MANUAL_RELEASE_OBSERVATIONS_MAX:
        raise exceptions.ValidationError(
            f"Manual release observations must be between {MANUAL_RELEASE_OBSERVATIONS_MIN} "
            f"and {MANUAL_RELEASE_OBSERVATIONS_MAX} characters"
        )


def _require_text(value: Optional[str], what: str) -> str:
    if not value or not value.strip():
        raise exceptions.ValidationError(f"{what} is required")
    return value.strip()


@dataclass(eq=False)
class TrayOccupancy:
    tray_code: str
    case_code: str
    assigned_by: str
    assigned_at: datetime
    notes: Optional[str] = None
    released_by: Optional[str] = None
    released_at: Optional[datetime] = None
    release_kind: Optional[ReleaseKind] = None
    release_reason: Optional[str] = None
    release_observations: Optional[str] = None
    id: Optional[int] = None

    @property
    def is_open(self) -> bool:
        return self.released_at is None

    def elapsed(self, now: Optional[datetime] = None) -> timedelta:
        end = as_utc(self.released_at) or as_utc(now) or utcnow()
        return end - as_utc(self.assigned_at)


@dataclass(eq=False)
class Tray:
    code: str
    state: TrayState = TrayState.AVAILABLE
    notes: Optional[str] = None
    case_code: Optional[str] = None
    assigned_by: Optional[str] = None
    assigned_at: Optional[datetime] = None
    released_by: Optional[str] = None
    released_at: Optional[datetime] = None
    status_observations: Optional[str] = None
    status_changed_at: Optional[datetime] = None
    occupancies: List[TrayOccupancy] = field(default_factory=list)
    events: List = field(default_factory=list)

    @property
    def current_occupancy(self) -> Optional[TrayOccupancy]:
        return next((o for o in reversed(self.occupancies) if o.is_open), None)

    def assign(
        self,
        case_code: str,
        user_id: str,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TrayOccupancy:
        """
        Place a case in this tray.

        Assigning the same case to the tray it already occupies returns the
        open occupancy unchanged.

        Raises:
            TrayUnavailable: tray is not Available
        """
        if self.state == TrayState.OCCUPIED and self.case_code == case_code:
            return self.current_occupancy
        if self.state != TrayState.AVAILABLE:
            raise exceptions.TrayUnavailable(
                f"Tray {self.code} is {self.state.value}, cannot assign case {case_code}"
            )

        now = now or utcnow()
        self.state = TrayState.OCCUPIED
        self.case_code = case_code
        self.assigned_by = user_id
        self.assigned_at = now
        occupancy = TrayOccupancy(
            tray_code=self.code,
            case_code=case_code,
            assigned_by=user_id,
            assigned_at=now,
            notes=notes,
        )
        self.occupancies.append(occupancy)
        self.events.append(
            TrayAssigned(tray_code=self.code, case_code=case_code, assigned_by=user_id, assigned_at=now)
        )
        return occupancy

    def _vacate(self, user_id: str, kind: ReleaseKind, now: datetime,
                reason: Optional[str] = None, observations: Optional[str] = None) -> TrayOccupancy:
        if self.state != TrayState.OCCUPIED:
            raise exceptions.TrayNotOccupied(f"Tray {self.code} is {self.state.value}, nothing to release")

        occupancy = self.current_occupancy
        if occupancy is not None:
            occupancy.released_by = user_id
            occupancy.released_at = now
            occupancy.release_kind = kind
            occupancy.release_reason = reason
            occupancy.release_observations = observations

        self.state = TrayState.AVAILABLE
        self.case_code = None
        self.released_by = user_id
        self.released_at = now
        return occupancy

    def release(self, user_id: str, notes: Optional[str] = None,
                now: Optional[datetime] = None) -> TrayOccupancy:
        """Normal exit; the caller has already cleared the release gate."""
        now = now or utcnow()
        case_code = self.case_code
        occupancy = self._vacate(user_id, ReleaseKind.NORMAL, now, observations=notes)
        self.events.append(
            TrayReleased(tray_code=self.code, case_code=case_code, released_by=user_id, released_at=now)
        )
        return occupancy

    def manual_release(self, reason: str, observations: str, user_id: str,
                       now: Optional[datetime] = None) -> TrayOccupancy:
        """Override exit that bypasses the release gate; justification is mandatory."""
        validate_manual_release(reason, observations)
        now = now or utcnow()
        case_code = self.case_code
        occupancy = self._vacate(
            user_id, ReleaseKind.MANUAL, now, reason=reason.strip(), observations=observations.strip()
        )
        self.events.append(
            TrayManuallyReleased(
                tray_code=self.code,
                case_code=case_code,
                released_by=user_id,
                reason=reason.strip(),
                observations=observations.strip(),
                released_at=now,
            )
        )
        return occupancy

    def _change_status(self, to_state: TrayState, user_id: str, observations: Optional[str],
                       now: Optional[datetime]) -> None:
        now = now or utcnow()
        previous = self.state
        self.state = to_state
        self.status_observations = observations
        self.status_changed_at = now
        self.events.append(
            TrayStatusChanged(
                tray_code=self.code,
                from_state=previous.value,
                to_state=to_state.value,
                changed_by=user_id,
                changed_at=now,
                observations=observations,
            )
        )

    def start_maintenance(self, observations: str, user_id: str, now: Optional[datetime] = None) -> None:
        observations = _require_text(observations, "Maintenance observations")
        if self.state != TrayState.AVAILABLE:
            raise exceptions.TrayUnavailable(
                f"Tray {self.code} is {self.state.value}, only available trays can enter maintenance"
            )
        self._change_status(TrayState.MAINTENANCE, user_id, observations, now)

    def finish_maintenance(self, user_id: str, observations: Optional[str] = None,
                           now: Optional[datetime] = None) -> None:
        if self.state != TrayState.MAINTENANCE:
            raise exceptions.GuardViolation(f"Tray {self.code} is not in maintenance")
        self._change_status(TrayState.AVAILABLE, user_id, observations, now)

    def mark_out_of_service(self, reason: str, user_id: str, now: Optional[datetime] = None) -> None:
        reason = _require_text(reason, "Out-of-service reason")
        if self.state == TrayState.OCCUPIED:
            raise exceptions.TrayUnavailable(f"Tray {self.code} is occupied by case {self.case_code}")
        if self.state == TrayState.OUT_OF_SERVICE:
            return
        self._change_status(TrayState.OUT_OF_SERVICE, user_id, reason, now)

    def restore(self, user_id: str, observations: Optional[str] = None,
                now: Optional[datetime] = None) -> None:
        if self.state != TrayState.OUT_OF_SERVICE:
            raise exceptions.GuardViolation(f"Tray {self.code} is not out of service")
        self._change_status(TrayState.AVAILABLE, user_id, observations, now)

    def elapsed(self, now: Optional[datetime] = None) -> Optional[timedelta]:
        if self.state != TrayState.OCCUPIED or self.assigned_at is None:
            return None
        return (as_utc(now) or utcnow()) - as_utc(self.assigned_at)

    def alert_level(self, now: Optional[datetime], warning_hours: float, critical_hours: float) -> AlertLevel:
        elapsed = self.elapsed(now)
        if elapsed is None:
            return AlertLevel.NONE
        hours = elapsed.total_seconds() / 3600
        if hours >= critical_hours:
            return AlertLevel.CRITICAL
        if hours >= warning_hours:
            return AlertLevel.WARNING
        return AlertLevel.NONE


@dataclass(frozen=True)
class OccupancyStatistics:
    total: int
    available: int
    occupied: int
    maintenance: int
    out_of_service: int
    occupancy_percentage: float
    over_warning: int
    over_critical: int


def compute_statistics(trays: Iterable[Tray], now: Optional[datetime],
                       warning_hours: float, critical_hours: float) -> OccupancyStatistics:
    trays = list(trays)
    counts = {state: 0 for state in TrayState}
    over_warning = over_critical = 0
    for tray in trays:
        counts[tray.state] += 1
        level = tray.alert_level(now, warning_hours, critical_hours)
        if level in (AlertLevel.WARNING, AlertLevel.CRITICAL):
            over_warning += 1
        if level == AlertLevel.CRITICAL:
            over_critical += 1

    total = len(trays)
    percentage = round(counts[TrayState.OCCUPIED] * 100 / total, 2) if total else 0.0
    return OccupancyStatistics(
        total=total,
        available=counts[TrayState.AVAILABLE],
        occupied=counts[TrayState.OCCUPIED],
        maintenance=counts[TrayState.MAINTENANCE],
        out_of_service=counts[TrayState.OUT_OF_SERVICE],
        occupancy_percentage=percentage,
        over_warning=over_warning,
        over_critical=over_critical,
    )
