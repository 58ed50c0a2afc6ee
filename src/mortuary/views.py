"""
Views for read operations - separate from command/write path.
Following Cosmic Python CQRS pattern: views query the tables directly.

Elapsed times and alert flags depend on the moment of the query, so they are
computed here from `now` instead of being stored.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy import Boolean, DateTime, text

import config
from mortuary.domain import custody
from mortuary.domain.model import as_utc, utcnow
from mortuary.domain.trays import compute_statistics
from mortuary.service_layer.unit_of_work import AbstractUnitOfWork

logger = logging.getLogger(__name__)


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


def _hours(seconds: float) -> float:
    return round(seconds / 3600, 2)


def get_case(case_code: str, uow: AbstractUnitOfWork) -> Optional[Dict[str, Any]]:
    with uow:
        case = uow.cases.get(case_code)
        if case is None:
            return None
        return {
            "code": case.code,
            "hc": case.hc,
            "document_type": case.document_type,
            "document_number": case.document_number,
            "full_name": case.full_name,
            "service": case.service,
            "bed_number": case.bed_number,
            "is_legal_case": case.is_legal_case,
            "state": case.state.value,
            "hold_reason": case.hold_reason,
            "hold_origin": case.hold_origin.value if case.hold_origin else None,
            "tray_code": case.tray_code,
            "created_by": case.created_by,
            "created_at": _iso(case.created_at),
            "updated_at": _iso(case.updated_at),
            "permitted_triggers": [t.value for t in case.permitted_triggers()],
        }


def get_occupancy_statistics(uow: AbstractUnitOfWork, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Tray counts per state, occupancy percentage and permanence alerts.

    Returns:
        - total / available / occupied / maintenance / out_of_service
        - occupancy_percentage: occupied trays over all trays
        - over_warning_hours / over_critical_hours: occupied trays past 24h / 48h
    """
    thresholds = config.get_alert_thresholds()
    now = as_utc(now) or utcnow()
    with uow:
        stats = compute_statistics(
            uow.trays.list(), now, thresholds["tray_warning_hours"], thresholds["tray_critical_hours"]
        )

    return {
        "total": stats.total,
        "available": stats.available,
        "occupied": stats.occupied,
        "maintenance": stats.maintenance,
        "out_of_service": stats.out_of_service,
        "occupancy_percentage": stats.occupancy_percentage,
        "over_warning_hours": stats.over_warning,
        "over_critical_hours": stats.over_critical,
        "warning_hours": thresholds["tray_warning_hours"],
        "critical_hours": thresholds["tray_critical_hours"],
        "queried_at": now.isoformat(),
    }


def get_tray_board(uow: AbstractUnitOfWork, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Every tray with its occupant, elapsed time and alert level."""
    thresholds = config.get_alert_thresholds()
    now = as_utc(now) or utcnow()
    with uow:
        board = []
        for tray in uow.trays.list():
            elapsed = tray.elapsed(now)
            board.append({
                "code": tray.code,
                "state": tray.state.value,
                "case_code": tray.case_code,
                "assigned_by": tray.assigned_by,
                "assigned_at": _iso(tray.assigned_at),
                "released_by": tray.released_by,
                "released_at": _iso(tray.released_at),
                "notes": tray.notes,
                "status_observations": tray.status_observations,
                "elapsed_hours": _hours(elapsed.total_seconds()) if elapsed is not None else None,
                "alert_level": tray.alert_level(
                    now, thresholds["tray_warning_hours"], thresholds["tray_critical_hours"]
                ).value,
            })
        return board


def get_tray_history(tray_code: str, uow: AbstractUnitOfWork) -> List[Dict[str, Any]]:
    with uow:
        rows = uow.session.execute(
            text("""
                SELECT id, case_code, assigned_by, assigned_at, notes,
                       released_by, released_at, release_kind, release_reason, release_observations
                FROM tray_occupancies
                WHERE tray_code = :tray_code
                ORDER BY id
            """).columns(assigned_at=DateTime(timezone=True), released_at=DateTime(timezone=True)),
            dict(tray_code=tray_code),
        ).mappings().all()

        return [
            {
                "id": row["id"],
                "case_code": row["case_code"],
                "assigned_by": row["assigned_by"],
                "assigned_at": _iso(row["assigned_at"]),
                "notes": row["notes"],
                "released_by": row["released_by"],
                "released_at": _iso(row["released_at"]),
                "release_kind": row["release_kind"],
                "release_reason": row["release_reason"],
                "release_observations": row["release_observations"],
            }
            for row in rows
        ]


def _correction_to_dict(request, now: datetime, alert_hours: float) -> Dict[str, Any]:
    return {
        "id": request.id,
        "case_code": request.case_code,
        "state": request.state.value,
        "requested_by": request.requested_by,
        "responsible_user_id": request.responsible_user_id,
        "mismatches": [m.to_dict() for m in request.mismatches],
        "problem_description": request.problem_description,
        "observations": request.observations,
        "created_at": _iso(request.created_at),
        "resolved_by": request.resolved_by,
        "resolved_at": _iso(request.resolved_at),
        "resolution_description": request.resolution_description,
        "wristband_reprinted": request.wristband_reprinted,
        "elapsed_hours": _hours(request.elapsed(now).total_seconds()),
        "exceeds_alert_time": request.exceeds_alert_time(now, alert_hours),
    }


def get_pending_corrections(uow: AbstractUnitOfWork, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Pending correction requests, oldest first, with their SLA flag."""
    alert_hours = config.get_alert_thresholds()["correction_alert_hours"]
    now = as_utc(now) or utcnow()
    with uow:
        return [_correction_to_dict(r, now, alert_hours) for r in uow.corrections.list_pending()]


def get_correction_request(request_id: int, uow: AbstractUnitOfWork,
                           now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
    alert_hours = config.get_alert_thresholds()["correction_alert_hours"]
    now = as_utc(now) or utcnow()
    with uow:
        request = uow.corrections.get(request_id)
        return _correction_to_dict(request, now, alert_hours) if request else None


def get_correction_statistics(uow: AbstractUnitOfWork, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Returns:
        - total / pending / resolved
        - over_alert_time: pending requests past the SLA
        - average_resolution_hours: mean of created -> resolved for resolved requests
    """
    alert_hours = config.get_alert_thresholds()["correction_alert_hours"]
    now = as_utc(now) or utcnow()
    with uow:
        rows = uow.session.execute(
            text("""
                SELECT state, created_at, resolved_at
                FROM correction_requests
            """).columns(created_at=DateTime(timezone=True), resolved_at=DateTime(timezone=True))
        ).mappings().all()

    pending = [r for r in rows if r["state"] == "pending"]
    resolved = [r for r in rows if r["state"] == "resolved" and r["resolved_at"] is not None]
    over_alert = [
        r for r in pending
        if (now - as_utc(r["created_at"])).total_seconds() >= alert_hours * 3600
    ]
    durations = [
        (as_utc(r["resolved_at"]) - as_utc(r["created_at"])).total_seconds() for r in resolved
    ]

    return {
        "total": len(rows),
        "pending": len(pending),
        "resolved": len(resolved),
        "over_alert_time": len(over_alert),
        "average_resolution_hours": _hours(sum(durations) / len(durations)) if durations else None,
        "alert_hours": alert_hours,
        "queried_at": now.isoformat(),
    }


def get_correction_history(case_code: str, uow: AbstractUnitOfWork,
                           now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    alert_hours = config.get_alert_thresholds()["correction_alert_hours"]
    now = as_utc(now) or utcnow()
    with uow:
        ids = uow.session.execute(
            text("SELECT id FROM correction_requests WHERE case_code = :case_code ORDER BY id"),
            dict(case_code=case_code),
        ).scalars().all()
        return [_correction_to_dict(uow.corrections.get(i), now, alert_hours) for i in ids]


_MATCH_COLUMNS = ("hc", "document_number", "full_name", "service", "code")


def get_verification_history(case_code: str, uow: AbstractUnitOfWork) -> List[Dict[str, Any]]:
    typed = {f"{name}_match": Boolean for name in _MATCH_COLUMNS}
    with uow:
        rows = uow.session.execute(
            text("""
                SELECT id, guard_id, verified_at, verdict, rejection_reason, observations,
                       correction_request_id, hc_match, document_number_match,
                       full_name_match, service_match, code_match
                FROM verification_attempts
                WHERE case_code = :case_code
                ORDER BY id
            """).columns(verified_at=DateTime(timezone=True), **typed),
            dict(case_code=case_code),
        ).mappings().all()

        return [
            {
                "id": row["id"],
                "guard_id": row["guard_id"],
                "verified_at": _iso(row["verified_at"]),
                "verdict": row["verdict"],
                "rejection_reason": row["rejection_reason"],
                "observations": row["observations"],
                "correction_request_id": row["correction_request_id"],
                "matches": {name: bool(row[f"{name}_match"]) for name in _MATCH_COLUMNS},
            }
            for row in rows
        ]


def get_verification_statistics(uow: AbstractUnitOfWork) -> Dict[str, Any]:
    """Approval rate and how often each wristband field was found wrong."""
    with uow:
        row = uow.session.execute(
            text("""
                SELECT COUNT(*) AS total,
                       SUM(CASE WHEN verdict = 'approved' THEN 1 ELSE 0 END) AS approved,
                       SUM(CASE WHEN verdict = 'rejected' THEN 1 ELSE 0 END) AS rejected,
                       SUM(CASE WHEN hc_match THEN 0 ELSE 1 END) AS hc,
                       SUM(CASE WHEN document_number_match THEN 0 ELSE 1 END) AS document_number,
                       SUM(CASE WHEN full_name_match THEN 0 ELSE 1 END) AS full_name,
                       SUM(CASE WHEN service_match THEN 0 ELSE 1 END) AS service,
                       SUM(CASE WHEN code_match THEN 0 ELSE 1 END) AS code
                FROM verification_attempts
            """)
        ).mappings().one()

    total = row["total"] or 0
    approved = row["approved"] or 0
    return {
        "total": total,
        "approved": approved,
        "rejected": row["rejected"] or 0,
        "approval_percentage": round(approved * 100 / total, 2) if total else 0.0,
        "mismatches_by_field": {name: row[name] or 0 for name in _MATCH_COLUMNS},
    }


def get_custody_history(case_code: str, uow: AbstractUnitOfWork) -> List[Dict[str, Any]]:
    with uow:
        rows = uow.session.execute(
            text("""
                SELECT id, from_user_id, to_user_id, from_location, to_location,
                       transferred_at, observations
                FROM custody_transfers
                WHERE case_code = :case_code
                ORDER BY id
            """).columns(transferred_at=DateTime(timezone=True)),
            dict(case_code=case_code),
        ).mappings().all()

        return [
            {
                "id": row["id"],
                "from_user_id": row["from_user_id"],
                "to_user_id": row["to_user_id"],
                "from_location": row["from_location"],
                "to_location": row["to_location"],
                "transferred_at": _iso(row["transferred_at"]),
                "observations": row["observations"],
            }
            for row in rows
        ]


def get_current_custodian(case_code: str, uow: AbstractUnitOfWork) -> Optional[Dict[str, Any]]:
    """Receiver of the last handoff, or the registering nurse before any handoff."""
    with uow:
        case = uow.cases.get(case_code)
        if case is None:
            return None
        last = uow.custody.latest_for_case(case_code)
        return {
            "case_code": case_code,
            "user_id": last.to_user_id if last else case.created_by,
            "location": last.to_location if last else custody.WARD,
            "since": _iso(last.transferred_at if last else case.created_at),
        }
