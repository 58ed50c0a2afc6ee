import logging
from datetime import datetime
from typing import Any, Dict, Optional

import config
from mortuary.domain import commands, custody, events, exceptions
from mortuary.domain.corrections import CorrectionRequest
from mortuary.domain.model import (
    Case,
    CaseState,
    CaseTrigger,
    HoldOrigin,
    generate_case_code,
    utcnow,
)
from mortuary.domain.trays import Tray, compute_statistics, validate_manual_release
from mortuary.domain.verification import (
    VerificationAttempt,
    VerificationEngine,
    Verdict,
    WristbandReading,
)
from mortuary.service_layer.release_gate import ReleaseGateEvaluator
from mortuary.service_layer.unit_of_work import AbstractUnitOfWork
from shared.domain.identity import Role

logger = logging.getLogger(__name__)

# States a case can only reach after an approved verification
PAST_VERIFICATION = {
    CaseState.VERIFIED,
    CaseState.AWAITING_TRAY_ASSIGNMENT,
    CaseState.IN_TRAY,
    CaseState.AWAITING_RELEASE,
    CaseState.RELEASED,
}

SUPERVISORS = [Role.GUARD_SUPERVISOR.value, Role.MORTUARY_TECHNICIAN.value]


def _require(value: Optional[str], what: str) -> str:
    if value is None or not str(value).strip():
        raise exceptions.ValidationError(f"{what} is required")
    return str(value).strip()


def _load_case(uow: AbstractUnitOfWork, code: str) -> Case:
    case = uow.cases.get(code)
    if case is None:
        raise exceptions.CaseNotFound(code)
    return case


def _load_tray(uow: AbstractUnitOfWork, code: str) -> Tray:
    tray = uow.trays.get(code)
    if tray is None:
        raise exceptions.TrayNotFound(code)
    return tray


def _current_custodian(uow: AbstractUnitOfWork, case: Case) -> str:
    last = uow.custody.latest_for_case(case.code)
    return last.to_user_id if last else case.created_by


def register_case(command: commands.RegisterCase, uow: AbstractUnitOfWork) -> str:
    """
    Open a case at death registration.

    Returns:
        code: The case code, generated as SGM-<year>-<seq> unless supplied

    Raises:
        ValidationError: A required identity field is blank
        CaseAlreadyRegistered: The patient already has an open case, or the code is taken
    """
    for value, what in (
        (command.hc, "Clinical record number"),
        (command.document_type, "Document type"),
        (command.document_number, "Document number"),
        (command.full_name, "Full name"),
        (command.service, "Service"),
    ):
        _require(value, what)

    logger.info(f"Registering case for HC {command.hc} by {command.acting_user}")

    with uow:
        existing = uow.cases.get_active_by_hc(command.hc)
        if existing is not None:
            raise exceptions.CaseAlreadyRegistered(
                f"Patient {command.hc} already has open case {existing.code}"
            )

        now = utcnow()
        code = command.code or generate_case_code(now.year, uow.cases.next_sequence(now.year))
        if uow.cases.get(code) is not None:
            raise exceptions.CaseAlreadyRegistered(f"Case code {code} is already in use")

        case = Case.register(
            code=code,
            hc=command.hc.strip(),
            document_type=command.document_type.strip(),
            document_number=command.document_number.strip(),
            full_name=command.full_name.strip(),
            service=command.service.strip(),
            created_by=command.acting_user.user_id,
            bed_number=command.bed_number,
            is_legal_case=command.is_legal_case,
            now=now,
        )
        uow.cases.add(case)
        try:
            uow.commit()
        except exceptions.ConcurrentUpdate as e:
            raise exceptions.CaseAlreadyRegistered(
                f"Patient {command.hc} got an open case concurrently"
            ) from e

    logger.info(f"Registered case {code}")
    return code


def transfer_custody(command: commands.TransferCustody, uow: AbstractUnitOfWork) -> Dict[str, Any]:
    """
    Record a physical handoff identified by a scanned case code.

    A Registered case is picked up from the ward; an InTray case is handed
    over for release. Re-scanning by the receiver of the last handoff returns
    the current state without logging the handoff twice.

    Raises:
        InvalidOrExpiredCode: Code unknown, or case not expecting a handoff
    """
    receiver = command.acting_user.user_id
    logger.info(f"Custody transfer scan of {command.code} by {command.acting_user}")

    with uow:
        case = uow.cases.get(command.code)
        if case is None:
            raise exceptions.InvalidOrExpiredCode(f"Code {command.code} does not resolve to a case")

        handoff = custody.handoff_for(case.state)
        if handoff is None:
            completed = custody.completed_handoff_for(case.state)
            last = uow.custody.latest_for_case(case.code)
            if (
                completed is not None
                and last is not None
                and last.to_user_id == receiver
                and last.to_location == completed.to_location
            ):
                logger.info(f"Repeated custody scan of {case.code} by {receiver}, already {case.state.value}")
                return {"case_code": case.code, "state": case.state.value, "duplicate": True}
            raise exceptions.InvalidOrExpiredCode(
                f"Case {case.code} is {case.state.value} and not expecting a custody transfer"
            )

        now = utcnow()
        transfer = custody.record_transfer(
            case, handoff, _current_custodian(uow, case), receiver, now, command.observations
        )
        uow.custody.add(transfer)
        case.fire(handoff.trigger, now=now)
        uow.commit()

        result = {"case_code": case.code, "state": case.state.value, "duplicate": False}

    logger.info(f"Custody of {result['case_code']} transferred to {receiver}, now {result['state']}")
    return result


def _verification_result(attempt: VerificationAttempt, case: Case) -> Dict[str, Any]:
    request = attempt.correction_request
    return {
        "case_code": case.code,
        "verdict": attempt.verdict.value,
        "state": case.state.value,
        "matches": {
            "hc": attempt.hc_match,
            "document_number": attempt.document_number_match,
            "full_name": attempt.full_name_match,
            "service": attempt.service_match,
            "code": attempt.code_match,
        },
        "mismatches": [m.to_dict() for m in request.mismatches] if request else [],
        "rejection_reason": attempt.rejection_reason,
        "correction_request_id": request.id if request else None,
    }


def register_verification(command: commands.RegisterVerification, uow: AbstractUnitOfWork) -> Dict[str, Any]:
    """
    Verify the wristband of a case arriving at the mortuary.

    Approval records the handoff to the guard and queues the case for a tray.
    Rejection puts the case on hold and opens a correction request for the
    nurse who registered it.

    Raises:
        CaseNotFound: The case does not exist (no correction request is created)
        CorrectionRequestConflict: A correction request is already pending
        InvalidTransition: The case is not awaiting verification
    """
    guard = command.acting_user.user_id
    reading = WristbandReading(
        hc=command.hc,
        document_number=command.document_number,
        full_name=command.full_name,
        service=command.service,
        code=command.wristband_code,
    )
    logger.info(f"Registering wristband verification of case {command.case_code} by {command.acting_user}")

    with uow:
        case = _load_case(uow, command.case_code)

        if case.state == CaseState.ON_HOLD and case.hold_origin == HoldOrigin.VERIFICATION:
            pending = uow.corrections.get_pending_for_case(case.code)
            if pending is not None:
                raise exceptions.CorrectionRequestConflict(
                    f"Case {case.code} has pending correction request {pending.id}"
                )

        if case.state in PAST_VERIFICATION:
            previous = uow.verifications.latest_for_case(case.code)
            if previous is not None and previous.verdict == Verdict.APPROVED:
                logger.info(f"Case {case.code} already verified, returning previous result")
                return _verification_result(previous, case)

        # read before any change so nothing is flushed ahead of commit
        custodian = _current_custodian(uow, case)

        now = utcnow()
        if case.state == CaseState.IN_TRANSIT:
            case.fire(CaseTrigger.ARRIVE_AT_MORTUARY, now=now)
        if case.state != CaseState.PENDING_VERIFICATION:
            raise exceptions.InvalidTransition(
                case.code, case.state, CaseTrigger.APPROVE_VERIFICATION, case.permitted_triggers()
            )

        result = VerificationEngine(logger).compare(case, reading)
        attempt = VerificationAttempt.record(case.code, guard, reading, result, now, command.observations)
        uow.verifications.add(attempt)

        if result.approved:
            transfer = custody.record_transfer(case, custody.ARRIVAL, custodian, guard, now)
            uow.custody.add(transfer)
            case.fire(CaseTrigger.APPROVE_VERIFICATION, now=now)
            case.fire(CaseTrigger.QUEUE_FOR_TRAY, now=now)
        else:
            case.fire(CaseTrigger.REJECT_VERIFICATION, reason=result.rejection_reason, now=now)
            request = CorrectionRequest.open(
                case_code=case.code,
                requested_by=guard,
                responsible_user_id=case.created_by,
                mismatches=result.mismatches,
                observations=command.observations,
                now=now,
            )
            uow.corrections.add(request)
            attempt.correction_request = request

        try:
            uow.commit()
        except exceptions.ConcurrentUpdate as e:
            raise exceptions.CorrectionRequestConflict(
                f"Case {command.case_code} got a correction request concurrently"
            ) from e

        outcome = _verification_result(attempt, case)

    logger.info(f"Verification of {outcome['case_code']}: {outcome['verdict']}, case now {outcome['state']}")
    return outcome


def resolve_correction_request(command: commands.ResolveCorrectionRequest, uow: AbstractUnitOfWork) -> Dict[str, Any]:
    """Resolve a pending correction request and send the case back to verification."""
    logger.info(f"Resolving correction request {command.request_id} by {command.acting_user}")

    with uow:
        request = uow.corrections.get(command.request_id)
        if request is None:
            raise exceptions.CorrectionRequestNotFound(command.request_id)

        now = utcnow()
        request.resolve(
            command.acting_user.user_id,
            command.description,
            command.wristband_reprinted,
            observations=command.observations,
            now=now,
        )
        case = _load_case(uow, request.case_code)
        if case.state == CaseState.ON_HOLD and case.hold_origin == HoldOrigin.VERIFICATION:
            case.fire(CaseTrigger.RESOLVE_CORRECTION, now=now)
        uow.commit()

        result = {"request_id": request.id, "case_code": case.code, "state": case.state.value}

    logger.info(f"Correction request {result['request_id']} resolved, case {result['case_code']} is {result['state']}")
    return result


def create_tray(command: commands.CreateTray, uow: AbstractUnitOfWork) -> str:
    code = _require(command.code, "Tray code")
    with uow:
        if uow.trays.get(code) is not None:
            raise exceptions.TrayAlreadyExists(f"Tray {code} already exists")
        uow.trays.add(Tray(code=code, notes=command.notes))
        uow.commit()
    logger.info(f"Created tray {code} by {command.acting_user}")
    return code


def assign_tray(command: commands.AssignTray, uow: AbstractUnitOfWork) -> Dict[str, Any]:
    """
    Place a verified case in an available tray.

    Raises:
        TrayUnavailable: Tray not available, or taken by a concurrent assignment
        CaseAlreadyAssigned: Case already occupies another tray
        InvalidTransition: Case is not awaiting a tray
    """
    logger.info(f"Assigning tray {command.tray_code} to case {command.case_code} by {command.acting_user}")

    with uow:
        tray = _load_tray(uow, command.tray_code)
        case = _load_case(uow, command.case_code)

        occupied = uow.trays.get_by_case(case.code)
        if occupied is not None and occupied.code != tray.code:
            raise exceptions.CaseAlreadyAssigned(f"Case {case.code} already occupies tray {occupied.code}")
        if occupied is not None:
            return {"tray_code": tray.code, "case_code": case.code, "state": case.state.value}

        now = utcnow()
        tray.assign(case.code, command.acting_user.user_id, notes=command.notes, now=now)
        case.fire(CaseTrigger.ASSIGN_TRAY, now=now)
        case.tray_code = tray.code

        try:
            uow.commit()
        except exceptions.ConcurrentUpdate as e:
            raise exceptions.TrayUnavailable(
                f"Tray {command.tray_code} was taken by a concurrent assignment"
            ) from e

        result = {"tray_code": tray.code, "case_code": case.code, "state": case.state.value}

    logger.info(f"Tray {result['tray_code']} assigned to case {result['case_code']}")
    return result


def _release_case(uow: AbstractUnitOfWork, case: Case, now: datetime) -> None:
    """Evaluate the release gate afresh and release the case when it is clear."""
    releasable = case.state == CaseState.AWAITING_RELEASE or (
        case.state == CaseState.ON_HOLD and case.hold_origin == HoldOrigin.RELEASE
    )
    if not releasable:
        raise exceptions.InvalidTransition(
            case.code, case.state, CaseTrigger.RELEASE, case.permitted_triggers()
        )
    ReleaseGateEvaluator(uow.hold_sources, logger).ensure_clear(case)
    case.fire(CaseTrigger.RELEASE, now=now)


def attempt_release(command: commands.AttemptRelease, uow: AbstractUnitOfWork) -> Dict[str, Any]:
    """
    Release a case whose outbound handover is done, freeing its tray.

    Raises:
        BlockedByHold: At least one hold is active; the case stays AwaitingRelease
        DependencyUnavailable: A hold source could not be consulted (fail closed)
    """
    logger.info(f"Release attempt for case {command.case_code} by {command.acting_user}")

    with uow:
        case = _load_case(uow, command.case_code)
        if case.state == CaseState.RELEASED:
            return {"case_code": case.code, "state": case.state.value, "tray_code": None}

        now = utcnow()
        tray = uow.trays.get_by_case(case.code)
        _release_case(uow, case, now)
        if tray is not None:
            tray.release(command.acting_user.user_id, now=now)
        uow.commit()

        result = {
            "case_code": case.code,
            "state": case.state.value,
            "tray_code": tray.code if tray is not None else None,
        }

    logger.info(f"Case {result['case_code']} released")
    return result


def release_tray(command: commands.ReleaseTray, uow: AbstractUnitOfWork) -> Dict[str, Any]:
    """Normal tray release; the occupant goes through the release gate."""
    logger.info(f"Releasing tray {command.tray_code} by {command.acting_user}")

    with uow:
        tray = _load_tray(uow, command.tray_code)
        if tray.case_code is None:
            raise exceptions.TrayNotOccupied(f"Tray {tray.code} is {tray.state.value}, nothing to release")
        case = _load_case(uow, tray.case_code)

        now = utcnow()
        _release_case(uow, case, now)
        tray.release(command.acting_user.user_id, notes=command.notes, now=now)
        uow.commit()

        result = {"tray_code": tray.code, "case_code": case.code, "state": case.state.value}

    logger.info(f"Tray {result['tray_code']} released, case {result['case_code']} released")
    return result


def manual_release_tray(command: commands.ManualReleaseTray, uow: AbstractUnitOfWork) -> Dict[str, Any]:
    """
    Override release of a tray without the release gate.

    The justification is validated before anything is loaded so an invalid
    request never touches the tray.
    """
    validate_manual_release(command.reason, command.observations)

    with uow:
        tray = _load_tray(uow, command.tray_code)
        if tray.case_code is None:
            raise exceptions.TrayNotOccupied(f"Tray {tray.code} is {tray.state.value}, nothing to release")
        case = _load_case(uow, tray.case_code)

        now = utcnow()
        case.fire(CaseTrigger.MANUAL_RELEASE, reason=command.reason.strip(), now=now)
        tray.manual_release(command.reason, command.observations, command.acting_user.user_id, now=now)
        uow.commit()

        result = {"tray_code": tray.code, "case_code": case.code, "state": case.state.value}

    logger.warning(
        f"MANUAL RELEASE of tray {result['tray_code']} (case {result['case_code']}) by "
        f"{command.acting_user}: {command.reason.strip()}"
    )
    return result


def _change_tray_status(tray_code: str, uow: AbstractUnitOfWork, change) -> Dict[str, Any]:
    with uow:
        tray = _load_tray(uow, tray_code)
        change(tray)
        uow.commit()
        return {"tray_code": tray.code, "state": tray.state.value}


def start_tray_maintenance(command: commands.StartTrayMaintenance, uow: AbstractUnitOfWork) -> Dict[str, Any]:
    logger.info(f"Tray {command.tray_code} into maintenance by {command.acting_user}")
    return _change_tray_status(
        command.tray_code, uow,
        lambda tray: tray.start_maintenance(command.observations, command.acting_user.user_id),
    )


def finish_tray_maintenance(command: commands.FinishTrayMaintenance, uow: AbstractUnitOfWork) -> Dict[str, Any]:
    logger.info(f"Tray {command.tray_code} out of maintenance by {command.acting_user}")
    return _change_tray_status(
        command.tray_code, uow,
        lambda tray: tray.finish_maintenance(command.acting_user.user_id, command.observations),
    )


def mark_tray_out_of_service(command: commands.MarkTrayOutOfService, uow: AbstractUnitOfWork) -> Dict[str, Any]:
    logger.info(f"Tray {command.tray_code} out of service by {command.acting_user}")
    return _change_tray_status(
        command.tray_code, uow,
        lambda tray: tray.mark_out_of_service(command.reason, command.acting_user.user_id),
    )


def restore_tray(command: commands.RestoreTray, uow: AbstractUnitOfWork) -> Dict[str, Any]:
    logger.info(f"Tray {command.tray_code} back in service by {command.acting_user}")
    return _change_tray_status(
        command.tray_code, uow,
        lambda tray: tray.restore(command.acting_user.user_id, command.observations),
    )


def place_release_hold(command: commands.PlaceReleaseHold, uow: AbstractUnitOfWork) -> Dict[str, Any]:
    reason = _require(command.reason, "Hold reason")
    logger.info(f"Placing release hold on case {command.case_code} by {command.acting_user}: {reason}")
    with uow:
        case = _load_case(uow, command.case_code)
        case.fire(CaseTrigger.PLACE_RELEASE_HOLD, reason=reason)
        uow.commit()
        return {"case_code": case.code, "state": case.state.value, "hold_reason": case.hold_reason}


def lift_release_hold(command: commands.LiftReleaseHold, uow: AbstractUnitOfWork) -> Dict[str, Any]:
    logger.info(f"Lifting release hold on case {command.case_code} by {command.acting_user}")
    with uow:
        case = _load_case(uow, command.case_code)
        case.fire(CaseTrigger.LIFT_RELEASE_HOLD)
        uow.commit()
        return {"case_code": case.code, "state": case.state.value}


# Event handlers


def publish_event(event, uow: AbstractUnitOfWork):
    """
    Publish a domain event on the notification channel as an audit feed.

    Following Cosmic Python pattern: external failures are logged by the
    notifier and never break the flow.
    """
    case_code = getattr(event, "case_code", None)
    uow.notifications.notify(type(event).__name__, str(event), case_code=case_code)


def notify_responsible_nurse(event: events.CorrectionRequestCreated, uow: AbstractUnitOfWork):
    logger.info(f"Notifying {event.responsible_user_id} of correction request for case {event.case_code}")
    uow.notifications.notify(
        "correction_request",
        f"Wristband of case {event.case_code} needs correction: {', '.join(event.fields)}",
        case_code=event.case_code,
        recipients=[event.responsible_user_id],
    )


def notify_guards_of_resolution(event: events.CorrectionRequestResolved, uow: AbstractUnitOfWork):
    uow.notifications.notify(
        "correction_resolved",
        f"Correction of case {event.case_code} resolved by {event.resolved_by}, ready for re-verification",
        case_code=event.case_code,
        recipients=[Role.GUARD.value],
    )


def notify_supervisors_of_manual_release(event: events.TrayManuallyReleased, uow: AbstractUnitOfWork):
    uow.notifications.notify(
        "manual_release",
        f"Tray {event.tray_code} manually released by {event.released_by}: {event.reason}",
        case_code=event.case_code,
        recipients=SUPERVISORS,
    )


def check_occupancy_threshold(event: events.TrayAssigned, uow: AbstractUnitOfWork):
    """Warn supervisors when occupancy goes above the configured percentage."""
    thresholds = config.get_alert_thresholds()
    with uow:
        stats = compute_statistics(
            uow.trays.list(),
            utcnow(),
            thresholds["tray_warning_hours"],
            thresholds["tray_critical_hours"],
        )

    if stats.occupancy_percentage > thresholds["occupancy_alert_percentage"]:
        logger.warning(f"Mortuary occupancy at {stats.occupancy_percentage}% after assigning tray {event.tray_code}")
        uow.notifications.notify(
            "occupancy",
            f"Mortuary occupancy at {stats.occupancy_percentage}% "
            f"({stats.occupied}/{stats.total} trays occupied)",
            recipients=SUPERVISORS,
        )
