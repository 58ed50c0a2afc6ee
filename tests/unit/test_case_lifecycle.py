"""Unit tests for the case lifecycle state machine"""
from datetime import datetime, timezone

import pytest

from mortuary.domain import exceptions
from mortuary.domain.events import CaseRegistered, CaseStateChanged
from mortuary.domain.model import (
    Case,
    CaseState,
    CaseTrigger,
    HoldOrigin,
    generate_case_code,
)


def make_case(state=CaseState.REGISTERED, **kwargs):
    case = Case.register(
        code="SGM-2024-00001",
        hc="HC001",
        document_type="DNI",
        document_number="DNI001",
        full_name="Juan Perez",
        service="UCI",
        created_by="nurse-1",
        now=datetime(2024, 1, 15, 8, 0, tzinfo=timezone.utc),
    )
    case.state = state
    for key, value in kwargs.items():
        setattr(case, key, value)
    case.events.clear()
    return case


def test_register_creates_case_in_registered_state_with_event():
    case = Case.register(
        code="SGM-2024-00001", hc="HC001", document_type="DNI", document_number="DNI001",
        full_name="Juan Perez", service="UCI", created_by="nurse-1",
    )

    assert case.state == CaseState.REGISTERED
    assert case.tray_code is None
    assert len(case.events) == 1
    assert isinstance(case.events[0], CaseRegistered)


def test_generate_case_code_format():
    assert generate_case_code(2024, 7) == "SGM-2024-00007"
    assert generate_case_code(2025, 12345) == "SGM-2025-12345"


def test_happy_path_reaches_released():
    case = make_case()
    for trigger in (
        CaseTrigger.ACCEPT_CUSTODY,
        CaseTrigger.ARRIVE_AT_MORTUARY,
        CaseTrigger.APPROVE_VERIFICATION,
        CaseTrigger.QUEUE_FOR_TRAY,
        CaseTrigger.ASSIGN_TRAY,
        CaseTrigger.HAND_OVER_FOR_RELEASE,
        CaseTrigger.RELEASE,
    ):
        case.fire(trigger)

    assert case.state == CaseState.RELEASED
    assert case.is_terminal
    assert [e.to_state for e in case.events] == [
        "in_transit", "pending_verification", "verified", "awaiting_tray_assignment",
        "in_tray", "awaiting_release", "released",
    ]


def test_fire_records_state_changed_event():
    case = make_case()
    now = datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)

    case.fire(CaseTrigger.ACCEPT_CUSTODY, now=now)

    event = case.events[0]
    assert isinstance(event, CaseStateChanged)
    assert event.from_state == "registered"
    assert event.to_state == "in_transit"
    assert event.trigger == "accept_custody"
    assert event.changed_at == now
    assert case.updated_at == now


def test_invalid_transition_lists_permitted_triggers():
    case = make_case()

    with pytest.raises(exceptions.InvalidTransition) as exc_info:
        case.fire(CaseTrigger.ASSIGN_TRAY)

    assert exc_info.value.permitted == ["accept_custody"]
    assert case.state == CaseState.REGISTERED
    assert case.events == []


def test_repeating_a_completed_trigger_is_a_no_op():
    case = make_case(CaseState.IN_TRANSIT)

    assert case.fire(CaseTrigger.ACCEPT_CUSTODY) == CaseState.IN_TRANSIT
    assert case.events == []


def test_rejection_puts_case_on_verification_hold():
    case = make_case(CaseState.PENDING_VERIFICATION)

    case.fire(CaseTrigger.REJECT_VERIFICATION, reason="Wristband mismatch in: full_name")

    assert case.state == CaseState.ON_HOLD
    assert case.hold_origin == HoldOrigin.VERIFICATION
    assert case.hold_reason == "Wristband mismatch in: full_name"


def test_resolving_correction_returns_to_pending_verification_and_clears_hold():
    case = make_case(CaseState.ON_HOLD, hold_origin=HoldOrigin.VERIFICATION, hold_reason="x")

    case.fire(CaseTrigger.RESOLVE_CORRECTION)

    assert case.state == CaseState.PENDING_VERIFICATION
    assert case.hold_origin is None
    assert case.hold_reason is None


def test_release_hold_cannot_be_lifted_by_correction_resolution():
    case = make_case(CaseState.ON_HOLD, hold_origin=HoldOrigin.RELEASE, hold_reason="pending autopsy")

    with pytest.raises(exceptions.InvalidTransition) as exc_info:
        case.fire(CaseTrigger.RESOLVE_CORRECTION)

    assert set(exc_info.value.permitted) == {"lift_release_hold", "manual_release"}


def test_verification_hold_cannot_be_lifted_as_release_hold():
    case = make_case(CaseState.ON_HOLD, hold_origin=HoldOrigin.VERIFICATION)

    with pytest.raises(exceptions.InvalidTransition):
        case.fire(CaseTrigger.LIFT_RELEASE_HOLD)


def test_release_hold_round_trip_keeps_tray():
    case = make_case(CaseState.AWAITING_RELEASE, tray_code="B-01")

    case.fire(CaseTrigger.PLACE_RELEASE_HOLD, reason="family dispute")
    assert case.state == CaseState.ON_HOLD
    assert case.tray_code == "B-01"

    case.fire(CaseTrigger.LIFT_RELEASE_HOLD)
    assert case.state == CaseState.AWAITING_RELEASE
    assert case.tray_code == "B-01"


def test_placing_release_hold_on_verification_hold_is_rejected():
    case = make_case(CaseState.ON_HOLD, hold_origin=HoldOrigin.VERIFICATION)

    with pytest.raises(exceptions.InvalidTransition):
        case.fire(CaseTrigger.PLACE_RELEASE_HOLD, reason="x")


def test_manual_release_from_tray_clears_tray_code():
    case = make_case(CaseState.IN_TRAY, tray_code="B-01")

    case.fire(CaseTrigger.MANUAL_RELEASE, reason="equipment failure")

    assert case.state == CaseState.RELEASED
    assert case.tray_code is None


def test_released_case_accepts_no_other_trigger():
    case = make_case(CaseState.RELEASED)

    assert case.permitted_triggers() == []
    with pytest.raises(exceptions.InvalidTransition):
        case.fire(CaseTrigger.ASSIGN_TRAY)
