"""
Integration tests for views - following Cosmic Python pattern.

Tests verify that:
1. Commands change state through the message bus
2. Views query the tables directly and compute time-dependent fields from `now`
"""
from datetime import timedelta

from mortuary import views
from mortuary.domain import commands
from mortuary.domain.model import utcnow
from tests.conftest import GUARD, MORTUARY_TECH, NURSE


def test_case_view_reports_permitted_triggers(make_uow, case_in_tray):
    case = views.get_case("SGM-1", make_uow())

    assert case["state"] == "in_tray"
    assert case["tray_code"] == "B-01"
    assert case["permitted_triggers"] == ["hand_over_for_release", "manual_release"]


def test_case_view_of_unknown_case(make_uow):
    assert views.get_case("SGM-404", make_uow()) is None


def test_occupancy_statistics_with_alerts(bus, make_uow, case_in_tray):
    bus(commands.CreateTray(acting_user=MORTUARY_TECH, code="B-02"))
    bus(commands.CreateTray(acting_user=MORTUARY_TECH, code="B-03"))
    bus(commands.StartTrayMaintenance(acting_user=MORTUARY_TECH, tray_code="B-03", observations="Seal"))

    now = utcnow()
    stats = views.get_occupancy_statistics(make_uow(), now=now)
    later = views.get_occupancy_statistics(make_uow(), now=now + timedelta(hours=49))

    assert stats["total"] == 3
    assert stats["occupied"] == 1
    assert stats["available"] == 1
    assert stats["maintenance"] == 1
    assert stats["occupancy_percentage"] == 33.33
    assert stats["over_warning_hours"] == 0
    assert later["over_warning_hours"] == 1
    assert later["over_critical_hours"] == 1


def test_tray_board_elapsed_time(make_uow, case_in_tray):
    board = views.get_tray_board(make_uow(), now=utcnow() + timedelta(hours=30))

    assert board[0]["alert_level"] == "warning"
    assert board[0]["elapsed_hours"] >= 30


def test_tray_history_keeps_every_occupancy(bus, make_uow, case_awaiting_release):
    bus(commands.AttemptRelease(acting_user=GUARD, case_code="SGM-1"))

    history = views.get_tray_history("B-01", make_uow())

    assert len(history) == 1
    assert history[0]["assigned_by"] == MORTUARY_TECH.user_id
    assert history[0]["released_by"] == GUARD.user_id
    assert history[0]["released_at"] is not None


def test_correction_views(bus, make_uow, case_in_transit, verify):
    request_id = verify(full_name="Juan Perz")["correction_request_id"]
    now = utcnow()

    request = views.get_correction_request(request_id, make_uow(), now=now + timedelta(hours=3))
    assert request["exceeds_alert_time"] is True
    assert request["mismatches"] == [{"field": "full_name", "expected": "Juan Perez", "observed": "Juan Perz"}]

    stats = views.get_correction_statistics(make_uow(), now=now + timedelta(hours=1))
    assert stats["pending"] == 1
    assert stats["over_alert_time"] == 0
    assert stats["average_resolution_hours"] is None

    bus(commands.ResolveCorrectionRequest(
        acting_user=NURSE, request_id=request_id, description="Reprinted", wristband_reprinted=True,
    ))
    stats = views.get_correction_statistics(make_uow())
    assert stats["resolved"] == 1
    assert stats["average_resolution_hours"] is not None
    assert views.get_pending_corrections(make_uow()) == []


def test_verification_views(make_uow, case_in_transit, verify):
    verify(full_name="Juan Perz", service="UCIN")

    history = views.get_verification_history("SGM-1", make_uow())
    stats = views.get_verification_statistics(make_uow())

    assert history[0]["verdict"] == "rejected"
    assert history[0]["matches"]["full_name"] is False
    assert history[0]["matches"]["hc"] is True
    assert history[0]["correction_request_id"] is not None
    assert stats["total"] == 1
    assert stats["rejected"] == 1
    assert stats["approval_percentage"] == 0.0
    assert stats["mismatches_by_field"]["full_name"] == 1
    assert stats["mismatches_by_field"]["service"] == 1
    assert stats["mismatches_by_field"]["hc"] == 0


def test_current_custodian_before_any_handoff(bus, make_uow):
    bus(commands.RegisterCase(
        acting_user=NURSE, code="SGM-7", hc="HC007", document_type="DNI",
        document_number="D7", full_name="Luis Soto", service="UCI",
    ))

    custodian = views.get_current_custodian("SGM-7", make_uow())

    assert custodian["user_id"] == NURSE.user_id
    assert custodian["location"] == "ward"
