"""
Alert monitor - periodic jobs that notify staff about overdue work.

Two checks run on their own intervals:
1. Tray permanence: occupied trays past the warning / critical hours
2. Correction SLA: pending correction requests past the alert time
"""

import logging
import time
from datetime import datetime
from typing import Dict, Optional

import config
from mortuary.adapters import orm
from mortuary.domain.model import as_utc, utcnow
from mortuary.domain.trays import AlertLevel
from mortuary.service_layer.unit_of_work import AbstractUnitOfWork, SqlAlchemyUnitOfWork
from shared.domain.identity import Role

logger = logging.getLogger(__name__)

SUPERVISORS = [Role.GUARD_SUPERVISOR.value, Role.MORTUARY_TECHNICIAN.value]


def check_tray_permanence(uow: AbstractUnitOfWork, now: Optional[datetime] = None) -> int:
    """Notify about every occupied tray at or past the warning threshold. Returns the alert count."""
    thresholds = config.get_alert_thresholds()
    now = as_utc(now) or utcnow()
    alerts = []

    with uow:
        for tray in uow.trays.list():
            level = tray.alert_level(now, thresholds["tray_warning_hours"], thresholds["tray_critical_hours"])
            if level == AlertLevel.NONE:
                continue
            hours = round(tray.elapsed(now).total_seconds() / 3600, 1)
            alerts.append((tray.code, tray.case_code, level, hours))

    for tray_code, case_code, level, hours in alerts:
        logger.warning(f"Tray {tray_code} holds case {case_code} for {hours}h ({level.value})")
        uow.notifications.notify(
            f"tray_permanence_{level.value}",
            f"Tray {tray_code} has held case {case_code} for {hours} hours",
            case_code=case_code,
            recipients=SUPERVISORS,
        )
    return len(alerts)


def check_correction_sla(uow: AbstractUnitOfWork, now: Optional[datetime] = None) -> int:
    """Notify responsible nurses of pending corrections past the alert time. Returns the alert count."""
    alert_hours = config.get_alert_thresholds()["correction_alert_hours"]
    now = as_utc(now) or utcnow()
    overdue = []

    with uow:
        for request in uow.corrections.list_pending():
            if request.exceeds_alert_time(now, alert_hours):
                hours = round(request.elapsed(now).total_seconds() / 3600, 1)
                overdue.append((request.id, request.case_code, request.responsible_user_id, hours))

    for request_id, case_code, responsible, hours in overdue:
        logger.warning(f"Correction request {request_id} for case {case_code} pending for {hours}h")
        uow.notifications.notify(
            "correction_overdue",
            f"Correction request {request_id} for case {case_code} pending for {hours} hours",
            case_code=case_code,
            recipients=[responsible, Role.GUARD_SUPERVISOR.value],
        )
    return len(overdue)


def run_once(uow: AbstractUnitOfWork, now: Optional[datetime] = None) -> Dict[str, int]:
    return {
        "tray_alerts": check_tray_permanence(uow, now),
        "correction_alerts": check_correction_sla(uow, now),
    }


def main():
    logging.basicConfig(level=logging.INFO)
    orm.start_mappers()
    intervals = config.get_monitor_intervals()
    logger.info(f"Starting alert monitor with intervals {intervals}")

    next_run = {"tray": 0.0, "correction": 0.0}
    while True:
        current = time.monotonic()
        try:
            if current >= next_run["tray"]:
                next_run["tray"] = current + intervals["tray_seconds"]
                check_tray_permanence(SqlAlchemyUnitOfWork())
            if current >= next_run["correction"]:
                next_run["correction"] = current + intervals["correction_seconds"]
                check_correction_sla(SqlAlchemyUnitOfWork())
        except Exception:
            logger.exception("Alert monitor cycle failed, retrying on next interval")
        time.sleep(max(1.0, min(next_run.values()) - time.monotonic()))


if __name__ == "__main__":
    main()
