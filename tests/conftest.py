# pylint: disable=redefined-outer-name
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, clear_mappers
from sqlalchemy.pool import StaticPool

from mortuary.adapters import orm
from mortuary.adapters.hold_sources import AbstractHoldSource, HoldSourceUnavailable, HoldStatus
from mortuary.adapters.notifications import AbstractNotifier
from mortuary.domain import commands
from mortuary.service_layer import messagebus
from mortuary.service_layer.unit_of_work import SqlAlchemyUnitOfWork
from shared.domain.identity import ActingUser, Role

NURSE = ActingUser("nurse-1", Role.NURSE)
OTHER_NURSE = ActingUser("nurse-2", Role.NURSE)
TECHNICIAN = ActingUser("amb-1", Role.AMBULANCE_TECHNICIAN)
GUARD = ActingUser("guard-1", Role.GUARD)
SUPERVISOR = ActingUser("chief-1", Role.GUARD_SUPERVISOR)
MORTUARY_TECH = ActingUser("tech-1", Role.MORTUARY_TECHNICIAN)

JUAN_PEREZ = dict(hc="HC001", document_number="DNI001", full_name="Juan Perez", service="UCI")


class FakeHoldSource(AbstractHoldSource):
    """Hold source whose answer is set by the test."""

    def __init__(self, name, active=False, reason=None, unavailable=False, legal_only=False):
        self.name = name
        self.active = active
        self.reason = reason
        self.unavailable = unavailable
        self.legal_only = legal_only
        self.checked = []

    def applies_to(self, case):
        return bool(case.is_legal_case) if self.legal_only else True

    def check(self, case):
        self.checked.append(case.code)
        if self.unavailable:
            raise HoldSourceUnavailable(f"{self.name} is down")
        return HoldStatus(active=self.active, reason=self.reason)


class FakeNotifier(AbstractNotifier):
    def __init__(self):
        self.sent = []

    def _send(self, notification):
        self.sent.append(notification)

    def categories(self):
        return [n.category for n in self.sent]


@pytest.fixture
def sqlite_session_factory():
    """Create SQLite in-memory database for fast testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    orm.metadata.create_all(engine)
    orm.start_mappers()

    yield sessionmaker(bind=engine)

    clear_mappers()
    engine.dispose()


@pytest.fixture
def file_session_factory(tmp_path):
    """SQLite file database, so separate sessions really use separate connections."""
    engine = create_engine(f"sqlite:///{tmp_path / 'mortuary.db'}")
    orm.metadata.create_all(engine)
    orm.start_mappers()

    yield sessionmaker(bind=engine)

    clear_mappers()
    engine.dispose()


@pytest.fixture
def hold_sources():
    return {
        "economic_debt": FakeHoldSource("economic_debt"),
        "blood_debt": FakeHoldSource("blood_debt"),
        "legal_authorization": FakeHoldSource("legal_authorization", legal_only=True),
    }


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def make_uow(sqlite_session_factory, hold_sources, notifier):
    def _make():
        return SqlAlchemyUnitOfWork(
            sqlite_session_factory,
            hold_sources_impl=list(hold_sources.values()),
            notifier_impl=notifier,
        )
    return _make


@pytest.fixture
def bus(make_uow):
    """Dispatch one command through the message bus and return its result."""
    def _handle(command):
        return messagebus.handle(command, make_uow())[0]
    return _handle


@pytest.fixture
def case_in_transit(bus):
    """Case SGM-1 registered by NURSE and picked up by TECHNICIAN."""
    bus(commands.RegisterCase(
        acting_user=NURSE, code="SGM-1", document_type="DNI", **JUAN_PEREZ
    ))
    bus(commands.TransferCustody(acting_user=TECHNICIAN, code="SGM-1"))
    return "SGM-1"


@pytest.fixture
def verify(bus):
    def _verify(case_code="SGM-1", **overrides):
        fields = dict(JUAN_PEREZ, code=case_code)
        fields.update(overrides)
        return bus(commands.RegisterVerification(
            acting_user=GUARD,
            case_code=case_code,
            hc=fields["hc"],
            document_number=fields["document_number"],
            full_name=fields["full_name"],
            service=fields["service"],
            wristband_code=fields["code"],
        ))
    return _verify


@pytest.fixture
def case_in_tray(bus, case_in_transit, verify):
    """SGM-1 verified and placed in tray B-01."""
    verify()
    bus(commands.CreateTray(acting_user=MORTUARY_TECH, code="B-01"))
    bus(commands.AssignTray(acting_user=MORTUARY_TECH, tray_code="B-01", case_code="SGM-1"))
    return "SGM-1"


@pytest.fixture
def case_awaiting_release(bus, case_in_tray):
    bus(commands.TransferCustody(acting_user=GUARD, code="SGM-1"))
    return "SGM-1"
