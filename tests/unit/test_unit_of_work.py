"""Database errors raised at commit and how the unit of work reports them."""
import sqlite3

import pytest
from sqlalchemy.exc import OperationalError

from mortuary.domain import exceptions
from mortuary.service_layer.unit_of_work import SqlAlchemyUnitOfWork
from tests.conftest import FakeNotifier


class PgError(Exception):
    """Stands in for a psycopg2 error carrying its SQLSTATE."""

    def __init__(self, message, pgcode):
        super().__init__(message)
        self.pgcode = pgcode


class CommitFailingSession:
    def __init__(self, error):
        self.error = error
        self.rolled_back = False

    def commit(self):
        raise self.error

    def rollback(self):
        self.rolled_back = True

    def close(self):
        pass


def uow_failing_with(orig):
    session = CommitFailingSession(OperationalError("UPDATE trays SET state=%(state)s", {}, orig))
    uow = SqlAlchemyUnitOfWork(lambda: session, hold_sources_impl=[], notifier_impl=FakeNotifier())
    return uow, session


@pytest.mark.parametrize(
    "orig",
    [
        PgError("could not serialize access due to concurrent update", "40001"),
        PgError("deadlock detected", "40P01"),
        sqlite3.OperationalError("database is locked"),
    ],
)
def test_lost_race_becomes_concurrent_update(orig):
    uow, session = uow_failing_with(orig)

    with pytest.raises(exceptions.ConcurrentUpdate):
        with uow:
            uow.commit()

    assert session.rolled_back


def test_other_database_errors_propagate():
    uow, _ = uow_failing_with(sqlite3.OperationalError("no such table: trays"))

    with pytest.raises(OperationalError):
        with uow:
            uow.commit()
