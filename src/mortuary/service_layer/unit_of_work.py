# pylint: disable=attribute-defined-outside-init
from __future__ import annotations
import abc
from typing import List
from sqlalchemy import create_engine
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.orm.session import Session


import config
from mortuary.adapters import hold_sources, notifications, repository
from mortuary.domain import exceptions


class AbstractUnitOfWork(abc.ABC):
    cases: repository.AbstractCaseRepository
    trays: repository.AbstractTrayRepository
    corrections: repository.AbstractCorrectionRequestRepository
    verifications: repository.VerificationAttemptRepository
    custody: repository.CustodyTransferRepository
    hold_sources: List[hold_sources.AbstractHoldSource]
    notifications: notifications.AbstractNotifier

    def __enter__(self) -> AbstractUnitOfWork:
        return self

    def __exit__(self, *args):
        self.rollback()

    def commit(self):
        self._commit()

    def collect_new_events(self):
        for repo in (self.cases, self.trays, self.corrections):
            for aggregate in repo.seen:
                while aggregate.events:
                    yield aggregate.events.pop(0)

    @abc.abstractmethod
    def _commit(self):
        raise NotImplementedError

    @abc.abstractmethod
    def rollback(self):
        raise NotImplementedError


# serialization_failure, deadlock_detected
RETRYABLE_PGCODES = {"40001", "40P01"}


def is_concurrency_failure(error: DBAPIError) -> bool:
    """True when the database refused a write because another transaction got there first."""
    if getattr(error.orig, "pgcode", None) in RETRYABLE_PGCODES:
        return True
    return "database is locked" in str(error.orig)


DEFAULT_SESSION_FACTORY = sessionmaker(
    bind=create_engine(
        config.get_postgres_uri(),
        isolation_level="REPEATABLE READ",
    )
)

class SqlAlchemyUnitOfWork(AbstractUnitOfWork):
    def __init__(self, session_factory=DEFAULT_SESSION_FACTORY, hold_sources_impl=None,
                 notifier_impl=None):
        self.session_factory = session_factory
        self.hold_sources_impl = (
            hold_sources_impl if hold_sources_impl is not None else hold_sources.default_hold_sources()
        )
        self.notifier_impl = notifier_impl or notifications.RedisNotifier()

    def __enter__(self):
        self.session = self.session_factory()  # type: Session
        self.cases = repository.SqlAlchemyCaseRepository(self.session)
        self.trays = repository.SqlAlchemyTrayRepository(self.session)
        self.corrections = repository.SqlAlchemyCorrectionRequestRepository(self.session)
        self.verifications = repository.VerificationAttemptRepository(self.session)
        self.custody = repository.CustodyTransferRepository(self.session)
        self.hold_sources = self.hold_sources_impl
        self.notifications = self.notifier_impl
        return super().__enter__()

    def __exit__(self, *args):
        super().__exit__(*args)
        self.session.close()

    def _commit(self):
        try:
            self.session.commit()
        except (StaleDataError, IntegrityError) as e:
            self.session.rollback()
            raise exceptions.ConcurrentUpdate(str(e)) from e
        except DBAPIError as e:
            if not is_concurrency_failure(e):
                raise
            self.session.rollback()
            raise exceptions.ConcurrentUpdate(str(e.orig)) from e

    def rollback(self):
        self.session.rollback()
