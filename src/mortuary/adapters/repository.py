import abc
from typing import List, Optional, Set

from mortuary.domain import corrections, model, trays, verification


class AbstractCaseRepository(abc.ABC):
    def __init__(self):
        self.seen = set()  # type: Set[model.Case]

    def add(self, case: model.Case) -> str:
        self._add(case)
        self.seen.add(case)
        return case.code

    def get(self, code) -> Optional[model.Case]:
        case = self._get(code)
        if case:
            self.seen.add(case)
        return case

    def get_active_by_hc(self, hc) -> Optional[model.Case]:
        """Return the non-released case for a clinical record number, if any."""
        case = self._get_active_by_hc(hc)
        if case:
            self.seen.add(case)
        return case

    def list(self) -> List[model.Case]:
        cases = self._list()
        for case in cases:
            self.seen.add(case)
        return cases

    @abc.abstractmethod
    def _add(self, case: model.Case):
        raise NotImplementedError

    @abc.abstractmethod
    def _get(self, code) -> Optional[model.Case]:
        raise NotImplementedError

    @abc.abstractmethod
    def _get_active_by_hc(self, hc) -> Optional[model.Case]:
        raise NotImplementedError

    @abc.abstractmethod
    def _list(self) -> List[model.Case]:
        raise NotImplementedError

    @abc.abstractmethod
    def next_sequence(self, year: int) -> int:
        raise NotImplementedError


class SqlAlchemyCaseRepository(AbstractCaseRepository):
    def __init__(self, session):
        super().__init__()
        self.session = session

    def _add(self, case):
        self.session.add(case)

    def _get(self, code):
        return self.session.query(model.Case).filter_by(code=code).first()

    def _get_active_by_hc(self, hc):
        return (
            self.session.query(model.Case)
            .filter(model.Case.hc == hc, model.Case.state != model.CaseState.RELEASED)
            .first()
        )

    def _list(self):
        return self.session.query(model.Case).order_by(model.Case.created_at).all()

    def next_sequence(self, year: int) -> int:
        prefix = model.generate_case_code(year, 0)[:-5]
        count = self.session.query(model.Case).filter(model.Case.code.like(f"{prefix}%")).count()
        return count + 1


class AbstractTrayRepository(abc.ABC):
    def __init__(self):
        self.seen = set()  # type: Set[trays.Tray]

    def add(self, tray: trays.Tray) -> str:
        self._add(tray)
        self.seen.add(tray)
        return tray.code

    def get(self, code) -> Optional[trays.Tray]:
        tray = self._get(code)
        if tray:
            self.seen.add(tray)
        return tray

    def get_by_case(self, case_code) -> Optional[trays.Tray]:
        tray = self._get_by_case(case_code)
        if tray:
            self.seen.add(tray)
        return tray

    def list(self) -> List[trays.Tray]:
        found = self._list()
        for tray in found:
            self.seen.add(tray)
        return found

    @abc.abstractmethod
    def _add(self, tray: trays.Tray):
        raise NotImplementedError

    @abc.abstractmethod
    def _get(self, code) -> Optional[trays.Tray]:
        raise NotImplementedError

    @abc.abstractmethod
    def _get_by_case(self, case_code) -> Optional[trays.Tray]:
        raise NotImplementedError

    @abc.abstractmethod
    def _list(self) -> List[trays.Tray]:
        raise NotImplementedError


class SqlAlchemyTrayRepository(AbstractTrayRepository):
    def __init__(self, session):
        super().__init__()
        self.session = session

    def _add(self, tray):
        self.session.add(tray)

    def _get(self, code):
        return self.session.query(trays.Tray).filter_by(code=code).first()

    def _get_by_case(self, case_code):
        return self.session.query(trays.Tray).filter_by(case_code=case_code).first()

    def _list(self):
        return self.session.query(trays.Tray).order_by(trays.Tray.code).all()


class AbstractCorrectionRequestRepository(abc.ABC):
    def __init__(self):
        self.seen = set()  # type: Set[corrections.CorrectionRequest]

    def add(self, request: corrections.CorrectionRequest):
        self._add(request)
        self.seen.add(request)

    def get(self, request_id) -> Optional[corrections.CorrectionRequest]:
        request = self._get(request_id)
        if request:
            self.seen.add(request)
        return request

    def get_pending_for_case(self, case_code) -> Optional[corrections.CorrectionRequest]:
        request = self._get_pending_for_case(case_code)
        if request:
            self.seen.add(request)
        return request

    @abc.abstractmethod
    def _add(self, request: corrections.CorrectionRequest):
        raise NotImplementedError

    @abc.abstractmethod
    def _get(self, request_id) -> Optional[corrections.CorrectionRequest]:
        raise NotImplementedError

    @abc.abstractmethod
    def _get_pending_for_case(self, case_code) -> Optional[corrections.CorrectionRequest]:
        raise NotImplementedError

    @abc.abstractmethod
    def list_pending(self) -> List[corrections.CorrectionRequest]:
        raise NotImplementedError


class SqlAlchemyCorrectionRequestRepository(AbstractCorrectionRequestRepository):
    def __init__(self, session):
        super().__init__()
        self.session = session

    def _add(self, request):
        self.session.add(request)

    def _get(self, request_id):
        return self.session.query(corrections.CorrectionRequest).filter_by(id=request_id).first()

    def _get_pending_for_case(self, case_code):
        return (
            self.session.query(corrections.CorrectionRequest)
            .filter_by(case_code=case_code, state=corrections.CorrectionState.PENDING)
            .first()
        )

    def list_pending(self):
        return (
            self.session.query(corrections.CorrectionRequest)
            .filter_by(state=corrections.CorrectionState.PENDING)
            .order_by(corrections.CorrectionRequest.created_at)
            .all()
        )


class VerificationAttemptRepository:
    """Append-only log; attempts raise no events so nothing is tracked in `seen`."""

    def __init__(self, session):
        self.session = session

    def add(self, attempt: verification.VerificationAttempt):
        self.session.add(attempt)

    def latest_for_case(self, case_code) -> Optional[verification.VerificationAttempt]:
        return (
            self.session.query(verification.VerificationAttempt)
            .filter_by(case_code=case_code)
            .order_by(verification.VerificationAttempt.id.desc())
            .first()
        )


class CustodyTransferRepository:
    def __init__(self, session):
        self.session = session

    def add(self, transfer: model.CustodyTransfer):
        self.session.add(transfer)

    def latest_for_case(self, case_code) -> Optional[model.CustodyTransfer]:
        return (
            self.session.query(model.CustodyTransfer)
            .filter_by(case_code=case_code)
            .order_by(model.CustodyTransfer.id.desc())
            .first()
        )
