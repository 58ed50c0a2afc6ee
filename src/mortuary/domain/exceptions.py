"""
Exception hierarchy of the mortuary custody core.

Every failure is a MortuaryError subclass so callers (API, alert monitor)
can map the family to a presentation without inspecting messages:

- ValidationError: malformed input, raised before any state change
- NotFound: referenced case, tray or correction request does not exist
- GuardViolation: operation not permitted in the current state
- DependencyUnavailable: an external source could not be consulted (retryable)
"""

from typing import Iterable, List


class MortuaryError(Exception):
    """Base class for all mortuary domain errors."""


class ValidationError(MortuaryError):
    pass


class NotFound(MortuaryError):
    pass


class CaseNotFound(NotFound):
    def __init__(self, case_code: str):
        super().__init__(f"Case {case_code} not found")
        self.case_code = case_code


class TrayNotFound(NotFound):
    def __init__(self, tray_code: str):
        super().__init__(f"Tray {tray_code} not found")
        self.tray_code = tray_code


class CorrectionRequestNotFound(NotFound):
    def __init__(self, request_id):
        super().__init__(f"Correction request {request_id} not found")
        self.request_id = request_id


class GuardViolation(MortuaryError):
    pass


class InvalidTransition(GuardViolation):
    def __init__(self, case_code: str, state, trigger, permitted: Iterable = ()):
        self.case_code = case_code
        self.state = state
        self.trigger = trigger
        self.permitted = sorted(t.value for t in permitted)
        super().__init__(
            f"Case {case_code}: trigger {trigger.value} not permitted in state {state.value} "
            f"(permitted: {', '.join(self.permitted) or 'none'})"
        )


class CaseAlreadyRegistered(GuardViolation):
    pass


class TrayAlreadyExists(GuardViolation):
    pass


class TrayUnavailable(GuardViolation):
    pass


class CaseAlreadyAssigned(GuardViolation):
    pass


class TrayNotOccupied(GuardViolation):
    pass


class CorrectionRequestConflict(GuardViolation):
    pass


class CorrectionRequestAlreadyResolved(GuardViolation):
    pass


class NotResponsibleUser(GuardViolation):
    pass


class InvalidOrExpiredCode(GuardViolation):
    pass


class BlockedByHold(GuardViolation):
    def __init__(self, case_code: str, reasons: List[str]):
        self.case_code = case_code
        self.reasons = list(reasons)
        super().__init__(f"Release of case {case_code} blocked by holds: {', '.join(self.reasons)}")


class DependencyUnavailable(MortuaryError):
    """An external dependency did not answer; the operation may be retried."""

    retryable = True

    def __init__(self, sources: List[str]):
        self.sources = list(sources)
        super().__init__(f"Unavailable dependencies: {', '.join(self.sources)}")


class ConcurrentUpdate(MortuaryError):
    """A concurrent transaction changed the same rows first."""
