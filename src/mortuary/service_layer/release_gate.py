"""
Release gate: aggregates the external holds that can block a release.

The gate is a pure query over the hold sources. It is evaluated afresh on
every release attempt and never cached, so a hold lifted or placed a moment
ago is always taken into account.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from mortuary.adapters.hold_sources import AbstractHoldSource, HoldSourceUnavailable
from mortuary.domain import exceptions
from mortuary.domain.model import Case, CaseState, HoldOrigin

RELEASE_HOLD = "release_hold"


@dataclass
class HoldAssessment:
    holds: List[str] = field(default_factory=list)
    unavailable: List[str] = field(default_factory=list)
    details: dict = field(default_factory=dict)

    @property
    def clear(self) -> bool:
        return not self.holds and not self.unavailable


class ReleaseGateEvaluator:
    def __init__(self, sources: Iterable[AbstractHoldSource], logger: Optional[logging.Logger] = None):
        self.sources = list(sources)
        self.logger = logger or logging.getLogger(__name__)

    def evaluate(self, case: Case) -> HoldAssessment:
        assessment = HoldAssessment()

        if case.state == CaseState.ON_HOLD and case.hold_origin == HoldOrigin.RELEASE:
            assessment.holds.append(RELEASE_HOLD)
            assessment.details[RELEASE_HOLD] = case.hold_reason

        for source in self.sources:
            if not source.applies_to(case):
                continue
            try:
                status = source.check(case)
            except HoldSourceUnavailable as e:
                self.logger.warning(f"Hold source {source.name} unavailable for case {case.code}: {e}")
                assessment.unavailable.append(source.name)
                continue
            if status.active:
                assessment.holds.append(source.name)
                assessment.details[source.name] = status.reason

        self.logger.info(
            f"Release gate for case {case.code}: holds={assessment.holds} unavailable={assessment.unavailable}"
        )
        return assessment

    def ensure_clear(self, case: Case) -> HoldAssessment:
        """
        Raise unless the case can be released right now.

        An unavailable source means release cannot be confirmed safe, so it
        blocks just like an active hold.

        Raises:
            DependencyUnavailable: a hold source could not be consulted
            BlockedByHold: at least one hold is active (reported before unavailability)
        """
        assessment = self.evaluate(case)
        if assessment.holds:
            raise exceptions.BlockedByHold(case.code, assessment.holds)
        if assessment.unavailable:
            raise exceptions.DependencyUnavailable(assessment.unavailable)
        return assessment
