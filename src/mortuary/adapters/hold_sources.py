"""Hold Source Clients - Adapters for the external systems that can block a release."""

import abc
import logging
from dataclasses import dataclass
from typing import List, Optional

import requests

import config
from mortuary.domain.model import Case

module_logger = logging.getLogger(__name__)

ECONOMIC_DEBT = "economic_debt"
BLOOD_DEBT = "blood_debt"
LEGAL_AUTHORIZATION = "legal_authorization"


@dataclass(frozen=True)
class HoldStatus:
    active: bool
    reason: Optional[str] = None


class HoldSourceUnavailable(Exception):
    """Exception raised when a hold source cannot be consulted."""
    pass


class AbstractHoldSource(abc.ABC):
    """Abstract base class for hold source implementations."""

    name: str

    def applies_to(self, case: Case) -> bool:
        return True

    @abc.abstractmethod
    def check(self, case: Case) -> HoldStatus:
        """
        Ask the source whether it currently blocks the release of a case.

        Raises:
            HoldSourceUnavailable: If the source cannot give an answer
        """
        raise NotImplementedError


class HTTPHoldSource(AbstractHoldSource):
    """HTTP-based client for a hold source service."""

    def __init__(self, name: str, base_url: str, timeout: float = 5,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize hold source client.

        Args:
            name: Hold reason reported when the source blocks a release
            base_url: Base URL of the hold source service
            timeout: Request timeout in seconds
            logger: Logger to report to; defaults to the module logger
        """
        self.name = name
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.logger = logger or module_logger

    def check(self, case: Case) -> HoldStatus:
        url = f"{self.base_url}/api/v1/holds/{case.code}"
        self.logger.info(f"Checking {self.name} hold for case {case.code} at {url}")

        try:
            response = requests.get(url, timeout=self.timeout)
            if response.status_code == 404:
                # the source knows nothing about the case, so it holds nothing
                return HoldStatus(active=False)
            response.raise_for_status()
            payload = response.json()
            return HoldStatus(active=bool(payload.get("active")), reason=payload.get("reason"))

        except requests.exceptions.RequestException as e:
            self.logger.error(f"{self.name} hold source unavailable for case {case.code}: {e}")
            raise HoldSourceUnavailable(f"{self.name}: {e}") from e

        except ValueError as e:
            self.logger.error(f"{self.name} hold source returned an invalid body for case {case.code}: {e}")
            raise HoldSourceUnavailable(f"{self.name}: invalid response") from e


class LegalAuthorizationHoldSource(HTTPHoldSource):
    """Only legal cases need an authorization before release."""

    def applies_to(self, case: Case) -> bool:
        return bool(case.is_legal_case)


class UnconfiguredHoldSource(AbstractHoldSource):
    """Stands in for a source without a base URL; it can never clear a release."""

    def __init__(self, name: str, legal_only: bool = False):
        self.name = name
        self.legal_only = legal_only

    def applies_to(self, case: Case) -> bool:
        return bool(case.is_legal_case) if self.legal_only else True

    def check(self, case: Case) -> HoldStatus:
        raise HoldSourceUnavailable(f"{self.name}: no base URL configured")


def default_hold_sources(logger: Optional[logging.Logger] = None) -> List[AbstractHoldSource]:
    """Build one hold source per kind; a kind without a base URL blocks the releases it applies to."""
    settings = config.get_hold_source_config()
    sources = []  # type: List[AbstractHoldSource]
    for name, cls in (
        (ECONOMIC_DEBT, HTTPHoldSource),
        (BLOOD_DEBT, HTTPHoldSource),
        (LEGAL_AUTHORIZATION, LegalAuthorizationHoldSource),
    ):
        if settings[name]:
            sources.append(cls(name, settings[name], timeout=settings["timeout"], logger=logger))
        else:
            (logger or module_logger).warning(
                f"No URL configured for hold source {name}, releases it applies to stay blocked"
            )
            sources.append(UnconfiguredHoldSource(name, legal_only=name == LEGAL_AUTHORIZATION))
    return sources
