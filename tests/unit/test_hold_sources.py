"""Unit tests for the HTTP hold source clients."""

from datetime import datetime, timezone
from unittest.mock import Mock, patch

import pytest
import requests

from mortuary.adapters import hold_sources
from mortuary.adapters.hold_sources import (
    HTTPHoldSource,
    HoldSourceUnavailable,
    LegalAuthorizationHoldSource,
    UnconfiguredHoldSource,
)
from mortuary.domain.model import Case


def make_case(is_legal_case=False):
    return Case(
        code="SGM-1", hc="HC001", document_type="DNI", document_number="DNI001",
        full_name="Juan Perez", service="UCI", created_by="nurse-1",
        created_at=datetime(2024, 1, 15, 8, 0, tzinfo=timezone.utc),
        is_legal_case=is_legal_case,
    )


def response(status_code=200, payload=None):
    mock_response = Mock()
    mock_response.status_code = status_code
    mock_response.json.return_value = payload
    if status_code >= 400:
        mock_response.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status_code}")
    return mock_response


class TestHTTPHoldSource:
    @patch("mortuary.adapters.hold_sources.requests.get")
    def test_active_hold(self, mock_get):
        mock_get.return_value = response(payload={"active": True, "reason": "Unpaid invoice"})
        source = HTTPHoldSource("economic_debt", "http://billing:8080/", timeout=3)

        status = source.check(make_case())

        assert status.active is True
        assert status.reason == "Unpaid invoice"
        mock_get.assert_called_once_with("http://billing:8080/api/v1/holds/SGM-1", timeout=3)

    @patch("mortuary.adapters.hold_sources.requests.get")
    def test_no_hold(self, mock_get):
        mock_get.return_value = response(payload={"active": False})

        status = HTTPHoldSource("blood_debt", "http://bank").check(make_case())

        assert status.active is False

    @patch("mortuary.adapters.hold_sources.requests.get")
    def test_unknown_case_means_no_hold(self, mock_get):
        mock_get.return_value = response(status_code=404)

        status = HTTPHoldSource("blood_debt", "http://bank").check(make_case())

        assert status.active is False

    @patch("mortuary.adapters.hold_sources.requests.get")
    def test_timeout_is_unavailable(self, mock_get):
        mock_get.side_effect = requests.exceptions.Timeout("read timed out")

        with pytest.raises(HoldSourceUnavailable):
            HTTPHoldSource("economic_debt", "http://billing").check(make_case())

    @patch("mortuary.adapters.hold_sources.requests.get")
    def test_server_error_is_unavailable(self, mock_get):
        mock_get.return_value = response(status_code=500)

        with pytest.raises(HoldSourceUnavailable):
            HTTPHoldSource("economic_debt", "http://billing").check(make_case())

    @patch("mortuary.adapters.hold_sources.requests.get")
    def test_invalid_body_is_unavailable(self, mock_get):
        mock_response = response()
        mock_response.json.side_effect = ValueError("not json")
        mock_get.return_value = mock_response

        with pytest.raises(HoldSourceUnavailable):
            HTTPHoldSource("economic_debt", "http://billing").check(make_case())


def test_legal_authorization_applies_only_to_legal_cases():
    source = LegalAuthorizationHoldSource("legal_authorization", "http://legal")

    assert source.applies_to(make_case(is_legal_case=True)) is True
    assert source.applies_to(make_case()) is False


def test_unconfigured_source_never_clears():
    with pytest.raises(HoldSourceUnavailable):
        UnconfiguredHoldSource("blood_debt").check(make_case())


def test_default_hold_sources_from_environment(monkeypatch):
    monkeypatch.setenv("ECONOMIC_DEBT_URL", "http://billing")
    monkeypatch.setenv("BLOOD_DEBT_URL", "http://bank")
    monkeypatch.delenv("LEGAL_HOLD_URL", raising=False)

    sources = hold_sources.default_hold_sources()

    assert [s.name for s in sources] == ["economic_debt", "blood_debt", "legal_authorization"]
    assert isinstance(sources[0], HTTPHoldSource)
    assert isinstance(sources[2], UnconfiguredHoldSource)
    assert sources[2].applies_to(make_case()) is False
    assert sources[2].applies_to(make_case(is_legal_case=True)) is True
