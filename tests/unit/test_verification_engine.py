"""Unit tests for the wristband verification engine."""
import logging
from datetime import datetime, timezone
from unittest.mock import Mock

from mortuary.domain.model import Case
from mortuary.domain.verification import (
    FieldMismatch,
    VerificationAttempt,
    VerificationEngine,
    Verdict,
    WristbandReading,
    normalize,
)


def stored_case():
    return Case(
        code="SGM-1",
        hc="HC001",
        document_type="DNI",
        document_number="DNI001",
        full_name="Juan Perez",
        service="UCI",
        created_by="nurse-1",
        created_at=datetime(2024, 1, 15, 8, 0, tzinfo=timezone.utc),
    )


def reading(**overrides):
    fields = dict(hc="HC001", document_number="DNI001", full_name="Juan Perez", service="UCI", code="SGM-1")
    fields.update(overrides)
    return WristbandReading(**fields)


class TestNormalize:
    def test_ignores_case(self):
        assert normalize("Juan PEREZ") == normalize("juan perez")

    def test_trims_outer_whitespace(self):
        assert normalize("  Juan Perez ") == "juan perez"

    def test_keeps_inner_spacing(self):
        assert normalize("Juan    Perez") != normalize("Juan Perez")

    def test_none_is_empty(self):
        assert normalize(None) == ""


class TestVerificationEngine:
    def test_exact_match_is_approved(self):
        result = VerificationEngine().compare(stored_case(), reading())

        assert result.verdict == Verdict.APPROVED
        assert result.approved
        assert result.mismatches == []
        assert all(result.matches.values())
        assert result.rejection_reason is None

    def test_case_and_outer_spacing_differences_still_match(self):
        result = VerificationEngine().compare(stored_case(), reading(full_name="  JUAN perez ", service="uci"))

        assert result.approved

    def test_extra_inner_spacing_is_rejected(self):
        result = VerificationEngine().compare(stored_case(), reading(full_name="Juan    Perez"))

        assert result.verdict == Verdict.REJECTED
        assert [m.field for m in result.mismatches] == ["full_name"]

    def test_name_typo_is_rejected_with_single_field_diff(self):
        result = VerificationEngine().compare(stored_case(), reading(full_name="Juan Perz"))

        assert result.verdict == Verdict.REJECTED
        assert result.mismatches == [FieldMismatch(field="full_name", expected="Juan Perez", observed="Juan Perz")]
        assert result.matches["full_name"] is False
        assert result.matches["hc"] is True
        assert "full_name" in result.rejection_reason

    def test_several_mismatches_are_all_reported(self):
        result = VerificationEngine().compare(stored_case(), reading(hc="HC999", code="SGM-2"))

        assert [m.field for m in result.mismatches] == ["hc", "code"]

    def test_engine_does_not_touch_case(self):
        case = stored_case()

        VerificationEngine().compare(case, reading(full_name="Someone Else"))

        assert case.state.value == "registered"
        assert case.events == []

    def test_uses_injected_logger(self):
        logger = Mock(spec=logging.Logger)

        VerificationEngine(logger=logger).compare(stored_case(), reading(service="EMERGENCIA"))

        logger.info.assert_called_once()
        assert "rejected" in logger.info.call_args[0][0]


def test_attempt_record_copies_readings_and_per_field_results():
    result = VerificationEngine().compare(stored_case(), reading(document_number="DNI002"))
    now = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)

    attempt = VerificationAttempt.record("SGM-1", "guard-1", reading(document_number="DNI002"), result, now)

    assert attempt.observed_document_number == "DNI002"
    assert attempt.document_number_match is False
    assert attempt.hc_match is True
    assert attempt.verdict == Verdict.REJECTED
    assert attempt.rejection_reason == "Wristband mismatch in: document_number"


def test_field_mismatch_dict_round_trip():
    mismatch = FieldMismatch(field="service", expected="UCI", observed="UCIN")

    assert FieldMismatch.from_dict(mismatch.to_dict()) == mismatch
