"""
Tests for the rule-based case normaliser.
"""
import pytest

import factories  # noqa: F401  (sets up sys.path + mock mode)

from case_quiz.case_normalizer import SUMMARY_MAX_CHARS, normalize, source_hash


class TestSummary:
    def test_summary_truncated(self):
        text = "x" * (SUMMARY_MAX_CHARS + 500)
        assert len(normalize(text).facts["summary"]) == SUMMARY_MAX_CHARS

    def test_short_text_kept_verbatim(self):
        assert normalize("short case").facts["summary"] == "short case"

    def test_empty_text_is_total(self):
        case = normalize("")
        assert case.facts == {"summary": "", "hints": {}}
        assert case.risk_flags == []

    def test_none_text_is_total(self):
        assert normalize(None).risk_flags == []


class TestRiskFlags:
    @pytest.mark.parametrize("text, flag", [
        ("Driving under the influence of alcohol", "alcohol_case"),
        ("Trunkenheitsfahrt mit 1,3 Promille", "alcohol_case"),
        ("THC detected in the blood sample", "cannabis_case"),
        ("Verstoß gegen das Trennungsvermögen (Cannabis)", "cannabis_case"),
        ("Cocaine found during the traffic stop", "drugs_case"),
        ("8 Punkte in Flensburg", "points_case"),
        ("Penalty points accumulated for speeding", "points_case"),
    ])
    def test_vocabulary(self, text, flag):
        assert flag in normalize(text).risk_flags

    def test_no_match_no_flags(self):
        assert normalize("Parking ticket in a quiet street.").risk_flags == []

    def test_flags_unique_and_ordered(self):
        flags = normalize("Alcohol and alcohol again, plus cannabis, 3 Punkte").risk_flags
        assert flags == ["alcohol_case", "cannabis_case", "points_case"]


class TestHints:
    def test_reference_bac_1_1(self):
        hints = normalize("Blutalkohol 1,1 Promille").facts["hints"]
        assert hints["reference_bac_1_1"] is True
        assert hints["bac_readings"] == [1.1]

    def test_higher_reading_is_not_reference(self):
        hints = normalize("Blood sample 1.12 ‰, breath 1.3 per mille").facts["hints"]
        assert "reference_bac_1_1" not in hints
        assert hints["bac_readings"] == [1.12, 1.3]


class TestSourceHash:
    def test_deterministic_sha256(self):
        h = source_hash("case text")
        assert h == source_hash("case text")
        assert len(h) == 64
        int(h, 16)

    def test_different_text_different_hash(self):
        assert source_hash("a") != source_hash("b")
