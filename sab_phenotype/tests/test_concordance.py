"""Tests for diagnosis-code concordance."""
import pandas as pd
import pytest
from sab_phenotype.processing.concordance import (
    annotate_diagnosis_codes,
    build_concordance_report,
    code_labelled_encounters,
)

REFERENCE = frozenset({("A410", 10), ("B956", 10)})


@pytest.fixture
def diagnosis_codes():
    """Diagnosis codes for three encounters."""
    return pd.DataFrame({
        "subject_id": [1, 1, 2, 3],
        "hadm_id": [10, 10, 20, 30],
        "icd_code": ["A41.0", "I10", "B956", "A410"],
        "icd_version": [10, 10, 9, 10],
    })


class TestCodeLabelledEncounters:
    """Tests for reference code matching."""

    def test_matches_code_and_version(self, diagnosis_codes):
        """Both code and version must match."""
        result = code_labelled_encounters(diagnosis_codes, REFERENCE)
        assert sorted(result["hadm_id"]) == [10, 30]

    def test_distinct_encounters(self):
        """Repeated codes give one row per encounter."""
        codes = pd.DataFrame({
            "subject_id": [1, 1],
            "hadm_id": [10, 10],
            "icd_code": ["A410", "B956"],
            "icd_version": [10, 10],
        })
        assert len(code_labelled_encounters(codes, REFERENCE)) == 1


class TestAnnotateDiagnosisCodes:
    """Tests for episode annotation."""

    def test_adds_flag(self, diagnosis_codes):
        """Episodes get a boolean flag and keep their row count."""
        episodes = pd.DataFrame({"subject_id": [1, 2, 4], "hadm_id": [10, 20, 40]})
        result = annotate_diagnosis_codes(episodes, diagnosis_codes, REFERENCE)
        assert result["has_relevant_diagnosis_code"].tolist() == [True, False, False]
        assert result["has_relevant_diagnosis_code"].dtype == bool


class TestConcordanceReport:
    """Tests for the concordance summary."""

    def test_report_counts(self, diagnosis_codes):
        """Sensitivity is the share of code-labelled encounters captured."""
        cohort = pd.DataFrame({
            "subject_id": [1, 2],
            "hadm_id": [10, 20],
            "has_relevant_diagnosis_code": [True, False],
            "acquisition_type": ["Hospital-Acquired", "Community-Acquired"],
        })
        report = build_concordance_report(cohort, diagnosis_codes, REFERENCE)
        assert report["n_episodes"] == 2
        assert report["n_code_labelled_encounters"] == 2
        assert report["n_code_labelled_in_cohort"] == 1
        assert report["sensitivity"] == 0.5
        assert report["code_rate_in_cohort"] == 0.5
        assert report["by_acquisition_type"]["Hospital-Acquired"]["n_with_relevant_code"] == 1

    def test_empty_cohort(self, diagnosis_codes):
        """An empty cohort has no code rate."""
        cohort = pd.DataFrame({
            "subject_id": pd.Series(dtype="int64"),
            "hadm_id": pd.Series(dtype="int64"),
            "has_relevant_diagnosis_code": pd.Series(dtype=bool),
            "acquisition_type": pd.Series(dtype=object),
        })
        report = build_concordance_report(cohort, diagnosis_codes, REFERENCE)
        assert report["code_rate_in_cohort"] is None
        assert report["sensitivity"] == 0.0
