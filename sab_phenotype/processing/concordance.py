"""Concordance of the derived cohort with a diagnosis-code label.

Used for sensitivity evaluation only; the annotation never changes cohort
membership.
"""
from typing import Dict, FrozenSet, Optional, Tuple

import pandas as pd

from sab_phenotype.processing.lookup_tables import normalize_icd_codes
from sab_phenotype.processing.schemas import ENCOUNTER_KEY


def code_labelled_encounters(
    diagnosis_codes: pd.DataFrame,
    reference_codes: FrozenSet[Tuple[str, int]],
) -> pd.DataFrame:
    """Encounters carrying at least one reference diagnosis code.

    Args:
        diagnosis_codes: subject_id, hadm_id, icd_code, icd_version
        reference_codes: (normalized icd_code, icd_version) pairs

    Returns:
        Distinct subject_id, hadm_id pairs
    """
    codes = normalize_icd_codes(diagnosis_codes["icd_code"])
    versions = pd.to_numeric(diagnosis_codes["icd_version"], errors="coerce")
    pairs = zip(codes, versions)
    mask = pd.Series(
        [(code, int(version)) in reference_codes if pd.notna(version) else False
         for code, version in pairs],
        index=diagnosis_codes.index,
        dtype=bool,
    )
    return diagnosis_codes.loc[mask, ENCOUNTER_KEY].drop_duplicates().reset_index(drop=True)


def annotate_diagnosis_codes(
    episodes: pd.DataFrame,
    diagnosis_codes: pd.DataFrame,
    reference_codes: FrozenSet[Tuple[str, int]],
) -> pd.DataFrame:
    """Add has_relevant_diagnosis_code to every episode.

    Args:
        episodes: Episodes keyed by subject_id, hadm_id
        diagnosis_codes: Diagnosis codes per encounter
        reference_codes: Reference (icd_code, icd_version) pairs

    Returns:
        Copy of episodes with a boolean has_relevant_diagnosis_code column
    """
    labelled = code_labelled_encounters(diagnosis_codes, reference_codes)
    labelled = labelled.assign(has_relevant_diagnosis_code=True)

    result = episodes.drop(columns=["has_relevant_diagnosis_code"], errors="ignore")
    result = result.merge(labelled, on=ENCOUNTER_KEY, how="left")
    result["has_relevant_diagnosis_code"] = result["has_relevant_diagnosis_code"].eq(True)
    return result


def _ratio(numerator: int, denominator: int) -> Optional[float]:
    return round(numerator / denominator, 4) if denominator else None


def build_concordance_report(
    cohort: pd.DataFrame,
    diagnosis_codes: pd.DataFrame,
    reference_codes: FrozenSet[Tuple[str, int]],
) -> Dict:
    """Summarize agreement between the cohort and the code-based label.

    Args:
        cohort: Final cohort rows (with has_relevant_diagnosis_code)
        diagnosis_codes: Diagnosis codes per encounter
        reference_codes: Reference (icd_code, icd_version) pairs

    Returns:
        JSON-serializable dict with counts and ratios:
        - sensitivity: share of code-labelled encounters found in the cohort
        - code_rate_in_cohort: share of cohort rows carrying a reference code
    """
    labelled = code_labelled_encounters(diagnosis_codes, reference_codes)
    cohort_encounters = cohort[ENCOUNTER_KEY].drop_duplicates()
    captured = labelled.merge(cohort_encounters, on=ENCOUNTER_KEY)

    n_rows = len(cohort)
    n_with_code = int(cohort["has_relevant_diagnosis_code"].sum())

    by_type = {
        str(acq): {
            "n_episodes": int(len(group)),
            "n_with_relevant_code": int(group["has_relevant_diagnosis_code"].sum()),
        }
        for acq, group in cohort.groupby("acquisition_type")
    }

    return {
        "n_episodes": n_rows,
        "n_with_relevant_code": n_with_code,
        "by_acquisition_type": by_type,
        "n_code_labelled_encounters": int(len(labelled)),
        "n_code_labelled_in_cohort": int(len(captured)),
        "sensitivity": _ratio(len(captured), len(labelled)),
        "code_rate_in_cohort": _ratio(n_with_code, n_rows),
    }
